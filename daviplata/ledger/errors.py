"""
Ledger error taxonomy.

Flows raise these to callers. Collaborator-specific exceptions
(storage, receipt upload) are wrapped in CollaboratorError; notification
failures never surface here.
"""

from typing import Optional

from daviplata.models.movement import EditabilityResult, ValidationIssue


class LedgerError(Exception):
    """Base exception for ledger operations."""
    pass


class ValidationError(LedgerError):
    """Missing or invalid amount, reason, kind or receipt."""

    def __init__(self, issues: list[ValidationIssue]):
        self.issues = issues
        message = "; ".join(issue.message for issue in issues) or "Invalid input"
        super().__init__(message)


class AuthorizationError(LedgerError):
    """A privilege-gated action was attempted without the privilege."""
    pass


class NotEditableError(LedgerError):
    """Edit attempted on a movement outside its edit window or not the latest."""

    def __init__(self, result: EditabilityResult):
        self.result = result
        super().__init__(result.reason)


class NotFoundError(LedgerError):
    """Referenced movement or profile does not exist."""
    pass


class CollaboratorError(LedgerError):
    """
    Persistence or object storage failed.

    The original exception is available as __cause__.
    """

    def __init__(self, collaborator: str, message: Optional[str] = None):
        self.collaborator = collaborator
        super().__init__(message or f"{collaborator} failed")
