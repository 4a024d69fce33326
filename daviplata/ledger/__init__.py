"""
Movement ledger core.

Pure policy: who may do what to a movement, and when. No I/O.
"""

from daviplata.ledger.editability import (
    EDIT_WINDOW_MINUTES,
    evaluate_editability,
    latest_movement,
    sort_newest_first,
)
from daviplata.ledger.errors import (
    AuthorizationError,
    CollaboratorError,
    LedgerError,
    NotEditableError,
    NotFoundError,
    ValidationError,
)
from daviplata.ledger.guards import (
    ensure_can_edit,
    ensure_can_record,
    initial_verification_state,
    verify,
)

__all__ = [
    "EDIT_WINDOW_MINUTES",
    "evaluate_editability",
    "latest_movement",
    "sort_newest_first",
    "AuthorizationError",
    "CollaboratorError",
    "LedgerError",
    "NotEditableError",
    "NotFoundError",
    "ValidationError",
    "ensure_can_edit",
    "ensure_can_record",
    "initial_verification_state",
    "verify",
]
