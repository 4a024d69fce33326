"""
Input Validation

DESIGN DECISION: Raw user input is parsed exactly once, here, at the
boundary. Amounts become 2-place Decimals; reasons are trimmed; kinds are
resolved to MovementKind. Everything downstream works on typed values.

Validation collects every issue before failing, so the user sees all
problems at once instead of fixing them one by one.

IMPORTANT: Validation NEVER silently fixes issues beyond normalization
(trimming whitespace, rounding to cents).
"""

from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from pathlib import PurePath
from typing import Any, Optional, Union

from daviplata.config import get_settings
from daviplata.ledger.errors import ValidationError
from daviplata.models.movement import (
    MovementChanges,
    MovementDraft,
    MovementKind,
    ValidationIssue,
)

CENT = Decimal("0.01")
# DECIMAL(12,2): ten integer digits
MAX_AMOUNT = Decimal("9999999999.99")

RawAmount = Union[str, int, float, Decimal, None]


class MovementValidator:
    """Validates and normalizes movement input."""

    def __init__(self):
        self._settings = get_settings().app

    def _parse_amount(
        self,
        raw: RawAmount,
        issues: list[ValidationIssue],
    ) -> Optional[Decimal]:
        """Parse an amount into a positive 2-place Decimal, or record an issue."""
        if raw is None or (isinstance(raw, str) and not raw.strip()):
            issues.append(ValidationIssue(
                field="amount",
                issue_type="missing",
                message="Enter a valid amount",
            ))
            return None

        value = None
        if not isinstance(raw, bool):
            try:
                value = Decimal(raw.strip() if isinstance(raw, str) else str(raw))
            except (InvalidOperation, ValueError, TypeError):
                value = None

        if value is None or not value.is_finite():
            issues.append(ValidationIssue(
                field="amount",
                issue_type="invalid_format",
                message=f"Amount is not a number: {raw!r}",
            ))
            return None

        # Bound the magnitude first; quantize fails past the context precision
        if value <= MAX_AMOUNT:
            value = value.quantize(CENT, rounding=ROUND_HALF_UP)

        if value <= 0:
            issues.append(ValidationIssue(
                field="amount",
                issue_type="invalid_value",
                message="Amount must be greater than zero",
            ))
            return None

        if value > MAX_AMOUNT:
            issues.append(ValidationIssue(
                field="amount",
                issue_type="invalid_value",
                message="Amount is too large",
            ))
            return None

        return value

    def _parse_reason(
        self,
        raw: Optional[str],
        issues: list[ValidationIssue],
    ) -> Optional[str]:
        reason = (raw or "").strip()
        if not reason:
            issues.append(ValidationIssue(
                field="reason",
                issue_type="missing",
                message="Enter the reason for the movement",
            ))
            return None
        if len(reason) > 1000:
            issues.append(ValidationIssue(
                field="reason",
                issue_type="invalid_value",
                message="Reason must be at most 1000 characters",
            ))
            return None
        return reason

    def _parse_kind(
        self,
        raw: Any,
        issues: list[ValidationIssue],
    ) -> Optional[MovementKind]:
        if raw is None or raw == "":
            issues.append(ValidationIssue(
                field="kind",
                issue_type="missing",
                message="Select the type of movement",
            ))
            return None
        if isinstance(raw, MovementKind):
            return raw

        text = str(raw).strip().upper()
        for kind in MovementKind:
            if text in (kind.name, kind.value):
                return kind

        issues.append(ValidationIssue(
            field="kind",
            issue_type="invalid_value",
            message=f"Unknown movement type: {raw}",
        ))
        return None

    def validate_draft(
        self,
        kind: Any,
        amount: RawAmount,
        reason: Optional[str],
        occurred_at: Optional[datetime] = None,
    ) -> MovementDraft:
        """
        Validate input for a new movement.

        Raises:
            ValidationError: With every issue found
        """
        issues: list[ValidationIssue] = []

        parsed_kind = self._parse_kind(kind, issues)
        parsed_amount = self._parse_amount(amount, issues)
        parsed_reason = self._parse_reason(reason, issues)

        if issues:
            raise ValidationError(issues)

        return MovementDraft(
            kind=parsed_kind,
            amount=parsed_amount,
            reason=parsed_reason,
            occurred_at=occurred_at,
        )

    def validate_changes(
        self,
        amount: RawAmount = None,
        reason: Optional[str] = None,
        has_receipt: bool = False,
    ) -> MovementChanges:
        """
        Validate an edit. Fields left as None are not changed.

        Raises:
            ValidationError: If a provided field is invalid or nothing changes
        """
        issues: list[ValidationIssue] = []
        changes = {}

        if amount is not None:
            changes["amount"] = self._parse_amount(amount, issues)
        if reason is not None:
            changes["reason"] = self._parse_reason(reason, issues)

        if not changes and not has_receipt:
            issues.append(ValidationIssue(
                field="movement",
                issue_type="empty",
                message="Nothing to change",
            ))

        if issues:
            raise ValidationError(issues)

        return MovementChanges(**changes)

    def validate_receipt(
        self,
        filename: str,
        size_bytes: int,
        mime_type: Optional[str] = None,
    ) -> None:
        """
        Check a receipt file before upload.

        Raises:
            ValidationError: If the format is unsupported or the file too large
        """
        issues: list[ValidationIssue] = []

        extension = PurePath(filename or "").suffix.lstrip(".").lower()
        supported = self._settings.supported_formats_list
        if extension not in supported:
            issues.append(ValidationIssue(
                field="receipt",
                issue_type="unsupported_format",
                message=(
                    f"Unsupported receipt format: {extension or mime_type or 'unknown'}. "
                    f"Allowed: {', '.join(supported)}"
                ),
            ))

        if size_bytes <= 0:
            issues.append(ValidationIssue(
                field="receipt",
                issue_type="empty",
                message="Receipt file is empty",
            ))
        elif size_bytes > self._settings.max_upload_size_bytes:
            issues.append(ValidationIssue(
                field="receipt",
                issue_type="too_large",
                message=(
                    f"Receipt is larger than {self._settings.max_upload_size_mb} MB"
                ),
            ))

        if issues:
            raise ValidationError(issues)
