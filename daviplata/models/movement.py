"""
Core Data Models for DaviPlata

These models define the strict schemas for all data flowing through the system.
They are designed to:
1. Enforce type safety at runtime
2. Provide clear validation error messages
3. Be serializable for storage and logging
4. Support the audit trail

DESIGN DECISION: Money is a 2-place Decimal everywhere. Amounts are parsed
once at the boundary (see daviplata.validation) and never re-parsed from
strings afterwards.
"""

from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Iterable, Optional
from uuid import UUID, uuid4

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
)


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class MovementKind(str, Enum):
    """
    Direction of a movement.

    Values are the ones stored in the ledger and sent to the webhooks.
    """
    INCOME = "INGRESO"
    EXPENSE = "EGRESO"


class VerificationState(str, Enum):
    """
    Verification state of a movement.

    CRITICAL: The only transition is PENDING -> VERIFIED, by an admin.
    """
    PENDING = "pending"
    VERIFIED = "verified"


class UserRole(str, Enum):
    """Role of a user profile."""
    ADMIN = "admin"
    USER = "user"


# Fields a creator may change inside the edit window
EDITABLE_FIELDS = frozenset({"amount", "reason", "receipt_url"})

# Fields the ledger itself may write after creation
SYSTEM_UPDATABLE_FIELDS = frozenset({
    "verification_state",
    "external_message_ref",
    "external_thread_ref",
})


# =============================================================================
# USERS
# =============================================================================

class UserProfile(BaseModel):
    """
    Profile of an authenticated user.

    Identity itself is verified upstream; this only carries the role
    the ledger needs for its privilege checks.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    email: str = Field(..., min_length=3, max_length=255)
    name: Optional[str] = Field(default=None, max_length=255)
    role: UserRole = Field(default=UserRole.USER)

    @property
    def is_privileged(self) -> bool:
        return self.role == UserRole.ADMIN

    @property
    def display_name(self) -> str:
        return self.name or self.email.split("@")[0]


# =============================================================================
# CORE MOVEMENT MODEL
# =============================================================================

class Movement(BaseModel):
    """
    One recorded income or expense.

    `created_at` is the only clock the edit window looks at.
    `sequence` is assigned by storage on insert and breaks ties between
    movements created in the same instant.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    # Identity
    id: UUID = Field(
        default_factory=uuid4,
        description="Unique movement ID"
    )
    sequence: int = Field(
        default=0,
        ge=0,
        description="Insertion sequence number"
    )
    owner_id: UUID = Field(
        ...,
        description="Profile that recorded the movement"
    )
    owner_name: Optional[str] = None
    owner_email: Optional[str] = None

    # Content
    kind: MovementKind
    amount: Decimal = Field(
        ...,
        gt=0,
        max_digits=12,
        decimal_places=2,
        description="Amount (always positive; direction comes from kind)"
    )
    reason: str = Field(
        ...,
        min_length=1,
        max_length=1000,
        description="What the movement was for"
    )
    receipt_url: Optional[str] = Field(
        default=None,
        description="Public URL of the uploaded receipt"
    )

    # Timestamps
    occurred_at: datetime = Field(
        default_factory=utc_now,
        description="When the movement happened"
    )
    created_at: datetime = Field(
        default_factory=utc_now,
        description="When the movement was recorded"
    )
    updated_at: datetime = Field(
        default_factory=utc_now,
        description="Last update timestamp"
    )

    # Lifecycle
    verification_state: VerificationState = Field(
        default=VerificationState.PENDING
    )

    # Correlation with the messaging automation
    external_message_ref: Optional[str] = None
    external_thread_ref: Optional[str] = None

    @field_validator("occurred_at", "created_at", "updated_at")
    @classmethod
    def assume_utc(cls, v: datetime) -> datetime:
        """Naive timestamps are treated as UTC."""
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v

    @property
    def is_verified(self) -> bool:
        return self.verification_state == VerificationState.VERIFIED

    @property
    def has_correlation_refs(self) -> bool:
        return bool(self.external_message_ref and self.external_thread_ref)

    @property
    def signed_amount(self) -> Decimal:
        return self.amount if self.kind == MovementKind.INCOME else -self.amount


class MovementDraft(BaseModel):
    """Validated input for a new movement, before it has an identity."""

    kind: MovementKind
    amount: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2)
    reason: str = Field(..., min_length=1, max_length=1000)
    occurred_at: Optional[datetime] = None


class MovementChanges(BaseModel):
    """
    Validated edit of a movement.

    Only the fields in EDITABLE_FIELDS can appear here. None means
    "leave unchanged".
    """

    amount: Optional[Decimal] = Field(default=None, gt=0, max_digits=12, decimal_places=2)
    reason: Optional[str] = Field(default=None, min_length=1, max_length=1000)
    receipt_url: Optional[str] = None

    def as_fields(self) -> dict:
        return self.model_dump(exclude_none=True)


# =============================================================================
# POLICY RESULTS
# =============================================================================

class EditabilityResult(BaseModel):
    """Whether a movement can currently be edited, and why."""

    editable: bool
    reason: str
    remaining_minutes: Optional[int] = Field(default=None, ge=0)


class ValidationIssue(BaseModel):
    """A single validation issue found."""

    field: str = Field(
        ...,
        description="Field with the issue"
    )
    issue_type: str = Field(
        ...,
        description="Type of issue (e.g., 'missing', 'invalid_value')"
    )
    message: str = Field(
        ...,
        description="Human-readable description of the issue"
    )


# =============================================================================
# STATISTICS
# =============================================================================

class LedgerStatistics(BaseModel):
    """Aggregate totals over the whole ledger."""

    income_total: Decimal = Decimal("0.00")
    expense_total: Decimal = Decimal("0.00")
    balance: Decimal = Decimal("0.00")
    income_count: int = Field(default=0, ge=0)
    expense_count: int = Field(default=0, ge=0)
    total_count: int = Field(default=0, ge=0)

    @classmethod
    def from_movements(cls, movements: Iterable[Movement]) -> "LedgerStatistics":
        income_total = Decimal("0.00")
        expense_total = Decimal("0.00")
        income_count = 0
        expense_count = 0

        for movement in movements:
            if movement.kind == MovementKind.INCOME:
                income_total += movement.amount
                income_count += 1
            else:
                expense_total += movement.amount
                expense_count += 1

        return cls(
            income_total=income_total,
            expense_total=expense_total,
            balance=income_total - expense_total,
            income_count=income_count,
            expense_count=expense_count,
            total_count=income_count + expense_count,
        )


# =============================================================================
# NOTIFICATIONS AND FLOW OUTCOMES
# =============================================================================

class NotificationDispatch(BaseModel):
    """
    What happened when a webhook notification was attempted.

    Exactly one of delivered / skipped / failed describes the attempt.
    """

    delivered: bool = False
    skipped: bool = False
    error: Optional[str] = None

    # Correlation refs returned by the created/updated webhook
    message_ref: Optional[str] = None
    thread_ref: Optional[str] = None

    @property
    def failed(self) -> bool:
        return not self.delivered and not self.skipped

    @property
    def has_refs(self) -> bool:
        return bool(self.message_ref or self.thread_ref)


class MovementOutcome(BaseModel):
    """Result of a create / edit / verify flow."""

    movement: Movement
    changed: bool = True
    notification: NotificationDispatch = Field(
        default_factory=lambda: NotificationDispatch(skipped=True)
    )
    message: str = ""

    @property
    def notification_skipped(self) -> bool:
        return self.notification.skipped


class DashboardSnapshot(BaseModel):
    """Everything the dashboard renders, fetched in one pass."""

    statistics: LedgerStatistics
    movements: list[Movement] = Field(default_factory=list)
    editability: dict[UUID, EditabilityResult] = Field(default_factory=dict)
    kind_filter: Optional[MovementKind] = None

    def editability_for(self, movement_id: UUID) -> Optional[EditabilityResult]:
        return self.editability.get(movement_id)


class MovementReport(BaseModel):
    """
    A period of the ledger, ready for export.

    Statistics cover exactly the movements in the report, not the whole
    ledger.
    """

    generated_at: datetime = Field(default_factory=utc_now)
    kind_filter: Optional[MovementKind] = None
    since: Optional[date] = None
    until: Optional[date] = None
    movements: list[Movement] = Field(default_factory=list)
    statistics: LedgerStatistics = Field(default_factory=LedgerStatistics)

    @property
    def is_empty(self) -> bool:
        return not self.movements
