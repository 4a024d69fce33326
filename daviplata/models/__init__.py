"""
Data Models Package

This package contains all Pydantic models used in DaviPlata.
All data flowing through the system must conform to these schemas.
"""

from daviplata.models.movement import (
    EDITABLE_FIELDS,
    SYSTEM_UPDATABLE_FIELDS,
    DashboardSnapshot,
    EditabilityResult,
    LedgerStatistics,
    Movement,
    MovementChanges,
    MovementDraft,
    MovementKind,
    MovementOutcome,
    MovementReport,
    NotificationDispatch,
    UserProfile,
    UserRole,
    ValidationIssue,
    VerificationState,
    utc_now,
)
from daviplata.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Movement models
    "EDITABLE_FIELDS",
    "SYSTEM_UPDATABLE_FIELDS",
    "DashboardSnapshot",
    "EditabilityResult",
    "LedgerStatistics",
    "Movement",
    "MovementChanges",
    "MovementDraft",
    "MovementKind",
    "MovementOutcome",
    "MovementReport",
    "NotificationDispatch",
    "UserProfile",
    "UserRole",
    "ValidationIssue",
    "VerificationState",
    "utc_now",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
