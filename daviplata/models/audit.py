"""
Audit Models for DaviPlata

Every significant action on the ledger is logged for audit purposes.
This provides:
1. Complete traceability of who recorded, edited and verified what
2. Debugging information when a collaborator misbehaves
3. A record of notifications that were skipped or failed

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

import json
from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from daviplata.models.movement import utc_now


class AuditEventType(str, Enum):
    """Types of events we audit."""
    # Receipts
    RECEIPT_UPLOADED = "receipt_uploaded"

    # Ledger mutations
    MOVEMENT_CREATED = "movement_created"
    MOVEMENT_UPDATED = "movement_updated"
    MOVEMENT_VERIFIED = "movement_verified"
    VERIFICATION_NOOP = "verification_noop"

    # Rejections
    VALIDATION_FAILED = "validation_failed"
    AUTHORIZATION_DENIED = "authorization_denied"
    EDIT_REJECTED = "edit_rejected"

    # Notifications
    NOTIFICATION_SENT = "notification_sent"
    NOTIFICATION_SKIPPED = "notification_skipped"
    NOTIFICATION_FAILED = "notification_failed"

    # System events
    EXTERNAL_SERVICE_ERROR = "external_service_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=utc_now,
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType = Field(
        ...,
        description="Type of event"
    )
    severity: AuditSeverity = Field(
        default=AuditSeverity.INFO,
        description="Event severity"
    )

    # Context - what entity is this about?
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'movement', 'receipt')"
    )
    entity_id: Optional[UUID] = Field(
        default=None,
        description="ID of the entity this event relates to"
    )

    # Who did it
    actor_id: Optional[UUID] = Field(
        default=None,
        description="Profile that triggered the event"
    )

    # Correlation - for tracking related events
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related events (e.g., all events in one edit)"
    )

    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )
    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional event-specific data"
    )

    error_message: Optional[str] = None

    is_user_action: bool = Field(
        default=False,
        description="Was this triggered by a user action?"
    )

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "entity_type": self.entity_type,
            "entity_id": str(self.entity_id) if self.entity_id else None,
            "actor_id": str(self.actor_id) if self.actor_id else None,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_message": self.error_message,
            "is_user_action": self.is_user_action,
        }

    def to_sheets_row(self) -> list:
        """
        Convert to a row suitable for Google Sheets storage.

        Returns columns in order:
        [event_id, timestamp, event_type, severity, entity_type, entity_id,
         actor_id, correlation_id, description, details_json, error_message,
         is_user_action]
        """
        return [
            str(self.event_id),
            self.timestamp.isoformat(),
            self.event_type.value,
            self.severity.value,
            self.entity_type or "",
            str(self.entity_id) if self.entity_id else "",
            str(self.actor_id) if self.actor_id else "",
            str(self.correlation_id) if self.correlation_id else "",
            self.description,
            json.dumps(self.details) if self.details else "",
            self.error_message or "",
            str(self.is_user_action),
        ]


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.movement_created(movement, actor_id, correlation_id)
        event = AuditEventBuilder.notification_failed("create", movement_id, error, correlation_id)
    """

    @staticmethod
    def receipt_uploaded(
        key: str,
        url: str,
        size_bytes: int,
        actor_id: UUID,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECEIPT_UPLOADED,
            entity_type="receipt",
            actor_id=actor_id,
            correlation_id=correlation_id,
            description=f"Receipt uploaded: {key}",
            details={
                "key": key,
                "url": url,
                "size_bytes": size_bytes,
            },
            is_user_action=True,
        )

    @staticmethod
    def movement_created(
        movement_id: UUID,
        kind: str,
        amount: str,
        verification_state: str,
        actor_id: UUID,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.MOVEMENT_CREATED,
            entity_type="movement",
            entity_id=movement_id,
            actor_id=actor_id,
            correlation_id=correlation_id,
            description=f"Movement recorded: {kind} {amount}",
            details={
                "kind": kind,
                "amount": amount,
                "verification_state": verification_state,
            },
            is_user_action=True,
        )

    @staticmethod
    def movement_updated(
        movement_id: UUID,
        changes: dict[str, Any],
        actor_id: UUID,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.MOVEMENT_UPDATED,
            entity_type="movement",
            entity_id=movement_id,
            actor_id=actor_id,
            correlation_id=correlation_id,
            description=f"Movement edited: {', '.join(sorted(changes)) or 'no fields'}",
            details={key: str(value) for key, value in changes.items()},
            is_user_action=True,
        )

    @staticmethod
    def movement_verified(
        movement_id: UUID,
        actor_id: UUID,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.MOVEMENT_VERIFIED,
            entity_type="movement",
            entity_id=movement_id,
            actor_id=actor_id,
            correlation_id=correlation_id,
            description="Movement verified",
            is_user_action=True,
        )

    @staticmethod
    def verification_noop(
        movement_id: UUID,
        actor_id: UUID,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.VERIFICATION_NOOP,
            entity_type="movement",
            entity_id=movement_id,
            actor_id=actor_id,
            correlation_id=correlation_id,
            description="Movement was already verified",
            is_user_action=True,
        )

    @staticmethod
    def validation_failed(
        issues: list[dict],
        actor_id: Optional[UUID],
        correlation_id: UUID,
        movement_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.VALIDATION_FAILED,
            severity=AuditSeverity.WARNING,
            entity_type="movement",
            entity_id=movement_id,
            actor_id=actor_id,
            correlation_id=correlation_id,
            description=f"Validation failed with {len(issues)} issues",
            details={"issues": issues},
            is_user_action=True,
        )

    @staticmethod
    def authorization_denied(
        action: str,
        reason: str,
        actor_id: UUID,
        correlation_id: UUID,
        movement_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.AUTHORIZATION_DENIED,
            severity=AuditSeverity.WARNING,
            entity_type="movement",
            entity_id=movement_id,
            actor_id=actor_id,
            correlation_id=correlation_id,
            description=f"Not allowed to {action}",
            details={"action": action, "reason": reason},
            is_user_action=True,
        )

    @staticmethod
    def edit_rejected(
        movement_id: UUID,
        reason: str,
        actor_id: UUID,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EDIT_REJECTED,
            severity=AuditSeverity.WARNING,
            entity_type="movement",
            entity_id=movement_id,
            actor_id=actor_id,
            correlation_id=correlation_id,
            description="Edit rejected",
            details={"reason": reason},
            is_user_action=True,
        )

    @staticmethod
    def notification_sent(
        channel: str,
        movement_id: UUID,
        correlation_id: UUID,
        refs: Optional[dict] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.NOTIFICATION_SENT,
            entity_type="movement",
            entity_id=movement_id,
            correlation_id=correlation_id,
            description=f"Notification sent: {channel}",
            details={"channel": channel, **(refs or {})},
        )

    @staticmethod
    def notification_skipped(
        channel: str,
        movement_id: UUID,
        reason: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.NOTIFICATION_SKIPPED,
            entity_type="movement",
            entity_id=movement_id,
            correlation_id=correlation_id,
            description=f"Notification skipped: {channel}",
            details={"channel": channel, "reason": reason},
        )

    @staticmethod
    def notification_failed(
        channel: str,
        movement_id: UUID,
        error_message: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.NOTIFICATION_FAILED,
            severity=AuditSeverity.WARNING,
            entity_type="movement",
            entity_id=movement_id,
            correlation_id=correlation_id,
            description=f"Notification failed: {channel}",
            error_message=error_message,
            details={"channel": channel},
        )

    @staticmethod
    def external_service_error(
        service: str,
        error_message: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXTERNAL_SERVICE_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"External service error: {service}",
            error_message=error_message,
            details={
                "service": service,
            },
            correlation_id=correlation_id,
        )
