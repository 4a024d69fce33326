"""
Audit Logger

DESIGN DECISION: Every ledger mutation, rejection and notification attempt
is logged. This provides:
1. Traceability of who recorded, edited and verified each movement
2. Debugging capability when a collaborator misbehaves
3. A per-movement history the dashboard can show

The audit logger:
- Is async to not block main flow
- Gracefully handles failures (a failed audit write never fails a flow)
- Supports correlation IDs to trace related events
"""

from typing import Any, Optional
from uuid import UUID, uuid4

import structlog

from daviplata.models.audit import AuditEvent, AuditEventBuilder
from daviplata.models.movement import Movement, NotificationDispatch
from daviplata.services.storage import AuditStorageInterface


# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


class AuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (for debugging)
    2. The audit storage backend (for persistence and the history view)
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
    ):
        """
        Initialize audit logger.

        Args:
            storage: Storage backend for persistence.
                    If None, only logs locally.
        """
        self._storage = storage
        self._logger = structlog.get_logger()

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Always logs locally. Persists to storage if available.

        Returns True if storage write succeeded (or no storage configured).
        """
        log_dict = event.to_log_dict()

        if event.severity.value in ("error", "critical"):
            self._logger.error("audit_event", **log_dict)
        elif event.severity.value == "warning":
            self._logger.warning("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        if self._storage:
            try:
                return await self._storage.append_event(event)
            except Exception as e:
                # Log failure but don't raise
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    async def get_history(self, movement_id: UUID) -> list[AuditEvent]:
        """Audit events for one movement, oldest first. Empty without storage."""
        if not self._storage:
            return []
        return await self._storage.get_events_by_entity("movement", movement_id)

    async def log_receipt_uploaded(
        self,
        key: str,
        url: str,
        size_bytes: int,
        actor_id: UUID,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.receipt_uploaded(
            key=key,
            url=url,
            size_bytes=size_bytes,
            actor_id=actor_id,
            correlation_id=correlation_id,
        ))

    async def log_movement_created(
        self,
        movement: Movement,
        actor_id: UUID,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.movement_created(
            movement_id=movement.id,
            kind=movement.kind.value,
            amount=str(movement.amount),
            verification_state=movement.verification_state.value,
            actor_id=actor_id,
            correlation_id=correlation_id,
        ))

    async def log_movement_updated(
        self,
        movement_id: UUID,
        changes: dict[str, Any],
        actor_id: UUID,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.movement_updated(
            movement_id=movement_id,
            changes=changes,
            actor_id=actor_id,
            correlation_id=correlation_id,
        ))

    async def log_movement_verified(
        self,
        movement_id: UUID,
        actor_id: UUID,
        correlation_id: UUID,
        already_verified: bool = False,
    ) -> None:
        if already_verified:
            event = AuditEventBuilder.verification_noop(
                movement_id=movement_id,
                actor_id=actor_id,
                correlation_id=correlation_id,
            )
        else:
            event = AuditEventBuilder.movement_verified(
                movement_id=movement_id,
                actor_id=actor_id,
                correlation_id=correlation_id,
            )
        await self.log(event)

    async def log_validation_failed(
        self,
        issues: list[dict],
        actor_id: Optional[UUID],
        correlation_id: UUID,
        movement_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.validation_failed(
            issues=issues,
            actor_id=actor_id,
            correlation_id=correlation_id,
            movement_id=movement_id,
        ))

    async def log_authorization_denied(
        self,
        action: str,
        reason: str,
        actor_id: UUID,
        correlation_id: UUID,
        movement_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.authorization_denied(
            action=action,
            reason=reason,
            actor_id=actor_id,
            correlation_id=correlation_id,
            movement_id=movement_id,
        ))

    async def log_edit_rejected(
        self,
        movement_id: UUID,
        reason: str,
        actor_id: UUID,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.edit_rejected(
            movement_id=movement_id,
            reason=reason,
            actor_id=actor_id,
            correlation_id=correlation_id,
        ))

    async def log_notification(
        self,
        channel: str,
        movement_id: UUID,
        dispatch: NotificationDispatch,
        correlation_id: UUID,
    ) -> None:
        """Record the outcome of one notification attempt."""
        if dispatch.delivered:
            refs = None
            if dispatch.has_refs:
                refs = {
                    "message_ref": dispatch.message_ref,
                    "thread_ref": dispatch.thread_ref,
                }
            event = AuditEventBuilder.notification_sent(
                channel=channel,
                movement_id=movement_id,
                correlation_id=correlation_id,
                refs=refs,
            )
        elif dispatch.skipped:
            event = AuditEventBuilder.notification_skipped(
                channel=channel,
                movement_id=movement_id,
                reason=dispatch.error or "notifier not configured",
                correlation_id=correlation_id,
            )
        else:
            event = AuditEventBuilder.notification_failed(
                channel=channel,
                movement_id=movement_id,
                error_message=dispatch.error or "unknown error",
                correlation_id=correlation_id,
            )
        await self.log(event)

    async def log_external_service_error(
        self,
        service: str,
        error_message: str,
        correlation_id: UUID,
    ) -> None:
        """Log external service error."""
        await self.log(AuditEventBuilder.external_service_error(
            service=service,
            error_message=error_message,
            correlation_id=correlation_id,
        ))


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a new user action (e.g., recording a movement).
    Pass it through all subsequent operations.
    """
    return uuid4()
