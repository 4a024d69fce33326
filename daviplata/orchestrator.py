"""
Main Orchestrator for DaviPlata

This module ties together all the components and defines the
end-to-end flows for:
1. Recording a movement (validate → authorize → upload receipt → insert → notify)
2. Editing the latest movement (editability → authorize → retract → update → notify)
3. Verifying a movement (authorize → transition → update → notify)
4. Loading the dashboard (statistics, recent movements, editability)
5. Building period reports for export

DESIGN DECISION: The orchestrator enforces the boundaries:
- The ledger core decides; collaborators only carry out the decision
- Persistence and receipt failures block the action (CollaboratorError)
- Notification failures never block anything; they are audited and reported
- Every step is audited

Collaborator calls are awaited strictly in sequence. For an edit, the
retraction of the old message completes (or fails) before the update is
committed, and the new message goes out only after the commit.
"""

from datetime import date, datetime
from typing import Any, Callable, Optional
from uuid import UUID

import structlog

from daviplata.audit import AuditLogger, create_correlation_id
from daviplata.config import AppSettings, get_settings
from daviplata.ledger import (
    AuthorizationError,
    CollaboratorError,
    NotEditableError,
    NotFoundError,
    ValidationError,
    ensure_can_edit,
    ensure_can_record,
    evaluate_editability,
    initial_verification_state,
    verify,
)
from daviplata.models.movement import (
    DashboardSnapshot,
    EditabilityResult,
    LedgerStatistics,
    Movement,
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
from daviplata.services.image import (
    CloudinaryReceiptStorage,
    ReceiptStorageInterface,
    ReceiptUploadError,
    compress_image,
    generate_receipt_key,
)
from daviplata.services.notifications import MovementNotifier, WebhookNotifier
from daviplata.services.storage import (
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsMovementStorage,
    GoogleSheetsUserStorage,
    InMemoryMovementStorage,
    InMemoryUserStorage,
    MovementStorageInterface,
    RowNotFoundError,
    StorageError,
    UserStorageInterface,
)
from daviplata.validation import MovementValidator

logger = structlog.get_logger(__name__)

NOTIFIER_NOT_CONFIGURED = "notifier not configured"


class MovementFlow:
    """
    Orchestrates every mutation of the ledger.

    Collaborators are injected; only movement storage is mandatory.
    Without receipt storage, receipts are rejected. Without a notifier,
    every notification is reported as skipped.
    """

    def __init__(
        self,
        movement_storage: MovementStorageInterface,
        user_storage: Optional[UserStorageInterface] = None,
        receipt_storage: Optional[ReceiptStorageInterface] = None,
        notifier: Optional[MovementNotifier] = None,
        validator: Optional[MovementValidator] = None,
        audit_logger: Optional[AuditLogger] = None,
        clock: Callable[[], datetime] = utc_now,
        settings: Optional[AppSettings] = None,
    ):
        self._movements = movement_storage
        self._users = user_storage
        self._receipts = receipt_storage
        self._notifier = notifier
        self._validator = validator or MovementValidator()
        self._audit_logger = audit_logger or AuditLogger()
        self._clock = clock
        self._settings = settings or get_settings().app

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    async def resolve_actor(self, email: str) -> UserProfile:
        """
        Look up the profile of a signed-in user.

        Raises:
            NotFoundError: If no profile has this email
            CollaboratorError: If profile storage is unavailable
        """
        if self._users is None:
            raise CollaboratorError("profiles", "Profile storage is not configured")
        try:
            profile = await self._users.get_user_by_email(email)
        except StorageError as e:
            raise CollaboratorError("profiles", f"Could not load profile: {e}") from e
        if profile is None:
            raise NotFoundError(f"No profile registered for {email}")
        return profile

    async def check_editability(
        self,
        movement_id: UUID,
        now: Optional[datetime] = None,
    ) -> EditabilityResult:
        """Editability of a movement against the whole ledger, at `now`."""
        now = now or self._clock()
        movement = await self._get(movement_id)
        movements = await self._list_all()
        return evaluate_editability(
            movement,
            movements,
            now,
            self._settings.edit_window_minutes,
        )

    async def get_history(self, movement_id: UUID):
        """Audit trail of one movement, oldest first."""
        try:
            return await self._audit_logger.get_history(movement_id)
        except StorageError as e:
            raise CollaboratorError("audit", f"Could not load the history: {e}") from e

    # -------------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------------

    async def create_movement(
        self,
        actor: UserProfile,
        kind: Any,
        amount: Any,
        reason: Optional[str],
        receipt: Optional[bytes] = None,
        receipt_filename: Optional[str] = None,
        receipt_mime_type: Optional[str] = None,
        occurred_at: Optional[datetime] = None,
        now: Optional[datetime] = None,
        correlation_id: Optional[UUID] = None,
    ) -> MovementOutcome:
        """
        Record a new movement.

        Admins' movements start VERIFIED, everyone else's PENDING.

        Raises:
            ValidationError: Invalid amount, reason, kind or receipt
            AuthorizationError: A non-admin tried to record an expense
            CollaboratorError: Receipt upload or insert failed
        """
        correlation_id = correlation_id or create_correlation_id()
        now = now or self._clock()

        try:
            draft = self._validator.validate_draft(kind, amount, reason, occurred_at)
            if receipt is not None:
                self._validator.validate_receipt(
                    receipt_filename or "", len(receipt), receipt_mime_type
                )
        except ValidationError as e:
            await self._audit_validation(e, actor, correlation_id)
            raise

        try:
            ensure_can_record(actor, draft.kind)
        except AuthorizationError as e:
            await self._audit_logger.log_authorization_denied(
                action=f"record {draft.kind.value}",
                reason=str(e),
                actor_id=actor.id,
                correlation_id=correlation_id,
            )
            raise

        receipt_url = None
        if receipt is not None:
            receipt_url = await self._upload_receipt(
                receipt, receipt_filename, receipt_mime_type, actor, now, correlation_id
            )

        movement = Movement(
            owner_id=actor.id,
            owner_name=actor.name,
            owner_email=actor.email,
            kind=draft.kind,
            amount=draft.amount,
            reason=draft.reason,
            receipt_url=receipt_url,
            occurred_at=draft.occurred_at or now,
            created_at=now,
            updated_at=now,
            verification_state=initial_verification_state(actor),
        )

        try:
            stored = await self._movements.insert_movement(movement)
        except StorageError as e:
            await self._audit_service_error("persistence", e, correlation_id)
            raise CollaboratorError("persistence", f"Could not save the movement: {e}") from e

        await self._audit_logger.log_movement_created(
            movement=stored,
            actor_id=actor.id,
            correlation_id=correlation_id,
        )

        stored, dispatch = await self._announce(stored, correlation_id)
        return MovementOutcome(
            movement=stored,
            notification=dispatch,
            message="Movement recorded",
        )

    async def edit_movement(
        self,
        actor: UserProfile,
        movement_id: UUID,
        amount: Any = None,
        reason: Optional[str] = None,
        receipt: Optional[bytes] = None,
        receipt_filename: Optional[str] = None,
        receipt_mime_type: Optional[str] = None,
        now: Optional[datetime] = None,
        correlation_id: Optional[UUID] = None,
    ) -> MovementOutcome:
        """
        Amend amount, reason and/or receipt of the latest movement.

        Raises:
            NotFoundError: The movement doesn't exist
            NotEditableError: Not the latest movement, or the window expired
            AuthorizationError: The actor didn't record the movement
            ValidationError: Invalid new values, or nothing to change
            CollaboratorError: Receipt upload or update failed
        """
        correlation_id = correlation_id or create_correlation_id()
        now = now or self._clock()

        current = await self._get(movement_id)
        if current is None:
            raise NotFoundError(f"Movement not found: {movement_id}")

        result = evaluate_editability(
            current,
            await self._list_all(),
            now,
            self._settings.edit_window_minutes,
        )
        if not result.editable:
            await self._audit_logger.log_edit_rejected(
                movement_id=movement_id,
                reason=result.reason,
                actor_id=actor.id,
                correlation_id=correlation_id,
            )
            raise NotEditableError(result)

        try:
            ensure_can_edit(actor, current)
        except AuthorizationError as e:
            await self._audit_logger.log_authorization_denied(
                action="edit movement",
                reason=str(e),
                actor_id=actor.id,
                correlation_id=correlation_id,
                movement_id=movement_id,
            )
            raise

        try:
            changes = self._validator.validate_changes(
                amount=amount,
                reason=reason,
                has_receipt=receipt is not None,
            )
            if receipt is not None:
                self._validator.validate_receipt(
                    receipt_filename or "", len(receipt), receipt_mime_type
                )
        except ValidationError as e:
            await self._audit_validation(e, actor, correlation_id, movement_id)
            raise

        if receipt is not None:
            receipt_url = await self._upload_receipt(
                receipt, receipt_filename, receipt_mime_type, actor, now, correlation_id
            )
            changes = changes.model_copy(update={"receipt_url": receipt_url})

        # The old message must be retracted before the ledger changes
        if current.has_correlation_refs:
            retraction = await self._notify("delete", current, correlation_id)
            if retraction.failed:
                logger.warning(
                    "retraction_failed_edit_continues",
                    movement_id=str(movement_id),
                    error=retraction.error,
                )

        fields = changes.as_fields()
        try:
            updated = await self._movements.update_movement(movement_id, fields)
        except RowNotFoundError as e:
            raise NotFoundError(f"Movement not found: {movement_id}") from e
        except StorageError as e:
            await self._audit_service_error("persistence", e, correlation_id)
            raise CollaboratorError("persistence", f"Could not update the movement: {e}") from e

        await self._audit_logger.log_movement_updated(
            movement_id=movement_id,
            changes=fields,
            actor_id=actor.id,
            correlation_id=correlation_id,
        )

        updated, dispatch = await self._announce(updated, correlation_id)
        return MovementOutcome(
            movement=updated,
            notification=dispatch,
            message="Movement updated",
        )

    async def verify_movement(
        self,
        actor: UserProfile,
        movement_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> MovementOutcome:
        """
        Verify a PENDING movement. Verifying twice is a no-op.

        Raises:
            NotFoundError: The movement doesn't exist
            AuthorizationError: The actor is not an admin
            CollaboratorError: The update failed
        """
        correlation_id = correlation_id or create_correlation_id()

        current = await self._get(movement_id)
        if current is None:
            raise NotFoundError(f"Movement not found: {movement_id}")

        try:
            _, transitioned = verify(current, actor)
        except AuthorizationError as e:
            await self._audit_logger.log_authorization_denied(
                action="verify movement",
                reason=str(e),
                actor_id=actor.id,
                correlation_id=correlation_id,
                movement_id=movement_id,
            )
            raise

        if not transitioned:
            await self._audit_logger.log_movement_verified(
                movement_id=movement_id,
                actor_id=actor.id,
                correlation_id=correlation_id,
                already_verified=True,
            )
            return MovementOutcome(
                movement=current,
                changed=False,
                notification=NotificationDispatch(skipped=True, error="already verified"),
                message="Movement was already verified",
            )

        try:
            updated = await self._movements.update_movement(
                movement_id,
                {"verification_state": VerificationState.VERIFIED},
            )
        except RowNotFoundError as e:
            raise NotFoundError(f"Movement not found: {movement_id}") from e
        except StorageError as e:
            await self._audit_service_error("persistence", e, correlation_id)
            raise CollaboratorError("persistence", f"Could not verify the movement: {e}") from e

        await self._audit_logger.log_movement_verified(
            movement_id=movement_id,
            actor_id=actor.id,
            correlation_id=correlation_id,
        )

        dispatch = await self._notify("verify", updated, correlation_id)
        message = "Movement verified"
        if dispatch.skipped:
            message = "Movement verified (notification skipped)"
        return MovementOutcome(movement=updated, notification=dispatch, message=message)

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    async def _get(self, movement_id: UUID) -> Optional[Movement]:
        try:
            return await self._movements.get_movement_by_id(movement_id)
        except StorageError as e:
            raise CollaboratorError("persistence", f"Could not load the movement: {e}") from e

    async def _list_all(self) -> list[Movement]:
        try:
            return await self._movements.list_movements()
        except StorageError as e:
            raise CollaboratorError("persistence", f"Could not load movements: {e}") from e

    async def _upload_receipt(
        self,
        data: bytes,
        filename: Optional[str],
        mime_type: Optional[str],
        actor: UserProfile,
        now: datetime,
        correlation_id: UUID,
    ) -> str:
        if self._receipts is None:
            raise CollaboratorError("object_storage", "Receipt storage is not configured")

        image = compress_image(
            data,
            mime_type or "application/octet-stream",
            max_width=self._settings.image_max_width,
            max_height=self._settings.image_max_height,
            quality=self._settings.image_quality,
            threshold_bytes=self._settings.compression_threshold_kb * 1024,
        )
        key = generate_receipt_key(
            filename or "",
            folder=self._receipts.folder,
            now=now,
            extension="jpg" if image.compressed else None,
        )

        try:
            url = await self._receipts.store(image.data, key, image.content_type)
        except ReceiptUploadError as e:
            await self._audit_service_error("object_storage", e, correlation_id)
            raise CollaboratorError("object_storage", f"Could not upload the receipt: {e}") from e

        await self._audit_logger.log_receipt_uploaded(
            key=key,
            url=url,
            size_bytes=image.size,
            actor_id=actor.id,
            correlation_id=correlation_id,
        )
        return url

    async def _notify(
        self,
        channel: str,
        movement: Movement,
        correlation_id: UUID,
    ) -> NotificationDispatch:
        """Send a verify/delete notification; skipped without both refs."""
        if self._notifier is None:
            dispatch = NotificationDispatch(skipped=True, error=NOTIFIER_NOT_CONFIGURED)
        elif not movement.has_correlation_refs:
            dispatch = NotificationDispatch(
                skipped=True, error="movement has no message id or chat id"
            )
        elif channel == "verify":
            dispatch = await self._notifier.notify_verified(movement)
        else:
            dispatch = await self._notifier.notify_retracted(movement)

        await self._audit_logger.log_notification(
            channel=channel,
            movement_id=movement.id,
            dispatch=dispatch,
            correlation_id=correlation_id,
        )
        return dispatch

    async def _announce(
        self,
        movement: Movement,
        correlation_id: UUID,
    ) -> tuple[Movement, NotificationDispatch]:
        """
        Send the created/updated notification and keep the refs it returns.

        The movement is already committed; nothing here raises.
        """
        if self._notifier is None:
            dispatch = NotificationDispatch(skipped=True, error=NOTIFIER_NOT_CONFIGURED)
            await self._audit_logger.log_notification(
                "movement", movement.id, dispatch, correlation_id
            )
            return movement, dispatch

        try:
            statistics = await self._movements.get_statistics()
        except StorageError as e:
            await self._audit_service_error("persistence", e, correlation_id)
            dispatch = NotificationDispatch(error=f"could not compute balance: {e}")
            await self._audit_logger.log_notification(
                "movement", movement.id, dispatch, correlation_id
            )
            return movement, dispatch

        dispatch = await self._notifier.notify_created_or_updated(
            movement, statistics.balance
        )
        await self._audit_logger.log_notification(
            "movement", movement.id, dispatch, correlation_id
        )

        if not dispatch.has_refs:
            return movement, dispatch

        refs = {}
        if dispatch.message_ref:
            refs["external_message_ref"] = dispatch.message_ref
        if dispatch.thread_ref:
            refs["external_thread_ref"] = dispatch.thread_ref

        try:
            movement = await self._movements.update_movement(movement.id, refs)
        except StorageError as e:
            # Later verify/delete notifications for this movement will be skipped
            await self._audit_service_error("persistence", e, correlation_id)
        return movement, dispatch

    async def _audit_validation(
        self,
        error: ValidationError,
        actor: UserProfile,
        correlation_id: UUID,
        movement_id: Optional[UUID] = None,
    ) -> None:
        await self._audit_logger.log_validation_failed(
            issues=[
                {"field": i.field, "type": i.issue_type, "message": i.message}
                for i in error.issues
            ],
            actor_id=actor.id,
            correlation_id=correlation_id,
            movement_id=movement_id,
        )

    async def _audit_service_error(
        self,
        service: str,
        error: Exception,
        correlation_id: UUID,
    ) -> None:
        await self._audit_logger.log_external_service_error(
            service=service,
            error_message=str(error),
            correlation_id=correlation_id,
        )


class DashboardFlow:
    """
    Read side: what the dashboard shows.

    Editability is always judged against the whole ledger, not the
    filtered page of movements being displayed.
    """

    def __init__(
        self,
        movement_storage: MovementStorageInterface,
        clock: Callable[[], datetime] = utc_now,
        settings: Optional[AppSettings] = None,
    ):
        self._movements = movement_storage
        self._clock = clock
        self._settings = settings or get_settings().app

    async def get_statistics(self) -> LedgerStatistics:
        try:
            return await self._movements.get_statistics()
        except StorageError as e:
            raise CollaboratorError("persistence", f"Could not load statistics: {e}") from e

    async def load_dashboard(
        self,
        kind: Optional[MovementKind] = None,
        now: Optional[datetime] = None,
    ) -> DashboardSnapshot:
        """
        Statistics, the most recent movements (optionally of one kind)
        and the editability of each of them at `now`.
        """
        now = now or self._clock()
        statistics = await self.get_statistics()

        try:
            latest = await self._movements.list_movements(limit=1)
            movements = await self._movements.list_movements(
                kind=kind,
                limit=self._settings.recent_movements_limit,
            )
        except StorageError as e:
            raise CollaboratorError("persistence", f"Could not load movements: {e}") from e

        # The ledger-wide latest plus the candidate is enough to decide recency
        editability = {
            movement.id: evaluate_editability(
                movement,
                [movement, *latest],
                now,
                self._settings.edit_window_minutes,
            )
            for movement in movements
        }

        return DashboardSnapshot(
            statistics=statistics,
            movements=movements,
            editability=editability,
            kind_filter=kind,
        )

    async def build_report(
        self,
        kind: Optional[MovementKind] = None,
        since: Optional[date] = None,
        until: Optional[date] = None,
        now: Optional[datetime] = None,
    ) -> MovementReport:
        """
        Movements of a period, newest first, with their totals.

        `since` and `until` are inclusive and compared with the date the
        movement occurred on (UTC). Either may be left open.

        Raises:
            ValidationError: If `since` is after `until`
            CollaboratorError: If movements can't be loaded
        """
        if since and until and since > until:
            raise ValidationError([ValidationIssue(
                field="period",
                issue_type="invalid_value",
                message="The start date must not be after the end date",
            )])

        try:
            movements = await self._movements.list_movements(kind=kind)
        except StorageError as e:
            raise CollaboratorError("persistence", f"Could not load movements: {e}") from e

        movements = [
            m for m in movements
            if (since is None or m.occurred_at.date() >= since)
            and (until is None or m.occurred_at.date() <= until)
        ]

        return MovementReport(
            generated_at=now or self._clock(),
            kind_filter=kind,
            since=since,
            until=until,
            movements=movements,
            statistics=LedgerStatistics.from_movements(movements),
        )


def create_app_components(
    use_storage: bool = True,
) -> tuple[MovementFlow, DashboardFlow, Optional[GoogleSheetsClient]]:
    """
    Factory function to create all application components.

    Args:
        use_storage: Whether to initialize Google Sheets storage.
                    Set to False to run on in-memory storage.

    Each external service is optional: whatever is not configured is
    replaced by in-memory storage (persistence) or left out (receipts,
    notifications).

    Returns:
        (movement_flow, dashboard_flow, sheets_client)
    """
    settings = get_settings()
    app_settings = settings.app

    sheets_client = None
    movement_storage: MovementStorageInterface
    user_storage: UserStorageInterface
    audit_logger = AuditLogger()  # Local-only logging

    if use_storage:
        try:
            sheets_client = GoogleSheetsClient()
            sheets_client.connect()
            movement_storage = GoogleSheetsMovementStorage(sheets_client)
            user_storage = GoogleSheetsUserStorage(sheets_client)
            audit_logger = AuditLogger(GoogleSheetsAuditStorage(sheets_client))
        except Exception as e:
            logger.warning("storage_not_configured", error=str(e))
            sheets_client = None

    if sheets_client is None:
        movement_storage = InMemoryMovementStorage()
        user_storage = InMemoryUserStorage()
        if app_settings.bootstrap_admin_email:
            user_storage.add(UserProfile(
                email=app_settings.bootstrap_admin_email,
                name="Administrator",
                role=UserRole.ADMIN,
            ))

    receipt_storage = None
    try:
        receipt_storage = CloudinaryReceiptStorage()
    except Exception as e:
        logger.warning("receipt_storage_not_configured", error=str(e))

    notifier = None
    try:
        notifier = WebhookNotifier()
    except Exception as e:
        logger.warning("webhooks_not_configured", error=str(e))

    movement_flow = MovementFlow(
        movement_storage=movement_storage,
        user_storage=user_storage,
        receipt_storage=receipt_storage,
        notifier=notifier,
        audit_logger=audit_logger,
        settings=app_settings,
    )
    dashboard_flow = DashboardFlow(
        movement_storage=movement_storage,
        settings=app_settings,
    )

    return movement_flow, dashboard_flow, sheets_client
