"""
Integration tests for the movement flows.

External services are replaced by in-memory storage, a recording
notifier and a fake receipt store.
"""

from datetime import date, timedelta
from decimal import Decimal
from uuid import uuid4

import pytest

from daviplata.audit import AuditLogger
from daviplata.config import AppSettings, get_settings
from daviplata.ledger import (
    AuthorizationError,
    CollaboratorError,
    NotEditableError,
    NotFoundError,
    ValidationError,
)
from daviplata.models.audit import AuditEventType
from daviplata.models.movement import MovementKind, UserRole, VerificationState
from daviplata.orchestrator import DashboardFlow, MovementFlow, create_app_components
from daviplata.services.image import ReceiptUploadError
from daviplata.services.storage import (
    InMemoryAuditStorage,
    InMemoryMovementStorage,
    StorageError,
)

JID = "593962248046@s.whatsapp.net"


class TrackingStorage(InMemoryMovementStorage):
    """Writes every update into a shared log, to check call ordering."""

    def __init__(self, movements=(), log=None):
        super().__init__(movements)
        self.log = log if log is not None else []

    async def update_movement(self, movement_id, fields):
        self.log.append("update:" + ",".join(sorted(fields)))
        return await super().update_movement(movement_id, fields)


class BrokenAuditStorage(InMemoryAuditStorage):
    async def get_events_by_entity(self, entity_type, entity_id):
        raise StorageError("audit sheet unavailable")


class BrokenStorage(InMemoryMovementStorage):
    """Reads work, writes fail."""

    async def insert_movement(self, movement):
        raise StorageError("sheet unavailable")

    async def update_movement(self, movement_id, fields):
        raise StorageError("sheet unavailable")


@pytest.fixture
def build_flow(user_storage, receipt_storage, notifier, audit_logger, app_settings, now):
    """MovementFlow over the given storage with the shared doubles."""
    def _build(storage, **overrides):
        options = dict(
            user_storage=user_storage,
            receipt_storage=receipt_storage,
            notifier=notifier,
            audit_logger=audit_logger,
            clock=lambda: now,
            settings=app_settings,
        )
        options.update(overrides)
        return MovementFlow(movement_storage=storage, **options)
    return _build


@pytest.fixture
def flow(build_flow, movement_storage) -> MovementFlow:
    return build_flow(movement_storage)


def event_types(audit_storage) -> list[AuditEventType]:
    return [event.event_type for event in audit_storage.events]


class TestCreateMovement:

    @pytest.mark.asyncio
    async def test_member_income_starts_pending(self, flow, member, movement_storage, notifier):
        outcome = await flow.create_movement(member, "INGRESO", "10", "Cuota de marzo")

        movement = outcome.movement
        assert movement.verification_state == VerificationState.PENDING
        assert movement.amount == Decimal("10.00")
        assert movement.owner_id == member.id
        assert movement.sequence == 1
        assert notifier.channels == ["movement"]
        assert notifier.balances == [Decimal("10.00")]

    @pytest.mark.asyncio
    async def test_admin_movement_starts_verified(self, flow, admin):
        outcome = await flow.create_movement(admin, MovementKind.EXPENSE, "4.50", "Papelería")
        assert outcome.movement.verification_state == VerificationState.VERIFIED

    @pytest.mark.asyncio
    async def test_refs_from_notification_are_persisted(self, flow, member, movement_storage):
        outcome = await flow.create_movement(member, "INGRESO", "10", "Cuota")

        stored = await movement_storage.get_movement_by_id(outcome.movement.id)
        assert stored.external_message_ref == "wamid-1"
        assert stored.external_thread_ref == JID
        assert outcome.movement.has_correlation_refs

    @pytest.mark.asyncio
    async def test_member_cannot_record_expense(
        self, flow, member, movement_storage, notifier, audit_storage
    ):
        with pytest.raises(AuthorizationError):
            await flow.create_movement(member, "EGRESO", "10", "Compra")

        assert await movement_storage.list_movements() == []
        assert notifier.calls == []
        assert AuditEventType.AUTHORIZATION_DENIED in event_types(audit_storage)

    @pytest.mark.asyncio
    async def test_invalid_input_stores_nothing(self, flow, member, movement_storage, audit_storage):
        with pytest.raises(ValidationError):
            await flow.create_movement(member, "INGRESO", "-3", "")

        assert await movement_storage.list_movements() == []
        assert AuditEventType.VALIDATION_FAILED in event_types(audit_storage)

    @pytest.mark.asyncio
    async def test_receipt_is_uploaded(self, flow, member, receipt_storage, now):
        outcome = await flow.create_movement(
            member, "INGRESO", "10", "Cuota",
            receipt=b"\x89PNG small receipt",
            receipt_filename="recibo.png",
            receipt_mime_type="image/png",
        )

        [key] = receipt_storage.uploads
        assert key.startswith(f"daviplata/comprobante_{int(now.timestamp() * 1000)}_")
        assert key.endswith(".png")
        assert outcome.movement.receipt_url == f"https://res.example.com/{key}"

    @pytest.mark.asyncio
    async def test_receipt_key_uses_store_folder(
        self, build_flow, member, movement_storage, receipt_storage_factory
    ):
        receipts = receipt_storage_factory(folder="tesoreria/2026")
        flow = build_flow(movement_storage, receipt_storage=receipts)

        await flow.create_movement(
            member, "INGRESO", "10", "Cuota",
            receipt=b"%PDF-1.4 receipt",
            receipt_filename="recibo.pdf",
            receipt_mime_type="application/pdf",
        )

        [key] = receipts.uploads
        assert key.startswith("tesoreria/2026/comprobante_")
        assert key.endswith(".pdf")

    @pytest.mark.asyncio
    async def test_receipt_upload_failure_blocks_creation(
        self, build_flow, member, movement_storage, receipt_storage_factory
    ):
        flow = build_flow(
            movement_storage,
            receipt_storage=receipt_storage_factory(error=ReceiptUploadError("quota exceeded")),
        )

        with pytest.raises(CollaboratorError) as exc_info:
            await flow.create_movement(
                member, "INGRESO", "10", "Cuota",
                receipt=b"data", receipt_filename="r.jpg", receipt_mime_type="image/jpeg",
            )

        assert exc_info.value.collaborator == "object_storage"
        assert isinstance(exc_info.value.__cause__, ReceiptUploadError)
        assert await movement_storage.list_movements() == []

    @pytest.mark.asyncio
    async def test_receipt_without_receipt_storage(self, build_flow, member, movement_storage):
        flow = build_flow(movement_storage, receipt_storage=None)

        with pytest.raises(CollaboratorError):
            await flow.create_movement(
                member, "INGRESO", "10", "Cuota",
                receipt=b"data", receipt_filename="r.jpg", receipt_mime_type="image/jpeg",
            )

    @pytest.mark.asyncio
    async def test_persistence_failure_is_wrapped(self, build_flow, member, notifier):
        flow = build_flow(BrokenStorage())

        with pytest.raises(CollaboratorError) as exc_info:
            await flow.create_movement(member, "INGRESO", "10", "Cuota")

        assert exc_info.value.collaborator == "persistence"
        assert isinstance(exc_info.value.__cause__, StorageError)
        assert notifier.calls == []

    @pytest.mark.asyncio
    async def test_notification_failure_does_not_block(
        self, build_flow, member, movement_storage, notifier_factory, audit_storage
    ):
        flow = build_flow(movement_storage, notifier=notifier_factory(fail=True))

        outcome = await flow.create_movement(member, "INGRESO", "10", "Cuota")

        assert outcome.notification.failed
        stored = await movement_storage.get_movement_by_id(outcome.movement.id)
        assert stored is not None
        assert stored.has_correlation_refs is False
        assert AuditEventType.NOTIFICATION_FAILED in event_types(audit_storage)

    @pytest.mark.asyncio
    async def test_without_notifier_notification_is_skipped(
        self, build_flow, member, movement_storage
    ):
        flow = build_flow(movement_storage, notifier=None)

        outcome = await flow.create_movement(member, "INGRESO", "10", "Cuota")

        assert outcome.notification_skipped


class TestEditMovement:

    @pytest.mark.asyncio
    async def test_retraction_precedes_update_and_announcement(
        self, build_flow, member, make_movement, notifier_factory, now
    ):
        log = []
        older = make_movement(minutes_ago=40, sequence=1, amount="5.00")
        latest = make_movement(
            minutes_ago=10, sequence=2,
            external_message_ref="wamid-0", external_thread_ref=JID,
        )
        storage = TrackingStorage([older, latest], log=log)
        notifier = notifier_factory(message_ref="wamid-2", log=log)
        flow = build_flow(storage, notifier=notifier)

        outcome = await flow.edit_movement(member, latest.id, amount="12.00")

        assert log == [
            "delete",
            "update:amount",
            "movement",
            "update:external_message_ref,external_thread_ref",
        ]
        retracted = notifier.calls[0][1]
        assert retracted.amount == Decimal("10.00")
        assert retracted.external_message_ref == "wamid-0"
        assert outcome.movement.amount == Decimal("12.00")
        assert outcome.movement.external_message_ref == "wamid-2"
        assert notifier.balances == [Decimal("17.00")]

    @pytest.mark.asyncio
    async def test_retraction_failure_does_not_block_edit(
        self, build_flow, member, make_movement, notifier_factory
    ):
        latest = make_movement(
            minutes_ago=5, sequence=1,
            external_message_ref="wamid-0", external_thread_ref=JID,
        )
        storage = InMemoryMovementStorage([latest])
        flow = build_flow(storage, notifier=notifier_factory(fail=True))

        outcome = await flow.edit_movement(member, latest.id, reason="Corregido")

        assert outcome.movement.reason == "Corregido"
        assert (await storage.get_movement_by_id(latest.id)).reason == "Corregido"
        # Failed announcement returns no refs, so the old ones stay
        assert outcome.movement.external_message_ref == "wamid-0"

    @pytest.mark.asyncio
    async def test_no_retraction_without_refs(self, build_flow, member, make_movement, notifier):
        latest = make_movement(minutes_ago=5, sequence=1)
        flow = build_flow(InMemoryMovementStorage([latest]))

        await flow.edit_movement(member, latest.id, amount="3")

        assert notifier.channels == ["movement"]

    @pytest.mark.asyncio
    async def test_not_latest_is_rejected(self, build_flow, member, make_movement, notifier):
        candidate = make_movement(minutes_ago=5, sequence=1)
        newer = make_movement(minutes_ago=1, sequence=2)
        storage = InMemoryMovementStorage([candidate, newer])
        flow = build_flow(storage)

        with pytest.raises(NotEditableError) as exc_info:
            await flow.edit_movement(member, candidate.id, amount="99")

        assert "most recent" in exc_info.value.result.reason
        assert (await storage.get_movement_by_id(candidate.id)).amount == Decimal("10.00")
        assert notifier.calls == []

    @pytest.mark.asyncio
    async def test_expired_window_is_rejected(self, build_flow, member, make_movement, audit_storage):
        latest = make_movement(minutes_ago=31, sequence=1)
        flow = build_flow(InMemoryMovementStorage([latest]))

        with pytest.raises(NotEditableError) as exc_info:
            await flow.edit_movement(member, latest.id, amount="99")

        assert exc_info.value.result.editable is False
        assert AuditEventType.EDIT_REJECTED in event_types(audit_storage)

    @pytest.mark.asyncio
    async def test_explicit_now_overrides_clock(self, build_flow, member, make_movement, now):
        latest = make_movement(minutes_ago=0, sequence=1)
        flow = build_flow(InMemoryMovementStorage([latest]))

        with pytest.raises(NotEditableError):
            await flow.edit_movement(
                member, latest.id, amount="1", now=now + timedelta(minutes=45)
            )

    @pytest.mark.asyncio
    async def test_only_creator_can_edit(self, build_flow, admin, member, make_movement):
        latest = make_movement(minutes_ago=2, sequence=1, owner=member)
        flow = build_flow(InMemoryMovementStorage([latest]))

        with pytest.raises(AuthorizationError):
            await flow.edit_movement(admin, latest.id, amount="1")

    @pytest.mark.asyncio
    async def test_nothing_to_change(self, build_flow, member, make_movement):
        latest = make_movement(minutes_ago=2, sequence=1)
        flow = build_flow(InMemoryMovementStorage([latest]))

        with pytest.raises(ValidationError):
            await flow.edit_movement(member, latest.id)

    @pytest.mark.asyncio
    async def test_missing_movement(self, flow, member):
        with pytest.raises(NotFoundError):
            await flow.edit_movement(member, uuid4(), amount="1")

    @pytest.mark.asyncio
    async def test_update_failure_is_wrapped(self, build_flow, member, make_movement):
        latest = make_movement(minutes_ago=2, sequence=1)
        flow = build_flow(BrokenStorage([latest]))

        with pytest.raises(CollaboratorError) as exc_info:
            await flow.edit_movement(member, latest.id, amount="1")

        assert exc_info.value.collaborator == "persistence"


class TestVerifyMovement:

    @pytest.mark.asyncio
    async def test_verify_is_idempotent_and_notifies_once(
        self, build_flow, admin, make_movement, notifier
    ):
        pending = make_movement(
            minutes_ago=60, sequence=1,
            external_message_ref="wamid-0", external_thread_ref=JID,
        )
        storage = InMemoryMovementStorage([pending])
        flow = build_flow(storage)

        first = await flow.verify_movement(admin, pending.id)
        second = await flow.verify_movement(admin, pending.id)

        assert first.changed is True
        assert first.notification.delivered is True
        assert second.changed is False
        assert second.notification_skipped
        assert first.movement.verification_state == VerificationState.VERIFIED
        assert second.movement.verification_state == VerificationState.VERIFIED
        assert notifier.channels == ["verify"]

    @pytest.mark.asyncio
    async def test_verify_without_refs_skips_notification(
        self, build_flow, admin, make_movement, notifier
    ):
        pending = make_movement(sequence=1)
        storage = InMemoryMovementStorage([pending])
        flow = build_flow(storage)

        outcome = await flow.verify_movement(admin, pending.id)

        assert outcome.movement.verification_state == VerificationState.VERIFIED
        assert outcome.notification_skipped
        assert "skipped" in outcome.message
        assert notifier.calls == []

    @pytest.mark.asyncio
    async def test_verify_changes_only_the_state(self, build_flow, admin, make_movement):
        pending = make_movement(sequence=1, reason="Cuota")
        storage = InMemoryMovementStorage([pending])
        flow = build_flow(storage)

        outcome = await flow.verify_movement(admin, pending.id)

        assert outcome.movement.amount == pending.amount
        assert outcome.movement.reason == pending.reason
        assert outcome.movement.created_at == pending.created_at

    @pytest.mark.asyncio
    async def test_member_cannot_verify(self, build_flow, member, make_movement, notifier):
        pending = make_movement(sequence=1)
        storage = InMemoryMovementStorage([pending])
        flow = build_flow(storage)

        with pytest.raises(AuthorizationError):
            await flow.verify_movement(member, pending.id)

        stored = await storage.get_movement_by_id(pending.id)
        assert stored.verification_state == VerificationState.PENDING
        assert notifier.calls == []

    @pytest.mark.asyncio
    async def test_verify_missing_movement(self, flow, admin):
        with pytest.raises(NotFoundError):
            await flow.verify_movement(admin, uuid4())


class TestQueries:

    @pytest.mark.asyncio
    async def test_resolve_actor(self, flow, member):
        assert await flow.resolve_actor("Pedro@daviplata.test") == member

    @pytest.mark.asyncio
    async def test_resolve_unknown_actor(self, flow):
        with pytest.raises(NotFoundError):
            await flow.resolve_actor("stranger@x.io")

    @pytest.mark.asyncio
    async def test_resolve_without_profile_storage(self, build_flow, movement_storage):
        flow = build_flow(movement_storage, user_storage=None)
        with pytest.raises(CollaboratorError):
            await flow.resolve_actor("pedro@daviplata.test")

    @pytest.mark.asyncio
    async def test_check_editability(self, build_flow, make_movement):
        latest = make_movement(minutes_ago=10, sequence=1)
        flow = build_flow(InMemoryMovementStorage([latest]))

        result = await flow.check_editability(latest.id)

        assert result.editable is True
        assert result.remaining_minutes == 20

    @pytest.mark.asyncio
    async def test_history_storage_failure_is_wrapped(self, build_flow, movement_storage):
        flow = build_flow(movement_storage, audit_logger=AuditLogger(BrokenAuditStorage()))

        with pytest.raises(CollaboratorError) as exc_info:
            await flow.get_history(uuid4())

        assert exc_info.value.collaborator == "audit"

    @pytest.mark.asyncio
    async def test_history(self, flow, member):
        outcome = await flow.create_movement(member, "INGRESO", "10", "Cuota")

        history = await flow.get_history(outcome.movement.id)

        types = [event.event_type for event in history]
        assert types[0] == AuditEventType.MOVEMENT_CREATED
        assert AuditEventType.NOTIFICATION_SENT in types


class TestDashboard:

    @pytest.fixture
    def ledger(self, make_movement):
        return [
            make_movement(minutes_ago=90, sequence=1, amount="100.00"),
            make_movement(minutes_ago=20, sequence=2, amount="30.00", kind=MovementKind.EXPENSE),
            make_movement(minutes_ago=5, sequence=3, amount="7.50"),
        ]

    @pytest.mark.asyncio
    async def test_snapshot(self, ledger, app_settings, now):
        dashboard = DashboardFlow(InMemoryMovementStorage(ledger), settings=app_settings)

        snapshot = await dashboard.load_dashboard(now=now)

        assert snapshot.statistics.balance == Decimal("77.50")
        assert [m.sequence for m in snapshot.movements] == [3, 2, 1]
        assert snapshot.editability_for(ledger[2].id).editable is True
        assert snapshot.editability_for(ledger[2].id).remaining_minutes == 25
        assert snapshot.editability_for(ledger[1].id).editable is False

    @pytest.mark.asyncio
    async def test_filter_keeps_ledger_wide_recency(self, ledger, app_settings, now):
        dashboard = DashboardFlow(InMemoryMovementStorage(ledger), settings=app_settings)

        snapshot = await dashboard.load_dashboard(kind=MovementKind.EXPENSE, now=now)

        [expense] = snapshot.movements
        assert expense.kind == MovementKind.EXPENSE
        assert snapshot.kind_filter == MovementKind.EXPENSE
        assert "most recent" in snapshot.editability_for(expense.id).reason
        assert snapshot.statistics.total_count == 3

    @pytest.mark.asyncio
    async def test_recent_limit(self, ledger, now):
        settings = AppSettings(recent_movements_limit=2)
        dashboard = DashboardFlow(InMemoryMovementStorage(ledger), settings=settings)

        snapshot = await dashboard.load_dashboard(now=now)

        assert len(snapshot.movements) == 2

    @pytest.mark.asyncio
    async def test_empty_ledger(self, app_settings, now):
        dashboard = DashboardFlow(InMemoryMovementStorage(), settings=app_settings)

        snapshot = await dashboard.load_dashboard(now=now)

        assert snapshot.movements == []
        assert snapshot.statistics.balance == Decimal("0")


class TestReport:

    DAY = 24 * 60

    @pytest.fixture
    def ledger(self, make_movement):
        return [
            make_movement(minutes_ago=3 * self.DAY, sequence=1, amount="100.00"),
            make_movement(minutes_ago=2 * self.DAY, sequence=2, amount="40.00", kind=MovementKind.EXPENSE),
            make_movement(minutes_ago=1 * self.DAY, sequence=3, amount="25.00"),
            make_movement(minutes_ago=10, sequence=4, amount="5.00", kind=MovementKind.EXPENSE),
        ]

    @pytest.fixture
    def dashboard(self, ledger, app_settings):
        return DashboardFlow(InMemoryMovementStorage(ledger), settings=app_settings)

    @pytest.mark.asyncio
    async def test_whole_ledger(self, dashboard, now):
        report = await dashboard.build_report(now=now)

        assert [m.sequence for m in report.movements] == [4, 3, 2, 1]
        assert report.statistics.balance == Decimal("80.00")
        assert report.generated_at == now
        assert not report.is_empty

    @pytest.mark.asyncio
    async def test_period_is_inclusive(self, dashboard, now):
        # BASE_TIME is 2026-03-02, so the ledger spans 02-27 to 03-02
        report = await dashboard.build_report(
            since=date(2026, 2, 28),
            until=date(2026, 3, 1),
            now=now,
        )

        assert [m.sequence for m in report.movements] == [3, 2]
        assert report.since == date(2026, 2, 28)
        assert report.until == date(2026, 3, 1)

    @pytest.mark.asyncio
    async def test_totals_cover_only_reported_movements(self, dashboard, now):
        report = await dashboard.build_report(kind=MovementKind.EXPENSE, now=now)

        assert [m.sequence for m in report.movements] == [4, 2]
        assert report.kind_filter == MovementKind.EXPENSE
        assert report.statistics.income_total == Decimal("0")
        assert report.statistics.expense_total == Decimal("45.00")
        assert report.statistics.balance == Decimal("-45.00")

    @pytest.mark.asyncio
    async def test_open_ended_period(self, dashboard, now):
        report = await dashboard.build_report(since=date(2026, 3, 1), now=now)

        assert [m.sequence for m in report.movements] == [4, 3]

    @pytest.mark.asyncio
    async def test_empty_period(self, dashboard, now):
        report = await dashboard.build_report(until=date(2026, 1, 31), now=now)

        assert report.is_empty
        assert report.statistics.total_count == 0

    @pytest.mark.asyncio
    async def test_reversed_period_is_rejected(self, dashboard, now):
        with pytest.raises(ValidationError) as exc_info:
            await dashboard.build_report(
                since=date(2026, 3, 2),
                until=date(2026, 3, 1),
                now=now,
            )

        [issue] = exc_info.value.issues
        assert issue.field == "period"

    @pytest.mark.asyncio
    async def test_storage_failure_is_wrapped(self, app_settings, now):
        class UnreadableStorage(InMemoryMovementStorage):
            async def list_movements(self, *args, **kwargs):
                raise StorageError("sheet unavailable")

        dashboard = DashboardFlow(UnreadableStorage(), settings=app_settings)

        with pytest.raises(CollaboratorError):
            await dashboard.build_report(now=now)


class TestAppComponents:

    @pytest.fixture(autouse=True)
    def local_environment(self, monkeypatch):
        for name in (
            "CLOUDINARY_CLOUD_NAME",
            "CLOUDINARY_API_KEY",
            "CLOUDINARY_API_SECRET",
            "WEBHOOK_MOVEMENT_URL",
            "WEBHOOK_VERIFY_URL",
            "WEBHOOK_DELETE_URL",
        ):
            monkeypatch.delenv(name, raising=False)
        monkeypatch.setenv("BOOTSTRAP_ADMIN_EMAIL", "root@daviplata.test")
        get_settings.cache_clear()
        yield
        get_settings.cache_clear()

    @pytest.mark.asyncio
    async def test_falls_back_to_memory(self):
        movement_flow, dashboard_flow, sheets_client = create_app_components(use_storage=False)

        assert sheets_client is None
        assert isinstance(dashboard_flow, DashboardFlow)

        admin = await movement_flow.resolve_actor("root@daviplata.test")
        assert admin.role == UserRole.ADMIN

        outcome = await movement_flow.create_movement(admin, "EGRESO", "8", "Gasolina")
        assert outcome.notification_skipped
        assert (await dashboard_flow.get_statistics()).balance == Decimal("-8.00")
