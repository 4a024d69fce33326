"""Shared fixtures: profiles, a fixed clock, movement factory, test doubles."""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Optional

import pytest

from daviplata.audit import AuditLogger
from daviplata.config import AppSettings
from daviplata.models.movement import (
    Movement,
    MovementKind,
    NotificationDispatch,
    UserProfile,
    UserRole,
)
from daviplata.services.image import ReceiptStorageInterface
from daviplata.services.notifications import MovementNotifier
from daviplata.services.storage import (
    InMemoryAuditStorage,
    InMemoryMovementStorage,
    InMemoryUserStorage,
)

BASE_TIME = datetime(2026, 3, 2, 15, 0, tzinfo=timezone.utc)
THREAD_JID = "593962248046@s.whatsapp.net"


class RecordingNotifier(MovementNotifier):
    """Notifier double that records every call in order."""

    def __init__(
        self,
        message_ref: Optional[str] = "wamid-1",
        thread_ref: Optional[str] = THREAD_JID,
        fail: bool = False,
        log: Optional[list] = None,
    ):
        self.message_ref = message_ref
        self.thread_ref = thread_ref
        self.fail = fail
        self.calls: list[tuple[str, Movement]] = []
        self.balances: list[Decimal] = []
        self.log = log if log is not None else []

    @property
    def channels(self) -> list[str]:
        return [channel for channel, _ in self.calls]

    def _record(self, channel: str, movement: Movement) -> NotificationDispatch:
        self.calls.append((channel, movement))
        self.log.append(channel)
        if self.fail:
            return NotificationDispatch(error="webhook unreachable")
        return NotificationDispatch(delivered=True)

    async def notify_created_or_updated(self, movement, balance):
        self.balances.append(balance)
        dispatch = self._record("movement", movement)
        if dispatch.delivered:
            dispatch = dispatch.model_copy(update={
                "message_ref": self.message_ref,
                "thread_ref": self.thread_ref,
            })
        return dispatch

    async def notify_verified(self, movement):
        return self._record("verify", movement)

    async def notify_retracted(self, movement):
        return self._record("delete", movement)


class FakeReceiptStorage(ReceiptStorageInterface):
    """Receipt store double keeping uploads in a dict."""

    def __init__(self, error: Optional[Exception] = None, folder: Optional[str] = None):
        self.error = error
        self._folder = folder
        self.uploads: dict[str, tuple[bytes, str]] = {}

    @property
    def folder(self) -> str:
        return self._folder or super().folder

    async def store(self, data, key, content_type):
        if self.error:
            raise self.error
        self.uploads[key] = (data, content_type)
        return f"https://res.example.com/{key}"


@pytest.fixture
def now() -> datetime:
    return BASE_TIME


@pytest.fixture
def app_settings() -> AppSettings:
    return AppSettings()


@pytest.fixture
def admin() -> UserProfile:
    return UserProfile(email="ana@daviplata.test", name="Ana Torres", role=UserRole.ADMIN)


@pytest.fixture
def member() -> UserProfile:
    return UserProfile(email="pedro@daviplata.test", name="Pedro Sanches", role=UserRole.USER)


@pytest.fixture
def make_movement(member):
    """Build a movement created `minutes_ago` before BASE_TIME."""
    def _make(
        minutes_ago: float = 0,
        owner: Optional[UserProfile] = None,
        sequence: int = 0,
        kind: MovementKind = MovementKind.INCOME,
        amount: str = "10.00",
        **fields,
    ) -> Movement:
        owner = owner or member
        created_at = BASE_TIME - timedelta(minutes=minutes_ago)
        return Movement(
            owner_id=owner.id,
            owner_name=owner.name,
            owner_email=owner.email,
            kind=kind,
            amount=Decimal(amount),
            reason=fields.pop("reason", "Cuota mensual"),
            sequence=sequence,
            occurred_at=created_at,
            created_at=created_at,
            updated_at=created_at,
            **fields,
        )
    return _make


@pytest.fixture
def movement_storage() -> InMemoryMovementStorage:
    return InMemoryMovementStorage()


@pytest.fixture
def user_storage(admin, member) -> InMemoryUserStorage:
    return InMemoryUserStorage([admin, member])


@pytest.fixture
def audit_storage() -> InMemoryAuditStorage:
    return InMemoryAuditStorage()


@pytest.fixture
def audit_logger(audit_storage) -> AuditLogger:
    return AuditLogger(audit_storage)


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def receipt_storage() -> FakeReceiptStorage:
    return FakeReceiptStorage()


@pytest.fixture
def notifier_factory():
    """RecordingNotifier class, for tests that need a configured instance."""
    return RecordingNotifier


@pytest.fixture
def receipt_storage_factory():
    return FakeReceiptStorage
