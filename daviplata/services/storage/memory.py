"""
In-memory storage.

Used when Google Sheets is not configured (local runs, demos) and as the
storage double in tests. Same semantics as the Sheets backend: sequence
numbers on insert, newest-first listing, immutable fields rejected.
"""

from typing import Any, Iterable, Optional
from uuid import UUID

from daviplata.ledger.editability import sort_newest_first
from daviplata.models.audit import AuditEvent
from daviplata.models.movement import Movement, MovementKind, UserProfile
from daviplata.services.storage.interface import (
    AuditStorageInterface,
    MovementStorageInterface,
    RowNotFoundError,
    StorageError,
    UserStorageInterface,
    apply_update,
)


class InMemoryMovementStorage(MovementStorageInterface):
    """Movements kept in a dict, keyed by id."""

    def __init__(self, movements: Iterable[Movement] = ()):
        self._movements: dict[UUID, Movement] = {}
        self._last_sequence = 0
        for movement in movements:
            self._movements[movement.id] = movement
            self._last_sequence = max(self._last_sequence, movement.sequence)

    async def insert_movement(self, movement: Movement) -> Movement:
        if movement.id in self._movements:
            raise StorageError(f"Movement already exists: {movement.id}")
        self._last_sequence += 1
        stored = movement.model_copy(update={"sequence": self._last_sequence})
        self._movements[stored.id] = stored
        return stored

    async def get_movement_by_id(self, movement_id: UUID) -> Optional[Movement]:
        return self._movements.get(movement_id)

    async def update_movement(
        self,
        movement_id: UUID,
        fields: dict[str, Any],
    ) -> Movement:
        current = self._movements.get(movement_id)
        if current is None:
            raise RowNotFoundError(f"Movement not found: {movement_id}")
        updated = apply_update(current, fields)
        self._movements[movement_id] = updated
        return updated

    async def list_movements(
        self,
        kind: Optional[MovementKind] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> list[Movement]:
        movements = [
            m for m in self._movements.values() if kind is None or m.kind == kind
        ]
        movements = sort_newest_first(movements)
        end = None if limit is None else offset + limit
        return movements[offset:end]


class InMemoryUserStorage(UserStorageInterface):
    """Profiles kept in a list."""

    def __init__(self, users: Iterable[UserProfile] = ()):
        self._users = list(users)

    def add(self, user: UserProfile) -> None:
        self._users.append(user)

    async def get_user_by_id(self, user_id: UUID) -> Optional[UserProfile]:
        return next((u for u in self._users if u.id == user_id), None)

    async def get_user_by_email(self, email: str) -> Optional[UserProfile]:
        wanted = email.strip().lower()
        return next((u for u in self._users if u.email.lower() == wanted), None)


class InMemoryAuditStorage(AuditStorageInterface):
    """Append-only list of audit events."""

    def __init__(self):
        self.events: list[AuditEvent] = []

    async def append_event(self, event: AuditEvent) -> bool:
        self.events.append(event)
        return True

    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> list[AuditEvent]:
        events = [
            e for e in self.events
            if e.entity_type == entity_type and e.entity_id == entity_id
        ]
        return sorted(events, key=lambda e: e.timestamp)
