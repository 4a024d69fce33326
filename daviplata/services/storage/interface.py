"""
Abstract Storage Interface

DESIGN DECISION: We define an abstract interface for storage operations.
This allows us to:
1. Swap Google Sheets for a real database later
2. Use in-memory storage for testing
3. Keep ledger logic decoupled from storage implementation

The interface is intentionally simple - we're not building a full ORM.
Just the operations the ledger needs. There is deliberately no delete:
movements are removed only by maintenance work outside the application.
"""

from abc import ABC, abstractmethod
from typing import Any, Optional
from uuid import UUID

from daviplata.models.audit import AuditEvent
from daviplata.models.movement import (
    EDITABLE_FIELDS,
    SYSTEM_UPDATABLE_FIELDS,
    LedgerStatistics,
    Movement,
    MovementKind,
    UserProfile,
    utc_now,
)

UPDATABLE_FIELDS = EDITABLE_FIELDS | SYSTEM_UPDATABLE_FIELDS


class MovementStorageInterface(ABC):
    """
    Abstract interface for movement storage operations.

    Any storage implementation (Google Sheets, PostgreSQL, etc.)
    must implement these methods.
    """

    @abstractmethod
    async def insert_movement(self, movement: Movement) -> Movement:
        """
        Insert a new movement.

        Storage assigns the insertion sequence number.

        Returns:
            The stored movement, with its sequence set

        Raises:
            StorageError: If the insert fails
        """
        pass

    @abstractmethod
    async def get_movement_by_id(self, movement_id: UUID) -> Optional[Movement]:
        """
        Retrieve a movement by its ID.

        Returns:
            The movement if found, None otherwise
        """
        pass

    @abstractmethod
    async def update_movement(
        self,
        movement_id: UUID,
        fields: dict[str, Any],
    ) -> Movement:
        """
        Update some fields of an existing movement.

        Args:
            movement_id: The movement to update
            fields: New values; keys must be in UPDATABLE_FIELDS

        Returns:
            The movement as stored after the update

        Raises:
            StorageError: If the update fails or a field is not updatable
            RowNotFoundError: If the movement doesn't exist
        """
        pass

    @abstractmethod
    async def list_movements(
        self,
        kind: Optional[MovementKind] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> list[Movement]:
        """
        List movements, newest first.

        Args:
            kind: Only movements of this kind
            limit: Maximum number of results (None for all)
            offset: Number of results to skip
        """
        pass

    async def get_statistics(self) -> LedgerStatistics:
        """
        Aggregate totals over the whole ledger.

        Backends with server-side aggregation should override this.
        """
        return LedgerStatistics.from_movements(await self.list_movements())


class UserStorageInterface(ABC):
    """Read access to user profiles."""

    @abstractmethod
    async def get_user_by_id(self, user_id: UUID) -> Optional[UserProfile]:
        pass

    @abstractmethod
    async def get_user_by_email(self, email: str) -> Optional[UserProfile]:
        pass


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> list[AuditEvent]:
        """
        Get all events for a specific entity, in chronological order.
        """
        pass


def apply_update(movement: Movement, fields: dict[str, Any]) -> Movement:
    """
    Return `movement` with `fields` applied and re-validated.

    Raises:
        StorageError: If a field is immutable or a value is invalid
    """
    illegal = set(fields) - UPDATABLE_FIELDS
    if illegal:
        raise StorageError(
            f"Fields cannot be updated: {', '.join(sorted(illegal))}"
        )

    data = movement.model_dump()
    data.update(fields)
    data["updated_at"] = utc_now()
    try:
        return Movement.model_validate(data)
    except ValueError as e:
        raise StorageError(f"Invalid update for movement {movement.id}: {e}") from e


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class RowNotFoundError(StorageError):
    """Entity not found in storage."""
    pass


class BackendConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass
