"""
Notification contract.

Notifications are one-way signals to the messaging automation. They are
best-effort: implementations must never raise to the caller, and report
what happened through NotificationDispatch instead.
"""

from abc import ABC, abstractmethod
from decimal import Decimal

from daviplata.models.movement import Movement, NotificationDispatch


class MovementNotifier(ABC):
    """Outbound notifications about movement events."""

    @abstractmethod
    async def notify_created_or_updated(
        self,
        movement: Movement,
        balance: Decimal,
    ) -> NotificationDispatch:
        """
        Announce a new or edited movement.

        The dispatch may carry correlation refs for later verify/retract
        notifications about the same message.
        """
        pass

    @abstractmethod
    async def notify_verified(self, movement: Movement) -> NotificationDispatch:
        """Announce verification. Skipped unless the movement has both refs."""
        pass

    @abstractmethod
    async def notify_retracted(self, movement: Movement) -> NotificationDispatch:
        """Retract the message sent for the movement's previous state."""
        pass
