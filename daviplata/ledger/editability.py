"""
Edit window policy.

A movement can be amended only while it is the most recently created
movement in the whole ledger and no more than `window_minutes` have passed
since `created_at`. The check is strict: at exactly the window boundary the
movement is still editable with 0 minutes remaining.
"""

import math
from datetime import datetime
from typing import Optional, Sequence

from daviplata.models.movement import EditabilityResult, Movement

EDIT_WINDOW_MINUTES = 30

NOT_FOUND_REASON = "Movement not found"
NOT_LATEST_REASON = "Only the most recent movement may be edited"


def _recency_key(movement: Movement) -> tuple:
    return (movement.created_at, movement.sequence)


def latest_movement(movements: Sequence[Movement]) -> Optional[Movement]:
    """
    The most recently created movement.

    Ties on created_at go to the higher insertion sequence; if those tie
    too, the earliest one in `movements` wins.
    """
    if not movements:
        return None
    return max(movements, key=_recency_key)


def sort_newest_first(movements: Sequence[Movement]) -> list[Movement]:
    return sorted(movements, key=_recency_key, reverse=True)


def _remaining_reason(remaining: int) -> str:
    unit = "minute" if remaining == 1 else "minutes"
    return f"You can edit for {remaining} more {unit}"


def evaluate_editability(
    movement: Optional[Movement],
    movements: Sequence[Movement],
    now: datetime,
    window_minutes: int = EDIT_WINDOW_MINUTES,
) -> EditabilityResult:
    """
    Decide whether `movement` can be edited at `now`.

    Args:
        movement: The candidate movement
        movements: Every known movement, the candidate included
        now: Current time (aware)
        window_minutes: Length of the edit window

    Returns:
        EditabilityResult with the decision, a human-readable reason and,
        when editable, the whole minutes left.
    """
    if movement is None or not movements:
        return EditabilityResult(editable=False, reason=NOT_FOUND_REASON)

    if not any(peer.id == movement.id for peer in movements):
        return EditabilityResult(editable=False, reason=NOT_FOUND_REASON)

    latest = latest_movement(movements)
    if latest.id != movement.id:
        return EditabilityResult(editable=False, reason=NOT_LATEST_REASON)

    # A created_at slightly ahead of `now` (clock skew) counts as just created
    elapsed_minutes = max(0.0, (now - movement.created_at).total_seconds() / 60)

    if elapsed_minutes > window_minutes:
        return EditabilityResult(
            editable=False,
            reason=(
                f"Edit window expired: more than {window_minutes} minutes "
                "have passed since creation"
            ),
        )

    remaining = math.ceil(window_minutes - elapsed_minutes)
    return EditabilityResult(
        editable=True,
        reason=_remaining_reason(remaining),
        remaining_minutes=remaining,
    )
