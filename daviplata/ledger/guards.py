"""
Privilege and verification rules.

All functions here are pure: they look at an actor and a movement and
either return a decision or raise AuthorizationError.
"""

from daviplata.ledger.errors import AuthorizationError
from daviplata.models.movement import (
    Movement,
    MovementKind,
    UserProfile,
    VerificationState,
)


def initial_verification_state(actor: UserProfile) -> VerificationState:
    """Admins self-verify on creation; everyone else starts PENDING."""
    if actor.is_privileged:
        return VerificationState.VERIFIED
    return VerificationState.PENDING


def ensure_can_record(actor: UserProfile, kind: MovementKind) -> None:
    """Only admins may record expenses."""
    if kind == MovementKind.EXPENSE and not actor.is_privileged:
        raise AuthorizationError("Only administrators can record expenses")


def ensure_can_edit(actor: UserProfile, movement: Movement) -> None:
    """A movement can only be edited by the profile that recorded it."""
    if movement.owner_id != actor.id:
        raise AuthorizationError("Only the creator of a movement can edit it")


def verify(movement: Movement, actor: UserProfile) -> tuple[Movement, bool]:
    """
    Apply the PENDING -> VERIFIED transition.

    Returns:
        (movement, transitioned). When the movement is already VERIFIED the
        same instance comes back with transitioned=False.

    Raises:
        AuthorizationError: If the actor is not an admin
    """
    if not actor.is_privileged:
        raise AuthorizationError("Only administrators can verify movements")

    if movement.verification_state == VerificationState.VERIFIED:
        return movement, False

    return movement.model_copy(
        update={"verification_state": VerificationState.VERIFIED}
    ), True
