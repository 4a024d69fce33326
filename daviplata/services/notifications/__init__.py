"""Outbound notification services package."""

from daviplata.services.notifications.interface import MovementNotifier
from daviplata.services.notifications.webhooks import (
    WebhookNotifier,
    build_movement_payload,
    build_retraction_payload,
    build_verification_payload,
    parse_correlation_refs,
    phone_from_jid,
)

__all__ = [
    "MovementNotifier",
    "WebhookNotifier",
    "build_movement_payload",
    "build_retraction_payload",
    "build_verification_payload",
    "parse_correlation_refs",
    "phone_from_jid",
]
