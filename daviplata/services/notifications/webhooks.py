"""
Webhook notifications.

Three endpoints of the messaging automation receive form-encoded posts:
- movement: a movement was recorded or edited; may answer with JSON
  {"id": <message id>, "remoteJid": <chat id>} to correlate later posts
- verify: an admin verified a movement; addressed to "+<phone>"
- delete: the message for a superseded version should be removed;
  addressed to the full chat id

Field names are the automation's, not ours, and must not change.
"""

from decimal import Decimal
from typing import Any, Optional

import httpx
import structlog

from daviplata.config import WebhookSettings, get_settings
from daviplata.models.movement import Movement, NotificationDispatch
from daviplata.services.notifications.interface import MovementNotifier

logger = structlog.get_logger(__name__)

NO_REFS_REASON = "movement has no message id or chat id"


def phone_from_jid(jid: str) -> str:
    """593962248046@s.whatsapp.net -> +593962248046"""
    return f"+{jid.split('@')[0]}"


def build_movement_payload(movement: Movement, balance: Decimal) -> dict[str, str]:
    payload = {
        "id": str(movement.id),
        "tipo": movement.kind.value,
        "monto": str(movement.amount),
        "saldo_despues": str(balance),
        "motivo": movement.reason,
        "url": movement.receipt_url or "",
        "fecha": movement.occurred_at.isoformat(),
        "usuario_nombre": movement.owner_name or "",
        "usuario_email": movement.owner_email or "",
    }
    if movement.external_thread_ref:
        payload["remote_jid"] = movement.external_thread_ref
    return payload


def build_verification_payload(movement: Movement) -> dict[str, str]:
    return {
        "idmessage": movement.external_message_ref or "",
        "numero_destinatario": phone_from_jid(movement.external_thread_ref or ""),
        "id_movimiento": str(movement.id),
        "monto": str(movement.amount),
        "tipo": movement.kind.value,
    }


def build_retraction_payload(movement: Movement) -> dict[str, str]:
    return {
        "idmessage": movement.external_message_ref or "",
        "numero_destinatario": movement.external_thread_ref or "",
        "id_movimiento": str(movement.id),
        "monto": str(movement.amount),
        "tipo": movement.kind.value,
    }


def parse_correlation_refs(response: httpx.Response) -> tuple[Optional[str], Optional[str]]:
    """Pull (message id, chat id) out of a movement webhook response, if any."""
    try:
        body: Any = response.json()
    except ValueError:
        return None, None

    if isinstance(body, list) and body:
        body = body[0]
    if not isinstance(body, dict):
        return None, None

    message_ref = body.get("id")
    thread_ref = body.get("remoteJid")
    return (
        str(message_ref) if message_ref else None,
        str(thread_ref) if thread_ref else None,
    )


class WebhookNotifier(MovementNotifier):
    """
    Posts movement events to the automation webhooks.

    No retries: a failed post is logged and reported, nothing more.
    """

    def __init__(
        self,
        settings: Optional[WebhookSettings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._settings = settings or get_settings().webhooks
        self._transport = transport

    async def _post(self, url: str, data: dict[str, str]) -> httpx.Response:
        async with httpx.AsyncClient(
            timeout=self._settings.timeout_seconds,
            transport=self._transport,
        ) as client:
            response = await client.post(url, data=data)
            response.raise_for_status()
            return response

    async def _dispatch(
        self,
        channel: str,
        url: str,
        payload: dict[str, str],
        movement: Movement,
    ) -> tuple[Optional[httpx.Response], NotificationDispatch]:
        try:
            response = await self._post(url, payload)
        except httpx.HTTPError as e:
            logger.warning(
                "webhook_failed",
                channel=channel,
                movement_id=str(movement.id),
                error=str(e),
            )
            return None, NotificationDispatch(error=str(e) or type(e).__name__)

        logger.info("webhook_sent", channel=channel, movement_id=str(movement.id))
        return response, NotificationDispatch(delivered=True)

    async def notify_created_or_updated(
        self,
        movement: Movement,
        balance: Decimal,
    ) -> NotificationDispatch:
        response, dispatch = await self._dispatch(
            "movement",
            self._settings.movement_url,
            build_movement_payload(movement, balance),
            movement,
        )
        if response is None:
            return dispatch

        message_ref, thread_ref = parse_correlation_refs(response)
        return dispatch.model_copy(
            update={"message_ref": message_ref, "thread_ref": thread_ref}
        )

    async def notify_verified(self, movement: Movement) -> NotificationDispatch:
        if not movement.has_correlation_refs:
            logger.warning(
                "webhook_skipped",
                channel="verify",
                movement_id=str(movement.id),
                reason=NO_REFS_REASON,
            )
            return NotificationDispatch(skipped=True, error=NO_REFS_REASON)

        _, dispatch = await self._dispatch(
            "verify",
            self._settings.verify_url,
            build_verification_payload(movement),
            movement,
        )
        return dispatch

    async def notify_retracted(self, movement: Movement) -> NotificationDispatch:
        if not movement.has_correlation_refs:
            return NotificationDispatch(skipped=True, error=NO_REFS_REASON)

        _, dispatch = await self._dispatch(
            "delete",
            self._settings.delete_url,
            build_retraction_payload(movement),
            movement,
        )
        return dispatch
