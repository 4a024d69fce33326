"""Tests for webhook notifications, over httpx.MockTransport."""

from decimal import Decimal
from urllib.parse import parse_qs

import httpx
import pytest

from daviplata.config import WebhookSettings
from daviplata.services.notifications import (
    WebhookNotifier,
    build_movement_payload,
    build_retraction_payload,
    build_verification_payload,
    phone_from_jid,
)

JID = "593962248046@s.whatsapp.net"


@pytest.fixture
def webhook_settings() -> WebhookSettings:
    return WebhookSettings(
        movement_url="https://hooks.example.com/movement",
        verify_url="https://hooks.example.com/verify",
        delete_url="https://hooks.example.com/delete",
        timeout_seconds=5,
    )


class RecordingTransport:
    """Collects requests and answers each with `responder(request)`."""

    def __init__(self, responder):
        self.requests: list[httpx.Request] = []
        self._responder = responder
        self.transport = httpx.MockTransport(self._handle)

    def _handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self._responder(request)

    def form(self, index: int = 0) -> dict[str, str]:
        body = parse_qs(self.requests[index].content.decode())
        return {key: values[0] for key, values in body.items()}


class TestPayloads:

    def test_phone_from_jid(self):
        assert phone_from_jid(JID) == "+593962248046"

    def test_movement_payload(self, make_movement):
        movement = make_movement(amount="45.50", reason="Venta de rifas")

        payload = build_movement_payload(movement, Decimal("120.00"))

        assert payload["id"] == str(movement.id)
        assert payload["tipo"] == "INGRESO"
        assert payload["monto"] == "45.50"
        assert payload["saldo_despues"] == "120.00"
        assert payload["motivo"] == "Venta de rifas"
        assert payload["url"] == ""
        assert payload["usuario_nombre"] == "Pedro Sanches"
        assert payload["usuario_email"] == "pedro@daviplata.test"
        assert "remote_jid" not in payload

    def test_movement_payload_keeps_thread(self, make_movement):
        movement = make_movement(external_thread_ref=JID)
        assert build_movement_payload(movement, Decimal("0"))["remote_jid"] == JID

    def test_verification_and_retraction_address_differently(self, make_movement):
        movement = make_movement(external_message_ref="wamid-1", external_thread_ref=JID)

        verification = build_verification_payload(movement)
        retraction = build_retraction_payload(movement)

        assert verification["numero_destinatario"] == "+593962248046"
        assert retraction["numero_destinatario"] == JID
        for payload in (verification, retraction):
            assert payload["idmessage"] == "wamid-1"
            assert payload["id_movimiento"] == str(movement.id)
            assert payload["tipo"] == "INGRESO"


class TestWebhookNotifier:

    @pytest.mark.asyncio
    async def test_created_returns_refs(self, webhook_settings, make_movement):
        recorder = RecordingTransport(
            lambda request: httpx.Response(200, json={"id": "wamid-7", "remoteJid": JID})
        )
        notifier = WebhookNotifier(webhook_settings, transport=recorder.transport)

        dispatch = await notifier.notify_created_or_updated(make_movement(), Decimal("10.00"))

        assert dispatch.delivered is True
        assert dispatch.message_ref == "wamid-7"
        assert dispatch.thread_ref == JID
        request = recorder.requests[0]
        assert str(request.url) == "https://hooks.example.com/movement"
        assert request.headers["content-type"] == "application/x-www-form-urlencoded"
        assert recorder.form()["saldo_despues"] == "10.00"

    @pytest.mark.asyncio
    async def test_created_accepts_list_response(self, webhook_settings, make_movement):
        recorder = RecordingTransport(
            lambda request: httpx.Response(200, json=[{"id": "wamid-8"}])
        )
        notifier = WebhookNotifier(webhook_settings, transport=recorder.transport)

        dispatch = await notifier.notify_created_or_updated(make_movement(), Decimal("1"))

        assert dispatch.message_ref == "wamid-8"
        assert dispatch.thread_ref is None

    @pytest.mark.asyncio
    async def test_created_without_json_body(self, webhook_settings, make_movement):
        recorder = RecordingTransport(lambda request: httpx.Response(200, text="ok"))
        notifier = WebhookNotifier(webhook_settings, transport=recorder.transport)

        dispatch = await notifier.notify_created_or_updated(make_movement(), Decimal("1"))

        assert dispatch.delivered is True
        assert dispatch.has_refs is False

    @pytest.mark.asyncio
    async def test_server_error_is_reported_not_raised(self, webhook_settings, make_movement):
        recorder = RecordingTransport(lambda request: httpx.Response(500))
        notifier = WebhookNotifier(webhook_settings, transport=recorder.transport)

        dispatch = await notifier.notify_created_or_updated(make_movement(), Decimal("1"))

        assert dispatch.failed is True
        assert dispatch.error

    @pytest.mark.asyncio
    async def test_connection_error_is_reported_not_raised(self, webhook_settings, make_movement):
        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        notifier = WebhookNotifier(webhook_settings, transport=httpx.MockTransport(refuse))

        dispatch = await notifier.notify_retracted(
            make_movement(external_message_ref="wamid-1", external_thread_ref=JID)
        )

        assert dispatch.failed is True
        assert "connection refused" in dispatch.error

    @pytest.mark.asyncio
    async def test_verify_posts_to_verify_url(self, webhook_settings, make_movement):
        recorder = RecordingTransport(lambda request: httpx.Response(200))
        notifier = WebhookNotifier(webhook_settings, transport=recorder.transport)
        movement = make_movement(external_message_ref="wamid-1", external_thread_ref=JID)

        dispatch = await notifier.notify_verified(movement)

        assert dispatch.delivered is True
        assert str(recorder.requests[0].url) == "https://hooks.example.com/verify"
        assert recorder.form()["numero_destinatario"] == "+593962248046"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("refs", [
        {},
        {"external_message_ref": "wamid-1"},
        {"external_thread_ref": JID},
    ])
    async def test_verify_and_retract_skipped_without_both_refs(
        self, webhook_settings, make_movement, refs
    ):
        recorder = RecordingTransport(lambda request: httpx.Response(200))
        notifier = WebhookNotifier(webhook_settings, transport=recorder.transport)
        movement = make_movement(**refs)

        verified = await notifier.notify_verified(movement)
        retracted = await notifier.notify_retracted(movement)

        assert verified.skipped and retracted.skipped
        assert recorder.requests == []

    @pytest.mark.asyncio
    async def test_retract_posts_full_jid(self, webhook_settings, make_movement):
        recorder = RecordingTransport(lambda request: httpx.Response(200))
        notifier = WebhookNotifier(webhook_settings, transport=recorder.transport)

        await notifier.notify_retracted(
            make_movement(external_message_ref="wamid-1", external_thread_ref=JID)
        )

        assert str(recorder.requests[0].url) == "https://hooks.example.com/delete"
        assert recorder.form()["numero_destinatario"] == JID
