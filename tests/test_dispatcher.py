"""Tests for destination normalization and NotificationDispatcher."""

from __future__ import annotations

import pytest

from notibridge_core.dispatcher import NotificationDispatcher, normalize_destination
from notibridge_core.errors import (
    NotConnectedError,
    TransportError,
    TransportRejectedError,
    ValidationError,
)
from notibridge_core.transport.base import ConnectionOpened, SendReceipt


class TestNormalizeDestination:
    """Tests for normalize_destination."""

    @pytest.mark.parametrize(
        "raw",
        ["+1234567890", "1234567890", "+1 234 567 890", "+1 (234) 567-890", "1.234.567.890"],
    )
    def test_valid_numbers(self, raw):
        assert normalize_destination(raw) == "1234567890@s.whatsapp.net"

    def test_custom_suffix(self):
        assert normalize_destination("+447700900123", "example.net") == (
            "447700900123@example.net"
        )

    @pytest.mark.parametrize(
        "raw",
        ["abc", "", "+", "0123456789", "+1", "+1234567890123456", "12345x67", None, 1234567890],
    )
    def test_invalid_numbers(self, raw):
        with pytest.raises(ValidationError):
            normalize_destination(raw)


async def _connected_dispatcher(manager) -> NotificationDispatcher:
    await manager.initialize()
    manager.handle_event(ConnectionOpened(generation=manager.state.generation))
    return NotificationDispatcher(manager)


class TestNotificationDispatcher:
    """Tests for NotificationDispatcher.send."""

    @pytest.mark.asyncio
    async def test_send_returns_receipt(self, manager, factory):
        dispatcher = await _connected_dispatcher(manager)

        receipt = await dispatcher.send("+1234567890", "Hello")

        assert receipt.destination == "1234567890@s.whatsapp.net"
        assert receipt.delivery_id == f"MSG-{factory.latest.generation}"
        factory.latest.send.assert_awaited_once_with(
            "1234567890@s.whatsapp.net", {"text": "Hello"}
        )

    @pytest.mark.asyncio
    async def test_send_uses_configured_suffix(self, manager, factory):
        await manager.initialize()
        manager.handle_event(ConnectionOpened(generation=manager.state.generation))
        dispatcher = NotificationDispatcher(manager, address_suffix="c.us")

        receipt = await dispatcher.send("+1234567890", "Hello")

        assert receipt.destination == "1234567890@c.us"

    @pytest.mark.asyncio
    async def test_not_connected_makes_no_transport_call(self, manager, factory):
        await manager.initialize()
        dispatcher = NotificationDispatcher(manager)

        with pytest.raises(NotConnectedError):
            await dispatcher.send("+1234567890", "Hello")

        factory.latest.send.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_not_connected_without_session(self, manager):
        dispatcher = NotificationDispatcher(manager)

        with pytest.raises(NotConnectedError):
            await dispatcher.send("+1234567890", "Hello")

    @pytest.mark.asyncio
    async def test_invalid_destination_checked_before_connection(self, manager):
        dispatcher = NotificationDispatcher(manager)

        with pytest.raises(ValidationError):
            await dispatcher.send("abc", "Hello")

    @pytest.mark.asyncio
    async def test_invalid_destination_when_connected(self, manager, factory):
        dispatcher = await _connected_dispatcher(manager)

        with pytest.raises(ValidationError):
            await dispatcher.send("abc", "Hello")

        factory.latest.send.assert_not_awaited()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("body", ["", "   ", None])
    async def test_empty_body_rejected(self, manager, factory, body):
        dispatcher = await _connected_dispatcher(manager)

        with pytest.raises(ValidationError):
            await dispatcher.send("+1234567890", body)

        factory.latest.send.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_transport_error_propagates(self, manager, factory):
        dispatcher = await _connected_dispatcher(manager)
        factory.latest.send.side_effect = TransportRejectedError(
            "Recipient not on network", status_code=404
        )

        with pytest.raises(TransportRejectedError) as exc_info:
            await dispatcher.send("+1234567890", "Hello")

        assert exc_info.value.status_code == 404

    @pytest.mark.asyncio
    async def test_empty_delivery_id_is_transport_error(self, manager, factory):
        dispatcher = await _connected_dispatcher(manager)
        factory.latest.send.side_effect = None
        factory.latest.send.return_value = SendReceipt(delivery_id="", address="x")

        with pytest.raises(TransportError, match="empty delivery id"):
            await dispatcher.send("+1234567890", "Hello")
