"""Framed WebSocket channel to the messaging gateway.

The channel turns the raw websockets connection into a stream of
``GatewayFrame`` values. Text frames carry a JSON envelope; the stream
always ends with exactly one terminal frame (``CLOSED`` or ``ERROR``)
describing why the socket went away.
"""

from __future__ import annotations

import json
from collections.abc import AsyncIterator
from dataclasses import dataclass
from enum import Enum
from typing import Any

from websockets.asyncio.client import ClientConnection
from websockets.exceptions import ConnectionClosed
from websockets.frames import Close

from ..errors import TransportConnectionError, TransportError
from .ws import connect_websocket


class FrameKind(Enum):
    """Kinds of frame the channel yields."""

    TEXT = "text"
    CLOSED = "closed"
    ERROR = "error"


@dataclass(frozen=True)
class GatewayFrame:
    """One inbound frame, or the terminal notice for the socket.

    Attributes:
        kind: Frame kind
        text: Raw text for TEXT frames; the close reason or error text otherwise
        close_code: WebSocket close code for CLOSED frames, when the peer sent one
    """

    kind: FrameKind
    text: str | None = None
    close_code: int | None = None

    @property
    def terminal(self) -> bool:
        return self.kind is not FrameKind.TEXT

    def envelope(self) -> dict[str, Any]:
        """Decode a TEXT frame into its JSON object envelope.

        Raises:
            TransportError: Not a text frame, not JSON, or not a JSON object.
        """
        if self.kind is not FrameKind.TEXT or self.text is None:
            raise TransportError(f"Cannot decode a {self.kind.value} frame")
        try:
            decoded = json.loads(self.text)
        except ValueError as err:
            raise TransportError(f"Frame is not valid JSON: {err}") from err
        if not isinstance(decoded, dict):
            raise TransportError(
                f"Frame envelope must be a JSON object, got {type(decoded).__name__}"
            )
        return decoded


def closed_frame(close: Close | None) -> GatewayFrame:
    """Terminal frame for a close handshake, carrying the peer's code and reason."""
    if close is None:
        return GatewayFrame(FrameKind.CLOSED)
    return GatewayFrame(FrameKind.CLOSED, text=close.reason or None, close_code=close.code)


class GatewayChannel:
    """One WebSocket connection to the gateway.

    Usage:
        channel = GatewayChannel()
        await channel.open("ws://127.0.0.1:8765/session")
        await channel.send_json({"type": "hello"})
        async for frame in channel.frames():
            ...
        await channel.close()
    """

    def __init__(self) -> None:
        self._ws: ClientConnection | None = None

    @property
    def is_open(self) -> bool:
        return self._ws is not None

    async def open(
        self,
        url: str,
        *,
        ping_interval: int | None = 30,
        timeout: float = 60.0,
    ) -> None:
        """Open the socket.

        Raises:
            TransportError: Connection, handshake or timeout failure.
        """
        self._ws = await connect_websocket(url, ping_interval=ping_interval, timeout=timeout)

    async def close(self) -> None:
        ws, self._ws = self._ws, None
        if ws is not None:
            await ws.close()

    async def send_json(self, envelope: dict[str, Any]) -> None:
        """Send one JSON envelope.

        Raises:
            TransportConnectionError: The socket is not open or closed mid-send.
        """
        ws = self._require_ws()
        try:
            await ws.send(json.dumps(envelope))
        except ConnectionClosed as err:
            raise TransportConnectionError(
                f"Gateway socket closed while sending: {err}"
            ) from err

    def frames(self) -> AsyncIterator[GatewayFrame]:
        """Stream inbound text frames, ending with one terminal frame.

        Binary frames are dropped.

        Raises:
            TransportConnectionError: The socket is not open.
        """
        return self._read(self._require_ws())

    async def _read(self, ws: ClientConnection) -> AsyncIterator[GatewayFrame]:
        try:
            async for raw in ws:
                if isinstance(raw, str):
                    yield GatewayFrame(FrameKind.TEXT, text=raw)
        except ConnectionClosed as err:
            yield closed_frame(err.rcvd)
        except Exception as err:
            yield GatewayFrame(FrameKind.ERROR, text=str(err) or type(err).__name__)
        else:
            # Iteration ends cleanly only after a normal close handshake.
            code = getattr(ws, "close_code", None)
            reason = getattr(ws, "close_reason", None)
            if isinstance(code, int):
                yield closed_frame(Close(code, reason if isinstance(reason, str) else ""))
            else:
                yield closed_frame(None)

    def _require_ws(self) -> ClientConnection:
        if self._ws is None:
            raise TransportConnectionError("Gateway socket is not open")
        return self._ws
