"""WebSocket helpers for the messaging gateway transport."""

from __future__ import annotations

import asyncio

import websockets
from websockets.asyncio.client import ClientConnection
from websockets.exceptions import (
    InvalidHandshake,
    InvalidStatus,
    InvalidURI,
    WebSocketException,
)

from ..errors import (
    TransportConnectionError,
    TransportHandshakeError,
    TransportTimeout,
)


async def connect_websocket(
    url: str,
    *,
    ping_interval: int | None = 30,
    timeout: float = 60.0,
) -> ClientConnection:
    """Open a WebSocket to the messaging gateway.

    Args:
        url: Gateway URL (ws:// or wss://)
        ping_interval: Keepalive ping interval, None disables pings
        timeout: Connection timeout in seconds
    """
    try:
        return await asyncio.wait_for(
            websockets.connect(
                url,
                ping_interval=ping_interval,
                close_timeout=5,
                max_size=None,
            ),
            timeout=timeout,
        )
    except TimeoutError as err:
        raise TransportTimeout("Gateway connection timed out") from err
    except InvalidStatus as err:
        status = err.response.status_code
        raise TransportHandshakeError(
            f"Gateway rejected the connection with HTTP {status}", status_code=status
        ) from err
    except (InvalidHandshake, InvalidURI) as err:
        raise TransportHandshakeError("Gateway handshake failed") from err
    except (OSError, WebSocketException) as err:
        raise TransportConnectionError("Gateway connection failed") from err
