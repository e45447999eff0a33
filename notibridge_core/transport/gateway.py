"""Session handle speaking to the messaging gateway over a WebSocket bridge.

The handle is created synchronously and connects in the background; its
lifecycle is reported through the event sink given at construction. After
``end()`` no further events are emitted.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Any

from ..errors import (
    CredentialStoreError,
    TransportConnectionError,
    TransportError,
    TransportRejectedError,
    TransportTimeout,
)
from .base import (
    ConnectionClosed,
    ConnectionOpened,
    EventSink,
    PairingCodeReady,
    SendReceipt,
    SessionOptions,
)
from .credentials import CredentialStore
from .protocol import (
    build_hello,
    build_send,
    parse_connection_update,
    parse_credentials,
    parse_pairing_code,
    parse_send_ack,
    parse_send_error,
)
from .ws_client import FrameKind, GatewayChannel, GatewayFrame

_LOGGER = logging.getLogger(__name__)


class GatewaySession:
    """One live connection to the messaging network.

    Usage:
        session = GatewaySession(
            store=store,
            credentials=store.load(),
            options=SessionOptions(gateway_url="ws://127.0.0.1:8765/session"),
            generation=1,
            on_event=manager.post_event,
        )
        receipt = await session.send("1234567890@s.whatsapp.net", {"text": "hi"})
        await session.end()
    """

    def __init__(
        self,
        *,
        store: CredentialStore,
        credentials: dict[str, Any] | None,
        options: SessionOptions,
        generation: int,
        on_event: EventSink,
        channel_factory: Callable[[], GatewayChannel] = GatewayChannel,
    ) -> None:
        if not options.gateway_url.startswith(("ws://", "wss://")):
            raise TransportError(
                f"Unsupported gateway URL: {options.gateway_url!r}"
            )

        self.generation = generation
        self._store = store
        self._credentials = credentials
        self._options = options
        self._on_event = on_event
        self._channel_factory = channel_factory

        self._channel: GatewayChannel | None = None
        self._opened = False
        self._ended = False
        self._pending_sends: dict[str, asyncio.Future[str]] = {}

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError as err:
            raise TransportError(
                "Session transport requires a running event loop"
            ) from err
        self._loop = loop
        self._task: asyncio.Task[None] = loop.create_task(self._run())

    @property
    def is_open(self) -> bool:
        return self._opened and not self._ended

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    async def send(self, address: str, payload: dict[str, Any]) -> SendReceipt:
        """Send a message and wait for the gateway acknowledgement.

        Raises:
            TransportConnectionError: Session not open or dropped mid-send.
            TransportTimeout: No acknowledgement within the send timeout.
            TransportRejectedError: The network rejected the message.
        """
        if self._channel is None or not self.is_open:
            raise TransportConnectionError("Session is not open")

        frame = build_send(address=address, payload=payload)
        msg_id: str = frame["msg_id"]
        future: asyncio.Future[str] = self._loop.create_future()
        self._pending_sends[msg_id] = future

        try:
            await self._channel.send_json(frame)
            delivery_id = await asyncio.wait_for(
                future, timeout=self._options.send_timeout
            )
        except TimeoutError as err:
            raise TransportTimeout(
                f"No acknowledgement for message to {address}"
            ) from err
        finally:
            self._pending_sends.pop(msg_id, None)

        _LOGGER.debug(
            "[gen %d] Message %s delivered as %s", self.generation, msg_id, delivery_id
        )
        return SendReceipt(delivery_id=delivery_id, address=address)

    async def end(self) -> None:
        """Gracefully tear down the session. Close errors are logged, not raised."""
        if self._ended:
            return
        self._ended = True
        _LOGGER.debug("[gen %d] Ending session", self.generation)

        if not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass

        self._fail_pending(TransportConnectionError("Session ended"))
        await self._close_channel()

    # -------------------------------------------------------------------------
    # Internal: connection loop
    # -------------------------------------------------------------------------

    def _emit(
        self, event: PairingCodeReady | ConnectionOpened | ConnectionClosed
    ) -> None:
        if self._ended:
            return
        self._on_event(event)

    async def _run(self) -> None:
        channel = self._channel_factory()
        try:
            await channel.open(
                self._options.gateway_url,
                ping_interval=self._options.keepalive_interval,
                timeout=self._options.connect_timeout,
            )
        except TransportError as err:
            _LOGGER.warning("[gen %d] Gateway connect failed: %s", self.generation, err)
            self._emit(
                ConnectionClosed(
                    generation=self.generation,
                    reason=str(err),
                    status_code=err.status_code,
                    payload={"error_type": type(err).__name__},
                )
            )
            return

        self._channel = channel
        closed: ConnectionClosed | None = None

        try:
            await channel.send_json(
                build_hello(
                    credentials=self._credentials, browser=self._options.browser
                )
            )
            async for frame in channel.frames():
                if frame.terminal:
                    closed = self._terminal_event(frame)
                    break
                try:
                    closed = self._handle_frame(frame.envelope())
                except (ValueError, TransportError) as err:
                    _LOGGER.warning(
                        "[gen %d] Invalid frame: %s", self.generation, err
                    )
                    continue
                if closed is not None:
                    break
        except TransportError as err:
            _LOGGER.warning("[gen %d] Transport error: %s", self.generation, err)
            closed = ConnectionClosed(
                generation=self.generation,
                reason=str(err),
                status_code=err.status_code,
            )
        except Exception as err:
            # The close must still be reported or the manager never reconnects.
            _LOGGER.exception("[gen %d] Listener failed", self.generation)
            closed = ConnectionClosed(
                generation=self.generation,
                reason=f"Listener failed: {err}",
                payload={"error_type": type(err).__name__},
            )

        self._opened = False
        self._fail_pending(TransportConnectionError("Session closed"))
        await self._close_channel()
        self._emit(
            closed
            or ConnectionClosed(generation=self.generation, reason="Connection lost")
        )

    def _terminal_event(self, frame: GatewayFrame) -> ConnectionClosed:
        if frame.kind is FrameKind.ERROR:
            reason = f"Gateway connection error: {frame.text}"
        else:
            reason = frame.text or "Connection closed by gateway"
        return ConnectionClosed(
            generation=self.generation,
            reason=reason,
            status_code=frame.close_code,
        )

    def _handle_frame(self, frame: dict[str, Any]) -> ConnectionClosed | None:
        """Dispatch one inbound frame. Returns a close event when the session ended."""
        msg_type = frame.get("type")

        if msg_type == "pairing_code":
            self._emit(
                PairingCodeReady(
                    generation=self.generation, code=parse_pairing_code(frame)
                )
            )
        elif msg_type == "connection":
            update = parse_connection_update(frame)
            if update.opened:
                self._opened = True
                self._emit(ConnectionOpened(generation=self.generation))
            else:
                return ConnectionClosed(
                    generation=self.generation,
                    reason=update.reason or "Unknown error",
                    status_code=update.status_code,
                    is_auth_failure=update.is_auth_failure,
                    payload=frame.get("body"),
                )
        elif msg_type == "credentials":
            self._persist_credentials(frame)
        elif msg_type == "send_ack":
            request_id, delivery_id = parse_send_ack(frame)
            future = self._pending_sends.get(request_id)
            if future is not None and not future.done():
                future.set_result(delivery_id)
        elif msg_type == "send_error":
            request_id, message, status_code = parse_send_error(frame)
            future = self._pending_sends.get(request_id)
            if future is not None and not future.done():
                future.set_exception(
                    TransportRejectedError(message, status_code=status_code)
                )
        else:
            _LOGGER.debug("[gen %d] Unknown frame type: %s", self.generation, msg_type)
        return None

    def _persist_credentials(self, frame: dict[str, Any]) -> None:
        credentials = parse_credentials(frame)
        keys = frame["body"].get("keys") or {}
        if not isinstance(keys, dict):
            raise ValueError("credentials keys must be an object")
        try:
            self._store.save(credentials)
            for name, data in keys.items():
                self._store.save_key(name, data)
        except CredentialStoreError as err:
            _LOGGER.error("[gen %d] Failed to persist credentials: %s", self.generation, err)
            return
        self._credentials = credentials

    def _fail_pending(self, err: TransportError) -> None:
        for future in self._pending_sends.values():
            if not future.done():
                future.set_exception(err)
        self._pending_sends.clear()

    async def _close_channel(self) -> None:
        channel, self._channel = self._channel, None
        if channel is None:
            return
        try:
            await asyncio.wait_for(channel.close(), timeout=2.0)
        except TimeoutError:
            _LOGGER.warning("[gen %d] Gateway close timed out", self.generation)
        except TransportError as err:
            _LOGGER.warning("[gen %d] Gateway close failed: %s", self.generation, err)
