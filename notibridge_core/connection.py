"""Connection lifecycle manager for the messaging network session.

This module owns the single outbound session to the messaging network. It
handles:
- Creating and tearing down the session handle (never two at once)
- Linear backoff reconnection and the post-ceiling cooldown
- The pairing artifact and its grace window after a close
- Connection health reporting

Session events are posted as messages and applied one at a time by a single
consumer task. Every handler is synchronous so that state mutations never
interleave; events carrying a stale generation are dropped.
"""

from __future__ import annotations

import asyncio
import logging
import math
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from .errors import (
    AuthRevokedError,
    CooldownActiveError,
    NotConnectedError,
    NotibridgeError,
    PairingRenderError,
    TransportError,
)
from .pairing import (
    PAIRING_GRACE_SECONDS,
    PairingArtifact,
    RenderedPairing,
    print_terminal,
    render_pairing,
)
from .transport.base import (
    ConnectionClosed,
    ConnectionOpened,
    PairingCodeReady,
    SessionEvent,
    SessionFactory,
    SessionHandle,
    SessionOptions,
)
from .transport.credentials import CredentialStore
from .transport.gateway import GatewaySession

if TYPE_CHECKING:
    from .config import Settings

_LOGGER = logging.getLogger(__name__)


@dataclass
class ConnectionState:
    """Process-wide connection state, mutated only by ConnectionManager."""

    max_attempts: int
    base_retry_delay: float
    cooldown_duration: float
    session: SessionHandle | None = None
    generation: int = 0
    connected: bool = False
    pairing: PairingArtifact | None = None
    attempt_count: int = 0
    last_attempt_at: float | None = None
    auth_revoked: bool = False
    last_close_reason: str | None = None
    last_close_status: int | None = None


class ConnectionManager:
    """Owns zero or one live session to the messaging network.

    Usage:
        manager = ConnectionManager(store, GatewaySession, options)
        manager.start()
        await manager.initialize()
        manager.status()
        await manager.disconnect()
        await manager.stop()
    """

    def __init__(
        self,
        store: CredentialStore,
        session_factory: SessionFactory,
        options: SessionOptions,
        *,
        max_attempts: int = 2,
        base_retry_delay: float = 60.0,
        cooldown_duration: float = 300.0,
        pairing_grace: float = PAIRING_GRACE_SECONDS,
        print_pairing: bool = False,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize manager.

        Args:
            store: Credential store keyed by the session path
            session_factory: Creates session handles
            options: Options passed to every created handle
            max_attempts: Reconnection attempts before the cooldown
            base_retry_delay: Linear backoff unit (seconds)
            cooldown_duration: Cooldown after the attempt ceiling (seconds)
            pairing_grace: Pairing artifact lifetime after a close (seconds)
            print_pairing: Print pairing codes to the terminal as QR codes
            clock: Wall-clock source in epoch seconds
        """
        self.state = ConnectionState(
            max_attempts=max_attempts,
            base_retry_delay=base_retry_delay,
            cooldown_duration=cooldown_duration,
        )
        self._store = store
        self._session_factory = session_factory
        self._options = options
        self._pairing_grace = pairing_grace
        self._print_pairing = print_pairing
        self._clock = clock

        self._events: asyncio.Queue[SessionEvent] = asyncio.Queue()
        self._event_task: asyncio.Task[None] | None = None
        self._connect_lock = asyncio.Lock()
        self._closed_generation: int | None = None
        self._ending: set[asyncio.Task[None]] = set()

        # Timers
        self._reconnect_timer: asyncio.TimerHandle | None = None
        self._reconnect_delay: float | None = None
        self._reconnect_task: asyncio.Task[None] | None = None
        self._pairing_timer: asyncio.TimerHandle | None = None

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        session_factory: SessionFactory = GatewaySession,
        clock: Callable[[], float] = time.time,
    ) -> ConnectionManager:
        """Build a manager from application settings."""
        options = SessionOptions(
            gateway_url=settings.gateway_url,
            send_timeout=settings.send_timeout,
        )
        return cls(
            CredentialStore(settings.session_folder),
            session_factory,
            options,
            max_attempts=settings.max_reconnect_attempts,
            base_retry_delay=settings.base_retry_delay,
            cooldown_duration=settings.cooldown_period,
            print_pairing=settings.print_qr,
            clock=clock,
        )

    # -------------------------------------------------------------------------
    # Public API: Lifecycle
    # -------------------------------------------------------------------------

    def start(self) -> None:
        """Start the event consumer. Must be called from a running loop."""
        if self._event_task is None or self._event_task.done():
            self._event_task = asyncio.create_task(self._consume_events())

    async def stop(self) -> None:
        """Cancel timers and stop the event consumer."""
        self._cancel_reconnect()
        self._cancel_pairing_timer()
        if self._ending:
            await asyncio.gather(*self._ending)

        for task in (self._reconnect_task, self._event_task):
            if task is None or task.done():
                continue
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._reconnect_task = None
        self._event_task = None

    @property
    def store(self) -> CredentialStore:
        return self._store

    @property
    def connected(self) -> bool:
        return self.state.connected

    @property
    def reconnect_delay(self) -> float | None:
        """Delay of the pending backoff reconnect, None when nothing is scheduled."""
        return self._reconnect_delay

    # -------------------------------------------------------------------------
    # Public API: Control
    # -------------------------------------------------------------------------

    async def initialize(self) -> None:
        """Start a session unless the cooldown is running.

        Raises:
            CooldownActiveError: Cooldown window has not elapsed; nothing changed.
            AuthRevokedError: Credential was revoked; operator action required.
            TransportError: The session handle could not be created.
        """
        now = self._clock()
        remaining = self._cooldown_remaining(now)
        if remaining > 0:
            ends_at = self._cooldown_ends_at()
            wait = math.ceil(remaining)
            _LOGGER.warning(
                "In cooldown period. Wait %ds before trying to connect again", wait
            )
            _LOGGER.info("Cooldown ends at: %s", ends_at)
            raise CooldownActiveError(wait, ends_at)

        if self.state.auth_revoked:
            raise AuthRevokedError(
                "Credential revoked by the network; clear the session or force a reconnect"
            )

        _LOGGER.info("Initializing messaging connection")
        self.state.last_attempt_at = now
        await self.connect()

    async def connect(self, *, expected_generation: int | None = None) -> None:
        """Create a fresh session handle, tearing down any previous one first.

        Connection completes asynchronously and is reported through events.

        Args:
            expected_generation: Only connect if the generation still matches
                once the connect lock is held. Used by scheduled reconnects.

        Raises:
            TransportError: The session handle could not be created.
            CredentialStoreError: Stored credentials could not be read.
        """
        async with self._connect_lock:
            if (
                expected_generation is not None
                and expected_generation != self.state.generation
            ):
                _LOGGER.debug(
                    "Reconnect for generation %d superseded (current %d)",
                    expected_generation,
                    self.state.generation,
                )
                return
            self._cancel_reconnect()
            await self._teardown()

            credentials = self._store.load()
            self.state.generation += 1
            generation = self.state.generation

            _LOGGER.info(
                "[gen %d] Connecting to %s (%s credentials)",
                generation,
                self._options.gateway_url,
                "stored" if credentials else "no",
            )

            try:
                session = self._session_factory(
                    store=self._store,
                    credentials=credentials,
                    options=self._options,
                    generation=generation,
                    on_event=self.post_event,
                )
            except TransportError as err:
                _LOGGER.error("[gen %d] Connection error: %s", generation, err)
                raise
            except Exception as err:
                _LOGGER.exception("[gen %d] Session construction failed", generation)
                raise TransportError(f"Session construction failed: {err}") from err

            self.state.session = session

    async def force_reconnect(self) -> None:
        """Reset all backoff state and connect. Not gated by the cooldown."""
        _LOGGER.info("Forcing new connection")
        await self.reset()
        await self.connect()
        _LOGGER.info("Force connect initiated")

    async def reset(self) -> None:
        """Clear counters, cooldown and pairing, and tear down without restarting."""
        _LOGGER.info("Resetting connection state")
        self._cancel_reconnect()
        self._cancel_reconnect_task()
        async with self._connect_lock:
            await self._teardown()
            self._cancel_reconnect()
            self._cancel_pairing_timer()
            self.state.attempt_count = 0
            self.state.last_attempt_at = None
            self.state.pairing = None
            self.state.connected = False
            self.state.auth_revoked = False
        _LOGGER.info("Connection state reset. Ready for new connection.")

    async def disconnect(self) -> None:
        """Gracefully end the live session, if any. Idempotent."""
        self._cancel_reconnect()
        self._cancel_reconnect_task()
        async with self._connect_lock:
            had_session = self.state.session is not None
            await self._teardown()
            self._cancel_reconnect()
            self._cancel_pairing_timer()
            self.state.pairing = None
        if had_session:
            _LOGGER.info("Disconnected from messaging network")

    async def clear_persisted_credentials(self) -> list[str]:
        """Delete stored credentials and start a fresh pairing flow.

        Returns:
            Names of the removed credential artifacts.

        Raises:
            CredentialStoreError: An artifact could not be deleted.
            TransportError: The fresh session could not be created.
        """
        _LOGGER.info("Clearing session data")
        await self.disconnect()

        self.state.attempt_count = 0
        self.state.last_attempt_at = None
        self.state.auth_revoked = False

        removed = self._store.clear()
        _LOGGER.info("Session data cleared (%d files removed)", len(removed))

        _LOGGER.info("Starting fresh connection")
        await self.connect()
        return removed

    # -------------------------------------------------------------------------
    # Public API: Queries
    # -------------------------------------------------------------------------

    def status(self) -> dict[str, Any]:
        """Basic connection health."""
        return {
            "connected": self.state.connected,
            "has_pairing_artifact": self._current_pairing() is not None,
            "attempt_count": self.state.attempt_count,
        }

    def detailed_status(self) -> dict[str, Any]:
        """Connection health including cooldown details."""
        remaining = self._cooldown_remaining(self._clock())
        return {
            **self.status(),
            "max_attempts": self.state.max_attempts,
            "in_cooldown": remaining > 0,
            "cooldown_remaining_seconds": math.ceil(remaining),
            "cooldown_ends_at": self._cooldown_ends_at(),
            "has_session_handle": self.state.session is not None,
            "auth_revoked": self.state.auth_revoked,
            "last_close_reason": self.state.last_close_reason,
        }

    def current_pairing_artifact(self) -> RenderedPairing | None:
        """Render the outstanding pairing code, or None when there is none.

        Raises:
            PairingRenderError: The code could not be rendered.
        """
        pairing = self._current_pairing()
        if pairing is None:
            return None
        try:
            return render_pairing(pairing)
        except PairingRenderError as err:
            _LOGGER.error("Failed to render pairing code: %s", err)
            raise

    def active_session(self) -> SessionHandle:
        """Return the open session.

        Raises:
            NotConnectedError: No session is open.
        """
        if not self.state.connected or self.state.session is None:
            raise NotConnectedError(
                "Messaging network is not connected. Please scan the pairing code first."
            )
        return self.state.session

    # -------------------------------------------------------------------------
    # Internal: Event handling
    # -------------------------------------------------------------------------

    def post_event(self, event: SessionEvent) -> None:
        """Queue a session event for the consumer task."""
        self._events.put_nowait(event)

    async def drain_events(self) -> None:
        """Wait until every posted event has been applied."""
        await self._events.join()

    async def _consume_events(self) -> None:
        while True:
            event = await self._events.get()
            try:
                self.handle_event(event)
            except Exception as err:
                _LOGGER.exception(
                    "Failed to handle %s: %s", type(event).__name__, err
                )
            finally:
                self._events.task_done()

    def handle_event(self, event: SessionEvent) -> None:
        """Apply one session event. Never suspends."""
        if event.generation != self.state.generation or self.state.session is None:
            _LOGGER.debug(
                "Ignoring %s from stale generation %d (current %d)",
                type(event).__name__,
                event.generation,
                self.state.generation,
            )
            return

        if isinstance(event, PairingCodeReady):
            self._on_pairing_code(event)
        elif isinstance(event, ConnectionOpened):
            self._on_opened(event)
        elif isinstance(event, ConnectionClosed):
            if self._closed_generation == event.generation:
                _LOGGER.debug("[gen %d] Duplicate close ignored", event.generation)
                return
            self._closed_generation = event.generation
            self._on_closed(event)

    def _on_pairing_code(self, event: PairingCodeReady) -> None:
        self._cancel_pairing_timer()
        self.state.pairing = PairingArtifact(code=event.code, issued_at=self._clock())
        _LOGGER.info("Pairing code received. Use /api/qr endpoint to get it.")

        if self._print_pairing:
            try:
                print_terminal(event.code)
            except PairingRenderError as err:
                _LOGGER.error("Failed to print pairing code: %s", err)

    def _on_opened(self, event: ConnectionOpened) -> None:
        self._cancel_pairing_timer()
        self.state.connected = True
        self.state.pairing = None
        self.state.attempt_count = 0
        self.state.auth_revoked = False
        self.state.last_close_reason = None
        self.state.last_close_status = None
        _LOGGER.info("[gen %d] Messaging network connected", event.generation)

    def _on_closed(self, event: ConnectionClosed) -> None:
        state = self.state
        now = self._clock()
        state.connected = False
        state.last_close_reason = event.reason
        state.last_close_status = event.status_code

        _LOGGER.error(
            "[gen %d] Connection closed: reason=%s status_code=%s auth_failure=%s payload=%s",
            event.generation,
            event.reason,
            event.status_code,
            event.is_auth_failure,
            event.payload,
        )

        # Keep the pairing code around so a late scan can still complete.
        if state.pairing is not None and state.pairing.expires_at is None:
            state.pairing.expires_at = now + self._pairing_grace
            self._schedule_pairing_expiry(state.pairing, self._pairing_grace)

        if event.is_auth_failure:
            state.auth_revoked = True
            self._release_session()
            _LOGGER.error(
                "Credential revoked by the network. Clear the session or force a reconnect."
            )
            return

        if state.attempt_count < state.max_attempts:
            state.attempt_count += 1
            delay = state.base_retry_delay * state.attempt_count
            _LOGGER.info(
                "Reconnecting in %.0fs (attempt %d/%d)",
                delay,
                state.attempt_count,
                state.max_attempts,
            )
            self._schedule_reconnect(delay)
        else:
            state.last_attempt_at = now
            # No reconnect will reuse this handle; cooldown reports no session.
            self._release_session()
            _LOGGER.error(
                "Max reconnection attempts reached. Entering %.0f-minute cooldown.",
                state.cooldown_duration / 60,
            )

    # -------------------------------------------------------------------------
    # Internal: Timers
    # -------------------------------------------------------------------------

    def _schedule_reconnect(self, delay: float) -> None:
        self._cancel_reconnect()
        loop = asyncio.get_running_loop()
        self._reconnect_delay = delay
        self._reconnect_timer = loop.call_later(
            delay, self._fire_reconnect, self.state.generation
        )

    def _fire_reconnect(self, generation: int) -> None:
        self._reconnect_timer = None
        self._reconnect_delay = None
        if generation != self.state.generation:
            _LOGGER.debug("Stale reconnect for generation %d dropped", generation)
            return
        self._reconnect_task = asyncio.create_task(self._reconnect(generation))

    async def _reconnect(self, generation: int) -> None:
        try:
            await self.connect(expected_generation=generation)
        except NotibridgeError as err:
            _LOGGER.error("Scheduled reconnect failed: %s", err)
        finally:
            if self._reconnect_task is asyncio.current_task():
                self._reconnect_task = None

    def _cancel_reconnect_task(self) -> None:
        task = self._reconnect_task
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
            _LOGGER.debug("In-flight reconnect cancelled")
        self._reconnect_task = None

    def _cancel_reconnect(self) -> None:
        if self._reconnect_timer is not None:
            self._reconnect_timer.cancel()
            self._reconnect_timer = None
            _LOGGER.debug("Pending reconnect cancelled")
        self._reconnect_delay = None

    def _schedule_pairing_expiry(self, pairing: PairingArtifact, delay: float) -> None:
        self._cancel_pairing_timer()
        loop = asyncio.get_running_loop()
        self._pairing_timer = loop.call_later(delay, self._expire_pairing, pairing)

    def _expire_pairing(self, pairing: PairingArtifact) -> None:
        self._pairing_timer = None
        if self.state.pairing is pairing and not self.state.connected:
            self.state.pairing = None
            _LOGGER.info("Pairing code expired")

    def _cancel_pairing_timer(self) -> None:
        if self._pairing_timer is not None:
            self._pairing_timer.cancel()
            self._pairing_timer = None

    # -------------------------------------------------------------------------
    # Internal: Helpers
    # -------------------------------------------------------------------------

    async def _teardown(self) -> None:
        """Drop the current handle and end it, along with any released ones.

        Close errors are logged and ignored.
        """
        session = self.state.session
        self.state.session = None
        self.state.connected = False

        # Invalidate events and scheduled reconnects of the old handle before suspending.
        self.state.generation += 1
        if session is not None:
            await self._end_session(session)
        if self._ending:
            await asyncio.gather(*self._ending)

    def _release_session(self) -> None:
        """Detach a dead handle without suspending; it is ended in the background."""
        session = self.state.session
        if session is None:
            return
        self.state.session = None
        self.state.generation += 1
        task = asyncio.create_task(self._end_session(session))
        self._ending.add(task)
        task.add_done_callback(self._ending.discard)

    async def _end_session(self, session: SessionHandle) -> None:
        try:
            await session.end()
        except Exception as err:
            _LOGGER.warning("Error while ending session: %s", err)

    def _current_pairing(self) -> PairingArtifact | None:
        pairing = self.state.pairing
        if pairing is not None and pairing.is_expired(self._clock()):
            self._cancel_pairing_timer()
            self.state.pairing = None
            _LOGGER.info("Pairing code expired")
            return None
        return pairing

    def _cooldown_remaining(self, now: float) -> float:
        if self.state.last_attempt_at is None:
            return 0.0
        elapsed = now - self.state.last_attempt_at
        return max(0.0, self.state.cooldown_duration - elapsed)

    def _cooldown_ends_at(self) -> str | None:
        if self.state.last_attempt_at is None:
            return None
        ends = self.state.last_attempt_at + self.state.cooldown_duration
        return datetime.fromtimestamp(ends, tz=UTC).isoformat()
