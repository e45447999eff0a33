"""Session transport interface consumed by the connection manager.

A session handle represents one authenticated connection to the messaging
network. Handles push lifecycle events to the sink they were created with;
every event carries the generation the handle was created for so that the
manager can drop events from superseded handles.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol

if TYPE_CHECKING:
    from .credentials import CredentialStore


@dataclass(frozen=True, slots=True)
class PairingCodeReady:
    """The network issued a pairing code for a new device link."""

    generation: int
    code: str


@dataclass(frozen=True, slots=True)
class ConnectionOpened:
    """The session authenticated and is ready to send."""

    generation: int


@dataclass(frozen=True, slots=True)
class ConnectionClosed:
    """The session closed.

    Attributes:
        generation: Handle generation that emitted the event.
        reason: Human-readable close reason.
        status_code: Status code reported by the network, if any.
        is_auth_failure: True when the network revoked the credential.
        payload: Raw diagnostic payload for logging.
    """

    generation: int
    reason: str
    status_code: int | None = None
    is_auth_failure: bool = False
    payload: dict[str, Any] | None = None


SessionEvent = PairingCodeReady | ConnectionOpened | ConnectionClosed
EventSink = Callable[[SessionEvent], None]


@dataclass(frozen=True, slots=True)
class SendReceipt:
    """Result of a successful send."""

    delivery_id: str
    address: str


@dataclass(frozen=True)
class SessionOptions:
    """Options passed to the session factory."""

    gateway_url: str
    connect_timeout: float = 60.0
    send_timeout: float = 60.0
    keepalive_interval: int | None = 30
    browser: tuple[str, str, str] = ("Chrome (Linux)", "", "")


class SessionHandle(Protocol):
    """One live connection to the messaging network."""

    generation: int

    async def send(self, address: str, payload: dict[str, Any]) -> SendReceipt:
        """Send payload to address, returning the delivery identifier."""
        ...

    async def end(self) -> None:
        """Tear down the session. Best effort, emits no further events."""
        ...


class SessionFactory(Protocol):
    """Creates session handles.

    Construction returns immediately; connection completes asynchronously and
    is reported through the event sink. Raises TransportError when the handle
    cannot be constructed.
    """

    def __call__(
        self,
        *,
        store: CredentialStore,
        credentials: dict[str, Any] | None,
        options: SessionOptions,
        generation: int,
        on_event: EventSink,
    ) -> SessionHandle: ...
