"""Error types for the notibridge connection manager and dispatcher."""

from __future__ import annotations


class NotibridgeError(Exception):
    """Base error for notibridge failures."""


class ConfigError(NotibridgeError):
    """Configuration value is missing or malformed."""


class ValidationError(NotibridgeError):
    """Caller supplied a malformed destination or message body."""


class NotConnectedError(NotibridgeError):
    """No open session to the messaging network.

    Callers should retry once pairing completes.
    """


class TransportError(NotibridgeError):
    """Failure reported by the session transport."""

    def __init__(
        self,
        message: str,
        *,
        reason: str | None = None,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.reason = reason or message
        self.status_code = status_code


class TransportTimeout(TransportError):
    """Timeout while talking to the messaging gateway."""


class TransportConnectionError(TransportError):
    """Network connection to the messaging gateway failed."""


class TransportHandshakeError(TransportError):
    """WebSocket handshake with the messaging gateway failed."""


class TransportRejectedError(TransportError):
    """The remote network rejected a request."""


class AuthRevokedError(NotibridgeError):
    """The remote network revoked the stored credential.

    Automatic reconnection stays suppressed until an operator clears the
    credentials or forces a reconnect.
    """


class CooldownActiveError(NotibridgeError):
    """A connection attempt was refused because the cooldown is running."""

    def __init__(self, remaining_seconds: int, ends_at: str | None) -> None:
        super().__init__(
            f"In cooldown period, wait {remaining_seconds}s before connecting again"
        )
        self.remaining_seconds = remaining_seconds
        self.ends_at = ends_at


class CredentialStoreError(NotibridgeError):
    """Credential store could not be read, written or cleared."""


class PairingRenderError(NotibridgeError):
    """Pairing code could not be rendered."""
