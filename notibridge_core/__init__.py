"""Notification API backed by one managed session to a messaging network."""

__version__ = "1.0.0"

from .connection import ConnectionManager, ConnectionState
from .dispatcher import DeliveryReceipt, NotificationDispatcher, normalize_destination
from .errors import (
    AuthRevokedError,
    ConfigError,
    CooldownActiveError,
    CredentialStoreError,
    NotConnectedError,
    NotibridgeError,
    PairingRenderError,
    TransportConnectionError,
    TransportError,
    TransportHandshakeError,
    TransportRejectedError,
    TransportTimeout,
    ValidationError,
)
from .pairing import PairingArtifact, RenderedPairing

__all__ = [
    "AuthRevokedError",
    "ConfigError",
    "ConnectionManager",
    "ConnectionState",
    "CooldownActiveError",
    "CredentialStoreError",
    "DeliveryReceipt",
    "NotConnectedError",
    "NotibridgeError",
    "NotificationDispatcher",
    "PairingArtifact",
    "PairingRenderError",
    "RenderedPairing",
    "TransportConnectionError",
    "TransportError",
    "TransportHandshakeError",
    "TransportRejectedError",
    "TransportTimeout",
    "ValidationError",
    "__version__",
    "normalize_destination",
]
