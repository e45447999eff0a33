"""Session transport for the messaging network.

This package contains all IO, wire protocol, and network handling.

Components:
- base: Session handle interface and lifecycle events
- credentials: File-backed credential store
- gateway: Session handle over the gateway WebSocket bridge
- protocol: Gateway frame builders and parsers
- ws: WebSocket connection helper
- ws_client: Framed gateway channel (text frames plus one terminal frame)
"""

from .base import (
    ConnectionClosed,
    ConnectionOpened,
    EventSink,
    PairingCodeReady,
    SendReceipt,
    SessionEvent,
    SessionFactory,
    SessionHandle,
    SessionOptions,
)
from .credentials import CredentialStore
from .gateway import GatewaySession
from .ws import connect_websocket
from .ws_client import FrameKind, GatewayChannel, GatewayFrame

__all__ = [
    "ConnectionClosed",
    "ConnectionOpened",
    "CredentialStore",
    "EventSink",
    "FrameKind",
    "GatewayChannel",
    "GatewayFrame",
    "GatewaySession",
    "PairingCodeReady",
    "SendReceipt",
    "SessionEvent",
    "SessionFactory",
    "SessionHandle",
    "SessionOptions",
    "connect_websocket",
]
