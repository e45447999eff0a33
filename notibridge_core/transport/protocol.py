"""Frame builders and parsers for the messaging gateway bridge.

Every frame is a JSON envelope:

    {"v": 1, "type": "...", "msg_id": "...", "ts": <epoch ms>, "body": {...}}

Outbound types: ``hello``, ``send``. Inbound types: ``pairing_code``,
``connection``, ``credentials``, ``send_ack``, ``send_error``.
"""

from __future__ import annotations

import time
import uuid
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

PROTOCOL_VERSION = 1

# Status code the network reports when the linked device was logged out.
LOGGED_OUT_STATUS = 401


@dataclass(frozen=True, slots=True)
class ConnectionUpdate:
    """Parsed ``connection`` frame."""

    opened: bool
    reason: str | None = None
    status_code: int | None = None
    is_auth_failure: bool = False


def build_envelope(
    *,
    msg_type: str,
    body: dict[str, Any],
    msg_id: str | None = None,
    timestamp_ms: int | None = None,
) -> dict[str, Any]:
    """Build a gateway envelope.

    Args:
        msg_type: Frame type (e.g., "hello", "send").
        body: JSON-serializable body.
        msg_id: Optional caller-supplied identifier. Generated when omitted.
        timestamp_ms: Optional epoch milliseconds override.
    """
    return {
        "v": PROTOCOL_VERSION,
        "type": msg_type,
        "msg_id": msg_id or str(uuid.uuid4()),
        "ts": timestamp_ms if timestamp_ms is not None else int(time.time() * 1000),
        "body": body,
    }


def build_hello(
    *,
    credentials: dict[str, Any] | None,
    browser: Sequence[str],
    msg_id: str | None = None,
) -> dict[str, Any]:
    """Construct the opening frame carrying stored credentials, if any.

    A hello without credentials asks the gateway to start a pairing flow.
    """
    return build_envelope(
        msg_type="hello",
        msg_id=msg_id,
        body={"credentials": credentials, "browser": list(browser)},
    )


def build_send(
    *,
    address: str,
    payload: dict[str, Any],
    msg_id: str | None = None,
) -> dict[str, Any]:
    """Construct a send frame for one message."""
    if not address:
        raise ValueError("address is required for send frames")
    return build_envelope(
        msg_type="send",
        msg_id=msg_id,
        body={"to": address, "message": payload},
    )


def _body(frame: dict[str, Any]) -> dict[str, Any]:
    body = frame.get("body")
    if not isinstance(body, dict):
        raise ValueError("frame body must be an object")
    return body


def _status_code(value: Any) -> int | None:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"status_code must be integer, got {type(value).__name__}")
    return value


def parse_pairing_code(frame: dict[str, Any]) -> str:
    """Extract the pairing code from a ``pairing_code`` frame."""
    code = _body(frame).get("code")
    if not isinstance(code, str) or not code:
        raise ValueError("pairing_code frame requires a non-empty code")
    return code


def parse_connection_update(frame: dict[str, Any]) -> ConnectionUpdate:
    """Parse a ``connection`` frame.

    The body carries ``state`` ("open" or "close") and, for closes, an
    optional ``reason``, ``status_code`` and ``logged_out`` flag.
    """
    body = _body(frame)
    state = body.get("state")
    if state == "open":
        return ConnectionUpdate(opened=True)
    if state != "close":
        raise ValueError(f"Unknown connection state: {state!r}")

    status_code = _status_code(body.get("status_code"))
    logged_out = bool(body.get("logged_out")) or status_code == LOGGED_OUT_STATUS
    return ConnectionUpdate(
        opened=False,
        reason=str(body.get("reason") or "Unknown error"),
        status_code=status_code,
        is_auth_failure=logged_out,
    )


def parse_credentials(frame: dict[str, Any]) -> dict[str, Any]:
    """Extract updated credential material from a ``credentials`` frame."""
    creds = _body(frame).get("credentials")
    if not isinstance(creds, dict):
        raise ValueError("credentials frame requires a credentials object")
    return creds


def parse_send_ack(frame: dict[str, Any]) -> tuple[str, str]:
    """Return ``(request_msg_id, delivery_id)`` from a ``send_ack`` frame."""
    body = _body(frame)
    request_id = body.get("request_id")
    delivery_id = body.get("delivery_id")
    if not isinstance(request_id, str) or not request_id:
        raise ValueError("send_ack frame requires request_id")
    if not isinstance(delivery_id, str) or not delivery_id:
        raise ValueError("send_ack frame requires delivery_id")
    return request_id, delivery_id


def parse_send_error(frame: dict[str, Any]) -> tuple[str, str, int | None]:
    """Return ``(request_msg_id, message, status_code)`` from a ``send_error`` frame."""
    body = _body(frame)
    request_id = body.get("request_id")
    if not isinstance(request_id, str) or not request_id:
        raise ValueError("send_error frame requires request_id")
    message = str(body.get("message") or "Remote rejected message")
    return request_id, message, _status_code(body.get("status_code"))
