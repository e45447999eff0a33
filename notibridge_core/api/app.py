"""aiohttp application exposing the notification API.

Routes:
- GET  /api                  Service info
- GET  /api/health           Health check
- GET  /api/qr               Pairing QR code page (no auth, for initial setup)
- GET  /api/status           Detailed connection status
- GET  /api/logs             Recent log records
- POST /api/message          Send a message (rate limited)
- POST /api/connect          Force a new connection
- POST /api/disconnect       Disconnect
- POST /api/reset            Reset connection state and cooldown
- POST /api/clear-session    Delete stored credentials and re-pair
- POST /api/webhook/notify   Send a message authenticated by webhook secret
"""

from __future__ import annotations

import html
import json
import logging
from datetime import UTC, datetime
from typing import Any

from aiohttp import web

from .. import __version__
from ..config import Settings
from ..connection import ConnectionManager
from ..dispatcher import NotificationDispatcher
from ..errors import ValidationError
from ..logs import LogBuffer
from .middleware import (
    RATE_LIMITER_KEY,
    SETTINGS_KEY,
    error_middleware,
    error_response,
    rate_limited,
    require_auth,
    tokens_match,
)
from .ratelimit import RateLimiter

_LOGGER = logging.getLogger(__name__)

MANAGER_KEY = web.AppKey("manager", ConnectionManager)
DISPATCHER_KEY = web.AppKey("dispatcher", NotificationDispatcher)
LOG_BUFFER_KEY = web.AppKey("log_buffer", LogBuffer)

DEFAULT_LOG_COUNT = 50

routes = web.RouteTableDef()

_QR_PAGE = """<!DOCTYPE html>
<html>
  <head>
    <title>Pairing QR Code</title>
    <style>
      body {{ font-family: Arial, sans-serif; display: flex; align-items: center;
             justify-content: center; height: 100vh; margin: 0; background: #f4f4f8; }}
      .container {{ background: white; padding: 30px; border-radius: 10px;
                   box-shadow: 0 10px 40px rgba(0,0,0,0.2); text-align: center; }}
      img {{ border: 2px solid #eee; border-radius: 5px; padding: 10px; }}
    </style>
  </head>
  <body>
    <div class="container">
      <h1>Pairing QR Code</h1>
      <img src="{data_uri}" alt="Pairing QR code" />
      <p>Scan this QR code with the messaging app to link this server</p>
      <p><small>Issued at {issued_at}</small></p>
    </div>
  </body>
</html>
"""


def _success(message: str | None = None, data: Any = None, status: int = 200) -> web.Response:
    body: dict[str, Any] = {"success": True}
    if message is not None:
        body["message"] = message
    if data is not None:
        body["data"] = data
    return web.json_response(body, status=status)


async def _message_fields(request: web.Request) -> tuple[str, str, dict[str, Any]]:
    try:
        data = await request.json()
    except json.JSONDecodeError as err:
        raise ValidationError("Request body must be valid JSON") from err
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")

    phone_number = data.get("phone_number") or data.get("phoneNumber")
    message = data.get("message")
    if not phone_number or not message:
        raise ValidationError("Both phone_number and message are required")
    return phone_number, message, data


# -------------------------------------------------------------------------
# Public routes
# -------------------------------------------------------------------------


@routes.get("/api")
async def api_info(request: web.Request) -> web.Response:
    return web.json_response(
        {
            "name": "notibridge",
            "version": __version__,
            "endpoints": {
                "GET /api/health": "Health check",
                "GET /api/qr": "Get pairing QR code",
                "GET /api/status": "Get connection status (requires auth)",
                "GET /api/logs": "Get recent logs (requires auth)",
                "POST /api/message": "Send message (requires auth)",
                "POST /api/connect": "Force connection (requires auth)",
                "POST /api/disconnect": "Disconnect (requires auth)",
                "POST /api/reset": "Reset connection state (requires auth)",
                "POST /api/clear-session": "Clear stored session (requires auth)",
                "POST /api/webhook/notify": "Send message (webhook secret)",
            },
        }
    )


@routes.get("/api/health")
async def health(request: web.Request) -> web.Response:
    return web.json_response(
        {
            "success": True,
            "message": "Server is running",
            "timestamp": datetime.now(tz=UTC).isoformat(),
        }
    )


@routes.get("/api/qr")
async def pairing_qr(request: web.Request) -> web.Response:
    """Serve the outstanding pairing code as an HTML page."""
    rendered = request.app[MANAGER_KEY].current_pairing_artifact()
    if rendered is None:
        return error_response(
            404,
            "Not Found",
            "No QR code available. The session might already be connected.",
        )

    issued_at = datetime.fromtimestamp(rendered.issued_at, tz=UTC).isoformat()
    page = _QR_PAGE.format(
        data_uri=html.escape(rendered.data_uri, quote=True),
        issued_at=html.escape(issued_at),
    )
    return web.Response(text=page, content_type="text/html")


@routes.post("/api/webhook/notify")
async def webhook_notify(request: web.Request) -> web.Response:
    """Send a notification authenticated by a shared secret in the body."""
    phone_number, message, data = await _message_fields(request)
    secret = data.get("secret")
    expected = request.app[SETTINGS_KEY].webhook_secret
    if not isinstance(secret, str) or not tokens_match(secret, expected):
        return error_response(401, "Unauthorized", "Invalid webhook secret")

    receipt = await request.app[DISPATCHER_KEY].send(phone_number, message)
    _LOGGER.info("Webhook notification sent (delivery_id=%s)", receipt.delivery_id)
    return _success(
        "Notification sent",
        data={"delivery_id": receipt.delivery_id, "to": receipt.destination},
    )


# -------------------------------------------------------------------------
# Authenticated routes
# -------------------------------------------------------------------------


@routes.post("/api/message")
@require_auth
@rate_limited
async def send_message(request: web.Request) -> web.Response:
    phone_number, message, _ = await _message_fields(request)
    receipt = await request.app[DISPATCHER_KEY].send(phone_number, message)
    return _success(
        "Message sent successfully",
        data={"delivery_id": receipt.delivery_id, "to": receipt.destination},
        status=201,
    )


@routes.get("/api/status")
@require_auth
async def status(request: web.Request) -> web.Response:
    return _success(data=request.app[MANAGER_KEY].detailed_status())


@routes.post("/api/connect")
@require_auth
async def force_connect(request: web.Request) -> web.Response:
    await request.app[MANAGER_KEY].force_reconnect()
    _LOGGER.info("Force connect requested via API")
    return _success(
        "Connection initiated. Check /api/qr for the QR code or /api/status for state."
    )


@routes.post("/api/disconnect")
@require_auth
async def disconnect(request: web.Request) -> web.Response:
    await request.app[MANAGER_KEY].disconnect()
    _LOGGER.info("Disconnect requested via API")
    return _success("Disconnected successfully")


@routes.post("/api/reset")
@require_auth
async def reset(request: web.Request) -> web.Response:
    await request.app[MANAGER_KEY].reset()
    _LOGGER.info("Connection reset requested via API")
    return _success("Connection state reset successfully. Ready for new connection.")


@routes.post("/api/clear-session")
@require_auth
async def clear_session(request: web.Request) -> web.Response:
    removed = await request.app[MANAGER_KEY].clear_persisted_credentials()
    _LOGGER.info("Session cleared via API (%d files)", len(removed))
    return _success(
        "Session data cleared. Scan a new QR code to reconnect.",
        data={"deleted_files": removed},
    )


@routes.get("/api/logs")
@require_auth
async def recent_logs(request: web.Request) -> web.Response:
    raw = request.query.get("count", str(DEFAULT_LOG_COUNT))
    try:
        count = int(raw)
    except ValueError as err:
        raise ValidationError(f"count must be an integer, got {raw!r}") from err
    return _success(data=request.app[LOG_BUFFER_KEY].recent(count))


def create_app(
    settings: Settings,
    manager: ConnectionManager,
    dispatcher: NotificationDispatcher,
    *,
    log_buffer: LogBuffer | None = None,
    rate_limiter: RateLimiter | None = None,
) -> web.Application:
    """Build the aiohttp application around an existing manager and dispatcher."""
    app = web.Application(middlewares=[error_middleware])
    app[SETTINGS_KEY] = settings
    app[MANAGER_KEY] = manager
    app[DISPATCHER_KEY] = dispatcher
    app[LOG_BUFFER_KEY] = log_buffer or LogBuffer()
    app[RATE_LIMITER_KEY] = rate_limiter or RateLimiter(
        settings.rate_limit_max_requests, settings.rate_limit_window
    )
    app.add_routes(routes)
    return app
