"""Request middleware: error mapping, token auth and rate limiting."""

from __future__ import annotations

import functools
import hmac
import logging
import math
from collections.abc import Awaitable, Callable
from typing import Any

from aiohttp import web

from ..config import Settings
from ..errors import (
    AuthRevokedError,
    CooldownActiveError,
    NotConnectedError,
    NotibridgeError,
    TransportError,
    ValidationError,
)
from .ratelimit import RateLimiter

_LOGGER = logging.getLogger(__name__)

Handler = Callable[[web.Request], Awaitable[web.StreamResponse]]

SETTINGS_KEY = web.AppKey("settings", Settings)
RATE_LIMITER_KEY = web.AppKey("rate_limiter", RateLimiter)

# Seconds a caller should wait before retrying a send while unpaired.
NOT_CONNECTED_RETRY_AFTER = 30


def error_response(
    status: int,
    error: str,
    message: str,
    *,
    headers: dict[str, str] | None = None,
    **extra: Any,
) -> web.Response:
    body: dict[str, Any] = {"error": error, "message": message}
    body.update({k: v for k, v in extra.items() if v is not None})
    return web.json_response(body, status=status, headers=headers)


@web.middleware
async def error_middleware(
    request: web.Request, handler: Handler
) -> web.StreamResponse:
    """Map domain errors onto JSON responses."""
    try:
        return await handler(request)
    except web.HTTPNotFound:
        return error_response(404, "Not Found", f"Route {request.path} not found")
    except web.HTTPException:
        raise
    except ValidationError as err:
        _LOGGER.warning("Invalid request to %s: %s", request.path, err)
        return error_response(400, "Bad Request", str(err))
    except NotConnectedError as err:
        return error_response(
            503,
            "Service Unavailable",
            str(err),
            headers={"Retry-After": str(NOT_CONNECTED_RETRY_AFTER)},
        )
    except CooldownActiveError as err:
        return error_response(
            429,
            "Too Many Requests",
            str(err),
            headers={"Retry-After": str(err.remaining_seconds)},
            retry_after=err.remaining_seconds,
            cooldown_ends_at=err.ends_at,
        )
    except AuthRevokedError as err:
        return error_response(409, "Conflict", str(err))
    except TransportError as err:
        return error_response(
            502,
            "Bad Gateway",
            "Messaging network request failed",
            details=str(err),
            status_code=err.status_code,
        )
    except NotibridgeError as err:
        _LOGGER.error("Request to %s failed: %s", request.path, err)
        return error_response(500, "Internal Server Error", str(err))
    except Exception as err:
        _LOGGER.exception("Unhandled error on %s %s", request.method, request.path)
        settings = request.app[SETTINGS_KEY]
        return error_response(
            500,
            "Internal Server Error",
            "An unexpected error occurred",
            details=str(err) if settings.is_development else None,
        )


def request_token(request: web.Request) -> str | None:
    """Token from the Authorization header, X-API-Token header or token query."""
    auth = request.headers.get("Authorization", "")
    if auth.startswith("Bearer "):
        return auth[len("Bearer ") :].strip() or None
    return request.headers.get("X-API-Token") or request.query.get("token")


def tokens_match(provided: str, expected: str) -> bool:
    return hmac.compare_digest(provided.encode(), expected.encode())


def require_auth(handler: Handler) -> Handler:
    """Reject requests without the configured API token."""

    @functools.wraps(handler)
    async def wrapper(request: web.Request) -> web.StreamResponse:
        token = request_token(request)
        if not token:
            _LOGGER.warning(
                "Unauthorized request - no token provided (ip=%s path=%s)",
                request.remote,
                request.path,
            )
            return error_response(401, "Unauthorized", "API token is required")
        if not tokens_match(token, request.app[SETTINGS_KEY].api_token):
            _LOGGER.warning(
                "Unauthorized request - invalid token %s... (ip=%s path=%s)",
                token[:8],
                request.remote,
                request.path,
            )
            return error_response(401, "Unauthorized", "Invalid API token")
        return await handler(request)

    return wrapper


def rate_limited(handler: Handler) -> Handler:
    """Apply the application rate limiter per client address."""

    @functools.wraps(handler)
    async def wrapper(request: web.Request) -> web.StreamResponse:
        limiter = request.app[RATE_LIMITER_KEY]
        key = request.remote or "unknown"
        if not limiter.is_allowed(key):
            _LOGGER.warning("Rate limit exceeded (ip=%s path=%s)", key, request.path)
            retry_after = limiter.retry_after(key)
            return error_response(
                429,
                "Too Many Requests",
                f"Rate limit exceeded. Maximum {limiter.max_requests} request(s) "
                f"per {limiter.window_seconds:g}s allowed.",
                headers={"Retry-After": str(max(1, math.ceil(retry_after)))},
                retry_after=limiter.window_seconds,
            )
        return await handler(request)

    return wrapper
