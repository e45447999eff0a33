"""HTTP API surface for notibridge."""

from .app import (
    DISPATCHER_KEY,
    LOG_BUFFER_KEY,
    MANAGER_KEY,
    create_app,
)
from .middleware import RATE_LIMITER_KEY, SETTINGS_KEY
from .ratelimit import RateLimiter

__all__ = [
    "DISPATCHER_KEY",
    "LOG_BUFFER_KEY",
    "MANAGER_KEY",
    "RATE_LIMITER_KEY",
    "RateLimiter",
    "SETTINGS_KEY",
    "create_app",
]
