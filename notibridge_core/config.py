"""Application configuration.

Settings come from environment variables, with ``.env`` loaded through
python-dotenv. An optional YAML file named by ``CONFIG_FILE`` supplies
defaults using the same keys; the environment always wins.

When no ``API_TOKEN`` is configured one is generated and appended to ``.env``
so that it survives restarts.
"""

from __future__ import annotations

import logging
import os
import uuid
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv, set_key

from .errors import ConfigError

_LOGGER = logging.getLogger(__name__)

DEFAULT_ENV_PATH = Path(".env")

_DEFAULT_ENV_TEMPLATE = """\
# Server Configuration
PORT=3000
APP_ENV=production

# Messaging Configuration
SESSION_FOLDER=./sessions

# Rate Limiting
RATE_LIMIT_WINDOW_MS=1000
RATE_LIMIT_MAX_REQUESTS=1

# Logging
LOG_LEVEL=info
"""

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


@dataclass(frozen=True)
class Settings:
    """Immutable application settings, built once at startup.

    Durations are stored in seconds; the environment expresses them in ms.
    """

    host: str = "0.0.0.0"
    port: int = 3000
    env: str = "development"
    api_token: str = ""
    webhook_secret: str = ""
    session_folder: Path = Path("./sessions")
    gateway_url: str = "ws://127.0.0.1:8765/session"
    address_suffix: str = "s.whatsapp.net"
    max_reconnect_attempts: int = 2
    base_retry_delay: float = 60.0
    cooldown_period: float = 300.0
    send_timeout: float = 60.0
    rate_limit_window: float = 1.0
    rate_limit_max_requests: int = 1
    log_level: str = "info"
    log_json: bool = False
    print_qr: bool = True

    @property
    def is_development(self) -> bool:
        return self.env == "development"

    @classmethod
    def from_env(
        cls,
        environ: Mapping[str, str] | None = None,
        *,
        env_path: Path = DEFAULT_ENV_PATH,
    ) -> Settings:
        """Load settings.

        Args:
            environ: Explicit variables. When omitted, ``.env`` is loaded and
                ``os.environ`` is used.
            env_path: Location of the ``.env`` file used to persist a
                generated API token.

        Raises:
            ConfigError: If a value is malformed.
        """
        if environ is None:
            load_dotenv(env_path)
            environ = os.environ

        values: dict[str, str] = {}
        config_file = environ.get("CONFIG_FILE")
        if config_file:
            values.update(_load_yaml(Path(config_file)))
        values.update(environ)

        api_token = values.get("API_TOKEN") or ensure_api_token(env_path)

        return cls(
            host=values.get("HOST", cls.host),
            port=_int(values, "PORT", cls.port),
            env=values.get("APP_ENV", cls.env),
            api_token=api_token,
            webhook_secret=values.get("WEBHOOK_SECRET") or api_token,
            session_folder=Path(values.get("SESSION_FOLDER", "./sessions")),
            gateway_url=values.get("GATEWAY_URL", cls.gateway_url),
            address_suffix=values.get("ADDRESS_SUFFIX", cls.address_suffix),
            max_reconnect_attempts=_int(values, "MAX_RECONNECT_ATTEMPTS", 2),
            base_retry_delay=_int(values, "BASE_RETRY_DELAY_MS", 60_000) / 1000,
            cooldown_period=_int(values, "COOLDOWN_PERIOD_MS", 300_000) / 1000,
            send_timeout=_int(values, "SEND_TIMEOUT_MS", 60_000) / 1000,
            rate_limit_window=_int(values, "RATE_LIMIT_WINDOW_MS", 1000) / 1000,
            rate_limit_max_requests=_int(values, "RATE_LIMIT_MAX_REQUESTS", 1),
            log_level=values.get("LOG_LEVEL", cls.log_level).lower(),
            log_json=_bool(values, "LOG_JSON", False),
            print_qr=_bool(values, "PRINT_QR", True),
        )


def _load_yaml(path: Path) -> dict[str, str]:
    try:
        with open(path, encoding="utf-8") as f:
            data: Any = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as err:
        raise ConfigError(f"Failed to load config file {path}: {err}") from err
    if not isinstance(data, dict):
        raise ConfigError(f"Config file {path} must contain a mapping")
    return {str(k): str(v) for k, v in data.items() if v is not None}


def _int(values: Mapping[str, str], key: str, default: int) -> int:
    raw = values.get(key)
    if raw is None or raw == "":
        return default
    try:
        value = int(raw)
    except ValueError as err:
        raise ConfigError(f"{key} must be an integer, got {raw!r}") from err
    if value < 0:
        raise ConfigError(f"{key} must not be negative, got {value}")
    return value


def _bool(values: Mapping[str, str], key: str, default: bool) -> bool:
    raw = values.get(key)
    if raw is None or raw == "":
        return default
    lowered = raw.strip().lower()
    if lowered in _TRUE:
        return True
    if lowered in _FALSE:
        return False
    raise ConfigError(f"{key} must be a boolean, got {raw!r}")


def ensure_api_token(env_path: Path = DEFAULT_ENV_PATH) -> str:
    """Generate an API token and persist it to ``.env``.

    Called when no usable token is configured, so an existing empty
    ``API_TOKEN=`` line is filled in place.
    """
    token = str(uuid.uuid4())
    try:
        if not env_path.exists():
            env_path.write_text(_DEFAULT_ENV_TEMPLATE, encoding="utf-8")
            _LOGGER.info("Created %s", env_path)
        set_key(env_path, "API_TOKEN", token, quote_mode="never")
    except OSError as err:
        raise ConfigError(f"Failed to persist API token to {env_path}: {err}") from err
    _LOGGER.info("Generated new API token and saved to %s", env_path)
    return token


def generate_token(env_path: Path = DEFAULT_ENV_PATH) -> str:
    """Rotate the API token in ``.env``, creating the file when missing."""
    token = str(uuid.uuid4())
    try:
        if not env_path.exists():
            env_path.write_text(_DEFAULT_ENV_TEMPLATE, encoding="utf-8")
        set_key(env_path, "API_TOKEN", token, quote_mode="never")
    except OSError as err:
        raise ConfigError(f"Failed to write API token to {env_path}: {err}") from err
    return token


def mask_token(token: str) -> str:
    """Show the first 8 and last 4 characters of a token."""
    if len(token) > 12:
        return f"{token[:8]}...{token[-4:]}"
    return "***hidden***"
