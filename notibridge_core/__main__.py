"""Process entry points: the API server and the token generator."""

from __future__ import annotations

import logging
import sys

from aiohttp import web

from .api import MANAGER_KEY, SETTINGS_KEY, create_app
from .config import Settings, generate_token, mask_token
from .connection import ConnectionManager
from .dispatcher import NotificationDispatcher
from .errors import (
    AuthRevokedError,
    ConfigError,
    CooldownActiveError,
    CredentialStoreError,
    NotibridgeError,
)
from .logs import configure_logging

_LOGGER = logging.getLogger("notibridge_core.main")


async def _on_startup(app: web.Application) -> None:
    manager = app[MANAGER_KEY]
    settings = app[SETTINGS_KEY]
    manager.start()

    try:
        await manager.initialize()
    except CooldownActiveError as err:
        _LOGGER.warning("Not connecting at startup: %s", err)
    except AuthRevokedError as err:
        _LOGGER.error("Not connecting at startup: %s", err)
    except NotibridgeError as err:
        _LOGGER.error("Failed to initialize messaging connection: %s", err)

    _LOGGER.info("Server is running on port %d", settings.port)
    _LOGGER.info("Environment: %s", settings.env)
    _LOGGER.info("API Token: %s", mask_token(settings.api_token))
    _LOGGER.info("Open http://localhost:%d/api/qr to scan the pairing code", settings.port)


async def _on_cleanup(app: web.Application) -> None:
    manager = app[MANAGER_KEY]
    _LOGGER.info("Shutting down gracefully")
    await manager.disconnect()
    await manager.stop()


def build_app(settings: Settings) -> web.Application:
    """Wire settings, manager, dispatcher and API together.

    Raises:
        CredentialStoreError: The session folder is not writable.
    """
    log_buffer = configure_logging(settings.log_level, json_format=settings.log_json)
    manager = ConnectionManager.from_settings(settings)
    manager.store.ensure_writable()

    dispatcher = NotificationDispatcher(manager, address_suffix=settings.address_suffix)
    app = create_app(settings, manager, dispatcher, log_buffer=log_buffer)
    app.on_startup.append(_on_startup)
    app.on_cleanup.append(_on_cleanup)
    return app


def main() -> int:
    """Run the API server until interrupted."""
    try:
        settings = Settings.from_env()
    except ConfigError as err:
        print(f"Invalid configuration: {err}", file=sys.stderr)
        return 1

    try:
        app = build_app(settings)
    except CredentialStoreError as err:
        _LOGGER.critical("Failed to start server: %s", err)
        return 1

    web.run_app(app, host=settings.host, port=settings.port, print=None)
    return 0


def token_main() -> int:
    """Rotate the API token stored in .env and print it."""
    try:
        token = generate_token()
    except ConfigError as err:
        print(f"Failed to generate token: {err}", file=sys.stderr)
        return 1

    print("Your new API token is:")
    print(f"  {token}")
    print("It has been saved to .env. Keep it secret.")
    print(f"Use it in requests as:  Authorization: Bearer {token}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
