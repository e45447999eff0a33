"""Tests for the HTTP API routes and error mapping."""

from __future__ import annotations

import logging

import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp.test_utils import TestClient, TestServer

from notibridge_core.api import RateLimiter, create_app
from notibridge_core.api.middleware import SETTINGS_KEY, error_middleware
from notibridge_core.config import Settings
from notibridge_core.dispatcher import NotificationDispatcher
from notibridge_core.errors import (
    AuthRevokedError,
    CooldownActiveError,
    CredentialStoreError,
    TransportRejectedError,
)
from notibridge_core.logs import LogBuffer
from notibridge_core.transport.base import ConnectionOpened, PairingCodeReady

TOKEN = "test-token-0123456789"
AUTH = {"Authorization": f"Bearer {TOKEN}"}


@pytest.fixture
def settings(tmp_path):
    return Settings(
        api_token=TOKEN,
        webhook_secret="hook-secret",
        session_folder=tmp_path / "sessions",
    )


@pytest.fixture
def log_buffer():
    return LogBuffer()


@pytest_asyncio.fixture
async def client(settings, manager, clock, log_buffer):
    app = create_app(
        settings,
        manager,
        NotificationDispatcher(manager),
        log_buffer=log_buffer,
        rate_limiter=RateLimiter(1, 1.0, clock=clock),
    )
    async with TestClient(TestServer(app)) as test_client:
        yield test_client


async def _connect(manager) -> None:
    await manager.initialize()
    manager.handle_event(ConnectionOpened(generation=manager.state.generation))


class TestPublicRoutes:
    """Tests for routes that need no token."""

    @pytest.mark.asyncio
    async def test_api_info(self, client):
        resp = await client.get("/api")

        assert resp.status == 200
        body = await resp.json()
        assert body["name"] == "notibridge"
        assert "POST /api/message" in body["endpoints"]

    @pytest.mark.asyncio
    async def test_health(self, client):
        resp = await client.get("/api/health")

        body = await resp.json()
        assert resp.status == 200
        assert body["success"] is True
        assert body["timestamp"]

    @pytest.mark.asyncio
    async def test_unknown_route(self, client):
        resp = await client.get("/api/nope")

        assert resp.status == 404
        assert await resp.json() == {
            "error": "Not Found",
            "message": "Route /api/nope not found",
        }

    @pytest.mark.asyncio
    async def test_qr_without_pairing(self, client):
        resp = await client.get("/api/qr")

        assert resp.status == 404
        assert (await resp.json())["error"] == "Not Found"

    @pytest.mark.asyncio
    async def test_qr_page(self, client, manager):
        await manager.initialize()
        manager.handle_event(
            PairingCodeReady(generation=manager.state.generation, code="2@abc")
        )

        resp = await client.get("/api/qr")

        assert resp.status == 200
        assert resp.content_type == "text/html"
        assert 'src="data:image/png;base64,' in await resp.text()


class TestAuthentication:
    """Tests for token checks on protected routes."""

    @pytest.mark.asyncio
    async def test_missing_token(self, client):
        resp = await client.get("/api/status")

        assert resp.status == 401
        assert (await resp.json())["message"] == "API token is required"

    @pytest.mark.asyncio
    async def test_invalid_token(self, client):
        resp = await client.get("/api/status", headers={"Authorization": "Bearer wrong"})

        assert resp.status == 401
        assert (await resp.json())["message"] == "Invalid API token"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("headers", "params"),
        [({"X-API-Token": TOKEN}, None), (None, {"token": TOKEN})],
    )
    async def test_alternate_token_locations(self, client, headers, params):
        resp = await client.get("/api/status", headers=headers, params=params)

        assert resp.status == 200


class TestSendMessage:
    """Tests for POST /api/message."""

    @pytest.mark.asyncio
    async def test_send_success(self, client, manager, factory):
        await _connect(manager)

        resp = await client.post(
            "/api/message",
            json={"phone_number": "+1234567890", "message": "Hello"},
            headers=AUTH,
        )

        assert resp.status == 201
        body = await resp.json()
        assert body["success"] is True
        assert body["data"] == {
            "delivery_id": f"MSG-{factory.latest.generation}",
            "to": "1234567890@s.whatsapp.net",
        }

    @pytest.mark.asyncio
    async def test_camel_case_field_accepted(self, client, manager):
        await _connect(manager)

        resp = await client.post(
            "/api/message",
            json={"phoneNumber": "+1234567890", "message": "Hello"},
            headers=AUTH,
        )

        assert resp.status == 201

    @pytest.mark.asyncio
    async def test_not_connected(self, client):
        resp = await client.post(
            "/api/message",
            json={"phone_number": "+1234567890", "message": "Hello"},
            headers=AUTH,
        )

        assert resp.status == 503
        assert resp.headers["Retry-After"] == "30"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("payload", "message"),
        [
            ({"message": "Hello"}, "Both phone_number and message are required"),
            ({"phone_number": "abc", "message": "Hello"}, "Invalid phone number format"),
            (["not", "an", "object"], "JSON object"),
        ],
    )
    async def test_invalid_request(self, client, payload, message):
        resp = await client.post("/api/message", json=payload, headers=AUTH)

        assert resp.status == 400
        assert message in (await resp.json())["message"]

    @pytest.mark.asyncio
    async def test_malformed_json(self, client):
        resp = await client.post("/api/message", data="{oops", headers=AUTH)

        assert resp.status == 400

    @pytest.mark.asyncio
    async def test_rate_limited(self, client, manager):
        await _connect(manager)
        payload = {"phone_number": "+1234567890", "message": "Hello"}

        first = await client.post("/api/message", json=payload, headers=AUTH)
        second = await client.post("/api/message", json=payload, headers=AUTH)

        assert first.status == 201
        assert second.status == 429
        assert second.headers["Retry-After"] == "1"
        assert (await second.json())["retry_after"] == 1.0

    @pytest.mark.asyncio
    async def test_transport_failure(self, client, manager, factory):
        await _connect(manager)
        factory.latest.send.side_effect = TransportRejectedError(
            "not on network", status_code=404
        )

        resp = await client.post(
            "/api/message",
            json={"phone_number": "+1234567890", "message": "Hello"},
            headers=AUTH,
        )

        assert resp.status == 502
        body = await resp.json()
        assert body["details"] == "not on network"
        assert body["status_code"] == 404


class TestControlRoutes:
    """Tests for status and connection control routes."""

    @pytest.mark.asyncio
    async def test_status(self, client, manager):
        await manager.initialize()

        resp = await client.get("/api/status", headers=AUTH)

        data = (await resp.json())["data"]
        assert data["connected"] is False
        assert data["in_cooldown"] is True
        assert data["cooldown_remaining_seconds"] == 300
        assert data["max_attempts"] == 2

    @pytest.mark.asyncio
    async def test_force_connect(self, client, factory):
        resp = await client.post("/api/connect", headers=AUTH)

        assert resp.status == 200
        assert len(factory.sessions) == 1

    @pytest.mark.asyncio
    async def test_disconnect(self, client, manager, factory):
        await _connect(manager)

        resp = await client.post("/api/disconnect", headers=AUTH)

        assert resp.status == 200
        assert manager.connected is False
        factory.latest.end.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_reset(self, client, manager):
        await manager.initialize()

        resp = await client.post("/api/reset", headers=AUTH)

        assert resp.status == 200
        assert manager.detailed_status()["in_cooldown"] is False

    @pytest.mark.asyncio
    async def test_clear_session(self, client, store):
        store.save({"me": {"id": "123"}})

        resp = await client.post("/api/clear-session", headers=AUTH)

        assert resp.status == 200
        assert (await resp.json())["data"] == {"deleted_files": ["creds.json"]}

    @pytest.mark.asyncio
    async def test_clear_session_failure(self, client, store, monkeypatch):
        def fail():
            raise CredentialStoreError("Failed to delete session file creds.json")

        monkeypatch.setattr(store, "clear", fail)

        resp = await client.post("/api/clear-session", headers=AUTH)

        assert resp.status == 500
        assert "creds.json" in (await resp.json())["message"]

    @pytest.mark.asyncio
    async def test_logs(self, client, log_buffer):
        log_buffer.handle(
            logging.LogRecord("notibridge_core", logging.INFO, __file__, 1, "hi", (), None)
        )

        resp = await client.get("/api/logs", params={"count": "5"}, headers=AUTH)

        data = (await resp.json())["data"]
        assert [entry["message"] for entry in data] == ["hi"]

    @pytest.mark.asyncio
    async def test_logs_bad_count(self, client):
        resp = await client.get("/api/logs", params={"count": "many"}, headers=AUTH)

        assert resp.status == 400


class TestWebhook:
    """Tests for POST /api/webhook/notify."""

    @pytest.mark.asyncio
    async def test_invalid_secret(self, client, manager):
        await _connect(manager)

        resp = await client.post(
            "/api/webhook/notify",
            json={"phone_number": "+1234567890", "message": "Hi", "secret": "nope"},
        )

        assert resp.status == 401
        assert (await resp.json())["message"] == "Invalid webhook secret"

    @pytest.mark.asyncio
    async def test_notify(self, client, manager):
        await _connect(manager)

        resp = await client.post(
            "/api/webhook/notify",
            json={"phone_number": "+1234567890", "message": "Hi", "secret": "hook-secret"},
        )

        assert resp.status == 200
        assert (await resp.json())["data"]["to"] == "1234567890@s.whatsapp.net"


class TestErrorMapping:
    """Tests for error_middleware status mapping."""

    @pytest_asyncio.fixture
    async def failing_client(self, settings):
        async def cooldown(request):
            raise CooldownActiveError(42, "2026-01-01T00:00:00+00:00")

        async def revoked(request):
            raise AuthRevokedError("revoked")

        async def crash(request):
            raise RuntimeError("kaboom")

        app = web.Application(middlewares=[error_middleware])
        app[SETTINGS_KEY] = settings
        app.router.add_get("/cooldown", cooldown)
        app.router.add_get("/revoked", revoked)
        app.router.add_get("/crash", crash)
        async with TestClient(TestServer(app)) as test_client:
            yield test_client

    @pytest.mark.asyncio
    async def test_cooldown(self, failing_client):
        resp = await failing_client.get("/cooldown")

        assert resp.status == 429
        assert resp.headers["Retry-After"] == "42"
        body = await resp.json()
        assert body["retry_after"] == 42
        assert body["cooldown_ends_at"] == "2026-01-01T00:00:00+00:00"

    @pytest.mark.asyncio
    async def test_auth_revoked(self, failing_client):
        resp = await failing_client.get("/revoked")

        assert resp.status == 409

    @pytest.mark.asyncio
    async def test_unexpected_error_details_in_development(self, failing_client):
        resp = await failing_client.get("/crash")

        assert resp.status == 500
        assert (await resp.json())["details"] == "kaboom"
