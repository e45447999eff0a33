"""Pytest configuration and fixtures for notibridge_core tests."""

from __future__ import annotations

from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio

from notibridge_core.connection import ConnectionManager
from notibridge_core.transport.base import EventSink, SendReceipt, SessionOptions
from notibridge_core.transport.credentials import CredentialStore


class FakeClock:
    """Manually advanced wall clock."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeSession:
    """Session handle double that records calls and lets tests emit events."""

    def __init__(
        self,
        *,
        store: CredentialStore,
        credentials: dict[str, Any] | None,
        options: SessionOptions,
        generation: int,
        on_event: EventSink,
    ) -> None:
        self.store = store
        self.credentials = credentials
        self.options = options
        self.generation = generation
        self.on_event = on_event
        self.send = AsyncMock(
            side_effect=lambda address, payload: SendReceipt(
                delivery_id=f"MSG-{generation}", address=address
            )
        )
        self.end = AsyncMock()


class FakeSessionFactory:
    """Creates FakeSession handles and keeps every one it made."""

    def __init__(self) -> None:
        self.sessions: list[FakeSession] = []
        self.error: Exception | None = None

    def __call__(self, **kwargs: Any) -> FakeSession:
        if self.error is not None:
            raise self.error
        session = FakeSession(**kwargs)
        self.sessions.append(session)
        return session

    @property
    def latest(self) -> FakeSession:
        return self.sessions[-1]


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def factory() -> FakeSessionFactory:
    return FakeSessionFactory()


@pytest.fixture
def store(tmp_path: Path) -> CredentialStore:
    path = tmp_path / "sessions"
    path.mkdir()
    (path / ".gitkeep").touch()
    return CredentialStore(path)


@pytest_asyncio.fixture
async def manager(
    store: CredentialStore, factory: FakeSessionFactory, clock: FakeClock
):
    """Manager with two attempts, 60s backoff unit and 300s cooldown."""
    mgr = ConnectionManager(
        store,
        factory,
        SessionOptions(gateway_url="ws://gateway.test/session"),
        max_attempts=2,
        base_retry_delay=60.0,
        cooldown_duration=300.0,
        clock=clock,
    )
    yield mgr
    await mgr.stop()
