"""Pytest configuration and shared fixtures.

Each test gets its own SQLite database file (aiosqlite), a controllable
clock and recording channel transports, wired through ``build_container``
exactly as the application does at startup.
"""

import os
from collections.abc import AsyncGenerator
from datetime import datetime, timedelta

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

os.environ["TESTING"] = "true"
os.environ.setdefault("SCHEDULER_ENABLED", "false")

from regcomms.config import Settings
from regcomms.database import make_session_maker
from regcomms.dependencies import ServiceContainer, build_container
from regcomms.models import Base, CommunicationChannel
from regcomms.services.channel_transports import ChannelTransportRegistry, DeliveryResult
from tests.factories import T0


class FakeClock:
    """Callable clock that only moves when a test advances it."""

    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class RecordingTransport:
    """Transport that records every delivery and fails listed addresses."""

    def __init__(self, channel: CommunicationChannel, failing: set[str]):
        self.channel = channel
        self._failing = failing
        self.sent: list[dict[str, str]] = []

    async def deliver(self, address: str, subject: str, body: str) -> DeliveryResult:
        if address in self._failing:
            return DeliveryResult.failed(f"{self.channel.value} rejected {address}")
        self.sent.append({"address": address, "subject": subject, "body": body})
        return DeliveryResult.ok()


class RecordingTransports(ChannelTransportRegistry):
    """Registry with a RecordingTransport on every channel."""

    def __init__(self):
        self.failing: set[str] = set()
        self.recorders = {
            channel: RecordingTransport(channel, self.failing)
            for channel in CommunicationChannel
        }
        super().__init__(dict(self.recorders))

    def sent(self, channel: CommunicationChannel | None = None) -> list[dict[str, str]]:
        if channel is not None:
            return list(self.recorders[channel].sent)
        return [item for recorder in self.recorders.values() for item in recorder.sent]


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def transports() -> RecordingTransports:
    return RecordingTransports()


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        database_url="sqlite+aiosqlite://",
        scheduler_enabled=False,
        testing=True,
    )


@pytest_asyncio.fixture
async def session_maker(tmp_path) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """Session maker over a fresh SQLite file with all tables created."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'regcomms.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield make_session_maker(engine)
    await engine.dispose()


@pytest.fixture
def services(session_maker, test_settings, transports, clock) -> ServiceContainer:
    return build_container(session_maker, test_settings, transports=transports, clock=clock)

