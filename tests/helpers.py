"""Shared fixtures for the service and API tests."""

import tempfile
import unittest
from datetime import datetime, timedelta, timezone
from pathlib import Path

from sqlmodel import select

from app.cache.layer import CacheLayer
from app.core.config import Settings
from app.database import (
    build_engine,
    build_session_factory,
    create_db_and_tables,
    seed_reference_data,
)
from app.services.container import Services
from app.services.context import AuthIdentity, ServiceContext
from app.services.effects import SideEffects
from app.services.gateway import ApiGateway

# A Monday
START = datetime(2024, 1, 8, 9, 0, tzinfo=timezone.utc)

ALICE = AuthIdentity(external_id="auth|alice", email="alice@example.com", name="Alice")
BOB = AuthIdentity(external_id="auth|bob", email="bob@example.com")


class FakeClock:
    """Wall clock for services plus a matching monotonic timer for caches."""

    def __init__(self, start: datetime = START):
        self.current = start
        self.ticks = 1_000.0

    def __call__(self) -> datetime:
        return self.current

    def monotonic(self) -> float:
        return self.ticks

    def advance(self, **kwargs) -> datetime:
        delta = timedelta(**kwargs)
        self.current += delta
        self.ticks += delta.total_seconds()
        return self.current


def make_settings(tmpdir: str, **overrides) -> Settings:
    db_path = Path(tmpdir) / "test.db"
    return Settings(
        _env_file=None,
        database_url=f"sqlite+aiosqlite:///{db_path}",
        overdue_sweep_enabled=False,
        log_level="WARNING",
        **overrides,
    )


class ServiceTestCase(unittest.IsolatedAsyncioTestCase):
    """Fresh SQLite file, cache, clock and service graph per test."""

    settings_overrides: dict = {}

    async def asyncSetUp(self) -> None:
        self._tmpdir = tempfile.TemporaryDirectory()
        self.settings = make_settings(self._tmpdir.name, **self.settings_overrides)
        self.engine = build_engine(self.settings.database_url)
        await create_db_and_tables(self.engine)
        self.session_factory = build_session_factory(self.engine)
        await seed_reference_data(self.session_factory)

        self.clock = FakeClock()
        self.cache = CacheLayer.from_settings(self.settings, timer=self.clock.monotonic)
        self.effects = SideEffects()
        self.gateway = ApiGateway(self.settings, timer=self.clock.monotonic)

        self._sessions = []
        self.services = self.make_services(ALICE)

    async def asyncTearDown(self) -> None:
        await self.effects.drain()
        for session in self._sessions:
            await session.close()
        await self.engine.dispose()
        self._tmpdir.cleanup()

    def make_services(self, identity: AuthIdentity | None) -> Services:
        session = self.session_factory()
        self._sessions.append(session)
        return Services(
            ServiceContext(
                session=session,
                session_factory=self.session_factory,
                cache=self.cache,
                effects=self.effects,
                gateway=self.gateway,
                settings=self.settings,
                identity=identity,
                clock=self.clock,
            )
        )

    def unwrap(self, envelope):
        self.assertTrue(envelope.success, envelope.error)
        return envelope.data

    def assertFails(self, envelope, code: str) -> None:
        self.assertFalse(envelope.success)
        self.assertEqual(envelope.error.code, code)

    async def fetch_all(self, query) -> list:
        async with self.session_factory() as session:
            result = await session.exec(query)
            return list(result.all())

    async def rows(self, model, *conditions) -> list:
        return await self.fetch_all(select(model).where(*conditions))
