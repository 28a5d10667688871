"""
Shared fixtures for the sportshub test suite.

Sets environment variables BEFORE any config/sportshub import, so that
``config.settings.Settings`` points at a throwaway database and has no
API-Football key.
"""
import asyncio
import os
import tempfile
from datetime import datetime, timedelta, timezone

_TMP_DIR = tempfile.mkdtemp(prefix="sportshub-tests-")
os.environ["CACHE_DATABASE_URL"] = f"sqlite:///{os.path.join(_TMP_DIR, 'cache.db')}"
os.environ["API_FOOTBALL_KEY"] = ""

import pytest

from sportshub.cache import (
    ApiMetrics,
    CacheManager,
    CacheStore,
    RequestDeduplicator,
    TeamFixturesStore,
)
from sportshub.db import init_db, make_engine, make_session_factory

NOW = datetime(2025, 3, 1, 15, 0, tzinfo=timezone.utc)


# =============================================================================
# Fakes
# =============================================================================

class FakeClock:
    """Wall clock that only moves when told to."""

    def __init__(self, start: datetime = NOW):
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> None:
        self.current += timedelta(**kwargs)


class FakeMonotonic:
    """Monotonic seconds counter for the deduplicator."""

    def __init__(self, start: float = 1000.0):
        self.value = start

    def __call__(self) -> float:
        return self.value

    def advance(self, seconds: float) -> None:
        self.value += seconds


class FakeUpstream:
    """
    Stand-in for ApiFootballClient.

    ``payload`` is returned as-is, or called with (endpoint, params) when
    callable. ``error`` is raised instead when set.
    """

    def __init__(self):
        self.payload = []
        self.error = None
        self.delay = 0.0
        self.calls = []

    async def fetch(self, endpoint, params=None):
        self.calls.append((endpoint, dict(params or {})))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        if callable(self.payload):
            return self.payload(endpoint, params or {})
        return self.payload


def build_api_fixture(
    fixture_id: int = 12345,
    status: str = "FT",
    kickoff: datetime = NOW - timedelta(hours=3),
    home_id: int = 33,
    away_id: int = 34,
    home_goals=2,
    away_goals=1,
) -> dict:
    """Raw API-Football fixture record."""
    return {
        "fixture": {
            "id": fixture_id,
            "date": kickoff.isoformat(),
            "timestamp": int(kickoff.timestamp()),
            "status": {"short": status},
        },
        "teams": {"home": {"id": home_id}, "away": {"id": away_id}},
        "goals": {"home": home_goals, "away": away_goals},
    }


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def monotonic():
    return FakeMonotonic()


@pytest.fixture
def upstream():
    return FakeUpstream()


@pytest.fixture
def api_fixture():
    return build_api_fixture


@pytest.fixture
def session_factory(tmp_path):
    """Session factory on a fresh SQLite file with both cache tables."""
    engine = make_engine(f"sqlite:///{tmp_path / 'cache.db'}")
    init_db(engine)
    yield make_session_factory(engine)
    engine.dispose()


@pytest.fixture
def broken_session_factory(tmp_path):
    """Session factory on a database whose tables were never created."""
    engine = make_engine(f"sqlite:///{tmp_path / 'empty.db'}")
    yield make_session_factory(engine)
    engine.dispose()


@pytest.fixture
def store(session_factory, clock):
    return CacheStore(session_factory, clock=clock)


@pytest.fixture
def team_store(session_factory, clock):
    return TeamFixturesStore(session_factory, clock=clock)


@pytest.fixture
def metrics():
    return ApiMetrics()


@pytest.fixture
def manager(store, upstream, clock, metrics):
    return CacheManager(
        store,
        RequestDeduplicator(metrics=metrics),
        upstream,
        metrics=metrics,
        clock=clock,
    )
