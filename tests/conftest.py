"""Pytest configuration and fixtures."""

from datetime import datetime, timedelta, timezone
from typing import AsyncGenerator

import pytest
import pytest_asyncio

from speechstats.config import Settings
from speechstats.database.session import init_db
from speechstats.services.aggregation import AggregationEngine
from speechstats.services.stats_store import StatsStore

# 12:00 in Asia/Shanghai -> day 2024-03-15, week 2024-W11, month 2024-03
FIXED_NOW = datetime(2024, 3, 15, 4, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """Settable wall clock handed to the engine."""

    def __init__(self, now: datetime = FIXED_NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


class FakeTimer:
    """Monotonic seconds for the caches."""

    def __init__(self, start: float = 1000.0):
        self.value = start

    def __call__(self) -> float:
        return self.value

    def advance(self, seconds: float):
        self.value += seconds


def make_settings(**overrides) -> Settings:
    values = dict(
        timezone="Asia/Shanghai",
        entity_cache_size=500,
        entity_cache_ttl=600,
        group_cache_size=200,
        group_cache_ttl=30,
        ranking_cache_size=50,
        ranking_cache_ttl=120,
        global_cache_size=10,
        global_cache_ttl=180,
        archived_cache_ttl=300,
        archived_cache_size=1000,
        record_messages=True,
        count_words=True,
        stats_debug_log=False,
        ranking_default_limit=20,
        global_page_size=9,
    )
    values.update(overrides)
    return Settings(**values)


@pytest_asyncio.fixture
async def store(tmp_path) -> AsyncGenerator[StatsStore, None]:
    """Store over a fresh SQLite file."""
    db_engine, session_maker = await init_db(f"sqlite+aiosqlite:///{tmp_path / 'stats.db'}")
    yield StatsStore(session_maker)
    await db_engine.dispose()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def timer() -> FakeTimer:
    return FakeTimer()


@pytest.fixture
def engine(store, clock, timer) -> AggregationEngine:
    return AggregationEngine(store, make_settings(), clock=clock, timer=timer)
