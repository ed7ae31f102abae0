"""Shared fixtures: SQLite-backed store, in-memory queue, cache reader."""

from collections.abc import Awaitable, Callable
from typing import Any

import pytest

from scorecache.models import ScoringConfiguration, Work, WorkNomination
from scorecache.services.cache_reader import CacheReader, set_cache_reader
from scorecache.services.configuration import activate_configuration, create_configuration
from scorecache.stores.memory import MemoryCache
from scorecache.stores.postgres import close_db, create_tables, get_session, init_db
from scorecache.stores.queue import InMemoryJobQueue, set_queue

BALANCED_WEIGHTS = {
    "popular_opinion": 0.2,
    "industry_recognition": 0.2,
    "cultural_impact": 0.2,
    "people_quality": 0.2,
    "financial_performance": 0.2,
}


@pytest.fixture
async def db(tmp_path):
    """Fresh SQLite database per test (same async engine/session code path as Postgres)."""
    await init_db(f"sqlite+aiosqlite:///{tmp_path}/test.db")
    await create_tables()
    yield
    await close_db()


@pytest.fixture
def queue():
    q = InMemoryJobQueue()
    set_queue(q)
    yield q
    set_queue(None)


@pytest.fixture
def reader():
    r = CacheReader(MemoryCache(max_size=64, ttl_seconds=60), inline_compute=False)
    set_cache_reader(r)
    yield r
    set_cache_reader(None)


@pytest.fixture
def make_configuration(db) -> Callable[..., Awaitable[ScoringConfiguration]]:
    """Factory: create (and by default activate) a configuration."""

    async def _make(family: str = "decades", activate: bool = True, **overrides: Any) -> ScoringConfiguration:
        values: dict[str, Any] = {
            "name": "Test",
            "category_weights": dict(BALANCED_WEIGHTS),
            "normalization_method": "none",
        }
        values.update(overrides)
        async with get_session() as session:
            config = await create_configuration(session, family=family, **values)
            if activate:
                config = await activate_configuration(session, config.id)
        return config

    return _make


@pytest.fixture
def add_works(db) -> Callable[..., Awaitable[list[int]]]:
    """Factory: insert works. Each item is (title, year, values, vote_count, organizations)."""

    async def _add(*rows: tuple) -> list[int]:
        ids: list[int] = []
        async with get_session() as session:
            for title, year, values, votes, orgs in rows:
                work = Work(title=title, release_year=year, vote_count=votes, **values)
                session.add(work)
                await session.flush()
                for org in orgs:
                    session.add(WorkNomination(work_id=work.id, organization=org, year=year or 2000))
                ids.append(work.id)
        return ids

    return _add
