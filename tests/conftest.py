import asyncio
import os

# Cheap hashes and no real backing services under test
os.environ.setdefault("PASSWORD_HASH_ROUNDS", "4")
os.environ.setdefault("REDIS_URL", "redis://localhost:6399")

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from kaimaku.api.search import get_search_service
from kaimaku.core.cooldown import CooldownGate, get_rating_gate, get_search_gate
from kaimaku.core.limiter import limiter
from kaimaku.db import models  # noqa: F401
from kaimaku.db.database import Base, get_db
from kaimaku.main import app

from tests.fakes import Upstream, anime_payload, make_service


@pytest.fixture
def session_factory(tmp_path):
    # NullPool: every asyncio.run() gets fresh connections on its own loop
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'kaimaku.db'}", poolclass=NullPool)

    async def create_tables():
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    asyncio.run(create_tables())
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    asyncio.run(engine.dispose())


@pytest.fixture
def run_db(session_factory):
    """Run ``fn(db)`` inside a fresh session and return its result."""

    def run(fn):
        async def runner():
            async with session_factory() as db:
                return await fn(db)

        return asyncio.run(runner())

    return run


@pytest.fixture
def upstream():
    return Upstream(search={"search": {"anime": [
        anime_payload(1, "Naruto"),
        anime_payload(2, "Naruto Shippuden"),
    ]}})


@pytest.fixture
def app_overrides(session_factory, upstream):
    """Point the app at the test database and the fake catalog."""

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_search_service] = lambda: make_service(upstream)
    app.dependency_overrides[get_search_gate] = lambda: CooldownGate(0)
    app.dependency_overrides[get_rating_gate] = lambda: CooldownGate(0)
    limiter.enabled = False
    yield app
    app.dependency_overrides.clear()
    limiter.enabled = True
