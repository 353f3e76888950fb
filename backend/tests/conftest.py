from __future__ import annotations

from typing import AsyncGenerator

import httpx
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

import app.models  # noqa: F401  registers every table on Base.metadata
from app.db.base import Base
from app.services.rating_store import RatingStore
from tests.testkit import ApiClient

TEST_DATABASE_URL = "sqlite+aiosqlite://"


@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine(TEST_DATABASE_URL, poolclass=StaticPool, echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def db(engine) -> AsyncGenerator[AsyncSession, None]:
    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def store(db) -> RatingStore:
    return RatingStore(db)


@pytest_asyncio.fixture
async def broken_store() -> AsyncGenerator[RatingStore, None]:
    # no tables: every query fails inside the driver
    engine = create_async_engine(TEST_DATABASE_URL, poolclass=StaticPool, echo=False)
    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as session:
        yield RatingStore(session)
    await engine.dispose()


def _client_for(session: AsyncSession):
    from app.db.session import get_db
    from app.main import app

    async def override_get_db():
        yield session

    app.dependency_overrides[get_db] = override_get_db
    transport = httpx.ASGITransport(app=app)
    return app, httpx.AsyncClient(transport=transport, base_url="http://localhost")


@pytest_asyncio.fixture
async def api(db) -> AsyncGenerator[ApiClient, None]:
    app, client = _client_for(db)
    async with client:
        yield ApiClient(client)
    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def broken_api(broken_store) -> AsyncGenerator[ApiClient, None]:
    app, client = _client_for(broken_store.db)
    async with client:
        yield ApiClient(client)
    app.dependency_overrides.clear()
