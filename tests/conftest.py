"""
Shared fixtures.

Database tests run against a throwaway SQLite file (aiosqlite) built from
Base.metadata, so no Postgres is required. API tests drive the app through
httpx with get_db and the proof storage overridden; every request opens its
own session on the same engine, as in production, so test data must be
committed before a request can see it.
"""

from typing import AsyncGenerator
from unittest.mock import MagicMock

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

import api.models  # noqa: F401
from api.database import Base, get_db
from api.main import app
from api.services.storage import get_proof_storage


@pytest.fixture
async def engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'billing.db'}",
        poolclass=NullPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def async_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def storage() -> MagicMock:
    s = MagicMock()
    s.bucket = "payment-screenshots"
    s.upload.side_effect = lambda file_bytes, key, content_type="image/png": key
    s.get_presigned_url.return_value = "https://storage.test/signed"
    return s


@pytest.fixture
async def client(session_factory, storage: MagicMock) -> AsyncGenerator[AsyncClient, None]:
    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_proof_storage] = lambda: storage

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
