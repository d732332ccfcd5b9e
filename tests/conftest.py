"""Shared test fixtures for the PepTalk research pipeline test suite."""

from __future__ import annotations

from collections.abc import AsyncGenerator
from pathlib import Path

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from peptalk.core.config import settings
from peptalk.core.database import Base, get_db
from peptalk.main import app
from peptalk.modules.publisher import models  # noqa: F401  (registers tables)
from peptalk.modules.publisher.documents import LocalDocumentStore
from peptalk.modules.publisher.router import get_document_store
from peptalk.modules.publisher.store import SqlPageStore
from tests.helpers import INTERNAL_SECRET


@pytest.fixture
async def session_factory() -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """In-memory SQLite database with every table created. One per test."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
def page_store(session_factory) -> SqlPageStore:
    return SqlPageStore(session_factory)


@pytest.fixture
def document_dir(tmp_path: Path) -> Path:
    path = tmp_path / "documents"
    path.mkdir()
    return path


@pytest.fixture
async def client(session_factory, document_dir, monkeypatch) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client that talks directly to the FastAPI ASGI app.

    The database dependency is pointed at the per-test SQLite database and the
    internal secret is fixed, so requests need the ``X-Internal-Secret`` header.
    """
    monkeypatch.setattr(settings, "internal_api_secret", INTERNAL_SECRET)

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_document_store] = lambda: LocalDocumentStore(document_dir)

    transport = ASGITransport(app=app)  # type: ignore[arg-type]
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac  # type: ignore[misc]

    app.dependency_overrides.clear()
