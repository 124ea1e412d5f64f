"""
Shared fixtures: an in-memory database per test and API clients bound to it.
"""
from collections.abc import AsyncGenerator

import pytest
from fastapi.testclient import TestClient
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

import siteinsights.models  # noqa: F401
from siteinsights.core.database import Base, get_db_session
from siteinsights.main import app
from siteinsights.services.google_client import GoogleClients, get_google_clients


@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def db_session(engine) -> AsyncGenerator[AsyncSession, None]:
    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)
    async with factory() as session:
        yield session


@pytest.fixture
async def async_client(db_session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """API client sharing the test session, so tests can seed and inspect rows."""

    async def override_session():
        yield db_session
        await db_session.flush()

    app.dependency_overrides[get_db_session] = override_session
    app.dependency_overrides[get_google_clients] = lambda: GoogleClients()
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()


@pytest.fixture
def client() -> TestClient:
    """Client for endpoints that do not touch the database."""
    return TestClient(app)
