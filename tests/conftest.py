"""Pytest configuration and shared fixtures."""

import os
from typing import Any, AsyncGenerator

# Set test environment variables before the application modules read them
TEST_DATABASE_URL = os.environ.get("TEST_DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key")
os.environ.setdefault("DEBUG", "true")
os.environ["DATABASE_URL_OVERRIDE"] = TEST_DATABASE_URL

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from homestead.change_stream import change_stream
from homestead.config import Settings
from homestead.database.crud import create_item_with_detail
from homestead.database.models import Base


@pytest.fixture(scope="session")
def test_settings() -> Settings:
    """Create test settings."""
    return Settings(database_url_override=TEST_DATABASE_URL, debug=True)


@pytest_asyncio.fixture(scope="function")
async def test_engine(test_settings: Settings) -> AsyncGenerator[Any, None]:
    """Create a test database engine with a fresh schema."""
    url = test_settings.database_url
    if url.startswith("sqlite"):
        # One shared connection so the in-memory database survives between sessions
        engine = create_async_engine(url, echo=False, poolclass=StaticPool)
    else:
        engine = create_async_engine(url, echo=False, pool_pre_ping=True)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    # Clean up
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(test_engine: Any) -> AsyncGenerator[AsyncSession, None]:
    """Create a test database session."""
    async_session = async_sessionmaker(
        test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )

    async with async_session() as session:
        yield session
        await session.rollback()


@pytest.fixture(autouse=True)
def _reset_change_stream():
    """Leave the global change stream without subscribers or queued events."""
    yield
    for subscription in change_stream.subscriptions:
        change_stream.unsubscribe(subscription)
    change_stream.clear()


@pytest.fixture
def sample_ammo_data() -> dict[str, Any]:
    """Sample ammo lot: 2 boxes of 50."""
    return {
        "item": {"name": "Federal 115gr FMJ", "brand": "Federal", "price_paid": 34.99},
        "detail": {"caliber": "9mm Luger", "quantity": 2, "unit": "BOX", "rounds_per_unit": 50, "grain": 115},
    }


@pytest.fixture
def make_ammo_lot(db_session: AsyncSession) -> Any:
    """Factory creating an ammo lot of loose rounds and returning its detail row."""

    async def factory(caliber: str, rounds: int, name: str | None = None) -> Any:
        _, detail = await create_item_with_detail(
            db_session,
            "AMMO",
            {"name": name or f"{caliber} lot"},
            {"caliber": caliber, "quantity": rounds, "unit": "ROUNDS", "rounds_per_unit": 1},
        )
        return detail

    return factory


class AsyncContextManagerMock:
    """Mock async context manager for testing."""

    def __init__(self, return_value: Any) -> None:
        self.return_value = return_value

    async def __aenter__(self) -> Any:
        return self.return_value

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> bool:
        return False


@pytest.fixture
def mock_session_factory(db_session: AsyncSession) -> Any:
    """Create a mock session factory that returns the test session."""

    def factory() -> AsyncContextManagerMock:
        return AsyncContextManagerMock(db_session)

    return factory
