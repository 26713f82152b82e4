"""Shared test fixtures and configuration."""
import asyncio
import os
from unittest.mock import AsyncMock, Mock

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

# Set test environment variables before importing the app
os.environ.setdefault("VAPI_API_KEY", "test-vapi-key")
os.environ.setdefault("ELEVENLABS_API_KEY", "test-elevenlabs-key")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

from future_self.core.config import Settings
from future_self.db.models import Base
from future_self.services.session.manager import SessionManager
from future_self.services.session.store import InMemorySessionStore


# Test database URL (in-memory SQLite)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest.fixture
def test_settings():
    """Settings with every delay shrunk so timers fire immediately."""
    return Settings(
        vapi_api_key="test-vapi-key",
        elevenlabs_api_key="test-elevenlabs-key",
        database_url=TEST_DATABASE_URL,
        clone_threshold_seconds=30.0,
        clone_retry_base_delay_seconds=0.0,
        clone_retry_max_delay_seconds=0.0,
        persona_retry_base_delay_seconds=0.0,
        persona_retry_max_delay_seconds=0.0,
        interruption_prepare_seconds=0.0,
        fallback_timeout_seconds=0.0,
        clone_poll_interval_seconds=5.0,
        clone_poll_ceiling_seconds=20.0,
        ready_delay_seconds=0.0,
        min_clone_audio_bytes=100,
    )


@pytest.fixture
def session_store():
    return InMemorySessionStore()


@pytest.fixture
def session_manager(session_store):
    return SessionManager(session_store)


@pytest.fixture
def instant_sleep():
    """Replacement for asyncio.sleep that records delays and only yields."""
    delays = []

    async def _sleep(delay):
        delays.append(delay)
        await asyncio.sleep(0)

    _sleep.delays = delays
    return _sleep


@pytest.fixture
def mock_persistence():
    """Call archive stand-in."""
    persistence = Mock()
    persistence.archive_session = AsyncMock()
    return persistence


@pytest.fixture
async def test_db_engine():
    """Create test database engine."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    # Create all tables
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    # Drop all tables
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
async def test_db(test_db_engine):
    """Create test database session."""
    async_session = async_sessionmaker(
        test_db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )

    async with async_session() as session:
        yield session


# Pytest configuration
def pytest_configure(config):
    """Configure pytest."""
    config.addinivalue_line(
        "markers", "asyncio: mark test as an asyncio test"
    )
