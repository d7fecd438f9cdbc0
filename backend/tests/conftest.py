"""
Pytest configuration and shared fixtures for all tests.

Tests run against an in-memory SQLite database and an in-process fake of the
ROFL app backend; nothing leaves the machine.
"""
import os
import sys
from pathlib import Path
from typing import AsyncGenerator

# Configure the app before any app module reads settings
os.environ["DATABASE_URL"] = "sqlite:///:memory:"
os.environ["WORKER_ENABLED"] = "false"
os.environ.pop("WORKER_BACKEND_URL", None)
os.environ.pop("WORKER_PRIVATE_KEY", None)

import pytest
import pytest_asyncio
from aiohttp.test_utils import TestServer
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

# Add backend directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from app.db.database import Base
from app.services.store import SQLRegistryStore

from fake_backend import FakeBackend, TEST_PRIVATE_KEY


# ============================================================================
# Test Database Configuration
# ============================================================================

def _create_test_engine():
    """SQLite test engine with StaticPool for in-memory database."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
        future=True,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    # Enable foreign key enforcement for SQLite
    @event.listens_for(engine.sync_engine, "connect")
    def set_sqlite_pragma(dbapi_conn, connection_record):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    return engine


test_engine = _create_test_engine()

TestSessionLocal = async_sessionmaker(
    test_engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


# ============================================================================
# Fixtures
# ============================================================================

@pytest_asyncio.fixture(scope="function")
async def test_db() -> AsyncGenerator[async_sessionmaker, None]:
    """Create the registry tables for one test and drop them afterwards."""
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield TestSessionLocal

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest_asyncio.fixture(scope="function")
async def store(test_db) -> SQLRegistryStore:
    """Registry store backed by the test database."""
    return SQLRegistryStore(test_db)


@pytest_asyncio.fixture(scope="function")
async def fake_backend() -> AsyncGenerator[FakeBackend, None]:
    """Serve a FakeBackend on a local port for the duration of a test."""
    backend = FakeBackend()
    server = TestServer(backend.build_app())
    await server.start_server()
    backend.url = f"http://{server.host}:{server.port}"

    yield backend

    await server.close()


@pytest.fixture
def private_key() -> str:
    return TEST_PRIVATE_KEY
