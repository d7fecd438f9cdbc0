"""
Database connection and session management

- PostgreSQL: async pool (asyncpg) for the API and the verification worker
- SQLite: StaticPool for single-connection access with foreign key support

Store calls are short, independent transactions; nothing holds a session
across a call to the verification backend.
"""

import logging
from datetime import datetime, timezone
from pathlib import Path
from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base
from sqlalchemy.pool import StaticPool

from app.core.config import settings
from app.db.dialect import is_sqlite

logger = logging.getLogger(__name__)

# ============================================================================
# SQLite PRAGMA Configuration
# ============================================================================

@event.listens_for(Engine, "connect")
def _set_sqlite_pragma(dbapi_connection, connection_record):
    """Enable foreign key enforcement and WAL mode for SQLite."""
    conn_type = str(type(dbapi_connection))
    if 'sqlite' in conn_type.lower():
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.execute("PRAGMA busy_timeout=5000")
        cursor.close()


# ============================================================================
# Engine Factories
# ============================================================================

def _sqlite_path(db_url: str) -> str:
    """Extract the filesystem path from a sqlite:/// URL."""
    if "///" in db_url:
        return db_url.split("///", 1)[1]
    return "./data/rofl-registry.db"


def _create_postgresql_engine():
    """Create PostgreSQL engine with a modest connection pool."""
    async_engine = create_async_engine(
        settings.DATABASE_URL.replace("postgresql://", "postgresql+asyncpg://"),
        echo=settings.APP_DEBUG,
        future=True,
        pool_pre_ping=True,
        pool_size=10,
        max_overflow=15,
        pool_recycle=3600,  # Recycle connections every hour
        pool_timeout=30,
    )

    logger.info("Database: PostgreSQL")
    return async_engine


def _create_sqlite_engine():
    """Create SQLite engine."""
    db_path = _sqlite_path(settings.DATABASE_URL)
    if db_path != ":memory:":
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)

    async_engine = create_async_engine(
        f"sqlite+aiosqlite:///{db_path}",
        echo=settings.APP_DEBUG,
        future=True,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    logger.info(f"Database: SQLite ({db_path})")
    return async_engine


# ============================================================================
# Engine Creation
# ============================================================================

if is_sqlite():
    engine = _create_sqlite_engine()
else:
    engine = _create_postgresql_engine()

# Create async session factory
async_session_factory = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
)

# Create base class for models
Base = declarative_base()


def utc_now() -> datetime:
    """
    Return current UTC time as a naive datetime (no timezone info).

    Our columns use TIMESTAMP WITHOUT TIME ZONE, which asyncpg refuses to
    bind timezone-aware datetimes to.
    """
    return datetime.now(timezone.utc).replace(tzinfo=None)


async def init_db():
    """Initialize database: create the registry tables if they don't exist"""
    try:
        async with engine.begin() as conn:
            # Import all models to ensure they're registered
            from app.models.application import Application  # noqa: F401
            from app.models.deployment import Deployment  # noqa: F401

            await conn.run_sync(Base.metadata.create_all)

        logger.info("Database initialized successfully")
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")
        raise


async def close_db():
    """Dispose of the engine's connection pool"""
    await engine.dispose()
    logger.info("Database connections closed")
