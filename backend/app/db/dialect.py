"""
Database dialect detection.

Use these helpers for any SQL that differs between PostgreSQL and SQLite.
"""
from functools import lru_cache


@lru_cache(maxsize=1)
def get_dialect_name() -> str:
    """
    Get current database dialect name.

    Returns: 'postgresql' or 'sqlite'
    """
    from app.core.config import settings
    db_url = settings.DATABASE_URL or ""
    if db_url.startswith("sqlite"):
        return "sqlite"
    return "postgresql"


def is_postgresql() -> bool:
    """Check if using PostgreSQL backend."""
    return get_dialect_name() == "postgresql"


def is_sqlite() -> bool:
    """Check if using SQLite backend."""
    return get_dialect_name() == "sqlite"
