"""
Registry upsert statements.

Apps are keyed by repository URL and deployments by (app, name). Both
PostgreSQL and SQLite (3.24+) accept INSERT ... ON CONFLICT; only the
dialect module providing `insert` differs.
"""
from datetime import datetime
from typing import Optional

from sqlalchemy.sql import Insert

from app.db.dialect import is_sqlite
from app.models.application import Application
from app.models.deployment import Deployment

APPLICATION_KEY = ["github_url"]
DEPLOYMENT_KEY = ["app_id", "deployment_name"]

# Columns a re-verification overwrites; created_at keeps the first insert
DEPLOYMENT_RESULT_COLUMNS = (
    "commit_sha",
    "status",
    "verification_msg",
    "last_verified",
    "updated_at",
)


def _insert(table, dialect: Optional[str]):
    use_sqlite = dialect == "sqlite" if dialect else is_sqlite()
    if use_sqlite:
        from sqlalchemy.dialects.sqlite import insert
    else:
        from sqlalchemy.dialects.postgresql import insert
    return insert(table)


def application_upsert(
    github_url: str, git_ref: str, now: datetime, dialect: Optional[str] = None
) -> Insert:
    """
    Register an app, or move an existing one to a new ref.

    The stored rofl.yaml is left alone; the worker refreshes it on its next
    pass over the app.
    """
    stmt = _insert(Application.__table__, dialect).values(
        github_url=github_url,
        git_ref=git_ref,
        created_at=now,
        updated_at=now,
    )
    return stmt.on_conflict_do_update(
        index_elements=APPLICATION_KEY,
        set_={"git_ref": stmt.excluded.git_ref, "updated_at": stmt.excluded.updated_at},
    )


def deployment_upsert(
    app_id: int,
    deployment_name: str,
    commit_sha: str,
    status: str,
    verification_msg: str,
    now: datetime,
    dialect: Optional[str] = None,
) -> Insert:
    """Record the latest verification outcome of one deployment."""
    stmt = _insert(Deployment.__table__, dialect).values(
        app_id=app_id,
        deployment_name=deployment_name,
        commit_sha=commit_sha,
        status=status,
        verification_msg=verification_msg,
        last_verified=now,
        created_at=now,
        updated_at=now,
    )
    return stmt.on_conflict_do_update(
        index_elements=DEPLOYMENT_KEY,
        set_={column: stmt.excluded[column] for column in DEPLOYMENT_RESULT_COLUMNS},
    )
