"""
Registry Store

Narrow read/write interface over the app and deployment records. The
verification worker and the API only talk to storage through this.
"""

import logging
from abc import abstractmethod
from typing import List, Optional, Protocol

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.db.database import utc_now
from app.db.upsert import application_upsert, deployment_upsert
from app.models.application import Application
from app.models.deployment import Deployment, VerificationStatus

logger = logging.getLogger(__name__)


class RegistryStore(Protocol):
    """Storage contract consumed by the verification subsystem"""

    @abstractmethod
    async def list_applications(self) -> List[Application]:
        """Return all applications in stable (id) order."""
        ...

    @abstractmethod
    async def get_application_by_id(self, app_id: int) -> Optional[Application]:
        ...

    @abstractmethod
    async def get_application_by_url(self, github_url: str) -> Optional[Application]:
        ...

    @abstractmethod
    async def upsert_application(self, github_url: str, git_ref: str) -> None:
        """Create the application, or update its ref if the URL already exists."""
        ...

    @abstractmethod
    async def update_manifest(self, app_id: int, rofl_yaml: str) -> None:
        ...

    @abstractmethod
    async def upsert_deployment(
        self,
        app_id: int,
        deployment_name: str,
        commit_sha: str,
        status: VerificationStatus,
        verification_msg: str,
    ) -> None:
        """Create or update the deployment keyed by (app_id, deployment_name)."""
        ...

    @abstractmethod
    async def get_deployments(self, app_id: int) -> List[Deployment]:
        """Return an application's deployments sorted by name."""
        ...


class SQLRegistryStore:
    """SQLAlchemy implementation of RegistryStore; one transaction per call"""

    def __init__(self, session_factory: async_sessionmaker):
        self._session_factory = session_factory

    @staticmethod
    def _dialect(session: AsyncSession) -> str:
        return session.bind.dialect.name

    async def list_applications(self) -> List[Application]:
        async with self._session_factory() as session:
            result = await session.execute(select(Application).order_by(Application.id.asc()))
            return list(result.scalars().all())

    async def get_application_by_id(self, app_id: int) -> Optional[Application]:
        async with self._session_factory() as session:
            result = await session.execute(select(Application).where(Application.id == app_id))
            return result.scalar_one_or_none()

    async def get_application_by_url(self, github_url: str) -> Optional[Application]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(Application).where(Application.github_url == github_url)
            )
            return result.scalar_one_or_none()

    async def upsert_application(self, github_url: str, git_ref: str) -> None:
        now = utc_now()
        async with self._session_factory() as session:
            stmt = application_upsert(github_url, git_ref, now, dialect=self._dialect(session))
            await session.execute(stmt)
            await session.commit()

    async def update_manifest(self, app_id: int, rofl_yaml: str) -> None:
        async with self._session_factory() as session:
            await session.execute(
                update(Application)
                .where(Application.id == app_id)
                .values(rofl_yaml=rofl_yaml, updated_at=utc_now())
            )
            await session.commit()

    async def upsert_deployment(
        self,
        app_id: int,
        deployment_name: str,
        commit_sha: str,
        status: VerificationStatus,
        verification_msg: str,
    ) -> None:
        now = utc_now()
        status_value = VerificationStatus(status).value
        async with self._session_factory() as session:
            stmt = deployment_upsert(
                app_id,
                deployment_name,
                commit_sha,
                status_value,
                verification_msg,
                now,
                dialect=self._dialect(session),
            )
            await session.execute(stmt)
            await session.commit()

        logger.debug(
            f"Stored deployment '{deployment_name}' for app {app_id}: {status_value}"
        )

    async def get_deployments(self, app_id: int) -> List[Deployment]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(Deployment)
                .where(Deployment.app_id == app_id)
                .order_by(Deployment.deployment_name.asc())
            )
            return list(result.scalars().all())
