"""
Verification Service

Wires the backend clients, the manifest fetcher and the scheduler together
from settings, and owns their lifecycle.
"""

import logging
from typing import Any, Dict, Optional

from app.core.config import Settings, settings as default_settings
from app.services.rofl.fetcher import ManifestFetcher
from app.services.store import RegistryStore

from .poller import ResultPoller
from .scheduler import VerificationScheduler
from .session import SessionManager
from .submitter import TaskSubmitter

logger = logging.getLogger(__name__)


class VerificationService:
    """Process-wide owner of the verification components"""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or default_settings

        self.session_manager: Optional[SessionManager] = None
        self.submitter: Optional[TaskSubmitter] = None
        self.poller: Optional[ResultPoller] = None
        self.scheduler: Optional[VerificationScheduler] = None
        self._fetcher: Optional[ManifestFetcher] = None
        self._initialized = False

    @property
    def backend_configured(self) -> bool:
        """True once clients for the verification backend exist"""
        return self.submitter is not None and self.poller is not None

    @property
    def fetcher(self) -> ManifestFetcher:
        if self._fetcher is None:
            self._fetcher = ManifestFetcher(
                request_timeout=self.settings.HTTP_REQUEST_TIMEOUT_SECONDS,
                manifest_max_bytes=self.settings.MANIFEST_MAX_BYTES,
                registry_max_bytes=self.settings.REGISTRY_MAX_BYTES,
            )
        return self._fetcher

    async def initialize(self, store: RegistryStore):
        """
        Build backend clients and start the scheduler.

        Without WORKER_BACKEND_URL nothing is built and verification stays
        unavailable. The scheduler only runs when WORKER_ENABLED is set.

        Raises:
            AuthenticationError: If WORKER_PRIVATE_KEY cannot be parsed
        """
        if self._initialized:
            logger.warning("Verification service already initialized")
            return

        cfg = self.settings
        if not cfg.WORKER_BACKEND_URL:
            logger.info("WORKER_BACKEND_URL not set, verification backend disabled")
            self._initialized = True
            return

        if cfg.WORKER_PRIVATE_KEY:
            self.session_manager = SessionManager(
                backend_url=cfg.WORKER_BACKEND_URL,
                private_key=cfg.WORKER_PRIVATE_KEY,
                siwe_domain=cfg.WORKER_SIWE_DOMAIN,
                chain_id=cfg.WORKER_CHAIN_ID,
                token_lifetime=cfg.AUTH_TOKEN_LIFETIME_SECONDS,
                refresh_margin=cfg.AUTH_TOKEN_REFRESH_MARGIN_SECONDS,
                request_timeout=cfg.HTTP_REQUEST_TIMEOUT_SECONDS,
            )
            logger.info(
                f"Backend authentication enabled for address {self.session_manager.address}"
            )
        else:
            logger.warning("WORKER_PRIVATE_KEY not set, backend requests are unauthenticated")

        self.submitter = TaskSubmitter(
            cfg.WORKER_BACKEND_URL,
            session_manager=self.session_manager,
            request_timeout=cfg.HTTP_REQUEST_TIMEOUT_SECONDS,
        )
        self.poller = ResultPoller(
            cfg.WORKER_BACKEND_URL,
            session_manager=self.session_manager,
            request_timeout=cfg.HTTP_REQUEST_TIMEOUT_SECONDS,
        )
        self.scheduler = VerificationScheduler(
            store=store,
            submitter=self.submitter,
            poller=self.poller,
            fetcher=self.fetcher,
            app_interval=cfg.WORKER_APP_INTERVAL_SECONDS,
            cycle_interval=cfg.WORKER_CYCLE_INTERVAL_SECONDS,
            poll_interval=cfg.WORKER_POLL_INTERVAL_SECONDS,
            poll_timeout=cfg.WORKER_POLL_TIMEOUT_SECONDS,
            enabled=cfg.WORKER_ENABLED,
        )
        await self.scheduler.start()

        self._initialized = True
        logger.info(f"Verification service initialized (backend: {cfg.WORKER_BACKEND_URL})")

    def get_status(self) -> Dict[str, Any]:
        """Worker state for health reporting"""
        scheduler = self.scheduler
        return {
            "backend_configured": self.backend_configured,
            "authenticated": self.session_manager is not None,
            "worker_enabled": self.settings.WORKER_ENABLED,
            "worker_running": scheduler.is_running if scheduler else False,
            "cycles_completed": scheduler.cycles_completed if scheduler else 0,
        }

    async def cleanup(self):
        """Stop the scheduler and close HTTP sessions"""
        logger.info("Cleaning up verification service")

        if self.scheduler:
            try:
                await self.scheduler.stop()
            except Exception as e:
                logger.error(f"Error stopping verification scheduler: {e}")

        for client in (self.submitter, self.poller, self.session_manager, self._fetcher):
            if client is None:
                continue
            try:
                await client.cleanup()
            except Exception as e:
                logger.error(f"Error closing HTTP session: {e}")

        self.scheduler = None
        self.submitter = None
        self.poller = None
        self.session_manager = None
        self._fetcher = None
        self._initialized = False
        logger.info("Verification service cleanup completed")


# Global verification service instance
verification_service = VerificationService()
