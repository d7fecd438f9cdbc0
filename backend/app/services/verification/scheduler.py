"""
Verification Scheduler

Continuously re-verifies every registered ROFL app against the backend.
"""

import asyncio
import logging
from typing import Dict, Optional

from app.models.application import Application
from app.models.deployment import VerificationStatus
from app.services.rofl.fetcher import ManifestFetcher
from app.services.rofl.manifest import ManifestParseError, parse_manifest
from app.services.store import RegistryStore

from .aggregator import outcome_message, outcome_status
from .exceptions import ManifestFetchError, VerificationError
from .poller import ResultPoller
from .submitter import TaskSubmitter

logger = logging.getLogger(__name__)


class VerificationScheduler:
    """
    Cycles through apps one at a time, verifying each declared deployment.

    Apps are never processed concurrently and the loop sleeps between apps
    and between cycles, bounding the load placed on the backend. Only task
    cancellation ends the loop; every other failure is logged and retried on
    a later cycle.
    """

    def __init__(
        self,
        store: RegistryStore,
        submitter: TaskSubmitter,
        poller: ResultPoller,
        fetcher: ManifestFetcher,
        app_interval: float = 60,
        cycle_interval: Optional[float] = None,
        poll_interval: float = 5,
        poll_timeout: float = 300,
        enabled: bool = True,
    ):
        """
        Initialize verification scheduler.

        Args:
            store: App/deployment record store
            submitter: Submits verification tasks
            poller: Waits for task results
            fetcher: Downloads rofl.yaml
            app_interval: Seconds to wait between apps
            cycle_interval: Seconds to wait between cycles (default: app_interval)
            poll_interval: Seconds between result polls
            poll_timeout: Overall seconds to wait for one task
            enabled: When False, start() is a no-op
        """
        self.store = store
        self.submitter = submitter
        self.poller = poller
        self.fetcher = fetcher
        self.app_interval = app_interval
        self.cycle_interval = app_interval if cycle_interval is None else cycle_interval
        self.poll_interval = poll_interval
        self.poll_timeout = poll_timeout
        self.enabled = enabled

        self.cycles_completed = 0
        self._running = False
        self._task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self):
        """Start the verification loop as a background task."""
        if not self.enabled:
            logger.info("Verification worker disabled, skipping periodic verification")
            return

        if self._running:
            logger.warning("Verification scheduler already running")
            return

        self._running = True
        self._task = asyncio.create_task(self.run())
        logger.info("Verification scheduler started")

    async def stop(self):
        """Cancel the verification loop and wait for it to unwind."""
        if not self._running:
            return

        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                logger.debug("Verification task cancelled successfully")
            self._task = None

        logger.info("Verification scheduler stopped")

    async def run(self):
        """
        Main verification loop.

        Runs until cancelled; cancellation surfaces as asyncio.CancelledError
        from whichever sleep or request was in flight.
        """
        logger.info(
            f"Starting verification worker: app_interval={self.app_interval}s "
            f"cycle_interval={self.cycle_interval}s poll_interval={self.poll_interval}s "
            f"poll_timeout={self.poll_timeout}s"
        )

        try:
            while True:
                logger.info("Starting verification cycle")

                try:
                    apps = await self.store.list_applications()
                except Exception as e:
                    logger.error(f"Failed to list apps: {e}")
                    await asyncio.sleep(self.app_interval)
                    continue

                if not apps:
                    logger.info("No apps to verify, waiting before next cycle")
                    await asyncio.sleep(self.app_interval)
                    continue

                logger.info(f"Verifying {len(apps)} apps one by one")
                for i, app in enumerate(apps):
                    logger.info(f"Processing app {app.id} ({i + 1}/{len(apps)})")
                    try:
                        await self.verify_app(app)
                    except Exception as e:
                        logger.error(
                            f"Failed to verify app {app.id} ({app.github_url}): {e}",
                            exc_info=True,
                        )

                    if i < len(apps) - 1:
                        logger.debug(f"Waiting {self.app_interval}s before next app")
                        await asyncio.sleep(self.app_interval)

                self.cycles_completed += 1
                logger.info(
                    f"Verification cycle completed, waiting {self.cycle_interval}s before next cycle"
                )
                await asyncio.sleep(self.cycle_interval)
        except asyncio.CancelledError:
            logger.info("Verification worker stopped")
            raise

    async def verify_app(self, app: Application) -> Dict[str, VerificationStatus]:
        """
        Refresh an app's rofl.yaml and verify each declared deployment.

        Returns:
            Outcome per deployment name (empty when the app was skipped)
        """
        logger.info(f"Verifying app {app.id} ({app.github_url}@{app.git_ref})")

        try:
            rofl_yaml = await self.fetcher.fetch_manifest(app.github_url, app.git_ref)
        except ManifestFetchError as e:
            logger.error(f"Failed to fetch rofl.yaml for app {app.id}: {e}")
            return {}

        try:
            await self.store.update_manifest(app.id, rofl_yaml)
        except Exception as e:
            # The fetched copy is still good for this pass
            logger.error(f"Failed to store rofl.yaml for app {app.id}: {e}")
        app.rofl_yaml = rofl_yaml

        if not rofl_yaml.strip():
            logger.warning(f"App {app.id} has an empty rofl.yaml, skipping")
            return {}

        try:
            manifest = parse_manifest(rofl_yaml)
        except ManifestParseError as e:
            logger.error(f"Invalid rofl.yaml for app {app.id}: {e}")
            return {}

        if not manifest.deployments:
            logger.warning(f"App {app.id} declares no deployments, skipping")
            return {}

        outcomes = {}
        for deployment_name in manifest.deployment_names:
            logger.info(f"Verifying deployment '{deployment_name}' of app {app.id}")
            outcomes[deployment_name] = await self.verify_deployment(app, deployment_name)
        return outcomes

    async def verify_deployment(
        self, app: Application, deployment_name: str
    ) -> VerificationStatus:
        """Submit, poll, and record the outcome of one deployment."""
        try:
            task_id = await self.submitter.submit(app.github_url, app.git_ref, deployment_name)
        except VerificationError as e:
            logger.error(
                f"Deployment '{deployment_name}' of app {app.id}: submission failed: {e}"
            )
            await self._record(
                app.id, deployment_name, "", VerificationStatus.FAILED,
                f"Failed to submit verification: {e}",
            )
            return VerificationStatus.FAILED

        logger.info(
            f"Verification task {task_id} submitted for '{deployment_name}' of app {app.id}"
        )

        try:
            result = await self.poller.poll(task_id, self.poll_interval, self.poll_timeout)
        except VerificationError as e:
            logger.error(
                f"Deployment '{deployment_name}' of app {app.id}: polling failed: {e}"
            )
            await self._record(
                app.id, deployment_name, "", VerificationStatus.FAILED,
                f"Failed to poll results: {e}",
            )
            return VerificationStatus.FAILED

        status = outcome_status(result)
        await self._record(
            app.id, deployment_name, result.commit_sha, status, outcome_message(result)
        )

        log = logger.info if status == VerificationStatus.VERIFIED else logger.warning
        log(
            f"Verification completed for '{deployment_name}' of app {app.id}: "
            f"status={status.value} commit_sha={result.commit_sha}"
        )
        return status

    async def _record(
        self,
        app_id: int,
        deployment_name: str,
        commit_sha: str,
        status: VerificationStatus,
        message: str,
    ):
        try:
            await self.store.upsert_deployment(app_id, deployment_name, commit_sha, status, message)
        except Exception as e:
            logger.error(
                f"Failed to store status of '{deployment_name}' for app {app_id}: {e}"
            )

    async def verify_now(self, app_id: int) -> Dict[str, VerificationStatus]:
        """
        Force immediate verification of one app.

        Raises:
            ValueError: If the app is not registered
        """
        app = await self.store.get_application_by_id(app_id)
        if app is None:
            raise ValueError(f"Unknown app: {app_id}")

        logger.info(f"Starting immediate verification for app {app_id}")
        return await self.verify_app(app)
