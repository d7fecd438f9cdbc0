"""
Apps Registry Sync

Seeds the store from the published apps registry at startup.
"""

import logging
from typing import List

from sqlalchemy.exc import SQLAlchemyError

from app.core.config import GitHubRepo
from app.services.store import RegistryStore
from app.services.verification.exceptions import ManifestFetchError

from .fetcher import ManifestFetcher

logger = logging.getLogger(__name__)


async def sync_apps(
    store: RegistryStore,
    fetcher: ManifestFetcher,
    registry_url: str,
    fallback_repos: List[GitHubRepo],
) -> int:
    """
    Upsert every registry app and fetch its rofl.yaml.

    Falls back to `fallback_repos` when the registry is unreachable.
    Per-app failures are logged and skipped.

    Returns:
        Number of apps synced
    """
    try:
        repos = await fetcher.fetch_registry(registry_url)
    except ManifestFetchError as e:
        logger.warning(f"Failed to fetch apps registry, using fallback list: {e}")
        repos = list(fallback_repos)

    synced = 0
    for repo in repos:
        try:
            await store.upsert_application(repo.url, repo.ref)
            app = await store.get_application_by_url(repo.url)
        except SQLAlchemyError as e:
            logger.error(f"Failed to upsert app {repo.url}@{repo.ref}: {e}")
            continue

        if app is None:
            logger.error(f"App {repo.url} missing after upsert")
            continue

        synced += 1
        logger.info(f"App synced: id={app.id} url={repo.url} ref={repo.ref}")

        try:
            rofl_yaml = await fetcher.fetch_manifest(app.github_url, app.git_ref)
            await store.update_manifest(app.id, rofl_yaml)
        except (ManifestFetchError, SQLAlchemyError) as e:
            logger.error(f"Failed to fetch rofl.yaml for app {app.id} ({app.github_url}): {e}")

    return synced
