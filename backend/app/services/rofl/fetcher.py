"""
Manifest Fetcher

Downloads rofl.yaml files and the apps registry from GitHub with bounded
size and time.
"""

import asyncio
import logging
from typing import List, Optional

import aiohttp
import yaml
from pydantic import ValidationError

from app.core.config import GITHUB_URL_PREFIX, GitHubRepo
from app.services.verification.exceptions import ManifestFetchError

logger = logging.getLogger(__name__)

RAW_GITHUB_BASE = "https://raw.githubusercontent.com"
MANIFEST_FILENAME = "rofl.yaml"

DEFAULT_MANIFEST_MAX_BYTES = 10 * 1024 * 1024
DEFAULT_REGISTRY_MAX_BYTES = 1024 * 1024


def raw_manifest_url(github_url: str, ref: str, raw_base: str = RAW_GITHUB_BASE) -> str:
    """
    Map a repository URL to the raw rofl.yaml URL.

    https://github.com/oasisprotocol/wt3 + master
        -> https://raw.githubusercontent.com/oasisprotocol/wt3/master/rofl.yaml
    """
    if not github_url.startswith(GITHUB_URL_PREFIX):
        raise ManifestFetchError(f"not a GitHub repository URL: {github_url}")
    repo_path = github_url[len(GITHUB_URL_PREFIX):].strip("/")
    return f"{raw_base.rstrip('/')}/{repo_path}/{ref}/{MANIFEST_FILENAME}"


class ManifestFetcher:
    """Fetches rofl.yaml and apps.yaml over HTTP"""

    def __init__(
        self,
        request_timeout: float = 30,
        manifest_max_bytes: int = DEFAULT_MANIFEST_MAX_BYTES,
        registry_max_bytes: int = DEFAULT_REGISTRY_MAX_BYTES,
        raw_base: str = RAW_GITHUB_BASE,
    ):
        self.request_timeout = request_timeout
        self.manifest_max_bytes = manifest_max_bytes
        self.registry_max_bytes = registry_max_bytes
        self.raw_base = raw_base
        self._session: Optional[aiohttp.ClientSession] = None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.request_timeout),
            )
        return self._session

    async def _download(self, url: str, max_bytes: int) -> bytes:
        """GET `url`, refusing bodies of `max_bytes` or more."""
        session = await self._get_session()
        try:
            async with session.get(url) as response:
                if response.status != 200:
                    raise ManifestFetchError(f"HTTP {response.status}")
                data = bytearray()
                async for chunk in response.content.iter_chunked(64 * 1024):
                    data.extend(chunk)
                    if len(data) >= max_bytes:
                        raise ManifestFetchError(
                            f"response exceeds maximum size of {max_bytes} bytes"
                        )
        except aiohttp.ClientError as e:
            raise ManifestFetchError(f"failed to fetch: {e}") from e
        except asyncio.TimeoutError as e:
            raise ManifestFetchError(f"failed to fetch: timed out after {self.request_timeout}s") from e

        return bytes(data)

    async def fetch_manifest(self, github_url: str, ref: str) -> str:
        """
        Fetch the rofl.yaml of a repository at `ref`.

        Raises:
            ManifestFetchError: On non-GitHub URL, HTTP error, or oversize body
        """
        url = raw_manifest_url(github_url, ref, self.raw_base)
        logger.debug(f"Fetching rofl.yaml from {url}")
        data = await self._download(url, self.manifest_max_bytes)
        logger.debug(f"Fetched rofl.yaml for {github_url} ({len(data)} bytes)")
        return data.decode("utf-8", errors="replace")

    async def fetch_registry(self, registry_url: str) -> List[GitHubRepo]:
        """
        Fetch and parse the apps registry (apps.yaml: `apps: [{url, ref}]`).

        Raises:
            ManifestFetchError: On HTTP error, oversize body, or bad YAML
        """
        logger.info(f"Fetching apps registry from {registry_url}")
        data = await self._download(registry_url, self.registry_max_bytes)

        try:
            document = yaml.safe_load(data) or {}
            if not isinstance(document, dict):
                raise ManifestFetchError("failed to parse YAML: top level is not a mapping")
            apps = document.get("apps") or []
            repos = [GitHubRepo.model_validate(entry) for entry in apps]
        except (yaml.YAMLError, ValidationError) as e:
            raise ManifestFetchError(f"failed to parse YAML: {e}") from e

        logger.info(f"Fetched apps registry with {len(repos)} apps")
        return repos

    async def cleanup(self):
        if self._session and not self._session.closed:
            await self._session.close()
            self._session = None
