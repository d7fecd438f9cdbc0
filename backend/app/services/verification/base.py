"""
Base Backend Client

Shared HTTP plumbing for every client of the ROFL app backend.
"""

import logging
from typing import Dict, Optional, TYPE_CHECKING

import aiohttp

if TYPE_CHECKING:
    from .session import SessionManager

logger = logging.getLogger(__name__)

DEFAULT_REQUEST_TIMEOUT_SECONDS = 30


class BaseBackendClient:
    """
    Owns a lazily created aiohttp session bound to one backend base URL.

    Every request gets a bounded timeout, independent of any outer deadline
    (such as the result poller's overall timeout).
    """

    def __init__(
        self,
        backend_url: str,
        session_manager: Optional["SessionManager"] = None,
        request_timeout: float = DEFAULT_REQUEST_TIMEOUT_SECONDS,
    ):
        self.backend_url = backend_url.rstrip("/")
        self.session_manager = session_manager
        self.request_timeout = request_timeout
        self._session: Optional[aiohttp.ClientSession] = None

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create HTTP session"""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.request_timeout),
                trust_env=False,  # Don't trust environment proxy settings
            )
            logger.debug(f"Created HTTP session for {self.backend_url}")
        return self._session

    async def _auth_headers(self) -> Dict[str, str]:
        """
        Bearer header when authentication is configured, empty otherwise.

        Raises:
            AuthenticationError: If a token cannot be obtained
        """
        if self.session_manager is None:
            return {}
        token = await self.session_manager.get_token()
        return {"Authorization": f"Bearer {token}"}

    async def cleanup(self):
        """Close the HTTP session"""
        if self._session and not self._session.closed:
            await self._session.close()
            self._session = None
            logger.debug(f"Closed HTTP session for {self.backend_url}")
