"""
Verification Result Poller

Waits for a submitted verification task to reach a terminal state.
"""

import asyncio
import json
import logging
from typing import Optional, Tuple

import aiohttp

from .base import BaseBackendClient
from .exceptions import PollError, PollTimeoutError, TaskNotFoundError
from .models import VerificationResult

logger = logging.getLogger(__name__)

HTTP_OK = 200
HTTP_ACCEPTED = 202
HTTP_NOT_FOUND = 404


class ResultPoller(BaseBackendClient):
    """
    Polls task results until a terminal backend response or a deadline.

    Each tick sleeps first and then issues one request, so cancellation
    observed during the sleep never leads to another request.
    """

    async def fetch_raw(self, task_id: str) -> Tuple[int, bytes]:
        """
        Make a single results request.

        Returns:
            (HTTP status, raw response body)

        Raises:
            AuthenticationError: If a bearer token cannot be obtained
            aiohttp.ClientError, asyncio.TimeoutError: On transport failure
        """
        headers = await self._auth_headers()
        url = f"{self.backend_url}/rofl/verify_deployments/{task_id}/results"
        session = await self._get_session()
        async with session.get(url, headers=headers) as response:
            return response.status, await response.read()

    async def check_results(self, task_id: str) -> Tuple[int, Optional[VerificationResult]]:
        """
        Check a task once.

        Returns:
            (HTTP status, parsed result when status is 200 else None)

        Raises:
            AuthenticationError: If a bearer token cannot be obtained
            PollError: On transport failure or an undecodable 200 body
        """
        try:
            status, body = await self.fetch_raw(task_id)
        except aiohttp.ClientError as e:
            raise PollError(f"failed to check results: {e}") from e
        except asyncio.TimeoutError as e:
            raise PollError(
                f"failed to check results: request timed out after {self.request_timeout}s"
            ) from e

        if status != HTTP_OK:
            return status, None

        try:
            result = VerificationResult.model_validate(json.loads(body))
        except ValueError as e:
            raise PollError(f"failed to decode response: {e}") from e
        return status, result

    async def poll(
        self,
        task_id: str,
        poll_interval: float,
        poll_timeout: float,
    ) -> VerificationResult:
        """
        Poll until the task completes.

        Args:
            task_id: Backend task id
            poll_interval: Seconds between requests
            poll_timeout: Overall deadline in seconds, measured on the
                event loop's monotonic clock

        Returns:
            The terminal VerificationResult (which may report verified=False)

        Raises:
            PollTimeoutError: Deadline passed while the task was in progress
            TaskNotFoundError: Backend answered 404
            PollError: Any other status or transport failure
            AuthenticationError: If a bearer token cannot be obtained
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + poll_timeout

        while True:
            await asyncio.sleep(poll_interval)

            if loop.time() > deadline:
                raise PollTimeoutError(f"polling timeout after {poll_timeout}s")

            status, result = await self.check_results(task_id)

            if status == HTTP_OK:
                return result
            if status == HTTP_ACCEPTED:
                logger.debug(f"Task {task_id} still in progress")
                continue
            if status == HTTP_NOT_FOUND:
                raise TaskNotFoundError("task not found or expired")
            raise PollError(f"unexpected status code: {status}")
