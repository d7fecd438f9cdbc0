"""
Verification Task Submitter

Submits a (repository, ref, deployment) triple to the backend for
reproducible-build verification.
"""

import asyncio
import logging

import aiohttp

from .base import BaseBackendClient
from .exceptions import SubmissionError
from .models import VerifyDeploymentsRequest, VerifyDeploymentsResponse

logger = logging.getLogger(__name__)


class TaskSubmitter(BaseBackendClient):
    """
    Issues verification requests.

    No retry happens here; a failed submission is retried on the scheduler's
    next cycle.
    """

    async def submit(self, repository_url: str, ref: str, deployment_name: str) -> str:
        """
        Submit a verification task.

        Args:
            repository_url: GitHub URL of the application
            ref: Branch, tag, or commit to build
            deployment_name: Deployment to compare against (e.g. "mainnet")

        Returns:
            Backend task id

        Raises:
            AuthenticationError: If a bearer token cannot be obtained
            SubmissionError: On transport failure or any non-200 response
        """
        payload = VerifyDeploymentsRequest(
            repository_url=repository_url,
            ref=ref,
            deployment_name=deployment_name,
        ).model_dump()
        headers = await self._auth_headers()
        url = f"{self.backend_url}/rofl/verify_deployments"

        logger.debug(f"Submitting verification for {repository_url}@{ref} ({deployment_name})")
        session = await self._get_session()
        try:
            async with session.post(url, json=payload, headers=headers) as response:
                if response.status != 200:
                    body = await response.text()
                    logger.debug(f"Submission rejected: HTTP {response.status}: {body[:200]}")
                    raise SubmissionError(f"unexpected status code: {response.status}")
                data = await response.json(content_type=None)
        except aiohttp.ClientError as e:
            raise SubmissionError(f"failed to send request: {e}") from e
        except asyncio.TimeoutError as e:
            raise SubmissionError(
                f"request timed out after {self.request_timeout}s"
            ) from e
        except ValueError as e:
            raise SubmissionError(f"failed to decode response: {e}") from e

        try:
            task_id = VerifyDeploymentsResponse.model_validate(data).task_id
        except ValueError as e:
            raise SubmissionError(f"failed to decode response: {e}") from e

        if not task_id:
            raise SubmissionError("empty task_id in response")
        return task_id
