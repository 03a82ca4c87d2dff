"""
Job dispatch - submit a fire-and-forget workflow run carrying the correlation token.

Retry contract:
- trigger() makes exactly one request
- Rejections propagate as DispatchError
- Retrying is the caller's decision: a duplicate dispatch creates a duplicate run
"""

import logging
from typing import Any, Optional

from clipper.errors import DispatchError
from clipper.github_client import GitHubClient
from clipper.schemas import DispatchRequest

logger = logging.getLogger(__name__)


class JobDispatcher:
    """Dispatches remote jobs with the correlation token embedded in the inputs."""

    def __init__(self, client: GitHubClient, token_key: str = "worker_id"):
        self.client = client
        self.token_key = token_key

    def trigger(
        self,
        target_job: str,
        ref: str,
        params: Optional[dict[str, Any]],
        token: str,
    ) -> DispatchRequest:
        """
        Submit a dispatch request.

        Args:
            target_job: Workflow file name or id
            ref: Branch or tag to run on
            params: Job-specific inputs
            token: Correlation token, sent under token_key

        Returns:
            The submitted DispatchRequest

        Raises:
            DispatchError: If the platform does not accept the request
        """
        request = DispatchRequest(
            target_job=target_job,
            ref=ref,
            token=token,
            params=dict(params or {}),
        )
        logger.info(f"Dispatching {target_job}@{ref}", extra={"token": token})
        try:
            self.client.dispatch_workflow(target_job, ref, request.inputs(self.token_key))
        except DispatchError as e:
            e.token = token
            logger.error(f"Dispatch of {target_job} rejected: {e}", extra={"token": token})
            raise
        logger.info(f"Dispatched {target_job}", extra={"token": token})
        return request
