"""
GitHub Actions client for workflow dispatch and run inspection.

Wraps the REST endpoints clipper needs:
- POST workflows/{workflow}/dispatches   (fire-and-forget, returns 204, no run id)
- GET  workflows/{workflow}/runs          (most recent first, filterable by event)
- GET  runs/{run_id}                      (detail record)
- GET  runs/{run_id}/artifacts            (artifact references once completed)
- GET  runs/{run_id}/jobs                 (failure context)

Error classification:
- Dispatch failures raise DispatchError (never retried here)
- Read failures raise TransientFetchError (the poll loop retries them)
"""

import logging
from typing import Any, Callable, Optional

import httpx

from clipper.errors import DispatchError, TransientFetchError
from clipper.key_rotation import KeyRotation

logger = logging.getLogger(__name__)

API_URL = "https://api.github.com"
API_VERSION = "2022-11-28"


class BearerAuth(httpx.Auth):
    """Bearer token auth, asking the provider for a token on every request."""

    def __init__(self, token_provider: Callable[[], str]):
        self._token_provider = token_provider

    def auth_flow(self, request: httpx.Request):
        request.headers["Authorization"] = f"Bearer {self._token_provider()}"
        yield request


def rotating_auth(rotation: KeyRotation, service: str = "github") -> BearerAuth:
    """Auth that spreads requests over a service's key pool."""
    return BearerAuth(lambda: rotation.get_next(service))


class GitHubClient:
    """Client for one workflow in one repository."""

    def __init__(
        self,
        owner: str,
        repo: str,
        token: Optional[str] = None,
        workflow_id: str = "render.yml",
        base_url: str = API_URL,
        timeout: float = 30.0,
        auth: Optional[httpx.Auth] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        if auth is None:
            if not token:
                raise ValueError("GitHubClient needs a token or an auth")
            auth = BearerAuth(lambda: token)
        self.owner = owner
        self.repo = repo
        self.workflow_id = workflow_id
        self._client = httpx.Client(
            base_url=base_url,
            headers={
                "Accept": "application/vnd.github+json",
                "X-GitHub-Api-Version": API_VERSION,
            },
            auth=auth,
            timeout=timeout,
            transport=transport,
        )

    @property
    def repo_path(self) -> str:
        return f"/repos/{self.owner}/{self.repo}"

    def workflow_url(self) -> str:
        """Link to the workflow runs page, for manual follow-up."""
        return f"https://github.com/{self.owner}/{self.repo}/actions"

    # -------------------------------------------------------------------------
    # Dispatch
    # -------------------------------------------------------------------------

    def dispatch_workflow(self, workflow_id: str, ref: str, inputs: dict[str, Any]) -> None:
        """
        Trigger a workflow_dispatch event.

        Raises:
            DispatchError: If the request fails or GitHub rejects it
        """
        path = f"{self.repo_path}/actions/workflows/{workflow_id}/dispatches"
        try:
            response = self._client.post(path, json={"ref": ref, "inputs": inputs})
        except httpx.HTTPError as e:
            raise DispatchError(None, str(e)) from e

        if not response.is_success:
            raise DispatchError(response.status_code, response.text)

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def list_runs(self, event: str = "workflow_dispatch", per_page: int = 10) -> list[dict[str, Any]]:
        """Most recent runs of the workflow, newest first."""
        path = f"{self.repo_path}/actions/workflows/{self.workflow_id}/runs"
        data = self._get(path, params={"event": event, "per_page": per_page})
        return data.get("workflow_runs", [])

    def get_run(self, run_id: int) -> dict[str, Any]:
        """Full detail record of a run."""
        return self._get(f"{self.repo_path}/actions/runs/{run_id}")

    def list_artifacts(self, run_id: int) -> list[dict[str, Any]]:
        data = self._get(f"{self.repo_path}/actions/runs/{run_id}/artifacts")
        return data.get("artifacts", [])

    def list_jobs(self, run_id: int) -> list[dict[str, Any]]:
        data = self._get(f"{self.repo_path}/actions/runs/{run_id}/jobs")
        return data.get("jobs", [])

    def _get(self, path: str, params: Optional[dict[str, Any]] = None) -> dict[str, Any]:
        try:
            response = self._client.get(path, params=params)
        except httpx.HTTPError as e:
            raise TransientFetchError(f"GET {path} failed: {e}") from e

        if response.status_code != 200:
            raise TransientFetchError(
                f"GET {path} returned HTTP {response.status_code}",
                http_status=response.status_code,
            )
        return response.json()

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> "GitHubClient":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()
