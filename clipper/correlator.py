"""
Run correlation - find the remote run created by a dispatch.

The dispatch endpoint returns no run id, and the listing endpoint does not echo
the dispatch inputs. Correlation therefore works on a small page of recent runs:

1. List the most recent N workflow_dispatch runs
2. Fetch each candidate's detail record
3. Match by token (inputs[token_key], or the token in the run name/title)
4. Otherwise match by time: created_at newer than dispatch_time - tolerance,
   skipping runs whose inputs carry a different token
5. Prefer token matches; break ties by created_at closest to dispatch_time

Matching is best-effort. A time-only match can pick another run dispatched
within the tolerance window; only token matches are remembered across polls.
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Iterable, Optional

from clipper.errors import TransientFetchError
from clipper.github_client import GitHubClient
from clipper.schemas import Conclusion, RemoteRun

logger = logging.getLogger(__name__)

DEFAULT_TOLERANCE = 10.0
DEFAULT_PER_PAGE = 10


def token_in_detail(detail: dict[str, Any], token: str, token_key: str = "worker_id") -> bool:
    """True if a run detail record carries the correlation token."""
    inputs = detail.get("inputs")
    if isinstance(inputs, dict) and inputs.get(token_key) == token:
        return True
    for name_field in ("name", "display_title"):
        value = detail.get(name_field)
        if value and token in value:
            return True
    return False


def _carries_other_token(detail: dict[str, Any], token: str, token_key: str) -> bool:
    inputs = detail.get("inputs")
    if not isinstance(inputs, dict):
        return False
    value = inputs.get(token_key)
    return value is not None and value != token


def _distance(run: RemoteRun, dispatch_time: datetime) -> float:
    if run.created_at is None:
        return float("inf")
    return abs((run.created_at - dispatch_time).total_seconds())


def _select(
    token: str,
    dispatch_time: datetime,
    details: Iterable[dict[str, Any]],
    token_key: str,
    tolerance: float,
) -> tuple[Optional[RemoteRun], bool]:
    threshold = dispatch_time - timedelta(seconds=tolerance)
    by_token: list[RemoteRun] = []
    by_time: list[RemoteRun] = []

    for detail in details:
        run = RemoteRun.from_api(detail)
        if token_in_detail(detail, token, token_key):
            by_token.append(run)
        elif _carries_other_token(detail, token, token_key):
            continue
        elif run.created_at is not None and run.created_at > threshold:
            by_time.append(run)

    if by_token:
        return min(by_token, key=lambda r: _distance(r, dispatch_time)), True
    if by_time:
        return min(by_time, key=lambda r: _distance(r, dispatch_time)), False
    return None, False


def select_run(
    token: str,
    dispatch_time: datetime,
    details: Iterable[dict[str, Any]],
    token_key: str = "worker_id",
    tolerance: float = DEFAULT_TOLERANCE,
) -> Optional[RemoteRun]:
    """
    Pick the run matching a dispatch from candidate detail records.

    Args:
        token: Correlation token sent with the dispatch
        dispatch_time: When the dispatch was sent (timezone-aware)
        details: Run detail payloads
        token_key: Input name the token was sent under
        tolerance: Clock-skew allowance in seconds for the time fallback

    Returns:
        The matching RemoteRun, or None if no candidate matches yet
    """
    run, _ = _select(token, dispatch_time, details, token_key, tolerance)
    return run


class RunCorrelator:
    """Finds and re-reads the run created by a dispatch."""

    def __init__(
        self,
        client: GitHubClient,
        token_key: str = "worker_id",
        tolerance: float = DEFAULT_TOLERANCE,
        per_page: int = DEFAULT_PER_PAGE,
        event: str = "workflow_dispatch",
    ):
        self.client = client
        self.token_key = token_key
        self.tolerance = tolerance
        self.per_page = per_page
        self.event = event
        self._matched: dict[str, int] = {}

    def find(self, token: str, dispatch_time: datetime) -> Optional[RemoteRun]:
        """
        Current snapshot of the run for a token.

        Returns:
            RemoteRun, or None if the run has not appeared in the listing yet

        Raises:
            TransientFetchError: If the listing or a locked run cannot be read
        """
        run_id = self._matched.get(token)
        if run_id is not None:
            run = RemoteRun.from_api(self.client.get_run(run_id))
        else:
            listing = self.client.list_runs(event=self.event, per_page=self.per_page)
            details = [self._detail(summary) for summary in listing]
            run, by_token = _select(token, dispatch_time, details, self.token_key, self.tolerance)
            if run is None:
                logger.debug(f"No run matches {token} among {len(details)} candidate(s)")
                return None
            if by_token:
                self._matched[token] = run.run_id
            else:
                logger.debug(f"Run {run.run_id} matched {token} by creation time only")

        if run.is_completed:
            run = self._enrich(run, token)
        return run

    def forget(self, token: str) -> None:
        self._matched.pop(token, None)

    def _detail(self, summary: dict[str, Any]) -> dict[str, Any]:
        try:
            return self.client.get_run(summary["id"])
        except TransientFetchError as e:
            logger.warning(f"Detail fetch for run {summary.get('id')} failed, using listing record: {e}")
            return summary

    def _enrich(self, run: RemoteRun, token: str) -> RemoteRun:
        if run.conclusion == Conclusion.SUCCESS:
            try:
                artifacts = self.client.list_artifacts(run.run_id)
            except TransientFetchError as e:
                logger.warning(f"Could not list artifacts for run {run.run_id}: {e}")
                return run
            artifact = _pick_artifact(artifacts, token)
            if artifact is None:
                return run
            return run.with_details(artifact=artifact)

        reason = f"Run {run.run_id} concluded '{run.raw_conclusion}'"
        try:
            failed = _failed_steps(self.client.list_jobs(run.run_id))
        except TransientFetchError as e:
            logger.warning(f"Could not list jobs for run {run.run_id}: {e}")
            failed = []
        if failed:
            reason += f" at {', '.join(failed)}"
        if run.html_url:
            reason += f" ({run.html_url})"
        return run.with_details(failure_reason=reason)


def _pick_artifact(artifacts: list[dict[str, Any]], token: str) -> Optional[str]:
    live = [a for a in artifacts if not a.get("expired")]
    if not live:
        return None
    for artifact in live:
        if token in (artifact.get("name") or ""):
            return artifact.get("archive_download_url")
    return live[0].get("archive_download_url")


def _failed_steps(jobs: list[dict[str, Any]]) -> list[str]:
    failed = []
    for job in jobs:
        if job.get("conclusion") in (None, "success", "skipped"):
            continue
        steps = [
            step.get("name", "?")
            for step in job.get("steps") or []
            if step.get("conclusion") == "failure"
        ]
        if steps:
            failed.extend(f"{job.get('name', '?')} / {step}" for step in steps)
        else:
            failed.append(job.get("name", "?"))
    return failed
