"""
Orchestrator - dispatch a render job, watch it, deliver the result.

Flow:
    token -> JobDispatcher.trigger -> StatusPoller.poll -> ArtifactDelivery

Outcome mapping:
- watch=False             -> dispatched (the poller is never touched)
- completed / success     -> succeeded, artifact delivered exactly once
- completed / failure     -> failed, failure notice sent
- budget exhausted        -> timed_out, with a link for manual follow-up
- cancelled               -> cancelled, with a link for manual follow-up
- dispatcher/poller raise -> failure notice sent, exception re-raised

Notification failures are logged and never replace the job's own outcome.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from clipper.config import ClipperConfig
from clipper.correlator import RunCorrelator
from clipper.delivery import ArtifactDelivery, NoOpDelivery, TelegramDelivery
from clipper.dispatcher import JobDispatcher
from clipper.errors import ConfigError
from clipper.github_client import GitHubClient, rotating_auth
from clipper.key_rotation import key_rotation
from clipper.poller import ProgressCallback, StatusPoller
from clipper.schemas import Outcome, PollResult, PollState
from clipper.tokens import generate_correlation_token

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class JobInput:
    """Input for one render job."""
    url: str
    params: dict[str, Any] = field(default_factory=dict)

    def inputs(self) -> dict[str, Any]:
        inputs = {"youtube_url": self.url}
        inputs.update(self.params)
        return inputs


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Orchestrator:
    """Runs one dispatch-and-watch attempt end to end."""

    def __init__(
        self,
        dispatcher: JobDispatcher,
        poller: StatusPoller,
        delivery: Optional[ArtifactDelivery] = None,
        target_job: str = "render.yml",
        ref: str = "main",
        follow_up_url: str = "",
        token_prefix: str = "clipper",
        token_factory: Callable[[str], str] = generate_correlation_token,
        now: Callable[[], datetime] = utc_now,
    ):
        self.dispatcher = dispatcher
        self.poller = poller
        self.delivery = delivery or NoOpDelivery()
        self.target_job = target_job
        self.ref = ref
        self.follow_up_url = follow_up_url
        self.token_prefix = token_prefix
        self._token_factory = token_factory
        self._now = now

    @classmethod
    def from_config(cls, config: ClipperConfig, delivery: Optional[ArtifactDelivery] = None) -> "Orchestrator":
        """
        Wire GitHub, polling and Telegram delivery from configuration.

        GitHub requests rotate over the "github" key pool when one exists
        (github-keys.txt, or GH_PAT as a single-key pool).
        """
        key_rotation.keys_dir = config.get_keys_dir()
        if key_rotation.has("github"):
            auth = rotating_auth(key_rotation, "github")
        elif config.github_token:
            auth = None
        else:
            raise ConfigError("GH_PAT environment variable is required")
        client = GitHubClient(
            owner=config.github_owner,
            repo=config.github_repo,
            token=config.github_token,
            workflow_id=config.workflow_id,
            auth=auth,
        )
        correlator = RunCorrelator(
            client,
            token_key=config.token_key,
            tolerance=config.correlation_tolerance,
            per_page=config.runs_per_page,
        )
        if delivery is None and config.has_telegram:
            delivery = TelegramDelivery(config.telegram_token, config.telegram_chat_id)
        return cls(
            dispatcher=JobDispatcher(client, token_key=config.token_key),
            poller=StatusPoller(correlator, interval=config.poll_interval, timeout=config.poll_timeout),
            delivery=delivery,
            target_job=config.workflow_id,
            ref=config.ref,
            follow_up_url=client.workflow_url(),
            token_prefix=config.token_prefix,
        )

    def run(
        self,
        job_input: JobInput,
        watch: bool = True,
        on_progress: Optional[ProgressCallback] = None,
    ) -> Outcome:
        """
        Dispatch a job and, if watching, follow it to an outcome.

        Raises:
            DispatchError: If the platform rejects the dispatch
            NoCredentialsAvailable: If a required key pool is empty
        """
        token = self._token_factory(self.token_prefix)
        logger.info(f"Starting job for {job_input.url}", extra={"token": token})

        try:
            dispatch_time = self._now()
            self.dispatcher.trigger(self.target_job, self.ref, job_input.inputs(), token)
            if not watch:
                return Outcome.dispatched(token)
            result = self.poller.poll(token, dispatch_time, on_progress=on_progress)
        except Exception as e:
            logger.error(f"Job {token} aborted: {e}", extra={"token": token})
            self._notify_failure(token, str(e))
            raise

        return self._conclude(token, result)

    def _conclude(self, token: str, result: PollResult) -> Outcome:
        run = result.run

        if result.state == PollState.COMPLETED and run is not None:
            if run.succeeded:
                artifact = run.artifact or run.html_url
                logger.info(f"Job {token} succeeded: {artifact}", extra={"token": token})
                self._deliver(artifact, token)
                return Outcome.succeeded(token, artifact, run=run)

            reason = run.failure_reason or f"Run {run.run_id} concluded '{run.raw_conclusion}'"
            logger.error(f"Job {token} failed: {reason}", extra={"token": token})
            self._notify_failure(token, reason)
            return Outcome.failed(token, reason, run=run)

        follow_up = run.html_url if run is not None and run.html_url else self.follow_up_url
        if result.state == PollState.CANCELLED:
            return Outcome.cancelled(token, follow_up, run=run)
        return Outcome.timed_out(token, follow_up, run=run)

    def _deliver(self, artifact: str, token: str) -> None:
        try:
            if not self.delivery.send_artifact(artifact, token):
                logger.warning(f"Artifact delivery for {token} did not go through")
        except Exception:
            logger.error(f"Artifact delivery for {token} raised", exc_info=True)

    def _notify_failure(self, token: str, reason: str) -> None:
        try:
            if not self.delivery.send_failure_notice(token, reason):
                logger.warning(f"Failure notice for {token} did not go through")
        except Exception:
            logger.error(f"Failure notice for {token} raised", exc_info=True)
