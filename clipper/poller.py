"""
Status polling - drive a correlated run to a terminal state under a time budget.

Loop contract:
- The first fetch happens immediately, later fetches every `interval` seconds
- Sleeps are clamped to the remaining budget, so poll() never blocks past `timeout`
  (plus the duration of one in-flight request)
- A missing run (None) and TransientFetchError are absorbed and count toward the budget
- `completed` ends the poll; success or failure is for the caller to judge
- Budget exhaustion returns TIMED_OUT, which is not a failure: the run may still be going
- cancel() is honored at the top of each iteration, during the sleep, and right after it

Status transitions are whatever the platform declares; nothing is inferred locally.
"""

import logging
import threading
import time
from datetime import datetime
from typing import Callable, Optional, Protocol

from clipper.errors import TransientFetchError
from clipper.schemas import PollAttempt, PollResult, PollState, RemoteRun

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL = 5.0
DEFAULT_TIMEOUT = 600.0

ProgressCallback = Callable[[RemoteRun], None]


class RunSource(Protocol):
    """Anything that can produce the current snapshot of a dispatched run."""

    def find(self, token: str, dispatch_time: datetime) -> Optional[RemoteRun]:
        ...


class StatusPoller:
    """Polls a RunSource until the run completes, the budget runs out, or cancel()."""

    def __init__(
        self,
        correlator: RunSource,
        interval: float = DEFAULT_INTERVAL,
        timeout: float = DEFAULT_TIMEOUT,
        cancel_event: Optional[threading.Event] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Optional[Callable[[float], bool]] = None,
    ):
        self.correlator = correlator
        self.interval = interval
        self.timeout = timeout
        self._cancel = cancel_event or threading.Event()
        self._clock = clock
        # sleep(seconds) -> True if woken by cancellation
        self._sleep = sleep or self._cancel.wait

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    def cancel(self) -> None:
        """Ask a running poll to stop; it returns within one tick."""
        self._cancel.set()

    def reset(self) -> None:
        self._cancel.clear()

    def poll(
        self,
        token: str,
        dispatch_time: datetime,
        interval: Optional[float] = None,
        timeout: Optional[float] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> PollResult:
        """
        Poll until the run for `token` completes.

        Args:
            token: Correlation token of the dispatch
            dispatch_time: When the dispatch was sent
            interval: Seconds between fetches (defaults to the poller's)
            timeout: Total budget in seconds (defaults to the poller's)
            on_progress: Called with every snapshot found, in observation order

        Returns:
            PollResult with state COMPLETED, TIMED_OUT or CANCELLED
        """
        attempt = PollAttempt(
            started_at=self._clock(),
            interval=self.interval if interval is None else interval,
            timeout=self.timeout if timeout is None else timeout,
        )

        while True:
            if self.cancelled:
                return self._finish(attempt, PollState.CANCELLED)

            attempt.attempts += 1
            run = self._fetch(token, dispatch_time, attempt)

            if run is not None:
                if run.status != attempt.last_status:
                    logger.info(
                        f"Run {run.run_id}: {attempt.last_status.value} -> {run.status.value}",
                        extra={"token": token, "run_id": run.run_id, "status": run.status.value},
                    )
                attempt.last_status = run.status
                attempt.last_run = run
                if on_progress is not None:
                    on_progress(run)
                if run.is_completed:
                    return self._finish(attempt, PollState.COMPLETED)

            remaining = attempt.remaining(self._clock())
            if remaining <= 0:
                return self._finish(attempt, PollState.TIMED_OUT)

            if self._sleep(min(attempt.interval, remaining)) or self.cancelled:
                return self._finish(attempt, PollState.CANCELLED)

            if attempt.remaining(self._clock()) <= 0:
                return self._finish(attempt, PollState.TIMED_OUT)

    def _fetch(self, token: str, dispatch_time: datetime, attempt: PollAttempt) -> Optional[RemoteRun]:
        try:
            return self.correlator.find(token, dispatch_time)
        except TransientFetchError as e:
            logger.warning(
                f"Poll attempt {attempt.attempts} failed, retrying next tick: {e}",
                extra={"token": token},
            )
            return None

    def _finish(self, attempt: PollAttempt, state: PollState) -> PollResult:
        elapsed = attempt.elapsed(self._clock())
        if state == PollState.TIMED_OUT:
            logger.warning(f"Gave up waiting after {elapsed:.1f}s ({attempt.attempts} attempt(s))")
        elif state == PollState.CANCELLED:
            logger.info(f"Polling cancelled after {attempt.attempts} attempt(s)")
        return PollResult(
            state=state,
            run=attempt.last_run,
            elapsed=elapsed,
            attempts=attempt.attempts,
        )
