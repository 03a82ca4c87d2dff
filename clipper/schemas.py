"""
Schemas - data structures shared by the dispatch, correlation and poll layers.

Lifecycle:
1. DispatchRequest: Immutable request sent to the remote platform
2. RemoteRun: Read-only snapshot of a remote run, re-read on every poll
3. PollAttempt: Per-poll bookkeeping, discarded once the poll ends
4. PollResult: Terminal (completed) or non-terminal (timed out, cancelled) end of a poll
5. Outcome: What the orchestrator reports to its caller
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from clipper.errors import RemoteJobFailure


class RunStatus(str, Enum):
    """Status of a remote run as declared by the platform."""
    UNKNOWN = "unknown"
    QUEUED = "queued"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"

    @classmethod
    def parse(cls, value: Optional[str]) -> "RunStatus":
        """Map a platform status string onto the run state machine."""
        if not value:
            return cls.UNKNOWN
        value = value.lower()
        if value in ("queued", "waiting", "requested", "pending"):
            return cls.QUEUED
        if value == "in_progress":
            return cls.IN_PROGRESS
        if value == "completed":
            return cls.COMPLETED
        return cls.UNKNOWN


class Conclusion(str, Enum):
    """Conclusion of a completed run."""
    SUCCESS = "success"
    FAILURE = "failure"

    @classmethod
    def parse(cls, value: Optional[str]) -> Optional["Conclusion"]:
        # cancelled, timed_out, neutral, skipped, ... all count as failure
        if not value:
            return None
        return cls.SUCCESS if value.lower() == "success" else cls.FAILURE


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp as returned by the GitHub API."""
    if not value:
        return None
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    return datetime.fromisoformat(value)


@dataclass(frozen=True)
class DispatchRequest:
    """
    A dispatch request for a remote job.

    Attributes:
        target_job: Workflow file name or id (e.g. "render.yml")
        ref: Branch or tag the workflow runs on
        token: Correlation token embedded in the inputs
        params: Job-specific inputs
    """
    target_job: str
    ref: str
    token: str
    params: dict[str, Any] = field(default_factory=dict)

    def inputs(self, token_key: str) -> dict[str, Any]:
        """Inputs map sent to the platform, with the token under token_key."""
        inputs = dict(self.params)
        inputs[token_key] = self.token
        return inputs


@dataclass(frozen=True)
class RemoteRun:
    """
    Snapshot of a remote run.

    Attributes:
        run_id: Platform run identifier
        created_at: When the platform recorded the run
        event: Triggering event type (e.g. "workflow_dispatch")
        status: Normalized run status
        conclusion: Normalized conclusion, only set when completed
        html_url: Link to the run for humans
        name: Run name / display title (may embed the token)
        raw_conclusion: Conclusion string as reported by the platform
        artifact: Artifact reference, resolved once the run succeeded
        failure_reason: Failure context, resolved once the run failed
    """
    run_id: int
    created_at: Optional[datetime]
    event: str = ""
    status: RunStatus = RunStatus.UNKNOWN
    conclusion: Optional[Conclusion] = None
    html_url: str = ""
    name: str = ""
    raw_conclusion: Optional[str] = None
    artifact: Optional[str] = None
    failure_reason: Optional[str] = None

    def __post_init__(self):
        if self.conclusion is not None and self.status != RunStatus.COMPLETED:
            raise ValueError("conclusion is only valid when status is completed")

    @property
    def is_completed(self) -> bool:
        return self.status == RunStatus.COMPLETED

    @property
    def succeeded(self) -> bool:
        return self.is_completed and self.conclusion == Conclusion.SUCCESS

    def with_details(self, **changes: Any) -> "RemoteRun":
        """Return a copy with enrichment fields set."""
        return replace(self, **changes)

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "RemoteRun":
        """Build a snapshot from a GitHub workflow run payload."""
        status = RunStatus.parse(data.get("status"))
        raw_conclusion = data.get("conclusion")
        conclusion = Conclusion.parse(raw_conclusion) if status == RunStatus.COMPLETED else None
        return cls(
            run_id=data["id"],
            created_at=parse_timestamp(data.get("created_at")),
            event=data.get("event") or "",
            status=status,
            conclusion=conclusion,
            html_url=data.get("html_url") or "",
            name=data.get("display_title") or data.get("name") or "",
            raw_conclusion=raw_conclusion,
        )


class PollState(str, Enum):
    """How a poll ended."""
    COMPLETED = "completed"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"


@dataclass
class PollAttempt:
    """Mutable bookkeeping for a single poll() call."""
    started_at: float
    interval: float
    timeout: float
    attempts: int = 0
    last_status: RunStatus = RunStatus.UNKNOWN
    last_run: Optional[RemoteRun] = None

    def elapsed(self, now: float) -> float:
        return now - self.started_at

    def remaining(self, now: float) -> float:
        return self.timeout - self.elapsed(now)


@dataclass(frozen=True)
class PollResult:
    """
    End of a poll.

    COMPLETED is terminal. TIMED_OUT and CANCELLED are not: the remote
    run may still be going, and `run` holds the last observed snapshot.
    """
    state: PollState
    run: Optional[RemoteRun] = None
    elapsed: float = 0.0
    attempts: int = 0

    @property
    def timed_out(self) -> bool:
        return self.state == PollState.TIMED_OUT


class OutcomeKind(str, Enum):
    """Outcome codes at the orchestration boundary."""
    DISPATCHED = "dispatched"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"
    DISPATCH_ERROR = "dispatch_error"


@dataclass(frozen=True)
class Outcome:
    """Result of one Orchestrator.run() call."""
    kind: OutcomeKind
    token: str
    artifact: Optional[str] = None
    reason: Optional[str] = None
    follow_up: Optional[str] = None
    run: Optional[RemoteRun] = None

    @classmethod
    def dispatched(cls, token: str) -> "Outcome":
        return cls(OutcomeKind.DISPATCHED, token)

    @classmethod
    def succeeded(cls, token: str, artifact: Optional[str], run: Optional[RemoteRun] = None) -> "Outcome":
        return cls(OutcomeKind.SUCCEEDED, token, artifact=artifact, run=run)

    @classmethod
    def failed(cls, token: str, reason: str, run: Optional[RemoteRun] = None) -> "Outcome":
        return cls(OutcomeKind.FAILED, token, reason=reason, run=run)

    @classmethod
    def timed_out(cls, token: str, follow_up: str, run: Optional[RemoteRun] = None) -> "Outcome":
        return cls(OutcomeKind.TIMED_OUT, token, follow_up=follow_up, run=run)

    @classmethod
    def cancelled(cls, token: str, follow_up: str, run: Optional[RemoteRun] = None) -> "Outcome":
        return cls(OutcomeKind.CANCELLED, token, follow_up=follow_up, run=run)

    @classmethod
    def dispatch_error(cls, token: str, reason: str) -> "Outcome":
        return cls(OutcomeKind.DISPATCH_ERROR, token, reason=reason)

    @property
    def exit_code(self) -> int:
        if self.kind in (OutcomeKind.DISPATCHED, OutcomeKind.SUCCEEDED):
            return 0
        if self.kind in (OutcomeKind.TIMED_OUT, OutcomeKind.CANCELLED):
            return 2
        return 1

    def raise_for_outcome(self) -> None:
        """Raise RemoteJobFailure if the remote run failed."""
        if self.kind == OutcomeKind.FAILED:
            raise RemoteJobFailure(self.reason or "Remote job failed", run=self.run)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary for JSON output."""
        result: dict[str, Any] = {"kind": self.kind.value, "token": self.token}
        if self.artifact is not None:
            result["artifact"] = self.artifact
        if self.reason is not None:
            result["reason"] = self.reason
        if self.follow_up is not None:
            result["follow_up"] = self.follow_up
        if self.run is not None:
            result["run_id"] = self.run.run_id
        return result
