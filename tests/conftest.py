import json
from datetime import datetime, timedelta, timezone

import httpx
import pytest

from clipper.config import ClipperConfig


ENV_VARS = [
    "GITHUB_OWNER", "GITHUB_REPO", "GH_PAT", "TELEGRAM_TOKEN", "CHAT_ID",
    "DEEPGRAM_API_KEY", "GEMINI_API_KEY",
]

DISPATCH_TIME = datetime(2025, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch, tmp_path):
    """Point CLIPPER_HOME at a temp dir and clear credentials from the environment."""
    monkeypatch.setenv("CLIPPER_HOME", str(tmp_path / "clipper_home"))
    for var in ENV_VARS:
        monkeypatch.delenv(var, raising=False)
    yield


@pytest.fixture
def test_config(tmp_path):
    return ClipperConfig(
        github_owner="octo",
        github_repo="clipper-render",
        github_token="ghp_" + "x" * 36,
        keys_dir=str(tmp_path / "keys"),
        poll_interval=5.0,
        poll_timeout=10.0,
    )


class FakeClock:
    """Monotonic clock whose sleep() just moves time forward."""

    def __init__(self, start: float = 0.0):
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> bool:
        self.sleeps.append(seconds)
        self.now += seconds
        return False


@pytest.fixture
def fake_clock():
    return FakeClock()


def run_payload(
    run_id: int,
    created_at: datetime,
    status: str = "queued",
    conclusion: str | None = None,
    name: str = "Clipper Render",
    inputs: dict | None = None,
) -> dict:
    """A GitHub workflow run payload."""
    payload = {
        "id": run_id,
        "name": name,
        "display_title": name,
        "event": "workflow_dispatch",
        "status": status,
        "conclusion": conclusion,
        "created_at": created_at.strftime("%Y-%m-%dT%H:%M:%SZ"),
        "html_url": f"https://github.com/octo/clipper-render/actions/runs/{run_id}",
        "url": f"https://api.github.com/repos/octo/clipper-render/actions/runs/{run_id}",
    }
    if inputs is not None:
        payload["inputs"] = inputs
    return payload


class FakeGitHub:
    """
    In-memory GitHub Actions API served through httpx.MockTransport.

    runs: run_id -> detail payload (listed newest first by created_at)
    """

    def __init__(self):
        self.runs: dict[int, dict] = {}
        self.artifacts: dict[int, list[dict]] = {}
        self.jobs: dict[int, list[dict]] = {}
        self.dispatches: list[dict] = []
        self.requests: list[httpx.Request] = []
        self.dispatch_status = 204
        self.list_status = 200
        self.list_error: Exception | None = None

    def add_run(self, payload: dict) -> None:
        self.runs[payload["id"]] = payload

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        if request.method == "POST" and path.endswith("/dispatches"):
            self.dispatches.append(json.loads(request.content))
            if self.dispatch_status >= 400:
                return httpx.Response(self.dispatch_status, text='{"message": "Unexpected inputs provided"}')
            return httpx.Response(self.dispatch_status)

        if path.endswith("/runs") and "/workflows/" in path:
            if self.list_error is not None:
                raise self.list_error
            if self.list_status != 200:
                return httpx.Response(self.list_status, json={"message": "Server Error"})
            per_page = int(request.url.params.get("per_page", 30))
            ordered = sorted(self.runs.values(), key=lambda r: r["created_at"], reverse=True)
            summaries = [
                {k: v for k, v in run.items() if k != "inputs"}
                for run in ordered[:per_page]
            ]
            return httpx.Response(200, json={"total_count": len(summaries), "workflow_runs": summaries})

        parts = path.rstrip("/").split("/")
        if "runs" in parts:
            run_id = int(parts[parts.index("runs") + 1])
            if path.endswith("/artifacts"):
                return httpx.Response(200, json={"artifacts": self.artifacts.get(run_id, [])})
            if path.endswith("/jobs"):
                return httpx.Response(200, json={"jobs": self.jobs.get(run_id, [])})
            if run_id in self.runs:
                return httpx.Response(200, json=self.runs[run_id])
            return httpx.Response(404, json={"message": "Not Found"})

        return httpx.Response(404, json={"message": "Not Found"})

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


@pytest.fixture
def fake_github():
    return FakeGitHub()


@pytest.fixture
def github_client(fake_github):
    from clipper.github_client import GitHubClient

    client = GitHubClient(
        owner="octo",
        repo="clipper-render",
        token="ghp_test",
        transport=fake_github.transport(),
    )
    yield client
    client.close()


def minutes(n: float) -> timedelta:
    return timedelta(minutes=n)
