"""Tests for run correlation.

Tests cover:
- select_run: token match, time fallback, tie-break, no match
- RunCorrelator.find against a fake GitHub API
- Locking onto token-matched runs
- Enrichment of completed runs (artifact, failure reason)
"""

from datetime import timedelta

import pytest

from conftest import DISPATCH_TIME, run_payload
from clipper.correlator import RunCorrelator, select_run, token_in_detail
from clipper.errors import TransientFetchError
from clipper.schemas import Conclusion, RunStatus

TOKEN = "clipper-1735732800000-ab12cd"


def seconds(n: float) -> timedelta:
    return timedelta(seconds=n)


class TestTokenInDetail:
    """Tests for token detection in a detail record."""

    def test_token_in_inputs(self):
        detail = run_payload(1, DISPATCH_TIME, inputs={"worker_id": TOKEN})
        assert token_in_detail(detail, TOKEN)

    def test_token_in_display_title(self):
        detail = run_payload(1, DISPATCH_TIME, name=f"Render {TOKEN}")
        assert token_in_detail(detail, TOKEN)

    def test_custom_token_key(self):
        detail = run_payload(1, DISPATCH_TIME, inputs={"correlation_id": TOKEN})
        assert not token_in_detail(detail, TOKEN)
        assert token_in_detail(detail, TOKEN, token_key="correlation_id")

    def test_no_token(self):
        detail = run_payload(1, DISPATCH_TIME, inputs={"worker_id": "someone-else"})
        assert not token_in_detail(detail, TOKEN)


class TestSelectRun:
    """Tests for the pure selection step."""

    def test_none_when_nothing_matches(self):
        """Old runs without the token never match."""
        details = [
            run_payload(1, DISPATCH_TIME - seconds(60)),
            run_payload(2, DISPATCH_TIME - seconds(3600)),
        ]
        assert select_run(TOKEN, DISPATCH_TIME, details) is None

    def test_none_for_empty_list(self):
        assert select_run(TOKEN, DISPATCH_TIME, []) is None

    def test_unique_token_match(self):
        details = [
            run_payload(1, DISPATCH_TIME - seconds(120)),
            run_payload(2, DISPATCH_TIME - seconds(60), inputs={"worker_id": TOKEN}),
            run_payload(3, DISPATCH_TIME - seconds(600)),
        ]
        run = select_run(TOKEN, DISPATCH_TIME, details)
        assert run is not None
        assert run.run_id == 2

    def test_token_match_preferred_over_closer_time_match(self):
        """A run carrying the token wins even if another run is closer in time."""
        details = [
            run_payload(1, DISPATCH_TIME + seconds(1), inputs={"worker_id": "other"}),
            run_payload(2, DISPATCH_TIME + seconds(8), inputs={"worker_id": TOKEN}),
        ]
        assert select_run(TOKEN, DISPATCH_TIME, details).run_id == 2

    def test_time_fallback_within_tolerance(self):
        """No token anywhere: a run created after dispatch_time - tolerance matches."""
        details = [run_payload(7, DISPATCH_TIME - seconds(5))]
        run = select_run(TOKEN, DISPATCH_TIME, details, tolerance=10)
        assert run is not None
        assert run.run_id == 7

    def test_time_fallback_skips_runs_with_other_token(self):
        """A run whose inputs carry a different token belongs to another dispatch."""
        details = [
            run_payload(1, DISPATCH_TIME + seconds(1), inputs={"worker_id": "clipper-1735732800500-zz99yy"}),
            run_payload(2, DISPATCH_TIME + seconds(6)),
        ]
        assert select_run(TOKEN, DISPATCH_TIME, details).run_id == 2

    def test_only_other_token_runs_match_nothing(self):
        details = [run_payload(1, DISPATCH_TIME + seconds(1), inputs={"worker_id": "other"})]
        assert select_run(TOKEN, DISPATCH_TIME, details) is None

    def test_time_fallback_outside_tolerance(self):
        details = [run_payload(7, DISPATCH_TIME - seconds(15))]
        assert select_run(TOKEN, DISPATCH_TIME, details, tolerance=10) is None

    def test_closest_to_dispatch_time_wins(self):
        """Two time-only candidates: the one closest to dispatch time is chosen."""
        details = [
            run_payload(1, DISPATCH_TIME + seconds(30)),
            run_payload(2, DISPATCH_TIME + seconds(3)),
        ]
        assert select_run(TOKEN, DISPATCH_TIME, details).run_id == 2

    def test_closest_wins_across_skew(self):
        details = [
            run_payload(1, DISPATCH_TIME - seconds(2)),
            run_payload(2, DISPATCH_TIME + seconds(6)),
        ]
        assert select_run(TOKEN, DISPATCH_TIME, details).run_id == 1

    def test_snapshot_fields(self):
        details = [run_payload(
            9, DISPATCH_TIME, status="completed", conclusion="success", inputs={"worker_id": TOKEN},
        )]
        run = select_run(TOKEN, DISPATCH_TIME, details)
        assert run.status == RunStatus.COMPLETED
        assert run.conclusion == Conclusion.SUCCESS
        assert run.html_url.endswith("/runs/9")


class TestRunCorrelator:
    """Tests for find() against the fake API."""

    @pytest.fixture
    def correlator(self, github_client):
        return RunCorrelator(github_client, tolerance=10, per_page=5)

    def test_none_before_run_appears(self, correlator, fake_github):
        fake_github.add_run(run_payload(1, DISPATCH_TIME - seconds(3600)))
        assert correlator.find(TOKEN, DISPATCH_TIME) is None

    def test_finds_run_through_detail_inputs(self, correlator, fake_github):
        """The listing hides inputs; the detail fetch reveals the token."""
        fake_github.add_run(run_payload(1, DISPATCH_TIME - seconds(3600)))
        fake_github.add_run(run_payload(2, DISPATCH_TIME + seconds(2), status="in_progress",
                                        inputs={"worker_id": TOKEN}))

        run = correlator.find(TOKEN, DISPATCH_TIME)

        assert run.run_id == 2
        assert run.status == RunStatus.IN_PROGRESS

    def test_listing_filters_by_event_and_page_size(self, correlator, fake_github):
        correlator.find(TOKEN, DISPATCH_TIME)

        listing = fake_github.requests[0]
        assert listing.url.path == "/repos/octo/clipper-render/actions/workflows/render.yml/runs"
        assert listing.url.params["event"] == "workflow_dispatch"
        assert listing.url.params["per_page"] == "5"

    def test_locks_onto_token_match(self, correlator, fake_github):
        """After a token match the run is read directly, skipping the listing."""
        fake_github.add_run(run_payload(2, DISPATCH_TIME, status="queued", inputs={"worker_id": TOKEN}))
        correlator.find(TOKEN, DISPATCH_TIME)
        fake_github.requests.clear()
        fake_github.runs[2]["status"] = "in_progress"

        run = correlator.find(TOKEN, DISPATCH_TIME)

        assert run.status == RunStatus.IN_PROGRESS
        assert [r.url.path for r in fake_github.requests] == [
            "/repos/octo/clipper-render/actions/runs/2",
        ]

    def test_time_only_match_not_locked(self, correlator, fake_github):
        fake_github.add_run(run_payload(3, DISPATCH_TIME + seconds(1)))
        assert correlator.find(TOKEN, DISPATCH_TIME).run_id == 3

        fake_github.add_run(run_payload(4, DISPATCH_TIME + seconds(4), inputs={"worker_id": TOKEN}))
        assert correlator.find(TOKEN, DISPATCH_TIME).run_id == 4

    def test_listing_error_is_transient(self, correlator, fake_github):
        fake_github.list_status = 502
        with pytest.raises(TransientFetchError) as exc_info:
            correlator.find(TOKEN, DISPATCH_TIME)
        assert exc_info.value.http_status == 502

    def test_success_resolves_artifact(self, correlator, fake_github):
        fake_github.add_run(run_payload(5, DISPATCH_TIME, status="completed", conclusion="success",
                                        inputs={"worker_id": TOKEN}))
        fake_github.artifacts[5] = [
            {"name": "logs", "expired": False, "archive_download_url": "https://api.github.com/a/1/zip"},
            {"name": f"clipper-output-{TOKEN}", "expired": False,
             "archive_download_url": "https://api.github.com/a/2/zip"},
        ]

        run = correlator.find(TOKEN, DISPATCH_TIME)

        assert run.succeeded
        assert run.artifact == "https://api.github.com/a/2/zip"

    def test_success_without_artifacts(self, correlator, fake_github):
        fake_github.add_run(run_payload(5, DISPATCH_TIME, status="completed", conclusion="success",
                                        inputs={"worker_id": TOKEN}))
        run = correlator.find(TOKEN, DISPATCH_TIME)
        assert run.succeeded
        assert run.artifact is None

    def test_failure_reason_names_failed_steps(self, correlator, fake_github):
        fake_github.add_run(run_payload(6, DISPATCH_TIME, status="completed", conclusion="failure",
                                        inputs={"worker_id": TOKEN}))
        fake_github.jobs[6] = [{
            "name": "render",
            "conclusion": "failure",
            "steps": [
                {"name": "Download video", "conclusion": "success"},
                {"name": "Transcribe", "conclusion": "failure"},
            ],
        }]

        run = correlator.find(TOKEN, DISPATCH_TIME)

        assert run.conclusion == Conclusion.FAILURE
        assert "concluded 'failure'" in run.failure_reason
        assert "render / Transcribe" in run.failure_reason
        assert run.html_url in run.failure_reason

    def test_cancelled_run_counts_as_failure(self, correlator, fake_github):
        fake_github.add_run(run_payload(8, DISPATCH_TIME, status="completed", conclusion="cancelled",
                                        inputs={"worker_id": TOKEN}))
        run = correlator.find(TOKEN, DISPATCH_TIME)
        assert run.conclusion == Conclusion.FAILURE
        assert run.raw_conclusion == "cancelled"

    def test_forget_drops_lock(self, correlator, fake_github):
        fake_github.add_run(run_payload(2, DISPATCH_TIME, inputs={"worker_id": TOKEN}))
        correlator.find(TOKEN, DISPATCH_TIME)
        correlator.forget(TOKEN)
        fake_github.requests.clear()

        correlator.find(TOKEN, DISPATCH_TIME)

        assert fake_github.requests[0].url.path.endswith("/workflows/render.yml/runs")
