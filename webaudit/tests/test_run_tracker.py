from __future__ import annotations

from datetime import datetime, timedelta
from typing import List, Tuple

import pytest

from webaudit.domain.errors import InvalidRunTransition, QuotaExceededError, RunPersistenceError
from webaudit.domain.models import AnalysisBundle, AuditRun, AuditType, RunStatus
from webaudit.repositories.analysis_repository import InMemoryAnalysisRepository
from webaudit.services.run_tracker import RunTracker


# -----------------------------
# Test doubles
# -----------------------------
class RecordingRepository(InMemoryAnalysisRepository):
    """Remembers every status written for every run."""

    def __init__(self):
        super().__init__()
        self.writes: List[Tuple[str, RunStatus]] = []

    def add_run(self, run: AuditRun) -> None:
        super().add_run(run)
        self.writes.append((run.id, run.status))

    def update_run(self, run: AuditRun) -> None:
        super().update_run(run)
        self.writes.append((run.id, run.status))


class BrokenRepository(InMemoryAnalysisRepository):
    def add_run(self, run: AuditRun) -> None:
        raise ConnectionError("database is gone")


class StepClock:
    def __init__(self, start: datetime, step: timedelta):
        self.now = start
        self.step = step

    def __call__(self) -> datetime:
        current = self.now
        self.now = self.now + self.step
        return current


@pytest.fixture
def repo():
    r = RecordingRepository()
    r.create_bundle(AnalysisBundle(url="https://example.com", domain="example.com", id="a1"))
    return r


def test_status_sequence_pending_running_completed(repo):
    tracker = RunTracker(repo)
    run = tracker.start("a1", AuditType.PERFORMANCE)
    assert run.status == RunStatus.RUNNING
    assert run.started_at is not None

    tracker.complete(run, {"mobile_score": 90}, attempts=1, api_calls_made=2)
    assert [status for _, status in repo.writes] == [RunStatus.RUNNING, RunStatus.COMPLETED]

    stored = repo.list_runs("a1")[0]
    assert stored.status == RunStatus.COMPLETED
    assert stored.result_data == {"mobile_score": 90}
    assert stored.api_calls_made == 2
    assert stored.is_successful


def test_double_finish_is_rejected(repo):
    tracker = RunTracker(repo)
    run = tracker.start("a1", AuditType.SECURITY)
    tracker.fail(run, QuotaExceededError("quota"))

    with pytest.raises(InvalidRunTransition):
        tracker.complete(run, {})
    with pytest.raises(InvalidRunTransition):
        tracker.timeout(run, "late")
    assert repo.list_runs("a1")[0].status == RunStatus.FAILED


def test_finish_without_start_is_rejected(repo):
    tracker = RunTracker(repo)
    run = AuditRun(parent_analysis_id="a1", audit_type=AuditType.METADATA)
    with pytest.raises(InvalidRunTransition):
        tracker.complete(run, {})


def test_duplicate_running_run_for_same_stage_rejected(repo):
    tracker = RunTracker(repo)
    first = tracker.start("a1", AuditType.TECHNOLOGY)
    with pytest.raises(InvalidRunTransition):
        tracker.start("a1", AuditType.TECHNOLOGY)

    # after the first run finished, a new one may start
    tracker.complete(first, {})
    second = tracker.start("a1", AuditType.TECHNOLOGY)
    assert second.id != first.id


def test_fail_records_error_details(repo):
    tracker = RunTracker(repo)
    run = tracker.start("a1", AuditType.MAPS)
    tracker.fail(run, QuotaExceededError("Places quota exceeded (HTTP 429)"), attempts=1)

    stored = repo.list_runs("a1")[0]
    assert stored.status == RunStatus.FAILED
    assert stored.error_message == "Places quota exceeded (HTTP 429)"
    assert stored.error_details["type"] == "QuotaExceededError"
    assert stored.error_details["retryable"] is False
    assert stored.error_details["attempts"] == 1


def test_finish_dispatches_on_outcome(repo):
    tracker = RunTracker(repo)
    run = tracker.start("a1", AuditType.AI)
    tracker.finish(run, error=TimeoutError("slow"), timed_out=True, telemetry={"cpu_usage_seconds": 0.2, "bogus": 1})
    stored = repo.list_runs("a1")[0]
    assert stored.status == RunStatus.TIMEOUT
    assert stored.cpu_usage_seconds == 0.2
    assert stored.error_details["type"] == "StageTimeoutError"


def test_repository_failure_surfaces_as_run_persistence_error():
    repo = BrokenRepository()
    tracker = RunTracker(repo)
    with pytest.raises(RunPersistenceError):
        tracker.start("missing", AuditType.PERFORMANCE)
    # the failed start does not block a later attempt
    with pytest.raises(RunPersistenceError):
        tracker.start("missing", AuditType.PERFORMANCE)


def test_duration_fields(repo):
    clock = StepClock(datetime(2024, 1, 1, 12, 0, 0), timedelta(seconds=75))
    tracker = RunTracker(repo, clock=clock)
    run = tracker.start("a1", AuditType.PERFORMANCE)
    tracker.complete(run, {})
    assert run.execution_time_seconds == 75
    assert run.formatted_duration == "01:15"

    pending = AuditRun(parent_analysis_id="a1", audit_type=AuditType.AI)
    assert pending.execution_time_seconds is None
    assert pending.formatted_duration == "N/A"
