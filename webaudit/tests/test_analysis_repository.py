from __future__ import annotations

from datetime import datetime

import pytest

from webaudit.domain.models import AnalysisBundle, AnalysisStatus, AuditRun, AuditType, RunStatus
from webaudit.repositories.analysis_repository import InMemoryAnalysisRepository


def _bundle(**kw) -> AnalysisBundle:
    return AnalysisBundle(url="https://example.com", domain="example.com", **kw)


def test_create_and_get_round_trip_with_runs():
    repo = InMemoryAnalysisRepository()
    b = _bundle(status=AnalysisStatus.PROCESSING)
    repo.create_bundle(b)
    run = AuditRun(parent_analysis_id=b.id, audit_type=AuditType.PERFORMANCE, status=RunStatus.RUNNING)
    repo.add_run(run)

    got = repo.get_bundle(b.id)
    assert got.status == AnalysisStatus.PROCESSING
    assert [r.id for r in got.audit_runs] == [run.id]


def test_runs_are_snapshots():
    repo = InMemoryAnalysisRepository()
    b = _bundle()
    repo.create_bundle(b)
    run = AuditRun(parent_analysis_id=b.id, audit_type=AuditType.SECURITY, status=RunStatus.RUNNING)
    repo.add_run(run)

    run.status = RunStatus.COMPLETED
    assert repo.list_runs(b.id)[0].status == RunStatus.RUNNING
    repo.update_run(run)
    assert repo.list_runs(b.id)[0].status == RunStatus.COMPLETED


def test_run_requires_existing_bundle():
    repo = InMemoryAnalysisRepository()
    with pytest.raises(KeyError):
        repo.add_run(AuditRun(parent_analysis_id="nope", audit_type=AuditType.AI))


def test_duplicate_and_unknown_bundles_rejected():
    repo = InMemoryAnalysisRepository()
    b = _bundle()
    repo.create_bundle(b)
    with pytest.raises(KeyError):
        repo.create_bundle(b)
    with pytest.raises(KeyError):
        repo.update_bundle(_bundle())
    assert repo.get_bundle("missing") is None


def test_mark_failed():
    repo = InMemoryAnalysisRepository()
    b = _bundle(status=AnalysisStatus.PROCESSING)
    repo.create_bundle(b)
    when = datetime(2024, 5, 1, 10, 0)
    repo.mark_failed(b.id, when)
    got = repo.get_bundle(b.id)
    assert got.status == AnalysisStatus.FAILED
    assert got.analysis_completed_at == when
    # unknown ids are ignored
    repo.mark_failed("missing", when)
