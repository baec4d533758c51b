from __future__ import annotations

import copy
import threading
from dataclasses import replace
from datetime import datetime
from typing import Dict, List, Optional

from webaudit.domain.models import AnalysisBundle, AnalysisStatus, AuditRun


class AnalysisRepository:
    """
    Repository interface for analysis bundles and their audit runs.
    Every method is one short unit of work; implementations must not share a
    transaction across calls.
    """

    def create_bundle(self, bundle: AnalysisBundle) -> None:
        raise NotImplementedError

    def update_bundle(self, bundle: AnalysisBundle) -> None:
        raise NotImplementedError

    def mark_failed(self, bundle_id: str, completed_at: datetime) -> None:
        raise NotImplementedError

    def add_run(self, run: AuditRun) -> None:
        raise NotImplementedError

    def update_run(self, run: AuditRun) -> None:
        raise NotImplementedError

    def get_bundle(self, bundle_id: str) -> Optional[AnalysisBundle]:
        raise NotImplementedError

    def list_runs(self, bundle_id: str) -> List[AuditRun]:
        raise NotImplementedError


class InMemoryAnalysisRepository(AnalysisRepository):
    """Process-local store. Runs are stored as snapshots so later in-memory edits don't leak in."""

    def __init__(self):
        self._bundles: Dict[str, AnalysisBundle] = {}
        self._runs: Dict[str, AuditRun] = {}
        self._lock = threading.Lock()

    def create_bundle(self, bundle: AnalysisBundle) -> None:
        with self._lock:
            if bundle.id in self._bundles:
                raise KeyError(f"Analysis {bundle.id} already exists")
            self._bundles[bundle.id] = bundle

    def update_bundle(self, bundle: AnalysisBundle) -> None:
        with self._lock:
            if bundle.id not in self._bundles:
                raise KeyError(f"Analysis {bundle.id} not found")
            self._bundles[bundle.id] = bundle

    def mark_failed(self, bundle_id: str, completed_at: datetime) -> None:
        with self._lock:
            current = self._bundles.get(bundle_id)
            if current is None:
                return
            self._bundles[bundle_id] = replace(
                current, status=AnalysisStatus.FAILED, analysis_completed_at=completed_at
            )

    def add_run(self, run: AuditRun) -> None:
        with self._lock:
            if run.parent_analysis_id not in self._bundles:
                raise KeyError(f"Analysis {run.parent_analysis_id} not found")
            self._runs[run.id] = copy.deepcopy(run)

    def update_run(self, run: AuditRun) -> None:
        with self._lock:
            if run.id not in self._runs:
                raise KeyError(f"Run {run.id} not found")
            self._runs[run.id] = copy.deepcopy(run)

    def get_bundle(self, bundle_id: str) -> Optional[AnalysisBundle]:
        with self._lock:
            bundle = self._bundles.get(bundle_id)
            if bundle is None:
                return None
            runs = tuple(copy.deepcopy(r) for r in self._runs.values() if r.parent_analysis_id == bundle_id)
        return replace(bundle, audit_runs=runs)

    def list_runs(self, bundle_id: str) -> List[AuditRun]:
        with self._lock:
            return [copy.deepcopy(r) for r in self._runs.values() if r.parent_analysis_id == bundle_id]
