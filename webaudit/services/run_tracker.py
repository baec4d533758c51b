from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, Optional, Tuple

from webaudit.domain.errors import InvalidRunTransition, RunPersistenceError, StageError
from webaudit.domain.models import AuditRun, AuditType, RunStatus
from webaudit.repositories.analysis_repository import AnalysisRepository

logger = logging.getLogger(__name__)

TELEMETRY_FIELDS = ("memory_usage_mb", "cpu_usage_seconds", "api_calls_made", "api_response_times", "debug_info")


@dataclass
class RunTracker:
    """
    Records one AuditRun per stage attempt and enforces its state machine:
    pending -> running -> completed | failed | timeout, one terminal write.
    """
    repo: AnalysisRepository
    max_attempts: int = 3
    clock: Callable[[], datetime] = datetime.now
    _running: Dict[Tuple[str, AuditType], str] = field(default_factory=dict, init=False, repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)

    def start(self, parent_id: str, audit_type: AuditType) -> AuditRun:
        key = (parent_id, audit_type)
        with self._lock:
            if key in self._running:
                raise InvalidRunTransition(
                    f"{audit_type.value} already has a running run ({self._running[key]}) for analysis {parent_id}"
                )
            run = AuditRun(parent_analysis_id=parent_id, audit_type=audit_type, max_attempts=self.max_attempts)
            run.status = RunStatus.RUNNING
            run.started_at = self.clock()
            self._running[key] = run.id

        try:
            self.repo.add_run(run)
        except Exception as e:
            with self._lock:
                self._running.pop(key, None)
            raise RunPersistenceError(f"Could not record {audit_type.value} run: {e}") from e
        logger.debug("Started %s run %s for analysis %s", audit_type.value, run.id, parent_id)
        return run

    def _terminal(self, run: AuditRun, status: RunStatus, **payload: Any) -> AuditRun:
        if run.status != RunStatus.RUNNING:
            raise InvalidRunTransition(
                f"Run {run.id} ({run.audit_type.value}) cannot move from {run.status.value} to {status.value}"
            )

        run.status = status
        run.completed_at = self.clock()
        for name, value in payload.items():
            setattr(run, name, value)

        with self._lock:
            self._running.pop((run.parent_analysis_id, run.audit_type), None)

        try:
            self.repo.update_run(run)
        except Exception as e:
            raise RunPersistenceError(f"Could not persist {run.audit_type.value} run {run.id}: {e}") from e
        return run

    def complete(self, run: AuditRun, result: Optional[Dict[str, Any]], attempts: int = 1, **telemetry: Any) -> AuditRun:
        return self._terminal(run, RunStatus.COMPLETED, result_data=result, attempts=attempts, **telemetry)

    def fail(self, run: AuditRun, error: BaseException, attempts: int = 1, **telemetry: Any) -> AuditRun:
        if isinstance(error, StageError):
            details = error.details()
        else:
            details = {"type": type(error).__name__, "retryable": False, "message": str(error)}
        details["attempts"] = attempts
        return self._terminal(
            run,
            RunStatus.FAILED,
            error_message=str(error) or type(error).__name__,
            error_details=details,
            attempts=attempts,
            **telemetry,
        )

    def timeout(self, run: AuditRun, message: str, attempts: int = 1, **telemetry: Any) -> AuditRun:
        return self._terminal(
            run,
            RunStatus.TIMEOUT,
            error_message=message,
            error_details={"type": "StageTimeoutError", "retryable": False, "message": message, "attempts": attempts},
            attempts=attempts,
            **telemetry,
        )

    def finish(
        self,
        run: AuditRun,
        result: Optional[Dict[str, Any]] = None,
        error: Optional[BaseException] = None,
        timed_out: bool = False,
        attempts: int = 1,
        telemetry: Optional[Dict[str, Any]] = None,
    ) -> AuditRun:
        extra = {k: v for k, v in (telemetry or {}).items() if k in TELEMETRY_FIELDS}
        if timed_out:
            return self.timeout(run, str(error) if error else "Stage timed out", attempts, **extra)
        if error is not None:
            return self.fail(run, error, attempts, **extra)
        return self.complete(run, result, attempts, **extra)
