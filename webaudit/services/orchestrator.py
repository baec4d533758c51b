from __future__ import annotations

import logging
import sys
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from webaudit.config.ini_config import StageTimeouts
from webaudit.domain.errors import FatalPersistenceError, ParseError, RunPersistenceError, StageTimeoutError
from webaudit.domain.models import (
    AIInsightResult,
    AnalysisBundle,
    AnalysisResult,
    AnalysisStatus,
    AuditRun,
    AuditType,
    StageOutcome,
    Target,
)
from webaudit.repositories.analysis_repository import AnalysisRepository
from webaudit.services.ai_insights import AIInsightService
from webaudit.services.composite_score import CompositeScoreCalculator
from webaudit.services.recommendations import build_recommendations, compare_with_industry
from webaudit.services.retry import RetryPolicy
from webaudit.services.run_tracker import RunTracker
from webaudit.services.stages import BUNDLE_FIELDS, StageAnalyzers, StageDescriptor, level_one_stages
from webaudit.services.url_normalization import UrlNormalizer

logger = logging.getLogger(__name__)


def reduce_slices(bundle: AnalysisBundle, outcomes: Mapping[AuditType, StageOutcome]) -> AnalysisBundle:
    """Single reducer: each stage contributes its slice, the bundle is rebuilt once."""
    updates = {BUNDLE_FIELDS[t]: o.slice for t, o in outcomes.items() if t != AuditType.AI}
    return replace(bundle, **updates)


def peak_rss_mb() -> Optional[int]:
    """Peak resident set size of this process; worker threads share it."""
    if sys.platform == "win32":
        return None
    import resource

    peak = resource.getrusage(resource.RUSAGE_SELF).ru_maxrss
    # ru_maxrss is in bytes on macOS, kilobytes elsewhere
    return int(peak / (1024 * 1024 if sys.platform == "darwin" else 1024))


def _seconds(value: float) -> float:
    return round(max(0.0, value), 2)


def _maps_entity(maps_slice: Optional[Mapping[str, Any]]) -> Optional[Mapping[str, Any]]:
    if not maps_slice or "error" in maps_slice:
        return None
    return maps_slice.get("matched_entity")


@dataclass
class AuditOrchestrator:
    """
    Service layer: runs every audit stage against one target and assembles the bundle.

    Level 1 (performance, technology, security, metadata, maps) runs on a
    bounded thread pool, each stage with its own deadline. Level 2 (AI) runs
    after level 1, with whatever stage data is available as context.
    Only this coordinating thread talks to the run tracker and the repository.
    """
    url_normalizer: UrlNormalizer
    repo: AnalysisRepository
    tracker: RunTracker
    analyzers: StageAnalyzers
    ai_service: AIInsightService
    calculator: CompositeScoreCalculator = field(default_factory=CompositeScoreCalculator)
    retry_policy: RetryPolicy = field(default_factory=RetryPolicy)
    timeouts: StageTimeouts = field(default_factory=StageTimeouts)
    max_workers: int = 5
    pipeline_deadline_seconds: float = 180.0
    clock: Callable[[], float] = time.monotonic
    now: Callable[[], datetime] = datetime.now
    memory_usage: Callable[[], Optional[int]] = peak_rss_mb

    def run(self, url_raw: str, business_name: Optional[str] = None) -> AnalysisResult:
        url = self.url_normalizer.normalize(url_raw)
        if not url:
            raise ValueError("URL is required.")

        target = Target(url=url, business_name=(business_name or "").strip() or None)
        started_at = self.now()
        bundle = AnalysisBundle(
            url=url,
            domain=self.url_normalizer.domain_of(url),
            status=AnalysisStatus.PROCESSING,
            business_name=target.business_name,
            analysis_started_at=started_at,
        )

        try:
            self.repo.create_bundle(bundle)
        except Exception as e:
            logger.exception("Could not create analysis record for %s", url)
            return AnalysisResult(status="failed", error=f"Analysis failed: could not create analysis record: {e}")

        logger.info("Analysis %s started url=%s business=%r", bundle.id, url, target.business_name)
        deadline = self.clock() + self.pipeline_deadline_seconds

        try:
            outcomes, runs = self._run_level_one(bundle.id, target, deadline)
            bundle = reduce_slices(bundle, outcomes)

            scores = self.calculator.reduce(
                bundle.performance, bundle.security, bundle.metadata, _maps_entity(bundle.maps_presence)
            )
            bundle = bundle.with_scores(scores)

            ai_insights, ai_run = self._run_ai(bundle, deadline)
            if ai_run is not None:
                runs.append(ai_run)

            finished_at = self.now()
            bundle = replace(
                bundle,
                status=AnalysisStatus.COMPLETED,
                ai_insights=ai_insights,
                analysis_completed_at=finished_at,
                total_analysis_time_seconds=int((finished_at - started_at).total_seconds()),
                audit_runs=tuple(runs),
            )
            self._persist(bundle)
        except Exception as e:
            logger.exception("Analysis %s failed outside stage boundaries", bundle.id)
            self._mark_failed(bundle.id)
            return AnalysisResult(status="failed", error=f"Analysis failed: {e}")

        logger.info(
            "Analysis %s completed overall=%s in %ss",
            bundle.id, bundle.composite_score, bundle.total_analysis_time_seconds,
        )
        return AnalysisResult(
            status="ok",
            bundle=bundle,
            recommendations=build_recommendations(
                scores, maps_requested=target.business_name is not None, maps_slice=bundle.maps_presence
            ),
            industry_comparison=compare_with_industry(scores),
        )

    # -----------------------------
    # Stage execution
    # -----------------------------
    def _invoke(self, stage: StageDescriptor, target: Target, stage_deadline: float) -> StageOutcome:
        """Runs on a worker thread. Never raises; the outcome carries the error."""
        response_times: List[float] = []
        cpu_started = time.thread_time()
        budget = stage_deadline - self.clock()

        def call() -> Dict[str, Any]:
            remaining = max(0.1, min(stage.timeout, stage_deadline - self.clock()))
            started = self.clock()
            try:
                data = stage.invoke(target, remaining)
            finally:
                response_times.append(round(self.clock() - started, 3))
            if not isinstance(data, dict):
                raise ParseError(f"{stage.audit_type.value} returned {type(data).__name__}, expected a mapping")
            if "error" in data:
                raise ParseError(str(data["error"]))
            return data

        attempted = self.retry_policy.call(call, deadline=stage_deadline, label=stage.audit_type.value)
        return StageOutcome(
            audit_type=stage.audit_type,
            ok=attempted.ok,
            data=attempted.value if attempted.ok else None,
            error=attempted.error,
            attempts=attempted.attempts,
            response_times=tuple(response_times),
            cpu_seconds=round(time.thread_time() - cpu_started, 3),
            debug={
                "timeout_seconds": stage.timeout,
                "budget_seconds": _seconds(budget),
                "retry_delays": list(attempted.delays),
                "error_type": type(attempted.error).__name__ if attempted.error else None,
            },
        )

    def _start_run(self, analysis_id: str, audit_type: AuditType) -> Optional[AuditRun]:
        try:
            return self.tracker.start(analysis_id, audit_type)
        except RunPersistenceError:
            logger.exception("Analysis %s: %s run could not be recorded", analysis_id, audit_type.value)
            return None

    def _record(
        self, analysis_id: str, run: Optional[AuditRun], outcome: StageOutcome, api_calls: Optional[int] = None
    ) -> None:
        if outcome.ok:
            logger.info("Analysis %s: %s completed (attempts=%d)", analysis_id, outcome.audit_type.value, outcome.attempts)
        elif outcome.timed_out:
            logger.warning("Analysis %s: %s timed out", analysis_id, outcome.audit_type.value)
        else:
            logger.warning(
                "Analysis %s: %s failed after %d attempt(s): %s: %s",
                analysis_id, outcome.audit_type.value, outcome.attempts, type(outcome.error).__name__, outcome.error,
            )

        if run is None:
            return
        telemetry = {
            "api_calls_made": len(outcome.response_times) if api_calls is None else api_calls,
            "api_response_times": list(outcome.response_times),
            "memory_usage_mb": self.memory_usage(),
            "cpu_usage_seconds": outcome.cpu_seconds,
            "debug_info": dict(outcome.debug) if outcome.debug else None,
        }
        try:
            self.tracker.finish(
                run,
                result=outcome.data if outcome.ok else None,
                error=outcome.error,
                timed_out=outcome.timed_out,
                attempts=outcome.attempts,
                telemetry=telemetry,
            )
        except RunPersistenceError:
            logger.exception("Analysis %s: %s run result could not be persisted", analysis_id, outcome.audit_type.value)

    def _timed_out(self, stage: StageDescriptor, budget: float) -> StageOutcome:
        budget = _seconds(budget)
        return StageOutcome(
            audit_type=stage.audit_type,
            ok=False,
            error=StageTimeoutError(f"{stage.audit_type.value} did not finish within {budget:g}s"),
            timed_out=True,
            debug={"timeout_seconds": stage.timeout, "budget_seconds": budget, "error_type": "StageTimeoutError"},
        )

    def _run_level_one(
        self, analysis_id: str, target: Target, deadline: float
    ) -> Tuple[Dict[AuditType, StageOutcome], List[AuditRun]]:
        stages = level_one_stages(self.analyzers, self.timeouts, target)
        outcomes: Dict[AuditType, StageOutcome] = {}
        runs: List[AuditRun] = []
        pending: Dict[Future, Tuple[StageDescriptor, Optional[AuditRun], float, float]] = {}

        pool = ThreadPoolExecutor(max_workers=max(1, min(self.max_workers, len(stages))), thread_name_prefix="audit-stage")
        try:
            for stage in stages:
                run = self._start_run(analysis_id, stage.audit_type)
                if run is not None:
                    runs.append(run)
                submitted = self.clock()
                stage_deadline = min(submitted + stage.timeout, deadline)
                future = pool.submit(self._invoke, stage, target, stage_deadline)
                pending[future] = (stage, run, stage_deadline, stage_deadline - submitted)

            while pending:
                next_deadline = min(d for _, _, d, _ in pending.values())
                done, _ = wait(list(pending), timeout=max(0.0, next_deadline - self.clock()), return_when=FIRST_COMPLETED)

                for future in done:
                    stage, run, _, _ = pending.pop(future)
                    outcome = future.result()
                    outcomes[stage.audit_type] = outcome
                    self._record(analysis_id, run, outcome)

                now = self.clock()
                for future, (stage, run, stage_deadline, budget) in list(pending.items()):
                    if now >= stage_deadline and not future.done():
                        future.cancel()
                        del pending[future]
                        outcome = self._timed_out(stage, budget)
                        outcomes[stage.audit_type] = outcome
                        self._record(analysis_id, run, outcome)
        finally:
            # Timed-out workers may still be blocked on I/O; don't wait for them.
            pool.shutdown(wait=False, cancel_futures=True)

        return outcomes, runs

    def _run_ai(self, bundle: AnalysisBundle, deadline: float) -> Tuple[Any, Optional[AuditRun]]:
        run = self._start_run(bundle.id, AuditType.AI)
        remaining = deadline - self.clock()

        if remaining <= 0:
            outcome = StageOutcome(
                audit_type=AuditType.AI,
                ok=False,
                error=StageTimeoutError("ai skipped: pipeline deadline reached before the stage started"),
                timed_out=True,
                debug={"timeout_seconds": self.timeouts.ai, "budget_seconds": 0, "error_type": "StageTimeoutError"},
            )
            self._record(bundle.id, run, outcome)
            return outcome.slice, run

        context = {name: getattr(bundle, name) for name in ("performance", "security", "technology", "metadata", "maps_presence")}
        telemetry: Dict[str, Any] = {}
        budget = min(self.timeouts.ai, remaining)

        insights: Optional[AIInsightResult] = None
        try:
            insights = self.ai_service.generate(
                bundle.url, context, self.timeouts.ai, telemetry, deadline=self.clock() + budget
            )
            outcome = StageOutcome(audit_type=AuditType.AI, ok=True, data=insights.to_dict())
        except StageTimeoutError as e:
            outcome = StageOutcome(audit_type=AuditType.AI, ok=False, error=e, timed_out=True)
        except Exception as e:
            logger.exception("Analysis %s: AI stage raised", bundle.id)
            outcome = StageOutcome(audit_type=AuditType.AI, ok=False, error=e)

        outcome = replace(
            outcome,
            response_times=tuple(telemetry.get("api_response_times", [])),
            cpu_seconds=telemetry.get("cpu_usage_seconds"),
            debug={
                "timeout_seconds": self.timeouts.ai,
                "budget_seconds": _seconds(budget),
                "providers_asked": len(self.ai_service.providers),
                "providers_answered": len(telemetry.get("api_response_times", [])),
                "error_type": type(outcome.error).__name__ if outcome.error else None,
            },
        )
        self._record(bundle.id, run, outcome, api_calls=telemetry.get("api_calls_made"))
        return (insights if insights is not None else outcome.slice), run

    def _persist(self, bundle: AnalysisBundle) -> None:
        try:
            self.repo.update_bundle(bundle)
        except Exception as e:
            raise FatalPersistenceError(f"could not save analysis {bundle.id}: {e}") from e

    def _mark_failed(self, analysis_id: str) -> None:
        try:
            self.repo.mark_failed(analysis_id, self.now())
        except Exception:
            logger.exception("Analysis %s could not be marked failed", analysis_id)


__all__ = ["AuditOrchestrator", "peak_rss_mb", "reduce_slices"]
