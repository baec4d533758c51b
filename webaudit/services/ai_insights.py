from __future__ import annotations

import json
import logging
import time
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from webaudit.domain.errors import StageError, StageTimeoutError
from webaudit.domain.models import AIInsightResult, ProviderResult
from webaudit.ports.analyzers import AIProvider
from webaudit.services.ai_extraction import to_provider_result
from webaudit.services.ai_merger import AIInsightMerger

logger = logging.getLogger(__name__)

PROMPT_HEADER = (
    "Based on the technical audit data below, write a thorough review of the website covering:\n"
    "1. Main strengths\n"
    "2. Areas that need improvement\n"
    "3. Specific technical recommendations\n"
    "4. Improvement priorities\n"
    "5. Outlook and opportunities\n"
    "Give an overall score out of 100.\n"
)

CONTEXT_LABELS = (
    ("performance", "Performance"),
    ("security", "Security"),
    ("technology", "Technologies"),
    ("metadata", "SEO"),
    ("maps_presence", "Local listing"),
)

MAX_CONTEXT_CHARS = 4000


def build_prompt(url: str, context: Mapping[str, Optional[Mapping[str, Any]]]) -> str:
    """Prompt with one line per available stage; errored or missing stages are left out."""
    lines = [PROMPT_HEADER, f"Website: {url}"]
    for key, label in CONTEXT_LABELS:
        data = context.get(key)
        if not data or "error" in data:
            continue
        blob = json.dumps(data, ensure_ascii=False, default=str)
        if len(blob) > MAX_CONTEXT_CHARS:
            blob = blob[:MAX_CONTEXT_CHARS] + "..."
        lines.append(f"{label}: {blob}")
    return "\n".join(lines)


@dataclass
class AIInsightService:
    """
    The AI stage: asks every configured provider concurrently, drops the ones
    that fail or miss the deadline and merges the rest. A single provider
    failure never fails the stage.
    """
    providers: Sequence[AIProvider]
    merger: AIInsightMerger
    clock: Callable[[], float] = time.monotonic

    @staticmethod
    def _call(provider: AIProvider, prompt: str, timeout: float) -> Tuple[Optional[str], Optional[BaseException], float, float]:
        """Runs on a worker thread. Never raises."""
        started = time.monotonic()
        cpu_started = time.thread_time()
        try:
            text, error = provider.generate(prompt, timeout), None
        except Exception as e:
            text, error = None, e
        return text, error, round(time.monotonic() - started, 3), time.thread_time() - cpu_started

    def collect(
        self,
        prompt: str,
        timeout: float,
        telemetry: Optional[Dict[str, Any]] = None,
        deadline: Optional[float] = None,
    ) -> List[ProviderResult]:
        if not self.providers:
            return []
        if deadline is None:
            deadline = self.clock() + timeout
        telemetry = telemetry if telemetry is not None else {}

        labels = [getattr(p, "label", type(p).__name__) for p in self.providers]
        pool = ThreadPoolExecutor(max_workers=len(self.providers), thread_name_prefix="audit-ai")
        try:
            futures = [pool.submit(self._call, p, prompt, timeout) for p in self.providers]
            wait(futures, timeout=max(0.0, deadline - self.clock()))
        finally:
            # Late providers are abandoned; their answers are discarded.
            pool.shutdown(wait=False, cancel_futures=True)

        results: List[ProviderResult] = []
        late = 0
        cpu = 0.0
        for label, future in zip(labels, futures):
            telemetry["api_calls_made"] = telemetry.get("api_calls_made", 0) + 1
            if not future.done():
                late += 1
                logger.warning("AI provider %s excluded: no answer within the stage deadline", label)
                continue

            text, error, elapsed, cpu_seconds = future.result()
            telemetry.setdefault("api_response_times", []).append(elapsed)
            cpu += cpu_seconds
            if isinstance(error, StageError):
                logger.warning("AI provider %s excluded: %s: %s", label, type(error).__name__, error)
                continue
            if error is not None:
                logger.error("AI provider %s raised unexpectedly; excluded", label, exc_info=error)
                continue
            if not (text or "").strip():
                logger.warning("AI provider %s returned an empty response; excluded", label)
                continue
            results.append(to_provider_result(text, label, self.merger.rules))

        telemetry["cpu_usage_seconds"] = round(cpu, 3)
        if not results and late:
            raise StageTimeoutError(f"{late} of {len(labels)} AI provider(s) did not answer in time")
        return results

    def generate(
        self,
        url: str,
        context: Mapping[str, Optional[Mapping[str, Any]]],
        timeout: float,
        telemetry: Optional[Dict[str, Any]] = None,
        deadline: Optional[float] = None,
    ) -> AIInsightResult:
        prompt = build_prompt(url, context)
        return self.merger.merge(self.collect(prompt, timeout, telemetry, deadline))
