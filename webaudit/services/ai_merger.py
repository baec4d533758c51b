from __future__ import annotations

import re
import string
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Sequence

from webaudit.domain.models import AIInsightResult, ProviderResult
from webaudit.services.ai_extraction import extract_insight_lines, extract_summary
from webaudit.services.scoring_math import round_half_up, to_decimal
from webaudit.services.text_rules import DEFAULT_RULES, ClassifierRules

_EDGE_PUNCT = string.punctuation + "،؛؟…。 \t"
_SPACES = re.compile(r"\s+")


def exact_key(line: str) -> str:
    return line


def normalized_key(line: str) -> str:
    """Trim punctuation and whitespace at both ends, collapse inner whitespace, case-fold."""
    return _SPACES.sub(" ", line.strip(_EDGE_PUNCT)).casefold()


DEDUP_KEYS: Dict[str, Callable[[str], str]] = {
    "exact": exact_key,
    "normalized": normalized_key,
}


def dedupe(lines: Iterable[str], key: Callable[[str], str] = exact_key) -> List[str]:
    seen = set()
    out: List[str] = []
    for line in lines:
        k = key(line)
        if k in seen:
            continue
        seen.add(k)
        out.append(line)
    return out


@dataclass(frozen=True)
class AIInsightMerger:
    """
    Reduces 0..N successful provider results into one AIInsightResult.

    dedup_mode="exact" keeps recommendations that differ only by punctuation or
    case as separate entries; "normalized" folds them together.
    """
    rules: ClassifierRules = DEFAULT_RULES
    dedup_mode: str = "exact"

    def __post_init__(self):
        if self.dedup_mode not in DEDUP_KEYS:
            raise ValueError(f"Unknown dedup mode: {self.dedup_mode!r}")

    def categorize(self, recommendations: Sequence[str]) -> Dict[str, List[str]]:
        buckets: Dict[str, List[str]] = {}
        for name in self.rules.category_order:
            pattern = self.rules.categories[name]
            buckets[name] = [r for r in recommendations if pattern.search(r)][: self.rules.bucket_cap]
        return buckets

    def fallback(self) -> AIInsightResult:
        return AIInsightResult(
            analysis_text=self.rules.fallback_analysis,
            summary="",
            score=0,
            recommendations=[],
            categorized={name: [] for name in self.rules.category_order},
            provider_label="none",
            providers_count=0,
            strengths=[],
            weaknesses=[],
        )

    def _insights(self, text: str):
        return (
            extract_insight_lines(text, self.rules.strength_markers, self.rules),
            extract_insight_lines(text, self.rules.weakness_markers, self.rules),
        )

    def _single(self, p: ProviderResult) -> AIInsightResult:
        recommendations = dedupe(p.extracted_recommendations, DEDUP_KEYS[self.dedup_mode])
        strengths, weaknesses = self._insights(p.text)
        return AIInsightResult(
            analysis_text=p.text,
            summary=p.summary or extract_summary(p.text, self.rules),
            score=p.extracted_score,
            recommendations=recommendations,
            categorized=self.categorize(recommendations),
            provider_label=p.provider_label,
            providers_count=1,
            strengths=strengths,
            weaknesses=weaknesses,
        )

    def _many(self, results: Sequence[ProviderResult]) -> AIInsightResult:
        text = "\n\n".join(f"## Analysis from {p.provider_label}:\n{p.text}" for p in results).strip()

        mean = sum((to_decimal(p.extracted_score) for p in results), to_decimal(0)) / len(results)
        score = float(round_half_up(mean, 1))

        recommendations = dedupe(
            (r for p in results for r in p.extracted_recommendations),
            DEDUP_KEYS[self.dedup_mode],
        )
        summaries = [p.summary or extract_summary(p.text, self.rules) for p in results[:2]]
        strengths, weaknesses = self._insights("\n".join(p.text for p in results))

        return AIInsightResult(
            analysis_text=text,
            summary="\n".join(s for s in summaries if s),
            score=score,
            recommendations=recommendations,
            categorized=self.categorize(recommendations),
            provider_label=", ".join(p.provider_label for p in results),
            providers_count=len(results),
            strengths=strengths,
            weaknesses=weaknesses,
        )

    def merge(self, provider_results: Sequence[ProviderResult]) -> AIInsightResult:
        results = list(provider_results or [])
        if not results:
            return self.fallback()
        if len(results) == 1:
            return self._single(results[0])
        return self._many(results)
