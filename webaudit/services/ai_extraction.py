from __future__ import annotations

from typing import List

from webaudit.domain.models import ProviderResult
from webaudit.services.scoring_math import clamp
from webaudit.services.text_rules import DEFAULT_RULES, ClassifierRules

BULLET_CHARS = "-*•·–"


def clean_line(line: str) -> str:
    """Strip whitespace and leading list bullets; keep trailing punctuation."""
    return line.strip().lstrip(BULLET_CHARS).strip()


def extract_score(text: str, rules: ClassifierRules = DEFAULT_RULES) -> float:
    """
    Explicit score first ("85%", "78/100", "score: 90", "85 points").
    Falls back to a keyword heuristic: base + positive hits - negative hits, clamped to 0..100.
    """
    text = text or ""
    for pattern in rules.score_patterns:
        for match in pattern.finditer(text):
            value = float(match.group(1))
            if 0 <= value <= 100:
                return value

    positive = len(rules.positive_words.findall(text))
    negative = len(rules.negative_words.findall(text))
    raw = rules.heuristic_base + rules.positive_weight * positive - rules.negative_weight * negative
    return float(clamp(raw))


def extract_recommendations(text: str, rules: ClassifierRules = DEFAULT_RULES) -> List[str]:
    out: List[str] = []
    for raw in (text or "").splitlines():
        line = clean_line(raw)
        if len(line) > rules.min_recommendation_length and rules.recommendation_markers.search(line):
            out.append(line)
            if len(out) >= rules.max_recommendations:
                break
    return out


def extract_summary(text: str, rules: ClassifierRules = DEFAULT_RULES) -> str:
    for raw in (text or "").splitlines():
        line = clean_line(raw).lstrip("#").strip()
        if len(line) > rules.summary_min_length:
            if len(line) > rules.summary_max_length:
                return line[: rules.summary_max_length].rstrip() + "..."
            return line
    return rules.fallback_summary


def extract_insight_lines(text: str, marker, rules: ClassifierRules = DEFAULT_RULES) -> List[str]:
    """Lines matching `marker` (strength or weakness keywords), unique, capped."""
    out: List[str] = []
    for raw in (text or "").splitlines():
        line = clean_line(raw)
        if len(line) > rules.min_insight_length and marker.search(line) and line not in out:
            out.append(line)
            if len(out) >= rules.max_insights:
                break
    return out


def to_provider_result(text: str, provider_label: str, rules: ClassifierRules = DEFAULT_RULES) -> ProviderResult:
    return ProviderResult(
        text=text,
        extracted_score=extract_score(text, rules),
        extracted_recommendations=extract_recommendations(text, rules),
        provider_label=provider_label,
        summary=extract_summary(text, rules),
    )
