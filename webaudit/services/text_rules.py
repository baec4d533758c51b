"""
Keyword rule tables used to classify free-text AI output.

Everything the extractor and merger match against lives here as data so the
tables can be swapped from configuration (see [ai_categories] in the INI).
Patterns carry English and Arabic keywords.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, replace
from typing import Dict, Mapping, Pattern, Tuple

CATEGORY_ORDER = ("seo", "performance", "security", "ux", "content", "marketing")

DEFAULT_CATEGORY_PATTERNS: Dict[str, str] = {
    "seo": r"seo|search engine|keyword|meta description|سيو|محركات البحث",
    "performance": r"performance|speed|load(?:ing)? time|caching|compress|أداء|سرعة|تحميل",
    "security": r"security|ssl|https|header|vulnerab|أمان|حماية",
    "ux": r"user experience|\bux\b|\bui\b|usability|navigation|accessib|تجربة المستخدم",
    "content": r"content|copywriting|blog|article|محتوى|نص|مقال",
    "marketing": r"marketing|campaign|advertis|promot|social media|تسويق|إعلان|ترويج",
}


def _compile(pattern: str) -> Pattern[str]:
    return re.compile(pattern, re.IGNORECASE | re.UNICODE)


@dataclass(frozen=True)
class ClassifierRules:
    categories: Dict[str, Pattern[str]]
    positive_words: Pattern[str]
    negative_words: Pattern[str]
    recommendation_markers: Pattern[str]
    strength_markers: Pattern[str]
    weakness_markers: Pattern[str]
    score_patterns: Tuple[Pattern[str], ...]

    heuristic_base: int = 70
    positive_weight: int = 5
    negative_weight: int = 3
    min_recommendation_length: int = 20
    max_recommendations: int = 5
    min_insight_length: int = 15
    max_insights: int = 3
    bucket_cap: int = 3
    summary_min_length: int = 30
    summary_max_length: int = 200
    fallback_summary: str = "The AI review did not contain a clear summary line."
    fallback_analysis: str = "No AI analysis was produced for this website."
    category_order: Tuple[str, ...] = CATEGORY_ORDER

    def with_category_patterns(self, overrides: Mapping[str, str]) -> "ClassifierRules":
        """Return a copy with category regexes replaced (or added) from configuration."""
        if not overrides:
            return self
        categories = dict(self.categories)
        order = list(self.category_order)
        for name, pattern in overrides.items():
            categories[name] = _compile(pattern)
            if name not in order:
                order.append(name)
        return replace(self, categories=categories, category_order=tuple(order))


def build_default_rules() -> ClassifierRules:
    return ClassifierRules(
        categories={name: _compile(p) for name, p in DEFAULT_CATEGORY_PATTERNS.items()},
        positive_words=_compile(r"excellent|good|strong|effective|appropriate|great|ممتاز|جيد|قوي|مناسب|فعال"),
        negative_words=_compile(r"weak|poor|bad|problem|issue|missing|lack|slow|ضعيف|سيء|مشكلة|نقص|بطيء"),
        recommendation_markers=_compile(
            r"recommend|should|suggest|consider|improve|optimi[sz]e|توصي|ينصح|يجب|تحسين|اقترح"
        ),
        strength_markers=_compile(r"strength|positive|excellent|good|قوة|إيجابي|ممتاز|جيد"),
        weakness_markers=_compile(r"weakness|negative|problem|lack|missing|ضعف|سلبي|مشكلة|نقص"),
        score_patterns=(
            _compile(r"(\d{1,3}(?:\.\d+)?)\s*(?:%|/\s*100\b|(?:score|points?|degrees?|درجة))"),
            _compile(r"(?:score|rating|درجة)\s*[:=]?\s*(\d{1,3}(?:\.\d+)?)"),
        ),
    )


DEFAULT_RULES = build_default_rules()
