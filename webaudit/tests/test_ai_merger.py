from __future__ import annotations

import pytest

from webaudit.domain.models import ProviderResult
from webaudit.services.ai_merger import AIInsightMerger, dedupe, normalized_key
from webaudit.services.text_rules import CATEGORY_ORDER, DEFAULT_RULES


def _provider(label: str, score: float, recs=(), text: str = "") -> ProviderResult:
    return ProviderResult(
        text=text or f"Review from {label}: the site loads quickly and looks professional.",
        extracted_score=score,
        extracted_recommendations=list(recs),
        provider_label=label,
    )


def test_merge_empty_is_deterministic_fallback():
    merger = AIInsightMerger()
    a = merger.merge([])
    b = merger.merge(None)
    assert a == b
    assert a.score == 0
    assert a.provider_label == "none"
    assert a.providers_count == 0
    assert a.recommendations == []
    assert a.analysis_text == DEFAULT_RULES.fallback_analysis
    assert set(a.categorized) == set(CATEGORY_ORDER)
    assert all(v == [] for v in a.categorized.values())


def test_single_provider_passes_through():
    p = _provider("OpenAI", 83.0, ["You should improve page speed on mobile."])
    out = AIInsightMerger().merge([p])
    assert out.score == 83.0
    assert out.analysis_text == p.text
    assert out.provider_label == "OpenAI"
    assert out.providers_count == 1
    assert out.recommendations == ["You should improve page speed on mobile."]
    assert out.categorized["performance"] == ["You should improve page speed on mobile."]


def test_two_providers_mean_score_and_labels():
    out = AIInsightMerger().merge([_provider("OpenAI", 80), _provider("Claude", 60)])
    assert out.score == 70.0
    assert out.providers_count == 2
    assert out.provider_label == "OpenAI, Claude"
    assert out.analysis_text.startswith("## Analysis from OpenAI:\n")
    assert "\n\n## Analysis from Claude:\n" in out.analysis_text


def test_mean_rounds_half_up_to_one_decimal():
    out = AIInsightMerger().merge([_provider("a", 70.05), _provider("b", 70.05), _provider("c", 70.05)])
    assert out.score == 70.1


def test_summary_joins_first_two_providers():
    texts = [
        "First provider says the homepage is clear and well organised overall.",
        "Second provider says the checkout flow is slow on mobile devices today.",
        "Third provider says the blog section needs a lot more fresh content.",
    ]
    results = [_provider(str(i), 50, text=t) for i, t in enumerate(texts)]
    out = AIInsightMerger().merge(results)
    assert out.summary == texts[0] + "\n" + texts[1]


def test_exact_dedup_keeps_punctuation_variants():
    recs_a = ["Improve image compression for faster loads."]
    recs_b = ["Improve image compression for faster loads", "Improve image compression for faster loads."]
    out = AIInsightMerger(dedup_mode="exact").merge([_provider("a", 50, recs_a), _provider("b", 50, recs_b)])
    assert out.recommendations == [
        "Improve image compression for faster loads.",
        "Improve image compression for faster loads",
    ]


def test_normalized_dedup_folds_variants():
    recs_a = ["Improve image compression for faster loads."]
    recs_b = ["improve  image compression for faster loads", "Add an SSL certificate to the site, please!"]
    out = AIInsightMerger(dedup_mode="normalized").merge([_provider("a", 50, recs_a), _provider("b", 50, recs_b)])
    assert out.recommendations == [
        "Improve image compression for faster loads.",
        "Add an SSL certificate to the site, please!",
    ]


def test_unknown_dedup_mode_rejected():
    with pytest.raises(ValueError):
        AIInsightMerger(dedup_mode="fuzzy")


def test_categorize_buckets_are_capped():
    recs = [f"Improve SEO keyword targeting on page {i}" for i in range(6)]
    buckets = AIInsightMerger().categorize(recs)
    assert len(buckets["seo"]) == DEFAULT_RULES.bucket_cap
    assert buckets["security"] == []


def test_categorize_matches_arabic_keywords():
    buckets = AIInsightMerger().categorize(["يجب تحسين سرعة تحميل الصفحة الرئيسية"])
    assert buckets["performance"] == ["يجب تحسين سرعة تحميل الصفحة الرئيسية"]


def test_category_overrides_from_config():
    rules = DEFAULT_RULES.with_category_patterns({"accessibility": r"alt text|contrast"})
    buckets = AIInsightMerger(rules=rules).categorize(["Add alt text to every product image"])
    assert buckets["accessibility"] == ["Add alt text to every product image"]
    assert rules.category_order[-1] == "accessibility"


def test_strengths_and_weaknesses_extracted():
    text = (
        "Strength: excellent caching strategy across the site\n"
        "Weakness: missing alt attributes on product images\n"
    )
    out = AIInsightMerger().merge([_provider("a", 75, text=text)])
    assert out.strengths == ["Strength: excellent caching strategy across the site"]
    assert out.weaknesses == ["Weakness: missing alt attributes on product images"]


def test_dedupe_helpers():
    assert normalized_key("  Hello,   World! ") == "hello, world"
    assert dedupe(["a", "b", "a"]) == ["a", "b"]
