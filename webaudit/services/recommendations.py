from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional

from webaudit.domain.models import CompositeScores, Recommendation
from webaudit.services.composite_score import health_level

INDUSTRY_AVERAGES = {
    "overall": 65,
    "seo": 60,
    "performance": 70,
    "security": 75,
    "ux": 68,
}


def build_recommendations(
    scores: CompositeScores,
    maps_requested: bool = False,
    maps_slice: Optional[Mapping[str, Any]] = None,
) -> List[Recommendation]:
    """Threshold rules over the composite sub-scores, most urgent first."""
    out: List[Recommendation] = []

    if scores.security < 60:
        out.append(Recommendation(
            priority="critical",
            category="security",
            title="Improve site security",
            description="Add the missing security headers and make sure a valid SSL certificate is served.",
        ))

    if scores.performance < 70:
        out.append(Recommendation(
            priority="high",
            category="performance",
            title="Improve site performance",
            description="Page speed and Core Web Vitals need work, especially on mobile.",
        ))

    if scores.seo < 80:
        out.append(Recommendation(
            priority="medium",
            category="seo",
            title="Improve on-page SEO",
            description="Complete the title, meta description, heading structure and structured data.",
        ))

    if maps_requested and not (maps_slice or {}).get("matched_entity"):
        out.append(Recommendation(
            priority="medium",
            category="local",
            title="Create a business listing",
            description="No matching map listing was found; register the business to improve local visibility.",
        ))

    return out


def compare_with_industry(scores: CompositeScores) -> Dict[str, Dict[str, Any]]:
    comparison: Dict[str, Dict[str, Any]] = {}
    for metric, average in INDUSTRY_AVERAGES.items():
        user_score = getattr(scores, metric)
        comparison[metric] = {
            "user_score": user_score,
            "industry_average": average,
            "difference": user_score - average,
            "performance": "above_average" if user_score >= average else "below_average",
            "health_level": health_level(user_score),
        }
    return comparison
