from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, Mapping, Optional

from webaudit.domain.models import CompositeScores
from webaudit.services.scoring_math import clamp, round_half_up, score_int, to_decimal

# Weights must sum to exactly 1.0; kept as strings so the sum is exact.
DEFAULT_WEIGHTS: Dict[str, Decimal] = {
    "seo": Decimal("0.30"),
    "performance": Decimal("0.25"),
    "security": Decimal("0.15"),
    "ux": Decimal("0.15"),
    "maps_presence": Decimal("0.15"),
}

SEO_RUBRIC = (
    ("title", 20),
    ("description", 20),
    ("h1_tags", 15),
    ("h2_tags", 10),
    ("open_graph", 15),
    ("schema_org", 10),
    ("has_robots_txt", 5),
    ("has_sitemap", 5),
)

HEALTH_LEVELS = (
    (90, "excellent"),
    (75, "good"),
    (60, "average"),
    (40, "poor"),
)


def _errored(data: Optional[Mapping[str, Any]]) -> bool:
    return not isinstance(data, Mapping) or "error" in data


def health_level(score: Optional[int]) -> str:
    s = score or 0
    for threshold, label in HEALTH_LEVELS:
        if s >= threshold:
            return label
    return "critical"


@dataclass(frozen=True)
class CompositeScoreCalculator:
    """
    Converts stage results into 0..100 sub-scores and reduces them with fixed weights.
    A missing or errored stage result scores 0.
    """
    weights: Dict[str, Decimal] = field(default_factory=lambda: dict(DEFAULT_WEIGHTS))

    def __post_init__(self):
        total = sum(self.weights.values(), Decimal(0))
        if total != Decimal(1):
            raise ValueError(f"Score weights must sum to 1.0, got {total}")

    def performance_score(self, performance: Optional[Mapping[str, Any]]) -> int:
        if _errored(performance):
            return 0
        mobile = to_decimal(performance.get("mobile_score") or 0)
        desktop = to_decimal(performance.get("desktop_score") or 0)
        return score_int(mobile * Decimal("0.6") + desktop * Decimal("0.4"))

    def security_score(self, security: Optional[Mapping[str, Any]]) -> int:
        if _errored(security):
            return 0
        ssl = security.get("ssl_analysis") or {}
        ssl_points = Decimal(40) if ssl.get("has_ssl") else Decimal(0)

        headers_points = Decimal(0)
        for data in (security.get("security_headers") or {}).values():
            if isinstance(data, Mapping) and data.get("score") is not None:
                headers_points += to_decimal(data["score"])

        return score_int(min(round_half_up(ssl_points + headers_points / 10), Decimal(100)))

    def seo_score(self, metadata: Optional[Mapping[str, Any]]) -> int:
        if _errored(metadata):
            return 0
        points = sum(weight for key, weight in SEO_RUBRIC if metadata.get(key))
        return score_int(min(points, 100))

    def ux_score(self, performance_score: int, security_score: int) -> int:
        return score_int(Decimal(performance_score) * Decimal("0.7") + Decimal(security_score) * Decimal("0.3"))

    def maps_presence_score(self, entity: Optional[Mapping[str, Any]]) -> int:
        if not entity or not isinstance(entity, Mapping) or "error" in entity:
            return 0

        score = 40
        rating = entity.get("rating")
        if rating and to_decimal(rating) >= Decimal("4.0"):
            score += 20
        if (entity.get("total_reviews") or 0) >= 50:
            score += 15
        if entity.get("is_verified"):
            score += 15
        photo_count = entity.get("photo_count")
        if photo_count is None:
            photo_count = len(entity.get("photos") or [])
        if photo_count >= 5:
            score += 10
        return score_int(min(score, 100))

    def overall(self, subscores: Mapping[str, int]) -> int:
        total = sum(
            (self.weights[name] * Decimal(subscores.get(name, 0)) for name in self.weights),
            Decimal(0),
        )
        return int(clamp(round_half_up(total)))

    def reduce(
        self,
        performance: Optional[Mapping[str, Any]],
        security: Optional[Mapping[str, Any]],
        metadata: Optional[Mapping[str, Any]],
        maps_entity: Optional[Mapping[str, Any]],
    ) -> CompositeScores:
        perf = self.performance_score(performance)
        sec = self.security_score(security)
        subscores = {
            "performance": perf,
            "security": sec,
            "seo": self.seo_score(metadata),
            "ux": self.ux_score(perf, sec),
            "maps_presence": self.maps_presence_score(maps_entity),
        }
        return CompositeScores(overall=self.overall(subscores), **subscores)
