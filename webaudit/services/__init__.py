from .ai_insights import AIInsightService
from .ai_merger import AIInsightMerger
from .composite_score import CompositeScoreCalculator
from .orchestrator import AuditOrchestrator
from .retry import RetryPolicy
from .run_tracker import RunTracker
from .url_normalization import SchemeUrlNormalizer, UrlNormalizer

__all__ = [
    "AIInsightMerger",
    "AIInsightService",
    "AuditOrchestrator",
    "CompositeScoreCalculator",
    "RetryPolicy",
    "RunTracker",
    "SchemeUrlNormalizer",
    "UrlNormalizer",
]
