from .errors import (
    AuthenticationError,
    FatalError,
    FatalPersistenceError,
    InvalidRunTransition,
    ParseError,
    QuotaExceededError,
    RunPersistenceError,
    StageError,
    StageTimeoutError,
    TransientNetworkError,
)
from .models import (
    AIInsightResult,
    AnalysisBundle,
    AnalysisResult,
    AnalysisStatus,
    AuditRun,
    AuditType,
    CompositeScores,
    ProviderResult,
    Recommendation,
    RunStatus,
    StageOutcome,
    Target,
)

__all__ = [
    "AIInsightResult",
    "AnalysisBundle",
    "AnalysisResult",
    "AnalysisStatus",
    "AuditRun",
    "AuditType",
    "AuthenticationError",
    "CompositeScores",
    "FatalError",
    "FatalPersistenceError",
    "InvalidRunTransition",
    "ParseError",
    "ProviderResult",
    "QuotaExceededError",
    "Recommendation",
    "RunPersistenceError",
    "RunStatus",
    "StageError",
    "StageOutcome",
    "StageTimeoutError",
    "Target",
    "TransientNetworkError",
]
