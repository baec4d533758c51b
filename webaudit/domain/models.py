######## models.py
########

from __future__ import annotations

import uuid
from dataclasses import dataclass, field, fields, replace
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union


class AuditType(str, Enum):
    PERFORMANCE = "performance"
    SECURITY = "security"
    TECHNOLOGY = "technology"
    METADATA = "metadata"
    AI = "ai"
    MAPS = "maps"


class RunStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    TIMEOUT = "timeout"

    @property
    def is_terminal(self) -> bool:
        return self in (RunStatus.COMPLETED, RunStatus.FAILED, RunStatus.TIMEOUT)


class AnalysisStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


def new_id() -> str:
    return uuid.uuid4().hex


def _plain(value: Any) -> Any:
    """Recursively turn enums, datetimes and dataclasses into JSON-friendly values."""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    if hasattr(value, "to_dict"):
        return value.to_dict()
    if isinstance(value, dict):
        return {str(k): _plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [_plain(v) for v in value]
    return value


@dataclass(frozen=True)
class Target:
    url: str
    business_name: Optional[str] = None


@dataclass
class AuditRun:
    """
    One execution attempt of one stage for one analysis.
    Mutated only through RunTracker, which enforces the status state machine.
    """
    parent_analysis_id: str
    audit_type: AuditType
    id: str = field(default_factory=new_id)
    status: RunStatus = RunStatus.PENDING
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    attempts: int = 0
    max_attempts: int = 3

    result_data: Optional[Dict[str, Any]] = None
    error_message: Optional[str] = None
    error_details: Optional[Dict[str, Any]] = None
    debug_info: Optional[Dict[str, Any]] = None

    memory_usage_mb: Optional[int] = None
    cpu_usage_seconds: Optional[float] = None
    api_calls_made: int = 0
    api_response_times: List[float] = field(default_factory=list)

    @property
    def is_successful(self) -> bool:
        return self.status == RunStatus.COMPLETED

    @property
    def execution_time_seconds(self) -> Optional[int]:
        if self.started_at and self.completed_at:
            return int((self.completed_at - self.started_at).total_seconds())
        return None

    @property
    def formatted_duration(self) -> str:
        duration = self.execution_time_seconds
        if not duration:
            return "N/A"
        if duration < 60:
            return f"{duration}s"
        minutes, seconds = divmod(duration, 60)
        return f"{minutes:02d}:{seconds:02d}"

    def to_dict(self) -> Dict[str, Any]:
        out = {f.name: _plain(getattr(self, f.name)) for f in fields(self)}
        out["execution_time_seconds"] = self.execution_time_seconds
        return out


@dataclass(frozen=True)
class AIInsightResult:
    analysis_text: str
    summary: str
    score: float
    recommendations: List[str]
    categorized: Dict[str, List[str]]
    provider_label: str
    providers_count: int
    strengths: List[str] = field(default_factory=list)
    weaknesses: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {f.name: _plain(getattr(self, f.name)) for f in fields(self)}


@dataclass(frozen=True)
class ProviderResult:
    text: str
    extracted_score: float
    extracted_recommendations: List[str]
    provider_label: str
    summary: str = ""


@dataclass(frozen=True)
class CompositeScores:
    performance: int
    security: int
    seo: int
    ux: int
    maps_presence: int
    overall: int

    def to_dict(self) -> Dict[str, int]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


@dataclass(frozen=True)
class Recommendation:
    priority: str       # "critical" | "high" | "medium" | "low"
    category: str
    title: str
    description: str

    def to_dict(self) -> Dict[str, str]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


@dataclass(frozen=True)
class StageOutcome:
    """Tagged result of one stage: exactly one of data / error is meaningful."""
    audit_type: AuditType
    ok: bool
    data: Optional[Dict[str, Any]] = None
    error: Optional[BaseException] = None
    timed_out: bool = False
    attempts: int = 1
    response_times: Tuple[float, ...] = ()
    cpu_seconds: Optional[float] = None
    debug: Dict[str, Any] = field(default_factory=dict)

    @property
    def slice(self) -> Dict[str, Any]:
        if self.ok:
            return self.data or {}
        return {"error": str(self.error) if self.error else "unknown error"}


@dataclass(frozen=True)
class AnalysisBundle:
    url: str
    domain: str
    id: str = field(default_factory=new_id)
    status: AnalysisStatus = AnalysisStatus.PENDING
    business_name: Optional[str] = None

    performance: Optional[Dict[str, Any]] = None
    security: Optional[Dict[str, Any]] = None
    technology: Optional[Dict[str, Any]] = None
    metadata: Optional[Dict[str, Any]] = None
    maps_presence: Optional[Dict[str, Any]] = None
    ai_insights: Optional[Union[AIInsightResult, Dict[str, Any]]] = None

    seo_score: Optional[int] = None
    performance_score: Optional[int] = None
    security_score: Optional[int] = None
    ux_score: Optional[int] = None
    maps_presence_score: Optional[int] = None
    composite_score: Optional[int] = None

    analysis_started_at: Optional[datetime] = None
    analysis_completed_at: Optional[datetime] = None
    total_analysis_time_seconds: Optional[int] = None

    audit_runs: Tuple[AuditRun, ...] = ()

    def with_scores(self, scores: CompositeScores) -> "AnalysisBundle":
        return replace(
            self,
            seo_score=scores.seo,
            performance_score=scores.performance,
            security_score=scores.security,
            ux_score=scores.ux,
            maps_presence_score=scores.maps_presence,
            composite_score=scores.overall,
        )

    def scores(self) -> Dict[str, Optional[int]]:
        return {
            "overall": self.composite_score,
            "performance": self.performance_score,
            "security": self.security_score,
            "seo": self.seo_score,
            "ux": self.ux_score,
            "maps_presence": self.maps_presence_score,
        }

    def to_dict(self) -> Dict[str, Any]:
        return {f.name: _plain(getattr(self, f.name)) for f in fields(self)}


@dataclass(frozen=True)
class AnalysisResult:
    status: str                 # "ok" | "failed"
    bundle: Optional[AnalysisBundle] = None
    recommendations: List[Recommendation] = field(default_factory=list)
    industry_comparison: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    error: str = ""

    @property
    def success(self) -> bool:
        return self.status == "ok"

    def to_dict(self) -> Dict[str, Any]:
        if not self.success:
            return {"success": False, "error": self.error}
        return {
            "success": True,
            "analysis_id": self.bundle.id if self.bundle else None,
            "data": self.bundle.to_dict() if self.bundle else None,
            "recommendations": [r.to_dict() for r in self.recommendations],
            "industry_comparison": self.industry_comparison,
        }
