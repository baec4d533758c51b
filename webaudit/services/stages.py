from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from webaudit.config.ini_config import StageTimeouts
from webaudit.domain.models import AuditType, Target
from webaudit.ports.analyzers import (
    BusinessDirectory,
    MetadataExtractor,
    PerformanceAnalyzer,
    SecurityAnalyzer,
    TechnologyDetector,
)

# Bundle attribute that receives each stage's slice.
BUNDLE_FIELDS: Dict[AuditType, str] = {
    AuditType.PERFORMANCE: "performance",
    AuditType.TECHNOLOGY: "technology",
    AuditType.SECURITY: "security",
    AuditType.METADATA: "metadata",
    AuditType.MAPS: "maps_presence",
    AuditType.AI: "ai_insights",
}


@dataclass(frozen=True)
class StageDescriptor:
    audit_type: AuditType
    timeout: float
    invoke: Callable[[Target, float], Dict[str, Any]]

    @property
    def bundle_field(self) -> str:
        return BUNDLE_FIELDS[self.audit_type]


@dataclass(frozen=True)
class StageAnalyzers:
    performance: PerformanceAnalyzer
    technology: TechnologyDetector
    security: SecurityAnalyzer
    metadata: MetadataExtractor
    directory: Optional[BusinessDirectory] = None


def level_one_stages(analyzers: StageAnalyzers, timeouts: StageTimeouts, target: Target) -> List[StageDescriptor]:
    """
    The independent stages, in submission order. Maps runs only when a
    business name was given and a directory is configured.
    """
    stages = [
        StageDescriptor(AuditType.PERFORMANCE, timeouts.performance,
                        lambda t, timeout: analyzers.performance.analyze(t.url, timeout)),
        StageDescriptor(AuditType.TECHNOLOGY, timeouts.technology,
                        lambda t, timeout: analyzers.technology.detect(t.url, timeout)),
        StageDescriptor(AuditType.SECURITY, timeouts.security,
                        lambda t, timeout: analyzers.security.analyze(t.url, timeout)),
        StageDescriptor(AuditType.METADATA, timeouts.metadata,
                        lambda t, timeout: analyzers.metadata.extract(t.url, timeout)),
    ]
    if target.business_name and analyzers.directory is not None:
        stages.append(
            StageDescriptor(AuditType.MAPS, timeouts.maps,
                            lambda t, timeout: analyzers.directory.lookup(t.business_name, t.url, timeout))
        )
    return stages
