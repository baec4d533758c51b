from .analyzers import (
    AIProvider,
    BusinessDirectory,
    MetadataExtractor,
    PerformanceAnalyzer,
    SecurityAnalyzer,
    TechnologyDetector,
)

__all__ = [
    "AIProvider",
    "BusinessDirectory",
    "MetadataExtractor",
    "PerformanceAnalyzer",
    "SecurityAnalyzer",
    "TechnologyDetector",
]
