from .analysis_repository import AnalysisRepository, InMemoryAnalysisRepository

__all__ = [
    "AnalysisRepository",
    "InMemoryAnalysisRepository",
]
