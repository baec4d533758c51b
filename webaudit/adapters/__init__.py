from .http_analyzers import (
    HeaderSecurityAnalyzer,
    HtmlMetadataExtractor,
    PageSpeedAnalyzer,
    PlacesDirectory,
    RegexTechnologyDetector,
)
from .llm_providers import AnthropicMessagesProvider, OpenAIChatProvider, build_providers

__all__ = [
    "AnthropicMessagesProvider",
    "HeaderSecurityAnalyzer",
    "HtmlMetadataExtractor",
    "OpenAIChatProvider",
    "PageSpeedAnalyzer",
    "PlacesDirectory",
    "RegexTechnologyDetector",
    "build_providers",
]
