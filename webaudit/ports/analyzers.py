"""
Collaborator interfaces for the audit stages.

Each stage collaborator takes a target descriptor and either returns a plain
dict (the stage's structured result) or raises a StageError subtype from
webaudit.domain.errors. Timeouts are passed in by the orchestrator.
"""
from __future__ import annotations

from typing import Any, Dict, Optional


class PerformanceAnalyzer:
    """Returns {mobile_score, desktop_score, core_web_vitals, network_metrics, lighthouse_scores}."""
    def analyze(self, url: str, timeout: float) -> Dict[str, Any]:
        raise NotImplementedError


class SecurityAnalyzer:
    """Returns {ssl_analysis: {has_ssl, ssl_grade}, security_headers: {name: {present, score}}, vulnerabilities}."""
    def analyze(self, url: str, timeout: float) -> Dict[str, Any]:
        raise NotImplementedError


class TechnologyDetector:
    """Returns {category: [technology name]}."""
    def detect(self, url: str, timeout: float) -> Dict[str, Any]:
        raise NotImplementedError


class MetadataExtractor:
    """Returns {title, description, h1_tags, h2_tags, open_graph, schema_org, has_robots_txt, has_sitemap, ...}."""
    def extract(self, url: str, timeout: float) -> Dict[str, Any]:
        raise NotImplementedError


class BusinessDirectory:
    """Returns {matched_entity: dict | None, nearby_competitors: [dict]}."""
    def lookup(self, business_name: str, website_url: Optional[str], timeout: float) -> Dict[str, Any]:
        raise NotImplementedError


class AIProvider:
    """One text-generation backend. `label` is shown in the merged result."""
    label: str = "provider"

    def generate(self, prompt: str, timeout: float) -> str:
        raise NotImplementedError
