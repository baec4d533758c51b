from __future__ import annotations

import logging
from typing import Optional

import requests
from flask import Flask

from webaudit.adapters.http_analyzers import (
    HeaderSecurityAnalyzer,
    HtmlMetadataExtractor,
    PageSpeedAnalyzer,
    PlacesDirectory,
    RegexTechnologyDetector,
)
from webaudit.adapters.llm_providers import build_providers
from webaudit.config.ini_config import AppSettings, IniConfig
from webaudit.repositories.analysis_repository import AnalysisRepository, InMemoryAnalysisRepository
from webaudit.services.ai_insights import AIInsightService
from webaudit.services.ai_merger import AIInsightMerger
from webaudit.services.composite_score import CompositeScoreCalculator
from webaudit.services.orchestrator import AuditOrchestrator
from webaudit.services.retry import RetryPolicy
from webaudit.services.run_tracker import RunTracker
from webaudit.services.stages import StageAnalyzers
from webaudit.services.text_rules import DEFAULT_RULES
from webaudit.services.url_normalization import SchemeUrlNormalizer
from webaudit.web.routes import create_blueprint

LOG_FORMAT = "%(asctime)s %(levelname)s [%(threadName)s] %(name)s: %(message)s"


def configure_logging(level: str = "INFO") -> None:
    root = logging.getLogger()
    root.setLevel(getattr(logging, (level or "INFO").upper(), logging.INFO))
    for h in list(root.handlers):
        if getattr(h, "_webaudit", False):
            root.removeHandler(h)
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    handler._webaudit = True
    root.addHandler(handler)


def build_repository(settings: AppSettings) -> AnalysisRepository:
    if settings.storage_backend == "sqlserver":
        # pyodbc is only needed for this backend.
        from webaudit.adapters.sqlserver_repository import SqlServerAnalysisRepository
        repo = SqlServerAnalysisRepository(settings.sqlserver)
        repo.ensure_schema()
        logging.getLogger(__name__).info(
            "SQL Server schema ready: %s, %s on %s", repo.analyses_table, repo.runs_table, settings.sqlserver.server
        )
        return repo
    return InMemoryAnalysisRepository()


def build_orchestrator(
    settings: AppSettings,
    repo: Optional[AnalysisRepository] = None,
    session: Optional[requests.Session] = None,
) -> AuditOrchestrator:
    session = session or requests.Session()
    repo = repo or build_repository(settings)

    rules = DEFAULT_RULES.with_category_patterns(settings.category_patterns) if settings.category_patterns else DEFAULT_RULES
    providers = build_providers(
        settings.ai_providers,
        keys={"openai": settings.openai_api_key, "anthropic": settings.anthropic_api_key},
        models={"openai": settings.openai_model, "anthropic": settings.anthropic_model},
        connect_timeout=settings.timeouts.ai_connect,
        session=session,
    )

    analyzers = StageAnalyzers(
        performance=PageSpeedAnalyzer(settings.pagespeed_api_key, session=session),
        technology=RegexTechnologyDetector(session=session),
        security=HeaderSecurityAnalyzer(session=session),
        metadata=HtmlMetadataExtractor(session=session),
        directory=PlacesDirectory(settings.places_api_key, session=session),
    )

    return AuditOrchestrator(
        url_normalizer=SchemeUrlNormalizer(default_scheme=settings.default_scheme),
        repo=repo,
        tracker=RunTracker(repo, max_attempts=settings.retry.max_attempts),
        analyzers=analyzers,
        ai_service=AIInsightService(providers=providers, merger=AIInsightMerger(rules=rules, dedup_mode=settings.dedup_mode)),
        calculator=CompositeScoreCalculator(),
        retry_policy=RetryPolicy(
            max_attempts=settings.retry.max_attempts,
            base_delay=settings.retry.base_delay_seconds,
            factor=settings.retry.backoff_factor,
        ),
        timeouts=settings.timeouts,
        max_workers=settings.max_workers,
        pipeline_deadline_seconds=settings.pipeline_deadline_seconds,
    )


def create_app(orchestrator: Optional[AuditOrchestrator] = None) -> Flask:
    ini = IniConfig.from_env_or_default()
    settings = ini.load_settings()
    configure_logging(settings.log_level)

    if orchestrator is None:
        orchestrator = build_orchestrator(settings)

    logging.getLogger(__name__).info(
        "webaudit configured from %s: storage=%s, ai providers=%d, max_workers=%d",
        ini.ini_path, settings.storage_backend, len(orchestrator.ai_service.providers), settings.max_workers,
    )

    app = Flask(__name__)
    app.register_blueprint(create_blueprint(orchestrator))

    app.config["HOST"] = settings.flask_host
    app.config["PORT"] = settings.flask_port
    app.config["DEBUG"] = settings.flask_debug

    return app
