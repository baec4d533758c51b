from __future__ import annotations

from pathlib import Path

import pytest

from webaudit.app_factory import build_repository, create_app
from webaudit.config.ini_config import IniConfig
from webaudit.domain.models import AnalysisBundle, AnalysisResult, AnalysisStatus, CompositeScores
from webaudit.repositories.analysis_repository import InMemoryAnalysisRepository


# -----------------------------
# Test doubles
# -----------------------------
class FakeAIService:
    providers = []


class FakeOrchestrator:
    ai_service = FakeAIService()

    def __init__(self, result: AnalysisResult = None, exc: Exception = None):
        self.result = result
        self.exc = exc
        self.calls = []

    def run(self, url_raw, business_name=None):
        self.calls.append((url_raw, business_name))
        if self.exc is not None:
            raise self.exc
        return self.result


def _ok_result() -> AnalysisResult:
    scores = CompositeScores(performance=92, security=0, seo=65, ux=64, maps_presence=0, overall=52)
    bundle = AnalysisBundle(
        url="https://example.com", domain="example.com", id="abc", status=AnalysisStatus.COMPLETED,
    ).with_scores(scores)
    return AnalysisResult(status="ok", bundle=bundle)


@pytest.fixture
def make_client(tmp_path: Path, monkeypatch):
    ini = tmp_path / "webaudit.ini"
    ini.write_text("[logging]\nlevel = WARNING\n", encoding="utf-8")
    monkeypatch.setenv("APP_INI", str(ini))

    def _make(orchestrator):
        app = create_app(orchestrator=orchestrator)
        app.config["TESTING"] = True
        return app.test_client()

    return _make


def test_health(make_client):
    resp = make_client(FakeOrchestrator()).get("/health")
    assert resp.status_code == 200
    assert resp.get_json() == {"status": "ok"}


def test_analyze_success(make_client):
    orch = FakeOrchestrator(result=_ok_result())
    resp = make_client(orch).post("/analyze", json={"url": "example.com", "business_name": "Acme"})

    assert resp.status_code == 200
    body = resp.get_json()
    assert body["success"] is True
    assert body["analysis_id"] == "abc"
    assert body["data"]["composite_score"] == 52
    assert body["data"]["status"] == "completed"
    assert orch.calls == [("example.com", "Acme")]


def test_analyze_missing_url_is_400(make_client):
    orch = FakeOrchestrator(result=_ok_result())
    resp = make_client(orch).post("/analyze", json={"business_name": "Acme"})
    assert resp.status_code == 400
    assert resp.get_json()["success"] is False
    assert orch.calls == []


def test_analyze_invalid_url_is_400(make_client):
    resp = make_client(FakeOrchestrator(exc=ValueError("URL is required."))).post("/analyze", json={"url": "//"})
    assert resp.status_code == 400
    assert resp.get_json() == {"success": False, "error": "URL is required."}


def test_analyze_failure_is_500(make_client):
    failed = AnalysisResult(status="failed", error="Analysis failed: could not save analysis abc")
    resp = make_client(FakeOrchestrator(result=failed)).post("/analyze", json={"url": "example.com"})
    assert resp.status_code == 500
    assert resp.get_json() == {"success": False, "error": "Analysis failed: could not save analysis abc"}


def test_analyze_accepts_form_post(make_client):
    orch = FakeOrchestrator(result=_ok_result())
    resp = make_client(orch).post("/analyze", data={"url": "example.com"})
    assert resp.status_code == 200
    assert orch.calls == [("example.com", None)]


# -----------------------------
# Repository wiring
# -----------------------------
def _settings(tmp_path: Path, text: str):
    ini = tmp_path / "webaudit.ini"
    ini.write_text(text, encoding="utf-8")
    return IniConfig(ini).load_settings()


def test_memory_backend_by_default(tmp_path: Path):
    assert isinstance(build_repository(_settings(tmp_path, "[logging]\nlevel = INFO\n")), InMemoryAnalysisRepository)


def test_sqlserver_backend_creates_schema_on_startup(tmp_path: Path, monkeypatch):
    pytest.importorskip("pyodbc")
    from webaudit.adapters.sqlserver_repository import SqlServerAnalysisRepository

    created = []
    monkeypatch.setattr(SqlServerAnalysisRepository, "ensure_schema", lambda self: created.append(self))

    settings = _settings(tmp_path, "[storage]\nbackend = sqlserver\n[sqlserver]\nserver = db01\ndatabase = WebAudit\n")
    repo = build_repository(settings)
    assert isinstance(repo, SqlServerAnalysisRepository)
    assert created == [repo]
