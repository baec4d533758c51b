from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import Any, List, Optional

import pyodbc

from webaudit.config.ini_config import SqlServerSettings
from webaudit.domain.models import AnalysisBundle, AnalysisStatus, AuditRun, AuditType, RunStatus
from webaudit.repositories.analysis_repository import AnalysisRepository

logger = logging.getLogger(__name__)

SCHEMA_SQL = """
IF OBJECT_ID('{analyses}', 'U') IS NULL
CREATE TABLE {analyses} (
    id                          NVARCHAR(32)  NOT NULL PRIMARY KEY,
    url                         NVARCHAR(2048) NOT NULL,
    domain                      NVARCHAR(255) NOT NULL,
    business_name               NVARCHAR(255) NULL,
    status                      NVARCHAR(20)  NOT NULL,
    performance                 NVARCHAR(MAX) NULL,
    security                    NVARCHAR(MAX) NULL,
    technology                  NVARCHAR(MAX) NULL,
    metadata                    NVARCHAR(MAX) NULL,
    maps_presence               NVARCHAR(MAX) NULL,
    ai_insights                 NVARCHAR(MAX) NULL,
    seo_score                   INT NULL,
    performance_score           INT NULL,
    security_score              INT NULL,
    ux_score                    INT NULL,
    maps_presence_score         INT NULL,
    composite_score             INT NULL,
    analysis_started_at         DATETIME2 NULL,
    analysis_completed_at       DATETIME2 NULL,
    total_analysis_time_seconds INT NULL
);
IF OBJECT_ID('{runs}', 'U') IS NULL
CREATE TABLE {runs} (
    id                  NVARCHAR(32) NOT NULL PRIMARY KEY,
    parent_analysis_id  NVARCHAR(32) NOT NULL REFERENCES {analyses}(id),
    audit_type          NVARCHAR(20) NOT NULL,
    status              NVARCHAR(20) NOT NULL,
    started_at          DATETIME2 NULL,
    completed_at        DATETIME2 NULL,
    attempts            INT NOT NULL,
    max_attempts        INT NOT NULL,
    result_data         NVARCHAR(MAX) NULL,
    error_message       NVARCHAR(MAX) NULL,
    error_details       NVARCHAR(MAX) NULL,
    debug_info          NVARCHAR(MAX) NULL,
    memory_usage_mb     INT NULL,
    cpu_usage_seconds   FLOAT NULL,
    api_calls_made      INT NOT NULL,
    api_response_times  NVARCHAR(MAX) NULL
);
"""

JSON_COLUMNS = ("performance", "security", "technology", "metadata", "maps_presence", "ai_insights")
SCORE_COLUMNS = (
    "seo_score", "performance_score", "security_score", "ux_score", "maps_presence_score", "composite_score",
)


def _dumps(value: Any) -> Optional[str]:
    if value is None:
        return None
    if hasattr(value, "to_dict"):
        value = value.to_dict()
    return json.dumps(value, ensure_ascii=False, default=str)


def _loads(raw: Optional[str]) -> Any:
    return json.loads(raw) if raw else None


class SqlServerAnalysisRepository(AnalysisRepository):
    """
    pyodbc-backed repository. Each call opens its own connection and commits
    its own short transaction; nothing is held across stage execution.
    """

    def __init__(
        self,
        settings: SqlServerSettings,
        analyses_table: str = "dbo.WebsiteAnalyses",
        runs_table: str = "dbo.AuditRuns",
    ):
        if not settings.database:
            raise ValueError("sqlserver.database is empty in INI")
        self._settings = settings
        self.analyses_table = analyses_table
        self.runs_table = runs_table

    def _connect(self):
        s = self._settings
        parts = [
            f"DRIVER={{{s.driver}}}",
            f"SERVER={s.server}",
            f"DATABASE={s.database}",
        ]

        if s.username:
            parts.append(f"UID={s.username}")
            parts.append(f"PWD={s.password}")
        else:
            parts.append("Trusted_Connection=yes")

        if s.trust_cert:
            parts.append("TrustServerCertificate=yes")

        conn_str = ";".join(parts) + ";"
        return pyodbc.connect(conn_str)

    @staticmethod
    def _get(r, name: str, default=None):
        return getattr(r, name, default)

    def ensure_schema(self) -> None:
        with self._connect() as conn:
            conn.cursor().execute(SCHEMA_SQL.format(analyses=self.analyses_table, runs=self.runs_table))

    # -----------------------------
    # Bundles
    # -----------------------------
    def create_bundle(self, bundle: AnalysisBundle) -> None:
        q = f"""
        INSERT INTO {self.analyses_table}
            (id, url, domain, business_name, status, analysis_started_at)
        VALUES (?, ?, ?, ?, ?, ?)
        """
        with self._connect() as conn:
            conn.cursor().execute(
                q, bundle.id, bundle.url, bundle.domain, bundle.business_name,
                bundle.status.value, bundle.analysis_started_at,
            )

    def update_bundle(self, bundle: AnalysisBundle) -> None:
        assignments = ", ".join(f"{c} = ?" for c in ("status",) + JSON_COLUMNS + SCORE_COLUMNS)
        q = f"""
        UPDATE {self.analyses_table}
        SET {assignments},
            analysis_completed_at = ?,
            total_analysis_time_seconds = ?
        WHERE id = ?
        """
        params: List[Any] = [bundle.status.value]
        params += [_dumps(getattr(bundle, c)) for c in JSON_COLUMNS]
        params += [getattr(bundle, c) for c in SCORE_COLUMNS]
        params += [bundle.analysis_completed_at, bundle.total_analysis_time_seconds, bundle.id]

        with self._connect() as conn:
            cur = conn.cursor()
            cur.execute(q, *params)
            if cur.rowcount == 0:
                raise KeyError(f"Analysis {bundle.id} not found")

    def mark_failed(self, bundle_id: str, completed_at: datetime) -> None:
        q = f"UPDATE {self.analyses_table} SET status = ?, analysis_completed_at = ? WHERE id = ?"
        with self._connect() as conn:
            conn.cursor().execute(q, AnalysisStatus.FAILED.value, completed_at, bundle_id)

    def get_bundle(self, bundle_id: str) -> Optional[AnalysisBundle]:
        q = f"SELECT * FROM {self.analyses_table} WHERE id = ?"
        with self._connect() as conn:
            r = conn.cursor().execute(q, bundle_id).fetchone()
        if not r:
            return None

        kwargs = {c: _loads(self._get(r, c)) for c in JSON_COLUMNS}
        kwargs.update({c: self._get(r, c) for c in SCORE_COLUMNS})
        return AnalysisBundle(
            id=str(self._get(r, "id")),
            url=str(self._get(r, "url", "") or ""),
            domain=str(self._get(r, "domain", "") or ""),
            business_name=self._get(r, "business_name"),
            status=AnalysisStatus(self._get(r, "status", AnalysisStatus.PENDING.value)),
            analysis_started_at=self._get(r, "analysis_started_at"),
            analysis_completed_at=self._get(r, "analysis_completed_at"),
            total_analysis_time_seconds=self._get(r, "total_analysis_time_seconds"),
            audit_runs=tuple(self.list_runs(bundle_id)),
            **kwargs,
        )

    # -----------------------------
    # Runs
    # -----------------------------
    def add_run(self, run: AuditRun) -> None:
        q = f"""
        INSERT INTO {self.runs_table}
            (id, parent_analysis_id, audit_type, status, started_at, attempts, max_attempts, api_calls_made)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        """
        with self._connect() as conn:
            conn.cursor().execute(
                q, run.id, run.parent_analysis_id, run.audit_type.value, run.status.value,
                run.started_at, run.attempts, run.max_attempts, run.api_calls_made,
            )

    def update_run(self, run: AuditRun) -> None:
        q = f"""
        UPDATE {self.runs_table}
        SET status = ?, completed_at = ?, attempts = ?,
            result_data = ?, error_message = ?, error_details = ?, debug_info = ?,
            memory_usage_mb = ?, cpu_usage_seconds = ?, api_calls_made = ?, api_response_times = ?
        WHERE id = ?
        """
        with self._connect() as conn:
            cur = conn.cursor()
            cur.execute(
                q, run.status.value, run.completed_at, run.attempts,
                _dumps(run.result_data), run.error_message, _dumps(run.error_details), _dumps(run.debug_info),
                run.memory_usage_mb, run.cpu_usage_seconds, run.api_calls_made, _dumps(run.api_response_times),
                run.id,
            )
            if cur.rowcount == 0:
                raise KeyError(f"Run {run.id} not found")

    def list_runs(self, bundle_id: str) -> List[AuditRun]:
        q = f"SELECT * FROM {self.runs_table} WHERE parent_analysis_id = ? ORDER BY started_at"
        with self._connect() as conn:
            rows = conn.cursor().execute(q, bundle_id).fetchall()

        out: List[AuditRun] = []
        for r in rows:
            out.append(
                AuditRun(
                    id=str(self._get(r, "id")),
                    parent_analysis_id=str(self._get(r, "parent_analysis_id")),
                    audit_type=AuditType(self._get(r, "audit_type")),
                    status=RunStatus(self._get(r, "status")),
                    started_at=self._get(r, "started_at"),
                    completed_at=self._get(r, "completed_at"),
                    attempts=int(self._get(r, "attempts", 0) or 0),
                    max_attempts=int(self._get(r, "max_attempts", 3) or 3),
                    result_data=_loads(self._get(r, "result_data")),
                    error_message=self._get(r, "error_message"),
                    error_details=_loads(self._get(r, "error_details")),
                    debug_info=_loads(self._get(r, "debug_info")),
                    memory_usage_mb=self._get(r, "memory_usage_mb"),
                    cpu_usage_seconds=self._get(r, "cpu_usage_seconds"),
                    api_calls_made=int(self._get(r, "api_calls_made", 0) or 0),
                    api_response_times=_loads(self._get(r, "api_response_times")) or [],
                )
            )
        return out
