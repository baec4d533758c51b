########## ini_config.py

import os
from configparser import ConfigParser
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional, Tuple

INI_DEFAULT_NAME = "webaudit.ini"

DEDUP_MODES = ("exact", "normalized")
STORAGE_BACKENDS = ("memory", "sqlserver")


@dataclass(frozen=True)
class StageTimeouts:
    performance: float = 60.0
    security: float = 30.0
    technology: float = 30.0
    metadata: float = 30.0
    maps: float = 30.0
    ai: float = 45.0
    ai_connect: float = 10.0


@dataclass(frozen=True)
class RetrySettings:
    max_attempts: int = 3
    base_delay_seconds: float = 1.0
    backoff_factor: float = 2.0


@dataclass(frozen=True)
class SqlServerSettings:
    driver: str = "ODBC Driver 17 for SQL Server"
    server: str = "localhost"
    database: str = ""
    username: str = ""
    password: str = ""
    trust_cert: bool = True


@dataclass(frozen=True)
class AppSettings:
    max_workers: int
    pipeline_deadline_seconds: float
    timeouts: StageTimeouts
    retry: RetrySettings

    default_scheme: str

    ai_providers: Tuple[str, ...]
    dedup_mode: str
    openai_api_key: str
    openai_model: str
    anthropic_api_key: str
    anthropic_model: str
    category_patterns: Dict[str, str]

    pagespeed_api_key: str
    places_api_key: str

    storage_backend: str
    sqlserver: Optional[SqlServerSettings]

    log_level: str

    flask_host: str
    flask_port: int
    flask_debug: bool


class IniConfig:
    """
    Adapter around ConfigParser.
    Keeps INI handling out of the service code.
    """

    def __init__(self, ini_path: Path):
        self._ini_path = ini_path
        self._cfg = ConfigParser()
        read_ok = self._cfg.read(str(ini_path), encoding="utf-8-sig")
        if not read_ok:
            raise FileNotFoundError(f"INI file not found or unreadable: {ini_path}")

    @property
    def ini_path(self) -> Path:
        return self._ini_path

    @staticmethod
    def from_env_or_default() -> "IniConfig":
        ini_raw = (os.getenv("APP_INI") or "").strip()
        # If APP_INI is not set, default to repo-root-relative ini location
        ini_path = Path(ini_raw) if ini_raw else (Path(__file__).resolve().parents[2] / INI_DEFAULT_NAME)
        return IniConfig(ini_path)

    def _str(self, section: str, key: str, fallback: str = "") -> str:
        return (self._cfg.get(section, key, fallback=fallback) or "").strip()

    def _secret(self, section: str, key: str, env_name: str) -> str:
        """INI value wins; the environment variable is the fallback."""
        return self._str(section, key) or (os.getenv(env_name) or "").strip()

    def _load_timeouts(self) -> StageTimeouts:
        d = StageTimeouts()
        get = self._cfg.getfloat
        return StageTimeouts(
            performance=get("timeouts", "performance", fallback=d.performance),
            security=get("timeouts", "security", fallback=d.security),
            technology=get("timeouts", "technology", fallback=d.technology),
            metadata=get("timeouts", "metadata", fallback=d.metadata),
            maps=get("timeouts", "maps", fallback=d.maps),
            ai=get("timeouts", "ai", fallback=d.ai),
            ai_connect=get("timeouts", "ai_connect", fallback=d.ai_connect),
        )

    def _load_retry(self) -> RetrySettings:
        d = RetrySettings()
        max_attempts = self._cfg.getint("retry", "max_attempts", fallback=d.max_attempts)
        if max_attempts < 1:
            raise ValueError(f"retry.max_attempts must be >= 1, got {max_attempts}")
        return RetrySettings(
            max_attempts=max_attempts,
            base_delay_seconds=self._cfg.getfloat("retry", "base_delay_seconds", fallback=d.base_delay_seconds),
            backoff_factor=self._cfg.getfloat("retry", "backoff_factor", fallback=d.backoff_factor),
        )

    def _load_sqlserver(self) -> SqlServerSettings:
        if "sqlserver" not in self._cfg:
            raise KeyError("Missing [sqlserver] section in INI")

        s = self._cfg["sqlserver"]
        database = (s.get("database", "") or "").strip()
        if not database:
            raise ValueError("sqlserver.database is empty in INI")

        trust_raw = (s.get("trust_cert", "yes") or "").strip().lower()
        return SqlServerSettings(
            driver=(s.get("driver", "ODBC Driver 17 for SQL Server") or "").strip(),
            server=(s.get("server", "localhost") or "").strip(),
            database=database,
            username=(s.get("username", "") or "").strip(),
            password=(s.get("password", "") or "").strip(),
            trust_cert=trust_raw in ("yes", "true", "1"),
        )

    def load_settings(self) -> AppSettings:
        # Execution
        max_workers = self._cfg.getint("execution", "max_workers", fallback=5)
        pipeline_deadline_seconds = self._cfg.getfloat("execution", "pipeline_deadline_seconds", fallback=180.0)

        # URL normalization
        default_scheme = self._str("url_normalization", "default_scheme", "https") or "https"

        # AI
        ai_providers = tuple(
            p.strip().lower()
            for p in self._str("ai", "providers", "openai,anthropic").split(",")
            if p.strip()
        )
        dedup_mode = (self._str("ai", "dedup_mode", "exact") or "exact").lower()
        category_patterns = (
            {k: v.strip() for k, v in self._cfg.items("ai_categories") if v.strip()}
            if self._cfg.has_section("ai_categories")
            else {}
        )

        # Storage
        storage_backend = (self._str("storage", "backend", "memory") or "memory").lower()
        sqlserver = self._load_sqlserver() if storage_backend == "sqlserver" else None

        # Flask
        flask_host = self._str("flask", "host", "127.0.0.1") or "127.0.0.1"
        flask_port = self._cfg.getint("flask", "port", fallback=5000)
        flask_debug = self._cfg.getboolean("flask", "debug", fallback=False)

        # Validate
        if max_workers < 1:
            raise ValueError(f"execution.max_workers must be >= 1, got {max_workers}")
        if dedup_mode not in DEDUP_MODES:
            raise ValueError(f"ai.dedup_mode must be one of {DEDUP_MODES}, got {dedup_mode!r}")
        if storage_backend not in STORAGE_BACKENDS:
            raise ValueError(f"storage.backend must be one of {STORAGE_BACKENDS}, got {storage_backend!r}")

        return AppSettings(
            max_workers=max_workers,
            pipeline_deadline_seconds=pipeline_deadline_seconds,
            timeouts=self._load_timeouts(),
            retry=self._load_retry(),
            default_scheme=default_scheme,
            ai_providers=ai_providers,
            dedup_mode=dedup_mode,
            openai_api_key=self._secret("ai", "openai_api_key", "OPENAI_API_KEY"),
            openai_model=self._str("ai", "openai_model", "gpt-4") or "gpt-4",
            anthropic_api_key=self._secret("ai", "anthropic_api_key", "ANTHROPIC_API_KEY"),
            anthropic_model=self._str("ai", "anthropic_model", "claude-3-opus-20240229") or "claude-3-opus-20240229",
            category_patterns=category_patterns,
            pagespeed_api_key=self._secret("apis", "pagespeed_api_key", "PAGESPEED_API_KEY"),
            places_api_key=self._secret("apis", "places_api_key", "GOOGLE_PLACES_API_KEY"),
            storage_backend=storage_backend,
            sqlserver=sqlserver,
            log_level=(self._str("logging", "level", "INFO") or "INFO").upper(),
            flask_host=flask_host,
            flask_port=flask_port,
            flask_debug=flask_debug,
        )
