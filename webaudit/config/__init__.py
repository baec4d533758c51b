from .ini_config import AppSettings, IniConfig, RetrySettings, SqlServerSettings, StageTimeouts

__all__ = [
    "AppSettings",
    "IniConfig",
    "RetrySettings",
    "SqlServerSettings",
    "StageTimeouts",
]
