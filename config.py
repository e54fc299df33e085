from __future__ import annotations

import os
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path

from appdirs import user_log_dir
from dotenv import load_dotenv

APP_NAME = "crm_attribution"


@dataclass
class Settings:
    database_url: str = ""
    log_dir: str = field(default_factory=lambda: user_log_dir(APP_NAME))
    log_level: str = "INFO"
    detailed_logging: bool = False
    trash_retention_hours: int = 48
    trash_cache_ttl_seconds: int = 60
    reconcile_interval_minutes: int = 15
    purge_interval_minutes: int = 60
    audit_sample_size: int = 5


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"{name} должно быть целым числом, получено {raw!r}") from None
    if value <= 0:
        raise ValueError(f"{name} должно быть положительным, получено {value}")
    return value


@lru_cache()
def get_settings() -> Settings:
    dotenv_path = Path(__file__).resolve().parent / ".env"
    load_dotenv(dotenv_path)

    return Settings(
        database_url=os.getenv("DATABASE_URL", ""),
        log_dir=os.getenv("LOG_DIR") or user_log_dir(APP_NAME),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        detailed_logging=os.getenv("DETAILED_LOGGING", "0").lower() in {"1", "true", "yes", "on"},
        trash_retention_hours=_int_env("TRASH_RETENTION_HOURS", 48),
        trash_cache_ttl_seconds=_int_env("TRASH_CACHE_TTL_SECONDS", 60),
        reconcile_interval_minutes=_int_env("RECONCILE_INTERVAL_MINUTES", 15),
        purge_interval_minutes=_int_env("PURGE_INTERVAL_MINUTES", 60),
        audit_sample_size=_int_env("AUDIT_SAMPLE_SIZE", 5),
    )
