from __future__ import annotations

import os
from dataclasses import dataclass

from dotenv import load_dotenv

from .scoring import get_scoring_int

load_dotenv()


def _get_env(name: str, default: str | None = None) -> str | None:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return value


def _get_env_bool(name: str, default: bool) -> bool:
    raw = _get_env(name, None)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _get_env_int(name: str, default: int) -> int:
    raw = _get_env(name, None)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _get_env_float(name: str, default: float) -> float:
    raw = _get_env(name, None)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _get_env_list(name: str, default: list[str]) -> tuple[str, ...]:
    raw = _get_env(name, None)
    if raw is None:
        return tuple(default)
    values = [item.strip() for item in raw.split(",")]
    clean = [item for item in values if item]
    return tuple(clean) if clean else tuple(default)


@dataclass(frozen=True)
class Settings:
    rate_limit: str
    planner_rate_limit: str
    rate_limit_enabled: bool
    log_level: str
    sentry_dsn: str | None
    cors_allowed_origins: tuple[str, ...]
    adzuna_app_id: str | None
    adzuna_app_key: str | None
    adzuna_country: str
    adzuna_results_per_page: int
    adzuna_max_pages: int
    adzuna_timeout_s: float
    adzuna_fetch_deadline_s: float
    requirements_ttl_hours: int
    requirements_db_path: str
    reference_data_dir: str | None
    search_index_ttl_seconds: int


def load_settings() -> Settings:
    # Environment overrides the cache lifetimes in config/scoring.yaml.
    ttl_hours = _get_env_int("REQUIREMENTS_TTL_HOURS", get_scoring_int("requirements.ttl_hours", 72))
    index_ttl = _get_env_int("SEARCH_INDEX_TTL_SECONDS", get_scoring_int("matching.search_index_ttl_seconds", 300))
    return Settings(
        rate_limit=_get_env("RATE_LIMIT", "60/minute") or "60/minute",
        planner_rate_limit=_get_env("PLANNER_RATE_LIMIT", "20/minute") or "20/minute",
        rate_limit_enabled=_get_env_bool("RATE_LIMIT_ENABLED", True),
        log_level=_get_env("LOG_LEVEL", "INFO") or "INFO",
        sentry_dsn=_get_env("SENTRY_DSN"),
        cors_allowed_origins=_get_env_list(
            "CORS_ALLOWED_ORIGINS",
            [
                "http://localhost:3000",
                "http://127.0.0.1:3000",
                "http://localhost:5173",
            ],
        ),
        adzuna_app_id=_get_env("ADZUNA_APP_ID"),
        adzuna_app_key=_get_env("ADZUNA_APP_KEY"),
        adzuna_country=(_get_env("ADZUNA_COUNTRY", "ca") or "ca").strip().lower(),
        adzuna_results_per_page=max(1, _get_env_int("ADZUNA_RESULTS_PER_PAGE", 50)),
        adzuna_max_pages=max(1, _get_env_int("ADZUNA_MAX_PAGES", 2)),
        adzuna_timeout_s=_get_env_float("ADZUNA_TIMEOUT_S", 10.0),
        adzuna_fetch_deadline_s=_get_env_float("ADZUNA_FETCH_DEADLINE_S", 25.0),
        requirements_ttl_hours=ttl_hours if ttl_hours > 0 else 72,
        requirements_db_path=_get_env("REQUIREMENTS_DB_PATH", "data/requirements.db") or "data/requirements.db",
        reference_data_dir=_get_env("REFERENCE_DATA_DIR"),
        search_index_ttl_seconds=max(1, index_ttl),
    )


settings = load_settings()
