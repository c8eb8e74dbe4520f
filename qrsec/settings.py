# qrsec/settings.py

from __future__ import annotations

import os
from typing import Any, List, Mapping, Optional

from pydantic import BaseModel, Field

DEFAULT_PRIORITY = ["virustotal", "safe_browsing"]
LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


class Settings(BaseModel):
    """Process-wide read-only configuration, loaded once at startup."""

    virustotal_api_key: Optional[str] = None
    safe_browsing_api_key: Optional[str] = None
    provider_priority: List[str] = Field(default_factory=lambda: list(DEFAULT_PRIORITY))
    provider_timeout_s: float = 12.0
    aggregate_timeout_s: float = 15.0
    provider_max_retries: int = 2
    vt_poll_attempts: int = 3
    vt_poll_interval_s: float = 2.0
    database_url: Optional[str] = None
    redis_url: Optional[str] = None
    linkcheck_rate_limit: int = 60
    frontend_url: str = "http://localhost:8080"
    sentry_dsn: Optional[str] = None
    log_level: str = "INFO"


def _pick(env: Mapping[str, str], name: str) -> Optional[str]:
    value = env.get(name)
    if value is None:
        return None
    value = value.strip()
    return value or None


def _parse_float(raw: Any, fallback: float) -> float:
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return fallback
    return value if value > 0 else fallback


def _parse_int(raw: Any, fallback: int) -> int:
    try:
        return int(raw)
    except (TypeError, ValueError):
        return fallback


def _parse_priority(raw: Optional[str]) -> List[str]:
    if not raw:
        return list(DEFAULT_PRIORITY)
    names = [item.strip().lower() for item in raw.split(",") if item.strip()]
    return list(dict.fromkeys(names)) or list(DEFAULT_PRIORITY)


def load_settings(env: Optional[Mapping[str, str]] = None) -> Settings:
    env = os.environ if env is None else env

    provider_timeout = _parse_float(_pick(env, "PROVIDER_TIMEOUT_S"), 12.0)
    aggregate_timeout = _parse_float(_pick(env, "AGGREGATE_TIMEOUT_S"), 15.0)
    # The overall budget must cover at least one full provider budget.
    aggregate_timeout = max(aggregate_timeout, provider_timeout)

    retries = _parse_int(_pick(env, "PROVIDER_MAX_RETRIES"), 2)
    log_level = (_pick(env, "LOG_LEVEL") or "INFO").upper()

    return Settings(
        virustotal_api_key=_pick(env, "VIRUSTOTAL_API_KEY"),
        safe_browsing_api_key=_pick(env, "SAFE_BROWSING_API_KEY"),
        provider_priority=_parse_priority(_pick(env, "PROVIDER_PRIORITY")),
        provider_timeout_s=provider_timeout,
        aggregate_timeout_s=aggregate_timeout,
        provider_max_retries=min(max(retries, 0), 2),
        vt_poll_attempts=max(_parse_int(_pick(env, "VT_POLL_ATTEMPTS"), 3), 1),
        vt_poll_interval_s=_parse_float(_pick(env, "VT_POLL_INTERVAL_S"), 2.0),
        database_url=_pick(env, "DATABASE_URL"),
        redis_url=_pick(env, "REDIS_URL"),
        linkcheck_rate_limit=max(_parse_int(_pick(env, "LINKCHECK_RATE_LIMIT"), 60), 1),
        frontend_url=(_pick(env, "FRONTEND_URL") or "http://localhost:8080").rstrip("/"),
        sentry_dsn=_pick(env, "SENTRY_DSN"),
        log_level=log_level if log_level in LOG_LEVELS else "INFO",
    )
