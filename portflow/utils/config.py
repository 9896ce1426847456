"""Environment-driven runtime settings."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path


DEFAULT_JWT_SECRET = "change-me-in-production"


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise RuntimeError(f"{name} must be an integer, got {raw!r}") from exc


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise RuntimeError(f"{name} must be a number, got {raw!r}") from exc


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class Settings:
    app_name: str
    app_version: str
    log_level: str
    database_path: Path
    sqlite_busy_timeout_seconds: float

    jwt_secret_key: str
    jwt_algorithm: str
    admin_token: str | None
    access_token_expire_minutes: int

    default_slot_duration_minutes: int
    stale_pending_threshold_minutes: int
    qr_grace_minutes: int
    qr_early_arrival_minutes: int
    load_level_high_percent: float
    load_level_near_full_percent: float
    audit_query_limit: int

    seed_demo_data: bool


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Read settings once per process; tests call ``cache_clear`` to reload."""
    return Settings(
        app_name=os.getenv("APP_NAME", "PortFlow Slot Booking Service"),
        app_version=os.getenv("APP_VERSION", "1.0.0"),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        database_path=Path(os.getenv("DATABASE_PATH", "data/portflow.db")),
        sqlite_busy_timeout_seconds=_env_float("SQLITE_BUSY_TIMEOUT_SECONDS", 10.0),
        jwt_secret_key=os.getenv("JWT_SECRET_KEY", DEFAULT_JWT_SECRET),
        jwt_algorithm=os.getenv("JWT_ALGORITHM", "HS256"),
        admin_token=os.getenv("ADMIN_TOKEN") or None,
        access_token_expire_minutes=_env_int("ACCESS_TOKEN_EXPIRE_MINUTES", 60),
        default_slot_duration_minutes=_env_int("DEFAULT_SLOT_DURATION_MINUTES", 60),
        stale_pending_threshold_minutes=_env_int("STALE_PENDING_THRESHOLD_MINUTES", 120),
        qr_grace_minutes=_env_int("QR_GRACE_MINUTES", 60),
        qr_early_arrival_minutes=_env_int("QR_EARLY_ARRIVAL_MINUTES", 30),
        load_level_high_percent=_env_float("LOAD_LEVEL_HIGH_PERCENT", 70.0),
        load_level_near_full_percent=_env_float("LOAD_LEVEL_NEAR_FULL_PERCENT", 95.0),
        audit_query_limit=_env_int("AUDIT_QUERY_LIMIT", 500),
        seed_demo_data=_env_bool("SEED_DEMO_DATA", False),
    )
