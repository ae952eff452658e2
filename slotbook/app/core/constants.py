from __future__ import annotations

import os

from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: bool = False) -> bool:
    val = os.getenv(name)
    if val is None:
        return default
    return str(val).strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except Exception:
        return default


def _env_float(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, str(default)))
    except Exception:
        return default


def _env_str(name: str, default: str) -> str:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip()


# Storage
DEFAULT_DATABASE_URL: str = _env_str("DATABASE_URL", "postgresql+asyncpg://slotbook:change_me@db:5432/slotbook")
DEFAULT_REDIS_URL: str | None = os.getenv("REDIS_URL") or None

# Scheduling
DEFAULT_BUSINESS_TIMEZONE: str = _env_str("BUSINESS_TIMEZONE", "America/Los_Angeles")
DEFAULT_SLOT_DURATION_MINUTES: int = _env_int("SLOT_DURATION_MINUTES", 30)
DEFAULT_SAME_DAY_LEAD_MINUTES: int = _env_int("SAME_DAY_LEAD_MINUTES", 0)

# Points / pricing
DEFAULT_BOOKING_POINTS_COST: int = _env_int("BOOKING_POINTS_COST", 5)
DEFAULT_STANDARD_PRICE_CENTS: int = _env_int("STANDARD_PRICE_CENTS", 4500)
DEFAULT_SECOND_CUT_PRICE_CENTS: int = _env_int("SECOND_CUT_PRICE_CENTS", 1000)

# Cache / timeouts
AVAILABILITY_CACHE_TTL_SECONDS: int = _env_int("AVAILABILITY_CACHE_TTL_SECONDS", 60)
CACHE_TIMEOUT_SECONDS: float = _env_float("CACHE_TIMEOUT_SECONDS", 0.5)
STORE_TIMEOUT_SECONDS: float = _env_float("STORE_TIMEOUT_SECONDS", 10.0)

# Notifications
NOTIFY_WORKERS: int = _env_int("NOTIFY_WORKERS", 4)
NOTIFY_QUEUE_SIZE: int = _env_int("NOTIFY_QUEUE_SIZE", 1000)

# Logging / API
LOG_LEVEL_NAME: str = os.getenv("LOG_LEVEL", "INFO").strip().upper()
SQL_ECHO_ENABLED: bool = _env_bool("SQL_ECHO", False)
API_JWT_SECRET: str = os.getenv("API_JWT_SECRET", "")

__all__ = [
    "DEFAULT_DATABASE_URL",
    "DEFAULT_REDIS_URL",
    "DEFAULT_BUSINESS_TIMEZONE",
    "DEFAULT_SLOT_DURATION_MINUTES",
    "DEFAULT_SAME_DAY_LEAD_MINUTES",
    "DEFAULT_BOOKING_POINTS_COST",
    "DEFAULT_STANDARD_PRICE_CENTS",
    "DEFAULT_SECOND_CUT_PRICE_CENTS",
    "AVAILABILITY_CACHE_TTL_SECONDS",
    "CACHE_TIMEOUT_SECONDS",
    "STORE_TIMEOUT_SECONDS",
    "NOTIFY_WORKERS",
    "NOTIFY_QUEUE_SIZE",
    "LOG_LEVEL_NAME",
    "SQL_ECHO_ENABLED",
    "API_JWT_SECRET",
]
