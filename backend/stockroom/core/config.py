"""
Runtime configuration for the stock engine.

Values come from environment variables.  ``.env`` files are loaded once by
``load_env_files()`` (called from ``stockroom.main`` and the Celery app) in
priority order without overriding variables that are already set:

    backend/.env.local, backend/.env, <repo>/.env.local, <repo>/.env

Recognised keys
---------------
DATABASE_URL               (default: sqlite:///./stockroom.db)
REDIS_URL                  (default: redis://localhost:6379/0)
REDIS_SOCKET_TIMEOUT_S     connect and read timeout (default: 2)
CELERY_BROKER_URL          (default: REDIS_URL)
CELERY_RESULT_BACKEND      (default: broker)
APP_TIMEZONE               (default: UTC)
LOW_STOCK_ALERTS_ENABLED   (default: true)
STOCK_OVERVIEW_CACHE_TTL   seconds (default: 30, min 5)
LOW_STOCK_SCAN_DEBOUNCE_MS (default: 500, clamped to 250..500)
LOW_STOCK_SCAN_INTERVAL_S  (default: 900)
UOW_RETRY_COUNT            (default: 3)
UOW_DEADLINE_S             (default: 10)
FRONTEND_ORIGINS           comma separated CORS origins
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

CURRENT_FILE = Path(__file__).resolve()
BACKEND_DIR = CURRENT_FILE.parents[2]
REPO_ROOT = CURRENT_FILE.parents[3]

_ENV_CANDIDATES = [
    BACKEND_DIR / ".env.local",
    BACKEND_DIR / ".env",
    REPO_ROOT / ".env.local",
    REPO_ROOT / ".env",
]


def load_env_files() -> list[str]:
    """Load the candidate .env files; return the ones that were found."""
    loaded = []
    for env_path in _ENV_CANDIDATES:
        if env_path.exists():
            load_dotenv(env_path, override=False)
            loaded.append(str(env_path))
    return loaded


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        return default


@dataclass(frozen=True)
class Settings:
    database_url: str = "sqlite:///./stockroom.db"
    redis_url: str = "redis://localhost:6379/0"
    redis_socket_timeout_s: float = 2.0
    celery_broker_url: str = "redis://localhost:6379/0"
    celery_result_backend: str = "redis://localhost:6379/0"
    timezone: str = "UTC"
    low_stock_alerts_enabled: bool = True
    stock_overview_cache_ttl: int = 30
    low_stock_scan_debounce_ms: int = 500
    low_stock_scan_interval_s: int = 15 * 60
    uow_retry_count: int = 3
    uow_deadline_s: float = 10.0
    frontend_origins: list[str] = field(default_factory=list)

    @property
    def overview_cache_ttl(self) -> int:
        # never cache for less than 5 seconds
        return max(5, int(self.stock_overview_cache_ttl or 0))

    @property
    def scan_debounce_ms(self) -> int:
        return min(500, max(250, int(self.low_stock_scan_debounce_ms)))


def load_settings() -> Settings:
    redis_url = os.getenv("REDIS_URL", "redis://localhost:6379/0")
    broker = os.getenv("CELERY_BROKER_URL", redis_url)
    origins = os.getenv("FRONTEND_ORIGINS") or os.getenv("FRONTEND_ORIGIN") or ""
    return Settings(
        database_url=os.getenv("DATABASE_URL") or "sqlite:///./stockroom.db",
        redis_url=redis_url,
        redis_socket_timeout_s=_env_float("REDIS_SOCKET_TIMEOUT_S", 2.0),
        celery_broker_url=broker,
        celery_result_backend=os.getenv("CELERY_RESULT_BACKEND", broker),
        timezone=os.getenv("APP_TIMEZONE", "UTC"),
        low_stock_alerts_enabled=_env_bool("LOW_STOCK_ALERTS_ENABLED", True),
        stock_overview_cache_ttl=_env_int("STOCK_OVERVIEW_CACHE_TTL", 30),
        low_stock_scan_debounce_ms=_env_int("LOW_STOCK_SCAN_DEBOUNCE_MS", 500),
        low_stock_scan_interval_s=_env_int("LOW_STOCK_SCAN_INTERVAL_S", 15 * 60),
        uow_retry_count=max(1, _env_int("UOW_RETRY_COUNT", 3)),
        uow_deadline_s=_env_float("UOW_DEADLINE_S", 10.0),
        frontend_origins=[o.strip() for o in origins.split(",") if o.strip()],
    )


load_env_files()
settings = load_settings()
