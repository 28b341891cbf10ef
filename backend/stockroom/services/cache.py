"""
Redis cache for the per-tenant stock overview.

Key: ``cache:stock:overview:v1:<organization_id>``, TTL
``settings.overview_cache_ttl`` (never below 5 s).  Every stock event drops
the tenant's entry.  Redis being down only costs a cache miss.
"""

from __future__ import annotations

import json
import logging
from typing import Optional

from stockroom.core.config import settings
from stockroom.core.redis_client import get_redis

logger = logging.getLogger(__name__)

OVERVIEW_KEY = "cache:stock:overview:v1"


def overview_key(organization_id: int) -> str:
    return f"{OVERVIEW_KEY}:{organization_id}"


def get_cached_overview(organization_id: int) -> Optional[dict]:
    r = get_redis()
    if r is None:
        return None
    try:
        raw = r.get(overview_key(organization_id))
        return json.loads(raw) if raw else None
    except Exception as e:  # noqa: BLE001
        logger.warning(f"[cache] read failed for org={organization_id}: {e}")
        return None


def set_cached_overview(organization_id: int, payload: dict, ttl: Optional[int] = None) -> bool:
    r = get_redis()
    if r is None:
        return False
    try:
        r.setex(
            overview_key(organization_id),
            max(5, int(ttl or settings.overview_cache_ttl)),
            json.dumps(payload, ensure_ascii=False, default=str),
        )
        return True
    except Exception as e:  # noqa: BLE001
        logger.warning(f"[cache] write failed for org={organization_id}: {e}")
        return False


def invalidate_overview(organization_id: int) -> bool:
    r = get_redis()
    if r is None:
        return False
    try:
        r.delete(overview_key(organization_id))
        return True
    except Exception as e:  # noqa: BLE001
        logger.warning(f"[cache] invalidate failed for org={organization_id}: {e}")
        return False


def invalidate_on_event(event) -> None:
    invalidate_overview(event.organization_id)
