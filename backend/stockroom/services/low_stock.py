"""
Low-stock scanner.

A product is low when ``sum(on_hand - reserved) <= reorder_point`` over its
bins (no levels counts as zero).  Scans run

* on demand, after stock events: ``enqueue_low_stock_scan`` collapses
  requests per tenant through a Redis ``SET NX PX`` key and schedules
  ``stock.low_stock_scan`` with a 250-500 ms countdown;
* periodically: the beat entry ``low-stock-sweep`` runs
  ``stock.low_stock_sweep`` over every organization.

A non-empty snapshot publishes ``low-stock`` on the tenant's hint channel
when the tenant has ``low_stock_alerts_enabled``.
"""

from __future__ import annotations

import logging
import time
from typing import Optional

from sqlalchemy import func
from sqlmodel import Session, select

from stockroom.core.celery_app import celery_app
from stockroom.core.config import settings
from stockroom.core.context import bypass_tenant_scope, tenant_scope
from stockroom.core.database import engine
from stockroom.core.redis_client import get_redis
from stockroom.models import Organization, Product, StockLevel
from stockroom.services.cache import invalidate_overview
from stockroom.services.org_settings import low_stock_alerts_enabled
from stockroom.services.realtime import publish_low_stock

logger = logging.getLogger(__name__)

SCAN_KEY = "queue:low-stock:scan"


def calculate_low_stock_snapshot(session: Session) -> list[dict]:
    """Active products of the bound tenant at or below their reorder point."""
    available = func.coalesce(func.sum(StockLevel.on_hand - StockLevel.reserved), 0)
    stmt = (
        select(Product.id, Product.sku, Product.name, Product.reorder_point, available)
        .select_from(Product)
        .outerjoin(StockLevel, StockLevel.product_id == Product.id)
        .where(Product.active == True)  # noqa: E712
        .group_by(Product.id, Product.sku, Product.name, Product.reorder_point)
        .order_by(Product.sku)
    )
    items = []
    for pid, sku, name, reorder_point, avail in session.exec(stmt):
        avail = int(avail or 0)
        if avail <= int(reorder_point or 0):
            items.append(
                {"product_id": pid, "sku": sku, "name": name, "available": avail, "reorder_point": reorder_point}
            )
    return items


def run_low_stock_scan(organization_id: int) -> dict:
    start = time.perf_counter()
    with tenant_scope(organization_id), Session(engine) as ses:
        items = calculate_low_stock_snapshot(ses)
        enabled = low_stock_alerts_enabled(ses)
    alerted = bool(items) and enabled and publish_low_stock(organization_id, items)
    invalidate_overview(organization_id)
    logger.info(f"[low-stock] org={organization_id} low={len(items)} alerted={alerted}")
    return {
        "organization_id": organization_id,
        "count": len(items),
        "alerted": bool(alerted),
        "items": items,
        "elapsed_sec": round(time.perf_counter() - start, 3),
    }


@celery_app.task(bind=True, name="stock.low_stock_scan", queue="stock")
def low_stock_scan(self, organization_id: int) -> dict:  # noqa: ARG001
    return run_low_stock_scan(int(organization_id))


@celery_app.task(name="stock.low_stock_sweep", queue="stock")
def low_stock_sweep() -> dict:
    with bypass_tenant_scope(), Session(engine) as ses:
        org_ids = list(ses.exec(select(Organization.id).order_by(Organization.id)))
    results = [run_low_stock_scan(org_id) for org_id in org_ids]
    return {"organizations": len(results), "low": sum(r["count"] for r in results)}


def enqueue_low_stock_scan(organization_id: int, delay_ms: Optional[int] = None) -> bool:
    """Schedule a scan unless one is already pending for the tenant."""
    delay = settings.scan_debounce_ms if delay_ms is None else min(500, max(250, int(delay_ms)))
    r = get_redis()
    if r is not None:
        try:
            if not r.set(f"{SCAN_KEY}:{organization_id}", "1", nx=True, px=delay):
                return False
        except Exception as e:  # noqa: BLE001
            logger.warning(f"[low-stock] dedupe key unavailable for org={organization_id}: {e}")
    try:
        low_stock_scan.apply_async(args=[organization_id], countdown=delay / 1000.0, retry=False)
        return True
    except Exception as e:  # noqa: BLE001
        logger.warning(f"[low-stock] failed to enqueue scan for org={organization_id}: {e}")
        return False


def trigger_on_event(event) -> None:
    enqueue_low_stock_scan(event.organization_id)
