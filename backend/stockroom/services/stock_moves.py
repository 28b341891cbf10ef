"""Manual stock adapter (moves, level adjustments) and stock read models."""

from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy import func
from sqlmodel import Session, select

from stockroom.core.context import Actor
from stockroom.core.errors import DomainError, NotFound
from stockroom.models import Bin, MoveReason, Product, StockLevel, StockMove
from stockroom.services import cache, history
from stockroom.services.coordinator import ReservationCoordinator
from stockroom.services.low_stock import calculate_low_stock_snapshot
from stockroom.services.org_settings import get_setting
from stockroom.services.unit_of_work import UnitOfWork, run_in_unit_of_work, run_read

logger = logging.getLogger(__name__)

# reservation-bearing reasons are owned by the workflows
MANUAL_REASONS = {MoveReason.receive, MoveReason.adjust, MoveReason.transfer, MoveReason.return_}

RECENT_ACTIVITY = 5


def _product(session: Session, product_id: int) -> Product:
    product = session.get(Product, product_id)
    if product is None:
        raise NotFound(f"product {product_id} not found")
    return product


def _bin(session: Session, bin_id: Optional[int]) -> Optional[Bin]:
    if bin_id is None:
        return None
    row = session.get(Bin, bin_id)
    if row is None:
        raise NotFound(f"bin {bin_id} not found")
    return row


def move(
    actor: Actor,
    product_id: int,
    qty: int,
    from_bin_id: Optional[int] = None,
    to_bin_id: Optional[int] = None,
    reason: str = "transfer",
    notes: Optional[str] = None,
) -> dict:
    try:
        why = MoveReason(reason)
    except ValueError as exc:
        raise DomainError("invalid-reason", f"unknown movement reason {reason!r}") from exc
    if why not in MANUAL_REASONS:
        raise DomainError("invalid-reason", f"{reason} moves are made by the workflows")

    def work(uow: UnitOfWork) -> dict:
        ses = uow.session
        product = _product(ses, product_id)
        if not product.active:
            raise DomainError("product-inactive", f"{product.sku} is archived")
        _bin(ses, from_bin_id)
        _bin(ses, to_bin_id)
        mv = ReservationCoordinator(uow).move(product, qty, from_bin_id, to_bin_id, why, notes)
        uow.emit("move", product_id=product.id, move_id=mv.id, reason=why.value)
        return {"ok": True, "move_id": mv.id}

    return run_in_unit_of_work(actor, work)


def adjust_levels(
    actor: Actor,
    product_id: int,
    on_hand: Optional[int] = None,
    reserved: Optional[int] = None,
) -> dict:
    if on_hand is None and reserved is None:
        raise DomainError("nothing-to-adjust", "pass on_hand and/or reserved")

    def work(uow: UnitOfWork) -> dict:
        ses = uow.session
        product = _product(ses, product_id)
        moves = ReservationCoordinator(uow).adjust_to(product, on_hand, reserved)
        uow.emit("adjust", product_id=product.id, moves=len(moves))
        return _product_levels(ses, product)

    return run_in_unit_of_work(actor, work)


# --------------------------------------------------------------------------- #
# Read models                                                                 #
# --------------------------------------------------------------------------- #


def _product_levels(session: Session, product: Product) -> dict:
    rows = session.exec(
        select(StockLevel, Bin.code)
        .join(Bin, Bin.id == StockLevel.bin_id)
        .where(StockLevel.product_id == product.id)
        .order_by(StockLevel.bin_id)
    ).all()
    levels = [
        {
            "bin_id": lvl.bin_id,
            "bin_code": code,
            "on_hand": lvl.on_hand,
            "reserved": lvl.reserved,
            "available": lvl.available,
        }
        for lvl, code in rows
    ]
    return {
        "product_id": product.id,
        "sku": product.sku,
        "on_hand": sum(l["on_hand"] for l in levels),
        "reserved": sum(l["reserved"] for l in levels),
        "available": sum(l["available"] for l in levels),
        "levels": levels,
    }


def summary(actor: Actor, product_id: Optional[int] = None, include_archived: bool = False) -> list[dict]:
    """Per-product totals with their bin levels."""

    def read(ses: Session) -> list[dict]:
        stmt = select(Product).order_by(Product.sku)
        if product_id is not None:
            stmt = stmt.where(Product.id == product_id)
        if not include_archived:
            stmt = stmt.where(Product.active == True)  # noqa: E712
        return [_product_levels(ses, p) for p in ses.exec(stmt)]

    return run_read(actor, read)


def build_overview(session: Session) -> dict:
    product_count = session.exec(
        select(func.count()).select_from(Product).where(Product.active == True)  # noqa: E712
    ).one()
    reserved = session.exec(select(func.coalesce(func.sum(StockLevel.reserved), 0))).one()
    recent = session.exec(select(StockMove).order_by(StockMove.id.desc()).limit(RECENT_ACTIVITY)).all()
    return {
        "product_count": int(product_count or 0),
        "low_stock_count": len(calculate_low_stock_snapshot(session)),
        "reserved_count": int(reserved or 0),
        "recent_activity": [
            {
                "id": m.id,
                "product_id": m.product_id,
                "qty": m.qty,
                "reason": m.reason.value,
                "from_bin_id": m.from_bin_id,
                "to_bin_id": m.to_bin_id,
                "created_at": m.created_at.isoformat() if m.created_at else None,
            }
            for m in recent
        ],
    }


def overview(actor: Actor) -> dict:
    """Cached tenant overview (``cache:stock:overview:v1:<org>``)."""
    cached = cache.get_cached_overview(actor.organization_id)
    if cached is not None:
        return cached

    def read(ses: Session) -> tuple[dict, int]:
        return build_overview(ses), int(get_setting(ses, "stock_overview_cache_ttl"))

    payload, ttl = run_read(actor, read)
    cache.set_cached_overview(actor.organization_id, payload, ttl)
    return payload


def product_history(actor: Actor, product_id: int, limit: Optional[int] = None) -> dict:
    def read(ses: Session) -> dict:
        product = _product(ses, product_id)
        return {
            "product_id": product.id,
            "sku": product.sku,
            "moves": history.level_history(ses, product.id, limit),
        }

    return run_read(actor, read)
