"""
Sale adapter.

Sales reserve with partial fulfilment allowed: a sale is ``reserved`` when
every line is fully reserved and ``backorder`` otherwise.  ``complete``
ships the reservations (``invoice_sale`` movements) and needs every line
fully reserved; ``cancel`` releases them.  Sale lines are always handled as
bulk quantities.
"""

from __future__ import annotations

import logging
from typing import Iterable, Optional

from sqlmodel import Session, select

from stockroom.core.context import Actor
from stockroom.core.errors import DomainError, NotFound
from stockroom.models import Customer, Product, Sale, SaleItem, SaleStatus, utcnow
from stockroom.services.coordinator import ReservationCoordinator
from stockroom.services.unit_of_work import UnitOfWork, run_in_unit_of_work, run_read

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = {"notes", "reference", "customer_id"}


def _load_sale(session: Session, sale_id: int, lock: bool = False) -> Sale:
    stmt = select(Sale).where(Sale.id == sale_id)
    if lock:
        stmt = stmt.with_for_update()
    sale = session.exec(stmt).first()
    if sale is None:
        raise NotFound(f"sale {sale_id} not found")
    return sale


def _items(session: Session, sale: Sale, lock: bool = False) -> list[SaleItem]:
    stmt = select(SaleItem).where(SaleItem.sale_id == sale.id).order_by(SaleItem.product_id, SaleItem.id)
    if lock:
        stmt = stmt.with_for_update()
    return list(session.exec(stmt))


def serialize_sale(session: Session, sale: Sale) -> dict:
    data = sale.model_dump(mode="json")
    data["items"] = [i.model_dump(mode="json") | {"shortfall": i.shortfall} for i in _items(session, sale)]
    return data


def _reserve_shortfalls(coord: ReservationCoordinator, items: list[SaleItem]) -> int:
    taken = 0
    for item in items:
        if item.shortfall > 0:
            taken += coord.reserve(coord.product(item.product_id), item.shortfall, item, allow_partial=True)
    return taken


def _restate(sale: Sale, items: list[SaleItem]) -> None:
    now = utcnow()
    fully = all(i.shortfall == 0 for i in items)
    any_reserved = any(i.qty_reserved > 0 for i in items)
    if fully:
        sale.status = SaleStatus.reserved
        sale.reserved_at = sale.reserved_at or now
        sale.backordered_at = None
    else:
        sale.status = SaleStatus.backorder
        sale.backordered_at = now
        if any_reserved and sale.reserved_at is None:
            sale.reserved_at = now
    sale.updated_at = now


def create_sale(
    actor: Actor,
    items: Iterable[dict],
    *,
    customer_id: Optional[int] = None,
    reference: Optional[str] = None,
    notes: Optional[str] = None,
) -> dict:
    """items: ``[{"product_id", "quantity", "unit_price"?}]``."""
    items = list(items)
    if not items:
        raise DomainError("items-required", "a sale needs at least one item")

    def work(uow: UnitOfWork) -> dict:
        ses = uow.session
        if customer_id is not None and ses.get(Customer, customer_id) is None:
            raise NotFound(f"customer {customer_id} not found")
        sale = Sale(customer_id=customer_id, reference=reference, notes=notes, created_by=actor.user_id)
        ses.add(sale)
        ses.flush()
        rows = []
        for item in items:
            product = ses.get(Product, item["product_id"])
            if product is None:
                raise NotFound(f"product {item['product_id']} not found")
            if not product.active:
                raise DomainError("product-inactive", f"{product.sku} is archived")
            row = SaleItem(
                sale_id=sale.id,
                product_id=product.id,
                quantity=int(item["quantity"]),
                unit_price=float(item.get("unit_price", product.unit_price) or 0),
            )
            ses.add(row)
            rows.append(row)
        ses.flush()
        rows.sort(key=lambda r: (r.product_id, r.id))
        _reserve_shortfalls(ReservationCoordinator(uow), rows)
        _restate(sale, rows)
        ses.add(sale)
        ses.flush()
        uow.emit("sale-created", sale_id=sale.id, status=sale.status.value)
        return serialize_sale(ses, sale)

    return run_in_unit_of_work(actor, work)


def reserve(actor: Actor, sale_id: int) -> dict:
    def work(uow: UnitOfWork) -> dict:
        ses = uow.session
        sale = _load_sale(ses, sale_id, lock=True)
        if sale.status == SaleStatus.complete:
            raise DomainError("completed-sale-locked", f"sale {sale.id} is complete")
        if sale.status == SaleStatus.canceled:
            raise DomainError("sale-canceled", f"sale {sale.id} is canceled")
        items = _items(ses, sale, lock=True)
        taken = _reserve_shortfalls(ReservationCoordinator(uow), items)
        _restate(sale, items)
        ses.add(sale)
        ses.flush()
        uow.emit("sale-reserve", sale_id=sale.id, status=sale.status.value, reserved=taken)
        return serialize_sale(ses, sale)

    return run_in_unit_of_work(actor, work)


def complete(actor: Actor, sale_id: int, invoice_id: Optional[int] = None) -> dict:
    def work(uow: UnitOfWork) -> dict:
        ses = uow.session
        sale = _load_sale(ses, sale_id, lock=True)
        if sale.status == SaleStatus.complete:
            raise DomainError("completed-sale-locked", f"sale {sale.id} is already complete")
        if sale.status == SaleStatus.canceled:
            raise DomainError("sale-canceled", f"sale {sale.id} is canceled")
        items = _items(ses, sale, lock=True)
        if sale.status == SaleStatus.backorder or any(i.shortfall > 0 for i in items):
            raise DomainError("sale-backordered", f"sale {sale.id} has outstanding backordered items")
        coord = ReservationCoordinator(uow)
        for item in items:
            coord.consume(item, invoice_id=invoice_id)
        now = utcnow()
        sale.status = SaleStatus.complete
        sale.completed_at = now
        sale.updated_at = now
        ses.add(sale)
        ses.flush()
        uow.emit("sale-complete", sale_id=sale.id, invoice_id=invoice_id)
        logger.info(f"[sales] #{sale.id} complete")
        return serialize_sale(ses, sale)

    return run_in_unit_of_work(actor, work)


def cancel(actor: Actor, sale_id: int) -> dict:
    def work(uow: UnitOfWork) -> dict:
        ses = uow.session
        sale = _load_sale(ses, sale_id, lock=True)
        if sale.status == SaleStatus.complete:
            raise DomainError("completed-sale-locked", f"sale {sale.id} is complete")
        if sale.status == SaleStatus.canceled:
            return serialize_sale(ses, sale)
        coord = ReservationCoordinator(uow)
        released = sum(coord.release(item) for item in _items(ses, sale, lock=True) if item.qty_reserved > 0)
        now = utcnow()
        sale.status = SaleStatus.canceled
        sale.canceled_at = now
        sale.updated_at = now
        ses.add(sale)
        ses.flush()
        uow.emit("sale-cancel", sale_id=sale.id, released=released)
        return serialize_sale(ses, sale)

    return run_in_unit_of_work(actor, work)


def update_details(actor: Actor, sale_id: int, fields: dict) -> dict:
    unknown = set(fields) - EDITABLE_FIELDS
    if unknown:
        raise DomainError("field-not-editable", f"cannot edit {sorted(unknown)}")

    def work(uow: UnitOfWork) -> dict:
        ses = uow.session
        sale = _load_sale(ses, sale_id, lock=True)
        if sale.status in (SaleStatus.complete, SaleStatus.canceled):
            raise DomainError("sale-locked", f"sale {sale.id} is {sale.status.value}")
        if fields.get("customer_id") is not None and ses.get(Customer, fields["customer_id"]) is None:
            raise NotFound(f"customer {fields['customer_id']} not found")
        for key, value in fields.items():
            setattr(sale, key, value)
        sale.updated_at = utcnow()
        ses.add(sale)
        ses.flush()
        return serialize_sale(ses, sale)

    return run_in_unit_of_work(actor, work)


def get(actor: Actor, sale_id: int) -> dict:
    return run_read(actor, lambda ses: serialize_sale(ses, _load_sale(ses, sale_id)))


def list_sales(actor: Actor, status: Optional[str] = None) -> list[dict]:
    try:
        wanted = SaleStatus(status) if status else None
    except ValueError as exc:
        raise DomainError("invalid-status", f"unknown sale status {status!r}") from exc

    def read(ses: Session) -> list[dict]:
        stmt = select(Sale).order_by(Sale.created_at.desc(), Sale.id.desc())
        if wanted is not None:
            stmt = stmt.where(Sale.status == wanted)
        return [serialize_sale(ses, s) for s in ses.exec(stmt)]

    return run_read(actor, read)
