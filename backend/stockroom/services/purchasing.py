"""Purchase-order adapter: suppliers, PO creation and receipts."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Iterable, Optional

from sqlmodel import Session, select

from stockroom.core.context import Actor
from stockroom.core.errors import DomainError, NotFound
from stockroom.models import (
    Bin,
    Product,
    PurchaseOrder,
    PurchaseOrderLine,
    PurchaseOrderStatus,
    Supplier,
)
from stockroom.services.coordinator import ReservationCoordinator
from stockroom.services.unit_of_work import UnitOfWork, run_in_unit_of_work, run_read

logger = logging.getLogger(__name__)


def _load_po(session: Session, po_id: int, lock: bool = False) -> PurchaseOrder:
    stmt = select(PurchaseOrder).where(PurchaseOrder.id == po_id)
    if lock:
        stmt = stmt.with_for_update()
    po = session.exec(stmt).first()
    if po is None:
        raise NotFound(f"purchase order {po_id} not found")
    return po


def _lines(session: Session, po: PurchaseOrder, lock: bool = False) -> list[PurchaseOrderLine]:
    stmt = (
        select(PurchaseOrderLine)
        .where(PurchaseOrderLine.purchase_order_id == po.id)
        .order_by(PurchaseOrderLine.id)
    )
    if lock:
        stmt = stmt.with_for_update()
    return list(session.exec(stmt))


def serialize_po(session: Session, po: PurchaseOrder) -> dict:
    data = po.model_dump(mode="json")
    data["lines"] = [l.model_dump(mode="json") | {"remaining": l.remaining} for l in _lines(session, po)]
    return data


def derive_status(lines: list[PurchaseOrderLine]) -> PurchaseOrderStatus:
    if lines and all(l.qty_received >= l.qty_ordered for l in lines):
        return PurchaseOrderStatus.received
    if any(l.qty_received > 0 for l in lines):
        return PurchaseOrderStatus.partially_received
    return PurchaseOrderStatus.ordered


def create_supplier(actor: Actor, name: str, **fields) -> dict:
    def work(uow: UnitOfWork) -> dict:
        supplier = Supplier(name=name, **fields)
        uow.session.add(supplier)
        uow.session.flush()
        return supplier.model_dump(mode="json")

    return run_in_unit_of_work(actor, work)


def create_po(
    actor: Actor,
    reference: str,
    supplier_id: int,
    lines: Iterable[dict],
    expected_at: Optional[datetime] = None,
) -> dict:
    """lines: ``[{"product_id", "qty_ordered", "unit_cost"?}]``."""
    lines = list(lines)
    if not lines:
        raise DomainError("lines-required", "a purchase order needs at least one line")

    def work(uow: UnitOfWork) -> dict:
        ses = uow.session
        if ses.get(Supplier, supplier_id) is None:
            raise NotFound(f"supplier {supplier_id} not found")
        if ses.exec(select(PurchaseOrder).where(PurchaseOrder.reference == reference)).first() is not None:
            raise DomainError("duplicate-reference", f"purchase order {reference} already exists")
        po = PurchaseOrder(
            reference=reference,
            supplier_id=supplier_id,
            expected_at=expected_at,
            status=PurchaseOrderStatus.ordered,
        )
        ses.add(po)
        ses.flush()
        total = 0.0
        for line in lines:
            product = ses.get(Product, line["product_id"])
            if product is None:
                raise NotFound(f"product {line['product_id']} not found")
            unit_cost = float(line.get("unit_cost") or 0)
            ses.add(
                PurchaseOrderLine(
                    purchase_order_id=po.id,
                    product_id=product.id,
                    qty_ordered=int(line["qty_ordered"]),
                    unit_cost=unit_cost,
                )
            )
            total += int(line["qty_ordered"]) * unit_cost
        po.total_cost = round(total, 2)
        ses.add(po)
        ses.flush()
        return serialize_po(ses, po)

    return run_in_unit_of_work(actor, work)


def receive(actor: Actor, po_id: int, receipts: Iterable[dict]) -> dict:
    """receipts: ``[{"line_id", "qty", "bin_id", "serials"?}]``."""
    receipts = list(receipts)
    if not receipts:
        raise DomainError("receipts-required", "nothing to receive")

    def work(uow: UnitOfWork) -> dict:
        ses = uow.session
        po = _load_po(ses, po_id, lock=True)
        if po.status in (PurchaseOrderStatus.closed, PurchaseOrderStatus.draft):
            raise DomainError("po-not-receivable", f"purchase order {po.reference} is {po.status.value}")
        lines = {l.id: l for l in _lines(ses, po, lock=True)}
        coord = ReservationCoordinator(uow)

        resolved = []
        for receipt in receipts:
            line = lines.get(receipt["line_id"])
            if line is None:
                if ses.get(PurchaseOrderLine, receipt["line_id"]) is None:
                    raise NotFound(f"purchase order line {receipt['line_id']} not found")
                raise DomainError("line-mismatch", f"line {receipt['line_id']} is not on {po.reference}")
            if ses.get(Bin, receipt["bin_id"]) is None:
                raise NotFound(f"bin {receipt['bin_id']} not found")
            resolved.append((line, receipt))

        for line, receipt in sorted(resolved, key=lambda t: (t[0].product_id, t[1]["bin_id"], t[0].id)):
            product = coord.product(line.product_id)
            coord.receive(product, int(receipt["qty"]), receipt["bin_id"], line, receipt.get("serials"))

        po.status = derive_status(list(lines.values()))
        ses.add(po)
        ses.flush()
        uow.emit("receive", purchase_order_id=po.id, status=po.status.value)
        logger.info(f"[purchasing] {po.reference} -> {po.status.value}")
        return serialize_po(ses, po)

    return run_in_unit_of_work(actor, work)


def get(actor: Actor, po_id: int) -> dict:
    return run_read(actor, lambda ses: serialize_po(ses, _load_po(ses, po_id)))


def list_pos(actor: Actor) -> list[dict]:
    def read(ses: Session) -> list[dict]:
        stmt = select(PurchaseOrder).order_by(PurchaseOrder.created_at.desc(), PurchaseOrder.id.desc())
        return [serialize_po(ses, po) for po in ses.exec(stmt)]

    return run_read(actor, read)
