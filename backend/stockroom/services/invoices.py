"""
Invoice adapter: ship invoiced lines straight from free stock.

Used when an invoice is raised without a sale carrying the reservation.
Each line takes unreserved on-hand, fullest bin first (or only the named
bin), and is recorded as an ownerless ``invoice_sale`` movement tagged with
the invoice id.  An invoice ships once.
"""

from __future__ import annotations

import logging
from typing import Iterable

from sqlmodel import Session, select

from stockroom.core.context import Actor
from stockroom.core.errors import DomainError, NotFound
from stockroom.models import Bin, MoveReason, StockMove
from stockroom.services.coordinator import ReservationCoordinator
from stockroom.services.unit_of_work import UnitOfWork, run_in_unit_of_work, run_read

logger = logging.getLogger(__name__)


def _shipped(session: Session, invoice_id: int) -> list[StockMove]:
    stmt = (
        select(StockMove)
        .where(
            StockMove.invoice_id == invoice_id,
            StockMove.reason == MoveReason.invoice_sale,
            StockMove.sale_item_id.is_(None),
        )
        .order_by(StockMove.id)
    )
    return list(session.exec(stmt))


def serialize_fulfilment(session: Session, invoice_id: int) -> dict:
    moves = _shipped(session, invoice_id)
    return {
        "invoice_id": invoice_id,
        "fulfilled": bool(moves),
        "moves": [
            {"move_id": m.id, "product_id": m.product_id, "bin_id": m.from_bin_id, "qty": m.qty} for m in moves
        ],
    }


def fulfil_invoice(actor: Actor, invoice_id: int, lines: Iterable[dict]) -> dict:
    """lines: ``[{"product_id", "qty", "bin_id"?}]``."""
    lines = list(lines)
    if not lines:
        raise DomainError("lines-required", "an invoice needs at least one line to fulfil")
    for line in lines:
        if int(line["qty"]) <= 0:
            raise DomainError("invalid-qty", "invoice line qty must be at least 1")

    def work(uow: UnitOfWork) -> dict:
        ses = uow.session
        if _shipped(ses, invoice_id):
            raise DomainError("invoice-fulfilled", f"invoice {invoice_id} has already been fulfilled")

        coord = ReservationCoordinator(uow)
        for line in sorted(lines, key=lambda l: (l["product_id"], l.get("bin_id") or 0)):
            product = coord.product(line["product_id"])
            if not product.active:
                raise DomainError("product-inactive", f"{product.sku} is archived")
            bin_id = line.get("bin_id")
            if bin_id is not None and ses.get(Bin, bin_id) is None:
                raise NotFound(f"bin {bin_id} not found")
            coord.fulfil(product, int(line["qty"]), invoice_id, bin_id)

        uow.emit("invoice-fulfil", invoice_id=invoice_id, lines=len(lines))
        logger.info(f"[invoices] #{invoice_id} fulfilled ({len(lines)} line(s))")
        return serialize_fulfilment(ses, invoice_id)

    return run_in_unit_of_work(actor, work)


def get_fulfilment(actor: Actor, invoice_id: int) -> dict:
    return run_read(actor, lambda ses: serialize_fulfilment(ses, invoice_id))
