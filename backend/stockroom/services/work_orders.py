"""Work-order adapter: parts reservation, picking, returns and status flow."""

from __future__ import annotations

import logging
from typing import Iterable, Optional

from sqlmodel import Session, select

from stockroom.core.context import Actor
from stockroom.core.errors import DomainError, NotFound
from stockroom.models import (
    Product,
    WorkOrder,
    WorkOrderPart,
    WorkOrderStatus,
    WorkOrderStatusHistory,
    utcnow,
)
from stockroom.services.coordinator import ReservationCoordinator
from stockroom.services.unit_of_work import UnitOfWork, run_in_unit_of_work, run_read

logger = logging.getLogger(__name__)


# --------------------------------------------------------------------------- #
# Loading / serialisation                                                     #
# --------------------------------------------------------------------------- #


def _load_order(session: Session, work_order_id: int, lock: bool = False) -> WorkOrder:
    stmt = select(WorkOrder).where(WorkOrder.id == work_order_id)
    if lock:
        stmt = stmt.with_for_update()
    wo = session.exec(stmt).first()
    if wo is None:
        raise NotFound(f"work order {work_order_id} not found")
    return wo


# no new reservations or picks once closed; returns still put stock back
CLOSED_STATUSES = {WorkOrderStatus.canceled, WorkOrderStatus.completed}


def _require_open(wo: WorkOrder) -> None:
    if wo.status in CLOSED_STATUSES:
        raise DomainError("work-order-closed", f"work order {wo.id} is {wo.status.value}")


def _load_part(session: Session, wo: WorkOrder, part_id: int) -> WorkOrderPart:
    part = session.exec(select(WorkOrderPart).where(WorkOrderPart.id == part_id).with_for_update()).first()
    if part is None:
        raise NotFound(f"part {part_id} not found")
    if part.work_order_id != wo.id:
        raise DomainError("part-mismatch", f"part {part_id} does not belong to work order {wo.id}")
    return part


def serialize_work_order(session: Session, wo: WorkOrder) -> dict:
    parts = session.exec(
        select(WorkOrderPart).where(WorkOrderPart.work_order_id == wo.id).order_by(WorkOrderPart.id)
    ).all()
    history = session.exec(
        select(WorkOrderStatusHistory)
        .where(WorkOrderStatusHistory.work_order_id == wo.id)
        .order_by(WorkOrderStatusHistory.id)
    ).all()
    data = wo.model_dump(mode="json")
    data["parts"] = [p.model_dump(mode="json") for p in parts]
    data["status_history"] = [h.model_dump(mode="json") for h in history]
    return data


def _log_status(session: Session, wo: WorkOrder, from_status, to_status, note, user_id) -> None:
    session.add(
        WorkOrderStatusHistory(
            work_order_id=wo.id,
            from_status=from_status.value if from_status is not None else None,
            to_status=to_status.value,
            note=note,
            performed_by=user_id,
        )
    )


# --------------------------------------------------------------------------- #
# Operations                                                                  #
# --------------------------------------------------------------------------- #


def create(
    actor: Actor,
    customer_name: str,
    device_info: str,
    parts: Iterable[dict] = (),
    *,
    device_serial: Optional[str] = None,
    priority: str = "normal",
    intake_notes: Optional[str] = None,
    customer_id: Optional[int] = None,
) -> dict:
    parts = list(parts)

    def work(uow: UnitOfWork) -> dict:
        ses = uow.session
        wo = WorkOrder(
            customer_name=customer_name,
            device_info=device_info,
            device_serial=device_serial,
            priority=priority,
            intake_notes=intake_notes,
            customer_id=customer_id,
        )
        ses.add(wo)
        ses.flush()
        for p in parts:
            product = ses.get(Product, p["product_id"])
            if product is None:
                raise NotFound(f"product {p['product_id']} not found")
            ses.add(WorkOrderPart(work_order_id=wo.id, product_id=product.id, qty_needed=int(p["qty"])))
        _log_status(ses, wo, None, wo.status, "created", actor.user_id)
        ses.flush()
        return serialize_work_order(ses, wo)

    return run_in_unit_of_work(actor, work)


def reserve_parts(actor: Actor, work_order_id: int, items: Iterable[dict], *, deadline_s: Optional[float] = None) -> dict:
    """items: ``[{"part_id", "qty", "serial_ids"?}]``."""
    items = list(items)

    def work(uow: UnitOfWork) -> dict:
        ses = uow.session
        wo = _load_order(ses, work_order_id, lock=True)
        _require_open(wo)
        coord = ReservationCoordinator(uow)
        loaded = []
        for item in sorted(items, key=lambda i: i["part_id"]):
            part = _load_part(ses, wo, item["part_id"])
            loaded.append((coord.product(part.product_id), part, item))

        # levels are locked in product order
        for product, part, item in sorted(loaded, key=lambda t: (t[0].id, t[1].id)):
            serial_ids = list(item.get("serial_ids") or [])
            qty = int(item.get("qty") or len(serial_ids))
            if product.track_serial and not serial_ids:
                raise DomainError("serials-required", f"{product.sku} is serial-tracked; pass serial_ids")
            if part.qty_reserved + part.qty_picked + qty > part.qty_needed:
                raise DomainError(
                    "over-reservation",
                    f"part {part.id} needs {part.qty_needed}, has {part.qty_reserved} reserved "
                    f"and {part.qty_picked} picked",
                )
            if product.track_serial:
                coord.reserve_serials(product, serial_ids, part, qty)
            else:
                coord.reserve(product, qty, part)

        uow.emit("reserve", work_order_id=wo.id, part_ids=sorted(p.id for _, p, _ in loaded))
        return serialize_work_order(ses, wo)

    return run_in_unit_of_work(actor, work, deadline_s=deadline_s)


def pick_part(
    actor: Actor,
    work_order_id: int,
    part_id: int,
    bin_id: int,
    qty: Optional[int] = None,
    serial_ids: Optional[list[int]] = None,
) -> dict:
    def work(uow: UnitOfWork) -> dict:
        ses = uow.session
        wo = _load_order(ses, work_order_id, lock=True)
        _require_open(wo)
        part = _load_part(ses, wo, part_id)
        coord = ReservationCoordinator(uow)
        product = coord.product(part.product_id)
        if product.track_serial:
            if not serial_ids:
                raise DomainError("serials-required", f"{product.sku} is serial-tracked; pass serial_ids")
            coord.pick_serials(product, serial_ids, bin_id, part)
        else:
            if not qty:
                raise DomainError("qty-required", "qty must be a positive integer")
            coord.pick(product, int(qty), bin_id, part)
        uow.emit("pick", work_order_id=wo.id, part_id=part.id, bin_id=bin_id)
        return {"ok": True, "move_id": uow.store.last_move.id}

    return run_in_unit_of_work(actor, work)


def return_part(
    actor: Actor,
    work_order_id: int,
    part_id: int,
    bin_id: int,
    qty: Optional[int] = None,
    source: str = "picked",
    faulty: bool = False,
    serial_ids: Optional[list[int]] = None,
) -> dict:
    def work(uow: UnitOfWork) -> dict:
        ses = uow.session
        wo = _load_order(ses, work_order_id, lock=True)
        part = _load_part(ses, wo, part_id)
        coord = ReservationCoordinator(uow)
        product = coord.product(part.product_id)
        if uow.store.get(product.id, bin_id) is None:
            raise DomainError("bin-missing-for-product", f"bin {bin_id} does not track {product.sku}")
        if product.track_serial:
            if not serial_ids:
                raise DomainError("serials-required", f"{product.sku} is serial-tracked; pass serial_ids")
            coord.return_serials(product, serial_ids, bin_id, part, source, faulty)
        else:
            if not qty:
                raise DomainError("qty-required", "qty must be a positive integer")
            coord.return_(product, int(qty), bin_id, part, source, faulty)
        kind = "return" if source == "picked" else "release"
        uow.emit(kind, work_order_id=wo.id, part_id=part.id, bin_id=bin_id, faulty=faulty or None)
        return {"ok": True, "move_id": uow.store.last_move.id}

    return run_in_unit_of_work(actor, work)


def update_status(actor: Actor, work_order_id: int, new_status: str, note: Optional[str] = None) -> dict:
    try:
        target = WorkOrderStatus(new_status)
    except ValueError as exc:
        raise DomainError("invalid-status", f"unknown work order status {new_status!r}") from exc

    def work(uow: UnitOfWork) -> dict:
        ses = uow.session
        wo = _load_order(ses, work_order_id, lock=True)
        previous = wo.status
        if previous == WorkOrderStatus.canceled and target != WorkOrderStatus.canceled:
            raise DomainError("work-order-canceled", f"work order {wo.id} is canceled")
        if previous == target:
            return serialize_work_order(ses, wo)

        if target == WorkOrderStatus.canceled:
            coord = ReservationCoordinator(uow)
            parts = ses.exec(
                select(WorkOrderPart)
                .where(WorkOrderPart.work_order_id == wo.id, WorkOrderPart.qty_reserved > 0)
                .order_by(WorkOrderPart.product_id, WorkOrderPart.id)
                .with_for_update()
            ).all()
            released = sum(coord.release(part) for part in parts)
            uow.emit("release", work_order_id=wo.id, released=released)

        wo.status = target
        wo.updated_at = utcnow()
        ses.add(wo)
        _log_status(ses, wo, previous, target, note, actor.user_id)
        ses.flush()
        logger.info(f"[work-orders] #{wo.id} {previous.value} -> {target.value}")
        return serialize_work_order(ses, wo)

    return run_in_unit_of_work(actor, work)


def get(actor: Actor, work_order_id: int) -> dict:
    return run_read(actor, lambda ses: serialize_work_order(ses, _load_order(ses, work_order_id)))


def list_orders(actor: Actor, status: Optional[str] = None) -> list[dict]:
    try:
        wanted = WorkOrderStatus(status) if status else None
    except ValueError as exc:
        raise DomainError("invalid-status", f"unknown work order status {status!r}") from exc

    def read(ses: Session) -> list[dict]:
        stmt = select(WorkOrder).order_by(WorkOrder.created_at.desc(), WorkOrder.id.desc())
        if wanted is not None:
            stmt = stmt.where(WorkOrder.status == wanted)
        return [serialize_work_order(ses, wo) for wo in ses.exec(stmt)]

    return run_read(actor, read)
