"""
Reservation coordinator: the stock verbs.

Every verb runs inside the caller's :class:`UnitOfWork`, goes through the
quantity store (never touching level rows directly) and updates the owning
workflow line in the same transaction.  A workflow line is any row with an
``owner_column`` naming its ref on ``StockMove`` and a ``movement_refs()``
method (``WorkOrderPart``, ``SaleItem``).

The per-owner reservation distribution is not stored: it is the signed sum
of the owner's ``reserve`` (+) and ``release`` / ``pick`` / ``invoice_sale``
(-) movements, grouped by bin.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import Optional, Sequence

from sqlalchemy import func
from sqlmodel import select

from stockroom.core.errors import DomainError, InsufficientStock, InvariantViolation, NotFound
from stockroom.models import (
    MoveReason,
    Product,
    PurchaseOrderLine,
    SaleItem,
    SerialNumber,
    SerialStatus,
    StockMove,
    WorkOrderPart,
)
from stockroom.services.serial_tracker import RETURN_SOURCES, SerialTracker

logger = logging.getLogger(__name__)

_RESERVATION_SIGN = {
    MoveReason.reserve: 1,
    MoveReason.release: -1,
    MoveReason.pick: -1,
    MoveReason.invoice_sale: -1,
}


class ReservationCoordinator:
    def __init__(self, uow):
        self.uow = uow
        self.session = uow.session
        self.store = uow.store
        self.serials = SerialTracker(self.session, self.store)

    # ------------------------------------------------------------ lookups
    def product(self, product_id: int) -> Product:
        product = self.session.get(Product, product_id)
        if product is None:
            raise NotFound(f"product {product_id} not found")
        return product

    def bulk_only(self, product: Product) -> None:
        """Serial-tracked stock leaves a bin only through the serial verbs."""
        if product.track_serial:
            raise DomainError("serials-required", f"{product.sku} is serial tracked; name the serials")

    def reserved_distribution(self, line) -> dict[int, int]:
        owner = getattr(StockMove, line.owner_column)
        stmt = (
            select(StockMove.from_bin_id, StockMove.reason, func.sum(StockMove.qty))
            .where(owner == line.id, StockMove.reason.in_(list(_RESERVATION_SIGN)))
            .group_by(StockMove.from_bin_id, StockMove.reason)
        )
        dist: dict[int, int] = defaultdict(int)
        for bin_id, reason, total in self.session.exec(stmt):
            dist[bin_id] += _RESERVATION_SIGN[MoveReason(reason)] * int(total or 0)
        return {b: q for b, q in sorted(dist.items()) if q > 0}

    def owned_reserved(self, product_id: int) -> dict[int, int]:
        """Reserved units per bin that belong to a work-order part or sale line."""
        stmt = (
            select(StockMove.from_bin_id, StockMove.reason, func.sum(StockMove.qty))
            .where(
                StockMove.product_id == product_id,
                StockMove.reason.in_(list(_RESERVATION_SIGN)),
                (StockMove.work_order_part_id.is_not(None)) | (StockMove.sale_item_id.is_not(None)),
            )
            .group_by(StockMove.from_bin_id, StockMove.reason)
        )
        owned: dict[int, int] = defaultdict(int)
        for bin_id, reason, total in self.session.exec(stmt):
            owned[bin_id] += _RESERVATION_SIGN[MoveReason(reason)] * int(total or 0)
        return {b: q for b, q in owned.items() if q > 0}

    # ------------------------------------------------------------ reserve
    def reserve(self, product: Product, qty: int, line, *, allow_partial: bool = False) -> int:
        """Greedy fill by descending availability; returns the amount reserved."""
        if qty <= 0:
            return 0
        self.bulk_only(product)
        levels = self.store.levels(product.id)
        available = sum(max(0, lvl.available) for lvl in levels)
        if available < qty and not allow_partial:
            raise InsufficientStock(
                f"only {available} of {product.sku} available, {qty} requested",
                product_id=product.id, requested=qty, available=available,
            )
        remaining = min(qty, available)
        taken_total = 0
        for lvl in sorted(levels, key=lambda l: (-l.available, l.bin_id)):
            if remaining <= 0:
                break
            take = min(lvl.available, remaining)
            if take <= 0:
                continue
            self.store.inc_reserved(product.id, lvl.bin_id, take)
            self.store.record_move(
                product.id, take, MoveReason.reserve, from_bin_id=lvl.bin_id, **line.movement_refs()
            )
            remaining -= take
            taken_total += take
        line.qty_reserved += taken_total
        self.session.add(line)
        return taken_total

    def reserve_serials(self, product: Product, serial_ids: Sequence[int], line, qty: int) -> int:
        if len(set(serial_ids)) != qty:
            raise DomainError("serial-count-mismatch", f"{qty} serials required, got {len(set(serial_ids))}")
        for serial in self.serials.lock(serial_ids):
            if serial.product_id != product.id:
                raise DomainError("serial-product-mismatch", f"serial {serial.serial} is not {product.sku}")
            self.serials.reserve(serial, line)
        line.qty_reserved += qty
        self.session.add(line)
        return qty

    # --------------------------------------------------------------- pick
    def pick(self, product: Product, qty: int, bin_id: int, line) -> None:
        self.bulk_only(product)
        if line.qty_reserved < qty:
            raise InsufficientStock(f"line holds {line.qty_reserved} reserved, cannot pick {qty}")
        held = self.reserved_distribution(line).get(bin_id, 0)
        if held < qty:
            raise InsufficientStock(
                f"line holds {held} reserved in bin {bin_id}, cannot pick {qty}", bin_id=bin_id
            )
        level = self.store.get(product.id, bin_id)
        if level is None or level.reserved < qty or level.on_hand < qty:
            raise InsufficientStock(f"bin {bin_id} cannot supply {qty} of {product.sku}", bin_id=bin_id)
        self.store.dec_reserved(product.id, bin_id, qty)
        self.store.dec_on_hand(product.id, bin_id, qty)
        self.store.record_move(product.id, qty, MoveReason.pick, from_bin_id=bin_id, **line.movement_refs())
        line.qty_reserved -= qty
        line.qty_picked += qty
        self.session.add(line)

    def pick_serials(self, product: Product, serial_ids: Sequence[int], bin_id: int, line) -> None:
        serials = self.serials.lock(serial_ids)
        if line.qty_reserved < len(serials):
            raise InsufficientStock(f"line holds {line.qty_reserved} reserved, cannot pick {len(serials)}")
        for serial in serials:
            if serial.product_id != product.id:
                raise DomainError("serial-product-mismatch", f"serial {serial.serial} is not {product.sku}")
            self.serials.pick(serial, line, bin_id)
        line.qty_reserved -= len(serials)
        line.qty_picked += len(serials)
        self.session.add(line)

    # ------------------------------------------------------------- return
    def return_(self, product: Product, qty: int, bin_id: int, line, source: str = "picked", faulty: bool = False) -> None:
        if source not in RETURN_SOURCES:
            raise DomainError("invalid-return-source", f"source must be one of {RETURN_SOURCES}")
        refs = line.movement_refs()
        if source == "picked":
            if line.qty_picked < qty:
                raise DomainError("over-return", f"cannot return {qty}, only {line.qty_picked} picked")
            self.store.inc_on_hand(product.id, bin_id, qty)
            self.store.record_move(product.id, qty, MoveReason.return_, to_bin_id=bin_id, **refs)
            line.qty_picked -= qty
        else:
            if line.qty_reserved < qty:
                raise DomainError("over-release", f"cannot release {qty}, only {line.qty_reserved} reserved")
            held = self.reserved_distribution(line).get(bin_id, 0)
            if held < qty:
                raise InsufficientStock(f"line holds {held} reserved in bin {bin_id}, cannot release {qty}")
            self.store.dec_reserved(product.id, bin_id, qty)
            self.store.record_move(product.id, qty, MoveReason.release, from_bin_id=bin_id, **refs)
            line.qty_reserved -= qty
        if faulty:
            self.store.dec_on_hand(product.id, bin_id, qty)
            self.store.record_move(product.id, qty, MoveReason.rma_out, from_bin_id=bin_id, **refs)
        self.session.add(line)

    def return_serials(
        self, product: Product, serial_ids: Sequence[int], bin_id: Optional[int], line,
        source: str = "picked", faulty: bool = False,
    ) -> None:
        serials = self.serials.lock(serial_ids)
        for serial in serials:
            if serial.product_id != product.id:
                raise DomainError("serial-product-mismatch", f"serial {serial.serial} is not {product.sku}")
            self.serials.return_(serial, line, bin_id, source, faulty)
        if source == "picked":
            if line.qty_picked < len(serials):
                raise DomainError("over-return", f"cannot return {len(serials)}, only {line.qty_picked} picked")
            line.qty_picked -= len(serials)
        else:
            line.qty_reserved -= len(serials)
        self.session.add(line)

    # ------------------------------------------------------------ release
    def release(self, line) -> int:
        """Cancel every outstanding reservation of *line*; returns the amount released."""
        released = 0
        if isinstance(line, WorkOrderPart):
            for serial in self.serials.reserved_for(line):
                self.serials.return_(serial, line, serial.bin_id, "reserved", False)
                released += 1
        product_id = line.product_id
        for bin_id, qty in self.reserved_distribution(line).items():
            self.store.dec_reserved(product_id, bin_id, qty)
            self.store.record_move(product_id, qty, MoveReason.release, from_bin_id=bin_id, **line.movement_refs())
            released += qty
        if released != line.qty_reserved:
            raise InvariantViolation(
                f"line {line.id} counts {line.qty_reserved} reserved but movements hold {released}"
            )
        line.qty_reserved = 0
        self.session.add(line)
        return released

    # ------------------------------------------------------------ consume
    def consume(self, line: SaleItem, qty: Optional[int] = None, invoice_id: Optional[int] = None) -> int:
        """Ship reserved stock in the bins the reservation was taken from."""
        qty = line.qty_reserved if qty is None else qty
        if qty <= 0:
            return 0
        dist = self.reserved_distribution(line)
        if sum(dist.values()) < qty:
            raise InvariantViolation(
                f"line {line.id} reservation distribution holds {sum(dist.values())}, {qty} to consume"
            )
        remaining = qty
        for bin_id, held in dist.items():
            if remaining <= 0:
                break
            take = min(held, remaining)
            level = self.store.get(line.product_id, bin_id)
            if level is None or level.reserved < take or level.on_hand < take:
                raise InsufficientStock(f"bin {bin_id} cannot ship {take}", bin_id=bin_id)
            self.store.dec_reserved(line.product_id, bin_id, take)
            self.store.dec_on_hand(line.product_id, bin_id, take)
            self.store.record_move(
                line.product_id, take, MoveReason.invoice_sale,
                from_bin_id=bin_id, invoice_id=invoice_id, **line.movement_refs(),
            )
            remaining -= take
        line.qty_reserved -= qty
        line.qty_shipped += qty
        self.session.add(line)
        return qty

    def fulfil(
        self, product: Product, qty: int, invoice_id: int, bin_id: Optional[int] = None
    ) -> list[StockMove]:
        """Ship free stock for an invoice line that holds no reservation.

        Bins are tapped by on-hand, fullest first; reserved units are never
        touched.
        """
        self.bulk_only(product)
        levels = self.store.levels(product.id)
        if bin_id is not None:
            levels = [l for l in levels if l.bin_id == bin_id]
        if not levels:
            raise DomainError("no-stock-levels", f"{product.sku} has no stock levels to ship from")
        free = sum(max(0, l.available) for l in levels)
        if free < qty:
            raise InsufficientStock(
                f"only {free} of {product.sku} free to ship, {qty} invoiced",
                product_id=product.id, requested=qty, available=free,
            )
        moves: list[StockMove] = []
        remaining = qty
        for lvl in sorted(levels, key=lambda l: (-l.on_hand, l.bin_id)):
            if remaining <= 0:
                break
            take = min(max(0, lvl.available), remaining)
            if take <= 0:
                continue
            self.store.dec_on_hand(product.id, lvl.bin_id, take)
            moves.append(
                self.store.record_move(
                    product.id, take, MoveReason.invoice_sale, from_bin_id=lvl.bin_id, invoice_id=invoice_id
                )
            )
            remaining -= take
        return moves

    # ------------------------------------------------------------ receive
    def receive(
        self, product: Product, qty: int, bin_id: int, line: PurchaseOrderLine,
        serials: Optional[Sequence[str]] = None,
    ) -> None:
        if qty <= 0:
            raise DomainError("invalid-qty", "receipt qty must be at least 1")
        if qty > line.remaining:
            raise DomainError("over-receipt", f"cannot receive {qty}, only {line.remaining} outstanding")
        refs = line.movement_refs()
        if product.track_serial:
            values = [s.strip() for s in (serials or []) if s and s.strip()]
            if len(values) != qty or len(set(values)) != qty:
                raise DomainError("serials-required", f"{qty} distinct serials required for {product.sku}")
            self.store.inc_on_hand(product.id, bin_id, qty)
            for value in values:
                serial = self.serials.receive(product, value, bin_id)
                self.store.record_move(
                    product.id, 1, MoveReason.receive_po, to_bin_id=bin_id, serial_number_id=serial.id, **refs
                )
        else:
            self.store.inc_on_hand(product.id, bin_id, qty)
            self.store.record_move(product.id, qty, MoveReason.receive_po, to_bin_id=bin_id, **refs)
        line.qty_received += qty
        self.session.add(line)

    # --------------------------------------------------------- manual moves
    def move(
        self, product: Product, qty: int, from_bin_id: Optional[int], to_bin_id: Optional[int],
        reason=MoveReason.transfer, notes: Optional[str] = None,
    ) -> StockMove:
        if from_bin_id is None and to_bin_id is None:
            raise DomainError("bin-required", "a move needs a source or a destination bin")
        if from_bin_id is not None and from_bin_id == to_bin_id:
            raise DomainError("same-bin", "source and destination bins must differ")
        if from_bin_id is not None:
            self.bulk_only(product)
        if from_bin_id is not None:
            self.store.dec_on_hand(product.id, from_bin_id, qty)
        if to_bin_id is not None:
            self.store.inc_on_hand(product.id, to_bin_id, qty)
        return self.store.record_move(
            product.id, qty, reason, from_bin_id=from_bin_id, to_bin_id=to_bin_id, notes=notes
        )

    def transfer(self, product: Product, qty: int, from_bin_id: int, to_bin_id: int) -> StockMove:
        if from_bin_id is None or to_bin_id is None:
            raise DomainError("bin-required", "a transfer needs both bins")
        return self.move(product, qty, from_bin_id, to_bin_id, MoveReason.transfer)

    def adjust_to(
        self, product: Product, target_on_hand: Optional[int] = None, target_reserved: Optional[int] = None
    ) -> list[StockMove]:
        """Bring the product totals to the targets.

        Order: reserved decreases, on-hand changes, reserved increases.
        Reserved decreases only touch ownerless reservations; units held by
        a work-order part or sale line must be released through their owner.
        On-hand increases land in the first bin; decreases only take free
        stock, from the fullest bin down.
        """
        self.bulk_only(product)
        levels = self.store.levels(product.id)
        if not levels:
            raise DomainError("no-stock-levels", f"{product.sku} has no stock levels to adjust")
        cur_on = sum(l.on_hand for l in levels)
        cur_res = sum(l.reserved for l in levels)
        t_on = cur_on if target_on_hand is None else target_on_hand
        t_res = cur_res if target_reserved is None else target_reserved
        if t_on < 0 or t_res < 0:
            raise DomainError("negative-target", "targets must be non-negative")
        if t_res > t_on:
            raise DomainError("reserved-exceeds-on-hand", "target reserved cannot exceed target on hand")

        moves: list[StockMove] = []
        pid = product.id

        drop = cur_res - t_res
        owned = self.owned_reserved(pid) if drop > 0 else {}
        if drop > 0 and t_res < sum(owned.values()):
            raise DomainError(
                "reserved-held-by-owners",
                f"{sum(owned.values())} of {product.sku} is reserved by open orders; release them there",
            )
        for lvl in sorted(levels, key=lambda l: (-(l.reserved - owned.get(l.bin_id, 0)), l.bin_id)):
            if drop <= 0:
                break
            take = min(lvl.reserved - owned.get(lvl.bin_id, 0), drop)
            if take > 0:
                self.store.dec_reserved(pid, lvl.bin_id, take)
                moves.append(self.store.record_move(pid, take, MoveReason.release, from_bin_id=lvl.bin_id))
                drop -= take

        delta = t_on - cur_on
        if delta > 0:
            first = min(levels, key=lambda l: l.bin_id)
            self.store.inc_on_hand(pid, first.bin_id, delta)
            moves.append(self.store.record_move(pid, delta, MoveReason.adjust, to_bin_id=first.bin_id))
        elif delta < 0:
            need = -delta
            if sum(max(0, l.available) for l in levels) < need:
                raise InsufficientStock(f"cannot remove {need} of {product.sku}: stock is reserved")
            for lvl in sorted(levels, key=lambda l: (-l.on_hand, l.bin_id)):
                if need <= 0:
                    break
                take = min(lvl.available, need)
                if take > 0:
                    self.store.dec_on_hand(pid, lvl.bin_id, take)
                    moves.append(self.store.record_move(pid, take, MoveReason.adjust, from_bin_id=lvl.bin_id))
                    need -= take

        grow = t_res - cur_res
        for lvl in sorted(levels, key=lambda l: (-l.available, l.bin_id)):
            if grow <= 0:
                break
            take = min(lvl.available, grow)
            if take > 0:
                self.store.inc_reserved(pid, lvl.bin_id, take)
                moves.append(self.store.record_move(pid, take, MoveReason.reserve, from_bin_id=lvl.bin_id))
                grow -= take
        if grow > 0:
            raise InsufficientStock(f"cannot reserve {grow} more of {product.sku}")
        return moves

    # ----------------------------------------------------------- write-off
    def write_off_product(self, product: Product) -> list:
        """Release every owner, then write on-hand off to zero.  Returns the released lines."""
        released_lines: list = []
        for model in (WorkOrderPart, SaleItem):
            stmt = (
                select(model)
                .where(model.product_id == product.id, model.qty_reserved > 0)
                .order_by(model.id)
                .with_for_update()
            )
            for line in self.session.exec(stmt):
                self.release(line)
                released_lines.append(line)

        for lvl in self.store.levels(product.id):
            if lvl.reserved > 0:
                self.store.dec_reserved(product.id, lvl.bin_id, lvl.reserved)
                self.store.record_move(product.id, lvl.reserved, MoveReason.release, from_bin_id=lvl.bin_id)
        for lvl in self.store.levels(product.id):
            if lvl.on_hand > 0:
                qty = lvl.on_hand
                self.store.dec_on_hand(product.id, lvl.bin_id, qty)
                self.store.record_move(product.id, qty, MoveReason.adjust, from_bin_id=lvl.bin_id)

        stmt = select(SerialNumber).where(
            SerialNumber.product_id == product.id,
            SerialNumber.status.in_([SerialStatus.available, SerialStatus.reserved]),
        )
        for serial in self.session.exec(stmt):
            serial.status = SerialStatus.returned
            serial.bin_id = None
            serial.work_order_id = None
            self.session.add(serial)
        logger.info(f"[coordinator] wrote off {product.sku}, released {len(released_lines)} line(s)")
        return released_lines

    # ------------------------------------------------------------- serials
    def mark_serial_faulty(self, serial: SerialNumber) -> None:
        was_reserved = serial.status == SerialStatus.reserved
        assignment = self.serials.mark_faulty(serial)
        if was_reserved and assignment is not None:
            part = self.session.get(WorkOrderPart, assignment.work_order_part_id)
            part.qty_reserved -= 1
            self.session.add(part)
