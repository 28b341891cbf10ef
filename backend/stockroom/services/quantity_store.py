"""
Guarded primitives over ``StockLevel`` and the ``StockMove`` log.

All reads lock the level rows (``SELECT ... FOR UPDATE``, a no-op on SQLite
where ``BEGIN IMMEDIATE`` already serializes writers) and always in
(product_id, bin_id) order.
"""

from __future__ import annotations

import logging
from typing import Callable, Iterable, Optional

from sqlmodel import Session, select

from stockroom.core.errors import InsufficientStock, InvariantViolation
from stockroom.models import MoveReason, StockLevel, StockMove, utcnow

logger = logging.getLogger(__name__)

_MOVE_REFS = {
    "work_order_id",
    "work_order_part_id",
    "sale_id",
    "sale_item_id",
    "invoice_id",
    "purchase_order_id",
    "purchase_order_line_id",
    "serial_number_id",
    "notes",
}


def _positive(n) -> int:
    if isinstance(n, bool) or not isinstance(n, int) or n <= 0:
        raise InvariantViolation(f"quantity must be a positive integer, got {n!r}")
    return n


class QuantityStore:
    def __init__(
        self,
        session: Session,
        *,
        performed_by: Optional[int] = None,
        checkpoint: Optional[Callable[[], None]] = None,
    ):
        self.session = session
        self.performed_by = performed_by
        self._checkpoint = checkpoint or (lambda: None)
        self.last_move: Optional[StockMove] = None

    # ----------------------------------------------------------------- reads
    def lock_products(self, product_ids: Iterable[int]) -> list[StockLevel]:
        ids = sorted(set(product_ids))
        if not ids:
            return []
        stmt = (
            select(StockLevel)
            .where(StockLevel.product_id.in_(ids))
            .order_by(StockLevel.product_id, StockLevel.bin_id)
            .with_for_update()
        )
        return list(self.session.exec(stmt))

    def levels(self, product_id: int) -> list[StockLevel]:
        return self.lock_products([product_id])

    def get(self, product_id: int, bin_id: int) -> Optional[StockLevel]:
        stmt = (
            select(StockLevel)
            .where(StockLevel.product_id == product_id, StockLevel.bin_id == bin_id)
            .with_for_update()
        )
        return self.session.exec(stmt).first()

    def ensure(self, product_id: int, bin_id: int) -> StockLevel:
        level = self.get(product_id, bin_id)
        if level is None:
            level = StockLevel(product_id=product_id, bin_id=bin_id, on_hand=0, reserved=0)
            self.session.add(level)
            self.session.flush()
        return level

    # ------------------------------------------------------------ primitives
    def inc_on_hand(self, product_id: int, bin_id: int, n: int) -> StockLevel:
        _positive(n)
        self._checkpoint()
        level = self.ensure(product_id, bin_id)
        level.on_hand += n
        return self._touch(level)

    def dec_on_hand(self, product_id: int, bin_id: int, n: int) -> StockLevel:
        _positive(n)
        self._checkpoint()
        level = self.get(product_id, bin_id)
        on_hand = level.on_hand if level else 0
        reserved = level.reserved if level else 0
        if on_hand - n < 0:
            raise InsufficientStock(
                f"bin {bin_id} holds {on_hand} of product {product_id}, cannot remove {n}",
                product_id=product_id, bin_id=bin_id,
            )
        if on_hand - n < reserved:
            raise InsufficientStock(
                f"removing {n} from bin {bin_id} would leave on_hand below reserved ({reserved})",
                product_id=product_id, bin_id=bin_id,
            )
        level.on_hand -= n
        return self._touch(level)

    def inc_reserved(self, product_id: int, bin_id: int, n: int) -> StockLevel:
        _positive(n)
        self._checkpoint()
        level = self.get(product_id, bin_id)
        if level is None or level.reserved + n > level.on_hand:
            available = level.available if level else 0
            raise InsufficientStock(
                f"bin {bin_id} has {available} available of product {product_id}, cannot reserve {n}",
                product_id=product_id, bin_id=bin_id,
            )
        level.reserved += n
        return self._touch(level)

    def dec_reserved(self, product_id: int, bin_id: int, n: int) -> StockLevel:
        _positive(n)
        self._checkpoint()
        level = self.get(product_id, bin_id)
        if level is None or level.reserved - n < 0:
            reserved = level.reserved if level else 0
            raise InvariantViolation(
                f"reserved of product {product_id} in bin {bin_id} would go negative ({reserved} - {n})",
                product_id=product_id, bin_id=bin_id,
            )
        level.reserved -= n
        return self._touch(level)

    def record_move(
        self,
        product_id: int,
        qty: int,
        reason,
        *,
        from_bin_id: Optional[int] = None,
        to_bin_id: Optional[int] = None,
        **refs,
    ) -> StockMove:
        _positive(qty)
        try:
            reason = MoveReason(reason)
        except ValueError as exc:
            raise InvariantViolation(f"unknown movement reason {reason!r}") from exc
        if from_bin_id is None and to_bin_id is None:
            raise InvariantViolation("a movement needs a source or a destination bin")
        unknown = set(refs) - _MOVE_REFS
        if unknown:
            raise InvariantViolation(f"unknown movement refs: {sorted(unknown)}")
        move = StockMove(
            product_id=product_id,
            qty=qty,
            reason=reason,
            from_bin_id=from_bin_id,
            to_bin_id=to_bin_id,
            performed_by=self.performed_by,
            **refs,
        )
        self.session.add(move)
        self.session.flush()
        self.last_move = move
        logger.debug(
            f"[store] move#{move.id} {reason.value} p={product_id} qty={qty} {from_bin_id}->{to_bin_id}"
        )
        return move

    def _touch(self, level: StockLevel) -> StockLevel:
        level.updated_at = utcnow()
        self.session.add(level)
        return level
