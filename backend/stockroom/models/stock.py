from datetime import datetime
from typing import Optional

from sqlalchemy import CheckConstraint, UniqueConstraint
from sqlmodel import Field

from .base import MoveReason, TenantScoped, enum_column, utcnow


class StockLevel(TenantScoped, table=True):
    """On-hand / reserved counters of one product in one bin.

    A missing row is an implicit zero.  Rows are only mutated through
    ``stockroom.services.quantity_store.QuantityStore``.
    """

    __tablename__ = "stock_levels"
    __table_args__ = (
        UniqueConstraint("product_id", "bin_id", name="uq_stock_levels_product_bin"),
        CheckConstraint("on_hand >= 0", name="ck_stock_levels_on_hand"),
        CheckConstraint("reserved >= 0", name="ck_stock_levels_reserved"),
        CheckConstraint("reserved <= on_hand", name="ck_stock_levels_reserved_le_on_hand"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    product_id: int = Field(foreign_key="products.id", index=True)
    bin_id: int = Field(foreign_key="bins.id", index=True)
    on_hand: int = Field(default=0)
    reserved: int = Field(default=0)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def available(self) -> int:
        return self.on_hand - self.reserved


class StockMove(TenantScoped, table=True):
    """Append-only movement log; sufficient to replay every level."""

    __tablename__ = "stock_moves"
    __table_args__ = (
        CheckConstraint("qty > 0", name="ck_stock_moves_qty"),
        CheckConstraint(
            "from_bin_id IS NOT NULL OR to_bin_id IS NOT NULL", name="ck_stock_moves_has_bin"
        ),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    product_id: int = Field(foreign_key="products.id", index=True)
    qty: int
    from_bin_id: Optional[int] = Field(default=None, foreign_key="bins.id")
    to_bin_id: Optional[int] = Field(default=None, foreign_key="bins.id")
    reason: MoveReason = Field(sa_column=enum_column(MoveReason, index=True))

    # owner refs
    work_order_id: Optional[int] = Field(default=None, foreign_key="work_orders.id", index=True)
    work_order_part_id: Optional[int] = Field(default=None, foreign_key="work_order_parts.id", index=True)
    sale_id: Optional[int] = Field(default=None, foreign_key="sales.id", index=True)
    sale_item_id: Optional[int] = Field(default=None, foreign_key="sale_items.id", index=True)
    invoice_id: Optional[int] = Field(default=None, index=True)
    purchase_order_id: Optional[int] = Field(default=None, foreign_key="purchase_orders.id")
    purchase_order_line_id: Optional[int] = Field(default=None, foreign_key="purchase_order_lines.id")
    serial_number_id: Optional[int] = Field(default=None, foreign_key="serial_numbers.id")

    performed_by: Optional[int] = None
    notes: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow, index=True)
