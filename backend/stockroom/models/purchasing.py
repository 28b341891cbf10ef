from datetime import datetime
from typing import Optional

from sqlalchemy import CheckConstraint, UniqueConstraint
from sqlmodel import Field

from .base import PurchaseOrderStatus, TenantScoped, enum_column, utcnow


class PurchaseOrder(TenantScoped, table=True):
    __tablename__ = "purchase_orders"
    __table_args__ = (UniqueConstraint("organization_id", "reference", name="uq_purchase_orders_org_ref"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    reference: str = Field(max_length=64)
    supplier_id: int = Field(foreign_key="suppliers.id")
    status: PurchaseOrderStatus = Field(
        default=PurchaseOrderStatus.draft, sa_column=enum_column(PurchaseOrderStatus)
    )
    expected_at: Optional[datetime] = None
    total_cost: float = Field(default=0.0)
    created_at: datetime = Field(default_factory=utcnow)


class PurchaseOrderLine(TenantScoped, table=True):
    __tablename__ = "purchase_order_lines"
    __table_args__ = (
        CheckConstraint("qty_ordered > 0", name="ck_po_lines_ordered"),
        CheckConstraint("qty_received <= qty_ordered", name="ck_po_lines_received_le_ordered"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    purchase_order_id: int = Field(foreign_key="purchase_orders.id", index=True)
    product_id: int = Field(foreign_key="products.id")
    qty_ordered: int
    qty_received: int = Field(default=0)
    unit_cost: float = Field(default=0.0)

    @property
    def remaining(self) -> int:
        return self.qty_ordered - self.qty_received

    def movement_refs(self) -> dict:
        return {"purchase_order_id": self.purchase_order_id, "purchase_order_line_id": self.id}
