from datetime import datetime
from typing import ClassVar, Optional

from sqlalchemy import CheckConstraint
from sqlmodel import Field

from .base import SaleStatus, TenantScoped, enum_column, utcnow


class Sale(TenantScoped, table=True):
    __tablename__ = "sales"

    id: Optional[int] = Field(default=None, primary_key=True)
    customer_id: Optional[int] = Field(default=None, foreign_key="customers.id")
    reference: Optional[str] = None
    notes: Optional[str] = None
    status: SaleStatus = Field(default=SaleStatus.reserved, sa_column=enum_column(SaleStatus))
    reserved_at: Optional[datetime] = None
    backordered_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    canceled_at: Optional[datetime] = None
    created_by: Optional[int] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class SaleItem(TenantScoped, table=True):
    __tablename__ = "sale_items"
    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_sale_items_quantity"),
        CheckConstraint("qty_reserved >= 0", name="ck_sale_items_reserved"),
        CheckConstraint("qty_reserved <= quantity", name="ck_sale_items_reserved_le_qty"),
        CheckConstraint("qty_shipped <= quantity", name="ck_sale_items_shipped_le_qty"),
    )

    owner_column: ClassVar[str] = "sale_item_id"

    id: Optional[int] = Field(default=None, primary_key=True)
    sale_id: int = Field(foreign_key="sales.id", index=True)
    product_id: int = Field(foreign_key="products.id", index=True)
    quantity: int
    qty_reserved: int = Field(default=0)
    qty_shipped: int = Field(default=0)
    unit_price: float = Field(default=0.0)

    @property
    def shortfall(self) -> int:
        return max(0, self.quantity - self.qty_shipped - self.qty_reserved)

    def movement_refs(self) -> dict:
        return {"sale_id": self.sale_id, "sale_item_id": self.id}
