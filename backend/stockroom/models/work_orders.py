from datetime import datetime
from typing import ClassVar, Optional

from sqlalchemy import CheckConstraint
from sqlmodel import Field

from .base import TenantScoped, WorkOrderStatus, enum_column, utcnow


class WorkOrder(TenantScoped, table=True):
    __tablename__ = "work_orders"

    id: Optional[int] = Field(default=None, primary_key=True)
    customer_id: Optional[int] = Field(default=None, foreign_key="customers.id")
    customer_name: str
    device_info: str
    device_serial: Optional[str] = None
    priority: str = Field(default="normal")
    status: WorkOrderStatus = Field(default=WorkOrderStatus.intake, sa_column=enum_column(WorkOrderStatus))
    intake_notes: Optional[str] = None
    assigned_to: Optional[int] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class WorkOrderPart(TenantScoped, table=True):
    __tablename__ = "work_order_parts"
    __table_args__ = (
        CheckConstraint("qty_reserved >= 0", name="ck_wo_parts_reserved"),
        CheckConstraint("qty_picked >= 0", name="ck_wo_parts_picked"),
        CheckConstraint("qty_reserved + qty_picked <= qty_needed", name="ck_wo_parts_le_needed"),
    )

    owner_column: ClassVar[str] = "work_order_part_id"

    id: Optional[int] = Field(default=None, primary_key=True)
    work_order_id: int = Field(foreign_key="work_orders.id", index=True)
    product_id: int = Field(foreign_key="products.id", index=True)
    qty_needed: int = Field(default=1)
    qty_reserved: int = Field(default=0)
    qty_picked: int = Field(default=0)

    def movement_refs(self) -> dict:
        return {"work_order_id": self.work_order_id, "work_order_part_id": self.id}


class WorkOrderStatusHistory(TenantScoped, table=True):
    __tablename__ = "work_order_status_history"

    id: Optional[int] = Field(default=None, primary_key=True)
    work_order_id: int = Field(foreign_key="work_orders.id", index=True)
    from_status: Optional[str] = None
    to_status: str
    note: Optional[str] = None
    performed_by: Optional[int] = None
    created_at: datetime = Field(default_factory=utcnow)
