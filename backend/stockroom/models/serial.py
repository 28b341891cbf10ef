from datetime import datetime
from typing import Optional

from sqlalchemy import UniqueConstraint
from sqlmodel import Field

from .base import AssignmentStatus, SerialStatus, TenantScoped, enum_column, utcnow


class SerialNumber(TenantScoped, table=True):
    __tablename__ = "serial_numbers"
    __table_args__ = (UniqueConstraint("organization_id", "serial", name="uq_serial_numbers_org_serial"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    serial: str = Field(max_length=191)
    product_id: int = Field(foreign_key="products.id", index=True)
    # set while available/reserved, null once assigned or faulty
    bin_id: Optional[int] = Field(default=None, foreign_key="bins.id")
    status: SerialStatus = Field(default=SerialStatus.available, sa_column=enum_column(SerialStatus))
    work_order_id: Optional[int] = Field(default=None, foreign_key="work_orders.id")
    last_seen_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)


class SerialAssignment(TenantScoped, table=True):
    """History of a serial's holds on a work-order part; latest row wins."""

    __tablename__ = "serial_assignments"

    id: Optional[int] = Field(default=None, primary_key=True)
    serial_number_id: int = Field(foreign_key="serial_numbers.id", index=True)
    work_order_part_id: int = Field(foreign_key="work_order_parts.id", index=True)
    work_order_id: int = Field(foreign_key="work_orders.id")
    status: AssignmentStatus = Field(
        default=AssignmentStatus.reserved, sa_column=enum_column(AssignmentStatus)
    )
    reserved_at: Optional[datetime] = Field(default_factory=utcnow)
    picked_at: Optional[datetime] = None
    returned_at: Optional[datetime] = None
    notes: Optional[str] = None
    performed_by: Optional[int] = None
