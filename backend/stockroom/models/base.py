from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from sqlalchemy import Column
from sqlalchemy import Enum as SAEnum
from sqlmodel import Field, SQLModel


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def enum_column(enum_cls: type[Enum], **kwargs) -> Column:
    """VARCHAR column holding the enum *values* (not member names)."""
    return Column(
        SAEnum(
            enum_cls,
            name=enum_cls.__name__.lower(),
            native_enum=False,
            length=32,
            values_callable=lambda members: [m.value for m in members],
        ),
        nullable=False,
        **kwargs,
    )


class TenantScoped(SQLModel):
    """Mixin: every row belongs to exactly one organization."""

    organization_id: Optional[int] = Field(
        default=None, foreign_key="organizations.id", index=True, nullable=False
    )


class MoveReason(str, Enum):
    receive = "receive"
    receive_po = "receive_po"
    adjust = "adjust"
    transfer = "transfer"
    reserve = "reserve"
    release = "release"
    pick = "pick"
    return_ = "return"
    invoice_sale = "invoice_sale"
    rma_out = "rma_out"


class SerialStatus(str, Enum):
    available = "available"
    reserved = "reserved"
    assigned = "assigned"
    returned = "returned"
    faulty = "faulty"


class AssignmentStatus(str, Enum):
    reserved = "reserved"
    picked = "picked"
    returned = "returned"
    released = "released"
    faulty = "faulty"


class WorkOrderStatus(str, Enum):
    intake = "intake"
    diagnostics = "diagnostics"
    awaiting_approval = "awaiting_approval"
    approved = "approved"
    in_progress = "in_progress"
    awaiting_parts = "awaiting_parts"
    completed = "completed"
    canceled = "canceled"


class SaleStatus(str, Enum):
    reserved = "reserved"
    backorder = "backorder"
    complete = "complete"
    canceled = "canceled"


class PurchaseOrderStatus(str, Enum):
    draft = "draft"
    ordered = "ordered"
    partially_received = "partially_received"
    received = "received"
    closed = "closed"
