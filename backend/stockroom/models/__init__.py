"""
Aggregate export for all SQLModel table classes.

Having each model re-exported here guarantees that ``import stockroom.models``
registers every table in ``SQLModel.metadata``, so ``create_all`` and Alembic
``--autogenerate`` see the complete schema.
"""

from .base import (  # noqa: F401
    AssignmentStatus,
    MoveReason,
    PurchaseOrderStatus,
    SaleStatus,
    SerialStatus,
    TenantScoped,
    WorkOrderStatus,
    utcnow,
)

# --- Tenancy ---------------------------------------------------------------
from .organization import Organization, OrganizationSetting  # noqa: F401

# --- Catalogue -------------------------------------------------------------
from .catalog import Bin, Customer, Location, Product, Supplier  # noqa: F401

# --- Workflows -------------------------------------------------------------
from .work_orders import WorkOrder, WorkOrderPart, WorkOrderStatusHistory  # noqa: F401
from .sales import Sale, SaleItem  # noqa: F401
from .purchasing import PurchaseOrder, PurchaseOrderLine  # noqa: F401

# --- Serials ---------------------------------------------------------------
from .serial import SerialAssignment, SerialNumber  # noqa: F401

# --- Stock -----------------------------------------------------------------
from .stock import StockLevel, StockMove  # noqa: F401

__all__ = [
    "AssignmentStatus",
    "MoveReason",
    "PurchaseOrderStatus",
    "SaleStatus",
    "SerialStatus",
    "TenantScoped",
    "WorkOrderStatus",
    "utcnow",
    "Organization",
    "OrganizationSetting",
    "Bin",
    "Customer",
    "Location",
    "Product",
    "Supplier",
    "WorkOrder",
    "WorkOrderPart",
    "WorkOrderStatusHistory",
    "Sale",
    "SaleItem",
    "PurchaseOrder",
    "PurchaseOrderLine",
    "SerialAssignment",
    "SerialNumber",
    "StockLevel",
    "StockMove",
]
