from datetime import datetime
from typing import Optional

from sqlalchemy import CheckConstraint, UniqueConstraint
from sqlmodel import Field

from .base import TenantScoped, utcnow


class Product(TenantScoped, table=True):
    __tablename__ = "products"
    __table_args__ = (
        UniqueConstraint("organization_id", "sku", name="uq_products_org_sku"),
        CheckConstraint("reorder_point >= 0", name="ck_products_reorder_point"),
        CheckConstraint("lead_time_days >= 0", name="ck_products_lead_time"),
        CheckConstraint("unit_price >= 0", name="ck_products_unit_price"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    sku: str = Field(max_length=64, index=True)
    name: str
    uom: str = Field(default="ea")
    track_serial: bool = Field(default=False)
    reorder_point: int = Field(default=0)
    lead_time_days: int = Field(default=0)
    unit_price: float = Field(default=0.0)
    active: bool = Field(default=True, index=True)
    created_at: datetime = Field(default_factory=utcnow)


class Location(TenantScoped, table=True):
    __tablename__ = "locations"

    id: Optional[int] = Field(default=None, primary_key=True)
    site: str
    room: Optional[str] = None
    notes: Optional[str] = None


class Bin(TenantScoped, table=True):
    __tablename__ = "bins"
    __table_args__ = (UniqueConstraint("organization_id", "code", name="uq_bins_org_code"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    # stored trimmed + upper-cased
    code: str = Field(max_length=64)
    location_id: Optional[int] = Field(default=None, foreign_key="locations.id")

    @staticmethod
    def normalize_code(code: str) -> str:
        return (code or "").strip().upper()


class Customer(TenantScoped, table=True):
    __tablename__ = "customers"

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    company: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)


class Supplier(TenantScoped, table=True):
    __tablename__ = "suppliers"

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    contact_name: Optional[str] = None
    contact_email: Optional[str] = None
    phone: Optional[str] = None
    lead_time_days: int = Field(default=0)
