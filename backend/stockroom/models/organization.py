from datetime import datetime
from typing import Any, Optional

from sqlalchemy import JSON, Column, UniqueConstraint
from sqlmodel import Field, SQLModel

from .base import TenantScoped, utcnow


class Organization(SQLModel, table=True):
    __tablename__ = "organizations"

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    slug: str = Field(index=True, unique=True)
    created_at: datetime = Field(default_factory=utcnow)


class OrganizationSetting(TenantScoped, table=True):
    """Per-tenant key/value settings (``low_stock_alerts_enabled`` ...)."""

    __tablename__ = "organization_settings"
    __table_args__ = (UniqueConstraint("organization_id", "key", name="uq_org_setting_key"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    key: str = Field(max_length=64)
    value: Any = Field(default=None, sa_column=Column(JSON, nullable=True))
    updated_at: datetime = Field(default_factory=utcnow)
