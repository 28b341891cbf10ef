"""Per-tenant settings with environment defaults."""

from __future__ import annotations

from typing import Any

from sqlmodel import Session, select

from stockroom.core.config import settings
from stockroom.core.errors import DomainError
from stockroom.models import OrganizationSetting, utcnow

# key -> (type, default)
KNOWN_SETTINGS: dict[str, tuple[type, Any]] = {
    "low_stock_alerts_enabled": (bool, settings.low_stock_alerts_enabled),
    "stock_overview_cache_ttl": (int, settings.overview_cache_ttl),
}


def get_setting(session: Session, key: str, default: Any = None) -> Any:
    row = session.exec(select(OrganizationSetting).where(OrganizationSetting.key == key)).first()
    if row is not None and row.value is not None:
        return row.value
    if default is None and key in KNOWN_SETTINGS:
        return KNOWN_SETTINGS[key][1]
    return default


def put_setting(session: Session, key: str, value: Any) -> OrganizationSetting:
    if key in KNOWN_SETTINGS:
        kind, _ = KNOWN_SETTINGS[key]
        if kind is bool and not isinstance(value, bool):
            raise DomainError("invalid-setting", f"{key} must be a boolean")
        if kind is int and (isinstance(value, bool) or not isinstance(value, int) or value < 0):
            raise DomainError("invalid-setting", f"{key} must be a non-negative integer")
    row = session.exec(select(OrganizationSetting).where(OrganizationSetting.key == key)).first()
    if row is None:
        row = OrganizationSetting(key=key)
    row.value = value
    row.updated_at = utcnow()
    session.add(row)
    return row


def low_stock_alerts_enabled(session: Session) -> bool:
    return bool(get_setting(session, "low_stock_alerts_enabled", settings.low_stock_alerts_enabled))
