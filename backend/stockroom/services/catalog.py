"""Catalogue adapter: organizations, products, bins, customers, serials, settings."""

from __future__ import annotations

import logging
import re
from typing import Any, Optional

from sqlmodel import Session, select

from stockroom.core.context import Actor, bypass_tenant_scope
from stockroom.core.database import engine
from stockroom.core.errors import DomainError, NotFound
from stockroom.models import (
    Bin,
    Customer,
    Location,
    Organization,
    Product,
    Sale,
    SaleItem,
    SaleStatus,
    SerialNumber,
    SerialStatus,
    utcnow,
)
from stockroom.services.coordinator import ReservationCoordinator
from stockroom.services.org_settings import put_setting
from stockroom.services.unit_of_work import UnitOfWork, run_in_unit_of_work, run_read

logger = logging.getLogger(__name__)

_PRODUCT_FIELDS = {"name", "uom", "track_serial", "reorder_point", "lead_time_days", "unit_price"}


def _slugify(name: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", name.lower()).strip("-") or "org"


def bootstrap_organization(name: str, slug: Optional[str] = None) -> dict:
    """Create a tenant (administrative, outside any tenant scope)."""
    with bypass_tenant_scope(), Session(engine) as ses:
        org = Organization(name=name, slug=slug or _slugify(name))
        if ses.exec(select(Organization).where(Organization.slug == org.slug)).first() is not None:
            raise DomainError("duplicate-organization", f"organization {org.slug} already exists")
        ses.add(org)
        ses.commit()
        ses.refresh(org)
        return org.model_dump(mode="json")


# --------------------------------------------------------------------------- #
# Products                                                                    #
# --------------------------------------------------------------------------- #


def create_product(actor: Actor, sku: str, name: str, **fields) -> dict:
    unknown = set(fields) - _PRODUCT_FIELDS
    if unknown:
        raise DomainError("unknown-field", f"unknown product fields {sorted(unknown)}")
    for key in ("reorder_point", "lead_time_days", "unit_price"):
        if fields.get(key) is not None and fields[key] < 0:
            raise DomainError("negative-value", f"{key} must be >= 0")
    sku = sku.strip()

    def work(uow: UnitOfWork) -> dict:
        ses = uow.session
        if ses.exec(select(Product).where(Product.sku == sku)).first() is not None:
            raise DomainError("duplicate-sku", f"sku {sku} already exists")
        product = Product(sku=sku, name=name, **{k: v for k, v in fields.items() if v is not None})
        ses.add(product)
        ses.flush()
        return product.model_dump(mode="json")

    return run_in_unit_of_work(actor, work)


def archive_product(actor: Actor, product_id: int) -> dict:
    """Release reservations, write on-hand off to zero, deactivate."""

    def work(uow: UnitOfWork) -> dict:
        ses = uow.session
        coord = ReservationCoordinator(uow)
        product = coord.product(product_id)
        if not product.active:
            raise DomainError("product-archived", f"{product.sku} is already archived")
        released = coord.write_off_product(product)

        sale_ids = sorted({line.sale_id for line in released if isinstance(line, SaleItem)})
        sales = ses.exec(select(Sale).where(Sale.id.in_(sale_ids)).with_for_update()).all() if sale_ids else []
        for sale in sales:
            if sale.status == SaleStatus.reserved:
                sale.status = SaleStatus.backorder
                sale.backordered_at = utcnow()
                ses.add(sale)

        product.active = False
        ses.add(product)
        ses.flush()
        uow.emit("archive", product_id=product.id, released_lines=len(released))
        return product.model_dump(mode="json")

    return run_in_unit_of_work(actor, work)


def list_products(actor: Actor, include_archived: bool = False) -> list[dict]:
    def read(ses: Session) -> list[dict]:
        stmt = select(Product).order_by(Product.sku)
        if not include_archived:
            stmt = stmt.where(Product.active == True)  # noqa: E712
        return [p.model_dump(mode="json") for p in ses.exec(stmt)]

    return run_read(actor, read)


# --------------------------------------------------------------------------- #
# Locations / bins / customers                                                #
# --------------------------------------------------------------------------- #


def create_bin(actor: Actor, code: str, location_id: Optional[int] = None) -> dict:
    normalized = Bin.normalize_code(code)
    if not normalized:
        raise DomainError("bin-code-required", "bin code must not be blank")

    def work(uow: UnitOfWork) -> dict:
        ses = uow.session
        if location_id is not None and ses.get(Location, location_id) is None:
            raise NotFound(f"location {location_id} not found")
        if ses.exec(select(Bin).where(Bin.code == normalized)).first() is not None:
            raise DomainError("duplicate-bin", f"bin {normalized} already exists")
        row = Bin(code=normalized, location_id=location_id)
        ses.add(row)
        ses.flush()
        return row.model_dump(mode="json")

    return run_in_unit_of_work(actor, work)


def create_location(actor: Actor, site: str, room: Optional[str] = None, notes: Optional[str] = None) -> dict:
    def work(uow: UnitOfWork) -> dict:
        row = Location(site=site, room=room, notes=notes)
        uow.session.add(row)
        uow.session.flush()
        return row.model_dump(mode="json")

    return run_in_unit_of_work(actor, work)


def list_bins(actor: Actor) -> list[dict]:
    return run_read(actor, lambda ses: [b.model_dump(mode="json") for b in ses.exec(select(Bin).order_by(Bin.code))])


def create_customer(actor: Actor, name: str, **fields) -> dict:
    def work(uow: UnitOfWork) -> dict:
        row = Customer(name=name, **fields)
        uow.session.add(row)
        uow.session.flush()
        return row.model_dump(mode="json")

    return run_in_unit_of_work(actor, work)


# --------------------------------------------------------------------------- #
# Serials                                                                     #
# --------------------------------------------------------------------------- #


def register_serial(actor: Actor, product_id: int, serial: str, bin_id: Optional[int]) -> dict:
    def work(uow: UnitOfWork) -> dict:
        ses = uow.session
        coord = ReservationCoordinator(uow)
        product = coord.product(product_id)
        if bin_id is not None and ses.get(Bin, bin_id) is None:
            raise NotFound(f"bin {bin_id} not found")
        row = coord.serials.register(product, serial, bin_id)
        uow.emit("serial", serial_number_id=row.id, product_id=product.id, status=row.status.value)
        return row.model_dump(mode="json")

    return run_in_unit_of_work(actor, work)


def mark_serial_faulty(actor: Actor, serial_id: int) -> dict:
    def work(uow: UnitOfWork) -> dict:
        coord = ReservationCoordinator(uow)
        (serial,) = coord.serials.lock([serial_id])
        coord.mark_serial_faulty(serial)
        uow.emit("serial", serial_number_id=serial.id, product_id=serial.product_id, status=serial.status.value)
        return serial.model_dump(mode="json")

    return run_in_unit_of_work(actor, work)


def list_serials(actor: Actor, product_id: Optional[int] = None, status: Optional[str] = None) -> list[dict]:
    try:
        wanted = SerialStatus(status) if status else None
    except ValueError as exc:
        raise DomainError("invalid-status", f"unknown serial status {status!r}") from exc

    def read(ses: Session) -> list[dict]:
        stmt = select(SerialNumber).order_by(SerialNumber.serial)
        if product_id is not None:
            stmt = stmt.where(SerialNumber.product_id == product_id)
        if wanted is not None:
            stmt = stmt.where(SerialNumber.status == wanted)
        return [s.model_dump(mode="json") for s in ses.exec(stmt)]

    return run_read(actor, read)


# --------------------------------------------------------------------------- #
# Settings                                                                    #
# --------------------------------------------------------------------------- #


def set_setting(actor: Actor, key: str, value: Any) -> dict:
    def work(uow: UnitOfWork) -> dict:
        row = put_setting(uow.session, key, value)
        uow.session.flush()
        return {"key": row.key, "value": row.value}

    return run_in_unit_of_work(actor, work)
