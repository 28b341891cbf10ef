"""Catalogue router: products, locations, bins, customers, serials, settings."""

from __future__ import annotations

from typing import Any, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from stockroom.core.context import Actor
from stockroom.routers.deps import get_actor
from stockroom.services import catalog

router = APIRouter(prefix="/v1", tags=["catalog"])


class ProductIn(BaseModel):
    sku: str
    name: str
    uom: Optional[str] = None
    track_serial: Optional[bool] = None
    reorder_point: Optional[int] = Field(None, ge=0)
    lead_time_days: Optional[int] = Field(None, ge=0)
    unit_price: Optional[float] = Field(None, ge=0)


class LocationIn(BaseModel):
    site: str
    room: Optional[str] = None
    notes: Optional[str] = None


class BinIn(BaseModel):
    code: str
    location_id: Optional[int] = None


class CustomerIn(BaseModel):
    name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    company: Optional[str] = None


class SerialIn(BaseModel):
    product_id: int
    serial: str
    bin_id: Optional[int] = None


class SettingIn(BaseModel):
    value: Any


# ----------------------------- products ---------------------------------
@router.post("/products", status_code=201)
def create_product(body: ProductIn, actor: Actor = Depends(get_actor)):
    fields = body.model_dump(exclude={"sku", "name"}, exclude_none=True)
    return catalog.create_product(actor, body.sku, body.name, **fields)


@router.get("/products")
def list_products(include_archived: bool = Query(False), actor: Actor = Depends(get_actor)):
    return {"rows": catalog.list_products(actor, include_archived)}


@router.post("/products/{product_id}/archive")
def archive_product(product_id: int, actor: Actor = Depends(get_actor)):
    return catalog.archive_product(actor, product_id)


# ----------------------------- locations / bins -------------------------
@router.post("/locations", status_code=201)
def create_location(body: LocationIn, actor: Actor = Depends(get_actor)):
    return catalog.create_location(actor, body.site, body.room, body.notes)


@router.post("/bins", status_code=201)
def create_bin(body: BinIn, actor: Actor = Depends(get_actor)):
    return catalog.create_bin(actor, body.code, body.location_id)


@router.get("/bins")
def list_bins(actor: Actor = Depends(get_actor)):
    return {"rows": catalog.list_bins(actor)}


# ----------------------------- customers --------------------------------
@router.post("/customers", status_code=201)
def create_customer(body: CustomerIn, actor: Actor = Depends(get_actor)):
    return catalog.create_customer(actor, body.name, **body.model_dump(exclude={"name"}, exclude_none=True))


# ----------------------------- serials ----------------------------------
@router.post("/serials", status_code=201)
def register_serial(body: SerialIn, actor: Actor = Depends(get_actor)):
    return catalog.register_serial(actor, body.product_id, body.serial, body.bin_id)


@router.get("/serials")
def list_serials(
    product_id: Optional[int] = Query(None),
    status: Optional[str] = Query(None),
    actor: Actor = Depends(get_actor),
):
    return {"rows": catalog.list_serials(actor, product_id, status)}


@router.post("/serials/{serial_id}/faulty")
def mark_serial_faulty(serial_id: int, actor: Actor = Depends(get_actor)):
    return catalog.mark_serial_faulty(actor, serial_id)


# ----------------------------- settings ---------------------------------
@router.put("/settings/{key}")
def put_setting(key: str, body: SettingIn, actor: Actor = Depends(get_actor)):
    return catalog.set_setting(actor, key, body.value)
