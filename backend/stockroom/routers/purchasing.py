"""Supplier and purchase-order router."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from stockroom.core.context import Actor
from stockroom.routers.deps import get_actor
from stockroom.services import purchasing as po_service

router = APIRouter(prefix="/v1", tags=["purchasing"])


class SupplierIn(BaseModel):
    name: str
    contact_name: Optional[str] = None
    contact_email: Optional[str] = None
    phone: Optional[str] = None
    lead_time_days: Optional[int] = Field(None, ge=0)


class POLineIn(BaseModel):
    product_id: int
    qty_ordered: int = Field(..., gt=0)
    unit_cost: float = Field(0, ge=0)


class PurchaseOrderIn(BaseModel):
    reference: str
    supplier_id: int
    expected_at: Optional[datetime] = None
    lines: List[POLineIn] = Field(..., min_length=1)


class ReceiptIn(BaseModel):
    line_id: int
    qty: int = Field(..., gt=0)
    bin_id: int
    serials: Optional[List[str]] = None


class ReceiveIn(BaseModel):
    receipts: List[ReceiptIn] = Field(..., min_length=1)


@router.post("/suppliers", status_code=201)
def create_supplier(body: SupplierIn, actor: Actor = Depends(get_actor)):
    return po_service.create_supplier(actor, **body.model_dump(exclude_none=True))


@router.post("/purchase-orders", status_code=201)
def create_purchase_order(body: PurchaseOrderIn, actor: Actor = Depends(get_actor)):
    return po_service.create_po(
        actor,
        body.reference,
        body.supplier_id,
        [l.model_dump() for l in body.lines],
        expected_at=body.expected_at,
    )


@router.get("/purchase-orders")
def list_purchase_orders(actor: Actor = Depends(get_actor)):
    return {"rows": po_service.list_pos(actor)}


@router.get("/purchase-orders/{po_id}")
def get_purchase_order(po_id: int, actor: Actor = Depends(get_actor)):
    return po_service.get(actor, po_id)


@router.post("/purchase-orders/{po_id}/receive")
def receive_purchase_order(po_id: int, body: ReceiveIn, actor: Actor = Depends(get_actor)):
    return po_service.receive(actor, po_id, [r.model_dump() for r in body.receipts])
