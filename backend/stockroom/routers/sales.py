"""Sale router (``/v1/sales``)."""

from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from stockroom.core.context import Actor
from stockroom.routers.deps import get_actor
from stockroom.services import sales as sale_service

router = APIRouter(prefix="/v1/sales", tags=["sales"])


class SaleItemIn(BaseModel):
    product_id: int
    quantity: int = Field(..., gt=0)
    unit_price: Optional[float] = Field(None, ge=0)


class SaleIn(BaseModel):
    items: List[SaleItemIn] = Field(..., min_length=1)
    customer_id: Optional[int] = None
    reference: Optional[str] = None
    notes: Optional[str] = None


class CompleteIn(BaseModel):
    invoice_id: Optional[int] = None


@router.post("", status_code=201)
def create_sale(body: SaleIn, actor: Actor = Depends(get_actor)):
    items = [i.model_dump(exclude_none=True) for i in body.items]
    return sale_service.create_sale(
        actor, items, customer_id=body.customer_id, reference=body.reference, notes=body.notes
    )


@router.get("")
def list_sales(status: Optional[str] = Query(None), actor: Actor = Depends(get_actor)):
    return {"rows": sale_service.list_sales(actor, status)}


@router.get("/{sale_id}")
def get_sale(sale_id: int, actor: Actor = Depends(get_actor)):
    return sale_service.get(actor, sale_id)


@router.patch("/{sale_id}")
def update_sale(sale_id: int, body: dict, actor: Actor = Depends(get_actor)):
    # non-editable keys are rejected by the service with field-not-editable
    return sale_service.update_details(actor, sale_id, body)


@router.post("/{sale_id}/reserve")
def reserve_sale(sale_id: int, actor: Actor = Depends(get_actor)):
    return sale_service.reserve(actor, sale_id)


@router.post("/{sale_id}/complete")
def complete_sale(sale_id: int, body: Optional[CompleteIn] = None, actor: Actor = Depends(get_actor)):
    return sale_service.complete(actor, sale_id, body.invoice_id if body else None)


@router.post("/{sale_id}/cancel")
def cancel_sale(sale_id: int, actor: Actor = Depends(get_actor)):
    return sale_service.cancel(actor, sale_id)
