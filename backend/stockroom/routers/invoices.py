"""
Invoice fulfilment router.

* POST /v1/invoices/{id}/fulfil   ship invoice lines from free stock
* GET  /v1/invoices/{id}/fulfil   movements already shipped for the invoice
"""

from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from stockroom.core.context import Actor
from stockroom.routers.deps import get_actor
from stockroom.services import invoices as invoice_service

router = APIRouter(prefix="/v1/invoices", tags=["invoices"])


class InvoiceLineIn(BaseModel):
    product_id: int
    qty: int = Field(..., gt=0)
    bin_id: Optional[int] = None


class FulfilIn(BaseModel):
    lines: List[InvoiceLineIn] = Field(..., min_length=1)


@router.post("/{invoice_id}/fulfil")
def fulfil_invoice(invoice_id: int, body: FulfilIn, actor: Actor = Depends(get_actor)):
    return invoice_service.fulfil_invoice(actor, invoice_id, [l.model_dump() for l in body.lines])


@router.get("/{invoice_id}/fulfil")
def get_fulfilment(invoice_id: int, actor: Actor = Depends(get_actor)):
    return invoice_service.get_fulfilment(actor, invoice_id)
