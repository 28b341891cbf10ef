"""
Stock router.

* POST  /v1/stock/move                 manual receive / adjust / transfer / return
* PATCH /v1/stock/{product_id}/levels  set a product's totals (on_hand / reserved)
* GET   /v1/stock/summary              per-product totals with bin levels
* GET   /v1/stock/overview             cached tenant overview
* GET   /v1/stock/history/{id}         movement history with running levels
* GET   /v1/stock/events               Server-Sent Events hint stream
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

from stockroom.core.context import Actor
from stockroom.routers.deps import get_actor
from stockroom.services import stock_moves
from stockroom.services.realtime import sse_events

router = APIRouter(prefix="/v1/stock", tags=["stock"])


class MoveIn(BaseModel):
    product_id: int
    qty: int = Field(..., gt=0)
    from_bin_id: Optional[int] = None
    to_bin_id: Optional[int] = None
    reason: str = "transfer"
    notes: Optional[str] = None


class LevelsIn(BaseModel):
    on_hand: Optional[int] = None
    reserved: Optional[int] = None


@router.post("/move", status_code=201)
def create_move(body: MoveIn, actor: Actor = Depends(get_actor)):
    return stock_moves.move(
        actor,
        body.product_id,
        body.qty,
        from_bin_id=body.from_bin_id,
        to_bin_id=body.to_bin_id,
        reason=body.reason,
        notes=body.notes,
    )


@router.patch("/{product_id}/levels")
def adjust_levels(product_id: int, body: LevelsIn, actor: Actor = Depends(get_actor)):
    return stock_moves.adjust_levels(actor, product_id, on_hand=body.on_hand, reserved=body.reserved)


@router.get("/summary")
def stock_summary(
    product_id: Optional[int] = Query(None),
    include_archived: bool = Query(False),
    actor: Actor = Depends(get_actor),
):
    return {"rows": stock_moves.summary(actor, product_id, include_archived)}


@router.get("/overview")
def stock_overview(actor: Actor = Depends(get_actor)):
    return stock_moves.overview(actor)


@router.get("/history/{product_id}")
def stock_history(
    product_id: int,
    limit: Optional[int] = Query(None, ge=1, le=1000),
    actor: Actor = Depends(get_actor),
):
    return stock_moves.product_history(actor, product_id, limit)


@router.get("/events")
async def stock_events(actor: Actor = Depends(get_actor)):
    """Server-Sent Events stream of stock hints for the caller's tenant."""
    return StreamingResponse(
        sse_events(actor.organization_id),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )
