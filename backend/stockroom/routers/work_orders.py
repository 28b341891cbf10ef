"""
Work-order router.

* POST  /v1/work-orders
* GET   /v1/work-orders[?status=]
* GET   /v1/work-orders/{id}
* POST  /v1/work-orders/{id}/reserve
* POST  /v1/work-orders/{id}/pick
* POST  /v1/work-orders/{id}/return
* PATCH /v1/work-orders/{id}/status
"""

from __future__ import annotations

from typing import List, Literal, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from stockroom.core.context import Actor
from stockroom.routers.deps import get_actor
from stockroom.services import work_orders as wo_service

router = APIRouter(prefix="/v1/work-orders", tags=["work-orders"])


class PartIn(BaseModel):
    product_id: int
    qty: int = Field(..., gt=0)


class WorkOrderIn(BaseModel):
    customer_name: str
    device_info: str
    device_serial: Optional[str] = None
    priority: str = "normal"
    intake_notes: Optional[str] = None
    customer_id: Optional[int] = None
    parts: List[PartIn] = []


class ReserveItem(BaseModel):
    part_id: int
    qty: Optional[int] = Field(None, gt=0)
    serial_ids: Optional[List[int]] = None


class ReserveIn(BaseModel):
    items: List[ReserveItem] = Field(..., min_length=1)


class PickIn(BaseModel):
    part_id: int
    bin_id: int
    qty: Optional[int] = Field(None, gt=0)
    serial_ids: Optional[List[int]] = None


class ReturnIn(PickIn):
    source: Literal["picked", "reserved"] = "picked"
    faulty: bool = False


class StatusIn(BaseModel):
    status: str
    note: Optional[str] = None


@router.post("", status_code=201)
def create_work_order(body: WorkOrderIn, actor: Actor = Depends(get_actor)):
    return wo_service.create(
        actor,
        body.customer_name,
        body.device_info,
        [p.model_dump() for p in body.parts],
        device_serial=body.device_serial,
        priority=body.priority,
        intake_notes=body.intake_notes,
        customer_id=body.customer_id,
    )


@router.get("")
def list_work_orders(
    status: Optional[str] = Query(None, description="intake|diagnostics|in_progress|..."),
    actor: Actor = Depends(get_actor),
):
    return {"rows": wo_service.list_orders(actor, status)}


@router.get("/{work_order_id}")
def get_work_order(work_order_id: int, actor: Actor = Depends(get_actor)):
    return wo_service.get(actor, work_order_id)


@router.post("/{work_order_id}/reserve")
def reserve_parts(work_order_id: int, body: ReserveIn, actor: Actor = Depends(get_actor)):
    return wo_service.reserve_parts(actor, work_order_id, [i.model_dump() for i in body.items])


@router.post("/{work_order_id}/pick")
def pick_part(work_order_id: int, body: PickIn, actor: Actor = Depends(get_actor)):
    return wo_service.pick_part(
        actor, work_order_id, body.part_id, body.bin_id, qty=body.qty, serial_ids=body.serial_ids
    )


@router.post("/{work_order_id}/return")
def return_part(work_order_id: int, body: ReturnIn, actor: Actor = Depends(get_actor)):
    return wo_service.return_part(
        actor,
        work_order_id,
        body.part_id,
        body.bin_id,
        qty=body.qty,
        source=body.source,
        faulty=body.faulty,
        serial_ids=body.serial_ids,
    )


@router.patch("/{work_order_id}/status")
def update_status(work_order_id: int, body: StatusIn, actor: Actor = Depends(get_actor)):
    return wo_service.update_status(actor, work_order_id, body.status, body.note)
