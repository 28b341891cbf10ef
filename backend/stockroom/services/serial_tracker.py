"""
Serial-number state machine.

    available --reserve--> reserved --pick--> assigned
    reserved --release--> available
    assigned --return(ok)--> available (back in a bin)
    any of the above --faulty--> faulty (leaves its bin)

Invariants kept here: ``available`` implies a bin, ``assigned`` and
``faulty`` imply no bin.  Level side effects go through the quantity store
and every counter change is logged as a movement that replays exactly;
a faulty return is a ``return`` (or ``release``) followed by ``rma_out``.
"""

from __future__ import annotations

import logging
from typing import Iterable, Optional

from sqlmodel import Session, select

from stockroom.core.errors import DomainError, NotFound, SerialUnavailable
from stockroom.models import (
    AssignmentStatus,
    MoveReason,
    Product,
    SerialAssignment,
    SerialNumber,
    SerialStatus,
    WorkOrderPart,
    utcnow,
)
from stockroom.services.quantity_store import QuantityStore

logger = logging.getLogger(__name__)

RETURN_SOURCES = ("picked", "reserved")


class SerialTracker:
    def __init__(self, session: Session, store: QuantityStore):
        self.session = session
        self.store = store

    # ----------------------------------------------------------------- reads
    def lock(self, serial_ids: Iterable[int]) -> list[SerialNumber]:
        ids = sorted(set(serial_ids))
        if not ids:
            return []
        stmt = select(SerialNumber).where(SerialNumber.id.in_(ids)).order_by(SerialNumber.id).with_for_update()
        rows = list(self.session.exec(stmt))
        missing = set(ids) - {s.id for s in rows}
        if missing:
            raise NotFound(f"serial(s) not found: {sorted(missing)}")
        return rows

    def find(self, serial: str) -> Optional[SerialNumber]:
        stmt = select(SerialNumber).where(SerialNumber.serial == serial.strip()).with_for_update()
        return self.session.exec(stmt).first()

    def latest_assignment(self, serial: SerialNumber, part_id: Optional[int] = None) -> Optional[SerialAssignment]:
        stmt = select(SerialAssignment).where(SerialAssignment.serial_number_id == serial.id)
        if part_id is not None:
            stmt = stmt.where(SerialAssignment.work_order_part_id == part_id)
        stmt = stmt.order_by(SerialAssignment.id.desc()).with_for_update()
        return self.session.exec(stmt).first()

    def reserved_for(self, part: WorkOrderPart) -> list[SerialNumber]:
        """Serials currently held (reserved, not yet picked) by *part*."""
        stmt = (
            select(SerialNumber)
            .join(SerialAssignment, SerialAssignment.serial_number_id == SerialNumber.id)
            .where(
                SerialAssignment.work_order_part_id == part.id,
                SerialAssignment.status == AssignmentStatus.reserved,
                SerialNumber.status == SerialStatus.reserved,
            )
            .order_by(SerialNumber.id)
            .with_for_update()
        )
        return list(self.session.exec(stmt))

    # ----------------------------------------------------------- transitions
    def reserve(self, serial: SerialNumber, part: WorkOrderPart) -> SerialAssignment:
        if serial.product_id != part.product_id:
            raise SerialUnavailable(f"serial {serial.serial} is not product {part.product_id}")
        if serial.status != SerialStatus.available or serial.bin_id is None:
            raise SerialUnavailable(f"serial {serial.serial} is {serial.status.value}, not available in a bin")
        self.store.inc_reserved(serial.product_id, serial.bin_id, 1)
        self.store.record_move(
            serial.product_id, 1, MoveReason.reserve,
            from_bin_id=serial.bin_id, serial_number_id=serial.id, **part.movement_refs(),
        )
        serial.status = SerialStatus.reserved
        serial.work_order_id = part.work_order_id
        self._touch(serial)
        assignment = SerialAssignment(
            serial_number_id=serial.id,
            work_order_part_id=part.id,
            work_order_id=part.work_order_id,
            status=AssignmentStatus.reserved,
            performed_by=self.store.performed_by,
        )
        self.session.add(assignment)
        return assignment

    def pick(self, serial: SerialNumber, part: WorkOrderPart, bin_id: int) -> SerialAssignment:
        if serial.status != SerialStatus.reserved:
            raise SerialUnavailable(f"serial {serial.serial} is {serial.status.value}, not reserved")
        if serial.bin_id != bin_id:
            raise SerialUnavailable(f"serial {serial.serial} is not in bin {bin_id}")
        assignment = self._open(serial, part, AssignmentStatus.reserved)
        self.store.dec_reserved(serial.product_id, bin_id, 1)
        self.store.dec_on_hand(serial.product_id, bin_id, 1)
        self.store.record_move(
            serial.product_id, 1, MoveReason.pick,
            from_bin_id=bin_id, serial_number_id=serial.id, **part.movement_refs(),
        )
        serial.status = SerialStatus.assigned
        serial.bin_id = None
        self._touch(serial)
        assignment.status = AssignmentStatus.picked
        assignment.picked_at = utcnow()
        self.session.add(assignment)
        return assignment

    def return_(
        self,
        serial: SerialNumber,
        part: WorkOrderPart,
        bin_id: Optional[int],
        source: str = "picked",
        faulty: bool = False,
    ) -> SerialAssignment:
        if source not in RETURN_SOURCES:
            raise DomainError("invalid-return-source", f"source must be one of {RETURN_SOURCES}")
        refs = dict(serial_number_id=serial.id, **part.movement_refs())
        pid = serial.product_id

        if source == "picked":
            if serial.status != SerialStatus.assigned:
                raise SerialUnavailable(f"serial {serial.serial} is {serial.status.value}, not assigned")
            if bin_id is None:
                raise DomainError("bin-required", "a return needs a destination bin")
            assignment = self._open(serial, part, AssignmentStatus.picked)
            self.store.inc_on_hand(pid, bin_id, 1)
            self.store.record_move(pid, 1, MoveReason.return_, to_bin_id=bin_id, **refs)
            if faulty:
                self.store.dec_on_hand(pid, bin_id, 1)
                self.store.record_move(pid, 1, MoveReason.rma_out, from_bin_id=bin_id, **refs)
        else:
            if serial.status != SerialStatus.reserved:
                raise SerialUnavailable(f"serial {serial.serial} is {serial.status.value}, not reserved")
            if bin_id is not None and bin_id != serial.bin_id:
                raise SerialUnavailable(f"serial {serial.serial} is not in bin {bin_id}")
            assignment = self._open(serial, part, AssignmentStatus.reserved)
            bin_id = serial.bin_id
            self.store.dec_reserved(pid, bin_id, 1)
            self.store.record_move(pid, 1, MoveReason.release, from_bin_id=bin_id, **refs)
            if faulty:
                self.store.dec_on_hand(pid, bin_id, 1)
                self.store.record_move(pid, 1, MoveReason.rma_out, from_bin_id=bin_id, **refs)

        serial.work_order_id = None
        if faulty:
            serial.status = SerialStatus.faulty
            serial.bin_id = None
            assignment.status = AssignmentStatus.faulty
        else:
            serial.status = SerialStatus.available
            serial.bin_id = bin_id
            assignment.status = AssignmentStatus.returned if source == "picked" else AssignmentStatus.released
        assignment.returned_at = utcnow()
        self._touch(serial)
        self.session.add(assignment)
        return assignment

    def mark_faulty(self, serial: SerialNumber) -> Optional[SerialAssignment]:
        """Operator action.  Returns the assignment that was holding the serial, if any."""
        pid = serial.product_id
        assignment = None

        if serial.status == SerialStatus.faulty:
            raise SerialUnavailable(f"serial {serial.serial} is already faulty")
        if serial.status == SerialStatus.reserved:
            assignment = self.latest_assignment(serial)
            if assignment is None or assignment.status != AssignmentStatus.reserved:
                raise SerialUnavailable(f"serial {serial.serial} has no open reservation")
            part = self.session.get(WorkOrderPart, assignment.work_order_part_id)
            self.store.dec_reserved(pid, serial.bin_id, 1)
            self.store.record_move(
                pid, 1, MoveReason.release, from_bin_id=serial.bin_id,
                serial_number_id=serial.id, **part.movement_refs(),
            )
            self.store.dec_on_hand(pid, serial.bin_id, 1)
            self.store.record_move(pid, 1, MoveReason.rma_out, from_bin_id=serial.bin_id, serial_number_id=serial.id)
        elif serial.status == SerialStatus.assigned:
            assignment = self.latest_assignment(serial)
        elif serial.bin_id is not None:
            self.store.dec_on_hand(pid, serial.bin_id, 1)
            self.store.record_move(pid, 1, MoveReason.rma_out, from_bin_id=serial.bin_id, serial_number_id=serial.id)

        if assignment is not None:
            assignment.status = AssignmentStatus.faulty
            assignment.returned_at = utcnow()
            self.session.add(assignment)
        serial.status = SerialStatus.faulty
        serial.bin_id = None
        serial.work_order_id = None
        self._touch(serial)
        return assignment

    def register(self, product: Product, serial: str, bin_id: Optional[int]) -> SerialNumber:
        """Manual registration of a unit already counted in *bin_id*."""
        if not product.track_serial:
            raise DomainError("product-not-serialized", f"product {product.sku} does not track serials")
        if bin_id is None:
            raise DomainError("bin-required", "an available serial must sit in a bin")
        value = serial.strip()
        if not value:
            raise DomainError("serial-required", "serial must not be blank")
        if self.find(value) is not None:
            raise DomainError("serial-exists", f"serial {value} already registered")
        row = SerialNumber(serial=value, product_id=product.id, bin_id=bin_id, status=SerialStatus.available)
        self._touch(row)
        self.session.flush()
        return row

    def receive(self, product: Product, serial: str, bin_id: int) -> SerialNumber:
        """Upsert on purchase receipt; returned/faulty units are restocked."""
        value = serial.strip()
        row = self.find(value)
        if row is None:
            row = SerialNumber(serial=value, product_id=product.id, bin_id=bin_id, status=SerialStatus.available)
        else:
            if row.product_id != product.id:
                raise DomainError("serial-product-mismatch", f"serial {value} belongs to another product")
            if row.status in (SerialStatus.available, SerialStatus.reserved, SerialStatus.assigned):
                raise SerialUnavailable(f"serial {value} is already {row.status.value}")
            row.status = SerialStatus.available
            row.bin_id = bin_id
            row.work_order_id = None
        self._touch(row)
        self.session.flush()
        return row

    # --------------------------------------------------------------- helpers
    def _open(self, serial: SerialNumber, part: WorkOrderPart, status: AssignmentStatus) -> SerialAssignment:
        assignment = self.latest_assignment(serial, part.id)
        if assignment is None or assignment.status != status:
            raise SerialUnavailable(f"serial {serial.serial} has no {status.value} assignment on part {part.id}")
        return assignment

    def _touch(self, serial: SerialNumber) -> None:
        serial.last_seen_at = utcnow()
        self.session.add(serial)
