"""
Unit of work: one serializable transaction per adapter call.

``run_in_unit_of_work(actor, work)`` binds the tenant, opens a session,
calls ``work(uow)`` and commits.  Serialization failures are retried with
bounded exponential backoff; after the last attempt they surface as
:class:`Conflict`.  The deadline is checked before commit and by every
quantity primitive, and exceeding it raises :class:`Timeout`.  Events
collected with :meth:`UnitOfWork.emit` are handed to the bus only after a successful
commit; delivery happens on the bus workers.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, Optional, TypeVar

from sqlalchemy.exc import DBAPIError
from sqlmodel import Session

from stockroom.core.config import settings
from stockroom.core.context import Actor, actor_scope
from stockroom.core.database import engine
from stockroom.core.errors import Conflict, InvariantViolation, Timeout
from stockroom.services.events import EVENT_KINDS, ObserverBus, StockEvent, bus as default_bus
from stockroom.services.quantity_store import QuantityStore

logger = logging.getLogger(__name__)

T = TypeVar("T")

_RETRYABLE_SQLSTATES = {"40001", "40P01"}
_RETRYABLE_MYSQL_CODES = {1205, 1213}
_BACKOFF_BASE_S = 0.05
_BACKOFF_MAX_S = 1.0


def is_serialization_failure(exc: DBAPIError) -> bool:
    orig = getattr(exc, "orig", None)
    code = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
    if code in _RETRYABLE_SQLSTATES:
        return True
    args = getattr(orig, "args", ()) or ()
    if args and args[0] in _RETRYABLE_MYSQL_CODES:
        return True
    return "database is locked" in str(orig).lower()


class UnitOfWork:
    def __init__(self, session: Session, actor: Actor, deadline: float):
        self.session = session
        self.actor = actor
        self.deadline = deadline
        self.events: list[StockEvent] = []
        self.store = QuantityStore(session, performed_by=actor.user_id, checkpoint=self.checkpoint)

    @property
    def organization_id(self) -> int:
        return self.actor.organization_id

    def checkpoint(self) -> None:
        if time.monotonic() > self.deadline:
            raise Timeout("deadline exceeded before commit")

    def emit(self, kind: str, **refs) -> StockEvent:
        if kind not in EVENT_KINDS:
            raise InvariantViolation(f"unknown event kind {kind!r}")
        event = StockEvent(self.organization_id, kind, {k: v for k, v in refs.items() if v is not None})
        self.events.append(event)
        return event


def run_in_unit_of_work(
    actor: Actor,
    work: Callable[[UnitOfWork], T],
    *,
    deadline_s: Optional[float] = None,
    attempts: Optional[int] = None,
    bus: Optional[ObserverBus] = None,
) -> T:
    bus = bus or default_bus
    attempts = max(1, attempts or settings.uow_retry_count)
    budget = settings.uow_deadline_s if deadline_s is None else deadline_s
    deadline = time.monotonic() + budget

    with actor_scope(actor):
        for attempt in range(1, attempts + 1):
            uow = UnitOfWork(Session(engine, expire_on_commit=False), actor, deadline)
            try:
                with uow.session:
                    try:
                        result = work(uow)
                        uow.checkpoint()
                        with bus.sequenced(actor.organization_id):
                            uow.session.commit()
                            for event in uow.events:
                                bus.enqueue(event)
                    except BaseException:
                        uow.session.rollback()
                        raise
                return result
            except DBAPIError as exc:
                if not is_serialization_failure(exc):
                    raise
                if attempt >= attempts:
                    logger.warning(f"[uow] giving up after {attempt} attempts (org={actor.organization_id})")
                    raise Conflict("serialization failure after retries") from exc
                delay = min(_BACKOFF_MAX_S, _BACKOFF_BASE_S * (2 ** (attempt - 1)))
                if time.monotonic() + delay > deadline:
                    raise Timeout("deadline exceeded while retrying") from exc
                logger.info(f"[uow] serialization failure, retry {attempt}/{attempts - 1} in {delay:.2f}s")
                time.sleep(delay)
    raise Conflict("unit of work did not complete")  # pragma: no cover


def run_read(actor: Actor, fn: Callable[[Session], T]) -> T:
    """Tenant-scoped read outside any unit of work (no retries, no events)."""
    with actor_scope(actor), Session(engine) as session:
        return fn(session)
