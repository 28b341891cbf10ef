"""
Observer bus for stock-change notifications.

One :class:`StockEvent` is published per successful adapter call, after the
unit of work commits.  Subscribers run in registration order; an exception
in one is logged and the remaining subscribers still run.  The unit of work
holds :meth:`ObserverBus.sequenced` only around commit and enqueue, so a
tenant's events are queued in commit order and delivered off the request
thread.
"""

from __future__ import annotations

import logging
import threading
from collections import defaultdict, deque
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Iterator

from stockroom.models.base import utcnow

logger = logging.getLogger(__name__)

EVENT_KINDS = frozenset(
    {
        "move",
        "reserve",
        "release",
        "pick",
        "return",
        "receive",
        "sale-created",
        "sale-reserve",
        "sale-complete",
        "sale-cancel",
        "adjust",
        "archive",
        "serial",
        "invoice-fulfil",
    }
)

# advisory ``hint`` shown to realtime clients
_HINTS = {
    "move": "stock-move",
    "adjust": "stock-adjust",
    "receive": "purchase-order-receive",
    "archive": "product-archive",
    "invoice-fulfil": "invoice",
}


@dataclass(frozen=True)
class StockEvent:
    organization_id: int
    kind: str
    refs: dict = field(default_factory=dict)
    ts: datetime = field(default_factory=utcnow)

    @property
    def hint(self) -> str:
        return _HINTS.get(self.kind, self.kind)

    def envelope(self) -> dict:
        return {"kind": self.kind, "refs": dict(self.refs), "ts": self.ts.isoformat(), "hint": self.hint}


Subscriber = Callable[[StockEvent], None]


class ObserverBus:
    """Ordered, failure-isolated fan-out.

    ``enqueue`` only appends to the tenant's queue; a pool worker drains it
    so subscribers never run on the committing thread.  At most one worker
    drains a given tenant, which keeps that tenant's events in enqueue
    order while other tenants are delivered in parallel.
    """

    def __init__(self, max_workers: int = 4) -> None:
        self._subscribers: list[tuple[str, Subscriber]] = []
        self._tenant_locks: dict[int, threading.Lock] = defaultdict(threading.Lock)
        self._guard = threading.Lock()
        self._pending: dict[int, deque[StockEvent]] = defaultdict(deque)
        self._draining: set[int] = set()
        self._idle = threading.Condition()
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="stock-bus")

    def subscribe(self, fn: Subscriber, name: str | None = None) -> Subscriber:
        label = name or getattr(fn, "__name__", repr(fn))
        with self._guard:
            if any(existing is fn for _, existing in self._subscribers):
                return fn
            self._subscribers.append((label, fn))
        return fn

    def unsubscribe(self, fn: Subscriber) -> None:
        with self._guard:
            self._subscribers = [(n, f) for n, f in self._subscribers if f is not fn]

    def clear(self) -> None:
        with self._guard:
            self._subscribers = []

    @property
    def subscribers(self) -> list[str]:
        return [name for name, _ in self._subscribers]

    @contextmanager
    def sequenced(self, organization_id: int) -> Iterator[None]:
        """Held by the unit of work around commit + enqueue, never around delivery."""
        with self._guard:
            lock = self._tenant_locks[organization_id]
        with lock:
            yield

    def enqueue(self, event: StockEvent) -> None:
        org_id = event.organization_id
        with self._idle:
            self._pending[org_id].append(event)
            if org_id in self._draining:
                return
            self._draining.add(org_id)
        try:
            self._executor.submit(self._drain_tenant, org_id)
        except RuntimeError as e:
            # executor already shut down (interpreter exit)
            logger.warning(f"[bus] dropping events for org={org_id}: {e}")
            with self._idle:
                self._pending.pop(org_id, None)
                self._draining.discard(org_id)
                self._idle.notify_all()

    def publish(self, event: StockEvent) -> None:
        """Deliver *event* to every subscriber on the calling thread."""
        for name, fn in list(self._subscribers):
            try:
                fn(event)
            except Exception:  # noqa: BLE001
                logger.exception(f"[bus] subscriber {name} failed on {event.kind} (org={event.organization_id})")

    def drain(self, timeout: float = 5.0) -> bool:
        """Block until every queued event has been delivered; False on timeout."""
        with self._idle:
            return self._idle.wait_for(lambda: not self._draining, timeout)

    def _drain_tenant(self, org_id: int) -> None:
        while True:
            with self._idle:
                queue = self._pending.get(org_id)
                if not queue:
                    self._pending.pop(org_id, None)
                    self._draining.discard(org_id)
                    self._idle.notify_all()
                    return
                event = queue.popleft()
            self.publish(event)


bus = ObserverBus()


def register_default_subscribers(target: ObserverBus | None = None) -> ObserverBus:
    """Cache invalidator, low-stock trigger and realtime channel, in that order."""
    from stockroom.services import cache, low_stock, realtime

    target = target or bus
    target.subscribe(cache.invalidate_on_event, "overview-cache")
    target.subscribe(low_stock.trigger_on_event, "low-stock-trigger")
    target.subscribe(realtime.broadcast_event, "realtime-hints")
    logger.info(f"[bus] subscribers: {', '.join(target.subscribers)}")
    return target
