"""
Unit of work: concurrency, retries, deadlines.
"""
import threading

import pytest
from sqlalchemy.exc import OperationalError

from stockroom.core.errors import Conflict, InsufficientStock, Timeout
from stockroom.services import history, stock_moves, work_orders
from stockroom.services.events import bus
from stockroom.services.unit_of_work import run_in_unit_of_work, run_read


def _locked():
    return OperationalError("UPDATE stock_levels ...", {}, Exception("database is locked"))


class TestConcurrency:
    def test_last_unit_goes_to_exactly_one_order(self, actor, make_bin, make_product):
        a = make_bin(actor, "A")
        p = make_product(actor, "chip", {a: 1})
        orders = [
            work_orders.create(actor, name, "Board swap", [{"product_id": p, "qty": 1}]) for name in ("Ana", "Ben")
        ]
        barrier = threading.Barrier(len(orders))
        outcomes = []

        def attempt(wo):
            barrier.wait()
            try:
                work_orders.reserve_parts(actor, wo["id"], [{"part_id": wo["parts"][0]["id"], "qty": 1}])
                outcomes.append("ok")
            except InsufficientStock:
                outcomes.append("insufficient")

        threads = [threading.Thread(target=attempt, args=(wo,)) for wo in orders]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=60)

        assert sorted(outcomes) == ["insufficient", "ok"]
        (row,) = stock_moves.summary(actor, p)
        assert (row["on_hand"], row["reserved"]) == (1, 1)
        df = run_read(actor, lambda ses: history.moves_frame(ses, p))
        assert (df["reason"] == "reserve").sum() == 1


class TestRetries:
    def test_serialization_failure_is_retried(self, actor):
        calls = []
        seen = []
        bus.subscribe(seen.append)

        def work(uow):
            calls.append(1)
            uow.emit("adjust", attempt=len(calls))
            if len(calls) < 3:
                raise _locked()
            return "done"

        assert run_in_unit_of_work(actor, work, attempts=3) == "done"
        assert len(calls) == 3
        bus.drain()
        # only the committed attempt publishes
        assert [e.refs["attempt"] for e in seen] == [3]

    def test_exhausted_retries_raise_conflict(self, actor):
        def work(uow):
            raise _locked()

        with pytest.raises(Conflict) as exc:
            run_in_unit_of_work(actor, work, attempts=2)
        assert exc.value.retryable is True

    def test_other_database_errors_propagate(self, actor):
        def work(uow):
            raise OperationalError("SELECT 1", {}, Exception("no such table: nowhere"))

        with pytest.raises(OperationalError):
            run_in_unit_of_work(actor, work, attempts=3)


class TestDeadline:
    def test_expired_deadline_aborts_before_commit(self, actor, make_bin, make_product):
        a = make_bin(actor, "A")
        p = make_product(actor, "chip")

        with pytest.raises(Timeout):
            run_in_unit_of_work(actor, lambda uow: uow.store.inc_on_hand(p, a, 5), deadline_s=-1)
        assert stock_moves.summary(actor, p)[0]["on_hand"] == 0
