"""
Work-order parts: reserve, pick, return, cancel.
"""
import pytest

from stockroom.core.errors import DomainError, InsufficientStock, NotFound
from stockroom.services import history, stock_moves, work_orders
from stockroom.services.unit_of_work import run_read


def _levels(actor, product_id):
    (row,) = stock_moves.summary(actor, product_id)
    return {l["bin_id"]: (l["on_hand"], l["reserved"]) for l in row["levels"]}


def _moves(actor, product_id, reason=None):
    df = run_read(actor, lambda ses: history.moves_frame(ses, product_id))
    if reason is not None:
        df = df[df["reason"] == reason]
    return df


def _new_order(actor, product_id, qty):
    wo = work_orders.create(actor, "Dana", "Laptop, no power", [{"product_id": product_id, "qty": qty}])
    return wo["id"], wo["parts"][0]["id"]


class TestReserve:
    def test_greedy_split_across_bins(self, actor, make_bin, make_product):
        """A=10, B=5: reserving 12 takes all of A first, then 2 from B."""
        a, b = make_bin(actor, "A"), make_bin(actor, "B")
        p = make_product(actor, "ssd", {a: 10, b: 5})
        wo_id, part_id = _new_order(actor, p, 12)

        wo = work_orders.reserve_parts(actor, wo_id, [{"part_id": part_id, "qty": 12}])

        assert wo["parts"][0]["qty_reserved"] == 12
        assert _levels(actor, p) == {a: (10, 10), b: (5, 2)}
        reserves = _moves(actor, p, "reserve")
        assert sorted(zip(reserves["from_bin_id"], reserves["qty"])) == [(a, 10), (b, 2)]
        assert set(reserves["work_order_part_id"]) == {part_id}

    def test_insufficient_stock_leaves_nothing_behind(self, actor, make_bin, make_product):
        a = make_bin(actor, "A")
        p = make_product(actor, "ssd", {a: 2})
        wo_id, part_id = _new_order(actor, p, 3)

        with pytest.raises(InsufficientStock):
            work_orders.reserve_parts(actor, wo_id, [{"part_id": part_id, "qty": 3}])

        assert _levels(actor, p) == {a: (2, 0)}
        assert _moves(actor, p, "reserve").empty
        assert work_orders.get(actor, wo_id)["parts"][0]["qty_reserved"] == 0

    def test_cannot_reserve_beyond_need(self, actor, make_bin, make_product):
        a = make_bin(actor, "A")
        p = make_product(actor, "ssd", {a: 10})
        wo_id, part_id = _new_order(actor, p, 2)
        work_orders.reserve_parts(actor, wo_id, [{"part_id": part_id, "qty": 2}])

        with pytest.raises(DomainError) as exc:
            work_orders.reserve_parts(actor, wo_id, [{"part_id": part_id, "qty": 1}])
        assert exc.value.code == "over-reservation"

    def test_part_must_belong_to_order(self, actor, make_bin, make_product):
        a = make_bin(actor, "A")
        p = make_product(actor, "ssd", {a: 10})
        wo1, _ = _new_order(actor, p, 1)
        _, part2 = _new_order(actor, p, 1)

        with pytest.raises(DomainError) as exc:
            work_orders.reserve_parts(actor, wo1, [{"part_id": part2, "qty": 1}])
        assert exc.value.code == "part-mismatch"

    def test_unknown_order(self, actor):
        with pytest.raises(NotFound):
            work_orders.get(actor, 999)


class TestPick:
    def test_pick_follows_the_reservation_bins(self, actor, make_bin, make_product):
        a, b = make_bin(actor, "A"), make_bin(actor, "B")
        p = make_product(actor, "fan", {a: 2, b: 1})
        wo_id, part_id = _new_order(actor, p, 3)
        work_orders.reserve_parts(actor, wo_id, [{"part_id": part_id, "qty": 3}])
        assert _levels(actor, p) == {a: (2, 2), b: (1, 1)}

        work_orders.pick_part(actor, wo_id, part_id, a, qty=2)
        with pytest.raises(InsufficientStock):
            work_orders.pick_part(actor, wo_id, part_id, a, qty=1)
        work_orders.pick_part(actor, wo_id, part_id, b, qty=1)

        part = work_orders.get(actor, wo_id)["parts"][0]
        assert (part["qty_reserved"], part["qty_picked"]) == (0, 3)
        assert _levels(actor, p) == {a: (0, 0), b: (0, 0)}

    def test_pick_requires_own_reservation_in_bin(self, actor, make_bin, make_product):
        """Another order's reservation in the bin cannot be picked."""
        a, b = make_bin(actor, "A"), make_bin(actor, "B")
        p = make_product(actor, "fan", {a: 5, b: 1})
        wo1, part1 = _new_order(actor, p, 5)
        wo2, part2 = _new_order(actor, p, 1)
        work_orders.reserve_parts(actor, wo1, [{"part_id": part1, "qty": 5}])
        work_orders.reserve_parts(actor, wo2, [{"part_id": part2, "qty": 1}])

        with pytest.raises(InsufficientStock):
            work_orders.pick_part(actor, wo2, part2, a, qty=1)
        result = work_orders.pick_part(actor, wo2, part2, b, qty=1)
        assert result["ok"] is True and result["move_id"]

    def test_pick_needs_quantity(self, actor, make_bin, make_product):
        a = make_bin(actor, "A")
        p = make_product(actor, "fan", {a: 1})
        wo_id, part_id = _new_order(actor, p, 1)

        with pytest.raises(DomainError) as exc:
            work_orders.pick_part(actor, wo_id, part_id, a)
        assert exc.value.code == "qty-required"


class TestReturn:
    @pytest.fixture
    def picked(self, actor, make_bin, make_product):
        a = make_bin(actor, "A")
        p = make_product(actor, "psu", {a: 4})
        wo_id, part_id = _new_order(actor, p, 3)
        work_orders.reserve_parts(actor, wo_id, [{"part_id": part_id, "qty": 3}])
        work_orders.pick_part(actor, wo_id, part_id, a, qty=2)
        return a, p, wo_id, part_id

    def test_return_picked_restocks(self, actor, picked):
        a, p, wo_id, part_id = picked
        work_orders.return_part(actor, wo_id, part_id, a, qty=1)

        part = work_orders.get(actor, wo_id)["parts"][0]
        assert (part["qty_reserved"], part["qty_picked"]) == (1, 1)
        assert _levels(actor, p) == {a: (3, 1)}

    def test_faulty_return_is_written_off(self, actor, picked):
        a, p, wo_id, part_id = picked
        work_orders.return_part(actor, wo_id, part_id, a, qty=1, faulty=True)

        assert _levels(actor, p) == {a: (2, 1)}
        assert list(_moves(actor, p)["reason"].iloc[-2:]) == ["return", "rma_out"]

    def test_release_reserved(self, actor, picked):
        a, p, wo_id, part_id = picked
        work_orders.return_part(actor, wo_id, part_id, a, qty=1, source="reserved")

        part = work_orders.get(actor, wo_id)["parts"][0]
        assert (part["qty_reserved"], part["qty_picked"]) == (0, 2)
        assert _levels(actor, p) == {a: (2, 0)}

    def test_over_return(self, actor, picked):
        a, _, wo_id, part_id = picked
        with pytest.raises(DomainError) as exc:
            work_orders.return_part(actor, wo_id, part_id, a, qty=3)
        assert exc.value.code == "over-return"

    def test_return_to_untracked_bin(self, actor, make_bin, picked):
        _, _, wo_id, part_id = picked
        c = make_bin(actor, "C")
        with pytest.raises(DomainError) as exc:
            work_orders.return_part(actor, wo_id, part_id, c, qty=1)
        assert exc.value.code == "bin-missing-for-product"


class TestStatus:
    def test_cancel_releases_every_part(self, actor, make_bin, make_product):
        a, b = make_bin(actor, "A"), make_bin(actor, "B")
        p = make_product(actor, "ram", {a: 2, b: 2})
        wo_id, part_id = _new_order(actor, p, 3)
        work_orders.reserve_parts(actor, wo_id, [{"part_id": part_id, "qty": 3}])

        wo = work_orders.update_status(actor, wo_id, "canceled", note="customer declined")

        assert wo["status"] == "canceled"
        assert wo["parts"][0]["qty_reserved"] == 0
        assert _levels(actor, p) == {a: (2, 0), b: (2, 0)}
        assert [h["to_status"] for h in wo["status_history"]] == ["intake", "canceled"]

    def test_canceled_is_terminal(self, actor):
        wo = work_orders.create(actor, "Dana", "Phone")
        work_orders.update_status(actor, wo["id"], "canceled")

        with pytest.raises(DomainError) as exc:
            work_orders.update_status(actor, wo["id"], "in_progress")
        assert exc.value.code == "work-order-canceled"

    @pytest.mark.parametrize("closed", ["canceled", "completed"])
    def test_closed_order_takes_no_stock(self, actor, make_bin, make_product, closed):
        a = make_bin(actor, "A")
        p = make_product(actor, "ram", {a: 4})
        wo_id, part_id = _new_order(actor, p, 2)
        work_orders.update_status(actor, wo_id, closed)

        with pytest.raises(DomainError) as exc:
            work_orders.reserve_parts(actor, wo_id, [{"part_id": part_id, "qty": 1}])
        assert exc.value.code == "work-order-closed"
        with pytest.raises(DomainError) as exc:
            work_orders.pick_part(actor, wo_id, part_id, a, qty=1)
        assert exc.value.code == "work-order-closed"
        assert _levels(actor, p) == {a: (4, 0)}

    def test_completed_order_can_still_give_stock_back(self, actor, make_bin, make_product):
        a = make_bin(actor, "A")
        p = make_product(actor, "ram", {a: 4})
        wo_id, part_id = _new_order(actor, p, 3)
        work_orders.reserve_parts(actor, wo_id, [{"part_id": part_id, "qty": 3}])
        work_orders.pick_part(actor, wo_id, part_id, a, qty=2)
        work_orders.update_status(actor, wo_id, "completed")

        work_orders.return_part(actor, wo_id, part_id, a, qty=1, source="reserved")
        work_orders.return_part(actor, wo_id, part_id, a, qty=1)

        part = work_orders.get(actor, wo_id)["parts"][0]
        assert (part["qty_reserved"], part["qty_picked"]) == (0, 1)
        assert _levels(actor, p) == {a: (3, 0)}

    def test_unknown_status(self, actor):
        wo = work_orders.create(actor, "Dana", "Phone")
        with pytest.raises(DomainError) as exc:
            work_orders.update_status(actor, wo["id"], "teleported")
        assert exc.value.code == "invalid-status"

    def test_list_filters_by_status(self, actor):
        first = work_orders.create(actor, "Dana", "Phone")
        work_orders.create(actor, "Eli", "Tablet")
        work_orders.update_status(actor, first["id"], "diagnostics")

        rows = work_orders.list_orders(actor, "diagnostics")
        assert [r["id"] for r in rows] == [first["id"]]
        assert len(work_orders.list_orders(actor)) == 2
