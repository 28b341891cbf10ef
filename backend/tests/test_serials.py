"""
Serial-number lifecycle on work orders.
"""
import pytest

from stockroom.core.errors import DomainError, SerialUnavailable
from stockroom.services import catalog, sales, stock_moves, work_orders


def _levels(actor, product_id):
    (row,) = stock_moves.summary(actor, product_id)
    return {l["bin_id"]: (l["on_hand"], l["reserved"]) for l in row["levels"]}


def _serial(actor, serial_id):
    (row,) = [s for s in catalog.list_serials(actor) if s["id"] == serial_id]
    return row


@pytest.fixture
def shop(actor, make_bin, make_product):
    """Two bins, a serial-tracked board with SN-1 and SN-2 in bin A, one work order needing 2."""
    a, b = make_bin(actor, "A"), make_bin(actor, "B")
    p = make_product(actor, "board", {a: 2}, track_serial=True)
    s1 = catalog.register_serial(actor, p, "SN-1", a)["id"]
    s2 = catalog.register_serial(actor, p, "SN-2", a)["id"]
    wo = work_orders.create(actor, "Dana", "Console", [{"product_id": p, "qty": 2}])
    return {"a": a, "b": b, "p": p, "s1": s1, "s2": s2, "wo": wo["id"], "part": wo["parts"][0]["id"]}


class TestRegister:
    def test_register_requires_tracked_product(self, actor, make_bin, make_product):
        a = make_bin(actor, "A")
        p = make_product(actor, "cable", {a: 1})
        with pytest.raises(DomainError) as exc:
            catalog.register_serial(actor, p, "X1", a)
        assert exc.value.code == "product-not-serialized"

    def test_duplicate_serial(self, actor, shop):
        with pytest.raises(DomainError) as exc:
            catalog.register_serial(actor, shop["p"], " SN-1 ", shop["a"])
        assert exc.value.code == "serial-exists"

    def test_available_serial_needs_a_bin(self, actor, shop):
        with pytest.raises(DomainError) as exc:
            catalog.register_serial(actor, shop["p"], "SN-3", None)
        assert exc.value.code == "bin-required"


class TestLifecycle:
    def test_reserve_then_pick(self, actor, shop):
        work_orders.reserve_parts(actor, shop["wo"], [{"part_id": shop["part"], "serial_ids": [shop["s1"]]}])
        assert _serial(actor, shop["s1"])["status"] == "reserved"
        assert _levels(actor, shop["p"]) == {shop["a"]: (2, 1)}

        work_orders.pick_part(actor, shop["wo"], shop["part"], shop["a"], serial_ids=[shop["s1"]])

        sn = _serial(actor, shop["s1"])
        assert (sn["status"], sn["bin_id"]) == ("assigned", None)
        assert _levels(actor, shop["p"]) == {shop["a"]: (1, 0)}
        part = work_orders.get(actor, shop["wo"])["parts"][0]
        assert (part["qty_reserved"], part["qty_picked"]) == (0, 1)

    def test_pick_from_wrong_bin(self, actor, shop):
        work_orders.reserve_parts(actor, shop["wo"], [{"part_id": shop["part"], "serial_ids": [shop["s1"]]}])

        with pytest.raises(SerialUnavailable):
            work_orders.pick_part(actor, shop["wo"], shop["part"], shop["b"], serial_ids=[shop["s1"]])
        assert _serial(actor, shop["s1"])["status"] == "reserved"

    def test_reserved_serial_cannot_be_taken_twice(self, actor, shop):
        work_orders.reserve_parts(actor, shop["wo"], [{"part_id": shop["part"], "serial_ids": [shop["s1"]]}])
        other = work_orders.create(actor, "Eli", "Console", [{"product_id": shop["p"], "qty": 1}])

        with pytest.raises(SerialUnavailable):
            work_orders.reserve_parts(
                actor, other["id"], [{"part_id": other["parts"][0]["id"], "serial_ids": [shop["s1"]]}]
            )

    def test_tracked_product_needs_serials(self, actor, shop):
        with pytest.raises(DomainError) as exc:
            work_orders.reserve_parts(actor, shop["wo"], [{"part_id": shop["part"], "qty": 1}])
        assert exc.value.code == "serials-required"

    def test_return_picked_serial_restocks_it(self, actor, shop):
        work_orders.reserve_parts(actor, shop["wo"], [{"part_id": shop["part"], "serial_ids": [shop["s1"]]}])
        work_orders.pick_part(actor, shop["wo"], shop["part"], shop["a"], serial_ids=[shop["s1"]])

        work_orders.return_part(actor, shop["wo"], shop["part"], shop["a"], serial_ids=[shop["s1"]])

        sn = _serial(actor, shop["s1"])
        assert (sn["status"], sn["bin_id"]) == ("available", shop["a"])
        assert _levels(actor, shop["p"]) == {shop["a"]: (2, 0)}

    def test_faulty_return_leaves_stock(self, actor, shop):
        work_orders.reserve_parts(actor, shop["wo"], [{"part_id": shop["part"], "serial_ids": [shop["s1"]]}])
        work_orders.pick_part(actor, shop["wo"], shop["part"], shop["a"], serial_ids=[shop["s1"]])

        work_orders.return_part(actor, shop["wo"], shop["part"], shop["a"], serial_ids=[shop["s1"]], faulty=True)

        sn = _serial(actor, shop["s1"])
        assert (sn["status"], sn["bin_id"]) == ("faulty", None)
        assert _levels(actor, shop["p"]) == {shop["a"]: (1, 0)}

    def test_release_reserved_serial(self, actor, shop):
        work_orders.reserve_parts(
            actor, shop["wo"], [{"part_id": shop["part"], "serial_ids": [shop["s1"], shop["s2"]]}]
        )
        work_orders.return_part(
            actor, shop["wo"], shop["part"], shop["a"], source="reserved", serial_ids=[shop["s2"]]
        )

        assert _serial(actor, shop["s2"])["status"] == "available"
        assert _levels(actor, shop["p"]) == {shop["a"]: (2, 1)}
        assert work_orders.get(actor, shop["wo"])["parts"][0]["qty_reserved"] == 1

    def test_cancel_releases_serials(self, actor, shop):
        work_orders.reserve_parts(
            actor, shop["wo"], [{"part_id": shop["part"], "serial_ids": [shop["s1"], shop["s2"]]}]
        )
        work_orders.update_status(actor, shop["wo"], "canceled")

        assert {_serial(actor, s)["status"] for s in (shop["s1"], shop["s2"])} == {"available"}
        assert _levels(actor, shop["p"]) == {shop["a"]: (2, 0)}


class TestMarkFaulty:
    def test_available_serial(self, actor, shop):
        catalog.mark_serial_faulty(actor, shop["s2"])

        assert _serial(actor, shop["s2"])["status"] == "faulty"
        assert _levels(actor, shop["p"]) == {shop["a"]: (1, 0)}

    def test_reserved_serial_drops_the_reservation(self, actor, shop):
        work_orders.reserve_parts(actor, shop["wo"], [{"part_id": shop["part"], "serial_ids": [shop["s1"]]}])

        catalog.mark_serial_faulty(actor, shop["s1"])

        assert _levels(actor, shop["p"]) == {shop["a"]: (1, 0)}
        assert work_orders.get(actor, shop["wo"])["parts"][0]["qty_reserved"] == 0

    def test_already_faulty(self, actor, shop):
        catalog.mark_serial_faulty(actor, shop["s2"])
        with pytest.raises(SerialUnavailable):
            catalog.mark_serial_faulty(actor, shop["s2"])


class TestBulkPaths:
    """Tracked units only leave a bin by name."""

    def test_sale_is_refused(self, actor, shop):
        with pytest.raises(DomainError) as exc:
            sales.create_sale(actor, [{"product_id": shop["p"], "quantity": 1}])
        assert exc.value.code == "serials-required"
        assert sales.list_sales(actor) == []

    def test_transfer_and_write_down_are_refused(self, actor, shop):
        with pytest.raises(DomainError) as exc:
            stock_moves.move(actor, shop["p"], 1, from_bin_id=shop["a"], to_bin_id=shop["b"])
        assert exc.value.code == "serials-required"
        with pytest.raises(DomainError) as exc:
            stock_moves.adjust_levels(actor, shop["p"], on_hand=1)
        assert exc.value.code == "serials-required"
        assert _levels(actor, shop["p"]) == {shop["a"]: (2, 0)}
        assert _serial(actor, shop["s1"])["bin_id"] == shop["a"]

    def test_receipt_into_a_bin_is_allowed(self, actor, shop):
        stock_moves.move(actor, shop["p"], 1, to_bin_id=shop["b"], reason="receive")
        assert _levels(actor, shop["p"])[shop["b"]] == (1, 0)
