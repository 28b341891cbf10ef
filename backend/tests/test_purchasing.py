"""
Purchase orders and receipts.
"""
import pytest

from stockroom.core.errors import DomainError, SerialUnavailable
from stockroom.services import catalog, purchasing, stock_moves


def _levels(actor, product_id):
    (row,) = stock_moves.summary(actor, product_id)
    return {l["bin_id"]: (l["on_hand"], l["reserved"]) for l in row["levels"]}


@pytest.fixture
def supplier(actor):
    return purchasing.create_supplier(actor, "Parts Direct", contact_email="orders@partsdirect.test")["id"]


class TestCreate:
    def test_total_cost_and_status(self, actor, supplier, make_product):
        p = make_product(actor, "hdd")
        q = make_product(actor, "ssd")

        po = purchasing.create_po(
            actor,
            "PO-1001",
            supplier,
            [
                {"product_id": p, "qty_ordered": 4, "unit_cost": 30.0},
                {"product_id": q, "qty_ordered": 2, "unit_cost": 55.25},
            ],
        )

        assert po["status"] == "ordered"
        assert po["total_cost"] == 230.5
        assert [l["remaining"] for l in po["lines"]] == [4, 2]

    def test_duplicate_reference(self, actor, supplier, make_product):
        p = make_product(actor, "hdd")
        purchasing.create_po(actor, "PO-1001", supplier, [{"product_id": p, "qty_ordered": 1}])

        with pytest.raises(DomainError) as exc:
            purchasing.create_po(actor, "PO-1001", supplier, [{"product_id": p, "qty_ordered": 1}])
        assert exc.value.code == "duplicate-reference"


class TestReceive:
    def test_partial_then_full_receipt(self, actor, supplier, make_bin, make_product):
        a = make_bin(actor, "DOCK")
        p = make_product(actor, "hdd")
        po = purchasing.create_po(actor, "PO-1", supplier, [{"product_id": p, "qty_ordered": 5}])
        line = po["lines"][0]["id"]

        po = purchasing.receive(actor, po["id"], [{"line_id": line, "qty": 3, "bin_id": a}])
        assert po["status"] == "partially_received"
        assert po["lines"][0]["remaining"] == 2

        po = purchasing.receive(actor, po["id"], [{"line_id": line, "qty": 2, "bin_id": a}])
        assert po["status"] == "received"
        assert _levels(actor, p) == {a: (5, 0)}

    def test_over_receipt(self, actor, supplier, make_bin, make_product):
        a = make_bin(actor, "DOCK")
        p = make_product(actor, "hdd")
        po = purchasing.create_po(actor, "PO-1", supplier, [{"product_id": p, "qty_ordered": 2}])

        with pytest.raises(DomainError) as exc:
            purchasing.receive(actor, po["id"], [{"line_id": po["lines"][0]["id"], "qty": 3, "bin_id": a}])
        assert exc.value.code == "over-receipt"
        assert stock_moves.summary(actor, p)[0]["on_hand"] == 0

    def test_line_from_another_order(self, actor, supplier, make_bin, make_product):
        a = make_bin(actor, "DOCK")
        p = make_product(actor, "hdd")
        po1 = purchasing.create_po(actor, "PO-1", supplier, [{"product_id": p, "qty_ordered": 2}])
        po2 = purchasing.create_po(actor, "PO-2", supplier, [{"product_id": p, "qty_ordered": 2}])

        with pytest.raises(DomainError) as exc:
            purchasing.receive(actor, po1["id"], [{"line_id": po2["lines"][0]["id"], "qty": 1, "bin_id": a}])
        assert exc.value.code == "line-mismatch"

    def test_serialized_receipt_creates_serials(self, actor, supplier, make_bin, make_product):
        a = make_bin(actor, "DOCK")
        p = make_product(actor, "phone", track_serial=True)
        po = purchasing.create_po(actor, "PO-9", supplier, [{"product_id": p, "qty_ordered": 2}])
        line = po["lines"][0]["id"]

        with pytest.raises(DomainError) as exc:
            purchasing.receive(actor, po["id"], [{"line_id": line, "qty": 2, "bin_id": a, "serials": ["IMEI-1"]}])
        assert exc.value.code == "serials-required"

        purchasing.receive(
            actor, po["id"], [{"line_id": line, "qty": 2, "bin_id": a, "serials": ["IMEI-1", "IMEI-2"]}]
        )

        serials = catalog.list_serials(actor, product_id=p)
        assert [(s["serial"], s["status"], s["bin_id"]) for s in serials] == [
            ("IMEI-1", "available", a),
            ("IMEI-2", "available", a),
        ]
        assert _levels(actor, p) == {a: (2, 0)}

    def test_known_available_serial_cannot_be_received_again(self, actor, supplier, make_bin, make_product):
        a = make_bin(actor, "DOCK")
        p = make_product(actor, "phone", {a: 1}, track_serial=True)
        catalog.register_serial(actor, p, "IMEI-1", a)
        po = purchasing.create_po(actor, "PO-9", supplier, [{"product_id": p, "qty_ordered": 1}])

        with pytest.raises(SerialUnavailable):
            purchasing.receive(
                actor, po["id"], [{"line_id": po["lines"][0]["id"], "qty": 1, "bin_id": a, "serials": ["IMEI-1"]}]
            )

    def test_faulty_serial_is_restocked_by_receipt(self, actor, supplier, make_bin, make_product):
        a = make_bin(actor, "DOCK")
        p = make_product(actor, "phone", {a: 1}, track_serial=True)
        sn = catalog.register_serial(actor, p, "IMEI-1", a)
        catalog.mark_serial_faulty(actor, sn["id"])
        po = purchasing.create_po(actor, "RMA-1", supplier, [{"product_id": p, "qty_ordered": 1}])

        purchasing.receive(
            actor, po["id"], [{"line_id": po["lines"][0]["id"], "qty": 1, "bin_id": a, "serials": ["IMEI-1"]}]
        )

        (row,) = catalog.list_serials(actor, product_id=p)
        assert (row["status"], row["bin_id"]) == ("available", a)
        assert _levels(actor, p) == {a: (1, 0)}
