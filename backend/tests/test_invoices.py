"""
Direct invoice fulfilment from free stock.
"""
import pytest
from sqlmodel import select

from stockroom.core.errors import DomainError, InsufficientStock
from stockroom.models import StockLevel
from stockroom.services import history, invoices, sales, stock_moves
from stockroom.services.events import StockEvent, bus
from stockroom.services.unit_of_work import run_read


def _levels(actor, product_id):
    (row,) = stock_moves.summary(actor, product_id)
    return {l["bin_id"]: (l["on_hand"], l["reserved"]) for l in row["levels"]}


@pytest.fixture
def two_bins(actor, make_bin, make_product):
    """5 in A with 3 of them held by a sale, 4 free in B."""
    a, b = make_bin(actor, "A"), make_bin(actor, "B")
    p = make_product(actor, "toner", {a: 5, b: 4})
    sale = sales.create_sale(actor, [{"product_id": p, "quantity": 3}])
    assert _levels(actor, p) == {a: (5, 3), b: (4, 0)}
    return {"a": a, "b": b, "p": p, "sale": sale["id"]}


class TestFulfil:
    def test_takes_free_stock_fullest_bin_first(self, actor, two_bins):
        a, b, p = two_bins["a"], two_bins["b"], two_bins["p"]

        res = invoices.fulfil_invoice(actor, 501, [{"product_id": p, "qty": 5}])

        assert [(m["bin_id"], m["qty"]) for m in res["moves"]] == [(a, 2), (b, 3)]
        assert _levels(actor, p) == {a: (3, 3), b: (1, 0)}
        # the sale's reservation is untouched and still ships
        done = sales.complete(actor, two_bins["sale"], invoice_id=502)
        assert done["status"] == "complete"
        assert _levels(actor, p) == {a: (0, 0), b: (1, 0)}

    def test_named_bin_only(self, actor, two_bins):
        b, p = two_bins["b"], two_bins["p"]

        with pytest.raises(InsufficientStock):
            invoices.fulfil_invoice(actor, 501, [{"product_id": p, "qty": 5, "bin_id": b}])
        assert _levels(actor, p)[b] == (4, 0)

        invoices.fulfil_invoice(actor, 501, [{"product_id": p, "qty": 4, "bin_id": b}])
        assert _levels(actor, p)[b] == (0, 0)

    def test_reserved_units_are_not_free(self, actor, two_bins):
        with pytest.raises(InsufficientStock):
            invoices.fulfil_invoice(actor, 501, [{"product_id": two_bins["p"], "qty": 7}])
        assert invoices.get_fulfilment(actor, 501) == {"invoice_id": 501, "fulfilled": False, "moves": []}

    def test_invoice_ships_once(self, actor, two_bins):
        invoices.fulfil_invoice(actor, 501, [{"product_id": two_bins["p"], "qty": 1}])

        with pytest.raises(DomainError) as exc:
            invoices.fulfil_invoice(actor, 501, [{"product_id": two_bins["p"], "qty": 1}])
        assert exc.value.code == "invoice-fulfilled"

    def test_product_without_levels(self, actor, make_product):
        p = make_product(actor, "toner")
        with pytest.raises(DomainError) as exc:
            invoices.fulfil_invoice(actor, 501, [{"product_id": p, "qty": 1}])
        assert exc.value.code == "no-stock-levels"

    def test_serial_tracked_product_is_refused(self, actor, make_bin, make_product):
        a = make_bin(actor, "A")
        p = make_product(actor, "router", {a: 2}, track_serial=True)
        with pytest.raises(DomainError) as exc:
            invoices.fulfil_invoice(actor, 501, [{"product_id": p, "qty": 1}])
        assert exc.value.code == "serials-required"

    def test_one_event(self, actor, two_bins):
        seen = []
        bus.subscribe(seen.append, "recorder")

        invoices.fulfil_invoice(
            actor, 501, [{"product_id": two_bins["p"], "qty": 1}, {"product_id": two_bins["p"], "qty": 1}]
        )
        bus.drain()

        assert [e.kind for e in seen] == ["invoice-fulfil"]
        assert seen[0].refs == {"invoice_id": 501, "lines": 2}
        assert StockEvent(actor.organization_id, "invoice-fulfil").envelope()["hint"] == "invoice"


class TestReplay:
    def test_direct_and_sale_shipments_replay(self, actor, two_bins):
        invoices.fulfil_invoice(actor, 501, [{"product_id": two_bins["p"], "qty": 5}])
        sales.complete(actor, two_bins["sale"], invoice_id=502)

        def read(ses):
            stored = sorted((l.product_id, l.bin_id, l.on_hand, l.reserved) for l in ses.exec(select(StockLevel)))
            df = history.replay_levels(history.moves_frame(ses))
            replayed = sorted(
                tuple(int(v) for v in row)
                for row in df[["product_id", "bin_id", "on_hand", "reserved"]].itertuples(index=False)
            )
            return stored, replayed

        stored, replayed = run_read(actor, read)
        assert replayed == stored
