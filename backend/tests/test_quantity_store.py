"""
Guarded level primitives and the movement record.
"""
import pytest

from stockroom.core.errors import InsufficientStock, InvariantViolation
from stockroom.models import MoveReason
from stockroom.services.unit_of_work import run_in_unit_of_work


def _levels(uow, product_id):
    return {l.bin_id: (l.on_hand, l.reserved) for l in uow.store.levels(product_id)}


class TestPrimitives:
    def test_inc_on_hand_creates_missing_row(self, actor, make_bin, make_product):
        a = make_bin(actor, "A-01")
        p = make_product(actor, "cable")

        def work(uow):
            uow.store.inc_on_hand(p, a, 4)
            return _levels(uow, p)

        assert run_in_unit_of_work(actor, work) == {a: (4, 0)}

    def test_dec_on_hand_cannot_go_negative(self, actor, make_bin, make_product):
        a = make_bin(actor, "A-01")
        p = make_product(actor, "cable", {a: 2})

        with pytest.raises(InsufficientStock):
            run_in_unit_of_work(actor, lambda uow: uow.store.dec_on_hand(p, a, 3))

    def test_dec_on_hand_cannot_drop_below_reserved(self, actor, make_bin, make_product):
        """Removing stock that is reserved is refused; the whole unit rolls back."""
        a = make_bin(actor, "A-01")
        p = make_product(actor, "cable", {a: 5})

        def work(uow):
            uow.store.inc_reserved(p, a, 3)
            uow.store.dec_on_hand(p, a, 3)

        with pytest.raises(InsufficientStock):
            run_in_unit_of_work(actor, work)
        assert run_in_unit_of_work(actor, lambda uow: _levels(uow, p)) == {a: (5, 0)}

    def test_inc_reserved_limited_by_on_hand(self, actor, make_bin, make_product):
        a = make_bin(actor, "A-01")
        b = make_bin(actor, "B-01")
        p = make_product(actor, "cable", {a: 2})

        with pytest.raises(InsufficientStock):
            run_in_unit_of_work(actor, lambda uow: uow.store.inc_reserved(p, a, 3))
        # no level row at all counts as zero
        with pytest.raises(InsufficientStock):
            run_in_unit_of_work(actor, lambda uow: uow.store.inc_reserved(p, b, 1))

    def test_dec_reserved_below_zero_is_an_invariant_violation(self, actor, make_bin, make_product):
        a = make_bin(actor, "A-01")
        p = make_product(actor, "cable", {a: 2})

        with pytest.raises(InvariantViolation):
            run_in_unit_of_work(actor, lambda uow: uow.store.dec_reserved(p, a, 1))

    @pytest.mark.parametrize("qty", [0, -1, True, 1.5])
    def test_non_positive_quantities_are_rejected(self, actor, make_bin, make_product, qty):
        a = make_bin(actor, "A-01")
        p = make_product(actor, "cable")

        with pytest.raises(InvariantViolation):
            run_in_unit_of_work(actor, lambda uow: uow.store.inc_on_hand(p, a, qty))


class TestRecordMove:
    def test_move_needs_a_bin(self, actor, make_product):
        p = make_product(actor, "cable")

        with pytest.raises(InvariantViolation):
            run_in_unit_of_work(actor, lambda uow: uow.store.record_move(p, 1, MoveReason.adjust))

    def test_unknown_reason_and_refs_are_rejected(self, actor, make_bin, make_product):
        a = make_bin(actor, "A-01")
        p = make_product(actor, "cable")

        with pytest.raises(InvariantViolation):
            run_in_unit_of_work(actor, lambda uow: uow.store.record_move(p, 1, "teleport", to_bin_id=a))
        with pytest.raises(InvariantViolation):
            run_in_unit_of_work(actor, lambda uow: uow.store.record_move(p, 1, "receive", to_bin_id=a, lot="x"))

    def test_move_carries_actor_and_tenant(self, actor, make_bin, make_product):
        a = make_bin(actor, "A-01")
        p = make_product(actor, "cable")

        def work(uow):
            uow.store.inc_on_hand(p, a, 2)
            mv = uow.store.record_move(p, 2, MoveReason.receive, to_bin_id=a, notes="count")
            return mv.performed_by, mv.organization_id, mv.reason, mv.notes

        assert run_in_unit_of_work(actor, work) == (7, actor.organization_id, MoveReason.receive, "count")
