"""
Tenant isolation: every read and write is confined to the bound organization.
"""
import pytest
from sqlmodel import Session, select

from stockroom.core.context import bypass_tenant_scope, tenant_scope
from stockroom.core.database import engine
from stockroom.core.errors import DomainError, NotFound
from stockroom.core.tenancy import TenantScopeMissing, tenant_models
from stockroom.models import Bin, Product, StockLevel, StockMove
from stockroom.services import catalog, stock_moves, work_orders


class TestIsolation:
    def test_catalog_is_per_tenant(self, actor, other_actor, make_bin, make_product):
        a = make_bin(actor, "A")
        p = make_product(actor, "widget", {a: 4})

        assert catalog.list_products(other_actor) == []
        assert catalog.list_bins(other_actor) == []
        assert stock_moves.summary(other_actor) == []
        assert stock_moves.summary(other_actor, p) == []

    def test_foreign_ids_look_missing(self, actor, other_actor, make_bin, make_product):
        a = make_bin(actor, "A")
        p = make_product(actor, "widget", {a: 4})
        wo = work_orders.create(actor, "Dana", "Phone", [{"product_id": p, "qty": 1}])
        b = make_bin(other_actor, "A")

        with pytest.raises(NotFound):
            stock_moves.move(other_actor, p, 1, from_bin_id=a, to_bin_id=b)
        with pytest.raises(NotFound):
            work_orders.get(other_actor, wo["id"])
        with pytest.raises(NotFound):
            work_orders.create(other_actor, "Eve", "Phone", [{"product_id": p, "qty": 1}])
        assert stock_moves.summary(actor, p)[0]["on_hand"] == 4

    def test_same_codes_in_both_tenants(self, actor, other_actor, make_bin, make_product):
        make_product(actor, "widget")
        make_product(other_actor, "widget")
        make_bin(actor, "a-1")
        make_bin(other_actor, "A-1")

        with pytest.raises(DomainError) as exc:
            make_product(actor, "widget")
        assert exc.value.code == "duplicate-sku"
        assert [b["code"] for b in catalog.list_bins(other_actor)] == ["A-1"]


class TestHooks:
    def test_unscoped_query_is_refused(self):
        with Session(engine) as ses:
            with pytest.raises(TenantScopeMissing):
                ses.exec(select(Product)).all()

    def test_scoped_queries_filter_every_table(self, actor, other_actor, make_bin, make_product):
        make_product(actor, "widget", {make_bin(actor, "A"): 1})
        make_product(other_actor, "widget", {make_bin(other_actor, "A"): 2})

        with tenant_scope(actor.organization_id), Session(engine) as ses:
            products = ses.exec(select(Product)).all()
            joined = ses.exec(select(StockLevel, Product.sku).join(Product, Product.id == StockLevel.product_id)).all()

        assert [p.organization_id for p in products] == [actor.organization_id]
        assert [(lvl.on_hand, sku) for lvl, sku in joined] == [(1, "widget")]
        assert {Product, Bin, StockLevel, StockMove} <= set(tenant_models())

    def test_new_rows_are_stamped(self, actor):
        with tenant_scope(actor.organization_id), Session(engine) as ses:
            row = Product(sku="stamped", name="Stamped")
            ses.add(row)
            ses.commit()
            assert row.organization_id == actor.organization_id

    def test_cross_tenant_insert_is_refused(self, actor, other_actor):
        with tenant_scope(other_actor.organization_id), Session(engine) as ses:
            ses.add(Product(organization_id=actor.organization_id, sku="smuggled", name="Smuggled"))
            with pytest.raises(DomainError) as exc:
                ses.flush()
        assert exc.value.code == "cross-tenant-write"

    def test_bypass_sees_every_tenant(self, actor, other_actor, make_bin, make_product):
        make_product(actor, "widget", {make_bin(actor, "A"): 1})
        make_product(other_actor, "widget", {make_bin(other_actor, "A"): 2})

        with bypass_tenant_scope(), Session(engine) as ses:
            orgs = {m.organization_id for m in ses.exec(select(StockMove))}

        assert orgs == {actor.organization_id, other_actor.organization_id}
