"""stock engine initial schema

Revision ID: 3f9c1b2e7a10
Revises:
Create Date: 2026-10-19 09:12:31.402117

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3f9c1b2e7a10'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

# enum columns are stored as their string values
STATUS = sa.String(length=32)

TENANT_TABLES = [
    "organization_settings",
    "products",
    "locations",
    "bins",
    "customers",
    "suppliers",
    "work_orders",
    "work_order_parts",
    "work_order_status_history",
    "sales",
    "sale_items",
    "purchase_orders",
    "purchase_order_lines",
    "serial_numbers",
    "serial_assignments",
    "stock_levels",
    "stock_moves",
]


def _org() -> sa.Column:
    return sa.Column("organization_id", sa.Integer(), sa.ForeignKey("organizations.id"), nullable=False)


def _fk(name: str, target: str, nullable: bool = True) -> sa.Column:
    return sa.Column(name, sa.Integer(), sa.ForeignKey(target), nullable=nullable)


def _ts(name: str, nullable: bool = False) -> sa.Column:
    return sa.Column(name, sa.DateTime(), nullable=nullable)


def upgrade() -> None:
    """Upgrade schema: tenants, catalogue, workflows, serials, levels and the movement log."""
    op.create_table(
        "organizations",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("slug", sa.String(), nullable=False),
        _ts("created_at"),
    )
    op.create_index("ix_organizations_slug", "organizations", ["slug"], unique=True)

    op.create_table(
        "organization_settings",
        sa.Column("id", sa.Integer(), primary_key=True),
        _org(),
        sa.Column("key", sa.String(length=64), nullable=False),
        sa.Column("value", sa.JSON(), nullable=True),
        _ts("updated_at"),
        sa.UniqueConstraint("organization_id", "key", name="uq_org_setting_key"),
    )

    # ---- catalogue ---------------------------------------------------------
    op.create_table(
        "products",
        sa.Column("id", sa.Integer(), primary_key=True),
        _org(),
        sa.Column("sku", sa.String(length=64), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("uom", sa.String(), nullable=False, server_default="ea"),
        sa.Column("track_serial", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("reorder_point", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("lead_time_days", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("unit_price", sa.Float(), nullable=False, server_default="0"),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
        _ts("created_at"),
        sa.UniqueConstraint("organization_id", "sku", name="uq_products_org_sku"),
        sa.CheckConstraint("reorder_point >= 0", name="ck_products_reorder_point"),
        sa.CheckConstraint("lead_time_days >= 0", name="ck_products_lead_time"),
        sa.CheckConstraint("unit_price >= 0", name="ck_products_unit_price"),
    )
    op.create_index("ix_products_sku", "products", ["sku"])
    op.create_index("ix_products_active", "products", ["active"])

    op.create_table(
        "locations",
        sa.Column("id", sa.Integer(), primary_key=True),
        _org(),
        sa.Column("site", sa.String(), nullable=False),
        sa.Column("room", sa.String(), nullable=True),
        sa.Column("notes", sa.String(), nullable=True),
    )
    op.create_table(
        "bins",
        sa.Column("id", sa.Integer(), primary_key=True),
        _org(),
        sa.Column("code", sa.String(length=64), nullable=False),
        _fk("location_id", "locations.id"),
        sa.UniqueConstraint("organization_id", "code", name="uq_bins_org_code"),
    )
    op.create_table(
        "customers",
        sa.Column("id", sa.Integer(), primary_key=True),
        _org(),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("email", sa.String(), nullable=True),
        sa.Column("phone", sa.String(), nullable=True),
        sa.Column("company", sa.String(), nullable=True),
        _ts("created_at"),
    )
    op.create_table(
        "suppliers",
        sa.Column("id", sa.Integer(), primary_key=True),
        _org(),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("contact_name", sa.String(), nullable=True),
        sa.Column("contact_email", sa.String(), nullable=True),
        sa.Column("phone", sa.String(), nullable=True),
        sa.Column("lead_time_days", sa.Integer(), nullable=False, server_default="0"),
    )

    # ---- work orders -------------------------------------------------------
    op.create_table(
        "work_orders",
        sa.Column("id", sa.Integer(), primary_key=True),
        _org(),
        _fk("customer_id", "customers.id"),
        sa.Column("customer_name", sa.String(), nullable=False),
        sa.Column("device_info", sa.String(), nullable=False),
        sa.Column("device_serial", sa.String(), nullable=True),
        sa.Column("priority", sa.String(), nullable=False, server_default="normal"),
        sa.Column("status", STATUS, nullable=False),
        sa.Column("intake_notes", sa.String(), nullable=True),
        sa.Column("assigned_to", sa.Integer(), nullable=True),
        _ts("created_at"),
        _ts("updated_at"),
    )
    op.create_table(
        "work_order_parts",
        sa.Column("id", sa.Integer(), primary_key=True),
        _org(),
        _fk("work_order_id", "work_orders.id", nullable=False),
        _fk("product_id", "products.id", nullable=False),
        sa.Column("qty_needed", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("qty_reserved", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("qty_picked", sa.Integer(), nullable=False, server_default="0"),
        sa.CheckConstraint("qty_reserved >= 0", name="ck_wo_parts_reserved"),
        sa.CheckConstraint("qty_picked >= 0", name="ck_wo_parts_picked"),
        sa.CheckConstraint("qty_reserved + qty_picked <= qty_needed", name="ck_wo_parts_le_needed"),
    )
    op.create_index("ix_work_order_parts_work_order_id", "work_order_parts", ["work_order_id"])
    op.create_index("ix_work_order_parts_product_id", "work_order_parts", ["product_id"])
    op.create_table(
        "work_order_status_history",
        sa.Column("id", sa.Integer(), primary_key=True),
        _org(),
        _fk("work_order_id", "work_orders.id", nullable=False),
        sa.Column("from_status", sa.String(), nullable=True),
        sa.Column("to_status", sa.String(), nullable=False),
        sa.Column("note", sa.String(), nullable=True),
        sa.Column("performed_by", sa.Integer(), nullable=True),
        _ts("created_at"),
    )
    op.create_index("ix_work_order_status_history_work_order_id", "work_order_status_history", ["work_order_id"])

    # ---- sales -------------------------------------------------------------
    op.create_table(
        "sales",
        sa.Column("id", sa.Integer(), primary_key=True),
        _org(),
        _fk("customer_id", "customers.id"),
        sa.Column("reference", sa.String(), nullable=True),
        sa.Column("notes", sa.String(), nullable=True),
        sa.Column("status", STATUS, nullable=False),
        _ts("reserved_at", nullable=True),
        _ts("backordered_at", nullable=True),
        _ts("completed_at", nullable=True),
        _ts("canceled_at", nullable=True),
        sa.Column("created_by", sa.Integer(), nullable=True),
        _ts("created_at"),
        _ts("updated_at"),
    )
    op.create_table(
        "sale_items",
        sa.Column("id", sa.Integer(), primary_key=True),
        _org(),
        _fk("sale_id", "sales.id", nullable=False),
        _fk("product_id", "products.id", nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("qty_reserved", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("qty_shipped", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("unit_price", sa.Float(), nullable=False, server_default="0"),
        sa.CheckConstraint("quantity > 0", name="ck_sale_items_quantity"),
        sa.CheckConstraint("qty_reserved >= 0", name="ck_sale_items_reserved"),
        sa.CheckConstraint("qty_reserved <= quantity", name="ck_sale_items_reserved_le_qty"),
        sa.CheckConstraint("qty_shipped <= quantity", name="ck_sale_items_shipped_le_qty"),
    )
    op.create_index("ix_sale_items_sale_id", "sale_items", ["sale_id"])
    op.create_index("ix_sale_items_product_id", "sale_items", ["product_id"])

    # ---- purchasing --------------------------------------------------------
    op.create_table(
        "purchase_orders",
        sa.Column("id", sa.Integer(), primary_key=True),
        _org(),
        sa.Column("reference", sa.String(length=64), nullable=False),
        _fk("supplier_id", "suppliers.id", nullable=False),
        sa.Column("status", STATUS, nullable=False),
        _ts("expected_at", nullable=True),
        sa.Column("total_cost", sa.Float(), nullable=False, server_default="0"),
        _ts("created_at"),
        sa.UniqueConstraint("organization_id", "reference", name="uq_purchase_orders_org_ref"),
    )
    op.create_table(
        "purchase_order_lines",
        sa.Column("id", sa.Integer(), primary_key=True),
        _org(),
        _fk("purchase_order_id", "purchase_orders.id", nullable=False),
        _fk("product_id", "products.id", nullable=False),
        sa.Column("qty_ordered", sa.Integer(), nullable=False),
        sa.Column("qty_received", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("unit_cost", sa.Float(), nullable=False, server_default="0"),
        sa.CheckConstraint("qty_ordered > 0", name="ck_po_lines_ordered"),
        sa.CheckConstraint("qty_received <= qty_ordered", name="ck_po_lines_received_le_ordered"),
    )
    op.create_index("ix_purchase_order_lines_purchase_order_id", "purchase_order_lines", ["purchase_order_id"])

    # ---- serials -----------------------------------------------------------
    op.create_table(
        "serial_numbers",
        sa.Column("id", sa.Integer(), primary_key=True),
        _org(),
        sa.Column("serial", sa.String(length=191), nullable=False),
        _fk("product_id", "products.id", nullable=False),
        _fk("bin_id", "bins.id"),
        sa.Column("status", STATUS, nullable=False),
        _fk("work_order_id", "work_orders.id"),
        _ts("last_seen_at", nullable=True),
        _ts("created_at"),
        sa.UniqueConstraint("organization_id", "serial", name="uq_serial_numbers_org_serial"),
    )
    op.create_index("ix_serial_numbers_product_id", "serial_numbers", ["product_id"])
    op.create_table(
        "serial_assignments",
        sa.Column("id", sa.Integer(), primary_key=True),
        _org(),
        _fk("serial_number_id", "serial_numbers.id", nullable=False),
        _fk("work_order_part_id", "work_order_parts.id", nullable=False),
        _fk("work_order_id", "work_orders.id", nullable=False),
        sa.Column("status", STATUS, nullable=False),
        _ts("reserved_at", nullable=True),
        _ts("picked_at", nullable=True),
        _ts("returned_at", nullable=True),
        sa.Column("notes", sa.String(), nullable=True),
        sa.Column("performed_by", sa.Integer(), nullable=True),
    )
    op.create_index("ix_serial_assignments_serial_number_id", "serial_assignments", ["serial_number_id"])
    op.create_index("ix_serial_assignments_work_order_part_id", "serial_assignments", ["work_order_part_id"])

    # ---- levels + movement log ---------------------------------------------
    op.create_table(
        "stock_levels",
        sa.Column("id", sa.Integer(), primary_key=True),
        _org(),
        _fk("product_id", "products.id", nullable=False),
        _fk("bin_id", "bins.id", nullable=False),
        sa.Column("on_hand", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("reserved", sa.Integer(), nullable=False, server_default="0"),
        _ts("updated_at"),
        sa.UniqueConstraint("product_id", "bin_id", name="uq_stock_levels_product_bin"),
        sa.CheckConstraint("on_hand >= 0", name="ck_stock_levels_on_hand"),
        sa.CheckConstraint("reserved >= 0", name="ck_stock_levels_reserved"),
        sa.CheckConstraint("reserved <= on_hand", name="ck_stock_levels_reserved_le_on_hand"),
    )
    op.create_index("ix_stock_levels_product_id", "stock_levels", ["product_id"])
    op.create_index("ix_stock_levels_bin_id", "stock_levels", ["bin_id"])

    op.create_table(
        "stock_moves",
        sa.Column("id", sa.Integer(), primary_key=True),
        _org(),
        _fk("product_id", "products.id", nullable=False),
        sa.Column("qty", sa.Integer(), nullable=False),
        _fk("from_bin_id", "bins.id"),
        _fk("to_bin_id", "bins.id"),
        sa.Column("reason", STATUS, nullable=False),
        _fk("work_order_id", "work_orders.id"),
        _fk("work_order_part_id", "work_order_parts.id"),
        _fk("sale_id", "sales.id"),
        _fk("sale_item_id", "sale_items.id"),
        sa.Column("invoice_id", sa.Integer(), nullable=True),
        _fk("purchase_order_id", "purchase_orders.id"),
        _fk("purchase_order_line_id", "purchase_order_lines.id"),
        _fk("serial_number_id", "serial_numbers.id"),
        sa.Column("performed_by", sa.Integer(), nullable=True),
        sa.Column("notes", sa.String(), nullable=True),
        _ts("created_at"),
        sa.CheckConstraint("qty > 0", name="ck_stock_moves_qty"),
        sa.CheckConstraint("from_bin_id IS NOT NULL OR to_bin_id IS NOT NULL", name="ck_stock_moves_has_bin"),
    )
    for col in ("product_id", "reason", "work_order_id", "work_order_part_id", "sale_id", "sale_item_id",
                "invoice_id", "created_at"):
        op.create_index(f"ix_stock_moves_{col}", "stock_moves", [col])

    for table in TENANT_TABLES:
        op.create_index(f"ix_{table}_organization_id", table, ["organization_id"])


def downgrade() -> None:
    """Downgrade schema: drop every table (reverse dependency order)."""
    for table in reversed(["organizations"] + TENANT_TABLES):
        op.drop_table(table)
