# alembic/versions/20261019_initial_shop_schema.py
"""initial shop schema: catalog, orders, sales, stock debits, webhook events"""

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

revision = "20261019_initial_shop_schema"
down_revision = None
branch_labels = None
depends_on = None

JSON_TYPE = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")


def _timestamps() -> list:
    return [
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
    ]


def upgrade():
    # ---------------- catalog ----------------
    op.create_table(
        "products",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("slug", sa.String(255), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("price", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("cost_price", sa.Numeric(12, 2)),
        sa.Column("category", sa.String(120)),
        sa.Column("description", sa.Text),
        sa.Column("images", JSON_TYPE),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
        *_timestamps(),
        sa.CheckConstraint("price >= 0", name=op.f("ck__products__price_nonneg")),
        sa.CheckConstraint(
            "(cost_price IS NULL OR cost_price >= 0)", name=op.f("ck__products__cost_price_nonneg")
        ),
    )
    op.create_index(op.f("ix__products__slug"), "products", ["slug"], unique=True)
    op.create_index(op.f("ix__products__name"), "products", ["name"])
    op.create_index(op.f("ix__products__category"), "products", ["category"])
    op.create_index(op.f("ix__products__is_active"), "products", ["is_active"])
    op.create_index(op.f("ix__products__created_at"), "products", ["created_at"])

    op.create_table(
        "product_skus",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column(
            "product_id",
            sa.Integer,
            sa.ForeignKey("products.id", ondelete="CASCADE", name=op.f("fk__product_skus__product_id__products")),
            nullable=False,
        ),
        sa.Column("sku", sa.String(100), nullable=False),
        sa.Column("variant", sa.String(255)),
        sa.Column("price", sa.Numeric(12, 2)),
        sa.Column("stock", sa.Integer, nullable=False, server_default="0"),
        *_timestamps(),
        sa.CheckConstraint("stock >= 0", name=op.f("ck__product_skus__stock_nonneg")),
        sa.CheckConstraint("(price IS NULL OR price >= 0)", name=op.f("ck__product_skus__sku_price_nonneg")),
    )
    op.create_index(op.f("ix__product_skus__product_id"), "product_skus", ["product_id"])
    op.create_index(op.f("ix__product_skus__sku"), "product_skus", ["sku"], unique=True)
    op.create_index(op.f("ix__product_skus__created_at"), "product_skus", ["created_at"])

    # ---------------- orders ----------------
    op.create_table(
        "orders",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("preference_id", sa.String(128)),
        sa.Column("payment_id", sa.String(64)),
        sa.Column("status", sa.String(16), nullable=False, server_default="pending"),
        sa.Column("channel", sa.String(16), nullable=False, server_default="mercadopago"),
        sa.Column("subtotal", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("discount", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("shipping", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("total", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("currency", sa.String(10), nullable=False, server_default="MXN"),
        sa.Column("billing", JSON_TYPE),
        sa.Column("raw", JSON_TYPE),
        *_timestamps(),
        sa.CheckConstraint("total >= 0", name=op.f("ck__orders__total_nonneg")),
        sa.CheckConstraint(
            "subtotal >= 0 AND discount >= 0 AND shipping >= 0", name=op.f("ck__orders__parts_nonneg")
        ),
    )
    op.create_index(op.f("ix__orders__preference_id"), "orders", ["preference_id"])
    op.create_index(op.f("ix__orders__payment_id"), "orders", ["payment_id"])
    op.create_index(op.f("ix__orders__status"), "orders", ["status"])
    op.create_index(op.f("ix__orders__channel"), "orders", ["channel"])
    op.create_index(op.f("ix__orders__created_at"), "orders", ["created_at"])

    op.create_table(
        "order_items",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column(
            "order_id",
            sa.String(36),
            sa.ForeignKey("orders.id", ondelete="CASCADE", name=op.f("fk__order_items__order_id__orders")),
            nullable=False,
        ),
        sa.Column("product_slug", sa.String(255), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("unit_price", sa.Numeric(12, 2), nullable=False),
        sa.Column("quantity", sa.Integer, nullable=False),
        sa.Column(
            "sku_id",
            sa.Integer,
            sa.ForeignKey("product_skus.id", ondelete="SET NULL", name=op.f("fk__order_items__sku_id__product_skus")),
        ),
        sa.Column("variants", JSON_TYPE),
        *_timestamps(),
        sa.CheckConstraint("quantity > 0", name=op.f("ck__order_items__qty_positive")),
        sa.CheckConstraint("unit_price >= 0", name=op.f("ck__order_items__unit_price_nonneg")),
    )
    op.create_index(op.f("ix__order_items__order_id"), "order_items", ["order_id"])
    op.create_index(op.f("ix__order_items__product_slug"), "order_items", ["product_slug"])
    op.create_index(op.f("ix__order_items__sku_id"), "order_items", ["sku_id"])
    op.create_index(op.f("ix__order_items__created_at"), "order_items", ["created_at"])

    op.create_table(
        "shipments",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column(
            "order_id",
            sa.String(36),
            sa.ForeignKey("orders.id", ondelete="CASCADE", name=op.f("fk__shipments__order_id__orders")),
            nullable=False,
        ),
        sa.Column("status", sa.String(16), nullable=False, server_default="pending"),
        sa.Column("carrier", sa.String(120)),
        sa.Column("tracking", sa.String(255)),
        *_timestamps(),
        sa.UniqueConstraint("order_id", name=op.f("uq__shipments__order_id")),
    )
    op.create_index(op.f("ix__shipments__created_at"), "shipments", ["created_at"])

    op.create_table(
        "invoices",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column(
            "order_id",
            sa.String(36),
            sa.ForeignKey("orders.id", ondelete="CASCADE", name=op.f("fk__invoices__order_id__orders")),
            nullable=False,
        ),
        sa.Column("number", sa.String(64)),
        sa.Column("url", sa.Text),
        *_timestamps(),
        sa.UniqueConstraint("order_id", name=op.f("uq__invoices__order_id")),
    )
    op.create_index(op.f("ix__invoices__created_at"), "invoices", ["created_at"])

    # ---------------- sales / stock ----------------
    op.create_table(
        "sales",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("quantity", sa.Integer, nullable=False),
        sa.Column("cost", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("price", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("date", sa.DateTime, nullable=False),
        sa.Column("note", sa.Text),
        sa.Column("channel", sa.String(16), nullable=False, server_default="manual"),
        sa.Column("provider", sa.String(16)),
        sa.Column("order_id", sa.String(36)),
        sa.Column("order_item_id", sa.Integer),
        *_timestamps(),
        sa.UniqueConstraint("provider", "order_id", "order_item_id", name="uq_sales_provider_order_item"),
        sa.CheckConstraint("quantity > 0", name=op.f("ck__sales__qty_positive")),
        sa.CheckConstraint("cost >= 0 AND price >= 0", name=op.f("ck__sales__amounts_nonneg")),
    )
    op.create_index(op.f("ix__sales__date"), "sales", ["date"])
    op.create_index(op.f("ix__sales__channel"), "sales", ["channel"])
    op.create_index(op.f("ix__sales__order_id"), "sales", ["order_id"])
    op.create_index(op.f("ix__sales__created_at"), "sales", ["created_at"])

    op.create_table(
        "stock_debits",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("order_id", sa.String(36), nullable=False),
        sa.Column("items_debited", sa.Integer, nullable=False, server_default="0"),
        sa.Column("note", sa.String(255)),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("order_id", name=op.f("uq__stock_debits__order_id")),
    )

    # ---------------- webhooks ----------------
    op.create_table(
        "webhook_events",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("provider", sa.String(16), nullable=False),
        sa.Column("external_id", sa.String(255), nullable=False),
        sa.Column("topic", sa.String(64)),
        sa.Column("resource_id", sa.String(64)),
        sa.Column("payload", JSON_TYPE),
        sa.Column("query", JSON_TYPE),
        sa.Column("delivery_count", sa.Integer, nullable=False, server_default="1"),
        sa.Column("status", sa.String(16), nullable=False, server_default="received"),
        sa.Column("last_error", sa.Text),
        sa.Column("processed_at", sa.DateTime),
        *_timestamps(),
        sa.UniqueConstraint("provider", "external_id", name="uq_webhook_events_provider_external"),
    )
    op.create_index(op.f("ix__webhook_events__topic"), "webhook_events", ["topic"])
    op.create_index(op.f("ix__webhook_events__created_at"), "webhook_events", ["created_at"])
    op.create_index("ix_webhook_events_status_created", "webhook_events", ["status", "created_at"])


def downgrade():
    op.drop_table("webhook_events")
    op.drop_table("stock_debits")
    op.drop_table("sales")
    op.drop_table("invoices")
    op.drop_table("shipments")
    op.drop_table("order_items")
    op.drop_table("orders")
    op.drop_table("product_skus")
    op.drop_table("products")
