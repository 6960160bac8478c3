"""initial products / orders / order_items

Revision ID: 3f1c2a9d0b11
Revises:
Create Date: 2026-09-28

Schéma minimal : pas de device_id ni de fcm_token sur orders
(ajoutés par 8a4e7c215d02, détectés à l'exécution par SchemaCapabilities).
"""

from __future__ import annotations

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "3f1c2a9d0b11"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

ORDER_STATUS = sa.Enum(
    "Pending", "Processing", "Completed", "Cancelled", "Declined", "Delivered",
    name="order_status",
)
ORDER_CHANNEL = sa.Enum("Online", "In-Store", name="order_channel")
PAYMENT_METHOD = sa.Enum("Cash", "GCash", name="payment_method")


def upgrade() -> None:
    op.create_table(
        "products",
        sa.Column("id", sa.BigInteger().with_variant(sa.Integer(), "sqlite"), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("category", sa.String(120)),
        sa.Column("description", sa.Text()),
        sa.Column("price", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("stock", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("price >= 0", name="ck_products_price_nonneg"),
    )

    op.create_table(
        "orders",
        sa.Column("id", sa.BigInteger().with_variant(sa.Integer(), "sqlite"), primary_key=True),
        sa.Column("order_code", sa.String(32), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("contact", sa.String(120)),
        sa.Column("address", sa.Text()),
        sa.Column("status", ORDER_STATUS, nullable=False, server_default="Pending"),
        sa.Column("type", ORDER_CHANNEL, nullable=False, server_default="Online"),
        sa.Column("payment", PAYMENT_METHOD, nullable=False, server_default="Cash"),
        sa.Column("ref", sa.String(120)),
        sa.Column("total_price", sa.Numeric(12, 2), nullable=False),
        sa.Column("discount", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("net_total", sa.Numeric(12, 2), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("order_code", name="uq_orders_order_code"),
        sa.CheckConstraint("total_price >= 0", name="ck_orders_total_nonneg"),
        sa.CheckConstraint("discount >= 0", name="ck_orders_discount_nonneg"),
        sa.CheckConstraint("net_total >= 0", name="ck_orders_net_total_nonneg"),
    )

    op.create_table(
        "order_items",
        sa.Column("id", sa.BigInteger().with_variant(sa.Integer(), "sqlite"), primary_key=True),
        sa.Column(
            "order_id",
            sa.BigInteger(),
            sa.ForeignKey("orders.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("product_id", sa.BigInteger(), sa.ForeignKey("products.id", ondelete="SET NULL")),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("unit_price", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.CheckConstraint("quantity > 0", name="ck_order_items_qty_pos"),
    )
    op.create_index("ix_order_items_order_id", "order_items", ["order_id"])
    op.create_index("ix_order_items_order_product", "order_items", ["order_id", "product_id"])


def downgrade() -> None:
    op.drop_index("ix_order_items_order_product", table_name="order_items")
    op.drop_index("ix_order_items_order_id", table_name="order_items")
    op.drop_table("order_items")
    op.drop_table("orders")
    op.drop_table("products")

    bind = op.get_bind()
    PAYMENT_METHOD.drop(bind, checkfirst=True)
    ORDER_CHANNEL.drop(bind, checkfirst=True)
    ORDER_STATUS.drop(bind, checkfirst=True)
