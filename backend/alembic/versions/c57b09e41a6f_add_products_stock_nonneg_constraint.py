"""add products stock nonneg constraint

Revision ID: c57b09e41a6f
Revises: 8a4e7c215d02
Create Date: 2026-10-12
"""

from __future__ import annotations

from typing import Sequence, Union

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "c57b09e41a6f"
down_revision: Union[str, Sequence[str], None] = "8a4e7c215d02"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

TABLE_NAME = "products"
CK_STOCK = "ck_products_stock_nonneg"


def upgrade() -> None:
    # --- SAFETY FIX (données déjà sales avant le plancher à zéro)
    # On clamp plutôt que de faire échouer la migration.
    op.execute(
        f"""
        UPDATE {TABLE_NAME}
        SET stock = 0
        WHERE stock < 0;
        """
    )

    with op.batch_alter_table(TABLE_NAME) as batch:
        batch.create_check_constraint(CK_STOCK, "stock >= 0")


def downgrade() -> None:
    with op.batch_alter_table(TABLE_NAME) as batch:
        batch.drop_constraint(CK_STOCK, type_="check")
