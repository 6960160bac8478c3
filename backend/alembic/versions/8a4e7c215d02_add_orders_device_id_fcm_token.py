"""add orders device_id / fcm_token

Revision ID: 8a4e7c215d02
Revises: 3f1c2a9d0b11
Create Date: 2026-10-05

Appartenance multi-appareils + dernier token push connu.
Colonnes nullable : les commandes existantes restent sans propriétaire.
"""

from __future__ import annotations

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "8a4e7c215d02"
down_revision: Union[str, Sequence[str], None] = "3f1c2a9d0b11"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    with op.batch_alter_table("orders") as batch:
        batch.add_column(sa.Column("device_id", sa.String(128), nullable=True))
        batch.add_column(sa.Column("fcm_token", sa.String(512), nullable=True))
        batch.create_index("ix_orders_device_id", ["device_id"])


def downgrade() -> None:
    with op.batch_alter_table("orders") as batch:
        batch.drop_index("ix_orders_device_id")
        batch.drop_column("fcm_token")
        batch.drop_column("device_id")
