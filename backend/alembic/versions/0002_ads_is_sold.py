"""sold flag and updated_at on ads

Revision ID: 0002_ads_is_sold
Revises: 0001_initial
Create Date: 2026-10-19
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa


revision = "0002_ads_is_sold"
down_revision = "0001_initial"
branch_labels = None
depends_on = None


def upgrade() -> None:
    with op.batch_alter_table("ads") as batch:
        batch.add_column(sa.Column("is_sold", sa.Boolean(), nullable=False, server_default=sa.false()))
        batch.add_column(sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True))
    op.create_index("ix_ads_is_sold", "ads", ["is_sold"])
    op.execute("UPDATE ads SET updated_at = created_at WHERE updated_at IS NULL")


def downgrade() -> None:
    op.drop_index("ix_ads_is_sold", table_name="ads")
    with op.batch_alter_table("ads") as batch:
        batch.drop_column("updated_at")
        batch.drop_column("is_sold")
