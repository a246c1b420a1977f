"""budget soft delete and snapshot revision

Revision ID: 202602091000
Revises: 202601241500
Create Date: 2026-02-09 10:00:00.000000

"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op


revision = "202602091000"
down_revision = "202601241500"
branch_labels = None
depends_on = None


def upgrade() -> None:
    with op.batch_alter_table("budgets") as batch_op:
        batch_op.add_column(sa.Column("deleted_at", sa.DateTime(), nullable=True))

    with op.batch_alter_table("budget_cycles") as batch_op:
        batch_op.add_column(
            sa.Column(
                "snapshot_revision",
                sa.Integer(),
                nullable=False,
                server_default="0",
            )
        )


def downgrade() -> None:
    with op.batch_alter_table("budget_cycles") as batch_op:
        batch_op.drop_column("snapshot_revision")

    with op.batch_alter_table("budgets") as batch_op:
        batch_op.drop_column("deleted_at")
