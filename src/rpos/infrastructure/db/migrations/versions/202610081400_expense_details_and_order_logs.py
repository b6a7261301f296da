"""expense details and order logs

Revision ID: 202610081400
Revises: 202610010900
Create Date: 2026-10-08 14:00:00
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision = "202610081400"
down_revision = "202610010900"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.add_column("expenses", sa.Column("description", sa.String(length=255), nullable=True))
    op.add_column("expenses", sa.Column("recorded_by", sa.Integer(), nullable=True))

    op.create_table(
        "order_logs",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("order_id", sa.Integer(), nullable=True),
        sa.Column("table_no", sa.Integer(), nullable=False),
        sa.Column("message", sa.String(length=500), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["order_id"], ["orders.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_order_logs_order_id", "order_logs", ["order_id"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_order_logs_order_id", table_name="order_logs")
    op.drop_table("order_logs")
    with op.batch_alter_table("expenses") as batch_op:
        batch_op.drop_column("recorded_by")
        batch_op.drop_column("description")
