"""add hot-path indexes for user listings and stale scans

Revision ID: 0002_hot_path_indexes
Revises: 0001_payments
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa


revision = "0002_hot_path_indexes"
down_revision = "0001_payments"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_index(
        "ix_payments_user_id_created_at",
        "payments",
        ["user_id", "created_at"],
    )
    op.create_index(
        "ix_payments_non_final_created_at",
        "payments",
        ["created_at"],
        postgresql_where=sa.text("status IN ('PENDING', 'PROCESSING')"),
    )


def downgrade() -> None:
    op.drop_index("ix_payments_non_final_created_at", table_name="payments")
    op.drop_index("ix_payments_user_id_created_at", table_name="payments")
