"""Payment attempts: every intent opened for an order.

Revision ID: 002
Revises: 001
Create Date: 2026-10-17
"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

revision: str = "002"
down_revision: Union[str, None] = "001"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "payment_attempts",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("order_id", sa.Integer(), sa.ForeignKey("orders.id"), nullable=False),
        sa.Column("intent_id", sa.String(255), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("superseded_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("intent_id", name="uq_payment_attempts_intent_id"),
    )
    op.create_index("ix_payment_attempts_id", "payment_attempts", ["id"])
    op.create_index("ix_payment_attempts_order_id", "payment_attempts", ["order_id"])

    # Existing orders keep their current intent as their only attempt
    op.execute(
        "INSERT INTO payment_attempts (order_id, intent_id, amount_cents) "
        "SELECT id, payment_reference, total_cents FROM orders "
        "WHERE payment_reference IS NOT NULL"
    )


def downgrade() -> None:
    op.drop_table("payment_attempts")
