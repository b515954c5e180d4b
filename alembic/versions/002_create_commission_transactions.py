"""Create commission_transactions ledger table.

Revision ID: 002_create_commission_transactions
Revises: 001_create_commission_rules
"""

from typing import Union

from alembic import op
from sqlalchemy import inspect
import sqlalchemy as sa

revision: str = "002_create_commission_transactions"
down_revision: Union[str, None] = "001_create_commission_rules"
branch_labels: Union[str, None] = None
depends_on: Union[str, None] = None


def _table_exists(table: str) -> bool:
    bind = op.get_bind()
    insp = inspect(bind)
    return table in insp.get_table_names()


def upgrade() -> None:
    if _table_exists("commission_transactions"):
        return

    # rule_id has no foreign key: rules are edited without touching history
    op.create_table(
        "commission_transactions",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("transaction_id", sa.Uuid(), nullable=False),
        sa.Column("rule_id", sa.Uuid(), nullable=True),
        sa.Column("currency", sa.String(3), nullable=False),
        sa.Column("amount", sa.BigInteger(), nullable=False),
        sa.Column("calculation_basis", sa.JSON(), nullable=True),
        sa.Column("status", sa.String(20), server_default="COMPLETED", nullable=False),
        sa.Column("settled", sa.Boolean(), server_default="false", nullable=False),
        sa.Column("settlement_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.CheckConstraint("amount >= 0", name="ck_commission_transactions_amount"),
        sa.UniqueConstraint(
            "transaction_id",
            name="uq_commission_transactions_transaction_id",
        ),
    )
    op.create_index("ix_commission_transactions_rule_id", "commission_transactions", ["rule_id"])
    op.create_index("ix_commission_transactions_status", "commission_transactions", ["status"])
    op.create_index("ix_commission_transactions_created_at", "commission_transactions", ["created_at"])
    op.create_index(
        "ix_commission_transactions_settled",
        "commission_transactions",
        ["settled", "settlement_date"],
    )
    op.create_index(
        "ix_commission_transactions_revenue",
        "commission_transactions",
        ["currency", "status", "created_at"],
    )


def downgrade() -> None:
    if _table_exists("commission_transactions"):
        op.drop_table("commission_transactions")
