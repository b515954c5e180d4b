"""Create commission_rules table.

Revision ID: 001_create_commission_rules
Revises:
"""

from typing import Union

from alembic import op
from sqlalchemy import inspect
import sqlalchemy as sa

revision: str = "001_create_commission_rules"
down_revision: Union[str, None] = None
branch_labels: Union[str, None] = None
depends_on: Union[str, None] = None


def _table_exists(table: str) -> bool:
    bind = op.get_bind()
    insp = inspect(bind)
    return table in insp.get_table_names()


def upgrade() -> None:
    if _table_exists("commission_rules"):
        return

    op.create_table(
        "commission_rules",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("currency", sa.String(3), nullable=False),
        sa.Column("transfer_type", sa.String(20), nullable=False),
        sa.Column("min_transaction", sa.BigInteger(), nullable=True),
        sa.Column("max_transaction", sa.BigInteger(), nullable=True),
        sa.Column("kyc_level", sa.String(20), nullable=True),
        sa.Column("percentage", sa.Numeric(5, 4), nullable=False),
        sa.Column("fixed_amount", sa.BigInteger(), server_default="0", nullable=False),
        sa.Column("min_fee", sa.BigInteger(), server_default="0", nullable=False),
        sa.Column("max_fee", sa.BigInteger(), nullable=True),
        sa.Column("is_active", sa.Boolean(), server_default="true", nullable=False),
        sa.Column("priority", sa.Integer(), server_default="0", nullable=False),
        sa.Column(
            "effective_from",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column("effective_until", sa.DateTime(timezone=True), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_by", sa.Uuid(), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint(
            "percentage >= 0 AND percentage <= 1",
            name="ck_commission_rules_percentage_range",
        ),
        sa.CheckConstraint("fixed_amount >= 0", name="ck_commission_rules_fixed_amount"),
        sa.CheckConstraint("min_fee >= 0", name="ck_commission_rules_min_fee"),
        sa.CheckConstraint(
            "max_fee IS NULL OR max_fee >= min_fee",
            name="ck_commission_rules_fee_bounds",
        ),
        sa.CheckConstraint(
            "min_transaction IS NULL OR max_transaction IS NULL "
            "OR max_transaction >= min_transaction",
            name="ck_commission_rules_transaction_bounds",
        ),
        sa.CheckConstraint(
            "effective_until IS NULL OR effective_until > effective_from",
            name="ck_commission_rules_effective_window",
        ),
    )
    op.create_index("ix_commission_rules_currency", "commission_rules", ["currency"])
    op.create_index(
        "ix_commission_rules_lookup",
        "commission_rules",
        ["currency", "transfer_type", "is_active"],
    )


def downgrade() -> None:
    if _table_exists("commission_rules"):
        op.drop_index("ix_commission_rules_lookup", table_name="commission_rules")
        op.drop_index("ix_commission_rules_currency", table_name="commission_rules")
        op.drop_table("commission_rules")
