"""Seed the jurisdiction default XOF rules.

Transfers up to 5,000 XOF are free; above that the fee is
100 XOF + 0.5%, capped at 1,000 XOF.

Revision ID: 003_seed_default_rules
Revises: 002_create_commission_transactions
"""

import uuid
from typing import Union

from alembic import op
import sqlalchemy as sa

revision: str = "003_seed_default_rules"
down_revision: Union[str, None] = "002_create_commission_transactions"
branch_labels: Union[str, None] = None
depends_on: Union[str, None] = None

FREE_TIER_RULE_ID = uuid.UUID("5eed0000-0000-4000-8000-000000000001")
STANDARD_RULE_ID = uuid.UUID("5eed0000-0000-4000-8000-000000000002")

commission_rules = sa.table(
    "commission_rules",
    sa.column("id", sa.Uuid()),
    sa.column("currency", sa.String()),
    sa.column("transfer_type", sa.String()),
    sa.column("min_transaction", sa.BigInteger()),
    sa.column("max_transaction", sa.BigInteger()),
    sa.column("kyc_level", sa.String()),
    sa.column("percentage", sa.Numeric(5, 4)),
    sa.column("fixed_amount", sa.BigInteger()),
    sa.column("min_fee", sa.BigInteger()),
    sa.column("max_fee", sa.BigInteger()),
    sa.column("priority", sa.Integer()),
    sa.column("description", sa.Text()),
)


def upgrade() -> None:
    bind = op.get_bind()
    existing = bind.execute(
        sa.select(sa.func.count()).select_from(commission_rules).where(
            commission_rules.c.id.in_([FREE_TIER_RULE_ID, STANDARD_RULE_ID])
        )
    ).scalar()
    if existing:
        return

    op.bulk_insert(
        commission_rules,
        [
            {
                "id": FREE_TIER_RULE_ID,
                "currency": "XOF",
                "transfer_type": "SAME_WALLET",
                "min_transaction": None,
                "max_transaction": 5000,
                "kyc_level": "ANY",
                "percentage": 0,
                "fixed_amount": 0,
                "min_fee": 0,
                "max_fee": 0,
                "priority": 100,
                "description": "Free transfers up to 5,000 XOF (financial inclusion)",
            },
            {
                "id": STANDARD_RULE_ID,
                "currency": "XOF",
                "transfer_type": "SAME_WALLET",
                "min_transaction": 5001,
                "max_transaction": None,
                "kyc_level": "ANY",
                "percentage": 0.005,
                "fixed_amount": 100,
                "min_fee": 100,
                "max_fee": 1000,
                "priority": 90,
                "description": "100 XOF + 0.5%, capped at 1,000 XOF",
            },
        ],
    )


def downgrade() -> None:
    op.execute(
        commission_rules.delete().where(
            commission_rules.c.id.in_([FREE_TIER_RULE_ID, STANDARD_RULE_ID])
        )
    )
