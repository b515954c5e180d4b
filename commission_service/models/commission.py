"""
CommissionTransaction model: one ledger entry per charged fee.
"""

import uuid
from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    Index,
    Uuid,
    func,
)
from sqlalchemy import Enum as SQLAlchemyEnum
from sqlalchemy.orm import Mapped, mapped_column

from commission_service.models.base import Base
from commission_service.models.rule import Currency


class CommissionStatus(str, Enum):
    """Lifecycle of a recorded commission."""
    PENDING = "PENDING"      # Not yet captured
    COMPLETED = "COMPLETED"  # Collected
    REFUNDED = "REFUNDED"    # Transaction reversed (terminal)


class CommissionTransaction(Base):
    """
    Commission ledger entry.

    Rows are never deleted: refunds and settlements change state in place.
    rule_id is a plain reference (no foreign key) so rules can be edited
    or deactivated without touching history. NULL means the jurisdiction
    default formula priced the transaction.
    """

    __tablename__ = "commission_transactions"
    __table_args__ = (
        CheckConstraint("amount >= 0", name="ck_commission_transactions_amount"),
        Index("ix_commission_transactions_settled", "settled", "settlement_date"),
        Index(
            "ix_commission_transactions_revenue",
            "currency",
            "status",
            "created_at",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )
    transaction_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        nullable=False,
        unique=True,
        comment="Priced transaction; one ledger entry per transaction",
    )
    rule_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid,
        nullable=True,
        index=True,
    )
    currency: Mapped[Currency] = mapped_column(
        SQLAlchemyEnum(
            Currency,
            values_callable=lambda x: [e.value for e in x],
            native_enum=False,
            length=3,
        ),
        nullable=False,
    )
    amount: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        comment="Commission amount in minor units",
    )
    calculation_basis: Mapped[Optional[dict]] = mapped_column(
        JSON,
        nullable=True,
        comment="Snapshot of the inputs/outputs used to compute the fee",
    )
    status: Mapped[CommissionStatus] = mapped_column(
        SQLAlchemyEnum(
            CommissionStatus,
            values_callable=lambda x: [e.value for e in x],
            native_enum=False,
            length=20,
        ),
        default=CommissionStatus.COMPLETED,
        nullable=False,
        index=True,
    )
    settled: Mapped[bool] = mapped_column(
        Boolean,
        default=False,
        server_default="false",
        nullable=False,
    )
    settlement_date: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
        index=True,
    )

    def __repr__(self) -> str:
        return (
            f"<CommissionTransaction(id={self.id}, transaction_id={self.transaction_id}, "
            f"amount={self.amount}, status={self.status})>"
        )
