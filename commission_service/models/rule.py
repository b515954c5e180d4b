"""
CommissionRule model: a priced, time-versioned fee policy.
"""

import uuid
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    Index,
    Integer,
    Numeric,
    Text,
    Uuid,
    func,
)
from sqlalchemy import Enum as SQLAlchemyEnum
from sqlalchemy.orm import Mapped, mapped_column

from commission_service.models.base import Base, TimestampMixin


class Currency(str, Enum):
    """Supported zero-decimal currencies."""
    XOF = "XOF"  # West African CFA franc
    XAF = "XAF"  # Central African CFA franc


class TransferType(str, Enum):
    """Transfer category a rule is scoped to."""
    SAME_WALLET = "SAME_WALLET"      # Same network (Orange -> Orange)
    CROSS_WALLET = "CROSS_WALLET"    # Different networks (Orange -> Wave)
    INTERNATIONAL = "INTERNATIONAL"  # Cross-country transfer


class KYCLevel(str, Enum):
    """KYC tier required by a rule. ANY admits every tier."""
    LEVEL_1 = "LEVEL_1"
    LEVEL_2 = "LEVEL_2"
    LEVEL_3 = "LEVEL_3"
    ANY = "ANY"


def _enum_column(enum_cls, length: int):
    return SQLAlchemyEnum(
        enum_cls,
        values_callable=lambda x: [e.value for e in x],
        native_enum=False,
        length=length,
    )


class CommissionRule(Base, TimestampMixin):
    """
    Commission rule.

    Scoped to one (currency, transfer_type) pair. Among the rules of a
    scope that are effective and whose eligibility bounds admit a
    transaction, the highest priority one prices it.

    Ledger entries store the computed fee, so editing or deactivating a
    rule never changes fees that were already recorded.
    """

    __tablename__ = "commission_rules"
    __table_args__ = (
        CheckConstraint(
            "percentage >= 0 AND percentage <= 1",
            name="ck_commission_rules_percentage_range",
        ),
        CheckConstraint("fixed_amount >= 0", name="ck_commission_rules_fixed_amount"),
        CheckConstraint("min_fee >= 0", name="ck_commission_rules_min_fee"),
        CheckConstraint(
            "max_fee IS NULL OR max_fee >= min_fee",
            name="ck_commission_rules_fee_bounds",
        ),
        CheckConstraint(
            "min_transaction IS NULL OR max_transaction IS NULL "
            "OR max_transaction >= min_transaction",
            name="ck_commission_rules_transaction_bounds",
        ),
        CheckConstraint(
            "effective_until IS NULL OR effective_until > effective_from",
            name="ck_commission_rules_effective_window",
        ),
        Index(
            "ix_commission_rules_lookup",
            "currency",
            "transfer_type",
            "is_active",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )
    currency: Mapped[Currency] = mapped_column(
        _enum_column(Currency, 3),
        nullable=False,
        index=True,
    )
    transfer_type: Mapped[TransferType] = mapped_column(
        _enum_column(TransferType, 20),
        nullable=False,
    )

    # Eligibility bounds
    min_transaction: Mapped[Optional[int]] = mapped_column(
        BigInteger,
        nullable=True,
        comment="Inclusive lower bound on the transaction amount",
    )
    max_transaction: Mapped[Optional[int]] = mapped_column(
        BigInteger,
        nullable=True,
        comment="Inclusive upper bound on the transaction amount",
    )
    kyc_level: Mapped[Optional[KYCLevel]] = mapped_column(
        _enum_column(KYCLevel, 20),
        nullable=True,
        comment="Required KYC tier; NULL or ANY admits every tier",
    )

    # Formula parameters
    percentage: Mapped[Decimal] = mapped_column(
        Numeric(5, 4),
        nullable=False,
        comment="Percentage fee as a fraction (0.0050 = 0.5%)",
    )
    fixed_amount: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        default=0,
        server_default="0",
    )
    min_fee: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        default=0,
        server_default="0",
        comment="Floor applied to the computed fee",
    )
    max_fee: Mapped[Optional[int]] = mapped_column(
        BigInteger,
        nullable=True,
        comment="Cap applied to the computed fee; NULL means uncapped",
    )

    # Lifecycle
    is_active: Mapped[bool] = mapped_column(
        Boolean,
        default=True,
        server_default="true",
        nullable=False,
    )
    priority: Mapped[int] = mapped_column(
        Integer,
        default=0,
        server_default="0",
        nullable=False,
    )
    effective_from: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    effective_until: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    # Metadata
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_by: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)

    def __repr__(self) -> str:
        return (
            f"<CommissionRule(id={self.id}, currency={self.currency}, "
            f"transfer_type={self.transfer_type}, priority={self.priority})>"
        )
