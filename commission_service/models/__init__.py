"""
Database models.

All models are exported here for convenient imports:
    from commission_service.models import CommissionRule, CommissionTransaction
"""

from commission_service.models.base import Base, TimestampMixin
from commission_service.models.commission import CommissionStatus, CommissionTransaction
from commission_service.models.rule import (
    CommissionRule,
    Currency,
    KYCLevel,
    TransferType,
)

__all__ = [
    # Base
    "Base",
    "TimestampMixin",
    # Rules
    "CommissionRule",
    "Currency",
    "KYCLevel",
    "TransferType",
    # Ledger
    "CommissionTransaction",
    "CommissionStatus",
]
