"""
Fee quote and ledger schemas.
"""

import uuid
from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from commission_service.models.commission import CommissionStatus
from commission_service.models.rule import Currency, KYCLevel, TransferType


class FeeQuoteRequest(BaseModel):
    """
    Fee quote request.

    With rule_id the named rule prices the transaction (and must be
    active, effective and admit the amount). Without it the best matching
    rule is selected, falling back to the default formula.
    """

    amount: int = Field(..., ge=1, description="Transaction amount in minor units")
    currency: Currency
    transfer_type: TransferType
    kyc_level: Optional[KYCLevel] = None
    rule_id: Optional[uuid.UUID] = None


class FeeQuoteResponse(BaseModel):
    amount: int
    currency: Currency
    transfer_type: TransferType
    commission_amount: int
    rule_id: Optional[uuid.UUID] = Field(
        None,
        description="Rule used; null when the default formula applied",
    )
    calculation_details: Dict[str, Any]


class DefaultFeeResponse(BaseModel):
    amount: int
    currency: Currency = Currency.XOF
    commission_amount: int
    rule: str = "DEFAULT"


class CommissionResponse(BaseModel):
    id: uuid.UUID
    transaction_id: uuid.UUID
    rule_id: Optional[uuid.UUID]
    currency: Currency
    amount: int
    calculation_basis: Optional[Dict[str, Any]]
    status: CommissionStatus
    settled: bool
    settlement_date: Optional[datetime]
    created_at: datetime

    model_config = {"from_attributes": True}
