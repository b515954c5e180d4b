"""
Commission rule schemas.

Field-level checks (ranges, non-negative amounts) are done here; cross-field
invariants are checked by the rule store so that updates, which merge into
an existing rule, are validated the same way as creates.
"""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field

from commission_service.models.rule import Currency, KYCLevel, TransferType


class RuleCreateRequest(BaseModel):
    """Request to create a commission rule."""

    currency: Currency
    transfer_type: TransferType
    min_transaction: Optional[int] = Field(None, ge=0)
    max_transaction: Optional[int] = Field(None, ge=0)
    kyc_level: Optional[KYCLevel] = None

    percentage: Decimal = Field(..., ge=0, le=1, max_digits=5, decimal_places=4)
    fixed_amount: int = Field(0, ge=0)
    min_fee: int = Field(0, ge=0)
    max_fee: Optional[int] = Field(None, ge=0)

    priority: int = Field(0, ge=0)
    effective_from: Optional[datetime] = None
    effective_until: Optional[datetime] = None

    description: Optional[str] = Field(None, max_length=500)
    notes: Optional[str] = None


class RuleUpdateRequest(BaseModel):
    """Partial update. Scope (currency, transfer type) cannot change."""

    min_transaction: Optional[int] = Field(None, ge=0)
    max_transaction: Optional[int] = Field(None, ge=0)
    kyc_level: Optional[KYCLevel] = None
    percentage: Optional[Decimal] = Field(None, ge=0, le=1, max_digits=5, decimal_places=4)
    fixed_amount: Optional[int] = Field(None, ge=0)
    min_fee: Optional[int] = Field(None, ge=0)
    max_fee: Optional[int] = Field(None, ge=0)
    is_active: Optional[bool] = None
    priority: Optional[int] = Field(None, ge=0)
    effective_until: Optional[datetime] = None
    description: Optional[str] = Field(None, max_length=500)
    notes: Optional[str] = None


class RuleResponse(BaseModel):
    id: uuid.UUID
    currency: Currency
    transfer_type: TransferType
    min_transaction: Optional[int]
    max_transaction: Optional[int]
    kyc_level: Optional[KYCLevel]
    percentage: Decimal
    fixed_amount: int
    min_fee: int
    max_fee: Optional[int]
    is_active: bool
    priority: int
    effective_from: datetime
    effective_until: Optional[datetime]
    description: Optional[str]
    notes: Optional[str]
    created_by: Optional[uuid.UUID]
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class RuleListResponse(BaseModel):
    items: List[RuleResponse]
    total: int
    page: int
    per_page: int
    pages: int
