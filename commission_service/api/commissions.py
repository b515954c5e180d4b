"""Fee quote and commission ledger endpoints."""

import uuid

from fastapi import APIRouter, Depends, Path
from sqlalchemy.ext.asyncio import AsyncSession

from commission_service.db import get_db
from commission_service.exceptions import CommissionNotFoundError
from commission_service.models.rule import Currency
from commission_service.schemas.commission import (
    CommissionResponse,
    DefaultFeeResponse,
    FeeQuoteRequest,
    FeeQuoteResponse,
)
from commission_service.services.commission import (
    default_fee,
    get_commission_by_transaction,
    quote_fee,
    settle_commission,
)

router = APIRouter(tags=["Commissions"])


@router.post("/calculate", response_model=FeeQuoteResponse)
async def calculate_fee(
    data: FeeQuoteRequest,
    db: AsyncSession = Depends(get_db),
):
    """
    Quote the commission of a transaction.

    With rule_id the named rule must be usable for this amount; otherwise
    the best matching rule is selected, or the default formula applies.
    """
    quote = await quote_fee(
        db,
        amount=data.amount,
        currency=data.currency,
        transfer_type=data.transfer_type,
        kyc_level=data.kyc_level,
        rule_id=data.rule_id,
    )
    return FeeQuoteResponse(
        amount=quote.amount,
        currency=quote.currency,
        transfer_type=quote.transfer_type,
        commission_amount=quote.fee,
        rule_id=quote.rule_id,
        calculation_details=quote.calculation_basis(),
    )


@router.get("/default-fee/{amount}", response_model=DefaultFeeResponse)
async def get_default_fee(amount: int = Path(..., ge=0)):
    """Fee under the jurisdiction default formula."""
    return DefaultFeeResponse(
        amount=amount,
        currency=Currency.XOF,
        commission_amount=default_fee(amount),
    )


@router.get("/transactions/{transaction_id}", response_model=CommissionResponse)
async def get_commission(
    transaction_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
):
    """Get the commission recorded for a transaction."""
    entry = await get_commission_by_transaction(db, transaction_id)
    if entry is None:
        raise CommissionNotFoundError(transaction_id)
    return entry


@router.post("/transactions/{transaction_id}/settle", response_model=CommissionResponse)
async def settle(
    transaction_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
):
    """Mark a commission as settled."""
    return await settle_commission(db, transaction_id)
