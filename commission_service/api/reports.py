"""Revenue and settlement report endpoints."""

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from commission_service.db import get_db
from commission_service.exceptions import CommissionServiceError
from commission_service.models.rule import Currency
from commission_service.schemas.report import RevenueReportResponse, SettlementReportResponse
from commission_service.services.reports import revenue_report, settlement_report

router = APIRouter(tags=["Reports"])


@router.get("/revenue", response_model=RevenueReportResponse)
async def get_revenue(
    db: AsyncSession = Depends(get_db),
    start_date: date = Query(...),
    end_date: date = Query(...),
    currency: Optional[Currency] = Query(None),
):
    """Commission revenue per currency between two dates (inclusive)."""
    if end_date < start_date:
        raise CommissionServiceError("end_date must not be before start_date")
    return await revenue_report(db, start_date, end_date, currency)


@router.get("/settlements", response_model=SettlementReportResponse)
async def get_settlements(
    db: AsyncSession = Depends(get_db),
    currency: Optional[Currency] = Query(None),
):
    """Settled and unsettled commission totals per currency."""
    return await settlement_report(db, currency)
