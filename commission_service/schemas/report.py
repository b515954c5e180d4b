"""Revenue and settlement report schemas."""

from datetime import date
from typing import List

from pydantic import BaseModel

from commission_service.models.rule import Currency


class RevenueBreakdown(BaseModel):
    currency: Currency
    revenue: int
    transaction_count: int
    average_commission: int
    settled_amount: int
    unsettled_amount: int


class RevenueReportResponse(BaseModel):
    start_date: date
    end_date: date
    total_revenue: int
    transaction_count: int
    breakdown: List[RevenueBreakdown]


class SettlementSummary(BaseModel):
    currency: Currency
    total_settled: int
    total_unsettled: int
    settled_count: int
    unsettled_count: int


class SettlementReportResponse(BaseModel):
    items: List[SettlementSummary]
