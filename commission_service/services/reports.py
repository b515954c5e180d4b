"""
Read-only commission reports.

Simple SQL rollups over the ledger. Only COMPLETED commissions count as
revenue: refunded fees were given back.
"""

from datetime import date, datetime, time, timedelta, timezone
from typing import Optional

from sqlalchemy import case, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from commission_service.models.commission import CommissionStatus, CommissionTransaction
from commission_service.models.rule import Currency
from commission_service.schemas.report import (
    RevenueBreakdown,
    RevenueReportResponse,
    SettlementReportResponse,
    SettlementSummary,
)


def _day_bounds(start_date: date, end_date: date):
    """[start 00:00, day after end 00:00) in UTC."""
    start = datetime.combine(start_date, time.min, tzinfo=timezone.utc)
    end = datetime.combine(end_date + timedelta(days=1), time.min, tzinfo=timezone.utc)
    return start, end


async def revenue_report(
    db: AsyncSession,
    start_date: date,
    end_date: date,
    currency: Optional[Currency] = None,
) -> RevenueReportResponse:
    """Commission revenue per currency for a date range (both ends inclusive)."""
    start, end = _day_bounds(start_date, end_date)
    amount = CommissionTransaction.amount

    query = (
        select(
            CommissionTransaction.currency,
            func.coalesce(func.sum(amount), 0).label("revenue"),
            func.count().label("transaction_count"),
            func.coalesce(
                func.sum(case((CommissionTransaction.settled.is_(True), amount), else_=0)), 0
            ).label("settled_amount"),
        )
        .where(
            CommissionTransaction.status == CommissionStatus.COMPLETED,
            CommissionTransaction.created_at >= start,
            CommissionTransaction.created_at < end,
        )
        .group_by(CommissionTransaction.currency)
        .order_by(CommissionTransaction.currency)
    )
    if currency:
        query = query.where(CommissionTransaction.currency == currency)

    result = await db.execute(query)

    breakdown = []
    for row in result.all():
        revenue = int(row.revenue)
        settled = int(row.settled_amount)
        breakdown.append(
            RevenueBreakdown(
                currency=row.currency,
                revenue=revenue,
                transaction_count=row.transaction_count,
                average_commission=revenue // row.transaction_count if row.transaction_count else 0,
                settled_amount=settled,
                unsettled_amount=revenue - settled,
            )
        )

    return RevenueReportResponse(
        start_date=start_date,
        end_date=end_date,
        total_revenue=sum(b.revenue for b in breakdown),
        transaction_count=sum(b.transaction_count for b in breakdown),
        breakdown=breakdown,
    )


async def settlement_report(
    db: AsyncSession,
    currency: Optional[Currency] = None,
) -> SettlementReportResponse:
    """Settled vs. unsettled commission totals per currency."""
    settled = CommissionTransaction.settled.is_(True)
    amount = CommissionTransaction.amount

    query = (
        select(
            CommissionTransaction.currency,
            func.coalesce(func.sum(case((settled, amount), else_=0)), 0).label("total_settled"),
            func.coalesce(func.sum(case((settled, 0), else_=amount)), 0).label("total_unsettled"),
            func.coalesce(func.sum(case((settled, 1), else_=0)), 0).label("settled_count"),
            func.coalesce(func.sum(case((settled, 0), else_=1)), 0).label("unsettled_count"),
        )
        .where(CommissionTransaction.status == CommissionStatus.COMPLETED)
        .group_by(CommissionTransaction.currency)
        .order_by(CommissionTransaction.currency)
    )
    if currency:
        query = query.where(CommissionTransaction.currency == currency)

    result = await db.execute(query)
    return SettlementReportResponse(
        items=[
            SettlementSummary(
                currency=row.currency,
                total_settled=int(row.total_settled),
                total_unsettled=int(row.total_unsettled),
                settled_count=int(row.settled_count),
                unsettled_count=int(row.unsettled_count),
            )
            for row in result.all()
        ]
    )
