"""Pydantic schemas for request/response validation."""

from commission_service.schemas.commission import (
    CommissionResponse,
    DefaultFeeResponse,
    FeeQuoteRequest,
    FeeQuoteResponse,
)
from commission_service.schemas.report import (
    RevenueBreakdown,
    RevenueReportResponse,
    SettlementReportResponse,
    SettlementSummary,
)
from commission_service.schemas.rule import (
    RuleCreateRequest,
    RuleListResponse,
    RuleResponse,
    RuleUpdateRequest,
)

__all__ = [
    # Rules
    "RuleCreateRequest",
    "RuleUpdateRequest",
    "RuleResponse",
    "RuleListResponse",
    # Fees / ledger
    "FeeQuoteRequest",
    "FeeQuoteResponse",
    "DefaultFeeResponse",
    "CommissionResponse",
    # Reports
    "RevenueBreakdown",
    "RevenueReportResponse",
    "SettlementSummary",
    "SettlementReportResponse",
]
