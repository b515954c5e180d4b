"""Business logic services."""

from commission_service.services.commission import (
    FeeQuote,
    charge_commission,
    quote_fee,
    record_commission,
    refund_commission,
    settle_commission,
)
from commission_service.services.events import CommissionEventPublisher
from commission_service.services.rule_cache import RuleCache

__all__ = [
    "FeeQuote",
    "quote_fee",
    "charge_commission",
    "record_commission",
    "refund_commission",
    "settle_commission",
    "CommissionEventPublisher",
    "RuleCache",
]
