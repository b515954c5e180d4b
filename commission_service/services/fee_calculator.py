"""
Fee calculation.

Two formulas:
- Rule formula: floor(amount * percentage) + fixed_amount, clamped to
  [min_fee, max_fee]. An absent floor is 0, an absent cap is unbounded.
- Jurisdiction default formula, used only when no rule applies:
  amounts at or below the threshold are free (financial inclusion),
  above it the fee is fixed + floor(amount * percentage), capped.

All arithmetic is done with Decimal and truncated toward zero, so the same
inputs give the same integer fee everywhere. Nothing here does I/O.
"""

from dataclasses import dataclass
from decimal import ROUND_DOWN, Decimal
from typing import Any, Optional

from commission_service.config import settings
from commission_service.exceptions import FeeInvariantError

FORMULA_RULE = "RULE"
FORMULA_DEFAULT = "DEFAULT"


@dataclass(frozen=True)
class DefaultFeePolicy:
    """Constants of the jurisdiction default formula, in minor units."""

    threshold: int = 5000
    fixed_fee: int = 100
    percentage: Decimal = Decimal("0.005")
    maximum: int = 1000

    @classmethod
    def from_settings(cls) -> "DefaultFeePolicy":
        return cls(
            threshold=settings.default_fee_threshold,
            fixed_fee=settings.default_fee_fixed,
            percentage=Decimal(str(settings.default_fee_percentage)),
            maximum=settings.default_fee_maximum,
        )


@dataclass(frozen=True)
class FeeBreakdown:
    """Result of a fee computation, kept as the ledger's calculation basis."""

    amount: int
    fee: int
    formula: str
    percentage: Decimal
    fixed_amount: int
    percentage_fee: int
    raw_fee: int
    min_fee: Optional[int] = None
    max_fee: Optional[int] = None
    floor_applied: bool = False
    cap_applied: bool = False
    rule_id: Optional[Any] = None
    free_threshold: Optional[int] = None

    def as_basis(self) -> dict:
        """JSON-safe snapshot for CommissionTransaction.calculation_basis."""
        return {
            "formula": self.formula,
            "rule_id": str(self.rule_id) if self.rule_id is not None else None,
            "transaction_amount": self.amount,
            "percentage": str(self.percentage),
            "fixed_amount": self.fixed_amount,
            "percentage_fee": self.percentage_fee,
            "raw_fee": self.raw_fee,
            "min_fee": self.min_fee,
            "max_fee": self.max_fee,
            "floor_applied": self.floor_applied,
            "cap_applied": self.cap_applied,
            "free_threshold": self.free_threshold,
            "fee": self.fee,
        }


def as_rate(percentage) -> Decimal:
    """Exact Decimal for a rate. Never rounded: the fee is floored once, after the multiply."""
    return Decimal(str(percentage))


def percentage_component(amount: int, percentage) -> int:
    """floor(amount * percentage) using exact decimal arithmetic."""
    product = Decimal(amount) * as_rate(percentage)
    return int(product.to_integral_value(rounding=ROUND_DOWN))


def _check_amount(amount: int) -> None:
    if amount is None or amount < 0:
        raise FeeInvariantError(f"Fee requested for invalid amount: {amount}")


def compute_fee(amount: int, rule) -> FeeBreakdown:
    """Compute the fee a rule charges on an amount.

    Args:
        amount: Transaction amount in minor units
        rule: Any object exposing percentage, fixed_amount, min_fee,
            max_fee (and optionally id), e.g. a RuleSnapshot

    Returns:
        FeeBreakdown with the clamped fee
    """
    _check_amount(amount)

    rate = as_rate(rule.percentage)
    fixed = rule.fixed_amount or 0
    pct_fee = percentage_component(amount, rate)
    raw = pct_fee + fixed

    floor = rule.min_fee or 0
    cap = rule.max_fee

    fee = raw
    floor_applied = False
    cap_applied = False
    if fee < floor:
        fee = floor
        floor_applied = True
    if cap is not None and fee > cap:
        fee = cap
        cap_applied = True

    return FeeBreakdown(
        amount=amount,
        fee=fee,
        formula=FORMULA_RULE,
        percentage=rate,
        fixed_amount=fixed,
        percentage_fee=pct_fee,
        raw_fee=raw,
        min_fee=floor,
        max_fee=cap,
        floor_applied=floor_applied,
        cap_applied=cap_applied,
        rule_id=getattr(rule, "id", None),
    )


def compute_default_fee(amount: int, policy: Optional[DefaultFeePolicy] = None) -> FeeBreakdown:
    """Compute the jurisdiction default fee.

    Total over all non-negative amounts: <= threshold is free,
    otherwise fixed + floor(amount * percentage) capped at maximum.
    """
    _check_amount(amount)
    policy = policy or DefaultFeePolicy.from_settings()
    rate = as_rate(policy.percentage)

    if amount <= policy.threshold:
        return FeeBreakdown(
            amount=amount,
            fee=0,
            formula=FORMULA_DEFAULT,
            percentage=rate,
            fixed_amount=0,
            percentage_fee=0,
            raw_fee=0,
            max_fee=policy.maximum,
            free_threshold=policy.threshold,
        )

    pct_fee = percentage_component(amount, rate)
    raw = policy.fixed_fee + pct_fee
    fee = min(raw, policy.maximum)

    return FeeBreakdown(
        amount=amount,
        fee=fee,
        formula=FORMULA_DEFAULT,
        percentage=rate,
        fixed_amount=policy.fixed_fee,
        percentage_fee=pct_fee,
        raw_fee=raw,
        max_fee=policy.maximum,
        cap_applied=raw > policy.maximum,
        free_threshold=policy.threshold,
    )
