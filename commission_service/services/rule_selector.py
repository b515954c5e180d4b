"""
Rule selection.

Selection is a pure filter/sort over RuleSnapshot values, so the same
code serves cached rules and rules read straight from the database.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Iterable, List, Optional

from commission_service.exceptions import (
    AmountOutOfRangeError,
    RuleNotActiveError,
    RuleNotEffectiveError,
)
from commission_service.models.rule import CommissionRule, Currency, KYCLevel, TransferType


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Return an aware UTC datetime. Naive values are taken to be UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class RuleSnapshot:
    """Immutable copy of a CommissionRule row."""

    id: uuid.UUID
    currency: Currency
    transfer_type: TransferType
    percentage: Decimal
    fixed_amount: int = 0
    min_fee: int = 0
    max_fee: Optional[int] = None
    min_transaction: Optional[int] = None
    max_transaction: Optional[int] = None
    kyc_level: Optional[KYCLevel] = None
    is_active: bool = True
    priority: int = 0
    effective_from: Optional[datetime] = None
    effective_until: Optional[datetime] = None
    description: Optional[str] = None

    @classmethod
    def from_model(cls, rule: CommissionRule) -> "RuleSnapshot":
        return cls(
            id=rule.id,
            currency=Currency(rule.currency),
            transfer_type=TransferType(rule.transfer_type),
            percentage=Decimal(str(rule.percentage)),
            fixed_amount=rule.fixed_amount or 0,
            min_fee=rule.min_fee or 0,
            max_fee=rule.max_fee,
            min_transaction=rule.min_transaction,
            max_transaction=rule.max_transaction,
            kyc_level=KYCLevel(rule.kyc_level) if rule.kyc_level is not None else None,
            is_active=bool(rule.is_active),
            priority=rule.priority or 0,
            effective_from=as_utc(rule.effective_from),
            effective_until=as_utc(rule.effective_until),
            description=rule.description,
        )


def is_effective(rule, as_of: Optional[datetime] = None) -> bool:
    """Active, started at or before as_of, and not yet ended."""
    as_of = as_utc(as_of) or utc_now()
    if not rule.is_active:
        return False
    effective_from = as_utc(rule.effective_from)
    effective_until = as_utc(rule.effective_until)
    if effective_from is not None and as_of < effective_from:
        return False
    if effective_until is not None and as_of >= effective_until:
        return False
    return True


def admits_amount(rule, amount: int) -> bool:
    if rule.min_transaction is not None and amount < rule.min_transaction:
        return False
    if rule.max_transaction is not None and amount > rule.max_transaction:
        return False
    return True


def admits_kyc(rule, kyc_level: Optional[KYCLevel]) -> bool:
    """NULL and ANY admit every tier; otherwise the tier must match exactly."""
    if rule.kyc_level is None or rule.kyc_level == KYCLevel.ANY:
        return True
    return rule.kyc_level == kyc_level


def priority_order(rules: Iterable) -> List:
    """Priority descending, then effective_from ascending, then id."""
    oldest = datetime.min.replace(tzinfo=timezone.utc)
    return sorted(
        rules,
        key=lambda r: (
            -(r.priority or 0),
            as_utc(r.effective_from) or oldest,
            str(r.id),
        ),
    )


def select_rule(
    rules: Iterable,
    amount: int,
    currency: Currency,
    transfer_type: TransferType,
    kyc_level: Optional[KYCLevel] = None,
    as_of: Optional[datetime] = None,
):
    """Pick the rule that governs a transaction.

    Args:
        rules: Candidate rules (snapshots or models)
        amount: Transaction amount in minor units
        currency: Transaction currency
        transfer_type: Transfer category
        kyc_level: Caller's KYC tier
        as_of: Evaluation time, defaults to now

    Returns:
        The first eligible rule in priority order, or None when no rule
        applies and the default formula must be used
    """
    as_of = as_utc(as_of) or utc_now()
    candidates = [
        r for r in rules
        if r.currency == currency
        and r.transfer_type == transfer_type
        and is_effective(r, as_of)
    ]
    for rule in priority_order(candidates):
        if admits_amount(rule, amount) and admits_kyc(rule, kyc_level):
            return rule
    return None


def validate_rule_for_amount(rule, amount: int, as_of: Optional[datetime] = None) -> None:
    """Check an explicitly requested rule can price this amount now.

    Raises:
        RuleNotActiveError: rule is deactivated
        RuleNotEffectiveError: as_of is outside the effective window
        AmountOutOfRangeError: amount is outside the eligibility bounds
    """
    as_of = as_utc(as_of) or utc_now()

    if not rule.is_active:
        raise RuleNotActiveError(rule.id)

    effective_from = as_utc(rule.effective_from)
    effective_until = as_utc(rule.effective_until)
    if effective_from is not None and as_of < effective_from:
        raise RuleNotEffectiveError(rule.id, "not yet effective")
    if effective_until is not None and as_of >= effective_until:
        raise RuleNotEffectiveError(rule.id, "no longer effective")

    currency = getattr(rule.currency, "value", rule.currency)
    if rule.min_transaction is not None and amount < rule.min_transaction:
        raise AmountOutOfRangeError(rule.id, amount, "minimum", rule.min_transaction, currency)
    if rule.max_transaction is not None and amount > rule.max_transaction:
        raise AmountOutOfRangeError(rule.id, amount, "maximum", rule.max_transaction, currency)
