"""
Fee quotes and the commission ledger.

Quote paths:
- by explicit rule id (primary): the rule must exist, be active, be
  effective now and admit the amount. Never falls back.
- by transaction attributes (compatibility): the best matching rule is
  selected from the cached scope rules; the jurisdiction default formula
  applies when none matches.

Ledger lifecycle:
    COMPLETED -> REFUNDED   (one-way, idempotent)
    settled: false -> true  (orthogonal to status)
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from commission_service.exceptions import (
    CommissionNotFoundError,
    CommissionStateError,
    FeeInvariantError,
    RuleScopeMismatchError,
)
from commission_service.models.commission import CommissionStatus, CommissionTransaction
from commission_service.models.rule import Currency, KYCLevel, TransferType
from commission_service.services.events import CommissionEventPublisher, get_event_publisher
from commission_service.services.fee_calculator import (
    DefaultFeePolicy,
    FeeBreakdown,
    compute_default_fee,
    compute_fee,
)
from commission_service.services.rule_cache import RuleCache
from commission_service.services.rule_selector import (
    RuleSnapshot,
    select_rule,
    utc_now,
    validate_rule_for_amount,
)
from commission_service.services.rule_store import get_rule, get_scope_rules

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FeeQuote:
    """A priced transaction: the fee and how it was obtained."""

    amount: int
    currency: Currency
    transfer_type: TransferType
    breakdown: FeeBreakdown
    rule: Optional[RuleSnapshot] = None
    kyc_level: Optional[KYCLevel] = None

    @property
    def fee(self) -> int:
        return self.breakdown.fee

    @property
    def rule_id(self) -> Optional[uuid.UUID]:
        return self.rule.id if self.rule else None

    def calculation_basis(self) -> Dict[str, Any]:
        basis = self.breakdown.as_basis()
        basis.update(
            {
                "currency": self.currency.value,
                "transfer_type": self.transfer_type.value,
                "kyc_level": self.kyc_level.value if self.kyc_level else None,
            }
        )
        if self.rule:
            basis["priority"] = self.rule.priority
            basis["rule_description"] = self.rule.description
        return basis


def default_fee(amount: int, policy: Optional[DefaultFeePolicy] = None) -> int:
    """Fee under the jurisdiction default formula."""
    return compute_default_fee(amount, policy).fee


async def quote_fee_by_rule_id(
    db: AsyncSession,
    rule_id: uuid.UUID,
    amount: int,
    currency: Optional[Currency] = None,
    transfer_type: Optional[TransferType] = None,
    kyc_level: Optional[KYCLevel] = None,
    as_of: Optional[datetime] = None,
) -> FeeQuote:
    """
    Price a transaction with a named rule.

    Raises:
        RuleNotFoundError, RuleNotActiveError, RuleNotEffectiveError,
        AmountOutOfRangeError, RuleScopeMismatchError
    """
    logger.info(f"Calculating fee using rule {rule_id} for amount {amount}")

    rule = RuleSnapshot.from_model(await get_rule(db, rule_id))

    if currency is not None and rule.currency != currency:
        raise RuleScopeMismatchError(rule_id, Currency(currency).value, rule.currency.value)
    if transfer_type is not None and rule.transfer_type != transfer_type:
        raise RuleScopeMismatchError(
            rule_id, TransferType(transfer_type).value, rule.transfer_type.value
        )

    validate_rule_for_amount(rule, amount, as_of or utc_now())
    breakdown = compute_fee(amount, rule)

    logger.info(f"Fee calculated using rule {rule.id}: {breakdown.fee} {rule.currency.value}")
    return FeeQuote(
        amount=amount,
        currency=rule.currency,
        transfer_type=rule.transfer_type,
        breakdown=breakdown,
        rule=rule,
        kyc_level=kyc_level,
    )


async def quote_fee_by_attributes(
    db: AsyncSession,
    amount: int,
    currency: Currency,
    transfer_type: TransferType,
    kyc_level: Optional[KYCLevel] = None,
    as_of: Optional[datetime] = None,
    cache: Optional[RuleCache] = None,
    policy: Optional[DefaultFeePolicy] = None,
) -> FeeQuote:
    """Price a transaction with the best matching rule, or the default formula."""
    currency = Currency(currency)
    transfer_type = TransferType(transfer_type)

    rules = await get_scope_rules(db, currency, transfer_type, cache=cache)
    rule = select_rule(rules, amount, currency, transfer_type, kyc_level, as_of)

    if rule is None:
        breakdown = compute_default_fee(amount, policy)
        logger.info(
            f"No rule for {amount} {currency.value}/{transfer_type.value}: "
            f"default formula fee {breakdown.fee}"
        )
    else:
        breakdown = compute_fee(amount, rule)
        logger.info(f"Rule {rule.id} selected for {amount} {currency.value}: fee {breakdown.fee}")

    return FeeQuote(
        amount=amount,
        currency=currency,
        transfer_type=transfer_type,
        breakdown=breakdown,
        rule=rule,
        kyc_level=kyc_level,
    )


async def quote_fee(
    db: AsyncSession,
    amount: int,
    currency: Currency,
    transfer_type: TransferType,
    kyc_level: Optional[KYCLevel] = None,
    rule_id: Optional[uuid.UUID] = None,
    as_of: Optional[datetime] = None,
    cache: Optional[RuleCache] = None,
) -> FeeQuote:
    """Dispatch to the explicit-rule path when a rule id is given."""
    if rule_id is not None:
        return await quote_fee_by_rule_id(
            db, rule_id, amount, currency, transfer_type, kyc_level, as_of
        )
    return await quote_fee_by_attributes(
        db, amount, currency, transfer_type, kyc_level, as_of, cache=cache
    )


# ── Ledger ────────────────────────────────────────────────


async def get_commission_by_transaction(
    db: AsyncSession,
    transaction_id: uuid.UUID,
) -> Optional[CommissionTransaction]:
    """Load the ledger entry of a transaction, refreshing any cached instance."""
    result = await db.execute(
        select(CommissionTransaction)
        .where(CommissionTransaction.transaction_id == transaction_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def record_commission(
    db: AsyncSession,
    transaction_id: uuid.UUID,
    rule_id: Optional[uuid.UUID],
    amount: int,
    currency: Currency,
    calculation_basis: Optional[Dict[str, Any]] = None,
    publisher: Optional[CommissionEventPublisher] = None,
) -> CommissionTransaction:
    """
    Record the commission charged on a transaction.

    Idempotent per transaction id: a repeated call returns the entry that
    was recorded first, without inserting or publishing again.

    Args:
        db: Database session
        transaction_id: Priced transaction
        rule_id: Rule applied, None when the default formula was used
        amount: Fee charged, in minor units
        currency: Fee currency
        calculation_basis: Snapshot of the computation, stored as-is
        publisher: Event publisher (defaults to the process publisher)

    Returns:
        The ledger entry
    """
    if amount is None or amount < 0:
        raise FeeInvariantError(f"Refusing to record negative commission: {amount}")

    publisher = publisher or get_event_publisher()
    logger.info(f"Recording commission: transaction={transaction_id}, amount={amount} {Currency(currency).value}")

    existing = await get_commission_by_transaction(db, transaction_id)
    if existing is not None:
        logger.warning(f"Commission already recorded for transaction {transaction_id}: {existing.id}")
        return existing

    entry = CommissionTransaction(
        id=uuid.uuid4(),
        transaction_id=transaction_id,
        rule_id=rule_id,
        currency=currency,
        amount=amount,
        calculation_basis=calculation_basis,
        status=CommissionStatus.COMPLETED,
        settled=False,
    )
    db.add(entry)

    try:
        await db.commit()
    except IntegrityError:
        # Concurrent delivery of the same transaction won the unique index
        await db.rollback()
        existing = await get_commission_by_transaction(db, transaction_id)
        if existing is None:
            raise
        logger.warning(f"Commission for transaction {transaction_id} recorded concurrently: {existing.id}")
        return existing

    await db.refresh(entry)
    await publisher.publish_collected(entry)

    logger.info(f"Commission recorded successfully: {entry.id}")
    return entry


async def charge_commission(
    db: AsyncSession,
    transaction_id: uuid.UUID,
    amount: int,
    currency: Currency,
    transfer_type: TransferType,
    kyc_level: Optional[KYCLevel] = None,
    rule_id: Optional[uuid.UUID] = None,
    as_of: Optional[datetime] = None,
    publisher: Optional[CommissionEventPublisher] = None,
    cache: Optional[RuleCache] = None,
) -> CommissionTransaction:
    """
    Price a transaction and record the commission in one flow.

    The fee is computed once and that exact value is persisted.
    """
    existing = await get_commission_by_transaction(db, transaction_id)
    if existing is not None:
        logger.info(f"Transaction {transaction_id} already charged: {existing.id}")
        return existing

    quote = await quote_fee(
        db, amount, currency, transfer_type, kyc_level, rule_id, as_of, cache=cache
    )
    return await record_commission(
        db,
        transaction_id=transaction_id,
        rule_id=quote.rule_id,
        amount=quote.fee,
        currency=quote.currency,
        calculation_basis=quote.calculation_basis(),
        publisher=publisher,
    )


async def refund_commission(
    db: AsyncSession,
    transaction_id: uuid.UUID,
    publisher: Optional[CommissionEventPublisher] = None,
) -> Optional[CommissionTransaction]:
    """
    Refund the commission of a reversed transaction.

    A missing entry is not an error: the reversal may arrive before the
    commission was recorded. Refunding twice is a no-op, and the refund
    event is only published by the call that made the transition.

    Returns:
        The ledger entry, or None when nothing was recorded
    """
    publisher = publisher or get_event_publisher()
    logger.info(f"Refunding commission for transaction: {transaction_id}")

    result = await db.execute(
        update(CommissionTransaction)
        .where(
            CommissionTransaction.transaction_id == transaction_id,
            CommissionTransaction.status == CommissionStatus.COMPLETED,
        )
        .values(status=CommissionStatus.REFUNDED)
        .execution_options(synchronize_session=False)
    )
    transitioned = result.rowcount == 1
    await db.commit()

    entry = await get_commission_by_transaction(db, transaction_id)
    if entry is None:
        logger.warning(f"No commission recorded for transaction {transaction_id}, refund skipped")
        return None

    if not transitioned:
        if entry.status == CommissionStatus.PENDING:
            raise CommissionStateError(
                f"Commission {entry.id} is still pending and cannot be refunded"
            )
        logger.info(f"Commission {entry.id} already refunded")
        return entry

    await publisher.publish_refunded(entry)
    logger.info(f"Commission refunded: {entry.id}")
    return entry


async def _mark_settled(db: AsyncSession, *criteria) -> bool:
    result = await db.execute(
        update(CommissionTransaction)
        .where(
            *criteria,
            CommissionTransaction.settled.is_(False),
            CommissionTransaction.status.in_(
                [CommissionStatus.COMPLETED, CommissionStatus.REFUNDED]
            ),
        )
        .values(settled=True, settlement_date=utc_now())
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


async def settle_commission(
    db: AsyncSession,
    transaction_id: uuid.UUID,
    publisher: Optional[CommissionEventPublisher] = None,
) -> CommissionTransaction:
    """
    Mark a commission as settled with upstream records.

    Independent of refund status. Settling twice is a no-op.

    Raises:
        CommissionNotFoundError: nothing recorded for the transaction
        CommissionStateError: the commission is still pending
    """
    publisher = publisher or get_event_publisher()

    transitioned = await _mark_settled(
        db, CommissionTransaction.transaction_id == transaction_id
    )
    await db.commit()

    entry = await get_commission_by_transaction(db, transaction_id)
    if entry is None:
        raise CommissionNotFoundError(transaction_id)

    if not transitioned:
        if entry.status == CommissionStatus.PENDING:
            raise CommissionStateError(
                f"Commission {entry.id} is still pending and cannot be settled"
            )
        logger.info(f"Commission {entry.id} already settled")
        return entry

    await publisher.publish_settled(entry)
    logger.info(f"Commission settled: {entry.id}")
    return entry


async def settle_commissions_before(
    db: AsyncSession,
    cutoff: datetime,
    publisher: Optional[CommissionEventPublisher] = None,
    batch_size: int = 500,
) -> int:
    """
    Settle every unsettled commission created before the cutoff.

    Returns:
        Number of commissions this run settled
    """
    publisher = publisher or get_event_publisher()

    result = await db.execute(
        select(CommissionTransaction.id)
        .where(
            CommissionTransaction.settled.is_(False),
            CommissionTransaction.status.in_(
                [CommissionStatus.COMPLETED, CommissionStatus.REFUNDED]
            ),
            CommissionTransaction.created_at < cutoff,
        )
        .order_by(CommissionTransaction.created_at)
        .limit(batch_size)
    )
    ids = list(result.scalars().all())
    if not ids:
        return 0

    settled_ids = []
    for commission_id in ids:
        if await _mark_settled(db, CommissionTransaction.id == commission_id):
            settled_ids.append(commission_id)
    await db.commit()

    if settled_ids:
        entries = await db.execute(
            select(CommissionTransaction)
            .where(CommissionTransaction.id.in_(settled_ids))
            .execution_options(populate_existing=True)
        )
        for entry in entries.scalars().all():
            await publisher.publish_settled(entry)

    logger.info(f"Settlement run settled {len(settled_ids)} commissions")
    return len(settled_ids)
