"""
Commission rule store.

CRUD over commission_rules. Every mutation validates the complete rule
before anything is flushed, and invalidates the rule cache for the rule's
scope both before the change is written and after it is committed, so no
request can see the old price once the change is confirmed.
"""

import logging
import uuid
from datetime import datetime
from decimal import Decimal
from typing import List, Optional, Tuple

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from commission_service.exceptions import InvalidRuleError, RuleNotFoundError
from commission_service.models.rule import CommissionRule, Currency, TransferType
from commission_service.schemas.rule import RuleCreateRequest, RuleUpdateRequest
from commission_service.services.rule_cache import RuleCache, get_rule_cache
from commission_service.services.rule_selector import RuleSnapshot, as_utc, utc_now

logger = logging.getLogger(__name__)


def validate_rule_definition(
    percentage: Decimal,
    fixed_amount: int = 0,
    min_fee: int = 0,
    max_fee: Optional[int] = None,
    min_transaction: Optional[int] = None,
    max_transaction: Optional[int] = None,
    effective_from: Optional[datetime] = None,
    effective_until: Optional[datetime] = None,
) -> None:
    """
    Check the invariants of a complete rule definition.

    Raises:
        InvalidRuleError: on the first violated invariant
    """
    if percentage is None:
        raise InvalidRuleError("Percentage is required")
    if percentage < 0 or percentage > 1:
        raise InvalidRuleError(f"Percentage must be between 0 and 1, got {percentage}")
    if fixed_amount is not None and fixed_amount < 0:
        raise InvalidRuleError("Fixed amount cannot be negative")
    if min_fee is not None and min_fee < 0:
        raise InvalidRuleError("Minimum fee cannot be negative")
    if max_fee is not None and max_fee < (min_fee or 0):
        raise InvalidRuleError(
            f"Maximum fee ({max_fee}) must not be less than minimum fee ({min_fee or 0})"
        )
    if (
        min_transaction is not None
        and max_transaction is not None
        and max_transaction < min_transaction
    ):
        raise InvalidRuleError(
            f"Maximum transaction ({max_transaction}) must not be less than "
            f"minimum transaction ({min_transaction})"
        )
    if effective_until is not None and effective_from is not None:
        if as_utc(effective_until) <= as_utc(effective_from):
            raise InvalidRuleError("Effective-until must be after effective-from")


async def get_rule(db: AsyncSession, rule_id: uuid.UUID) -> CommissionRule:
    """Get a rule by id or raise RuleNotFoundError."""
    rule = await db.get(CommissionRule, rule_id)
    if rule is None:
        raise RuleNotFoundError(rule_id)
    return rule


async def list_rules(
    db: AsyncSession,
    currency: Optional[Currency] = None,
    transfer_type: Optional[TransferType] = None,
    is_active: Optional[bool] = None,
    page: int = 1,
    per_page: int = 20,
) -> Tuple[List[CommissionRule], int]:
    """List rules (any state), highest priority first, with the total count."""
    query = select(CommissionRule)

    if currency:
        query = query.where(CommissionRule.currency == currency)
    if transfer_type:
        query = query.where(CommissionRule.transfer_type == transfer_type)
    if is_active is not None:
        query = query.where(CommissionRule.is_active == is_active)

    count_query = select(func.count()).select_from(query.subquery())
    total = await db.scalar(count_query)

    query = query.order_by(
        CommissionRule.currency,
        CommissionRule.transfer_type,
        CommissionRule.priority.desc(),
        CommissionRule.effective_from,
        CommissionRule.id,
    )
    query = query.offset((page - 1) * per_page).limit(per_page)

    result = await db.execute(query)
    return list(result.scalars().all()), total or 0


async def load_active_rules(
    db: AsyncSession,
    currency: Currency,
    transfer_type: TransferType,
) -> List[RuleSnapshot]:
    """
    Read the active rules of a scope from the database.

    Effectiveness is not filtered here: rules whose window opens later are
    kept so a cached list stays correct as time passes.
    """
    result = await db.execute(
        select(CommissionRule)
        .where(
            CommissionRule.currency == currency,
            CommissionRule.transfer_type == transfer_type,
            CommissionRule.is_active.is_(True),
        )
        .order_by(CommissionRule.priority.desc())
    )
    return [RuleSnapshot.from_model(rule) for rule in result.scalars().all()]


async def get_scope_rules(
    db: AsyncSession,
    currency: Currency,
    transfer_type: TransferType,
    cache: Optional[RuleCache] = None,
) -> tuple:
    """Active rules of a scope, through the read-through cache."""
    if cache is None:
        cache = get_rule_cache()
    return await cache.get_or_load(
        currency,
        transfer_type,
        lambda: load_active_rules(db, currency, transfer_type),
    )


async def _commit_rule(db: AsyncSession, rule: CommissionRule, cache: RuleCache) -> CommissionRule:
    cache.invalidate(rule.currency, rule.transfer_type)
    await db.flush()
    await db.commit()
    cache.invalidate(rule.currency, rule.transfer_type)
    await db.refresh(rule)
    return rule


async def create_rule(
    db: AsyncSession,
    data: RuleCreateRequest,
    created_by: Optional[uuid.UUID] = None,
    cache: Optional[RuleCache] = None,
) -> CommissionRule:
    """
    Create a commission rule.

    Args:
        db: Database session
        data: Validated request body
        created_by: Administrator id, if known
        cache: Rule cache to invalidate (defaults to the process cache)

    Returns:
        The persisted rule
    """
    if cache is None:
        cache = get_rule_cache()
    effective_from = as_utc(data.effective_from) or utc_now()
    effective_until = as_utc(data.effective_until)

    validate_rule_definition(
        percentage=data.percentage,
        fixed_amount=data.fixed_amount,
        min_fee=data.min_fee,
        max_fee=data.max_fee,
        min_transaction=data.min_transaction,
        max_transaction=data.max_transaction,
        effective_from=effective_from,
        effective_until=effective_until,
    )

    logger.info(
        f"Creating commission rule: {data.currency.value}/{data.transfer_type.value} "
        f"priority={data.priority}"
    )

    rule = CommissionRule(
        currency=data.currency,
        transfer_type=data.transfer_type,
        min_transaction=data.min_transaction,
        max_transaction=data.max_transaction,
        kyc_level=data.kyc_level,
        percentage=data.percentage,
        fixed_amount=data.fixed_amount,
        min_fee=data.min_fee,
        max_fee=data.max_fee,
        is_active=True,
        priority=data.priority,
        effective_from=effective_from,
        effective_until=effective_until,
        description=data.description,
        notes=data.notes,
        created_by=created_by,
    )
    db.add(rule)
    rule = await _commit_rule(db, rule, cache)

    logger.info(f"Commission rule created: {rule.id}")
    return rule


async def update_rule(
    db: AsyncSession,
    rule_id: uuid.UUID,
    data: RuleUpdateRequest,
    cache: Optional[RuleCache] = None,
) -> CommissionRule:
    """
    Apply a partial update to a rule.

    The merged rule is validated as a whole before any field is changed.
    Already recorded commissions keep the fee they were charged.
    """
    if cache is None:
        cache = get_rule_cache()
    rule = await get_rule(db, rule_id)
    changes = data.model_dump(exclude_none=True)
    if "effective_until" in changes:
        changes["effective_until"] = as_utc(changes["effective_until"])

    merged = {
        "percentage": rule.percentage,
        "fixed_amount": rule.fixed_amount,
        "min_fee": rule.min_fee,
        "max_fee": rule.max_fee,
        "min_transaction": rule.min_transaction,
        "max_transaction": rule.max_transaction,
        "effective_from": rule.effective_from,
        "effective_until": rule.effective_until,
    }
    merged.update({k: v for k, v in changes.items() if k in merged})
    validate_rule_definition(**merged)

    logger.info(f"Updating commission rule {rule_id}: {sorted(changes)}")

    for field, value in changes.items():
        setattr(rule, field, value)

    rule = await _commit_rule(db, rule, cache)
    logger.info(f"Commission rule updated: {rule_id}")
    return rule


async def set_rule_active(
    db: AsyncSession,
    rule_id: uuid.UUID,
    active: bool,
    cache: Optional[RuleCache] = None,
) -> CommissionRule:
    """Activate or deactivate a rule (soft delete)."""
    if cache is None:
        cache = get_rule_cache()
    rule = await get_rule(db, rule_id)

    logger.info(f"{'Activating' if active else 'Deactivating'} commission rule: {rule_id}")
    rule.is_active = active
    return await _commit_rule(db, rule, cache)


async def activate_rule(db: AsyncSession, rule_id: uuid.UUID, cache: Optional[RuleCache] = None) -> CommissionRule:
    return await set_rule_active(db, rule_id, True, cache)


async def deactivate_rule(db: AsyncSession, rule_id: uuid.UUID, cache: Optional[RuleCache] = None) -> CommissionRule:
    return await set_rule_active(db, rule_id, False, cache)
