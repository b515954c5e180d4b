"""
Tests for the rule store.

Covers:
- Rule definition invariants
- Create / update / activate / deactivate
- Listing with filters and paging
- Cache invalidation on every mutation
"""

import uuid
from datetime import timedelta
from decimal import Decimal

import pytest
from pydantic import ValidationError

from commission_service.exceptions import InvalidRuleError, RuleNotFoundError
from commission_service.models.rule import Currency, KYCLevel, TransferType
from commission_service.schemas.rule import RuleCreateRequest, RuleUpdateRequest
from commission_service.services import rule_store
from commission_service.services.commission import quote_fee_by_attributes
from commission_service.services.rule_cache import get_rule_cache
from commission_service.services.rule_selector import as_utc, utc_now

from conftest import add_rule, days_ago


def _create_request(**kwargs) -> RuleCreateRequest:
    defaults = {
        "currency": Currency.XOF,
        "transfer_type": TransferType.SAME_WALLET,
        "percentage": Decimal("0.0050"),
        "fixed_amount": 100,
        "min_fee": 50,
        "max_fee": 1000,
        "priority": 10,
        "effective_from": days_ago(1),
    }
    defaults.update(kwargs)
    return RuleCreateRequest(**defaults)


# ── validate_rule_definition ──────────────────────────────


class TestValidateRuleDefinition:
    def test_valid(self):
        rule_store.validate_rule_definition(Decimal("0.005"), 100, 50, 1000, 1, 100)

    def test_max_fee_below_min_fee(self):
        with pytest.raises(InvalidRuleError):
            rule_store.validate_rule_definition(Decimal("0.005"), min_fee=100, max_fee=50)

    def test_max_fee_equal_min_fee_allowed(self):
        rule_store.validate_rule_definition(Decimal("0"), 100, min_fee=100, max_fee=100)

    def test_transaction_bounds_inverted(self):
        with pytest.raises(InvalidRuleError):
            rule_store.validate_rule_definition(
                Decimal("0.005"), min_transaction=5000, max_transaction=1000
            )

    def test_percentage_out_of_range(self):
        with pytest.raises(InvalidRuleError):
            rule_store.validate_rule_definition(Decimal("1.5"))
        with pytest.raises(InvalidRuleError):
            rule_store.validate_rule_definition(Decimal("-0.01"))

    def test_effective_window_must_be_strict(self):
        start = utc_now()
        with pytest.raises(InvalidRuleError):
            rule_store.validate_rule_definition(
                Decimal("0.005"), effective_from=start, effective_until=start
            )

    def test_schema_rejects_excess_precision(self):
        with pytest.raises(ValidationError):
            _create_request(percentage=Decimal("0.00505"))


# ── CRUD ──────────────────────────────────────────────────


class TestRuleCrud:
    @pytest.mark.asyncio
    async def test_create_rule(self, db_session, rule_cache):
        creator = uuid.uuid4()
        rule = await rule_store.create_rule(
            db_session, _create_request(description="Standard"), created_by=creator, cache=rule_cache
        )
        assert rule.id is not None
        assert rule.is_active is True
        assert rule.created_by == creator
        assert rule.created_at is not None
        assert Decimal(str(rule.percentage)) == Decimal("0.005")

    @pytest.mark.asyncio
    async def test_create_defaults_effective_from_to_now(self, db_session, rule_cache):
        before = utc_now() - timedelta(seconds=1)
        rule = await rule_store.create_rule(
            db_session, _create_request(effective_from=None), cache=rule_cache
        )
        assert rule.effective_from is not None
        assert as_utc(rule.effective_from) >= before

    @pytest.mark.asyncio
    async def test_create_invalid_rule_rejected(self, db_session, rule_cache):
        with pytest.raises(InvalidRuleError):
            await rule_store.create_rule(
                db_session, _create_request(min_fee=500, max_fee=100), cache=rule_cache
            )
        items, total = await rule_store.list_rules(db_session)
        assert total == 0

    @pytest.mark.asyncio
    async def test_get_unknown_rule(self, db_session):
        with pytest.raises(RuleNotFoundError):
            await rule_store.get_rule(db_session, uuid.uuid4())

    @pytest.mark.asyncio
    async def test_update_validates_merged_rule(self, db_session, rule_cache):
        rule = await add_rule(db_session, min_fee=50, max_fee=1000)
        with pytest.raises(InvalidRuleError):
            await rule_store.update_rule(
                db_session, rule.id, RuleUpdateRequest(min_fee=2000), cache=rule_cache
            )
        refreshed = await rule_store.get_rule(db_session, rule.id)
        assert refreshed.min_fee == 50

    @pytest.mark.asyncio
    async def test_update_fields(self, db_session, rule_cache):
        rule = await add_rule(db_session, priority=1)
        updated = await rule_store.update_rule(
            db_session,
            rule.id,
            RuleUpdateRequest(priority=20, kyc_level=KYCLevel.LEVEL_2, notes="tiered"),
            cache=rule_cache,
        )
        assert updated.priority == 20
        assert updated.kyc_level == KYCLevel.LEVEL_2
        assert updated.notes == "tiered"

    @pytest.mark.asyncio
    async def test_deactivate_and_activate(self, db_session, rule_cache):
        rule = await add_rule(db_session)
        rule = await rule_store.deactivate_rule(db_session, rule.id, cache=rule_cache)
        assert rule.is_active is False
        rule = await rule_store.activate_rule(db_session, rule.id, cache=rule_cache)
        assert rule.is_active is True

    @pytest.mark.asyncio
    async def test_list_rules_filters_and_paging(self, db_session):
        for priority in range(3):
            await add_rule(db_session, priority=priority)
        await add_rule(db_session, currency=Currency.XAF)
        await add_rule(db_session, is_active=False)

        items, total = await rule_store.list_rules(db_session, currency=Currency.XOF)
        assert total == 4

        items, total = await rule_store.list_rules(
            db_session, currency=Currency.XOF, is_active=True, page=1, per_page=2
        )
        assert total == 3
        assert [r.priority for r in items] == [2, 1]

    @pytest.mark.asyncio
    async def test_list_rules_tie_broken_by_id(self, db_session):
        effective_from = days_ago(2)
        rules = [await add_rule(db_session, priority=5, effective_from=effective_from) for _ in range(4)]
        expected = [r.id for r in sorted(rules, key=lambda r: r.id.hex)]

        first_page, _ = await rule_store.list_rules(db_session, page=1, per_page=2)
        second_page, _ = await rule_store.list_rules(db_session, page=2, per_page=2)
        assert [r.id for r in first_page + second_page] == expected

    @pytest.mark.asyncio
    async def test_load_active_rules_skips_inactive(self, db_session):
        active = await add_rule(db_session)
        await add_rule(db_session, is_active=False)
        rules = await rule_store.load_active_rules(db_session, Currency.XOF, TransferType.SAME_WALLET)
        assert [r.id for r in rules] == [active.id]


# ── Cache invalidation ────────────────────────────────────


class TestCacheInvalidation:
    @pytest.mark.asyncio
    async def test_percentage_update_visible_to_next_quote(self, db_session, rule_cache):
        rule = await rule_store.create_rule(
            db_session,
            _create_request(percentage=Decimal("0.0100"), fixed_amount=0, min_fee=0, max_fee=None),
            cache=rule_cache,
        )

        first = await quote_fee_by_attributes(
            db_session, 100000, Currency.XOF, TransferType.SAME_WALLET, cache=rule_cache
        )
        assert first.fee == 1000
        assert len(rule_cache) == 1

        await rule_store.update_rule(
            db_session, rule.id, RuleUpdateRequest(percentage=Decimal("0.0200")), cache=rule_cache
        )
        assert len(rule_cache) == 0

        second = await quote_fee_by_attributes(
            db_session, 100000, Currency.XOF, TransferType.SAME_WALLET, cache=rule_cache
        )
        assert second.fee == 2000

    @pytest.mark.asyncio
    async def test_deactivation_visible_to_next_quote(self, db_session, rule_cache):
        rule = await rule_store.create_rule(db_session, _create_request(), cache=rule_cache)

        quote = await quote_fee_by_attributes(
            db_session, 50000, Currency.XOF, TransferType.SAME_WALLET, cache=rule_cache
        )
        assert quote.rule_id == rule.id

        await rule_store.deactivate_rule(db_session, rule.id, cache=rule_cache)

        quote = await quote_fee_by_attributes(
            db_session, 50000, Currency.XOF, TransferType.SAME_WALLET, cache=rule_cache
        )
        assert quote.rule_id is None
        assert quote.fee == 350

    @pytest.mark.asyncio
    async def test_new_rule_visible_to_next_quote(self, db_session, rule_cache):
        quote = await quote_fee_by_attributes(
            db_session, 50000, Currency.XOF, TransferType.SAME_WALLET, cache=rule_cache
        )
        assert quote.rule_id is None

        rule = await rule_store.create_rule(
            db_session, _create_request(percentage=Decimal("0"), fixed_amount=10, min_fee=0), cache=rule_cache
        )
        quote = await quote_fee_by_attributes(
            db_session, 50000, Currency.XOF, TransferType.SAME_WALLET, cache=rule_cache
        )
        assert quote.rule_id == rule.id
        assert quote.fee == 10

    @pytest.mark.asyncio
    async def test_empty_injected_cache_is_used(self, db_session, rule_cache):
        await add_rule(db_session, percentage=Decimal("0.0100"))
        assert len(rule_cache) == 0

        await quote_fee_by_attributes(
            db_session, 100000, Currency.XOF, TransferType.SAME_WALLET, cache=rule_cache
        )
        assert rule_cache.misses == 1
        assert len(rule_cache) == 1
        assert len(get_rule_cache()) == 0

        await quote_fee_by_attributes(
            db_session, 100000, Currency.XOF, TransferType.SAME_WALLET, cache=rule_cache
        )
        assert rule_cache.hits == 1
        assert rule_cache.misses == 1
