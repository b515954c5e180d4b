"""
Tests for fee quotes and the commission ledger.

Covers:
- Quotes by attributes (rule or default formula) and by explicit rule id
- Recording commissions (idempotent per transaction)
- Refund and settlement transitions and their events
- Publish failures never undo a recorded commission
- Batch settlement
"""

import uuid
from datetime import timedelta
from decimal import Decimal

import pytest

from commission_service.exceptions import (
    AmountOutOfRangeError,
    CommissionNotFoundError,
    CommissionStateError,
    FeeInvariantError,
    RuleNotActiveError,
    RuleNotEffectiveError,
    RuleNotFoundError,
    RuleScopeMismatchError,
)
from commission_service.models import CommissionStatus, CommissionTransaction
from commission_service.models.rule import Currency, KYCLevel, TransferType
from commission_service.services.commission import (
    charge_commission,
    default_fee,
    get_commission_by_transaction,
    quote_fee,
    quote_fee_by_attributes,
    quote_fee_by_rule_id,
    record_commission,
    refund_commission,
    settle_commission,
    settle_commissions_before,
)
from commission_service.services.events import CommissionEventPublisher
from commission_service.services.rule_selector import utc_now

from conftest import FailingTransport, add_rule, days_ago


async def _standard_rule(db, **kwargs):
    """0.5% + 100, floor 50, cap 1000."""
    values = {"fixed_amount": 100, "min_fee": 50, "max_fee": 1000, "priority": 10}
    values.update(kwargs)
    return await add_rule(db, **values)


async def _record(db, publisher, amount=350, **kwargs):
    return await record_commission(
        db,
        transaction_id=kwargs.pop("transaction_id", uuid.uuid4()),
        rule_id=kwargs.pop("rule_id", None),
        amount=amount,
        currency=kwargs.pop("currency", Currency.XOF),
        calculation_basis={"fee": amount},
        publisher=publisher,
    )


# ── Quotes by attributes ──────────────────────────────────


class TestQuoteByAttributes:
    @pytest.mark.asyncio
    async def test_small_amount_without_rule_is_free(self, db_session, rule_cache):
        quote = await quote_fee_by_attributes(
            db_session, 3000, Currency.XOF, TransferType.SAME_WALLET, cache=rule_cache
        )
        assert quote.fee == 0
        assert quote.rule_id is None
        assert quote.calculation_basis()["formula"] == "DEFAULT"

    @pytest.mark.asyncio
    async def test_rule_applies(self, db_session, rule_cache):
        rule = await _standard_rule(db_session)
        quote = await quote_fee_by_attributes(
            db_session, 50000, Currency.XOF, TransferType.SAME_WALLET, cache=rule_cache
        )
        assert quote.fee == 350
        assert quote.rule_id == rule.id

    @pytest.mark.asyncio
    async def test_rule_capped(self, db_session, rule_cache):
        await _standard_rule(db_session)
        quote = await quote_fee_by_attributes(
            db_session, 1000000, Currency.XOF, TransferType.SAME_WALLET, cache=rule_cache
        )
        assert quote.fee == 1000
        assert quote.breakdown.cap_applied

    @pytest.mark.asyncio
    async def test_future_rule_not_selected(self, db_session, rule_cache):
        await _standard_rule(db_session, effective_from=utc_now() + timedelta(days=1), fixed_amount=0)
        quote = await quote_fee_by_attributes(
            db_session, 50000, Currency.XOF, TransferType.SAME_WALLET, cache=rule_cache
        )
        assert quote.rule_id is None
        assert quote.fee == default_fee(50000)

    @pytest.mark.asyncio
    async def test_cached_future_rule_picked_up_once_effective(self, db_session, rule_cache):
        starts = utc_now() + timedelta(hours=1)
        rule = await _standard_rule(db_session, effective_from=starts)

        before = await quote_fee_by_attributes(
            db_session, 50000, Currency.XOF, TransferType.SAME_WALLET, cache=rule_cache
        )
        after = await quote_fee_by_attributes(
            db_session,
            50000,
            Currency.XOF,
            TransferType.SAME_WALLET,
            as_of=starts + timedelta(minutes=1),
            cache=rule_cache,
        )
        assert before.rule_id is None
        assert after.rule_id == rule.id
        assert rule_cache.misses == 1

    @pytest.mark.asyncio
    async def test_higher_priority_wins(self, db_session, rule_cache):
        await _standard_rule(db_session, priority=1)
        vip = await add_rule(db_session, percentage=Decimal("0.0020"), priority=50)
        quote = await quote_fee_by_attributes(
            db_session, 50000, Currency.XOF, TransferType.SAME_WALLET, cache=rule_cache
        )
        assert quote.rule_id == vip.id
        assert quote.fee == 100

    @pytest.mark.asyncio
    async def test_kyc_level_recorded_in_basis(self, db_session, rule_cache):
        await add_rule(db_session, kyc_level=KYCLevel.LEVEL_2, percentage=Decimal("0.0040"))
        quote = await quote_fee_by_attributes(
            db_session,
            50000,
            Currency.XOF,
            TransferType.SAME_WALLET,
            kyc_level=KYCLevel.LEVEL_2,
            cache=rule_cache,
        )
        assert quote.fee == 200
        assert quote.calculation_basis()["kyc_level"] == "LEVEL_2"


# ── Quotes by explicit rule ───────────────────────────────


class TestQuoteByRuleId:
    @pytest.mark.asyncio
    async def test_explicit_rule(self, db_session):
        rule = await _standard_rule(db_session)
        quote = await quote_fee_by_rule_id(db_session, rule.id, 50000)
        assert quote.fee == 350
        assert quote.currency == Currency.XOF

    @pytest.mark.asyncio
    async def test_unknown_rule(self, db_session):
        with pytest.raises(RuleNotFoundError):
            await quote_fee_by_rule_id(db_session, uuid.uuid4(), 50000)

    @pytest.mark.asyncio
    async def test_inactive_rule(self, db_session):
        rule = await _standard_rule(db_session, is_active=False)
        with pytest.raises(RuleNotActiveError):
            await quote_fee_by_rule_id(db_session, rule.id, 50000)

    @pytest.mark.asyncio
    async def test_future_rule_not_effective(self, db_session):
        rule = await _standard_rule(db_session, effective_from=utc_now() + timedelta(days=1))
        with pytest.raises(RuleNotEffectiveError):
            await quote_fee_by_rule_id(db_session, rule.id, 50000)

    @pytest.mark.asyncio
    async def test_amount_out_of_range_does_not_fall_back(self, db_session):
        rule = await _standard_rule(db_session, min_transaction=5001)
        with pytest.raises(AmountOutOfRangeError):
            await quote_fee_by_rule_id(db_session, rule.id, 3000)

    @pytest.mark.asyncio
    async def test_scope_mismatch(self, db_session):
        rule = await _standard_rule(db_session)
        with pytest.raises(RuleScopeMismatchError):
            await quote_fee_by_rule_id(db_session, rule.id, 50000, currency=Currency.XAF)

    @pytest.mark.asyncio
    async def test_quote_fee_dispatches_on_rule_id(self, db_session, rule_cache):
        await _standard_rule(db_session, priority=50)
        flat = await add_rule(db_session, percentage=Decimal("0"), fixed_amount=75, priority=1)
        quote = await quote_fee(
            db_session, 50000, Currency.XOF, TransferType.SAME_WALLET, rule_id=flat.id, cache=rule_cache
        )
        assert quote.rule_id == flat.id
        assert quote.fee == 75


# ── Recording ─────────────────────────────────────────────


class TestRecordCommission:
    @pytest.mark.asyncio
    async def test_record(self, db_session, publisher, transport):
        entry = await _record(db_session, publisher)
        assert entry.status == CommissionStatus.COMPLETED
        assert entry.settled is False
        assert entry.created_at is not None

        assert transport.event_types == ["COMMISSION_COLLECTED"]
        topic, key, event = transport.sent[0]
        assert topic == "commission-events"
        assert key == str(entry.transaction_id)
        assert event["amount"] == 350
        assert event["currency"] == "XOF"
        assert event["calculation_basis"] == {"fee": 350}

    @pytest.mark.asyncio
    async def test_duplicate_returns_existing(self, db_session, publisher, transport):
        transaction_id = uuid.uuid4()
        first = await _record(db_session, publisher, transaction_id=transaction_id)
        second = await _record(db_session, publisher, amount=999, transaction_id=transaction_id)

        assert second.id == first.id
        assert second.amount == 350
        assert transport.event_types == ["COMMISSION_COLLECTED"]

    @pytest.mark.asyncio
    async def test_negative_amount_rejected(self, db_session, publisher):
        with pytest.raises(FeeInvariantError):
            await _record(db_session, publisher, amount=-1)

    @pytest.mark.asyncio
    async def test_publish_failure_keeps_commission(self, db_session):
        publisher = CommissionEventPublisher(FailingTransport(), topic="commission-events")
        entry = await _record(db_session, publisher)

        stored = await get_commission_by_transaction(db_session, entry.transaction_id)
        assert stored is not None
        assert stored.status == CommissionStatus.COMPLETED


class TestChargeCommission:
    @pytest.mark.asyncio
    async def test_charge_records_quoted_fee(self, db_session, publisher, rule_cache):
        rule = await _standard_rule(db_session)
        entry = await charge_commission(
            db_session,
            transaction_id=uuid.uuid4(),
            amount=50000,
            currency=Currency.XOF,
            transfer_type=TransferType.SAME_WALLET,
            publisher=publisher,
            cache=rule_cache,
        )
        assert entry.amount == 350
        assert entry.rule_id == rule.id
        assert entry.calculation_basis["formula"] == "RULE"
        assert entry.calculation_basis["rule_id"] == str(rule.id)
        assert entry.calculation_basis["transfer_type"] == "SAME_WALLET"

    @pytest.mark.asyncio
    async def test_charge_without_rule_uses_default(self, db_session, publisher, rule_cache):
        entry = await charge_commission(
            db_session,
            transaction_id=uuid.uuid4(),
            amount=3000,
            currency=Currency.XOF,
            transfer_type=TransferType.CROSS_WALLET,
            publisher=publisher,
            cache=rule_cache,
        )
        assert entry.amount == 0
        assert entry.rule_id is None

    @pytest.mark.asyncio
    async def test_recharge_keeps_original_fee(self, db_session, publisher, transport, rule_cache):
        rule = await _standard_rule(db_session)
        transaction_id = uuid.uuid4()
        kwargs = dict(
            transaction_id=transaction_id,
            amount=50000,
            currency=Currency.XOF,
            transfer_type=TransferType.SAME_WALLET,
            publisher=publisher,
            cache=rule_cache,
        )
        first = await charge_commission(db_session, **kwargs)

        rule.fixed_amount = 500
        await db_session.commit()
        rule_cache.invalidate_all()

        second = await charge_commission(db_session, **kwargs)
        assert second.id == first.id
        assert second.amount == 350
        assert transport.event_types == ["COMMISSION_COLLECTED"]


# ── Refund ────────────────────────────────────────────────


class TestRefundCommission:
    @pytest.mark.asyncio
    async def test_refund(self, db_session, publisher, transport):
        entry = await _record(db_session, publisher)
        refunded = await refund_commission(db_session, entry.transaction_id, publisher=publisher)

        assert refunded.status == CommissionStatus.REFUNDED
        assert refunded.settled is False
        assert refunded.amount == 350
        assert transport.event_types == ["COMMISSION_COLLECTED", "COMMISSION_REFUNDED"]

    @pytest.mark.asyncio
    async def test_double_refund_is_idempotent(self, db_session, publisher, transport):
        entry = await _record(db_session, publisher)
        await refund_commission(db_session, entry.transaction_id, publisher=publisher)
        again = await refund_commission(db_session, entry.transaction_id, publisher=publisher)

        assert again.status == CommissionStatus.REFUNDED
        assert transport.event_types.count("COMMISSION_REFUNDED") == 1

    @pytest.mark.asyncio
    async def test_refund_missing_is_not_an_error(self, db_session, publisher, transport):
        assert await refund_commission(db_session, uuid.uuid4(), publisher=publisher) is None
        assert transport.sent == []

    @pytest.mark.asyncio
    async def test_refund_pending_rejected(self, db_session, publisher):
        entry = CommissionTransaction(
            transaction_id=uuid.uuid4(),
            currency=Currency.XOF,
            amount=100,
            status=CommissionStatus.PENDING,
            settled=False,
        )
        db_session.add(entry)
        await db_session.commit()

        with pytest.raises(CommissionStateError):
            await refund_commission(db_session, entry.transaction_id, publisher=publisher)

    @pytest.mark.asyncio
    async def test_refund_keeps_row(self, db_session, publisher):
        entry = await _record(db_session, publisher)
        await refund_commission(db_session, entry.transaction_id, publisher=publisher)
        stored = await get_commission_by_transaction(db_session, entry.transaction_id)
        assert stored.id == entry.id


# ── Settlement ────────────────────────────────────────────


class TestSettleCommission:
    @pytest.mark.asyncio
    async def test_settle(self, db_session, publisher, transport):
        entry = await _record(db_session, publisher)
        settled = await settle_commission(db_session, entry.transaction_id, publisher=publisher)

        assert settled.settled is True
        assert settled.settlement_date is not None
        assert settled.status == CommissionStatus.COMPLETED
        assert transport.event_types[-1] == "COMMISSION_SETTLED"
        assert transport.sent[-1][2]["settlement_date"] is not None

    @pytest.mark.asyncio
    async def test_settle_twice_is_noop(self, db_session, publisher, transport):
        entry = await _record(db_session, publisher)
        first = await settle_commission(db_session, entry.transaction_id, publisher=publisher)
        settled_at = first.settlement_date
        second = await settle_commission(db_session, entry.transaction_id, publisher=publisher)

        assert second.settlement_date == settled_at
        assert transport.event_types.count("COMMISSION_SETTLED") == 1

    @pytest.mark.asyncio
    async def test_settle_refunded_commission(self, db_session, publisher):
        entry = await _record(db_session, publisher)
        await refund_commission(db_session, entry.transaction_id, publisher=publisher)
        settled = await settle_commission(db_session, entry.transaction_id, publisher=publisher)

        assert settled.settled is True
        assert settled.status == CommissionStatus.REFUNDED

    @pytest.mark.asyncio
    async def test_settle_unknown(self, db_session, publisher):
        with pytest.raises(CommissionNotFoundError):
            await settle_commission(db_session, uuid.uuid4(), publisher=publisher)

    @pytest.mark.asyncio
    async def test_settle_before_cutoff(self, db_session, publisher, transport):
        entries = [await _record(db_session, publisher) for _ in range(3)]
        await settle_commission(db_session, entries[0].transaction_id, publisher=publisher)

        count = await settle_commissions_before(
            db_session, utc_now() + timedelta(hours=1), publisher=publisher
        )
        assert count == 2
        assert transport.event_types.count("COMMISSION_SETTLED") == 3

        for entry in entries:
            stored = await get_commission_by_transaction(db_session, entry.transaction_id)
            assert stored.settled is True

        again = await settle_commissions_before(
            db_session, utc_now() + timedelta(hours=1), publisher=publisher
        )
        assert again == 0

    @pytest.mark.asyncio
    async def test_settle_before_skips_recent(self, db_session, publisher):
        await _record(db_session, publisher)
        count = await settle_commissions_before(db_session, days_ago(1), publisher=publisher)
        assert count == 0
