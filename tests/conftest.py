"""
Pytest configuration and fixtures.
"""

import json
import os
import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("KAFKA_ENABLED", "false")
os.environ.setdefault("SETTLEMENT_ENABLED", "false")
os.environ.setdefault("IS_PRODUCTION", "true")

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import StaticPool

from commission_service.models import Base, CommissionRule, Currency, KYCLevel, TransferType
from commission_service.services.events import CommissionEventPublisher
from commission_service.services.rule_cache import RuleCache, get_rule_cache


# Test database URL (use SQLite for tests)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


class RecordingTransport:
    """Event transport that keeps every sent event in memory."""

    def __init__(self):
        self.sent = []
        self.started = False

    async def start(self):
        self.started = True

    async def stop(self):
        self.started = False

    async def send(self, topic, key, value):
        self.sent.append((topic, key.decode("utf-8"), json.loads(value)))

    @property
    def event_types(self):
        return [event["event_type"] for _, _, event in self.sent]


class FailingTransport(RecordingTransport):
    """Event transport whose broker is always down."""

    async def send(self, topic, key, value):
        raise ConnectionError("broker unavailable")


@pytest_asyncio.fixture
async def db_engine():
    """Create test database engine."""
    engine = create_async_engine(TEST_DATABASE_URL, echo=False, poolclass=StaticPool)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(db_engine):
    return async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


@pytest_asyncio.fixture
async def db_session(session_factory):
    """Create test database session."""
    async with session_factory() as session:
        yield session


@pytest.fixture(autouse=True)
def clear_process_rule_cache():
    """Each test gets its own database, so the process cache must start empty."""
    get_rule_cache().invalidate_all()
    yield
    get_rule_cache().invalidate_all()


@pytest.fixture
def rule_cache():
    return RuleCache(ttl_seconds=60)


@pytest.fixture
def transport():
    return RecordingTransport()


@pytest.fixture
def publisher(transport):
    return CommissionEventPublisher(transport, topic="commission-events")


def days_ago(days: int) -> datetime:
    return datetime.now(timezone.utc) - timedelta(days=days)


async def add_rule(db, **kwargs) -> CommissionRule:
    """Insert a rule directly, bypassing the store (and its validation)."""
    values = {
        "id": uuid.uuid4(),
        "currency": Currency.XOF,
        "transfer_type": TransferType.SAME_WALLET,
        "percentage": Decimal("0.0050"),
        "fixed_amount": 0,
        "min_fee": 0,
        "max_fee": None,
        "kyc_level": KYCLevel.ANY,
        "is_active": True,
        "priority": 0,
        "effective_from": days_ago(1),
    }
    values.update(kwargs)
    rule = CommissionRule(**values)
    db.add(rule)
    await db.commit()
    await db.refresh(rule)
    return rule
