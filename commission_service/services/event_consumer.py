"""
Inbound transaction events.

TRANSACTION_COMPLETED charges the commission, TRANSACTION_REVERSED refunds
it. Delivery is at-least-once: offsets are committed only after an event
was handled, and both ledger operations are idempotent per transaction id,
so a redelivered event changes nothing.

Events that can never succeed (malformed payload, unknown type, rejected
by validation) are logged and skipped. Infrastructure failures (database
down) leave the offset uncommitted and the event is retried.
"""

import asyncio
import json
import logging
import uuid
from enum import Enum
from typing import Any, Dict, Optional

from aiokafka import AIOKafkaConsumer
from aiokafka.errors import KafkaError
from pydantic import BaseModel, ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from commission_service.config import settings
from commission_service.db import get_db_context
from commission_service.exceptions import CommissionServiceError
from commission_service.models.rule import Currency, KYCLevel, TransferType
from commission_service.services.commission import charge_commission, refund_commission
from commission_service.services.events import CommissionEventPublisher
from commission_service.services.rule_cache import RuleCache

logger = logging.getLogger(__name__)


class TransactionEventType(str, Enum):
    TRANSACTION_COMPLETED = "TRANSACTION_COMPLETED"
    TRANSACTION_REVERSED = "TRANSACTION_REVERSED"


class TransactionCompletedEvent(BaseModel):
    event_type: TransactionEventType
    transaction_id: uuid.UUID
    amount: int
    currency: Currency
    transfer_type: TransferType
    kyc_level: Optional[KYCLevel] = None
    rule_id: Optional[uuid.UUID] = None


class TransactionReversedEvent(BaseModel):
    event_type: TransactionEventType
    transaction_id: uuid.UUID


async def handle_transaction_event(
    db: AsyncSession,
    payload: Dict[str, Any],
    publisher: Optional[CommissionEventPublisher] = None,
    cache: Optional[RuleCache] = None,
) -> bool:
    """
    Apply one transaction event to the ledger.

    Returns:
        True if the ledger was charged or refunded, False if the event was skipped
    """
    event_type = payload.get("event_type")

    try:
        if event_type == TransactionEventType.TRANSACTION_COMPLETED.value:
            event = TransactionCompletedEvent.model_validate(payload)
            await charge_commission(
                db,
                transaction_id=event.transaction_id,
                amount=event.amount,
                currency=event.currency,
                transfer_type=event.transfer_type,
                kyc_level=event.kyc_level,
                rule_id=event.rule_id,
                publisher=publisher,
                cache=cache,
            )
            return True

        if event_type == TransactionEventType.TRANSACTION_REVERSED.value:
            event = TransactionReversedEvent.model_validate(payload)
            entry = await refund_commission(db, event.transaction_id, publisher=publisher)
            return entry is not None

    except ValidationError as e:
        logger.warning(f"Skipping malformed {event_type} event: {e.error_count()} validation errors")
        return False
    except CommissionServiceError as e:
        logger.warning(f"Skipping {event_type} event {payload.get('transaction_id')}: {e.message}")
        await db.rollback()
        return False

    logger.warning(f"Skipping unknown transaction event type: {event_type}")
    return False


def decode_event(value: Optional[bytes]) -> Optional[Dict[str, Any]]:
    """Decode a JSON record value; None if it is not a JSON object."""
    if not value:
        return None
    try:
        payload = json.loads(value.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError):
        return None
    return payload if isinstance(payload, dict) else None


class TransactionEventConsumer:
    """Consumes the transaction events topic with manual offset commits."""

    def __init__(
        self,
        publisher: Optional[CommissionEventPublisher] = None,
        retry_delay_seconds: float = 5.0,
    ):
        self.publisher = publisher
        self.retry_delay_seconds = retry_delay_seconds
        self._consumer: Optional[AIOKafkaConsumer] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        self._consumer = AIOKafkaConsumer(
            settings.transaction_events_topic,
            bootstrap_servers=settings.kafka_bootstrap_servers,
            client_id=settings.kafka_client_id,
            group_id=settings.kafka_consumer_group,
            enable_auto_commit=False,
            auto_offset_reset="earliest",
        )
        await self._consumer.start()
        self._task = asyncio.create_task(self._poll_loop(), name="transaction-event-consumer")
        logger.info(f"Transaction event consumer started on {settings.transaction_events_topic}")

    async def stop(self) -> None:
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        if self._consumer:
            await self._consumer.stop()
            self._consumer = None
        logger.info("Transaction event consumer stopped")

    async def process_record(self, record) -> None:
        payload = decode_event(record.value)
        if payload is None:
            logger.warning(
                f"Skipping undecodable record {record.topic}[{record.partition}]@{record.offset}"
            )
            return

        async with get_db_context() as db:
            await handle_transaction_event(db, payload, publisher=self.publisher)

    async def commit(self, tp, offset: int) -> bool:
        """Commit offset for tp. A failed commit is logged; the event may be redelivered."""
        try:
            await self._consumer.commit({tp: offset})
            return True
        except KafkaError as e:
            logger.error(f"Kafka commit failed for {tp.topic}[{tp.partition}]@{offset}: {e}")
            return False

    async def poll_once(self) -> None:
        batch = await self._consumer.getmany(timeout_ms=1000)
        for tp, records in batch.items():
            for record in records:
                try:
                    await self.process_record(record)
                except Exception as e:
                    # Not committed: rewind so the record is delivered again
                    logger.error(
                        f"Failed to process {tp.topic}[{tp.partition}]@{record.offset}, "
                        f"retrying in {self.retry_delay_seconds}s: {e}"
                    )
                    self._consumer.seek(tp, record.offset)
                    await asyncio.sleep(self.retry_delay_seconds)
                    break
                await self.commit(tp, record.offset + 1)

    async def _poll_loop(self) -> None:
        while True:
            try:
                await self.poll_once()
            except KafkaError as e:
                logger.error(f"Kafka poll failed, retrying in {self.retry_delay_seconds}s: {e}")
                await asyncio.sleep(self.retry_delay_seconds)
