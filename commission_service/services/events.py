"""
Commission event publishing.

Events are notifications, not a source of truth: they are published after
the ledger change is committed, and a failed publish is logged and
swallowed so it never undoes a commission that was really charged.
"""

import logging
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from aiokafka import AIOKafkaProducer
from pydantic import BaseModel, Field

from commission_service.config import settings
from commission_service.models.commission import CommissionTransaction

logger = logging.getLogger(__name__)


class CommissionEventType(str, Enum):
    COMMISSION_COLLECTED = "COMMISSION_COLLECTED"
    COMMISSION_REFUNDED = "COMMISSION_REFUNDED"
    COMMISSION_SETTLED = "COMMISSION_SETTLED"


class CommissionEvent(BaseModel):
    """Payload published on the commission events topic."""

    event_id: uuid.UUID = Field(default_factory=uuid.uuid4)
    event_type: CommissionEventType
    commission_id: uuid.UUID
    transaction_id: uuid.UUID
    amount: int
    currency: str
    calculation_basis: Optional[Dict[str, Any]] = None
    settlement_date: Optional[datetime] = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def from_entry(
        cls,
        event_type: CommissionEventType,
        entry: CommissionTransaction,
    ) -> "CommissionEvent":
        event = cls(
            event_type=event_type,
            commission_id=entry.id,
            transaction_id=entry.transaction_id,
            amount=entry.amount,
            currency=getattr(entry.currency, "value", entry.currency),
        )
        if event_type == CommissionEventType.COMMISSION_COLLECTED:
            event.calculation_basis = entry.calculation_basis
        elif event_type == CommissionEventType.COMMISSION_SETTLED:
            event.settlement_date = entry.settlement_date
        return event


class LoggingEventTransport:
    """Transport used when Kafka is disabled: events only go to the log."""

    async def start(self) -> None:
        logger.info("Kafka disabled, commission events will be logged only")

    async def stop(self) -> None:
        pass

    async def send(self, topic: str, key: bytes, value: bytes) -> None:
        logger.info(f"Event [{topic}] {value.decode('utf-8')}")


class KafkaEventTransport:
    """Kafka transport backed by aiokafka."""

    def __init__(self, bootstrap_servers: str, client_id: str):
        self.bootstrap_servers = bootstrap_servers
        self.client_id = client_id
        self._producer: Optional[AIOKafkaProducer] = None

    async def start(self) -> None:
        self._producer = AIOKafkaProducer(
            bootstrap_servers=self.bootstrap_servers,
            client_id=self.client_id,
            acks="all",
            enable_idempotence=True,
        )
        await self._producer.start()
        logger.info(f"Kafka producer started ({self.bootstrap_servers})")

    async def stop(self) -> None:
        if self._producer is not None:
            await self._producer.stop()
            self._producer = None
            logger.info("Kafka producer stopped")

    async def send(self, topic: str, key: bytes, value: bytes) -> None:
        if self._producer is None:
            raise RuntimeError("Kafka producer is not started")
        await self._producer.send_and_wait(topic, value=value, key=key)


class CommissionEventPublisher:
    """Publishes commission lifecycle events; never raises on transport errors."""

    def __init__(self, transport=None, topic: Optional[str] = None):
        self.transport = transport or LoggingEventTransport()
        self.topic = topic or settings.commission_events_topic

    async def start(self) -> None:
        await self.transport.start()

    async def stop(self) -> None:
        await self.transport.stop()

    async def publish(self, event: CommissionEvent) -> bool:
        """
        Send one event.

        Returns:
            True if the transport accepted the event, False if it failed
        """
        try:
            await self.transport.send(
                self.topic,
                key=str(event.transaction_id).encode("utf-8"),
                value=event.model_dump_json().encode("utf-8"),
            )
        except Exception as e:
            logger.error(
                f"Failed to publish {event.event_type.value} for commission "
                f"{event.commission_id}: {e}"
            )
            return False

        logger.info(f"Published {event.event_type.value} for commission: {event.commission_id}")
        return True

    async def publish_collected(self, entry: CommissionTransaction) -> bool:
        return await self.publish(
            CommissionEvent.from_entry(CommissionEventType.COMMISSION_COLLECTED, entry)
        )

    async def publish_refunded(self, entry: CommissionTransaction) -> bool:
        return await self.publish(
            CommissionEvent.from_entry(CommissionEventType.COMMISSION_REFUNDED, entry)
        )

    async def publish_settled(self, entry: CommissionTransaction) -> bool:
        return await self.publish(
            CommissionEvent.from_entry(CommissionEventType.COMMISSION_SETTLED, entry)
        )


def build_transport():
    """Pick the event transport from settings."""
    if settings.kafka_enabled:
        return KafkaEventTransport(
            bootstrap_servers=settings.kafka_bootstrap_servers,
            client_id=settings.kafka_client_id,
        )
    return LoggingEventTransport()


# Global publisher instance
event_publisher = CommissionEventPublisher(build_transport())


def get_event_publisher() -> CommissionEventPublisher:
    """Get the process-wide event publisher."""
    return event_publisher
