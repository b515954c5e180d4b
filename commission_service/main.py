"""
Commission Service

Main FastAPI application with:
- Fee quotes (explicit rule or best matching rule, default formula fallback)
- Commission rule administration
- Commission ledger (record, refund, settle) and reports
- Kafka transaction consumer and commission event publisher
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from commission_service.api import api_router
from commission_service.config import settings
from commission_service.exceptions import CommissionServiceError, commission_error_handler
from commission_service.scheduler import scheduler, setup_scheduler
from commission_service.services.event_consumer import TransactionEventConsumer
from commission_service.services.events import get_event_publisher

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper()),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Startup:
    - Starts the commission event publisher
    - Starts the transaction event consumer (Kafka enabled)
    - Starts the settlement scheduler (settlement enabled)

    Shutdown:
    - Stops them in reverse order
    """
    logger.info("Starting commission service...")

    publisher = get_event_publisher()
    await publisher.start()

    consumer = None
    if settings.kafka_enabled:
        consumer = TransactionEventConsumer(publisher=publisher)
        await consumer.start()
    app.state.transaction_consumer = consumer

    if settings.settlement_enabled:
        setup_scheduler()
        scheduler.start()

    logger.info("Commission service started successfully!")

    yield

    # Shutdown
    logger.info("Shutting down commission service...")
    if scheduler.running:
        scheduler.shutdown(wait=False)
    if consumer is not None:
        await consumer.stop()
    await publisher.stop()


# Create FastAPI application
app = FastAPI(
    title="Commission Service",
    description="Commission rule engine and commission ledger",
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/docs" if not settings.is_production else None,
    redoc_url="/redoc" if not settings.is_production else None,
)

app.add_exception_handler(CommissionServiceError, commission_error_handler)

# Include routers
app.include_router(api_router)  # /api/* endpoints


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "commission_service.main:app",
        host="0.0.0.0",
        port=8000,
        reload=not settings.is_production,
    )
