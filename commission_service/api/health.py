"""
Health endpoints.

/ready reports what fee quoting depends on (the database), plus the rule
cache counters and whether the transaction event consumer is still polling.
"""

from fastapi import APIRouter, Depends, Request
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from commission_service.db import get_db
from commission_service.services.rule_cache import get_rule_cache

router = APIRouter(prefix="/health", tags=["Health"])


def _consumer_status(request: Request) -> str:
    consumer = getattr(request.app.state, "transaction_consumer", None)
    if consumer is None:
        return "disabled"
    return "running" if consumer.running else "stopped"


@router.get("")
async def health_check():
    return {"status": "healthy", "service": "commission-service"}


@router.get("/ready")
async def readiness_check(request: Request, db: AsyncSession = Depends(get_db)):
    """
    Ready when the rule tables are reachable and, with Kafka enabled,
    the transaction consumer has not died.
    """
    try:
        await db.execute(text("SELECT 1"))
    except Exception as e:
        return {"status": "not_ready", "database": f"error: {str(e)}"}

    consumer_status = _consumer_status(request)
    cache = get_rule_cache()
    return {
        "status": "not_ready" if consumer_status == "stopped" else "ready",
        "database": "connected",
        "transaction_consumer": consumer_status,
        "rule_cache": {"entries": len(cache), "hits": cache.hits, "misses": cache.misses},
    }


@router.get("/live")
async def liveness_check():
    return {"status": "alive"}
