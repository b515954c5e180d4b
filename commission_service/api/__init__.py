"""API router aggregation."""

from fastapi import APIRouter

from commission_service.api.commissions import router as commissions_router
from commission_service.api.health import router as health_router
from commission_service.api.reports import router as reports_router
from commission_service.api.rules import router as rules_router

# Versioned commission endpoints (/api/v1/commissions/*)
v1_router = APIRouter(prefix="/v1/commissions")
v1_router.include_router(commissions_router)
v1_router.include_router(rules_router)
v1_router.include_router(reports_router)

# Main API router (for /api/* endpoints)
api_router = APIRouter(prefix="/api")
api_router.include_router(health_router)
api_router.include_router(v1_router)

__all__ = ["api_router"]
