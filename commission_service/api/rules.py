"""Commission rule administration endpoints."""

import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Header, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from commission_service.db import get_db
from commission_service.models.rule import Currency, TransferType
from commission_service.schemas.rule import (
    RuleCreateRequest,
    RuleListResponse,
    RuleResponse,
    RuleUpdateRequest,
)
from commission_service.services import rule_store

router = APIRouter(prefix="/rules", tags=["Rules"])


@router.post("", response_model=RuleResponse, status_code=status.HTTP_201_CREATED)
async def create_rule(
    data: RuleCreateRequest,
    db: AsyncSession = Depends(get_db),
    x_user_id: Optional[uuid.UUID] = Header(None),
):
    """Create a commission rule."""
    return await rule_store.create_rule(db, data, created_by=x_user_id)


@router.get("", response_model=RuleListResponse)
async def list_rules(
    db: AsyncSession = Depends(get_db),
    currency: Optional[Currency] = Query(None),
    transfer_type: Optional[TransferType] = Query(None),
    is_active: Optional[bool] = Query(None),
    page: int = Query(1, ge=1),
    per_page: int = Query(20, ge=1, le=100),
):
    """List rules with filters."""
    items, total = await rule_store.list_rules(
        db,
        currency=currency,
        transfer_type=transfer_type,
        is_active=is_active,
        page=page,
        per_page=per_page,
    )
    return RuleListResponse(
        items=[RuleResponse.model_validate(rule) for rule in items],
        total=total,
        page=page,
        per_page=per_page,
        pages=(total + per_page - 1) // per_page if total else 0,
    )


@router.get("/{rule_id}", response_model=RuleResponse)
async def get_rule(
    rule_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
):
    return await rule_store.get_rule(db, rule_id)


@router.put("/{rule_id}", response_model=RuleResponse)
async def update_rule(
    rule_id: uuid.UUID,
    data: RuleUpdateRequest,
    db: AsyncSession = Depends(get_db),
):
    """Partially update a rule. Recorded commissions are not affected."""
    return await rule_store.update_rule(db, rule_id, data)


@router.delete("/{rule_id}", response_model=RuleResponse)
async def deactivate_rule(
    rule_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
):
    """Deactivate a rule (rules are never deleted)."""
    return await rule_store.deactivate_rule(db, rule_id)


@router.patch("/{rule_id}/activate", response_model=RuleResponse)
async def activate_rule(
    rule_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
):
    return await rule_store.activate_rule(db, rule_id)
