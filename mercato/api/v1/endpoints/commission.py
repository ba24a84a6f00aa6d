from __future__ import annotations

import uuid
from datetime import date

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from mercato.core.clock import start_of_day
from mercato.core.db import get_session
from mercato.core.security import require_basic_auth
from mercato.models.commission import CommissionRule
from mercato.schemas.commission import (
    CommissionRuleCreate,
    CommissionRuleOut,
    CommissionRuleUpdate,
    CommissionTransactionOut,
)
from mercato.services.commission import create_rule, deactivate_rule, list_commission_transactions, update_rule


router = APIRouter()


@router.get("/rules", response_model=list[CommissionRuleOut])
async def list_rules(
    include_inactive: bool = False,
    session: AsyncSession = Depends(get_session),
) -> list[CommissionRuleOut]:
    stmt = select(CommissionRule).order_by(CommissionRule.priority.desc(), CommissionRule.effective_from.desc())
    if not include_inactive:
        stmt = stmt.where(CommissionRule.is_active.is_(True))
    rows = (await session.execute(stmt)).scalars().all()
    return [CommissionRuleOut.model_validate(r) for r in rows]


@router.post("/rules", response_model=CommissionRuleOut)
async def create_rule_endpoint(
    data: CommissionRuleCreate,
    session: AsyncSession = Depends(get_session),
    actor: str = Depends(require_basic_auth),
) -> CommissionRuleOut:
    try:
        async with session.begin():
            rule = await create_rule(session, actor=actor, data=data)
    except ValueError as e:
        raise HTTPException(status_code=409, detail=str(e)) from e
    await session.refresh(rule)
    return CommissionRuleOut.model_validate(rule)


@router.put("/rules/{rule_id}", response_model=CommissionRuleOut)
async def update_rule_endpoint(
    rule_id: uuid.UUID,
    data: CommissionRuleUpdate,
    session: AsyncSession = Depends(get_session),
    actor: str = Depends(require_basic_auth),
) -> CommissionRuleOut:
    try:
        async with session.begin():
            rule = await update_rule(session, actor=actor, rule_id=rule_id, data=data)
    except ValueError as e:
        raise HTTPException(status_code=409, detail=str(e)) from e
    await session.refresh(rule)
    return CommissionRuleOut.model_validate(rule)


@router.post("/rules/{rule_id}/deactivate", response_model=CommissionRuleOut)
async def deactivate_rule_endpoint(
    rule_id: uuid.UUID,
    session: AsyncSession = Depends(get_session),
    actor: str = Depends(require_basic_auth),
) -> CommissionRuleOut:
    try:
        async with session.begin():
            rule = await deactivate_rule(session, actor=actor, rule_id=rule_id)
    except ValueError as e:
        raise HTTPException(status_code=409, detail=str(e)) from e
    await session.refresh(rule)
    return CommissionRuleOut.model_validate(rule)


@router.get("/transactions", response_model=list[CommissionTransactionOut])
async def list_transactions(
    store_id: uuid.UUID,
    start: date,
    end: date,
    session: AsyncSession = Depends(get_session),
) -> list[CommissionTransactionOut]:
    if end <= start:
        raise HTTPException(status_code=400, detail="end must be after start")
    rows = await list_commission_transactions(
        session,
        store_id=store_id,
        start=start_of_day(start),
        end=start_of_day(end),
    )
    return [CommissionTransactionOut.model_validate(r) for r in rows]
