from __future__ import annotations

import uuid
from datetime import date

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from mercato.core.db import get_session
from mercato.core.security import require_basic_auth
from mercato.schemas.settlements import (
    MonthlyCloseRequest,
    SettlementAdjustmentCreate,
    SettlementGenerateRequest,
    SettlementOut,
    SettlementSummaryOut,
)
from mercato.services.settlements import (
    add_settlement_adjustment,
    finalize_settlement,
    generate_monthly_settlements,
    generate_settlement,
    get_settlement,
    list_settlements,
    regenerate_settlement,
    settlement_summary,
)


router = APIRouter()


async def _settlement_out(session: AsyncSession, settlement_id: uuid.UUID) -> SettlementOut:
    settlement = await get_settlement(session, settlement_id)
    if settlement is None:
        raise HTTPException(status_code=404, detail="Not found")
    return SettlementOut.model_validate(settlement)


@router.post("", response_model=SettlementOut)
async def generate_settlement_endpoint(
    data: SettlementGenerateRequest,
    session: AsyncSession = Depends(get_session),
    actor: str = Depends(require_basic_auth),
) -> SettlementOut:
    try:
        async with session.begin():
            settlement = await generate_settlement(
                session,
                actor=actor,
                store_id=data.store_id,
                period_start=data.period_start,
                period_end=data.period_end,
            )
    except ValueError as e:
        raise HTTPException(status_code=409, detail=str(e)) from e
    return await _settlement_out(session, settlement.id)


@router.post("/monthly", response_model=list[SettlementOut])
async def monthly_settlements_endpoint(
    data: MonthlyCloseRequest,
    session: AsyncSession = Depends(get_session),
    actor: str = Depends(require_basic_auth),
) -> list[SettlementOut]:
    try:
        async with session.begin():
            settlements = await generate_monthly_settlements(session, actor=actor, year=data.year, month=data.month)
    except ValueError as e:
        raise HTTPException(status_code=409, detail=str(e)) from e
    return [await _settlement_out(session, s.id) for s in settlements]


@router.get("/stores/{store_id}", response_model=list[SettlementOut])
async def list_store_settlements(
    store_id: uuid.UUID,
    include_superseded: bool = False,
    session: AsyncSession = Depends(get_session),
) -> list[SettlementOut]:
    rows = await list_settlements(session, store_id=store_id, include_superseded=include_superseded)
    return [SettlementOut.model_validate(r) for r in rows]


@router.get("/stores/{store_id}/summary", response_model=SettlementSummaryOut)
async def store_settlement_summary(
    store_id: uuid.UUID,
    start: date,
    end: date,
    session: AsyncSession = Depends(get_session),
) -> SettlementSummaryOut:
    if end <= start:
        raise HTTPException(status_code=400, detail="end must be after start")
    summary = await settlement_summary(session, store_id=store_id, start=start, end=end)
    return SettlementSummaryOut(
        store_id=summary.store_id,
        settlement_count=summary.settlement_count,
        gross_cents=summary.gross_cents,
        refunds_cents=summary.refunds_cents,
        commission_cents=summary.commission_cents,
        adjustments_cents=summary.adjustments_cents,
        net_cents=summary.net_cents,
        payouts_cents=summary.payouts_cents,
    )


@router.get("/{settlement_id}", response_model=SettlementOut)
async def get_settlement_endpoint(settlement_id: uuid.UUID, session: AsyncSession = Depends(get_session)) -> SettlementOut:
    return await _settlement_out(session, settlement_id)


@router.post("/{settlement_id}/regenerate", response_model=SettlementOut)
async def regenerate_settlement_endpoint(
    settlement_id: uuid.UUID,
    session: AsyncSession = Depends(get_session),
    actor: str = Depends(require_basic_auth),
) -> SettlementOut:
    try:
        async with session.begin():
            settlement = await regenerate_settlement(session, actor=actor, settlement_id=settlement_id)
    except ValueError as e:
        raise HTTPException(status_code=409, detail=str(e)) from e
    return await _settlement_out(session, settlement.id)


@router.post("/{settlement_id}/finalize", response_model=SettlementOut)
async def finalize_settlement_endpoint(
    settlement_id: uuid.UUID,
    session: AsyncSession = Depends(get_session),
    actor: str = Depends(require_basic_auth),
) -> SettlementOut:
    try:
        async with session.begin():
            await finalize_settlement(session, actor=actor, settlement_id=settlement_id)
    except ValueError as e:
        raise HTTPException(status_code=409, detail=str(e)) from e
    return await _settlement_out(session, settlement_id)


@router.post("/{settlement_id}/adjustments", response_model=SettlementOut)
async def add_adjustment_endpoint(
    settlement_id: uuid.UUID,
    data: SettlementAdjustmentCreate,
    session: AsyncSession = Depends(get_session),
    actor: str = Depends(require_basic_auth),
) -> SettlementOut:
    try:
        async with session.begin():
            await add_settlement_adjustment(session, actor=actor, settlement_id=settlement_id, data=data)
    except ValueError as e:
        raise HTTPException(status_code=409, detail=str(e)) from e
    return await _settlement_out(session, settlement_id)
