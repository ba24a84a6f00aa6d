from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from mercato.core.db import get_session
from mercato.core.security import require_basic_auth
from mercato.models.payout import Payout, PayoutMethod, PayoutSchedule
from mercato.schemas.payouts import (
    EligibleBalanceOut,
    PayoutMethodCreate,
    PayoutMethodOut,
    PayoutOut,
    PayoutScheduleOut,
    PayoutScheduleUpsert,
)
from mercato.services.payouts import (
    add_payout_method,
    create_payout,
    eligible_balance,
    generate_scheduled_payouts,
    list_payouts,
    process_payout,
    retry_failed_payouts,
    upsert_payout_schedule,
)


router = APIRouter()


@router.get("/stores/{store_id}/methods", response_model=list[PayoutMethodOut])
async def list_methods(store_id: uuid.UUID, session: AsyncSession = Depends(get_session)) -> list[PayoutMethodOut]:
    rows = (
        await session.execute(
            select(PayoutMethod)
            .where(PayoutMethod.store_id == store_id, PayoutMethod.is_active.is_(True))
            .order_by(PayoutMethod.is_default.desc(), PayoutMethod.created_at)
        )
    ).scalars().all()
    return [PayoutMethodOut.model_validate(r) for r in rows]


@router.post("/stores/{store_id}/methods", response_model=PayoutMethodOut)
async def add_method_endpoint(
    store_id: uuid.UUID,
    data: PayoutMethodCreate,
    session: AsyncSession = Depends(get_session),
    actor: str = Depends(require_basic_auth),
) -> PayoutMethodOut:
    try:
        async with session.begin():
            method = await add_payout_method(session, actor=actor, store_id=store_id, data=data)
    except ValueError as e:
        raise HTTPException(status_code=409, detail=str(e)) from e
    await session.refresh(method)
    return PayoutMethodOut.model_validate(method)


@router.get("/stores/{store_id}/schedule", response_model=PayoutScheduleOut)
async def get_schedule(store_id: uuid.UUID, session: AsyncSession = Depends(get_session)) -> PayoutScheduleOut:
    schedule = (
        await session.execute(select(PayoutSchedule).where(PayoutSchedule.store_id == store_id))
    ).scalar_one_or_none()
    if schedule is None:
        raise HTTPException(status_code=404, detail="Not found")
    return PayoutScheduleOut.model_validate(schedule)


@router.put("/stores/{store_id}/schedule", response_model=PayoutScheduleOut)
async def upsert_schedule_endpoint(
    store_id: uuid.UUID,
    data: PayoutScheduleUpsert,
    session: AsyncSession = Depends(get_session),
    actor: str = Depends(require_basic_auth),
) -> PayoutScheduleOut:
    try:
        async with session.begin():
            schedule = await upsert_payout_schedule(session, actor=actor, store_id=store_id, data=data)
    except ValueError as e:
        raise HTTPException(status_code=409, detail=str(e)) from e
    await session.refresh(schedule)
    return PayoutScheduleOut.model_validate(schedule)


@router.get("/stores/{store_id}/balance", response_model=EligibleBalanceOut)
async def get_balance(store_id: uuid.UUID, session: AsyncSession = Depends(get_session)) -> EligibleBalanceOut:
    balance = await eligible_balance(session, store_id=store_id)
    return EligibleBalanceOut(
        store_id=balance.store_id,
        escrow_count=balance.escrow_count,
        amount_cents=balance.amount_cents,
    )


@router.get("/stores/{store_id}", response_model=list[PayoutOut])
async def list_store_payouts(store_id: uuid.UUID, session: AsyncSession = Depends(get_session)) -> list[PayoutOut]:
    rows = await list_payouts(session, store_id=store_id)
    return [PayoutOut.model_validate(r) for r in rows]


@router.post("/stores/{store_id}", response_model=PayoutOut)
async def create_payout_endpoint(
    store_id: uuid.UUID,
    session: AsyncSession = Depends(get_session),
    actor: str = Depends(require_basic_auth),
) -> PayoutOut:
    """Manual payout of the current eligible balance, outside the store's schedule."""
    try:
        async with session.begin():
            payout = await create_payout(session, actor=actor, store_id=store_id)
    except ValueError as e:
        raise HTTPException(status_code=409, detail=str(e)) from e
    if payout is None:
        raise HTTPException(status_code=409, detail="Eligible balance is below the payout minimum")
    await session.refresh(payout)
    return PayoutOut.model_validate(payout)


@router.post("/run/generate-scheduled", response_model=list[PayoutOut])
async def generate_scheduled_endpoint(
    session: AsyncSession = Depends(get_session),
    actor: str = Depends(require_basic_auth),
) -> list[PayoutOut]:
    async with session.begin():
        payouts = await generate_scheduled_payouts(session, actor=actor)
    for payout in payouts:
        await session.refresh(payout)
    return [PayoutOut.model_validate(p) for p in payouts]


@router.post("/run/retry-failed", response_model=list[PayoutOut])
async def retry_failed_endpoint(
    session: AsyncSession = Depends(get_session),
    actor: str = Depends(require_basic_auth),
) -> list[PayoutOut]:
    async with session.begin():
        payouts = await retry_failed_payouts(session, actor=actor)
    for payout in payouts:
        await session.refresh(payout)
    return [PayoutOut.model_validate(p) for p in payouts]


@router.get("/{payout_id}", response_model=PayoutOut)
async def get_payout(payout_id: uuid.UUID, session: AsyncSession = Depends(get_session)) -> PayoutOut:
    payout = await session.get(Payout, payout_id)
    if payout is None:
        raise HTTPException(status_code=404, detail="Not found")
    return PayoutOut.model_validate(payout)


@router.post("/{payout_id}/process", response_model=PayoutOut)
async def process_payout_endpoint(
    payout_id: uuid.UUID,
    session: AsyncSession = Depends(get_session),
    actor: str = Depends(require_basic_auth),
) -> PayoutOut:
    try:
        async with session.begin():
            payout = await process_payout(session, actor=actor, payout_id=payout_id)
    except ValueError as e:
        raise HTTPException(status_code=409, detail=str(e)) from e
    await session.refresh(payout)
    return PayoutOut.model_validate(payout)
