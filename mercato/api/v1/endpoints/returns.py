from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from mercato.core.db import get_session
from mercato.core.enums import ReturnStatus
from mercato.core.security import require_basic_auth
from mercato.schemas.returns import (
    ReturnEscalateRequest,
    ReturnRejectRequest,
    ReturnRequestCreate,
    ReturnRequestOut,
    ReturnResolveRequest,
    SellerNotes,
)
from mercato.services.returns import (
    approve_return,
    complete_return,
    create_return_request,
    escalate_return,
    get_return_request,
    list_returns_for_buyer,
    list_returns_for_store,
    reject_return,
    resolve_return,
)


router = APIRouter()


async def _return_out(session: AsyncSession, return_id: uuid.UUID) -> ReturnRequestOut:
    rr = await get_return_request(session, return_id)
    if rr is None:
        raise HTTPException(status_code=404, detail="Not found")
    return ReturnRequestOut.model_validate(rr)


@router.post("", response_model=ReturnRequestOut)
async def create_return_endpoint(
    data: ReturnRequestCreate,
    session: AsyncSession = Depends(get_session),
    actor: str = Depends(require_basic_auth),
) -> ReturnRequestOut:
    try:
        async with session.begin():
            rr = await create_return_request(session, actor=actor, data=data)
    except ValueError as e:
        raise HTTPException(status_code=409, detail=str(e)) from e
    return await _return_out(session, rr.id)


@router.get("", response_model=list[ReturnRequestOut])
async def list_buyer_returns(buyer_ref: str, session: AsyncSession = Depends(get_session)) -> list[ReturnRequestOut]:
    rows = await list_returns_for_buyer(session, buyer_ref=buyer_ref)
    return [ReturnRequestOut.model_validate(r) for r in rows]


@router.get("/stores/{store_id}", response_model=list[ReturnRequestOut])
async def list_store_returns(
    store_id: uuid.UUID,
    status: ReturnStatus | None = None,
    session: AsyncSession = Depends(get_session),
) -> list[ReturnRequestOut]:
    rows = await list_returns_for_store(session, store_id=store_id, status=status)
    return [ReturnRequestOut.model_validate(r) for r in rows]


@router.get("/{return_id}", response_model=ReturnRequestOut)
async def get_return_endpoint(return_id: uuid.UUID, session: AsyncSession = Depends(get_session)) -> ReturnRequestOut:
    return await _return_out(session, return_id)


@router.post("/{return_id}/approve", response_model=ReturnRequestOut)
async def approve_return_endpoint(
    return_id: uuid.UUID,
    data: SellerNotes,
    session: AsyncSession = Depends(get_session),
    actor: str = Depends(require_basic_auth),
) -> ReturnRequestOut:
    try:
        async with session.begin():
            await approve_return(session, actor=actor, return_id=return_id, seller_notes=data.notes)
    except ValueError as e:
        raise HTTPException(status_code=409, detail=str(e)) from e
    return await _return_out(session, return_id)


@router.post("/{return_id}/reject", response_model=ReturnRequestOut)
async def reject_return_endpoint(
    return_id: uuid.UUID,
    data: ReturnRejectRequest,
    session: AsyncSession = Depends(get_session),
    actor: str = Depends(require_basic_auth),
) -> ReturnRequestOut:
    try:
        async with session.begin():
            await reject_return(session, actor=actor, return_id=return_id, reason=data.reason)
    except ValueError as e:
        raise HTTPException(status_code=409, detail=str(e)) from e
    return await _return_out(session, return_id)


@router.post("/{return_id}/complete", response_model=ReturnRequestOut)
async def complete_return_endpoint(
    return_id: uuid.UUID,
    session: AsyncSession = Depends(get_session),
    actor: str = Depends(require_basic_auth),
) -> ReturnRequestOut:
    try:
        async with session.begin():
            await complete_return(session, actor=actor, return_id=return_id)
    except ValueError as e:
        raise HTTPException(status_code=409, detail=str(e)) from e
    return await _return_out(session, return_id)


@router.post("/{return_id}/escalate", response_model=ReturnRequestOut)
async def escalate_return_endpoint(
    return_id: uuid.UUID,
    data: ReturnEscalateRequest,
    session: AsyncSession = Depends(get_session),
    actor: str = Depends(require_basic_auth),
) -> ReturnRequestOut:
    try:
        async with session.begin():
            await escalate_return(session, actor=actor, return_id=return_id, buyer_ref=data.buyer_ref, reason=data.reason)
    except ValueError as e:
        raise HTTPException(status_code=409, detail=str(e)) from e
    return await _return_out(session, return_id)


@router.post("/{return_id}/resolve", response_model=ReturnRequestOut)
async def resolve_return_endpoint(
    return_id: uuid.UUID,
    data: ReturnResolveRequest,
    session: AsyncSession = Depends(get_session),
    actor: str = Depends(require_basic_auth),
) -> ReturnRequestOut:
    try:
        async with session.begin():
            await resolve_return(
                session,
                actor=actor,
                return_id=return_id,
                resolution=data.resolution,
                amount_cents=data.amount_cents,
                notes=data.notes,
            )
    except ValueError as e:
        raise HTTPException(status_code=409, detail=str(e)) from e
    return await _return_out(session, return_id)
