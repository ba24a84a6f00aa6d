from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from mercato.core.db import get_session
from mercato.core.security import require_basic_auth
from mercato.schemas.returns import FullRefundRequest, PartialRefundRequest, RefundTransactionOut
from mercato.services.refunds import list_refunds_for_order, process_full_refund, process_partial_refund, retry_failed_refund


router = APIRouter()


@router.post("/orders/{order_id}/full", response_model=RefundTransactionOut)
async def full_refund_endpoint(
    order_id: uuid.UUID,
    data: FullRefundRequest,
    session: AsyncSession = Depends(get_session),
    actor: str = Depends(require_basic_auth),
) -> RefundTransactionOut:
    try:
        async with session.begin():
            refund = await process_full_refund(session, actor=actor, order_id=order_id, reason=data.reason)
    except ValueError as e:
        raise HTTPException(status_code=409, detail=str(e)) from e
    return RefundTransactionOut.model_validate(refund)


@router.post("/orders/{order_id}/partial", response_model=RefundTransactionOut)
async def partial_refund_endpoint(
    order_id: uuid.UUID,
    data: PartialRefundRequest,
    session: AsyncSession = Depends(get_session),
    actor: str = Depends(require_basic_auth),
) -> RefundTransactionOut:
    try:
        async with session.begin():
            refund = await process_partial_refund(
                session,
                actor=actor,
                order_id=order_id,
                sub_order_id=data.sub_order_id,
                amount_cents=data.amount_cents,
                reason=data.reason,
            )
    except ValueError as e:
        raise HTTPException(status_code=409, detail=str(e)) from e
    return RefundTransactionOut.model_validate(refund)


@router.get("/orders/{order_id}", response_model=list[RefundTransactionOut])
async def list_order_refunds(order_id: uuid.UUID, session: AsyncSession = Depends(get_session)) -> list[RefundTransactionOut]:
    rows = await list_refunds_for_order(session, order_id=order_id)
    return [RefundTransactionOut.model_validate(r) for r in rows]


@router.post("/{refund_id}/retry", response_model=RefundTransactionOut)
async def retry_refund_endpoint(
    refund_id: uuid.UUID,
    session: AsyncSession = Depends(get_session),
    actor: str = Depends(require_basic_auth),
) -> RefundTransactionOut:
    try:
        async with session.begin():
            refund = await retry_failed_refund(session, actor=actor, refund_id=refund_id)
    except ValueError as e:
        raise HTTPException(status_code=409, detail=str(e)) from e
    return RefundTransactionOut.model_validate(refund)
