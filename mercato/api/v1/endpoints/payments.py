from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from mercato.core.db import get_session
from mercato.core.security import require_basic_auth
from mercato.schemas.payments import PaymentInitiateRequest, PaymentStatusOut, PaymentTransactionOut
from mercato.services.payment_status import buyer_message
from mercato.services.payments import get_payment_transaction, initiate_payment, latest_payment_for_order


router = APIRouter()


@router.post("/orders/{order_id}", response_model=PaymentTransactionOut)
async def initiate_payment_endpoint(
    order_id: uuid.UUID,
    data: PaymentInitiateRequest,
    session: AsyncSession = Depends(get_session),
    actor: str = Depends(require_basic_auth),
) -> PaymentTransactionOut:
    try:
        async with session.begin():
            tx = await initiate_payment(session, actor=actor, order_id=order_id, provider=data.provider)
    except ValueError as e:
        raise HTTPException(status_code=409, detail=str(e)) from e
    await session.refresh(tx)
    return PaymentTransactionOut.model_validate(tx)


@router.get("/orders/{order_id}/status", response_model=PaymentStatusOut)
async def payment_status(order_id: uuid.UUID, session: AsyncSession = Depends(get_session)) -> PaymentStatusOut:
    tx = await latest_payment_for_order(session, order_id=order_id)
    if tx is None:
        raise HTTPException(status_code=404, detail="Not found")
    return PaymentStatusOut(status=tx.status, message=buyer_message(tx.status))


@router.get("/{payment_id}", response_model=PaymentTransactionOut)
async def get_payment(payment_id: uuid.UUID, session: AsyncSession = Depends(get_session)) -> PaymentTransactionOut:
    tx = await get_payment_transaction(session, payment_id)
    if tx is None:
        raise HTTPException(status_code=404, detail="Not found")
    return PaymentTransactionOut.model_validate(tx)
