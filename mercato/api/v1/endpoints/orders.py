from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from mercato.core.db import get_session
from mercato.core.security import require_basic_auth
from mercato.schemas.orders import CheckoutRequest, OrderOut
from mercato.services.orders import create_order_from_cart, get_order, list_orders_for_buyer


router = APIRouter()


@router.post("/checkout", response_model=OrderOut)
async def checkout(
    data: CheckoutRequest,
    session: AsyncSession = Depends(get_session),
    actor: str = Depends(require_basic_auth),
) -> OrderOut:
    try:
        async with session.begin():
            order = await create_order_from_cart(
                session, actor=actor, buyer_ref=data.buyer_ref, address=data.shipping_address
            )
    except ValueError as e:
        raise HTTPException(status_code=409, detail=str(e)) from e

    order = await get_order(session, order.id)
    return OrderOut.model_validate(order)


@router.get("", response_model=list[OrderOut])
async def list_orders(buyer_ref: str, session: AsyncSession = Depends(get_session)) -> list[OrderOut]:
    rows = await list_orders_for_buyer(session, buyer_ref=buyer_ref)
    return [OrderOut.model_validate(r) for r in rows]


@router.get("/{order_id}", response_model=OrderOut)
async def get_order_endpoint(order_id: uuid.UUID, session: AsyncSession = Depends(get_session)) -> OrderOut:
    order = await get_order(session, order_id)
    if order is None:
        raise HTTPException(status_code=404, detail="Not found")
    return OrderOut.model_validate(order)
