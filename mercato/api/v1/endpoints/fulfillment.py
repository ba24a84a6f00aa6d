from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from mercato.core.db import get_session
from mercato.core.security import require_basic_auth
from mercato.models.order import OrderItem, SellerSubOrder
from mercato.schemas.orders import ItemQuantityRequest, OrderItemOut, SellerSubOrderOut, TrackingUpdate
from mercato.services.fulfillment import cancel_item_quantity, cancel_sub_order, mark_item_preparing, ship_item_quantity
from mercato.services.order_status import (
    mark_sub_order_delivered,
    mark_sub_order_preparing,
    mark_sub_order_shipped,
    update_tracking,
)


router = APIRouter()


async def _sub_order_out(session: AsyncSession, sub_order_id: uuid.UUID) -> SellerSubOrderOut:
    sub_order = (
        await session.execute(
            select(SellerSubOrder)
            .where(SellerSubOrder.id == sub_order_id)
            .options(selectinload(SellerSubOrder.items))
            .execution_options(populate_existing=True)
        )
    ).scalar_one()
    return SellerSubOrderOut.model_validate(sub_order)


@router.get("/sub-orders/{sub_order_id}", response_model=SellerSubOrderOut)
async def get_sub_order(sub_order_id: uuid.UUID, session: AsyncSession = Depends(get_session)) -> SellerSubOrderOut:
    if await session.get(SellerSubOrder, sub_order_id) is None:
        raise HTTPException(status_code=404, detail="Not found")
    return await _sub_order_out(session, sub_order_id)


@router.post("/sub-orders/{sub_order_id}/preparing", response_model=SellerSubOrderOut)
async def mark_preparing_endpoint(
    sub_order_id: uuid.UUID,
    session: AsyncSession = Depends(get_session),
    actor: str = Depends(require_basic_auth),
) -> SellerSubOrderOut:
    try:
        async with session.begin():
            await mark_sub_order_preparing(session, actor=actor, sub_order_id=sub_order_id)
    except ValueError as e:
        raise HTTPException(status_code=409, detail=str(e)) from e
    return await _sub_order_out(session, sub_order_id)


@router.post("/sub-orders/{sub_order_id}/shipped", response_model=SellerSubOrderOut)
async def mark_shipped_endpoint(
    sub_order_id: uuid.UUID,
    data: TrackingUpdate,
    session: AsyncSession = Depends(get_session),
    actor: str = Depends(require_basic_auth),
) -> SellerSubOrderOut:
    try:
        async with session.begin():
            await mark_sub_order_shipped(
                session,
                actor=actor,
                sub_order_id=sub_order_id,
                tracking_number=data.tracking_number,
                carrier_name=data.carrier_name,
                tracking_url=data.tracking_url,
            )
    except ValueError as e:
        raise HTTPException(status_code=409, detail=str(e)) from e
    return await _sub_order_out(session, sub_order_id)


@router.post("/sub-orders/{sub_order_id}/delivered", response_model=SellerSubOrderOut)
async def mark_delivered_endpoint(
    sub_order_id: uuid.UUID,
    session: AsyncSession = Depends(get_session),
    actor: str = Depends(require_basic_auth),
) -> SellerSubOrderOut:
    try:
        async with session.begin():
            await mark_sub_order_delivered(session, actor=actor, sub_order_id=sub_order_id)
    except ValueError as e:
        raise HTTPException(status_code=409, detail=str(e)) from e
    return await _sub_order_out(session, sub_order_id)


@router.put("/sub-orders/{sub_order_id}/tracking", response_model=SellerSubOrderOut)
async def update_tracking_endpoint(
    sub_order_id: uuid.UUID,
    data: TrackingUpdate,
    session: AsyncSession = Depends(get_session),
    actor: str = Depends(require_basic_auth),
) -> SellerSubOrderOut:
    try:
        async with session.begin():
            await update_tracking(
                session,
                actor=actor,
                sub_order_id=sub_order_id,
                tracking_number=data.tracking_number,
                carrier_name=data.carrier_name,
                tracking_url=data.tracking_url,
            )
    except ValueError as e:
        raise HTTPException(status_code=409, detail=str(e)) from e
    return await _sub_order_out(session, sub_order_id)


@router.post("/sub-orders/{sub_order_id}/cancel", response_model=SellerSubOrderOut)
async def cancel_sub_order_endpoint(
    sub_order_id: uuid.UUID,
    session: AsyncSession = Depends(get_session),
    actor: str = Depends(require_basic_auth),
) -> SellerSubOrderOut:
    try:
        async with session.begin():
            await cancel_sub_order(session, actor=actor, sub_order_id=sub_order_id)
    except ValueError as e:
        raise HTTPException(status_code=409, detail=str(e)) from e
    return await _sub_order_out(session, sub_order_id)


@router.post("/items/{item_id}/preparing", response_model=OrderItemOut)
async def mark_item_preparing_endpoint(
    item_id: uuid.UUID,
    session: AsyncSession = Depends(get_session),
    actor: str = Depends(require_basic_auth),
) -> OrderItemOut:
    try:
        async with session.begin():
            item = await mark_item_preparing(session, actor=actor, item_id=item_id)
    except ValueError as e:
        raise HTTPException(status_code=409, detail=str(e)) from e
    return OrderItemOut.model_validate(item)


@router.post("/items/{item_id}/ship", response_model=OrderItemOut)
async def ship_item_endpoint(
    item_id: uuid.UUID,
    data: ItemQuantityRequest,
    session: AsyncSession = Depends(get_session),
    actor: str = Depends(require_basic_auth),
) -> OrderItemOut:
    try:
        async with session.begin():
            item = await ship_item_quantity(session, actor=actor, item_id=item_id, quantity=data.quantity)
    except ValueError as e:
        raise HTTPException(status_code=409, detail=str(e)) from e
    return OrderItemOut.model_validate(item)


@router.post("/items/{item_id}/cancel", response_model=OrderItemOut)
async def cancel_item_endpoint(
    item_id: uuid.UUID,
    data: ItemQuantityRequest,
    session: AsyncSession = Depends(get_session),
    actor: str = Depends(require_basic_auth),
) -> OrderItemOut:
    try:
        async with session.begin():
            item, _refund = await cancel_item_quantity(session, actor=actor, item_id=item_id, quantity=data.quantity)
    except ValueError as e:
        raise HTTPException(status_code=409, detail=str(e)) from e
    item = await session.get(OrderItem, item.id, populate_existing=True)
    return OrderItemOut.model_validate(item)
