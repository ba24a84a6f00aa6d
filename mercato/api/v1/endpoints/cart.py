from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from mercato.core.db import get_session
from mercato.models.cart import Cart, CartItem
from mercato.schemas.cart import (
    CartItemAdd,
    CartItemOut,
    CartItemQuantityUpdate,
    CartMergeRequest,
    CartOut,
    StoreShippingOut,
)
from mercato.services.cart import (
    add_to_cart,
    calculate_cart_totals,
    get_or_create_cart,
    merge_carts,
    remove_cart_item,
    update_cart_item_quantity,
)


router = APIRouter()


def _cart_out(cart: Cart) -> CartOut:
    totals = calculate_cart_totals(cart)
    return CartOut(
        id=cart.id,
        buyer_ref=cart.buyer_ref,
        session_key=cart.session_key,
        items=[CartItemOut.model_validate(i) for i in cart.items],
        items_subtotal_cents=totals.items_subtotal_cents,
        shipping_cents=totals.shipping_cents,
        total_cents=totals.total_cents,
        stores=[StoreShippingOut.model_validate(s) for s in totals.stores],
    )


async def _reload(session: AsyncSession, cart: Cart) -> CartOut:
    cart = await get_or_create_cart(session, buyer_ref=cart.buyer_ref, session_key=cart.session_key)
    return _cart_out(cart)


@router.get("", response_model=CartOut)
async def get_cart(
    buyer_ref: str | None = None,
    session_key: str | None = None,
    session: AsyncSession = Depends(get_session),
) -> CartOut:
    try:
        async with session.begin():
            cart = await get_or_create_cart(session, buyer_ref=buyer_ref, session_key=session_key)
            return _cart_out(cart)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e


@router.post("/items", response_model=CartOut)
async def add_cart_item(data: CartItemAdd, session: AsyncSession = Depends(get_session)) -> CartOut:
    try:
        async with session.begin():
            await add_to_cart(
                session,
                buyer_ref=data.buyer_ref,
                session_key=data.session_key,
                product_id=data.product_id,
                quantity=data.quantity,
            )
            cart = await get_or_create_cart(session, buyer_ref=data.buyer_ref, session_key=data.session_key)
            return _cart_out(cart)
    except ValueError as e:
        raise HTTPException(status_code=409, detail=str(e)) from e


@router.patch("/items/{cart_item_id}", response_model=CartOut)
async def update_cart_item(
    cart_item_id: uuid.UUID,
    data: CartItemQuantityUpdate,
    session: AsyncSession = Depends(get_session),
) -> CartOut:
    try:
        async with session.begin():
            item = await session.get(CartItem, cart_item_id)
            if item is None:
                raise HTTPException(status_code=404, detail="Not found")
            cart = await session.get(Cart, item.cart_id)
            await update_cart_item_quantity(session, cart_item_id=cart_item_id, quantity=data.quantity)
            return await _reload(session, cart)
    except ValueError as e:
        raise HTTPException(status_code=409, detail=str(e)) from e


@router.delete("/items/{cart_item_id}", response_model=CartOut)
async def delete_cart_item(cart_item_id: uuid.UUID, session: AsyncSession = Depends(get_session)) -> CartOut:
    async with session.begin():
        item = await session.get(CartItem, cart_item_id)
        if item is None:
            raise HTTPException(status_code=404, detail="Not found")
        cart = await session.get(Cart, item.cart_id)
        await remove_cart_item(session, cart_item_id=cart_item_id)
        return await _reload(session, cart)


@router.post("/merge", response_model=CartOut)
async def merge_cart(data: CartMergeRequest, session: AsyncSession = Depends(get_session)) -> CartOut:
    try:
        async with session.begin():
            await merge_carts(session, buyer_ref=data.buyer_ref, session_key=data.session_key)
            cart = await get_or_create_cart(session, buyer_ref=data.buyer_ref)
            return _cart_out(cart)
    except ValueError as e:
        raise HTTPException(status_code=409, detail=str(e)) from e
