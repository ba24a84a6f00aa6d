from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from mercato.core.db import get_session
from mercato.core.enums import OrderStatus
from mercato.core.security import require_basic_auth
from mercato.models.store import Product, Store
from mercato.schemas.orders import SellerSubOrderOut
from mercato.schemas.store import ProductCreate, ProductOut, ProductStockUpdate, StoreCreate, StoreOut, StoreUpdate
from mercato.services.orders import list_sub_orders_for_store
from mercato.services.stores import create_product, create_store, set_product_stock, update_store


router = APIRouter()


@router.post("", response_model=StoreOut)
async def create_store_endpoint(
    data: StoreCreate,
    session: AsyncSession = Depends(get_session),
    actor: str = Depends(require_basic_auth),
) -> StoreOut:
    try:
        async with session.begin():
            store = await create_store(session, actor=actor, data=data)
    except ValueError as e:
        raise HTTPException(status_code=409, detail=str(e)) from e
    return StoreOut.model_validate(store)


@router.get("", response_model=list[StoreOut])
async def list_stores(session: AsyncSession = Depends(get_session)) -> list[StoreOut]:
    rows = (await session.execute(select(Store).order_by(Store.slug))).scalars().all()
    return [StoreOut.model_validate(r) for r in rows]


@router.get("/{store_id}", response_model=StoreOut)
async def get_store(store_id: uuid.UUID, session: AsyncSession = Depends(get_session)) -> StoreOut:
    store = await session.get(Store, store_id)
    if store is None:
        raise HTTPException(status_code=404, detail="Not found")
    return StoreOut.model_validate(store)


@router.patch("/{store_id}", response_model=StoreOut)
async def update_store_endpoint(
    store_id: uuid.UUID,
    data: StoreUpdate,
    session: AsyncSession = Depends(get_session),
    actor: str = Depends(require_basic_auth),
) -> StoreOut:
    try:
        async with session.begin():
            store = await update_store(session, actor=actor, store_id=store_id, data=data)
    except ValueError as e:
        raise HTTPException(status_code=409, detail=str(e)) from e
    await session.refresh(store)
    return StoreOut.model_validate(store)


@router.get("/{store_id}/products", response_model=list[ProductOut])
async def list_store_products(store_id: uuid.UUID, session: AsyncSession = Depends(get_session)) -> list[ProductOut]:
    rows = (
        await session.execute(select(Product).where(Product.store_id == store_id).order_by(Product.sku))
    ).scalars().all()
    return [ProductOut.model_validate(r) for r in rows]


@router.get("/{store_id}/sub-orders", response_model=list[SellerSubOrderOut])
async def list_store_sub_orders(
    store_id: uuid.UUID,
    status: OrderStatus | None = None,
    session: AsyncSession = Depends(get_session),
) -> list[SellerSubOrderOut]:
    rows = await list_sub_orders_for_store(session, store_id=store_id, status=status)
    return [SellerSubOrderOut.model_validate(r) for r in rows]


@router.post("/products", response_model=ProductOut)
async def create_product_endpoint(
    data: ProductCreate,
    session: AsyncSession = Depends(get_session),
    actor: str = Depends(require_basic_auth),
) -> ProductOut:
    try:
        async with session.begin():
            product = await create_product(session, actor=actor, data=data)
    except ValueError as e:
        raise HTTPException(status_code=409, detail=str(e)) from e
    await session.refresh(product)
    return ProductOut.model_validate(product)


@router.put("/products/{product_id}/stock", response_model=ProductOut)
async def set_product_stock_endpoint(
    product_id: uuid.UUID,
    data: ProductStockUpdate,
    session: AsyncSession = Depends(get_session),
    actor: str = Depends(require_basic_auth),
) -> ProductOut:
    try:
        async with session.begin():
            product = await set_product_stock(session, actor=actor, product_id=product_id, stock=data.stock)
    except ValueError as e:
        raise HTTPException(status_code=409, detail=str(e)) from e
    await session.refresh(product)
    return ProductOut.model_validate(product)
