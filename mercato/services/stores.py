from __future__ import annotations

import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from mercato.models.store import Product, Store
from mercato.schemas.store import ProductCreate, StoreCreate, StoreUpdate
from mercato.services.audit import audit_log, snapshot


_STORE_AUDIT_FIELDS = ("status", "seller_tier", "billing_address", "vat_id")


async def create_store(session: AsyncSession, *, actor: str, data: StoreCreate) -> Store:
    slug = data.slug.strip().lower()
    exists = (await session.execute(select(Store.id).where(Store.slug == slug))).first()
    if exists is not None:
        raise ValueError(f"Store slug already taken: {slug}")

    store = Store(**data.model_dump(exclude={"slug"}), slug=slug)
    session.add(store)
    await session.flush()

    await audit_log(
        session,
        actor=actor,
        entity_type="store",
        entity_id=store.id,
        action="create",
        after={"name": store.name, "slug": store.slug, **snapshot(store, *_STORE_AUDIT_FIELDS)},
    )
    return store


async def update_store(session: AsyncSession, *, actor: str, store_id: uuid.UUID, data: StoreUpdate) -> Store:
    store = await session.get(Store, store_id)
    if store is None:
        raise ValueError("Store not found")

    before = snapshot(store, *_STORE_AUDIT_FIELDS)
    for key, value in data.model_dump(exclude_unset=True).items():
        setattr(store, key, value)

    await audit_log(
        session,
        actor=actor,
        entity_type="store",
        entity_id=store.id,
        action="update",
        before=before,
        after=snapshot(store, *_STORE_AUDIT_FIELDS),
    )
    return store


async def create_product(session: AsyncSession, *, actor: str, data: ProductCreate) -> Product:
    if await session.get(Store, data.store_id) is None:
        raise ValueError("Store not found")
    sku = data.sku.strip()
    exists = (await session.execute(select(Product.id).where(Product.sku == sku))).first()
    if exists is not None:
        raise ValueError(f"SKU already exists: {sku}")

    product = Product(**data.model_dump(exclude={"sku"}), sku=sku)
    session.add(product)
    await session.flush()

    await audit_log(
        session,
        actor=actor,
        entity_type="product",
        entity_id=product.id,
        action="create",
        after={"store_id": product.store_id, "sku": sku, "price_cents": product.price_cents, "stock": product.stock},
    )
    return product


async def set_product_stock(session: AsyncSession, *, actor: str, product_id: uuid.UUID, stock: int) -> Product:
    if stock < 0:
        raise ValueError("stock must be >= 0")
    product = await session.get(Product, product_id, with_for_update=True)
    if product is None:
        raise ValueError("Product not found")

    before = product.stock
    product.stock = stock
    await audit_log(
        session,
        actor=actor,
        entity_type="product",
        entity_id=product.id,
        action="set_stock",
        before={"stock": before},
        after={"stock": stock},
    )
    return product
