from __future__ import annotations

import uuid
from dataclasses import dataclass, field

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from mercato.core.config import get_settings
from mercato.models.cart import Cart, CartItem
from mercato.models.store import Product, Store


@dataclass(frozen=True)
class StoreShippingBreakdown:
    store_id: uuid.UUID
    store_name: str
    item_count: int
    items_subtotal_cents: int
    shipping_cents: int
    is_free_shipping: bool


@dataclass
class CartTotals:
    items_subtotal_cents: int = 0
    shipping_cents: int = 0
    total_cents: int = 0
    stores: list[StoreShippingBreakdown] = field(default_factory=list)


def _cart_query():
    return (
        select(Cart)
        .options(selectinload(Cart.items).selectinload(CartItem.product).selectinload(Product.store))
        .execution_options(populate_existing=True)
    )


async def get_or_create_cart(
    session: AsyncSession,
    *,
    buyer_ref: str | None = None,
    session_key: str | None = None,
) -> Cart:
    if buyer_ref:
        stmt = _cart_query().where(Cart.buyer_ref == buyer_ref)
    elif session_key:
        stmt = _cart_query().where(Cart.session_key == session_key)
    else:
        raise ValueError("Either buyer_ref or session_key is required")

    cart = (await session.execute(stmt)).scalar_one_or_none()
    if cart is None:
        cart = Cart(buyer_ref=buyer_ref or None, session_key=None if buyer_ref else session_key, items=[])
        session.add(cart)
        await session.flush()
    return cart


async def _load_sellable_product(session: AsyncSession, product_id: uuid.UUID) -> Product:
    product = (
        await session.execute(select(Product).where(Product.id == product_id).options(selectinload(Product.store)))
    ).scalar_one_or_none()
    if product is None:
        raise ValueError(f"Product not found: {product_id}")
    if not product.is_active:
        raise ValueError(f"Product is not available: {product.sku}")
    if not product.store.is_sellable:
        raise ValueError(f"Store is not selling: {product.store.slug} (status={product.store.status})")
    return product


async def add_to_cart(
    session: AsyncSession,
    *,
    buyer_ref: str | None = None,
    session_key: str | None = None,
    product_id: uuid.UUID,
    quantity: int = 1,
) -> CartItem:
    if quantity <= 0:
        raise ValueError("Quantity must be greater than 0")

    cart = await get_or_create_cart(session, buyer_ref=buyer_ref, session_key=session_key)
    product = await _load_sellable_product(session, product_id)

    item = next((i for i in cart.items if i.product_id == product.id), None)
    new_quantity = quantity + (item.quantity if item is not None else 0)
    if new_quantity > product.stock:
        raise ValueError(f"Requested quantity ({new_quantity}) exceeds available stock ({product.stock})")

    if item is None:
        item = CartItem(cart_id=cart.id, product=product, quantity=quantity, unit_price_cents=product.price_cents)
        cart.items.append(item)
    else:
        item.quantity = new_quantity
    await session.flush()
    return item


async def update_cart_item_quantity(session: AsyncSession, *, cart_item_id: uuid.UUID, quantity: int) -> CartItem | None:
    """Set the quantity of a cart line; 0 removes it and returns None."""
    item = (
        await session.execute(
            select(CartItem).where(CartItem.id == cart_item_id).options(selectinload(CartItem.product))
        )
    ).scalar_one_or_none()
    if item is None:
        raise ValueError("Cart item not found")
    if quantity < 0:
        raise ValueError("Quantity cannot be negative")
    if quantity == 0:
        await session.delete(item)
        await session.flush()
        return None
    if quantity > item.product.stock:
        raise ValueError(f"Requested quantity ({quantity}) exceeds available stock ({item.product.stock})")

    item.quantity = quantity
    await session.flush()
    return item


async def remove_cart_item(session: AsyncSession, *, cart_item_id: uuid.UUID) -> None:
    item = await session.get(CartItem, cart_item_id)
    if item is not None:
        await session.delete(item)
        await session.flush()


async def clear_cart(session: AsyncSession, *, cart: Cart) -> None:
    for item in list(cart.items):
        cart.items.remove(item)
    await session.flush()


async def merge_carts(session: AsyncSession, *, buyer_ref: str, session_key: str) -> Cart:
    """Fold the guest cart of `session_key` into the buyer's cart after sign-in."""
    guest = (await session.execute(_cart_query().where(Cart.session_key == session_key))).scalar_one_or_none()
    buyer = (await session.execute(_cart_query().where(Cart.buyer_ref == buyer_ref))).scalar_one_or_none()

    if guest is None or not guest.items:
        return buyer if buyer is not None else await get_or_create_cart(session, buyer_ref=buyer_ref)

    if buyer is None:
        guest.buyer_ref = buyer_ref
        guest.session_key = None
        await session.flush()
        return guest

    by_product = {i.product_id: i for i in buyer.items}
    for guest_item in list(guest.items):
        existing = by_product.get(guest_item.product_id)
        if existing is not None:
            existing.quantity += guest_item.quantity
        else:
            buyer.items.append(
                CartItem(
                    product=guest_item.product,
                    quantity=guest_item.quantity,
                    unit_price_cents=guest_item.unit_price_cents,
                )
            )
    await session.delete(guest)
    await session.flush()
    return buyer


def group_items_by_store(cart: Cart) -> dict[uuid.UUID, list[CartItem]]:
    grouped: dict[uuid.UUID, list[CartItem]] = {}
    for item in cart.items:
        grouped.setdefault(item.product.store_id, []).append(item)
    return grouped


def store_shipping(store: Store, items: list[CartItem]) -> StoreShippingBreakdown:
    settings = get_settings()
    base = store.shipping_base_cents if store.shipping_base_cents is not None else settings.shipping_base_cents
    additional = (
        store.shipping_additional_item_cents
        if store.shipping_additional_item_cents is not None
        else settings.shipping_additional_item_cents
    )
    threshold = (
        store.shipping_free_threshold_cents
        if store.shipping_free_threshold_cents is not None
        else settings.shipping_free_threshold_cents
    )

    item_count = sum(i.quantity for i in items)
    subtotal = sum(i.unit_price_cents * i.quantity for i in items)
    if threshold is not None and subtotal >= threshold:
        return StoreShippingBreakdown(store.id, store.name, item_count, subtotal, 0, True)

    shipping = base + additional * max(0, item_count - 1)
    return StoreShippingBreakdown(store.id, store.name, item_count, subtotal, shipping, False)


def calculate_cart_totals(cart: Cart) -> CartTotals:
    totals = CartTotals()
    for items in group_items_by_store(cart).values():
        breakdown = store_shipping(items[0].product.store, items)
        totals.stores.append(breakdown)
        totals.items_subtotal_cents += breakdown.items_subtotal_cents
        totals.shipping_cents += breakdown.shipping_cents
    totals.total_cents = totals.items_subtotal_cents + totals.shipping_cents
    return totals
