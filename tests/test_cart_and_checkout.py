from __future__ import annotations

import pytest
from sqlalchemy import func, select

from factories import ACTOR, ADDRESS, BUYER, make_product, make_store, place_order
from mercato.core.clock import utcnow
from mercato.core.enums import OrderStatus, PaymentStatus, StoreStatus
from mercato.models.cart import Cart
from mercato.models.order import OrderStatusHistory
from mercato.schemas.orders import ShippingAddress
from mercato.services.cart import (
    add_to_cart,
    calculate_cart_totals,
    get_or_create_cart,
    merge_carts,
    update_cart_item_quantity,
)
from mercato.services.orders import create_order_from_cart


@pytest.mark.asyncio
async def test_cart_totals_apply_per_store_shipping_and_free_threshold(db_session) -> None:
    async with db_session.begin():
        alpha = await make_store(db_session, slug="alpha")
        beta = await make_store(db_session, slug="beta", shipping_base_cents=300)
        p1 = await make_product(db_session, store=alpha, sku="A-1", price_cents=3000)
        p2 = await make_product(db_session, store=beta, sku="B-1", price_cents=1000)

        await add_to_cart(db_session, buyer_ref=BUYER, product_id=p1.id, quantity=2)
        await add_to_cart(db_session, buyer_ref=BUYER, product_id=p2.id, quantity=1)
        await add_to_cart(db_session, buyer_ref=BUYER, product_id=p2.id, quantity=2)
        cart = await get_or_create_cart(db_session, buyer_ref=BUYER)
        totals = calculate_cart_totals(cart)

    by_store = {s.store_id: s for s in totals.stores}
    # 6000 >= 5000 default threshold -> free.
    assert by_store[alpha.id].is_free_shipping is True
    assert by_store[alpha.id].shipping_cents == 0
    # 300 base + 2 additional items at the default 200.
    assert by_store[beta.id].item_count == 3
    assert by_store[beta.id].shipping_cents == 700
    assert totals.items_subtotal_cents == 9000
    assert totals.total_cents == 9700


@pytest.mark.asyncio
async def test_add_to_cart_rejects_quantity_beyond_stock_and_closed_store(db_session) -> None:
    async with db_session.begin():
        open_store = await make_store(db_session, slug="open")
        closed = await make_store(db_session, slug="closed", status=StoreStatus.SUSPENDED)
        p1 = await make_product(db_session, store=open_store, sku="O-1", price_cents=500, stock=2)
        p2 = await make_product(db_session, store=closed, sku="C-1", price_cents=500)

    async with db_session.begin():
        await add_to_cart(db_session, buyer_ref=BUYER, product_id=p1.id, quantity=2)
        with pytest.raises(ValueError, match="exceeds available stock"):
            await add_to_cart(db_session, buyer_ref=BUYER, product_id=p1.id, quantity=1)
        with pytest.raises(ValueError, match="Store is not selling"):
            await add_to_cart(db_session, buyer_ref=BUYER, product_id=p2.id)
        with pytest.raises(ValueError):
            await add_to_cart(db_session, product_id=p1.id)


@pytest.mark.asyncio
async def test_update_cart_item_quantity_zero_removes_line(db_session) -> None:
    async with db_session.begin():
        store = await make_store(db_session, slug="alpha")
        product = await make_product(db_session, store=store, sku="A-1", price_cents=500)
        item = await add_to_cart(db_session, buyer_ref=BUYER, product_id=product.id, quantity=3)

        updated = await update_cart_item_quantity(db_session, cart_item_id=item.id, quantity=1)
        assert updated is not None and updated.quantity == 1

        assert await update_cart_item_quantity(db_session, cart_item_id=item.id, quantity=0) is None
        cart = await get_or_create_cart(db_session, buyer_ref=BUYER)
        assert cart.items == []


@pytest.mark.asyncio
async def test_merge_carts_folds_guest_cart_into_buyer_cart(db_session) -> None:
    async with db_session.begin():
        store = await make_store(db_session, slug="alpha")
        p1 = await make_product(db_session, store=store, sku="A-1", price_cents=500)
        p2 = await make_product(db_session, store=store, sku="A-2", price_cents=700)

        await add_to_cart(db_session, buyer_ref=BUYER, product_id=p1.id, quantity=1)
        await add_to_cart(db_session, session_key="guest-xyz", product_id=p1.id, quantity=2)
        await add_to_cart(db_session, session_key="guest-xyz", product_id=p2.id, quantity=1)

        merged = await merge_carts(db_session, buyer_ref=BUYER, session_key="guest-xyz")
        quantities = {i.product_id: i.quantity for i in merged.items}

    assert quantities == {p1.id: 3, p2.id: 1}
    remaining = (await db_session.execute(select(func.count()).select_from(Cart))).scalar_one()
    assert remaining == 1


@pytest.mark.asyncio
async def test_checkout_splits_order_per_store_and_decrements_stock(db_session) -> None:
    async with db_session.begin():
        alpha = await make_store(db_session, slug="alpha")
        beta = await make_store(db_session, slug="beta")
        p1 = await make_product(db_session, store=alpha, sku="A-1", price_cents=3000, stock=5, category="books")
        p2 = await make_product(db_session, store=beta, sku="B-1", price_cents=1500, stock=4)
        order = await place_order(db_session, lines=[(p2, 1), (p1, 2)])

    year = utcnow().year
    assert order.order_number == f"ORD-{year}-000001"
    assert order.status == OrderStatus.NEW
    assert order.payment_status == PaymentStatus.PENDING
    assert order.country_code == "AT"

    subs = sorted(order.sub_orders, key=lambda so: so.sub_order_number)
    assert [so.sub_order_number for so in subs] == [f"ORD-{year}-000001-1", f"ORD-{year}-000001-2"]
    assert subs[0].store_id == alpha.id
    assert (subs[0].items_subtotal_cents, subs[0].shipping_cents, subs[0].total_cents) == (6000, 0, 6000)
    assert (subs[1].items_subtotal_cents, subs[1].shipping_cents, subs[1].total_cents) == (1500, 500, 2000)
    assert order.total_cents == sum(so.total_cents for so in order.sub_orders) == 8000
    # 20 % VAT included in the gross line prices.
    assert subs[0].items[0].tax_cents == 1000
    assert subs[0].items[0].category == "books"

    assert p1.stock == 3
    assert p2.stock == 3

    cart = await get_or_create_cart(db_session, buyer_ref=BUYER)
    assert cart.items == []
    history = (
        await db_session.execute(select(OrderStatusHistory).where(OrderStatusHistory.order_id == order.id))
    ).scalars().all()
    assert [h.to_status for h in history] == [OrderStatus.NEW]


@pytest.mark.asyncio
async def test_checkout_rejects_empty_cart_incomplete_address_and_oversold_stock(db_session) -> None:
    async with db_session.begin():
        store = await make_store(db_session, slug="alpha")
        product = await make_product(db_session, store=store, sku="A-1", price_cents=1000, stock=2)

    async with db_session.begin():
        with pytest.raises(ValueError, match="Cart is empty"):
            await create_order_from_cart(db_session, actor=ACTOR, buyer_ref=BUYER, address=ADDRESS)

    async with db_session.begin():
        await add_to_cart(db_session, buyer_ref=BUYER, product_id=product.id, quantity=2)
        bad_address = ShippingAddress(
            recipient_name="Erika Muster",
            address_line1=" ",
            city="Wien",
            postal_code="1010",
            country_code="AT",
        )
        with pytest.raises(ValueError, match="address_line1"):
            await create_order_from_cart(db_session, actor=ACTOR, buyer_ref=BUYER, address=bad_address)

        # Someone else bought the stock in the meantime.
        product.stock = 1
        await db_session.flush()
        with pytest.raises(ValueError, match="Insufficient stock"):
            await create_order_from_cart(db_session, actor=ACTOR, buyer_ref=BUYER, address=ADDRESS)
