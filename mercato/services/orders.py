from __future__ import annotations

import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from mercato.core.clock import utcnow
from mercato.core.config import get_settings
from mercato.core.enums import DocumentType, OrderItemStatus, OrderStatus, PaymentStatus
from mercato.models.order import Order, OrderItem, OrderStatusHistory, SellerSubOrder
from mercato.models.store import Product
from mercato.schemas.orders import ShippingAddress
from mercato.services.audit import audit_log
from mercato.services.cart import clear_cart, get_or_create_cart, group_items_by_store, store_shipping
from mercato.services.documents import next_document_number
from mercato.services.money import split_gross_to_net_and_tax


_REQUIRED_ADDRESS_FIELDS = ("recipient_name", "address_line1", "city", "postal_code", "country_code")


def validate_shipping_address(address: ShippingAddress) -> None:
    missing = [name for name in _REQUIRED_ADDRESS_FIELDS if not (getattr(address, name) or "").strip()]
    if missing:
        raise ValueError(f"Shipping address incomplete: missing {', '.join(missing)}")
    if len(address.country_code.strip()) != 2:
        raise ValueError("country_code must be a two-letter ISO code")


def _order_query():
    return (
        select(Order)
        .options(
            selectinload(Order.sub_orders).selectinload(SellerSubOrder.items),
            selectinload(Order.sub_orders).selectinload(SellerSubOrder.escrow),
        )
        .execution_options(populate_existing=True)
    )


async def create_order_from_cart(
    session: AsyncSession,
    *,
    actor: str,
    buyer_ref: str,
    address: ShippingAddress,
) -> Order:
    validate_shipping_address(address)

    cart = await get_or_create_cart(session, buyer_ref=buyer_ref)
    if not cart.items:
        raise ValueError("Cart is empty")

    # Lock the products so concurrent checkouts cannot oversell.
    product_ids = [item.product_id for item in cart.items]
    products = {
        p.id: p
        for p in (
            await session.execute(
                select(Product)
                .where(Product.id.in_(product_ids))
                .options(selectinload(Product.store))
                .with_for_update()
            )
        )
        .scalars()
        .all()
    }
    for item in cart.items:
        product = products.get(item.product_id)
        if product is None or not product.is_active:
            raise ValueError(f"Product is no longer available: {item.product_id}")
        if not product.store.is_sellable:
            raise ValueError(f"Store is not selling: {product.store.slug}")
        if item.quantity > product.stock:
            raise ValueError(
                f"Insufficient stock for {product.sku}: requested {item.quantity}, available {product.stock}"
            )

    settings = get_settings()
    placed_at = utcnow()
    order_number = await next_document_number(session, doc_type=DocumentType.ORDER, issue_date=placed_at.date())
    order = Order(
        order_number=order_number,
        buyer_ref=buyer_ref,
        status=OrderStatus.NEW,
        payment_status=PaymentStatus.PENDING,
        placed_at=placed_at,
        recipient_name=address.recipient_name.strip(),
        address_line1=address.address_line1.strip(),
        address_line2=(address.address_line2 or "").strip() or None,
        city=address.city.strip(),
        postal_code=address.postal_code.strip(),
        country_code=address.country_code.strip().upper(),
        currency_code=settings.currency_code,
        items_subtotal_cents=0,
        shipping_cents=0,
        tax_cents=0,
        total_cents=0,
        refunded_cents=0,
        sub_orders=[],
    )
    session.add(order)

    grouped = group_items_by_store(cart)
    # Deterministic sub-order numbering.
    store_ids = sorted(grouped, key=lambda sid: products[grouped[sid][0].product_id].store.slug)
    for k, store_id in enumerate(store_ids, start=1):
        cart_items = grouped[store_id]
        store = products[cart_items[0].product_id].store
        shipping = store_shipping(store, cart_items)

        sub_order = SellerSubOrder(
            store_id=store_id,
            sub_order_number=f"{order_number}-{k}",
            status=OrderStatus.NEW,
            items_subtotal_cents=shipping.items_subtotal_cents,
            shipping_cents=shipping.shipping_cents,
            total_cents=shipping.items_subtotal_cents + shipping.shipping_cents,
            items=[],
        )
        order.sub_orders.append(sub_order)

        for cart_item in cart_items:
            product = products[cart_item.product_id]
            subtotal = cart_item.unit_price_cents * cart_item.quantity
            _, tax = split_gross_to_net_and_tax(gross_cents=subtotal, tax_rate_bp=product.tax_rate_bp)
            sub_order.items.append(
                OrderItem(
                    product_id=product.id,
                    product_title=product.title,
                    category=product.category,
                    quantity=cart_item.quantity,
                    unit_price_cents=cart_item.unit_price_cents,
                    subtotal_cents=subtotal,
                    tax_rate_bp=product.tax_rate_bp,
                    tax_cents=tax,
                    status=OrderItemStatus.NEW,
                )
            )
            order.tax_cents += tax
            product.stock -= cart_item.quantity

        order.items_subtotal_cents += sub_order.items_subtotal_cents
        order.shipping_cents += sub_order.shipping_cents

    order.total_cents = order.items_subtotal_cents + order.shipping_cents
    await session.flush()

    session.add(
        OrderStatusHistory(order_id=order.id, from_status=None, to_status=OrderStatus.NEW, actor=actor, note="placed")
    )
    await clear_cart(session, cart=cart)

    await audit_log(
        session,
        actor=actor,
        entity_type="order",
        entity_id=order.id,
        action="create",
        after={
            "order_number": order.order_number,
            "buyer_ref": buyer_ref,
            "sub_orders": len(order.sub_orders),
            "total_cents": order.total_cents,
        },
    )
    return order


async def get_order(session: AsyncSession, order_id: uuid.UUID) -> Order | None:
    return (await session.execute(_order_query().where(Order.id == order_id))).scalar_one_or_none()


async def list_orders_for_buyer(session: AsyncSession, *, buyer_ref: str) -> list[Order]:
    rows = (
        await session.execute(_order_query().where(Order.buyer_ref == buyer_ref).order_by(Order.placed_at.desc()))
    ).scalars()
    return list(rows.all())


async def list_sub_orders_for_store(
    session: AsyncSession,
    *,
    store_id: uuid.UUID,
    status: OrderStatus | None = None,
) -> list[SellerSubOrder]:
    stmt = (
        select(SellerSubOrder)
        .where(SellerSubOrder.store_id == store_id)
        .options(selectinload(SellerSubOrder.items))
        .order_by(SellerSubOrder.created_at.desc())
    )
    if status is not None:
        stmt = stmt.where(SellerSubOrder.status == status)
    return list((await session.execute(stmt)).scalars().all())
