from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncSession

from mercato.core.enums import SellerTier, StoreStatus
from mercato.models.order import Order
from mercato.models.payment import PaymentTransaction
from mercato.models.store import Product, Store
from mercato.schemas.orders import ShippingAddress
from mercato.schemas.store import ProductCreate, StoreCreate
from mercato.services.cart import add_to_cart
from mercato.services.order_status import (
    mark_sub_order_delivered,
    mark_sub_order_preparing,
    mark_sub_order_shipped,
)
from mercato.services.orders import create_order_from_cart
from mercato.services.payments import handle_payment_callback, initiate_payment
from mercato.services.providers import MockPaymentProvider
from mercato.services.stores import create_product, create_store


ACTOR = "tester"
BUYER = "buyer-1"

ADDRESS = ShippingAddress(
    recipient_name="Erika Muster",
    address_line1="Hauptstraße 1",
    city="Wien",
    postal_code="1010",
    country_code="at",
)


async def make_store(
    session: AsyncSession,
    *,
    slug: str,
    seller_tier: SellerTier | None = None,
    status: StoreStatus = StoreStatus.ACTIVE,
    **shipping: int | None,
) -> Store:
    return await create_store(
        session,
        actor=ACTOR,
        data=StoreCreate(
            name=slug.title(),
            slug=slug,
            status=status,
            seller_tier=seller_tier,
            billing_address=f"{slug.title()} GmbH\nGasse 2\n1020 Wien",
            **shipping,
        ),
    )


async def make_product(
    session: AsyncSession,
    *,
    store: Store,
    sku: str,
    price_cents: int,
    stock: int = 10,
    category: str | None = None,
) -> Product:
    return await create_product(
        session,
        actor=ACTOR,
        data=ProductCreate(
            store_id=store.id,
            sku=sku,
            title=f"Product {sku}",
            category=category,
            price_cents=price_cents,
            stock=stock,
        ),
    )


async def place_order(
    session: AsyncSession,
    *,
    lines: list[tuple[Product, int]],
    buyer_ref: str = BUYER,
) -> Order:
    for product, quantity in lines:
        await add_to_cart(session, buyer_ref=buyer_ref, product_id=product.id, quantity=quantity)
    return await create_order_from_cart(session, actor=ACTOR, buyer_ref=buyer_ref, address=ADDRESS)


async def pay_order(
    session: AsyncSession,
    *,
    order: Order,
    gateway: MockPaymentProvider | None = None,
    provider: str = "card",
    event_id: str = "evt-paid",
) -> PaymentTransaction:
    gateway = gateway or MockPaymentProvider()
    tx = await initiate_payment(session, actor=ACTOR, order_id=order.id, provider=provider, gateway=gateway)
    return await handle_payment_callback(
        session,
        actor=ACTOR,
        provider=provider,
        event_id=event_id,
        provider_transaction_id=tx.provider_transaction_id,
        status="captured" if provider == "card" else "completed",
    )


async def deliver(session: AsyncSession, *, sub_order_id) -> None:
    await mark_sub_order_preparing(session, actor=ACTOR, sub_order_id=sub_order_id)
    await mark_sub_order_shipped(
        session,
        actor=ACTOR,
        sub_order_id=sub_order_id,
        tracking_number="TRK-1",
        carrier_name="Post",
    )
    await mark_sub_order_delivered(session, actor=ACTOR, sub_order_id=sub_order_id)
