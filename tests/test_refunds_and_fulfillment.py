from __future__ import annotations

from datetime import timedelta

import pytest
from sqlalchemy import select

from factories import ACTOR, deliver, make_product, make_store, pay_order, place_order
from mercato.core.clock import utcnow
from mercato.core.enums import (
    CommissionTransactionKind,
    EscrowStatus,
    OrderItemStatus,
    OrderStatus,
    PaymentStatus,
    RefundStatus,
)
from mercato.models.commission import CommissionTransaction
from mercato.models.payment import PaymentTransaction
from mercato.services.escrow import get_escrow_for_sub_order, process_eligible_escrows
from mercato.services.fulfillment import cancel_item_quantity, cancel_sub_order, mark_item_preparing, ship_item_quantity
from mercato.services.order_status import advance_sub_order, load_sub_order, update_tracking
from mercato.services.payments import handle_payment_callback, initiate_payment
from mercato.services.providers import MockPaymentProvider
from mercato.services.refunds import (
    list_refunds_for_order,
    process_full_refund,
    process_partial_refund,
    refunded_total,
    retry_failed_refund,
)


async def _paid_single_store_order(session, *, quantity: int = 2, price_cents: int = 3000):
    store = await make_store(session, slug="alpha")
    product = await make_product(session, store=store, sku="A-1", price_cents=price_cents)
    order = await place_order(session, lines=[(product, quantity)])
    await pay_order(session, order=order)
    return product, order, order.sub_orders[0]


@pytest.mark.asyncio
async def test_partial_then_full_refund_returns_escrow_and_commission(db_session) -> None:
    gateway = MockPaymentProvider()
    async with db_session.begin():
        _, order, sub_order = await _paid_single_store_order(db_session)

    escrow = sub_order.escrow
    assert (escrow.gross_cents, escrow.commission_cents) == (6000, 650)

    async with db_session.begin():
        partial = await process_partial_refund(
            db_session,
            actor=ACTOR,
            order_id=order.id,
            sub_order_id=sub_order.id,
            amount_cents=1000,
            reason="Scratched cover",
            gateway=gateway,
        )

    assert partial.status == RefundStatus.COMPLETED
    assert partial.refund_number.startswith("RFD-")
    call, kwargs = gateway.calls[-1]
    assert call == "refund_payment"
    assert kwargs["amount_cents"] == 1000
    assert escrow.status == EscrowStatus.PARTIALLY_REFUNDED
    assert (escrow.refunded_cents, escrow.commission_refunded_cents) == (1000, 108)
    assert escrow.net_cents == 6000 - 1000 - (650 - 108)
    assert sub_order.refunded_cents == 1000
    assert sub_order.status == OrderStatus.PAID
    assert order.payment_status == PaymentStatus.COMPLETED

    async with db_session.begin():
        full = await process_full_refund(db_session, actor=ACTOR, order_id=order.id, reason="Cancelled", gateway=gateway)

    assert full.amount_cents == 5000
    assert escrow.status == EscrowStatus.RETURNED_TO_BUYER
    assert escrow.commission_refunded_cents == 650
    assert escrow.payable_cents == 0
    assert sub_order.status == OrderStatus.REFUNDED
    assert order.status == OrderStatus.REFUNDED
    assert order.payment_status == PaymentStatus.REFUNDED
    assert await refunded_total(db_session, order_id=order.id) == 6000

    adjustments = (
        await db_session.execute(
            select(CommissionTransaction.amount_cents)
            .where(CommissionTransaction.kind == CommissionTransactionKind.REFUND_ADJUSTMENT)
            .order_by(CommissionTransaction.occurred_at)
        )
    ).scalars().all()
    assert sorted(adjustments) == [-542, -108]

    await db_session.commit()
    with pytest.raises(ValueError, match="no completed or authorized payment"):
        async with db_session.begin():
            await process_full_refund(db_session, actor=ACTOR, order_id=order.id, reason="again", gateway=gateway)


@pytest.mark.asyncio
async def test_refund_is_rejected_once_escrow_was_released(db_session) -> None:
    async with db_session.begin():
        _, order, sub_order = await _paid_single_store_order(db_session)
        await deliver(db_session, sub_order_id=sub_order.id)
    async with db_session.begin():
        await process_eligible_escrows(db_session, actor=ACTOR, now=utcnow() + timedelta(days=8))
    assert sub_order.escrow.status == EscrowStatus.RELEASED

    # A rolled back transaction expires loaded objects; keep plain ids.
    order_id, sub_order_id = order.id, sub_order.id
    with pytest.raises(ValueError, match="already released"):
        async with db_session.begin():
            await process_partial_refund(
                db_session,
                actor=ACTOR,
                order_id=order_id,
                sub_order_id=sub_order_id,
                amount_cents=500,
                reason="late claim",
                gateway=MockPaymentProvider(),
            )
    with pytest.raises(ValueError, match="already released"):
        async with db_session.begin():
            await process_full_refund(db_session, actor=ACTOR, order_id=order_id, reason="late", gateway=MockPaymentProvider())


@pytest.mark.asyncio
async def test_failed_refund_leaves_balances_untouched_and_can_be_retried(db_session) -> None:
    async with db_session.begin():
        _, order, sub_order = await _paid_single_store_order(db_session)
        failed = await process_partial_refund(
            db_session,
            actor=ACTOR,
            order_id=order.id,
            sub_order_id=sub_order.id,
            amount_cents=1500,
            reason="Missing part",
            gateway=MockPaymentProvider(fail_refunds=True),
        )

    assert failed.status == RefundStatus.FAILED
    assert failed.error_message == "Refund declined by provider"
    assert order.refunded_cents == 0
    assert sub_order.escrow.refunded_cents == 0

    async with db_session.begin():
        with pytest.raises(ValueError, match="exceeds refundable amount"):
            await process_partial_refund(
                db_session,
                actor=ACTOR,
                order_id=order.id,
                sub_order_id=sub_order.id,
                amount_cents=6001,
                reason="too much",
                gateway=MockPaymentProvider(),
            )

    async with db_session.begin():
        retried = await retry_failed_refund(db_session, actor=ACTOR, refund_id=failed.id, gateway=MockPaymentProvider())

    assert retried.id == failed.id
    assert retried.status == RefundStatus.COMPLETED
    assert retried.error_message is None
    assert order.refunded_cents == 1500
    assert [r.status for r in await list_refunds_for_order(db_session, order_id=order.id)] == [RefundStatus.COMPLETED]

    await db_session.commit()
    async with db_session.begin():
        with pytest.raises(ValueError, match="Only FAILED refunds"):
            await retry_failed_refund(db_session, actor=ACTOR, refund_id=failed.id, gateway=MockPaymentProvider())


@pytest.mark.asyncio
async def test_item_fulfillment_moves_sub_order_forward(db_session) -> None:
    async with db_session.begin():
        _, order, sub_order = await _paid_single_store_order(db_session, quantity=3, price_cents=2000)
        item = sub_order.items[0]

    async with db_session.begin():
        await mark_item_preparing(db_session, actor=ACTOR, item_id=item.id)
    assert item.status == OrderItemStatus.PREPARING
    assert sub_order.status == OrderStatus.PREPARING
    assert order.status == OrderStatus.PREPARING

    async with db_session.begin():
        await ship_item_quantity(db_session, actor=ACTOR, item_id=item.id, quantity=2)
    assert item.quantity_shipped == 2
    assert item.status == OrderItemStatus.PREPARING
    assert sub_order.status == OrderStatus.SHIPPED

    async with db_session.begin():
        with pytest.raises(ValueError, match="Only 1 available"):
            await ship_item_quantity(db_session, actor=ACTOR, item_id=item.id, quantity=2)

    async with db_session.begin():
        await ship_item_quantity(db_session, actor=ACTOR, item_id=item.id, quantity=1)
        await update_tracking(
            db_session,
            actor=ACTOR,
            sub_order_id=sub_order.id,
            tracking_number="TRK-42",
            carrier_name="DHL",
            tracking_url="https://track.example/TRK-42",
        )
    assert item.status == OrderItemStatus.SHIPPED
    assert sub_order.tracking_number == "TRK-42"


@pytest.mark.asyncio
async def test_fulfillment_requires_completed_or_authorized_payment(db_session) -> None:
    async with db_session.begin():
        store = await make_store(db_session, slug="alpha")
        product = await make_product(db_session, store=store, sku="A-1", price_cents=1000)
        order = await place_order(db_session, lines=[(product, 1)])
        item = order.sub_orders[0].items[0]

    async with db_session.begin():
        with pytest.raises(ValueError, match="payment is not completed"):
            await ship_item_quantity(db_session, actor=ACTOR, item_id=item.id, quantity=1)


@pytest.mark.asyncio
async def test_uncaptured_card_authorization_does_not_allow_shipping(db_session) -> None:
    async with db_session.begin():
        store = await make_store(db_session, slug="alpha")
        product = await make_product(db_session, store=store, sku="A-1", price_cents=1000)
        order = await place_order(db_session, lines=[(product, 2)])
        tx = await initiate_payment(
            db_session, actor=ACTOR, order_id=order.id, provider="card", gateway=MockPaymentProvider()
        )
        await handle_payment_callback(
            db_session,
            actor="webhook",
            provider="card",
            event_id="evt-auth",
            provider_transaction_id=tx.provider_transaction_id,
            status="authorized",
        )
        assert order.payment_status == PaymentStatus.AUTHORIZED
        sub_order = order.sub_orders[0]
        assert sub_order.status == OrderStatus.NEW
        item_id, sub_order_id, provider_tx = sub_order.items[0].id, sub_order.id, tx.provider_transaction_id

    async with db_session.begin():
        with pytest.raises(ValueError, match="payment is not completed"):
            await ship_item_quantity(db_session, actor=ACTOR, item_id=item_id, quantity=1)
    async with db_session.begin():
        with pytest.raises(ValueError, match="payment is not completed"):
            await mark_item_preparing(db_session, actor=ACTOR, item_id=item_id)
    async with db_session.begin():
        sub_order = await load_sub_order(db_session, sub_order_id)
        with pytest.raises(ValueError, match="has not been paid"):
            await advance_sub_order(db_session, actor=ACTOR, sub_order=sub_order, target=OrderStatus.SHIPPED)

    async with db_session.begin():
        await handle_payment_callback(
            db_session,
            actor="webhook",
            provider="card",
            event_id="evt-capture",
            provider_transaction_id=provider_tx,
            status="captured",
        )
        item = await ship_item_quantity(db_session, actor=ACTOR, item_id=item_id, quantity=1)
        assert item.sub_order.status == OrderStatus.SHIPPED
        assert (await get_escrow_for_sub_order(db_session, sub_order_id)) is not None


@pytest.mark.asyncio
async def test_cash_on_delivery_order_ships_while_authorized(db_session) -> None:
    async with db_session.begin():
        store = await make_store(db_session, slug="alpha")
        product = await make_product(db_session, store=store, sku="A-1", price_cents=1000)
        order = await place_order(db_session, lines=[(product, 1)])
        await initiate_payment(db_session, actor=ACTOR, order_id=order.id, provider="cash_on_delivery")
        item = await ship_item_quantity(db_session, actor=ACTOR, item_id=order.sub_orders[0].items[0].id, quantity=1)

    assert order.payment_status == PaymentStatus.AUTHORIZED
    assert item.status == OrderItemStatus.SHIPPED
    assert order.sub_orders[0].status == OrderStatus.SHIPPED


@pytest.mark.asyncio
async def test_cancelling_items_restocks_and_refunds(db_session) -> None:
    gateway = MockPaymentProvider()
    async with db_session.begin():
        product, order, sub_order = await _paid_single_store_order(db_session, quantity=2, price_cents=1500)
        item = sub_order.items[0]

    # 3000 < 5000 threshold: 500 + 200 shipping.
    assert sub_order.total_cents == 3700
    assert product.stock == 8

    async with db_session.begin():
        _, refund = await cancel_item_quantity(
            db_session, actor=ACTOR, item_id=item.id, quantity=1, reason="Out of stock", gateway=gateway
        )
    assert refund is not None and refund.amount_cents == 1500
    assert item.quantity_cancelled == 1
    assert product.stock == 9
    assert sub_order.status == OrderStatus.PAID

    async with db_session.begin():
        await cancel_sub_order(db_session, actor=ACTOR, sub_order_id=sub_order.id, gateway=gateway)

    # The last unit carries the shipping back with it.
    refunds = await list_refunds_for_order(db_session, order_id=order.id)
    assert [r.amount_cents for r in refunds] == [1500, 2200]
    assert item.status == OrderItemStatus.CANCELLED
    assert product.stock == 10
    assert sub_order.refunded_cents == sub_order.total_cents
    assert sub_order.status == OrderStatus.CANCELLED
    assert sub_order.escrow.status == EscrowStatus.RETURNED_TO_BUYER

    payment = (await db_session.execute(select(PaymentTransaction))).scalar_one()
    assert payment.status == PaymentStatus.REFUNDED
