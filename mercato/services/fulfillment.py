from __future__ import annotations

import logging
import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from mercato.core.enums import OrderItemStatus, OrderStatus, PaymentStatus
from mercato.models.order import Order, OrderItem, SellerSubOrder
from mercato.models.returns import RefundTransaction
from mercato.models.store import Product
from mercato.services.audit import audit_log
from mercato.services.order_status import (
    TERMINAL_STATUSES,
    advance_sub_order,
    load_sub_order,
    record_sub_order_refund,
    transition_sub_order,
)
from mercato.services.providers import PaymentProvider
from mercato.services.refunds import process_partial_refund


logger = logging.getLogger(__name__)


async def _load_item(session: AsyncSession, item_id: uuid.UUID) -> OrderItem:
    item = (
        await session.execute(
            select(OrderItem)
            .where(OrderItem.id == item_id)
            .options(
                selectinload(OrderItem.sub_order).selectinload(SellerSubOrder.items),
                selectinload(OrderItem.sub_order).selectinload(SellerSubOrder.escrow),
                selectinload(OrderItem.sub_order).selectinload(SellerSubOrder.order).selectinload(Order.sub_orders),
            )
        )
    ).scalar_one_or_none()
    if item is None:
        raise ValueError("Order item not found")
    return item


def _payment_allows_fulfillment(sub_order: SellerSubOrder) -> bool:
    # Cash on delivery is only authorized until the parcel is handed over; it has already moved the
    # sub-order to PAID. A bare card authorization leaves it NEW.
    if sub_order.status == OrderStatus.NEW:
        return False
    return sub_order.order.payment_status in {PaymentStatus.COMPLETED, PaymentStatus.AUTHORIZED}


def _settle_item_status(item: OrderItem) -> None:
    if item.quantity_open == 0:
        item.status = OrderItemStatus.SHIPPED if item.quantity_shipped > 0 else OrderItemStatus.CANCELLED
    elif item.quantity_shipped > 0 and item.status == OrderItemStatus.NEW:
        item.status = OrderItemStatus.PREPARING


async def refresh_sub_order_from_items(session: AsyncSession, *, actor: str, sub_order: SellerSubOrder) -> None:
    """Move the sub-order forward to match its items; it never moves backwards."""
    if sub_order.status in TERMINAL_STATUSES or not sub_order.items:
        return

    statuses = [i.status for i in sub_order.items]
    if all(s == OrderItemStatus.CANCELLED for s in statuses):
        await transition_sub_order(
            session, actor=actor, sub_order=sub_order, new_status=OrderStatus.CANCELLED, note="all items cancelled"
        )
    elif any(i.quantity_shipped > 0 for i in sub_order.items):
        if sub_order.status not in {OrderStatus.SHIPPED, OrderStatus.DELIVERED}:
            await advance_sub_order(
                session, actor=actor, sub_order=sub_order, target=OrderStatus.SHIPPED, note="items shipped"
            )
    elif any(s == OrderItemStatus.PREPARING for s in statuses):
        if sub_order.status == OrderStatus.PAID:
            await advance_sub_order(
                session, actor=actor, sub_order=sub_order, target=OrderStatus.PREPARING, note="items preparing"
            )


async def mark_item_preparing(session: AsyncSession, *, actor: str, item_id: uuid.UUID) -> OrderItem:
    item = await _load_item(session, item_id)
    if item.status != OrderItemStatus.NEW:
        raise ValueError(f"Only NEW items can be marked preparing (status={item.status})")
    if item.sub_order.status in TERMINAL_STATUSES:
        raise ValueError(f"Sub-order is {item.sub_order.status}")
    if not _payment_allows_fulfillment(item.sub_order):
        raise ValueError("Order payment is not completed")

    item.status = OrderItemStatus.PREPARING
    await audit_log(
        session,
        actor=actor,
        entity_type="order_item",
        entity_id=item.id,
        action="status_change",
        before={"status": OrderItemStatus.NEW},
        after={"status": item.status},
    )
    await refresh_sub_order_from_items(session, actor=actor, sub_order=item.sub_order)
    return item


async def ship_item_quantity(session: AsyncSession, *, actor: str, item_id: uuid.UUID, quantity: int) -> OrderItem:
    item = await _load_item(session, item_id)
    if quantity <= 0:
        raise ValueError("Quantity to ship must be greater than 0")
    if quantity > item.quantity_open:
        raise ValueError(f"Cannot ship {quantity} items. Only {item.quantity_open} available.")

    sub_order = item.sub_order
    if sub_order.status in TERMINAL_STATUSES:
        raise ValueError(f"Sub-order is {sub_order.status}")
    if not _payment_allows_fulfillment(sub_order):
        raise ValueError("Order payment is not completed")

    before = {"status": item.status, "quantity_shipped": item.quantity_shipped}
    item.quantity_shipped += quantity
    _settle_item_status(item)

    await audit_log(
        session,
        actor=actor,
        entity_type="order_item",
        entity_id=item.id,
        action="ship",
        before=before,
        after={"status": item.status, "quantity_shipped": item.quantity_shipped},
    )
    await refresh_sub_order_from_items(session, actor=actor, sub_order=sub_order)
    return item


async def cancel_item_quantity(
    session: AsyncSession,
    *,
    actor: str,
    item_id: uuid.UUID,
    quantity: int,
    reason: str = "Item cancelled by seller",
    gateway: PaymentProvider | None = None,
) -> tuple[OrderItem, RefundTransaction | None]:
    """
    Cancel part of an order line, restock it and give the money back.

    The refund is unit price times quantity; cancelling the last open unit of a sub-order that shipped nothing
    also returns its shipping. A paid order is refunded through the payment provider.
    """
    item = await _load_item(session, item_id)
    if quantity <= 0:
        raise ValueError("Quantity to cancel must be greater than 0")
    if quantity > item.quantity_open:
        raise ValueError(f"Cannot cancel {quantity} items. Only {item.quantity_open} available.")

    sub_order = item.sub_order
    if sub_order.status in TERMINAL_STATUSES:
        raise ValueError(f"Sub-order is {sub_order.status}")
    order = sub_order.order

    before = {"status": item.status, "quantity_cancelled": item.quantity_cancelled}
    item.quantity_cancelled += quantity
    _settle_item_status(item)

    product = await session.get(Product, item.product_id, with_for_update=True)
    if product is not None:
        product.stock += quantity

    refund_cents = item.unit_price_cents * quantity
    item.refunded_cents += refund_cents
    if all(i.quantity_open == 0 and i.quantity_shipped == 0 for i in sub_order.items):
        refund_cents += sub_order.shipping_cents
    refund_cents = min(refund_cents, sub_order.refundable_cents)

    await audit_log(
        session,
        actor=actor,
        entity_type="order_item",
        entity_id=item.id,
        action="cancel",
        before=before,
        after={"status": item.status, "quantity_cancelled": item.quantity_cancelled, "refund_cents": refund_cents},
    )
    await refresh_sub_order_from_items(session, actor=actor, sub_order=sub_order)

    refund: RefundTransaction | None = None
    if refund_cents > 0:
        if order.payment_status == PaymentStatus.COMPLETED:
            refund = await process_partial_refund(
                session,
                actor=actor,
                order_id=order.id,
                sub_order_id=sub_order.id,
                amount_cents=refund_cents,
                reason=reason,
                gateway=gateway,
            )
        else:
            # Nothing was collected; only the open amount shrinks.
            await record_sub_order_refund(session, actor=actor, sub_order=sub_order, amount_cents=refund_cents)

    logger.info("Cancelled %s unit(s) of item %s (refund %s cents)", quantity, item.id, refund_cents)
    return item, refund


async def cancel_sub_order(
    session: AsyncSession,
    *,
    actor: str,
    sub_order_id: uuid.UUID,
    reason: str = "Sub-order cancelled",
    gateway: PaymentProvider | None = None,
) -> SellerSubOrder:
    """Cancel every open unit of the sub-order; shipped units stay shipped."""
    sub_order = await load_sub_order(session, sub_order_id)
    if sub_order.status in TERMINAL_STATUSES:
        raise ValueError(f"Sub-order is already {sub_order.status}")
    if sub_order.status in {OrderStatus.SHIPPED, OrderStatus.DELIVERED}:
        raise ValueError(f"Cannot cancel a {sub_order.status} sub-order; use a return instead")

    open_items = [i for i in sub_order.items if i.quantity_open > 0]
    if not open_items:
        raise ValueError("Sub-order has no open items to cancel")
    for item in open_items:
        await cancel_item_quantity(
            session,
            actor=actor,
            item_id=item.id,
            quantity=item.quantity_open,
            reason=reason,
            gateway=gateway,
        )
    return sub_order
