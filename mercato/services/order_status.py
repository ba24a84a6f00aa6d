from __future__ import annotations

import logging
import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from mercato.core.clock import utcnow
from mercato.core.enums import OrderStatus
from mercato.models.order import Order, OrderStatusHistory, SellerSubOrder
from mercato.services.audit import audit_log
from mercato.services.escrow import mark_escrow_eligible


logger = logging.getLogger(__name__)


ALLOWED_TRANSITIONS: dict[OrderStatus, set[OrderStatus]] = {
    OrderStatus.NEW: {OrderStatus.PAID, OrderStatus.CANCELLED},
    OrderStatus.PAID: {OrderStatus.PREPARING, OrderStatus.CANCELLED, OrderStatus.REFUNDED},
    OrderStatus.PREPARING: {OrderStatus.SHIPPED, OrderStatus.CANCELLED},
    OrderStatus.SHIPPED: {OrderStatus.DELIVERED, OrderStatus.REFUNDED},
    OrderStatus.DELIVERED: {OrderStatus.REFUNDED},
    OrderStatus.CANCELLED: set(),
    OrderStatus.REFUNDED: set(),
}

TERMINAL_STATUSES = frozenset({OrderStatus.CANCELLED, OrderStatus.REFUNDED})

# Fulfillment progress of the non-terminal statuses, least to most advanced.
_PROGRESS = [
    OrderStatus.NEW,
    OrderStatus.PAID,
    OrderStatus.PREPARING,
    OrderStatus.SHIPPED,
    OrderStatus.DELIVERED,
]


def can_transition(current: OrderStatus, new_status: OrderStatus) -> bool:
    return new_status == current or new_status in ALLOWED_TRANSITIONS.get(current, set())


def aggregate_order_status(statuses: list[OrderStatus]) -> OrderStatus:
    """
    Derive the parent order status from its sub-orders.

    Uniform states win; otherwise any shipment makes the order SHIPPED, any preparation
    PREPARING, and a remaining mix falls back to the most advanced active sub-order.
    """
    if not statuses:
        return OrderStatus.NEW

    uniform = set(statuses)
    if len(uniform) == 1:
        return statuses[0]
    if uniform & {OrderStatus.SHIPPED, OrderStatus.DELIVERED}:
        return OrderStatus.SHIPPED
    if OrderStatus.PREPARING in uniform:
        return OrderStatus.PREPARING

    active = [s for s in statuses if s not in TERMINAL_STATUSES]
    if active:
        return max(active, key=_PROGRESS.index)
    # Only terminal sub-orders left, mixed CANCELLED and REFUNDED.
    return OrderStatus.CANCELLED


async def load_sub_order(session: AsyncSession, sub_order_id: uuid.UUID) -> SellerSubOrder:
    sub_order = (
        await session.execute(
            select(SellerSubOrder)
            .where(SellerSubOrder.id == sub_order_id)
            .options(
                selectinload(SellerSubOrder.order).selectinload(Order.sub_orders),
                selectinload(SellerSubOrder.items),
                selectinload(SellerSubOrder.escrow),
                selectinload(SellerSubOrder.store),
            )
        )
    ).scalar_one_or_none()
    if sub_order is None:
        raise ValueError("Sub-order not found")
    return sub_order


async def load_order(session: AsyncSession, order_id: uuid.UUID) -> Order:
    order = (
        await session.execute(
            select(Order)
            .where(Order.id == order_id)
            .options(
                selectinload(Order.sub_orders).selectinload(SellerSubOrder.items),
                selectinload(Order.sub_orders).selectinload(SellerSubOrder.escrow),
            )
        )
    ).scalar_one_or_none()
    if order is None:
        raise ValueError("Order not found")
    return order


async def _record_history(
    session: AsyncSession,
    *,
    actor: str,
    order_id: uuid.UUID,
    sub_order_id: uuid.UUID | None,
    from_status: OrderStatus | None,
    to_status: OrderStatus,
    note: str | None,
) -> None:
    session.add(
        OrderStatusHistory(
            order_id=order_id,
            sub_order_id=sub_order_id,
            from_status=from_status,
            to_status=to_status,
            actor=actor,
            note=note,
        )
    )


async def refresh_order_status(session: AsyncSession, *, actor: str, order: Order) -> OrderStatus:
    new_status = aggregate_order_status([so.status for so in order.sub_orders])
    if new_status != order.status:
        before = order.status
        order.status = new_status
        await _record_history(
            session,
            actor=actor,
            order_id=order.id,
            sub_order_id=None,
            from_status=before,
            to_status=new_status,
            note="derived from sub-orders",
        )
        await audit_log(
            session,
            actor=actor,
            entity_type="order",
            entity_id=order.id,
            action="status_change",
            before={"status": before},
            after={"status": new_status},
        )
    return order.status


async def transition_sub_order(
    session: AsyncSession,
    *,
    actor: str,
    sub_order: SellerSubOrder,
    new_status: OrderStatus,
    note: str | None = None,
    refresh_parent: bool = True,
) -> None:
    if new_status == sub_order.status:
        return
    if new_status not in ALLOWED_TRANSITIONS.get(sub_order.status, set()):
        raise ValueError(f"Invalid status transition: {sub_order.status} -> {new_status}")

    before = sub_order.status
    sub_order.status = new_status
    now = utcnow()
    if new_status == OrderStatus.SHIPPED:
        sub_order.shipped_at = now
    elif new_status == OrderStatus.DELIVERED:
        sub_order.delivered_at = now
    elif new_status == OrderStatus.CANCELLED:
        sub_order.cancelled_at = now

    await _record_history(
        session,
        actor=actor,
        order_id=sub_order.order_id,
        sub_order_id=sub_order.id,
        from_status=before,
        to_status=new_status,
        note=note,
    )
    await audit_log(
        session,
        actor=actor,
        entity_type="sub_order",
        entity_id=sub_order.id,
        action="status_change",
        before={"status": before},
        after={"status": new_status},
    )
    if refresh_parent:
        await refresh_order_status(session, actor=actor, order=sub_order.order)


async def advance_sub_order(
    session: AsyncSession,
    *,
    actor: str,
    sub_order: SellerSubOrder,
    target: OrderStatus,
    note: str | None = None,
) -> None:
    """Walk forward along the fulfillment path (PAID -> PREPARING -> SHIPPED) up to `target`."""
    if sub_order.status in TERMINAL_STATUSES:
        raise ValueError(f"Sub-order is {sub_order.status}")
    if sub_order.status == OrderStatus.NEW:
        raise ValueError("Sub-order has not been paid")
    current = _PROGRESS.index(sub_order.status)
    wanted = _PROGRESS.index(target)
    for step in _PROGRESS[current + 1 : wanted + 1]:
        await transition_sub_order(session, actor=actor, sub_order=sub_order, new_status=step, note=note)


async def mark_order_paid(session: AsyncSession, *, actor: str, order: Order) -> None:
    for sub_order in order.sub_orders:
        if sub_order.status == OrderStatus.NEW:
            await transition_sub_order(
                session,
                actor=actor,
                sub_order=sub_order,
                new_status=OrderStatus.PAID,
                note="payment completed",
                refresh_parent=False,
            )
    await refresh_order_status(session, actor=actor, order=order)


async def mark_sub_order_preparing(session: AsyncSession, *, actor: str, sub_order_id: uuid.UUID) -> SellerSubOrder:
    sub_order = await load_sub_order(session, sub_order_id)
    await transition_sub_order(session, actor=actor, sub_order=sub_order, new_status=OrderStatus.PREPARING)
    return sub_order


async def mark_sub_order_shipped(
    session: AsyncSession,
    *,
    actor: str,
    sub_order_id: uuid.UUID,
    tracking_number: str | None = None,
    carrier_name: str | None = None,
    tracking_url: str | None = None,
) -> SellerSubOrder:
    sub_order = await load_sub_order(session, sub_order_id)
    await transition_sub_order(session, actor=actor, sub_order=sub_order, new_status=OrderStatus.SHIPPED)
    sub_order.tracking_number = tracking_number
    sub_order.carrier_name = carrier_name
    sub_order.tracking_url = tracking_url
    return sub_order


async def mark_sub_order_delivered(session: AsyncSession, *, actor: str, sub_order_id: uuid.UUID) -> SellerSubOrder:
    sub_order = await load_sub_order(session, sub_order_id)
    if sub_order.status == OrderStatus.DELIVERED:
        return sub_order
    await transition_sub_order(session, actor=actor, sub_order=sub_order, new_status=OrderStatus.DELIVERED)
    if sub_order.escrow is not None:
        await mark_escrow_eligible(session, actor=actor, escrow=sub_order.escrow)
    logger.info("Sub-order %s delivered", sub_order.sub_order_number)
    return sub_order


async def update_tracking(
    session: AsyncSession,
    *,
    actor: str,
    sub_order_id: uuid.UUID,
    tracking_number: str | None,
    carrier_name: str | None,
    tracking_url: str | None,
) -> SellerSubOrder:
    sub_order = await load_sub_order(session, sub_order_id)
    if sub_order.status not in {OrderStatus.SHIPPED, OrderStatus.DELIVERED}:
        raise ValueError("Tracking can only be updated for SHIPPED or DELIVERED sub-orders")

    before = {
        "tracking_number": sub_order.tracking_number,
        "carrier_name": sub_order.carrier_name,
        "tracking_url": sub_order.tracking_url,
    }
    sub_order.tracking_number = tracking_number
    sub_order.carrier_name = carrier_name
    sub_order.tracking_url = tracking_url
    await audit_log(
        session,
        actor=actor,
        entity_type="sub_order",
        entity_id=sub_order.id,
        action="update_tracking",
        before=before,
        after={"tracking_number": tracking_number, "carrier_name": carrier_name, "tracking_url": tracking_url},
    )
    return sub_order


async def record_sub_order_refund(
    session: AsyncSession,
    *,
    actor: str,
    sub_order: SellerSubOrder,
    amount_cents: int,
) -> None:
    """Book a completed refund on the sub-order and its order; fully refunded sub-orders close."""
    if amount_cents <= 0:
        raise ValueError("Refund amount must be greater than 0")
    if amount_cents > sub_order.refundable_cents:
        raise ValueError(
            f"Refund amount exceeds refundable amount ({amount_cents} > {sub_order.refundable_cents})"
        )

    sub_order.refunded_cents += amount_cents
    sub_order.order.refunded_cents += amount_cents

    if sub_order.refunded_cents == sub_order.total_cents:
        allowed = ALLOWED_TRANSITIONS.get(sub_order.status, set())
        if OrderStatus.REFUNDED in allowed:
            await transition_sub_order(session, actor=actor, sub_order=sub_order, new_status=OrderStatus.REFUNDED)
        elif OrderStatus.CANCELLED in allowed:
            await transition_sub_order(session, actor=actor, sub_order=sub_order, new_status=OrderStatus.CANCELLED)
