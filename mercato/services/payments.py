from __future__ import annotations

import logging
import uuid
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from mercato.core.clock import utcnow
from mercato.core.config import get_settings
from mercato.core.enums import OrderStatus, PaymentStatus
from mercato.models.order import Order, SellerSubOrder
from mercato.models.payment import PaymentTransaction, PaymentWebhookEvent
from mercato.services.audit import audit_log
from mercato.services.escrow import create_escrow_allocations, mark_escrow_eligible
from mercato.services.order_status import mark_order_paid
from mercato.services.payment_status import is_terminal, map_provider_status, sanitize_error_message
from mercato.services.providers import PaymentProvider, get_payment_provider


logger = logging.getLogger(__name__)

CASH_ON_DELIVERY = "cash_on_delivery"


async def _load_order(session: AsyncSession, order_id: uuid.UUID) -> Order:
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


async def get_payment_transaction(session: AsyncSession, payment_id: uuid.UUID) -> PaymentTransaction | None:
    return await session.get(PaymentTransaction, payment_id)


async def latest_payment_for_order(
    session: AsyncSession,
    *,
    order_id: uuid.UUID,
    statuses: tuple[PaymentStatus, ...] | None = None,
) -> PaymentTransaction | None:
    stmt = select(PaymentTransaction).where(PaymentTransaction.order_id == order_id)
    if statuses:
        stmt = stmt.where(PaymentTransaction.status.in_(statuses))
    stmt = stmt.order_by(PaymentTransaction.created_at.desc()).limit(1)
    return (await session.execute(stmt)).scalar_one_or_none()


async def create_payment_transaction(
    session: AsyncSession,
    *,
    actor: str,
    order_id: uuid.UUID,
    provider: str,
) -> PaymentTransaction:
    settings = get_settings()
    method = provider.strip().lower()
    if method not in settings.payment_methods:
        raise ValueError(f"Payment method not available: {provider}")

    order = await _load_order(session, order_id)
    if order.status != OrderStatus.NEW:
        raise ValueError(f"Order is not awaiting payment (status={order.status})")
    if order.payment_status in {PaymentStatus.COMPLETED, PaymentStatus.AUTHORIZED}:
        raise ValueError(f"Order payment already {order.payment_status}")

    tx = PaymentTransaction(
        order_id=order.id,
        provider=method,
        status=PaymentStatus.PENDING,
        amount_cents=order.total_cents - order.refunded_cents,
        currency_code=order.currency_code,
    )
    session.add(tx)
    await session.flush()

    await audit_log(
        session,
        actor=actor,
        entity_type="payment",
        entity_id=tx.id,
        action="create",
        after={"order_id": order.id, "provider": method, "amount_cents": tx.amount_cents, "status": tx.status},
    )
    return tx


async def initiate_payment(
    session: AsyncSession,
    *,
    actor: str,
    order_id: uuid.UUID,
    provider: str,
    gateway: PaymentProvider | None = None,
) -> PaymentTransaction:
    """
    Start a payment for an order.

    Cash on delivery is authorized on the spot and lets fulfillment begin; every other method is handed to
    the gateway, which answers with a redirect URL and reports the outcome later via callback.
    """
    tx = await create_payment_transaction(session, actor=actor, order_id=order_id, provider=provider)
    order = await _load_order(session, order_id)

    if tx.provider == CASH_ON_DELIVERY:
        tx.status = PaymentStatus.AUTHORIZED
        tx.provider_transaction_id = f"COD-{order.order_number}"
        tx.authorized_at = utcnow()
        order.payment_status = PaymentStatus.AUTHORIZED
        await mark_order_paid(session, actor=actor, order=order)
        logger.info("Payment %s authorized (cash on delivery)", tx.id)
    else:
        gateway = gateway or get_payment_provider()
        initiated = await gateway.initiate_payment(
            method=tx.provider,
            reference=str(tx.id),
            amount_cents=tx.amount_cents,
            currency_code=tx.currency_code,
            return_url=get_settings().payment_return_url,
        )
        tx.provider_transaction_id = initiated.provider_transaction_id
        tx.redirect_url = initiated.redirect_url
        tx.provider_metadata = initiated.metadata or None

    await audit_log(
        session,
        actor=actor,
        entity_type="payment",
        entity_id=tx.id,
        action="initiate",
        before={"status": PaymentStatus.PENDING},
        after={"status": tx.status, "provider_transaction_id": tx.provider_transaction_id},
    )
    return tx


async def _complete_payment(session: AsyncSession, *, actor: str, tx: PaymentTransaction, order: Order) -> None:
    tx.status = PaymentStatus.COMPLETED
    tx.completed_at = utcnow()
    tx.error_message = None
    order.payment_status = PaymentStatus.COMPLETED

    await mark_order_paid(session, actor=actor, order=order)
    escrows = await create_escrow_allocations(session, actor=actor, payment=tx)
    for escrow in escrows:
        # Cash on delivery is collected at the door, so the sub-order may already be delivered.
        if escrow.sub_order.status == OrderStatus.DELIVERED:
            await mark_escrow_eligible(session, actor=actor, escrow=escrow)


async def handle_payment_callback(
    session: AsyncSession,
    *,
    actor: str,
    provider: str,
    event_id: str,
    provider_transaction_id: str,
    status: str,
    error_message: str | None = None,
    payload: dict[str, Any] | None = None,
) -> PaymentTransaction:
    """Apply a provider status report. Each (provider, event_id) is applied at most once."""
    provider = provider.strip().lower()
    seen = (
        await session.execute(
            select(PaymentWebhookEvent).where(
                PaymentWebhookEvent.provider == provider,
                PaymentWebhookEvent.event_id == event_id,
            )
        )
    ).scalar_one_or_none()

    tx = (
        await session.execute(
            select(PaymentTransaction).where(PaymentTransaction.provider_transaction_id == provider_transaction_id)
        )
    ).scalar_one_or_none()
    if tx is None:
        raise ValueError(f"Payment transaction not found: {provider_transaction_id}")
    if seen is not None:
        logger.info("Duplicate payment callback %s/%s ignored", provider, event_id)
        return tx
    if tx.provider != provider:
        raise ValueError(f"Callback provider '{provider}' does not match payment provider '{tx.provider}'")

    new_status = map_provider_status(provider, status)
    session.add(
        PaymentWebhookEvent(
            provider=provider,
            event_id=event_id,
            payment_transaction_id=tx.id,
            provider_status=status,
            payload=payload,
        )
    )

    before = tx.status
    if new_status == before:
        return tx
    if is_terminal(before):
        logger.warning("Payment %s is %s; ignoring callback status %s", tx.id, before, new_status)
        return tx

    order = await _load_order(session, tx.order_id)
    if new_status == PaymentStatus.COMPLETED:
        await _complete_payment(session, actor=actor, tx=tx, order=order)
        logger.info("Payment %s completed for order %s", tx.id, order.order_number)
    elif new_status == PaymentStatus.AUTHORIZED:
        tx.status = PaymentStatus.AUTHORIZED
        tx.authorized_at = utcnow()
        order.payment_status = PaymentStatus.AUTHORIZED
    elif new_status in {PaymentStatus.FAILED, PaymentStatus.CANCELLED}:
        tx.status = new_status
        tx.error_message = sanitize_error_message(error_message) or f"Payment {new_status.lower()} by provider"
        if order.payment_status not in {PaymentStatus.COMPLETED, PaymentStatus.REFUNDED}:
            order.payment_status = new_status
        logger.warning("Payment %s %s: %s", tx.id, new_status, tx.error_message)
    elif new_status == PaymentStatus.REFUNDED:
        # Refunds are driven from our side; a provider-side refund report on an open payment is an anomaly.
        raise ValueError("Refund callbacks are only accepted for completed payments")
    else:
        tx.status = new_status

    await audit_log(
        session,
        actor=actor,
        entity_type="payment",
        entity_id=tx.id,
        action="callback",
        before={"status": before},
        after={"status": tx.status, "event_id": event_id, "provider_status": status},
    )
    return tx
