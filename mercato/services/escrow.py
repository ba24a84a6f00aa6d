from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from mercato.core.clock import utcnow
from mercato.core.config import get_settings
from mercato.core.enums import EscrowStatus, OrderStatus, PaymentStatus
from mercato.models.escrow import EscrowTransaction
from mercato.models.order import Order, SellerSubOrder
from mercato.models.payment import PaymentTransaction
from mercato.services.audit import audit_log
from mercato.services.commission import (
    calculate_commission,
    get_applicable_rule,
    record_initial_commission,
    record_refund_adjustment,
)


logger = logging.getLogger(__name__)

_PAYABLE_ESCROW_STATUSES = (EscrowStatus.ELIGIBLE_FOR_PAYOUT, EscrowStatus.PARTIALLY_REFUNDED)


def _commission_category(sub_order: SellerSubOrder) -> str | None:
    # A sub-order carries one commission; its largest line decides the category.
    if not sub_order.items:
        return None
    largest = max(sub_order.items, key=lambda i: i.subtotal_cents)
    return largest.category


async def create_escrow_allocations(
    session: AsyncSession,
    *,
    actor: str,
    payment: PaymentTransaction,
) -> list[EscrowTransaction]:
    """Hold the paid amount of every sub-order in escrow; sub-orders that already have one are skipped."""
    if payment.status != PaymentStatus.COMPLETED:
        raise ValueError(f"Escrow requires a COMPLETED payment (status={payment.status})")

    order = (
        await session.execute(
            select(Order)
            .where(Order.id == payment.order_id)
            .options(
                selectinload(Order.sub_orders).selectinload(SellerSubOrder.items),
                selectinload(Order.sub_orders).selectinload(SellerSubOrder.escrow),
                selectinload(Order.sub_orders).selectinload(SellerSubOrder.store),
            )
        )
    ).scalar_one()

    created: list[EscrowTransaction] = []
    for sub_order in order.sub_orders:
        if sub_order.escrow is not None or sub_order.status in {OrderStatus.CANCELLED, OrderStatus.REFUNDED}:
            continue

        # Lines cancelled before payment were never collected.
        gross = sub_order.refundable_cents
        if gross <= 0:
            continue
        applied = await get_applicable_rule(
            session,
            on_date=order.placed_at.date(),
            store_id=sub_order.store_id,
            category=_commission_category(sub_order),
            seller_tier=sub_order.store.seller_tier,
        )
        commission = calculate_commission(gross_cents=gross, rate_bp=applied.rate_bp, fixed_cents=applied.fixed_cents)

        escrow = EscrowTransaction(
            sub_order_id=sub_order.id,
            payment_transaction_id=payment.id,
            store_id=sub_order.store_id,
            status=EscrowStatus.HELD,
            gross_cents=gross,
            commission_cents=commission,
            net_cents=gross - commission,
        )
        session.add(escrow)
        await session.flush()
        sub_order.escrow = escrow

        await record_initial_commission(session, escrow=escrow, applied=applied, occurred_at=payment.completed_at)
        await audit_log(
            session,
            actor=actor,
            entity_type="escrow",
            entity_id=escrow.id,
            action="create",
            after={
                "sub_order_id": sub_order.id,
                "status": escrow.status,
                "gross_cents": gross,
                "commission_cents": commission,
                "commission_source": applied.source,
            },
        )
        created.append(escrow)

    return created


async def mark_escrow_eligible(session: AsyncSession, *, actor: str, escrow: EscrowTransaction) -> EscrowTransaction:
    """Start the hold period after delivery; a partially refunded escrow keeps its status."""
    if escrow.status not in {EscrowStatus.HELD, EscrowStatus.PARTIALLY_REFUNDED}:
        return escrow

    before = {"status": escrow.status, "eligible_at": escrow.eligible_at}
    if escrow.status == EscrowStatus.HELD:
        escrow.status = EscrowStatus.ELIGIBLE_FOR_PAYOUT
    escrow.eligible_at = utcnow() + timedelta(days=get_settings().escrow_hold_days)

    await audit_log(
        session,
        actor=actor,
        entity_type="escrow",
        entity_id=escrow.id,
        action="mark_eligible",
        before=before,
        after={"status": escrow.status, "eligible_at": escrow.eligible_at},
    )
    return escrow


async def _load_escrow(session: AsyncSession, escrow_id: uuid.UUID) -> EscrowTransaction:
    escrow = (
        await session.execute(
            select(EscrowTransaction)
            .where(EscrowTransaction.id == escrow_id)
            .options(selectinload(EscrowTransaction.sub_order))
        )
    ).scalar_one_or_none()
    if escrow is None:
        raise ValueError("Escrow transaction not found")
    return escrow


async def get_escrow_for_sub_order(session: AsyncSession, sub_order_id: uuid.UUID) -> EscrowTransaction | None:
    return (
        await session.execute(select(EscrowTransaction).where(EscrowTransaction.sub_order_id == sub_order_id))
    ).scalar_one_or_none()


async def release_escrow(
    session: AsyncSession,
    *,
    actor: str,
    escrow_id: uuid.UUID,
    now: datetime | None = None,
) -> EscrowTransaction:
    escrow = await _load_escrow(session, escrow_id)
    if escrow.status == EscrowStatus.RELEASED:
        return escrow
    if escrow.status == EscrowStatus.RETURNED_TO_BUYER:
        raise ValueError("Escrow was returned to the buyer and cannot be released")
    if escrow.sub_order.status != OrderStatus.DELIVERED:
        raise ValueError(f"Escrow can only be released for DELIVERED sub-orders (status={escrow.sub_order.status})")

    before = escrow.status
    escrow.status = EscrowStatus.RELEASED
    escrow.released_at = now or utcnow()
    escrow.net_cents = escrow.payable_cents

    await audit_log(
        session,
        actor=actor,
        entity_type="escrow",
        entity_id=escrow.id,
        action="release",
        before={"status": before},
        after={"status": escrow.status, "net_cents": escrow.net_cents},
    )
    return escrow


async def process_eligible_escrows(session: AsyncSession, *, actor: str, now: datetime | None = None) -> int:
    """Release every escrow whose hold period has passed. Returns the number released."""
    now = now or utcnow()
    escrow_ids = (
        await session.execute(
            select(EscrowTransaction.id)
            .join(SellerSubOrder, SellerSubOrder.id == EscrowTransaction.sub_order_id)
            .where(
                EscrowTransaction.status.in_(_PAYABLE_ESCROW_STATUSES),
                EscrowTransaction.eligible_at.is_not(None),
                EscrowTransaction.eligible_at <= now,
                SellerSubOrder.status == OrderStatus.DELIVERED,
            )
            .order_by(EscrowTransaction.eligible_at)
        )
    ).scalars().all()

    for escrow_id in escrow_ids:
        await release_escrow(session, actor=actor, escrow_id=escrow_id, now=now)

    if escrow_ids:
        logger.info("Released %s escrow transaction(s)", len(escrow_ids))
    return len(escrow_ids)


async def return_escrow_to_buyer(
    session: AsyncSession,
    *,
    actor: str,
    escrow: EscrowTransaction,
    amount_cents: int,
) -> EscrowTransaction:
    """Give `amount_cents` of the held funds back to the buyer, with the matching commission refund."""
    if escrow.status == EscrowStatus.RELEASED:
        raise ValueError("Escrow already released to the seller; refund cannot be taken from escrow")
    if escrow.status == EscrowStatus.RETURNED_TO_BUYER:
        raise ValueError("Escrow already returned to the buyer")
    if amount_cents <= 0:
        raise ValueError("Refund amount must be greater than 0")
    if amount_cents > escrow.available_cents:
        raise ValueError(f"Refund amount exceeds escrow balance ({amount_cents} > {escrow.available_cents})")

    before = {
        "status": escrow.status,
        "refunded_cents": escrow.refunded_cents,
        "commission_refunded_cents": escrow.commission_refunded_cents,
    }
    escrow.refunded_cents += amount_cents
    await record_refund_adjustment(session, escrow=escrow, refund_cents=amount_cents)

    if escrow.refunded_cents >= escrow.gross_cents:
        escrow.status = EscrowStatus.RETURNED_TO_BUYER
        escrow.returned_at = utcnow()
    else:
        escrow.status = EscrowStatus.PARTIALLY_REFUNDED
    escrow.net_cents = escrow.payable_cents

    await audit_log(
        session,
        actor=actor,
        entity_type="escrow",
        entity_id=escrow.id,
        action="return_to_buyer",
        before=before,
        after={
            "status": escrow.status,
            "refunded_cents": escrow.refunded_cents,
            "commission_refunded_cents": escrow.commission_refunded_cents,
            "amount_cents": amount_cents,
        },
    )
    return escrow
