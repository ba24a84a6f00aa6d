from __future__ import annotations

import logging
import uuid

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from mercato.core.clock import utcnow
from mercato.core.enums import DocumentType, EscrowStatus, PaymentStatus, RefundKind, RefundStatus
from mercato.models.order import Order, SellerSubOrder
from mercato.models.payment import PaymentTransaction
from mercato.models.returns import RefundTransaction
from mercato.services.audit import audit_log
from mercato.services.documents import next_document_number
from mercato.services.escrow import return_escrow_to_buyer
from mercato.services.order_status import record_sub_order_refund
from mercato.services.payment_status import sanitize_error_message
from mercato.services.providers import PaymentProvider, ProviderResult, get_payment_provider


logger = logging.getLogger(__name__)

# Rounding slack between the escrow balance and the sub-order amount still open.
ESCROW_TOLERANCE_CENTS = 1

_REFUNDABLE_PAYMENT_STATUSES = (PaymentStatus.COMPLETED, PaymentStatus.AUTHORIZED)


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


async def _refundable_payment(session: AsyncSession, order_id: uuid.UUID) -> PaymentTransaction:
    payment = (
        await session.execute(
            select(PaymentTransaction)
            .where(
                PaymentTransaction.order_id == order_id,
                PaymentTransaction.status.in_(_REFUNDABLE_PAYMENT_STATUSES),
            )
            .order_by(PaymentTransaction.created_at.desc())
            .limit(1)
        )
    ).scalar_one_or_none()
    if payment is None:
        raise ValueError("Order has no completed or authorized payment to refund")
    return payment


async def _call_provider(
    gateway: PaymentProvider,
    *,
    payment: PaymentTransaction,
    refund: RefundTransaction,
) -> ProviderResult:
    if payment.status == PaymentStatus.AUTHORIZED and payment.provider == "cash_on_delivery":
        # Nothing was collected yet; the authorization simply lapses.
        return ProviderResult(success=True, reference=f"VOID-{refund.refund_number}")
    return await gateway.refund_payment(
        provider_transaction_id=payment.provider_transaction_id or "",
        amount_cents=refund.amount_cents,
        currency_code=refund.currency_code,
        reference=refund.refund_number,
    )


async def _return_from_escrow(session: AsyncSession, *, actor: str, sub_order: SellerSubOrder, amount_cents: int) -> None:
    escrow = sub_order.escrow
    if escrow is None or escrow.status == EscrowStatus.RETURNED_TO_BUYER:
        return
    available = escrow.available_cents
    if abs(available - amount_cents) <= ESCROW_TOLERANCE_CENTS:
        amount_cents = available
    amount_cents = min(amount_cents, available)
    if amount_cents > 0:
        await return_escrow_to_buyer(session, actor=actor, escrow=escrow, amount_cents=amount_cents)


async def _apply_refund_effects(
    session: AsyncSession,
    *,
    actor: str,
    refund: RefundTransaction,
    order: Order,
    payment: PaymentTransaction,
) -> None:
    if refund.kind == RefundKind.FULL:
        for sub_order in order.sub_orders:
            open_cents = sub_order.refundable_cents
            if open_cents <= 0:
                continue
            await _return_from_escrow(session, actor=actor, sub_order=sub_order, amount_cents=open_cents)
            await record_sub_order_refund(session, actor=actor, sub_order=sub_order, amount_cents=open_cents)
    else:
        sub_order = next((so for so in order.sub_orders if so.id == refund.sub_order_id), None)
        if sub_order is None:
            raise ValueError("Sub-order not found")
        await _return_from_escrow(session, actor=actor, sub_order=sub_order, amount_cents=refund.amount_cents)
        await record_sub_order_refund(session, actor=actor, sub_order=sub_order, amount_cents=refund.amount_cents)

    if order.refunded_cents >= order.total_cents:
        payment.status = PaymentStatus.REFUNDED
        order.payment_status = PaymentStatus.REFUNDED


async def _execute_refund(
    session: AsyncSession,
    *,
    actor: str,
    refund: RefundTransaction,
    order: Order,
    payment: PaymentTransaction,
    gateway: PaymentProvider | None,
) -> RefundTransaction:
    before = refund.status
    refund.status = RefundStatus.PROCESSING
    await session.flush()

    result = await _call_provider(gateway or get_payment_provider(), payment=payment, refund=refund)
    if result.success:
        refund.status = RefundStatus.COMPLETED
        refund.provider_refund_id = result.reference
        refund.error_message = None
        refund.completed_at = utcnow()
        await _apply_refund_effects(session, actor=actor, refund=refund, order=order, payment=payment)
        logger.info("Refund %s completed (%s cents)", refund.refund_number, refund.amount_cents)
    else:
        refund.status = RefundStatus.FAILED
        refund.error_message = sanitize_error_message(result.error) or "Refund failed"
        logger.warning("Refund %s failed: %s", refund.refund_number, refund.error_message)

    await audit_log(
        session,
        actor=actor,
        entity_type="refund",
        entity_id=refund.id,
        action="process",
        before={"status": before},
        after={"status": refund.status, "provider_refund_id": refund.provider_refund_id, "error": refund.error_message},
    )
    return refund


async def _new_refund(
    session: AsyncSession,
    *,
    actor: str,
    order: Order,
    payment: PaymentTransaction,
    kind: RefundKind,
    amount_cents: int,
    reason: str,
    sub_order_id: uuid.UUID | None,
) -> RefundTransaction:
    refund = RefundTransaction(
        refund_number=await next_document_number(session, doc_type=DocumentType.REFUND, issue_date=utcnow().date()),
        order_id=order.id,
        sub_order_id=sub_order_id,
        payment_transaction_id=payment.id,
        kind=kind,
        status=RefundStatus.REQUESTED,
        amount_cents=amount_cents,
        currency_code=order.currency_code,
        reason=reason,
        initiated_by=actor,
    )
    session.add(refund)
    await session.flush()
    await audit_log(
        session,
        actor=actor,
        entity_type="refund",
        entity_id=refund.id,
        action="create",
        after={"refund_number": refund.refund_number, "kind": kind, "amount_cents": amount_cents, "reason": reason},
    )
    return refund


async def process_full_refund(
    session: AsyncSession,
    *,
    actor: str,
    order_id: uuid.UUID,
    reason: str,
    gateway: PaymentProvider | None = None,
) -> RefundTransaction:
    order = await _load_order(session, order_id)
    payment = await _refundable_payment(session, order.id)

    amount = order.total_cents - order.refunded_cents
    if amount <= 0:
        raise ValueError("Order is already fully refunded")
    for sub_order in order.sub_orders:
        if sub_order.refundable_cents > 0 and sub_order.escrow is not None:
            if sub_order.escrow.status == EscrowStatus.RELEASED:
                raise ValueError(
                    f"Escrow of sub-order {sub_order.sub_order_number} was already released to the seller"
                )

    refund = await _new_refund(
        session,
        actor=actor,
        order=order,
        payment=payment,
        kind=RefundKind.FULL,
        amount_cents=amount,
        reason=reason,
        sub_order_id=None,
    )
    return await _execute_refund(session, actor=actor, refund=refund, order=order, payment=payment, gateway=gateway)


async def process_partial_refund(
    session: AsyncSession,
    *,
    actor: str,
    order_id: uuid.UUID,
    sub_order_id: uuid.UUID,
    amount_cents: int,
    reason: str,
    gateway: PaymentProvider | None = None,
) -> RefundTransaction:
    if amount_cents <= 0:
        raise ValueError("Refund amount must be greater than 0")

    order = await _load_order(session, order_id)
    sub_order = next((so for so in order.sub_orders if so.id == sub_order_id), None)
    if sub_order is None:
        raise ValueError("Sub-order does not belong to this order")
    if amount_cents > sub_order.refundable_cents:
        raise ValueError(
            f"Refund amount exceeds refundable amount ({amount_cents} > {sub_order.refundable_cents})"
        )

    escrow = sub_order.escrow
    if escrow is not None:
        if escrow.status == EscrowStatus.RELEASED:
            raise ValueError("Escrow already released to the seller; refund cannot be taken from escrow")
        if amount_cents > escrow.available_cents + ESCROW_TOLERANCE_CENTS:
            raise ValueError(f"Refund amount exceeds escrow balance ({amount_cents} > {escrow.available_cents})")

    payment = await _refundable_payment(session, order.id)
    refund = await _new_refund(
        session,
        actor=actor,
        order=order,
        payment=payment,
        kind=RefundKind.PARTIAL,
        amount_cents=amount_cents,
        reason=reason,
        sub_order_id=sub_order.id,
    )
    return await _execute_refund(session, actor=actor, refund=refund, order=order, payment=payment, gateway=gateway)


async def retry_failed_refund(
    session: AsyncSession,
    *,
    actor: str,
    refund_id: uuid.UUID,
    gateway: PaymentProvider | None = None,
) -> RefundTransaction:
    refund = await session.get(RefundTransaction, refund_id)
    if refund is None:
        raise ValueError("Refund not found")
    if refund.status != RefundStatus.FAILED:
        raise ValueError(f"Only FAILED refunds can be retried (status={refund.status})")

    order = await _load_order(session, refund.order_id)
    payment = await session.get(PaymentTransaction, refund.payment_transaction_id)
    if payment is None or payment.status not in _REFUNDABLE_PAYMENT_STATUSES:
        raise ValueError("Payment is no longer refundable")

    # The order may have moved on since the failure; never refund more than is still open.
    if refund.kind == RefundKind.FULL:
        open_cents = order.total_cents - order.refunded_cents
    else:
        sub_order = next((so for so in order.sub_orders if so.id == refund.sub_order_id), None)
        open_cents = sub_order.refundable_cents if sub_order is not None else 0
    if open_cents <= 0:
        raise ValueError("Nothing left to refund")
    if refund.kind == RefundKind.FULL:
        refund.amount_cents = open_cents
    elif refund.amount_cents > open_cents:
        raise ValueError(f"Refund amount exceeds refundable amount ({refund.amount_cents} > {open_cents})")

    return await _execute_refund(session, actor=actor, refund=refund, order=order, payment=payment, gateway=gateway)


async def refunded_total(session: AsyncSession, *, order_id: uuid.UUID) -> int:
    total = (
        await session.execute(
            select(func.coalesce(func.sum(RefundTransaction.amount_cents), 0)).where(
                RefundTransaction.order_id == order_id,
                RefundTransaction.status == RefundStatus.COMPLETED,
            )
        )
    ).scalar_one()
    return int(total)


async def list_refunds_for_order(session: AsyncSession, *, order_id: uuid.UUID) -> list[RefundTransaction]:
    rows = (
        await session.execute(
            select(RefundTransaction)
            .where(RefundTransaction.order_id == order_id)
            .order_by(RefundTransaction.created_at)
        )
    ).scalars()
    return list(rows.all())
