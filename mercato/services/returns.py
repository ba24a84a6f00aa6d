from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from mercato.core.clock import ensure_utc, utcnow
from mercato.core.config import get_settings
from mercato.core.enums import DocumentType, OrderStatus, ReturnResolution, ReturnStatus
from mercato.models.order import Order, SellerSubOrder
from mercato.models.returns import RefundTransaction, ReturnRequest, ReturnRequestItem
from mercato.schemas.returns import ReturnRequestCreate
from mercato.services.audit import audit_log
from mercato.services.documents import next_document_number
from mercato.services.providers import PaymentProvider
from mercato.services.refunds import process_partial_refund


logger = logging.getLogger(__name__)


async def _load_sub_order(session: AsyncSession, sub_order_id: uuid.UUID) -> SellerSubOrder:
    sub_order = (
        await session.execute(
            select(SellerSubOrder)
            .where(SellerSubOrder.id == sub_order_id)
            .options(
                selectinload(SellerSubOrder.order).selectinload(Order.sub_orders),
                selectinload(SellerSubOrder.items),
                selectinload(SellerSubOrder.escrow),
            )
        )
    ).scalar_one_or_none()
    if sub_order is None:
        raise ValueError("Sub-order not found")
    return sub_order


async def _load_return(session: AsyncSession, return_id: uuid.UUID) -> ReturnRequest:
    rr = (
        await session.execute(
            select(ReturnRequest)
            .where(ReturnRequest.id == return_id)
            .options(selectinload(ReturnRequest.items), selectinload(ReturnRequest.sub_order))
        )
    ).scalar_one_or_none()
    if rr is None:
        raise ValueError("Return request not found")
    return rr


async def check_return_eligibility(
    session: AsyncSession,
    *,
    buyer_ref: str,
    sub_order_id: uuid.UUID,
    now: datetime | None = None,
) -> SellerSubOrder:
    """Return the sub-order if the buyer may open a return for it, otherwise raise ValueError."""
    sub_order = await _load_sub_order(session, sub_order_id)
    if sub_order.order.buyer_ref != buyer_ref:
        raise ValueError("You are not authorized to request a return for this order")
    if sub_order.status != OrderStatus.DELIVERED:
        raise ValueError("Returns can only be initiated for delivered orders")

    window_days = get_settings().return_window_days
    delivered_at = ensure_utc(sub_order.delivered_at or sub_order.updated_at)
    if (now or utcnow()) > delivered_at + timedelta(days=window_days):
        raise ValueError(f"Return window has expired. Returns must be initiated within {window_days} days of delivery.")

    open_return = (
        await session.execute(
            select(ReturnRequest.id).where(
                ReturnRequest.sub_order_id == sub_order.id,
                ReturnRequest.status != ReturnStatus.REJECTED,
            )
        )
    ).first()
    if open_return is not None:
        raise ValueError("A return request has already been submitted for this sub-order")
    return sub_order


async def create_return_request(
    session: AsyncSession,
    *,
    actor: str,
    data: ReturnRequestCreate,
    now: datetime | None = None,
) -> ReturnRequest:
    sub_order = await check_return_eligibility(
        session, buyer_ref=data.buyer_ref, sub_order_id=data.sub_order_id, now=now
    )

    items: list[ReturnRequestItem] = []
    if data.is_full_return:
        refund_amount = sub_order.refundable_cents
        for line in sub_order.items:
            returnable = line.quantity - line.quantity_cancelled
            if returnable > 0:
                items.append(
                    ReturnRequestItem(
                        order_item_id=line.id,
                        quantity=returnable,
                        amount_cents=line.unit_price_cents * returnable,
                    )
                )
    else:
        if not data.items:
            raise ValueError("Item quantities must be provided for partial returns")
        lines = {line.id: line for line in sub_order.items}
        seen: set[uuid.UUID] = set()
        refund_amount = 0
        for req in data.items:
            line = lines.get(req.order_item_id)
            if line is None:
                raise ValueError(f"Order item {req.order_item_id} not found in this sub-order")
            if req.order_item_id in seen:
                raise ValueError(f"Duplicate order item in return: {req.order_item_id}")
            seen.add(req.order_item_id)
            returnable = line.quantity - line.quantity_cancelled
            if req.quantity < 1 or req.quantity > returnable:
                raise ValueError(
                    f"Invalid quantity for item {line.product_title}. Must be between 1 and {returnable}."
                )
            amount = line.unit_price_cents * req.quantity
            refund_amount += amount
            items.append(ReturnRequestItem(order_item_id=line.id, quantity=req.quantity, amount_cents=amount))
        if refund_amount > sub_order.refundable_cents:
            raise ValueError(
                f"Return amount exceeds refundable amount ({refund_amount} > {sub_order.refundable_cents})"
            )

    requested_at = now or utcnow()
    rr = ReturnRequest(
        return_number=await next_document_number(
            session, doc_type=DocumentType.RETURN_REQUEST, issue_date=requested_at.date()
        ),
        order_id=sub_order.order_id,
        sub_order_id=sub_order.id,
        buyer_ref=data.buyer_ref,
        kind=data.kind,
        reason=data.reason,
        description=data.description,
        status=ReturnStatus.REQUESTED,
        is_full_return=data.is_full_return,
        refund_amount_cents=refund_amount,
        requested_at=requested_at,
        items=items,
    )
    session.add(rr)
    await session.flush()

    await audit_log(
        session,
        actor=actor,
        entity_type="return_request",
        entity_id=rr.id,
        action="create",
        after={
            "return_number": rr.return_number,
            "sub_order_id": sub_order.id,
            "kind": rr.kind,
            "reason": rr.reason,
            "is_full_return": rr.is_full_return,
            "refund_amount_cents": refund_amount,
        },
    )
    logger.info("Return %s requested for sub-order %s", rr.return_number, sub_order.sub_order_number)
    return rr


def _require_status(rr: ReturnRequest, *allowed: ReturnStatus) -> None:
    if rr.status not in allowed:
        names = ", ".join(s.value for s in allowed)
        raise ValueError(f"Return request must be {names} (status={rr.status})")


async def _log_transition(
    session: AsyncSession,
    *,
    actor: str,
    rr: ReturnRequest,
    action: str,
    before: ReturnStatus,
    extra: dict | None = None,
) -> None:
    await audit_log(
        session,
        actor=actor,
        entity_type="return_request",
        entity_id=rr.id,
        action=action,
        before={"status": before},
        after={"status": rr.status, **(extra or {})},
    )


async def _refund_return(
    session: AsyncSession,
    *,
    actor: str,
    rr: ReturnRequest,
    amount_cents: int,
    gateway: PaymentProvider | None,
) -> RefundTransaction | None:
    sub_order = await _load_sub_order(session, rr.sub_order_id)
    amount = min(amount_cents, sub_order.refundable_cents)
    if amount <= 0:
        return None
    refund = await process_partial_refund(
        session,
        actor=actor,
        order_id=rr.order_id,
        sub_order_id=rr.sub_order_id,
        amount_cents=amount,
        reason=f"Return {rr.return_number}",
        gateway=gateway,
    )
    rr.refund_id = refund.id
    return refund


async def approve_return(
    session: AsyncSession,
    *,
    actor: str,
    return_id: uuid.UUID,
    store_id: uuid.UUID | None = None,
    seller_notes: str | None = None,
) -> ReturnRequest:
    rr = await _load_return(session, return_id)
    if store_id is not None and rr.sub_order.store_id != store_id:
        raise ValueError("Return request belongs to another store")
    _require_status(rr, ReturnStatus.REQUESTED)

    before = rr.status
    rr.status = ReturnStatus.APPROVED
    rr.approved_at = utcnow()
    rr.seller_notes = seller_notes
    await _log_transition(session, actor=actor, rr=rr, action="approve", before=before)
    return rr


async def reject_return(
    session: AsyncSession,
    *,
    actor: str,
    return_id: uuid.UUID,
    reason: str,
    store_id: uuid.UUID | None = None,
) -> ReturnRequest:
    rr = await _load_return(session, return_id)
    if store_id is not None and rr.sub_order.store_id != store_id:
        raise ValueError("Return request belongs to another store")
    _require_status(rr, ReturnStatus.REQUESTED)
    if not reason.strip():
        raise ValueError("A rejection reason is required")

    before = rr.status
    rr.status = ReturnStatus.REJECTED
    rr.rejected_at = utcnow()
    rr.rejection_reason = reason.strip()
    await _log_transition(session, actor=actor, rr=rr, action="reject", before=before, extra={"reason": rr.rejection_reason})
    return rr


async def complete_return(
    session: AsyncSession,
    *,
    actor: str,
    return_id: uuid.UUID,
    store_id: uuid.UUID | None = None,
    gateway: PaymentProvider | None = None,
) -> ReturnRequest:
    """Goods are back with the seller: refund the return amount and close the request."""
    rr = await _load_return(session, return_id)
    if store_id is not None and rr.sub_order.store_id != store_id:
        raise ValueError("Return request belongs to another store")
    _require_status(rr, ReturnStatus.APPROVED)

    refund = await _refund_return(session, actor=actor, rr=rr, amount_cents=rr.refund_amount_cents, gateway=gateway)

    before = rr.status
    rr.status = ReturnStatus.COMPLETED
    rr.completed_at = utcnow()
    await _log_transition(
        session,
        actor=actor,
        rr=rr,
        action="complete",
        before=before,
        extra={"refund_id": rr.refund_id, "refund_status": refund.status if refund is not None else None},
    )
    return rr


async def escalate_return(
    session: AsyncSession,
    *,
    actor: str,
    return_id: uuid.UUID,
    buyer_ref: str,
    reason: str,
    now: datetime | None = None,
) -> ReturnRequest:
    """Buyer hands the case to an admin after a rejection or when the seller does not answer in time."""
    rr = await _load_return(session, return_id)
    if rr.buyer_ref != buyer_ref:
        raise ValueError("You are not authorized to escalate this return request")

    now = now or utcnow()
    if rr.status == ReturnStatus.REQUESTED:
        deadline = ensure_utc(rr.requested_at) + timedelta(days=get_settings().return_seller_response_days)
        if now < deadline:
            raise ValueError("The seller still has time to respond to this return request")
    elif rr.status != ReturnStatus.REJECTED:
        raise ValueError(f"Only REJECTED or unanswered return requests can be escalated (status={rr.status})")

    before = rr.status
    rr.status = ReturnStatus.UNDER_ADMIN_REVIEW
    rr.escalated_at = now
    rr.escalation_reason = reason.strip()
    await _log_transition(session, actor=actor, rr=rr, action="escalate", before=before, extra={"reason": rr.escalation_reason})
    return rr


async def resolve_return(
    session: AsyncSession,
    *,
    actor: str,
    return_id: uuid.UUID,
    resolution: ReturnResolution,
    amount_cents: int | None = None,
    notes: str | None = None,
    gateway: PaymentProvider | None = None,
) -> ReturnRequest:
    rr = await _load_return(session, return_id)
    _require_status(rr, ReturnStatus.UNDER_ADMIN_REVIEW)

    if resolution == ReturnResolution.FULL_REFUND:
        amount = rr.refund_amount_cents
    elif resolution == ReturnResolution.PARTIAL_REFUND:
        if amount_cents is None or amount_cents <= 0:
            raise ValueError("PARTIAL_REFUND requires an amount greater than 0")
        if amount_cents > rr.refund_amount_cents:
            raise ValueError(
                f"Partial refund exceeds the requested amount ({amount_cents} > {rr.refund_amount_cents})"
            )
        amount = amount_cents
    else:
        amount = 0

    refund = None
    if amount > 0:
        refund = await _refund_return(session, actor=actor, rr=rr, amount_cents=amount, gateway=gateway)

    before = rr.status
    rr.status = ReturnStatus.RESOLVED
    rr.resolution = resolution
    rr.resolution_amount_cents = refund.amount_cents if refund is not None else 0
    rr.resolution_notes = notes
    rr.resolved_at = utcnow()
    await _log_transition(
        session,
        actor=actor,
        rr=rr,
        action="resolve",
        before=before,
        extra={"resolution": resolution, "amount_cents": rr.resolution_amount_cents, "refund_id": rr.refund_id},
    )
    return rr


async def get_return_request(session: AsyncSession, return_id: uuid.UUID) -> ReturnRequest | None:
    return (
        await session.execute(
            select(ReturnRequest)
            .where(ReturnRequest.id == return_id)
            .options(selectinload(ReturnRequest.items))
            .execution_options(populate_existing=True)
        )
    ).scalar_one_or_none()


async def list_returns_for_buyer(session: AsyncSession, *, buyer_ref: str) -> list[ReturnRequest]:
    rows = (
        await session.execute(
            select(ReturnRequest)
            .where(ReturnRequest.buyer_ref == buyer_ref)
            .options(selectinload(ReturnRequest.items))
            .order_by(ReturnRequest.requested_at.desc())
        )
    ).scalars()
    return list(rows.all())


async def list_returns_for_store(
    session: AsyncSession,
    *,
    store_id: uuid.UUID,
    status: ReturnStatus | None = None,
) -> list[ReturnRequest]:
    stmt = (
        select(ReturnRequest)
        .join(SellerSubOrder, SellerSubOrder.id == ReturnRequest.sub_order_id)
        .where(SellerSubOrder.store_id == store_id)
        .options(selectinload(ReturnRequest.items))
        .order_by(ReturnRequest.requested_at.desc())
    )
    if status is not None:
        stmt = stmt.where(ReturnRequest.status == status)
    return list((await session.execute(stmt)).scalars().all())
