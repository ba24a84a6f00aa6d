from __future__ import annotations

from datetime import timedelta

import pytest

from factories import ACTOR, BUYER, deliver, make_product, make_store, pay_order, place_order
from mercato.core.clock import utcnow
from mercato.core.enums import (
    EscrowStatus,
    OrderStatus,
    RefundStatus,
    ReturnReason,
    ReturnResolution,
    ReturnStatus,
)
from mercato.models.returns import RefundTransaction
from mercato.schemas.returns import ReturnItemRequest, ReturnRequestCreate
from mercato.services.providers import MockPaymentProvider
from mercato.services.returns import (
    approve_return,
    check_return_eligibility,
    complete_return,
    create_return_request,
    escalate_return,
    list_returns_for_buyer,
    list_returns_for_store,
    reject_return,
    resolve_return,
)


async def _delivered_sub_order(session, *, deliver_it: bool = True):
    store = await make_store(session, slug="alpha")
    product = await make_product(session, store=store, sku="A-1", price_cents=3000)
    order = await place_order(session, lines=[(product, 2)])
    await pay_order(session, order=order)
    sub_order = order.sub_orders[0]
    if deliver_it:
        await deliver(session, sub_order_id=sub_order.id)
    return store, order, sub_order


def _request(sub_order, **kwargs) -> ReturnRequestCreate:
    return ReturnRequestCreate(sub_order_id=sub_order.id, buyer_ref=BUYER, reason=ReturnReason.DAMAGED, **kwargs)


@pytest.mark.asyncio
async def test_full_return_approved_and_completed_refunds_escrow(db_session) -> None:
    gateway = MockPaymentProvider()
    async with db_session.begin():
        store, order, sub_order = await _delivered_sub_order(db_session)
        rr = await create_return_request(db_session, actor=BUYER, data=_request(sub_order, description="Box crushed"))

    assert rr.return_number.startswith("RTN-")
    assert rr.status == ReturnStatus.REQUESTED
    assert rr.refund_amount_cents == 6000
    assert [(i.quantity, i.amount_cents) for i in rr.items] == [(2, 6000)]

    async with db_session.begin():
        with pytest.raises(ValueError, match="another store"):
            await approve_return(db_session, actor=ACTOR, return_id=rr.id, store_id=order.id)
        await approve_return(db_session, actor=ACTOR, return_id=rr.id, store_id=store.id, seller_notes="Send it back")
    assert rr.status == ReturnStatus.APPROVED

    async with db_session.begin():
        await complete_return(db_session, actor=ACTOR, return_id=rr.id, gateway=gateway)

    assert rr.status == ReturnStatus.COMPLETED
    refund = await db_session.get(RefundTransaction, rr.refund_id)
    assert refund.status == RefundStatus.COMPLETED
    assert refund.amount_cents == 6000
    assert sub_order.status == OrderStatus.REFUNDED
    assert sub_order.escrow.status == EscrowStatus.RETURNED_TO_BUYER

    assert [r.id for r in await list_returns_for_buyer(db_session, buyer_ref=BUYER)] == [rr.id]
    assert [r.id for r in await list_returns_for_store(db_session, store_id=store.id, status=ReturnStatus.COMPLETED)] == [
        rr.id
    ]


@pytest.mark.asyncio
async def test_return_eligibility_rules(db_session) -> None:
    async with db_session.begin():
        _, _, pending = await _delivered_sub_order(db_session, deliver_it=False)

    async with db_session.begin():
        with pytest.raises(ValueError, match="delivered orders"):
            await check_return_eligibility(db_session, buyer_ref=BUYER, sub_order_id=pending.id)

        await deliver(db_session, sub_order_id=pending.id)
        with pytest.raises(ValueError, match="not authorized"):
            await check_return_eligibility(db_session, buyer_ref="someone-else", sub_order_id=pending.id)
        with pytest.raises(ValueError, match="Return window has expired"):
            await check_return_eligibility(
                db_session, buyer_ref=BUYER, sub_order_id=pending.id, now=utcnow() + timedelta(days=31)
            )

        item = pending.items[0]
        with pytest.raises(ValueError, match="Must be between 1 and 2"):
            await create_return_request(
                db_session,
                actor=BUYER,
                data=_request(pending, is_full_return=False, items=[ReturnItemRequest(order_item_id=item.id, quantity=3)]),
            )

        partial = await create_return_request(
            db_session,
            actor=BUYER,
            data=_request(pending, is_full_return=False, items=[ReturnItemRequest(order_item_id=item.id, quantity=1)]),
        )
        assert partial.refund_amount_cents == 3000

        with pytest.raises(ValueError, match="already been submitted"):
            await create_return_request(db_session, actor=BUYER, data=_request(pending))


@pytest.mark.asyncio
async def test_rejected_return_escalated_and_resolved_with_partial_refund(db_session) -> None:
    gateway = MockPaymentProvider()
    async with db_session.begin():
        _, _, sub_order = await _delivered_sub_order(db_session)
        rr = await create_return_request(db_session, actor=BUYER, data=_request(sub_order))

    async with db_session.begin():
        with pytest.raises(ValueError, match="rejection reason"):
            await reject_return(db_session, actor=ACTOR, return_id=rr.id, reason="  ")
        await reject_return(db_session, actor=ACTOR, return_id=rr.id, reason="Used item")
    assert rr.status == ReturnStatus.REJECTED
    assert rr.rejection_reason == "Used item"

    async with db_session.begin():
        with pytest.raises(ValueError, match="not authorized"):
            await escalate_return(db_session, actor="intruder", return_id=rr.id, buyer_ref="intruder", reason="?")
        await escalate_return(db_session, actor=BUYER, return_id=rr.id, buyer_ref=BUYER, reason="It arrived broken")
    assert rr.status == ReturnStatus.UNDER_ADMIN_REVIEW

    async with db_session.begin():
        with pytest.raises(ValueError, match="exceeds the requested amount"):
            await resolve_return(
                db_session,
                actor="admin",
                return_id=rr.id,
                resolution=ReturnResolution.PARTIAL_REFUND,
                amount_cents=7000,
                gateway=gateway,
            )
        await resolve_return(
            db_session,
            actor="admin",
            return_id=rr.id,
            resolution=ReturnResolution.PARTIAL_REFUND,
            amount_cents=1000,
            notes="Split the difference",
            gateway=gateway,
        )

    assert rr.status == ReturnStatus.RESOLVED
    assert rr.resolution == ReturnResolution.PARTIAL_REFUND
    assert rr.resolution_amount_cents == 1000
    assert sub_order.refunded_cents == 1000
    assert sub_order.status == OrderStatus.DELIVERED
    assert sub_order.escrow.status == EscrowStatus.PARTIALLY_REFUNDED


@pytest.mark.asyncio
async def test_unanswered_return_can_be_escalated_after_seller_deadline(db_session) -> None:
    async with db_session.begin():
        _, _, sub_order = await _delivered_sub_order(db_session)
        rr = await create_return_request(db_session, actor=BUYER, data=_request(sub_order))

    async with db_session.begin():
        with pytest.raises(ValueError, match="still has time"):
            await escalate_return(db_session, actor=BUYER, return_id=rr.id, buyer_ref=BUYER, reason="No answer")
        await escalate_return(
            db_session,
            actor=BUYER,
            return_id=rr.id,
            buyer_ref=BUYER,
            reason="No answer",
            now=utcnow() + timedelta(days=4),
        )
    assert rr.status == ReturnStatus.UNDER_ADMIN_REVIEW

    async with db_session.begin():
        await resolve_return(db_session, actor="admin", return_id=rr.id, resolution=ReturnResolution.NO_REFUND)
    assert rr.status == ReturnStatus.RESOLVED
    assert rr.resolution_amount_cents == 0
    assert rr.refund_id is None


@pytest.mark.asyncio
async def test_completed_return_keeps_failed_refund_for_retry(db_session) -> None:
    async with db_session.begin():
        _, order, sub_order = await _delivered_sub_order(db_session)
        rr = await create_return_request(db_session, actor=BUYER, data=_request(sub_order))
        await approve_return(db_session, actor=ACTOR, return_id=rr.id)
        await complete_return(db_session, actor=ACTOR, return_id=rr.id, gateway=MockPaymentProvider(fail_refunds=True))

    assert rr.status == ReturnStatus.COMPLETED
    refund = await db_session.get(RefundTransaction, rr.refund_id)
    assert refund.status == RefundStatus.FAILED
    assert order.refunded_cents == 0
    assert sub_order.status == OrderStatus.DELIVERED
