from __future__ import annotations

from datetime import date, timedelta

import pytest

from factories import ACTOR, deliver, make_product, make_store, pay_order, place_order
from mercato.core.clock import utcnow
from mercato.core.enums import PayoutFrequency, PayoutMethodKind, PayoutStatus
from mercato.schemas.payouts import PayoutMethodCreate, PayoutScheduleUpsert
from mercato.services.escrow import process_eligible_escrows
from mercato.services.payouts import (
    add_payout_method,
    calculate_next_payout_date,
    create_payout,
    default_payout_method,
    eligible_balance,
    generate_scheduled_payouts,
    list_payouts,
    process_due_payouts,
    process_payout,
    retry_failed_payouts,
    upsert_payout_schedule,
)
from mercato.services.providers import MockPaymentProvider


# 2026-03-02 is a Monday.
MONDAY = date(2026, 3, 2)


@pytest.mark.parametrize(
    ("frequency", "today", "dow", "dom", "expected"),
    [
        (PayoutFrequency.WEEKLY, MONDAY, 2, None, date(2026, 3, 4)),
        (PayoutFrequency.WEEKLY, MONDAY, 0, None, date(2026, 3, 9)),
        (PayoutFrequency.BIWEEKLY, MONDAY, 2, None, date(2026, 3, 11)),
        (PayoutFrequency.MONTHLY, MONDAY, None, 15, date(2026, 3, 15)),
        (PayoutFrequency.MONTHLY, date(2026, 3, 15), None, 15, date(2026, 4, 15)),
        (PayoutFrequency.MONTHLY, date(2026, 1, 31), None, 31, date(2026, 2, 28)),
        (PayoutFrequency.MONTHLY, date(2026, 12, 20), None, 5, date(2027, 1, 5)),
    ],
)
def test_calculate_next_payout_date(frequency, today, dow, dom, expected) -> None:
    assert calculate_next_payout_date(frequency=frequency, today=today, day_of_week=dow, day_of_month=dom) == expected


def test_calculate_next_payout_date_requires_matching_day() -> None:
    with pytest.raises(ValueError, match="day_of_week"):
        calculate_next_payout_date(frequency=PayoutFrequency.WEEKLY, today=MONDAY)
    with pytest.raises(ValueError, match="day_of_month"):
        calculate_next_payout_date(frequency=PayoutFrequency.MONTHLY, today=MONDAY)


async def _store_with_released_escrow(session, *, slug: str = "alpha", price_cents: int = 3000, quantity: int = 2):
    store = await make_store(session, slug=slug)
    product = await make_product(session, store=store, sku=f"{slug}-1", price_cents=price_cents)
    order = await place_order(session, lines=[(product, quantity)])
    await pay_order(session, order=order, event_id=f"evt-{slug}")
    await deliver(session, sub_order_id=order.sub_orders[0].id)
    await process_eligible_escrows(session, actor=ACTOR, now=utcnow() + timedelta(days=8))
    return store, order.sub_orders[0].escrow


def _bank(label: str = "Main account", **kwargs) -> PayoutMethodCreate:
    return PayoutMethodCreate(
        kind=PayoutMethodKind.BANK_TRANSFER,
        label=label,
        account_ref="AT611904300234573201",
        account_holder="Alpha GmbH",
        **kwargs,
    )


@pytest.mark.asyncio
async def test_first_payout_method_becomes_default(db_session) -> None:
    async with db_session.begin():
        store = await make_store(db_session, slug="alpha")
        first = await add_payout_method(db_session, actor=ACTOR, store_id=store.id, data=_bank())
        second = await add_payout_method(db_session, actor=ACTOR, store_id=store.id, data=_bank("Savings"))
        assert first.is_default is True
        assert second.is_default is False

        paypal = await add_payout_method(
            db_session,
            actor=ACTOR,
            store_id=store.id,
            data=PayoutMethodCreate(
                kind=PayoutMethodKind.PAYPAL,
                label="PayPal",
                account_ref="payouts@alpha.example",
                account_holder="Alpha GmbH",
                is_default=True,
            ),
        )
        await db_session.refresh(first)
        default = await default_payout_method(db_session, store_id=store.id)

    assert default.id == paypal.id
    assert first.is_default is False


@pytest.mark.asyncio
async def test_create_and_process_payout(db_session) -> None:
    gateway = MockPaymentProvider()
    async with db_session.begin():
        store, escrow = await _store_with_released_escrow(db_session)
        with pytest.raises(ValueError, match="no default payout method"):
            await create_payout(db_session, actor=ACTOR, store_id=store.id)

    async with db_session.begin():
        await add_payout_method(db_session, actor=ACTOR, store_id=store.id, data=_bank())
        balance = await eligible_balance(db_session, store_id=store.id)
        assert (balance.escrow_count, balance.amount_cents) == (1, 5350)

        payout = await create_payout(db_session, actor=ACTOR, store_id=store.id)

    assert payout is not None
    assert payout.payout_number.startswith("PO-")
    assert payout.status == PayoutStatus.SCHEDULED
    assert payout.amount_cents == 5350
    assert escrow.payout_id == payout.id

    async with db_session.begin():
        assert (await eligible_balance(db_session, store_id=store.id)).amount_cents == 0
        with pytest.raises(ValueError, match="no released escrow balance"):
            await create_payout(db_session, actor=ACTOR, store_id=store.id)

    async with db_session.begin():
        processed = await process_due_payouts(db_session, actor="scheduler", gateway=gateway)

    assert [p.id for p in processed] == [payout.id]
    assert payout.status == PayoutStatus.PAID
    assert payout.external_reference.startswith("mock_po_")
    assert payout.completed_at is not None
    assert gateway.calls[-1] == ("send_payout", {"reference": payout.payout_number, "amount_cents": 5350})

    async with db_session.begin():
        with pytest.raises(ValueError, match="Only SCHEDULED or FAILED"):
            await process_payout(db_session, actor=ACTOR, payout_id=payout.id, gateway=gateway)
    assert [p.id for p in await list_payouts(db_session, store_id=store.id)] == [payout.id]


@pytest.mark.asyncio
async def test_balance_below_minimum_rolls_over(db_session) -> None:
    async with db_session.begin():
        # 2000 + 500 shipping, minus 300 commission.
        store, escrow = await _store_with_released_escrow(db_session, price_cents=2000, quantity=1)
        await add_payout_method(db_session, actor=ACTOR, store_id=store.id, data=_bank())
        assert await create_payout(db_session, actor=ACTOR, store_id=store.id) is None

    assert escrow.payable_cents == 2200
    assert escrow.payout_id is None


@pytest.mark.asyncio
async def test_failed_payout_is_retried_with_backoff(db_session) -> None:
    async with db_session.begin():
        store, _ = await _store_with_released_escrow(db_session)
        await add_payout_method(db_session, actor=ACTOR, store_id=store.id, data=_bank())
        payout = await create_payout(db_session, actor=ACTOR, store_id=store.id)

    now = utcnow()
    async with db_session.begin():
        await process_payout(
            db_session, actor=ACTOR, payout_id=payout.id, gateway=MockPaymentProvider(fail_payouts=True), now=now
        )

    assert payout.status == PayoutStatus.FAILED
    assert payout.retry_count == 1
    assert payout.error_message == "Payout rejected by provider"
    assert payout.next_retry_at == now + timedelta(hours=24)

    async with db_session.begin():
        assert await retry_failed_payouts(db_session, actor=ACTOR, now=now + timedelta(hours=1)) == []
    async with db_session.begin():
        retried = await retry_failed_payouts(
            db_session, actor=ACTOR, now=now + timedelta(hours=25), gateway=MockPaymentProvider()
        )

    assert [p.id for p in retried] == [payout.id]
    assert payout.status == PayoutStatus.PAID
    assert payout.next_retry_at is None
    assert payout.retry_count == 1


@pytest.mark.asyncio
async def test_failed_payout_stops_retrying_after_max_attempts(db_session) -> None:
    gateway = MockPaymentProvider(fail_payouts=True)
    async with db_session.begin():
        store, _ = await _store_with_released_escrow(db_session)
        await add_payout_method(db_session, actor=ACTOR, store_id=store.id, data=_bank())
        payout = await create_payout(db_session, actor=ACTOR, store_id=store.id)

    now = utcnow()
    for _ in range(3):
        async with db_session.begin():
            await process_payout(db_session, actor=ACTOR, payout_id=payout.id, gateway=gateway, now=now)

    assert payout.retry_count == 3
    assert payout.next_retry_at is None
    async with db_session.begin():
        assert await retry_failed_payouts(db_session, actor=ACTOR, now=now + timedelta(days=30), gateway=gateway) == []


@pytest.mark.asyncio
async def test_provider_exception_puts_payout_back_in_queue(db_session) -> None:
    now = utcnow()
    async with db_session.begin():
        store, _ = await _store_with_released_escrow(db_session)
        await add_payout_method(db_session, actor=ACTOR, store_id=store.id, data=_bank())
        payout = await create_payout(db_session, actor=ACTOR, store_id=store.id)
        await process_payout(
            db_session, actor=ACTOR, payout_id=payout.id, gateway=MockPaymentProvider(raise_on_payout=True), now=now
        )

    assert payout.status == PayoutStatus.SCHEDULED
    assert payout.retry_count == 0
    assert payout.error_message == "Payout provider call did not complete"
    assert payout.next_retry_at == now + timedelta(hours=24)

    # Not picked up again until the delay has passed.
    gateway = MockPaymentProvider()
    async with db_session.begin():
        held = await process_due_payouts(db_session, actor="scheduler", now=now + timedelta(hours=1), gateway=gateway)
    assert held == []
    assert gateway.calls == []

    async with db_session.begin():
        (paid,) = await process_due_payouts(db_session, actor="scheduler", now=now + timedelta(hours=25), gateway=gateway)
    assert paid.id == payout.id
    assert paid.status == PayoutStatus.PAID
    assert paid.next_retry_at is None


@pytest.mark.asyncio
async def test_generate_scheduled_payouts_advances_schedule(db_session) -> None:
    today = utcnow().date()
    async with db_session.begin():
        store, _ = await _store_with_released_escrow(db_session)
        idle = await make_store(db_session, slug="idle")
        await add_payout_method(db_session, actor=ACTOR, store_id=store.id, data=_bank())

        weekly = PayoutScheduleUpsert(frequency=PayoutFrequency.WEEKLY, day_of_week=today.weekday())
        with pytest.raises(ValueError, match="do not use day_of_month"):
            await upsert_payout_schedule(
                db_session,
                actor=ACTOR,
                store_id=store.id,
                data=PayoutScheduleUpsert(frequency=PayoutFrequency.WEEKLY, day_of_week=0, day_of_month=3),
            )
        schedule = await upsert_payout_schedule(
            db_session, actor=ACTOR, store_id=store.id, data=weekly, today=today - timedelta(days=7)
        )
        idle_schedule = await upsert_payout_schedule(
            db_session, actor=ACTOR, store_id=idle.id, data=weekly, today=today - timedelta(days=7)
        )

    assert schedule.next_payout_date == today
    assert schedule.minimum_cents == 5000

    async with db_session.begin():
        created = await generate_scheduled_payouts(db_session, actor="scheduler", today=today)

    assert len(created) == 1
    assert created[0].store_id == store.id
    assert created[0].schedule_id == schedule.id
    assert created[0].scheduled_for == today
    # Both schedules move on, even the one without a balance.
    assert schedule.next_payout_date == today + timedelta(days=7)
    assert idle_schedule.next_payout_date == today + timedelta(days=7)

    async with db_session.begin():
        assert await generate_scheduled_payouts(db_session, actor="scheduler", today=today) == []
