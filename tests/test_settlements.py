from __future__ import annotations

from datetime import date

import pytest

from factories import ACTOR, make_product, make_store, pay_order, place_order
from mercato.core.clock import utcnow
from mercato.core.enums import SettlementAdjustmentKind, SettlementStatus, StoreStatus
from mercato.schemas.settlements import SettlementAdjustmentCreate
from mercato.services.providers import MockPaymentProvider
from mercato.services.refunds import process_partial_refund
from mercato.services.settlements import (
    add_settlement_adjustment,
    finalize_settlement,
    generate_monthly_settlements,
    generate_settlement,
    list_settlements,
    month_bounds,
    previous_month,
    regenerate_settlement,
    settlement_summary,
)


def test_month_bounds_and_previous_month() -> None:
    assert month_bounds(2026, 2) == (date(2026, 2, 1), date(2026, 3, 1))
    assert month_bounds(2026, 12) == (date(2026, 12, 1), date(2027, 1, 1))
    assert previous_month(date(2026, 1, 15)) == (2025, 12)
    assert previous_month(date(2026, 7, 1)) == (2026, 6)


async def _store_with_refunded_order(session):
    store = await make_store(session, slug="alpha")
    product = await make_product(session, store=store, sku="A-1", price_cents=3000)
    order = await place_order(session, lines=[(product, 2)])
    await pay_order(session, order=order)
    await process_partial_refund(
        session,
        actor=ACTOR,
        order_id=order.id,
        sub_order_id=order.sub_orders[0].id,
        amount_cents=1000,
        reason="Scratched cover",
        gateway=MockPaymentProvider(),
    )
    return store, order


def _this_month() -> tuple[date, date]:
    today = utcnow().date()
    return month_bounds(today.year, today.month)


@pytest.mark.asyncio
async def test_generate_settlement_totals_escrows_of_period(db_session) -> None:
    start, end = _this_month()
    async with db_session.begin():
        store, order = await _store_with_refunded_order(db_session)
        settlement = await generate_settlement(
            db_session, actor=ACTOR, store_id=store.id, period_start=start, period_end=end
        )

    assert settlement.settlement_number.startswith("STL-")
    assert settlement.status == SettlementStatus.DRAFT
    assert (settlement.version, settlement.is_current) == (1, True)
    # Commission 650 less the 108 given back with the refund.
    assert (settlement.gross_cents, settlement.refunds_cents, settlement.commission_cents) == (6000, 1000, 542)
    assert settlement.net_cents == 4458
    assert settlement.payouts_cents == 0
    assert [i.sub_order_number for i in settlement.items] == [order.sub_orders[0].sub_order_number]

    async with db_session.begin():
        with pytest.raises(ValueError, match="already exists"):
            await generate_settlement(db_session, actor=ACTOR, store_id=store.id, period_start=start, period_end=end)
        with pytest.raises(ValueError, match="period_end must be after"):
            await generate_settlement(db_session, actor=ACTOR, store_id=store.id, period_start=end, period_end=start)


@pytest.mark.asyncio
async def test_adjustments_regenerate_and_finalize(db_session) -> None:
    start, end = _this_month()
    prev_start, prev_end = month_bounds(*previous_month(start))
    async with db_session.begin():
        store, _ = await _store_with_refunded_order(db_session)
        earlier = await generate_settlement(
            db_session, actor=ACTOR, store_id=store.id, period_start=prev_start, period_end=prev_end
        )
        settlement = await generate_settlement(
            db_session, actor=ACTOR, store_id=store.id, period_start=start, period_end=end
        )

    assert earlier.items == []
    assert earlier.net_cents == 0

    async with db_session.begin():
        await add_settlement_adjustment(
            db_session,
            actor=ACTOR,
            settlement_id=settlement.id,
            data=SettlementAdjustmentCreate(kind=SettlementAdjustmentKind.CREDIT, amount_cents=-200, description="Goodwill"),
        )
        await add_settlement_adjustment(
            db_session,
            actor=ACTOR,
            settlement_id=settlement.id,
            data=SettlementAdjustmentCreate(kind=SettlementAdjustmentKind.DEBIT, amount_cents=50, description="Label fee"),
        )
        await add_settlement_adjustment(
            db_session,
            actor=ACTOR,
            settlement_id=settlement.id,
            data=SettlementAdjustmentCreate(
                kind=SettlementAdjustmentKind.PRIOR_PERIOD,
                amount_cents=-30,
                description="Correction of last month",
                related_settlement_id=earlier.id,
            ),
        )
        with pytest.raises(ValueError, match="earlier period"):
            await add_settlement_adjustment(
                db_session,
                actor=ACTOR,
                settlement_id=earlier.id,
                data=SettlementAdjustmentCreate(
                    kind=SettlementAdjustmentKind.PRIOR_PERIOD,
                    amount_cents=10,
                    description="Backwards",
                    related_settlement_id=settlement.id,
                ),
            )
        with pytest.raises(ValueError, match="must reference"):
            await add_settlement_adjustment(
                db_session,
                actor=ACTOR,
                settlement_id=settlement.id,
                data=SettlementAdjustmentCreate(kind=SettlementAdjustmentKind.PRIOR_PERIOD, amount_cents=10, description="x"),
            )

    assert sorted(a.amount_cents for a in settlement.adjustments) == [-50, -30, 200]
    assert settlement.adjustments_cents == 120
    assert settlement.net_cents == 4458 + 120

    async with db_session.begin():
        regenerated = await regenerate_settlement(db_session, actor=ACTOR, settlement_id=settlement.id)

    assert settlement.status == SettlementStatus.SUPERSEDED
    assert settlement.is_current is False
    assert (regenerated.version, regenerated.is_current) == (2, True)
    assert regenerated.previous_settlement_id == settlement.id
    assert regenerated.settlement_number != settlement.settlement_number
    assert regenerated.adjustments_cents == 120
    assert regenerated.net_cents == settlement.net_cents

    async with db_session.begin():
        with pytest.raises(ValueError, match="current settlement version"):
            await regenerate_settlement(db_session, actor=ACTOR, settlement_id=settlement.id)
        with pytest.raises(ValueError, match="Superseded"):
            await finalize_settlement(db_session, actor=ACTOR, settlement_id=settlement.id)

    async with db_session.begin():
        final = await finalize_settlement(db_session, actor=ACTOR, settlement_id=regenerated.id)
        again = await finalize_settlement(db_session, actor=ACTOR, settlement_id=regenerated.id)
    assert final.status == again.status == SettlementStatus.FINALIZED
    assert final.finalized_at is not None

    async with db_session.begin():
        with pytest.raises(ValueError, match="only be added to DRAFT"):
            await add_settlement_adjustment(
                db_session,
                actor=ACTOR,
                settlement_id=regenerated.id,
                data=SettlementAdjustmentCreate(kind=SettlementAdjustmentKind.CREDIT, amount_cents=1, description="late"),
            )
        with pytest.raises(ValueError, match="Finalized settlements"):
            await regenerate_settlement(db_session, actor=ACTOR, settlement_id=regenerated.id)

    current = await list_settlements(db_session, store_id=store.id)
    assert [s.id for s in current] == [regenerated.id, earlier.id]
    everything = await list_settlements(db_session, store_id=store.id, include_superseded=True)
    assert len(everything) == 3

    summary = await settlement_summary(db_session, store_id=store.id, start=prev_start, end=end)
    assert summary.settlement_count == 2
    assert summary.gross_cents == 6000
    assert summary.net_cents == 4458 + 120


@pytest.mark.asyncio
async def test_monthly_settlements_cover_selling_stores_once(db_session) -> None:
    today = utcnow().date()
    async with db_session.begin():
        await _store_with_refunded_order(db_session)
        await make_store(db_session, slug="quiet")
        await make_store(db_session, slug="gone", status=StoreStatus.SUSPENDED)
        created = await generate_monthly_settlements(db_session, actor="scheduler", year=today.year, month=today.month)

    assert sorted(s.gross_cents for s in created) == [0, 6000]

    async with db_session.begin():
        assert await generate_monthly_settlements(db_session, actor="scheduler", year=today.year, month=today.month) == []
