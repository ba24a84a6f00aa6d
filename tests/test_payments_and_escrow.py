from __future__ import annotations

from datetime import date, timedelta

import pytest
from sqlalchemy import func, select

from factories import ACTOR, deliver, make_product, make_store, pay_order, place_order
from mercato.core.clock import ensure_utc, utcnow
from mercato.core.enums import (
    CommissionApplicability,
    CommissionSource,
    EscrowStatus,
    OrderStatus,
    PaymentStatus,
    SellerTier,
)
from mercato.models.commission import CommissionTransaction
from mercato.models.escrow import EscrowTransaction
from mercato.models.payment import PaymentWebhookEvent
from mercato.schemas.commission import CommissionRuleCreate, CommissionRuleUpdate
from mercato.services.commission import (
    calculate_commission,
    commission_total,
    create_rule,
    deactivate_rule,
    get_applicable_rule,
    refund_adjustment_amount,
    update_rule,
)
from mercato.services.escrow import get_escrow_for_sub_order, process_eligible_escrows, release_escrow
from mercato.services.payments import handle_payment_callback, initiate_payment
from mercato.services.providers import MockPaymentProvider


async def _two_store_order(session):
    alpha = await make_store(session, slug="alpha")
    beta = await make_store(session, slug="beta")
    p1 = await make_product(session, store=alpha, sku="A-1", price_cents=3000, category="books")
    p2 = await make_product(session, store=beta, sku="B-1", price_cents=1500)
    order = await place_order(session, lines=[(p1, 2), (p2, 1)])
    return alpha, beta, order


@pytest.mark.asyncio
async def test_card_payment_completes_on_callback_and_holds_escrow(db_session) -> None:
    gateway = MockPaymentProvider()
    async with db_session.begin():
        alpha, beta, order = await _two_store_order(db_session)
        tx = await initiate_payment(db_session, actor=ACTOR, order_id=order.id, provider="card", gateway=gateway)

    assert tx.status == PaymentStatus.PENDING
    assert tx.amount_cents == 8000
    assert tx.redirect_url.startswith("https://pay.mock.local/checkout/")
    assert gateway.calls[0][0] == "initiate_payment"

    async with db_session.begin():
        tx = await handle_payment_callback(
            db_session,
            actor="webhook",
            provider="card",
            event_id="evt-1",
            provider_transaction_id=tx.provider_transaction_id,
            status="captured",
        )

    assert tx.status == PaymentStatus.COMPLETED
    assert order.payment_status == PaymentStatus.COMPLETED
    assert order.status == OrderStatus.PAID
    assert {so.status for so in order.sub_orders} == {OrderStatus.PAID}

    escrows = {e.store_id: e for e in (await db_session.execute(select(EscrowTransaction))).scalars().all()}
    assert set(escrows) == {alpha.id, beta.id}
    # Default commission: 10 % plus 50 cents per sub-order.
    assert (escrows[alpha.id].gross_cents, escrows[alpha.id].commission_cents, escrows[alpha.id].net_cents) == (
        6000,
        650,
        5350,
    )
    assert (escrows[beta.id].gross_cents, escrows[beta.id].commission_cents) == (2000, 250)
    assert all(e.status == EscrowStatus.HELD for e in escrows.values())

    commissions = (await db_session.execute(select(CommissionTransaction))).scalars().all()
    assert len(commissions) == 2
    assert {c.source for c in commissions} == {CommissionSource.DEFAULT}


@pytest.mark.asyncio
async def test_duplicate_callback_is_applied_once(db_session) -> None:
    async with db_session.begin():
        _, _, order = await _two_store_order(db_session)
        tx = await pay_order(db_session, order=order, event_id="evt-dup")

    async with db_session.begin():
        again = await handle_payment_callback(
            db_session,
            actor="webhook",
            provider="card",
            event_id="evt-dup",
            provider_transaction_id=tx.provider_transaction_id,
            status="captured",
        )

    assert again.id == tx.id
    events = (await db_session.execute(select(func.count()).select_from(PaymentWebhookEvent))).scalar_one()
    escrows = (await db_session.execute(select(func.count()).select_from(EscrowTransaction))).scalar_one()
    assert events == 1
    assert escrows == 2


@pytest.mark.asyncio
async def test_failed_callback_stores_sanitized_error_and_rejects_unknown_status(db_session) -> None:
    gateway = MockPaymentProvider()
    async with db_session.begin():
        _, _, order = await _two_store_order(db_session)
        tx = await initiate_payment(db_session, actor=ACTOR, order_id=order.id, provider="card", gateway=gateway)

    async with db_session.begin():
        with pytest.raises(ValueError, match="Unknown payment status"):
            await handle_payment_callback(
                db_session,
                actor="webhook",
                provider="card",
                event_id="evt-odd",
                provider_transaction_id=tx.provider_transaction_id,
                status="teleported",
            )

    async with db_session.begin():
        await handle_payment_callback(
            db_session,
            actor="webhook",
            provider="card",
            event_id="evt-fail",
            provider_transaction_id=tx.provider_transaction_id,
            status="declined",
            error_message="Card 4111111111111111 declined by issuer",
        )

    assert tx.status == PaymentStatus.FAILED
    assert "4111111111111111" not in tx.error_message
    assert order.payment_status == PaymentStatus.FAILED
    assert order.status == OrderStatus.NEW


@pytest.mark.asyncio
async def test_cash_on_delivery_authorizes_then_collects_after_delivery(db_session) -> None:
    async with db_session.begin():
        _, _, order = await _two_store_order(db_session)
        tx = await initiate_payment(db_session, actor=ACTOR, order_id=order.id, provider="cash_on_delivery")

    assert tx.status == PaymentStatus.AUTHORIZED
    assert tx.provider_transaction_id == f"COD-{order.order_number}"
    assert order.status == OrderStatus.PAID
    assert (await db_session.execute(select(func.count()).select_from(EscrowTransaction))).scalar_one() == 0

    first = sorted(order.sub_orders, key=lambda so: so.sub_order_number)[0]
    await db_session.commit()
    async with db_session.begin():
        await deliver(db_session, sub_order_id=first.id)
        await handle_payment_callback(
            db_session,
            actor="courier",
            provider="cash_on_delivery",
            event_id="cod-1",
            provider_transaction_id=tx.provider_transaction_id,
            status="collected",
        )

    assert tx.status == PaymentStatus.COMPLETED
    escrow = await get_escrow_for_sub_order(db_session, first.id)
    # Already delivered: the hold period starts immediately.
    assert escrow.status == EscrowStatus.ELIGIBLE_FOR_PAYOUT
    assert escrow.eligible_at is not None


@pytest.mark.asyncio
async def test_escrow_release_follows_delivery_and_hold_period(db_session) -> None:
    async with db_session.begin():
        _, _, order = await _two_store_order(db_session)
        await pay_order(db_session, order=order)

    first, second = sorted(order.sub_orders, key=lambda so: so.sub_order_number)
    async with db_session.begin():
        with pytest.raises(ValueError, match="DELIVERED"):
            await release_escrow(db_session, actor=ACTOR, escrow_id=first.escrow.id)

    async with db_session.begin():
        await deliver(db_session, sub_order_id=first.id)

    escrow = first.escrow
    assert escrow.status == EscrowStatus.ELIGIBLE_FOR_PAYOUT
    assert ensure_utc(escrow.eligible_at) > utcnow() + timedelta(days=6)

    async with db_session.begin():
        assert await process_eligible_escrows(db_session, actor=ACTOR) == 0
    async with db_session.begin():
        released = await process_eligible_escrows(db_session, actor=ACTOR, now=utcnow() + timedelta(days=8))

    assert released == 1
    assert escrow.status == EscrowStatus.RELEASED
    assert escrow.net_cents == escrow.payable_cents == 5350
    assert second.escrow.status == EscrowStatus.HELD
    assert order.status == OrderStatus.SHIPPED


@pytest.mark.asyncio
async def test_commission_rule_precedence(db_session) -> None:
    day = date(2026, 3, 1)
    async with db_session.begin():
        store = await make_store(db_session, slug="alpha", seller_tier=SellerTier.GOLD)
        other = await make_store(db_session, slug="beta")

        async def rule(name: str, rate_bp: int, kind: CommissionApplicability, **target):
            return await create_rule(
                db_session,
                actor=ACTOR,
                data=CommissionRuleCreate(
                    name=name, rate_bp=rate_bp, applicability=kind, effective_from=date(2026, 1, 1), **target
                ),
            )

        await rule("global", 800, CommissionApplicability.GLOBAL)
        tier = await rule("gold", 600, CommissionApplicability.SELLER_TIER, seller_tier=SellerTier.GOLD)
        seller = await rule("alpha deal", 500, CommissionApplicability.SELLER, store_id=store.id)
        category = await rule("books", 300, CommissionApplicability.CATEGORY, category="Books")

        applied = await get_applicable_rule(
            db_session, on_date=day, store_id=store.id, category="books", seller_tier=SellerTier.GOLD
        )
        assert (applied.source, applied.rule_id, applied.rate_bp) == (CommissionSource.CATEGORY, category.id, 300)

        applied = await get_applicable_rule(
            db_session, on_date=day, store_id=store.id, category="toys", seller_tier=SellerTier.GOLD
        )
        assert (applied.source, applied.rule_id) == (CommissionSource.SELLER, seller.id)

        await deactivate_rule(db_session, actor=ACTOR, rule_id=seller.id)
        applied = await get_applicable_rule(
            db_session, on_date=day, store_id=store.id, category=None, seller_tier=SellerTier.GOLD
        )
        assert (applied.source, applied.rule_id) == (CommissionSource.SELLER_TIER, tier.id)

        applied = await get_applicable_rule(
            db_session, on_date=day, store_id=other.id, category=None, seller_tier=None
        )
        assert (applied.source, applied.rate_bp) == (CommissionSource.GLOBAL, 800)

        # Before any rule takes effect the configured default applies.
        applied = await get_applicable_rule(
            db_session, on_date=date(2025, 12, 31), store_id=other.id, category=None, seller_tier=None
        )
        assert (applied.source, applied.rate_bp, applied.fixed_cents) == (CommissionSource.DEFAULT, 1000, 50)

        with pytest.raises(ValueError, match="Overlapping"):
            await rule("books again", 400, CommissionApplicability.CATEGORY, category="books")
        with pytest.raises(ValueError, match="require a store_id"):
            await rule("broken", 400, CommissionApplicability.SELLER)


def test_calculate_commission_and_refund_share() -> None:
    assert calculate_commission(gross_cents=6000, rate_bp=1000, fixed_cents=50) == 650
    assert calculate_commission(gross_cents=30, rate_bp=1000, fixed_cents=50) == 30
    assert calculate_commission(gross_cents=0, rate_bp=1000, fixed_cents=50) == 0
    assert refund_adjustment_amount(original_commission_cents=650, refund_cents=3000, gross_cents=6000) == 325
    assert refund_adjustment_amount(original_commission_cents=650, refund_cents=9000, gross_cents=6000) == 650
    assert refund_adjustment_amount(original_commission_cents=650, refund_cents=0, gross_cents=6000) == 0


@pytest.mark.asyncio
async def test_update_rule_checks_overlap_against_other_rules_only(db_session) -> None:
    async with db_session.begin():
        spring = await create_rule(
            db_session,
            actor=ACTOR,
            data=CommissionRuleCreate(
                name="books spring",
                rate_bp=300,
                applicability=CommissionApplicability.CATEGORY,
                category="books",
                effective_from=date(2026, 1, 1),
                effective_to=date(2026, 6, 30),
            ),
        )
        await create_rule(
            db_session,
            actor=ACTOR,
            data=CommissionRuleCreate(
                name="books summer",
                rate_bp=400,
                applicability=CommissionApplicability.CATEGORY,
                category="books",
                effective_from=date(2026, 7, 1),
            ),
        )

        # Same window, new rate: the rule does not clash with itself.
        updated = await update_rule(
            db_session,
            actor=ACTOR,
            rule_id=spring.id,
            data=CommissionRuleUpdate(
                name="books spring",
                rate_bp=350,
                applicability=CommissionApplicability.CATEGORY,
                category="books",
                effective_from=date(2026, 1, 1),
                effective_to=date(2026, 6, 30),
            ),
        )
        assert updated.rate_bp == 350
        spring_id = spring.id

    async with db_session.begin():
        with pytest.raises(ValueError, match="Overlapping active commission rule: books summer"):
            await update_rule(
                db_session,
                actor=ACTOR,
                rule_id=spring_id,
                data=CommissionRuleUpdate(
                    name="books spring",
                    rate_bp=350,
                    applicability=CommissionApplicability.CATEGORY,
                    category="Books",
                    effective_from=date(2026, 1, 1),
                ),
            )

    async with db_session.begin():
        # An inactive rule may overlap.
        parked = await update_rule(
            db_session,
            actor=ACTOR,
            rule_id=spring_id,
            data=CommissionRuleUpdate(
                name="books spring",
                rate_bp=350,
                applicability=CommissionApplicability.CATEGORY,
                category="books",
                effective_from=date(2026, 1, 1),
                is_active=False,
            ),
        )
        assert (parked.is_active, parked.effective_to) == (False, None)


@pytest.mark.asyncio
async def test_commission_total_sums_transactions_in_window(db_session) -> None:
    async with db_session.begin():
        alpha, beta, order = await _two_store_order(db_session)
        await pay_order(db_session, order=order)

        now = utcnow()
        window = {"start": now - timedelta(days=1), "end": now + timedelta(days=1)}
        assert await commission_total(db_session, store_id=alpha.id, **window) == 650
        assert await commission_total(db_session, store_id=beta.id, **window) == 250
        assert (
            await commission_total(
                db_session, store_id=alpha.id, start=now - timedelta(days=30), end=now - timedelta(days=1)
            )
            == 0
        )
