from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import date

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from mercato.core.clock import start_of_day, utcnow
from mercato.core.config import get_settings
from mercato.core.enums import DocumentType, PayoutStatus, SettlementAdjustmentKind, SettlementStatus, StoreStatus
from mercato.models.escrow import EscrowTransaction
from mercato.models.order import Order, SellerSubOrder
from mercato.models.payout import Payout
from mercato.models.settlement import Settlement, SettlementAdjustment, SettlementItem
from mercato.models.store import Store
from mercato.schemas.settlements import SettlementAdjustmentCreate
from mercato.services.audit import audit_log
from mercato.services.documents import next_document_number


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SettlementSummary:
    store_id: uuid.UUID
    settlement_count: int
    gross_cents: int
    refunds_cents: int
    commission_cents: int
    adjustments_cents: int
    net_cents: int
    payouts_cents: int


def month_bounds(year: int, month: int) -> tuple[date, date]:
    start = date(year, month, 1)
    end = date(year + 1, 1, 1) if month == 12 else date(year, month + 1, 1)
    return start, end


def previous_month(today: date) -> tuple[int, int]:
    return (today.year - 1, 12) if today.month == 1 else (today.year, today.month - 1)


def _settlement_query():
    return (
        select(Settlement)
        .options(selectinload(Settlement.items), selectinload(Settlement.adjustments))
        .execution_options(populate_existing=True)
    )


async def get_settlement(session: AsyncSession, settlement_id: uuid.UUID) -> Settlement | None:
    return (await session.execute(_settlement_query().where(Settlement.id == settlement_id))).scalar_one_or_none()


async def _current_settlement(
    session: AsyncSession, *, store_id: uuid.UUID, period_start: date, period_end: date
) -> Settlement | None:
    return (
        await session.execute(
            _settlement_query().where(
                Settlement.store_id == store_id,
                Settlement.period_start == period_start,
                Settlement.period_end == period_end,
                Settlement.is_current.is_(True),
            )
        )
    ).scalar_one_or_none()


async def _build_items(
    session: AsyncSession, *, store_id: uuid.UUID, period_start: date, period_end: date
) -> list[SettlementItem]:
    rows = (
        await session.execute(
            select(SellerSubOrder, EscrowTransaction, Order.placed_at)
            .join(Order, Order.id == SellerSubOrder.order_id)
            .join(EscrowTransaction, EscrowTransaction.sub_order_id == SellerSubOrder.id)
            .where(
                SellerSubOrder.store_id == store_id,
                Order.placed_at >= start_of_day(period_start),
                Order.placed_at < start_of_day(period_end),
            )
            .order_by(Order.placed_at, SellerSubOrder.sub_order_number)
        )
    ).all()

    items: list[SettlementItem] = []
    for sub_order, escrow, placed_at in rows:
        commission = escrow.effective_commission_cents
        items.append(
            SettlementItem(
                sub_order_id=sub_order.id,
                escrow_id=escrow.id,
                sub_order_number=sub_order.sub_order_number,
                order_placed_at=placed_at,
                gross_cents=escrow.gross_cents,
                refunded_cents=escrow.refunded_cents,
                commission_cents=commission,
                net_cents=escrow.gross_cents - escrow.refunded_cents - commission,
            )
        )
    return items


async def _payouts_total(session: AsyncSession, *, store_id: uuid.UUID, period_start: date, period_end: date) -> int:
    total = (
        await session.execute(
            select(func.coalesce(func.sum(Payout.amount_cents), 0)).where(
                Payout.store_id == store_id,
                Payout.status == PayoutStatus.PAID,
                Payout.completed_at >= start_of_day(period_start),
                Payout.completed_at < start_of_day(period_end),
            )
        )
    ).scalar_one()
    return int(total)


async def _new_settlement(
    session: AsyncSession,
    *,
    store_id: uuid.UUID,
    period_start: date,
    period_end: date,
    version: int = 1,
    previous: Settlement | None = None,
) -> Settlement:
    items = await _build_items(session, store_id=store_id, period_start=period_start, period_end=period_end)
    generated_at = utcnow()
    settlement = Settlement(
        settlement_number=await next_document_number(
            session, doc_type=DocumentType.SETTLEMENT, issue_date=generated_at.date()
        ),
        store_id=store_id,
        period_start=period_start,
        period_end=period_end,
        status=SettlementStatus.DRAFT,
        version=version,
        is_current=True,
        previous_settlement_id=previous.id if previous is not None else None,
        currency_code=get_settings().currency_code,
        gross_cents=sum(i.gross_cents for i in items),
        refunds_cents=sum(i.refunded_cents for i in items),
        commission_cents=sum(i.commission_cents for i in items),
        adjustments_cents=0,
        payouts_cents=await _payouts_total(
            session, store_id=store_id, period_start=period_start, period_end=period_end
        ),
        generated_at=generated_at,
        items=items,
        adjustments=[],
    )
    settlement.recompute_net()
    return settlement


async def generate_settlement(
    session: AsyncSession,
    *,
    actor: str,
    store_id: uuid.UUID,
    period_start: date,
    period_end: date,
) -> Settlement:
    """Settle a store's sub-orders from orders placed in [period_start, period_end)."""
    if period_end <= period_start:
        raise ValueError("period_end must be after period_start")
    if await session.get(Store, store_id) is None:
        raise ValueError("Store not found")
    if await _current_settlement(session, store_id=store_id, period_start=period_start, period_end=period_end):
        raise ValueError("A settlement already exists for this store and period; regenerate it instead")

    settlement = await _new_settlement(session, store_id=store_id, period_start=period_start, period_end=period_end)
    session.add(settlement)
    await session.flush()

    await audit_log(
        session,
        actor=actor,
        entity_type="settlement",
        entity_id=settlement.id,
        action="generate",
        after={
            "settlement_number": settlement.settlement_number,
            "store_id": store_id,
            "period_start": period_start,
            "period_end": period_end,
            "net_cents": settlement.net_cents,
            "items": len(settlement.items),
        },
    )
    return settlement


async def generate_monthly_settlements(session: AsyncSession, *, actor: str, year: int, month: int) -> list[Settlement]:
    period_start, period_end = month_bounds(year, month)
    store_ids = (
        await session.execute(
            select(Store.id)
            .where(Store.status.in_((StoreStatus.ACTIVE, StoreStatus.LIMITED_ACTIVE)))
            .order_by(Store.slug)
        )
    ).scalars().all()

    created: list[Settlement] = []
    for store_id in store_ids:
        if await _current_settlement(session, store_id=store_id, period_start=period_start, period_end=period_end):
            continue
        created.append(
            await generate_settlement(
                session, actor=actor, store_id=store_id, period_start=period_start, period_end=period_end
            )
        )

    logger.info("Generated %s settlement(s) for %04d-%02d", len(created), year, month)
    return created


async def regenerate_settlement(session: AsyncSession, *, actor: str, settlement_id: uuid.UUID) -> Settlement:
    old = await get_settlement(session, settlement_id)
    if old is None:
        raise ValueError("Settlement not found")
    if old.status == SettlementStatus.FINALIZED:
        raise ValueError("Finalized settlements cannot be regenerated")
    if not old.is_current:
        raise ValueError("Only the current settlement version can be regenerated")

    old.status = SettlementStatus.SUPERSEDED
    old.is_current = False
    await session.flush()

    new = await _new_settlement(
        session,
        store_id=old.store_id,
        period_start=old.period_start,
        period_end=old.period_end,
        version=old.version + 1,
        previous=old,
    )
    for adj in old.adjustments:
        new.adjustments.append(
            SettlementAdjustment(
                kind=adj.kind,
                amount_cents=adj.amount_cents,
                description=adj.description,
                related_settlement_id=adj.related_settlement_id,
                created_by=adj.created_by,
            )
        )
    new.adjustments_cents = sum(a.amount_cents for a in new.adjustments)
    new.recompute_net()
    session.add(new)
    await session.flush()

    await audit_log(
        session,
        actor=actor,
        entity_type="settlement",
        entity_id=new.id,
        action="regenerate",
        before={"settlement_id": old.id, "version": old.version, "net_cents": old.net_cents},
        after={"settlement_number": new.settlement_number, "version": new.version, "net_cents": new.net_cents},
    )
    return new


async def finalize_settlement(session: AsyncSession, *, actor: str, settlement_id: uuid.UUID) -> Settlement:
    settlement = await get_settlement(session, settlement_id)
    if settlement is None:
        raise ValueError("Settlement not found")
    if settlement.status == SettlementStatus.FINALIZED:
        return settlement
    if settlement.status == SettlementStatus.SUPERSEDED:
        raise ValueError("Superseded settlements cannot be finalized")

    settlement.status = SettlementStatus.FINALIZED
    settlement.finalized_at = utcnow()
    await audit_log(
        session,
        actor=actor,
        entity_type="settlement",
        entity_id=settlement.id,
        action="finalize",
        before={"status": SettlementStatus.DRAFT},
        after={"status": settlement.status, "net_cents": settlement.net_cents},
    )
    return settlement


def _signed_adjustment(data: SettlementAdjustmentCreate) -> int:
    if data.amount_cents == 0:
        raise ValueError("Adjustment amount must not be 0")
    if data.kind == SettlementAdjustmentKind.CREDIT:
        return abs(data.amount_cents)
    if data.kind == SettlementAdjustmentKind.DEBIT:
        return -abs(data.amount_cents)
    return data.amount_cents


async def add_settlement_adjustment(
    session: AsyncSession,
    *,
    actor: str,
    settlement_id: uuid.UUID,
    data: SettlementAdjustmentCreate,
) -> SettlementAdjustment:
    settlement = await get_settlement(session, settlement_id)
    if settlement is None:
        raise ValueError("Settlement not found")
    if settlement.status != SettlementStatus.DRAFT:
        raise ValueError(f"Adjustments can only be added to DRAFT settlements (status={settlement.status})")

    if data.kind == SettlementAdjustmentKind.PRIOR_PERIOD:
        if data.related_settlement_id is None:
            raise ValueError("PRIOR_PERIOD adjustments must reference the related settlement")
        related = await session.get(Settlement, data.related_settlement_id)
        if related is None or related.store_id != settlement.store_id:
            raise ValueError("Related settlement not found for this store")
        if related.period_start >= settlement.period_start:
            raise ValueError("Related settlement must belong to an earlier period")

    adj = SettlementAdjustment(
        kind=data.kind,
        amount_cents=_signed_adjustment(data),
        description=data.description.strip(),
        related_settlement_id=data.related_settlement_id,
        created_by=actor,
    )
    settlement.adjustments.append(adj)
    settlement.adjustments_cents += adj.amount_cents
    settlement.recompute_net()
    await session.flush()

    await audit_log(
        session,
        actor=actor,
        entity_type="settlement",
        entity_id=settlement.id,
        action="add_adjustment",
        after={
            "adjustment_id": adj.id,
            "kind": adj.kind,
            "amount_cents": adj.amount_cents,
            "adjustments_cents": settlement.adjustments_cents,
            "net_cents": settlement.net_cents,
        },
    )
    return adj


async def list_settlements(
    session: AsyncSession,
    *,
    store_id: uuid.UUID,
    include_superseded: bool = False,
) -> list[Settlement]:
    stmt = _settlement_query().where(Settlement.store_id == store_id)
    if not include_superseded:
        stmt = stmt.where(Settlement.is_current.is_(True))
    stmt = stmt.order_by(Settlement.period_start.desc(), Settlement.version.desc())
    return list((await session.execute(stmt)).scalars().all())


async def settlement_summary(
    session: AsyncSession,
    *,
    store_id: uuid.UUID,
    start: date,
    end: date,
) -> SettlementSummary:
    """Totals over the current settlements whose period lies inside [start, end)."""
    row = (
        await session.execute(
            select(
                func.count(Settlement.id),
                func.coalesce(func.sum(Settlement.gross_cents), 0),
                func.coalesce(func.sum(Settlement.refunds_cents), 0),
                func.coalesce(func.sum(Settlement.commission_cents), 0),
                func.coalesce(func.sum(Settlement.adjustments_cents), 0),
                func.coalesce(func.sum(Settlement.net_cents), 0),
                func.coalesce(func.sum(Settlement.payouts_cents), 0),
            ).where(
                Settlement.store_id == store_id,
                Settlement.is_current.is_(True),
                Settlement.period_start >= start,
                Settlement.period_end <= end,
            )
        )
    ).one()
    count, gross, refunds, commission, adjustments, net, payouts = row
    return SettlementSummary(
        store_id=store_id,
        settlement_count=int(count),
        gross_cents=int(gross),
        refunds_cents=int(refunds),
        commission_cents=int(commission),
        adjustments_cents=int(adjustments),
        net_cents=int(net),
        payouts_cents=int(payouts),
    )
