from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import date, datetime

from sqlalchemy import and_, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from mercato.core.clock import utcnow
from mercato.core.config import get_settings
from mercato.core.enums import CommissionApplicability, CommissionSource, CommissionTransactionKind, SellerTier
from mercato.models.commission import CommissionRule, CommissionTransaction
from mercato.models.escrow import EscrowTransaction
from mercato.schemas.commission import CommissionRuleCreate, CommissionRuleUpdate
from mercato.services.audit import audit_log, snapshot
from mercato.services.money import apply_rate_bp, prorate


# Most specific rule kind first.
_PRECEDENCE = (
    CommissionApplicability.CATEGORY,
    CommissionApplicability.SELLER,
    CommissionApplicability.SELLER_TIER,
    CommissionApplicability.GLOBAL,
)

_RULE_FIELDS = (
    "name",
    "rate_bp",
    "fixed_cents",
    "applicability",
    "category",
    "store_id",
    "seller_tier",
    "effective_from",
    "effective_to",
    "priority",
    "is_active",
)


@dataclass(frozen=True)
class AppliedCommission:
    source: CommissionSource
    rule_id: uuid.UUID | None
    rate_bp: int
    fixed_cents: int


def _validate_rule_target(data: CommissionRuleCreate) -> None:
    if data.effective_to is not None and data.effective_to < data.effective_from:
        raise ValueError("effective_to must be on or after effective_from")

    kind = data.applicability
    if kind == CommissionApplicability.CATEGORY and not data.category:
        raise ValueError("CATEGORY rules require a category")
    if kind == CommissionApplicability.SELLER and data.store_id is None:
        raise ValueError("SELLER rules require a store_id")
    if kind == CommissionApplicability.SELLER_TIER and data.seller_tier is None:
        raise ValueError("SELLER_TIER rules require a seller_tier")

    # Only the target field of the rule kind may be set.
    extra = {
        CommissionApplicability.GLOBAL: ("category", "store_id", "seller_tier"),
        CommissionApplicability.CATEGORY: ("store_id", "seller_tier"),
        CommissionApplicability.SELLER: ("category", "seller_tier"),
        CommissionApplicability.SELLER_TIER: ("category", "store_id"),
    }[kind]
    for name in extra:
        if getattr(data, name) is not None:
            raise ValueError(f"{kind} rules must not set {name}")


async def _ensure_no_overlap(
    session: AsyncSession,
    *,
    data: CommissionRuleCreate,
    exclude_id: uuid.UUID | None = None,
) -> None:
    if not data.is_active:
        return

    stmt = select(CommissionRule.id, CommissionRule.name).where(
        CommissionRule.is_active.is_(True),
        CommissionRule.applicability == data.applicability,
        or_(CommissionRule.effective_to.is_(None), CommissionRule.effective_to >= data.effective_from),
    )
    if data.effective_to is not None:
        stmt = stmt.where(CommissionRule.effective_from <= data.effective_to)
    if data.applicability == CommissionApplicability.CATEGORY:
        stmt = stmt.where(func.lower(CommissionRule.category) == data.category.lower())
    elif data.applicability == CommissionApplicability.SELLER:
        stmt = stmt.where(CommissionRule.store_id == data.store_id)
    elif data.applicability == CommissionApplicability.SELLER_TIER:
        stmt = stmt.where(CommissionRule.seller_tier == data.seller_tier)
    if exclude_id is not None:
        stmt = stmt.where(CommissionRule.id != exclude_id)

    clash = (await session.execute(stmt.limit(1))).first()
    if clash is not None:
        raise ValueError(f"Overlapping active commission rule: {clash.name} ({clash.id})")


async def create_rule(session: AsyncSession, *, actor: str, data: CommissionRuleCreate) -> CommissionRule:
    _validate_rule_target(data)
    await _ensure_no_overlap(session, data=data)

    rule = CommissionRule(**data.model_dump())
    session.add(rule)
    await session.flush()

    await audit_log(
        session,
        actor=actor,
        entity_type="commission_rule",
        entity_id=rule.id,
        action="create",
        after=snapshot(rule, *_RULE_FIELDS),
    )
    return rule


async def update_rule(
    session: AsyncSession,
    *,
    actor: str,
    rule_id: uuid.UUID,
    data: CommissionRuleUpdate,
) -> CommissionRule:
    rule = await session.get(CommissionRule, rule_id)
    if rule is None:
        raise ValueError("Commission rule not found")

    _validate_rule_target(data)
    await _ensure_no_overlap(session, data=data, exclude_id=rule.id)

    before = snapshot(rule, *_RULE_FIELDS)
    for key, value in data.model_dump().items():
        setattr(rule, key, value)

    await audit_log(
        session,
        actor=actor,
        entity_type="commission_rule",
        entity_id=rule.id,
        action="update",
        before=before,
        after=snapshot(rule, *_RULE_FIELDS),
    )
    return rule


async def deactivate_rule(session: AsyncSession, *, actor: str, rule_id: uuid.UUID) -> CommissionRule:
    rule = await session.get(CommissionRule, rule_id)
    if rule is None:
        raise ValueError("Commission rule not found")
    if rule.is_active:
        rule.is_active = False
        await audit_log(
            session,
            actor=actor,
            entity_type="commission_rule",
            entity_id=rule.id,
            action="deactivate",
            before={"is_active": True},
            after={"is_active": False},
        )
    return rule


async def get_applicable_rule(
    session: AsyncSession,
    *,
    on_date: date,
    store_id: uuid.UUID,
    category: str | None,
    seller_tier: SellerTier | None,
) -> AppliedCommission:
    """
    Pick the commission rule for a sale.

    CATEGORY beats SELLER beats SELLER_TIER beats GLOBAL; within a kind the highest priority
    and then the latest effective_from wins. Without any matching rule the configured default applies.
    """
    targets = [CommissionRule.applicability == CommissionApplicability.GLOBAL]
    targets.append(
        and_(CommissionRule.applicability == CommissionApplicability.SELLER, CommissionRule.store_id == store_id)
    )
    if category:
        targets.append(
            and_(
                CommissionRule.applicability == CommissionApplicability.CATEGORY,
                func.lower(CommissionRule.category) == category.lower(),
            )
        )
    if seller_tier is not None:
        targets.append(
            and_(
                CommissionRule.applicability == CommissionApplicability.SELLER_TIER,
                CommissionRule.seller_tier == seller_tier,
            )
        )

    rules = (
        await session.execute(
            select(CommissionRule)
            .where(
                CommissionRule.is_active.is_(True),
                CommissionRule.effective_from <= on_date,
                or_(CommissionRule.effective_to.is_(None), CommissionRule.effective_to >= on_date),
                or_(*targets),
            )
            .order_by(CommissionRule.priority.desc(), CommissionRule.effective_from.desc())
        )
    ).scalars().all()

    for kind in _PRECEDENCE:
        rule = next((r for r in rules if r.applicability == kind), None)
        if rule is not None:
            return AppliedCommission(
                source=CommissionSource(kind.value),
                rule_id=rule.id,
                rate_bp=rule.rate_bp,
                fixed_cents=rule.fixed_cents,
            )

    settings = get_settings()
    return AppliedCommission(
        source=CommissionSource.DEFAULT,
        rule_id=None,
        rate_bp=settings.commission_default_rate_bp,
        fixed_cents=settings.commission_default_fixed_cents,
    )


def calculate_commission(*, gross_cents: int, rate_bp: int, fixed_cents: int) -> int:
    if gross_cents <= 0:
        return 0
    amount = apply_rate_bp(amount_cents=gross_cents, rate_bp=rate_bp) + fixed_cents
    return min(amount, gross_cents)


async def record_initial_commission(
    session: AsyncSession,
    *,
    escrow: EscrowTransaction,
    applied: AppliedCommission,
    occurred_at: datetime | None = None,
) -> CommissionTransaction:
    tx = CommissionTransaction(
        escrow_id=escrow.id,
        store_id=escrow.store_id,
        sub_order_id=escrow.sub_order_id,
        kind=CommissionTransactionKind.INITIAL,
        source=applied.source,
        rule_id=applied.rule_id,
        rate_bp=applied.rate_bp,
        fixed_cents=applied.fixed_cents,
        base_cents=escrow.gross_cents,
        amount_cents=escrow.commission_cents,
        description="Commission on sub-order",
        occurred_at=occurred_at or utcnow(),
    )
    session.add(tx)
    await session.flush()
    return tx


def refund_adjustment_amount(*, original_commission_cents: int, refund_cents: int, gross_cents: int) -> int:
    """Commission share given back for a refund of `refund_cents` out of `gross_cents`."""
    if gross_cents <= 0 or refund_cents <= 0:
        return 0
    return prorate(amount_cents=original_commission_cents, part_cents=min(refund_cents, gross_cents), whole_cents=gross_cents)


async def record_refund_adjustment(
    session: AsyncSession,
    *,
    escrow: EscrowTransaction,
    refund_cents: int,
) -> CommissionTransaction | None:
    """Book the negative commission for a buyer refund and keep the escrow's commission refund in step."""
    remaining = escrow.commission_cents - escrow.commission_refunded_cents
    if escrow.refunded_cents >= escrow.gross_cents:
        # The last refund gives back whatever commission is left so rounding never strands cents.
        adjustment = remaining
    else:
        adjustment = min(
            remaining,
            refund_adjustment_amount(
                original_commission_cents=escrow.commission_cents,
                refund_cents=refund_cents,
                gross_cents=escrow.gross_cents,
            ),
        )
    if adjustment <= 0:
        return None

    initial = (
        await session.execute(
            select(CommissionTransaction).where(
                CommissionTransaction.escrow_id == escrow.id,
                CommissionTransaction.kind == CommissionTransactionKind.INITIAL,
            )
        )
    ).scalar_one_or_none()

    escrow.commission_refunded_cents += adjustment
    tx = CommissionTransaction(
        escrow_id=escrow.id,
        store_id=escrow.store_id,
        sub_order_id=escrow.sub_order_id,
        kind=CommissionTransactionKind.REFUND_ADJUSTMENT,
        source=initial.source if initial is not None else CommissionSource.DEFAULT,
        rule_id=initial.rule_id if initial is not None else None,
        rate_bp=initial.rate_bp if initial is not None else 0,
        fixed_cents=initial.fixed_cents if initial is not None else 0,
        base_cents=refund_cents,
        amount_cents=-adjustment,
        description="Commission refund adjustment",
        occurred_at=utcnow(),
    )
    session.add(tx)
    await session.flush()
    return tx


async def commission_total(
    session: AsyncSession,
    *,
    store_id: uuid.UUID,
    start: datetime,
    end: datetime,
) -> int:
    """Net commission booked for a store in [start, end)."""
    total = (
        await session.execute(
            select(func.coalesce(func.sum(CommissionTransaction.amount_cents), 0)).where(
                CommissionTransaction.store_id == store_id,
                CommissionTransaction.occurred_at >= start,
                CommissionTransaction.occurred_at < end,
            )
        )
    ).scalar_one()
    return int(total)


async def list_commission_transactions(
    session: AsyncSession,
    *,
    store_id: uuid.UUID,
    start: datetime,
    end: datetime,
) -> list[CommissionTransaction]:
    rows = (
        await session.execute(
            select(CommissionTransaction)
            .where(
                CommissionTransaction.store_id == store_id,
                CommissionTransaction.occurred_at >= start,
                CommissionTransaction.occurred_at < end,
            )
            .order_by(CommissionTransaction.occurred_at, CommissionTransaction.id)
        )
    ).scalars()
    return list(rows.all())
