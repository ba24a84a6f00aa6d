from __future__ import annotations

import calendar
import logging
import uuid
from dataclasses import dataclass
from datetime import date, datetime, timedelta

from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from mercato.core.clock import utcnow
from mercato.core.config import get_settings
from mercato.core.enums import DocumentType, EscrowStatus, PayoutFrequency, PayoutStatus
from mercato.models.escrow import EscrowTransaction
from mercato.models.payout import Payout, PayoutMethod, PayoutSchedule
from mercato.models.store import Store
from mercato.schemas.payouts import PayoutMethodCreate, PayoutScheduleUpsert
from mercato.services.audit import audit_log
from mercato.services.documents import next_document_number
from mercato.services.payment_status import sanitize_error_message
from mercato.services.providers import PaymentProvider, get_payment_provider


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EligibleBalance:
    store_id: uuid.UUID
    escrow_count: int
    amount_cents: int


async def _require_store(session: AsyncSession, store_id: uuid.UUID) -> Store:
    store = await session.get(Store, store_id)
    if store is None:
        raise ValueError("Store not found")
    return store


async def add_payout_method(
    session: AsyncSession,
    *,
    actor: str,
    store_id: uuid.UUID,
    data: PayoutMethodCreate,
) -> PayoutMethod:
    await _require_store(session, store_id)

    existing_default = (
        await session.execute(
            select(PayoutMethod.id).where(
                PayoutMethod.store_id == store_id,
                PayoutMethod.is_default.is_(True),
                PayoutMethod.is_active.is_(True),
            )
        )
    ).first()
    # The first method of a store becomes its default.
    make_default = data.is_default or existing_default is None
    if make_default:
        await session.execute(
            update(PayoutMethod).where(PayoutMethod.store_id == store_id).values(is_default=False)
        )

    method = PayoutMethod(
        store_id=store_id,
        kind=data.kind,
        label=data.label.strip(),
        account_ref=data.account_ref.strip(),
        account_holder=data.account_holder.strip(),
        is_default=make_default,
        is_active=True,
    )
    session.add(method)
    await session.flush()

    await audit_log(
        session,
        actor=actor,
        entity_type="payout_method",
        entity_id=method.id,
        action="create",
        after={"store_id": store_id, "kind": method.kind, "label": method.label, "is_default": method.is_default},
    )
    return method


async def default_payout_method(session: AsyncSession, *, store_id: uuid.UUID) -> PayoutMethod | None:
    return (
        await session.execute(
            select(PayoutMethod).where(
                PayoutMethod.store_id == store_id,
                PayoutMethod.is_default.is_(True),
                PayoutMethod.is_active.is_(True),
            )
        )
    ).scalar_one_or_none()


def calculate_next_payout_date(
    *,
    frequency: PayoutFrequency,
    today: date,
    day_of_week: int | None = None,
    day_of_month: int | None = None,
) -> date:
    """
    Next payout date strictly after `today`.

    Weekly runs on the next `day_of_week` (a week ahead when that is today), biweekly one week later than
    that. Monthly runs on `day_of_month` of this month if still ahead, otherwise next month, clamped to the
    month length.
    """
    if frequency in {PayoutFrequency.WEEKLY, PayoutFrequency.BIWEEKLY}:
        if day_of_week is None:
            raise ValueError(f"{frequency} payout schedules require day_of_week")
        days_ahead = (day_of_week - today.weekday()) % 7 or 7
        next_date = today + timedelta(days=days_ahead)
        if frequency == PayoutFrequency.BIWEEKLY:
            next_date += timedelta(days=7)
        return next_date

    if day_of_month is None:
        raise ValueError("MONTHLY payout schedules require day_of_month")
    if today.day < day_of_month:
        last = calendar.monthrange(today.year, today.month)[1]
        return today.replace(day=min(day_of_month, last))
    year, month = (today.year + 1, 1) if today.month == 12 else (today.year, today.month + 1)
    last = calendar.monthrange(year, month)[1]
    return date(year, month, min(day_of_month, last))


def _validate_schedule(data: PayoutScheduleUpsert) -> None:
    if data.frequency in {PayoutFrequency.WEEKLY, PayoutFrequency.BIWEEKLY}:
        if data.day_of_week is None:
            raise ValueError(f"{data.frequency} payout schedules require day_of_week (0-6)")
        if data.day_of_month is not None:
            raise ValueError(f"{data.frequency} payout schedules do not use day_of_month")
    else:
        if data.day_of_month is None:
            raise ValueError("MONTHLY payout schedules require day_of_month (1-28)")
        if data.day_of_week is not None:
            raise ValueError("MONTHLY payout schedules do not use day_of_week")


async def upsert_payout_schedule(
    session: AsyncSession,
    *,
    actor: str,
    store_id: uuid.UUID,
    data: PayoutScheduleUpsert,
    today: date | None = None,
) -> PayoutSchedule:
    await _require_store(session, store_id)
    _validate_schedule(data)
    today = today or utcnow().date()

    schedule = (
        await session.execute(select(PayoutSchedule).where(PayoutSchedule.store_id == store_id))
    ).scalar_one_or_none()
    before = None
    if schedule is None:
        schedule = PayoutSchedule(store_id=store_id)
        session.add(schedule)
    else:
        before = {
            "frequency": schedule.frequency,
            "day_of_week": schedule.day_of_week,
            "day_of_month": schedule.day_of_month,
            "minimum_cents": schedule.minimum_cents,
            "is_active": schedule.is_active,
        }

    schedule.frequency = data.frequency
    schedule.day_of_week = data.day_of_week
    schedule.day_of_month = data.day_of_month
    schedule.minimum_cents = (
        data.minimum_cents if data.minimum_cents is not None else get_settings().payout_minimum_cents
    )
    schedule.is_active = data.is_active
    schedule.next_payout_date = calculate_next_payout_date(
        frequency=data.frequency, today=today, day_of_week=data.day_of_week, day_of_month=data.day_of_month
    )
    await session.flush()

    await audit_log(
        session,
        actor=actor,
        entity_type="payout_schedule",
        entity_id=schedule.id,
        action="create" if before is None else "update",
        before=before,
        after={
            "frequency": schedule.frequency,
            "day_of_week": schedule.day_of_week,
            "day_of_month": schedule.day_of_month,
            "minimum_cents": schedule.minimum_cents,
            "is_active": schedule.is_active,
            "next_payout_date": schedule.next_payout_date,
        },
    )
    return schedule


def _unpaid_escrows_stmt(store_id: uuid.UUID):
    return (
        select(EscrowTransaction)
        .where(
            EscrowTransaction.store_id == store_id,
            EscrowTransaction.status == EscrowStatus.RELEASED,
            EscrowTransaction.payout_id.is_(None),
        )
        .order_by(EscrowTransaction.released_at, EscrowTransaction.id)
    )


async def eligible_balance(session: AsyncSession, *, store_id: uuid.UUID) -> EligibleBalance:
    escrows = (await session.execute(_unpaid_escrows_stmt(store_id))).scalars().all()
    return EligibleBalance(
        store_id=store_id,
        escrow_count=len(escrows),
        amount_cents=sum(e.payable_cents for e in escrows),
    )


async def create_payout(
    session: AsyncSession,
    *,
    actor: str,
    store_id: uuid.UUID,
    schedule: PayoutSchedule | None = None,
    scheduled_for: date | None = None,
) -> Payout | None:
    """
    Bundle the store's released, unpaid escrows into one payout.

    Returns None when the balance is below the minimum; the escrows stay unlinked and roll over into the
    next run.
    """
    await _require_store(session, store_id)
    method = await default_payout_method(session, store_id=store_id)
    if method is None:
        raise ValueError("Store has no default payout method")

    escrows = list((await session.execute(_unpaid_escrows_stmt(store_id).with_for_update())).scalars().all())
    if not escrows:
        raise ValueError("Store has no released escrow balance to pay out")

    amount = sum(e.payable_cents for e in escrows)
    minimum = schedule.minimum_cents if schedule is not None else get_settings().payout_minimum_cents
    if amount <= 0 or amount < minimum:
        logger.info("Payout for store %s skipped: balance %s below minimum %s", store_id, amount, minimum)
        return None

    scheduled_for = scheduled_for or utcnow().date()
    payout = Payout(
        payout_number=await next_document_number(session, doc_type=DocumentType.PAYOUT, issue_date=scheduled_for),
        store_id=store_id,
        schedule_id=schedule.id if schedule is not None else None,
        payout_method_id=method.id,
        status=PayoutStatus.SCHEDULED,
        amount_cents=amount,
        currency_code=get_settings().currency_code,
        scheduled_for=scheduled_for,
        retry_count=0,
    )
    session.add(payout)
    await session.flush()
    for escrow in escrows:
        escrow.payout_id = payout.id

    await audit_log(
        session,
        actor=actor,
        entity_type="payout",
        entity_id=payout.id,
        action="create",
        after={
            "payout_number": payout.payout_number,
            "store_id": store_id,
            "amount_cents": amount,
            "escrow_ids": [e.id for e in escrows],
            "scheduled_for": scheduled_for,
        },
    )
    return payout


async def generate_scheduled_payouts(session: AsyncSession, *, actor: str, today: date | None = None) -> list[Payout]:
    today = today or utcnow().date()
    schedules = (
        await session.execute(
            select(PayoutSchedule)
            .where(PayoutSchedule.is_active.is_(True), PayoutSchedule.next_payout_date <= today)
            .order_by(PayoutSchedule.next_payout_date)
        )
    ).scalars().all()

    created: list[Payout] = []
    for schedule in schedules:
        try:
            payout = await create_payout(
                session, actor=actor, store_id=schedule.store_id, schedule=schedule, scheduled_for=today
            )
        except ValueError as e:
            logger.info("No payout for store %s: %s", schedule.store_id, e)
            payout = None
        if payout is not None:
            created.append(payout)
        schedule.next_payout_date = calculate_next_payout_date(
            frequency=schedule.frequency,
            today=today,
            day_of_week=schedule.day_of_week,
            day_of_month=schedule.day_of_month,
        )

    if created:
        logger.info("Generated %s scheduled payout(s)", len(created))
    return created


async def _load_payout(session: AsyncSession, payout_id: uuid.UUID) -> Payout:
    payout = (
        await session.execute(
            select(Payout)
            .where(Payout.id == payout_id)
            .options(selectinload(Payout.payout_method), selectinload(Payout.escrows))
        )
    ).scalar_one_or_none()
    if payout is None:
        raise ValueError("Payout not found")
    return payout


async def process_payout(
    session: AsyncSession,
    *,
    actor: str,
    payout_id: uuid.UUID,
    gateway: PaymentProvider | None = None,
    now: datetime | None = None,
) -> Payout:
    payout = await _load_payout(session, payout_id)
    if payout.status not in {PayoutStatus.SCHEDULED, PayoutStatus.FAILED}:
        raise ValueError(f"Only SCHEDULED or FAILED payouts can be processed (status={payout.status})")

    settings = get_settings()
    now = now or utcnow()
    before = payout.status
    payout.status = PayoutStatus.PROCESSING
    payout.processed_at = now
    await session.flush()

    gateway = gateway or get_payment_provider()
    method = payout.payout_method
    try:
        result = await gateway.send_payout(
            method_kind=method.kind,
            account_ref=method.account_ref,
            account_holder=method.account_holder,
            amount_cents=payout.amount_cents,
            currency_code=payout.currency_code,
            reference=payout.payout_number,
        )
    except Exception:
        # Outcome unknown; put it back in the queue instead of counting a failed attempt.
        logger.exception("Payout %s: provider call failed", payout.payout_number)
        payout.status = PayoutStatus.SCHEDULED
        payout.error_message = "Payout provider call did not complete"
        payout.next_retry_at = now + timedelta(hours=settings.payout_retry_delay_hours)
        await audit_log(
            session,
            actor=actor,
            entity_type="payout",
            entity_id=payout.id,
            action="process",
            before={"status": before},
            after={"status": payout.status, "error": payout.error_message, "next_retry_at": payout.next_retry_at},
        )
        return payout

    if result.success:
        payout.status = PayoutStatus.PAID
        payout.completed_at = now
        payout.external_reference = result.reference
        payout.error_message = None
        payout.next_retry_at = None
        logger.info("Payout %s paid (%s cents)", payout.payout_number, payout.amount_cents)
    else:
        payout.status = PayoutStatus.FAILED
        payout.error_message = sanitize_error_message(result.error) or "Payout failed"
        payout.retry_count += 1
        if payout.retry_count < settings.payout_max_retries:
            payout.next_retry_at = now + timedelta(hours=settings.payout_retry_delay_hours * payout.retry_count)
        else:
            payout.next_retry_at = None
        logger.warning(
            "Payout %s failed (attempt %s): %s", payout.payout_number, payout.retry_count, payout.error_message
        )

    await audit_log(
        session,
        actor=actor,
        entity_type="payout",
        entity_id=payout.id,
        action="process",
        before={"status": before},
        after={
            "status": payout.status,
            "external_reference": payout.external_reference,
            "retry_count": payout.retry_count,
            "error": payout.error_message,
        },
    )
    return payout


async def process_due_payouts(
    session: AsyncSession,
    *,
    actor: str,
    now: datetime | None = None,
    gateway: PaymentProvider | None = None,
) -> list[Payout]:
    now = now or utcnow()
    payout_ids = (
        await session.execute(
            select(Payout.id)
            .where(
                Payout.status == PayoutStatus.SCHEDULED,
                Payout.scheduled_for <= now.date(),
                # Held back after a provider call that did not complete.
                or_(Payout.next_retry_at.is_(None), Payout.next_retry_at <= now),
            )
            .order_by(Payout.scheduled_for, Payout.payout_number)
        )
    ).scalars().all()
    return [
        await process_payout(session, actor=actor, payout_id=pid, gateway=gateway, now=now) for pid in payout_ids
    ]


async def retry_failed_payouts(
    session: AsyncSession,
    *,
    actor: str,
    now: datetime | None = None,
    gateway: PaymentProvider | None = None,
) -> list[Payout]:
    now = now or utcnow()
    payout_ids = (
        await session.execute(
            select(Payout.id)
            .where(
                Payout.status == PayoutStatus.FAILED,
                Payout.retry_count < get_settings().payout_max_retries,
                Payout.next_retry_at.is_not(None),
                Payout.next_retry_at <= now,
            )
            .order_by(Payout.next_retry_at)
        )
    ).scalars().all()
    return [
        await process_payout(session, actor=actor, payout_id=pid, gateway=gateway, now=now) for pid in payout_ids
    ]


async def list_payouts(session: AsyncSession, *, store_id: uuid.UUID) -> list[Payout]:
    rows = (
        await session.execute(
            select(Payout).where(Payout.store_id == store_id).order_by(Payout.scheduled_for.desc(), Payout.payout_number)
        )
    ).scalars()
    return list(rows.all())
