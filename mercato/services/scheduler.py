from __future__ import annotations

import asyncio
import logging
import os
import random
import socket
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from sqlalchemy import text, update

from mercato.core.clock import utcnow
from mercato.core.config import Settings
from mercato.models.job_lock import JobLock
from mercato.services.commission_invoices import generate_monthly_commission_invoices
from mercato.services.escrow import process_eligible_escrows
from mercato.services.payouts import generate_scheduled_payouts, process_due_payouts, retry_failed_payouts
from mercato.services.providers import PaymentProvider
from mercato.services.settlements import generate_monthly_settlements, previous_month


logger = logging.getLogger(__name__)
SessionLocal = None

LOCK_NAME = "pipeline_scheduler"
ACTOR = "scheduler"


@dataclass
class TickResult:
    escrows_released: int = 0
    payouts_generated: int = 0
    payouts_processed: int = 0
    payouts_retried: int = 0
    settlements_generated: int = 0
    invoices_generated: int = 0
    errors: list[str] = field(default_factory=list)


def _lock_holder_id() -> str:
    return f"{socket.gethostname()}:{os.getpid()}"


def _get_session_local():
    global SessionLocal
    if SessionLocal is None:
        from mercato.core.db import SessionLocal as _SessionLocal

        SessionLocal = _SessionLocal
    return SessionLocal


async def _try_acquire_or_renew_lock(*, name: str, holder: str, ttl_seconds: int) -> bool:
    now = utcnow()
    expires = now + timedelta(seconds=max(30, int(ttl_seconds)))

    stmt = text(
        "INSERT INTO job_locks (name, locked_at, locked_by, expires_at) "
        "VALUES (:name, :locked_at, :locked_by, :expires_at) "
        "ON CONFLICT (name) DO UPDATE SET "
        "locked_at = excluded.locked_at, "
        "locked_by = excluded.locked_by, "
        "expires_at = excluded.expires_at "
        "WHERE job_locks.expires_at <= :locked_at OR job_locks.locked_by = :locked_by"
    )

    async with _get_session_local()() as session:
        async with session.begin():
            res = await session.execute(
                stmt,
                {
                    "name": name,
                    "locked_at": now,
                    "locked_by": holder,
                    "expires_at": expires,
                },
            )
            return bool(res.rowcount == 1)


async def _mark_tick(*, name: str, error: str | None) -> None:
    now = utcnow()
    values = {"last_error_at": now, "last_error_message": error[:1000]} if error else {"last_success_at": now}
    async with _get_session_local()() as session:
        async with session.begin():
            await session.execute(update(JobLock).where(JobLock.name == name).values(**values))


async def _run_step(result: TickResult, label: str, step) -> None:
    # Every step commits on its own; one failing store or payout must not roll back the rest.
    try:
        async with _get_session_local()() as session:
            async with session.begin():
                await step(session)
    except asyncio.CancelledError:
        raise
    except Exception as exc:
        logger.exception("Pipeline step %s failed", label)
        result.errors.append(f"{label}: {exc.__class__.__name__}: {exc}")


async def run_pipeline_tick(
    settings: Settings,
    *,
    now: datetime | None = None,
    gateway: PaymentProvider | None = None,
) -> TickResult:
    now = now or utcnow()
    today = now.date()
    result = TickResult()

    async def release(session) -> None:
        result.escrows_released = await process_eligible_escrows(session, actor=ACTOR, now=now)

    async def generate(session) -> None:
        result.payouts_generated = len(await generate_scheduled_payouts(session, actor=ACTOR, today=today))

    async def process(session) -> None:
        result.payouts_processed = len(await process_due_payouts(session, actor=ACTOR, now=now, gateway=gateway))

    async def retry(session) -> None:
        result.payouts_retried = len(await retry_failed_payouts(session, actor=ACTOR, now=now, gateway=gateway))

    await _run_step(result, "release_escrows", release)
    await _run_step(result, "generate_payouts", generate)
    await _run_step(result, "process_payouts", process)
    await _run_step(result, "retry_payouts", retry)

    if today.day == settings.monthly_close_day:
        year, month = previous_month(today)

        async def settle(session) -> None:
            result.settlements_generated = len(
                await generate_monthly_settlements(session, actor=ACTOR, year=year, month=month)
            )

        async def invoice(session) -> None:
            result.invoices_generated = len(
                await generate_monthly_commission_invoices(session, actor=ACTOR, year=year, month=month)
            )

        await _run_step(result, "monthly_settlements", settle)
        await _run_step(result, "monthly_commission_invoices", invoice)

    return result


async def pipeline_scheduler_loop(settings: Settings) -> None:
    if not settings.scheduler_enabled:
        return

    holder = _lock_holder_id()
    tick = max(10, int(settings.scheduler_tick_seconds))
    cooldown_until = utcnow()

    while True:
        try:
            now = utcnow()
            if now < cooldown_until:
                wait_seconds = (cooldown_until - now).total_seconds()
                await asyncio.sleep(min(tick, max(1.0, wait_seconds)))
                continue

            acquired = await _try_acquire_or_renew_lock(
                name=LOCK_NAME,
                holder=holder,
                ttl_seconds=settings.scheduler_lock_ttl_seconds,
            )
            if not acquired:
                await asyncio.sleep(tick)
                continue

            result = await run_pipeline_tick(settings)
            if result.errors:
                await _mark_tick(name=LOCK_NAME, error="; ".join(result.errors))
                cooldown_until = utcnow() + timedelta(seconds=max(30, settings.scheduler_error_backoff_seconds))
            else:
                await _mark_tick(name=LOCK_NAME, error=None)
            if result.escrows_released or result.payouts_generated or result.payouts_processed:
                logger.info(
                    "Pipeline tick: %s escrow(s) released, %s payout(s) generated, %s processed",
                    result.escrows_released,
                    result.payouts_generated,
                    result.payouts_processed,
                )

        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Pipeline scheduler tick failed")
            cooldown_until = utcnow() + timedelta(seconds=max(30, settings.scheduler_error_backoff_seconds))

        await asyncio.sleep(tick + random.uniform(0, 3))
