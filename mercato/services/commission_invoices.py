from __future__ import annotations

import logging
import uuid
from datetime import date, timedelta

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from mercato.core.clock import start_of_day, utcnow
from mercato.core.config import get_settings
from mercato.core.enums import CommissionInvoiceStatus, CommissionTransactionKind, DocumentType, StoreStatus
from mercato.models.commission import CommissionTransaction
from mercato.models.commission_invoice import CommissionInvoice, CommissionInvoiceItem
from mercato.models.order import SellerSubOrder
from mercato.models.store import Store
from mercato.services.audit import audit_log
from mercato.services.documents import next_document_number
from mercato.services.money import apply_rate_bp, format_eur
from mercato.services.pdf import render_pdf
from mercato.services.settlements import month_bounds


logger = logging.getLogger(__name__)

_INACTIVE_STATUSES = (CommissionInvoiceStatus.CANCELLED, CommissionInvoiceStatus.SUPERSEDED)


def _invoice_query():
    return (
        select(CommissionInvoice)
        .options(selectinload(CommissionInvoice.items), selectinload(CommissionInvoice.store))
        .execution_options(populate_existing=True)
    )


async def get_commission_invoice(session: AsyncSession, invoice_id: uuid.UUID) -> CommissionInvoice | None:
    return (await session.execute(_invoice_query().where(CommissionInvoice.id == invoice_id))).scalar_one_or_none()


async def _require_invoice(session: AsyncSession, invoice_id: uuid.UUID) -> CommissionInvoice:
    invoice = await get_commission_invoice(session, invoice_id)
    if invoice is None:
        raise ValueError("Commission invoice not found")
    return invoice


def _item_description(kind: CommissionTransactionKind, sub_order_number: str) -> str:
    if kind == CommissionTransactionKind.REFUND_ADJUSTMENT:
        return f"Commission refund adjustment, sub-order {sub_order_number}"
    return f"Commission, sub-order {sub_order_number}"


async def generate_commission_invoice(
    session: AsyncSession,
    *,
    actor: str,
    store_id: uuid.UUID,
    period_start: date,
    period_end: date,
    issue_date: date | None = None,
) -> CommissionInvoice | None:
    """
    Invoice the commission booked for a store in [period_start, period_end).

    An open invoice for the same period is returned as-is. Returns None when there is nothing to invoice.
    """
    if period_end <= period_start:
        raise ValueError("period_end must be after period_start")
    if await session.get(Store, store_id) is None:
        raise ValueError("Store not found")

    existing = (
        await session.execute(
            _invoice_query().where(
                CommissionInvoice.store_id == store_id,
                CommissionInvoice.period_start == period_start,
                CommissionInvoice.period_end == period_end,
                CommissionInvoice.is_credit_note.is_(False),
                CommissionInvoice.status.not_in(_INACTIVE_STATUSES),
            )
        )
    ).scalar_one_or_none()
    if existing is not None:
        return existing

    rows = (
        await session.execute(
            select(CommissionTransaction, SellerSubOrder.sub_order_number)
            .join(SellerSubOrder, SellerSubOrder.id == CommissionTransaction.sub_order_id)
            .where(
                CommissionTransaction.store_id == store_id,
                CommissionTransaction.occurred_at >= start_of_day(period_start),
                CommissionTransaction.occurred_at < start_of_day(period_end),
            )
            .order_by(CommissionTransaction.occurred_at, CommissionTransaction.id)
        )
    ).all()
    if not rows:
        return None

    settings = get_settings()
    items = [
        CommissionInvoiceItem(
            commission_transaction_id=tx.id,
            position=idx,
            description=_item_description(tx.kind, sub_order_number),
            base_cents=tx.base_cents,
            amount_cents=tx.amount_cents,
        )
        for idx, (tx, sub_order_number) in enumerate(rows, start=1)
    ]
    subtotal = sum(i.amount_cents for i in items)
    tax = apply_rate_bp(amount_cents=subtotal, rate_bp=settings.commission_invoice_tax_rate_bp)
    issue_date = issue_date or utcnow().date()

    invoice = CommissionInvoice(
        invoice_number=await next_document_number(
            session, doc_type=DocumentType.COMMISSION_INVOICE, issue_date=issue_date
        ),
        store_id=store_id,
        period_start=period_start,
        period_end=period_end,
        issue_date=issue_date,
        due_date=issue_date + timedelta(days=settings.commission_invoice_due_days),
        status=CommissionInvoiceStatus.DRAFT,
        currency_code=settings.currency_code,
        subtotal_cents=subtotal,
        tax_rate_bp=settings.commission_invoice_tax_rate_bp,
        tax_cents=tax,
        total_cents=subtotal + tax,
        is_credit_note=False,
        items=items,
    )
    session.add(invoice)
    await session.flush()

    await audit_log(
        session,
        actor=actor,
        entity_type="commission_invoice",
        entity_id=invoice.id,
        action="generate",
        after={
            "invoice_number": invoice.invoice_number,
            "store_id": store_id,
            "period_start": period_start,
            "period_end": period_end,
            "total_cents": invoice.total_cents,
            "items": len(items),
        },
    )
    return await _require_invoice(session, invoice.id)


async def generate_monthly_commission_invoices(
    session: AsyncSession,
    *,
    actor: str,
    year: int,
    month: int,
) -> list[CommissionInvoice]:
    period_start, period_end = month_bounds(year, month)
    store_ids = (
        await session.execute(
            select(Store.id)
            .where(Store.status.in_((StoreStatus.ACTIVE, StoreStatus.LIMITED_ACTIVE)))
            .order_by(Store.slug)
        )
    ).scalars().all()

    invoices: list[CommissionInvoice] = []
    for store_id in store_ids:
        invoice = await generate_commission_invoice(
            session, actor=actor, store_id=store_id, period_start=period_start, period_end=period_end
        )
        if invoice is not None:
            invoices.append(invoice)

    logger.info("Commission invoices for %04d-%02d: %s", year, month, len(invoices))
    return invoices


async def _set_status(
    session: AsyncSession,
    *,
    actor: str,
    invoice: CommissionInvoice,
    new_status: CommissionInvoiceStatus,
    action: str,
) -> None:
    before = invoice.status
    invoice.status = new_status
    await audit_log(
        session,
        actor=actor,
        entity_type="commission_invoice",
        entity_id=invoice.id,
        action=action,
        before={"status": before},
        after={"status": new_status},
    )


async def issue_invoice(session: AsyncSession, *, actor: str, invoice_id: uuid.UUID) -> CommissionInvoice:
    invoice = await _require_invoice(session, invoice_id)
    if invoice.status != CommissionInvoiceStatus.DRAFT:
        raise ValueError(f"Only DRAFT invoices can be issued (status={invoice.status})")
    invoice.issued_at = utcnow()
    await _set_status(session, actor=actor, invoice=invoice, new_status=CommissionInvoiceStatus.ISSUED, action="issue")
    return invoice


async def mark_invoice_paid(session: AsyncSession, *, actor: str, invoice_id: uuid.UUID) -> CommissionInvoice:
    invoice = await _require_invoice(session, invoice_id)
    if invoice.status != CommissionInvoiceStatus.ISSUED:
        raise ValueError(f"Only ISSUED invoices can be marked paid (status={invoice.status})")
    invoice.paid_at = utcnow()
    await _set_status(session, actor=actor, invoice=invoice, new_status=CommissionInvoiceStatus.PAID, action="mark_paid")
    return invoice


async def cancel_invoice(session: AsyncSession, *, actor: str, invoice_id: uuid.UUID) -> CommissionInvoice:
    invoice = await _require_invoice(session, invoice_id)
    if invoice.status == CommissionInvoiceStatus.PAID:
        raise ValueError("Paid invoices cannot be cancelled; issue a credit note instead")
    if invoice.status in _INACTIVE_STATUSES:
        raise ValueError(f"Invoice is already {invoice.status}")
    invoice.cancelled_at = utcnow()
    await _set_status(session, actor=actor, invoice=invoice, new_status=CommissionInvoiceStatus.CANCELLED, action="cancel")
    return invoice


async def create_credit_note(
    session: AsyncSession,
    *,
    actor: str,
    invoice_id: uuid.UUID,
    issue_date: date | None = None,
) -> CommissionInvoice:
    """Reverse an issued or paid invoice with a negated copy; the original becomes SUPERSEDED."""
    original = await _require_invoice(session, invoice_id)
    if original.is_credit_note:
        raise ValueError("A credit note cannot be corrected by another credit note")
    if original.status not in {CommissionInvoiceStatus.ISSUED, CommissionInvoiceStatus.PAID}:
        raise ValueError(f"Only ISSUED or PAID invoices can be corrected (status={original.status})")

    issue_date = issue_date or utcnow().date()
    settings = get_settings()
    credit_note = CommissionInvoice(
        invoice_number=await next_document_number(
            session, doc_type=DocumentType.COMMISSION_CREDIT_NOTE, issue_date=issue_date
        ),
        store_id=original.store_id,
        period_start=original.period_start,
        period_end=original.period_end,
        issue_date=issue_date,
        due_date=issue_date + timedelta(days=settings.commission_invoice_due_days),
        status=CommissionInvoiceStatus.ISSUED,
        currency_code=original.currency_code,
        subtotal_cents=-original.subtotal_cents,
        tax_rate_bp=original.tax_rate_bp,
        tax_cents=-original.tax_cents,
        total_cents=-original.total_cents,
        is_credit_note=True,
        correcting_invoice_id=original.id,
        issued_at=utcnow(),
        items=[
            CommissionInvoiceItem(
                commission_transaction_id=item.commission_transaction_id,
                position=item.position,
                description=f"Correction: {item.description}",
                base_cents=item.base_cents,
                amount_cents=-item.amount_cents,
            )
            for item in original.items
        ],
    )
    session.add(credit_note)
    await session.flush()

    await _set_status(
        session, actor=actor, invoice=original, new_status=CommissionInvoiceStatus.SUPERSEDED, action="supersede"
    )
    await audit_log(
        session,
        actor=actor,
        entity_type="commission_invoice",
        entity_id=credit_note.id,
        action="credit_note",
        after={
            "invoice_number": credit_note.invoice_number,
            "correcting_invoice_id": original.id,
            "total_cents": credit_note.total_cents,
        },
    )
    return await _require_invoice(session, credit_note.id)


async def generate_commission_invoice_pdf(
    session: AsyncSession,
    *,
    actor: str,
    invoice_id: uuid.UUID,
) -> CommissionInvoice:
    settings = get_settings()
    invoice = await _require_invoice(session, invoice_id)
    if invoice.status in _INACTIVE_STATUSES and not invoice.is_credit_note:
        raise ValueError(f"Invoice is {invoice.status}")

    lines_ctx = [
        {
            "position": item.position,
            "description": item.description,
            "base_eur": format_eur(item.base_cents),
            "amount_eur": format_eur(item.amount_cents),
        }
        for item in invoice.items
    ]

    correcting_number = None
    if invoice.correcting_invoice_id is not None:
        corrected = await session.get(CommissionInvoice, invoice.correcting_invoice_id)
        correcting_number = corrected.invoice_number if corrected is not None else None

    rel_path = f"pdfs/commission-invoices/{invoice.invoice_number}.pdf"
    out_path = settings.app_storage_dir / rel_path

    render_pdf(
        template_name="commission_invoice.html",
        context={
            "invoice_number": invoice.invoice_number,
            "is_credit_note": invoice.is_credit_note,
            "correcting_invoice_number": correcting_number,
            "issue_date": invoice.issue_date.strftime("%d.%m.%Y"),
            "due_date": invoice.due_date.strftime("%d.%m.%Y"),
            "period_start": invoice.period_start.strftime("%d.%m.%Y"),
            # Stored end is exclusive; print the last day covered.
            "period_end": (invoice.period_end - timedelta(days=1)).strftime("%d.%m.%Y"),
            "company_name": settings.company_name,
            "company_address": settings.company_address,
            "company_email": settings.company_email,
            "company_vat_id": settings.company_vat_id,
            "store_name": invoice.store.name,
            "store_address": invoice.store.billing_address,
            "store_vat_id": invoice.store.vat_id,
            "currency_code": invoice.currency_code,
            "lines": lines_ctx,
            "subtotal_eur": format_eur(invoice.subtotal_cents),
            "tax_rate_percent": f"{invoice.tax_rate_bp / 100:g}",
            "tax_eur": format_eur(invoice.tax_cents),
            "total_eur": format_eur(invoice.total_cents),
        },
        output_path=out_path,
    )
    invoice.pdf_path = rel_path

    await audit_log(
        session,
        actor=actor,
        entity_type="commission_invoice",
        entity_id=invoice.id,
        action="generate_pdf",
        after={"pdf_path": rel_path},
    )
    return invoice


async def list_commission_invoices(session: AsyncSession, *, store_id: uuid.UUID) -> list[CommissionInvoice]:
    rows = (
        await session.execute(
            _invoice_query()
            .where(CommissionInvoice.store_id == store_id)
            .order_by(CommissionInvoice.issue_date.desc(), CommissionInvoice.invoice_number.desc())
        )
    ).scalars()
    return list(rows.all())
