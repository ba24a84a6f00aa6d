from __future__ import annotations

from datetime import date, timedelta

import pytest

import mercato.services.commission_invoices as commission_invoices
from factories import ACTOR, make_product, make_store, pay_order, place_order
from mercato.core.clock import utcnow
from mercato.core.enums import CommissionInvoiceStatus
from mercato.services.commission_invoices import (
    cancel_invoice,
    create_credit_note,
    generate_commission_invoice,
    generate_commission_invoice_pdf,
    generate_monthly_commission_invoices,
    issue_invoice,
    list_commission_invoices,
    mark_invoice_paid,
)
from mercato.services.providers import MockPaymentProvider
from mercato.services.refunds import process_partial_refund
from mercato.services.settlements import month_bounds


async def _store_with_commission(session):
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
    return store


def _this_month() -> tuple[date, date]:
    today = utcnow().date()
    return month_bounds(today.year, today.month)


@pytest.mark.asyncio
async def test_generate_invoice_from_commission_transactions(db_session) -> None:
    start, end = _this_month()
    issue_day = end
    async with db_session.begin():
        store = await _store_with_commission(db_session)
        invoice = await generate_commission_invoice(
            db_session, actor=ACTOR, store_id=store.id, period_start=start, period_end=end, issue_date=issue_day
        )

    assert invoice.invoice_number == f"INV-{issue_day.year}-000001"
    assert invoice.status == CommissionInvoiceStatus.DRAFT
    assert [(i.position, i.amount_cents) for i in invoice.items] == [(1, 650), (2, -108)]
    assert invoice.items[1].description.startswith("Commission refund adjustment")
    # 20 % of 542 is 108.4.
    assert (invoice.subtotal_cents, invoice.tax_cents, invoice.total_cents) == (542, 108, 650)
    assert invoice.due_date == issue_day + timedelta(days=30)

    async with db_session.begin():
        again = await generate_commission_invoice(
            db_session, actor=ACTOR, store_id=store.id, period_start=start, period_end=end
        )
        assert again.id == invoice.id

        quiet = await make_store(db_session, slug="quiet")
        assert (
            await generate_commission_invoice(
                db_session, actor=ACTOR, store_id=quiet.id, period_start=start, period_end=end
            )
            is None
        )


@pytest.mark.asyncio
async def test_invoice_lifecycle_and_credit_note(db_session) -> None:
    start, end = _this_month()
    async with db_session.begin():
        store = await _store_with_commission(db_session)
        invoice = await generate_commission_invoice(
            db_session, actor=ACTOR, store_id=store.id, period_start=start, period_end=end
        )

    async with db_session.begin():
        with pytest.raises(ValueError, match="Only ISSUED invoices can be marked paid"):
            await mark_invoice_paid(db_session, actor=ACTOR, invoice_id=invoice.id)
        with pytest.raises(ValueError, match="Only ISSUED or PAID"):
            await create_credit_note(db_session, actor=ACTOR, invoice_id=invoice.id)

    async with db_session.begin():
        await issue_invoice(db_session, actor=ACTOR, invoice_id=invoice.id)
        await mark_invoice_paid(db_session, actor=ACTOR, invoice_id=invoice.id)
    assert invoice.status == CommissionInvoiceStatus.PAID
    assert invoice.issued_at is not None and invoice.paid_at is not None

    async with db_session.begin():
        with pytest.raises(ValueError, match="credit note instead"):
            await cancel_invoice(db_session, actor=ACTOR, invoice_id=invoice.id)
        credit = await create_credit_note(db_session, actor=ACTOR, invoice_id=invoice.id)

    assert credit.invoice_number.startswith("CRN-")
    assert credit.is_credit_note is True
    assert credit.status == CommissionInvoiceStatus.ISSUED
    assert credit.correcting_invoice_id == invoice.id
    assert (credit.subtotal_cents, credit.tax_cents, credit.total_cents) == (-542, -108, -650)
    assert [i.amount_cents for i in credit.items] == [-650, 108]
    assert invoice.status == CommissionInvoiceStatus.SUPERSEDED

    async with db_session.begin():
        with pytest.raises(ValueError, match="cannot be corrected by another credit note"):
            await create_credit_note(db_session, actor=ACTOR, invoice_id=credit.id)
        # The superseded period can be invoiced afresh.
        fresh = await generate_commission_invoice(
            db_session, actor=ACTOR, store_id=store.id, period_start=start, period_end=end
        )

    assert fresh.id not in {invoice.id, credit.id}
    assert fresh.total_cents == 650
    assert len(await list_commission_invoices(db_session, store_id=store.id)) == 3


@pytest.mark.asyncio
async def test_cancel_draft_invoice(db_session) -> None:
    start, end = _this_month()
    async with db_session.begin():
        store = await _store_with_commission(db_session)
        invoice = await generate_commission_invoice(
            db_session, actor=ACTOR, store_id=store.id, period_start=start, period_end=end
        )
        await cancel_invoice(db_session, actor=ACTOR, invoice_id=invoice.id)
        assert invoice.status == CommissionInvoiceStatus.CANCELLED
        with pytest.raises(ValueError, match="already CANCELLED"):
            await cancel_invoice(db_session, actor=ACTOR, invoice_id=invoice.id)


@pytest.mark.asyncio
async def test_invoice_pdf_renders_template_and_stores_path(db_session, monkeypatch) -> None:
    rendered: list[dict] = []

    def fake_render_pdf(*, template_name, context, output_path, **_kwargs):
        rendered.append({"template_name": template_name, "context": context, "output_path": output_path})
        return output_path

    monkeypatch.setattr(commission_invoices, "render_pdf", fake_render_pdf)

    start, end = _this_month()
    async with db_session.begin():
        store = await _store_with_commission(db_session)
        invoice = await generate_commission_invoice(
            db_session, actor=ACTOR, store_id=store.id, period_start=start, period_end=end
        )
        await generate_commission_invoice_pdf(db_session, actor=ACTOR, invoice_id=invoice.id)

    assert invoice.pdf_path == f"pdfs/commission-invoices/{invoice.invoice_number}.pdf"
    (call,) = rendered
    assert call["template_name"] == "commission_invoice.html"
    assert str(call["output_path"]).endswith(invoice.pdf_path)
    ctx = call["context"]
    assert ctx["store_name"] == "Alpha"
    assert ctx["total_eur"] == "6,50"
    assert ctx["tax_rate_percent"] == "20"
    assert ctx["period_end"] == (end - timedelta(days=1)).strftime("%d.%m.%Y")
    assert [line["amount_eur"] for line in ctx["lines"]] == ["6,50", "-1,08"]


@pytest.mark.asyncio
async def test_monthly_commission_invoices_skip_stores_without_commission(db_session) -> None:
    today = utcnow().date()
    async with db_session.begin():
        store = await _store_with_commission(db_session)
        await make_store(db_session, slug="quiet")
        invoices = await generate_monthly_commission_invoices(
            db_session, actor="scheduler", year=today.year, month=today.month
        )

    assert [i.store_id for i in invoices] == [store.id]
