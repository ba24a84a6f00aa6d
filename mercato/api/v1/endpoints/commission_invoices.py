from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from mercato.core.db import get_session
from mercato.core.security import require_basic_auth
from mercato.schemas.commission_invoices import CommissionInvoiceGenerateRequest, CommissionInvoiceOut
from mercato.schemas.settlements import MonthlyCloseRequest
from mercato.services.commission_invoices import (
    cancel_invoice,
    create_credit_note,
    generate_commission_invoice,
    generate_commission_invoice_pdf,
    generate_monthly_commission_invoices,
    get_commission_invoice,
    issue_invoice,
    list_commission_invoices,
    mark_invoice_paid,
)


router = APIRouter()


async def _invoice_out(session: AsyncSession, invoice_id: uuid.UUID) -> CommissionInvoiceOut:
    invoice = await get_commission_invoice(session, invoice_id)
    if invoice is None:
        raise HTTPException(status_code=404, detail="Not found")
    return CommissionInvoiceOut.model_validate(invoice)


@router.post("", response_model=CommissionInvoiceOut)
async def generate_invoice_endpoint(
    data: CommissionInvoiceGenerateRequest,
    session: AsyncSession = Depends(get_session),
    actor: str = Depends(require_basic_auth),
) -> CommissionInvoiceOut:
    try:
        async with session.begin():
            invoice = await generate_commission_invoice(
                session,
                actor=actor,
                store_id=data.store_id,
                period_start=data.period_start,
                period_end=data.period_end,
            )
    except ValueError as e:
        raise HTTPException(status_code=409, detail=str(e)) from e
    if invoice is None:
        raise HTTPException(status_code=404, detail="No commission booked in this period")
    return await _invoice_out(session, invoice.id)


@router.post("/monthly", response_model=list[CommissionInvoiceOut])
async def monthly_invoices_endpoint(
    data: MonthlyCloseRequest,
    session: AsyncSession = Depends(get_session),
    actor: str = Depends(require_basic_auth),
) -> list[CommissionInvoiceOut]:
    try:
        async with session.begin():
            invoices = await generate_monthly_commission_invoices(session, actor=actor, year=data.year, month=data.month)
    except ValueError as e:
        raise HTTPException(status_code=409, detail=str(e)) from e
    return [await _invoice_out(session, i.id) for i in invoices]


@router.get("/stores/{store_id}", response_model=list[CommissionInvoiceOut])
async def list_store_invoices(store_id: uuid.UUID, session: AsyncSession = Depends(get_session)) -> list[CommissionInvoiceOut]:
    rows = await list_commission_invoices(session, store_id=store_id)
    return [CommissionInvoiceOut.model_validate(r) for r in rows]


@router.get("/{invoice_id}", response_model=CommissionInvoiceOut)
async def get_invoice_endpoint(invoice_id: uuid.UUID, session: AsyncSession = Depends(get_session)) -> CommissionInvoiceOut:
    return await _invoice_out(session, invoice_id)


@router.post("/{invoice_id}/issue", response_model=CommissionInvoiceOut)
async def issue_invoice_endpoint(
    invoice_id: uuid.UUID,
    session: AsyncSession = Depends(get_session),
    actor: str = Depends(require_basic_auth),
) -> CommissionInvoiceOut:
    try:
        async with session.begin():
            await issue_invoice(session, actor=actor, invoice_id=invoice_id)
    except ValueError as e:
        raise HTTPException(status_code=409, detail=str(e)) from e
    return await _invoice_out(session, invoice_id)


@router.post("/{invoice_id}/mark-paid", response_model=CommissionInvoiceOut)
async def mark_paid_endpoint(
    invoice_id: uuid.UUID,
    session: AsyncSession = Depends(get_session),
    actor: str = Depends(require_basic_auth),
) -> CommissionInvoiceOut:
    try:
        async with session.begin():
            await mark_invoice_paid(session, actor=actor, invoice_id=invoice_id)
    except ValueError as e:
        raise HTTPException(status_code=409, detail=str(e)) from e
    return await _invoice_out(session, invoice_id)


@router.post("/{invoice_id}/cancel", response_model=CommissionInvoiceOut)
async def cancel_invoice_endpoint(
    invoice_id: uuid.UUID,
    session: AsyncSession = Depends(get_session),
    actor: str = Depends(require_basic_auth),
) -> CommissionInvoiceOut:
    try:
        async with session.begin():
            await cancel_invoice(session, actor=actor, invoice_id=invoice_id)
    except ValueError as e:
        raise HTTPException(status_code=409, detail=str(e)) from e
    return await _invoice_out(session, invoice_id)


@router.post("/{invoice_id}/credit-note", response_model=CommissionInvoiceOut)
async def credit_note_endpoint(
    invoice_id: uuid.UUID,
    session: AsyncSession = Depends(get_session),
    actor: str = Depends(require_basic_auth),
) -> CommissionInvoiceOut:
    try:
        async with session.begin():
            credit_note = await create_credit_note(session, actor=actor, invoice_id=invoice_id)
    except ValueError as e:
        raise HTTPException(status_code=409, detail=str(e)) from e
    return await _invoice_out(session, credit_note.id)


@router.post("/{invoice_id}/pdf", response_model=CommissionInvoiceOut)
async def generate_pdf_endpoint(
    invoice_id: uuid.UUID,
    session: AsyncSession = Depends(get_session),
    actor: str = Depends(require_basic_auth),
) -> CommissionInvoiceOut:
    try:
        async with session.begin():
            await generate_commission_invoice_pdf(session, actor=actor, invoice_id=invoice_id)
    except ValueError as e:
        raise HTTPException(status_code=409, detail=str(e)) from e
    return await _invoice_out(session, invoice_id)
