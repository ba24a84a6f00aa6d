from __future__ import annotations

from datetime import date, datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict

from mercato.core.enums import CommissionInvoiceStatus


class CommissionInvoiceGenerateRequest(BaseModel):
    store_id: UUID
    period_start: date
    period_end: date


class CommissionInvoiceItemOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    commission_transaction_id: UUID | None
    position: int
    description: str
    base_cents: int
    amount_cents: int


class CommissionInvoiceOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    invoice_number: str
    store_id: UUID
    period_start: date
    period_end: date
    issue_date: date
    due_date: date
    status: CommissionInvoiceStatus
    currency_code: str
    subtotal_cents: int
    tax_rate_bp: int
    tax_cents: int
    total_cents: int
    is_credit_note: bool
    correcting_invoice_id: UUID | None
    pdf_path: str | None
    issued_at: datetime | None
    paid_at: datetime | None
    cancelled_at: datetime | None
    created_at: datetime
    items: list[CommissionInvoiceItemOut]
