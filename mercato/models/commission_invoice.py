from __future__ import annotations

import uuid
from datetime import date, datetime

from sqlalchemy import Boolean, Date, DateTime, ForeignKey, Integer, String
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from mercato.core.enums import CommissionInvoiceStatus
from mercato.models.base import Base, TimestampMixin, UUIDPrimaryKeyMixin
from mercato.models.sql_enums import commission_invoice_status_enum
from mercato.models.store import Store


class CommissionInvoice(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "commission_invoices"

    invoice_number: Mapped[str] = mapped_column(String(40), nullable=False, unique=True)
    store_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("stores.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    period_start: Mapped[date] = mapped_column(Date, nullable=False)
    period_end: Mapped[date] = mapped_column(Date, nullable=False)
    issue_date: Mapped[date] = mapped_column(Date, nullable=False)
    due_date: Mapped[date] = mapped_column(Date, nullable=False)
    status: Mapped[CommissionInvoiceStatus] = mapped_column(
        commission_invoice_status_enum, nullable=False, default=CommissionInvoiceStatus.DRAFT
    )

    currency_code: Mapped[str] = mapped_column(String(3), nullable=False)
    subtotal_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    tax_rate_bp: Mapped[int] = mapped_column(Integer, nullable=False)
    tax_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    total_cents: Mapped[int] = mapped_column(Integer, nullable=False)

    is_credit_note: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    correcting_invoice_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("commission_invoices.id", ondelete="RESTRICT"), nullable=True
    )

    pdf_path: Mapped[str | None] = mapped_column(String(500), nullable=True)
    issued_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    store: Mapped[Store] = relationship()
    items: Mapped[list["CommissionInvoiceItem"]] = relationship(
        back_populates="invoice",
        cascade="all, delete-orphan",
        order_by="CommissionInvoiceItem.position",
    )


class CommissionInvoiceItem(UUIDPrimaryKeyMixin, Base):
    __tablename__ = "commission_invoice_items"

    invoice_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("commission_invoices.id", ondelete="CASCADE"), nullable=False, index=True
    )
    commission_transaction_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("commission_transactions.id", ondelete="SET NULL"), nullable=True
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    description: Mapped[str] = mapped_column(String(300), nullable=False)
    base_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)

    invoice: Mapped[CommissionInvoice] = relationship(back_populates="items")
