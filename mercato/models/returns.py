from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import Boolean, CheckConstraint, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from mercato.core.enums import RefundKind, RefundStatus, ReturnKind, ReturnReason, ReturnResolution, ReturnStatus
from mercato.models.base import Base, TimestampMixin, UUIDPrimaryKeyMixin
from mercato.models.order import OrderItem, SellerSubOrder
from mercato.models.sql_enums import (
    refund_kind_enum,
    refund_status_enum,
    return_kind_enum,
    return_reason_enum,
    return_resolution_enum,
    return_status_enum,
)


class RefundTransaction(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "refund_transactions"
    __table_args__ = (CheckConstraint("amount_cents > 0", name="ck_refund_amount_positive"),)

    refund_number: Mapped[str] = mapped_column(String(40), nullable=False, unique=True)
    order_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("orders.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    # NULL for full-order refunds.
    sub_order_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("seller_sub_orders.id", ondelete="RESTRICT"), nullable=True, index=True
    )
    payment_transaction_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("payment_transactions.id", ondelete="RESTRICT"), nullable=False
    )
    kind: Mapped[RefundKind] = mapped_column(refund_kind_enum, nullable=False)
    status: Mapped[RefundStatus] = mapped_column(refund_status_enum, nullable=False, default=RefundStatus.REQUESTED)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    currency_code: Mapped[str] = mapped_column(String(3), nullable=False)
    reason: Mapped[str] = mapped_column(String(500), nullable=False)
    initiated_by: Mapped[str] = mapped_column(String(200), nullable=False)

    provider_refund_id: Mapped[str | None] = mapped_column(String(200), nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class ReturnRequest(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "return_requests"

    return_number: Mapped[str] = mapped_column(String(40), nullable=False, unique=True)
    order_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("orders.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    sub_order_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("seller_sub_orders.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    buyer_ref: Mapped[str] = mapped_column(String(120), nullable=False, index=True)

    kind: Mapped[ReturnKind] = mapped_column(return_kind_enum, nullable=False)
    reason: Mapped[ReturnReason] = mapped_column(return_reason_enum, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[ReturnStatus] = mapped_column(return_status_enum, nullable=False, default=ReturnStatus.REQUESTED)

    is_full_return: Mapped[bool] = mapped_column(Boolean, nullable=False)
    refund_amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)

    seller_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    escalation_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    resolution: Mapped[ReturnResolution | None] = mapped_column(return_resolution_enum, nullable=True)
    resolution_amount_cents: Mapped[int | None] = mapped_column(Integer, nullable=True)
    resolution_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    refund_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("refund_transactions.id", ondelete="SET NULL"), nullable=True
    )

    requested_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    rejected_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    escalated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    sub_order: Mapped[SellerSubOrder] = relationship()
    items: Mapped[list["ReturnRequestItem"]] = relationship(back_populates="return_request", cascade="all, delete-orphan")
    refund: Mapped[RefundTransaction | None] = relationship()


class ReturnRequestItem(UUIDPrimaryKeyMixin, Base):
    __tablename__ = "return_request_items"
    __table_args__ = (CheckConstraint("quantity >= 1", name="ck_return_item_quantity"),)

    return_request_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("return_requests.id", ondelete="CASCADE"), nullable=False, index=True
    )
    order_item_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("order_items.id", ondelete="RESTRICT"), nullable=False
    )
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)

    return_request: Mapped[ReturnRequest] = relationship(back_populates="items")
    order_item: Mapped[OrderItem] = relationship()
