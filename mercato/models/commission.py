from __future__ import annotations

import uuid
from datetime import date, datetime

from sqlalchemy import Boolean, CheckConstraint, Date, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from mercato.core.clock import utcnow
from mercato.core.enums import CommissionApplicability, CommissionSource, CommissionTransactionKind, SellerTier
from mercato.models.base import Base, TimestampMixin, UUIDPrimaryKeyMixin
from mercato.models.sql_enums import (
    commission_applicability_enum,
    commission_source_enum,
    commission_transaction_kind_enum,
    seller_tier_enum,
)


class CommissionRule(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "commission_rules"
    __table_args__ = (
        CheckConstraint("rate_bp >= 0 AND rate_bp <= 10000", name="ck_commission_rule_rate"),
        CheckConstraint("fixed_cents >= 0", name="ck_commission_rule_fixed"),
    )

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    rate_bp: Mapped[int] = mapped_column(Integer, nullable=False)
    fixed_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    applicability: Mapped[CommissionApplicability] = mapped_column(commission_applicability_enum, nullable=False)
    category: Mapped[str | None] = mapped_column(String(80), nullable=True)
    store_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("stores.id", ondelete="CASCADE"), nullable=True, index=True
    )
    seller_tier: Mapped[SellerTier | None] = mapped_column(seller_tier_enum, nullable=True)

    effective_from: Mapped[date] = mapped_column(Date, nullable=False)
    effective_to: Mapped[date | None] = mapped_column(Date, nullable=True)
    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)


class CommissionTransaction(UUIDPrimaryKeyMixin, Base):
    __tablename__ = "commission_transactions"

    escrow_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("escrow_transactions.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    store_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("stores.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    sub_order_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("seller_sub_orders.id", ondelete="RESTRICT"), nullable=False
    )
    kind: Mapped[CommissionTransactionKind] = mapped_column(commission_transaction_kind_enum, nullable=False)
    source: Mapped[CommissionSource] = mapped_column(commission_source_enum, nullable=False)
    rule_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("commission_rules.id", ondelete="SET NULL"), nullable=True
    )

    rate_bp: Mapped[int] = mapped_column(Integer, nullable=False)
    fixed_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    # Gross amount the commission was computed on (refund amount for adjustments).
    base_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    # Negative for refund adjustments.
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    description: Mapped[str | None] = mapped_column(String(300), nullable=True)

    occurred_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow, index=True)
