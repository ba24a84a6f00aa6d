from __future__ import annotations

import uuid
from datetime import date, datetime

from sqlalchemy import Boolean, Date, DateTime, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from mercato.core.enums import SettlementAdjustmentKind, SettlementStatus
from mercato.models.base import Base, TimestampMixin, UUIDPrimaryKeyMixin
from mercato.models.sql_enums import settlement_adjustment_kind_enum, settlement_status_enum


class Settlement(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "settlements"
    __table_args__ = (
        UniqueConstraint("store_id", "period_start", "period_end", "version", name="uq_settlement_version"),
    )

    settlement_number: Mapped[str] = mapped_column(String(40), nullable=False, unique=True)
    store_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("stores.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    # Half-open period [period_start, period_end).
    period_start: Mapped[date] = mapped_column(Date, nullable=False)
    period_end: Mapped[date] = mapped_column(Date, nullable=False)
    status: Mapped[SettlementStatus] = mapped_column(
        settlement_status_enum, nullable=False, default=SettlementStatus.DRAFT
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    is_current: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    previous_settlement_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("settlements.id", ondelete="SET NULL"), nullable=True
    )

    currency_code: Mapped[str] = mapped_column(String(3), nullable=False)
    gross_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    refunds_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    commission_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    adjustments_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    net_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    payouts_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    generated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    finalized_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    items: Mapped[list["SettlementItem"]] = relationship(
        back_populates="settlement",
        cascade="all, delete-orphan",
        order_by="SettlementItem.order_placed_at",
    )
    adjustments: Mapped[list["SettlementAdjustment"]] = relationship(
        back_populates="settlement",
        cascade="all, delete-orphan",
        order_by="SettlementAdjustment.created_at",
        foreign_keys="SettlementAdjustment.settlement_id",
    )

    def recompute_net(self) -> None:
        self.net_cents = self.gross_cents - self.refunds_cents - self.commission_cents + self.adjustments_cents


class SettlementItem(UUIDPrimaryKeyMixin, Base):
    __tablename__ = "settlement_items"

    settlement_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("settlements.id", ondelete="CASCADE"), nullable=False, index=True
    )
    sub_order_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("seller_sub_orders.id", ondelete="RESTRICT"), nullable=False
    )
    escrow_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("escrow_transactions.id", ondelete="SET NULL"), nullable=True
    )
    sub_order_number: Mapped[str] = mapped_column(String(48), nullable=False)
    order_placed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    gross_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    refunded_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    commission_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    net_cents: Mapped[int] = mapped_column(Integer, nullable=False)

    settlement: Mapped[Settlement] = relationship(back_populates="items")


class SettlementAdjustment(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "settlement_adjustments"

    settlement_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("settlements.id", ondelete="CASCADE"), nullable=False, index=True
    )
    kind: Mapped[SettlementAdjustmentKind] = mapped_column(settlement_adjustment_kind_enum, nullable=False)
    # Signed: credits to the seller are positive.
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    description: Mapped[str] = mapped_column(String(500), nullable=False)
    related_settlement_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("settlements.id", ondelete="SET NULL"), nullable=True
    )
    created_by: Mapped[str] = mapped_column(String(200), nullable=False)

    settlement: Mapped[Settlement] = relationship(back_populates="adjustments", foreign_keys=[settlement_id])
