from __future__ import annotations

import uuid
from datetime import date, datetime
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, CheckConstraint, Date, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from mercato.core.enums import PayoutFrequency, PayoutMethodKind, PayoutStatus
from mercato.models.base import Base, TimestampMixin, UUIDPrimaryKeyMixin
from mercato.models.sql_enums import payout_frequency_enum, payout_method_kind_enum, payout_status_enum

if TYPE_CHECKING:
    from mercato.models.escrow import EscrowTransaction


class PayoutMethod(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "payout_methods"

    store_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("stores.id", ondelete="CASCADE"), nullable=False, index=True
    )
    kind: Mapped[PayoutMethodKind] = mapped_column(payout_method_kind_enum, nullable=False)
    label: Mapped[str] = mapped_column(String(120), nullable=False)
    # IBAN or PayPal e-mail; the provider receives it verbatim.
    account_ref: Mapped[str] = mapped_column(String(200), nullable=False)
    account_holder: Mapped[str] = mapped_column(String(200), nullable=False)
    is_default: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class PayoutSchedule(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "payout_schedules"
    __table_args__ = (
        CheckConstraint(
            "day_of_week IS NULL OR (day_of_week >= 0 AND day_of_week <= 6)", name="ck_payout_schedule_weekday"
        ),
        CheckConstraint(
            "day_of_month IS NULL OR (day_of_month >= 1 AND day_of_month <= 28)", name="ck_payout_schedule_monthday"
        ),
    )

    store_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("stores.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    frequency: Mapped[PayoutFrequency] = mapped_column(payout_frequency_enum, nullable=False)
    # 0 = Monday ... 6 = Sunday (date.weekday()).
    day_of_week: Mapped[int | None] = mapped_column(Integer, nullable=True)
    day_of_month: Mapped[int | None] = mapped_column(Integer, nullable=True)
    minimum_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    next_payout_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class Payout(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "payouts"
    __table_args__ = (CheckConstraint("amount_cents > 0", name="ck_payout_amount_positive"),)

    payout_number: Mapped[str] = mapped_column(String(40), nullable=False, unique=True)
    store_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("stores.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    schedule_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("payout_schedules.id", ondelete="SET NULL"), nullable=True
    )
    payout_method_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("payout_methods.id", ondelete="RESTRICT"), nullable=False
    )
    status: Mapped[PayoutStatus] = mapped_column(payout_status_enum, nullable=False, default=PayoutStatus.SCHEDULED)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    currency_code: Mapped[str] = mapped_column(String(3), nullable=False)
    scheduled_for: Mapped[date] = mapped_column(Date, nullable=False)

    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True, index=True)
    external_reference: Mapped[str | None] = mapped_column(String(200), nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    retry_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    next_retry_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    payout_method: Mapped[PayoutMethod] = relationship()
    escrows: Mapped[list["EscrowTransaction"]] = relationship(back_populates="payout")
