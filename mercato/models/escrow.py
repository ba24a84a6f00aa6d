from __future__ import annotations

import uuid
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Integer
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from mercato.core.enums import EscrowStatus
from mercato.models.base import Base, TimestampMixin, UUIDPrimaryKeyMixin
from mercato.models.order import SellerSubOrder
from mercato.models.sql_enums import escrow_status_enum

if TYPE_CHECKING:
    from mercato.models.payout import Payout


class EscrowTransaction(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "escrow_transactions"
    __table_args__ = (
        CheckConstraint("refunded_cents <= gross_cents", name="ck_escrow_refund_bound"),
        CheckConstraint("commission_refunded_cents <= commission_cents", name="ck_escrow_commission_refund_bound"),
    )

    sub_order_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("seller_sub_orders.id", ondelete="RESTRICT"),
        nullable=False,
        unique=True,
    )
    payment_transaction_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("payment_transactions.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    store_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("stores.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    status: Mapped[EscrowStatus] = mapped_column(escrow_status_enum, nullable=False, default=EscrowStatus.HELD)

    gross_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    commission_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    net_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    refunded_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    commission_refunded_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    eligible_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True, index=True)
    released_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    returned_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    payout_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("payouts.id", ondelete="SET NULL"), nullable=True, index=True
    )

    sub_order: Mapped[SellerSubOrder] = relationship(back_populates="escrow")
    payout: Mapped["Payout | None"] = relationship(back_populates="escrows")

    @property
    def available_cents(self) -> int:
        """Gross amount that can still be returned to the buyer."""
        return self.gross_cents - self.refunded_cents

    @property
    def effective_commission_cents(self) -> int:
        return self.commission_cents - self.commission_refunded_cents

    @property
    def payable_cents(self) -> int:
        """What the seller receives: gross minus buyer refunds minus the commission that still applies."""
        return self.gross_cents - self.refunded_cents - self.effective_commission_cents
