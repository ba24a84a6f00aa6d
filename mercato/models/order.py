from __future__ import annotations

import uuid
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from mercato.core.clock import utcnow
from mercato.core.enums import OrderItemStatus, OrderStatus, PaymentStatus
from mercato.models.base import Base, TimestampMixin, UUIDPrimaryKeyMixin
from mercato.models.sql_enums import order_item_status_enum, order_status_enum, payment_status_enum
from mercato.models.store import Store

if TYPE_CHECKING:
    from mercato.models.escrow import EscrowTransaction


class Order(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "orders"

    order_number: Mapped[str] = mapped_column(String(40), nullable=False, unique=True)
    buyer_ref: Mapped[str] = mapped_column(String(120), nullable=False, index=True)
    status: Mapped[OrderStatus] = mapped_column(order_status_enum, nullable=False, default=OrderStatus.NEW)
    payment_status: Mapped[PaymentStatus] = mapped_column(
        payment_status_enum, nullable=False, default=PaymentStatus.PENDING
    )
    placed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow, index=True)

    recipient_name: Mapped[str] = mapped_column(String(200), nullable=False)
    address_line1: Mapped[str] = mapped_column(String(200), nullable=False)
    address_line2: Mapped[str | None] = mapped_column(String(200), nullable=True)
    city: Mapped[str] = mapped_column(String(120), nullable=False)
    postal_code: Mapped[str] = mapped_column(String(20), nullable=False)
    country_code: Mapped[str] = mapped_column(String(2), nullable=False)

    currency_code: Mapped[str] = mapped_column(String(3), nullable=False, default="EUR")
    items_subtotal_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    shipping_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    # VAT contained in the gross item prices, for display only.
    tax_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    refunded_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    sub_orders: Mapped[list["SellerSubOrder"]] = relationship(
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="SellerSubOrder.sub_order_number",
    )


class SellerSubOrder(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "seller_sub_orders"
    __table_args__ = (
        UniqueConstraint("order_id", "store_id", name="uq_sub_order_store"),
        CheckConstraint("refunded_cents <= total_cents", name="ck_sub_order_refund_bound"),
    )

    order_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True
    )
    store_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("stores.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    sub_order_number: Mapped[str] = mapped_column(String(48), nullable=False, unique=True)
    status: Mapped[OrderStatus] = mapped_column(order_status_enum, nullable=False, default=OrderStatus.NEW)

    items_subtotal_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    shipping_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    refunded_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    tracking_number: Mapped[str | None] = mapped_column(String(120), nullable=True)
    carrier_name: Mapped[str | None] = mapped_column(String(120), nullable=True)
    tracking_url: Mapped[str | None] = mapped_column(String(500), nullable=True)

    shipped_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    delivered_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    order: Mapped[Order] = relationship(back_populates="sub_orders")
    store: Mapped[Store] = relationship()
    items: Mapped[list["OrderItem"]] = relationship(
        back_populates="sub_order",
        cascade="all, delete-orphan",
        order_by="OrderItem.created_at",
    )
    escrow: Mapped["EscrowTransaction | None"] = relationship(back_populates="sub_order", uselist=False)

    @property
    def refundable_cents(self) -> int:
        return self.total_cents - self.refunded_cents


class OrderItem(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "order_items"
    __table_args__ = (
        CheckConstraint("quantity >= 1", name="ck_order_item_quantity"),
        CheckConstraint("quantity_shipped + quantity_cancelled <= quantity", name="ck_order_item_fulfillment"),
    )

    sub_order_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("seller_sub_orders.id", ondelete="CASCADE"), nullable=False, index=True
    )
    product_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("products.id", ondelete="RESTRICT"), nullable=False
    )
    product_title: Mapped[str] = mapped_column(String(200), nullable=False)
    category: Mapped[str | None] = mapped_column(String(80), nullable=True)

    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_price_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    subtotal_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    tax_rate_bp: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    tax_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    status: Mapped[OrderItemStatus] = mapped_column(
        order_item_status_enum, nullable=False, default=OrderItemStatus.NEW
    )
    quantity_shipped: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    quantity_cancelled: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    refunded_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    sub_order: Mapped[SellerSubOrder] = relationship(back_populates="items")

    @property
    def quantity_open(self) -> int:
        return self.quantity - self.quantity_shipped - self.quantity_cancelled


class OrderStatusHistory(UUIDPrimaryKeyMixin, Base):
    __tablename__ = "order_status_history"

    order_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True
    )
    sub_order_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("seller_sub_orders.id", ondelete="CASCADE"), nullable=True, index=True
    )
    from_status: Mapped[OrderStatus | None] = mapped_column(order_status_enum, nullable=True)
    to_status: Mapped[OrderStatus] = mapped_column(order_status_enum, nullable=False)
    actor: Mapped[str] = mapped_column(String(200), nullable=False)
    note: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        nullable=False,
    )
