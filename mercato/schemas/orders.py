from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from mercato.core.enums import OrderItemStatus, OrderStatus, PaymentStatus


class ShippingAddress(BaseModel):
    recipient_name: str = Field(max_length=200)
    address_line1: str = Field(max_length=200)
    address_line2: str | None = Field(default=None, max_length=200)
    city: str = Field(max_length=120)
    postal_code: str = Field(max_length=20)
    country_code: str = Field(max_length=2)


class CheckoutRequest(BaseModel):
    buyer_ref: str = Field(min_length=1, max_length=120)
    shipping_address: ShippingAddress


class TrackingUpdate(BaseModel):
    tracking_number: str | None = Field(default=None, max_length=120)
    carrier_name: str | None = Field(default=None, max_length=120)
    tracking_url: str | None = Field(default=None, max_length=500)


class ItemQuantityRequest(BaseModel):
    quantity: int = Field(gt=0)


class OrderItemOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    product_id: UUID
    product_title: str
    category: str | None
    quantity: int
    unit_price_cents: int
    subtotal_cents: int
    tax_rate_bp: int
    tax_cents: int
    status: OrderItemStatus
    quantity_shipped: int
    quantity_cancelled: int
    refunded_cents: int


class SellerSubOrderOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    store_id: UUID
    sub_order_number: str
    status: OrderStatus
    items_subtotal_cents: int
    shipping_cents: int
    total_cents: int
    refunded_cents: int
    tracking_number: str | None
    carrier_name: str | None
    tracking_url: str | None
    shipped_at: datetime | None
    delivered_at: datetime | None
    cancelled_at: datetime | None
    items: list[OrderItemOut]


class OrderOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    order_number: str
    buyer_ref: str
    status: OrderStatus
    payment_status: PaymentStatus
    placed_at: datetime
    recipient_name: str
    address_line1: str
    address_line2: str | None
    city: str
    postal_code: str
    country_code: str
    currency_code: str
    items_subtotal_cents: int
    shipping_cents: int
    tax_cents: int
    total_cents: int
    refunded_cents: int
    created_at: datetime
    updated_at: datetime
    sub_orders: list[SellerSubOrderOut]
