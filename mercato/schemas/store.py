from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from mercato.core.enums import SellerTier, StoreStatus


class StoreCreate(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    slug: str = Field(min_length=1, max_length=120, pattern=r"^[a-z0-9][a-z0-9-]*$")
    status: StoreStatus = StoreStatus.PENDING_VERIFICATION
    seller_tier: SellerTier | None = None
    billing_address: str | None = Field(default=None, max_length=500)
    vat_id: str | None = Field(default=None, max_length=40)
    shipping_base_cents: int | None = Field(default=None, ge=0)
    shipping_additional_item_cents: int | None = Field(default=None, ge=0)
    shipping_free_threshold_cents: int | None = Field(default=None, ge=0)


class StoreUpdate(BaseModel):
    status: StoreStatus | None = None
    seller_tier: SellerTier | None = None
    billing_address: str | None = Field(default=None, max_length=500)
    vat_id: str | None = Field(default=None, max_length=40)


class StoreOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    slug: str
    status: StoreStatus
    seller_tier: SellerTier | None
    billing_address: str | None
    vat_id: str | None
    shipping_base_cents: int | None
    shipping_additional_item_cents: int | None
    shipping_free_threshold_cents: int | None
    created_at: datetime
    updated_at: datetime


class ProductCreate(BaseModel):
    store_id: UUID
    sku: str = Field(min_length=1, max_length=64)
    title: str = Field(min_length=1, max_length=200)
    category: str | None = Field(default=None, max_length=80)
    price_cents: int = Field(gt=0)
    tax_rate_bp: int = Field(default=2000, ge=0, le=10000)
    stock: int = Field(default=0, ge=0)
    is_active: bool = True


class ProductOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    store_id: UUID
    sku: str
    title: str
    category: str | None
    price_cents: int
    tax_rate_bp: int
    stock: int
    is_active: bool
    created_at: datetime
    updated_at: datetime


class ProductStockUpdate(BaseModel):
    stock: int = Field(ge=0)
