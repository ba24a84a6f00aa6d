from __future__ import annotations

from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, model_validator


class CartOwner(BaseModel):
    buyer_ref: str | None = Field(default=None, max_length=120)
    session_key: str | None = Field(default=None, max_length=120)

    @model_validator(mode="after")
    def _require_owner(self) -> "CartOwner":
        if not self.buyer_ref and not self.session_key:
            raise ValueError("Either buyer_ref or session_key is required")
        return self


class CartItemAdd(CartOwner):
    product_id: UUID
    quantity: int = Field(default=1, ge=1)


class CartItemQuantityUpdate(BaseModel):
    quantity: int = Field(ge=0)


class CartMergeRequest(BaseModel):
    buyer_ref: str = Field(min_length=1, max_length=120)
    session_key: str = Field(min_length=1, max_length=120)


class CartItemOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    product_id: UUID
    quantity: int
    unit_price_cents: int


class StoreShippingOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    store_id: UUID
    store_name: str
    item_count: int
    items_subtotal_cents: int
    shipping_cents: int
    is_free_shipping: bool


class CartOut(BaseModel):
    id: UUID
    buyer_ref: str | None
    session_key: str | None
    items: list[CartItemOut]
    items_subtotal_cents: int
    shipping_cents: int
    total_cents: int
    stores: list[StoreShippingOut]
