from __future__ import annotations

import uuid

from sqlalchemy import Boolean, ForeignKey, Integer, String
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from mercato.core.enums import SellerTier, StoreStatus
from mercato.models.base import Base, TimestampMixin, UUIDPrimaryKeyMixin
from mercato.models.sql_enums import seller_tier_enum, store_status_enum


class Store(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "stores"

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    slug: Mapped[str] = mapped_column(String(120), nullable=False, unique=True)
    status: Mapped[StoreStatus] = mapped_column(
        store_status_enum, nullable=False, default=StoreStatus.PENDING_VERIFICATION
    )
    seller_tier: Mapped[SellerTier | None] = mapped_column(seller_tier_enum, nullable=True)

    billing_address: Mapped[str | None] = mapped_column(String(500), nullable=True)
    vat_id: Mapped[str | None] = mapped_column(String(40), nullable=True)

    # Store shipping rule; NULL falls back to the platform defaults.
    shipping_base_cents: Mapped[int | None] = mapped_column(Integer, nullable=True)
    shipping_additional_item_cents: Mapped[int | None] = mapped_column(Integer, nullable=True)
    shipping_free_threshold_cents: Mapped[int | None] = mapped_column(Integer, nullable=True)

    products: Mapped[list["Product"]] = relationship(back_populates="store")

    @property
    def is_sellable(self) -> bool:
        return self.status in {StoreStatus.ACTIVE, StoreStatus.LIMITED_ACTIVE}


class Product(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "products"

    store_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("stores.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    sku: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    category: Mapped[str | None] = mapped_column(String(80), nullable=True, index=True)

    price_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    tax_rate_bp: Mapped[int] = mapped_column(Integer, nullable=False, default=2000)
    stock: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    store: Mapped[Store] = relationship(back_populates="products")
