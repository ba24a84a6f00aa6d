from __future__ import annotations

from datetime import date, datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from mercato.core.enums import (
    CommissionApplicability,
    CommissionSource,
    CommissionTransactionKind,
    EscrowStatus,
    SellerTier,
)


class CommissionRuleCreate(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    rate_bp: int = Field(ge=0, le=10000)
    fixed_cents: int = Field(default=0, ge=0)
    applicability: CommissionApplicability
    category: str | None = Field(default=None, max_length=80)
    store_id: UUID | None = None
    seller_tier: SellerTier | None = None
    effective_from: date
    effective_to: date | None = None
    priority: int = 0
    is_active: bool = True
    notes: str | None = None


class CommissionRuleUpdate(CommissionRuleCreate):
    pass


class CommissionRuleOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    rate_bp: int
    fixed_cents: int
    applicability: CommissionApplicability
    category: str | None
    store_id: UUID | None
    seller_tier: SellerTier | None
    effective_from: date
    effective_to: date | None
    priority: int
    is_active: bool
    notes: str | None
    created_at: datetime
    updated_at: datetime


class CommissionTransactionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    escrow_id: UUID
    store_id: UUID
    sub_order_id: UUID
    kind: CommissionTransactionKind
    source: CommissionSource
    rule_id: UUID | None
    rate_bp: int
    fixed_cents: int
    base_cents: int
    amount_cents: int
    description: str | None
    occurred_at: datetime


class EscrowOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    sub_order_id: UUID
    payment_transaction_id: UUID
    store_id: UUID
    status: EscrowStatus
    gross_cents: int
    commission_cents: int
    net_cents: int
    refunded_cents: int
    commission_refunded_cents: int
    payable_cents: int
    eligible_at: datetime | None
    released_at: datetime | None
    returned_at: datetime | None
    payout_id: UUID | None
