from __future__ import annotations

from datetime import date, datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from mercato.core.enums import SettlementAdjustmentKind, SettlementStatus


class SettlementGenerateRequest(BaseModel):
    store_id: UUID
    period_start: date
    period_end: date


class MonthlyCloseRequest(BaseModel):
    year: int = Field(ge=2000, le=2100)
    month: int = Field(ge=1, le=12)


class SettlementAdjustmentCreate(BaseModel):
    kind: SettlementAdjustmentKind
    amount_cents: int
    description: str = Field(min_length=1, max_length=500)
    related_settlement_id: UUID | None = None


class SettlementItemOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    sub_order_id: UUID
    escrow_id: UUID | None
    sub_order_number: str
    order_placed_at: datetime
    gross_cents: int
    refunded_cents: int
    commission_cents: int
    net_cents: int


class SettlementAdjustmentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    kind: SettlementAdjustmentKind
    amount_cents: int
    description: str
    related_settlement_id: UUID | None
    created_by: str
    created_at: datetime


class SettlementOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    settlement_number: str
    store_id: UUID
    period_start: date
    period_end: date
    status: SettlementStatus
    version: int
    is_current: bool
    previous_settlement_id: UUID | None
    currency_code: str
    gross_cents: int
    refunds_cents: int
    commission_cents: int
    adjustments_cents: int
    net_cents: int
    payouts_cents: int
    generated_at: datetime
    finalized_at: datetime | None
    items: list[SettlementItemOut]
    adjustments: list[SettlementAdjustmentOut]


class SettlementSummaryOut(BaseModel):
    store_id: UUID
    settlement_count: int
    gross_cents: int
    refunds_cents: int
    commission_cents: int
    adjustments_cents: int
    net_cents: int
    payouts_cents: int
