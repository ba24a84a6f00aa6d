from __future__ import annotations

from datetime import date, datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from mercato.core.enums import PayoutFrequency, PayoutMethodKind, PayoutStatus


class PayoutMethodCreate(BaseModel):
    kind: PayoutMethodKind
    label: str = Field(min_length=1, max_length=120)
    account_ref: str = Field(min_length=1, max_length=200)
    account_holder: str = Field(min_length=1, max_length=200)
    is_default: bool = False


class PayoutMethodOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    store_id: UUID
    kind: PayoutMethodKind
    label: str
    account_ref: str
    account_holder: str
    is_default: bool
    is_active: bool


class PayoutScheduleUpsert(BaseModel):
    frequency: PayoutFrequency
    day_of_week: int | None = Field(default=None, ge=0, le=6)
    day_of_month: int | None = Field(default=None, ge=1, le=28)
    minimum_cents: int | None = Field(default=None, ge=0)
    is_active: bool = True


class PayoutScheduleOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    store_id: UUID
    frequency: PayoutFrequency
    day_of_week: int | None
    day_of_month: int | None
    minimum_cents: int
    next_payout_date: date
    is_active: bool


class PayoutOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    payout_number: str
    store_id: UUID
    schedule_id: UUID | None
    payout_method_id: UUID
    status: PayoutStatus
    amount_cents: int
    currency_code: str
    scheduled_for: date
    processed_at: datetime | None
    completed_at: datetime | None
    external_reference: str | None
    error_message: str | None
    retry_count: int
    next_retry_at: datetime | None
    created_at: datetime


class EligibleBalanceOut(BaseModel):
    store_id: UUID
    escrow_count: int
    amount_cents: int
