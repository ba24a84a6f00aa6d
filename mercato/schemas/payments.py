from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from mercato.core.enums import PaymentStatus


class PaymentInitiateRequest(BaseModel):
    provider: str = Field(min_length=1, max_length=40)


class PaymentCallback(BaseModel):
    event_id: str = Field(min_length=1, max_length=200)
    provider_transaction_id: str = Field(min_length=1, max_length=200)
    status: str = Field(min_length=1, max_length=80)
    error_message: str | None = None
    payload: dict[str, Any] | None = None


class PaymentTransactionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    order_id: UUID
    provider: str
    provider_transaction_id: str | None
    status: PaymentStatus
    amount_cents: int
    currency_code: str
    redirect_url: str | None
    error_message: str | None
    authorized_at: datetime | None
    completed_at: datetime | None
    created_at: datetime
    updated_at: datetime


class PaymentStatusOut(BaseModel):
    status: PaymentStatus
    message: str
