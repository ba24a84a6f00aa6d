from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from mercato.core.enums import RefundKind, RefundStatus, ReturnKind, ReturnReason, ReturnResolution, ReturnStatus


class ReturnItemRequest(BaseModel):
    order_item_id: UUID
    quantity: int = Field(ge=1)


class ReturnRequestCreate(BaseModel):
    sub_order_id: UUID
    buyer_ref: str = Field(min_length=1, max_length=120)
    kind: ReturnKind = ReturnKind.RETURN
    reason: ReturnReason
    description: str | None = None
    is_full_return: bool = True
    items: list[ReturnItemRequest] = Field(default_factory=list)


class ReturnRejectRequest(BaseModel):
    reason: str = Field(min_length=1, max_length=2000)


class ReturnEscalateRequest(BaseModel):
    buyer_ref: str = Field(min_length=1, max_length=120)
    reason: str = Field(min_length=1, max_length=2000)


class ReturnResolveRequest(BaseModel):
    resolution: ReturnResolution
    amount_cents: int | None = Field(default=None, gt=0)
    notes: str | None = None


class SellerNotes(BaseModel):
    notes: str | None = None


class ReturnRequestItemOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    order_item_id: UUID
    quantity: int
    amount_cents: int


class ReturnRequestOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    return_number: str
    order_id: UUID
    sub_order_id: UUID
    buyer_ref: str
    kind: ReturnKind
    reason: ReturnReason
    description: str | None
    status: ReturnStatus
    is_full_return: bool
    refund_amount_cents: int
    seller_notes: str | None
    rejection_reason: str | None
    escalation_reason: str | None
    resolution: ReturnResolution | None
    resolution_amount_cents: int | None
    resolution_notes: str | None
    refund_id: UUID | None
    requested_at: datetime
    approved_at: datetime | None
    rejected_at: datetime | None
    escalated_at: datetime | None
    resolved_at: datetime | None
    completed_at: datetime | None
    items: list[ReturnRequestItemOut]


class PartialRefundRequest(BaseModel):
    sub_order_id: UUID
    amount_cents: int = Field(gt=0)
    reason: str = Field(min_length=1, max_length=500)


class FullRefundRequest(BaseModel):
    reason: str = Field(min_length=1, max_length=500)


class RefundTransactionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    refund_number: str
    order_id: UUID
    sub_order_id: UUID | None
    payment_transaction_id: UUID
    kind: RefundKind
    status: RefundStatus
    amount_cents: int
    currency_code: str
    reason: str
    initiated_by: str
    provider_refund_id: str | None
    error_message: str | None
    completed_at: datetime | None
    created_at: datetime
