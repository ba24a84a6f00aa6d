from __future__ import annotations

from sqlalchemy import Enum

from mercato.core.enums import (
    CommissionApplicability,
    CommissionInvoiceStatus,
    CommissionSource,
    CommissionTransactionKind,
    DocumentType,
    EscrowStatus,
    OrderItemStatus,
    OrderStatus,
    PaymentStatus,
    PayoutFrequency,
    PayoutMethodKind,
    PayoutStatus,
    RefundKind,
    RefundStatus,
    ReturnKind,
    ReturnReason,
    ReturnResolution,
    ReturnStatus,
    SellerTier,
    SettlementAdjustmentKind,
    SettlementStatus,
    StoreStatus,
)

store_status_enum = Enum(StoreStatus, name="store_status")
seller_tier_enum = Enum(SellerTier, name="seller_tier")

order_status_enum = Enum(OrderStatus, name="order_status")
order_item_status_enum = Enum(OrderItemStatus, name="order_item_status")
payment_status_enum = Enum(PaymentStatus, name="payment_status")

escrow_status_enum = Enum(EscrowStatus, name="escrow_status")
commission_applicability_enum = Enum(CommissionApplicability, name="commission_applicability")
commission_source_enum = Enum(CommissionSource, name="commission_source")
commission_transaction_kind_enum = Enum(CommissionTransactionKind, name="commission_transaction_kind")

payout_status_enum = Enum(PayoutStatus, name="payout_status")
payout_frequency_enum = Enum(PayoutFrequency, name="payout_frequency")
payout_method_kind_enum = Enum(PayoutMethodKind, name="payout_method_kind")

settlement_status_enum = Enum(SettlementStatus, name="settlement_status")
settlement_adjustment_kind_enum = Enum(SettlementAdjustmentKind, name="settlement_adjustment_kind")
commission_invoice_status_enum = Enum(CommissionInvoiceStatus, name="commission_invoice_status")

return_status_enum = Enum(ReturnStatus, name="return_status")
return_kind_enum = Enum(ReturnKind, name="return_kind")
return_reason_enum = Enum(ReturnReason, name="return_reason")
return_resolution_enum = Enum(ReturnResolution, name="return_resolution")
refund_status_enum = Enum(RefundStatus, name="refund_status")
refund_kind_enum = Enum(RefundKind, name="refund_kind")

document_type_enum = Enum(DocumentType, name="document_type")
