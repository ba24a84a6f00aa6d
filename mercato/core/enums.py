from __future__ import annotations

from enum import StrEnum


class StoreStatus(StrEnum):
    PENDING_VERIFICATION = "PENDING_VERIFICATION"
    ACTIVE = "ACTIVE"
    LIMITED_ACTIVE = "LIMITED_ACTIVE"
    SUSPENDED = "SUSPENDED"


class SellerTier(StrEnum):
    BRONZE = "BRONZE"
    SILVER = "SILVER"
    GOLD = "GOLD"
    PLATINUM = "PLATINUM"


class OrderStatus(StrEnum):
    NEW = "NEW"
    PAID = "PAID"
    PREPARING = "PREPARING"
    SHIPPED = "SHIPPED"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"
    REFUNDED = "REFUNDED"


class OrderItemStatus(StrEnum):
    NEW = "NEW"
    PREPARING = "PREPARING"
    SHIPPED = "SHIPPED"
    CANCELLED = "CANCELLED"


class PaymentStatus(StrEnum):
    PENDING = "PENDING"
    AUTHORIZED = "AUTHORIZED"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"
    REFUNDED = "REFUNDED"


class EscrowStatus(StrEnum):
    HELD = "HELD"
    ELIGIBLE_FOR_PAYOUT = "ELIGIBLE_FOR_PAYOUT"
    RELEASED = "RELEASED"
    PARTIALLY_REFUNDED = "PARTIALLY_REFUNDED"
    RETURNED_TO_BUYER = "RETURNED_TO_BUYER"


class CommissionApplicability(StrEnum):
    GLOBAL = "GLOBAL"
    CATEGORY = "CATEGORY"
    SELLER = "SELLER"
    SELLER_TIER = "SELLER_TIER"


class CommissionSource(StrEnum):
    DEFAULT = "DEFAULT"
    GLOBAL = "GLOBAL"
    CATEGORY = "CATEGORY"
    SELLER = "SELLER"
    SELLER_TIER = "SELLER_TIER"


class CommissionTransactionKind(StrEnum):
    INITIAL = "INITIAL"
    REFUND_ADJUSTMENT = "REFUND_ADJUSTMENT"


class PayoutStatus(StrEnum):
    SCHEDULED = "SCHEDULED"
    PROCESSING = "PROCESSING"
    PAID = "PAID"
    FAILED = "FAILED"


class PayoutFrequency(StrEnum):
    WEEKLY = "WEEKLY"
    BIWEEKLY = "BIWEEKLY"
    MONTHLY = "MONTHLY"


class PayoutMethodKind(StrEnum):
    BANK_TRANSFER = "BANK_TRANSFER"
    PAYPAL = "PAYPAL"


class SettlementStatus(StrEnum):
    DRAFT = "DRAFT"
    FINALIZED = "FINALIZED"
    SUPERSEDED = "SUPERSEDED"


class SettlementAdjustmentKind(StrEnum):
    CREDIT = "CREDIT"
    DEBIT = "DEBIT"
    PRIOR_PERIOD = "PRIOR_PERIOD"


class CommissionInvoiceStatus(StrEnum):
    DRAFT = "DRAFT"
    ISSUED = "ISSUED"
    PAID = "PAID"
    CANCELLED = "CANCELLED"
    SUPERSEDED = "SUPERSEDED"


class ReturnStatus(StrEnum):
    REQUESTED = "REQUESTED"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    COMPLETED = "COMPLETED"
    UNDER_ADMIN_REVIEW = "UNDER_ADMIN_REVIEW"
    RESOLVED = "RESOLVED"


class ReturnKind(StrEnum):
    RETURN = "RETURN"
    COMPLAINT = "COMPLAINT"


class ReturnReason(StrEnum):
    DAMAGED = "DAMAGED"
    WRONG_ITEM = "WRONG_ITEM"
    NOT_AS_DESCRIBED = "NOT_AS_DESCRIBED"
    CHANGED_MIND = "CHANGED_MIND"
    ARRIVED_LATE = "ARRIVED_LATE"
    OTHER = "OTHER"


class ReturnResolution(StrEnum):
    FULL_REFUND = "FULL_REFUND"
    PARTIAL_REFUND = "PARTIAL_REFUND"
    NO_REFUND = "NO_REFUND"


class RefundStatus(StrEnum):
    REQUESTED = "REQUESTED"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class RefundKind(StrEnum):
    FULL = "FULL"
    PARTIAL = "PARTIAL"


class DocumentType(StrEnum):
    ORDER = "ORDER"
    RETURN_REQUEST = "RETURN_REQUEST"
    REFUND = "REFUND"
    PAYOUT = "PAYOUT"
    SETTLEMENT = "SETTLEMENT"
    COMMISSION_INVOICE = "COMMISSION_INVOICE"
    COMMISSION_CREDIT_NOTE = "COMMISSION_CREDIT_NOTE"
