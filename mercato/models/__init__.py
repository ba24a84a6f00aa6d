from mercato.models.audit_log import AuditLog
from mercato.models.cart import Cart, CartItem
from mercato.models.commission import CommissionRule, CommissionTransaction
from mercato.models.commission_invoice import CommissionInvoice, CommissionInvoiceItem
from mercato.models.document_counter import DocumentCounter
from mercato.models.escrow import EscrowTransaction
from mercato.models.job_lock import JobLock
from mercato.models.order import Order, OrderItem, OrderStatusHistory, SellerSubOrder
from mercato.models.payment import PaymentTransaction, PaymentWebhookEvent
from mercato.models.payout import Payout, PayoutMethod, PayoutSchedule
from mercato.models.returns import RefundTransaction, ReturnRequest, ReturnRequestItem
from mercato.models.settlement import Settlement, SettlementAdjustment, SettlementItem
from mercato.models.store import Product, Store

__all__ = [
    "AuditLog",
    "Cart",
    "CartItem",
    "CommissionInvoice",
    "CommissionInvoiceItem",
    "CommissionRule",
    "CommissionTransaction",
    "DocumentCounter",
    "EscrowTransaction",
    "JobLock",
    "Order",
    "OrderItem",
    "OrderStatusHistory",
    "PaymentTransaction",
    "PaymentWebhookEvent",
    "Payout",
    "PayoutMethod",
    "PayoutSchedule",
    "Product",
    "RefundTransaction",
    "ReturnRequest",
    "ReturnRequestItem",
    "SellerSubOrder",
    "Settlement",
    "SettlementAdjustment",
    "SettlementItem",
    "Store",
]
