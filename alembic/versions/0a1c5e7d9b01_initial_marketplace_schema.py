"""initial marketplace schema

Revision ID: 0a1c5e7d9b01
Revises:
Create Date: 2026-10-18

"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision = "0a1c5e7d9b01"
down_revision = None
branch_labels = None
depends_on = None


ENUM_TYPES: dict[str, tuple[str, ...]] = {
    "store_status": ("PENDING_VERIFICATION", "ACTIVE", "LIMITED_ACTIVE", "SUSPENDED"),
    "seller_tier": ("BRONZE", "SILVER", "GOLD", "PLATINUM"),
    "order_status": ("NEW", "PAID", "PREPARING", "SHIPPED", "DELIVERED", "CANCELLED", "REFUNDED"),
    "order_item_status": ("NEW", "PREPARING", "SHIPPED", "CANCELLED"),
    "payment_status": ("PENDING", "AUTHORIZED", "COMPLETED", "FAILED", "CANCELLED", "REFUNDED"),
    "escrow_status": ("HELD", "ELIGIBLE_FOR_PAYOUT", "RELEASED", "PARTIALLY_REFUNDED", "RETURNED_TO_BUYER"),
    "commission_applicability": ("GLOBAL", "CATEGORY", "SELLER", "SELLER_TIER"),
    "commission_source": ("DEFAULT", "GLOBAL", "CATEGORY", "SELLER", "SELLER_TIER"),
    "commission_transaction_kind": ("INITIAL", "REFUND_ADJUSTMENT"),
    "payout_status": ("SCHEDULED", "PROCESSING", "PAID", "FAILED"),
    "payout_frequency": ("WEEKLY", "BIWEEKLY", "MONTHLY"),
    "payout_method_kind": ("BANK_TRANSFER", "PAYPAL"),
    "settlement_status": ("DRAFT", "FINALIZED", "SUPERSEDED"),
    "settlement_adjustment_kind": ("CREDIT", "DEBIT", "PRIOR_PERIOD"),
    "commission_invoice_status": ("DRAFT", "ISSUED", "PAID", "CANCELLED", "SUPERSEDED"),
    "return_status": ("REQUESTED", "APPROVED", "REJECTED", "COMPLETED", "UNDER_ADMIN_REVIEW", "RESOLVED"),
    "return_kind": ("RETURN", "COMPLAINT"),
    "return_reason": ("DAMAGED", "WRONG_ITEM", "NOT_AS_DESCRIBED", "CHANGED_MIND", "ARRIVED_LATE", "OTHER"),
    "return_resolution": ("FULL_REFUND", "PARTIAL_REFUND", "NO_REFUND"),
    "refund_status": ("REQUESTED", "PROCESSING", "COMPLETED", "FAILED"),
    "refund_kind": ("FULL", "PARTIAL"),
    "document_type": (
        "ORDER",
        "RETURN_REQUEST",
        "REFUND",
        "PAYOUT",
        "SETTLEMENT",
        "COMMISSION_INVOICE",
        "COMMISSION_CREDIT_NOTE",
    ),
}


def _enum(name: str) -> postgresql.ENUM:
    return postgresql.ENUM(*ENUM_TYPES[name], name=name, create_type=False)


def _id_and_timestamps() -> list[sa.Column]:
    return [
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    ]


def upgrade() -> None:
    for name, values in ENUM_TYPES.items():
        labels = ", ".join(f"'{v}'" for v in values)
        op.execute(
            "DO $$ BEGIN "
            f"CREATE TYPE {name} AS ENUM ({labels}); "
            "EXCEPTION WHEN duplicate_object THEN null; "
            "END $$;"
        )

    op.create_table(
        "stores",
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("slug", sa.String(length=120), nullable=False),
        sa.Column("status", _enum("store_status"), nullable=False),
        sa.Column("seller_tier", _enum("seller_tier"), nullable=True),
        sa.Column("billing_address", sa.String(length=500), nullable=True),
        sa.Column("vat_id", sa.String(length=40), nullable=True),
        sa.Column("shipping_base_cents", sa.Integer(), nullable=True),
        sa.Column("shipping_additional_item_cents", sa.Integer(), nullable=True),
        sa.Column("shipping_free_threshold_cents", sa.Integer(), nullable=True),
        *_id_and_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("slug"),
    )

    op.create_table(
        "products",
        sa.Column("store_id", sa.UUID(), nullable=False),
        sa.Column("sku", sa.String(length=64), nullable=False),
        sa.Column("title", sa.String(length=200), nullable=False),
        sa.Column("category", sa.String(length=80), nullable=True),
        sa.Column("price_cents", sa.Integer(), nullable=False),
        sa.Column("tax_rate_bp", sa.Integer(), nullable=False),
        sa.Column("stock", sa.Integer(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        *_id_and_timestamps(),
        sa.ForeignKeyConstraint(["store_id"], ["stores.id"], ondelete="RESTRICT"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("sku"),
    )
    op.create_index(op.f("ix_products_store_id"), "products", ["store_id"], unique=False)
    op.create_index(op.f("ix_products_category"), "products", ["category"], unique=False)

    op.create_table(
        "carts",
        sa.Column("buyer_ref", sa.String(length=120), nullable=True),
        sa.Column("session_key", sa.String(length=120), nullable=True),
        *_id_and_timestamps(),
        sa.CheckConstraint("(buyer_ref IS NOT NULL) OR (session_key IS NOT NULL)", name="ck_carts_owner"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("buyer_ref"),
        sa.UniqueConstraint("session_key"),
    )

    op.create_table(
        "cart_items",
        sa.Column("cart_id", sa.UUID(), nullable=False),
        sa.Column("product_id", sa.UUID(), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("unit_price_cents", sa.Integer(), nullable=False),
        *_id_and_timestamps(),
        sa.ForeignKeyConstraint(["cart_id"], ["carts.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("cart_id", "product_id", name="uq_cart_item_product"),
    )
    op.create_index(op.f("ix_cart_items_cart_id"), "cart_items", ["cart_id"], unique=False)

    op.create_table(
        "orders",
        sa.Column("order_number", sa.String(length=40), nullable=False),
        sa.Column("buyer_ref", sa.String(length=120), nullable=False),
        sa.Column("status", _enum("order_status"), nullable=False),
        sa.Column("payment_status", _enum("payment_status"), nullable=False),
        sa.Column("placed_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("recipient_name", sa.String(length=200), nullable=False),
        sa.Column("address_line1", sa.String(length=200), nullable=False),
        sa.Column("address_line2", sa.String(length=200), nullable=True),
        sa.Column("city", sa.String(length=120), nullable=False),
        sa.Column("postal_code", sa.String(length=20), nullable=False),
        sa.Column("country_code", sa.String(length=2), nullable=False),
        sa.Column("currency_code", sa.String(length=3), nullable=False),
        sa.Column("items_subtotal_cents", sa.Integer(), server_default="0", nullable=False),
        sa.Column("shipping_cents", sa.Integer(), server_default="0", nullable=False),
        sa.Column("tax_cents", sa.Integer(), server_default="0", nullable=False),
        sa.Column("total_cents", sa.Integer(), server_default="0", nullable=False),
        sa.Column("refunded_cents", sa.Integer(), server_default="0", nullable=False),
        *_id_and_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("order_number"),
    )
    op.create_index(op.f("ix_orders_buyer_ref"), "orders", ["buyer_ref"], unique=False)
    op.create_index(op.f("ix_orders_placed_at"), "orders", ["placed_at"], unique=False)

    op.create_table(
        "seller_sub_orders",
        sa.Column("order_id", sa.UUID(), nullable=False),
        sa.Column("store_id", sa.UUID(), nullable=False),
        sa.Column("sub_order_number", sa.String(length=48), nullable=False),
        sa.Column("status", _enum("order_status"), nullable=False),
        sa.Column("items_subtotal_cents", sa.Integer(), server_default="0", nullable=False),
        sa.Column("shipping_cents", sa.Integer(), server_default="0", nullable=False),
        sa.Column("total_cents", sa.Integer(), server_default="0", nullable=False),
        sa.Column("refunded_cents", sa.Integer(), server_default="0", nullable=False),
        sa.Column("tracking_number", sa.String(length=120), nullable=True),
        sa.Column("carrier_name", sa.String(length=120), nullable=True),
        sa.Column("tracking_url", sa.String(length=500), nullable=True),
        sa.Column("shipped_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("delivered_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        *_id_and_timestamps(),
        sa.CheckConstraint("refunded_cents <= total_cents", name="ck_sub_order_refund_bound"),
        sa.ForeignKeyConstraint(["order_id"], ["orders.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["store_id"], ["stores.id"], ondelete="RESTRICT"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("sub_order_number"),
        sa.UniqueConstraint("order_id", "store_id", name="uq_sub_order_store"),
    )
    op.create_index(op.f("ix_seller_sub_orders_order_id"), "seller_sub_orders", ["order_id"], unique=False)
    op.create_index(op.f("ix_seller_sub_orders_store_id"), "seller_sub_orders", ["store_id"], unique=False)

    op.create_table(
        "order_items",
        sa.Column("sub_order_id", sa.UUID(), nullable=False),
        sa.Column("product_id", sa.UUID(), nullable=False),
        sa.Column("product_title", sa.String(length=200), nullable=False),
        sa.Column("category", sa.String(length=80), nullable=True),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("unit_price_cents", sa.Integer(), nullable=False),
        sa.Column("subtotal_cents", sa.Integer(), nullable=False),
        sa.Column("tax_rate_bp", sa.Integer(), server_default="0", nullable=False),
        sa.Column("tax_cents", sa.Integer(), server_default="0", nullable=False),
        sa.Column("status", _enum("order_item_status"), nullable=False),
        sa.Column("quantity_shipped", sa.Integer(), server_default="0", nullable=False),
        sa.Column("quantity_cancelled", sa.Integer(), server_default="0", nullable=False),
        sa.Column("refunded_cents", sa.Integer(), server_default="0", nullable=False),
        *_id_and_timestamps(),
        sa.CheckConstraint("quantity >= 1", name="ck_order_item_quantity"),
        sa.CheckConstraint("quantity_shipped + quantity_cancelled <= quantity", name="ck_order_item_fulfillment"),
        sa.ForeignKeyConstraint(["sub_order_id"], ["seller_sub_orders.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"], ondelete="RESTRICT"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_order_items_sub_order_id"), "order_items", ["sub_order_id"], unique=False)

    op.create_table(
        "order_status_history",
        sa.Column("order_id", sa.UUID(), nullable=False),
        sa.Column("sub_order_id", sa.UUID(), nullable=True),
        sa.Column("from_status", _enum("order_status"), nullable=True),
        sa.Column("to_status", _enum("order_status"), nullable=False),
        sa.Column("actor", sa.String(length=200), nullable=False),
        sa.Column("note", sa.Text(), nullable=True),
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.ForeignKeyConstraint(["order_id"], ["orders.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["sub_order_id"], ["seller_sub_orders.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_order_status_history_order_id"), "order_status_history", ["order_id"], unique=False)
    op.create_index(
        op.f("ix_order_status_history_sub_order_id"), "order_status_history", ["sub_order_id"], unique=False
    )

    op.create_table(
        "payment_transactions",
        sa.Column("order_id", sa.UUID(), nullable=False),
        sa.Column("provider", sa.String(length=40), nullable=False),
        sa.Column("provider_transaction_id", sa.String(length=200), nullable=True),
        sa.Column("status", _enum("payment_status"), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("currency_code", sa.String(length=3), nullable=False),
        sa.Column("redirect_url", sa.String(length=1000), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("provider_metadata", sa.JSON(), nullable=True),
        sa.Column("authorized_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        *_id_and_timestamps(),
        sa.ForeignKeyConstraint(["order_id"], ["orders.id"], ondelete="RESTRICT"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("provider_transaction_id"),
    )
    op.create_index(op.f("ix_payment_transactions_order_id"), "payment_transactions", ["order_id"], unique=False)

    op.create_table(
        "payment_webhook_events",
        sa.Column("provider", sa.String(length=40), nullable=False),
        sa.Column("event_id", sa.String(length=200), nullable=False),
        sa.Column("payment_transaction_id", sa.UUID(), nullable=True),
        sa.Column("provider_status", sa.String(length=80), nullable=False),
        sa.Column("payload", sa.JSON(), nullable=True),
        *_id_and_timestamps(),
        sa.ForeignKeyConstraint(["payment_transaction_id"], ["payment_transactions.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("provider", "event_id", name="uq_payment_webhook_event_identity"),
    )

    op.create_table(
        "payout_methods",
        sa.Column("store_id", sa.UUID(), nullable=False),
        sa.Column("kind", _enum("payout_method_kind"), nullable=False),
        sa.Column("label", sa.String(length=120), nullable=False),
        sa.Column("account_ref", sa.String(length=200), nullable=False),
        sa.Column("account_holder", sa.String(length=200), nullable=False),
        sa.Column("is_default", sa.Boolean(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        *_id_and_timestamps(),
        sa.ForeignKeyConstraint(["store_id"], ["stores.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_payout_methods_store_id"), "payout_methods", ["store_id"], unique=False)

    op.create_table(
        "payout_schedules",
        sa.Column("store_id", sa.UUID(), nullable=False),
        sa.Column("frequency", _enum("payout_frequency"), nullable=False),
        sa.Column("day_of_week", sa.Integer(), nullable=True),
        sa.Column("day_of_month", sa.Integer(), nullable=True),
        sa.Column("minimum_cents", sa.Integer(), nullable=False),
        sa.Column("next_payout_date", sa.Date(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        *_id_and_timestamps(),
        sa.CheckConstraint(
            "day_of_week IS NULL OR (day_of_week >= 0 AND day_of_week <= 6)", name="ck_payout_schedule_weekday"
        ),
        sa.CheckConstraint(
            "day_of_month IS NULL OR (day_of_month >= 1 AND day_of_month <= 28)", name="ck_payout_schedule_monthday"
        ),
        sa.ForeignKeyConstraint(["store_id"], ["stores.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("store_id"),
    )
    op.create_index(
        op.f("ix_payout_schedules_next_payout_date"), "payout_schedules", ["next_payout_date"], unique=False
    )

    op.create_table(
        "payouts",
        sa.Column("payout_number", sa.String(length=40), nullable=False),
        sa.Column("store_id", sa.UUID(), nullable=False),
        sa.Column("schedule_id", sa.UUID(), nullable=True),
        sa.Column("payout_method_id", sa.UUID(), nullable=False),
        sa.Column("status", _enum("payout_status"), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("currency_code", sa.String(length=3), nullable=False),
        sa.Column("scheduled_for", sa.Date(), nullable=False),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("external_reference", sa.String(length=200), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("retry_count", sa.Integer(), server_default="0", nullable=False),
        sa.Column("next_retry_at", sa.DateTime(timezone=True), nullable=True),
        *_id_and_timestamps(),
        sa.CheckConstraint("amount_cents > 0", name="ck_payout_amount_positive"),
        sa.ForeignKeyConstraint(["store_id"], ["stores.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["schedule_id"], ["payout_schedules.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["payout_method_id"], ["payout_methods.id"], ondelete="RESTRICT"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("payout_number"),
    )
    op.create_index(op.f("ix_payouts_store_id"), "payouts", ["store_id"], unique=False)
    op.create_index(op.f("ix_payouts_completed_at"), "payouts", ["completed_at"], unique=False)

    op.create_table(
        "escrow_transactions",
        sa.Column("sub_order_id", sa.UUID(), nullable=False),
        sa.Column("payment_transaction_id", sa.UUID(), nullable=False),
        sa.Column("store_id", sa.UUID(), nullable=False),
        sa.Column("status", _enum("escrow_status"), nullable=False),
        sa.Column("gross_cents", sa.Integer(), nullable=False),
        sa.Column("commission_cents", sa.Integer(), nullable=False),
        sa.Column("net_cents", sa.Integer(), nullable=False),
        sa.Column("refunded_cents", sa.Integer(), server_default="0", nullable=False),
        sa.Column("commission_refunded_cents", sa.Integer(), server_default="0", nullable=False),
        sa.Column("eligible_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("released_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("returned_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("payout_id", sa.UUID(), nullable=True),
        *_id_and_timestamps(),
        sa.CheckConstraint("refunded_cents <= gross_cents", name="ck_escrow_refund_bound"),
        sa.CheckConstraint(
            "commission_refunded_cents <= commission_cents", name="ck_escrow_commission_refund_bound"
        ),
        sa.ForeignKeyConstraint(["sub_order_id"], ["seller_sub_orders.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["payment_transaction_id"], ["payment_transactions.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["store_id"], ["stores.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["payout_id"], ["payouts.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("sub_order_id"),
    )
    op.create_index(
        op.f("ix_escrow_transactions_payment_transaction_id"),
        "escrow_transactions",
        ["payment_transaction_id"],
        unique=False,
    )
    op.create_index(op.f("ix_escrow_transactions_store_id"), "escrow_transactions", ["store_id"], unique=False)
    op.create_index(op.f("ix_escrow_transactions_eligible_at"), "escrow_transactions", ["eligible_at"], unique=False)
    op.create_index(op.f("ix_escrow_transactions_payout_id"), "escrow_transactions", ["payout_id"], unique=False)

    op.create_table(
        "commission_rules",
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("rate_bp", sa.Integer(), nullable=False),
        sa.Column("fixed_cents", sa.Integer(), server_default="0", nullable=False),
        sa.Column("applicability", _enum("commission_applicability"), nullable=False),
        sa.Column("category", sa.String(length=80), nullable=True),
        sa.Column("store_id", sa.UUID(), nullable=True),
        sa.Column("seller_tier", _enum("seller_tier"), nullable=True),
        sa.Column("effective_from", sa.Date(), nullable=False),
        sa.Column("effective_to", sa.Date(), nullable=True),
        sa.Column("priority", sa.Integer(), server_default="0", nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        *_id_and_timestamps(),
        sa.CheckConstraint("rate_bp >= 0 AND rate_bp <= 10000", name="ck_commission_rule_rate"),
        sa.CheckConstraint("fixed_cents >= 0", name="ck_commission_rule_fixed"),
        sa.ForeignKeyConstraint(["store_id"], ["stores.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_commission_rules_store_id"), "commission_rules", ["store_id"], unique=False)

    op.create_table(
        "commission_transactions",
        sa.Column("escrow_id", sa.UUID(), nullable=False),
        sa.Column("store_id", sa.UUID(), nullable=False),
        sa.Column("sub_order_id", sa.UUID(), nullable=False),
        sa.Column("kind", _enum("commission_transaction_kind"), nullable=False),
        sa.Column("source", _enum("commission_source"), nullable=False),
        sa.Column("rule_id", sa.UUID(), nullable=True),
        sa.Column("rate_bp", sa.Integer(), nullable=False),
        sa.Column("fixed_cents", sa.Integer(), nullable=False),
        sa.Column("base_cents", sa.Integer(), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("description", sa.String(length=300), nullable=True),
        sa.Column("occurred_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("id", sa.UUID(), nullable=False),
        sa.ForeignKeyConstraint(["escrow_id"], ["escrow_transactions.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["store_id"], ["stores.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["sub_order_id"], ["seller_sub_orders.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["rule_id"], ["commission_rules.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        op.f("ix_commission_transactions_escrow_id"), "commission_transactions", ["escrow_id"], unique=False
    )
    op.create_index(
        op.f("ix_commission_transactions_store_id"), "commission_transactions", ["store_id"], unique=False
    )
    op.create_index(
        op.f("ix_commission_transactions_occurred_at"), "commission_transactions", ["occurred_at"], unique=False
    )

    op.create_table(
        "refund_transactions",
        sa.Column("refund_number", sa.String(length=40), nullable=False),
        sa.Column("order_id", sa.UUID(), nullable=False),
        sa.Column("sub_order_id", sa.UUID(), nullable=True),
        sa.Column("payment_transaction_id", sa.UUID(), nullable=False),
        sa.Column("kind", _enum("refund_kind"), nullable=False),
        sa.Column("status", _enum("refund_status"), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("currency_code", sa.String(length=3), nullable=False),
        sa.Column("reason", sa.String(length=500), nullable=False),
        sa.Column("initiated_by", sa.String(length=200), nullable=False),
        sa.Column("provider_refund_id", sa.String(length=200), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        *_id_and_timestamps(),
        sa.CheckConstraint("amount_cents > 0", name="ck_refund_amount_positive"),
        sa.ForeignKeyConstraint(["order_id"], ["orders.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["sub_order_id"], ["seller_sub_orders.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["payment_transaction_id"], ["payment_transactions.id"], ondelete="RESTRICT"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("refund_number"),
    )
    op.create_index(op.f("ix_refund_transactions_order_id"), "refund_transactions", ["order_id"], unique=False)
    op.create_index(
        op.f("ix_refund_transactions_sub_order_id"), "refund_transactions", ["sub_order_id"], unique=False
    )

    op.create_table(
        "return_requests",
        sa.Column("return_number", sa.String(length=40), nullable=False),
        sa.Column("order_id", sa.UUID(), nullable=False),
        sa.Column("sub_order_id", sa.UUID(), nullable=False),
        sa.Column("buyer_ref", sa.String(length=120), nullable=False),
        sa.Column("kind", _enum("return_kind"), nullable=False),
        sa.Column("reason", _enum("return_reason"), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("status", _enum("return_status"), nullable=False),
        sa.Column("is_full_return", sa.Boolean(), nullable=False),
        sa.Column("refund_amount_cents", sa.Integer(), nullable=False),
        sa.Column("seller_notes", sa.Text(), nullable=True),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        sa.Column("escalation_reason", sa.Text(), nullable=True),
        sa.Column("resolution", _enum("return_resolution"), nullable=True),
        sa.Column("resolution_amount_cents", sa.Integer(), nullable=True),
        sa.Column("resolution_notes", sa.Text(), nullable=True),
        sa.Column("refund_id", sa.UUID(), nullable=True),
        sa.Column("requested_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("rejected_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("escalated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        *_id_and_timestamps(),
        sa.ForeignKeyConstraint(["order_id"], ["orders.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["sub_order_id"], ["seller_sub_orders.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["refund_id"], ["refund_transactions.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("return_number"),
    )
    op.create_index(op.f("ix_return_requests_order_id"), "return_requests", ["order_id"], unique=False)
    op.create_index(op.f("ix_return_requests_sub_order_id"), "return_requests", ["sub_order_id"], unique=False)
    op.create_index(op.f("ix_return_requests_buyer_ref"), "return_requests", ["buyer_ref"], unique=False)

    op.create_table(
        "return_request_items",
        sa.Column("return_request_id", sa.UUID(), nullable=False),
        sa.Column("order_item_id", sa.UUID(), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("id", sa.UUID(), nullable=False),
        sa.CheckConstraint("quantity >= 1", name="ck_return_item_quantity"),
        sa.ForeignKeyConstraint(["return_request_id"], ["return_requests.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["order_item_id"], ["order_items.id"], ondelete="RESTRICT"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        op.f("ix_return_request_items_return_request_id"), "return_request_items", ["return_request_id"], unique=False
    )

    op.create_table(
        "settlements",
        sa.Column("settlement_number", sa.String(length=40), nullable=False),
        sa.Column("store_id", sa.UUID(), nullable=False),
        sa.Column("period_start", sa.Date(), nullable=False),
        sa.Column("period_end", sa.Date(), nullable=False),
        sa.Column("status", _enum("settlement_status"), nullable=False),
        sa.Column("version", sa.Integer(), server_default="1", nullable=False),
        sa.Column("is_current", sa.Boolean(), nullable=False),
        sa.Column("previous_settlement_id", sa.UUID(), nullable=True),
        sa.Column("currency_code", sa.String(length=3), nullable=False),
        sa.Column("gross_cents", sa.Integer(), server_default="0", nullable=False),
        sa.Column("refunds_cents", sa.Integer(), server_default="0", nullable=False),
        sa.Column("commission_cents", sa.Integer(), server_default="0", nullable=False),
        sa.Column("adjustments_cents", sa.Integer(), server_default="0", nullable=False),
        sa.Column("net_cents", sa.Integer(), server_default="0", nullable=False),
        sa.Column("payouts_cents", sa.Integer(), server_default="0", nullable=False),
        sa.Column("generated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("finalized_at", sa.DateTime(timezone=True), nullable=True),
        *_id_and_timestamps(),
        sa.ForeignKeyConstraint(["store_id"], ["stores.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["previous_settlement_id"], ["settlements.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("settlement_number"),
        sa.UniqueConstraint("store_id", "period_start", "period_end", "version", name="uq_settlement_version"),
    )
    op.create_index(op.f("ix_settlements_store_id"), "settlements", ["store_id"], unique=False)

    op.create_table(
        "settlement_items",
        sa.Column("settlement_id", sa.UUID(), nullable=False),
        sa.Column("sub_order_id", sa.UUID(), nullable=False),
        sa.Column("escrow_id", sa.UUID(), nullable=True),
        sa.Column("sub_order_number", sa.String(length=48), nullable=False),
        sa.Column("order_placed_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("gross_cents", sa.Integer(), nullable=False),
        sa.Column("refunded_cents", sa.Integer(), nullable=False),
        sa.Column("commission_cents", sa.Integer(), nullable=False),
        sa.Column("net_cents", sa.Integer(), nullable=False),
        sa.Column("id", sa.UUID(), nullable=False),
        sa.ForeignKeyConstraint(["settlement_id"], ["settlements.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["sub_order_id"], ["seller_sub_orders.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["escrow_id"], ["escrow_transactions.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_settlement_items_settlement_id"), "settlement_items", ["settlement_id"], unique=False)

    op.create_table(
        "settlement_adjustments",
        sa.Column("settlement_id", sa.UUID(), nullable=False),
        sa.Column("kind", _enum("settlement_adjustment_kind"), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("description", sa.String(length=500), nullable=False),
        sa.Column("related_settlement_id", sa.UUID(), nullable=True),
        sa.Column("created_by", sa.String(length=200), nullable=False),
        *_id_and_timestamps(),
        sa.ForeignKeyConstraint(["settlement_id"], ["settlements.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["related_settlement_id"], ["settlements.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        op.f("ix_settlement_adjustments_settlement_id"), "settlement_adjustments", ["settlement_id"], unique=False
    )

    op.create_table(
        "commission_invoices",
        sa.Column("invoice_number", sa.String(length=40), nullable=False),
        sa.Column("store_id", sa.UUID(), nullable=False),
        sa.Column("period_start", sa.Date(), nullable=False),
        sa.Column("period_end", sa.Date(), nullable=False),
        sa.Column("issue_date", sa.Date(), nullable=False),
        sa.Column("due_date", sa.Date(), nullable=False),
        sa.Column("status", _enum("commission_invoice_status"), nullable=False),
        sa.Column("currency_code", sa.String(length=3), nullable=False),
        sa.Column("subtotal_cents", sa.Integer(), nullable=False),
        sa.Column("tax_rate_bp", sa.Integer(), nullable=False),
        sa.Column("tax_cents", sa.Integer(), nullable=False),
        sa.Column("total_cents", sa.Integer(), nullable=False),
        sa.Column("is_credit_note", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        sa.Column("correcting_invoice_id", sa.UUID(), nullable=True),
        sa.Column("pdf_path", sa.String(length=500), nullable=True),
        sa.Column("issued_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        *_id_and_timestamps(),
        sa.ForeignKeyConstraint(["store_id"], ["stores.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["correcting_invoice_id"], ["commission_invoices.id"], ondelete="RESTRICT"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("invoice_number"),
    )
    op.create_index(op.f("ix_commission_invoices_store_id"), "commission_invoices", ["store_id"], unique=False)

    op.create_table(
        "commission_invoice_items",
        sa.Column("invoice_id", sa.UUID(), nullable=False),
        sa.Column("commission_transaction_id", sa.UUID(), nullable=True),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("description", sa.String(length=300), nullable=False),
        sa.Column("base_cents", sa.Integer(), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("id", sa.UUID(), nullable=False),
        sa.ForeignKeyConstraint(["invoice_id"], ["commission_invoices.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(
            ["commission_transaction_id"], ["commission_transactions.id"], ondelete="SET NULL"
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        op.f("ix_commission_invoice_items_invoice_id"), "commission_invoice_items", ["invoice_id"], unique=False
    )

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("actor", sa.String(length=200), nullable=False),
        sa.Column("entity_type", sa.String(length=100), nullable=False),
        sa.Column("entity_id", sa.UUID(), nullable=False),
        sa.Column("action", sa.String(length=100), nullable=False),
        sa.Column("before", sa.JSON(), nullable=True),
        sa.Column("after", sa.JSON(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_audit_logs_entity", "audit_logs", ["entity_type", "entity_id"], unique=False)

    op.create_table(
        "document_counters",
        sa.Column("doc_type", _enum("document_type"), nullable=False),
        sa.Column("year", sa.Integer(), nullable=False),
        sa.Column("next_number", sa.Integer(), nullable=False),
        sa.CheckConstraint("next_number >= 1", name="ck_document_counters_next_number"),
        sa.PrimaryKeyConstraint("doc_type", "year", name="pk_document_counters"),
    )

    op.create_table(
        "job_locks",
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("locked_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("locked_by", sa.String(length=200), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_success_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_error_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_error_message", sa.Text(), nullable=True),
        sa.PrimaryKeyConstraint("name"),
    )


def downgrade() -> None:
    for table in (
        "job_locks",
        "document_counters",
        "audit_logs",
        "commission_invoice_items",
        "commission_invoices",
        "settlement_adjustments",
        "settlement_items",
        "settlements",
        "return_request_items",
        "return_requests",
        "refund_transactions",
        "commission_transactions",
        "commission_rules",
        "escrow_transactions",
        "payouts",
        "payout_schedules",
        "payout_methods",
        "payment_webhook_events",
        "payment_transactions",
        "order_status_history",
        "order_items",
        "seller_sub_orders",
        "orders",
        "cart_items",
        "carts",
        "products",
        "stores",
    ):
        op.drop_table(table)

    for name in reversed(ENUM_TYPES):
        op.execute(f"DROP TYPE IF EXISTS {name}")
