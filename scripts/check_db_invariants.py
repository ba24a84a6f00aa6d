from __future__ import annotations

import asyncio
import os
import sys
from pathlib import Path

from sqlalchemy import text
from sqlalchemy.ext.asyncio import create_async_engine

# Script entrypoint: ensure the repo root is importable.
REPO_DIR = Path(__file__).resolve().parents[1]
if str(REPO_DIR) not in sys.path:
    sys.path.insert(0, str(REPO_DIR))

from mercato.core.enums import (  # noqa: E402
    CommissionInvoiceStatus,
    DocumentType,
    EscrowStatus,
    OrderItemStatus,
    OrderStatus,
    PaymentStatus,
    PayoutStatus,
    RefundStatus,
    ReturnStatus,
    SettlementStatus,
)


EXPECTED_ENUMS: dict[str, list[str]] = {
    "order_status": [e.value for e in OrderStatus],
    "order_item_status": [e.value for e in OrderItemStatus],
    "payment_status": [e.value for e in PaymentStatus],
    "escrow_status": [e.value for e in EscrowStatus],
    "payout_status": [e.value for e in PayoutStatus],
    "refund_status": [e.value for e in RefundStatus],
    "return_status": [e.value for e in ReturnStatus],
    "settlement_status": [e.value for e in SettlementStatus],
    "commission_invoice_status": [e.value for e in CommissionInvoiceStatus],
    "document_type": [e.value for e in DocumentType],
}

# Each query returns the rows that break a money invariant.
MONEY_CHECKS: dict[str, str] = {
    "sub-order totals add up to the order total": """
        SELECT o.order_number
        FROM orders o
        JOIN seller_sub_orders s ON s.order_id = o.id
        GROUP BY o.id, o.order_number, o.total_cents
        HAVING sum(s.total_cents) <> o.total_cents
    """,
    "refunds never exceed the sub-order total": """
        SELECT sub_order_number FROM seller_sub_orders WHERE refunded_cents > total_cents
    """,
    "paid payouts match their escrows": """
        SELECT p.payout_number
        FROM payouts p
        JOIN escrow_transactions e ON e.payout_id = p.id
        WHERE p.status = 'PAID'
        GROUP BY p.id, p.payout_number, p.amount_cents
        HAVING sum(e.gross_cents - e.refunded_cents - (e.commission_cents - e.commission_refunded_cents))
            <> p.amount_cents
    """,
    "settlement net equals gross - refunds - commission + adjustments": """
        SELECT settlement_number
        FROM settlements
        WHERE net_cents <> gross_cents - refunds_cents - commission_cents + adjustments_cents
    """,
    "one current settlement per store and period": """
        SELECT store_id::text
        FROM settlements
        WHERE is_current
        GROUP BY store_id, period_start, period_end
        HAVING count(*) > 1
    """,
}


async def _main() -> int:
    url = os.environ.get("DATABASE_URL")
    if not url:
        print("DATABASE_URL is required.", file=sys.stderr)
        return 2

    engine = create_async_engine(url, pool_pre_ping=True)
    try:
        async with engine.connect() as conn:
            for type_name, expected in EXPECTED_ENUMS.items():
                rows = (
                    await conn.execute(
                        text(
                            """
                            SELECT e.enumlabel
                            FROM pg_enum e
                            JOIN pg_type t ON t.oid = e.enumtypid
                            JOIN pg_namespace n ON n.oid = t.typnamespace
                            WHERE n.nspname = 'public' AND t.typname = :type_name
                            ORDER BY e.enumsortorder
                            """
                        ),
                        {"type_name": type_name},
                    )
                ).all()
                actual = [r[0] for r in rows]

                missing = [v for v in expected if v not in actual]
                if missing:
                    print(f"Enum type '{type_name}' is missing values: {missing}", file=sys.stderr)
                    print(f"Expected: {expected}", file=sys.stderr)
                    print(f"Actual:   {actual}", file=sys.stderr)
                    return 1

            failed = False
            for label, sql in MONEY_CHECKS.items():
                offenders = [r[0] for r in (await conn.execute(text(sql))).all()]
                if offenders:
                    failed = True
                    print(f"Invariant violated ({label}): {offenders[:20]}", file=sys.stderr)
            if failed:
                return 1
    finally:
        await engine.dispose()

    print("DB invariants ok (enums complete, money checks pass).")
    return 0


if __name__ == "__main__":
    raise SystemExit(asyncio.run(_main()))
