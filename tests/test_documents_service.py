from __future__ import annotations

from datetime import date

import pytest

from mercato.core.enums import DocumentType
from mercato.services.documents import next_document_number


@pytest.mark.asyncio
async def test_next_document_number_increments_per_type_and_year(db_session) -> None:
    async with db_session.begin():
        first = await next_document_number(
            db_session,
            doc_type=DocumentType.COMMISSION_INVOICE,
            issue_date=date(2026, 2, 8),
        )
        second = await next_document_number(
            db_session,
            doc_type=DocumentType.COMMISSION_INVOICE,
            issue_date=date(2026, 2, 9),
        )
        other_type = await next_document_number(
            db_session,
            doc_type=DocumentType.COMMISSION_CREDIT_NOTE,
            issue_date=date(2026, 2, 9),
        )
        next_year = await next_document_number(
            db_session,
            doc_type=DocumentType.COMMISSION_INVOICE,
            issue_date=date(2027, 1, 1),
        )

    assert first == "INV-2026-000001"
    assert second == "INV-2026-000002"
    assert other_type == "CRN-2026-000001"
    assert next_year == "INV-2027-000001"


@pytest.mark.asyncio
async def test_next_document_number_prefixes(db_session) -> None:
    day = date(2026, 5, 1)
    async with db_session.begin():
        numbers = {
            doc_type: await next_document_number(db_session, doc_type=doc_type, issue_date=day)
            for doc_type in (
                DocumentType.ORDER,
                DocumentType.RETURN_REQUEST,
                DocumentType.REFUND,
                DocumentType.PAYOUT,
                DocumentType.SETTLEMENT,
            )
        }

    assert numbers == {
        DocumentType.ORDER: "ORD-2026-000001",
        DocumentType.RETURN_REQUEST: "RTN-2026-000001",
        DocumentType.REFUND: "RFD-2026-000001",
        DocumentType.PAYOUT: "PO-2026-000001",
        DocumentType.SETTLEMENT: "STL-2026-000001",
    }
