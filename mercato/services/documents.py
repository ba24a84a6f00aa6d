from __future__ import annotations

from datetime import date

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from mercato.core.enums import DocumentType
from mercato.models.document_counter import DocumentCounter


_PREFIXES: dict[DocumentType, str] = {
    DocumentType.ORDER: "ORD",
    DocumentType.RETURN_REQUEST: "RTN",
    DocumentType.REFUND: "RFD",
    DocumentType.PAYOUT: "PO",
    DocumentType.SETTLEMENT: "STL",
    DocumentType.COMMISSION_INVOICE: "INV",
    DocumentType.COMMISSION_CREDIT_NOTE: "CRN",
}


async def next_document_number(session: AsyncSession, *, doc_type: DocumentType, issue_date: date) -> str:
    year = issue_date.year
    result = await session.execute(
        select(DocumentCounter)
        .where(DocumentCounter.doc_type == doc_type, DocumentCounter.year == year)
        .with_for_update()
    )
    counter = result.scalar_one_or_none()
    if counter is None:
        counter = DocumentCounter(doc_type=doc_type, year=year, next_number=1)
        session.add(counter)
        await session.flush()

    number = counter.next_number
    counter.next_number = number + 1
    await session.flush()

    return f"{_PREFIXES.get(doc_type, 'DOC')}-{year}-{number:06d}"
