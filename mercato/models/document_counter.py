from __future__ import annotations

from sqlalchemy import CheckConstraint, Integer, PrimaryKeyConstraint
from sqlalchemy.orm import Mapped, mapped_column

from mercato.core.enums import DocumentType
from mercato.models.base import Base
from mercato.models.sql_enums import document_type_enum


class DocumentCounter(Base):
    """One gapless sequence per document type and calendar year."""

    __tablename__ = "document_counters"
    __table_args__ = (
        PrimaryKeyConstraint("doc_type", "year", name="pk_document_counters"),
        CheckConstraint("next_number >= 1", name="ck_document_counters_next_number"),
    )

    doc_type: Mapped[DocumentType] = mapped_column(document_type_enum, nullable=False)
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    next_number: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
