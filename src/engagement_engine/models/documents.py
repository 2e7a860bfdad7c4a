"""Invoice documents, document numbering and the compliance log.

Invoice documents and compliance entries are write-once: the ORM refuses to
flush updates or deletes for them.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import (
    CHAR,
    JSON,
    CheckConstraint,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    event,
)
from sqlalchemy.orm import Mapped, mapped_column

from engagement_engine.models.base import Base, utcnow


class DocumentSequence(Base):
    """Monotonic document counter scoped by calendar month ("YYYY-MM")."""

    __tablename__ = "document_sequences"

    period: Mapped[str] = mapped_column(String(7), primary_key=True)
    last_value: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    __table_args__ = (
        CheckConstraint("last_value >= 0", name="document_sequence_value_ck"),
    )


class DocumentNumber(Base):
    """Sequence number allocated to one payment.

    Both documents of a payment print this number; the contractor receipt
    adds a fixed suffix.
    """

    __tablename__ = "document_numbers"

    payment_record_id: Mapped[UUID] = mapped_column(
        ForeignKey("payment_records.payment_record_id"), primary_key=True
    )
    period: Mapped[str] = mapped_column(String(7), nullable=False)
    sequence_number: Mapped[int] = mapped_column(Integer, nullable=False)
    invoice_number: Mapped[str] = mapped_column(Text, nullable=False)
    allocated_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow)

    __table_args__ = (
        UniqueConstraint("period", "sequence_number", name="document_number_unique"),
    )


class InvoiceDocument(Base):
    """A business invoice or contractor receipt for a completed payment."""

    __tablename__ = "invoice_documents"

    invoice_document_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    payment_record_id: Mapped[UUID] = mapped_column(
        ForeignKey("payment_records.payment_record_id"), nullable=False
    )
    document_type: Mapped[str] = mapped_column(String(32), nullable=False)
    sequence_number: Mapped[int] = mapped_column(Integer, nullable=False)
    document_number: Mapped[str] = mapped_column(Text, nullable=False)
    period: Mapped[str] = mapped_column(String(7), nullable=False)
    document_label: Mapped[str] = mapped_column(Text, nullable=False)
    currency: Mapped[str] = mapped_column(CHAR(3), nullable=False)

    gross_amount: Mapped[Decimal] = mapped_column(Numeric(14, 4), nullable=False)
    platform_fee: Mapped[Decimal | None] = mapped_column(Numeric(14, 4), nullable=True)
    net_amount: Mapped[Decimal | None] = mapped_column(Numeric(14, 4), nullable=True)

    business_id: Mapped[UUID] = mapped_column(nullable=False)
    business_name: Mapped[str] = mapped_column(Text, nullable=False)
    contractor_id: Mapped[UUID] = mapped_column(nullable=False)
    contractor_name: Mapped[str] = mapped_column(Text, nullable=False)

    payload: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    issued_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow)

    __table_args__ = (
        UniqueConstraint(
            "payment_record_id", "document_type", name="invoice_document_one_per_type"
        ),
        CheckConstraint(
            "document_type IN ('business_invoice', 'contractor_receipt')",
            name="invoice_document_type_ck",
        ),
        CheckConstraint(
            "document_type = 'contractor_receipt' OR "
            "(platform_fee IS NULL AND net_amount IS NULL)",
            name="invoice_document_business_gross_only_ck",
        ),
    )


class ComplianceLogEntry(Base):
    """Append-only audit row, exactly one per completed payment."""

    __tablename__ = "compliance_log"

    compliance_log_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    payment_record_id: Mapped[UUID] = mapped_column(
        ForeignKey("payment_records.payment_record_id"), nullable=False
    )
    work_item_id: Mapped[UUID] = mapped_column(nullable=False)
    business_id: Mapped[UUID] = mapped_column(nullable=False)
    contractor_id: Mapped[UUID] = mapped_column(nullable=False)

    gross_amount: Mapped[Decimal] = mapped_column(Numeric(14, 4), nullable=False)
    platform_fee: Mapped[Decimal] = mapped_column(Numeric(14, 4), nullable=False)
    net_amount: Mapped[Decimal] = mapped_column(Numeric(14, 4), nullable=False)
    currency: Mapped[str] = mapped_column(CHAR(3), nullable=False)

    trigger_event: Mapped[str] = mapped_column(Text, nullable=False)
    approved_by: Mapped[UUID | None] = mapped_column(nullable=True)
    approval_timestamp: Mapped[datetime | None] = mapped_column(nullable=True)
    payment_timestamp: Mapped[datetime] = mapped_column(nullable=False)
    processor_reference: Mapped[str | None] = mapped_column(Text, nullable=True)
    gateway_intent_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    deliverable_reference: Mapped[str | None] = mapped_column(Text, nullable=True)

    details: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    recorded_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow)

    __table_args__ = (
        UniqueConstraint("payment_record_id", name="compliance_log_one_per_payment"),
    )


class ImmutableRecordError(Exception):
    """Raised when code attempts to modify a write-once record."""


def _refuse_mutation(mapper: Any, connection: Any, target: Any) -> None:
    raise ImmutableRecordError(
        f"{type(target).__name__} is write-once and cannot be updated or deleted"
    )


for _model in (InvoiceDocument, ComplianceLogEntry):
    event.listen(_model, "before_update", _refuse_mutation)
    event.listen(_model, "before_delete", _refuse_mutation)
