"""ORM models."""

from engagement_engine.models.base import Base, TimestampMixin, UpdatedAtMixin, utcnow
from engagement_engine.models.documents import (
    ComplianceLogEntry,
    DocumentNumber,
    DocumentSequence,
    ImmutableRecordError,
    InvoiceDocument,
)
from engagement_engine.models.engagement import Party, WorkItem
from engagement_engine.models.payments import BudgetLedger, BudgetSpend, PaymentRecord

__all__ = [
    "Base",
    "TimestampMixin",
    "UpdatedAtMixin",
    "utcnow",
    "Party",
    "WorkItem",
    "PaymentRecord",
    "BudgetLedger",
    "BudgetSpend",
    "DocumentSequence",
    "DocumentNumber",
    "InvoiceDocument",
    "ComplianceLogEntry",
    "ImmutableRecordError",
]
