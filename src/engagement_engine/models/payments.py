"""Payment and budget models."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import (
    CHAR,
    Boolean,
    CheckConstraint,
    Date,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from engagement_engine.models.base import Base, UpdatedAtMixin, utcnow


class PaymentRecord(Base, UpdatedAtMixin):
    """One attempted or completed money movement for a work item.

    Unique on work_item_id: at most one payment record per work item.
    `amount` is copied from the work item at creation, never from input.
    """

    __tablename__ = "payment_records"

    payment_record_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    work_item_id: Mapped[UUID] = mapped_column(
        ForeignKey("work_items.work_item_id"), nullable=False
    )
    business_id: Mapped[UUID] = mapped_column(nullable=False)
    contractor_id: Mapped[UUID] = mapped_column(nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(14, 4), nullable=False)
    currency: Mapped[str] = mapped_column(CHAR(3), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending")

    gateway_intent_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    gateway_intent_status: Mapped[str | None] = mapped_column(String(32), nullable=True)
    gateway_client_secret: Mapped[str | None] = mapped_column(Text, nullable=True)
    idempotency_key: Mapped[str] = mapped_column(Text, nullable=False)
    attempt: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    scheduled_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow)
    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    processor_reference: Mapped[str | None] = mapped_column(Text, nullable=True)

    review_required: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    review_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (
        UniqueConstraint("work_item_id", name="payment_record_one_per_work_item"),
        CheckConstraint(
            "status IN ('pending', 'processing', 'completed', 'failed')",
            name="payment_record_status_ck",
        ),
        CheckConstraint("amount > 0", name="payment_record_amount_ck"),
        Index("ix_payment_records_status", "status"),
        Index("ix_payment_records_business", "business_id"),
    )

    @property
    def is_completed(self) -> bool:
        """Whether the money movement is final."""
        return self.status == "completed"


class BudgetLedger(Base, UpdatedAtMixin):
    """Per-business running total of completed spend against an optional cap."""

    __tablename__ = "budget_ledgers"

    business_id: Mapped[UUID] = mapped_column(
        ForeignKey("parties.party_id"), primary_key=True
    )
    cap: Mapped[Decimal | None] = mapped_column(Numeric(14, 4), nullable=True)
    used: Mapped[Decimal] = mapped_column(
        Numeric(14, 4), nullable=False, default=Decimal("0")
    )
    period_start: Mapped[date | None] = mapped_column(Date, nullable=True)
    period_end: Mapped[date | None] = mapped_column(Date, nullable=True)

    __table_args__ = (
        CheckConstraint("cap IS NULL OR cap >= 0", name="budget_ledger_cap_ck"),
        CheckConstraint("used >= 0", name="budget_ledger_used_ck"),
        CheckConstraint(
            "period_end IS NULL OR period_start IS NULL OR period_end >= period_start",
            name="budget_ledger_period_ck",
        ),
    )

    @property
    def remaining(self) -> Decimal | None:
        """Cap minus used, or None when uncapped."""
        if self.cap is None:
            return None
        return self.cap - self.used


class BudgetSpend(Base):
    """Marks a completed payment as applied to its business's ledger.

    Unique on payment_record_id so a webhook replay cannot count twice.
    """

    __tablename__ = "budget_spends"

    budget_spend_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    payment_record_id: Mapped[UUID] = mapped_column(
        ForeignKey("payment_records.payment_record_id"), nullable=False
    )
    business_id: Mapped[UUID] = mapped_column(nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(14, 4), nullable=False)
    applied_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow)

    __table_args__ = (
        UniqueConstraint("payment_record_id", name="budget_spend_one_per_payment"),
    )
