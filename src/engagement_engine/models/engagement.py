"""Parties and work item models."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import (
    CHAR,
    CheckConstraint,
    Date,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column

from engagement_engine.models.base import Base, TimestampMixin, UpdatedAtMixin


class Party(Base, TimestampMixin):
    """A business or contractor known to the platform.

    Identity and credentials live in the authentication layer; this is the
    read model the engine validates against and prints on documents.
    """

    __tablename__ = "parties"

    party_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    role: Mapped[str] = mapped_column(String(16), nullable=False)
    display_name: Mapped[str] = mapped_column(Text, nullable=False)
    email: Mapped[str | None] = mapped_column(Text, nullable=True)
    country_code: Mapped[str | None] = mapped_column(CHAR(2), nullable=True)
    address: Mapped[str | None] = mapped_column(Text, nullable=True)
    tax_id: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (
        CheckConstraint("role IN ('business', 'contractor')", name="party_role_ck"),
    )


class WorkItem(Base, UpdatedAtMixin):
    """A unit of paid work between one business and one contractor.

    `amount` is the trusted amount: the only source for payment sizing.
    Status changes go through WorkItemService (compare-and-swap updates).
    """

    __tablename__ = "work_items"

    work_item_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    business_id: Mapped[UUID] = mapped_column(
        ForeignKey("parties.party_id"), nullable=False
    )
    contractor_id: Mapped[UUID] = mapped_column(
        ForeignKey("parties.party_id"), nullable=False
    )
    title: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    due_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(14, 4), nullable=False)
    currency: Mapped[str] = mapped_column(CHAR(3), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="proposed")

    decline_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    deliverable_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    deliverable_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    submitted_at: Mapped[datetime | None] = mapped_column(nullable=True)
    submission_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    approved_at: Mapped[datetime | None] = mapped_column(nullable=True)
    approved_by: Mapped[UUID | None] = mapped_column(nullable=True)
    paid_at: Mapped[datetime | None] = mapped_column(nullable=True)

    # Recoverable payment condition, reported separately from status
    payment_issue: Mapped[str | None] = mapped_column(String(32), nullable=True)
    payment_issue_detail: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (
        CheckConstraint(
            "status IN ('proposed', 'accepted', 'declined', 'in_review', "
            "'rejected', 'approved', 'paid')",
            name="work_item_status_ck",
        ),
        CheckConstraint("amount > 0", name="work_item_amount_ck"),
        CheckConstraint(
            "payment_issue IS NULL OR payment_issue IN ('insufficient_budget', "
            "'gateway_unavailable', 'payment_failed', 'integrity_hold')",
            name="work_item_payment_issue_ck",
        ),
        Index("ix_work_items_business_status", "business_id", "status"),
        Index("ix_work_items_contractor_status", "contractor_id", "status"),
    )
