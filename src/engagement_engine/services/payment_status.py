"""Maps raw work item and payment state to the status shown to users."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from engagement_engine.gateway.base import IntentStatus
from engagement_engine.models import PaymentRecord, WorkItem
from engagement_engine.services.state_machine import WorkItemStatus


class DisplayStatus(str, Enum):
    """User-visible payment status vocabulary."""

    PAID = "paid"
    PROCESSING = "processing"
    PENDING = "payment pending - awaiting funds"
    FAILED = "payment failed - retry available"
    BLOCKED_BUDGET = "payment blocked - budget increase required"
    ON_HOLD = "payment on hold - under review"
    NOT_STARTED = "not started"


@dataclass(frozen=True)
class PaymentDisplay:
    """Display status plus whether the business can retry."""

    status: DisplayStatus
    retry_available: bool
    detail: str | None = None

    @property
    def label(self) -> str:
        return self.status.value


def describe_payment(
    work_item: WorkItem,
    payment_record: PaymentRecord | None,
) -> PaymentDisplay:
    """Unified payment status for a work item and its payment record (if any)."""
    if work_item.status == WorkItemStatus.PAID or (
        payment_record is not None and payment_record.is_completed
    ):
        return PaymentDisplay(DisplayStatus.PAID, retry_available=False)

    if (payment_record is not None and payment_record.review_required) or (
        work_item.payment_issue == "integrity_hold"
    ):
        reason = payment_record.review_reason if payment_record else work_item.payment_issue_detail
        return PaymentDisplay(DisplayStatus.ON_HOLD, retry_available=False, detail=reason)

    if work_item.status != WorkItemStatus.APPROVED:
        return PaymentDisplay(DisplayStatus.NOT_STARTED, retry_available=False)

    if work_item.payment_issue == "insufficient_budget":
        return PaymentDisplay(
            DisplayStatus.BLOCKED_BUDGET,
            retry_available=True,
            detail=work_item.payment_issue_detail,
        )

    if payment_record is None:
        return PaymentDisplay(DisplayStatus.NOT_STARTED, retry_available=True)

    if payment_record.status == "failed" or work_item.payment_issue == "payment_failed":
        return PaymentDisplay(
            DisplayStatus.FAILED,
            retry_available=True,
            detail=work_item.payment_issue_detail,
        )

    # Settled at the gateway but not yet finalized here
    if payment_record.status == "processing" or payment_record.gateway_intent_status in (
        IntentStatus.SUCCEEDED.value,
        IntentStatus.PROCESSING.value,
    ):
        return PaymentDisplay(DisplayStatus.PROCESSING, retry_available=False)

    return PaymentDisplay(
        DisplayStatus.PENDING,
        retry_available=work_item.payment_issue == "gateway_unavailable",
        detail=work_item.payment_issue_detail,
    )
