"""Pydantic schemas for API request/response models."""

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


# ============================================================================
# Work item schemas
# ============================================================================


class WorkItemCreate(BaseModel):
    """Schema for proposing a work item. The caller is the business."""

    contractor_id: UUID
    amount: Decimal = Field(gt=0)
    currency: str = Field(min_length=3, max_length=3)
    title: str = Field(min_length=1)
    description: str | None = None
    due_date: date | None = None


class WorkItemTermsUpdate(BaseModel):
    """Schema for amending a proposal."""

    amount: Decimal | None = Field(default=None, gt=0)
    currency: str | None = Field(default=None, min_length=3, max_length=3)
    title: str | None = None
    description: str | None = None
    due_date: date | None = None


class RespondRequest(BaseModel):
    """Contractor decision on a proposal."""

    decision: Literal["accept", "decline"]
    reason: str | None = None


class DeliverableRequest(BaseModel):
    """Deliverable evidence (references only)."""

    url: str | None = None
    notes: str | None = None


class RejectRequest(BaseModel):
    """Rejection with a reason for the contractor."""

    reason: str = Field(min_length=1)


class WorkItemResponse(BaseModel):
    """Schema for work item response."""

    model_config = ConfigDict(from_attributes=True)

    work_item_id: UUID
    business_id: UUID
    contractor_id: UUID
    title: str
    description: str | None = None
    due_date: date | None = None
    amount: Decimal
    currency: str
    status: str
    decline_reason: str | None = None
    rejection_reason: str | None = None
    deliverable_url: str | None = None
    deliverable_notes: str | None = None
    submitted_at: datetime | None = None
    submission_count: int
    approved_at: datetime | None = None
    approved_by: UUID | None = None
    paid_at: datetime | None = None
    payment_issue: str | None = None
    payment_issue_detail: str | None = None
    created_at: datetime
    updated_at: datetime


class WorkItemListResponse(BaseModel):
    """Schema for listing work items."""

    items: list[WorkItemResponse]
    total: int


class ApprovalResponse(BaseModel):
    """Schema for approval (and payment retry) response."""

    work_item: WorkItemResponse
    payment_status: str
    transitioned: bool
    payment_record_id: UUID | None = None
    gateway_intent_id: str | None = None
    client_secret: str | None = None
    budget_shortfall: Decimal | None = None
    detail: str | None = None


class PaymentStatusResponse(BaseModel):
    """User-facing payment status."""

    work_item_id: UUID
    status: str
    retry_available: bool
    detail: str | None = None


# ============================================================================
# Payment schemas
# ============================================================================


class PaymentRecordResponse(BaseModel):
    """Schema for payment record response."""

    model_config = ConfigDict(from_attributes=True)

    payment_record_id: UUID
    work_item_id: UUID
    business_id: UUID
    contractor_id: UUID
    amount: Decimal
    currency: str
    status: str
    gateway_intent_id: str | None = None
    gateway_intent_status: str | None = None
    attempt: int
    scheduled_at: datetime
    completed_at: datetime | None = None
    processor_reference: str | None = None
    review_required: bool
    review_reason: str | None = None


class InvoiceDocumentResponse(BaseModel):
    """Schema for invoice/receipt response."""

    model_config = ConfigDict(from_attributes=True)

    invoice_document_id: UUID
    payment_record_id: UUID
    document_type: str
    document_number: str
    sequence_number: int
    period: str
    document_label: str
    currency: str
    gross_amount: Decimal
    platform_fee: Decimal | None = None
    net_amount: Decimal | None = None
    business_name: str
    contractor_name: str
    payload: dict[str, Any]
    issued_at: datetime


class ComplianceEntryResponse(BaseModel):
    """Schema for compliance log entry response."""

    model_config = ConfigDict(from_attributes=True)

    compliance_log_id: UUID
    payment_record_id: UUID
    work_item_id: UUID
    gross_amount: Decimal
    platform_fee: Decimal
    net_amount: Decimal
    currency: str
    trigger_event: str
    approved_by: UUID | None = None
    approval_timestamp: datetime | None = None
    payment_timestamp: datetime
    processor_reference: str | None = None
    deliverable_reference: str | None = None
    recorded_at: datetime


# ============================================================================
# Budget schemas
# ============================================================================


class BudgetConfigRequest(BaseModel):
    """Schema for setting a budget cap."""

    cap: Decimal | None = Field(default=None, ge=0)
    period_start: date | None = None
    period_end: date | None = None


class BudgetResponse(BaseModel):
    """Schema for budget ledger response."""

    model_config = ConfigDict(from_attributes=True)

    business_id: UUID
    cap: Decimal | None = None
    used: Decimal
    remaining: Decimal | None = None
    period_start: date | None = None
    period_end: date | None = None


# ============================================================================
# Webhook / error schemas
# ============================================================================


class WebhookResponse(BaseModel):
    """Acknowledgement of a gateway event."""

    received: bool = True
    action: str
    detail: str | None = None


class ErrorResponse(BaseModel):
    """Schema for error response."""

    detail: str
    code: str | None = None
    context: dict[str, Any] | None = None
