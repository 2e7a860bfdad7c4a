"""Payment, document and compliance API endpoints."""

from uuid import UUID

from fastapi import APIRouter

from engagement_engine.api.dependencies import ActorId, Engine
from engagement_engine.api.schemas import (
    ComplianceEntryResponse,
    ErrorResponse,
    InvoiceDocumentResponse,
    PaymentRecordResponse,
)
from engagement_engine.errors import NotFound, PermissionDenied
from engagement_engine.models import PaymentRecord
from engagement_engine.services import DocumentType

router = APIRouter(prefix="/payments", tags=["payments"])

ERRORS = {
    403: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
}


def _require_party_to(record: PaymentRecord, actor_id: UUID, action: str) -> None:
    if actor_id not in (record.business_id, record.contractor_id):
        raise PermissionDenied(actor_id, action)


async def _load_record(engine, payment_record_id: UUID) -> PaymentRecord:
    record = await engine.payments.get_payment_by_id(payment_record_id)
    if record is None:
        raise NotFound("PaymentRecord", payment_record_id)
    return record


@router.get(
    "/work-items/{work_item_id}",
    response_model=PaymentRecordResponse,
    responses=ERRORS,
)
async def get_payment_for_work_item(
    work_item_id: UUID,
    actor_id: ActorId,
    engine: Engine,
) -> PaymentRecordResponse:
    """Get the payment record of a work item."""
    record = await engine.payments.get_payment(work_item_id)
    if record is None:
        raise NotFound("PaymentRecord for work item", work_item_id)
    _require_party_to(record, actor_id, "view this payment")
    return PaymentRecordResponse.model_validate(record)


@router.get(
    "/{payment_record_id}/documents",
    response_model=list[InvoiceDocumentResponse],
    responses=ERRORS,
)
async def list_payment_documents(
    payment_record_id: UUID,
    actor_id: ActorId,
    engine: Engine,
) -> list[InvoiceDocumentResponse]:
    """Documents issued for a payment.

    The business sees its invoice, the contractor sees their receipt.
    """
    record = await _load_record(engine, payment_record_id)
    _require_party_to(record, actor_id, "view documents for this payment")
    visible = (
        DocumentType.BUSINESS_INVOICE
        if actor_id == record.business_id
        else DocumentType.CONTRACTOR_RECEIPT
    )
    documents = await engine.invoices.list_for_payment(payment_record_id)
    return [
        InvoiceDocumentResponse.model_validate(doc)
        for doc in documents
        if doc.document_type == visible.value
    ]


@router.get(
    "/{payment_record_id}/compliance",
    response_model=ComplianceEntryResponse,
    responses=ERRORS,
)
async def get_compliance_entry(
    payment_record_id: UUID,
    actor_id: ActorId,
    engine: Engine,
) -> ComplianceEntryResponse:
    """Compliance log entry of a completed payment (business only)."""
    record = await _load_record(engine, payment_record_id)
    if actor_id != record.business_id:
        raise PermissionDenied(actor_id, "view the compliance log for this payment")
    entry = await engine.compliance.get(payment_record_id)
    if entry is None:
        raise NotFound("ComplianceLogEntry", payment_record_id)
    return ComplianceEntryResponse.model_validate(entry)


@router.post(
    "/{payment_record_id}/release-hold",
    response_model=PaymentRecordResponse,
    responses=ERRORS,
)
async def release_payment_hold(
    payment_record_id: UUID,
    actor_id: ActorId,
    engine: Engine,
) -> PaymentRecordResponse:
    """Release an integrity hold after the business has reviewed the payment."""
    record = await _load_record(engine, payment_record_id)
    if actor_id != record.business_id:
        raise PermissionDenied(actor_id, "release the hold on this payment")
    released = await engine.payments.release_hold(payment_record_id, actor_id)
    return PaymentRecordResponse.model_validate(released)
