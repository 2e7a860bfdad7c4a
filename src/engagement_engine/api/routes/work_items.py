"""Work item API endpoints."""

from uuid import UUID

from fastapi import APIRouter, Query, status

from engagement_engine.api.dependencies import ActorId, Engine
from engagement_engine.api.schemas import (
    ApprovalResponse,
    DeliverableRequest,
    ErrorResponse,
    PaymentStatusResponse,
    RejectRequest,
    RespondRequest,
    WorkItemCreate,
    WorkItemListResponse,
    WorkItemResponse,
    WorkItemTermsUpdate,
)
from engagement_engine.errors import PermissionDenied
from engagement_engine.models import WorkItem
from engagement_engine.services import ApprovalOutcome, Deliverable, WorkItemDetails

router = APIRouter(prefix="/work-items", tags=["work-items"])

ERRORS = {
    403: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
    422: {"model": ErrorResponse},
}


def _require_party_to(work_item: WorkItem, actor_id: UUID) -> None:
    if actor_id not in (work_item.business_id, work_item.contractor_id):
        raise PermissionDenied(actor_id, "view this work item")


def _approval_response(outcome: ApprovalOutcome) -> ApprovalResponse:
    intent = outcome.intent
    return ApprovalResponse(
        work_item=WorkItemResponse.model_validate(outcome.work_item),
        payment_status=outcome.payment_status.value,
        transitioned=outcome.transitioned,
        payment_record_id=intent.payment_record_id if intent else None,
        gateway_intent_id=intent.gateway_intent_id if intent else None,
        client_secret=intent.client_secret if intent else None,
        budget_shortfall=(
            outcome.budget.shortfall
            if outcome.budget is not None and not outcome.budget.sufficient
            else None
        ),
        detail=outcome.detail,
    )


@router.post(
    "",
    response_model=WorkItemResponse,
    status_code=status.HTTP_201_CREATED,
    responses=ERRORS,
)
async def propose_work_item(
    request: WorkItemCreate,
    actor_id: ActorId,
    engine: Engine,
) -> WorkItemResponse:
    """Propose a work item to a contractor. The caller is the business."""
    work_item = await engine.work_items.propose(
        business_id=actor_id,
        contractor_id=request.contractor_id,
        amount=request.amount,
        currency=request.currency,
        details=WorkItemDetails(
            title=request.title,
            description=request.description,
            due_date=request.due_date,
        ),
    )
    return WorkItemResponse.model_validate(work_item)


@router.get(
    "",
    response_model=WorkItemListResponse,
)
async def list_work_items(
    actor_id: ActorId,
    engine: Engine,
    status_filter: str | None = Query(None, alias="status"),
) -> WorkItemListResponse:
    """List work items where the caller is business or contractor."""
    items = await engine.work_items.list_for_party(actor_id, status=status_filter)
    return WorkItemListResponse(
        items=[WorkItemResponse.model_validate(item) for item in items],
        total=len(items),
    )


@router.get(
    "/{work_item_id}",
    response_model=WorkItemResponse,
    responses=ERRORS,
)
async def get_work_item(
    work_item_id: UUID,
    actor_id: ActorId,
    engine: Engine,
) -> WorkItemResponse:
    """Get a work item by ID."""
    work_item = await engine.work_items.get(work_item_id)
    _require_party_to(work_item, actor_id)
    return WorkItemResponse.model_validate(work_item)


@router.patch(
    "/{work_item_id}",
    response_model=WorkItemResponse,
    responses=ERRORS,
)
async def update_work_item_terms(
    work_item_id: UUID,
    request: WorkItemTermsUpdate,
    actor_id: ActorId,
    engine: Engine,
) -> WorkItemResponse:
    """Amend the terms of a proposed work item."""
    details = None
    if request.title is not None:
        details = WorkItemDetails(
            title=request.title,
            description=request.description,
            due_date=request.due_date,
        )
    work_item = await engine.work_items.update_terms(
        work_item_id,
        actor_id,
        amount=request.amount,
        currency=request.currency,
        details=details,
    )
    return WorkItemResponse.model_validate(work_item)


@router.post(
    "/{work_item_id}/respond",
    response_model=WorkItemResponse,
    responses=ERRORS,
)
async def respond_to_work_item(
    work_item_id: UUID,
    request: RespondRequest,
    actor_id: ActorId,
    engine: Engine,
) -> WorkItemResponse:
    """Contractor accepts or declines a proposal."""
    work_item = await engine.work_items.respond(
        work_item_id, actor_id, request.decision, reason=request.reason
    )
    return WorkItemResponse.model_validate(work_item)


@router.post(
    "/{work_item_id}/deliverable",
    response_model=WorkItemResponse,
    responses=ERRORS,
)
async def submit_deliverable(
    work_item_id: UUID,
    request: DeliverableRequest,
    actor_id: ActorId,
    engine: Engine,
) -> WorkItemResponse:
    """Contractor submits work for review."""
    work_item = await engine.work_items.submit_deliverable(
        work_item_id, actor_id, Deliverable(url=request.url, notes=request.notes)
    )
    return WorkItemResponse.model_validate(work_item)


@router.post(
    "/{work_item_id}/approve",
    response_model=ApprovalResponse,
    responses=ERRORS,
)
async def approve_work_item(
    work_item_id: UUID,
    actor_id: ActorId,
    engine: Engine,
) -> ApprovalResponse:
    """Approve a submission and initiate payment.

    A payment that cannot start (budget, gateway) does not undo the
    approval; payment_status reports what happened.
    """
    outcome = await engine.work_items.approve(work_item_id, actor_id)
    return _approval_response(outcome)


@router.post(
    "/{work_item_id}/reject",
    response_model=WorkItemResponse,
    responses=ERRORS,
)
async def reject_work_item(
    work_item_id: UUID,
    request: RejectRequest,
    actor_id: ActorId,
    engine: Engine,
) -> WorkItemResponse:
    """Reject a submission with a reason."""
    work_item = await engine.work_items.reject(work_item_id, actor_id, request.reason)
    return WorkItemResponse.model_validate(work_item)


@router.post(
    "/{work_item_id}/retry-payment",
    response_model=ApprovalResponse,
    responses=ERRORS,
)
async def retry_payment(
    work_item_id: UUID,
    actor_id: ActorId,
    engine: Engine,
) -> ApprovalResponse:
    """Re-run payment initiation for an approved work item."""
    outcome = await engine.work_items.retry_payment(work_item_id, actor_id)
    return _approval_response(outcome)


@router.get(
    "/{work_item_id}/payment-status",
    response_model=PaymentStatusResponse,
    responses=ERRORS,
)
async def get_payment_status(
    work_item_id: UUID,
    actor_id: ActorId,
    engine: Engine,
) -> PaymentStatusResponse:
    """User-facing payment status of a work item."""
    work_item = await engine.work_items.get(work_item_id)
    _require_party_to(work_item, actor_id)
    display = await engine.payment_status(work_item_id)
    return PaymentStatusResponse(
        work_item_id=work_item_id,
        status=display.status.value,
        retry_available=display.retry_available,
        detail=display.detail,
    )
