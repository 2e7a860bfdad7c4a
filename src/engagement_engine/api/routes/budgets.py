"""Budget API endpoints."""

from decimal import Decimal

from fastapi import APIRouter

from engagement_engine.api.dependencies import ActorId, Engine
from engagement_engine.api.schemas import BudgetConfigRequest, BudgetResponse, ErrorResponse
from engagement_engine.models import BudgetLedger

router = APIRouter(prefix="/budgets", tags=["budgets"])


def _budget_response(business_id, ledger: BudgetLedger | None) -> BudgetResponse:
    if ledger is None:
        return BudgetResponse(business_id=business_id, used=Decimal("0"))
    return BudgetResponse.model_validate(ledger)


@router.get(
    "/me",
    response_model=BudgetResponse,
)
async def get_my_budget(
    actor_id: ActorId,
    engine: Engine,
) -> BudgetResponse:
    """The calling business's cap and completed spend."""
    ledger = await engine.budget.get_ledger(actor_id)
    return _budget_response(actor_id, ledger)


@router.put(
    "/me",
    response_model=BudgetResponse,
    responses={404: {"model": ErrorResponse}, 422: {"model": ErrorResponse}},
)
async def configure_my_budget(
    request: BudgetConfigRequest,
    actor_id: ActorId,
    engine: Engine,
) -> BudgetResponse:
    """Set or clear the calling business's cap."""
    ledger = await engine.budget.configure(
        actor_id,
        request.cap,
        period_start=request.period_start,
        period_end=request.period_end,
    )
    await engine.session.commit()
    return _budget_response(actor_id, ledger)
