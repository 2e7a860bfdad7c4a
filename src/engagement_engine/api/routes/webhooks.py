"""Gateway webhook endpoint."""

import logging
from typing import Annotated

from fastapi import APIRouter, Header, HTTPException, Request, status

from engagement_engine.api.dependencies import Engine
from engagement_engine.api.schemas import ErrorResponse, WebhookResponse
from engagement_engine.errors import PaymentIntegrityError
from engagement_engine.gateway.webhooks import (
    WebhookSignatureError,
    construct_event,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@router.post(
    "/gateway",
    response_model=WebhookResponse,
    responses={
        400: {"model": ErrorResponse},
        503: {"model": ErrorResponse},
    },
)
async def receive_gateway_event(
    request: Request,
    engine: Engine,
    stripe_signature: Annotated[str | None, Header()] = None,
) -> WebhookResponse:
    """Verify and apply a payment gateway event.

    Replays are safe: finalization is idempotent. An integrity violation is
    acknowledged with outcome ``held`` so the gateway stops redelivering; a
    gateway outage returns 503 so it retries.
    """
    secret = request.app.state.engine_config.gateway.webhook_secret
    if not secret:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Webhook secret is not configured",
        )

    payload = await request.body()
    try:
        event = construct_event(payload, stripe_signature, secret)
    except WebhookSignatureError as e:
        logger.warning("Rejected gateway webhook: %s", e)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    try:
        outcome = await engine.handle_gateway_event(event)
    except PaymentIntegrityError as e:
        return WebhookResponse(action="held", detail=str(e))

    return WebhookResponse(action=outcome.action, detail=outcome.detail)
