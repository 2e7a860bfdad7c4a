"""Service status for load balancers and operators."""

import logging
from datetime import datetime

from fastapi import APIRouter, Request, Response, status
from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from engagement_engine.api.dependencies import DbSession
from engagement_engine.models.base import utcnow

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


class ServiceStatus(BaseModel):
    status: str
    checked_at: datetime
    database: str
    gateway: str | None
    webhooks: str


@router.get("/health", response_model=ServiceStatus)
async def service_status(
    request: Request, response: Response, db: DbSession
) -> ServiceStatus:
    """Database reachability plus the payment wiring this process runs with.

    Answers 503 while the database is unreachable; webhooks without a
    secret are reported but do not fail the check.
    """
    database = "reachable"
    try:
        await db.execute(text("SELECT 1"))
    except SQLAlchemyError:
        logger.warning("Database unreachable from health check", exc_info=True)
        database = "unreachable"
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    gateway = request.app.state.gateway
    secret = request.app.state.settings.webhook_secret
    return ServiceStatus(
        status="ok" if database == "reachable" else "unavailable",
        checked_at=utcnow(),
        database=database,
        gateway=gateway.gateway_name if gateway is not None else None,
        webhooks="verifying" if secret else "disabled",
    )


@router.get("/live")
async def live() -> dict[str, str]:
    return {"status": "alive"}
