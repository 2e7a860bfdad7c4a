"""API routes."""

from engagement_engine.api.routes.budgets import router as budgets_router
from engagement_engine.api.routes.health import router as health_router
from engagement_engine.api.routes.payments import router as payments_router
from engagement_engine.api.routes.webhooks import router as webhooks_router
from engagement_engine.api.routes.work_items import router as work_items_router

__all__ = [
    "budgets_router",
    "health_router",
    "payments_router",
    "webhooks_router",
    "work_items_router",
]
