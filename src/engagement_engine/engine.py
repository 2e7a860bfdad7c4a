"""Engagement engine facade - the one integration path for callers.

Usage:
    engine = EngagementEngine(session, gateway, config, emitter)

    item = await engine.work_items.propose(business_id, contractor_id,
                                           Decimal("500.00"), "GBP", details)
    await engine.work_items.respond(item.work_item_id, contractor_id, "accept")
    await engine.work_items.submit_deliverable(item.work_item_id, contractor_id, evidence)
    outcome = await engine.work_items.approve(item.work_item_id, business_id)

    # Gateway confirms settlement (webhook or reconciliation)
    await engine.payments.finalize_payment(item.work_item_id, intent_id)

The facade:
- Wires services onto one session, gateway, config and emitter
- Dispatches verified gateway webhook events
- Answers the display status of a work item's payment
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from engagement_engine.config import EngineConfig
from engagement_engine.errors import NotFound
from engagement_engine.events import AsyncEventEmitter
from engagement_engine.gateway.base import PaymentGateway
from engagement_engine.gateway.webhooks import GatewayEvent
from engagement_engine.services.budget_ledger import BudgetLedgerService
from engagement_engine.services.compliance_recorder import ComplianceRecorder
from engagement_engine.services.invoice_generator import InvoiceGenerator
from engagement_engine.services.payment_controller import PaymentIntentController
from engagement_engine.services.payment_status import PaymentDisplay, describe_payment
from engagement_engine.services.reconciliation import ReconciliationService
from engagement_engine.services.work_item_service import WorkItemService

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WebhookOutcome:
    """What a gateway event caused."""

    event_type: str
    intent_id: str
    action: str  # finalized, failure_recorded, ignored
    work_item_id: UUID | None = None
    detail: str | None = None


class EngagementEngine:
    """Facade over the work item, payment and bookkeeping services."""

    def __init__(
        self,
        session: AsyncSession,
        gateway: PaymentGateway,
        config: EngineConfig | None = None,
        emitter: AsyncEventEmitter | None = None,
    ) -> None:
        self.session = session
        self.gateway = gateway
        self.config = config or EngineConfig()
        self.emitter = emitter

        self.budget = BudgetLedgerService(session)
        self.invoices = InvoiceGenerator(session, self.config)
        self.compliance = ComplianceRecorder(session, self.config)
        self.payments = PaymentIntentController(
            session,
            gateway,
            config=self.config,
            budget=self.budget,
            invoices=self.invoices,
            compliance=self.compliance,
            emitter=emitter,
        )
        self.work_items = WorkItemService(
            session, self.payments, budget=self.budget, emitter=emitter
        )
        self.reconciliation = ReconciliationService(session, self.payments, self.work_items)

    async def payment_status(self, work_item_id: UUID) -> PaymentDisplay:
        """User-facing payment status for a work item."""
        work_item = await self.work_items.get(work_item_id)
        record = await self.payments.get_payment(work_item_id)
        return describe_payment(work_item, record)

    async def handle_gateway_event(self, event: GatewayEvent) -> WebhookOutcome:
        """Apply a verified gateway event.

        Success events finalize against the gateway's own status; failure
        events record the failure. Events for unknown work items are ignored.
        """
        if not (event.is_success or event.is_failure):
            return WebhookOutcome(event.event_type, event.intent_id, "ignored",
                                  detail="unhandled event type")

        try:
            work_item_id = UUID(event.work_item_id) if event.work_item_id else None
        except ValueError:
            work_item_id = None
        if work_item_id is None:
            logger.warning("Gateway event %s for intent %s has no work item reference",
                           event.event_type, event.intent_id)
            return WebhookOutcome(event.event_type, event.intent_id, "ignored",
                                  detail="no work item reference")

        try:
            if event.is_success:
                result = await self.payments.finalize_payment(work_item_id, event.intent_id)
                return WebhookOutcome(event.event_type, event.intent_id, "finalized",
                                      work_item_id=work_item_id, detail=result.outcome)

            await self.payments.mark_failed(
                work_item_id,
                event.intent_id,
                reason=event.failure_message or event.event_type,
                intent_status=event.intent_status,
            )
            return WebhookOutcome(event.event_type, event.intent_id, "failure_recorded",
                                  work_item_id=work_item_id)
        except NotFound as e:
            logger.warning("Gateway event %s ignored: %s", event.event_type, e)
            return WebhookOutcome(event.event_type, event.intent_id, "ignored",
                                  work_item_id=work_item_id, detail=str(e))
