"""Reconciliation - catch up on payments the synchronous path left unfinished.

Three sweeps, each safe to run repeatedly and concurrently:
1. poll_pending: re-poll the gateway for open intents and finalize
2. retry_unpaid: re-run payment initiation for approved, unpaid work items
3. replay_bookkeeping: re-run post-completion steps that failed
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Any
from uuid import UUID

from sqlalchemy import and_, exists, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from engagement_engine.errors import EngagementError
from engagement_engine.models import (
    BudgetSpend,
    ComplianceLogEntry,
    InvoiceDocument,
    PaymentRecord,
    WorkItem,
)
from engagement_engine.services.payment_controller import PaymentIntentController
from engagement_engine.services.state_machine import WorkItemStatus
from engagement_engine.services.work_item_service import WorkItemService

logger = logging.getLogger(__name__)


@dataclass
class ReconciliationResult:
    """Result of a reconciliation sweep."""

    operation: str
    records_processed: int = 0
    records_succeeded: int = 0
    records_failed: int = 0
    outcomes: Counter[str] = field(default_factory=Counter)
    errors: list[dict[str, Any]] = field(default_factory=list)

    @property
    def success(self) -> bool:
        """Whether the sweep completed without errors."""
        return self.records_failed == 0 and len(self.errors) == 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "operation": self.operation,
            "records_processed": self.records_processed,
            "records_succeeded": self.records_succeeded,
            "records_failed": self.records_failed,
            "outcomes": dict(self.outcomes),
            "errors": self.errors,
        }


class ReconciliationService:
    """Sweeps over payment state that needs another pass."""

    def __init__(
        self,
        session: AsyncSession,
        payments: PaymentIntentController,
        work_items: WorkItemService,
    ):
        self.session = session
        self.payments = payments
        self.work_items = work_items

    async def poll_pending(self, limit: int = 100) -> ReconciliationResult:
        """Finalize open payment records whose intent may have settled."""
        result = ReconciliationResult(operation="poll_pending")
        rows = await self.session.execute(
            select(PaymentRecord.work_item_id, PaymentRecord.gateway_intent_id)
            .where(
                PaymentRecord.status.in_(("pending", "processing")),
                PaymentRecord.gateway_intent_id.is_not(None),
                PaymentRecord.review_required.is_(False),
            )
            .order_by(PaymentRecord.scheduled_at)
            .limit(limit)
        )
        targets = [(row.work_item_id, row.gateway_intent_id) for row in rows]

        for work_item_id, intent_id in targets:
            result.records_processed += 1
            try:
                finalized = await self.payments.finalize_payment(work_item_id, intent_id)
                result.records_succeeded += 1
                result.outcomes[finalized.outcome] += 1
            except Exception as e:
                await self._record_error(result, work_item_id, e)

        self._log(result)
        return result

    async def retry_unpaid(self, limit: int = 100) -> ReconciliationResult:
        """Retry payment for approved work items with no live payment.

        Covers budget-blocked approvals, gateway outages and failed attempts.
        Held payments are left for manual review.
        """
        result = ReconciliationResult(operation="retry_unpaid")
        rows = await self.session.execute(
            select(WorkItem.work_item_id)
            .outerjoin(PaymentRecord, PaymentRecord.work_item_id == WorkItem.work_item_id)
            .where(
                WorkItem.status == WorkItemStatus.APPROVED.value,
                or_(
                    PaymentRecord.payment_record_id.is_(None),
                    and_(
                        PaymentRecord.review_required.is_(False),
                        or_(
                            PaymentRecord.status == "failed",
                            PaymentRecord.gateway_intent_id.is_(None),
                        ),
                    ),
                ),
            )
            .order_by(WorkItem.approved_at)
            .limit(limit)
        )
        work_item_ids = [row.work_item_id for row in rows]

        for work_item_id in work_item_ids:
            result.records_processed += 1
            try:
                outcome = await self.work_items.retry_payment(work_item_id)
                result.records_succeeded += 1
                result.outcomes[outcome.payment_status.value] += 1
            except Exception as e:
                await self._record_error(result, work_item_id, e)

        self._log(result)
        return result

    async def replay_bookkeeping(self, limit: int = 100) -> ReconciliationResult:
        """Re-run bookkeeping for completed payments with missing records."""
        result = ReconciliationResult(operation="replay_bookkeeping")

        document_count = (
            select(func.count(InvoiceDocument.invoice_document_id))
            .where(InvoiceDocument.payment_record_id == PaymentRecord.payment_record_id)
            .correlate(PaymentRecord)
            .scalar_subquery()
        )
        rows = await self.session.execute(
            select(PaymentRecord.payment_record_id)
            .join(WorkItem, WorkItem.work_item_id == PaymentRecord.work_item_id)
            .where(
                PaymentRecord.status == "completed",
                or_(
                    ~exists().where(
                        BudgetSpend.payment_record_id == PaymentRecord.payment_record_id
                    ),
                    ~exists().where(
                        ComplianceLogEntry.payment_record_id
                        == PaymentRecord.payment_record_id
                    ),
                    document_count < 2,
                    WorkItem.status != WorkItemStatus.PAID.value,
                ),
            )
            .order_by(PaymentRecord.completed_at)
            .limit(limit)
        )
        payment_record_ids = [row.payment_record_id for row in rows]

        for payment_record_id in payment_record_ids:
            result.records_processed += 1
            try:
                bookkeeping = await self.payments.run_bookkeeping(payment_record_id)
            except Exception as e:
                await self._record_error(result, payment_record_id, e)
                continue
            if bookkeeping.success:
                result.records_succeeded += 1
                result.outcomes["repaired"] += 1
            else:
                result.records_failed += 1
                result.errors.append({
                    "code": "BOOKKEEPING_INCOMPLETE",
                    "id": str(payment_record_id),
                    "message": f"steps failed: {', '.join(bookkeeping.failed)}",
                })

        self._log(result)
        return result

    async def _record_error(
        self,
        result: ReconciliationResult,
        entity_id: UUID,
        error: Exception,
    ) -> None:
        await self.session.rollback()
        result.records_failed += 1
        result.errors.append({
            "code": getattr(error, "code", "RECORD_ERROR"),
            "id": str(entity_id),
            "message": str(error),
        })
        if isinstance(error, EngagementError):
            logger.warning("%s failed for %s: %s", result.operation, entity_id, error)
        else:
            logger.exception("%s failed for %s", result.operation, entity_id)

    @staticmethod
    def _log(result: ReconciliationResult) -> None:
        logger.info(
            "%s: processed=%d succeeded=%d failed=%d outcomes=%s",
            result.operation,
            result.records_processed,
            result.records_succeeded,
            result.records_failed,
            dict(result.outcomes),
        )
