"""Compliance recorder - one append-only audit row per completed payment."""

from __future__ import annotations

import logging
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from engagement_engine.config import EngineConfig
from engagement_engine.database import insert_if_absent
from engagement_engine.errors import NotFound, ValidationError
from engagement_engine.models import (
    ComplianceLogEntry,
    DocumentNumber,
    PaymentRecord,
    WorkItem,
)
from engagement_engine.services.invoice_generator import fee_breakdown

logger = logging.getLogger(__name__)


class ComplianceRecorder:
    """Writes the compliance log.

    Entries are never updated or deleted; recording a payment that already has
    an entry returns that entry unchanged.
    """

    def __init__(self, session: AsyncSession, config: EngineConfig | None = None):
        self.session = session
        self.config = config or EngineConfig()

    async def get(self, payment_record_id: UUID) -> ComplianceLogEntry | None:
        """Load the entry for a payment record, if recorded."""
        result = await self.session.execute(
            select(ComplianceLogEntry).where(
                ComplianceLogEntry.payment_record_id == payment_record_id
            )
        )
        return result.scalar_one_or_none()

    async def record(self, payment_record_id: UUID) -> ComplianceLogEntry:
        """Record the compliance entry for a completed payment.

        Raises:
            NotFound: Payment record or its work item does not exist.
            ValidationError: Payment is not completed.
        """
        existing = await self.get(payment_record_id)
        if existing is not None:
            return existing

        record = await self.session.get(
            PaymentRecord, payment_record_id, populate_existing=True
        )
        if record is None:
            raise NotFound("PaymentRecord", payment_record_id)
        if not record.is_completed or record.completed_at is None:
            raise ValidationError(
                f"Payment {payment_record_id} is {record.status}; only completed "
                "payments are recorded",
                field="payment_record_id",
            )

        work_item = await self.session.get(
            WorkItem, record.work_item_id, populate_existing=True
        )
        if work_item is None:
            raise NotFound("WorkItem", record.work_item_id)

        # Documents may still be pending; the entry does not wait for them
        number = await self.session.get(DocumentNumber, payment_record_id)
        invoice_number = number.invoice_number if number is not None else None
        gross, fee, net = fee_breakdown(record.amount, self.config.platform_fee_rate)

        details = {
            "schema_version": "compliance-log-v1",
            "attempt": record.attempt,
            "idempotency_key": record.idempotency_key,
            "invoice_number": invoice_number,
            "receipt_number": (
                f"{invoice_number}{self.config.receipt_suffix}" if invoice_number else None
            ),
            "platform_fee_rate": str(self.config.platform_fee_rate),
            "work_item_title": work_item.title,
            "submission_count": work_item.submission_count,
            "deliverable_notes": work_item.deliverable_notes,
        }

        created = await insert_if_absent(
            self.session,
            ComplianceLogEntry,
            {
                "payment_record_id": record.payment_record_id,
                "work_item_id": record.work_item_id,
                "business_id": record.business_id,
                "contractor_id": record.contractor_id,
                "gross_amount": gross,
                "platform_fee": fee,
                "net_amount": net,
                "currency": record.currency,
                "trigger_event": self.config.trigger_event,
                "approved_by": work_item.approved_by,
                "approval_timestamp": work_item.approved_at,
                "payment_timestamp": record.completed_at,
                "processor_reference": record.processor_reference,
                "gateway_intent_id": record.gateway_intent_id,
                "deliverable_reference": work_item.deliverable_url,
                "details": details,
            },
            index_elements=["payment_record_id"],
        )
        entry = await self.get(payment_record_id)
        assert entry is not None
        if created:
            logger.info(
                "Compliance entry recorded for payment %s (work item %s)",
                payment_record_id, record.work_item_id,
            )
        return entry
