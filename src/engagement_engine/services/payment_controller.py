"""Payment intent controller - exactly-once money movement per work item.

Orchestrates payment execution through:
1. Payment record creation (insert-if-absent, unique per work item)
2. Gateway intent creation with a stable idempotency key
3. Finalization against the gateway's authoritative status and amount
4. Post-completion bookkeeping: budget spend, invoice, receipt, compliance entry

The payment record is committed before any gateway call and no transaction is
held across network I/O. Amounts always come from the work item, never from a
caller or from the gateway.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from engagement_engine.config import EngineConfig
from engagement_engine.database import insert_if_absent
from engagement_engine.errors import (
    AmountMismatch,
    GatewayUnavailable,
    IntentMismatch,
    NotFound,
    PaymentIntegrityError,
    PaymentOnHold,
)
from engagement_engine.events import (
    AsyncEventEmitter,
    DomainEvent,
    EventMetadata,
    PaymentCompleted,
    PaymentFailed,
    PaymentIntegrityIncident,
)
from engagement_engine.gateway.base import (
    GatewayError,
    IntentSnapshot,
    IntentStatus,
    PaymentGateway,
    is_terminal,
)
from engagement_engine.models import PaymentRecord, WorkItem, utcnow
from engagement_engine.services.budget_ledger import BudgetLedgerService
from engagement_engine.services.compliance_recorder import ComplianceRecorder
from engagement_engine.services.invoice_generator import DocumentType, InvoiceGenerator
from engagement_engine.services.state_machine import (
    InvalidTransitionError,
    WorkItemStatus,
)

logger = logging.getLogger(__name__)

OPEN_RECORD_STATUSES = ("pending", "processing")


@dataclass(frozen=True)
class IntentResult:
    """Result of ensure_payment_intent."""

    payment_record_id: UUID
    work_item_id: UUID
    gateway_intent_id: str | None
    client_secret: str | None
    record_status: str
    intent_status: str | None
    attempt: int
    was_existing: bool


@dataclass
class BookkeepingResult:
    """Which post-completion steps ran for a payment."""

    payment_record_id: UUID
    completed: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.failed


@dataclass(frozen=True)
class FinalizeResult:
    """Result of finalize_payment."""

    payment_record_id: UUID
    work_item_id: UUID
    outcome: str  # completed, already_completed, processing, failed, pending
    record_status: str
    bookkeeping: BookkeepingResult | None = None


class PaymentIntentController:
    """Creates, finalizes and fails payment records for approved work items.

    Operations:
    - ensure_payment_intent: create or return the work item's gateway intent
    - finalize_payment: verify settlement with the gateway and complete
    - mark_failed: record a gateway failure so a retry can start a new attempt
    - run_bookkeeping: idempotent post-completion steps (also used by replay)
    - release_hold: administrative clear of an integrity hold
    """

    def __init__(
        self,
        session: AsyncSession,
        gateway: PaymentGateway,
        config: EngineConfig | None = None,
        budget: BudgetLedgerService | None = None,
        invoices: InvoiceGenerator | None = None,
        compliance: ComplianceRecorder | None = None,
        emitter: AsyncEventEmitter | None = None,
    ):
        self.session = session
        self.gateway = gateway
        self.config = config or EngineConfig()
        self.budget = budget or BudgetLedgerService(session)
        self.invoices = invoices or InvoiceGenerator(session, self.config)
        self.compliance = compliance or ComplianceRecorder(session, self.config)
        self.emitter = emitter

    # -------------------------------------------------------------------------
    # Lookups
    # -------------------------------------------------------------------------

    async def get_payment(self, work_item_id: UUID) -> PaymentRecord | None:
        """Load the payment record for a work item."""
        result = await self.session.execute(
            select(PaymentRecord)
            .where(PaymentRecord.work_item_id == work_item_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_payment_by_id(self, payment_record_id: UUID) -> PaymentRecord | None:
        return await self.session.get(
            PaymentRecord, payment_record_id, populate_existing=True
        )

    async def _get_work_item(self, work_item_id: UUID) -> WorkItem:
        work_item = await self.session.get(WorkItem, work_item_id, populate_existing=True)
        if work_item is None:
            raise NotFound("WorkItem", work_item_id)
        return work_item

    # -------------------------------------------------------------------------
    # Intent creation
    # -------------------------------------------------------------------------

    async def ensure_payment_intent(self, work_item_id: UUID) -> IntentResult:
        """Create the work item's payment intent, or return the existing one.

        Safe to call any number of times and from concurrent workers: the
        unique payment record per work item and the stable idempotency key
        mean at most one live intent exists.

        Raises:
            NotFound: Work item does not exist.
            InvalidTransitionError: Work item is not approved.
            PaymentOnHold: Payment is under integrity review.
            GatewayUnavailable: Gateway call failed; record stays pending.
        """
        work_item = await self._get_work_item(work_item_id)
        if work_item.status not in (WorkItemStatus.APPROVED, WorkItemStatus.PAID):
            raise InvalidTransitionError(
                work_item.status,
                WorkItemStatus.PAID,
                "payment requires an approved work item",
            )

        record = await self.get_payment(work_item_id)

        if record is None:
            inserted = await insert_if_absent(
                self.session,
                PaymentRecord,
                {
                    "work_item_id": work_item.work_item_id,
                    "business_id": work_item.business_id,
                    "contractor_id": work_item.contractor_id,
                    "amount": work_item.amount,
                    "currency": work_item.currency,
                    "status": "pending",
                    "idempotency_key": str(work_item.work_item_id),
                    "attempt": 1,
                },
                index_elements=["work_item_id"],
            )
            await self.session.commit()
            record = await self.get_payment(work_item_id)
            assert record is not None

            if not inserted:
                # Another worker owns the new record
                logger.info(
                    "Payment record for work item %s created concurrently", work_item_id
                )
                return self._intent_result(record, was_existing=True)

            logger.info(
                "Created payment record %s for work item %s amount=%s %s",
                record.payment_record_id, work_item_id, record.amount, record.currency,
            )
            return await self._request_intent(record, was_existing=False)

        if record.is_completed:
            return self._intent_result(record, was_existing=True)

        if record.review_required:
            raise PaymentOnHold(record.payment_record_id, record.review_reason)

        if record.status == "failed" or record.gateway_intent_status == IntentStatus.CANCELED:
            record = await self._start_new_attempt(record)
            if record.gateway_intent_id is not None:
                return self._intent_result(record, was_existing=True)
            return await self._request_intent(record, was_existing=False)

        if record.gateway_intent_id is not None and not is_terminal(
            record.gateway_intent_status
        ):
            return self._intent_result(record, was_existing=True)

        if record.gateway_intent_id is not None:
            # Intent succeeded; finalization is pending
            return self._intent_result(record, was_existing=True)

        # Pending without an intent: a previous gateway call failed. The same
        # idempotency key makes the processor return any intent it did create.
        return await self._request_intent(record, was_existing=True)

    async def _start_new_attempt(self, record: PaymentRecord) -> PaymentRecord:
        """Reuse a failed record for a new attempt with a fresh idempotency key."""
        attempt = record.attempt + 1
        result = await self.session.execute(
            update(PaymentRecord)
            .where(
                PaymentRecord.payment_record_id == record.payment_record_id,
                PaymentRecord.attempt == record.attempt,
                PaymentRecord.status != "completed",
            )
            .values(
                status="pending",
                attempt=attempt,
                idempotency_key=f"{record.work_item_id}:{attempt}",
                gateway_intent_id=None,
                gateway_intent_status=None,
                gateway_client_secret=None,
            )
            .execution_options(synchronize_session=False)
        )
        await self.session.commit()
        if result.rowcount:
            logger.info(
                "Starting payment attempt %d for work item %s", attempt, record.work_item_id
            )
        refreshed = await self.get_payment_by_id(record.payment_record_id)
        assert refreshed is not None
        return refreshed

    async def _request_intent(self, record: PaymentRecord, was_existing: bool) -> IntentResult:
        """Call the gateway for the record's trusted amount and persist the intent."""
        try:
            handle = await self.gateway.create_intent(
                amount=record.amount,
                currency=record.currency,
                metadata={
                    "work_item_id": str(record.work_item_id),
                    "contractor_id": str(record.contractor_id),
                    "business_id": str(record.business_id),
                    "payment_record_id": str(record.payment_record_id),
                    "attempt": str(record.attempt),
                },
                idempotency_key=record.idempotency_key,
                description=f"Work item {record.work_item_id}",
            )
        except GatewayError as e:
            logger.warning(
                "Gateway unavailable creating intent for work item %s: %s",
                record.work_item_id, e,
            )
            raise GatewayUnavailable(str(e), operation="create_intent") from e

        values: dict[str, object] = {
            "gateway_intent_id": handle.intent_id,
            "gateway_intent_status": handle.status,
            "gateway_client_secret": handle.client_secret,
        }
        if handle.status == IntentStatus.PROCESSING:
            values["status"] = "processing"

        await self.session.execute(
            update(PaymentRecord)
            .where(
                PaymentRecord.payment_record_id == record.payment_record_id,
                PaymentRecord.attempt == record.attempt,
                PaymentRecord.status.in_(OPEN_RECORD_STATUSES),
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        await self.session.commit()

        refreshed = await self.get_payment_by_id(record.payment_record_id)
        assert refreshed is not None
        logger.info(
            "Payment intent %s (%s) for work item %s attempt %d",
            handle.intent_id, handle.status, record.work_item_id, refreshed.attempt,
        )
        return self._intent_result(refreshed, was_existing=was_existing)

    @staticmethod
    def _intent_result(record: PaymentRecord, was_existing: bool) -> IntentResult:
        return IntentResult(
            payment_record_id=record.payment_record_id,
            work_item_id=record.work_item_id,
            gateway_intent_id=record.gateway_intent_id,
            client_secret=record.gateway_client_secret,
            record_status=record.status,
            intent_status=record.gateway_intent_status,
            attempt=record.attempt,
            was_existing=was_existing,
        )

    # -------------------------------------------------------------------------
    # Finalization
    # -------------------------------------------------------------------------

    async def finalize_payment(
        self,
        work_item_id: UUID,
        gateway_intent_id: str,
    ) -> FinalizeResult:
        """Complete a payment once the gateway confirms settlement.

        Replay-safe: finalizing a completed payment re-runs only the idempotent
        bookkeeping and reports already_completed.

        Raises:
            NotFound: No payment record for the work item.
            IntentMismatch: Intent id does not match the stored one.
            AmountMismatch: Settled amount or currency differs from the record.
            PaymentOnHold: Payment is under integrity review.
            GatewayUnavailable: Gateway status lookup failed.
        """
        record = await self.get_payment(work_item_id)
        if record is None:
            raise NotFound("PaymentRecord", work_item_id)

        snapshot: IntentSnapshot | None = None
        if record.gateway_intent_id is None and not record.is_completed:
            # The create call may have failed after the processor made the intent
            record, snapshot = await self._adopt_intent(record, gateway_intent_id)

        if record.gateway_intent_id != gateway_intent_id:
            mismatch = IntentMismatch(work_item_id, record.gateway_intent_id, gateway_intent_id)
            if record.is_completed:
                # Completed records are never written again
                await self._report_incident(record.payment_record_id, work_item_id, mismatch)
            else:
                await self._hold(record.payment_record_id, work_item_id, mismatch)
            raise mismatch

        if record.is_completed:
            payment_record_id = record.payment_record_id
            bookkeeping = await self.run_bookkeeping(payment_record_id)
            return FinalizeResult(
                payment_record_id=payment_record_id,
                work_item_id=work_item_id,
                outcome="already_completed",
                record_status="completed",
                bookkeeping=bookkeeping,
            )

        if record.review_required:
            raise PaymentOnHold(record.payment_record_id, record.review_reason)

        if snapshot is None:
            snapshot = await self._get_intent(gateway_intent_id)

        if snapshot.succeeded:
            return await self._complete(record, snapshot)

        if snapshot.status == IntentStatus.PROCESSING:
            await self._update_open_record(record, status="processing", intent_status=snapshot.status)
            return self._finalize_result(record, "processing", "processing")

        if snapshot.status == IntentStatus.CANCELED or snapshot.failure_message:
            await self._record_failure(
                record, snapshot.status, snapshot.failure_message or snapshot.status
            )
            return self._finalize_result(record, "failed", "failed")

        await self._update_open_record(record, status=None, intent_status=snapshot.status)
        return self._finalize_result(record, "pending", record.status)

    async def _adopt_intent(
        self,
        record: PaymentRecord,
        gateway_intent_id: str,
    ) -> tuple[PaymentRecord, IntentSnapshot | None]:
        """Attach an intent whose create response never reached us.

        The intent is adopted only if its metadata names this record and
        attempt. Otherwise the record is returned unchanged and the caller
        treats the event as a mismatch.
        """
        try:
            snapshot = await self.gateway.get_intent(gateway_intent_id)
        except GatewayError as e:
            if e.retryable:
                logger.warning(
                    "Gateway unavailable retrieving intent %s: %s", gateway_intent_id, e
                )
                raise GatewayUnavailable(str(e), operation="get_intent") from e
            return record, None

        metadata = snapshot.metadata
        if (
            metadata.get("work_item_id") != str(record.work_item_id)
            or metadata.get("payment_record_id") != str(record.payment_record_id)
            or metadata.get("attempt", "1") != str(record.attempt)
        ):
            return record, snapshot

        result = await self.session.execute(
            update(PaymentRecord)
            .where(
                PaymentRecord.payment_record_id == record.payment_record_id,
                PaymentRecord.attempt == record.attempt,
                PaymentRecord.gateway_intent_id.is_(None),
            )
            .values(gateway_intent_id=gateway_intent_id, gateway_intent_status=snapshot.status)
            .execution_options(synchronize_session=False)
        )
        await self.session.commit()
        if result.rowcount:
            logger.info(
                "Adopted intent %s for payment %s (work item %s)",
                gateway_intent_id, record.payment_record_id, record.work_item_id,
            )

        refreshed = await self.get_payment_by_id(record.payment_record_id)
        assert refreshed is not None
        return refreshed, snapshot

    async def _get_intent(self, gateway_intent_id: str) -> IntentSnapshot:
        try:
            return await self.gateway.get_intent(gateway_intent_id)
        except GatewayError as e:
            logger.warning("Gateway unavailable retrieving intent %s: %s", gateway_intent_id, e)
            raise GatewayUnavailable(str(e), operation="get_intent") from e

    async def _complete(self, record: PaymentRecord, snapshot: IntentSnapshot) -> FinalizeResult:
        mismatch = self._amount_mismatch(record, snapshot)
        if mismatch is not None:
            await self._hold(record.payment_record_id, record.work_item_id, mismatch)
            raise mismatch

        result = await self.session.execute(
            update(PaymentRecord)
            .where(
                PaymentRecord.payment_record_id == record.payment_record_id,
                PaymentRecord.status.in_(("pending", "processing", "failed")),
                PaymentRecord.review_required.is_(False),
            )
            .values(
                status="completed",
                completed_at=utcnow(),
                processor_reference=snapshot.processor_reference,
                gateway_intent_status=snapshot.status,
            )
            .execution_options(synchronize_session=False)
        )
        await self.session.commit()
        transitioned = result.rowcount > 0

        completed = await self.get_payment_by_id(record.payment_record_id)
        assert completed is not None
        if not completed.is_completed:
            raise PaymentOnHold(completed.payment_record_id, completed.review_reason)

        if transitioned:
            logger.info(
                "Payment %s completed for work item %s: %s %s (ref %s)",
                completed.payment_record_id, completed.work_item_id,
                completed.amount, completed.currency, completed.processor_reference,
            )
            await self._emit(
                PaymentCompleted(
                    metadata=EventMetadata.create(actor_type="webhook"),
                    payment_record_id=completed.payment_record_id,
                    work_item_id=completed.work_item_id,
                    business_id=completed.business_id,
                    contractor_id=completed.contractor_id,
                    amount=completed.amount,
                    currency=completed.currency,
                    processor_reference=completed.processor_reference,
                )
            )

        payment_record_id = completed.payment_record_id
        work_item_id = completed.work_item_id
        bookkeeping = await self.run_bookkeeping(payment_record_id)
        return FinalizeResult(
            payment_record_id=payment_record_id,
            work_item_id=work_item_id,
            outcome="completed" if transitioned else "already_completed",
            record_status="completed",
            bookkeeping=bookkeeping,
        )

    @staticmethod
    def _amount_mismatch(
        record: PaymentRecord, snapshot: IntentSnapshot
    ) -> AmountMismatch | None:
        """Compare the gateway's settled amount with the trusted amount."""
        same_currency = snapshot.currency.upper() == record.currency.upper()
        if (
            snapshot.settled_amount is None
            or snapshot.settled_amount != record.amount
            or not same_currency
        ):
            return AmountMismatch(
                payment_record_id=record.payment_record_id,
                expected=record.amount,
                reported=snapshot.settled_amount,
                expected_currency=record.currency,
                reported_currency=snapshot.currency,
            )
        return None

    @staticmethod
    def _finalize_result(record: PaymentRecord, outcome: str, status: str) -> FinalizeResult:
        return FinalizeResult(
            payment_record_id=record.payment_record_id,
            work_item_id=record.work_item_id,
            outcome=outcome,
            record_status=status,
        )

    async def _update_open_record(
        self,
        record: PaymentRecord,
        status: str | None,
        intent_status: str,
    ) -> None:
        values: dict[str, object] = {"gateway_intent_status": intent_status}
        if status is not None:
            values["status"] = status
        await self.session.execute(
            update(PaymentRecord)
            .where(
                PaymentRecord.payment_record_id == record.payment_record_id,
                PaymentRecord.status.in_(OPEN_RECORD_STATUSES),
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        await self.session.commit()

    # -------------------------------------------------------------------------
    # Bookkeeping
    # -------------------------------------------------------------------------

    async def run_bookkeeping(self, payment_record_id: UUID) -> BookkeepingResult:
        """Run the post-completion steps for a completed payment.

        Each step commits on its own. A failing step is logged and rolled back
        without touching the completed payment; every step is idempotent, so
        reconciliation can simply run this again.
        """
        record = await self.get_payment_by_id(payment_record_id)
        if record is None:
            raise NotFound("PaymentRecord", payment_record_id)

        # Plain values: a rollback below expires ORM state
        business_id = record.business_id
        work_item_id = record.work_item_id
        amount = record.amount

        steps: list[tuple[str, Callable[[], Awaitable[object]]]] = [
            ("budget_spend", lambda: self.budget.record_spend(payment_record_id, business_id, amount)),
            ("business_invoice", lambda: self.invoices.generate(payment_record_id, DocumentType.BUSINESS_INVOICE)),
            ("contractor_receipt", lambda: self.invoices.generate(payment_record_id, DocumentType.CONTRACTOR_RECEIPT)),
            ("compliance_entry", lambda: self.compliance.record(payment_record_id)),
            ("work_item_paid", lambda: self._mark_paid(work_item_id)),
        ]

        result = BookkeepingResult(payment_record_id=payment_record_id)
        for name, step in steps:
            try:
                await step()
                await self.session.commit()
                result.completed.append(name)
            except Exception:
                await self.session.rollback()
                logger.exception(
                    "Bookkeeping step %s failed for payment %s; left for replay",
                    name, payment_record_id,
                )
                result.failed.append(name)

        return result

    async def _mark_paid(self, work_item_id: UUID) -> None:
        """Move the work item to paid and clear any payment issue."""
        result = await self.session.execute(
            update(WorkItem)
            .where(
                WorkItem.work_item_id == work_item_id,
                WorkItem.status == WorkItemStatus.APPROVED.value,
            )
            .values(
                status=WorkItemStatus.PAID.value,
                paid_at=utcnow(),
                payment_issue=None,
                payment_issue_detail=None,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            work_item = await self._get_work_item(work_item_id)
            if work_item.status != WorkItemStatus.PAID:
                raise InvalidTransitionError(work_item.status, WorkItemStatus.PAID)
            return
        logger.info("Work item %s paid", work_item_id)

    # -------------------------------------------------------------------------
    # Failures and holds
    # -------------------------------------------------------------------------

    async def mark_failed(
        self,
        work_item_id: UUID,
        gateway_intent_id: str,
        reason: str = "payment_failed",
        intent_status: str | None = None,
    ) -> PaymentRecord:
        """Record a gateway failure for the work item's current intent.

        Events for a superseded intent, or for a completed payment, are
        ignored and the record is returned unchanged.
        """
        record = await self.get_payment(work_item_id)
        if record is None:
            raise NotFound("PaymentRecord", work_item_id)

        if record.gateway_intent_id != gateway_intent_id:
            logger.warning(
                "Ignoring failure for intent %s; work item %s is on intent %s",
                gateway_intent_id, work_item_id, record.gateway_intent_id,
            )
            return record
        if record.is_completed:
            logger.warning(
                "Ignoring failure for completed payment %s", record.payment_record_id
            )
            return record

        await self._record_failure(
            record, intent_status or IntentStatus.REQUIRES_PAYMENT_METHOD.value, reason
        )
        refreshed = await self.get_payment_by_id(record.payment_record_id)
        assert refreshed is not None
        return refreshed

    async def _record_failure(
        self,
        record: PaymentRecord,
        intent_status: str,
        reason: str,
    ) -> None:
        result = await self.session.execute(
            update(PaymentRecord)
            .where(
                PaymentRecord.payment_record_id == record.payment_record_id,
                PaymentRecord.status.in_(OPEN_RECORD_STATUSES),
            )
            .values(status="failed", gateway_intent_status=intent_status)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount:
            await self.flag_work_item(record.work_item_id, "payment_failed", reason)
        await self.session.commit()

        if result.rowcount:
            logger.warning(
                "Payment %s failed for work item %s (attempt %d): %s",
                record.payment_record_id, record.work_item_id, record.attempt, reason,
            )
            await self._emit(
                PaymentFailed(
                    metadata=EventMetadata.create(actor_type="webhook"),
                    payment_record_id=record.payment_record_id,
                    work_item_id=record.work_item_id,
                    gateway_intent_id=record.gateway_intent_id,
                    failure_reason=reason,
                    attempt=record.attempt,
                )
            )

    async def _hold(
        self,
        payment_record_id: UUID,
        work_item_id: UUID,
        error: PaymentIntegrityError,
    ) -> None:
        """Place a payment under manual review. Nothing moves until released."""
        reason = f"{error.code}: {error}"
        result = await self.session.execute(
            update(PaymentRecord)
            .where(
                PaymentRecord.payment_record_id == payment_record_id,
                PaymentRecord.status != "completed",
            )
            .values(review_required=True, review_reason=reason)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount:
            await self.flag_work_item(work_item_id, "integrity_hold", reason)
            await self.session.commit()
            logger.error("Payment %s held for review", payment_record_id)
        else:
            # Completed concurrently; the completed row stays as it is
            await self.session.rollback()
        await self._report_incident(payment_record_id, work_item_id, error)

    async def _report_incident(
        self,
        payment_record_id: UUID,
        work_item_id: UUID,
        error: PaymentIntegrityError,
    ) -> None:
        logger.error(
            "Integrity incident on payment %s for work item %s: %s",
            payment_record_id, work_item_id, error,
        )
        await self._emit(
            PaymentIntegrityIncident(
                metadata=EventMetadata.create(),
                payment_record_id=payment_record_id,
                work_item_id=work_item_id,
                error_code=error.code,
                detail=str(error),
            )
        )

    async def release_hold(
        self,
        payment_record_id: UUID,
        actor_id: UUID | None = None,
    ) -> PaymentRecord:
        """Clear an integrity hold after manual review."""
        record = await self.get_payment_by_id(payment_record_id)
        if record is None:
            raise NotFound("PaymentRecord", payment_record_id)

        await self.session.execute(
            update(PaymentRecord)
            .where(PaymentRecord.payment_record_id == payment_record_id)
            .values(review_required=False, review_reason=None)
            .execution_options(synchronize_session=False)
        )
        await self.session.execute(
            update(WorkItem)
            .where(
                WorkItem.work_item_id == record.work_item_id,
                WorkItem.payment_issue == "integrity_hold",
            )
            .values(payment_issue=None, payment_issue_detail=None)
            .execution_options(synchronize_session=False)
        )
        await self.session.commit()
        logger.info("Hold released on payment %s by %s", payment_record_id, actor_id)

        refreshed = await self.get_payment_by_id(payment_record_id)
        assert refreshed is not None
        return refreshed

    async def flag_work_item(
        self,
        work_item_id: UUID,
        issue: str | None,
        detail: str | None = None,
    ) -> None:
        """Set (or clear) the payment issue of an approved work item.

        Does not commit. Paid work items are never flagged.
        """
        await self.session.execute(
            update(WorkItem)
            .where(
                WorkItem.work_item_id == work_item_id,
                WorkItem.status == WorkItemStatus.APPROVED.value,
            )
            .values(payment_issue=issue, payment_issue_detail=detail)
            .execution_options(synchronize_session=False)
        )

    async def _emit(self, event: DomainEvent) -> None:
        if self.emitter is not None:
            await self.emitter.emit(event)
