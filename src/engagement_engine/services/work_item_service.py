"""Work item service - lifecycle transitions and the approval-to-payment hand-off."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from engagement_engine.errors import (
    GatewayUnavailable,
    NotFound,
    PaymentIntegrityError,
    PaymentOnHold,
    PermissionDenied,
    ValidationError,
)
from engagement_engine.events import (
    AsyncEventEmitter,
    DomainEvent,
    EventMetadata,
    PaymentBlocked,
    WorkItemApproved,
)
from engagement_engine.gateway.base import IntentStatus
from engagement_engine.models import Party, WorkItem, utcnow
from engagement_engine.services.budget_ledger import BudgetCheck, BudgetLedgerService
from engagement_engine.services.payment_controller import (
    FinalizeResult,
    IntentResult,
    PaymentIntentController,
)
from engagement_engine.services.state_machine import (
    InvalidTransitionError,
    WorkItemStateMachine,
    WorkItemStatus,
)

logger = logging.getLogger(__name__)


class PaymentInitiation(str, Enum):
    """Payment outcome reported alongside an approval."""

    INITIATED = "initiated"
    BLOCKED_BUDGET = "blocked_budget"
    GATEWAY_UNAVAILABLE = "gateway_unavailable"
    ON_HOLD = "on_hold"
    ALREADY_PAID = "already_paid"


class Decision(str, Enum):
    """Contractor response to a proposal."""

    ACCEPT = "accept"
    DECLINE = "decline"


@dataclass(frozen=True)
class WorkItemDetails:
    """Descriptive terms of a work item."""

    title: str
    description: str | None = None
    due_date: date | None = None


@dataclass(frozen=True)
class Deliverable:
    """Evidence of completed work. References only, no file content."""

    url: str | None = None
    notes: str | None = None


@dataclass(frozen=True)
class ApprovalOutcome:
    """Result of approve/retry_payment.

    The work item is approved (or paid) whatever happened to the payment;
    payment_status says how far payment got.
    """

    work_item: WorkItem
    payment_status: PaymentInitiation
    transitioned: bool
    intent: IntentResult | None = None
    budget: BudgetCheck | None = None
    finalized: FinalizeResult | None = None
    detail: str | None = None

    @property
    def payment_blocked(self) -> bool:
        return self.payment_status in (
            PaymentInitiation.BLOCKED_BUDGET,
            PaymentInitiation.GATEWAY_UNAVAILABLE,
            PaymentInitiation.ON_HOLD,
        )


def parse_amount(value: Any) -> Decimal:
    """Parse a positive money amount with at most two decimal places."""
    if isinstance(value, float):
        value = str(value)
    try:
        amount = Decimal(value)
    except (InvalidOperation, TypeError, ValueError) as e:
        raise ValidationError(f"Invalid amount: {value!r}", field="amount") from e
    if not amount.is_finite() or amount <= 0:
        raise ValidationError("Amount must be greater than zero", field="amount")
    if amount.as_tuple().exponent < -2:
        raise ValidationError("Amount has more than two decimal places", field="amount")
    return amount


def parse_currency(value: Any) -> str:
    """Validate an ISO 4217 style three-letter code."""
    if not isinstance(value, str) or len(value) != 3 or not value.isalpha():
        raise ValidationError(f"Invalid currency code: {value!r}", field="currency")
    return value.upper()


class WorkItemService:
    """Service for managing the work item lifecycle.

    Operations:
    - propose: business creates a work item for a contractor
    - update_terms: business amends terms while still proposed
    - respond: contractor accepts or declines
    - submit_deliverable: contractor submits (or resubmits) work
    - approve: business approves, then payment is initiated
    - reject: business rejects with a reason
    - retry_payment: re-run payment initiation for an approved item

    Every transition is a compare-and-swap on the status column. Losing the
    race reloads the row and either reports an idempotent success or raises
    InvalidTransitionError naming the status the item actually has.
    """

    def __init__(
        self,
        session: AsyncSession,
        payments: PaymentIntentController,
        budget: BudgetLedgerService | None = None,
        emitter: AsyncEventEmitter | None = None,
    ):
        self.session = session
        self.payments = payments
        self.budget = budget or payments.budget
        self.emitter = emitter

    async def get(self, work_item_id: UUID) -> WorkItem:
        """Load a work item or raise NotFound."""
        work_item = await self.session.get(WorkItem, work_item_id, populate_existing=True)
        if work_item is None:
            raise NotFound("WorkItem", work_item_id)
        return work_item

    async def list_for_party(
        self,
        party_id: UUID,
        status: str | None = None,
    ) -> list[WorkItem]:
        """Work items where the party is the business or the contractor."""
        stmt = select(WorkItem).where(
            (WorkItem.business_id == party_id) | (WorkItem.contractor_id == party_id)
        )
        if status is not None:
            stmt = stmt.where(WorkItem.status == status)
        result = await self.session.execute(stmt.order_by(WorkItem.created_at))
        return list(result.scalars().all())

    # -------------------------------------------------------------------------
    # Proposal
    # -------------------------------------------------------------------------

    async def propose(
        self,
        business_id: UUID,
        contractor_id: UUID,
        amount: Decimal | str | int,
        currency: str,
        details: WorkItemDetails,
    ) -> WorkItem:
        """Create a work item in proposed state."""
        parsed_amount = parse_amount(amount)
        parsed_currency = parse_currency(currency)
        title = (details.title or "").strip()
        if not title:
            raise ValidationError("Title is required", field="title")

        await self._require_party(business_id, "business")
        await self._require_party(contractor_id, "contractor")

        work_item = WorkItem(
            business_id=business_id,
            contractor_id=contractor_id,
            title=title,
            description=details.description,
            due_date=details.due_date,
            amount=parsed_amount,
            currency=parsed_currency,
            status=WorkItemStatus.PROPOSED.value,
        )
        self.session.add(work_item)
        await self.session.commit()

        logger.info(
            "Work item %s proposed by %s to %s: %s %s",
            work_item.work_item_id, business_id, contractor_id,
            parsed_amount, parsed_currency,
        )
        return work_item

    async def update_terms(
        self,
        work_item_id: UUID,
        actor_id: UUID,
        amount: Decimal | str | int | None = None,
        currency: str | None = None,
        details: WorkItemDetails | None = None,
    ) -> WorkItem:
        """Amend a proposal. Only the creator, and only while proposed."""
        work_item = await self.get(work_item_id)
        self._require_actor(actor_id, work_item.business_id, "update work item terms")

        values: dict[str, Any] = {}
        if amount is not None:
            values["amount"] = parse_amount(amount)
        if currency is not None:
            values["currency"] = parse_currency(currency)
        if details is not None:
            title = (details.title or "").strip()
            if not title:
                raise ValidationError("Title is required", field="title")
            values.update(
                title=title, description=details.description, due_date=details.due_date
            )
        if not values:
            return work_item

        if not WorkItemStateMachine.can_modify_terms(work_item.status):
            raise InvalidTransitionError(
                work_item.status, WorkItemStatus.PROPOSED, "terms are fixed once accepted"
            )

        await self._compare_and_swap(
            work_item_id,
            [WorkItemStatus.PROPOSED],
            WorkItemStatus.PROPOSED,
            values,
            reason="terms are fixed once accepted",
        )
        await self.session.commit()
        return await self.get(work_item_id)

    async def respond(
        self,
        work_item_id: UUID,
        actor_id: UUID,
        decision: Decision | str,
        reason: str | None = None,
    ) -> WorkItem:
        """Contractor accepts or declines a proposal.

        Repeating a decision that already took effect returns the work item
        unchanged; an accept counts as applied anywhere past acceptance.
        """
        try:
            decision = Decision(decision)
        except ValueError as e:
            raise ValidationError(
                f"Decision must be 'accept' or 'decline', got {decision!r}",
                field="decision",
            ) from e

        work_item = await self.get(work_item_id)
        self._require_actor(actor_id, work_item.contractor_id, "respond to this work item")

        if decision == Decision.ACCEPT:
            target = WorkItemStatus.ACCEPTED
            values: dict[str, Any] = {}
        else:
            target = WorkItemStatus.DECLINED
            values = {"decline_reason": reason}

        swapped = await self._try_swap(work_item_id, [WorkItemStatus.PROPOSED], target, values)
        if not swapped:
            current = await self.get(work_item_id)
            if decision == Decision.ACCEPT and WorkItemStateMachine.is_accepted_path(
                current.status
            ):
                return current
            if decision == Decision.DECLINE and current.status == WorkItemStatus.DECLINED:
                return current
            raise InvalidTransitionError(current.status, target)

        await self.session.commit()
        logger.info("Work item %s %s by contractor %s", work_item_id, target.value, actor_id)
        return await self.get(work_item_id)

    # -------------------------------------------------------------------------
    # Delivery and review
    # -------------------------------------------------------------------------

    async def submit_deliverable(
        self,
        work_item_id: UUID,
        actor_id: UUID,
        evidence: Deliverable,
    ) -> WorkItem:
        """Contractor submits work for review (also resubmission after rejection)."""
        if not (evidence.url or evidence.notes):
            raise ValidationError("A deliverable URL or notes are required", field="evidence")

        work_item = await self.get(work_item_id)
        self._require_actor(actor_id, work_item.contractor_id, "submit work for this item")

        await self._compare_and_swap(
            work_item_id,
            [WorkItemStatus.ACCEPTED, WorkItemStatus.REJECTED],
            WorkItemStatus.IN_REVIEW,
            {
                "deliverable_url": evidence.url,
                "deliverable_notes": evidence.notes,
                "submitted_at": utcnow(),
                "submission_count": WorkItem.submission_count + 1,
            },
        )
        await self.session.commit()
        logger.info("Deliverable submitted for work item %s", work_item_id)
        return await self.get(work_item_id)

    async def reject(
        self,
        work_item_id: UUID,
        actor_id: UUID,
        reason: str,
    ) -> WorkItem:
        """Business rejects a submission. The contractor may resubmit."""
        if not reason or not reason.strip():
            raise ValidationError("A rejection reason is required", field="reason")

        work_item = await self.get(work_item_id)
        self._require_actor(actor_id, work_item.business_id, "reject this work item")

        await self._compare_and_swap(
            work_item_id,
            [WorkItemStatus.IN_REVIEW],
            WorkItemStatus.REJECTED,
            {"rejection_reason": reason.strip()},
        )
        await self.session.commit()
        logger.info("Work item %s rejected by %s", work_item_id, actor_id)
        return await self.get(work_item_id)

    async def approve(self, work_item_id: UUID, actor_id: UUID) -> ApprovalOutcome:
        """Approve a submission, then initiate payment.

        The approval is committed before payment starts and is never rolled
        back. A repeated approve re-runs the idempotent payment initiation.
        """
        work_item = await self.get(work_item_id)
        self._require_actor(actor_id, work_item.business_id, "approve this work item")

        transitioned = await self._try_swap(
            work_item_id,
            [WorkItemStatus.IN_REVIEW],
            WorkItemStatus.APPROVED,
            {"approved_at": utcnow(), "approved_by": actor_id},
        )
        if transitioned:
            await self.session.commit()
            work_item = await self.get(work_item_id)
            logger.info("Work item %s approved by %s", work_item_id, actor_id)
            await self._emit(
                WorkItemApproved(
                    metadata=EventMetadata.create(actor_id=actor_id, actor_type="user"),
                    work_item_id=work_item.work_item_id,
                    business_id=work_item.business_id,
                    contractor_id=work_item.contractor_id,
                    amount=work_item.amount,
                    currency=work_item.currency,
                    approved_by=actor_id,
                )
            )
        else:
            work_item = await self.get(work_item_id)
            if work_item.status == WorkItemStatus.PAID:
                return ApprovalOutcome(
                    work_item=work_item,
                    payment_status=PaymentInitiation.ALREADY_PAID,
                    transitioned=False,
                )
            if work_item.status != WorkItemStatus.APPROVED:
                raise InvalidTransitionError(work_item.status, WorkItemStatus.APPROVED)

        return await self._start_payment(work_item, transitioned)

    async def retry_payment(
        self,
        work_item_id: UUID,
        actor_id: UUID | None = None,
    ) -> ApprovalOutcome:
        """Re-run payment initiation for an approved, unpaid work item."""
        work_item = await self.get(work_item_id)
        if actor_id is not None:
            self._require_actor(actor_id, work_item.business_id, "retry payment")

        if work_item.status == WorkItemStatus.PAID:
            return ApprovalOutcome(
                work_item=work_item,
                payment_status=PaymentInitiation.ALREADY_PAID,
                transitioned=False,
            )
        if work_item.status != WorkItemStatus.APPROVED:
            raise InvalidTransitionError(
                work_item.status, WorkItemStatus.PAID, "only approved work items are paid"
            )
        return await self._start_payment(work_item, transitioned=False)

    async def _start_payment(self, work_item: WorkItem, transitioned: bool) -> ApprovalOutcome:
        """Budget check, then ensure the payment intent. Never raises for payment."""
        work_item_id = work_item.work_item_id

        record = await self.payments.get_payment(work_item_id)
        if record is not None and record.is_completed:
            await self.payments.run_bookkeeping(record.payment_record_id)
            return ApprovalOutcome(
                work_item=await self.get(work_item_id),
                payment_status=PaymentInitiation.ALREADY_PAID,
                transitioned=transitioned,
            )

        check = await self.budget.check_and_reserve(work_item.business_id, work_item.amount)
        if not check.sufficient:
            detail = (
                f"Payment of {work_item.amount} {work_item.currency} exceeds remaining "
                f"budget {check.remaining}; increase the cap by at least {check.shortfall}"
            )
            await self.payments.flag_work_item(work_item_id, "insufficient_budget", detail)
            await self.session.commit()
            await self._emit(
                PaymentBlocked(
                    metadata=EventMetadata.create(),
                    work_item_id=work_item_id,
                    business_id=work_item.business_id,
                    amount=work_item.amount,
                    remaining=check.remaining if check.remaining is not None else Decimal("0"),
                    shortfall=check.shortfall,
                )
            )
            return ApprovalOutcome(
                work_item=await self.get(work_item_id),
                payment_status=PaymentInitiation.BLOCKED_BUDGET,
                transitioned=transitioned,
                budget=check,
                detail=detail,
            )

        try:
            intent = await self.payments.ensure_payment_intent(work_item_id)
        except GatewayUnavailable as e:
            await self.payments.flag_work_item(work_item_id, "gateway_unavailable", str(e))
            await self.session.commit()
            return ApprovalOutcome(
                work_item=await self.get(work_item_id),
                payment_status=PaymentInitiation.GATEWAY_UNAVAILABLE,
                transitioned=transitioned,
                budget=check,
                detail=str(e),
            )
        except PaymentOnHold as e:
            return ApprovalOutcome(
                work_item=await self.get(work_item_id),
                payment_status=PaymentInitiation.ON_HOLD,
                transitioned=transitioned,
                budget=check,
                detail=str(e),
            )

        await self.payments.flag_work_item(work_item_id, None)
        await self.session.commit()

        finalized: FinalizeResult | None = None
        if (
            intent.intent_status == IntentStatus.SUCCEEDED
            and intent.record_status != "completed"
            and intent.gateway_intent_id
        ):
            try:
                finalized = await self.payments.finalize_payment(
                    work_item_id, intent.gateway_intent_id
                )
            except GatewayUnavailable as e:
                logger.warning(
                    "Finalization of work item %s deferred to reconciliation: %s",
                    work_item_id, e,
                )
            except PaymentIntegrityError as e:
                return ApprovalOutcome(
                    work_item=await self.get(work_item_id),
                    payment_status=PaymentInitiation.ON_HOLD,
                    transitioned=transitioned,
                    intent=intent,
                    budget=check,
                    detail=str(e),
                )

        payment_status = PaymentInitiation.INITIATED
        if intent.record_status == "completed":
            payment_status = PaymentInitiation.ALREADY_PAID

        return ApprovalOutcome(
            work_item=await self.get(work_item_id),
            payment_status=payment_status,
            transitioned=transitioned,
            intent=intent,
            budget=check,
            finalized=finalized,
        )

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    async def _require_party(self, party_id: UUID, role: str) -> Party:
        party = await self.session.get(Party, party_id)
        if party is None or party.role != role:
            raise ValidationError(f"Unknown {role}: {party_id}", field=f"{role}_id")
        return party

    @staticmethod
    def _require_actor(actor_id: UUID | None, expected: UUID, action: str) -> None:
        if actor_id is None or actor_id != expected:
            raise PermissionDenied(actor_id, action)

    async def _try_swap(
        self,
        work_item_id: UUID,
        from_statuses: list[WorkItemStatus],
        to_status: WorkItemStatus,
        values: dict[str, Any],
    ) -> bool:
        """Conditional status update. Returns False if the row was not in from_statuses."""
        for from_status in from_statuses:
            if from_status != to_status:
                WorkItemStateMachine.validate_transition(from_status, to_status)

        result = await self.session.execute(
            update(WorkItem)
            .where(
                WorkItem.work_item_id == work_item_id,
                WorkItem.status.in_([s.value for s in from_statuses]),
            )
            .values(status=to_status.value, **values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount > 0

    async def _compare_and_swap(
        self,
        work_item_id: UUID,
        from_statuses: list[WorkItemStatus],
        to_status: WorkItemStatus,
        values: dict[str, Any],
        reason: str | None = None,
    ) -> None:
        """Conditional status update raising InvalidTransitionError on a lost race."""
        if not await self._try_swap(work_item_id, from_statuses, to_status, values):
            current = await self.get(work_item_id)
            raise InvalidTransitionError(current.status, to_status, reason)

    async def _emit(self, event: DomainEvent) -> None:
        if self.emitter is not None:
            await self.emitter.emit(event)
