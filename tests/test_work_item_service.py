"""Tests for work item lifecycle transitions."""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from engagement_engine.errors import NotFound, PermissionDenied, ValidationError
from engagement_engine.events import WorkItemApproved
from engagement_engine.services import (
    Deliverable,
    InvalidTransitionError,
    PaymentInitiation,
    WorkItemDetails,
)
from engagement_engine.services.work_item_service import parse_amount, parse_currency


class TestParsing:
    """Amount and currency validation."""

    def test_parse_amount(self):
        assert parse_amount("500.00") == Decimal("500.00")
        assert parse_amount(12) == Decimal("12")
        assert parse_amount(19.99) == Decimal("19.99")

    @pytest.mark.parametrize("value", ["0", "-5", "abc", "1.001", "NaN", "Infinity", None])
    def test_parse_amount_rejects(self, value):
        with pytest.raises(ValidationError) as exc_info:
            parse_amount(value)
        assert exc_info.value.field == "amount"

    def test_parse_currency(self):
        assert parse_currency("gbp") == "GBP"

    @pytest.mark.parametrize("value", ["GB", "GBPX", "12A", "", None])
    def test_parse_currency_rejects(self, value):
        with pytest.raises(ValidationError):
            parse_currency(value)


class TestPropose:
    """Proposal creation and amendment."""

    async def test_propose_creates_proposed_item(self, engine, parties):
        item = await engine.work_items.propose(
            parties.business_id,
            parties.contractor_id,
            "250.50",
            "gbp",
            WorkItemDetails(title="  Logo  ", due_date=date(2026, 12, 1)),
        )

        assert item.status == "proposed"
        assert item.amount == Decimal("250.50")
        assert item.currency == "GBP"
        assert item.title == "Logo"
        assert item.submission_count == 0

    async def test_propose_requires_title(self, engine, parties):
        with pytest.raises(ValidationError) as exc_info:
            await engine.work_items.propose(
                parties.business_id, parties.contractor_id, "10", "GBP",
                WorkItemDetails(title="   "),
            )
        assert exc_info.value.field == "title"

    async def test_propose_rejects_unknown_parties(self, engine, parties):
        with pytest.raises(ValidationError):
            await engine.work_items.propose(
                uuid4(), parties.contractor_id, "10", "GBP", WorkItemDetails(title="x")
            )
        # Roles must match
        with pytest.raises(ValidationError):
            await engine.work_items.propose(
                parties.business_id, parties.other_business_id, "10", "GBP",
                WorkItemDetails(title="x"),
            )

    async def test_update_terms_while_proposed(self, engine, parties):
        item = await engine.work_items.propose(
            parties.business_id, parties.contractor_id, "100", "GBP",
            WorkItemDetails(title="Copy"),
        )
        updated = await engine.work_items.update_terms(
            item.work_item_id, parties.business_id, amount="150.00", currency="EUR"
        )
        assert updated.amount == Decimal("150.00")
        assert updated.currency == "EUR"

    async def test_update_terms_fixed_after_acceptance(self, engine, parties):
        item = await engine.work_items.propose(
            parties.business_id, parties.contractor_id, "100", "GBP",
            WorkItemDetails(title="Copy"),
        )
        await engine.work_items.respond(item.work_item_id, parties.contractor_id, "accept")

        with pytest.raises(InvalidTransitionError) as exc_info:
            await engine.work_items.update_terms(
                item.work_item_id, parties.business_id, amount="999"
            )
        assert exc_info.value.current_status == "accepted"

    async def test_update_terms_only_by_business(self, engine, parties):
        item = await engine.work_items.propose(
            parties.business_id, parties.contractor_id, "100", "GBP",
            WorkItemDetails(title="Copy"),
        )
        with pytest.raises(PermissionDenied):
            await engine.work_items.update_terms(
                item.work_item_id, parties.contractor_id, amount="1000"
            )


class TestRespond:
    """Contractor accept/decline."""

    async def _proposed(self, engine, parties):
        return await engine.work_items.propose(
            parties.business_id, parties.contractor_id, "80", "GBP",
            WorkItemDetails(title="Illustration"),
        )

    async def test_accept(self, engine, parties):
        item = await self._proposed(engine, parties)
        accepted = await engine.work_items.respond(
            item.work_item_id, parties.contractor_id, "accept"
        )
        assert accepted.status == "accepted"

    async def test_accept_is_idempotent(self, engine, parties):
        item = await self._proposed(engine, parties)
        await engine.work_items.respond(item.work_item_id, parties.contractor_id, "accept")
        again = await engine.work_items.respond(
            item.work_item_id, parties.contractor_id, "accept"
        )
        assert again.status == "accepted"

    async def test_decline_records_reason(self, engine, parties):
        item = await self._proposed(engine, parties)
        declined = await engine.work_items.respond(
            item.work_item_id, parties.contractor_id, "decline", reason="Too busy"
        )
        assert declined.status == "declined"
        assert declined.decline_reason == "Too busy"

    async def test_decline_after_accept_fails(self, engine, parties):
        item = await self._proposed(engine, parties)
        await engine.work_items.respond(item.work_item_id, parties.contractor_id, "accept")
        with pytest.raises(InvalidTransitionError) as exc_info:
            await engine.work_items.respond(
                item.work_item_id, parties.contractor_id, "decline"
            )
        assert exc_info.value.current_status == "accepted"

    async def test_only_contractor_responds(self, engine, parties):
        item = await self._proposed(engine, parties)
        with pytest.raises(PermissionDenied):
            await engine.work_items.respond(item.work_item_id, parties.business_id, "accept")

    async def test_invalid_decision(self, engine, parties):
        item = await self._proposed(engine, parties)
        with pytest.raises(ValidationError):
            await engine.work_items.respond(item.work_item_id, parties.contractor_id, "maybe")

    async def test_declined_item_cannot_progress(self, engine, parties):
        """Decline is terminal: submit and approve name 'declined'."""
        item = await self._proposed(engine, parties)
        await engine.work_items.respond(item.work_item_id, parties.contractor_id, "decline")

        with pytest.raises(InvalidTransitionError) as exc_info:
            await engine.work_items.submit_deliverable(
                item.work_item_id, parties.contractor_id, Deliverable(notes="done")
            )
        assert exc_info.value.current_status == "declined"

        with pytest.raises(InvalidTransitionError) as exc_info:
            await engine.work_items.approve(item.work_item_id, parties.business_id)
        assert exc_info.value.current_status == "declined"


class TestReview:
    """Submission, rejection and resubmission."""

    async def test_submit_requires_evidence(self, engine, parties, make_in_review):
        item = await engine.work_items.propose(
            parties.business_id, parties.contractor_id, "80", "GBP",
            WorkItemDetails(title="x"),
        )
        await engine.work_items.respond(item.work_item_id, parties.contractor_id, "accept")
        with pytest.raises(ValidationError):
            await engine.work_items.submit_deliverable(
                item.work_item_id, parties.contractor_id, Deliverable()
            )

    async def test_submit_moves_to_review(self, make_in_review):
        item = await make_in_review()
        assert item.status == "in_review"
        assert item.submission_count == 1
        assert item.deliverable_url == "https://files.example.test/design.fig"
        assert item.submitted_at is not None

    async def test_reject_requires_reason(self, engine, parties, make_in_review):
        item = await make_in_review()
        with pytest.raises(ValidationError):
            await engine.work_items.reject(item.work_item_id, parties.business_id, "  ")

    async def test_reject_then_resubmit_then_approve(
        self, engine, parties, make_in_review, gateway
    ):
        item = await make_in_review()
        rejected = await engine.work_items.reject(
            item.work_item_id, parties.business_id, "Needs dark mode"
        )
        assert rejected.status == "rejected"
        assert rejected.rejection_reason == "Needs dark mode"

        resubmitted = await engine.work_items.submit_deliverable(
            item.work_item_id, parties.contractor_id, Deliverable(notes="Dark mode added")
        )
        assert resubmitted.status == "in_review"
        assert resubmitted.submission_count == 2

        outcome = await engine.work_items.approve(item.work_item_id, parties.business_id)
        assert outcome.work_item.status == "approved"
        assert outcome.payment_status == PaymentInitiation.INITIATED
        assert len(gateway.intents_for(str(item.work_item_id))) == 1

    async def test_only_business_reviews(self, engine, parties, make_in_review):
        item = await make_in_review()
        with pytest.raises(PermissionDenied):
            await engine.work_items.approve(item.work_item_id, parties.contractor_id)
        with pytest.raises(PermissionDenied):
            await engine.work_items.approve(item.work_item_id, parties.other_business_id)
        with pytest.raises(PermissionDenied):
            await engine.work_items.reject(item.work_item_id, parties.contractor_id, "no")


class TestApprove:
    """Approval and the hand-off to payment."""

    async def test_approve_records_approver_and_emits(
        self, engine, parties, make_in_review, events
    ):
        item = await make_in_review()
        outcome = await engine.work_items.approve(item.work_item_id, parties.business_id)

        assert outcome.transitioned is True
        assert outcome.work_item.approved_by == parties.business_id
        assert outcome.work_item.approved_at is not None
        assert outcome.intent is not None
        assert outcome.intent.gateway_intent_id.startswith("pi_stub_")

        approved = [e for e in events if isinstance(e, WorkItemApproved)]
        assert len(approved) == 1
        assert approved[0].amount == Decimal("500.00")

    async def test_approve_twice_reuses_intent(
        self, engine, parties, make_in_review, gateway
    ):
        item = await make_in_review()
        first = await engine.work_items.approve(item.work_item_id, parties.business_id)
        second = await engine.work_items.approve(item.work_item_id, parties.business_id)

        assert second.transitioned is False
        assert second.intent.gateway_intent_id == first.intent.gateway_intent_id
        assert len(gateway.intents_for(str(item.work_item_id))) == 1

    async def test_approve_before_submission_fails(self, engine, parties):
        item = await engine.work_items.propose(
            parties.business_id, parties.contractor_id, "80", "GBP",
            WorkItemDetails(title="x"),
        )
        await engine.work_items.respond(item.work_item_id, parties.contractor_id, "accept")
        with pytest.raises(InvalidTransitionError) as exc_info:
            await engine.work_items.approve(item.work_item_id, parties.business_id)
        assert exc_info.value.current_status == "accepted"

    async def test_approve_with_gateway_down_keeps_approval(
        self, engine, parties, make_in_review, gateway
    ):
        gateway.available = False
        item = await make_in_review()
        outcome = await engine.work_items.approve(item.work_item_id, parties.business_id)

        assert outcome.payment_status == PaymentInitiation.GATEWAY_UNAVAILABLE
        assert outcome.payment_blocked is True
        assert outcome.work_item.status == "approved"
        assert outcome.work_item.payment_issue == "gateway_unavailable"

        gateway.available = True
        retried = await engine.work_items.retry_payment(item.work_item_id, parties.business_id)
        assert retried.payment_status == PaymentInitiation.INITIATED
        assert retried.work_item.payment_issue is None
        assert retried.intent.gateway_intent_id is not None

    async def test_retry_payment_requires_approval(self, engine, parties, make_in_review):
        item = await make_in_review()
        with pytest.raises(InvalidTransitionError):
            await engine.work_items.retry_payment(item.work_item_id, parties.business_id)

    async def test_get_unknown(self, engine):
        with pytest.raises(NotFound):
            await engine.work_items.get(uuid4())

    async def test_list_for_party(self, engine, parties, make_in_review):
        await make_in_review()
        await make_in_review(amount="20.00")

        for_business = await engine.work_items.list_for_party(parties.business_id)
        for_contractor = await engine.work_items.list_for_party(
            parties.contractor_id, status="in_review"
        )
        for_other = await engine.work_items.list_for_party(parties.other_business_id)

        assert len(for_business) == 2
        assert len(for_contractor) == 2
        assert for_other == []
