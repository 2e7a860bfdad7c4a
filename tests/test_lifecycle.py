"""End-to-end lifecycle: proposal to paid, with bookkeeping."""

from decimal import Decimal

from sqlalchemy import func, select

from engagement_engine.engine import EngagementEngine
from engagement_engine.events import PaymentCompleted
from engagement_engine.gateway import StubPaymentGateway
from engagement_engine.models import ComplianceLogEntry, InvoiceDocument, PaymentRecord
from engagement_engine.services import Deliverable, PaymentInitiation, WorkItemDetails


async def _count(session, model):
    result = await session.execute(select(func.count()).select_from(model))
    return result.scalar_one()


class TestHappyPath:
    async def test_proposal_to_paid(self, engine, parties, gateway, events):
        await engine.budget.configure(parties.business_id, Decimal("2000.00"))
        await engine.session.commit()

        item = await engine.work_items.propose(
            parties.business_id,
            parties.contractor_id,
            "500.00",
            "GBP",
            WorkItemDetails(title="Landing page design"),
        )
        work_item_id = item.work_item_id
        await engine.work_items.respond(work_item_id, parties.contractor_id, "accept")
        await engine.work_items.submit_deliverable(
            work_item_id,
            parties.contractor_id,
            Deliverable(url="https://files.example.test/landing.fig"),
        )

        outcome = await engine.work_items.approve(work_item_id, parties.business_id)
        assert outcome.payment_status == PaymentInitiation.INITIATED
        intent_id = outcome.intent.gateway_intent_id

        display = await engine.payment_status(work_item_id)
        assert display.label == "payment pending - awaiting funds"

        gateway.settle(intent_id, processor_reference="ch_live_1")
        result = await engine.payments.finalize_payment(work_item_id, intent_id)

        assert result.outcome == "completed"
        assert result.bookkeeping.success

        item = await engine.work_items.get(work_item_id)
        assert item.status == "paid"
        assert item.paid_at is not None
        assert (await engine.payment_status(work_item_id)).label == "paid"

        record = await engine.payments.get_payment(work_item_id)
        assert record.amount == Decimal("500.00")
        assert record.processor_reference == "ch_live_1"

        assert await _count(engine.session, InvoiceDocument) == 2
        assert await _count(engine.session, ComplianceLogEntry) == 1

        ledger = await engine.budget.get_ledger(parties.business_id)
        assert ledger.used == Decimal("500.00")
        assert ledger.remaining == Decimal("1500.00")

        types = [e.event_type for e in events]
        assert types.count("WorkItemApproved") == 1
        assert types.count("PaymentCompleted") == 1
        completed = next(e for e in events if isinstance(e, PaymentCompleted))
        assert completed.amount == Decimal("500.00")

    async def test_finalize_twice_counts_once(self, engine, parties, make_approved, gateway):
        await engine.budget.configure(parties.business_id, Decimal("2000.00"))
        await engine.session.commit()
        outcome = await make_approved()
        work_item_id = outcome.work_item.work_item_id
        intent_id = outcome.intent.gateway_intent_id
        gateway.settle(intent_id)

        await engine.payments.finalize_payment(work_item_id, intent_id)
        again = await engine.payments.finalize_payment(work_item_id, intent_id)

        assert again.outcome == "already_completed"
        ledger = await engine.budget.get_ledger(parties.business_id)
        assert ledger.used == Decimal("500.00")
        assert await _count(engine.session, InvoiceDocument) == 2
        assert await _count(engine.session, ComplianceLogEntry) == 1

    async def test_approve_after_paid(self, engine, parties, make_approved, gateway):
        outcome = await make_approved()
        work_item_id = outcome.work_item.work_item_id
        gateway.settle(outcome.intent.gateway_intent_id)
        await engine.payments.finalize_payment(work_item_id, outcome.intent.gateway_intent_id)

        again = await engine.work_items.approve(work_item_id, parties.business_id)

        assert again.payment_status == PaymentInitiation.ALREADY_PAID
        assert gateway.create_calls == 1

    async def test_instant_settlement_completes_during_approval(
        self, session, parties, config, make_in_review
    ):
        """A gateway that settles on creation is finalized inside approve."""
        instant = StubPaymentGateway(auto_settle=True)
        item = await make_in_review()
        engine = EngagementEngine(session, instant, config=config)

        outcome = await engine.work_items.approve(item.work_item_id, parties.business_id)

        assert outcome.finalized is not None
        assert outcome.finalized.outcome == "completed"
        assert outcome.work_item.status == "paid"


class TestCompetingApprovals:
    """Two workers approving the same item produce one payment."""

    async def test_second_approver_reuses_payment(
        self, session_factory, parties, config, gateway, make_in_review
    ):
        item = await make_in_review()
        work_item_id = item.work_item_id

        async with session_factory() as first_session, session_factory() as second_session:
            first = EngagementEngine(first_session, gateway, config=config)
            second = EngagementEngine(second_session, gateway, config=config)

            # Both workers see the submission before either approves
            assert (await first.work_items.get(work_item_id)).status == "in_review"
            assert (await second.work_items.get(work_item_id)).status == "in_review"

            a = await first.work_items.approve(work_item_id, parties.business_id)
            b = await second.work_items.approve(work_item_id, parties.business_id)

            assert [a.transitioned, b.transitioned] == [True, False]
            assert a.intent.gateway_intent_id == b.intent.gateway_intent_id
            assert a.intent.payment_record_id == b.intent.payment_record_id
            assert b.intent.was_existing is True

            assert await _count(second_session, PaymentRecord) == 1
        assert len(gateway.intents_for(str(work_item_id))) == 1

    async def test_gateway_dedupes_a_lost_intent_response(
        self, session_factory, parties, config, gateway, make_in_review
    ):
        """A record left without an intent id reuses the processor's intent."""
        item = await make_in_review()
        work_item_id = item.work_item_id

        async with session_factory() as first_session, session_factory() as second_session:
            first = EngagementEngine(first_session, gateway, config=config)
            a = await first.work_items.approve(work_item_id, parties.business_id)
            intent_id = a.intent.gateway_intent_id

            # Simulate a worker that created the intent but crashed before saving it
            record = await first.payments.get_payment(work_item_id)
            record.gateway_intent_id = None
            await first_session.commit()

            second = EngagementEngine(second_session, gateway, config=config)
            b = await second.work_items.retry_payment(work_item_id, parties.business_id)

            assert b.intent.gateway_intent_id == intent_id
        assert len(gateway.intents_for(str(work_item_id))) == 1
