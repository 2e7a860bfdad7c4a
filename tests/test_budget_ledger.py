"""Tests for budget checks and spend recording."""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from engagement_engine.errors import InsufficientBudget, NotFound, ValidationError
from engagement_engine.events import PaymentBlocked
from engagement_engine.services import BudgetCheck, PaymentInitiation


class TestBudgetCheck:
    """BudgetCheck arithmetic."""

    def test_uncapped_is_always_sufficient(self):
        check = BudgetCheck(uuid4(), requested=Decimal("1000000"), cap=None, used=Decimal("5"))
        assert check.sufficient is True
        assert check.remaining is None
        assert check.shortfall == Decimal("0")

    def test_shortfall(self):
        check = BudgetCheck(
            uuid4(), requested=Decimal("20.00"), cap=Decimal("100.00"), used=Decimal("90.00")
        )
        assert check.remaining == Decimal("10.00")
        assert check.sufficient is False
        assert check.shortfall == Decimal("10.00")

    def test_exact_fit(self):
        check = BudgetCheck(
            uuid4(), requested=Decimal("10.00"), cap=Decimal("100.00"), used=Decimal("90.00")
        )
        assert check.sufficient is True


class TestBudgetLedgerService:
    """Ledger configuration, checks and spend."""

    async def test_no_ledger_never_blocks(self, engine, parties):
        check = await engine.budget.check_and_reserve(parties.business_id, Decimal("99999"))
        assert check.sufficient is True

    async def test_configure_and_check(self, engine, parties):
        ledger = await engine.budget.configure(
            parties.business_id,
            Decimal("100.00"),
            period_start=date(2026, 1, 1),
            period_end=date(2026, 12, 31),
        )
        await engine.session.commit()

        assert ledger.cap == Decimal("100.00")
        assert ledger.used == Decimal("0")
        assert ledger.remaining == Decimal("100.00")

        check = await engine.budget.check_and_reserve(parties.business_id, Decimal("100.01"))
        assert check.sufficient is False

    async def test_configure_validation(self, engine, parties):
        with pytest.raises(ValidationError):
            await engine.budget.configure(parties.business_id, Decimal("-1"))
        with pytest.raises(ValidationError):
            await engine.budget.configure(
                parties.business_id,
                Decimal("10"),
                period_start=date(2026, 6, 1),
                period_end=date(2026, 5, 1),
            )
        with pytest.raises(NotFound):
            await engine.budget.configure(parties.contractor_id, Decimal("10"))

    async def test_require_budget_raises(self, engine, parties):
        await engine.budget.configure(parties.business_id, Decimal("50.00"))
        await engine.session.commit()

        with pytest.raises(InsufficientBudget) as exc_info:
            await engine.budget.require_budget(parties.business_id, Decimal("80.00"))
        assert exc_info.value.shortfall == Decimal("30.00")

    async def test_record_spend_is_idempotent(self, engine, parties):
        payment_record_id = uuid4()
        assert await engine.budget.record_spend(
            payment_record_id, parties.business_id, Decimal("40.00")
        ) is True
        assert await engine.budget.record_spend(
            payment_record_id, parties.business_id, Decimal("40.00")
        ) is False
        await engine.session.commit()

        ledger = await engine.budget.get_ledger(parties.business_id)
        assert ledger.used == Decimal("40.00")
        assert ledger.cap is None


class TestBudgetGate:
    """Approval with insufficient budget keeps the approval and blocks payment."""

    async def test_insufficient_budget_blocks_payment(
        self, engine, parties, make_in_review, gateway, events
    ):
        await engine.budget.configure(parties.business_id, Decimal("100.00"))
        await engine.budget.record_spend(uuid4(), parties.business_id, Decimal("90.00"))
        await engine.session.commit()

        item = await make_in_review(amount="20.00")
        outcome = await engine.work_items.approve(item.work_item_id, parties.business_id)

        assert outcome.payment_status == PaymentInitiation.BLOCKED_BUDGET
        assert outcome.work_item.status == "approved"
        assert outcome.work_item.payment_issue == "insufficient_budget"
        assert outcome.budget.shortfall == Decimal("10.00")
        assert "10.00" in outcome.detail
        assert gateway.create_calls == 0
        assert await engine.payments.get_payment(item.work_item_id) is None

        blocked = [e for e in events if isinstance(e, PaymentBlocked)]
        assert len(blocked) == 1
        assert blocked[0].shortfall == Decimal("10.00")

        display = await engine.payment_status(item.work_item_id)
        assert display.label == "payment blocked - budget increase required"
        assert display.retry_available is True

    async def test_raise_cap_then_retry(self, engine, parties, make_in_review):
        await engine.budget.configure(parties.business_id, Decimal("10.00"))
        await engine.session.commit()

        item = await make_in_review(amount="20.00")
        blocked = await engine.work_items.approve(item.work_item_id, parties.business_id)
        assert blocked.payment_status == PaymentInitiation.BLOCKED_BUDGET

        await engine.budget.configure(parties.business_id, Decimal("50.00"))
        await engine.session.commit()
        retried = await engine.work_items.retry_payment(item.work_item_id, parties.business_id)

        assert retried.payment_status == PaymentInitiation.INITIATED
        assert retried.work_item.payment_issue is None

    async def test_spend_recorded_on_completion_only(
        self, engine, parties, make_approved, gateway
    ):
        await engine.budget.configure(parties.business_id, Decimal("1000.00"))
        await engine.session.commit()

        outcome = await make_approved(amount="300.00")
        ledger = await engine.budget.get_ledger(parties.business_id)
        assert ledger.used == Decimal("0")

        gateway.settle(outcome.intent.gateway_intent_id)
        await engine.payments.finalize_payment(
            outcome.work_item.work_item_id, outcome.intent.gateway_intent_id
        )
        ledger = await engine.budget.get_ledger(parties.business_id)
        assert ledger.used == Decimal("300.00")

    async def test_soft_limit_allows_overshoot_between_check_and_spend(
        self, engine, parties, make_approved, gateway
    ):
        """Checks do not reserve: two approvals that each fit can both complete."""
        await engine.budget.configure(parties.business_id, Decimal("100.00"))
        await engine.session.commit()

        first = await make_approved(amount="60.00")
        second = await make_approved(amount="60.00")
        assert first.payment_status == PaymentInitiation.INITIATED
        assert second.payment_status == PaymentInitiation.INITIATED

        for outcome in (first, second):
            gateway.settle(outcome.intent.gateway_intent_id)
            await engine.payments.finalize_payment(
                outcome.work_item.work_item_id, outcome.intent.gateway_intent_id
            )

        ledger = await engine.budget.get_ledger(parties.business_id)
        assert ledger.used == Decimal("120.00")
