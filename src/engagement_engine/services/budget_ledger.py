"""Budget ledger service - advisory cap checks and exactly-once spend.

The cap check is a soft limit: it reads the ledger without reserving, so two
approvals racing against the same remaining budget can both pass. Spend is
only ever applied for completed payments, once per payment record.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from engagement_engine.database import insert_if_absent
from engagement_engine.errors import InsufficientBudget, NotFound, ValidationError
from engagement_engine.models import BudgetLedger, BudgetSpend, Party

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BudgetCheck:
    """Result of a budget check."""

    business_id: UUID
    requested: Decimal
    cap: Decimal | None
    used: Decimal

    @property
    def remaining(self) -> Decimal | None:
        """Cap minus used (None when uncapped)."""
        if self.cap is None:
            return None
        return self.cap - self.used

    @property
    def sufficient(self) -> bool:
        """Whether the requested amount fits under the cap."""
        return self.cap is None or self.used + self.requested <= self.cap

    @property
    def shortfall(self) -> Decimal:
        """Amount the cap must grow by (0 if sufficient)."""
        if self.cap is None:
            return Decimal("0")
        diff = self.used + self.requested - self.cap
        return diff if diff > 0 else Decimal("0")


class BudgetLedgerService:
    """Per-business budget cap and running spend.

    Operations:
    - check_and_reserve: advisory check, no reservation is held
    - require_budget: same check, raising InsufficientBudget
    - record_spend: idempotent increment for a completed payment
    - configure / get_ledger: cap administration
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_ledger(self, business_id: UUID) -> BudgetLedger | None:
        """Load a business's ledger, or None if never configured or spent."""
        result = await self.session.execute(
            select(BudgetLedger)
            .where(BudgetLedger.business_id == business_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def check_and_reserve(self, business_id: UUID, amount: Decimal) -> BudgetCheck:
        """Check whether `amount` fits under the business's cap.

        A business without a ledger or without a cap is never blocked.
        """
        ledger = await self.get_ledger(business_id)
        check = BudgetCheck(
            business_id=business_id,
            requested=amount,
            cap=ledger.cap if ledger else None,
            used=ledger.used if ledger else Decimal("0"),
        )
        if not check.sufficient:
            logger.warning(
                "Budget insufficient for business %s: requested=%s used=%s cap=%s",
                business_id, amount, check.used, check.cap,
            )
        return check

    async def require_budget(self, business_id: UUID, amount: Decimal) -> BudgetCheck:
        """Like check_and_reserve but raises InsufficientBudget on failure."""
        check = await self.check_and_reserve(business_id, amount)
        if not check.sufficient:
            raise InsufficientBudget(
                business_id=business_id,
                requested=amount,
                remaining=check.remaining if check.remaining is not None else Decimal("0"),
            )
        return check

    async def record_spend(
        self,
        payment_record_id: UUID,
        business_id: UUID,
        amount: Decimal,
    ) -> bool:
        """Apply a completed payment to the ledger exactly once.

        Returns True if spend was applied, False if this payment record was
        already counted. The ledger row is created on first spend.
        """
        applied = await insert_if_absent(
            self.session,
            BudgetSpend,
            {
                "payment_record_id": payment_record_id,
                "business_id": business_id,
                "amount": amount,
            },
            index_elements=["payment_record_id"],
        )
        if not applied:
            logger.info("Spend for payment %s already recorded", payment_record_id)
            return False

        await self._ensure_ledger(business_id)
        await self.session.execute(
            update(BudgetLedger)
            .where(BudgetLedger.business_id == business_id)
            .values(used=BudgetLedger.used + amount)
        )
        logger.info(
            "Recorded spend %s for business %s (payment %s)",
            amount, business_id, payment_record_id,
        )
        return True

    async def configure(
        self,
        business_id: UUID,
        cap: Decimal | None,
        period_start: date | None = None,
        period_end: date | None = None,
    ) -> BudgetLedger:
        """Set or clear a business's cap and budget period."""
        if cap is not None and cap < 0:
            raise ValidationError("Budget cap cannot be negative", field="cap")
        if period_start and period_end and period_end < period_start:
            raise ValidationError("period_end is before period_start", field="period_end")

        business = await self.session.get(Party, business_id)
        if business is None or business.role != "business":
            raise NotFound("Business", business_id)

        await self._ensure_ledger(business_id)
        await self.session.execute(
            update(BudgetLedger)
            .where(BudgetLedger.business_id == business_id)
            .values(cap=cap, period_start=period_start, period_end=period_end)
        )
        ledger = await self.get_ledger(business_id)
        assert ledger is not None
        return ledger

    async def _ensure_ledger(self, business_id: UUID) -> None:
        await insert_if_absent(
            self.session,
            BudgetLedger,
            {"business_id": business_id, "used": Decimal("0")},
            index_elements=["business_id"],
        )
