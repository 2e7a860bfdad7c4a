"""Pytest fixtures for engagement engine tests."""

from __future__ import annotations

from collections.abc import AsyncGenerator, Awaitable, Callable
from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from engagement_engine.config import EngineConfig
from engagement_engine.database import create_schema, get_engine, make_session_factory
from engagement_engine.engine import EngagementEngine
from engagement_engine.events import AsyncEventEmitter, DomainEvent
from engagement_engine.gateway import StubPaymentGateway
from engagement_engine.models import Party, WorkItem
from engagement_engine.services import Deliverable, WorkItemDetails


@dataclass
class Parties:
    """The business and contractor used across tests."""

    business_id: UUID
    contractor_id: UUID
    other_business_id: UUID


@pytest_asyncio.fixture
async def db_engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    """File-backed SQLite database per test (concurrent sessions need a file)."""
    engine = get_engine(f"sqlite+aiosqlite:///{tmp_path / 'engagements.db'}")
    await create_schema(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return make_session_factory(db_engine)


@pytest_asyncio.fixture
async def session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """Create a database session for each test."""
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def parties(session: AsyncSession) -> Parties:
    """A GB business, a second business and a contractor."""
    business = Party(
        role="business",
        display_name="Acme Ltd",
        email="accounts@acme.test",
        country_code="GB",
        address="1 High Street, London",
        tax_id="GB123456789",
    )
    other = Party(role="business", display_name="Globex Inc", country_code="US")
    contractor = Party(
        role="contractor",
        display_name="Jane Smith",
        email="jane@example.test",
        country_code="GB",
    )
    session.add_all([business, other, contractor])
    await session.commit()
    return Parties(
        business_id=business.party_id,
        contractor_id=contractor.party_id,
        other_business_id=other.party_id,
    )


@pytest.fixture
def gateway() -> StubPaymentGateway:
    return StubPaymentGateway()


@pytest.fixture
def config() -> EngineConfig:
    return EngineConfig(platform_fee_rate=Decimal("0.10"))


@pytest.fixture
def events() -> list[DomainEvent]:
    return []


@pytest.fixture
def emitter(events: list[DomainEvent]) -> AsyncEventEmitter:
    """Emitter that records every event."""
    emitter = AsyncEventEmitter()

    async def record(event: DomainEvent) -> None:
        events.append(event)

    emitter.on_all(record)
    return emitter


@pytest.fixture
def engine(
    session: AsyncSession,
    gateway: StubPaymentGateway,
    config: EngineConfig,
    emitter: AsyncEventEmitter,
) -> EngagementEngine:
    return EngagementEngine(session, gateway, config=config, emitter=emitter)


@pytest.fixture
def make_in_review(
    engine: EngagementEngine, parties: Parties
) -> Callable[..., Awaitable[WorkItem]]:
    """Factory: propose, accept and submit a work item."""

    async def factory(
        amount: str = "500.00",
        currency: str = "GBP",
        title: str = "Landing page design",
    ) -> WorkItem:
        item = await engine.work_items.propose(
            parties.business_id,
            parties.contractor_id,
            amount,
            currency,
            WorkItemDetails(title=title, description="Hero section and pricing table"),
        )
        await engine.work_items.respond(item.work_item_id, parties.contractor_id, "accept")
        return await engine.work_items.submit_deliverable(
            item.work_item_id,
            parties.contractor_id,
            Deliverable(url="https://files.example.test/design.fig", notes="Final v2"),
        )

    return factory


@pytest.fixture
def make_approved(
    engine: EngagementEngine,
    parties: Parties,
    make_in_review: Callable[..., Awaitable[WorkItem]],
):
    """Factory: an approved work item with its payment intent created."""

    async def factory(amount: str = "500.00", currency: str = "GBP"):
        item = await make_in_review(amount=amount, currency=currency)
        return await engine.work_items.approve(item.work_item_id, parties.business_id)

    return factory
