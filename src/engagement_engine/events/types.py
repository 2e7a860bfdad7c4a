"""Domain event types for the work item and payment lifecycle.

All events are:
- Immutable (frozen dataclasses)
- Typed with explicit payloads
- Serializable for notification delivery

Events are notifications, not the source of truth: core state lives in the
database and never depends on whether a handler ran.
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from engagement_engine.models.base import utcnow


class EventCategory(str, Enum):
    """Coarse grouping carried in serialized events."""

    WORK_ITEM = "work_item"
    PAYMENT = "payment"
    COMPLIANCE = "compliance"


@dataclass(frozen=True)
class EventMetadata:
    """Metadata attached to every domain event."""

    event_id: UUID
    timestamp: datetime
    actor_id: UUID | None  # User or system that triggered
    actor_type: str  # 'user', 'system', 'scheduler', 'webhook'
    source_service: str  # Service that emitted
    version: int = 1

    @classmethod
    def create(
        cls,
        actor_id: UUID | None = None,
        actor_type: str = "system",
        source_service: str = "engagement_engine",
    ) -> EventMetadata:
        """Create metadata with auto-generated fields."""
        return cls(
            event_id=uuid4(),
            timestamp=utcnow(),
            actor_id=actor_id,
            actor_type=actor_type,
            source_service=source_service,
        )


@dataclass(frozen=True)
class DomainEvent:
    """Base class for all domain events."""

    metadata: EventMetadata

    @property
    def event_type(self) -> str:
        """Event type name for routing."""
        return self.__class__.__name__

    @property
    def category(self) -> EventCategory:
        """Event category."""
        raise NotImplementedError("Subclasses must define category")

    def to_dict(self) -> dict[str, Any]:
        """Serialize event to dictionary."""
        data = asdict(self)
        data["event_type"] = self.event_type
        data["category"] = self.category.value
        return _serialize_dict(data)

    def to_json(self) -> str:
        """Serialize event to JSON string."""
        return json.dumps(self.to_dict(), default=str)


def _serialize_dict(obj: Any) -> Any:
    """Recursively serialize objects for JSON compatibility."""
    if isinstance(obj, dict):
        return {k: _serialize_dict(v) for k, v in obj.items()}
    elif isinstance(obj, list):
        return [_serialize_dict(v) for v in obj]
    elif isinstance(obj, UUID):
        return str(obj)
    elif isinstance(obj, (datetime, date)):
        return obj.isoformat()
    elif isinstance(obj, Decimal):
        return str(obj)
    elif isinstance(obj, Enum):
        return obj.value
    return obj


# =============================================================================
# Work Item Events
# =============================================================================


@dataclass(frozen=True)
class WorkItemApproved(DomainEvent):
    """The business approved a deliverable; payment initiation follows."""

    work_item_id: UUID
    business_id: UUID
    contractor_id: UUID
    amount: Decimal
    currency: str
    approved_by: UUID

    @property
    def category(self) -> EventCategory:
        return EventCategory.WORK_ITEM


# =============================================================================
# Payment Events
# =============================================================================


@dataclass(frozen=True)
class PaymentCompleted(DomainEvent):
    """Gateway confirmed settlement and the payment record is completed."""

    payment_record_id: UUID
    work_item_id: UUID
    business_id: UUID
    contractor_id: UUID
    amount: Decimal
    currency: str
    processor_reference: str | None

    @property
    def category(self) -> EventCategory:
        return EventCategory.PAYMENT


@dataclass(frozen=True)
class PaymentBlocked(DomainEvent):
    """Payment was not initiated because the budget cap would be exceeded."""

    work_item_id: UUID
    business_id: UUID
    amount: Decimal
    remaining: Decimal
    shortfall: Decimal

    @property
    def category(self) -> EventCategory:
        return EventCategory.PAYMENT


@dataclass(frozen=True)
class PaymentFailed(DomainEvent):
    """Gateway reported a failed or canceled charge; retry is available."""

    payment_record_id: UUID
    work_item_id: UUID
    gateway_intent_id: str | None
    failure_reason: str
    attempt: int

    @property
    def category(self) -> EventCategory:
        return EventCategory.PAYMENT


@dataclass(frozen=True)
class PaymentIntegrityIncident(DomainEvent):
    """Amount or intent mismatch; the payment is held for manual review."""

    payment_record_id: UUID | None
    work_item_id: UUID
    error_code: str
    detail: str

    @property
    def category(self) -> EventCategory:
        return EventCategory.COMPLIANCE
