"""Domain events and the notification emitter."""

from engagement_engine.events.emitter import AsyncEventEmitter
from engagement_engine.events.notifications import (
    LoggingNotifier,
    Notifier,
    register_notifications,
)
from engagement_engine.events.types import (
    DomainEvent,
    EventCategory,
    EventMetadata,
    PaymentBlocked,
    PaymentCompleted,
    PaymentFailed,
    PaymentIntegrityIncident,
    WorkItemApproved,
)

__all__ = [
    "AsyncEventEmitter",
    "LoggingNotifier",
    "Notifier",
    "register_notifications",
    "DomainEvent",
    "EventCategory",
    "EventMetadata",
    "WorkItemApproved",
    "PaymentCompleted",
    "PaymentBlocked",
    "PaymentFailed",
    "PaymentIntegrityIncident",
]
