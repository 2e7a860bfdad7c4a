"""Party notifications for approved work and completed payments.

Email delivery is not wired up; the default notifier records each
notification in the log. Deployments with a mail or push service pass
their own ``Notifier`` to ``register_notifications``.
"""

from __future__ import annotations

import logging
from typing import Any, Protocol
from uuid import UUID

from engagement_engine.events.emitter import AsyncEventEmitter
from engagement_engine.events.types import PaymentCompleted, WorkItemApproved

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    async def send(self, recipient_id: UUID, subject: str, body: dict[str, Any]) -> None:
        ...


class LoggingNotifier:
    """Writes one log line per recipient instead of sending mail."""

    async def send(self, recipient_id: UUID, subject: str, body: dict[str, Any]) -> None:
        logger.info(
            "Notification %s for %s (work item %s, %s %s)",
            subject,
            recipient_id,
            body.get("work_item_id"),
            body.get("amount"),
            body.get("currency"),
        )


def register_notifications(emitter: AsyncEventEmitter, notifier: Notifier) -> None:
    """Notify the contractor on approval, and both parties once paid."""

    async def work_item_approved(event: WorkItemApproved) -> None:
        await notifier.send(event.contractor_id, "work_item_approved", event.to_dict())

    async def payment_completed(event: PaymentCompleted) -> None:
        body = event.to_dict()
        await notifier.send(event.contractor_id, "payment_received", body)
        await notifier.send(event.business_id, "payment_sent", body)

    emitter.on(WorkItemApproved, work_item_approved)
    emitter.on(PaymentCompleted, payment_completed)
