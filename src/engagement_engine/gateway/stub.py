"""In-memory gateway for local development and testing.

Replace with StripeGateway (or another adapter) for real money movement.
"""

from __future__ import annotations

import uuid
from decimal import Decimal
from typing import Any

from engagement_engine.gateway.base import (
    GatewayError,
    IntentHandle,
    IntentSnapshot,
    IntentStatus,
)


class StubPaymentGateway:
    """Stub processor that keeps intents in memory.

    Intents are deduplicated by idempotency key, like a real processor. Tests
    drive settlement explicitly with settle()/fail()/cancel().
    """

    gateway_name = "stub"

    def __init__(self, auto_settle: bool = False):
        """Initialize stub gateway.

        Args:
            auto_settle: If True, intents report as succeeded immediately.
                        If False, intents stay in 'requires_payment_method'.
        """
        self.auto_settle = auto_settle
        self.available = True
        self.create_calls = 0
        self._intents: dict[str, dict[str, Any]] = {}
        self._by_key: dict[str, str] = {}
        self._lost_responses = 0

    def _check_available(self) -> None:
        if not self.available:
            raise GatewayError("Stub gateway is unavailable", retryable=True)

    async def create_intent(
        self,
        *,
        amount: Decimal,
        currency: str,
        metadata: dict[str, str],
        idempotency_key: str,
        description: str | None = None,
    ) -> IntentHandle:
        """Create (or return the existing) intent for an idempotency key."""
        self._check_available()
        self.create_calls += 1

        existing_id = self._by_key.get(idempotency_key)
        if existing_id is not None:
            record = self._intents[existing_id]
            return IntentHandle(
                intent_id=existing_id,
                client_secret=record["client_secret"],
                status=record["status"],
            )

        intent_id = f"pi_stub_{uuid.uuid4().hex[:16]}"
        status = (
            IntentStatus.SUCCEEDED.value
            if self.auto_settle
            else IntentStatus.REQUIRES_PAYMENT_METHOD.value
        )
        self._intents[intent_id] = {
            "amount": amount,
            "currency": currency.upper(),
            "metadata": dict(metadata),
            "description": description,
            "client_secret": f"{intent_id}_secret_{uuid.uuid4().hex[:8]}",
            "status": status,
            "settled_amount": amount if self.auto_settle else None,
            "processor_reference": f"ch_stub_{intent_id[8:]}" if self.auto_settle else None,
            "failure_message": None,
        }
        self._by_key[idempotency_key] = intent_id
        if self._lost_responses:
            self._lost_responses -= 1
            raise GatewayError("Timed out waiting for processor response", retryable=True)

        return IntentHandle(
            intent_id=intent_id,
            client_secret=self._intents[intent_id]["client_secret"],
            status=status,
        )

    async def get_intent(self, intent_id: str) -> IntentSnapshot:
        """Return the current state of an intent."""
        self._check_available()
        record = self._intents.get(intent_id)
        if record is None:
            raise GatewayError(f"No such payment intent: {intent_id}", retryable=False)

        return IntentSnapshot(
            intent_id=intent_id,
            status=record["status"],
            amount=record["amount"],
            settled_amount=record["settled_amount"],
            currency=record["currency"],
            processor_reference=record["processor_reference"],
            failure_message=record["failure_message"],
            metadata=dict(record["metadata"]),
        )

    # Test controls

    def settle(
        self,
        intent_id: str,
        settled_amount: Decimal | None = None,
        processor_reference: str | None = None,
    ) -> None:
        """Mark an intent as succeeded, optionally with a different amount."""
        record = self._intents[intent_id]
        record["status"] = IntentStatus.SUCCEEDED.value
        record["settled_amount"] = (
            settled_amount if settled_amount is not None else record["amount"]
        )
        record["processor_reference"] = processor_reference or f"ch_stub_{intent_id[8:]}"

    def mark_processing(self, intent_id: str) -> None:
        """Mark an intent as processing."""
        self._intents[intent_id]["status"] = IntentStatus.PROCESSING.value

    def fail(self, intent_id: str, message: str = "card_declined") -> None:
        """Simulate a failed charge (intent returns to requires_payment_method)."""
        record = self._intents[intent_id]
        record["status"] = IntentStatus.REQUIRES_PAYMENT_METHOD.value
        record["failure_message"] = message

    def cancel(self, intent_id: str) -> None:
        """Cancel an intent."""
        self._intents[intent_id]["status"] = IntentStatus.CANCELED.value

    def intents_for(self, work_item_id: str) -> list[str]:
        """Intent ids created for a work item (via metadata)."""
        return [
            intent_id
            for intent_id, record in self._intents.items()
            if record["metadata"].get("work_item_id") == work_item_id
        ]

    def lose_next_response(self) -> None:
        """Create the next intent but fail the call as if the response was lost."""
        self._lost_responses += 1
