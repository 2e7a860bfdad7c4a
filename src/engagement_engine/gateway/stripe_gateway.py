"""Stripe adapter built on the stripe SDK.

Talks to the PaymentIntents API: integer minor units and processor-side
deduplication through the idempotency key. The SDK is synchronous, so each
call runs in a worker thread with a bounded wait.
"""

from __future__ import annotations

import asyncio
import logging
from decimal import Decimal
from typing import Any, Awaitable, Callable, Mapping

import stripe

from engagement_engine.config import GatewayConfig
from engagement_engine.gateway.base import (
    GatewayError,
    IntentHandle,
    IntentSnapshot,
    IntentStatus,
    from_minor_units,
    to_minor_units,
)

logger = logging.getLogger(__name__)

RETRYABLE_STATUS_CODES = frozenset({409, 429, 500, 502, 503, 504})


class StripeGateway:
    """Payment gateway adapter for Stripe PaymentIntents.

    Usage:
        gateway = StripeGateway(GatewayConfig(backend="stripe", api_key="sk_..."))
        handle = await gateway.create_intent(
            amount=Decimal("500.00"),
            currency="GBP",
            metadata={"work_item_id": str(work_item_id)},
            idempotency_key=str(work_item_id),
        )
    """

    gateway_name = "stripe"

    def __init__(
        self,
        config: GatewayConfig,
        stripe_client: Any = stripe,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if not config.api_key:
            raise ValueError("StripeGateway requires an api_key")
        self.config = config
        self._stripe = stripe_client
        self._sleep = sleep

    async def create_intent(
        self,
        *,
        amount: Decimal,
        currency: str,
        metadata: dict[str, str],
        idempotency_key: str,
        description: str | None = None,
    ) -> IntentHandle:
        """Create a payment intent for the trusted amount."""
        params: dict[str, Any] = {
            "amount": to_minor_units(amount, currency),
            "currency": currency.lower(),
            "automatic_payment_methods": {"enabled": True},
            "metadata": {key: str(value) for key, value in metadata.items()},
        }
        if description:
            params["description"] = description

        intent = await self._call(
            "create_intent",
            self._stripe.PaymentIntent.create,
            idempotency_key=idempotency_key,
            **params,
        )
        return IntentHandle(
            intent_id=intent["id"],
            client_secret=intent.get("client_secret"),
            status=intent.get("status") or IntentStatus.REQUIRES_PAYMENT_METHOD.value,
        )

    async def get_intent(self, intent_id: str) -> IntentSnapshot:
        """Retrieve an intent's status and received amount."""
        intent = await self._call("get_intent", self._stripe.PaymentIntent.retrieve, intent_id)
        return self.snapshot_from_payload(intent)

    @staticmethod
    def snapshot_from_payload(body: Mapping[str, Any]) -> IntentSnapshot:
        """Build an IntentSnapshot from a PaymentIntent object."""
        currency = str(body.get("currency") or "").upper()
        status = body.get("status") or ""
        settled: Decimal | None = None
        if status == IntentStatus.SUCCEEDED.value and body.get("amount_received") is not None:
            settled = from_minor_units(int(body["amount_received"]), currency)

        latest_charge = body.get("latest_charge")
        if latest_charge is not None and not isinstance(latest_charge, str):
            latest_charge = latest_charge.get("id")

        last_error = body.get("last_payment_error") or {}
        metadata = body.get("metadata") or {}

        return IntentSnapshot(
            intent_id=body["id"],
            status=status,
            amount=from_minor_units(int(body.get("amount") or 0), currency),
            settled_amount=settled,
            currency=currency,
            processor_reference=latest_charge,
            failure_message=last_error.get("message") or last_error.get("code"),
            metadata={str(key): str(value) for key, value in metadata.items()},
        )

    async def _call(
        self,
        operation: str,
        method: Callable[..., Any],
        *args: Any,
        **params: Any,
    ) -> Any:
        """Run an SDK call with a bounded wait, retrying transient failures."""
        attempts = self.config.max_retries + 1
        last_error: GatewayError | None = None

        for attempt in range(attempts):
            if attempt:
                delay = self.config.backoff_seconds * (2 ** (attempt - 1))
                logger.warning(
                    "Retrying %s (attempt %d/%d) after %.2fs: %s",
                    operation, attempt + 1, attempts, delay, last_error,
                )
                await self._sleep(delay)

            try:
                return await asyncio.wait_for(
                    asyncio.to_thread(method, *args, api_key=self.config.api_key, **params),
                    timeout=self.config.timeout_seconds,
                )
            except asyncio.TimeoutError:
                last_error = GatewayError(f"Gateway timeout on {operation}")
            except stripe.APIConnectionError as e:
                last_error = GatewayError(f"Gateway connection error on {operation}: {e}")
            except stripe.StripeError as e:
                message = f"Gateway returned {e.http_status} on {operation}: {e}"
                if e.http_status in RETRYABLE_STATUS_CODES:
                    last_error = GatewayError(
                        message, retryable=True, status_code=e.http_status
                    )
                    continue
                raise GatewayError(
                    message, retryable=False, status_code=e.http_status
                ) from e

        assert last_error is not None
        raise last_error
