"""Tests for the Stripe SDK adapter."""

from decimal import Decimal
from types import SimpleNamespace

import pytest
import stripe

from engagement_engine.config import GatewayConfig
from engagement_engine.gateway import (
    GatewayError,
    StripeGateway,
    StubPaymentGateway,
    build_gateway,
)
from engagement_engine.gateway.base import from_minor_units, is_terminal, to_minor_units

INTENT = {
    "id": "pi_123",
    "object": "payment_intent",
    "amount": 50000,
    "amount_received": 50000,
    "currency": "gbp",
    "status": "succeeded",
    "client_secret": "pi_123_secret_abc",
    "latest_charge": "ch_987",
    "metadata": {"work_item_id": "wid"},
}


class FakePaymentIntents:
    """Stands in for stripe.PaymentIntent; replays queued responses."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls: list[tuple[str, tuple, dict]] = []

    def create(self, **params):
        self.calls.append(("create", (), params))
        return self._next()

    def retrieve(self, intent_id, **params):
        self.calls.append(("retrieve", (intent_id,), params))
        return self._next()

    def _next(self):
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


def make_gateway(*responses, max_retries=2):
    delays: list[float] = []

    async def no_sleep(delay: float) -> None:
        delays.append(delay)

    intents = FakePaymentIntents(*responses)
    config = GatewayConfig(
        backend="stripe", api_key="sk_test_123", max_retries=max_retries, backoff_seconds=0.5
    )
    gateway = StripeGateway(
        config, stripe_client=SimpleNamespace(PaymentIntent=intents), sleep=no_sleep
    )
    return gateway, intents, delays


class TestMinorUnits:
    def test_two_decimal_currency(self):
        assert to_minor_units(Decimal("500.00"), "GBP") == 50000
        assert to_minor_units(Decimal("0.015"), "usd") == 2
        assert from_minor_units(50000, "GBP") == Decimal("500.00")

    def test_zero_decimal_currency(self):
        assert to_minor_units(Decimal("1200"), "JPY") == 1200
        assert from_minor_units(1200, "jpy") == Decimal("1200")

    def test_is_terminal(self):
        assert is_terminal("succeeded")
        assert is_terminal("canceled")
        assert not is_terminal("processing")
        assert not is_terminal(None)


class TestCreateIntent:
    async def test_sends_minor_units_and_idempotency_key(self):
        gateway, intents, _ = make_gateway({**INTENT, "status": "requires_payment_method"})

        handle = await gateway.create_intent(
            amount=Decimal("500.00"),
            currency="GBP",
            metadata={"work_item_id": "wid", "business_id": "bid"},
            idempotency_key="wid:1",
            description="Landing page",
        )

        assert handle.intent_id == "pi_123"
        assert handle.client_secret == "pi_123_secret_abc"
        assert handle.status == "requires_payment_method"

        method, _, params = intents.calls[0]
        assert method == "create"
        assert params["idempotency_key"] == "wid:1"
        assert params["api_key"] == "sk_test_123"
        assert params["amount"] == 50000
        assert params["currency"] == "gbp"
        assert params["metadata"] == {"work_item_id": "wid", "business_id": "bid"}
        assert params["description"] == "Landing page"

    async def test_retries_server_errors_with_backoff(self):
        gateway, intents, delays = make_gateway(
            stripe.APIError("try later", http_status=503),
            stripe.APIError("try later", http_status=503),
            INTENT,
        )

        handle = await gateway.create_intent(
            amount=Decimal("500.00"), currency="GBP", metadata={}, idempotency_key="k"
        )

        assert handle.intent_id == "pi_123"
        assert len(intents.calls) == 3
        assert {call[2]["idempotency_key"] for call in intents.calls} == {"k"}
        assert delays == [0.5, 1.0]

    async def test_retries_connection_errors_then_gives_up(self):
        gateway, intents, delays = make_gateway(
            stripe.APIConnectionError("connection refused"),
            stripe.APIConnectionError("connection refused"),
            max_retries=1,
        )

        with pytest.raises(GatewayError) as exc_info:
            await gateway.create_intent(
                amount=Decimal("1.00"), currency="GBP", metadata={}, idempotency_key="k"
            )

        assert exc_info.value.retryable is True
        assert len(intents.calls) == 2
        assert len(delays) == 1

    async def test_client_error_is_not_retried(self):
        gateway, intents, _ = make_gateway(
            stripe.InvalidRequestError("Invalid currency", "currency", http_status=400)
        )

        with pytest.raises(GatewayError) as exc_info:
            await gateway.create_intent(
                amount=Decimal("1.00"), currency="XYZ", metadata={}, idempotency_key="k"
            )

        assert len(intents.calls) == 1
        assert exc_info.value.retryable is False
        assert exc_info.value.status_code == 400
        assert "Invalid currency" in str(exc_info.value)


class TestGetIntent:
    async def test_snapshot(self):
        gateway, intents, _ = make_gateway(INTENT)

        snapshot = await gateway.get_intent("pi_123")

        assert intents.calls[0][:2] == ("retrieve", ("pi_123",))
        assert snapshot.succeeded
        assert snapshot.amount == Decimal("500.00")
        assert snapshot.settled_amount == Decimal("500.00")
        assert snapshot.currency == "GBP"
        assert snapshot.processor_reference == "ch_987"
        assert snapshot.metadata == {"work_item_id": "wid"}

    def test_unsettled_intent_has_no_settled_amount(self):
        snapshot = StripeGateway.snapshot_from_payload(
            {**INTENT, "status": "processing", "latest_charge": {"id": "ch_1"}}
        )
        assert snapshot.settled_amount is None
        assert snapshot.processor_reference == "ch_1"

    def test_failure_message(self):
        snapshot = StripeGateway.snapshot_from_payload({
            **INTENT,
            "status": "requires_payment_method",
            "last_payment_error": {"code": "card_declined"},
        })
        assert snapshot.failure_message == "card_declined"


class TestBuildGateway:
    def test_stub_by_default(self):
        assert isinstance(build_gateway(GatewayConfig()), StubPaymentGateway)

    def test_stripe_requires_key(self):
        with pytest.raises(ValueError):
            GatewayConfig(backend="stripe")

    def test_stripe_backend(self):
        gateway = build_gateway(GatewayConfig(backend="stripe", api_key="sk_test"))
        assert isinstance(gateway, StripeGateway)
