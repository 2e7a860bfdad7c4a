"""Payment gateway adapters."""

from engagement_engine.config import GatewayConfig
from engagement_engine.gateway.base import (
    GatewayError,
    IntentHandle,
    IntentSnapshot,
    IntentStatus,
    PaymentGateway,
    is_terminal,
)
from engagement_engine.gateway.stripe_gateway import StripeGateway
from engagement_engine.gateway.stub import StubPaymentGateway


def build_gateway(config: GatewayConfig) -> PaymentGateway:
    """Create the adapter selected by configuration."""
    if config.backend == "stripe":
        return StripeGateway(config)
    return StubPaymentGateway()


__all__ = [
    "GatewayError",
    "IntentHandle",
    "IntentSnapshot",
    "IntentStatus",
    "PaymentGateway",
    "StripeGateway",
    "StubPaymentGateway",
    "build_gateway",
    "is_terminal",
]
