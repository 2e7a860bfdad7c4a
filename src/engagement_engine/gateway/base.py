"""Base protocol and types for payment gateway adapters.

All gateway adapters must implement the PaymentGateway protocol. Adapters are
pure request/response: they keep no engine state and never decide amounts.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Any, Protocol


class IntentStatus(str, Enum):
    """Payment intent status values reported by the processor."""

    REQUIRES_PAYMENT_METHOD = "requires_payment_method"
    REQUIRES_CONFIRMATION = "requires_confirmation"
    REQUIRES_ACTION = "requires_action"
    REQUIRES_CAPTURE = "requires_capture"
    PROCESSING = "processing"
    SUCCEEDED = "succeeded"
    CANCELED = "canceled"


TERMINAL_INTENT_STATUSES = frozenset({IntentStatus.SUCCEEDED, IntentStatus.CANCELED})

# ISO 4217 currencies without a minor unit
ZERO_DECIMAL_CURRENCIES = frozenset({
    "BIF", "CLP", "DJF", "GNF", "JPY", "KMF", "KRW", "MGA",
    "PYG", "RWF", "UGX", "VND", "VUV", "XAF", "XOF", "XPF",
})


def is_terminal(status: str | None) -> bool:
    """Whether an intent status is final (succeeded or canceled)."""
    return status in {s.value for s in TERMINAL_INTENT_STATUSES}


def to_minor_units(amount: Decimal, currency: str) -> int:
    """Convert a major-unit amount to the processor's integer minor units."""
    if currency.upper() in ZERO_DECIMAL_CURRENCIES:
        return int(amount.quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_minor_units(value: int, currency: str) -> Decimal:
    """Convert integer minor units back to a major-unit Decimal."""
    if currency.upper() in ZERO_DECIMAL_CURRENCIES:
        return Decimal(value)
    return (Decimal(value) / 100).quantize(Decimal("0.01"))


class GatewayError(Exception):
    """Raised by adapters when the processor call fails."""

    def __init__(
        self,
        message: str,
        *,
        retryable: bool = True,
        status_code: int | None = None,
    ):
        self.retryable = retryable
        self.status_code = status_code
        super().__init__(message)


@dataclass(frozen=True)
class IntentHandle:
    """Result of creating a payment intent."""

    intent_id: str
    client_secret: str | None
    status: str


@dataclass(frozen=True)
class IntentSnapshot:
    """Authoritative intent state as reported by the processor.

    `settled_amount` is used only to cross-check the trusted amount, never as
    the source of a charge amount.
    """

    intent_id: str
    status: str
    amount: Decimal
    settled_amount: Decimal | None
    currency: str
    processor_reference: str | None = None
    failure_message: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def succeeded(self) -> bool:
        return self.status == IntentStatus.SUCCEEDED.value


class PaymentGateway(Protocol):
    """Protocol for payment gateway adapters."""

    gateway_name: str

    async def create_intent(
        self,
        *,
        amount: Decimal,
        currency: str,
        metadata: dict[str, str],
        idempotency_key: str,
        description: str | None = None,
    ) -> IntentHandle:
        """Create a payment intent.

        Args:
            amount: Major-unit amount taken from the trusted ledger value.
            currency: ISO 4217 code, passed through.
            metadata: Engine references (work_item_id, contractor_id, business_id).
            idempotency_key: Processor-side deduplication key.
            description: Optional human-readable description.

        Returns:
            IntentHandle with intent id, client secret and initial status.

        Raises:
            GatewayError: On transport or processor failure.
        """
        ...

    async def get_intent(self, intent_id: str) -> IntentSnapshot:
        """Retrieve an intent's authoritative status and settled amount.

        Raises:
            GatewayError: On transport or processor failure.
        """
        ...
