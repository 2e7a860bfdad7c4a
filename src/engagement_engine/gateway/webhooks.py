"""Gateway webhook verification and parsing.

Signatures are checked with the stripe SDK (``Stripe-Signature`` header,
timestamp tolerance, HMAC over the raw body) before the body is trusted.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any

import stripe

DEFAULT_TOLERANCE_SECONDS = 300

SUCCEEDED_EVENTS = frozenset({"payment_intent.succeeded", "payment_intent.processing"})
FAILED_EVENTS = frozenset({"payment_intent.payment_failed", "payment_intent.canceled"})


class WebhookSignatureError(Exception):
    """Raised when a webhook signature is missing, malformed, stale or wrong."""


@dataclass(frozen=True)
class GatewayEvent:
    """A parsed payment intent webhook event."""

    event_id: str | None
    event_type: str
    intent_id: str
    intent_status: str | None
    work_item_id: str | None
    failure_message: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def is_success(self) -> bool:
        return self.event_type in SUCCEEDED_EVENTS

    @property
    def is_failure(self) -> bool:
        return self.event_type in FAILED_EVENTS


def construct_event(
    payload: bytes,
    signature_header: str | None,
    secret: str,
    tolerance: int = DEFAULT_TOLERANCE_SECONDS,
) -> GatewayEvent:
    """Verify a signed webhook body and parse it.

    Raises:
        WebhookSignatureError: If the signature header is missing or invalid.
        ValueError: If the body is not a payment intent event.
    """
    if not signature_header:
        raise WebhookSignatureError("Missing signature header")
    try:
        stripe.Webhook.construct_event(
            payload, signature_header, secret, tolerance=tolerance
        )
    except stripe.SignatureVerificationError as e:
        raise WebhookSignatureError(str(e)) from e
    return parse_event(payload)


def parse_event(payload: bytes | str | dict[str, Any]) -> GatewayEvent:
    """Parse a payment intent event body.

    Raises:
        ValueError: If the body is not a payment intent event.
    """
    body = json.loads(payload) if isinstance(payload, (bytes, str)) else payload
    if not isinstance(body, dict):
        raise ValueError("Webhook body is not a JSON object")
    event_type = body.get("type")
    intent = (body.get("data") or {}).get("object") or {}
    if not event_type or not intent.get("id"):
        raise ValueError("Webhook body is not a payment intent event")

    metadata = dict(intent.get("metadata") or {})
    last_error = intent.get("last_payment_error") or {}
    return GatewayEvent(
        event_id=body.get("id"),
        event_type=event_type,
        intent_id=intent["id"],
        intent_status=intent.get("status"),
        work_item_id=metadata.get("work_item_id"),
        failure_message=last_error.get("message") or last_error.get("code"),
        metadata=metadata,
    )
