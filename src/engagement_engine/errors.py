"""Error taxonomy for the engagement engine.

Retry policy by type:
- ValidationError, NotFound, PermissionDenied, InvalidTransitionError: never retried
- GatewayUnavailable: transient, retry with backoff
- PaymentIntegrityError (AmountMismatch, IntentMismatch, PaymentOnHold): never
  retried automatically, requires manual review
- InsufficientBudget: business-rule block, retry after the cap is raised

Idempotent replays are not errors; operations return the existing result.
"""

from __future__ import annotations

from decimal import Decimal
from uuid import UUID


class EngagementError(Exception):
    """Base class for all engine errors."""

    code = "ENGAGEMENT_ERROR"


class ValidationError(EngagementError):
    """Raised when input fails validation."""

    code = "VALIDATION_ERROR"

    def __init__(self, message: str, field: str | None = None):
        self.field = field
        super().__init__(message)


class NotFound(EngagementError):
    """Raised when an entity does not exist."""

    code = "NOT_FOUND"

    def __init__(self, entity: str, entity_id: UUID | str):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} {entity_id} not found")


class PermissionDenied(EngagementError):
    """Raised when the actor may not perform the operation."""

    code = "PERMISSION_DENIED"

    def __init__(self, actor_id: UUID | str | None, action: str):
        self.actor_id = actor_id
        self.action = action
        super().__init__(f"Actor {actor_id} is not permitted to {action}")


class GatewayUnavailable(EngagementError):
    """Raised when the payment gateway call errors or times out."""

    code = "GATEWAY_UNAVAILABLE"

    def __init__(self, message: str, operation: str | None = None):
        self.operation = operation
        super().__init__(message)


class PaymentIntegrityError(EngagementError):
    """Integrity violation. Money movement halts for the payment record."""

    code = "PAYMENT_INTEGRITY"


class AmountMismatch(PaymentIntegrityError):
    """Raised when the gateway's settled amount differs from the trusted amount."""

    code = "AMOUNT_MISMATCH"

    def __init__(
        self,
        payment_record_id: UUID,
        expected: Decimal,
        reported: Decimal | None,
        expected_currency: str | None = None,
        reported_currency: str | None = None,
    ):
        self.payment_record_id = payment_record_id
        self.expected = expected
        self.reported = reported
        self.expected_currency = expected_currency
        self.reported_currency = reported_currency
        msg = (
            f"Payment {payment_record_id}: gateway reported {reported} "
            f"{reported_currency or ''}, trusted amount is {expected} "
            f"{expected_currency or ''}"
        )
        super().__init__(" ".join(msg.split()))


class IntentMismatch(PaymentIntegrityError):
    """Raised when a gateway intent id does not belong to the work item."""

    code = "INTENT_MISMATCH"

    def __init__(
        self,
        work_item_id: UUID,
        expected_intent_id: str | None,
        received_intent_id: str,
    ):
        self.work_item_id = work_item_id
        self.expected_intent_id = expected_intent_id
        self.received_intent_id = received_intent_id
        super().__init__(
            f"Intent {received_intent_id} does not match work item {work_item_id} "
            f"(stored intent: {expected_intent_id})"
        )


class PaymentOnHold(PaymentIntegrityError):
    """Raised when a payment record is held for manual review."""

    code = "PAYMENT_ON_HOLD"

    def __init__(self, payment_record_id: UUID, reason: str | None):
        self.payment_record_id = payment_record_id
        self.reason = reason
        super().__init__(f"Payment {payment_record_id} is on hold: {reason}")


class InsufficientBudget(EngagementError):
    """Raised when a payment would exceed the business's budget cap."""

    code = "INSUFFICIENT_BUDGET"

    def __init__(
        self,
        business_id: UUID,
        requested: Decimal,
        remaining: Decimal,
    ):
        self.business_id = business_id
        self.requested = requested
        self.remaining = remaining
        self.shortfall = requested - remaining
        super().__init__(
            f"Payment of {requested} exceeds remaining budget {remaining} "
            f"for business {business_id}"
        )
