"""Work item state machine with transition validation."""

from __future__ import annotations

from enum import Enum

from engagement_engine.errors import EngagementError


class WorkItemStatus(str, Enum):
    """Work item status values."""

    PROPOSED = "proposed"
    ACCEPTED = "accepted"
    DECLINED = "declined"
    IN_REVIEW = "in_review"
    REJECTED = "rejected"
    APPROVED = "approved"
    PAID = "paid"


class InvalidTransitionError(EngagementError):
    """Raised when an invalid state transition is attempted.

    `current_status` is the status the work item actually has, which is what
    callers need after losing a compare-and-swap race.
    """

    code = "INVALID_TRANSITION"

    def __init__(self, current_status: str, to_status: str, reason: str | None = None):
        self.current_status = str(getattr(current_status, "value", current_status))
        self.to_status = str(getattr(to_status, "value", to_status))
        self.reason = reason
        msg = f"Invalid transition from '{self.current_status}' to '{self.to_status}'"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class WorkItemStateMachine:
    """State machine for work item status transitions.

    Allowed transitions:
    - proposed → accepted
    - proposed → declined
    - accepted → in_review
    - in_review → approved
    - in_review → rejected
    - rejected → in_review (resubmission)
    - approved → paid
    """

    # Define valid transitions: {from_status: [allowed_to_statuses]}
    VALID_TRANSITIONS: dict[str, list[str]] = {
        WorkItemStatus.PROPOSED: [WorkItemStatus.ACCEPTED, WorkItemStatus.DECLINED],
        WorkItemStatus.ACCEPTED: [WorkItemStatus.IN_REVIEW],
        WorkItemStatus.DECLINED: [],  # Terminal state
        WorkItemStatus.IN_REVIEW: [WorkItemStatus.APPROVED, WorkItemStatus.REJECTED],
        WorkItemStatus.REJECTED: [WorkItemStatus.IN_REVIEW],
        WorkItemStatus.APPROVED: [WorkItemStatus.PAID],
        WorkItemStatus.PAID: [],  # Terminal state
    }

    # Statuses where amount and currency may still be amended
    TERMS_MUTABLE = {WorkItemStatus.PROPOSED}

    # Statuses reached only after the contractor accepted
    POST_ACCEPTANCE = {
        WorkItemStatus.ACCEPTED,
        WorkItemStatus.IN_REVIEW,
        WorkItemStatus.REJECTED,
        WorkItemStatus.APPROVED,
        WorkItemStatus.PAID,
    }

    TERMINAL = {WorkItemStatus.DECLINED, WorkItemStatus.PAID}

    @classmethod
    def can_transition(cls, from_status: str, to_status: str) -> bool:
        """Check if a transition is valid."""
        allowed = cls.VALID_TRANSITIONS.get(from_status, [])
        return to_status in allowed

    @classmethod
    def validate_transition(cls, from_status: str, to_status: str) -> None:
        """Validate a transition, raising InvalidTransitionError if invalid."""
        if from_status not in cls.VALID_TRANSITIONS:
            raise InvalidTransitionError(from_status, to_status, "unknown status")
        if not cls.can_transition(from_status, to_status):
            reason = "terminal state" if from_status in cls.TERMINAL else None
            raise InvalidTransitionError(from_status, to_status, reason)

    @classmethod
    def get_next_statuses(cls, current_status: str) -> list[str]:
        """Get list of valid next statuses from current status."""
        return cls.VALID_TRANSITIONS.get(current_status, [])

    @classmethod
    def can_modify_terms(cls, status: str) -> bool:
        """Check if amount/currency/details may still be amended."""
        return status in cls.TERMS_MUTABLE

    @classmethod
    def is_accepted_path(cls, status: str) -> bool:
        """Check if the work item has been accepted at some point."""
        return status in cls.POST_ACCEPTANCE

    @classmethod
    def is_terminal(cls, status: str) -> bool:
        return status in cls.TERMINAL
