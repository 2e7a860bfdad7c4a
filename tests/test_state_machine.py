"""Tests for work item state machine."""

import pytest

from engagement_engine.services.state_machine import (
    InvalidTransitionError,
    WorkItemStateMachine,
    WorkItemStatus,
)


class TestWorkItemStateMachine:
    """Test state machine transitions."""

    def test_valid_transitions(self):
        """Test that valid transitions are allowed."""
        assert WorkItemStateMachine.can_transition("proposed", "accepted") is True
        assert WorkItemStateMachine.can_transition("proposed", "declined") is True
        assert WorkItemStateMachine.can_transition("accepted", "in_review") is True
        assert WorkItemStateMachine.can_transition("in_review", "approved") is True
        assert WorkItemStateMachine.can_transition("in_review", "rejected") is True

        # rejected → in_review (resubmission)
        assert WorkItemStateMachine.can_transition("rejected", "in_review") is True

        assert WorkItemStateMachine.can_transition("approved", "paid") is True

    def test_invalid_transitions(self):
        """Test that invalid transitions are blocked."""
        # Can't skip review
        assert WorkItemStateMachine.can_transition("accepted", "approved") is False
        assert WorkItemStateMachine.can_transition("proposed", "in_review") is False

        # No way back from approval
        assert WorkItemStateMachine.can_transition("approved", "rejected") is False
        assert WorkItemStateMachine.can_transition("approved", "in_review") is False

        # Terminal states
        assert WorkItemStateMachine.can_transition("declined", "accepted") is False
        assert WorkItemStateMachine.can_transition("paid", "approved") is False

    def test_validate_transition_raises(self):
        """Test that validate_transition raises for invalid transitions."""
        with pytest.raises(InvalidTransitionError) as exc_info:
            WorkItemStateMachine.validate_transition("proposed", "approved")

        assert exc_info.value.current_status == "proposed"
        assert exc_info.value.to_status == "approved"
        assert exc_info.value.code == "INVALID_TRANSITION"

    def test_terminal_reason(self):
        """Leaving a terminal state names it in the message."""
        with pytest.raises(InvalidTransitionError) as exc_info:
            WorkItemStateMachine.validate_transition(
                WorkItemStatus.DECLINED, WorkItemStatus.IN_REVIEW
            )

        assert exc_info.value.current_status == "declined"
        assert "terminal state" in str(exc_info.value)

    def test_unknown_status(self):
        with pytest.raises(InvalidTransitionError) as exc_info:
            WorkItemStateMachine.validate_transition("archived", "paid")
        assert exc_info.value.reason == "unknown status"

    def test_enum_members_and_strings_agree(self):
        assert WorkItemStateMachine.can_transition(
            WorkItemStatus.IN_REVIEW, "approved"
        ) is True
        assert WorkItemStatus("in_review") == "in_review"

    def test_get_next_statuses(self):
        """Test getting valid next statuses."""
        assert set(WorkItemStateMachine.get_next_statuses("proposed")) == {
            "accepted",
            "declined",
        }
        assert WorkItemStateMachine.get_next_statuses("approved") == ["paid"]
        assert WorkItemStateMachine.get_next_statuses("paid") == []
        assert WorkItemStateMachine.get_next_statuses("declined") == []

    def test_can_modify_terms(self):
        """Terms are mutable only while proposed."""
        assert WorkItemStateMachine.can_modify_terms("proposed") is True
        for status in ("accepted", "in_review", "rejected", "approved", "paid", "declined"):
            assert WorkItemStateMachine.can_modify_terms(status) is False

    def test_is_accepted_path(self):
        assert WorkItemStateMachine.is_accepted_path("accepted") is True
        assert WorkItemStateMachine.is_accepted_path("paid") is True
        assert WorkItemStateMachine.is_accepted_path("proposed") is False
        assert WorkItemStateMachine.is_accepted_path("declined") is False

    def test_is_terminal(self):
        assert WorkItemStateMachine.is_terminal("declined") is True
        assert WorkItemStateMachine.is_terminal("paid") is True
        assert WorkItemStateMachine.is_terminal("approved") is False
