"""Unit tests for the change lifecycle state machine.

Tests cover:
- Valid state transitions
- Invalid state transition handling
- Timestamp setting on transitions
"""

from __future__ import annotations

import pytest

from reviewgate.workflow import (
    VALID_CHANGE_TRANSITIONS,
    Change,
    ChangeState,
    InvalidChangeTransitionError,
    transition,
    validate_change_transition,
)


class TestValidTransitions:
    """Test the VALID_CHANGE_TRANSITIONS mapping and validation."""

    def test_valid_transitions_definition(self):
        """Verify VALID_CHANGE_TRANSITIONS includes all ChangeState values."""
        assert set(VALID_CHANGE_TRANSITIONS) == set(ChangeState)

    def test_terminal_states_have_no_exits(self):
        """Committed and abandoned changes cannot move anywhere."""
        assert VALID_CHANGE_TRANSITIONS[ChangeState.COMMITTED] == set()
        assert VALID_CHANGE_TRANSITIONS[ChangeState.ABANDONED] == set()

    def test_every_open_state_can_be_abandoned(self):
        """Every non-terminal state allows abandoning."""
        for state in ChangeState:
            if state in (ChangeState.COMMITTED, ChangeState.ABANDONED):
                continue
            assert validate_change_transition(state, ChangeState.ABANDONED)

    @pytest.mark.parametrize(
        "current,target,expected",
        [
            # Valid transitions
            (ChangeState.IMPLEMENTING, ChangeState.AWAITING_REVIEW, True),
            (ChangeState.IMPLEMENTING, ChangeState.APPROVED, True),
            (ChangeState.AWAITING_REVIEW, ChangeState.REVIEWING, True),
            (ChangeState.REVIEWING, ChangeState.APPROVED, True),
            (ChangeState.REVIEWING, ChangeState.REVISE_NEEDED, True),
            (ChangeState.REVISE_NEEDED, ChangeState.IMPLEMENTING, True),
            (ChangeState.APPROVED, ChangeState.COMMITTED, True),
            # Invalid transitions
            (ChangeState.IMPLEMENTING, ChangeState.REVIEWING, False),
            (ChangeState.IMPLEMENTING, ChangeState.COMMITTED, False),
            (ChangeState.AWAITING_REVIEW, ChangeState.APPROVED, False),
            (ChangeState.REVIEWING, ChangeState.COMMITTED, False),
            (ChangeState.REVISE_NEEDED, ChangeState.APPROVED, False),
            (ChangeState.APPROVED, ChangeState.REVIEWING, False),
            (ChangeState.COMMITTED, ChangeState.ABANDONED, False),
            (ChangeState.ABANDONED, ChangeState.IMPLEMENTING, False),
        ],
    )
    def test_validate_change_transition(self, current, target, expected):
        """Test validate_change_transition for various state combinations."""
        assert validate_change_transition(current, target) == expected


class TestInvalidChangeTransitionError:
    """Test the InvalidChangeTransitionError exception."""

    def test_error_without_change_id(self):
        """Test error message without change ID."""
        error = InvalidChangeTransitionError(ChangeState.IMPLEMENTING, ChangeState.COMMITTED)
        assert "implementing" in str(error)
        assert "committed" in str(error)
        assert error.current == ChangeState.IMPLEMENTING
        assert error.target == ChangeState.COMMITTED
        assert error.change_id is None

    def test_error_with_change_id(self):
        """Test error message includes the change ID."""
        error = InvalidChangeTransitionError(
            ChangeState.APPROVED, ChangeState.REVIEWING, "change-42"
        )
        assert "change-42" in str(error)
        assert error.change_id == "change-42"


class TestTransition:
    """Test applying transitions to a Change."""

    def test_transition_updates_state_and_timestamp(self):
        """A valid transition changes state and bumps updated_at."""
        change = Change(description="Add retry budget")
        before = change.updated_at

        result = transition(change, ChangeState.AWAITING_REVIEW)

        assert result is change
        assert change.state == ChangeState.AWAITING_REVIEW
        assert change.updated_at >= before
        assert change.closed_at is None

    def test_terminal_transition_sets_closed_at(self):
        """Moving to a terminal state records when the change closed."""
        change = Change(description="Add retry budget")
        transition(change, ChangeState.ABANDONED)

        assert change.state == ChangeState.ABANDONED
        assert change.closed_at is not None
        assert change.is_closed

    def test_invalid_transition_leaves_change_untouched(self):
        """An invalid transition raises and does not modify the change."""
        change = Change(description="Add retry budget")
        updated_at = change.updated_at

        with pytest.raises(InvalidChangeTransitionError) as exc_info:
            transition(change, ChangeState.COMMITTED)

        assert exc_info.value.change_id == change.id
        assert change.state == ChangeState.IMPLEMENTING
        assert change.updated_at == updated_at

    def test_full_review_path(self):
        """Walk a change through the complete happy path."""
        change = Change(description="Add retry budget")
        for target in (
            ChangeState.AWAITING_REVIEW,
            ChangeState.REVIEWING,
            ChangeState.APPROVED,
            ChangeState.COMMITTED,
        ):
            transition(change, target)
        assert change.state == ChangeState.COMMITTED
        assert change.is_closed
