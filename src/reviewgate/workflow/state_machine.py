"""Change lifecycle state machine.

    IMPLEMENTING -> AWAITING_REVIEW -> REVIEWING -> APPROVED | REVISE_NEEDED

REVISE_NEEDED routes back to IMPLEMENTING. An exempt change goes straight
from IMPLEMENTING to APPROVED once its implementation passes. APPROVED leads
to COMMITTED. Every non-terminal state may transition to ABANDONED.
"""

from __future__ import annotations

from datetime import datetime, timezone

import structlog

from reviewgate.workflow.errors import InvalidChangeTransitionError
from reviewgate.workflow.models import TERMINAL_STATES, Change, ChangeState

logger = structlog.get_logger(__name__)


VALID_CHANGE_TRANSITIONS: dict[ChangeState, set[ChangeState]] = {
    ChangeState.IMPLEMENTING: {
        ChangeState.AWAITING_REVIEW,
        ChangeState.APPROVED,
        ChangeState.ABANDONED,
    },
    ChangeState.AWAITING_REVIEW: {ChangeState.REVIEWING, ChangeState.ABANDONED},
    ChangeState.REVIEWING: {
        ChangeState.APPROVED,
        ChangeState.REVISE_NEEDED,
        ChangeState.ABANDONED,
    },
    ChangeState.REVISE_NEEDED: {ChangeState.IMPLEMENTING, ChangeState.ABANDONED},
    ChangeState.APPROVED: {ChangeState.COMMITTED, ChangeState.ABANDONED},
    ChangeState.COMMITTED: set(),
    ChangeState.ABANDONED: set(),
}


def validate_change_transition(current: ChangeState, target: ChangeState) -> bool:
    """Validate if a change state transition is allowed.

    Args:
        current: Current change state.
        target: Target change state.

    Returns:
        True if the transition is valid according to VALID_CHANGE_TRANSITIONS.
    """
    return target in VALID_CHANGE_TRANSITIONS.get(current, set())


def transition(change: Change, target: ChangeState) -> Change:
    """Move a change to a new state in place.

    Sets ``updated_at`` on every transition and ``closed_at`` when the
    target is terminal. Persisting the change is the caller's job.

    Args:
        change: The change to transition.
        target: The target state.

    Returns:
        The same change, updated.

    Raises:
        InvalidChangeTransitionError: If the transition is not valid.
    """
    if not validate_change_transition(change.state, target):
        raise InvalidChangeTransitionError(change.state, target, change.id)

    old_state = change.state
    now = datetime.now(timezone.utc)
    change.state = target
    change.updated_at = now
    if target in TERMINAL_STATES:
        change.closed_at = now

    logger.info(
        "change_transition",
        change_id=change.id,
        from_state=old_state.value,
        to_state=target.value,
        revision=change.revision,
    )
    return change
