"""Session state machine.

Defines valid transitions and enforces them. Invalid transitions
raise InvalidTransitionError rather than silently proceeding.

State Diagram:

    IDLE ──> LOADING ──> BUSY ──> IDLE
               │           │
               └───────────┴──> IDLE   (interrupt, or result before output)

    Any state ──> ERROR  (stream failure)
    ERROR ──> LOADING    (next send)
"""
from __future__ import annotations

from .errors import InvalidTransitionError
from .models import SessionState

VALID_TRANSITIONS: dict[SessionState, set[SessionState]] = {
    SessionState.IDLE: {
        SessionState.LOADING,
        SessionState.ERROR,
    },
    SessionState.LOADING: {
        SessionState.BUSY,
        SessionState.IDLE,
        SessionState.ERROR,
    },
    SessionState.BUSY: {
        SessionState.IDLE,
        SessionState.ERROR,
    },
    SessionState.ERROR: {
        SessionState.LOADING,
        SessionState.IDLE,  # resume
    },
}


def validate_transition(current: SessionState, target: SessionState) -> None:
    """Validate a state transition. Raises InvalidTransitionError if invalid."""
    allowed = VALID_TRANSITIONS.get(current, set())
    if target not in allowed:
        allowed_str = ", ".join(sorted(s.value for s in allowed)) or "none"
        raise InvalidTransitionError(
            f"Invalid state transition: {current.value} -> {target.value}. "
            f"Allowed from {current.value}: {allowed_str}"
        )
