"""Lifecycle states of an execution run.

State machine:

    PENDING ──first response──> STREAMING ──result complete──> COMPLETE
       │                          │    ^
       │             retryable    │    │ reattach
       │             failure      v    │ succeeds
       │                     AWAITING_REATTACH
       │                          │
       └──────────> FAILED <──────┘   (budget exhausted / non-retryable)

    Any non-terminal state ──cancel()──> CANCELLED

PENDING retries a failed initial send in place (same operation id), since
there is no cursor to reattach from yet.
"""

from __future__ import annotations

from enum import Enum, auto


class RunState(Enum):
    """States of an ExecutionRun."""

    PENDING = auto()
    """Created; no response received yet."""

    STREAMING = auto()
    """Responses are being received and yielded."""

    AWAITING_REATTACH = auto()
    """Stream broke after progress; waiting to resume from the cursor."""

    COMPLETE = auto()
    """Result-complete marker received and stream drained."""

    FAILED = auto()
    """Non-retryable error or retry budget exhausted."""

    CANCELLED = auto()
    """Cancelled by the caller."""

    def is_terminal(self) -> bool:
        """Check if no further transition is possible."""
        return self in (RunState.COMPLETE, RunState.FAILED, RunState.CANCELLED)

    def can_transition_to(self, target: RunState) -> bool:
        """Check if moving to target is a legal transition."""
        return target in _TRANSITIONS[self]


_TRANSITIONS: dict[RunState, frozenset[RunState]] = {
    RunState.PENDING: frozenset(
        {RunState.STREAMING, RunState.FAILED, RunState.CANCELLED}
    ),
    RunState.STREAMING: frozenset(
        {
            RunState.STREAMING,
            RunState.AWAITING_REATTACH,
            RunState.COMPLETE,
            RunState.FAILED,
            RunState.CANCELLED,
        }
    ),
    RunState.AWAITING_REATTACH: frozenset(
        {RunState.STREAMING, RunState.FAILED, RunState.CANCELLED}
    ),
    RunState.COMPLETE: frozenset(),
    RunState.FAILED: frozenset(),
    RunState.CANCELLED: frozenset(),
}
