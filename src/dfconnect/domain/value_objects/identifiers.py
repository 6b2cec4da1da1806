"""Type-safe identifiers for sessions, operations and plan nodes."""

from __future__ import annotations

import itertools
import threading
import uuid
from typing import NewType

SessionId = NewType("SessionId", str)
"""Stable identifier of one logical connection to the service."""

OperationId = NewType("OperationId", str)
"""Identifier of one submitted request within a session."""

PlanId = NewType("PlanId", int)
"""Process-unique tag of a relation node."""

ResponseId = NewType("ResponseId", str)
"""Server-assigned id of one streamed response; doubles as the reattach cursor."""


def create_session_id(value: str | None = None) -> SessionId:
    """Create a session ID.

    Args:
        value: Explicit id to reuse (must be a UUID string), or None for a new one.

    Returns:
        Session ID.

    Raises:
        ValueError: If value is not a valid UUID.
    """
    if value is None:
        return SessionId(str(uuid.uuid4()))
    return SessionId(str(uuid.UUID(value)))


def create_operation_id(sequence: int) -> OperationId:
    """Create an operation ID from a session-local sequence number.

    Zero padding keeps ids ordered both numerically and lexically.
    """
    if sequence < 1:
        raise ValueError(f"sequence must be positive, got {sequence}")
    return OperationId(f"op-{sequence:08d}")


class PlanIdGenerator:
    """Hands out plan ids that are unique within the process.

    Sessions share one counter by default so that plans built in different
    sessions never carry the same id.
    """

    _shared_counter = itertools.count(1)
    _shared_lock = threading.Lock()

    def __init__(self, start: int | None = None) -> None:
        if start is None:
            self._counter = PlanIdGenerator._shared_counter
            self._lock = PlanIdGenerator._shared_lock
        else:
            self._counter = itertools.count(start)
            self._lock = threading.Lock()

    def next_id(self) -> PlanId:
        with self._lock:
            return PlanId(next(self._counter))
