"""Session state shared by every request a client sends.

A session is one logical connection: a stable session id, the caller's
user context, server config overrides and operation tags. It also owns the
id generators. All mutation happens under one lock, and requests never
read live state; they carry an immutable ContextSnapshot taken at send time.
"""

from __future__ import annotations

import itertools
import threading
from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType

from dfconnect.domain.value_objects.identifiers import (
    OperationId,
    PlanId,
    PlanIdGenerator,
    SessionId,
    create_operation_id,
    create_session_id,
)
from dfconnect.ports.outbound import wire


@dataclass(frozen=True)
class UserContext:
    """Who is calling. Sent with every request."""

    user_id: str = ""
    user_name: str = ""
    properties: Mapping[str, str] = field(default_factory=dict)

    def to_wire(self) -> wire.UserContextMsg:
        return wire.UserContextMsg(
            user_id=self.user_id, user_name=self.user_name, properties=dict(self.properties)
        )


@dataclass(frozen=True)
class ContextSnapshot:
    """Immutable view of the session attached to one outgoing request."""

    session_id: SessionId
    user_context: UserContext
    config: Mapping[str, str]
    tags: tuple[str, ...]


def validate_tag(tag: str) -> None:
    """Raise ValueError unless ``tag`` is usable as an operation tag."""
    if not isinstance(tag, str) or not tag:
        raise ValueError("Operation tag must be a non-empty string")
    if "," in tag:
        raise ValueError(f"Operation tag cannot contain ',': {tag!r}")


class Session:
    """Long-lived client session.

    Thread Safety:
        All public methods are safe to call from any thread.

    Example:
        >>> session = Session(user_context=UserContext(user_id="alice"))
        >>> session.with_config("spark.sql.ansi.enabled", "true")
        >>> session.next_operation_id()
        'op-00000001'
    """

    def __init__(
        self,
        session_id: str | None = None,
        user_context: UserContext | None = None,
        plan_ids: PlanIdGenerator | None = None,
    ) -> None:
        """Initialize a session.

        Args:
            session_id: Id to reuse (a UUID string), or None for a fresh uuid4.
            user_context: Caller identity.
            plan_ids: Plan id source; defaults to the process-wide generator.

        Raises:
            ValueError: If session_id is not a valid UUID.
        """
        self._session_id = create_session_id(session_id)
        self._user_context = user_context or UserContext()
        self._plan_ids = plan_ids or PlanIdGenerator()
        self._operation_seq = itertools.count(1)
        self._config: dict[str, str] = {}
        self._tags: list[str] = []
        self._lock = threading.Lock()

    @property
    def session_id(self) -> SessionId:
        return self._session_id

    @property
    def user_context(self) -> UserContext:
        return self._user_context

    # Identifiers

    def next_operation_id(self) -> OperationId:
        """Return a fresh operation id; ids are monotonic and never reused."""
        with self._lock:
            return create_operation_id(next(self._operation_seq))

    def next_plan_id(self) -> PlanId:
        return self._plan_ids.next_id()

    # Config overrides

    def with_config(self, key: str, value: str) -> None:
        """Set a server config override. Later writes to the same key win."""
        if not key:
            raise ValueError("Config key must not be empty")
        with self._lock:
            self._config[key] = str(value)

    def unset_config(self, key: str) -> None:
        with self._lock:
            self._config.pop(key, None)

    def get_config(self, key: str, default: str | None = None) -> str | None:
        with self._lock:
            return self._config.get(key, default)

    # Operation tags

    def add_tag(self, tag: str) -> None:
        validate_tag(tag)
        with self._lock:
            if tag not in self._tags:
                self._tags.append(tag)

    def remove_tag(self, tag: str) -> None:
        validate_tag(tag)
        with self._lock:
            if tag in self._tags:
                self._tags.remove(tag)

    def clear_tags(self) -> None:
        with self._lock:
            self._tags.clear()

    @property
    def tags(self) -> tuple[str, ...]:
        with self._lock:
            return tuple(self._tags)

    # Snapshots

    def snapshot_context(self) -> ContextSnapshot:
        """Take an immutable copy of the current session state.

        Changes made after the call never affect the returned snapshot, so a
        request in flight keeps the config and tags it was sent with.
        """
        with self._lock:
            return ContextSnapshot(
                session_id=self._session_id,
                user_context=self._user_context,
                config=MappingProxyType(dict(self._config)),
                tags=tuple(self._tags),
            )

    def __repr__(self) -> str:
        return f"Session(session_id={self._session_id!r})"
