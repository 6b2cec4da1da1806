"""Error taxonomy for the connect client.

Every error raised by the client derives from ConnectError, so callers can
tell "the plan is wrong" from "the network hiccuped" from "I cancelled this"
by exception type alone:

    - MalformedPlan: invalid IR, raised locally at construction time
    - UnsupportedType: a value the wire format cannot represent
    - TransportError: connection-level failure (retryable or not)
    - MessageTooLarge: inbound message over the configured limit
    - PlanAnalysisError / ExecutionError: the server rejected or failed the plan
    - ProtocolError: the server sent something the client cannot accept
    - Cancelled: the caller cancelled the operation
"""

from __future__ import annotations


class ConnectError(Exception):
    """Base class for all client errors."""

    pass


class MalformedPlan(ConnectError):
    """A plan node was constructed with invalid arguments."""

    def __init__(self, node: str, reason: str) -> None:
        super().__init__(f"Malformed {node}: {reason}")
        self.node = node
        self.reason = reason


class UnsupportedType(ConnectError):
    """A value in the plan cannot be represented on the wire.

    Attributes:
        node: The offending node (e.g. "Literal(<object>)").
        relation: The relation node containing it, e.g. "Filter#12", when known.
    """

    def __init__(self, node: str, detail: str, relation: str | None = None) -> None:
        where = f"{node} in {relation}" if relation else node
        super().__init__(f"Cannot encode {where}: {detail}")
        self.node = node
        self.detail = detail
        self.relation = relation


class TransportError(ConnectError):
    """Connection-level failure talking to the service.

    Attributes:
        code: Transport status name (e.g. "UNAVAILABLE").
        retryable: Whether the execution engine may retry the attempt.
    """

    def __init__(self, message: str, code: str = "UNKNOWN", retryable: bool = False) -> None:
        super().__init__(message)
        self.code = code
        self.retryable = retryable

    def __repr__(self) -> str:
        return (
            f"TransportError(code={self.code!r}, retryable={self.retryable}, "
            f"message={str(self)!r})"
        )


class MessageTooLarge(ConnectError):
    """An inbound message exceeded the configured maximum size."""

    def __init__(self, size: int | None, limit: int) -> None:
        if size is None:
            message = f"Inbound message exceeds limit of {limit} bytes"
        else:
            message = f"Inbound message of {size} bytes exceeds limit of {limit} bytes"
        super().__init__(message)
        self.size = size
        self.limit = limit


class ServerError(ConnectError):
    """The service reported an error for the submitted plan.

    The server diagnostic is kept verbatim in ``message``.
    """

    def __init__(self, message: str, error_class: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.error_class = error_class


class PlanAnalysisError(ServerError):
    """The plan failed analysis (e.g. unknown column or table)."""

    pass


class ExecutionError(ServerError):
    """The plan was accepted but failed while executing."""

    pass


class ProtocolError(ConnectError):
    """The server response violated the protocol contract."""

    pass


class Cancelled(ConnectError):
    """The operation was cancelled by the caller. Not a failure."""

    def __init__(self, operation_id: str) -> None:
        super().__init__(f"Operation {operation_id} was cancelled")
        self.operation_id = operation_id
