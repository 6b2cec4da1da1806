"""Transport port for talking to the remote execution service.

This outbound port defines the contract for the streaming RPC channel.
Implementations own the connection; the execution engine and schema
resolver only ever see wire messages and ConnectError subclasses.

The transport is responsible for:
- Opening one response stream per execute or reattach request
- Unary analyze, config, release and interrupt calls
- Attaching session headers and credentials to every call
- Translating connection failures into TransportError (with ``retryable``)
"""

from __future__ import annotations

from abc import abstractmethod
from collections.abc import AsyncIterator
from typing import Protocol, Union

from dfconnect.ports.outbound.wire import (
    AnalyzePlanRequest,
    AnalyzePlanResponse,
    ConfigRequest,
    ConfigResponse,
    ExecutePlanRequest,
    ExecutePlanResponse,
    InterruptRequest,
    InterruptResponse,
    ReattachExecuteRequest,
    ReleaseExecuteRequest,
    ReleaseExecuteResponse,
)

StreamRequest = Union[ExecutePlanRequest, ReattachExecuteRequest]


class ResponseStream(Protocol):
    """One server-streaming call: responses in arrival order, cancellable.

    Iteration raises TransportError (retryable or not) or MessageTooLarge on
    failure. A stream that ends normally simply stops iterating.
    """

    def __aiter__(self) -> AsyncIterator[ExecutePlanResponse]:
        ...

    @abstractmethod
    def cancel(self) -> None:
        """Abort the call. Idempotent; pending reads stop promptly."""
        ...


class Transport(Protocol):
    """Protocol for the RPC channel to the execution service.

    Thread Safety:
        A transport is shared by every run of a client. Implementations
        must allow concurrent streams over the same underlying connection.
    """

    @abstractmethod
    def send_stream(self, request: StreamRequest) -> ResponseStream:
        """Start an ExecutePlan or ReattachExecute call.

        The call itself is lazy: connection errors surface on the first
        read from the returned stream.
        """
        ...

    @abstractmethod
    async def analyze_plan(self, request: AnalyzePlanRequest) -> AnalyzePlanResponse:
        """Run one analysis request.

        Raises:
            TransportError: If the call fails at the connection level.
        """
        ...

    @abstractmethod
    async def config(self, request: ConfigRequest) -> ConfigResponse:
        """Read or change server-side session configuration."""
        ...

    @abstractmethod
    async def release_execute(self, request: ReleaseExecuteRequest) -> ReleaseExecuteResponse:
        """Allow the server to drop buffered responses up to a cursor."""
        ...

    @abstractmethod
    async def interrupt(self, request: InterruptRequest) -> InterruptResponse:
        """Interrupt running operations by id, tag, or all of them."""
        ...

    @abstractmethod
    async def close(self) -> None:
        """Close the underlying connection. Further calls fail."""
        ...
