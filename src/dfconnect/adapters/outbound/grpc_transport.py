"""gRPC transport adapter.

This adapter implements the Transport protocol over ``grpc.aio``. Messages
are msgpack bytes, so the adapter uses generic byte-level multicallables
(no generated stubs): requests are serialized with the wire encoder, and
responses are size-checked and then decoded into wire structs.

All runs of a client share one channel. Each execute or reattach request
opens its own server-streaming call, and HTTP/2 multiplexes those calls
over the one connection.

Error mapping:
    UNAVAILABLE, DEADLINE_EXCEEDED, ABORTED  -> TransportError(retryable=True)
    INTERNAL with INVALID_CURSOR.DISCONNECTED -> TransportError(retryable=True)
    RESOURCE_EXHAUSTED                        -> MessageTooLarge
    anything else                             -> TransportError(retryable=False)
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from typing import Any, TypeVar

import grpc
import msgspec

from dfconnect.domain.errors import ConnectError, MessageTooLarge, ProtocolError, TransportError
from dfconnect.infrastructure.config import ConnectionConfig, TransportConfig
from dfconnect.infrastructure.logging import get_logger
from dfconnect.ports.outbound import wire
from dfconnect.ports.outbound.transport import StreamRequest

logger = get_logger(__name__)

SERVICE_NAME = "dfconnect.ConnectService"
EXECUTE_PLAN = f"/{SERVICE_NAME}/ExecutePlan"
REATTACH_EXECUTE = f"/{SERVICE_NAME}/ReattachExecute"
RELEASE_EXECUTE = f"/{SERVICE_NAME}/ReleaseExecute"
ANALYZE_PLAN = f"/{SERVICE_NAME}/AnalyzePlan"
INTERRUPT = f"/{SERVICE_NAME}/Interrupt"
CONFIG = f"/{SERVICE_NAME}/Config"

_RETRYABLE_CODES = frozenset(
    {grpc.StatusCode.UNAVAILABLE, grpc.StatusCode.DEADLINE_EXCEEDED, grpc.StatusCode.ABORTED}
)
_DISCONNECTED_CURSOR = "INVALID_CURSOR.DISCONNECTED"

T = TypeVar("T")


def classify_rpc_error(error: grpc.RpcError, max_message_size: int | None = None) -> ConnectError:
    """Translate a gRPC failure into the client error taxonomy."""
    code = error.code() if hasattr(error, "code") else grpc.StatusCode.UNKNOWN
    details = (error.details() if hasattr(error, "details") else None) or ""
    if code is grpc.StatusCode.RESOURCE_EXHAUSTED:
        return MessageTooLarge(None, max_message_size or 0)
    retryable = code in _RETRYABLE_CODES or (
        code is grpc.StatusCode.INTERNAL and _DISCONNECTED_CURSOR in details
    )
    return TransportError(details or code.name, code=code.name, retryable=retryable)


def build_metadata(
    connection: ConnectionConfig, session_id: str
) -> tuple[tuple[str, str], ...]:
    """Call metadata: session id, bearer token, and extra connection headers.

    gRPC requires lowercase metadata keys. The user agent travels as the
    channel's primary user agent, not as call metadata.
    """
    metadata: list[tuple[str, str]] = [("x-session-id", session_id)]
    if connection.token:
        metadata.append(("authorization", f"Bearer {connection.token}"))
    for key, value in sorted(connection.headers.items()):
        metadata.append((key.lower(), value))
    return tuple(metadata)


class GrpcResponseStream:
    """One ExecutePlan/ReattachExecute call, read response by response."""

    def __init__(
        self,
        transport: GrpcTransport,
        method: str,
        payload: bytes,
        metadata: tuple[tuple[str, str], ...],
    ) -> None:
        self._transport = transport
        self._method = method
        self._payload = payload
        self._metadata = metadata
        self._call: Any = None
        self._cancelled = False

    def __aiter__(self) -> AsyncIterator[wire.ExecutePlanResponse]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[wire.ExecutePlanResponse]:
        if self._cancelled:
            return
        transport = self._transport
        channel = await transport._ready_channel()
        call = channel.unary_stream(self._method)(self._payload, metadata=self._metadata)
        self._call = call
        read_timeout = transport.transport_config.read_timeout_seconds
        try:
            while True:
                try:
                    if read_timeout is None:
                        data = await call.read()
                    else:
                        data = await asyncio.wait_for(call.read(), read_timeout)
                except asyncio.TimeoutError as e:
                    call.cancel()
                    raise TransportError(
                        f"No response within {read_timeout}s",
                        code="DEADLINE_EXCEEDED",
                        retryable=True,
                    ) from e
                except asyncio.CancelledError:
                    # Our own cancel() ends the stream quietly
                    if self._cancelled:
                        return
                    raise
                if data is grpc.aio.EOF:
                    return
                yield transport._decode(data, wire.ExecutePlanResponse)
        except grpc.RpcError as e:
            if self._cancelled:
                return
            raise classify_rpc_error(e, transport.transport_config.max_message_size) from e
        finally:
            if not call.done():
                call.cancel()

    def cancel(self) -> None:
        self._cancelled = True
        if self._call is not None:
            self._call.cancel()


class GrpcTransport:
    """Transport over a shared ``grpc.aio`` channel.

    The channel is created lazily on first use, inside the running event
    loop, and waited on for readiness once with the connect timeout.

    Example:
        >>> transport = GrpcTransport(config.connection, config.transport)
        >>> async for response in transport.send_stream(request):
        ...     handle(response)
        >>> await transport.close()
    """

    def __init__(self, connection: ConnectionConfig, transport_config: TransportConfig) -> None:
        self.connection = connection
        self.transport_config = transport_config
        self._channel: grpc.aio.Channel | None = None
        self._ready = False
        self._ready_lock: asyncio.Lock | None = None
        self._closed = False

    def _channel_options(self) -> list[tuple[str, Any]]:
        limit = self.transport_config.max_message_size
        return [
            ("grpc.max_receive_message_length", limit),
            ("grpc.max_send_message_length", limit),
            ("grpc.primary_user_agent", self.connection.user_agent),
        ]

    def _create_channel(self) -> grpc.aio.Channel:
        target = self.connection.target
        options = self._channel_options()
        if self.connection.use_ssl:
            return grpc.aio.secure_channel(target, grpc.ssl_channel_credentials(), options=options)
        return grpc.aio.insecure_channel(target, options=options)

    async def _ready_channel(self) -> grpc.aio.Channel:
        if self._closed:
            raise TransportError("Transport is closed", code="CANCELLED")
        if self._ready_lock is None:
            self._ready_lock = asyncio.Lock()
        async with self._ready_lock:
            if self._channel is None:
                self._channel = self._create_channel()
            if not self._ready:
                timeout = self.transport_config.connect_timeout_seconds
                try:
                    await asyncio.wait_for(self._channel.channel_ready(), timeout)
                except asyncio.TimeoutError as e:
                    raise TransportError(
                        f"Could not connect to {self.connection.target} within {timeout}s",
                        code="UNAVAILABLE",
                        retryable=True,
                    ) from e
                self._ready = True
                logger.debug("channel_ready", target=self.connection.target)
        return self._channel

    def _decode(self, data: bytes, message_type: type[T]) -> T:
        limit = self.transport_config.max_message_size
        if len(data) > limit:
            raise MessageTooLarge(len(data), limit)
        try:
            return wire.decode_message(data, message_type)
        except msgspec.DecodeError as e:
            raise ProtocolError(f"Undecodable {message_type.__name__}: {e}") from e

    def send_stream(self, request: StreamRequest) -> GrpcResponseStream:
        method = EXECUTE_PLAN if isinstance(request, wire.ExecutePlanRequest) else REATTACH_EXECUTE
        return GrpcResponseStream(
            self,
            method,
            wire.encode_message(request),
            build_metadata(self.connection, request.session_id),
        )

    async def _unary(
        self, method: str, request: Any, response_type: type[T], timeout: float | None = None
    ) -> T:
        channel = await self._ready_channel()
        try:
            data = await channel.unary_unary(method)(
                wire.encode_message(request),
                metadata=build_metadata(self.connection, request.session_id),
                timeout=timeout,
            )
        except grpc.RpcError as e:
            raise classify_rpc_error(e, self.transport_config.max_message_size) from e
        return self._decode(data, response_type)

    async def analyze_plan(self, request: wire.AnalyzePlanRequest) -> wire.AnalyzePlanResponse:
        return await self._unary(
            ANALYZE_PLAN,
            request,
            wire.AnalyzePlanResponse,
            timeout=self.transport_config.analyze_timeout_seconds,
        )

    async def release_execute(
        self, request: wire.ReleaseExecuteRequest
    ) -> wire.ReleaseExecuteResponse:
        return await self._unary(
            RELEASE_EXECUTE,
            request,
            wire.ReleaseExecuteResponse,
            timeout=self.transport_config.control_timeout_seconds,
        )

    async def interrupt(self, request: wire.InterruptRequest) -> wire.InterruptResponse:
        return await self._unary(
            INTERRUPT,
            request,
            wire.InterruptResponse,
            timeout=self.transport_config.control_timeout_seconds,
        )

    async def config(self, request: wire.ConfigRequest) -> wire.ConfigResponse:
        return await self._unary(
            CONFIG,
            request,
            wire.ConfigResponse,
            timeout=self.transport_config.control_timeout_seconds,
        )

    async def close(self) -> None:
        self._closed = True
        if self._channel is not None:
            await self._channel.close()
            self._channel = None
            logger.debug("channel_closed", target=self.connection.target)
