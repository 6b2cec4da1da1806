"""In-memory transport adapter.

A scripted stand-in for the execution service, used by tests and for
local development without a server. It behaves like the real service on
the points the client depends on:

- responses carry unique response ids and echo the session/operation ids
- re-sending an execute request with a known operation id resumes that
  operation instead of starting a new one
- ReattachExecute resumes after the given cursor
- ReleaseExecute and Interrupt are honored; released responses can no
  longer be replayed
- Config keeps a per-transport key/value store, and persist, unpersist
  and storage-level analyses are answered from a per-transport cache map

Every message crosses a msgpack encode/decode round trip, so anything that
would not survive the real wire fails here too. Failures are injected with
``fail_next``: the next matching stream yields some responses and then
raises (or hangs until cancelled).
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Callable, Sequence
from dataclasses import dataclass, field
from typing import Any

import pyarrow as pa

from dfconnect.adapters.outbound.arrow_codec import encode_table, from_arrow_schema
from dfconnect.adapters.outbound.plan_codec import PlanCodec
from dfconnect.domain.errors import ConnectError, MessageTooLarge, TransportError
from dfconnect.ports.outbound import wire
from dfconnect.ports.outbound.transport import StreamRequest

ExecuteHandler = Callable[[wire.ExecutePlanRequest], Sequence[Any]]
AnalyzeHandler = Callable[[wire.AnalyzePlanRequest], Any]

_DEFAULT_STORAGE_LEVEL = wire.StorageLevelMsg(use_disk=True, use_memory=True, deserialized=True)


def result_bodies(
    table: pa.Table,
    max_rows_per_batch: int | None = None,
    metrics: Sequence[wire.MetricObjectMsg] = (),
) -> list[Any]:
    """Build the response bodies a server sends for a query result.

    Schema first, then one Arrow batch per chunk, optional metrics, and the
    result-complete marker.
    """
    codec = PlanCodec()
    bodies: list[Any] = [
        wire.SchemaBody(schema=codec.encode_data_type(from_arrow_schema(table.schema)))
    ]
    for batch in table.to_batches(max_chunksize=max_rows_per_batch):
        bodies.append(wire.ArrowBatchBody(row_count=batch.num_rows, data=encode_table(batch)))
    if metrics:
        bodies.append(wire.MetricsBody(metrics=tuple(metrics)))
    bodies.append(wire.ResultCompleteBody())
    return bodies


def analysis_error(message: str, error_class: str | None = None) -> wire.ErrorBody:
    return wire.ErrorBody(kind="analysis", message=message, error_class=error_class)


@dataclass
class _Fault:
    rpc: str  # "execute", "reattach", "analyze", "config" or "any"
    after: int
    error: ConnectError | None
    hang: bool


@dataclass
class _Operation:
    operation_id: str
    session_id: str
    responses: list[wire.ExecutePlanResponse]
    released: bool = False
    released_through: int = -1  # index of the last released response
    interrupted: bool = False
    tags: tuple[str, ...] = ()

    @property
    def buffered(self) -> list[wire.ExecutePlanResponse]:
        """Responses the server still holds for reattach."""
        return self.responses[self.released_through + 1:]


@dataclass
class InMemoryStream:
    """Response stream over a slice of a scripted operation."""

    responses: list[wire.ExecutePlanResponse]
    fault: _Fault | None = None
    max_message_size: int | None = None
    _cancelled: asyncio.Event = field(default_factory=asyncio.Event)

    def __aiter__(self) -> AsyncIterator[wire.ExecutePlanResponse]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[wire.ExecutePlanResponse]:
        fault = self.fault
        delivered = self.responses if fault is None else self.responses[: fault.after]
        for response in delivered:
            if self._cancelled.is_set():
                return
            data = wire.encode_message(response)
            if self.max_message_size is not None and len(data) > self.max_message_size:
                raise MessageTooLarge(len(data), self.max_message_size)
            # Let other tasks run between responses, like a real network read
            await asyncio.sleep(0)
            yield wire.decode_message(data, wire.ExecutePlanResponse)
        if fault is None or self._cancelled.is_set():
            return
        if fault.hang:
            await self._cancelled.wait()
            return
        if fault.error is not None:
            raise fault.error

    def cancel(self) -> None:
        self._cancelled.set()


class InMemoryTransport:
    """Scripted execution service living in the client's process.

    Attributes:
        requests: Every request received, in order, as decoded by the server.
        operations: Server-side state per operation id.
        server_config: Session configuration held by the server.
        persisted: Storage level per persisted relation, keyed by its encoding.

    Example:
        >>> transport = InMemoryTransport(lambda request: result_bodies(table, 3))
        >>> transport.fail_next(TransportError("reset", retryable=True), after=2)
        >>> client = ConnectClient(transport=transport)
    """

    def __init__(
        self,
        execute_handler: ExecuteHandler | None = None,
        analyze_handler: AnalyzeHandler | None = None,
        max_message_size: int | None = None,
        server_config: dict[str, str] | None = None,
        static_config_keys: frozenset[str] = frozenset(),
    ) -> None:
        self._execute_handler = execute_handler or (lambda request: [wire.ResultCompleteBody()])
        self._analyze_handler = analyze_handler
        self.max_message_size = max_message_size
        self.requests: list[Any] = []
        self.operations: dict[str, _Operation] = {}
        self.server_config: dict[str, str] = dict(server_config or {})
        self.static_config_keys = static_config_keys
        self.persisted: dict[bytes, wire.StorageLevelMsg] = {}
        self._faults: list[_Fault] = []
        self.response_session_id: str | None = None
        self.closed = False

    # Failure injection

    def fail_next(
        self,
        error: ConnectError | None = None,
        after: int = 0,
        rpc: str = "any",
        hang: bool = False,
    ) -> None:
        """Make the next matching stream deliver ``after`` responses, then fail.

        With ``hang=True`` the stream stalls instead until it is cancelled.
        With neither an error nor ``hang`` the stream just ends early.
        Faults queue up and are consumed in order.
        """
        self._faults.append(_Fault(rpc=rpc, after=after, error=error, hang=hang))

    def _take_fault(self, rpc: str) -> _Fault | None:
        for index, fault in enumerate(self._faults):
            if fault.rpc in (rpc, "any"):
                return self._faults.pop(index)
        return None

    def _receive(self, request: Any) -> Any:
        if self.closed:
            raise TransportError("Transport is closed", code="CANCELLED")
        received = wire.decode_message(wire.encode_message(request), type(request))
        self.requests.append(received)
        return received

    def requests_of(self, message_type: type) -> list[Any]:
        return [r for r in self.requests if isinstance(r, message_type)]

    # Transport protocol

    def send_stream(self, request: StreamRequest) -> InMemoryStream:
        received = self._receive(request)
        if isinstance(received, wire.ExecutePlanRequest):
            operation = self.operations.get(received.operation_id)
            if operation is None:
                operation = self._start_operation(received)
            fault = self._take_fault("execute")
            responses = operation.responses
        else:
            operation = self.operations.get(received.operation_id)
            if operation is None or operation.released:
                raise TransportError(
                    f"INVALID_HANDLE.OPERATION_NOT_FOUND: {received.operation_id}",
                    code="INTERNAL",
                )
            fault = self._take_fault("reattach")
            responses = self._after_cursor(operation, received.last_response_id)
        if operation.interrupted:
            responses = []
        return InMemoryStream(list(responses), fault, self.max_message_size)

    def _start_operation(self, request: wire.ExecutePlanRequest) -> _Operation:
        session_id = self.response_session_id or request.session_id
        bodies = self._execute_handler(request)
        responses = [
            wire.ExecutePlanResponse(
                session_id=session_id,
                operation_id=request.operation_id,
                response_id=f"{request.operation_id}/{index}",
                body=body,
            )
            for index, body in enumerate(bodies)
        ]
        operation = _Operation(
            operation_id=request.operation_id,
            session_id=request.session_id,
            responses=responses,
            tags=request.tags,
        )
        self.operations[request.operation_id] = operation
        return operation

    @staticmethod
    def _response_index(operation: _Operation, response_id: str) -> int:
        for index, response in enumerate(operation.responses):
            if response.response_id == response_id:
                return index
        raise TransportError(
            f"INVALID_CURSOR: unknown response id {response_id}", code="INTERNAL"
        )

    def _after_cursor(
        self, operation: _Operation, cursor: str | None
    ) -> list[wire.ExecutePlanResponse]:
        index = -1 if cursor is None else self._response_index(operation, cursor)
        if index < operation.released_through:
            raise TransportError(
                f"INVALID_CURSOR: responses after {cursor} were already released",
                code="INTERNAL",
            )
        return operation.responses[index + 1:]

    async def analyze_plan(self, request: wire.AnalyzePlanRequest) -> wire.AnalyzePlanResponse:
        received = self._receive(request)
        fault = self._take_fault("analyze")
        if fault is not None and fault.error is not None:
            raise fault.error
        analyze = received.analyze
        if isinstance(
            analyze, (wire.PersistAnalyze, wire.UnpersistAnalyze, wire.GetStorageLevelAnalyze)
        ):
            outcome: Any = self._storage_analysis(analyze)
        elif self._analyze_handler is None:
            outcome = analysis_error("No analyzer configured")
        else:
            outcome = self._analyze_handler(received)
        if isinstance(outcome, wire.AnalyzePlanResponse):
            response = outcome
        elif isinstance(outcome, wire.ErrorBody):
            response = wire.AnalyzePlanResponse(session_id=received.session_id, error=outcome)
        else:
            response = wire.AnalyzePlanResponse(session_id=received.session_id, result=outcome)
        return wire.decode_message(wire.encode_message(response), wire.AnalyzePlanResponse)

    def _storage_analysis(self, analyze: Any) -> Any:
        key = wire.encode_message(analyze.relation)
        if isinstance(analyze, wire.PersistAnalyze):
            self.persisted[key] = analyze.storage_level or _DEFAULT_STORAGE_LEVEL
            return wire.PersistResult()
        if isinstance(analyze, wire.UnpersistAnalyze):
            self.persisted.pop(key, None)
            return wire.UnpersistResult()
        level = self.persisted.get(key, wire.StorageLevelMsg())
        return wire.GetStorageLevelResult(storage_level=level)

    async def release_execute(
        self, request: wire.ReleaseExecuteRequest
    ) -> wire.ReleaseExecuteResponse:
        received = self._receive(request)
        operation = self.operations.get(received.operation_id)
        if operation is not None:
            if received.until_response_id is None:
                operation.released = True
            else:
                index = self._response_index(operation, received.until_response_id)
                operation.released_through = max(operation.released_through, index)
        return wire.ReleaseExecuteResponse(
            session_id=received.session_id, operation_id=received.operation_id
        )

    async def interrupt(self, request: wire.InterruptRequest) -> wire.InterruptResponse:
        received = self._receive(request)
        interrupted = []
        for operation in self.operations.values():
            if operation.released or operation.interrupted:
                continue
            if (
                received.interrupt_type == "all"
                or (received.interrupt_type == "tag" and received.operation_tag in operation.tags)
                or (
                    received.interrupt_type == "operation_id"
                    and received.operation_id == operation.operation_id
                )
            ):
                operation.interrupted = True
                interrupted.append(operation.operation_id)
        return wire.InterruptResponse(
            session_id=received.session_id, interrupted_ids=tuple(interrupted)
        )

    async def config(self, request: wire.ConfigRequest) -> wire.ConfigResponse:
        received = self._receive(request)
        fault = self._take_fault("config")
        if fault is not None and fault.error is not None:
            raise fault.error
        outcome = self._apply_config(received)
        if isinstance(outcome, wire.ErrorBody):
            response = wire.ConfigResponse(session_id=received.session_id, error=outcome)
        else:
            response = wire.ConfigResponse(session_id=received.session_id, pairs=outcome)
        return wire.decode_message(wire.encode_message(response), wire.ConfigResponse)

    def _apply_config(
        self, request: wire.ConfigRequest
    ) -> tuple[wire.KeyValueMsg, ...] | wire.ErrorBody:
        store = self.server_config
        keys = [pair.key for pair in request.pairs]
        if request.operation in ("set", "unset"):
            for key in keys:
                if key in self.static_config_keys:
                    return analysis_error(
                        f"[CANNOT_MODIFY_CONFIG] Cannot modify the static config {key}.",
                        "CANNOT_MODIFY_CONFIG",
                    )
            for pair in request.pairs:
                if request.operation == "set":
                    store[pair.key] = pair.value or ""
                else:
                    store.pop(pair.key, None)
            return ()
        if request.operation == "get":
            for key in keys:
                if key not in store:
                    return analysis_error(
                        f'[SQL_CONF_NOT_FOUND] The SQL config "{key}" cannot be found.',
                        "SQL_CONF_NOT_FOUND",
                    )
            return tuple(wire.KeyValueMsg(key=key, value=store[key]) for key in keys)
        if request.operation == "get_with_default":
            return tuple(
                wire.KeyValueMsg(key=pair.key, value=store.get(pair.key, pair.value))
                for pair in request.pairs
            )
        if request.operation == "get_option":
            return tuple(wire.KeyValueMsg(key=key, value=store.get(key)) for key in keys)
        if request.operation == "get_all":
            prefix = request.prefix or ""
            return tuple(
                wire.KeyValueMsg(key=key, value=value)
                for key, value in sorted(store.items())
                if key.startswith(prefix)
            )
        if request.operation == "is_modifiable":
            return tuple(
                wire.KeyValueMsg(
                    key=key, value="false" if key in self.static_config_keys else "true"
                )
                for key in keys
            )
        return analysis_error(f"Unknown config operation {request.operation!r}")

    async def close(self) -> None:
        self.closed = True
