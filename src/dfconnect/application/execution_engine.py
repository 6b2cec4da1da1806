"""Execution engine: submits plans and turns response streams into batches.

Each submitted plan becomes an ExecutionRun driven by an explicit state
machine (see RunState). The run sends one ExecutePlanRequest and consumes
the response stream in arrival order. When the stream breaks with a
retryable failure after progress, it resumes with ReattachExecuteRequest
from the last delivered response id. A broken initial send with no response
yet is re-sent with the same operation id. Before reattaching, the server
is told it may drop the responses up to the cursor. Responses whose id is
among the recently delivered ones are skipped, so no batch reaches the
caller twice.

The retry budget counts consecutive failed attempts and resets whenever a
response arrives. Only retryable TransportErrors are retried; server errors,
protocol violations and oversized messages fail the run at once.

Runs are lazy: nothing is sent until the caller starts iterating.
"""

from __future__ import annotations

import time
import weakref
from collections import deque
from collections.abc import AsyncIterator
from typing import Any

import pyarrow as pa

from dfconnect.adapters.outbound.arrow_codec import decode_batches, from_arrow_schema, to_arrow_schema
from dfconnect.adapters.outbound.plan_codec import PlanCodec
from dfconnect.application.retry import RetryPolicy
from dfconnect.application.session import ContextSnapshot, Session
from dfconnect.domain.entities.relations import Command, Relation
from dfconnect.domain.entities.result_batch import ResultBatch
from dfconnect.domain.errors import (
    Cancelled,
    ConnectError,
    ExecutionError,
    PlanAnalysisError,
    ProtocolError,
    ServerError,
    TransportError,
)
from dfconnect.domain.value_objects.data_types import StructType
from dfconnect.domain.value_objects.identifiers import OperationId
from dfconnect.domain.value_objects.run_state import RunState
from dfconnect.infrastructure.config import ExecutionConfig
from dfconnect.infrastructure.logging import get_logger
from dfconnect.infrastructure.metrics import MetricsRegistry, get_metrics
from dfconnect.infrastructure.tracing import get_tracer, mark_failed
from dfconnect.ports.outbound import wire
from dfconnect.ports.outbound.local_executor import LocalExecutor
from dfconnect.ports.outbound.transport import ResponseStream, Transport

logger = get_logger(__name__)


def server_error(body: wire.ErrorBody) -> ServerError:
    """Map an error body to PlanAnalysisError or ExecutionError."""
    if body.kind == "analysis":
        return PlanAnalysisError(body.message, body.error_class)
    return ExecutionError(body.message, body.error_class)


class RecentIds:
    """Membership test over the last ``capacity`` ids added."""

    def __init__(self, capacity: int) -> None:
        if capacity < 1:
            raise ValueError(f"capacity must be positive, got {capacity}")
        self.capacity = capacity
        self._order: deque[str] = deque()
        self._members: set[str] = set()

    def __contains__(self, item: object) -> bool:
        return item in self._members

    def __len__(self) -> int:
        return len(self._members)

    def add(self, item: str) -> None:
        if item in self._members:
            return
        self._order.append(item)
        self._members.add(item)
        if len(self._order) > self.capacity:
            self._members.discard(self._order.popleft())


class ExecutionRun:
    """One submitted plan and the stream of its results.

    A run is a lazy, forward-only, finite async iterator of ResultBatch.
    It can be iterated once; a second iteration raises RuntimeError.

    Attributes:
        operation_id: Id of this operation within the session.
        plan: The submitted relation or command.
        schema: Result schema, once the server (or local executor) sent it.
        metrics: Execution metrics reported by the server.
        sql_command_result: Relation returned by a SQL command, if any.
        response_cursor: Id of the last response delivered to the caller.

    Example:
        >>> run = engine.execute(plan)
        >>> async for batch in run:
        ...     print(batch.row_count)
        >>> run.state
        <RunState.COMPLETE: 4>
    """

    def __init__(
        self,
        engine: ExecutionEngine,
        plan: Relation | Command,
        operation_id: OperationId,
        request: wire.ExecutePlanRequest,
        snapshot: ContextSnapshot,
    ) -> None:
        self._engine = engine
        self.plan = plan
        self.operation_id = operation_id
        self._request = request
        self._snapshot = snapshot
        self._state = RunState.PENDING
        self._iterated = False
        self._stream: ResponseStream | None = None
        self._seen = RecentIds(engine.config.seen_response_window)
        self._released_cursor: str | None = None
        self._sequence = 0
        self._result_complete = False
        self._started_at: float | None = None
        self._first_batch_seen = False
        self.schema: StructType | None = None
        self.metrics: list[wire.MetricObjectMsg] = []
        self.sql_command_result: Relation | None = None
        self.response_cursor: str | None = None
        self._log = logger.bind(operation_id=operation_id, session_id=snapshot.session_id)

    @property
    def state(self) -> RunState:
        return self._state

    @property
    def reattachable(self) -> bool:
        return self._request.reattachable

    def _transition(self, target: RunState) -> None:
        if target is self._state:
            return
        if not self._state.can_transition_to(target):
            raise RuntimeError(f"Illegal run transition {self._state.name} -> {target.name}")
        self._log.debug("run_transition", source=self._state.name, target=target.name)
        self._state = target
        if target.is_terminal():
            self._engine._run_finished(self)

    # Caller surface

    def __aiter__(self) -> AsyncIterator[ResultBatch]:
        if self._iterated:
            raise RuntimeError(f"Execution run {self.operation_id} can only be iterated once")
        self._iterated = True
        return self._run()

    async def to_table(self) -> pa.Table:
        """Collect every batch into one Arrow table.

        Raises:
            Cancelled: If the run was cancelled before it completed.
        """
        batches = [batch.record_batch async for batch in self]
        if self._state is RunState.CANCELLED:
            raise Cancelled(self.operation_id)
        if batches:
            return pa.Table.from_batches(batches)
        if self.schema is not None:
            return to_arrow_schema(self.schema).empty_table()
        return pa.table({})

    async def cancel(self) -> None:
        """Cancel the run. Idempotent, and a no-op once the run has finished.

        The active stream is cancelled and the server is asked to interrupt
        the operation; failing to reach it is logged, not raised. Batches
        already handed out stay valid.
        """
        if self._state.is_terminal():
            return
        was_sent = self._state is not RunState.PENDING or self._stream is not None
        self._transition(RunState.CANCELLED)
        if self._stream is not None:
            self._stream.cancel()
            self._stream = None
        self._log.info("run_cancelled")
        if was_sent:
            await self._engine._interrupt_operation(self._snapshot, self.operation_id, self._log)

    # Driving the state machine

    async def _run(self) -> AsyncIterator[ResultBatch]:
        engine = self._engine
        self._started_at = time.monotonic()
        engine.metrics.runs_active.inc()
        span = get_tracer().start_span(
            "dfconnect.execute_plan",
            attributes={
                "dfconnect.operation_id": self.operation_id,
                "dfconnect.session_id": self._snapshot.session_id,
            },
        )
        try:
            if self._state is RunState.CANCELLED:
                return
            local = engine._try_local(self.plan)
            if local is not None:
                engine.metrics.local_runs_total.inc()
                async for batch in self._stream_local(local):
                    yield batch
                return
            async for batch in self._stream_remote():
                yield batch
        except ConnectError as e:
            if not self._state.is_terminal():
                self._transition(RunState.FAILED)
            mark_failed(span, e)
            self._log.warning("run_failed", error=str(e), error_type=type(e).__name__)
            raise
        finally:
            if not self._state.is_terminal():
                # Caller stopped iterating early
                self._transition(RunState.CANCELLED)
                self._log.debug("run_abandoned")
            engine.metrics.runs_active.dec()
            span.set_attribute("dfconnect.state", self._state.name)
            span.end()

    async def _stream_local(self, table: pa.Table) -> AsyncIterator[ResultBatch]:
        self._transition(RunState.STREAMING)
        self.schema = from_arrow_schema(table.schema)
        for record_batch in table.to_batches():
            if self._state is RunState.CANCELLED:
                return
            yield self._deliver(record_batch)
        self._result_complete = True
        self._transition(RunState.COMPLETE)

    async def _stream_remote(self) -> AsyncIterator[ResultBatch]:
        engine = self._engine
        policy = engine.retry_policy
        failures = 0
        while not self._state.is_terminal():
            request = self._next_request()
            if isinstance(request, wire.ReattachExecuteRequest):
                if self.response_cursor != self._released_cursor:
                    self._released_cursor = self.response_cursor
                    await engine._release(self, self.response_cursor)
                    if self._state is RunState.CANCELLED:
                        return
                engine.metrics.reattach_attempts_total.inc()
                self._log.info("reattaching", cursor=self.response_cursor, attempt=failures)
            try:
                self._stream = engine.transport.send_stream(request)
                async for response in self._stream:
                    if self._state is RunState.CANCELLED:
                        # Cancelled from another task while a read was in flight
                        return
                    failures = 0
                    async for batch in self._handle(response):
                        yield batch
                    if self._state is RunState.CANCELLED:
                        return
                if self._state is RunState.CANCELLED:
                    return
                if self._result_complete:
                    break
                error = self._early_end()
            except TransportError as e:
                if self._state is RunState.CANCELLED:
                    return
                if self._result_complete:
                    # Everything was delivered; only the stream teardown failed
                    break
                error = e
            finally:
                # Also reached when the caller stops iterating mid-stream
                if self._stream is not None:
                    self._stream.cancel()
                    self._stream = None

            failures += 1
            resumable = self._state is RunState.PENDING or self.reattachable
            if not resumable or not policy.should_retry(error, failures):
                self._log.warning(
                    "retry_budget_exhausted" if error.retryable else "non_retryable_failure",
                    attempts=failures,
                    code=error.code,
                )
                raise error
            if self._state is RunState.STREAMING:
                self._transition(RunState.AWAITING_REATTACH)
            engine.metrics.retries_total.labels(
                rpc="execute" if self._state is RunState.PENDING else "reattach"
            ).inc()
            self._log.info("stream_interrupted", attempt=failures, code=error.code, error=str(error))
            await policy.wait(failures)
            if self._state is RunState.CANCELLED:
                return

        if self._state is RunState.CANCELLED:
            return
        self._transition(RunState.COMPLETE)
        await engine._release_all(self)

    def _early_end(self) -> TransportError:
        if not self.reattachable:
            raise ProtocolError("Stream ended before the result-complete marker")
        return TransportError(
            "Stream ended before the result-complete marker", code="UNAVAILABLE", retryable=True
        )

    def _next_request(self) -> wire.ExecutePlanRequest | wire.ReattachExecuteRequest:
        if self._state is RunState.PENDING:
            return self._request
        return wire.ReattachExecuteRequest(
            session_id=self._request.session_id,
            operation_id=self.operation_id,
            user_context=self._request.user_context,
            client_type=self._request.client_type,
            last_response_id=self.response_cursor,
        )

    async def _handle(self, response: wire.ExecutePlanResponse) -> AsyncIterator[ResultBatch]:
        if response.session_id != self._snapshot.session_id:
            raise ProtocolError(
                f"Response for session {response.session_id!r}, "
                f"expected {self._snapshot.session_id!r}"
            )
        if response.operation_id != self.operation_id:
            raise ProtocolError(
                f"Response for operation {response.operation_id!r}, "
                f"expected {self.operation_id!r}"
            )
        if response.response_id in self._seen:
            self._engine.metrics.duplicate_responses_total.inc()
            return
        self._seen.add(response.response_id)
        if self._state is not RunState.STREAMING:
            self._transition(RunState.STREAMING)

        body = response.body
        codec = self._engine.codec
        if isinstance(body, wire.ArrowBatchBody):
            _, record_batches = decode_batches(body.data, body.row_count)
            self.response_cursor = response.response_id
            for record_batch in record_batches:
                yield self._deliver(record_batch)
            return
        if isinstance(body, wire.SchemaBody):
            self.schema = codec.decode_schema(body.schema)
        elif isinstance(body, wire.MetricsBody):
            self.metrics.extend(body.metrics)
        elif isinstance(body, wire.SqlCommandResultBody):
            self.sql_command_result = codec.decode(body.relation)
        elif isinstance(body, wire.ResultCompleteBody):
            self._result_complete = True
        elif isinstance(body, wire.ErrorBody):
            raise server_error(body)
        else:
            raise ProtocolError(f"Unexpected response body: {type(body).__name__}")
        self.response_cursor = response.response_id

    def _deliver(self, record_batch: pa.RecordBatch) -> ResultBatch:
        metrics = self._engine.metrics
        if not self._first_batch_seen and self._started_at is not None:
            self._first_batch_seen = True
            metrics.time_to_first_batch_seconds.observe(time.monotonic() - self._started_at)
        schema = self.schema or from_arrow_schema(record_batch.schema)
        batch = ResultBatch(schema=schema, record_batch=record_batch, sequence=self._sequence)
        self._sequence += 1
        metrics.batches_received_total.inc()
        metrics.rows_received_total.inc(record_batch.num_rows)
        return batch

    def __repr__(self) -> str:
        return f"ExecutionRun(operation_id={self.operation_id!r}, state={self._state.name})"


class ExecutionEngine:
    """Submits plans for a session over a transport.

    Example:
        >>> engine = ExecutionEngine(session, transport)
        >>> table = await engine.execute(plan).to_table()
    """

    def __init__(
        self,
        session: Session,
        transport: Transport,
        codec: PlanCodec | None = None,
        retry_policy: RetryPolicy | None = None,
        execution_config: ExecutionConfig | None = None,
        local_executor: LocalExecutor | None = None,
        metrics: MetricsRegistry | None = None,
    ) -> None:
        self.session = session
        self.transport = transport
        self.codec = codec or PlanCodec()
        self.retry_policy = retry_policy or RetryPolicy()
        self.config = execution_config or ExecutionConfig()
        self.local_executor = local_executor
        self.metrics = metrics or get_metrics()
        # Runs that were submitted but not finished; dropped runs fall out
        self._active: weakref.WeakValueDictionary[str, ExecutionRun] = weakref.WeakValueDictionary()

    def execute(self, plan: Relation | Command) -> ExecutionRun:
        """Prepare a run for the plan.

        The plan is encoded immediately, so unrepresentable values fail
        here, but nothing is sent until the run is iterated.

        Raises:
            UnsupportedType: If the plan cannot be encoded.
        """
        plan_msg = self.codec.encode_plan(plan)
        snapshot = self.session.snapshot_context()
        operation_id = self.session.next_operation_id()
        request = wire.ExecutePlanRequest(
            session_id=snapshot.session_id,
            operation_id=operation_id,
            user_context=snapshot.user_context.to_wire(),
            plan=plan_msg,
            client_type=self.config.client_type,
            tags=snapshot.tags,
            config=dict(snapshot.config),
            reattachable=self.config.reattachable,
        )
        run = ExecutionRun(self, plan, operation_id, request, snapshot)
        self._active[operation_id] = run
        logger.debug("run_created", operation_id=operation_id, plan=plan.node_name)
        return run

    @property
    def active_runs(self) -> tuple[ExecutionRun, ...]:
        return tuple(self._active.values())

    def _try_local(self, plan: Relation | Command) -> pa.Table | None:
        if self.local_executor is None or not isinstance(plan, Relation):
            return None
        return self.local_executor.try_execute(plan)

    def _run_finished(self, run: ExecutionRun) -> None:
        self._active.pop(run.operation_id, None)
        self.metrics.runs_total.labels(state=run.state.name.lower()).inc()

    def _context_fields(self, snapshot: ContextSnapshot) -> dict[str, Any]:
        return {
            "session_id": snapshot.session_id,
            "user_context": snapshot.user_context.to_wire(),
            "client_type": self.config.client_type,
        }

    def get_run(self, operation_id: str) -> ExecutionRun | None:
        """The unfinished run with this id, or None."""
        return self._active.get(operation_id)

    async def _release_all(self, run: ExecutionRun) -> None:
        """Best-effort release of every buffered response of a finished run."""
        if not run.reattachable or not self.config.release_on_complete:
            return
        await self._release(run)

    async def _release(self, run: ExecutionRun, until_response_id: str | None = None) -> None:
        """Let the server drop buffered responses; up to ``until_response_id`` if given."""
        request = wire.ReleaseExecuteRequest(
            operation_id=run.operation_id,
            until_response_id=until_response_id,
            **self._context_fields(run._snapshot),
        )
        started = time.monotonic()
        try:
            await self.transport.release_execute(request)
        except ConnectError as e:
            logger.warning(
                "release_failed",
                operation_id=run.operation_id,
                until=until_response_id,
                error=str(e),
            )
        finally:
            self.metrics.rpc_latency_seconds.labels(rpc="release").observe(
                time.monotonic() - started
            )

    async def _interrupt_operation(
        self, snapshot: ContextSnapshot, operation_id: str, log: Any
    ) -> None:
        request = wire.InterruptRequest(
            interrupt_type="operation_id",
            operation_id=operation_id,
            **self._context_fields(snapshot),
        )
        try:
            await self.transport.interrupt(request)
        except ConnectError as e:
            log.warning("interrupt_failed", error=str(e))

    async def interrupt(
        self, interrupt_type: str, operation_tag: str | None = None, operation_id: str | None = None
    ) -> tuple[str, ...]:
        """Ask the server to interrupt operations; returns the interrupted ids.

        Args:
            interrupt_type: "all", "tag" or "operation_id".
        """
        if interrupt_type not in ("all", "tag", "operation_id"):
            raise ValueError(f"Unknown interrupt type: {interrupt_type!r}")
        if interrupt_type == "tag" and not operation_tag:
            raise ValueError("A tag interrupt needs operation_tag")
        if interrupt_type == "operation_id" and not operation_id:
            raise ValueError("An operation_id interrupt needs operation_id")
        request = wire.InterruptRequest(
            interrupt_type=interrupt_type,
            operation_tag=operation_tag,
            operation_id=operation_id,
            **self._context_fields(self.session.snapshot_context()),
        )
        started = time.monotonic()
        try:
            response = await self.retry_policy.call(
                lambda: self.transport.interrupt(request), rpc="interrupt"
            )
        finally:
            self.metrics.rpc_latency_seconds.labels(rpc="interrupt").observe(
                time.monotonic() - started
            )
        logger.info("interrupted", interrupt_type=interrupt_type, ids=list(response.interrupted_ids))
        return response.interrupted_ids
