"""Fixtures for integration tests: a catalog-backed service and a gRPC loopback."""

from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Any

import grpc
import pyarrow as pa
import pyarrow.compute as pc
import pytest
import pytest_asyncio

from dfconnect.adapters.outbound.arrow_codec import decode_table, from_arrow_schema
from dfconnect.adapters.outbound.grpc_transport import SERVICE_NAME
from dfconnect.adapters.outbound.in_memory_transport import (
    InMemoryTransport,
    analysis_error,
    result_bodies,
)
from dfconnect.adapters.outbound.plan_codec import PlanCodec
from dfconnect.domain.entities.expressions import (
    Alias,
    ColumnReference,
    Expression,
    Literal,
    UnresolvedFunction,
    UnresolvedStar,
)
from dfconnect.domain.entities.relations import (
    Filter,
    Limit,
    LocalRelation,
    Project,
    Read,
    Relation,
)
from dfconnect.domain.errors import TransportError
from dfconnect.ports.outbound import wire

_COMPARISONS = {
    ">": pc.greater,
    ">=": pc.greater_equal,
    "<": pc.less,
    "<=": pc.less_equal,
    "==": pc.equal,
    "!=": pc.not_equal,
}


class AnalysisFailure(Exception):
    def __init__(self, message: str, error_class: str) -> None:
        super().__init__(message)
        self.error_class = error_class


class CatalogService:
    """A toy query service over in-memory Arrow tables.

    Understands Read (by table name), LocalRelation, Filter with a simple
    comparison, Project of plain columns, and Limit. Enough to drive the
    client end to end with real plans and real results.
    """

    def __init__(self, tables: dict[str, pa.Table], max_rows_per_batch: int = 3) -> None:
        self.tables = tables
        self.max_rows_per_batch = max_rows_per_batch
        self.codec = PlanCodec()

    def execute(self, request: wire.ExecutePlanRequest) -> list[Any]:
        if isinstance(request.plan, wire.CommandPlanMsg):
            return [wire.ResultCompleteBody()]
        try:
            table = self.evaluate(self.codec.decode(request.plan.relation))
        except AnalysisFailure as e:
            return [analysis_error(str(e), e.error_class)]
        return result_bodies(table, self.max_rows_per_batch)

    def analyze(self, request: wire.AnalyzePlanRequest) -> Any:
        analyze = request.analyze
        if not isinstance(analyze, wire.SchemaAnalyze):
            return analysis_error(f"Unsupported analysis: {type(analyze).__name__}")
        try:
            table = self.evaluate(self.codec.decode(analyze.plan.relation))
        except AnalysisFailure as e:
            return analysis_error(str(e), e.error_class)
        return wire.SchemaResult(schema=self.codec.encode_data_type(from_arrow_schema(table.schema)))

    def evaluate(self, relation: Relation) -> pa.Table:
        if isinstance(relation, Read):
            if relation.table_name not in self.tables:
                raise AnalysisFailure(
                    f"[TABLE_OR_VIEW_NOT_FOUND] The table or view `{relation.table_name}` "
                    "cannot be found.",
                    "TABLE_OR_VIEW_NOT_FOUND",
                )
            return self.tables[relation.table_name]
        if isinstance(relation, LocalRelation):
            return decode_table(relation.data)
        if isinstance(relation, Filter):
            table = self.evaluate(relation.input)
            return table.filter(self._predicate(table, relation.condition))
        if isinstance(relation, Project):
            table = self.evaluate(relation.input)
            return self._project(table, relation.expressions)
        if isinstance(relation, Limit):
            return self.evaluate(relation.input).slice(0, relation.limit)
        raise AnalysisFailure(f"Unsupported relation {relation.node_name}", "UNSUPPORTED")

    def _column(self, table: pa.Table, ref: ColumnReference) -> pa.ChunkedArray:
        if ref.path not in table.column_names:
            raise AnalysisFailure(
                f"[UNRESOLVED_COLUMN] A column with name `{ref.path}` cannot be resolved.",
                "UNRESOLVED_COLUMN",
            )
        return table.column(ref.path)

    def _predicate(self, table: pa.Table, condition: Expression) -> pa.ChunkedArray:
        if not (
            isinstance(condition, UnresolvedFunction)
            and condition.name in _COMPARISONS
            and isinstance(condition.arguments[0], ColumnReference)
            and isinstance(condition.arguments[1], Literal)
        ):
            raise AnalysisFailure(f"Unsupported condition {condition}", "UNSUPPORTED")
        column = self._column(table, condition.arguments[0])
        return _COMPARISONS[condition.name](column, condition.arguments[1].value)

    def _project(self, table: pa.Table, expressions: tuple[Expression, ...]) -> pa.Table:
        columns: dict[str, pa.ChunkedArray] = {}
        for expr in expressions:
            if isinstance(expr, UnresolvedStar):
                columns.update(zip(table.column_names, table.columns))
                continue
            name = None
            if isinstance(expr, Alias):
                name, expr = expr.name, expr.expr
            if not isinstance(expr, ColumnReference):
                raise AnalysisFailure(f"Unsupported expression {expr}", "UNSUPPORTED")
            columns[name or expr.path] = self._column(table, expr)
        return pa.table(columns)


@pytest.fixture
def catalog(people: pa.Table) -> CatalogService:
    return CatalogService({"people": people})


@pytest.fixture
def catalog_transport(catalog: CatalogService) -> InMemoryTransport:
    return InMemoryTransport(catalog.execute, catalog.analyze)


class LoopbackServer:
    """gRPC server exposing an InMemoryTransport as the remote service."""

    def __init__(self, backend: InMemoryTransport) -> None:
        self.backend = backend
        self.metadata: list[dict[str, str]] = []
        self.server = grpc.aio.server()
        handlers = {
            "ExecutePlan": grpc.unary_stream_rpc_method_handler(self._execute),
            "ReattachExecute": grpc.unary_stream_rpc_method_handler(self._reattach),
            "AnalyzePlan": grpc.unary_unary_rpc_method_handler(self._analyze),
            "ReleaseExecute": grpc.unary_unary_rpc_method_handler(self._release),
            "Interrupt": grpc.unary_unary_rpc_method_handler(self._interrupt),
            "Config": grpc.unary_unary_rpc_method_handler(self._config),
        }
        self.server.add_generic_rpc_handlers(
            (grpc.method_handlers_generic_handler(SERVICE_NAME, handlers),)
        )
        self.port = self.server.add_insecure_port("127.0.0.1:0")

    def _record(self, context: grpc.aio.ServicerContext) -> None:
        self.metadata.append({key: value for key, value in context.invocation_metadata()})

    async def _stream(
        self, request: Any, context: grpc.aio.ServicerContext
    ) -> AsyncIterator[bytes]:
        self._record(context)
        try:
            async for response in self.backend.send_stream(request):
                yield wire.encode_message(response)
        except TransportError as e:
            await context.abort(grpc.StatusCode[e.code], str(e))

    # grpc.aio streams only from async generator functions
    async def _execute(self, data: bytes, context: grpc.aio.ServicerContext) -> AsyncIterator[bytes]:
        request = wire.decode_message(data, wire.ExecutePlanRequest)
        async for chunk in self._stream(request, context):
            yield chunk

    async def _reattach(
        self, data: bytes, context: grpc.aio.ServicerContext
    ) -> AsyncIterator[bytes]:
        request = wire.decode_message(data, wire.ReattachExecuteRequest)
        async for chunk in self._stream(request, context):
            yield chunk

    async def _analyze(self, data: bytes, context: grpc.aio.ServicerContext) -> bytes:
        self._record(context)
        request = wire.decode_message(data, wire.AnalyzePlanRequest)
        return wire.encode_message(await self.backend.analyze_plan(request))

    async def _release(self, data: bytes, context: grpc.aio.ServicerContext) -> bytes:
        request = wire.decode_message(data, wire.ReleaseExecuteRequest)
        return wire.encode_message(await self.backend.release_execute(request))

    async def _interrupt(self, data: bytes, context: grpc.aio.ServicerContext) -> bytes:
        request = wire.decode_message(data, wire.InterruptRequest)
        return wire.encode_message(await self.backend.interrupt(request))

    async def _config(self, data: bytes, context: grpc.aio.ServicerContext) -> bytes:
        request = wire.decode_message(data, wire.ConfigRequest)
        return wire.encode_message(await self.backend.config(request))


@pytest_asyncio.fixture
async def loopback(catalog_transport: InMemoryTransport) -> AsyncIterator[LoopbackServer]:
    server = LoopbackServer(catalog_transport)
    await server.server.start()
    yield server
    await server.server.stop(None)
