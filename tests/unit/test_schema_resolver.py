"""Unit tests for SchemaResolver."""

from __future__ import annotations

import pytest

from dfconnect.adapters.outbound.in_memory_transport import InMemoryTransport, analysis_error
from dfconnect.adapters.outbound.plan_codec import PlanCodec
from dfconnect.application.retry import RetryPolicy
from dfconnect.application.schema_resolver import SchemaResolver
from dfconnect.application.session import Session
from dfconnect.domain.errors import PlanAnalysisError, ProtocolError, TransportError
from dfconnect.domain.services.plan_builder import PlanBuilder
from dfconnect.domain.value_objects.data_types import INTEGER, LONG, StructField, StructType
from dfconnect.domain.value_objects import storage_level
from dfconnect.infrastructure.metrics import MetricsRegistry
from dfconnect.ports.outbound import wire

SCHEMA = StructType((StructField("id", LONG, False), StructField("age", INTEGER)))


def _answer(request: wire.AnalyzePlanRequest):
    """Minimal analyzer: answers each request kind with a fixed result."""
    analyze = request.analyze
    if isinstance(analyze, wire.SchemaAnalyze):
        return wire.SchemaResult(schema=PlanCodec().encode_data_type(SCHEMA))
    if isinstance(analyze, wire.ExplainAnalyze):
        return wire.ExplainResult(explain_string=f"== Physical Plan ({analyze.mode}) ==")
    if isinstance(analyze, wire.TreeStringAnalyze):
        return wire.TreeStringResult(tree_string=f"root (level={analyze.level})")
    if isinstance(analyze, wire.ServerVersionAnalyze):
        return wire.ServerVersionResult(version="3.5.1")
    if isinstance(analyze, wire.DdlParseAnalyze):
        return wire.DdlParseResult(parsed=PlanCodec().encode_data_type(SCHEMA))
    if isinstance(analyze, wire.InputFilesAnalyze):
        return wire.InputFilesResult(files=("s3://bucket/a.parquet",))
    return analysis_error(f"unsupported analysis {type(analyze).__name__}")


@pytest.fixture
def analyzer_transport() -> InMemoryTransport:
    return InMemoryTransport(analyze_handler=_answer)


@pytest.fixture
def resolver(
    session: Session,
    analyzer_transport: InMemoryTransport,
    retry_policy: RetryPolicy,
    metrics_registry: MetricsRegistry,
) -> SchemaResolver:
    return SchemaResolver(
        session,
        analyzer_transport,
        retry_policy=retry_policy,
        client_type="dfconnect-tests",
        metrics=metrics_registry,
    )


@pytest.fixture
def plan(session: Session):
    return PlanBuilder(session).read_table("people")


@pytest.mark.unit
class TestSchemaResolver:
    """Tests for SchemaResolver."""

    @pytest.mark.asyncio
    async def test_resolve(self, resolver, plan, analyzer_transport, session, sample_value) -> None:
        schema = await resolver.resolve(plan)

        assert schema == SCHEMA
        (request,) = analyzer_transport.requests
        assert request.session_id == session.session_id
        assert request.client_type == "dfconnect-tests"
        assert isinstance(request.analyze, wire.SchemaAnalyze)
        assert sample_value(
            "dfconnect_analyze_requests_total", {"kind": "schema", "status": "success"}
        ) == 1

    @pytest.mark.asyncio
    async def test_request_carries_session_config(
        self, resolver, plan, analyzer_transport, session
    ) -> None:
        session.with_config("spark.sql.caseSensitive", "true")

        await resolver.resolve(plan)

        assert analyzer_transport.requests[0].config == {"spark.sql.caseSensitive": "true"}

    @pytest.mark.asyncio
    async def test_explain_modes(self, resolver, plan) -> None:
        assert await resolver.explain(plan, "cost") == "== Physical Plan (cost) =="

        with pytest.raises(ValueError, match="Unknown explain mode"):
            await resolver.explain(plan, "verbose")

    @pytest.mark.asyncio
    async def test_tree_string_level(self, resolver, plan) -> None:
        assert await resolver.tree_string(plan, level=2) == "root (level=2)"

        with pytest.raises(ValueError):
            await resolver.tree_string(plan, level=0)

    @pytest.mark.asyncio
    async def test_other_analyses(self, resolver, plan) -> None:
        assert await resolver.server_version() == "3.5.1"
        assert await resolver.ddl_parse("id BIGINT NOT NULL, age INT") == SCHEMA
        assert await resolver.input_files(plan) == ["s3://bucket/a.parquet"]

    @pytest.mark.asyncio
    async def test_analysis_error_is_verbatim(self, session, retry_policy, metrics_registry, sample_value) -> None:
        message = "[UNRESOLVED_COLUMN] A column with name `nope` cannot be resolved."
        transport = InMemoryTransport(
            analyze_handler=lambda request: analysis_error(message, "UNRESOLVED_COLUMN")
        )
        resolver = SchemaResolver(session, transport, retry_policy=retry_policy, metrics=metrics_registry)

        with pytest.raises(PlanAnalysisError) as exc_info:
            await resolver.resolve(PlanBuilder(session).read_table("t"))

        assert exc_info.value.message == message
        assert exc_info.value.error_class == "UNRESOLVED_COLUMN"
        assert sample_value(
            "dfconnect_analyze_requests_total", {"kind": "schema", "status": "error"}
        ) == 1

    @pytest.mark.asyncio
    async def test_retryable_failure_is_retried(
        self, resolver, plan, analyzer_transport, sleep, sample_value
    ) -> None:
        analyzer_transport.fail_next(
            TransportError("reset", code="UNAVAILABLE", retryable=True), rpc="analyze"
        )

        assert await resolver.resolve(plan) == SCHEMA
        assert len(analyzer_transport.requests) == 2
        assert len(sleep.delays) == 1
        assert sample_value("dfconnect_retries_total", {"rpc": "analyze"}) == 1

    @pytest.mark.asyncio
    async def test_non_retryable_failure(self, resolver, plan, analyzer_transport) -> None:
        analyzer_transport.fail_next(TransportError("denied", code="UNAUTHENTICATED"), rpc="analyze")

        with pytest.raises(TransportError, match="denied"):
            await resolver.resolve(plan)
        assert len(analyzer_transport.requests) == 1

    @pytest.mark.asyncio
    async def test_session_mismatch(self, session, retry_policy, metrics_registry) -> None:
        transport = InMemoryTransport(
            analyze_handler=lambda request: wire.AnalyzePlanResponse(
                session_id="someone-else", result=wire.ServerVersionResult(version="3.5.1")
            )
        )
        resolver = SchemaResolver(session, transport, retry_policy=retry_policy, metrics=metrics_registry)

        with pytest.raises(ProtocolError, match="someone-else"):
            await resolver.server_version()

    @pytest.mark.asyncio
    async def test_wrong_result_type(self, session, retry_policy, metrics_registry) -> None:
        transport = InMemoryTransport(
            analyze_handler=lambda request: wire.ServerVersionResult(version="3.5.1")
        )
        resolver = SchemaResolver(session, transport, retry_policy=retry_policy, metrics=metrics_registry)

        with pytest.raises(ProtocolError, match="Expected SchemaResult"):
            await resolver.resolve(PlanBuilder(session).read_table("t"))

    @pytest.mark.asyncio
    async def test_storage_levels(self, resolver, plan, analyzer_transport, sample_value) -> None:
        assert await resolver.storage_level(plan) == storage_level.NONE

        await resolver.persist(plan, storage_level.DISK_ONLY)
        assert await resolver.storage_level(plan) == storage_level.DISK_ONLY

        await resolver.unpersist(plan, blocking=True)
        assert await resolver.storage_level(plan) == storage_level.NONE
        assert analyzer_transport.requests_of(wire.AnalyzePlanRequest)[3].analyze.blocking
        assert sample_value(
            "dfconnect_analyze_requests_total", {"kind": "persist", "status": "success"}
        ) == 1

    @pytest.mark.asyncio
    async def test_default_persist_level(self, resolver, plan) -> None:
        await resolver.persist(plan)

        assert await resolver.storage_level(plan) == storage_level.MEMORY_AND_DISK_DESER

    @pytest.mark.asyncio
    async def test_invalid_storage_level_from_server(
        self, session, retry_policy, metrics_registry
    ) -> None:
        transport = InMemoryTransport()
        resolver = SchemaResolver(session, transport, retry_policy=retry_policy, metrics=metrics_registry)
        relation = PlanBuilder(session).read_table("t")
        transport.persisted[wire.encode_message(resolver.codec.encode(relation))] = (
            wire.StorageLevelMsg(use_memory=True, replication=0)
        )

        with pytest.raises(ProtocolError, match="replication"):
            await resolver.storage_level(relation)
