"""Unit tests for ConnectClient."""

from __future__ import annotations

import datetime as dt

import pyarrow as pa
import pytest

from dfconnect.adapters.outbound.grpc_transport import GrpcTransport
from dfconnect.adapters.outbound.in_memory_transport import InMemoryTransport, result_bodies
from dfconnect.adapters.outbound.plan_codec import PlanCodec
from dfconnect.application.client import ConnectClient
from dfconnect.domain.entities.expressions import Literal
from dfconnect.domain.entities.relations import SQL, LocalRelation, Range, Read
from dfconnect.domain.errors import PlanAnalysisError
from dfconnect.domain.value_objects.data_types import DATE, INTEGER, LONG, STRING, StructField, StructType
from dfconnect.domain.value_objects.run_state import RunState
from dfconnect.infrastructure.config import Config, ExecutionConfig
from dfconnect.ports.outbound import wire


@pytest.mark.unit
class TestConnectClient:
    """Tests for ConnectClient."""

    def test_from_connection_string(self, metrics_registry) -> None:
        client = ConnectClient.from_connection_string(
            "sc://spark.internal:443/;token=abc;user_id=alice;x-tenant=acme",
            config=Config(),
            metrics=metrics_registry,
        )

        assert isinstance(client.transport, GrpcTransport)
        assert client.config.connection.target == "spark.internal:443"
        assert client.config.connection.headers == {"x-tenant": "acme"}
        assert client.session.user_context.user_id == "alice"

    def test_session_id_from_connection_string(self, metrics_registry) -> None:
        sid = "6a4b8c3e-1d2f-4e5a-9b7c-0d1e2f3a4b5c"

        client = ConnectClient.from_connection_string(
            f"sc://localhost/;session_id={sid}", config=Config(), metrics=metrics_registry
        )

        assert client.session_id == sid

    def test_sources(self, client) -> None:
        assert isinstance(client.table("people").plan, Read)
        assert client.read("parquet", "/data/a", "/data/b", mergeSchema="true").plan.paths == (
            "/data/a",
            "/data/b",
        )

    def test_range(self, client) -> None:
        plan = client.range(2, 20, 3, num_partitions=4).plan

        assert isinstance(plan, Range)
        assert (plan.start, plan.end, plan.step, plan.num_partitions) == (2, 20, 3, 4)

    def test_sql_named_args(self, client) -> None:
        plan = client.sql("SELECT * FROM t WHERE id = :id AND name = :n", {"n": "ann", "id": 1}).plan

        assert isinstance(plan, SQL)
        assert plan.args == (("id", Literal(1, INTEGER)), ("n", Literal("ann", STRING)))

    def test_sql_positional_args(self, client) -> None:
        plan = client.sql("SELECT ? + ?", [1, Literal(2, LONG)]).plan

        assert plan.pos_args == (Literal(1, INTEGER), Literal(2, LONG))

    def test_create_dataframe_from_rows(self, client) -> None:
        df = client.create_dataframe([{"id": 1, "name": "ann"}, {"id": 2, "name": "bob"}])

        assert isinstance(df.plan, LocalRelation)
        assert df.plan.schema.names == ("id", "name")

    def test_create_dataframe_with_schema(self, client) -> None:
        schema = StructType((StructField("id", INTEGER), StructField("name", STRING)))

        df = client.create_dataframe({"id": [1], "name": ["ann"]}, schema=schema)

        assert df.plan.schema == schema

    @pytest.mark.asyncio
    async def test_create_dataframe_runs_locally(self, client, transport, people) -> None:
        df = client.create_dataframe(people).limit(2)

        table = await df.to_arrow()

        assert table.equals(people.slice(0, 2))
        assert transport.requests == []

    @pytest.mark.asyncio
    async def test_inline_data_goes_remote_without_local_executor(
        self, test_config, session, retry_policy, metrics_registry, people
    ) -> None:
        transport = InMemoryTransport(lambda request: result_bodies(people))
        client = ConnectClient(
            config=test_config,
            transport=transport,
            session=session,
            local_executor=None,
            retry_policy=retry_policy,
            metrics=metrics_registry,
        )

        await client.create_dataframe(people).to_arrow()

        (request,) = transport.requests_of(wire.ExecutePlanRequest)
        assert isinstance(request.plan.relation, wire.LocalRelationMsg)
        assert request.client_type == "dfconnect-tests"

    @pytest.mark.asyncio
    async def test_sql_command_returns_result_frame(
        self, test_config, session, retry_policy, metrics_registry
    ) -> None:
        codec = PlanCodec()

        def handler(request: wire.ExecutePlanRequest) -> list:
            result = client.builder.sql("SELECT * FROM v")
            return [wire.SqlCommandResultBody(relation=codec.encode(result)), wire.ResultCompleteBody()]

        transport = InMemoryTransport(handler)
        client = ConnectClient(
            config=test_config,
            transport=transport,
            session=session,
            retry_policy=retry_policy,
            metrics=metrics_registry,
        )

        df = await client.sql_command(
            "CREATE TEMP VIEW v AS SELECT :d", {"d": Literal(dt.date(1970, 1, 11), DATE)}
        )

        assert isinstance(df.plan, SQL)
        assert df.plan.query == "SELECT * FROM v"
        command = transport.requests[0].plan.command
        assert isinstance(command, wire.SqlCommandMsg)
        assert command.args["d"].value == 10

    @pytest.mark.asyncio
    async def test_sql_command_without_result(
        self, test_config, session, retry_policy, metrics_registry
    ) -> None:
        client = ConnectClient(
            config=test_config,
            transport=InMemoryTransport(),
            session=session,
            retry_policy=retry_policy,
            metrics=metrics_registry,
        )

        assert await client.sql_command("SET spark.sql.ansi.enabled = true") is None

    @pytest.mark.asyncio
    async def test_session_state_passthrough(self, client, transport) -> None:
        client.set_config("spark.sql.shuffle.partitions", 4)
        client.add_tag("nightly")

        await client.table("people").to_arrow()

        (request,) = transport.requests_of(wire.ExecutePlanRequest)
        assert request.config == {"spark.sql.shuffle.partitions": "4"}
        assert request.tags == ("nightly",)
        assert client.get_config("spark.sql.shuffle.partitions") == "4"
        client.unset_config("spark.sql.shuffle.partitions")
        client.remove_tag("nightly")
        assert client.get_config("spark.sql.shuffle.partitions") is None
        assert client.tags == ()

    @pytest.mark.asyncio
    async def test_interrupt_all(
        self, test_config, transport, session, retry_policy, metrics_registry
    ) -> None:
        config = test_config.model_copy(
            update={"execution": ExecutionConfig(release_on_complete=False)}
        )
        client = ConnectClient(
            config=config,
            transport=transport,
            session=session,
            retry_policy=retry_policy,
            metrics=metrics_registry,
        )
        run = client.table("people").execute()
        await run.to_table()

        assert await client.interrupt_all() == (run.operation_id,)
        assert await client.interrupt_operation(run.operation_id) == ()

    @pytest.mark.asyncio
    async def test_close_cancels_active_runs(self, client, transport) -> None:
        transport.fail_next(hang=True, after=2, rpc="execute")
        run = client.table("people").execute()
        iterator = run.__aiter__()
        await iterator.__anext__()

        await client.close()
        await client.close()

        assert run.state is RunState.CANCELLED
        assert transport.closed
        assert len(transport.requests_of(wire.InterruptRequest)) == 1
        with pytest.raises(RuntimeError, match="closed"):
            client.table("people").execute()
        await iterator.aclose()

    @pytest.mark.asyncio
    async def test_context_manager(self, test_config, session, retry_policy, metrics_registry) -> None:
        transport = InMemoryTransport()

        async with ConnectClient(
            config=test_config,
            transport=transport,
            session=session,
            retry_policy=retry_policy,
            metrics=metrics_registry,
        ) as client:
            assert client.session_id == session.session_id

        assert transport.closed

    def test_dataframe_columns_shape(self, client) -> None:
        df = client.create_dataframe(pa.table({"a": [1]}))

        assert df.plan.schema == StructType((StructField("a", LONG),))

    @pytest.mark.asyncio
    async def test_analyze_and_server_version(
        self, test_config, session, retry_policy, metrics_registry
    ) -> None:
        codec = PlanCodec()
        schema = StructType((StructField("id", LONG, nullable=False),))

        def answer(request: wire.AnalyzePlanRequest):
            if isinstance(request.analyze, wire.ServerVersionAnalyze):
                return wire.ServerVersionResult(version="3.5.1")
            return wire.SchemaResult(schema=codec.encode_data_type(schema))

        client = ConnectClient(
            config=test_config,
            transport=InMemoryTransport(analyze_handler=answer),
            session=session,
            retry_policy=retry_policy,
            metrics=metrics_registry,
        )

        assert await client.analyze(client.table("people").plan) == schema
        assert await client.server_version() == "3.5.1"

    @pytest.mark.asyncio
    async def test_cancel_by_operation_id(self, client, transport) -> None:
        transport.fail_next(hang=True, after=2, rpc="execute")
        run = client.table("people").execute()
        iterator = run.__aiter__()
        await iterator.__anext__()

        await client.cancel(run.operation_id)
        await client.cancel(run.operation_id)
        await client.cancel("op-99999999")

        assert run.state is RunState.CANCELLED
        (interrupt,) = transport.requests_of(wire.InterruptRequest)
        assert interrupt.operation_id == run.operation_id
        await iterator.aclose()

    @pytest.mark.asyncio
    async def test_server_config(self, test_config, session, retry_policy, metrics_registry) -> None:
        transport = InMemoryTransport(
            server_config={"spark.sql.warehouse.dir": "/data"},
            static_config_keys=frozenset({"spark.sql.warehouse.dir"}),
        )
        client = ConnectClient(
            config=test_config,
            transport=transport,
            session=session,
            retry_policy=retry_policy,
            metrics=metrics_registry,
        )

        await client.conf.set({"spark.sql.ansi.enabled": True, "spark.sql.shuffle.partitions": 8})

        assert await client.conf.get("spark.sql.ansi.enabled") == "true"
        assert await client.conf.get("spark.missing", "fallback") == "fallback"
        assert await client.conf.get_option("spark.missing") is None
        assert await client.conf.get_all("spark.sql.s") == {"spark.sql.shuffle.partitions": "8"}
        assert not await client.conf.is_modifiable("spark.sql.warehouse.dir")
        with pytest.raises(PlanAnalysisError, match="CANNOT_MODIFY_CONFIG"):
            await client.conf.set({"spark.sql.warehouse.dir": "/tmp"})
        await client.conf.unset("spark.sql.ansi.enabled")
        assert "spark.sql.ansi.enabled" not in transport.server_config
        # Server-side config is separate from the config sent with each request
        assert client.get_config("spark.sql.shuffle.partitions") is None

    @pytest.mark.asyncio
    async def test_server_config_errors(self, client) -> None:
        with pytest.raises(PlanAnalysisError, match="SQL_CONF_NOT_FOUND") as exc_info:
            await client.conf.get("spark.missing")

        assert exc_info.value.error_class == "SQL_CONF_NOT_FOUND"
