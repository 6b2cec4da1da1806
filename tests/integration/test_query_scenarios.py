"""End-to-end query scenarios against the catalog service."""

from __future__ import annotations

import asyncio

import pyarrow as pa
import pyarrow.compute as pc
import pytest

from dfconnect.adapters.inbound import functions as F
from dfconnect.application.client import ConnectClient
from dfconnect.domain.errors import Cancelled, PlanAnalysisError, TransportError, UnsupportedType
from dfconnect.domain.value_objects.data_types import INTEGER, LONG, STRING, StructField, StructType
from dfconnect.domain.value_objects.run_state import RunState
from dfconnect.ports.outbound import wire


@pytest.fixture
def client(test_config, catalog_transport, session, retry_policy, metrics_registry) -> ConnectClient:
    return ConnectClient(
        config=test_config,
        transport=catalog_transport,
        session=session,
        retry_policy=retry_policy,
        metrics=metrics_registry,
    )


def _adults(people: pa.Table) -> pa.Table:
    return people.filter(pc.greater(people.column("age"), 18)).select(["id", "name"])


@pytest.mark.integration
class TestQueryScenarios:
    """Client, engine and codec working against a real plan evaluator."""

    @pytest.mark.asyncio
    async def test_filter_and_project(self, client, catalog_transport, people, sample_value) -> None:
        run = client.table("people").filter(F.col("age") > 18).select("id", "name").execute()

        batches = [batch async for batch in run]

        assert [batch.row_count for batch in batches] == [3, 1]
        assert [batch.sequence for batch in batches] == [0, 1]
        assert pa.Table.from_batches([b.record_batch for b in batches]).equals(_adults(people))
        assert run.state is RunState.COMPLETE
        (release,) = catalog_transport.requests_of(wire.ReleaseExecuteRequest)
        assert release.operation_id == run.operation_id
        assert sample_value("dfconnect_rows_received_total") == 4

    @pytest.mark.asyncio
    async def test_schema(self, client) -> None:
        schema = await client.table("people").select("name", "age").schema()

        assert schema == StructType(
            (StructField("name", STRING), StructField("age", INTEGER))
        )

    @pytest.mark.asyncio
    async def test_missing_column_fails_analysis(self, client, catalog_transport) -> None:
        df = client.table("people").select("id", "salary")

        with pytest.raises(PlanAnalysisError, match="`salary`") as exc_info:
            await df.schema()

        assert exc_info.value.error_class == "UNRESOLVED_COLUMN"
        assert catalog_transport.requests_of(wire.ExecutePlanRequest) == []

    @pytest.mark.asyncio
    async def test_missing_table_fails_execution(self, client) -> None:
        run = client.table("staff").execute()

        with pytest.raises(PlanAnalysisError, match="`staff`"):
            await run.to_table()

        assert run.state is RunState.FAILED

    @pytest.mark.asyncio
    async def test_reattach_gives_identical_result(self, client, catalog_transport, people) -> None:
        df = client.table("people").filter(F.col("age") > 18).select("id", "name")
        catalog_transport.fail_next(
            TransportError("connection reset", code="UNAVAILABLE", retryable=True),
            after=2,
            rpc="execute",
        )

        table = await df.to_arrow()

        assert table.equals(_adults(people))
        (reattach,) = catalog_transport.requests_of(wire.ReattachExecuteRequest)
        (execute,) = catalog_transport.requests_of(wire.ExecutePlanRequest)
        assert reattach.operation_id == execute.operation_id
        assert reattach.last_response_id == f"{execute.operation_id}/1"

    @pytest.mark.asyncio
    async def test_cancel_mid_stream(self, client, catalog_transport) -> None:
        catalog_transport.fail_next(hang=True, after=2, rpc="execute")
        run = client.table("people").execute()
        consumer = asyncio.create_task(run.to_table())

        while run.state is RunState.PENDING:
            await asyncio.sleep(0)
        await client.cancel(run)

        with pytest.raises(Cancelled):
            await consumer
        (interrupt,) = catalog_transport.requests_of(wire.InterruptRequest)
        assert interrupt.operation_id == run.operation_id

    @pytest.mark.asyncio
    async def test_local_and_remote_agree(
        self, test_config, client, catalog, session, retry_policy, metrics_registry, people
    ) -> None:
        remote_transport = type(client.transport)(catalog.execute, catalog.analyze)
        remote = ConnectClient(
            config=test_config,
            transport=remote_transport,
            session=session,
            local_executor=None,
            retry_policy=retry_policy,
            metrics=metrics_registry,
        )

        local_table = await client.create_dataframe(people).select("name").limit(3).to_arrow()
        remote_table = await remote.create_dataframe(people).select("name").limit(3).to_arrow()

        assert local_table.equals(remote_table)
        assert client.transport.requests == []
        assert len(remote_transport.requests_of(wire.ExecutePlanRequest)) == 1

    @pytest.mark.asyncio
    async def test_unsupported_literal_fails_before_sending(self, client, catalog_transport) -> None:
        df = client.table("people").filter(F.col("age") > object())

        with pytest.raises(UnsupportedType) as exc_info:
            df.execute()

        assert exc_info.value.relation.startswith("Filter#")
        assert catalog_transport.requests == []

    @pytest.mark.asyncio
    async def test_concurrent_runs(self, client, people) -> None:
        runs = [client.table("people").limit(n).execute() for n in (1, 2, 5)]

        tables = await asyncio.gather(*(run.to_table() for run in runs))

        assert [t.num_rows for t in tables] == [1, 2, 5]
        assert len({run.operation_id for run in runs}) == 3
        assert all(run.state is RunState.COMPLETE for run in runs)
        assert client.engine.active_runs == ()

    @pytest.mark.asyncio
    async def test_create_dataframe_with_schema(self, client) -> None:
        df = client.create_dataframe({"n": [1, 2]}, schema=StructType((StructField("n", LONG),)))

        assert (await df.collect()) == [{"n": 1}, {"n": 2}]
