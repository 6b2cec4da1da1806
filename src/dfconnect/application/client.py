"""Connect client - unified entry point.

The ConnectClient wires a session, a transport, the execution engine and
the schema resolver together, and hands out DataFrames bound to itself.

Usage:
    from dfconnect import ConnectClient, col

    async with ConnectClient.from_connection_string("sc://localhost:15002") as client:
        df = client.table("people").filter(col("age") > 21).select("name")
        rows = await df.collect()
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any

import pyarrow as pa

from dfconnect.adapters.inbound.dataframe import DataFrame
from dfconnect.adapters.inbound.functions import lit
from dfconnect.adapters.outbound.arrow_codec import encode_table, from_arrow_schema, to_arrow_schema
from dfconnect.adapters.outbound.grpc_transport import GrpcTransport
from dfconnect.adapters.outbound.local_executor import LocalRelationExecutor
from dfconnect.adapters.outbound.plan_codec import PlanCodec
from dfconnect.application.execution_engine import ExecutionEngine, ExecutionRun
from dfconnect.application.retry import RetryPolicy
from dfconnect.application.schema_resolver import SchemaResolver
from dfconnect.application.server_config import ServerConfig
from dfconnect.application.session import Session, UserContext
from dfconnect.domain.entities.expressions import Literal
from dfconnect.domain.entities.relations import Command, Relation, SqlCommand
from dfconnect.domain.errors import ConnectError
from dfconnect.domain.services.plan_builder import PlanBuilder
from dfconnect.domain.value_objects.data_types import StructType
from dfconnect.infrastructure.config import Config, get_config
from dfconnect.infrastructure.logging import get_logger
from dfconnect.infrastructure.metrics import MetricsRegistry, get_metrics
from dfconnect.ports.outbound.local_executor import LocalExecutor
from dfconnect.ports.outbound.transport import Transport

logger = get_logger(__name__)

_DEFAULT_LOCAL_EXECUTOR = object()


def _literal(value: Any) -> Literal:
    return value if isinstance(value, Literal) else lit(value).expr


class ConnectClient:
    """Client for the remote execution service.

    The client owns one session and one transport; every DataFrame it
    creates submits through them. Use it as an async context manager, or
    call ``close()`` when done.

    Thread Safety:
        Session state (config, tags) may be changed from any thread. Runs
        must be consumed on the event loop that created the transport.
    """

    def __init__(
        self,
        config: Config | None = None,
        transport: Transport | None = None,
        session: Session | None = None,
        local_executor: LocalExecutor | None | object = _DEFAULT_LOCAL_EXECUTOR,
        retry_policy: RetryPolicy | None = None,
        metrics: MetricsRegistry | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            config: Client configuration (defaults to the environment).
            transport: Transport to use; a GrpcTransport to the configured
                service by default.
            session: Session to use; created from the connection config by default.
            local_executor: In-process executor consulted before the server;
                pass None to always go to the server.
            retry_policy: Retry policy; built from ``config.retry`` by default.
            metrics: Metrics registry; the global one by default.
        """
        self.config = config or get_config()
        connection = self.config.connection
        self.session = session or Session(
            session_id=connection.session_id,
            user_context=UserContext(user_id=connection.user_id, user_name=connection.user_name),
        )
        self.transport = transport or GrpcTransport(connection, self.config.transport)
        if local_executor is _DEFAULT_LOCAL_EXECUTOR:
            local_executor = LocalRelationExecutor()
        self.metrics = metrics or get_metrics()
        self.codec = PlanCodec()
        self.retry_policy = retry_policy or RetryPolicy.from_config(self.config.retry)
        self.builder = PlanBuilder(self.session)
        self.engine = ExecutionEngine(
            self.session,
            self.transport,
            codec=self.codec,
            retry_policy=self.retry_policy,
            execution_config=self.config.execution,
            local_executor=local_executor,  # type: ignore[arg-type]
            metrics=self.metrics,
        )
        self.analyzer = SchemaResolver(
            self.session,
            self.transport,
            codec=self.codec,
            retry_policy=self.retry_policy,
            client_type=self.config.execution.client_type,
            metrics=self.metrics,
        )
        self.conf = ServerConfig(
            self.session,
            self.transport,
            retry_policy=self.retry_policy,
            client_type=self.config.execution.client_type,
            metrics=self.metrics,
        )
        self._closed = False

    @classmethod
    def from_connection_string(
        cls, url: str, config: Config | None = None, **kwargs: Any
    ) -> ConnectClient:
        """Create a client for ``sc://host:port/;key=value`` style URLs."""
        config = (config or get_config()).with_connection_string(url)
        return cls(config=config, **kwargs)

    async def __aenter__(self) -> ConnectClient:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    @property
    def session_id(self) -> str:
        return self.session.session_id

    # DataFrame sources

    def table(self, name: str, options: Mapping[str, str] | None = None) -> DataFrame:
        return DataFrame(self, self.builder.read_table(name, options))

    def read(
        self,
        data_format: str,
        *paths: str,
        schema: StructType | None = None,
        **options: str,
    ) -> DataFrame:
        return DataFrame(
            self, self.builder.read_data_source(data_format, paths, options, schema)
        )

    def sql(
        self,
        query: str,
        args: Mapping[str, Any] | Sequence[Any] | None = None,
    ) -> DataFrame:
        """A DataFrame over SQL text. ``args`` binds named (mapping) or positional parameters."""
        if isinstance(args, Mapping):
            plan = self.builder.sql(query, {k: _literal(v) for k, v in args.items()})
        else:
            plan = self.builder.sql(query, pos_args=[_literal(v) for v in (args or ())])
        return DataFrame(self, plan)

    def range(
        self,
        start: int,
        end: int | None = None,
        step: int = 1,
        num_partitions: int | None = None,
    ) -> DataFrame:
        return DataFrame(self, self.builder.range(start, end, step, num_partitions))

    def create_dataframe(
        self,
        data: pa.Table | pa.RecordBatch | Sequence[Mapping[str, Any]] | Mapping[str, Sequence[Any]],
        schema: StructType | None = None,
    ) -> DataFrame:
        """A DataFrame over inline data, shipped with the plan as Arrow IPC.

        Args:
            data: An Arrow table or batch, a list of row dicts, or a dict of columns.
            schema: Optional schema; inferred from the data when omitted.
        """
        arrow_schema = to_arrow_schema(schema) if schema is not None else None
        if isinstance(data, pa.RecordBatch):
            table = pa.Table.from_batches([data])
        elif isinstance(data, pa.Table):
            table = data
        elif isinstance(data, Mapping):
            table = pa.table(dict(data), schema=arrow_schema)
        else:
            table = pa.Table.from_pylist(list(data), schema=arrow_schema)
        if arrow_schema is not None and table.schema != arrow_schema:
            table = table.cast(arrow_schema)
        plan = self.builder.local_relation(
            data=encode_table(table), schema=schema or from_arrow_schema(table.schema)
        )
        return DataFrame(self, plan)

    # Execution

    def execute(self, plan: Relation | Command) -> ExecutionRun:
        self._check_open()
        return self.engine.execute(plan)

    async def run_command(self, command: Command) -> ExecutionRun:
        """Execute a command plan to completion and return the finished run."""
        run = self.execute(command)
        async for _ in run:
            pass
        return run

    async def sql_command(self, sql: str, args: Mapping[str, Any] | None = None) -> DataFrame | None:
        """Run SQL eagerly as a command. Returns a DataFrame over its result relation, if any."""
        command = SqlCommand(sql=sql, args={k: _literal(v) for k, v in (args or {}).items()})
        run = await self.run_command(command)
        if run.sql_command_result is None:
            return None
        return DataFrame(self, run.sql_command_result)

    async def analyze(self, plan: Relation | Command) -> StructType:
        """Resolve the output schema of a plan without running it."""
        self._check_open()
        return await self.analyzer.resolve(plan)

    async def server_version(self) -> str:
        self._check_open()
        return await self.analyzer.server_version()

    async def cancel(self, run: ExecutionRun | str) -> None:
        """Cancel a run, given the run or its operation id.

        A no-op for ids of runs that already finished or were never
        submitted through this client.
        """
        if isinstance(run, str):
            found = self.engine.get_run(run)
            if found is None:
                logger.debug("cancel_unknown_operation", operation_id=run)
                return
            run = found
        await run.cancel()

    async def interrupt_all(self) -> tuple[str, ...]:
        return await self.engine.interrupt("all")

    async def interrupt_tag(self, tag: str) -> tuple[str, ...]:
        return await self.engine.interrupt("tag", operation_tag=tag)

    async def interrupt_operation(self, operation_id: str) -> tuple[str, ...]:
        return await self.engine.interrupt("operation_id", operation_id=operation_id)

    # Session state

    # Client-side config is sent with every request; ``conf`` reaches the
    # configuration the server keeps for the session.

    def set_config(self, key: str, value: Any) -> None:
        self.session.with_config(key, value)

    def unset_config(self, key: str) -> None:
        self.session.unset_config(key)

    def get_config(self, key: str, default: str | None = None) -> str | None:
        return self.session.get_config(key, default)

    def add_tag(self, tag: str) -> None:
        self.session.add_tag(tag)

    def remove_tag(self, tag: str) -> None:
        self.session.remove_tag(tag)

    def clear_tags(self) -> None:
        self.session.clear_tags()

    @property
    def tags(self) -> tuple[str, ...]:
        return self.session.tags

    # Lifecycle

    def _check_open(self) -> None:
        if self._closed:
            raise RuntimeError("Client is closed")

    async def close(self) -> None:
        """Cancel unfinished runs and close the transport. Idempotent."""
        if self._closed:
            return
        self._closed = True
        for run in self.engine.active_runs:
            try:
                await run.cancel()
            except ConnectError as e:
                logger.warning("cancel_on_close_failed", operation_id=run.operation_id, error=str(e))
        await self.transport.close()
        logger.debug("client_closed", session_id=self.session.session_id)
