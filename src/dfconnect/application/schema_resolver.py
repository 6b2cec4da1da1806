"""Schema resolution and the other analysis requests.

Every call is one AnalyzePlan request/response. Retryable transport
failures are retried under the retry policy. A server-side analysis
failure surfaces as PlanAnalysisError with the server's message verbatim.
"""

from __future__ import annotations

import time
from typing import TypeVar

from dfconnect.adapters.outbound.plan_codec import PlanCodec
from dfconnect.application.execution_engine import server_error
from dfconnect.application.retry import RetryPolicy
from dfconnect.application.session import Session
from dfconnect.domain.entities.relations import Command, Relation
from dfconnect.domain.errors import ConnectError, ProtocolError
from dfconnect.domain.value_objects.data_types import DataType, StructType
from dfconnect.domain.value_objects.storage_level import StorageLevel
from dfconnect.infrastructure.logging import get_logger
from dfconnect.infrastructure.metrics import MetricsRegistry, get_metrics
from dfconnect.infrastructure.tracing import trace_span
from dfconnect.ports.outbound import wire
from dfconnect.ports.outbound.transport import Transport

logger = get_logger(__name__)

R = TypeVar("R")

EXPLAIN_MODES = ("simple", "extended", "codegen", "cost", "formatted")

Plan = Relation | Command


class SchemaResolver:
    """Answers analysis questions about plans without executing them.

    Example:
        >>> resolver = SchemaResolver(session, transport)
        >>> schema = await resolver.resolve(plan)
        >>> schema.names
        ('y',)
    """

    def __init__(
        self,
        session: Session,
        transport: Transport,
        codec: PlanCodec | None = None,
        retry_policy: RetryPolicy | None = None,
        client_type: str = "",
        metrics: MetricsRegistry | None = None,
    ) -> None:
        self.session = session
        self.transport = transport
        self.codec = codec or PlanCodec()
        self.retry_policy = retry_policy or RetryPolicy()
        self.client_type = client_type
        self.metrics = metrics or get_metrics()

    async def _analyze(self, analyze: wire.AnalyzeMsg, result_type: type[R]) -> R:
        kind = type(analyze).__struct_config__.tag
        snapshot = self.session.snapshot_context()
        request = wire.AnalyzePlanRequest(
            session_id=snapshot.session_id,
            user_context=snapshot.user_context.to_wire(),
            analyze=analyze,
            client_type=self.client_type,
            config=dict(snapshot.config),
        )
        attempts = 0

        async def attempt() -> wire.AnalyzePlanResponse:
            nonlocal attempts
            attempts += 1
            if attempts > 1:
                self.metrics.retries_total.labels(rpc="analyze").inc()
            return await self.transport.analyze_plan(request)

        started = time.monotonic()
        status = "error"
        with trace_span(
            "dfconnect.analyze_plan",
            {"dfconnect.session_id": snapshot.session_id, "dfconnect.analyze": kind},
        ):
            try:
                response = await self.retry_policy.call(attempt, rpc="analyze")
                if response.session_id != snapshot.session_id:
                    raise ProtocolError(
                        f"Analyze response for session {response.session_id!r}, "
                        f"expected {snapshot.session_id!r}"
                    )
                if response.error is not None:
                    raise server_error(response.error)
                if not isinstance(response.result, result_type):
                    raise ProtocolError(
                        f"Expected {result_type.__name__} for {kind} analysis, "
                        f"got {type(response.result).__name__}"
                    )
                status = "success"
                return response.result
            except ConnectError as e:
                logger.info("analyze_failed", kind=kind, error=str(e), error_type=type(e).__name__)
                raise
            finally:
                self.metrics.analyze_requests_total.labels(kind=kind, status=status).inc()
                self.metrics.rpc_latency_seconds.labels(rpc="analyze").observe(
                    time.monotonic() - started
                )

    async def resolve(self, plan: Plan) -> StructType:
        """Return the output schema of a plan.

        Raises:
            PlanAnalysisError: If the server rejects the plan (unknown
                column, missing table, ...).
        """
        result = await self._analyze(
            wire.SchemaAnalyze(plan=self.codec.encode_plan(plan)), wire.SchemaResult
        )
        return self.codec.decode_schema(result.schema)

    async def explain(self, plan: Plan, mode: str = "simple") -> str:
        if mode not in EXPLAIN_MODES:
            raise ValueError(f"Unknown explain mode {mode!r}; expected one of {EXPLAIN_MODES}")
        result = await self._analyze(
            wire.ExplainAnalyze(plan=self.codec.encode_plan(plan), mode=mode), wire.ExplainResult
        )
        return result.explain_string

    async def tree_string(self, plan: Plan, level: int | None = None) -> str:
        if level is not None and level < 1:
            raise ValueError(f"level must be positive, got {level}")
        result = await self._analyze(
            wire.TreeStringAnalyze(plan=self.codec.encode_plan(plan), level=level),
            wire.TreeStringResult,
        )
        return result.tree_string

    async def is_local(self, plan: Plan) -> bool:
        result = await self._analyze(
            wire.IsLocalAnalyze(plan=self.codec.encode_plan(plan)), wire.IsLocalResult
        )
        return result.is_local

    async def is_streaming(self, plan: Plan) -> bool:
        result = await self._analyze(
            wire.IsStreamingAnalyze(plan=self.codec.encode_plan(plan)), wire.IsStreamingResult
        )
        return result.is_streaming

    async def input_files(self, plan: Plan) -> list[str]:
        result = await self._analyze(
            wire.InputFilesAnalyze(plan=self.codec.encode_plan(plan)), wire.InputFilesResult
        )
        return list(result.files)

    async def server_version(self) -> str:
        result = await self._analyze(wire.ServerVersionAnalyze(), wire.ServerVersionResult)
        return result.version

    async def ddl_parse(self, ddl: str) -> DataType:
        """Parse a DDL type string (e.g. "a INT, b STRING") on the server."""
        result = await self._analyze(wire.DdlParseAnalyze(ddl=ddl), wire.DdlParseResult)
        return self.codec.decode_data_type(result.parsed)

    async def same_semantics(self, target: Plan, other: Plan) -> bool:
        result = await self._analyze(
            wire.SameSemanticsAnalyze(
                target=self.codec.encode_plan(target), other=self.codec.encode_plan(other)
            ),
            wire.SameSemanticsResult,
        )
        return result.result

    async def semantic_hash(self, plan: Plan) -> int:
        result = await self._analyze(
            wire.SemanticHashAnalyze(plan=self.codec.encode_plan(plan)), wire.SemanticHashResult
        )
        return result.result

    async def persist(self, relation: Relation, storage_level: StorageLevel | None = None) -> None:
        """Ask the server to keep a relation's result; None uses the server default level."""
        level = None if storage_level is None else self.codec.encode_storage_level(storage_level)
        await self._analyze(
            wire.PersistAnalyze(relation=self.codec.encode(relation), storage_level=level),
            wire.PersistResult,
        )

    async def unpersist(self, relation: Relation, blocking: bool = False) -> None:
        await self._analyze(
            wire.UnpersistAnalyze(relation=self.codec.encode(relation), blocking=blocking),
            wire.UnpersistResult,
        )

    async def storage_level(self, relation: Relation) -> StorageLevel:
        result = await self._analyze(
            wire.GetStorageLevelAnalyze(relation=self.codec.encode(relation)),
            wire.GetStorageLevelResult,
        )
        return self.codec.decode_storage_level(result.storage_level)
