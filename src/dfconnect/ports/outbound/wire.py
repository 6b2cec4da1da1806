"""Wire schema of the query protocol.

Every message is a msgspec Struct serialized as MessagePack. Polymorphic
payloads (relations, expressions, response bodies, analysis variants) are
tagged unions: the encoded map carries a ``type`` field naming the variant,
so messages are self-describing and decode without out-of-band hints.

Encoding goes through one Encoder with deterministic ordering, so the same
message always produces the same bytes.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Any, TypeVar, Union

import msgspec


class WireStruct(
    msgspec.Struct,
    frozen=True,
    kw_only=True,
    omit_defaults=True,
    forbid_unknown_fields=False,
):
    """Base struct for wire messages. Unknown fields are ignored for forward compatibility."""


# Data types


class StructFieldMsg(WireStruct, kw_only=True):
    name: str
    data_type: DataTypeMsg
    nullable: bool = True


class DataTypeMsg(WireStruct, kw_only=True):
    kind: str
    precision: int | None = None
    scale: int | None = None
    element_type: DataTypeMsg | None = None
    key_type: DataTypeMsg | None = None
    value_type: DataTypeMsg | None = None
    contains_null: bool = True
    fields: tuple[StructFieldMsg, ...] = ()


# Expressions


class LiteralMsg(WireStruct, tag="literal", kw_only=True):
    value: Any
    data_type: DataTypeMsg


class ColumnRefMsg(WireStruct, tag="column", kw_only=True):
    path: str
    plan_id: int | None = None


class StarMsg(WireStruct, tag="star", kw_only=True):
    target: str | None = None


class FunctionMsg(WireStruct, tag="function", kw_only=True):
    name: str
    arguments: tuple[ExpressionMsg, ...] = ()
    is_distinct: bool = False


class AliasMsg(WireStruct, tag="alias", kw_only=True):
    expr: ExpressionMsg
    name: str
    metadata: str | None = None


class CastMsg(WireStruct, tag="cast", kw_only=True):
    expr: ExpressionMsg
    data_type: DataTypeMsg


class SortOrderMsg(WireStruct, tag="sort_order", kw_only=True):
    child: ExpressionMsg
    direction: str
    null_ordering: str


class FrameBoundaryMsg(WireStruct, kw_only=True):
    kind: str
    value: ExpressionMsg | None = None


class WindowFrameMsg(WireStruct, kw_only=True):
    frame_type: str
    lower: FrameBoundaryMsg
    upper: FrameBoundaryMsg


class WindowMsg(WireStruct, tag="window", kw_only=True):
    function: ExpressionMsg
    partition_spec: tuple[ExpressionMsg, ...] = ()
    order_spec: tuple[SortOrderMsg, ...] = ()
    frame: WindowFrameMsg | None = None


class ExpressionStringMsg(WireStruct, tag="expression_string", kw_only=True):
    expression: str


ExpressionMsg = Union[
    LiteralMsg,
    ColumnRefMsg,
    StarMsg,
    FunctionMsg,
    AliasMsg,
    CastMsg,
    SortOrderMsg,
    WindowMsg,
    ExpressionStringMsg,
]


# Relations


class RelationMsgBase(WireStruct, kw_only=True):
    plan_id: int


class ReadMsg(RelationMsgBase, tag="read", kw_only=True):
    table_name: str | None = None
    data_format: str | None = None
    paths: tuple[str, ...] = ()
    options: dict[str, str] = {}
    schema: DataTypeMsg | None = None
    is_streaming: bool = False


class ProjectMsg(RelationMsgBase, tag="project", kw_only=True):
    input: RelationMsg | None = None
    expressions: tuple[ExpressionMsg, ...]


class FilterMsg(RelationMsgBase, tag="filter", kw_only=True):
    input: RelationMsg
    condition: ExpressionMsg


class JoinMsg(RelationMsgBase, tag="join", kw_only=True):
    left: RelationMsg
    right: RelationMsg
    join_type: str
    condition: ExpressionMsg | None = None
    using_columns: tuple[str, ...] = ()


class PivotMsg(WireStruct, kw_only=True):
    column: ExpressionMsg
    values: tuple[LiteralMsg, ...] = ()


class AggregateMsg(RelationMsgBase, tag="aggregate", kw_only=True):
    input: RelationMsg
    group_type: str
    grouping_expressions: tuple[ExpressionMsg, ...] = ()
    aggregate_expressions: tuple[ExpressionMsg, ...] = ()
    pivot: PivotMsg | None = None


class SortMsg(RelationMsgBase, tag="sort", kw_only=True):
    input: RelationMsg
    order: tuple[SortOrderMsg, ...]
    is_global: bool = True


class LimitMsg(RelationMsgBase, tag="limit", kw_only=True):
    input: RelationMsg
    limit: int


class OffsetMsg(RelationMsgBase, tag="offset", kw_only=True):
    input: RelationMsg
    offset: int


class SetOperationMsg(RelationMsgBase, tag="set_operation", kw_only=True):
    left: RelationMsg
    right: RelationMsg
    set_op_type: str
    is_all: bool = False
    by_name: bool = False
    allow_missing_columns: bool = False


class LocalRelationMsg(RelationMsgBase, tag="local_relation", kw_only=True):
    data: bytes | None = None
    schema: DataTypeMsg | None = None


class SqlMsg(RelationMsgBase, tag="sql", kw_only=True):
    query: str
    args: dict[str, LiteralMsg] = {}
    pos_args: tuple[LiteralMsg, ...] = ()


class DeduplicateMsg(RelationMsgBase, tag="deduplicate", kw_only=True):
    input: RelationMsg
    column_names: tuple[str, ...] = ()
    all_columns_as_keys: bool = False


class SampleMsg(RelationMsgBase, tag="sample", kw_only=True):
    input: RelationMsg
    lower_bound: float
    upper_bound: float
    with_replacement: bool = False
    seed: int | None = None


class RenameColumnsMsg(RelationMsgBase, tag="rename_columns", kw_only=True):
    input: RelationMsg
    renames: tuple[tuple[str, str], ...]


class WithColumnsMsg(RelationMsgBase, tag="with_columns", kw_only=True):
    input: RelationMsg
    aliases: tuple[AliasMsg, ...]


class DropMsg(RelationMsgBase, tag="drop", kw_only=True):
    input: RelationMsg
    columns: tuple[ExpressionMsg, ...] = ()
    column_names: tuple[str, ...] = ()


class RangeMsg(RelationMsgBase, tag="range", kw_only=True):
    start: int = 0
    end: int
    step: int = 1
    num_partitions: int | None = None


class SubqueryAliasMsg(RelationMsgBase, tag="subquery_alias", kw_only=True):
    input: RelationMsg
    alias: str


class ToDFMsg(RelationMsgBase, tag="to_df", kw_only=True):
    input: RelationMsg
    column_names: tuple[str, ...]


class RepartitionMsg(RelationMsgBase, tag="repartition", kw_only=True):
    input: RelationMsg
    num_partitions: int
    shuffle: bool = True


RelationMsg = Union[
    ReadMsg,
    ProjectMsg,
    FilterMsg,
    JoinMsg,
    AggregateMsg,
    SortMsg,
    LimitMsg,
    OffsetMsg,
    SetOperationMsg,
    LocalRelationMsg,
    SqlMsg,
    DeduplicateMsg,
    SampleMsg,
    RenameColumnsMsg,
    WithColumnsMsg,
    DropMsg,
    RangeMsg,
    SubqueryAliasMsg,
    ToDFMsg,
    RepartitionMsg,
]


# Commands and plans


class SqlCommandMsg(WireStruct, tag="sql_command", kw_only=True):
    sql: str
    args: dict[str, LiteralMsg] = {}
    pos_args: tuple[LiteralMsg, ...] = ()


class CreateViewMsg(WireStruct, tag="create_view", kw_only=True):
    input: RelationMsg
    name: str
    is_global: bool = False
    replace: bool = True


CommandMsg = Union[SqlCommandMsg, CreateViewMsg]


class RootPlanMsg(WireStruct, tag="root", kw_only=True):
    relation: RelationMsg


class CommandPlanMsg(WireStruct, tag="command", kw_only=True):
    command: CommandMsg


PlanMsg = Union[RootPlanMsg, CommandPlanMsg]


# Execution


class UserContextMsg(WireStruct, kw_only=True):
    user_id: str = ""
    user_name: str = ""
    properties: dict[str, str] = {}


class ExecutePlanRequest(WireStruct, kw_only=True):
    session_id: str
    operation_id: str
    user_context: UserContextMsg
    plan: PlanMsg
    client_type: str = ""
    tags: tuple[str, ...] = ()
    config: dict[str, str] = {}
    reattachable: bool = True


class ReattachExecuteRequest(WireStruct, kw_only=True):
    session_id: str
    operation_id: str
    user_context: UserContextMsg
    client_type: str = ""
    last_response_id: str | None = None


class ReleaseExecuteRequest(WireStruct, kw_only=True):
    """Tell the server it may drop buffered responses.

    ``until_response_id=None`` releases everything for the operation.
    """

    session_id: str
    operation_id: str
    user_context: UserContextMsg
    client_type: str = ""
    until_response_id: str | None = None


class ReleaseExecuteResponse(WireStruct, kw_only=True):
    session_id: str
    operation_id: str


class SchemaBody(WireStruct, tag="schema", kw_only=True):
    schema: DataTypeMsg


class ArrowBatchBody(WireStruct, tag="arrow_batch", kw_only=True):
    row_count: int
    data: bytes


class MetricObjectMsg(WireStruct, kw_only=True):
    name: str
    plan_id: int
    values: dict[str, float] = {}


class MetricsBody(WireStruct, tag="metrics", kw_only=True):
    metrics: tuple[MetricObjectMsg, ...] = ()


class SqlCommandResultBody(WireStruct, tag="sql_command_result", kw_only=True):
    relation: RelationMsg


class ResultCompleteBody(WireStruct, tag="result_complete", kw_only=True):
    pass


class ErrorBody(WireStruct, tag="error", kw_only=True):
    """A server-side failure. ``kind`` is "analysis" or "execution"."""

    kind: str
    message: str
    error_class: str | None = None


ResponseBody = Union[
    SchemaBody,
    ArrowBatchBody,
    MetricsBody,
    SqlCommandResultBody,
    ResultCompleteBody,
    ErrorBody,
]


class ExecutePlanResponse(WireStruct, kw_only=True):
    session_id: str
    operation_id: str
    response_id: str
    body: ResponseBody


# Analysis


class SchemaAnalyze(WireStruct, tag="schema", kw_only=True):
    plan: PlanMsg


class ExplainAnalyze(WireStruct, tag="explain", kw_only=True):
    plan: PlanMsg
    mode: str = "simple"


class TreeStringAnalyze(WireStruct, tag="tree_string", kw_only=True):
    plan: PlanMsg
    level: int | None = None


class IsLocalAnalyze(WireStruct, tag="is_local", kw_only=True):
    plan: PlanMsg


class IsStreamingAnalyze(WireStruct, tag="is_streaming", kw_only=True):
    plan: PlanMsg


class InputFilesAnalyze(WireStruct, tag="input_files", kw_only=True):
    plan: PlanMsg


class ServerVersionAnalyze(WireStruct, tag="server_version", kw_only=True):
    pass


class DdlParseAnalyze(WireStruct, tag="ddl_parse", kw_only=True):
    ddl: str


class SameSemanticsAnalyze(WireStruct, tag="same_semantics", kw_only=True):
    target: PlanMsg
    other: PlanMsg


class SemanticHashAnalyze(WireStruct, tag="semantic_hash", kw_only=True):
    plan: PlanMsg


class StorageLevelMsg(WireStruct, kw_only=True):
    use_disk: bool = False
    use_memory: bool = False
    use_off_heap: bool = False
    deserialized: bool = False
    replication: int = 1


class PersistAnalyze(WireStruct, tag="persist", kw_only=True):
    relation: RelationMsg
    storage_level: StorageLevelMsg | None = None


class UnpersistAnalyze(WireStruct, tag="unpersist", kw_only=True):
    relation: RelationMsg
    blocking: bool = False


class GetStorageLevelAnalyze(WireStruct, tag="get_storage_level", kw_only=True):
    relation: RelationMsg


AnalyzeMsg = Union[
    SchemaAnalyze,
    ExplainAnalyze,
    TreeStringAnalyze,
    IsLocalAnalyze,
    IsStreamingAnalyze,
    InputFilesAnalyze,
    ServerVersionAnalyze,
    DdlParseAnalyze,
    SameSemanticsAnalyze,
    SemanticHashAnalyze,
    PersistAnalyze,
    UnpersistAnalyze,
    GetStorageLevelAnalyze,
]


class SchemaResult(WireStruct, tag="schema", kw_only=True):
    schema: DataTypeMsg


class ExplainResult(WireStruct, tag="explain", kw_only=True):
    explain_string: str


class TreeStringResult(WireStruct, tag="tree_string", kw_only=True):
    tree_string: str


class IsLocalResult(WireStruct, tag="is_local", kw_only=True):
    is_local: bool


class IsStreamingResult(WireStruct, tag="is_streaming", kw_only=True):
    is_streaming: bool


class InputFilesResult(WireStruct, tag="input_files", kw_only=True):
    files: tuple[str, ...] = ()


class ServerVersionResult(WireStruct, tag="server_version", kw_only=True):
    version: str


class DdlParseResult(WireStruct, tag="ddl_parse", kw_only=True):
    parsed: DataTypeMsg


class SameSemanticsResult(WireStruct, tag="same_semantics", kw_only=True):
    result: bool


class SemanticHashResult(WireStruct, tag="semantic_hash", kw_only=True):
    result: int


class PersistResult(WireStruct, tag="persist", kw_only=True):
    pass


class UnpersistResult(WireStruct, tag="unpersist", kw_only=True):
    pass


class GetStorageLevelResult(WireStruct, tag="get_storage_level", kw_only=True):
    storage_level: StorageLevelMsg


AnalyzeResult = Union[
    SchemaResult,
    ExplainResult,
    TreeStringResult,
    IsLocalResult,
    IsStreamingResult,
    InputFilesResult,
    ServerVersionResult,
    DdlParseResult,
    SameSemanticsResult,
    SemanticHashResult,
    PersistResult,
    UnpersistResult,
    GetStorageLevelResult,
]


class AnalyzePlanRequest(WireStruct, kw_only=True):
    session_id: str
    user_context: UserContextMsg
    analyze: AnalyzeMsg
    client_type: str = ""
    config: dict[str, str] = {}


class AnalyzePlanResponse(WireStruct, kw_only=True):
    session_id: str
    result: AnalyzeResult | None = None
    error: ErrorBody | None = None


# Interrupts


class InterruptRequest(WireStruct, kw_only=True):
    """``interrupt_type`` is "all", "tag" or "operation_id"."""

    session_id: str
    user_context: UserContextMsg
    interrupt_type: str
    client_type: str = ""
    operation_tag: str | None = None
    operation_id: str | None = None


class InterruptResponse(WireStruct, kw_only=True):
    session_id: str
    interrupted_ids: tuple[str, ...] = ()


# Configuration


CONFIG_OPERATIONS = (
    "set",
    "get",
    "get_with_default",
    "get_option",
    "get_all",
    "unset",
    "is_modifiable",
)


class KeyValueMsg(WireStruct, kw_only=True):
    key: str
    value: str | None = None


class ConfigRequest(WireStruct, kw_only=True):
    """Read or change server-side session configuration.

    ``operation`` is one of CONFIG_OPERATIONS. Keys to read or unset travel
    as pairs without a value; "get_with_default" carries the defaults as
    values. "get_all" lists every key starting with ``prefix``.
    """

    session_id: str
    user_context: UserContextMsg
    operation: str
    client_type: str = ""
    pairs: tuple[KeyValueMsg, ...] = ()
    prefix: str | None = None


class ConfigResponse(WireStruct, kw_only=True):
    session_id: str
    pairs: tuple[KeyValueMsg, ...] = ()
    warnings: tuple[str, ...] = ()
    error: ErrorBody | None = None


# Serialization

T = TypeVar("T")

_ENCODER = msgspec.msgpack.Encoder(order="deterministic")


def encode_message(message: msgspec.Struct) -> bytes:
    """Serialize a wire message to MessagePack bytes."""
    return _ENCODER.encode(message)


@lru_cache(maxsize=None)
def _decoder(message_type: Any) -> msgspec.msgpack.Decoder:
    return msgspec.msgpack.Decoder(message_type)


def decode_message(data: bytes, message_type: type[T]) -> T:
    """Deserialize MessagePack bytes into the given wire message type.

    Raises:
        msgspec.DecodeError: If the bytes are not a valid message of that type.
    """
    return _decoder(message_type).decode(data)
