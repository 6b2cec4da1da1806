"""Plan codec: the single translation boundary between IR and wire messages.

Encoding is a recursive depth-first traversal. Each IR variant maps to exactly
one wire struct carrying its already-encoded children plus its own scalar
fields. The dispatch tables built in ``PlanCodec.__init__`` are the only place
variants are matched, so adding a node kind without a codec entry fails
loudly with UnsupportedType instead of being silently dropped.

Literal values are lowered to plain wire primitives:

    DATE          -> days since 1970-01-01
    TIMESTAMP     -> microseconds since the epoch (UTC, tz-aware input only)
    TIMESTAMP_NTZ -> microseconds since the epoch (naive input)
    DECIMAL       -> canonical string
    ARRAY/STRUCT  -> list, MAP -> list of [key, value] pairs

so that byte output never depends on the local time zone or dict ordering.
"""

from __future__ import annotations

import datetime as dt
import decimal
from collections.abc import Callable, Mapping
from typing import Any

from dfconnect.domain.entities.expressions import (
    Alias,
    BoundaryKind,
    Cast,
    ColumnReference,
    Expression,
    ExpressionString,
    FrameBoundary,
    FrameType,
    Literal,
    NullOrdering,
    SortDirection,
    SortOrder,
    UnresolvedFunction,
    UnresolvedStar,
    WindowExpr,
    WindowFrame,
)
from dfconnect.domain.entities.relations import (
    SQL,
    Aggregate,
    Command,
    CreateView,
    Deduplicate,
    Drop,
    Filter,
    GroupType,
    Join,
    JoinType,
    Limit,
    LocalRelation,
    Offset,
    Pivot,
    Project,
    Range,
    Read,
    Relation,
    RenameColumns,
    Repartition,
    Sample,
    SetOperation,
    SetOpType,
    Sort,
    SqlCommand,
    SubqueryAlias,
    ToDF,
    WithColumns,
)
from dfconnect.domain.errors import ProtocolError, UnsupportedType
from dfconnect.domain.value_objects.data_types import (
    ArrayType,
    AtomicType,
    DataType,
    DecimalType,
    MapType,
    StructField,
    StructType,
    TypeKind,
)
from dfconnect.domain.value_objects.identifiers import PlanId
from dfconnect.domain.value_objects.storage_level import StorageLevel
from dfconnect.ports.outbound import wire

_EPOCH_DATE = dt.date(1970, 1, 1)
_EPOCH_UTC = dt.datetime(1970, 1, 1, tzinfo=dt.timezone.utc)
_EPOCH_NAIVE = dt.datetime(1970, 1, 1)
_MICROSECOND = dt.timedelta(microseconds=1)

_INT_RANGES: dict[TypeKind, tuple[int, int]] = {
    TypeKind.BYTE: (-(2**7), 2**7 - 1),
    TypeKind.SHORT: (-(2**15), 2**15 - 1),
    TypeKind.INTEGER: (-(2**31), 2**31 - 1),
    TypeKind.LONG: (-(2**63), 2**63 - 1),
}


class _LiteralError(Exception):
    """Internal: a literal value does not fit its declared type."""


class PlanCodec:
    """Encodes relation/expression IR into wire structs and back.

    Example:
        >>> codec = PlanCodec()
        >>> msg = codec.encode(plan)
        >>> codec.decode(msg) == plan
        True
        >>> codec.plan_bytes(plan) == codec.plan_bytes(plan)
        True
    """

    def __init__(self) -> None:
        self._relation_encoders: dict[type[Relation], Callable[[Any], Any]] = {
            Read: self._encode_read,
            Project: self._encode_project,
            Filter: self._encode_filter,
            Join: self._encode_join,
            Aggregate: self._encode_aggregate,
            Sort: self._encode_sort,
            Limit: self._encode_limit,
            Offset: self._encode_offset,
            SetOperation: self._encode_set_operation,
            LocalRelation: self._encode_local_relation,
            SQL: self._encode_sql,
            Deduplicate: self._encode_deduplicate,
            Sample: self._encode_sample,
            RenameColumns: self._encode_rename_columns,
            WithColumns: self._encode_with_columns,
            Drop: self._encode_drop,
            Range: self._encode_range,
            SubqueryAlias: self._encode_subquery_alias,
            ToDF: self._encode_to_df,
            Repartition: self._encode_repartition,
        }
        self._relation_decoders: dict[type, Callable[[Any], Relation]] = {
            wire.ReadMsg: self._decode_read,
            wire.ProjectMsg: self._decode_project,
            wire.FilterMsg: self._decode_filter,
            wire.JoinMsg: self._decode_join,
            wire.AggregateMsg: self._decode_aggregate,
            wire.SortMsg: self._decode_sort,
            wire.LimitMsg: self._decode_limit,
            wire.OffsetMsg: self._decode_offset,
            wire.SetOperationMsg: self._decode_set_operation,
            wire.LocalRelationMsg: self._decode_local_relation,
            wire.SqlMsg: self._decode_sql,
            wire.DeduplicateMsg: self._decode_deduplicate,
            wire.SampleMsg: self._decode_sample,
            wire.RenameColumnsMsg: self._decode_rename_columns,
            wire.WithColumnsMsg: self._decode_with_columns,
            wire.DropMsg: self._decode_drop,
            wire.RangeMsg: self._decode_range,
            wire.SubqueryAliasMsg: self._decode_subquery_alias,
            wire.ToDFMsg: self._decode_to_df,
            wire.RepartitionMsg: self._decode_repartition,
        }
        self._expression_encoders: dict[type[Expression], Callable[[Any], Any]] = {
            Literal: self._encode_literal,
            ColumnReference: lambda e: wire.ColumnRefMsg(path=e.path, plan_id=e.plan_id),
            UnresolvedStar: lambda e: wire.StarMsg(target=e.target),
            UnresolvedFunction: lambda e: wire.FunctionMsg(
                name=e.name,
                arguments=self._encode_expressions(e.arguments),
                is_distinct=e.is_distinct,
            ),
            Alias: lambda e: wire.AliasMsg(
                expr=self.encode_expression(e.expr), name=e.name, metadata=e.metadata
            ),
            Cast: lambda e: wire.CastMsg(
                expr=self.encode_expression(e.expr), data_type=self.encode_data_type(e.data_type)
            ),
            SortOrder: self._encode_sort_order,
            WindowExpr: self._encode_window,
            ExpressionString: lambda e: wire.ExpressionStringMsg(expression=e.expression),
        }

    @property
    def supported_relation_types(self) -> frozenset[type[Relation]]:
        return frozenset(self._relation_encoders)

    @property
    def supported_expression_types(self) -> frozenset[type[Expression]]:
        return frozenset(self._expression_encoders)

    # Plans

    def encode(self, relation: Relation) -> wire.RelationMsg:
        """Encode a relation tree.

        Raises:
            UnsupportedType: If a node or value cannot be represented; the
                error names the offending node and its enclosing relation.
        """
        encoder = self._relation_encoders.get(type(relation))
        if encoder is None:
            raise UnsupportedType(type(relation).__name__, "no wire encoding for this relation kind")
        try:
            return encoder(relation)
        except UnsupportedType as e:
            if e.relation is not None:
                raise
            raise UnsupportedType(
                e.node, e.detail, relation=f"{relation.node_name}#{relation.plan_id}"
            ) from e

    def decode(self, message: wire.RelationMsg) -> Relation:
        decoder = self._relation_decoders.get(type(message))
        if decoder is None:
            raise ProtocolError(f"Unknown relation message: {type(message).__name__}")
        return decoder(message)

    def encode_command(self, command: Command) -> wire.CommandMsg:
        if isinstance(command, SqlCommand):
            return wire.SqlCommandMsg(
                sql=command.sql,
                args={name: self._encode_literal(value) for name, value in command.args},
                pos_args=tuple(self._encode_literal(v) for v in command.pos_args),
            )
        if isinstance(command, CreateView):
            return wire.CreateViewMsg(
                input=self.encode(command.input),
                name=command.name,
                is_global=command.is_global,
                replace=command.replace,
            )
        raise UnsupportedType(command.node_name, "no wire encoding for this command kind")

    def encode_plan(self, plan: Relation | Command) -> wire.PlanMsg:
        """Wrap a relation tree or a raw command as a submittable plan."""
        if isinstance(plan, Command):
            return wire.CommandPlanMsg(command=self.encode_command(plan))
        return wire.RootPlanMsg(relation=self.encode(plan))

    def plan_bytes(self, plan: Relation | Command) -> bytes:
        """Serialized plan; identical IR always yields identical bytes."""
        return wire.encode_message(self.encode_plan(plan))

    # Data types

    def encode_data_type(self, data_type: DataType) -> wire.DataTypeMsg:
        if isinstance(data_type, AtomicType):
            return wire.DataTypeMsg(kind=data_type.kind.value)
        if isinstance(data_type, DecimalType):
            return wire.DataTypeMsg(
                kind="decimal", precision=data_type.precision, scale=data_type.scale
            )
        if isinstance(data_type, ArrayType):
            return wire.DataTypeMsg(
                kind="array",
                element_type=self.encode_data_type(data_type.element_type),
                contains_null=data_type.contains_null,
            )
        if isinstance(data_type, MapType):
            return wire.DataTypeMsg(
                kind="map",
                key_type=self.encode_data_type(data_type.key_type),
                value_type=self.encode_data_type(data_type.value_type),
                contains_null=data_type.value_contains_null,
            )
        if isinstance(data_type, StructType):
            return wire.DataTypeMsg(
                kind="struct",
                fields=tuple(
                    wire.StructFieldMsg(
                        name=f.name,
                        data_type=self.encode_data_type(f.data_type),
                        nullable=f.nullable,
                    )
                    for f in data_type.fields
                ),
            )
        raise UnsupportedType(repr(data_type), "unknown data type")

    def decode_data_type(self, message: wire.DataTypeMsg) -> DataType:
        kind = message.kind
        if kind == "decimal":
            return DecimalType(message.precision or 10, message.scale or 0)
        if kind == "array":
            if message.element_type is None:
                raise ProtocolError("array type without element type")
            return ArrayType(self.decode_data_type(message.element_type), message.contains_null)
        if kind == "map":
            if message.key_type is None or message.value_type is None:
                raise ProtocolError("map type without key or value type")
            return MapType(
                self.decode_data_type(message.key_type),
                self.decode_data_type(message.value_type),
                message.contains_null,
            )
        if kind == "struct":
            return StructType(
                tuple(
                    StructField(f.name, self.decode_data_type(f.data_type), f.nullable)
                    for f in message.fields
                )
            )
        try:
            return AtomicType(TypeKind(kind))
        except ValueError as e:
            raise ProtocolError(f"Unknown data type kind: {kind!r}") from e

    def decode_schema(self, message: wire.DataTypeMsg) -> StructType:
        """Decode a schema; a non-struct type is wrapped as a single 'value' column."""
        data_type = self.decode_data_type(message)
        if isinstance(data_type, StructType):
            return data_type
        return StructType((StructField("value", data_type),))

    # Storage levels

    def encode_storage_level(self, level: StorageLevel) -> wire.StorageLevelMsg:
        return wire.StorageLevelMsg(
            use_disk=level.use_disk,
            use_memory=level.use_memory,
            use_off_heap=level.use_off_heap,
            deserialized=level.deserialized,
            replication=level.replication,
        )

    def decode_storage_level(self, message: wire.StorageLevelMsg) -> StorageLevel:
        try:
            return StorageLevel(
                use_disk=message.use_disk,
                use_memory=message.use_memory,
                use_off_heap=message.use_off_heap,
                deserialized=message.deserialized,
                replication=message.replication,
            )
        except ValueError as e:
            raise ProtocolError(f"Invalid storage level: {e}") from e

    # Expressions

    def encode_expression(self, expr: Expression) -> wire.ExpressionMsg:
        encoder = self._expression_encoders.get(type(expr))
        if encoder is None:
            raise UnsupportedType(type(expr).__name__, "no wire encoding for this expression kind")
        return encoder(expr)

    def _encode_expressions(self, exprs: tuple[Expression, ...]) -> tuple[wire.ExpressionMsg, ...]:
        return tuple(self.encode_expression(e) for e in exprs)

    def _encode_literal(self, literal: Literal) -> wire.LiteralMsg:
        node = f"Literal({literal.value!r})"
        if literal.data_type is None:
            raise UnsupportedType(
                node, f"cannot infer a data type for {type(literal.value).__name__}"
            )
        try:
            value = _lower_value(literal.value, literal.data_type)
        except _LiteralError as e:
            raise UnsupportedType(node, str(e)) from e
        return wire.LiteralMsg(value=value, data_type=self.encode_data_type(literal.data_type))

    def _encode_sort_order(self, order: SortOrder) -> wire.SortOrderMsg:
        return wire.SortOrderMsg(
            child=self.encode_expression(order.child),
            direction=order.direction.value,
            null_ordering=order.null_ordering.value,
        )

    def _encode_boundary(self, boundary: FrameBoundary) -> wire.FrameBoundaryMsg:
        value = None if boundary.value is None else self.encode_expression(boundary.value)
        return wire.FrameBoundaryMsg(kind=boundary.kind.value, value=value)

    def _encode_window(self, window: WindowExpr) -> wire.WindowMsg:
        frame = None
        if window.frame is not None:
            frame = wire.WindowFrameMsg(
                frame_type=window.frame.frame_type.value,
                lower=self._encode_boundary(window.frame.lower),
                upper=self._encode_boundary(window.frame.upper),
            )
        return wire.WindowMsg(
            function=self.encode_expression(window.function),
            partition_spec=self._encode_expressions(window.partition_spec),
            order_spec=tuple(self._encode_sort_order(o) for o in window.order_spec),
            frame=frame,
        )

    def decode_expression(self, message: wire.ExpressionMsg) -> Expression:
        if isinstance(message, wire.LiteralMsg):
            return self._decode_literal(message)
        if isinstance(message, wire.ColumnRefMsg):
            plan_id = None if message.plan_id is None else PlanId(message.plan_id)
            return ColumnReference(message.path, plan_id)
        if isinstance(message, wire.StarMsg):
            return UnresolvedStar(message.target)
        if isinstance(message, wire.FunctionMsg):
            return UnresolvedFunction(
                message.name,
                tuple(self.decode_expression(a) for a in message.arguments),
                message.is_distinct,
            )
        if isinstance(message, wire.AliasMsg):
            return Alias(self.decode_expression(message.expr), message.name, message.metadata)
        if isinstance(message, wire.CastMsg):
            return Cast(
                self.decode_expression(message.expr), self.decode_data_type(message.data_type)
            )
        if isinstance(message, wire.SortOrderMsg):
            return self._decode_sort_order(message)
        if isinstance(message, wire.WindowMsg):
            frame = None
            if message.frame is not None:
                frame = WindowFrame(
                    FrameType(message.frame.frame_type),
                    self._decode_boundary(message.frame.lower),
                    self._decode_boundary(message.frame.upper),
                )
            return WindowExpr(
                self.decode_expression(message.function),
                tuple(self.decode_expression(p) for p in message.partition_spec),
                tuple(self._decode_sort_order(o) for o in message.order_spec),
                frame,
            )
        if isinstance(message, wire.ExpressionStringMsg):
            return ExpressionString(message.expression)
        raise ProtocolError(f"Unknown expression message: {type(message).__name__}")

    def _decode_literal(self, message: wire.LiteralMsg) -> Literal:
        data_type = self.decode_data_type(message.data_type)
        return Literal(_raise_value(message.value, data_type), data_type)

    def _decode_sort_order(self, message: wire.SortOrderMsg) -> SortOrder:
        return SortOrder(
            self.decode_expression(message.child),
            SortDirection(message.direction),
            NullOrdering(message.null_ordering),
        )

    def _decode_boundary(self, message: wire.FrameBoundaryMsg) -> FrameBoundary:
        value = None if message.value is None else self.decode_expression(message.value)
        return FrameBoundary(BoundaryKind(message.kind), value)

    # Relation encoders

    def _encode_read(self, r: Read) -> wire.ReadMsg:
        return wire.ReadMsg(
            plan_id=r.plan_id,
            table_name=r.table_name,
            data_format=r.data_format,
            paths=r.paths,
            options=dict(r.options),
            schema=None if r.schema is None else self.encode_data_type(r.schema),
            is_streaming=r.is_streaming,
        )

    def _encode_project(self, r: Project) -> wire.ProjectMsg:
        return wire.ProjectMsg(
            plan_id=r.plan_id,
            input=None if r.input is None else self.encode(r.input),
            expressions=self._encode_expressions(r.expressions),
        )

    def _encode_filter(self, r: Filter) -> wire.FilterMsg:
        return wire.FilterMsg(
            plan_id=r.plan_id,
            input=self.encode(r.input),
            condition=self.encode_expression(r.condition),
        )

    def _encode_join(self, r: Join) -> wire.JoinMsg:
        return wire.JoinMsg(
            plan_id=r.plan_id,
            left=self.encode(r.left),
            right=self.encode(r.right),
            join_type=r.join_type.value,
            condition=None if r.condition is None else self.encode_expression(r.condition),
            using_columns=r.using_columns,
        )

    def _encode_aggregate(self, r: Aggregate) -> wire.AggregateMsg:
        pivot = None
        if r.pivot is not None:
            pivot = wire.PivotMsg(
                column=self.encode_expression(r.pivot.column),
                values=tuple(self._encode_literal(v) for v in r.pivot.values),
            )
        return wire.AggregateMsg(
            plan_id=r.plan_id,
            input=self.encode(r.input),
            group_type=r.group_type.value,
            grouping_expressions=self._encode_expressions(r.grouping_expressions),
            aggregate_expressions=self._encode_expressions(r.aggregate_expressions),
            pivot=pivot,
        )

    def _encode_sort(self, r: Sort) -> wire.SortMsg:
        return wire.SortMsg(
            plan_id=r.plan_id,
            input=self.encode(r.input),
            order=tuple(self._encode_sort_order(o) for o in r.order),
            is_global=r.is_global,
        )

    def _encode_limit(self, r: Limit) -> wire.LimitMsg:
        return wire.LimitMsg(plan_id=r.plan_id, input=self.encode(r.input), limit=r.limit)

    def _encode_offset(self, r: Offset) -> wire.OffsetMsg:
        return wire.OffsetMsg(plan_id=r.plan_id, input=self.encode(r.input), offset=r.offset)

    def _encode_set_operation(self, r: SetOperation) -> wire.SetOperationMsg:
        return wire.SetOperationMsg(
            plan_id=r.plan_id,
            left=self.encode(r.left),
            right=self.encode(r.right),
            set_op_type=r.set_op_type.value,
            is_all=r.is_all,
            by_name=r.by_name,
            allow_missing_columns=r.allow_missing_columns,
        )

    def _encode_local_relation(self, r: LocalRelation) -> wire.LocalRelationMsg:
        return wire.LocalRelationMsg(
            plan_id=r.plan_id,
            data=r.data,
            schema=None if r.schema is None else self.encode_data_type(r.schema),
        )

    def _encode_sql(self, r: SQL) -> wire.SqlMsg:
        return wire.SqlMsg(
            plan_id=r.plan_id,
            query=r.query,
            args={name: self._encode_literal(value) for name, value in r.args},
            pos_args=tuple(self._encode_literal(v) for v in r.pos_args),
        )

    def _encode_deduplicate(self, r: Deduplicate) -> wire.DeduplicateMsg:
        return wire.DeduplicateMsg(
            plan_id=r.plan_id,
            input=self.encode(r.input),
            column_names=r.column_names,
            all_columns_as_keys=r.all_columns_as_keys,
        )

    def _encode_sample(self, r: Sample) -> wire.SampleMsg:
        return wire.SampleMsg(
            plan_id=r.plan_id,
            input=self.encode(r.input),
            lower_bound=float(r.lower_bound),
            upper_bound=float(r.upper_bound),
            with_replacement=r.with_replacement,
            seed=r.seed,
        )

    def _encode_rename_columns(self, r: RenameColumns) -> wire.RenameColumnsMsg:
        return wire.RenameColumnsMsg(
            plan_id=r.plan_id, input=self.encode(r.input), renames=r.renames
        )

    def _encode_with_columns(self, r: WithColumns) -> wire.WithColumnsMsg:
        return wire.WithColumnsMsg(
            plan_id=r.plan_id,
            input=self.encode(r.input),
            aliases=tuple(self.encode_expression(a) for a in r.aliases),
        )

    def _encode_drop(self, r: Drop) -> wire.DropMsg:
        return wire.DropMsg(
            plan_id=r.plan_id,
            input=self.encode(r.input),
            columns=self._encode_expressions(r.columns),
            column_names=r.column_names,
        )

    def _encode_range(self, r: Range) -> wire.RangeMsg:
        return wire.RangeMsg(
            plan_id=r.plan_id,
            start=r.start,
            end=r.end,
            step=r.step,
            num_partitions=r.num_partitions,
        )

    def _encode_subquery_alias(self, r: SubqueryAlias) -> wire.SubqueryAliasMsg:
        return wire.SubqueryAliasMsg(plan_id=r.plan_id, input=self.encode(r.input), alias=r.alias)

    def _encode_to_df(self, r: ToDF) -> wire.ToDFMsg:
        return wire.ToDFMsg(
            plan_id=r.plan_id, input=self.encode(r.input), column_names=r.column_names
        )

    def _encode_repartition(self, r: Repartition) -> wire.RepartitionMsg:
        return wire.RepartitionMsg(
            plan_id=r.plan_id,
            input=self.encode(r.input),
            num_partitions=r.num_partitions,
            shuffle=r.shuffle,
        )

    # Relation decoders

    def _decode_expressions(self, messages: tuple) -> tuple[Expression, ...]:
        return tuple(self.decode_expression(m) for m in messages)

    def _decode_read(self, m: wire.ReadMsg) -> Read:
        return Read(
            plan_id=PlanId(m.plan_id),
            table_name=m.table_name,
            data_format=m.data_format,
            paths=m.paths,
            options=tuple(m.options.items()),
            schema=None if m.schema is None else self.decode_schema(m.schema),
            is_streaming=m.is_streaming,
        )

    def _decode_project(self, m: wire.ProjectMsg) -> Project:
        return Project(
            plan_id=PlanId(m.plan_id),
            input=None if m.input is None else self.decode(m.input),
            expressions=self._decode_expressions(m.expressions),
        )

    def _decode_filter(self, m: wire.FilterMsg) -> Filter:
        return Filter(
            plan_id=PlanId(m.plan_id),
            input=self.decode(m.input),
            condition=self.decode_expression(m.condition),
        )

    def _decode_join(self, m: wire.JoinMsg) -> Join:
        return Join(
            plan_id=PlanId(m.plan_id),
            left=self.decode(m.left),
            right=self.decode(m.right),
            join_type=JoinType(m.join_type),
            condition=None if m.condition is None else self.decode_expression(m.condition),
            using_columns=m.using_columns,
        )

    def _decode_aggregate(self, m: wire.AggregateMsg) -> Aggregate:
        pivot = None
        if m.pivot is not None:
            pivot = Pivot(
                self.decode_expression(m.pivot.column),
                tuple(self._decode_literal(v) for v in m.pivot.values),
            )
        return Aggregate(
            plan_id=PlanId(m.plan_id),
            input=self.decode(m.input),
            group_type=GroupType(m.group_type),
            grouping_expressions=self._decode_expressions(m.grouping_expressions),
            aggregate_expressions=self._decode_expressions(m.aggregate_expressions),
            pivot=pivot,
        )

    def _decode_sort(self, m: wire.SortMsg) -> Sort:
        return Sort(
            plan_id=PlanId(m.plan_id),
            input=self.decode(m.input),
            order=tuple(self._decode_sort_order(o) for o in m.order),
            is_global=m.is_global,
        )

    def _decode_limit(self, m: wire.LimitMsg) -> Limit:
        return Limit(plan_id=PlanId(m.plan_id), input=self.decode(m.input), limit=m.limit)

    def _decode_offset(self, m: wire.OffsetMsg) -> Offset:
        return Offset(plan_id=PlanId(m.plan_id), input=self.decode(m.input), offset=m.offset)

    def _decode_set_operation(self, m: wire.SetOperationMsg) -> SetOperation:
        return SetOperation(
            plan_id=PlanId(m.plan_id),
            left=self.decode(m.left),
            right=self.decode(m.right),
            set_op_type=SetOpType(m.set_op_type),
            is_all=m.is_all,
            by_name=m.by_name,
            allow_missing_columns=m.allow_missing_columns,
        )

    def _decode_local_relation(self, m: wire.LocalRelationMsg) -> LocalRelation:
        return LocalRelation(
            plan_id=PlanId(m.plan_id),
            data=m.data,
            schema=None if m.schema is None else self.decode_schema(m.schema),
        )

    def _decode_sql(self, m: wire.SqlMsg) -> SQL:
        return SQL(
            plan_id=PlanId(m.plan_id),
            query=m.query,
            args=tuple((name, self._decode_literal(v)) for name, v in sorted(m.args.items())),
            pos_args=tuple(self._decode_literal(v) for v in m.pos_args),
        )

    def _decode_deduplicate(self, m: wire.DeduplicateMsg) -> Deduplicate:
        return Deduplicate(
            plan_id=PlanId(m.plan_id),
            input=self.decode(m.input),
            column_names=m.column_names,
            all_columns_as_keys=m.all_columns_as_keys,
        )

    def _decode_sample(self, m: wire.SampleMsg) -> Sample:
        return Sample(
            plan_id=PlanId(m.plan_id),
            input=self.decode(m.input),
            lower_bound=m.lower_bound,
            upper_bound=m.upper_bound,
            with_replacement=m.with_replacement,
            seed=m.seed,
        )

    def _decode_rename_columns(self, m: wire.RenameColumnsMsg) -> RenameColumns:
        return RenameColumns(plan_id=PlanId(m.plan_id), input=self.decode(m.input), renames=m.renames)

    def _decode_with_columns(self, m: wire.WithColumnsMsg) -> WithColumns:
        return WithColumns(
            plan_id=PlanId(m.plan_id),
            input=self.decode(m.input),
            aliases=self._decode_expressions(m.aliases),
        )

    def _decode_drop(self, m: wire.DropMsg) -> Drop:
        return Drop(
            plan_id=PlanId(m.plan_id),
            input=self.decode(m.input),
            columns=self._decode_expressions(m.columns),
            column_names=m.column_names,
        )

    def _decode_range(self, m: wire.RangeMsg) -> Range:
        return Range(
            plan_id=PlanId(m.plan_id),
            start=m.start,
            end=m.end,
            step=m.step,
            num_partitions=m.num_partitions,
        )

    def _decode_subquery_alias(self, m: wire.SubqueryAliasMsg) -> SubqueryAlias:
        return SubqueryAlias(plan_id=PlanId(m.plan_id), input=self.decode(m.input), alias=m.alias)

    def _decode_to_df(self, m: wire.ToDFMsg) -> ToDF:
        return ToDF(plan_id=PlanId(m.plan_id), input=self.decode(m.input), column_names=m.column_names)

    def _decode_repartition(self, m: wire.RepartitionMsg) -> Repartition:
        return Repartition(
            plan_id=PlanId(m.plan_id),
            input=self.decode(m.input),
            num_partitions=m.num_partitions,
            shuffle=m.shuffle,
        )


# Literal value lowering


def _lower_value(value: Any, data_type: DataType) -> Any:
    """Convert a Python value to a wire primitive for the given type."""
    if value is None:
        return None
    if isinstance(data_type, AtomicType):
        return _lower_atomic(value, data_type.kind)
    if isinstance(data_type, DecimalType):
        return _lower_decimal(value, data_type)
    if isinstance(data_type, ArrayType):
        if not isinstance(value, (list, tuple)):
            raise _LiteralError(f"expected a sequence for {data_type}")
        return [_lower_value(v, data_type.element_type) for v in value]
    if isinstance(data_type, MapType):
        if isinstance(value, Mapping):
            items: Any = value.items()
        elif isinstance(value, (list, tuple)) and all(
            isinstance(item, (list, tuple)) and len(item) == 2 for item in value
        ):
            items = value
        else:
            raise _LiteralError(f"expected a mapping or (key, value) pairs for {data_type}")
        return [
            [_lower_value(k, data_type.key_type), _lower_value(v, data_type.value_type)]
            for k, v in items
        ]
    if isinstance(data_type, StructType):
        if isinstance(value, Mapping):
            value = [value.get(f.name) for f in data_type.fields]
        if not isinstance(value, (list, tuple)) or len(value) != len(data_type.fields):
            raise _LiteralError(f"expected {len(data_type.fields)} values for {data_type}")
        return [_lower_value(v, f.data_type) for v, f in zip(value, data_type.fields)]
    raise _LiteralError(f"unknown data type {data_type!r}")


def _lower_decimal(value: Any, data_type: DecimalType) -> str:
    """Render a decimal at the type's scale; values that would need rounding are rejected."""
    if isinstance(value, bool) or not isinstance(value, (decimal.Decimal, int)):
        raise _LiteralError(f"expected Decimal for {data_type}, got {type(value).__name__}")
    number = decimal.Decimal(value)
    if not number.is_finite():
        raise _LiteralError(f"{number} is not a finite decimal")
    quantum = decimal.Decimal(1).scaleb(-data_type.scale)
    context = decimal.Context(prec=data_type.precision, traps=[decimal.InvalidOperation])
    try:
        scaled = number.quantize(quantum, context=context)
    except decimal.InvalidOperation:
        raise _LiteralError(f"{number} has too many digits for {data_type}") from None
    if scaled != number:
        raise _LiteralError(f"{number} has more than {data_type.scale} fractional digits")
    return str(scaled)


def _lower_atomic(value: Any, kind: TypeKind) -> Any:
    if kind is TypeKind.NULL:
        raise _LiteralError("a void literal must be None")
    if kind is TypeKind.BOOLEAN:
        if not isinstance(value, bool):
            raise _LiteralError(f"expected bool, got {type(value).__name__}")
        return value
    if kind in _INT_RANGES:
        if isinstance(value, bool) or not isinstance(value, int):
            raise _LiteralError(f"expected int for {kind.value}, got {type(value).__name__}")
        low, high = _INT_RANGES[kind]
        if not low <= value <= high:
            raise _LiteralError(f"{value} is out of range for {kind.value}")
        return value
    if kind in (TypeKind.FLOAT, TypeKind.DOUBLE):
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise _LiteralError(f"expected float, got {type(value).__name__}")
        return float(value)
    if kind is TypeKind.STRING:
        if not isinstance(value, str):
            raise _LiteralError(f"expected str, got {type(value).__name__}")
        return value
    if kind is TypeKind.BINARY:
        if not isinstance(value, (bytes, bytearray, memoryview)):
            raise _LiteralError(f"expected bytes, got {type(value).__name__}")
        return bytes(value)
    if kind is TypeKind.DATE:
        if isinstance(value, dt.datetime) or not isinstance(value, dt.date):
            raise _LiteralError(f"expected date, got {type(value).__name__}")
        return (value - _EPOCH_DATE).days
    if kind is TypeKind.TIMESTAMP:
        if not isinstance(value, dt.datetime) or value.tzinfo is None:
            raise _LiteralError("timestamp literals require a tz-aware datetime")
        return (value - _EPOCH_UTC) // _MICROSECOND
    if kind is TypeKind.TIMESTAMP_NTZ:
        if not isinstance(value, dt.datetime) or value.tzinfo is not None:
            raise _LiteralError("timestamp_ntz literals require a naive datetime")
        return (value - _EPOCH_NAIVE) // _MICROSECOND
    raise _LiteralError(f"unsupported type {kind.value}")


def _raise_value(value: Any, data_type: DataType) -> Any:
    """Inverse of _lower_value for values decoded from the wire."""
    if value is None:
        return None
    if isinstance(data_type, AtomicType):
        kind = data_type.kind
        if kind is TypeKind.DATE:
            return _EPOCH_DATE + dt.timedelta(days=value)
        if kind is TypeKind.TIMESTAMP:
            return _EPOCH_UTC + value * _MICROSECOND
        if kind is TypeKind.TIMESTAMP_NTZ:
            return _EPOCH_NAIVE + value * _MICROSECOND
        return value
    if isinstance(data_type, DecimalType):
        return decimal.Decimal(value)
    if isinstance(data_type, ArrayType):
        return tuple(_raise_value(v, data_type.element_type) for v in value)
    if isinstance(data_type, MapType):
        return tuple(
            (_raise_value(k, data_type.key_type), _raise_value(v, data_type.value_type))
            for k, v in value
        )
    if isinstance(data_type, StructType):
        return tuple(_raise_value(v, f.data_type) for v, f in zip(value, data_type.fields))
    return value
