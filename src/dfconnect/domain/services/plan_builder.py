"""Plan builder: one construction operation per relation kind.

The builder is the only place plan ids are drawn. Every operation takes
existing relations (or none, for a root) plus expressions and returns a new
node; inputs are never modified, so the same relation can feed any number
of later operations.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from typing import Protocol

from dfconnect.domain.entities.expressions import Alias, Expression, Literal, SortOrder
from dfconnect.domain.entities.relations import (
    SQL,
    Aggregate,
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
    SubqueryAlias,
    ToDF,
    WithColumns,
)
from dfconnect.domain.value_objects.data_types import StructType
from dfconnect.domain.value_objects.identifiers import PlanId


class PlanIdSource(Protocol):
    """Anything that hands out fresh plan ids (a Session, a PlanIdGenerator)."""

    def next_plan_id(self) -> PlanId:
        ...


class PlanBuilder:
    """Builds relation nodes tagged with fresh plan ids.

    Example:
        >>> builder = PlanBuilder(session)
        >>> scan = builder.read_table("t")
        >>> flt = builder.filter(scan, gt(col("x"), lit(5)))
        >>> plan = builder.project(flt, [col("y")])
    """

    def __init__(self, ids: PlanIdSource) -> None:
        self._ids = ids

    def _next_id(self) -> PlanId:
        return self._ids.next_plan_id()

    # Leaf relations

    def read_table(
        self,
        table_name: str,
        options: Mapping[str, str] | None = None,
        is_streaming: bool = False,
    ) -> Read:
        return Read(
            table_name=table_name,
            options=tuple((options or {}).items()),
            is_streaming=is_streaming,
            plan_id=self._next_id(),
        )

    def read_data_source(
        self,
        data_format: str,
        paths: Sequence[str] = (),
        options: Mapping[str, str] | None = None,
        schema: StructType | None = None,
        is_streaming: bool = False,
    ) -> Read:
        return Read(
            data_format=data_format,
            paths=tuple(paths),
            options=tuple((options or {}).items()),
            schema=schema,
            is_streaming=is_streaming,
            plan_id=self._next_id(),
        )

    def local_relation(
        self, data: bytes | None = None, schema: StructType | None = None
    ) -> LocalRelation:
        return LocalRelation(data=data, schema=schema, plan_id=self._next_id())

    def sql(
        self,
        query: str,
        args: Mapping[str, Literal] | None = None,
        pos_args: Sequence[Literal] = (),
    ) -> SQL:
        return SQL(
            query=query,
            args=tuple(sorted((args or {}).items())),
            pos_args=tuple(pos_args),
            plan_id=self._next_id(),
        )

    def range(
        self,
        start: int,
        end: int | None = None,
        step: int = 1,
        num_partitions: int | None = None,
    ) -> Range:
        # range(n) is range(0, n)
        if end is None:
            start, end = 0, start
        return Range(
            start=start, end=end, step=step, num_partitions=num_partitions,
            plan_id=self._next_id(),
        )

    # Unary relations

    def project(self, input: Relation | None, expressions: Iterable[Expression]) -> Project:
        return Project(input=input, expressions=tuple(expressions), plan_id=self._next_id())

    def filter(self, input: Relation, condition: Expression) -> Filter:
        return Filter(input=input, condition=condition, plan_id=self._next_id())

    def aggregate(
        self,
        input: Relation,
        grouping_expressions: Iterable[Expression],
        aggregate_expressions: Iterable[Expression],
        group_type: GroupType = GroupType.GROUPBY,
        pivot: Pivot | None = None,
    ) -> Aggregate:
        return Aggregate(
            input=input,
            group_type=group_type,
            grouping_expressions=tuple(grouping_expressions),
            aggregate_expressions=tuple(aggregate_expressions),
            pivot=pivot,
            plan_id=self._next_id(),
        )

    def sort(self, input: Relation, order: Iterable[SortOrder], is_global: bool = True) -> Sort:
        return Sort(input=input, order=tuple(order), is_global=is_global, plan_id=self._next_id())

    def limit(self, input: Relation, limit: int) -> Limit:
        return Limit(input=input, limit=limit, plan_id=self._next_id())

    def offset(self, input: Relation, offset: int) -> Offset:
        return Offset(input=input, offset=offset, plan_id=self._next_id())

    def deduplicate(
        self, input: Relation, column_names: Sequence[str] | None = None
    ) -> Deduplicate:
        """Drop duplicate rows, keyed on column_names or on all columns when None."""
        if column_names is None:
            return Deduplicate(input=input, all_columns_as_keys=True, plan_id=self._next_id())
        return Deduplicate(
            input=input, column_names=tuple(column_names), plan_id=self._next_id()
        )

    def sample(
        self,
        input: Relation,
        fraction: float,
        with_replacement: bool = False,
        seed: int | None = None,
    ) -> Sample:
        return Sample(
            input=input,
            lower_bound=0.0,
            upper_bound=fraction,
            with_replacement=with_replacement,
            seed=seed,
            plan_id=self._next_id(),
        )

    def rename_columns(self, input: Relation, renames: Mapping[str, str]) -> RenameColumns:
        return RenameColumns(input=input, renames=tuple(renames.items()), plan_id=self._next_id())

    def with_columns(self, input: Relation, aliases: Iterable[Alias]) -> WithColumns:
        return WithColumns(input=input, aliases=tuple(aliases), plan_id=self._next_id())

    def drop(
        self,
        input: Relation,
        columns: Iterable[Expression] = (),
        column_names: Iterable[str] = (),
    ) -> Drop:
        return Drop(
            input=input,
            columns=tuple(columns),
            column_names=tuple(column_names),
            plan_id=self._next_id(),
        )

    def subquery_alias(self, input: Relation, alias: str) -> SubqueryAlias:
        return SubqueryAlias(input=input, alias=alias, plan_id=self._next_id())

    def to_df(self, input: Relation, column_names: Sequence[str]) -> ToDF:
        return ToDF(input=input, column_names=tuple(column_names), plan_id=self._next_id())

    def repartition(self, input: Relation, num_partitions: int, shuffle: bool = True) -> Repartition:
        return Repartition(
            input=input, num_partitions=num_partitions, shuffle=shuffle, plan_id=self._next_id()
        )

    # Binary relations

    def join(
        self,
        left: Relation,
        right: Relation,
        condition: Expression | None = None,
        join_type: JoinType = JoinType.INNER,
        using_columns: Sequence[str] = (),
    ) -> Join:
        return Join(
            left=left,
            right=right,
            join_type=join_type,
            condition=condition,
            using_columns=tuple(using_columns),
            plan_id=self._next_id(),
        )

    def set_operation(
        self,
        left: Relation,
        right: Relation,
        set_op_type: SetOpType,
        is_all: bool = False,
        by_name: bool = False,
        allow_missing_columns: bool = False,
    ) -> SetOperation:
        return SetOperation(
            left=left,
            right=right,
            set_op_type=set_op_type,
            is_all=is_all,
            by_name=by_name,
            allow_missing_columns=allow_missing_columns,
            plan_id=self._next_id(),
        )
