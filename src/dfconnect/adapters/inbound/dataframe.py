"""DataFrame: the fluent, lazy query-building surface.

Every transformation returns a new DataFrame wrapping a new relation node;
nothing is sent to the server until an action (``collect``, ``to_arrow``,
``count``, ``schema``, ``explain``, ...) is awaited.

Example:
    >>> df = client.table("people").filter(col("age") > 21).select("name")
    >>> rows = await df.collect()
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import TYPE_CHECKING, Any

import pyarrow as pa

from dfconnect.adapters.inbound import functions as F
from dfconnect.adapters.inbound.column import Column, to_expression
from dfconnect.domain.entities.expressions import (
    Alias,
    ColumnReference,
    Expression,
    ExpressionString,
    Literal,
    SortOrder,
)
from dfconnect.domain.entities.relations import (
    CreateView,
    GroupType,
    JoinType,
    Pivot,
    Relation,
    SetOpType,
)
from dfconnect.domain.value_objects.data_types import StructType
from dfconnect.domain.value_objects.storage_level import StorageLevel

if TYPE_CHECKING:
    from dfconnect.application.client import ConnectClient
    from dfconnect.application.execution_engine import ExecutionRun

_JOIN_TYPES: dict[str, JoinType] = {
    "inner": JoinType.INNER,
    "cross": JoinType.CROSS,
    "outer": JoinType.FULL_OUTER,
    "full": JoinType.FULL_OUTER,
    "fullouter": JoinType.FULL_OUTER,
    "full_outer": JoinType.FULL_OUTER,
    "left": JoinType.LEFT_OUTER,
    "leftouter": JoinType.LEFT_OUTER,
    "left_outer": JoinType.LEFT_OUTER,
    "right": JoinType.RIGHT_OUTER,
    "rightouter": JoinType.RIGHT_OUTER,
    "right_outer": JoinType.RIGHT_OUTER,
    "semi": JoinType.LEFT_SEMI,
    "leftsemi": JoinType.LEFT_SEMI,
    "left_semi": JoinType.LEFT_SEMI,
    "anti": JoinType.LEFT_ANTI,
    "leftanti": JoinType.LEFT_ANTI,
    "left_anti": JoinType.LEFT_ANTI,
}


def _expression(value: Column | str | Expression) -> Expression:
    if isinstance(value, str):
        return F.col(value).expr
    return to_expression(value)


def _sort_order(value: Column | str) -> SortOrder:
    expr = _expression(value)
    return expr if isinstance(expr, SortOrder) else SortOrder(expr)


def _flatten(cols: tuple[Any, ...]) -> tuple[Any, ...]:
    if len(cols) == 1 and isinstance(cols[0], (list, tuple)):
        return tuple(cols[0])
    return cols


class DataFrame:
    """A lazily evaluated query bound to a client."""

    def __init__(self, client: ConnectClient, plan: Relation) -> None:
        self._client = client
        self.plan = plan

    def _derive(self, plan: Relation) -> DataFrame:
        return DataFrame(self._client, plan)

    @property
    def _builder(self):
        return self._client.builder

    # Column access

    def __getitem__(self, name: str) -> Column:
        return self.col(name)

    def col(self, name: str) -> Column:
        """A column reference pinned to this DataFrame's plan node.

        The plan id lets the server tell apart same-named columns of the two
        sides of a self-join.
        """
        if name == "*":
            return F.col("*")
        return Column(ColumnReference(name, plan_id=self.plan.plan_id))

    # Transformations

    def select(self, *cols: Column | str) -> DataFrame:
        exprs = [_expression(c) for c in _flatten(cols)]
        return self._derive(self._builder.project(self.plan, exprs))

    def select_expr(self, *exprs: str) -> DataFrame:
        return self._derive(
            self._builder.project(self.plan, [ExpressionString(e) for e in _flatten(exprs)])
        )

    def filter(self, condition: Column | str) -> DataFrame:
        expr = ExpressionString(condition) if isinstance(condition, str) else to_expression(condition)
        return self._derive(self._builder.filter(self.plan, expr))

    where = filter

    def with_column(self, name: str, col: Column) -> DataFrame:
        return self.with_columns({name: col})

    def with_columns(self, columns: Mapping[str, Column]) -> DataFrame:
        aliases = [Alias(to_expression(c), name) for name, c in columns.items()]
        return self._derive(self._builder.with_columns(self.plan, aliases))

    def with_column_renamed(self, existing: str, new: str) -> DataFrame:
        return self.with_columns_renamed({existing: new})

    def with_columns_renamed(self, renames: Mapping[str, str]) -> DataFrame:
        return self._derive(self._builder.rename_columns(self.plan, renames))

    def drop(self, *cols: Column | str) -> DataFrame:
        names = [c for c in cols if isinstance(c, str)]
        columns = [to_expression(c) for c in cols if not isinstance(c, str)]
        return self._derive(self._builder.drop(self.plan, columns, names))

    def group_by(self, *cols: Column | str) -> GroupedData:
        return GroupedData(self, GroupType.GROUPBY, [_expression(c) for c in _flatten(cols)])

    groupby = group_by

    def rollup(self, *cols: Column | str) -> GroupedData:
        return GroupedData(self, GroupType.ROLLUP, [_expression(c) for c in _flatten(cols)])

    def cube(self, *cols: Column | str) -> GroupedData:
        return GroupedData(self, GroupType.CUBE, [_expression(c) for c in _flatten(cols)])

    def agg(self, *exprs: Column | Mapping[str, str]) -> DataFrame:
        """Aggregate over the whole DataFrame without grouping."""
        return self.group_by().agg(*exprs)

    def order_by(self, *cols: Column | str) -> DataFrame:
        order = [_sort_order(c) for c in _flatten(cols)]
        return self._derive(self._builder.sort(self.plan, order, is_global=True))

    sort = order_by

    def sort_within_partitions(self, *cols: Column | str) -> DataFrame:
        order = [_sort_order(c) for c in _flatten(cols)]
        return self._derive(self._builder.sort(self.plan, order, is_global=False))

    def limit(self, n: int) -> DataFrame:
        return self._derive(self._builder.limit(self.plan, n))

    def offset(self, n: int) -> DataFrame:
        return self._derive(self._builder.offset(self.plan, n))

    def distinct(self) -> DataFrame:
        return self._derive(self._builder.deduplicate(self.plan))

    def drop_duplicates(self, subset: Sequence[str] | None = None) -> DataFrame:
        return self._derive(self._builder.deduplicate(self.plan, subset))

    def join(
        self,
        other: DataFrame,
        on: str | Sequence[str] | Column | None = None,
        how: str = "inner",
    ) -> DataFrame:
        try:
            join_type = _JOIN_TYPES[how.lower()]
        except KeyError:
            raise ValueError(f"Unsupported join type: {how!r}") from None
        condition = None
        using: Sequence[str] = ()
        if isinstance(on, str):
            using = (on,)
        elif isinstance(on, Column):
            condition = on.expr
        elif on is not None:
            using = tuple(on)
        return self._derive(
            self._builder.join(self.plan, other.plan, condition, join_type, using)
        )

    def cross_join(self, other: DataFrame) -> DataFrame:
        return self._derive(self._builder.join(self.plan, other.plan, join_type=JoinType.CROSS))

    def _set_op(self, other: DataFrame, op: SetOpType, is_all: bool, **kwargs: bool) -> DataFrame:
        return self._derive(self._builder.set_operation(self.plan, other.plan, op, is_all, **kwargs))

    def union(self, other: DataFrame) -> DataFrame:
        """Union keeping duplicates (UNION ALL), matching columns by position."""
        return self._set_op(other, SetOpType.UNION, True)

    union_all = union

    def union_by_name(self, other: DataFrame, allow_missing_columns: bool = False) -> DataFrame:
        return self._set_op(
            other,
            SetOpType.UNION,
            True,
            by_name=True,
            allow_missing_columns=allow_missing_columns,
        )

    def intersect(self, other: DataFrame) -> DataFrame:
        return self._set_op(other, SetOpType.INTERSECT, False)

    def intersect_all(self, other: DataFrame) -> DataFrame:
        return self._set_op(other, SetOpType.INTERSECT, True)

    def subtract(self, other: DataFrame) -> DataFrame:
        return self._set_op(other, SetOpType.EXCEPT, False)

    def except_all(self, other: DataFrame) -> DataFrame:
        return self._set_op(other, SetOpType.EXCEPT, True)

    def sample(
        self, fraction: float, with_replacement: bool = False, seed: int | None = None
    ) -> DataFrame:
        return self._derive(self._builder.sample(self.plan, fraction, with_replacement, seed))

    def alias(self, name: str) -> DataFrame:
        return self._derive(self._builder.subquery_alias(self.plan, name))

    def to_df(self, *names: str) -> DataFrame:
        return self._derive(self._builder.to_df(self.plan, _flatten(names)))

    def repartition(self, num_partitions: int) -> DataFrame:
        return self._derive(self._builder.repartition(self.plan, num_partitions, shuffle=True))

    def coalesce(self, num_partitions: int) -> DataFrame:
        return self._derive(self._builder.repartition(self.plan, num_partitions, shuffle=False))

    # Actions

    def execute(self) -> ExecutionRun:
        """Submit the plan; iterate the returned run for result batches."""
        return self._client.execute(self.plan)

    async def to_arrow(self) -> pa.Table:
        return await self.execute().to_table()

    async def collect(self) -> list[dict[str, Any]]:
        return (await self.to_arrow()).to_pylist()

    async def take(self, n: int) -> list[dict[str, Any]]:
        return await self.limit(n).collect()

    head = take

    async def first(self) -> dict[str, Any] | None:
        rows = await self.take(1)
        return rows[0] if rows else None

    async def count(self) -> int:
        table = await self.group_by().agg(F.count("*").alias("count")).to_arrow()
        return int(table.column(0)[0].as_py())

    async def schema(self) -> StructType:
        return await self._client.analyzer.resolve(self.plan)

    async def columns(self) -> list[str]:
        return list((await self.schema()).names)

    async def explain(self, mode: str = "simple") -> str:
        return await self._client.analyzer.explain(self.plan, mode)

    async def tree_string(self, level: int | None = None) -> str:
        return await self._client.analyzer.tree_string(self.plan, level)

    async def is_local(self) -> bool:
        return await self._client.analyzer.is_local(self.plan)

    async def is_streaming(self) -> bool:
        return await self._client.analyzer.is_streaming(self.plan)

    async def input_files(self) -> list[str]:
        return await self._client.analyzer.input_files(self.plan)

    async def same_semantics(self, other: DataFrame) -> bool:
        return await self._client.analyzer.same_semantics(self.plan, other.plan)

    async def semantic_hash(self) -> int:
        return await self._client.analyzer.semantic_hash(self.plan)

    async def persist(self, storage_level: StorageLevel | None = None) -> DataFrame:
        """Ask the server to keep this DataFrame's result. Returns self for chaining."""
        await self._client.analyzer.persist(self.plan, storage_level)
        return self

    async def cache(self) -> DataFrame:
        return await self.persist()

    async def unpersist(self, blocking: bool = False) -> DataFrame:
        await self._client.analyzer.unpersist(self.plan, blocking)
        return self

    async def storage_level(self) -> StorageLevel:
        return await self._client.analyzer.storage_level(self.plan)

    async def _create_view(self, name: str, is_global: bool, replace: bool) -> None:
        await self._client.run_command(
            CreateView(input=self.plan, name=name, is_global=is_global, replace=replace)
        )

    async def create_temp_view(self, name: str) -> None:
        await self._create_view(name, is_global=False, replace=False)

    async def create_or_replace_temp_view(self, name: str) -> None:
        await self._create_view(name, is_global=False, replace=True)

    async def create_global_temp_view(self, name: str) -> None:
        await self._create_view(name, is_global=True, replace=False)

    async def create_or_replace_global_temp_view(self, name: str) -> None:
        await self._create_view(name, is_global=True, replace=True)

    def __repr__(self) -> str:
        return f"DataFrame[{self.plan.node_name}#{self.plan.plan_id}]"


class GroupedData:
    """A DataFrame with grouping applied, waiting for aggregate expressions."""

    def __init__(
        self,
        df: DataFrame,
        group_type: GroupType,
        grouping: Sequence[Expression],
        pivot: Pivot | None = None,
    ) -> None:
        self._df = df
        self._group_type = group_type
        self._grouping = tuple(grouping)
        self._pivot = pivot

    def agg(self, *exprs: Column | Mapping[str, str]) -> DataFrame:
        """Aggregate with Columns, or a ``{column: function}`` mapping."""
        aggregates: list[Expression] = []
        for item in exprs:
            if isinstance(item, Mapping):
                aggregates.extend(
                    F.call_function(func, F.col(name)).expr for name, func in item.items()
                )
            else:
                aggregates.append(to_expression(item))
        plan = self._df._builder.aggregate(
            self._df.plan, self._grouping, aggregates, self._group_type, self._pivot
        )
        return self._df._derive(plan)

    def _apply(self, func: str, cols: tuple[str, ...]) -> DataFrame:
        return self.agg(*(F.call_function(func, F.col(c)) for c in cols))

    def count(self) -> DataFrame:
        return self.agg(F.count("*").alias("count"))

    def sum(self, *cols: str) -> DataFrame:
        return self._apply("sum", cols)

    def avg(self, *cols: str) -> DataFrame:
        return self._apply("avg", cols)

    mean = avg

    def min(self, *cols: str) -> DataFrame:
        return self._apply("min", cols)

    def max(self, *cols: str) -> DataFrame:
        return self._apply("max", cols)

    def pivot(self, pivot_col: str, values: Sequence[Any] | None = None) -> GroupedData:
        """Pivot on a column. Only valid after ``group_by``."""
        if self._group_type is not GroupType.GROUPBY:
            raise ValueError("pivot() is only valid after group_by()")
        literals = tuple(Literal(v, F.infer_type(v)) for v in (values or ()))
        return GroupedData(
            self._df, GroupType.PIVOT, self._grouping, Pivot(F.col(pivot_col).expr, literals)
        )
