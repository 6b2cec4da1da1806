"""Relation IR: immutable tabular operator nodes of the logical plan.

Each node owns zero to two child relations plus its own expressions, and is
tagged at construction with a plan id that distinguishes structurally
identical subplans. Nodes are frozen dataclasses with keyword-only fields;
validation runs in ``__post_init__`` so a malformed node can never exist.

Plans are trees. A node may be reused as the child of several new nodes
(it is immutable), but nodes hold no references to their parents.

Example:
    >>> scan = Read(table_name="t", plan_id=PlanId(1))
    >>> cond = UnresolvedFunction(">", (ColumnReference("x"), Literal(5, INTEGER)))
    >>> flt = Filter(input=scan, condition=cond, plan_id=PlanId(2))
    >>> flt.children == (scan,)
    True
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any, ClassVar

from dfconnect.domain.entities.expressions import (
    Alias,
    Expression,
    Literal,
    SortOrder,
)
from dfconnect.domain.errors import MalformedPlan
from dfconnect.domain.value_objects.data_types import StructType
from dfconnect.domain.value_objects.identifiers import PlanId


class JoinType(Enum):
    INNER = "inner"
    FULL_OUTER = "full_outer"
    LEFT_OUTER = "left_outer"
    RIGHT_OUTER = "right_outer"
    LEFT_ANTI = "left_anti"
    LEFT_SEMI = "left_semi"
    CROSS = "cross"


class GroupType(Enum):
    GROUPBY = "groupby"
    ROLLUP = "rollup"
    CUBE = "cube"
    PIVOT = "pivot"


class SetOpType(Enum):
    UNION = "union"
    INTERSECT = "intersect"
    EXCEPT = "except"


def _options(value: Mapping[str, str] | tuple[tuple[str, str], ...]) -> tuple[tuple[str, str], ...]:
    items = value.items() if isinstance(value, Mapping) else value
    return tuple(sorted((str(k), str(v)) for k, v in items))


@dataclass(frozen=True, slots=True, kw_only=True)
class Relation:
    """Base class for relation nodes."""

    plan_id: PlanId

    # Names of fields holding child relations, in wire order
    _child_fields: ClassVar[tuple[str, ...]] = ()

    @property
    def children(self) -> tuple[Relation, ...]:
        return tuple(
            child
            for child in (getattr(self, name) for name in self._child_fields)
            if child is not None
        )

    @property
    def node_name(self) -> str:
        return type(self).__name__

    def _fail(self, reason: str) -> MalformedPlan:
        return MalformedPlan(self.node_name, reason)

    def _require_relation(self, name: str, value: Any, optional: bool = False) -> None:
        if value is None and optional:
            return
        if not isinstance(value, Relation):
            raise self._fail(f"'{name}' must be a Relation, got {type(value).__name__}")

    def _require_expressions(self, name: str, values: Any, allow_empty: bool = False) -> None:
        values = tuple(values)
        object.__setattr__(self, name, values)
        if not values and not allow_empty:
            raise self._fail(f"'{name}' requires at least one expression")
        for value in values:
            if not isinstance(value, Expression):
                raise self._fail(f"'{name}' contains a non-expression: {value!r}")

    def tree_string(self, indent: int = 0) -> str:
        """Render the plan as an indented tree, one node per line."""
        lines = ["  " * indent + f"{self.node_name}#{self.plan_id}"]
        for child in self.children:
            lines.append(child.tree_string(indent + 1))
        return "\n".join(lines)


@dataclass(frozen=True, slots=True, kw_only=True)
class Read(Relation):
    """Scan a named table, or load from a data source format and paths."""

    table_name: str | None = None
    data_format: str | None = None
    paths: tuple[str, ...] = ()
    options: tuple[tuple[str, str], ...] = ()
    schema: StructType | None = None
    is_streaming: bool = False

    def __post_init__(self) -> None:
        if (self.table_name is None) == (self.data_format is None):
            raise self._fail("exactly one of table_name or data_format is required")
        if self.table_name is not None and not self.table_name:
            raise self._fail("table_name must not be empty")
        if self.table_name is not None and self.paths:
            raise self._fail("paths are only valid for data source reads")
        object.__setattr__(self, "paths", tuple(self.paths))
        object.__setattr__(self, "options", _options(self.options))


@dataclass(frozen=True, slots=True, kw_only=True)
class Project(Relation):
    input: Relation | None = None
    expressions: tuple[Expression, ...]

    _child_fields: ClassVar[tuple[str, ...]] = ("input",)

    def __post_init__(self) -> None:
        self._require_relation("input", self.input, optional=True)
        self._require_expressions("expressions", self.expressions)


@dataclass(frozen=True, slots=True, kw_only=True)
class Filter(Relation):
    input: Relation
    condition: Expression

    _child_fields: ClassVar[tuple[str, ...]] = ("input",)

    def __post_init__(self) -> None:
        self._require_relation("input", self.input)
        if not isinstance(self.condition, Expression):
            raise self._fail("condition must be an expression")


@dataclass(frozen=True, slots=True, kw_only=True)
class Join(Relation):
    left: Relation
    right: Relation
    join_type: JoinType = JoinType.INNER
    condition: Expression | None = None
    using_columns: tuple[str, ...] = ()

    _child_fields: ClassVar[tuple[str, ...]] = ("left", "right")

    def __post_init__(self) -> None:
        self._require_relation("left", self.left)
        self._require_relation("right", self.right)
        object.__setattr__(self, "using_columns", tuple(self.using_columns))
        if self.condition is not None and self.using_columns:
            raise self._fail("condition and using_columns are mutually exclusive")
        if self.condition is not None and not isinstance(self.condition, Expression):
            raise self._fail("condition must be an expression")


@dataclass(frozen=True, slots=True)
class Pivot:
    column: Expression
    values: tuple[Literal, ...] = ()


@dataclass(frozen=True, slots=True, kw_only=True)
class Aggregate(Relation):
    input: Relation
    group_type: GroupType = GroupType.GROUPBY
    grouping_expressions: tuple[Expression, ...] = ()
    aggregate_expressions: tuple[Expression, ...] = ()
    pivot: Pivot | None = None

    _child_fields: ClassVar[tuple[str, ...]] = ("input",)

    def __post_init__(self) -> None:
        self._require_relation("input", self.input)
        self._require_expressions("grouping_expressions", self.grouping_expressions, allow_empty=True)
        self._require_expressions("aggregate_expressions", self.aggregate_expressions, allow_empty=True)
        if not self.grouping_expressions and not self.aggregate_expressions:
            raise self._fail("requires grouping or aggregate expressions")
        if (self.group_type is GroupType.PIVOT) != (self.pivot is not None):
            raise self._fail("a pivot is required exactly when group_type is PIVOT")


@dataclass(frozen=True, slots=True, kw_only=True)
class Sort(Relation):
    input: Relation
    order: tuple[SortOrder, ...]
    is_global: bool = True

    _child_fields: ClassVar[tuple[str, ...]] = ("input",)

    def __post_init__(self) -> None:
        self._require_relation("input", self.input)
        self._require_expressions("order", self.order)
        for item in self.order:
            if not isinstance(item, SortOrder):
                raise self._fail(f"order item {item} is not a SortOrder")


@dataclass(frozen=True, slots=True, kw_only=True)
class Limit(Relation):
    input: Relation
    limit: int

    _child_fields: ClassVar[tuple[str, ...]] = ("input",)

    def __post_init__(self) -> None:
        self._require_relation("input", self.input)
        if self.limit < 0:
            raise self._fail(f"limit must be non-negative, got {self.limit}")


@dataclass(frozen=True, slots=True, kw_only=True)
class Offset(Relation):
    input: Relation
    offset: int

    _child_fields: ClassVar[tuple[str, ...]] = ("input",)

    def __post_init__(self) -> None:
        self._require_relation("input", self.input)
        if self.offset < 0:
            raise self._fail(f"offset must be non-negative, got {self.offset}")


@dataclass(frozen=True, slots=True, kw_only=True)
class SetOperation(Relation):
    left: Relation
    right: Relation
    set_op_type: SetOpType
    is_all: bool = False
    by_name: bool = False
    allow_missing_columns: bool = False

    _child_fields: ClassVar[tuple[str, ...]] = ("left", "right")

    def __post_init__(self) -> None:
        self._require_relation("left", self.left)
        self._require_relation("right", self.right)
        if self.by_name and self.set_op_type is not SetOpType.UNION:
            raise self._fail("by_name is only valid for UNION")
        if self.allow_missing_columns and not self.by_name:
            raise self._fail("allow_missing_columns requires by_name")


@dataclass(frozen=True, slots=True, kw_only=True)
class LocalRelation(Relation):
    """Inline data shipped with the plan as Arrow IPC stream bytes."""

    data: bytes | None = None
    schema: StructType | None = None

    def __post_init__(self) -> None:
        if self.data is None and self.schema is None:
            raise self._fail("requires data, schema, or both")


@dataclass(frozen=True, slots=True, kw_only=True)
class SQL(Relation):
    """SQL query text passed through to the server unparsed."""

    query: str
    args: tuple[tuple[str, Literal], ...] = ()
    pos_args: tuple[Literal, ...] = ()

    def __post_init__(self) -> None:
        if not self.query.strip():
            raise self._fail("query must not be empty")
        if isinstance(self.args, Mapping):
            object.__setattr__(self, "args", tuple(sorted(self.args.items())))
        object.__setattr__(self, "args", tuple(self.args))
        object.__setattr__(self, "pos_args", tuple(self.pos_args))
        if self.args and self.pos_args:
            raise self._fail("named and positional arguments cannot be mixed")


@dataclass(frozen=True, slots=True, kw_only=True)
class Deduplicate(Relation):
    input: Relation
    column_names: tuple[str, ...] = ()
    all_columns_as_keys: bool = False

    _child_fields: ClassVar[tuple[str, ...]] = ("input",)

    def __post_init__(self) -> None:
        self._require_relation("input", self.input)
        object.__setattr__(self, "column_names", tuple(self.column_names))
        if self.all_columns_as_keys == bool(self.column_names):
            raise self._fail("use either column_names or all_columns_as_keys")


@dataclass(frozen=True, slots=True, kw_only=True)
class Sample(Relation):
    input: Relation
    lower_bound: float = 0.0
    upper_bound: float
    with_replacement: bool = False
    seed: int | None = None

    _child_fields: ClassVar[tuple[str, ...]] = ("input",)

    def __post_init__(self) -> None:
        self._require_relation("input", self.input)
        if self.lower_bound < 0 or self.upper_bound < self.lower_bound:
            raise self._fail(
                f"bounds must satisfy 0 <= lower <= upper, got "
                f"[{self.lower_bound}, {self.upper_bound}]"
            )
        if not self.with_replacement and self.upper_bound > 1.0:
            raise self._fail("upper_bound must be <= 1.0 without replacement")


@dataclass(frozen=True, slots=True, kw_only=True)
class RenameColumns(Relation):
    input: Relation
    renames: tuple[tuple[str, str], ...]

    _child_fields: ClassVar[tuple[str, ...]] = ("input",)

    def __post_init__(self) -> None:
        self._require_relation("input", self.input)
        if isinstance(self.renames, Mapping):
            object.__setattr__(self, "renames", tuple(self.renames.items()))
        object.__setattr__(self, "renames", tuple(self.renames))
        if not self.renames:
            raise self._fail("requires at least one rename")


@dataclass(frozen=True, slots=True, kw_only=True)
class WithColumns(Relation):
    input: Relation
    aliases: tuple[Alias, ...]

    _child_fields: ClassVar[tuple[str, ...]] = ("input",)

    def __post_init__(self) -> None:
        self._require_relation("input", self.input)
        self._require_expressions("aliases", self.aliases)
        for alias in self.aliases:
            if not isinstance(alias, Alias):
                raise self._fail(f"{alias} is not an Alias")


@dataclass(frozen=True, slots=True, kw_only=True)
class Drop(Relation):
    input: Relation
    columns: tuple[Expression, ...] = ()
    column_names: tuple[str, ...] = ()

    _child_fields: ClassVar[tuple[str, ...]] = ("input",)

    def __post_init__(self) -> None:
        self._require_relation("input", self.input)
        self._require_expressions("columns", self.columns, allow_empty=True)
        object.__setattr__(self, "column_names", tuple(self.column_names))
        if not self.columns and not self.column_names:
            raise self._fail("requires at least one column to drop")


@dataclass(frozen=True, slots=True, kw_only=True)
class Range(Relation):
    start: int = 0
    end: int
    step: int = 1
    num_partitions: int | None = None

    def __post_init__(self) -> None:
        if self.step == 0:
            raise self._fail("step must not be zero")
        if self.num_partitions is not None and self.num_partitions < 1:
            raise self._fail("num_partitions must be positive")


@dataclass(frozen=True, slots=True, kw_only=True)
class SubqueryAlias(Relation):
    input: Relation
    alias: str

    _child_fields: ClassVar[tuple[str, ...]] = ("input",)

    def __post_init__(self) -> None:
        self._require_relation("input", self.input)
        if not self.alias:
            raise self._fail("alias must not be empty")


@dataclass(frozen=True, slots=True, kw_only=True)
class ToDF(Relation):
    input: Relation
    column_names: tuple[str, ...]

    _child_fields: ClassVar[tuple[str, ...]] = ("input",)

    def __post_init__(self) -> None:
        self._require_relation("input", self.input)
        object.__setattr__(self, "column_names", tuple(self.column_names))
        if not self.column_names:
            raise self._fail("requires at least one column name")


@dataclass(frozen=True, slots=True, kw_only=True)
class Repartition(Relation):
    input: Relation
    num_partitions: int
    shuffle: bool = True

    _child_fields: ClassVar[tuple[str, ...]] = ("input",)

    def __post_init__(self) -> None:
        self._require_relation("input", self.input)
        if self.num_partitions < 1:
            raise self._fail("num_partitions must be positive")


# Commands: plans executed for their side effects rather than their rows


@dataclass(frozen=True, slots=True, kw_only=True)
class Command:
    """Base class for raw command plans."""

    @property
    def node_name(self) -> str:
        return type(self).__name__


@dataclass(frozen=True, slots=True, kw_only=True)
class SqlCommand(Command):
    sql: str
    args: tuple[tuple[str, Literal], ...] = ()
    pos_args: tuple[Literal, ...] = ()

    def __post_init__(self) -> None:
        if not self.sql.strip():
            raise MalformedPlan(self.node_name, "sql must not be empty")
        if isinstance(self.args, Mapping):
            object.__setattr__(self, "args", tuple(sorted(self.args.items())))
        object.__setattr__(self, "args", tuple(self.args))
        object.__setattr__(self, "pos_args", tuple(self.pos_args))
        if self.args and self.pos_args:
            raise MalformedPlan(self.node_name, "named and positional arguments cannot be mixed")


@dataclass(frozen=True, slots=True, kw_only=True)
class CreateView(Command):
    input: Relation
    name: str
    is_global: bool = False
    replace: bool = True

    def __post_init__(self) -> None:
        if not isinstance(self.input, Relation):
            raise MalformedPlan(self.node_name, "'input' must be a Relation")
        if not self.name:
            raise MalformedPlan(self.node_name, "view name must not be empty")


RELATION_TYPES: tuple[type[Relation], ...] = (
    Read,
    Project,
    Filter,
    Join,
    Aggregate,
    Sort,
    Limit,
    Offset,
    SetOperation,
    LocalRelation,
    SQL,
    Deduplicate,
    Sample,
    RenameColumns,
    WithColumns,
    Drop,
    Range,
    SubqueryAlias,
    ToDF,
    Repartition,
)
"""Every concrete relation kind; the codec must handle each one."""
