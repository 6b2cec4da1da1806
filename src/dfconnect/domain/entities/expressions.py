"""Expression IR: immutable scalar expression nodes.

Expressions are pure data. They hold no back-references and never change
after construction, so one subtree can be shared by any number of parents
and by concurrent runs without synchronization.

Node kinds:
    - Literal: a constant with its data type
    - ColumnReference: an unresolved column path, optionally pinned to a plan id
    - UnresolvedStar: ``*`` or ``t.*``
    - UnresolvedFunction: a function call by name (operators included, e.g. ">")
    - Alias: a named expression
    - Cast: a type conversion
    - SortOrder: a sort key with direction and null placement
    - WindowExpr: a function evaluated over a window
    - ExpressionString: SQL expression text passed through unparsed
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any

from dfconnect.domain.errors import MalformedPlan
from dfconnect.domain.value_objects.data_types import DataType, StructType
from dfconnect.domain.value_objects.identifiers import PlanId


class SortDirection(Enum):
    ASCENDING = "asc"
    DESCENDING = "desc"


class NullOrdering(Enum):
    NULLS_FIRST = "nulls_first"
    NULLS_LAST = "nulls_last"


class FrameType(Enum):
    ROW = "row"
    RANGE = "range"


class BoundaryKind(Enum):
    UNBOUNDED = "unbounded"
    CURRENT_ROW = "current_row"
    VALUE = "value"


def freeze_value(value: Any) -> Any:
    """Copy a literal value into immutable form.

    Sequences become tuples, mappings become tuples of ``(key, value)``
    pairs and bytearrays become bytes, recursively.
    """
    if isinstance(value, (list, tuple)):
        return tuple(freeze_value(v) for v in value)
    if isinstance(value, Mapping):
        return tuple((freeze_value(k), freeze_value(v)) for k, v in value.items())
    if isinstance(value, bytearray):
        return bytes(value)
    return value


@dataclass(frozen=True, slots=True)
class Expression:
    """Base class for expression nodes."""

    def __str__(self) -> str:
        return repr(self)


@dataclass(frozen=True, slots=True)
class Literal(Expression):
    """A constant value.

    ``data_type`` is None when the value's type could not be inferred; such a
    literal is rejected by the codec with UnsupportedType.
    """

    value: Any
    data_type: DataType | None

    def __post_init__(self) -> None:
        value = self.value
        if isinstance(self.data_type, StructType) and isinstance(value, Mapping):
            value = [value.get(f.name) for f in self.data_type.fields]
        object.__setattr__(self, "value", freeze_value(value))

    def __str__(self) -> str:
        if isinstance(self.value, str):
            return f"'{self.value}'"
        return "NULL" if self.value is None else str(self.value)


@dataclass(frozen=True, slots=True)
class ColumnReference(Expression):
    path: str
    plan_id: PlanId | None = None

    def __post_init__(self) -> None:
        if not self.path:
            raise MalformedPlan("ColumnReference", "column path must not be empty")

    def __str__(self) -> str:
        return self.path


@dataclass(frozen=True, slots=True)
class UnresolvedStar(Expression):
    target: str | None = None

    def __str__(self) -> str:
        return f"{self.target}.*" if self.target else "*"


@dataclass(frozen=True, slots=True)
class UnresolvedFunction(Expression):
    name: str
    arguments: tuple[Expression, ...] = ()
    is_distinct: bool = False

    def __post_init__(self) -> None:
        if not self.name:
            raise MalformedPlan("UnresolvedFunction", "function name must not be empty")
        if not isinstance(self.arguments, tuple):
            object.__setattr__(self, "arguments", tuple(self.arguments))
        for arg in self.arguments:
            if not isinstance(arg, Expression):
                raise MalformedPlan(
                    "UnresolvedFunction", f"argument {arg!r} of {self.name} is not an expression"
                )

    def __str__(self) -> str:
        args = ", ".join(str(a) for a in self.arguments)
        if len(self.arguments) == 2 and not self.name.isidentifier():
            return f"({self.arguments[0]} {self.name} {self.arguments[1]})"
        distinct = "DISTINCT " if self.is_distinct else ""
        return f"{self.name}({distinct}{args})"


@dataclass(frozen=True, slots=True)
class Alias(Expression):
    expr: Expression
    name: str
    metadata: str | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.expr, Expression):
            raise MalformedPlan("Alias", f"aliased value {self.expr!r} is not an expression")
        if not self.name:
            raise MalformedPlan("Alias", "alias name must not be empty")

    def __str__(self) -> str:
        return f"{self.expr} AS {self.name}"


@dataclass(frozen=True, slots=True)
class Cast(Expression):
    expr: Expression
    data_type: DataType

    def __post_init__(self) -> None:
        if not isinstance(self.expr, Expression):
            raise MalformedPlan("Cast", f"cast input {self.expr!r} is not an expression")
        if not isinstance(self.data_type, DataType):
            raise MalformedPlan("Cast", f"cast target {self.data_type!r} is not a data type")

    def __str__(self) -> str:
        return f"CAST({self.expr} AS {self.data_type})"


@dataclass(frozen=True, slots=True)
class SortOrder(Expression):
    child: Expression
    direction: SortDirection = SortDirection.ASCENDING
    null_ordering: NullOrdering | None = None

    def __post_init__(self) -> None:
        if isinstance(self.child, SortOrder):
            raise MalformedPlan("SortOrder", "sort orders cannot be nested")
        # Default null placement follows the direction: nulls first when ascending
        if self.null_ordering is None:
            default = (
                NullOrdering.NULLS_FIRST
                if self.direction is SortDirection.ASCENDING
                else NullOrdering.NULLS_LAST
            )
            object.__setattr__(self, "null_ordering", default)

    def __str__(self) -> str:
        nulls = "NULLS FIRST" if self.null_ordering is NullOrdering.NULLS_FIRST else "NULLS LAST"
        return f"{self.child} {self.direction.value.upper()} {nulls}"


@dataclass(frozen=True, slots=True)
class FrameBoundary:
    kind: BoundaryKind
    value: Expression | None = None

    def __post_init__(self) -> None:
        if (self.kind is BoundaryKind.VALUE) != (self.value is not None):
            raise MalformedPlan(
                "FrameBoundary", "a value is required exactly when kind is VALUE"
            )


@dataclass(frozen=True, slots=True)
class WindowFrame:
    frame_type: FrameType
    lower: FrameBoundary
    upper: FrameBoundary


@dataclass(frozen=True, slots=True)
class WindowExpr(Expression):
    function: Expression
    partition_spec: tuple[Expression, ...] = ()
    order_spec: tuple[SortOrder, ...] = ()
    frame: WindowFrame | None = None

    def __post_init__(self) -> None:
        if isinstance(self.function, WindowExpr):
            raise MalformedPlan("WindowExpr", "window expressions cannot be nested")
        object.__setattr__(self, "partition_spec", tuple(self.partition_spec))
        object.__setattr__(self, "order_spec", tuple(self.order_spec))
        for order in self.order_spec:
            if not isinstance(order, SortOrder):
                raise MalformedPlan("WindowExpr", f"order spec {order!r} is not a SortOrder")

    def __str__(self) -> str:
        parts = []
        if self.partition_spec:
            parts.append("PARTITION BY " + ", ".join(str(p) for p in self.partition_spec))
        if self.order_spec:
            parts.append("ORDER BY " + ", ".join(str(o) for o in self.order_spec))
        return f"{self.function} OVER ({' '.join(parts)})"


@dataclass(frozen=True, slots=True)
class ExpressionString(Expression):
    """SQL expression text; parsed by the server, never by the client."""

    expression: str

    def __post_init__(self) -> None:
        if not self.expression.strip():
            raise MalformedPlan("ExpressionString", "expression text must not be empty")

    def __str__(self) -> str:
        return self.expression


EXPRESSION_TYPES: tuple[type[Expression], ...] = (
    Literal,
    ColumnReference,
    UnresolvedStar,
    UnresolvedFunction,
    Alias,
    Cast,
    SortOrder,
    WindowExpr,
    ExpressionString,
)
