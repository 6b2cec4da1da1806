"""Window specifications for ``Column.over``."""

from __future__ import annotations

from dataclasses import dataclass, replace

from dfconnect.adapters.inbound.column import Column, to_expression
from dfconnect.domain.entities.expressions import (
    BoundaryKind,
    Expression,
    FrameBoundary,
    FrameType,
    Literal,
    SortOrder,
    WindowFrame,
)
from dfconnect.domain.value_objects.data_types import LONG

_UNBOUNDED = 1 << 63


def _column_expression(value: Column | str) -> Expression:
    if isinstance(value, str):
        from dfconnect.adapters.inbound.functions import col

        return col(value).expr
    return to_expression(value)


def _sort_order(value: Column | str) -> SortOrder:
    expr = _column_expression(value)
    return expr if isinstance(expr, SortOrder) else SortOrder(expr)


def _boundary(value: int) -> FrameBoundary:
    if value <= Window.UNBOUNDED_PRECEDING or value >= Window.UNBOUNDED_FOLLOWING:
        return FrameBoundary(BoundaryKind.UNBOUNDED)
    if value == Window.CURRENT_ROW:
        return FrameBoundary(BoundaryKind.CURRENT_ROW)
    return FrameBoundary(BoundaryKind.VALUE, Literal(value, LONG))


@dataclass(frozen=True)
class WindowSpec:
    """Partitioning, ordering and frame of a window. Immutable."""

    partition_spec: tuple[Expression, ...] = ()
    order_spec: tuple[SortOrder, ...] = ()
    frame: WindowFrame | None = None

    def partition_by(self, *cols: Column | str) -> WindowSpec:
        return replace(self, partition_spec=tuple(_column_expression(c) for c in cols))

    def order_by(self, *cols: Column | str) -> WindowSpec:
        return replace(self, order_spec=tuple(_sort_order(c) for c in cols))

    def rows_between(self, start: int, end: int) -> WindowSpec:
        return replace(self, frame=WindowFrame(FrameType.ROW, _boundary(start), _boundary(end)))

    def range_between(self, start: int, end: int) -> WindowSpec:
        return replace(self, frame=WindowFrame(FrameType.RANGE, _boundary(start), _boundary(end)))


class Window:
    """Entry points for building a WindowSpec.

    Example:
        >>> w = Window.partition_by("dept").order_by(col("salary").desc())
        >>> ranked = rank().over(w)
    """

    UNBOUNDED_PRECEDING = -_UNBOUNDED
    UNBOUNDED_FOLLOWING = _UNBOUNDED - 1
    CURRENT_ROW = 0

    @staticmethod
    def partition_by(*cols: Column | str) -> WindowSpec:
        return WindowSpec().partition_by(*cols)

    @staticmethod
    def order_by(*cols: Column | str) -> WindowSpec:
        return WindowSpec().order_by(*cols)

    @staticmethod
    def rows_between(start: int, end: int) -> WindowSpec:
        return WindowSpec().rows_between(start, end)

    @staticmethod
    def range_between(start: int, end: int) -> WindowSpec:
        return WindowSpec().range_between(start, end)
