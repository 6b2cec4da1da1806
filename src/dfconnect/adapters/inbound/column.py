"""Column: the fluent wrapper callers use to build expressions.

Python operators on a Column build UnresolvedFunction nodes named after the
SQL operator (``col("x") > 5`` is ``>(x, 5)``). Plain Python values on
either side are wrapped as literals.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from dfconnect.domain.entities.expressions import (
    Alias,
    Cast,
    Expression,
    NullOrdering,
    SortDirection,
    SortOrder,
    UnresolvedFunction,
    WindowExpr,
)
from dfconnect.domain.value_objects.data_types import DataType, type_from_name

if TYPE_CHECKING:
    from dfconnect.adapters.inbound.window import WindowSpec


def to_expression(value: Any) -> Expression:
    """Unwrap a Column, pass an Expression through, or make a literal."""
    if isinstance(value, Column):
        return value.expr
    if isinstance(value, Expression):
        return value
    from dfconnect.adapters.inbound.functions import lit

    return lit(value).expr


def _binary(name: str, left: Any, right: Any) -> Column:
    return Column(UnresolvedFunction(name, (to_expression(left), to_expression(right))))


def _unary(name: str, operand: Any) -> Column:
    return Column(UnresolvedFunction(name, (to_expression(operand),)))


class Column:
    """A column expression.

    Example:
        >>> cond = (col("x") > 5) & col("y").is_not_null()
        >>> str(cond.expr)
        'and((x > 5), isNotNull(y))'
    """

    __slots__ = ("expr",)

    def __init__(self, expr: Expression) -> None:
        if not isinstance(expr, Expression):
            raise TypeError(f"Column wraps an Expression, got {type(expr).__name__}")
        self.expr = expr

    # Comparison
    def __eq__(self, other: Any) -> Column:  # type: ignore[override]
        return _binary("==", self, other)

    def __ne__(self, other: Any) -> Column:  # type: ignore[override]
        return _binary("!=", self, other)

    def __lt__(self, other: Any) -> Column:
        return _binary("<", self, other)

    def __le__(self, other: Any) -> Column:
        return _binary("<=", self, other)

    def __gt__(self, other: Any) -> Column:
        return _binary(">", self, other)

    def __ge__(self, other: Any) -> Column:
        return _binary(">=", self, other)

    def eq_null_safe(self, other: Any) -> Column:
        return _binary("<=>", self, other)

    # Arithmetic
    def __add__(self, other: Any) -> Column:
        return _binary("+", self, other)

    def __radd__(self, other: Any) -> Column:
        return _binary("+", other, self)

    def __sub__(self, other: Any) -> Column:
        return _binary("-", self, other)

    def __rsub__(self, other: Any) -> Column:
        return _binary("-", other, self)

    def __mul__(self, other: Any) -> Column:
        return _binary("*", self, other)

    def __rmul__(self, other: Any) -> Column:
        return _binary("*", other, self)

    def __truediv__(self, other: Any) -> Column:
        return _binary("/", self, other)

    def __rtruediv__(self, other: Any) -> Column:
        return _binary("/", other, self)

    def __mod__(self, other: Any) -> Column:
        return _binary("%", self, other)

    def __rmod__(self, other: Any) -> Column:
        return _binary("%", other, self)

    def __neg__(self) -> Column:
        return _unary("negative", self)

    # Boolean logic
    def __and__(self, other: Any) -> Column:
        return _binary("and", self, other)

    def __rand__(self, other: Any) -> Column:
        return _binary("and", other, self)

    def __or__(self, other: Any) -> Column:
        return _binary("or", self, other)

    def __ror__(self, other: Any) -> Column:
        return _binary("or", other, self)

    def __invert__(self) -> Column:
        return _unary("not", self)

    def __bool__(self) -> bool:
        raise ValueError(
            "Cannot convert a Column to bool; use '&', '|' and '~' instead of "
            "'and', 'or' and 'not'"
        )

    __hash__ = None  # type: ignore[assignment]

    # Predicates
    def is_null(self) -> Column:
        return _unary("isNull", self)

    def is_not_null(self) -> Column:
        return _unary("isNotNull", self)

    def isin(self, *values: Any) -> Column:
        if len(values) == 1 and isinstance(values[0], (list, tuple, set)):
            values = tuple(values[0])
        return Column(
            UnresolvedFunction("in", (self.expr, *(to_expression(v) for v in values)))
        )

    def between(self, lower: Any, upper: Any) -> Column:
        return (self >= lower) & (self <= upper)

    def like(self, pattern: str) -> Column:
        return _binary("like", self, pattern)

    def rlike(self, pattern: str) -> Column:
        return _binary("rlike", self, pattern)

    def startswith(self, prefix: Any) -> Column:
        return _binary("startswith", self, prefix)

    def endswith(self, suffix: Any) -> Column:
        return _binary("endswith", self, suffix)

    def contains(self, other: Any) -> Column:
        return _binary("contains", self, other)

    def get_field(self, name: str) -> Column:
        return _binary("get_field", self, name)

    def get_item(self, key: Any) -> Column:
        return _binary("get_item", self, key)

    def otherwise(self, value: Any) -> Column:
        """Default branch of a ``when`` chain."""
        expr = self.expr
        if not isinstance(expr, UnresolvedFunction) or expr.name != "when":
            raise ValueError("otherwise() can only follow when()")
        if len(expr.arguments) % 2:
            raise ValueError("otherwise() can only be applied once")
        return Column(UnresolvedFunction("when", (*expr.arguments, to_expression(value))))

    def when(self, condition: Column, value: Any) -> Column:
        """Add a branch to a ``when`` chain."""
        expr = self.expr
        if not isinstance(expr, UnresolvedFunction) or expr.name != "when":
            raise ValueError("when() can only follow when()")
        if len(expr.arguments) % 2:
            raise ValueError("when() cannot follow otherwise()")
        return Column(
            UnresolvedFunction(
                "when", (*expr.arguments, to_expression(condition), to_expression(value))
            )
        )

    # Naming and typing
    def alias(self, name: str, metadata: str | None = None) -> Column:
        return Column(Alias(self.expr, name, metadata))

    name = alias

    def cast(self, data_type: DataType | str) -> Column:
        if isinstance(data_type, str):
            data_type = type_from_name(data_type)
        return Column(Cast(self.expr, data_type))

    # Ordering
    def asc(self) -> Column:
        return Column(SortOrder(self.expr, SortDirection.ASCENDING))

    def asc_nulls_first(self) -> Column:
        return Column(SortOrder(self.expr, SortDirection.ASCENDING, NullOrdering.NULLS_FIRST))

    def asc_nulls_last(self) -> Column:
        return Column(SortOrder(self.expr, SortDirection.ASCENDING, NullOrdering.NULLS_LAST))

    def desc(self) -> Column:
        return Column(SortOrder(self.expr, SortDirection.DESCENDING))

    def desc_nulls_first(self) -> Column:
        return Column(SortOrder(self.expr, SortDirection.DESCENDING, NullOrdering.NULLS_FIRST))

    def desc_nulls_last(self) -> Column:
        return Column(SortOrder(self.expr, SortDirection.DESCENDING, NullOrdering.NULLS_LAST))

    # Windows
    def over(self, window: WindowSpec) -> Column:
        return Column(
            WindowExpr(self.expr, window.partition_spec, window.order_spec, window.frame)
        )

    def __repr__(self) -> str:
        return f"Column<'{self.expr}'>"
