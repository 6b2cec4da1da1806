"""Column functions: references, literals, SQL text and common built-ins.

Functions are resolved by name on the server; the client only records the
call. ``lit`` infers the literal's data type from the Python value and
leaves it unset (rejected later by the codec) when no type fits.
"""

from __future__ import annotations

import builtins
import datetime as dt
import decimal
from typing import Any

from dfconnect.adapters.inbound.column import Column, to_expression
from dfconnect.domain.entities.expressions import (
    ColumnReference,
    ExpressionString,
    Literal,
    UnresolvedFunction,
    UnresolvedStar,
)
from dfconnect.domain.value_objects.data_types import (
    BINARY,
    BOOLEAN,
    DATE,
    DOUBLE,
    INTEGER,
    LONG,
    NULL,
    STRING,
    TIMESTAMP,
    TIMESTAMP_NTZ,
    ArrayType,
    DataType,
    DecimalType,
    MapType,
)

_INT32_MIN, _INT32_MAX = -(2**31), 2**31 - 1


def infer_type(value: Any) -> DataType | None:
    """Infer a protocol type for a Python value, or None if none fits."""
    if value is None:
        return NULL
    if isinstance(value, bool):
        return BOOLEAN
    if isinstance(value, int):
        return INTEGER if _INT32_MIN <= value <= _INT32_MAX else LONG
    if isinstance(value, float):
        return DOUBLE
    if isinstance(value, str):
        return STRING
    if isinstance(value, (bytes, bytearray)):
        return BINARY
    if isinstance(value, dt.datetime):
        return TIMESTAMP if value.tzinfo is not None else TIMESTAMP_NTZ
    if isinstance(value, dt.date):
        return DATE
    if isinstance(value, decimal.Decimal):
        return _decimal_type(value)
    if isinstance(value, (list, tuple)):
        element = _common_type(value)
        return None if element is None else ArrayType(element, any(v is None for v in value))
    if isinstance(value, dict):
        key = _common_type(list(value.keys()))
        item = _common_type(list(value.values()))
        if key is None or item is None:
            return None
        return MapType(key, item, any(v is None for v in value.values()))
    return None


def _common_type(values: Any) -> DataType | None:
    types = {infer_type(v) for v in values if v is not None}
    if not types:
        return NULL
    if types == {INTEGER, LONG}:
        return LONG
    return types.pop() if len(types) == 1 else None


def _decimal_type(value: decimal.Decimal) -> DataType | None:
    sign, digits, exponent = value.as_tuple()
    if not isinstance(exponent, int):
        return None  # NaN or infinity
    scale = builtins.max(0, -exponent)
    precision = builtins.max(len(digits) + builtins.max(0, exponent), scale, 1)
    if precision > 38:
        return None
    return DecimalType(precision, scale)


def col(name: str) -> Column:
    """Reference a column by name. ``"*"`` and ``"t.*"`` select all columns."""
    if name == "*":
        return Column(UnresolvedStar())
    if name.endswith(".*"):
        return Column(UnresolvedStar(name[:-2]))
    return Column(ColumnReference(name))


column = col


def lit(value: Any, data_type: DataType | None = None) -> Column:
    """A literal value. The type is inferred unless given explicitly."""
    if isinstance(value, Column):
        return value
    if data_type is None:
        data_type = infer_type(value)
    return Column(Literal(value, data_type))


def expr(sql: str) -> Column:
    """A SQL expression string, parsed by the server."""
    return Column(ExpressionString(sql))


def call_function(name: str, *args: Any, is_distinct: bool = False) -> Column:
    return Column(
        UnresolvedFunction(name, tuple(to_expression(a) for a in args), is_distinct)
    )


def _columns(args: tuple[Any, ...]) -> tuple[Any, ...]:
    return tuple(col(a) if isinstance(a, str) else a for a in args)


# Aggregates


def count(c: Column | str) -> Column:
    if isinstance(c, str) and c == "*":
        return call_function("count", lit(1))
    return call_function("count", *_columns((c,)))


def count_distinct(*cols: Column | str) -> Column:
    return call_function("count", *_columns(cols), is_distinct=True)


def sum(c: Column | str) -> Column:  # noqa: A001
    return call_function("sum", *_columns((c,)))


def avg(c: Column | str) -> Column:
    return call_function("avg", *_columns((c,)))


mean = avg


def min(c: Column | str) -> Column:  # noqa: A001
    return call_function("min", *_columns((c,)))


def max(c: Column | str) -> Column:  # noqa: A001
    return call_function("max", *_columns((c,)))


def first(c: Column | str, ignore_nulls: bool = False) -> Column:
    return call_function("first", *_columns((c,)), lit(ignore_nulls))


def last(c: Column | str, ignore_nulls: bool = False) -> Column:
    return call_function("last", *_columns((c,)), lit(ignore_nulls))


# Scalar functions


def upper(c: Column | str) -> Column:
    return call_function("upper", *_columns((c,)))


def lower(c: Column | str) -> Column:
    return call_function("lower", *_columns((c,)))


def abs(c: Column | str) -> Column:  # noqa: A001
    return call_function("abs", *_columns((c,)))


def coalesce(*cols: Column | str) -> Column:
    return call_function("coalesce", *_columns(cols))


def concat(*cols: Column | str) -> Column:
    return call_function("concat", *_columns(cols))


def when(condition: Column, value: Any) -> Column:
    """Start a conditional chain; continue with ``.when`` and ``.otherwise``."""
    return call_function("when", condition, value)


def asc(c: Column | str) -> Column:
    return _columns((c,))[0].asc()


def desc(c: Column | str) -> Column:
    return _columns((c,))[0].desc()


# Window functions


def row_number() -> Column:
    return call_function("row_number")


def rank() -> Column:
    return call_function("rank")


def dense_rank() -> Column:
    return call_function("dense_rank")


def lag(c: Column | str, offset: int = 1, default: Any = None) -> Column:
    return call_function("lag", *_columns((c,)), lit(offset), lit(default))


def lead(c: Column | str, offset: int = 1, default: Any = None) -> Column:
    return call_function("lead", *_columns((c,)), lit(offset), lit(default))
