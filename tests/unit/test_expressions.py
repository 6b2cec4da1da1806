"""Unit tests for the expression IR and data types."""

from __future__ import annotations

import pytest

from dfconnect.domain.entities.expressions import (
    Alias,
    BoundaryKind,
    Cast,
    ColumnReference,
    ExpressionString,
    FrameBoundary,
    Literal,
    NullOrdering,
    SortDirection,
    SortOrder,
    UnresolvedFunction,
    UnresolvedStar,
    WindowExpr,
)
from dfconnect.domain.errors import MalformedPlan
from dfconnect.domain.value_objects.data_types import (
    INTEGER,
    LONG,
    STRING,
    ArrayType,
    DecimalType,
    MapType,
    StructField,
    StructType,
    type_from_name,
)


@pytest.mark.unit
class TestExpressions:
    """Tests for expression nodes."""

    def test_expressions_are_values(self) -> None:
        a = UnresolvedFunction(">", (ColumnReference("x"), Literal(5, INTEGER)))
        b = UnresolvedFunction(">", [ColumnReference("x"), Literal(5, INTEGER)])

        assert a == b
        assert hash(a) == hash(b)

    def test_render(self) -> None:
        cond = UnresolvedFunction(
            "and",
            (
                UnresolvedFunction(">", (ColumnReference("x"), Literal(5, INTEGER))),
                UnresolvedFunction("isNotNull", (ColumnReference("y"),)),
            ),
        )

        assert str(cond) == "and((x > 5), isNotNull(y))"
        assert str(Alias(ColumnReference("x"), "renamed")) == "x AS renamed"
        assert str(UnresolvedStar("t")) == "t.*"
        assert str(Literal("a", STRING)) == "'a'"

    def test_empty_names_rejected(self) -> None:
        with pytest.raises(MalformedPlan):
            ColumnReference("")
        with pytest.raises(MalformedPlan):
            UnresolvedFunction("")
        with pytest.raises(MalformedPlan):
            Alias(ColumnReference("x"), "")
        with pytest.raises(MalformedPlan):
            ExpressionString("   ")

    def test_function_arguments_must_be_expressions(self) -> None:
        with pytest.raises(MalformedPlan, match="not an expression"):
            UnresolvedFunction("upper", ("x",))  # type: ignore[arg-type]

    def test_alias_and_cast_require_expressions(self) -> None:
        with pytest.raises(MalformedPlan, match="not an expression"):
            Alias("x", "a")  # type: ignore[arg-type]
        with pytest.raises(MalformedPlan, match="not an expression"):
            Cast(5, INTEGER)  # type: ignore[arg-type]
        with pytest.raises(MalformedPlan, match="not a data type"):
            Cast(ColumnReference("x"), "int")  # type: ignore[arg-type]

    def test_literal_values_are_frozen(self) -> None:
        source = [1, [2, 3]]
        literal = Literal(source, ArrayType(ArrayType(INTEGER)))
        source.append(4)
        source[1].append(5)

        assert literal.value == (1, (2, 3))
        assert hash(literal) == hash(Literal((1, (2, 3)), ArrayType(ArrayType(INTEGER))))
        assert Literal({"a": 1}, MapType(STRING, INTEGER)).value == (("a", 1),)
        assert Literal(bytearray(b"ab"), None).value == b"ab"

    def test_struct_literal_from_mapping_follows_field_order(self) -> None:
        struct = StructType((StructField("s", STRING), StructField("n", INTEGER)))

        assert Literal({"n": 3, "s": "x"}, struct).value == ("x", 3)

    def test_sort_order_null_defaults(self) -> None:
        asc = SortOrder(ColumnReference("x"))
        desc = SortOrder(ColumnReference("x"), SortDirection.DESCENDING)

        assert asc.null_ordering is NullOrdering.NULLS_FIRST
        assert desc.null_ordering is NullOrdering.NULLS_LAST

    def test_sort_orders_do_not_nest(self) -> None:
        with pytest.raises(MalformedPlan):
            SortOrder(SortOrder(ColumnReference("x")))

    def test_window_rules(self) -> None:
        rank = UnresolvedFunction("rank")
        window = WindowExpr(rank, [ColumnReference("dept")], [SortOrder(ColumnReference("pay"))])

        assert window.partition_spec == (ColumnReference("dept"),)
        with pytest.raises(MalformedPlan):
            WindowExpr(window)
        with pytest.raises(MalformedPlan):
            WindowExpr(rank, order_spec=(ColumnReference("pay"),))  # type: ignore[arg-type]

    def test_frame_boundary_value(self) -> None:
        with pytest.raises(MalformedPlan):
            FrameBoundary(BoundaryKind.VALUE)
        with pytest.raises(MalformedPlan):
            FrameBoundary(BoundaryKind.CURRENT_ROW, Literal(1, LONG))


@pytest.mark.unit
class TestDataTypes:
    """Tests for protocol data types."""

    def test_struct_type(self) -> None:
        schema = StructType([StructField("a", INTEGER), StructField("b", STRING, False)])

        assert schema.names == ("a", "b")
        assert schema.field("b").nullable is False
        assert len(schema) == 2
        assert str(schema) == "struct<a:int,b:string>"
        with pytest.raises(KeyError):
            schema.field("c")

    def test_nested_type_strings(self) -> None:
        assert str(ArrayType(LONG)) == "array<bigint>"
        assert str(MapType(STRING, DecimalType(12, 2))) == "map<string,decimal(12,2)>"

    def test_decimal_bounds(self) -> None:
        DecimalType(38, 38)
        with pytest.raises(ValueError):
            DecimalType(39, 0)
        with pytest.raises(ValueError):
            DecimalType(5, 6)

    def test_type_from_name(self) -> None:
        assert type_from_name("INT") == INTEGER
        assert type_from_name("long") == LONG
        assert type_from_name("decimal") == DecimalType()
        with pytest.raises(ValueError):
            type_from_name("uuid")
