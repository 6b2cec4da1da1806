"""Unit tests for the plan codec."""

from __future__ import annotations

import datetime as dt
import decimal

import pytest

from dfconnect.adapters.outbound.plan_codec import PlanCodec
from dfconnect.domain.entities.expressions import (
    EXPRESSION_TYPES,
    Alias,
    BoundaryKind,
    Cast,
    ColumnReference,
    FrameBoundary,
    FrameType,
    Literal,
    SortOrder,
    UnresolvedFunction,
    UnresolvedStar,
    WindowExpr,
    WindowFrame,
)
from dfconnect.domain.entities.relations import (
    RELATION_TYPES,
    CreateView,
    GroupType,
    JoinType,
    Pivot,
    SetOpType,
    SqlCommand,
)
from dfconnect.domain.errors import ProtocolError, UnsupportedType
from dfconnect.domain.services.plan_builder import PlanBuilder
from dfconnect.domain.value_objects.data_types import (
    DATE,
    INTEGER,
    LONG,
    STRING,
    TIMESTAMP,
    TIMESTAMP_NTZ,
    ArrayType,
    DecimalType,
    MapType,
    StructField,
    StructType,
)
from dfconnect.domain.value_objects.identifiers import PlanIdGenerator
from dfconnect.domain.value_objects.storage_level import StorageLevel
from dfconnect.application.session import Session
from dfconnect.ports.outbound import wire


@pytest.fixture
def codec() -> PlanCodec:
    return PlanCodec()


def _fresh_builder() -> PlanBuilder:
    return PlanBuilder(Session(plan_ids=PlanIdGenerator(start=100)))


def _query(builder: PlanBuilder):
    """Read -> Filter -> Aggregate -> Sort -> Limit, touching most expression kinds."""
    scan = builder.read_table("sales", {"snapshot": "2024-01-01", "format": "delta"})
    flt = builder.filter(
        scan,
        UnresolvedFunction(
            "and",
            (
                UnresolvedFunction(">", (ColumnReference("amount"), Literal(100, INTEGER))),
                UnresolvedFunction("in", (ColumnReference("region"), Literal("eu", STRING))),
            ),
        ),
    )
    agg = builder.aggregate(
        flt,
        [ColumnReference("region")],
        [Alias(UnresolvedFunction("sum", (Cast(ColumnReference("amount"), LONG),)), "total")],
    )
    ranked = builder.project(
        agg,
        [
            UnresolvedStar(),
            Alias(
                WindowExpr(
                    UnresolvedFunction("rank"),
                    (),
                    (SortOrder(ColumnReference("total")),),
                    WindowFrame(
                        FrameType.ROW,
                        FrameBoundary(BoundaryKind.UNBOUNDED),
                        FrameBoundary(BoundaryKind.VALUE, Literal(1, LONG)),
                    ),
                ),
                "rnk",
            ),
        ],
    )
    return builder.limit(builder.sort(ranked, [SortOrder(ColumnReference("rnk"))]), 10)


@pytest.mark.unit
class TestPlanCodec:
    """Tests for PlanCodec."""

    def test_every_relation_kind_has_an_encoder(self, codec: PlanCodec) -> None:
        assert codec.supported_relation_types == frozenset(RELATION_TYPES)

    def test_every_expression_kind_has_an_encoder(self, codec: PlanCodec) -> None:
        assert codec.supported_expression_types == frozenset(EXPRESSION_TYPES)

    def test_encoding_is_deterministic(self) -> None:
        a = PlanCodec().plan_bytes(_query(_fresh_builder()))
        b = PlanCodec().plan_bytes(_query(_fresh_builder()))

        assert a == b

    def test_option_order_does_not_change_bytes(self, codec: PlanCodec) -> None:
        ids = PlanIdGenerator(start=1)
        first = PlanBuilder(Session(plan_ids=ids)).read_table("t", {"a": "1", "b": "2"})
        ids = PlanIdGenerator(start=1)
        second = PlanBuilder(Session(plan_ids=ids)).read_table("t", {"b": "2", "a": "1"})

        assert codec.plan_bytes(first) == codec.plan_bytes(second)

    def test_decode_inverts_encode(self, codec: PlanCodec) -> None:
        plan = _query(_fresh_builder())

        message = wire.decode_message(
            wire.encode_message(codec.encode_plan(plan)), wire.RootPlanMsg
        )

        assert codec.decode(message.relation) == plan

    def test_binary_relations_round_trip(self, codec: PlanCodec, builder: PlanBuilder) -> None:
        left = builder.read_table("a")
        right = builder.sql("SELECT * FROM b WHERE x > :x", {"x": Literal(3, INTEGER)})
        join = builder.join(left, right, join_type=JoinType.LEFT_ANTI, using_columns=["id"])
        union = builder.set_operation(join, builder.range(5), SetOpType.UNION, True, True, True)
        pivot = builder.aggregate(
            union,
            [ColumnReference("k")],
            [UnresolvedFunction("count", (Literal(1, INTEGER),))],
            GroupType.PIVOT,
            Pivot(ColumnReference("year"), (Literal(2023, INTEGER), Literal(2024, INTEGER))),
        )

        assert codec.decode(codec.encode(pivot)) == pivot

    def test_commands(self, codec: PlanCodec, builder: PlanBuilder) -> None:
        view = codec.encode_plan(CreateView(input=builder.read_table("t"), name="v"))
        sql = codec.encode_plan(SqlCommand(sql="SET a = :v", args={"v": Literal("x", STRING)}))

        assert isinstance(view, wire.CommandPlanMsg)
        assert isinstance(view.command, wire.CreateViewMsg)
        assert isinstance(sql.command, wire.SqlCommandMsg)
        assert sql.command.args["v"].value == "x"

    def test_unsupported_literal_names_node_and_relation(
        self, codec: PlanCodec, builder: PlanBuilder
    ) -> None:
        scan = builder.read_table("t")
        flt = builder.filter(
            scan, UnresolvedFunction("==", (ColumnReference("x"), Literal(object(), None)))
        )
        plan = builder.limit(flt, 5)

        with pytest.raises(UnsupportedType) as exc_info:
            codec.encode(plan)

        assert exc_info.value.node.startswith("Literal(<object object")
        assert exc_info.value.relation == f"Filter#{flt.plan_id}"
        assert f"Filter#{flt.plan_id}" in str(exc_info.value)

    def test_integer_out_of_range(self, codec: PlanCodec) -> None:
        with pytest.raises(UnsupportedType, match="out of range"):
            codec.encode_expression(Literal(2**31, INTEGER))

    def test_temporal_literals(self, codec: PlanCodec) -> None:
        date = codec.encode_expression(Literal(dt.date(1970, 1, 11), DATE))
        aware = codec.encode_expression(
            Literal(dt.datetime(1970, 1, 1, 0, 0, 1, tzinfo=dt.timezone.utc), TIMESTAMP)
        )
        naive = codec.encode_expression(Literal(dt.datetime(1970, 1, 1, 0, 0, 2), TIMESTAMP_NTZ))

        assert date.value == 10
        assert aware.value == 1_000_000
        assert naive.value == 2_000_000

    def test_timestamp_requires_time_zone(self, codec: PlanCodec) -> None:
        with pytest.raises(UnsupportedType, match="tz-aware"):
            codec.encode_expression(Literal(dt.datetime(2024, 1, 1), TIMESTAMP))

    def test_nested_literals_round_trip(self, codec: PlanCodec) -> None:
        literals = [
            Literal(decimal.Decimal("12.50"), DecimalType(4, 2)),
            Literal((1, 2, None), ArrayType(LONG)),
            Literal((("a", 1), ("b", 2)), MapType(STRING, INTEGER)),
            Literal(("x", 3), StructType((StructField("s", STRING), StructField("n", INTEGER)))),
            Literal(dt.datetime(2024, 5, 1, 12, 30, tzinfo=dt.timezone.utc), TIMESTAMP),
        ]
        for literal in literals:
            assert codec.decode_expression(codec.encode_expression(literal)) == literal

    def test_map_literal_must_be_pairs(self, codec: PlanCodec) -> None:
        with pytest.raises(UnsupportedType, match="key, value"):
            codec.encode_expression(Literal(5, MapType(STRING, INTEGER)))
        with pytest.raises(UnsupportedType, match="key, value"):
            codec.encode_expression(Literal(("a", "b"), MapType(STRING, INTEGER)))

        encoded = codec.encode_expression(Literal({"a": 1}, MapType(STRING, INTEGER)))
        assert encoded.value == [["a", 1]]

    def test_decimal_literal_must_fit_its_type(self, codec: PlanCodec) -> None:
        with pytest.raises(UnsupportedType, match="too many digits"):
            codec.encode_expression(Literal(decimal.Decimal("123.4"), DecimalType(4, 2)))
        with pytest.raises(UnsupportedType, match="fractional digits"):
            codec.encode_expression(Literal(decimal.Decimal("1.234"), DecimalType(4, 2)))
        with pytest.raises(UnsupportedType, match="finite"):
            codec.encode_expression(Literal(decimal.Decimal("NaN"), DecimalType(4, 2)))

        assert codec.encode_expression(Literal(decimal.Decimal("1.5"), DecimalType(4, 2))).value == "1.50"
        assert codec.encode_expression(Literal(7, DecimalType(4, 2))).value == "7.00"

    def test_plan_bytes_ignore_later_mutation_of_literal_source(
        self, codec: PlanCodec, builder: PlanBuilder
    ) -> None:
        values = [1, 2]
        plan = builder.filter(
            builder.read_table("t"),
            UnresolvedFunction("in", (ColumnReference("x"), Literal(values, ArrayType(INTEGER)))),
        )
        before = codec.plan_bytes(plan)
        values.append(3)

        assert codec.plan_bytes(plan) == before

    def test_data_types(self, codec: PlanCodec) -> None:
        schema = StructType(
            (
                StructField("id", LONG, False),
                StructField("tags", ArrayType(STRING, False)),
                StructField("attrs", MapType(STRING, DecimalType(10, 3))),
            )
        )

        assert codec.decode_data_type(codec.encode_data_type(schema)) == schema

    def test_storage_levels(self, codec: PlanCodec) -> None:
        level = StorageLevel(True, True, use_off_heap=True, replication=3)

        assert codec.decode_storage_level(codec.encode_storage_level(level)) == level
        assert str(level) == "StorageLevel(disk, memory, off-heap; serialized; 3x replicated)"
        with pytest.raises(ValueError, match="replication"):
            StorageLevel(True, False, replication=0)

    def test_decode_schema_wraps_non_struct(self, codec: PlanCodec) -> None:
        schema = codec.decode_schema(codec.encode_data_type(LONG))

        assert schema == StructType((StructField("value", LONG),))

    def test_unknown_type_kind(self, codec: PlanCodec) -> None:
        with pytest.raises(ProtocolError):
            codec.decode_data_type(wire.DataTypeMsg(kind="interval"))
