"""Arrow batch codec.

Result batches travel as Arrow IPC streams with the schema embedded. This
module converts between protocol data types and Arrow types, and between
IPC bytes and record batches.
"""

from __future__ import annotations

import pyarrow as pa

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

_ATOMIC_TO_ARROW: dict[TypeKind, pa.DataType] = {
    TypeKind.NULL: pa.null(),
    TypeKind.BOOLEAN: pa.bool_(),
    TypeKind.BYTE: pa.int8(),
    TypeKind.SHORT: pa.int16(),
    TypeKind.INTEGER: pa.int32(),
    TypeKind.LONG: pa.int64(),
    TypeKind.FLOAT: pa.float32(),
    TypeKind.DOUBLE: pa.float64(),
    TypeKind.STRING: pa.string(),
    TypeKind.BINARY: pa.binary(),
    TypeKind.DATE: pa.date32(),
    TypeKind.TIMESTAMP: pa.timestamp("us", tz="UTC"),
    TypeKind.TIMESTAMP_NTZ: pa.timestamp("us"),
}


def to_arrow_type(data_type: DataType) -> pa.DataType:
    if isinstance(data_type, AtomicType):
        return _ATOMIC_TO_ARROW[data_type.kind]
    if isinstance(data_type, DecimalType):
        return pa.decimal128(data_type.precision, data_type.scale)
    if isinstance(data_type, ArrayType):
        return pa.list_(
            pa.field("element", to_arrow_type(data_type.element_type), data_type.contains_null)
        )
    if isinstance(data_type, MapType):
        return pa.map_(to_arrow_type(data_type.key_type), to_arrow_type(data_type.value_type))
    if isinstance(data_type, StructType):
        return pa.struct([_to_arrow_field(f) for f in data_type.fields])
    raise UnsupportedType(repr(data_type), "no Arrow equivalent")


def _to_arrow_field(field: StructField) -> pa.Field:
    return pa.field(field.name, to_arrow_type(field.data_type), field.nullable)


def to_arrow_schema(schema: StructType) -> pa.Schema:
    return pa.schema([_to_arrow_field(f) for f in schema.fields])


def from_arrow_type(arrow_type: pa.DataType) -> DataType:
    """Map an Arrow type to the protocol type system.

    Timestamps of any unit map to TIMESTAMP when they carry a time zone and
    to TIMESTAMP_NTZ otherwise; large and view string/binary variants map to
    STRING/BINARY.
    """
    t = pa.types
    if t.is_null(arrow_type):
        return AtomicType(TypeKind.NULL)
    if t.is_boolean(arrow_type):
        return AtomicType(TypeKind.BOOLEAN)
    if t.is_int8(arrow_type):
        return AtomicType(TypeKind.BYTE)
    if t.is_int16(arrow_type):
        return AtomicType(TypeKind.SHORT)
    if t.is_int32(arrow_type):
        return AtomicType(TypeKind.INTEGER)
    if t.is_int64(arrow_type):
        return AtomicType(TypeKind.LONG)
    if t.is_float32(arrow_type):
        return AtomicType(TypeKind.FLOAT)
    if t.is_float64(arrow_type):
        return AtomicType(TypeKind.DOUBLE)
    if t.is_string(arrow_type) or t.is_large_string(arrow_type):
        return AtomicType(TypeKind.STRING)
    if t.is_binary(arrow_type) or t.is_large_binary(arrow_type):
        return AtomicType(TypeKind.BINARY)
    if t.is_date(arrow_type):
        return AtomicType(TypeKind.DATE)
    if t.is_timestamp(arrow_type):
        return AtomicType(TypeKind.TIMESTAMP if arrow_type.tz else TypeKind.TIMESTAMP_NTZ)
    if t.is_decimal(arrow_type):
        return DecimalType(arrow_type.precision, arrow_type.scale)
    if t.is_map(arrow_type):
        return MapType(
            from_arrow_type(arrow_type.key_type),
            from_arrow_type(arrow_type.item_type),
            arrow_type.item_field.nullable,
        )
    if t.is_list(arrow_type) or t.is_large_list(arrow_type):
        return ArrayType(from_arrow_type(arrow_type.value_type), arrow_type.value_field.nullable)
    if t.is_struct(arrow_type):
        return StructType(
            tuple(
                StructField(f.name, from_arrow_type(f.type), f.nullable)
                for f in (arrow_type.field(i) for i in range(arrow_type.num_fields))
            )
        )
    raise UnsupportedType(str(arrow_type), "no protocol equivalent for this Arrow type")


def from_arrow_schema(schema: pa.Schema) -> StructType:
    return StructType(
        tuple(StructField(f.name, from_arrow_type(f.type), f.nullable) for f in schema)
    )


def encode_table(table: pa.Table | pa.RecordBatch) -> bytes:
    """Serialize a table or batch as an Arrow IPC stream."""
    sink = pa.BufferOutputStream()
    with pa.ipc.new_stream(sink, table.schema) as writer:
        if isinstance(table, pa.RecordBatch):
            writer.write_batch(table)
        else:
            writer.write_table(table)
    return sink.getvalue().to_pybytes()


def decode_batches(data: bytes, expected_rows: int | None = None) -> tuple[pa.Schema, list[pa.RecordBatch]]:
    """Read every record batch of an IPC stream.

    Args:
        data: Arrow IPC stream bytes.
        expected_rows: Row count announced by the server, checked when given.

    Raises:
        ProtocolError: If the bytes are not a valid IPC stream or the decoded
            row count disagrees with the announced one.
    """
    try:
        reader = pa.ipc.open_stream(pa.py_buffer(data))
        batches = list(reader)
    except (pa.ArrowInvalid, OSError) as e:
        raise ProtocolError(f"Invalid Arrow IPC payload: {e}") from e

    if expected_rows is not None:
        actual = sum(batch.num_rows for batch in batches)
        if actual != expected_rows:
            raise ProtocolError(
                f"Arrow batch row count mismatch: server announced {expected_rows}, "
                f"decoded {actual}"
            )
    return reader.schema, batches


def decode_table(data: bytes) -> pa.Table:
    schema, batches = decode_batches(data)
    return pa.Table.from_batches(batches, schema=schema)
