"""Data types understood by the query protocol.

Schemas are StructType values. All types are immutable and compare by value,
so a schema received from the server can be compared directly against an
expected one.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class TypeKind(Enum):
    """Kinds of atomic (non-parameterized) types."""

    NULL = "void"
    BOOLEAN = "boolean"
    BYTE = "tinyint"
    SHORT = "smallint"
    INTEGER = "int"
    LONG = "bigint"
    FLOAT = "float"
    DOUBLE = "double"
    STRING = "string"
    BINARY = "binary"
    DATE = "date"
    TIMESTAMP = "timestamp"
    TIMESTAMP_NTZ = "timestamp_ntz"


@dataclass(frozen=True, slots=True)
class DataType:
    """Base class for data types."""

    def simple_string(self) -> str:
        raise NotImplementedError

    def __str__(self) -> str:
        return self.simple_string()


@dataclass(frozen=True, slots=True)
class AtomicType(DataType):
    kind: TypeKind

    def simple_string(self) -> str:
        return self.kind.value


@dataclass(frozen=True, slots=True)
class DecimalType(DataType):
    precision: int = 10
    scale: int = 0

    def __post_init__(self) -> None:
        if not 1 <= self.precision <= 38:
            raise ValueError(f"decimal precision must be in [1, 38], got {self.precision}")
        if not 0 <= self.scale <= self.precision:
            raise ValueError(
                f"decimal scale must be in [0, {self.precision}], got {self.scale}"
            )

    def simple_string(self) -> str:
        return f"decimal({self.precision},{self.scale})"


@dataclass(frozen=True, slots=True)
class ArrayType(DataType):
    element_type: DataType
    contains_null: bool = True

    def simple_string(self) -> str:
        return f"array<{self.element_type.simple_string()}>"


@dataclass(frozen=True, slots=True)
class MapType(DataType):
    key_type: DataType
    value_type: DataType
    value_contains_null: bool = True

    def simple_string(self) -> str:
        return f"map<{self.key_type.simple_string()},{self.value_type.simple_string()}>"


@dataclass(frozen=True, slots=True)
class StructField:
    """A named, typed column of a StructType."""

    name: str
    data_type: DataType
    nullable: bool = True

    def simple_string(self) -> str:
        return f"{self.name}:{self.data_type.simple_string()}"


@dataclass(frozen=True, slots=True)
class StructType(DataType):
    """Row type; also used as the schema of a relation.

    Example:
        >>> schema = StructType((StructField("y", INTEGER),))
        >>> schema.names
        ('y',)
        >>> str(schema)
        'struct<y:int>'
    """

    fields: tuple[StructField, ...] = ()

    def __post_init__(self) -> None:
        # Accept any iterable of fields but store a tuple
        if not isinstance(self.fields, tuple):
            object.__setattr__(self, "fields", tuple(self.fields))

    @property
    def names(self) -> tuple[str, ...]:
        return tuple(f.name for f in self.fields)

    def field(self, name: str) -> StructField:
        for f in self.fields:
            if f.name == name:
                return f
        raise KeyError(f"No field named '{name}' in {self.simple_string()}")

    def __len__(self) -> int:
        return len(self.fields)

    def __iter__(self):
        return iter(self.fields)

    def simple_string(self) -> str:
        inner = ",".join(f.simple_string() for f in self.fields)
        return f"struct<{inner}>"


NULL = AtomicType(TypeKind.NULL)
BOOLEAN = AtomicType(TypeKind.BOOLEAN)
BYTE = AtomicType(TypeKind.BYTE)
SHORT = AtomicType(TypeKind.SHORT)
INTEGER = AtomicType(TypeKind.INTEGER)
LONG = AtomicType(TypeKind.LONG)
FLOAT = AtomicType(TypeKind.FLOAT)
DOUBLE = AtomicType(TypeKind.DOUBLE)
STRING = AtomicType(TypeKind.STRING)
BINARY = AtomicType(TypeKind.BINARY)
DATE = AtomicType(TypeKind.DATE)
TIMESTAMP = AtomicType(TypeKind.TIMESTAMP)
TIMESTAMP_NTZ = AtomicType(TypeKind.TIMESTAMP_NTZ)

_NAMED_TYPES: dict[str, DataType] = {kind.value: AtomicType(kind) for kind in TypeKind}
_NAMED_TYPES.update(
    {
        "integer": INTEGER,
        "long": LONG,
        "short": SHORT,
        "byte": BYTE,
        "bool": BOOLEAN,
        "null": NULL,
    }
)


def type_from_name(name: str) -> DataType:
    """Look up an atomic type by its SQL name (e.g. "int", "bigint", "string").

    Raises:
        ValueError: If the name is not a known atomic type.
    """
    key = name.strip().lower()
    if key in _NAMED_TYPES:
        return _NAMED_TYPES[key]
    if key == "decimal":
        return DecimalType()
    raise ValueError(f"Unknown type name: {name!r}")
