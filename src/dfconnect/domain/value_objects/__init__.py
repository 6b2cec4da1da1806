"""Value objects for the connect client domain.

Exports:
    Identifiers:
        - SessionId, OperationId, PlanId, ResponseId
        - PlanIdGenerator: process-unique plan id source
    Data types:
        - DataType and its kinds (AtomicType, DecimalType, ArrayType, MapType, StructType)
        - StructField
    Run states:
        - RunState: execution run lifecycle
    Storage levels:
        - StorageLevel: placement of a persisted relation
"""

from dfconnect.domain.value_objects.data_types import (
    BINARY,
    BOOLEAN,
    BYTE,
    DATE,
    DOUBLE,
    FLOAT,
    INTEGER,
    LONG,
    NULL,
    SHORT,
    STRING,
    TIMESTAMP,
    TIMESTAMP_NTZ,
    ArrayType,
    AtomicType,
    DataType,
    DecimalType,
    MapType,
    StructField,
    StructType,
    TypeKind,
    type_from_name,
)
from dfconnect.domain.value_objects.identifiers import (
    OperationId,
    PlanId,
    PlanIdGenerator,
    ResponseId,
    SessionId,
    create_operation_id,
    create_session_id,
)
from dfconnect.domain.value_objects.run_state import RunState
from dfconnect.domain.value_objects.storage_level import StorageLevel

__all__ = [
    # Identifiers
    "SessionId",
    "OperationId",
    "PlanId",
    "ResponseId",
    "PlanIdGenerator",
    "create_session_id",
    "create_operation_id",
    # Data types
    "DataType",
    "AtomicType",
    "TypeKind",
    "DecimalType",
    "ArrayType",
    "MapType",
    "StructField",
    "StructType",
    "type_from_name",
    "NULL",
    "BOOLEAN",
    "BYTE",
    "SHORT",
    "INTEGER",
    "LONG",
    "FLOAT",
    "DOUBLE",
    "STRING",
    "BINARY",
    "DATE",
    "TIMESTAMP",
    "TIMESTAMP_NTZ",
    # Run states
    "RunState",
    # Storage levels
    "StorageLevel",
]
