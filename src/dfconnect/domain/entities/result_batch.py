"""Decoded result batches handed to the caller."""

from __future__ import annotations

from dataclasses import dataclass

import pyarrow as pa

from dfconnect.domain.value_objects.data_types import StructType


@dataclass(frozen=True, slots=True)
class ResultBatch:
    """One columnar chunk of a query result.

    Attributes:
        schema: Schema of the batch in protocol types.
        record_batch: Column buffers; ownership passes to the caller.
        sequence: Zero-based position of the batch within its run.
    """

    schema: StructType
    record_batch: pa.RecordBatch
    sequence: int

    @property
    def row_count(self) -> int:
        return self.record_batch.num_rows

    @property
    def column_names(self) -> list[str]:
        return list(self.record_batch.schema.names)

    def to_pylist(self) -> list[dict]:
        return self.record_batch.to_pylist()

    def __repr__(self) -> str:
        return f"ResultBatch(#{self.sequence}, rows={self.row_count}, schema={self.schema})"
