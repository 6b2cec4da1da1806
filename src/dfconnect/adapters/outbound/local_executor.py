"""In-process executor for plans over inline data.

Handles the plans that need no server: a LocalRelation, optionally under
Limit, Offset, and Project nodes that only select, reorder or rename
columns. Anything else (or a column the data does not have) is declined
with ``None`` so the server, not this executor, reports errors.
"""

from __future__ import annotations

import pyarrow as pa

from dfconnect.adapters.outbound.arrow_codec import decode_table, to_arrow_schema
from dfconnect.domain.entities.expressions import Alias, ColumnReference, Expression, UnresolvedStar
from dfconnect.domain.entities.relations import Limit, LocalRelation, Offset, Project, Relation


class LocalRelationExecutor:
    """LocalExecutor for inline-data plans.

    Example:
        >>> executor = LocalRelationExecutor()
        >>> executor.try_execute(builder.limit(local, 2)).num_rows
        2
        >>> executor.try_execute(builder.read_table("t")) is None
        True
    """

    def try_execute(self, relation: Relation) -> pa.Table | None:
        if isinstance(relation, LocalRelation):
            return self._load(relation)
        if isinstance(relation, Limit):
            table = self.try_execute(relation.input)
            return None if table is None else table.slice(0, relation.limit)
        if isinstance(relation, Offset):
            table = self.try_execute(relation.input)
            return None if table is None else table.slice(relation.offset)
        if isinstance(relation, Project) and relation.input is not None:
            table = self.try_execute(relation.input)
            return None if table is None else self._project(table, relation.expressions)
        return None

    @staticmethod
    def _load(relation: LocalRelation) -> pa.Table:
        if relation.data is None:
            return to_arrow_schema(relation.schema).empty_table()
        table = decode_table(relation.data)
        if relation.schema is not None and len(relation.schema) == table.num_columns:
            table = table.rename_columns(relation.schema.names)
        return table

    @staticmethod
    def _project(table: pa.Table, expressions: tuple[Expression, ...]) -> pa.Table | None:
        columns: list[pa.ChunkedArray] = []
        names: list[str] = []
        for expr in expressions:
            if isinstance(expr, UnresolvedStar) and expr.target is None:
                columns.extend(table.columns)
                names.extend(table.column_names)
                continue
            name = None
            if isinstance(expr, Alias):
                name, expr = expr.name, expr.expr
            if not isinstance(expr, ColumnReference) or expr.path not in table.column_names:
                return None
            # Ambiguous duplicate names are left for the server to report
            if table.column_names.count(expr.path) != 1:
                return None
            columns.append(table.column(expr.path))
            names.append(name or expr.path)
        return pa.table(columns, names=names)
