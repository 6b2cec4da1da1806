"""Domain entities: the plan IR and decoded results."""

from dfconnect.domain.entities.expressions import (
    Alias,
    BoundaryKind,
    Cast,
    ColumnReference,
    EXPRESSION_TYPES,
    Expression,
    ExpressionString,
    FrameBoundary,
    FrameType,
    Literal,
    NullOrdering,
    SortDirection,
    SortOrder,
    UnresolvedFunction,
    UnresolvedStar,
    WindowExpr,
    WindowFrame,
    freeze_value,
)
from dfconnect.domain.entities.relations import (
    RELATION_TYPES,
    SQL,
    Aggregate,
    Command,
    CreateView,
    Deduplicate,
    Drop,
    Filter,
    GroupType,
    Join,
    JoinType,
    Limit,
    LocalRelation,
    Offset,
    Pivot,
    Project,
    Range,
    Read,
    Relation,
    RenameColumns,
    Repartition,
    Sample,
    SetOperation,
    SetOpType,
    Sort,
    SqlCommand,
    SubqueryAlias,
    ToDF,
    WithColumns,
)
from dfconnect.domain.entities.result_batch import ResultBatch

__all__ = [
    # Expressions
    "Expression",
    "EXPRESSION_TYPES",
    "Literal",
    "ColumnReference",
    "UnresolvedStar",
    "UnresolvedFunction",
    "Alias",
    "Cast",
    "SortOrder",
    "SortDirection",
    "NullOrdering",
    "WindowExpr",
    "WindowFrame",
    "FrameBoundary",
    "FrameType",
    "BoundaryKind",
    "ExpressionString",
    "freeze_value",
    # Relations
    "Relation",
    "RELATION_TYPES",
    "Read",
    "Project",
    "Filter",
    "Join",
    "JoinType",
    "Aggregate",
    "GroupType",
    "Pivot",
    "Sort",
    "Limit",
    "Offset",
    "SetOperation",
    "SetOpType",
    "LocalRelation",
    "SQL",
    "Deduplicate",
    "Sample",
    "RenameColumns",
    "WithColumns",
    "Drop",
    "Range",
    "SubqueryAlias",
    "ToDF",
    "Repartition",
    # Commands
    "Command",
    "SqlCommand",
    "CreateView",
    # Results
    "ResultBatch",
]
