"""
dfconnect - Remote DataFrame Client

Builds relational query plans locally with a lazy DataFrame API, ships them
to a remote execution service over gRPC, and streams Arrow results back
with automatic reattach and retry.
"""

__version__ = "0.1.0"

from dfconnect.adapters.inbound import functions
from dfconnect.adapters.inbound.column import Column
from dfconnect.adapters.inbound.dataframe import DataFrame, GroupedData
from dfconnect.adapters.inbound.functions import col, expr, lit
from dfconnect.adapters.inbound.window import Window, WindowSpec
from dfconnect.application.client import ConnectClient
from dfconnect.application.execution_engine import ExecutionRun
from dfconnect.domain.errors import (
    Cancelled,
    ConnectError,
    ExecutionError,
    MalformedPlan,
    MessageTooLarge,
    PlanAnalysisError,
    ProtocolError,
    ServerError,
    TransportError,
    UnsupportedType,
)
from dfconnect.domain.value_objects.run_state import RunState
from dfconnect.domain.value_objects.storage_level import StorageLevel
from dfconnect.infrastructure.config import Config

__all__ = [
    "__version__",
    "ConnectClient",
    "Config",
    "DataFrame",
    "GroupedData",
    "Column",
    "Window",
    "WindowSpec",
    "ExecutionRun",
    "RunState",
    "StorageLevel",
    "functions",
    "col",
    "lit",
    "expr",
    # Errors
    "ConnectError",
    "MalformedPlan",
    "UnsupportedType",
    "TransportError",
    "MessageTooLarge",
    "ServerError",
    "PlanAnalysisError",
    "ExecutionError",
    "ProtocolError",
    "Cancelled",
]
