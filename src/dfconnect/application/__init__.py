"""Application layer for the connect client.

The application layer orchestrates the domain and the outbound ports:
sessions, execution runs with reattach and retry, schema analysis, and the
client facade tying them together.

Exports:
    - ConnectClient: main entry point
    - ExecutionEngine, ExecutionRun: plan submission and result streaming
    - SchemaResolver: analyze requests (schema, explain, ...)
    - Session, UserContext, ContextSnapshot: per-session state
    - RetryPolicy: bounded exponential backoff
"""

from dfconnect.application.client import ConnectClient
from dfconnect.application.execution_engine import ExecutionEngine, ExecutionRun, server_error
from dfconnect.application.retry import RetryPolicy, is_retryable
from dfconnect.application.schema_resolver import SchemaResolver
from dfconnect.application.session import ContextSnapshot, Session, UserContext, validate_tag

__all__ = [
    "ConnectClient",
    "ExecutionEngine",
    "ExecutionRun",
    "server_error",
    "RetryPolicy",
    "is_retryable",
    "SchemaResolver",
    "Session",
    "UserContext",
    "ContextSnapshot",
    "validate_tag",
]
