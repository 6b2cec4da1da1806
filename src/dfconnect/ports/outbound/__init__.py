"""Outbound ports - interfaces for external dependencies.

Outbound ports define contracts for the systems the client depends on:
the remote execution service (Transport) and an optional in-process
executor (LocalExecutor). The wire schema shared with the service lives in
``wire``.
"""

from dfconnect.ports.outbound.local_executor import LocalExecutor
from dfconnect.ports.outbound.transport import ResponseStream, StreamRequest, Transport

__all__ = [
    "LocalExecutor",
    "ResponseStream",
    "StreamRequest",
    "Transport",
]
