"""Adapters layer - concrete implementations of port interfaces.

Adapters provide the actual implementations:
- Inbound adapters: the fluent DataFrame/Column API callers build plans with
- Outbound adapters: the plan and Arrow codecs, transports, local execution
"""

from dfconnect.adapters.outbound import (
    GrpcTransport,
    InMemoryTransport,
    LocalRelationExecutor,
    PlanCodec,
)

__all__ = [
    # Outbound adapters
    "GrpcTransport",
    "InMemoryTransport",
    "LocalRelationExecutor",
    "PlanCodec",
]
