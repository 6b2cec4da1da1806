"""Outbound adapters for the connect client.

Exports:
    Codecs:
        - PlanCodec: plan IR <-> wire messages
        - encode_table / decode_batches / decode_table: Arrow IPC payloads
    Transports:
        - GrpcTransport: gRPC channel to a remote service
        - InMemoryTransport: scripted in-process service for tests and demos
    Local execution:
        - LocalRelationExecutor: answers trivial plans without a round trip
"""

from dfconnect.adapters.outbound.arrow_codec import (
    decode_batches,
    decode_table,
    encode_table,
    from_arrow_schema,
    from_arrow_type,
    to_arrow_schema,
    to_arrow_type,
)
from dfconnect.adapters.outbound.grpc_transport import (
    GrpcResponseStream,
    GrpcTransport,
    build_metadata,
    classify_rpc_error,
)
from dfconnect.adapters.outbound.in_memory_transport import (
    InMemoryStream,
    InMemoryTransport,
    analysis_error,
    result_bodies,
)
from dfconnect.adapters.outbound.local_executor import LocalRelationExecutor
from dfconnect.adapters.outbound.plan_codec import PlanCodec

__all__ = [
    # Codecs
    "PlanCodec",
    "encode_table",
    "decode_batches",
    "decode_table",
    "to_arrow_type",
    "to_arrow_schema",
    "from_arrow_type",
    "from_arrow_schema",
    # Transports
    "GrpcTransport",
    "GrpcResponseStream",
    "build_metadata",
    "classify_rpc_error",
    "InMemoryTransport",
    "InMemoryStream",
    "result_bodies",
    "analysis_error",
    # Local execution
    "LocalRelationExecutor",
]
