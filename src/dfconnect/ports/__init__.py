"""Ports layer - interface definitions following Hexagonal Architecture.

Only outbound ports exist: the client's inbound surface is the fluent
DataFrame API in ``adapters.inbound``. Adapters implement these ports with
concrete functionality.
"""

from dfconnect.ports.outbound import LocalExecutor, ResponseStream, StreamRequest, Transport

__all__ = [
    "LocalExecutor",
    "ResponseStream",
    "StreamRequest",
    "Transport",
]
