"""Infrastructure layer - cross-cutting concerns."""

from dfconnect.infrastructure.config import (
    Config,
    ConnectionConfig,
    ExecutionConfig,
    RetryConfig,
    TransportConfig,
    get_config,
)
from dfconnect.infrastructure.logging import get_logger, setup_logging
from dfconnect.infrastructure.metrics import MetricsRegistry, get_metrics, setup_metrics
from dfconnect.infrastructure.tracing import get_tracer, setup_tracing, trace_span

__all__ = [
    "Config",
    "ConnectionConfig",
    "ExecutionConfig",
    "RetryConfig",
    "TransportConfig",
    "get_config",
    "setup_logging",
    "get_logger",
    "setup_metrics",
    "get_metrics",
    "MetricsRegistry",
    "setup_tracing",
    "get_tracer",
    "trace_span",
]
