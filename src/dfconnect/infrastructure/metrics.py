"""Prometheus metrics for the connect client."""

from __future__ import annotations

from prometheus_client import (
    REGISTRY,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    Info,
    start_http_server,
)


class MetricsRegistry:
    """Registry of all client metrics.

    Tests pass a private CollectorRegistry so instances never collide on the
    process-wide default registry.
    """

    def __init__(self, registry: CollectorRegistry | None = None) -> None:
        """Initialize metrics registry."""
        self._registry = registry or REGISTRY

        # Execution runs
        self.runs_total = Counter(
            "dfconnect_runs_total",
            "Execution runs by final state",
            ["state"],  # complete, failed, cancelled
            registry=self._registry,
        )

        self.runs_active = Gauge(
            "dfconnect_runs_active",
            "Number of execution runs currently streaming",
            registry=self._registry,
        )

        self.local_runs_total = Counter(
            "dfconnect_local_runs_total",
            "Runs answered by the local executor without a network call",
            registry=self._registry,
        )

        # Result stream
        self.batches_received_total = Counter(
            "dfconnect_batches_received_total",
            "Arrow batches delivered to callers",
            registry=self._registry,
        )

        self.rows_received_total = Counter(
            "dfconnect_rows_received_total",
            "Rows delivered to callers",
            registry=self._registry,
        )

        self.duplicate_responses_total = Counter(
            "dfconnect_duplicate_responses_total",
            "Responses skipped because their id was already delivered",
            registry=self._registry,
        )

        # Recovery
        self.reattach_attempts_total = Counter(
            "dfconnect_reattach_attempts_total",
            "Reattach requests sent after an interrupted stream",
            registry=self._registry,
        )

        self.retries_total = Counter(
            "dfconnect_retries_total",
            "Retried attempts after a retryable transport failure",
            ["rpc"],  # execute, reattach, analyze, config
            registry=self._registry,
        )

        # RPC latency
        self.rpc_latency_seconds = Histogram(
            "dfconnect_rpc_latency_seconds",
            "Latency of unary RPCs in seconds",
            ["rpc"],  # analyze, config, release, interrupt
            buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
            registry=self._registry,
        )

        self.time_to_first_batch_seconds = Histogram(
            "dfconnect_time_to_first_batch_seconds",
            "Time from execute to the first result batch",
            buckets=(0.005, 0.01, 0.05, 0.1, 0.5, 1.0, 5.0, 30.0, 120.0),
            registry=self._registry,
        )

        self.analyze_requests_total = Counter(
            "dfconnect_analyze_requests_total",
            "Analyze requests by kind and outcome",
            ["kind", "status"],  # status: success, error
            registry=self._registry,
        )

        # Client info
        self.info = Info(
            "dfconnect",
            "Connect client information",
            registry=self._registry,
        )


# Global metrics registry
_metrics: MetricsRegistry | None = None


def setup_metrics(port: int | None = None, registry: CollectorRegistry | None = None) -> MetricsRegistry:
    """
    Set up client metrics.

    Args:
        port: If given, start an HTTP server for Prometheus scraping
        registry: Optional custom registry

    Returns:
        The metrics registry
    """
    global _metrics
    _metrics = MetricsRegistry(registry)

    from dfconnect import __version__
    _metrics.info.info({
        "version": __version__,
    })

    if port is not None:
        start_http_server(port, registry=registry or REGISTRY)

    return _metrics


def get_metrics() -> MetricsRegistry:
    """Get the global metrics registry."""
    global _metrics
    if _metrics is None:
        _metrics = MetricsRegistry()
    return _metrics
