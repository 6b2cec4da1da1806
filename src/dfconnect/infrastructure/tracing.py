"""OpenTelemetry tracing for runs and analysis calls.

The client only creates spans. Until an application installs a tracer
provider (``setup_tracing`` or its own), every span is a no-op.
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Any, Generator

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import (
    BatchSpanProcessor,
    ConsoleSpanExporter,
    SimpleSpanProcessor,
    SpanExporter,
)
from opentelemetry.trace import Status, StatusCode

from dfconnect.domain.errors import ConnectError
from dfconnect.infrastructure.config import ObservabilityConfig

_TRACER_NAME = "dfconnect"

_tracer: trace.Tracer | None = None


def setup_tracing(
    config: ObservabilityConfig | None = None,
    console_export: bool = False,
    exporter: SpanExporter | None = None,
) -> trace.Tracer:
    """
    Install a tracer provider for the client's spans.

    Only call this from applications that own the process; a library
    embedding the client should configure its own provider instead.

    Args:
        config: Service name and OTLP endpoint; defaults apply when omitted.
        console_export: Also print finished spans to stdout.
        exporter: Extra exporter fed synchronously, e.g. an in-memory one.

    Returns:
        The tracer used for client spans.
    """
    global _tracer
    from dfconnect import __version__

    config = config or ObservabilityConfig()
    provider = TracerProvider(
        resource=Resource.create(
            {"service.name": config.otel_service_name, "service.version": __version__}
        )
    )
    if config.otel_endpoint:
        otlp = OTLPSpanExporter(endpoint=config.otel_endpoint, insecure=True)
        provider.add_span_processor(BatchSpanProcessor(otlp))
    if console_export:
        provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))
    if exporter is not None:
        provider.add_span_processor(SimpleSpanProcessor(exporter))

    trace.set_tracer_provider(provider)
    # A global provider can only be set once per process; bind to ours directly
    _tracer = provider.get_tracer(_TRACER_NAME, __version__)
    return _tracer


def get_tracer() -> trace.Tracer:
    """Client tracer (a no-op tracer until a provider is installed)."""
    global _tracer
    if _tracer is None:
        _tracer = trace.get_tracer(_TRACER_NAME)
    return _tracer


def mark_failed(span: trace.Span, error: ConnectError) -> None:
    span.record_exception(error)
    span.set_status(Status(StatusCode.ERROR, str(error)))


@contextmanager
def trace_span(
    name: str,
    attributes: dict[str, Any] | None = None,
) -> Generator[trace.Span, None, None]:
    """
    Context manager for creating a trace span.

    Client errors escaping the block mark the span as failed. Attributes
    whose value is None are skipped.

    Args:
        name: Name of the span
        attributes: Optional attributes to add to the span

    Yields:
        The created span
    """
    tracer = get_tracer()
    with tracer.start_as_current_span(name, record_exception=False) as span:
        if attributes:
            for key, value in attributes.items():
                if value is not None:
                    span.set_attribute(key, value)
        try:
            yield span
        except ConnectError as e:
            mark_failed(span, e)
            raise
