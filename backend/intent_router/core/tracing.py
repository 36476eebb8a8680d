"""
OpenTelemetry tracing for routing stages.

Each routing stage runs inside a span named ``router.<stage>`` so a decision
can be followed end to end in a trace backend. Until configure_tracing() is
called, the global no-op tracer provider is used and spans cost nothing.

Configuration:
- OTEL_SERVICE_NAME: Service name (default: intent_router)
- OTEL_EXPORTER_OTLP_ENDPOINT: OTLP gRPC endpoint, e.g. http://localhost:4317
- OTEL_TRACES_SAMPLER_ARG: Sampling rate (default: 1.0)
"""
import os
from contextlib import contextmanager
from typing import Any, Iterator, Optional

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.sdk.trace.sampling import TraceIdRatioBased
from opentelemetry.trace import Span, Status, StatusCode, Tracer

from intent_router.core.logging import get_logger

logger = get_logger(__name__)

TRACER_NAME = "intent_router"

_tracer_provider: Optional[TracerProvider] = None


def configure_tracing(
    service_name: Optional[str] = None,
    otlp_endpoint: Optional[str] = None,
    sampling_rate: Optional[float] = None,
) -> None:
    """
    Install an SDK tracer provider.

    Args:
        service_name: Defaults to OTEL_SERVICE_NAME or intent_router
        otlp_endpoint: Defaults to OTEL_EXPORTER_OTLP_ENDPOINT; no exporter when unset
        sampling_rate: Defaults to OTEL_TRACES_SAMPLER_ARG or 1.0
    """
    global _tracer_provider

    service_name = service_name or os.getenv("OTEL_SERVICE_NAME", "intent_router")
    otlp_endpoint = otlp_endpoint or os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT")
    if sampling_rate is None:
        sampling_rate = float(os.getenv("OTEL_TRACES_SAMPLER_ARG", "1.0"))

    provider = TracerProvider(
        resource=Resource.create({"service.name": service_name}),
        sampler=TraceIdRatioBased(sampling_rate),
    )
    if otlp_endpoint:
        provider.add_span_processor(
            BatchSpanProcessor(OTLPSpanExporter(endpoint=otlp_endpoint, insecure=True))
        )
        logger.info("tracing_otlp_exporter_configured", endpoint=otlp_endpoint)

    trace.set_tracer_provider(provider)
    _tracer_provider = provider
    logger.info("tracing_configured", service_name=service_name, sampling_rate=sampling_rate)


def get_tracer() -> Tracer:
    return trace.get_tracer(TRACER_NAME)


def get_trace_id_from_context() -> Optional[str]:
    """Hex trace ID of the active span, or None outside a recording span."""
    span_context = trace.get_current_span().get_span_context()
    if not span_context.is_valid:
        return None
    return format(span_context.trace_id, "032x")


@contextmanager
def stage_span(stage: str, **attributes: Any) -> Iterator[Span]:
    """
    Run a block inside a ``router.<stage>`` span.

    Exceptions are recorded on the span by the SDK and re-raised unchanged.
    """
    with get_tracer().start_as_current_span(f"router.{stage}") as span:
        for key, value in attributes.items():
            if value is not None:
                span.set_attribute(f"router.{key}", value)
        yield span


def mark_degraded(span: Span, description: str) -> None:
    """Flag a stage whose collaborator failed and was replaced by a default."""
    span.set_status(Status(StatusCode.ERROR, description))


def shutdown_tracing() -> None:
    global _tracer_provider
    if _tracer_provider is not None:
        _tracer_provider.shutdown()
        _tracer_provider = None
