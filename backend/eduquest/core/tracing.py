"""
OpenTelemetry tracing for the AI orchestration layer.

Spans are opened around each cache resolution and each provider attempt so
that a single logical request can be followed through fallbacks and retries.
Until `configure_tracing()` is called the OpenTelemetry API hands out its
no-op tracer, so library callers and tests pay nothing for the spans.

Configuration:
- OTEL_SERVICE_NAME: Service name (default: eduquest_ai)
- OTEL_EXPORTER_OTLP_ENDPOINT: OTLP gRPC endpoint (e.g. http://localhost:4317)
- OTEL_TRACES_SAMPLER_ARG: Sampling rate (default: 1.0 for 100% sampling)
"""
import os
from contextlib import contextmanager
from typing import Any, Dict, Iterator, Optional

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.sdk.trace.sampling import TraceIdRatioBased
from opentelemetry.trace import Span, Status, StatusCode, Tracer

from eduquest.core.logging import get_logger

logger = get_logger(__name__)

_tracer_provider: Optional[TracerProvider] = None


def configure_tracing(
    service_name: Optional[str] = None,
    otlp_endpoint: Optional[str] = None,
    sampling_rate: float = 1.0,
) -> None:
    """
    Configure OpenTelemetry tracing.

    Args:
        service_name: Service name identifier (defaults to OTEL_SERVICE_NAME or eduquest_ai)
        otlp_endpoint: OTLP endpoint URL (defaults to OTEL_EXPORTER_OTLP_ENDPOINT)
        sampling_rate: Sampling rate (0.0 to 1.0)
    """
    global _tracer_provider

    service_name = service_name or os.getenv("OTEL_SERVICE_NAME", "eduquest_ai")
    otlp_endpoint = otlp_endpoint or os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT")
    sampling_rate = float(os.getenv("OTEL_TRACES_SAMPLER_ARG", str(sampling_rate)))

    resource = Resource.create({
        "service.name": service_name,
        "service.version": "1.0.0",
    })

    if sampling_rate < 1.0:
        _tracer_provider = TracerProvider(resource=resource, sampler=TraceIdRatioBased(sampling_rate))
    else:
        _tracer_provider = TracerProvider(resource=resource)

    if otlp_endpoint:
        try:
            _tracer_provider.add_span_processor(
                BatchSpanProcessor(OTLPSpanExporter(endpoint=otlp_endpoint))
            )
            logger.info(
                "tracing_otlp_configured",
                endpoint=otlp_endpoint,
                sampling_rate=sampling_rate,
            )
        except Exception as e:
            logger.warning(
                "tracing_otlp_configuration_failed",
                endpoint=otlp_endpoint,
                error=str(e),
                error_type=type(e).__name__,
                message="Tracing will continue without OTLP export",
            )

    trace.set_tracer_provider(_tracer_provider)

    logger.info(
        "tracing_configured",
        service_name=service_name,
        sampling_rate=sampling_rate,
        otlp_enabled=bool(otlp_endpoint),
    )


def get_tracer() -> Tracer:
    """Get a tracer from the active (possibly no-op) tracer provider."""
    return trace.get_tracer("eduquest.ai")


@contextmanager
def start_span(name: str, attributes: Optional[Dict[str, Any]] = None) -> Iterator[Span]:
    """
    Open a span as the current span.

    Exceptions raised inside the block are recorded on the span and re-raised.
    """
    with get_tracer().start_as_current_span(
        name,
        attributes=attributes or {},
        record_exception=False,
        set_status_on_exception=False,
    ) as span:
        try:
            yield span
        except BaseException as exc:
            span.record_exception(exc)
            span.set_status(Status(StatusCode.ERROR, type(exc).__name__))
            raise


def get_trace_id_from_context() -> Optional[str]:
    """
    Get trace ID from current OpenTelemetry span context.

    Returns:
        Trace ID as hex string or None if no active span
    """
    current_span = trace.get_current_span()
    if current_span:
        span_context = current_span.get_span_context()
        if span_context.is_valid:
            return format(span_context.trace_id, "032x")
    return None


def shutdown_tracing() -> None:
    """
    Shutdown tracing and flush all spans.
    """
    global _tracer_provider
    if _tracer_provider:
        try:
            _tracer_provider.shutdown()
            logger.info("tracing_shutdown")
        except Exception as e:
            logger.warning(
                "tracing_shutdown_failed",
                error=str(e),
                error_type=type(e).__name__,
            )
        finally:
            _tracer_provider = None
