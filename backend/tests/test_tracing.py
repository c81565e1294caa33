"""
Unit tests for OpenTelemetry tracing helpers.
"""
import pytest

from eduquest.core.tracing import (
    configure_tracing,
    get_trace_id_from_context,
    get_tracer,
    shutdown_tracing,
    start_span,
)


def test_get_tracer_without_configuration():
    """Spans work (as no-ops) before tracing is configured."""
    tracer = get_tracer()

    assert tracer is not None
    with start_span("ai.test", {"ai.feature": "test"}) as span:
        span.set_attribute("ai.outcome", "succeeded")


def test_start_span_reraises():
    with pytest.raises(RuntimeError):
        with start_span("ai.failing"):
            raise RuntimeError("boom")


def test_trace_id_inside_configured_span():
    configure_tracing(service_name="eduquest_ai_test")
    try:
        with start_span("ai.provider_attempt"):
            trace_id = get_trace_id_from_context()
    finally:
        shutdown_tracing()

    assert trace_id is not None
    assert len(trace_id) == 32


def test_no_trace_id_outside_span():
    assert get_trace_id_from_context() is None
