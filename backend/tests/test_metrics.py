"""
Unit tests for Prometheus metrics collection.

Tests verify:
- Provider, cache and notification counters are incremented
- Backend latency is observed
- Metrics endpoint payload is valid Prometheus text format
"""
from prometheus_client import REGISTRY

from eduquest.core.metrics import (
    get_metrics,
    get_metrics_content_type,
    record_cache_hit,
    record_cache_miss,
    record_fallback,
    record_llm_error,
    record_llm_request,
    record_notification_shown,
    record_notification_suppressed,
    record_provider_attempt,
    record_providers_exhausted,
    record_retry,
)


def _sample(name, labels=None):
    return REGISTRY.get_sample_value(name, labels or {}) or 0.0


def test_record_provider_attempt():
    labels = {"feature": "metrics_test", "provider_kind": "primary", "outcome": "failed"}
    before = _sample("ai_provider_attempts_total", labels)

    record_provider_attempt("metrics_test", "primary", "failed")

    assert _sample("ai_provider_attempts_total", labels) == before + 1


def test_record_retry_fallback_and_exhaustion():
    labels = {"feature": "metrics_test"}
    retries = _sample("ai_retries_total", labels)
    fallbacks = _sample("ai_provider_fallbacks_total", labels)
    exhausted = _sample("ai_providers_exhausted_total", labels)

    record_retry("metrics_test")
    record_fallback("metrics_test")
    record_providers_exhausted("metrics_test")

    assert _sample("ai_retries_total", labels) == retries + 1
    assert _sample("ai_provider_fallbacks_total", labels) == fallbacks + 1
    assert _sample("ai_providers_exhausted_total", labels) == exhausted + 1


def test_record_llm_request_and_error():
    labels = {"provider_kind": "secondary", "model": "metrics-model"}
    count = _sample("llm_request_duration_seconds_count", labels)
    errors = _sample("llm_errors_total", {"provider_kind": "secondary", "error_type": "http_error"})

    record_llm_request("secondary", "metrics-model", 0.3)
    record_llm_error("secondary", "http_error")

    assert _sample("llm_request_duration_seconds_count", labels) == count + 1
    assert _sample("llm_errors_total", {"provider_kind": "secondary", "error_type": "http_error"}) == errors + 1


def test_record_cache_hit_and_miss():
    hit_labels = {"namespace": "metrics_ns", "tier": "durable"}
    hits = _sample("ai_cache_hits_total", hit_labels)
    misses = _sample("ai_cache_misses_total", {"namespace": "metrics_ns"})

    record_cache_hit("metrics_ns", "durable")
    record_cache_miss("metrics_ns")

    assert _sample("ai_cache_hits_total", hit_labels) == hits + 1
    assert _sample("ai_cache_misses_total", {"namespace": "metrics_ns"}) == misses + 1


def test_record_notifications():
    shown = _sample("notifications_shown_total", {"severity": "error"})
    suppressed = _sample("notifications_suppressed_total")

    record_notification_shown("error")
    record_notification_suppressed()

    assert _sample("notifications_shown_total", {"severity": "error"}) == shown + 1
    assert _sample("notifications_suppressed_total") == suppressed + 1


def test_get_metrics_format():
    record_retry("metrics_format")

    payload = get_metrics()

    assert isinstance(payload, bytes)
    assert b"ai_retries_total" in payload
    assert "text/plain" in get_metrics_content_type()
