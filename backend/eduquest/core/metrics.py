"""
Prometheus metrics for the AI orchestration layer.

Metrics Categories:
- Provider metrics: attempts by outcome, retries, fallbacks, exhaustion
- Backend metrics: outbound HTTP latency and errors per provider family
- Cache metrics: hits and misses per cache tier
- Notification metrics: user-facing notifications shown and suppressed

All metrics follow Prometheus naming conventions:
- Counters: _total suffix
- Histograms: _seconds suffix for duration
"""
from prometheus_client import (
    Counter,
    Histogram,
    generate_latest,
    REGISTRY,
    CONTENT_TYPE_LATEST,
)

from eduquest.core.logging import get_logger

logger = get_logger(__name__)

registry = REGISTRY

# ============================================================================
# PROVIDER METRICS
# ============================================================================

ai_provider_attempts_total = Counter(
    "ai_provider_attempts_total",
    "Provider attempts made by the fallback orchestrator, by outcome",
    ["feature", "provider_kind", "outcome"],  # succeeded, failed, timed_out, cancelled
    registry=registry,
)

ai_retries_total = Counter(
    "ai_retries_total",
    "Backoff retries scheduled after rate-limited attempts",
    ["feature"],
    registry=registry,
)

ai_provider_fallbacks_total = Counter(
    "ai_provider_fallbacks_total",
    "Times the orchestrator advanced to the next provider",
    ["feature"],
    registry=registry,
)

ai_providers_exhausted_total = Counter(
    "ai_providers_exhausted_total",
    "Requests that failed with every provider in the priority list",
    ["feature"],
    registry=registry,
)

# ============================================================================
# BACKEND METRICS
# ============================================================================

llm_request_duration_seconds = Histogram(
    "llm_request_duration_seconds",
    "Outbound LLM request latency in seconds",
    ["provider_kind", "model"],
    buckets=[0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0],
    registry=registry,
)

llm_errors_total = Counter(
    "llm_errors_total",
    "Outbound LLM request errors",
    ["provider_kind", "error_type"],
    registry=registry,
)

# ============================================================================
# CACHE METRICS
# ============================================================================

ai_cache_hits_total = Counter(
    "ai_cache_hits_total",
    "Two-tier result cache hits",
    ["namespace", "tier"],  # tier: "ephemeral" or "durable"
    registry=registry,
)

ai_cache_misses_total = Counter(
    "ai_cache_misses_total",
    "Two-tier result cache misses (both tiers missed or stale)",
    ["namespace"],
    registry=registry,
)

# ============================================================================
# NOTIFICATION METRICS
# ============================================================================

notifications_shown_total = Counter(
    "notifications_shown_total",
    "User-facing notifications shown",
    ["severity"],
    registry=registry,
)

notifications_suppressed_total = Counter(
    "notifications_suppressed_total",
    "Quota-class error notifications suppressed by the cooldown",
    registry=registry,
)


# ============================================================================
# HELPER FUNCTIONS
# ============================================================================

def record_provider_attempt(feature: str, provider_kind: str, outcome: str) -> None:
    """
    Record the outcome of one provider attempt.

    Args:
        feature: AI feature name (e.g. "Flashcard Generation")
        provider_kind: Provider family ("primary" / "secondary")
        outcome: "succeeded", "failed", "timed_out" or "cancelled"
    """
    ai_provider_attempts_total.labels(
        feature=feature,
        provider_kind=provider_kind,
        outcome=outcome,
    ).inc()


def record_retry(feature: str) -> None:
    """Record a scheduled backoff retry."""
    ai_retries_total.labels(feature=feature).inc()


def record_fallback(feature: str) -> None:
    """Record a fallback to the next provider."""
    ai_provider_fallbacks_total.labels(feature=feature).inc()


def record_providers_exhausted(feature: str) -> None:
    """Record a request that failed with all providers."""
    ai_providers_exhausted_total.labels(feature=feature).inc()


def record_llm_request(provider_kind: str, model: str, duration_seconds: float) -> None:
    """Record outbound request latency (successful or not)."""
    llm_request_duration_seconds.labels(
        provider_kind=provider_kind,
        model=model,
    ).observe(duration_seconds)


def record_llm_error(provider_kind: str, error_type: str) -> None:
    """
    Record an outbound request error.

    Args:
        provider_kind: Provider family
        error_type: "http_error", "timeout", "transport_error", ...
    """
    llm_errors_total.labels(provider_kind=provider_kind, error_type=error_type).inc()


def record_cache_hit(namespace: str, tier: str) -> None:
    """Record a cache hit in the given tier."""
    ai_cache_hits_total.labels(namespace=namespace, tier=tier).inc()


def record_cache_miss(namespace: str) -> None:
    """Record a miss in both tiers."""
    ai_cache_misses_total.labels(namespace=namespace).inc()


def record_notification_shown(severity: str) -> None:
    notifications_shown_total.labels(severity=severity).inc()


def record_notification_suppressed() -> None:
    notifications_suppressed_total.inc()


def get_metrics() -> bytes:
    """
    Get Prometheus metrics in text format.
    """
    return generate_latest(registry)


def get_metrics_content_type() -> str:
    """Content type string for Prometheus metrics."""
    return CONTENT_TYPE_LATEST
