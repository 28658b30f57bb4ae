"""Prometheus metrics for collection and scoring.

Usage:
    from answerscope.observability.metrics import PROVIDER_ATTEMPTS

    PROVIDER_ATTEMPTS.labels(provider="serpapi_bing", status="success").inc()

Metrics are exposed via the /metrics endpoint of the API server.
"""

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

# Private registry so tests and multiple app instances do not collide with
# the process-wide default registry
REGISTRY = CollectorRegistry(auto_describe=True)

# =============================================================================
# COUNTERS
# =============================================================================

PROVIDER_ATTEMPTS = Counter(
    name="answerscope_provider_attempts_total",
    documentation="Provider attempts by outcome",
    labelnames=["provider", "status"],  # AttemptStatus values
    registry=REGISTRY,
)

COLLECTION_REQUESTS = Counter(
    name="answerscope_collection_requests_total",
    documentation="Collection requests by final outcome",
    labelnames=["collector_type", "outcome"],  # OutcomeStatus values
    registry=REGISTRY,
)

CHAIN_EXHAUSTED = Counter(
    name="answerscope_chain_exhausted_total",
    documentation="Requests where every provider binding failed",
    labelnames=["collector_type"],
    registry=REGISTRY,
)

CREDENTIAL_BACKOFFS = Counter(
    name="answerscope_credential_backoffs_total",
    documentation="Rate-limit penalties applied to credential slots",
    labelnames=["provider", "operation"],
    registry=REGISTRY,
)

POLL_OUTCOMES = Counter(
    name="answerscope_poll_outcomes_total",
    documentation="Terminal async poll outcomes",
    labelnames=["provider", "tier", "outcome"],  # interactive/reconciliation
    registry=REGISTRY,
)

ENRICHMENT_TASKS = Counter(
    name="answerscope_enrichment_tasks_total",
    documentation="Enrichment tasks by kind and final status",
    labelnames=["task_kind", "status", "provider"],
    registry=REGISTRY,
)

# =============================================================================
# GAUGES
# =============================================================================

INFLIGHT_REQUESTS = Gauge(
    name="answerscope_inflight_requests",
    documentation="Collection requests currently executing",
    labelnames=["collector_type"],
    registry=REGISTRY,
)

PENDING_HANDOFFS = Gauge(
    name="answerscope_pending_handoffs",
    documentation="Async jobs waiting for reconciliation",
    registry=REGISTRY,
)

SCHEDULER_JOBS = Gauge(
    name="answerscope_scheduler_jobs",
    documentation="Number of scheduled jobs",
    labelnames=["status"],  # pending, running
    registry=REGISTRY,
)

# =============================================================================
# HISTOGRAMS
# =============================================================================

COLLECTION_DURATION = Histogram(
    name="answerscope_collection_duration_seconds",
    documentation="Wall time of one collection request across its chain",
    labelnames=["collector_type"],
    buckets=(0.5, 1, 2, 5, 10, 30, 60, 120, 300, float("inf")),
    registry=REGISTRY,
)

PROVIDER_LATENCY = Histogram(
    name="answerscope_provider_latency_seconds",
    documentation="Latency of a single provider call",
    labelnames=["provider"],
    buckets=(0.1, 0.5, 1, 2, 5, 10, 30, 60, float("inf")),
    registry=REGISTRY,
)

ENRICHMENT_DURATION = Histogram(
    name="answerscope_enrichment_duration_seconds",
    documentation="Enrichment task duration",
    labelnames=["task_kind"],
    buckets=(0.05, 0.1, 0.5, 1, 2, 5, 10, 30, 90, float("inf")),
    registry=REGISTRY,
)


def get_metrics_text() -> bytes:
    """Render all metrics in Prometheus exposition format."""
    return generate_latest(REGISTRY)


def get_metrics_content_type() -> str:
    """Content-Type header value for the metrics response."""
    return CONTENT_TYPE_LATEST
