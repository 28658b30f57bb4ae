"""Observability: correlation ids, structured logging and Prometheus metrics.

Usage:
    from answerscope.observability import correlation_id_context, get_logger

    with correlation_id_context(request.correlation_id):
        get_logger("worker").info("request_started")
"""

from answerscope.observability.context import (
    clear_correlation_id,
    correlation_id_context,
    get_correlation_id,
    set_correlation_id,
)
from answerscope.observability.logging import (
    add_correlation_id_processor,
    bind_context,
    clear_context,
    configure_logging,
    get_logger,
)
from answerscope.observability.metrics import (
    CHAIN_EXHAUSTED,
    COLLECTION_DURATION,
    COLLECTION_REQUESTS,
    CREDENTIAL_BACKOFFS,
    ENRICHMENT_DURATION,
    ENRICHMENT_TASKS,
    INFLIGHT_REQUESTS,
    PENDING_HANDOFFS,
    POLL_OUTCOMES,
    PROVIDER_ATTEMPTS,
    PROVIDER_LATENCY,
    SCHEDULER_JOBS,
    get_metrics_content_type,
    get_metrics_text,
)

__all__ = [
    # Context
    "set_correlation_id",
    "get_correlation_id",
    "clear_correlation_id",
    "correlation_id_context",
    # Logging
    "configure_logging",
    "get_logger",
    "bind_context",
    "clear_context",
    "add_correlation_id_processor",
    # Metrics
    "PROVIDER_ATTEMPTS",
    "COLLECTION_REQUESTS",
    "CHAIN_EXHAUSTED",
    "CREDENTIAL_BACKOFFS",
    "POLL_OUTCOMES",
    "ENRICHMENT_TASKS",
    "INFLIGHT_REQUESTS",
    "PENDING_HANDOFFS",
    "SCHEDULER_JOBS",
    "COLLECTION_DURATION",
    "PROVIDER_LATENCY",
    "ENRICHMENT_DURATION",
    "get_metrics_text",
    "get_metrics_content_type",
]
