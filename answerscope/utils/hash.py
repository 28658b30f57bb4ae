"""Hash utilities for stable request identifiers.

Correlation ids are derived from the request content so that re-submitting
the same (batch, brand, collector type, query) produces the same id, which
is what makes result writes idempotent under retry.
"""

import hashlib
import json
import re


def normalize_query(query_text: str) -> str:
    """Normalize a query for identity comparison.

    Lowercases and collapses whitespace so that formatting differences
    do not produce distinct requests.

    Args:
        query_text: Raw query text.

    Returns:
        Normalized query text.
    """
    return re.sub(r"\s+", " ", query_text.strip().lower())


def calculate_correlation_id(
    batch_id: str,
    brand_id: str,
    collector_type: str,
    query_text: str,
) -> str:
    """Calculate a stable correlation id for a collection request.

    Args:
        batch_id: Batch the request belongs to.
        brand_id: Brand being queried.
        collector_type: Collector type name.
        query_text: Query text (normalized before hashing).

    Returns:
        32 character hex digest.
    """
    payload = json.dumps(
        [batch_id, brand_id, collector_type, normalize_query(query_text)],
        separators=(",", ":"),
    )
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()[:32]
