"""Correlation id propagation for request tracing.

The orchestrator enters ``correlation_id_context(request.correlation_id)``
around every collection request, so every log line emitted by the executor,
adapters, poll engine and scoring tasks for that request carries the same id.
ContextVar values follow asyncio tasks, so concurrent workers never see each
other's ids.
"""

import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Generator, Optional

_correlation_id_var: ContextVar[Optional[str]] = ContextVar(
    "correlation_id", default=None
)


def set_correlation_id(corr_id: Optional[str] = None) -> str:
    """Set the correlation id for the current context.

    Args:
        corr_id: Explicit id. A UUID4 is generated when omitted.

    Returns:
        The id now in effect.
    """
    if corr_id is None:
        corr_id = str(uuid.uuid4())
    _correlation_id_var.set(corr_id)
    return corr_id


def get_correlation_id() -> Optional[str]:
    """Return the current correlation id, or None outside any request."""
    return _correlation_id_var.get()


def clear_correlation_id() -> None:
    """Reset the correlation id so it does not leak into unrelated work."""
    _correlation_id_var.set(None)


@contextmanager
def correlation_id_context(
    corr_id: Optional[str] = None,
) -> Generator[str, None, None]:
    """Scope a correlation id to a block and restore the outer one after.

    Args:
        corr_id: Explicit id. A UUID4 is generated when omitted.

    Yields:
        The id in effect inside the block.
    """
    if corr_id is None:
        corr_id = str(uuid.uuid4())

    token = _correlation_id_var.set(corr_id)
    try:
        yield corr_id
    finally:
        _correlation_id_var.reset(token)
