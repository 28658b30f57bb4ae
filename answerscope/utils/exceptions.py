"""Exception hierarchy for answer collection and enrichment.

Provider adapters translate raw transport failures into one of the
provider-level classes below. The fallback executor recovers from those
locally; only ChainExhaustedError and enrichment failures travel further up.

All exceptions inherit from CollectionError so callers can catch every
collection-related failure in a single except block when needed.
"""

from typing import TYPE_CHECKING, List, Optional

if TYPE_CHECKING:  # pragma: no cover
    from answerscope.models.collection import JobHandle, ProviderAttempt
    from answerscope.models.credentials import OperationKey


class CollectionError(Exception):
    """Base exception for all collection errors

    ```python
    try:
        result = await executor.execute(request, bindings)
    except CollectionError as e:
        logger.error("collection_failed", error=str(e))
    ```
    """

    pass


class ProviderError(CollectionError):
    """Base class for failures reported by a provider adapter

    Attributes:
        provider: Name of the adapter that raised the error
    """

    def __init__(self, message: str, provider: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.provider = provider


class RetryableProviderError(ProviderError):
    """Transient provider failure

    Raised when:
    - Network connection fails or resets
    - Upstream returns 5xx
    - The attempt exceeds its binding timeout

    Retried on the same binding up to max_retries times.
    """

    pass


class FatalProviderError(ProviderError):
    """Permanent provider failure for this request

    Raised when:
    - The query is malformed or the locale is unsupported (400/404/422)
    - Credentials are rejected (401/403)
    - The response cannot be parsed into an answer

    Never retried on the same provider; the chain always advances.
    """

    pass


class RateLimitError(ProviderError):
    """Upstream rejected the request with a rate limit (429)

    Triggers exponential backoff on the credential slot that was used.

    Attributes:
        retry_after: Seconds suggested by the upstream, if any
    """

    def __init__(
        self,
        message: str,
        provider: Optional[str] = None,
        retry_after: Optional[float] = None,
    ):
        super().__init__(message, provider)
        self.retry_after = retry_after


class ChainExhaustedError(CollectionError):
    """Every provider binding for a request failed

    Carries the complete attempt trail for diagnostics.

    Attributes:
        request_id: Correlation id of the failed request
        attempts: ProviderAttempt records in the order they were made
        stopped_early: True when a rate limit on a binding with
            fallback_on_failure=False ended the chain before the last binding
    """

    def __init__(
        self,
        request_id: str,
        attempts: "List[ProviderAttempt]",
        stopped_early: bool = False,
    ):
        providers = ", ".join(f"{a.provider_name}={a.status.value}" for a in attempts)
        super().__init__(
            f"All providers failed for request {request_id}: [{providers}]"
        )
        self.request_id = request_id
        self.attempts = list(attempts)
        self.stopped_early = stopped_early


class PollTimeoutHandoff(CollectionError):
    """Interactive polling deadline passed before the async job finished

    Not a failure: the job handle has been stored for background
    reconciliation, which keeps polling under the long deadline.
    """

    def __init__(self, handle: "JobHandle"):
        super().__init__(
            f"Job {handle.job_id} on {handle.provider_name} "
            "handed off to reconciliation"
        )
        self.handle = handle


class CredentialsCoolingDown(CollectionError):
    """Every credential for an operation is inside its backoff window

    Returned by the key pool in place of a slot. The caller either waits
    retry_after seconds or falls back to another provider.
    """

    def __init__(self, operation: "OperationKey", retry_after: float):
        super().__init__(
            f"All credentials for {operation} are backing off "
            f"(retry in {retry_after:.1f}s)"
        )
        self.operation = operation
        self.retry_after = retry_after


class UnknownOperationError(CollectionError):
    """No credentials are configured for the requested operation"""

    pass


class RequestCancelledError(CollectionError):
    """The request was cancelled before a new provider attempt started"""

    pass


class EnrichmentError(CollectionError):
    """An enrichment hop could not produce a result

    Raised when:
    - The scoring model call fails or times out
    - The model response is not valid JSON
    - The response is missing required fields
    """

    pass


class ConfigValidationError(CollectionError):
    """Configuration validation failed"""

    pass


class BatchNotFoundError(CollectionError):
    """No batch with the given id was submitted to this service"""

    pass
