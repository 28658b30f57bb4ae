"""Tests for the collection error taxonomy."""

from datetime import datetime, timezone

from answerscope.models.collection import (
    AttemptStatus,
    CollectionRequest,
    JobHandle,
    ProviderAttempt,
)
from answerscope.models.credentials import OperationKey, OperationKind
from answerscope.utils.exceptions import (
    ChainExhaustedError,
    CollectionError,
    CredentialsCoolingDown,
    FatalProviderError,
    PollTimeoutHandoff,
    ProviderError,
    RateLimitError,
    RetryableProviderError,
)


class TestProviderErrors:
    def test_hierarchy(self):
        """All provider errors are CollectionErrors."""
        for cls in (RetryableProviderError, FatalProviderError, RateLimitError):
            assert issubclass(cls, ProviderError)
            assert issubclass(cls, CollectionError)

    def test_rate_limit_carries_retry_after(self):
        error = RateLimitError("429", provider="serpapi", retry_after=12.5)

        assert error.retry_after == 12.5
        assert error.provider == "serpapi"
        assert str(error) == "429"


class TestChainExhaustedError:
    def test_message_lists_attempts(self):
        """The message summarizes every attempt's provider and status."""
        now = datetime.now(timezone.utc)
        attempts = [
            ProviderAttempt(
                request_id="r1",
                attempt_number=1,
                provider_name="x",
                priority=0,
                status=AttemptStatus.RATE_LIMITED,
                started_at=now,
            ),
            ProviderAttempt(
                request_id="r1",
                attempt_number=2,
                provider_name="y",
                priority=1,
                status=AttemptStatus.FATAL_FAILURE,
                started_at=now,
            ),
        ]

        error = ChainExhaustedError("r1", attempts, stopped_early=True)

        assert error.request_id == "r1"
        assert error.attempts == attempts
        assert error.stopped_early is True
        assert "x=rate_limited" in str(error)
        assert "y=fatal_failure" in str(error)


class TestOtherErrors:
    def test_poll_handoff_keeps_handle(self):
        request = CollectionRequest.for_query("b", "q", "chatgpt", "acme", "c")
        handle = JobHandle(
            job_id="snap-1",
            provider_name="brightdata",
            request=request,
            binding_priority=0,
        )

        error = PollTimeoutHandoff(handle)

        assert error.handle is handle
        assert "snap-1" in str(error)

    def test_cooling_down_carries_operation(self):
        key = OperationKey("serpapi", OperationKind.COLLECTION)

        error = CredentialsCoolingDown(key, retry_after=4.0)

        assert error.operation == key
        assert error.retry_after == 4.0
        assert "serpapi/collection" in str(error)
