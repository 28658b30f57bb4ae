"""Collection data models

This module defines the data structures for:
- Collector types and their ordered provider bindings
- Collection requests (immutable, identified by correlation id)
- The append-only provider attempt audit trail
- Collector results handed to the scoring coordinator
- Async job handles stored for background reconciliation
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from answerscope.utils.hash import calculate_correlation_id


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ProviderBinding(BaseModel):
    """Attaches one provider adapter to a collector type at a priority

    Lower priority values run first. Priorities are unique within a
    collector type (enforced by CollectorType).
    """

    model_config = ConfigDict(frozen=True)

    provider_name: str = Field(..., min_length=1)
    priority: int = Field(..., ge=0, description="Ascending execution order")
    enabled: bool = True
    timeout_seconds: float = Field(
        default=60.0, gt=0.0, le=900.0, description="Hard deadline per attempt"
    )
    max_retries: int = Field(
        default=2, ge=0, le=10, description="Retries after a retryable failure"
    )
    fallback_on_failure: bool = Field(
        default=True,
        description="Continue to the next binding after a rate limit or "
        "exhausted retries",
    )


class CollectorType(BaseModel):
    """Named category of upstream answer generator with its fallback chain"""

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., min_length=1)
    bindings: List[ProviderBinding] = Field(..., min_length=1)

    @field_validator("bindings")
    @classmethod
    def validate_unique_priorities(
        cls, v: List[ProviderBinding]
    ) -> List[ProviderBinding]:
        priorities = [b.priority for b in v]
        if len(priorities) != len(set(priorities)):
            raise ValueError(f"Binding priorities must be unique, got {priorities}")
        return sorted(v, key=lambda b: b.priority)

    @property
    def enabled_bindings(self) -> List[ProviderBinding]:
        """Enabled bindings in ascending priority order."""
        return [b for b in self.bindings if b.enabled]


class CollectionRequest(BaseModel):
    """One query for one collector type

    Immutable once submitted. correlation_id is the idempotency key for
    every write derived from this request.
    """

    model_config = ConfigDict(frozen=True)

    query_text: str = Field(..., min_length=1)
    collector_type: str
    locale: str = "en"
    country: str = "US"
    brand_id: str
    customer_id: str
    correlation_id: str

    @classmethod
    def for_query(
        cls,
        batch_id: str,
        query_text: str,
        collector_type: str,
        brand_id: str,
        customer_id: str,
        locale: str = "en",
        country: str = "US",
    ) -> "CollectionRequest":
        """Build a request whose correlation id is derived from its content."""
        return cls(
            query_text=query_text,
            collector_type=collector_type,
            locale=locale,
            country=country,
            brand_id=brand_id,
            customer_id=customer_id,
            correlation_id=calculate_correlation_id(
                batch_id, brand_id, collector_type, query_text
            ),
        )


class AttemptStatus(str, Enum):
    """Outcome of one provider attempt"""

    PENDING = "pending"
    SUCCESS = "success"
    RETRYABLE_FAILURE = "retryable_failure"
    FATAL_FAILURE = "fatal_failure"
    RATE_LIMITED = "rate_limited"
    ACCEPTED_ASYNC = "accepted_async"


class ProviderAttempt(BaseModel):
    """One row of the append-only attempt audit trail"""

    model_config = ConfigDict(frozen=True)

    request_id: str
    attempt_number: int = Field(..., ge=1)
    provider_name: str
    priority: int
    status: AttemptStatus
    started_at: datetime
    finished_at: Optional[datetime] = None
    credential_id: Optional[str] = None
    response_payload: Optional[Dict[str, Any]] = None
    error: Optional[str] = None

    @property
    def attempt_id(self) -> str:
        return f"{self.request_id}:{self.attempt_number}"


class Citation(BaseModel):
    """A source link returned alongside an answer"""

    model_config = ConfigDict(frozen=True)

    url: str
    title: Optional[str] = None


class CollectorResult(BaseModel):
    """Normalized answer for one successful collection request

    Created exactly once per request; request_id equals the request's
    correlation id.
    """

    model_config = ConfigDict(frozen=True)

    request_id: str
    collector_type: str
    query_text: str
    brand_id: str
    customer_id: str
    raw_answer: str
    citations: List[Citation] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)
    provider_used: str
    fallback_used: bool = False
    fallback_chain: List[str] = Field(
        default_factory=list, description="Providers tried, in order"
    )
    completed_at: datetime = Field(default_factory=_utcnow)

    @property
    def result_id(self) -> str:
        return self.request_id


class JobHandle(BaseModel):
    """Reference to an upstream job that answers asynchronously"""

    model_config = ConfigDict(frozen=True)

    job_id: str
    provider_name: str
    request: CollectionRequest
    binding_priority: int
    credential_id: Optional[str] = None
    accepted_at: datetime = Field(default_factory=_utcnow)
    fallback_chain: List[str] = Field(default_factory=list)
