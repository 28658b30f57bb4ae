"""Batch progress and per-request outcome models."""

from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from answerscope.models.collection import (
    CollectionRequest,
    CollectorResult,
    ProviderAttempt,
)


class OutcomeStatus(str, Enum):
    """Final state of one (query, collector type) pair within a batch"""

    COMPLETED = "completed"
    FAILED = "failed"
    HANDED_OFF = "handed_off"
    CANCELLED = "cancelled"


class CollectionOutcome(BaseModel):
    """What the orchestrator yields for each request"""

    request: CollectionRequest
    status: OutcomeStatus
    result: Optional[CollectorResult] = None
    attempts: List[ProviderAttempt] = Field(default_factory=list)
    error: Optional[str] = None


class BatchState(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


class CollectorTypeProgress(BaseModel):
    """Counters for one collector type within a batch"""

    total: int = 0
    completed: int = 0
    failed: int = 0
    handed_off: int = 0
    cancelled: int = 0
    in_flight: int = 0
    max_in_flight: int = 0

    @property
    def finished(self) -> int:
        return self.completed + self.failed + self.handed_off + self.cancelled


class BatchProgress(BaseModel):
    """Snapshot returned by get_batch_progress"""

    batch_id: str
    brand_id: str
    customer_id: str
    state: BatchState = BatchState.RUNNING
    total: int = 0
    completed: int = 0
    failed: int = 0
    handed_off: int = 0
    cancelled: int = 0
    in_flight: int = 0
    config_version: str = "1"
    per_collector_type_status: Dict[str, CollectorTypeProgress] = Field(
        default_factory=dict
    )
    started_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: Optional[datetime] = None
