"""Credential models for the key pool.

A CredentialSlot is keyed by (OperationKey, credential_id). OperationKey is
a required constructor argument so a slot can never exist without naming the
operation it backs; two operations configured with the same secret still get
separate slots and separate backoff state.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field, SecretStr


class OperationKind(str, Enum):
    """What a credential is being used for"""

    COLLECTION = "collection"
    POSITION = "position"
    SENTIMENT = "sentiment"
    CITATION = "citation"


@dataclass(frozen=True)
class OperationKey:
    """Identity of a key pool namespace: one provider, one operation"""

    provider: str
    operation: OperationKind

    def __str__(self) -> str:
        return f"{self.provider}/{self.operation.value}"


@dataclass
class CredentialSlot:
    """Usage and backoff state for one credential within one operation

    Mutated only by KeyPool while holding the slot's lock. Times are
    monotonic clock readings.
    """

    operation: OperationKey
    credential_id: str
    secret: SecretStr = field(repr=False)
    last_used_at: Optional[float] = None
    consecutive_rate_limit_hits: int = 0
    last_rate_limit_at: Optional[float] = None
    backoff_until: float = 0.0

    def is_backing_off(self, now: float) -> bool:
        return now < self.backoff_until


class KeyPoolEntry(BaseModel):
    """Configuration for one (provider, operation) credential namespace"""

    provider: str
    operation: OperationKind
    credentials: List[str] = Field(
        ..., min_length=1, description="Credential ids from the credentials map"
    )
    backoff_base_seconds: float = Field(default=2.0, gt=0.0, le=600.0)
    backoff_cap_exponent: int = Field(default=6, ge=0, le=16)
    hit_window_seconds: float = Field(
        default=300.0,
        gt=0.0,
        description="Rate-limit hits older than this no longer compound",
    )

    @property
    def key(self) -> OperationKey:
        return OperationKey(provider=self.provider, operation=self.operation)


class SlotSnapshot(BaseModel):
    """Read-only view of a slot for health and status reporting"""

    provider: str
    operation: OperationKind
    credential_id: str
    consecutive_rate_limit_hits: int
    backing_off: bool
    backoff_remaining_seconds: float
    captured_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
