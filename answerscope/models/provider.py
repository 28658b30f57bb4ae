"""Provider adapter boundary models.

What an adapter receives and the non-error shapes it can return. Errors
are raised as exceptions from answerscope.utils.exceptions.
"""

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from answerscope.models.collection import Citation


class AdapterRequest(BaseModel):
    """Input handed to a provider adapter"""

    model_config = ConfigDict(frozen=True)

    query_text: str
    locale: str = "en"
    country: str = "US"
    collector_type: str


class AdapterSuccess(BaseModel):
    """Synchronous answer from a provider"""

    model_config = ConfigDict(frozen=True)

    raw_answer: str
    citations: List[Citation] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)


class AdapterAccepted(BaseModel):
    """Provider accepted the request and will answer later"""

    model_config = ConfigDict(frozen=True)

    job_id: str
    metadata: Dict[str, Any] = Field(default_factory=dict)


class JobState(str, Enum):
    """State of an upstream async job as reported by one poll"""

    PENDING = "pending"
    READY = "ready"
    FAILED = "failed"


class PollStatus(BaseModel):
    """Result of a single poll against an async job"""

    model_config = ConfigDict(frozen=True)

    state: JobState
    answer: Optional[AdapterSuccess] = None
    error: Optional[str] = None

    @classmethod
    def pending(cls) -> "PollStatus":
        return cls(state=JobState.PENDING)

    @classmethod
    def ready(cls, answer: AdapterSuccess) -> "PollStatus":
        return cls(state=JobState.READY, answer=answer)

    @classmethod
    def failed(cls, error: str) -> "PollStatus":
        return cls(state=JobState.FAILED, error=error)
