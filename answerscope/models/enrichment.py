"""Enrichment data models

This module defines the data structures for:
- Enrichment task lifecycle (pending -> in_progress -> succeeded | failed)
- Position, sentiment and citation outputs
- The merged scored record persisted per collector result
- Brand profiles used as scoring input
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TaskKind(str, Enum):
    """Independent post-collection analyses"""

    POSITION = "position"
    SENTIMENT = "sentiment"
    CITATION = "citation"


class TaskStatus(str, Enum):
    """Enrichment task lifecycle"""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class HopOutcome(BaseModel):
    """One provider hop tried by an enrichment task"""

    provider: str
    succeeded: bool
    error: Optional[str] = None
    duration_ms: float = 0.0


class EnrichmentTask(BaseModel):
    """One (collector result, task kind) analysis

    task_id is derived from its two identifiers so repeated saves upsert.
    """

    collector_result_id: str
    task_kind: TaskKind
    status: TaskStatus = TaskStatus.PENDING
    provider_used: Optional[str] = None
    result_payload: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    hops: List[HopOutcome] = Field(default_factory=list)
    updated_at: datetime = Field(default_factory=_utcnow)

    @property
    def task_id(self) -> str:
        return f"{self.collector_result_id}:{self.task_kind.value}"


class CompetitorProfile(BaseModel):
    """A competitor tracked against the brand"""

    name: str = Field(..., min_length=1)
    aliases: List[str] = Field(default_factory=list)


class BrandProfile(BaseModel):
    """Brand identity used by position and sentiment scoring"""

    brand_id: str
    name: str = Field(..., min_length=1)
    aliases: List[str] = Field(default_factory=list)
    competitors: List[CompetitorProfile] = Field(default_factory=list)


class PositionResult(BaseModel):
    """Where the brand and competitors appear in an answer

    Positions are 1-indexed word offsets.
    """

    brand_first_position: Optional[int] = None
    brand_positions: List[int] = Field(default_factory=list)
    brand_mentions: int = 0
    competitor_positions: Dict[str, List[int]] = Field(default_factory=dict)
    word_count: int = 0
    visibility_index: Optional[float] = None
    share_of_answers: Optional[float] = None
    product_names: List[str] = Field(default_factory=list)


SentimentLabel = Literal["POSITIVE", "NEGATIVE", "NEUTRAL"]


class SentimentResult(BaseModel):
    """Overall tone of an answer towards the brand"""

    label: SentimentLabel
    score: float = Field(..., ge=-1.0, le=1.0)
    positive_sentences: List[str] = Field(default_factory=list)
    negative_sentences: List[str] = Field(default_factory=list)


class CitationCategory(str, Enum):
    """Kind of site a citation points at"""

    EDITORIAL = "Editorial"
    CORPORATE = "Corporate"
    REFERENCE = "Reference"
    UGC = "UGC"
    SOCIAL = "Social"
    INSTITUTIONAL = "Institutional"


class CitationRecord(BaseModel):
    """Categorization of one cited domain"""

    url: str
    domain: str
    page_name: str
    category: CitationCategory
    confidence: Literal["high", "medium", "low"]
    source: Literal["hardcoded", "heuristic", "ai", "fallback_default"]


class CitationResult(BaseModel):
    """All categorized citations for an answer"""

    records: List[CitationRecord] = Field(default_factory=list)

    @property
    def category_counts(self) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        for record in self.records:
            counts[record.category.value] = counts.get(record.category.value, 0) + 1
        return counts


class ScoredRecord(BaseModel):
    """Merged enrichment output for one collector result

    A field is None when its task failed; the record is persisted anyway.
    """

    model_config = ConfigDict(frozen=True)

    collector_result_id: str
    position: Optional[PositionResult] = None
    sentiment: Optional[SentimentResult] = None
    citations: Optional[CitationResult] = None
    task_status: Dict[TaskKind, TaskStatus] = Field(default_factory=dict)
    scored_at: datetime = Field(default_factory=_utcnow)
