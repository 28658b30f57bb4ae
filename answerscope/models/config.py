"""Configuration models.

AppConfig is loaded once, validated, frozen and versioned. Reconfiguration
replaces the whole object; running batches keep the snapshot they started
with.
"""

from typing import Any, Dict, List, Literal, Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    SecretStr,
    field_validator,
    model_validator,
)

from answerscope.models.collection import CollectorType
from answerscope.models.credentials import KeyPoolEntry, OperationKey, OperationKind
from answerscope.models.enrichment import BrandProfile, TaskKind

RULES_PROVIDER = "rules"


class RetryConfig(BaseModel):
    """Configuration for retry delays with exponential backoff

    Controls:
    - Number of attempts for helpers that retry in place
    - Delay calculation parameters
    - Jitter for request spreading
    """

    model_config = ConfigDict(frozen=True)

    max_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Maximum attempts (1 initial + N-1 retries)",
    )
    base_delay_seconds: float = Field(
        default=1.0, gt=0.0, le=60.0, description="Base delay for backoff"
    )
    max_delay_seconds: float = Field(
        default=30.0, gt=0.0, le=300.0, description="Maximum delay cap"
    )
    jitter_factor: float = Field(
        default=0.1, ge=0.0, le=0.5, description="Jitter factor for randomization"
    )


class ConcurrencyConfig(BaseModel):
    """Concurrency widths for collection and scoring"""

    model_config = ConfigDict(frozen=True)

    batch_width: int = Field(
        default=3, ge=1, le=20, description="In-flight requests per collector type"
    )
    scoring_width: int = Field(
        default=3, ge=1, le=20, description="Collector results scored at once"
    )
    retained_batches: int = Field(
        default=100,
        ge=1,
        le=10000,
        description="Finished batches kept in memory for progress queries",
    )


class PollConfig(BaseModel):
    """Polling cadence and the two deadline tiers"""

    model_config = ConfigDict(frozen=True)

    initial_interval_seconds: float = Field(default=2.0, gt=0.0)
    max_interval_seconds: float = Field(default=10.0, gt=0.0)
    backoff_multiplier: float = Field(default=1.5, ge=1.0, le=4.0)
    short_deadline_seconds: float = Field(
        default=60.0, gt=0.0, description="Interactive wait before handoff"
    )
    long_deadline_seconds: float = Field(
        default=600.0, gt=0.0, description="Reconciliation deadline from acceptance"
    )
    poll_request_timeout_seconds: float = Field(
        default=30.0, gt=0.0, description="Deadline for a single poll request"
    )
    sweep_interval_seconds: float = Field(default=60.0, gt=0.0)

    @model_validator(mode="after")
    def validate_tiers(self) -> "PollConfig":
        if self.max_interval_seconds < self.initial_interval_seconds:
            raise ValueError("max_interval_seconds must be >= initial_interval_seconds")
        if self.long_deadline_seconds <= self.short_deadline_seconds:
            raise ValueError("long_deadline_seconds must exceed short_deadline_seconds")
        return self


class ProviderDefinition(BaseModel):
    """How to reach one answer-generation provider"""

    model_config = ConfigDict(frozen=True)

    kind: Literal["openrouter", "serpapi", "brightdata"]
    base_url: Optional[str] = None
    model: Optional[str] = None
    dataset_id: Optional[str] = None
    engine: Optional[str] = None
    extra: Dict[str, Any] = Field(default_factory=dict)


class LLMProviderDefinition(BaseModel):
    """OpenAI-compatible chat endpoint used by scoring hops"""

    model_config = ConfigDict(frozen=True)

    base_url: str
    model: str
    temperature: float = Field(default=0.0, ge=0.0, le=2.0)
    max_tokens: int = Field(default=1024, ge=64, le=32000)


class ScoringHop(BaseModel):
    """One step of an enrichment task's provider list"""

    model_config = ConfigDict(frozen=True)

    provider: str = Field(..., description="llm_providers key or 'rules'")
    timeout_seconds: float = Field(default=30.0, gt=0.0, le=300.0)
    max_retries: int = Field(default=1, ge=0, le=5)


class ScoringTaskConfig(BaseModel):
    """Provider hops and overall deadline for one task kind"""

    model_config = ConfigDict(frozen=True)

    timeout_seconds: float = Field(default=90.0, gt=0.0)
    hops: List[ScoringHop] = Field(
        default_factory=lambda: [ScoringHop(provider=RULES_PROVIDER)],
        min_length=1,
        max_length=3,
    )


class ScoringConfig(BaseModel):
    """Per-task-kind scoring configuration"""

    model_config = ConfigDict(frozen=True)

    enabled: bool = True
    position: ScoringTaskConfig = Field(default_factory=ScoringTaskConfig)
    sentiment: ScoringTaskConfig = Field(default_factory=ScoringTaskConfig)
    citation: ScoringTaskConfig = Field(default_factory=ScoringTaskConfig)

    def for_kind(self, kind: TaskKind) -> ScoringTaskConfig:
        return getattr(self, kind.value)


class StorageConfig(BaseModel):
    """Where results are persisted"""

    model_config = ConfigDict(frozen=True)

    backend: Literal["memory", "json"] = "memory"
    path: str = "./data/results"


class AppConfig(BaseModel):
    """Complete, immutable application configuration"""

    model_config = ConfigDict(frozen=True)

    version: str = "1"
    concurrency: ConcurrencyConfig = Field(default_factory=ConcurrencyConfig)
    polling: PollConfig = Field(default_factory=PollConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    credentials: Dict[str, SecretStr] = Field(default_factory=dict)
    key_pool: List[KeyPoolEntry] = Field(default_factory=list)
    providers: Dict[str, ProviderDefinition] = Field(default_factory=dict)
    llm_providers: Dict[str, LLMProviderDefinition] = Field(default_factory=dict)
    collector_types: Dict[str, CollectorType] = Field(default_factory=dict)
    scoring: ScoringConfig = Field(default_factory=ScoringConfig)
    brands: Dict[str, BrandProfile] = Field(default_factory=dict)
    storage: StorageConfig = Field(default_factory=StorageConfig)

    @field_validator("collector_types", mode="before")
    @classmethod
    def expand_collector_types(cls, v: Any) -> Any:
        # YAML form is {name: [bindings]}
        if isinstance(v, dict):
            return {
                name: (
                    {"name": name, "bindings": entry}
                    if isinstance(entry, list)
                    else entry
                )
                for name, entry in v.items()
            }
        return v

    @field_validator("brands", mode="before")
    @classmethod
    def expand_brands(cls, v: Any) -> Any:
        if isinstance(v, dict):
            return {
                key: {"brand_id": key, **entry} if isinstance(entry, dict) else entry
                for key, entry in v.items()
            }
        return v

    @model_validator(mode="after")
    def validate_references(self) -> "AppConfig":
        errors: List[str] = []

        pool_keys = set()
        for entry in self.key_pool:
            if entry.key in pool_keys:
                errors.append(f"duplicate key_pool entry for {entry.key}")
            pool_keys.add(entry.key)
            for credential_id in entry.credentials:
                if credential_id not in self.credentials:
                    errors.append(
                        f"key_pool {entry.key} references unknown credential "
                        f"'{credential_id}'"
                    )

        for collector in self.collector_types.values():
            for binding in collector.bindings:
                if binding.provider_name not in self.providers:
                    errors.append(
                        f"collector type '{collector.name}' references unknown "
                        f"provider '{binding.provider_name}'"
                    )
                key = OperationKey(binding.provider_name, OperationKind.COLLECTION)
                if key not in pool_keys:
                    errors.append(f"no key_pool entry for {key}")

        for kind in TaskKind:
            for hop in self.scoring.for_kind(kind).hops:
                if hop.provider == RULES_PROVIDER:
                    continue
                if hop.provider not in self.llm_providers:
                    errors.append(
                        f"scoring.{kind.value} references unknown llm provider "
                        f"'{hop.provider}'"
                    )
                key = OperationKey(hop.provider, OperationKind(kind.value))
                if key not in pool_keys:
                    errors.append(f"no key_pool entry for {key}")

        if errors:
            raise ValueError("; ".join(errors))
        return self
