"""Shared fixtures: scripted provider adapters and small, fast configs."""

import asyncio
from typing import Any, Callable, Dict, List, Optional, Sequence

import pytest

from answerscope.models.collection import CollectionRequest, CollectorResult
from answerscope.models.config import (
    AppConfig,
    PollConfig,
    ProviderDefinition,
    RetryConfig,
)
from answerscope.models.credentials import CredentialSlot
from answerscope.models.provider import AdapterRequest, AdapterSuccess, PollStatus
from answerscope.services.persistence import InMemoryResultStore
from answerscope.services.providers.base import ProviderAdapter


class ScriptedAdapter(ProviderAdapter):
    """Adapter that replays a script of outcomes and exceptions

    Once the script runs out every call succeeds with a default answer.
    """

    def __init__(
        self,
        name: str,
        script: Optional[Sequence[Any]] = None,
        poll_script: Optional[Sequence[Any]] = None,
        delay: float = 0.0,
        answer: Optional[str] = None,
    ):
        super().__init__(name, ProviderDefinition(kind="openrouter"))
        self.script: List[Any] = list(script or [])
        self.poll_script: List[Any] = list(poll_script or [])
        self.delay = delay
        self.default = AdapterSuccess(raw_answer=answer or f"answer from {name}")
        self.calls: List[AdapterRequest] = []
        self.credentials_used: List[str] = []
        self.poll_calls = 0
        self.in_flight = 0
        self.max_in_flight = 0
        self.closed = False

    async def invoke(
        self, request: AdapterRequest, credential: CredentialSlot
    ) -> Any:
        self.calls.append(request)
        self.credentials_used.append(credential.credential_id)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            item = self.script.pop(0) if self.script else self.default
        finally:
            self.in_flight -= 1
        if isinstance(item, Exception):
            raise item
        return item

    async def poll(self, job_id: str, credential: CredentialSlot) -> PollStatus:
        self.poll_calls += 1
        item = self.poll_script.pop(0) if self.poll_script else PollStatus.pending()
        if isinstance(item, Exception):
            raise item
        return item

    async def close(self) -> None:
        self.closed = True


def build_config_data(
    providers: Sequence[str] = ("provider_x", "provider_y"),
    collector_types: Optional[Dict[str, List[Dict[str, Any]]]] = None,
    **overrides: Any,
) -> Dict[str, Any]:
    """Raw config mapping with one credential and pool entry per provider."""
    data: Dict[str, Any] = {
        "version": "test",
        "concurrency": {"batch_width": 2, "scoring_width": 2},
        "polling": {
            "initial_interval_seconds": 0.01,
            "max_interval_seconds": 0.02,
            "backoff_multiplier": 1.5,
            "short_deadline_seconds": 0.05,
            "long_deadline_seconds": 0.5,
            "poll_request_timeout_seconds": 0.5,
        },
        "retry": {
            "base_delay_seconds": 0.001,
            "max_delay_seconds": 0.01,
            "jitter_factor": 0.0,
        },
        "credentials": {f"{p}_key": f"secret-{p}" for p in providers},
        "key_pool": [
            {
                "provider": p,
                "operation": "collection",
                "credentials": [f"{p}_key"],
                "backoff_base_seconds": 1.0,
            }
            for p in providers
        ],
        "providers": {p: {"kind": "openrouter"} for p in providers},
        "collector_types": collector_types
        or {
            "chatgpt": [
                {
                    "provider_name": p,
                    "priority": i,
                    "timeout_seconds": 5,
                    "max_retries": 1,
                }
                for i, p in enumerate(providers)
            ]
        },
        "brands": {
            "acme": {
                "name": "Acme",
                "aliases": ["Acme CRM"],
                "competitors": [{"name": "Globex"}],
            }
        },
    }
    data.update(overrides)
    return data


@pytest.fixture
def config_data() -> Callable[..., Dict[str, Any]]:
    """Raw config mapping builder, for tests that edit data before validation."""
    return build_config_data


@pytest.fixture
def config_factory() -> Callable[..., AppConfig]:
    """Build an AppConfig from build_config_data keyword arguments."""

    def factory(**kwargs: Any) -> AppConfig:
        return AppConfig(**build_config_data(**kwargs))

    return factory


@pytest.fixture
def app_config(config_factory) -> AppConfig:
    return config_factory()


@pytest.fixture
def fast_retry() -> RetryConfig:
    return RetryConfig(
        max_attempts=3,
        base_delay_seconds=0.001,
        max_delay_seconds=0.01,
        jitter_factor=0.0,
    )


@pytest.fixture
def fast_poll() -> PollConfig:
    return PollConfig(
        initial_interval_seconds=0.01,
        max_interval_seconds=0.02,
        short_deadline_seconds=0.05,
        long_deadline_seconds=0.5,
        poll_request_timeout_seconds=0.5,
    )


@pytest.fixture
def store() -> InMemoryResultStore:
    return InMemoryResultStore()


@pytest.fixture
def scripted_adapter_cls():
    return ScriptedAdapter


@pytest.fixture
def sample_request() -> CollectionRequest:
    return CollectionRequest.for_query(
        "batch-1", "best crm for startups", "chatgpt", "acme", "cust-1"
    )


@pytest.fixture
def sample_result(sample_request) -> CollectorResult:
    return CollectorResult(
        request_id=sample_request.correlation_id,
        collector_type="chatgpt",
        query_text=sample_request.query_text,
        brand_id="acme",
        customer_id="cust-1",
        raw_answer=(
            "Acme is a great choice for startups. Globex is expensive and slow. "
            "See https://www.techcrunch.com/acme-review for details."
        ),
        provider_used="provider_x",
        fallback_chain=["provider_x"],
    )
