"""Scoring coordinator.

Runs the position, sentiment and citation tasks for a collector result
concurrently. Each task walks its configured hops in order, each hop bound
by its own timeout and retried in place on transient errors; the task as a
whole is bound by the task timeout. A task that fails leaves its field of
the ScoredRecord empty while the other tasks still land.

Every model hop acquires its credential from the key pool under
OperationKey(hop provider, task kind), so a rate-limited sentiment key never
throttles collection or position scoring.
"""

import asyncio
import time
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Tuple

import structlog
from pydantic import BaseModel, ValidationError

from answerscope.models.collection import CollectorResult
from answerscope.models.config import (
    RULES_PROVIDER,
    RetryConfig,
    ScoringConfig,
    ScoringHop,
)
from answerscope.models.credentials import OperationKey, OperationKind
from answerscope.models.enrichment import (
    BrandProfile,
    EnrichmentTask,
    HopOutcome,
    ScoredRecord,
    TaskKind,
    TaskStatus,
)
from answerscope.observability.metrics import ENRICHMENT_DURATION, ENRICHMENT_TASKS
from answerscope.services.key_pool import KeyPool
from answerscope.services.persistence import ResultStore
from answerscope.services.scoring.base import Enricher
from answerscope.services.scoring.citation import CitationEnricher
from answerscope.services.scoring.llm_client import LLMClient
from answerscope.services.scoring.position import PositionEnricher
from answerscope.services.scoring.sentiment import SentimentEnricher
from answerscope.utils.exceptions import (
    CredentialsCoolingDown,
    EnrichmentError,
    ProviderError,
    RateLimitError,
    RetryableProviderError,
    UnknownOperationError,
)
from answerscope.utils.retry import RetryHandler

logger = structlog.get_logger()

HOP_ERRORS = (
    ProviderError,
    EnrichmentError,
    CredentialsCoolingDown,
    UnknownOperationError,
    ValidationError,
    asyncio.TimeoutError,
)


def default_enrichers() -> List[Enricher]:
    return [PositionEnricher(), SentimentEnricher(), CitationEnricher()]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ScoringCoordinator:
    """Fans one collector result out to the enrichment tasks"""

    def __init__(
        self,
        config: ScoringConfig,
        key_pool: KeyPool,
        llm_clients: Dict[str, LLMClient],
        store: ResultStore,
        brands: Optional[Dict[str, BrandProfile]] = None,
        retry_config: Optional[RetryConfig] = None,
        width: int = 3,
        enrichers: Optional[Iterable[Enricher]] = None,
    ):
        self.config = config
        self.key_pool = key_pool
        self.llm_clients = llm_clients
        self.store = store
        self.brands = brands or {}
        self.retry_handler = RetryHandler(retry_config or RetryConfig())
        self.enrichers = {e.kind: e for e in (enrichers or default_enrichers())}
        self._semaphore = asyncio.Semaphore(width)

    def brand_for(self, result: CollectorResult) -> BrandProfile:
        brand = self.brands.get(result.brand_id)
        if brand is None:
            logger.warning("brand_profile_missing", brand_id=result.brand_id)
            brand = BrandProfile(brand_id=result.brand_id, name=result.brand_id)
        return brand

    async def score(
        self, result: CollectorResult, brand: Optional[BrandProfile] = None
    ) -> ScoredRecord:
        """Run every task kind and persist the merged record.

        Args:
            result: Persisted collector result to analyse
            brand: Brand profile; looked up by result.brand_id when omitted

        Returns:
            ScoredRecord, with None for each task that failed
        """
        brand = brand or self.brand_for(result)

        async with self._semaphore:
            outcomes = await asyncio.gather(
                *(self._run_task(kind, result, brand) for kind in TaskKind)
            )

        by_kind = dict(zip(TaskKind, outcomes))
        record = ScoredRecord(
            collector_result_id=result.result_id,
            position=by_kind[TaskKind.POSITION][1],
            sentiment=by_kind[TaskKind.SENTIMENT][1],
            citations=by_kind[TaskKind.CITATION][1],
            task_status={kind: status for kind, (status, _) in by_kind.items()},
        )
        await self.store.save_scored_record(record)

        logger.info(
            "result_scored",
            result_id=result.result_id,
            statuses={k.value: s.value for k, s in record.task_status.items()},
        )
        return record

    async def _run_task(
        self, kind: TaskKind, result: CollectorResult, brand: BrandProfile
    ) -> Tuple[TaskStatus, Optional[BaseModel]]:
        task_config = self.config.for_kind(kind)
        task = EnrichmentTask(collector_result_id=result.result_id, task_kind=kind)
        await self.store.save_enrichment_task(task)

        task = task.model_copy(
            update={"status": TaskStatus.IN_PROGRESS, "updated_at": _utcnow()}
        )
        await self.store.save_enrichment_task(task)

        hops: List[HopOutcome] = []
        started = time.monotonic()
        output: Optional[BaseModel] = None
        provider_used: Optional[str] = None
        error: Optional[str] = None

        try:
            output, provider_used = await asyncio.wait_for(
                self._run_hops(kind, task_config.hops, result, brand, hops),
                timeout=task_config.timeout_seconds,
            )
        except asyncio.TimeoutError:
            error = f"{kind.value} task timed out after {task_config.timeout_seconds}s"
        except EnrichmentError as e:
            error = str(e)
        except Exception as e:
            error = f"{type(e).__name__}: {e}"
            logger.warning(
                "enrichment_task_crashed",
                result_id=result.result_id,
                task_kind=kind.value,
                exc_info=True,
            )

        status = TaskStatus.SUCCEEDED if output is not None else TaskStatus.FAILED
        task = task.model_copy(
            update={
                "status": status,
                "provider_used": provider_used,
                "result_payload": (
                    output.model_dump(mode="json") if output is not None else None
                ),
                "error": error,
                "hops": hops,
                "updated_at": _utcnow(),
            }
        )
        await self.store.save_enrichment_task(task)

        ENRICHMENT_TASKS.labels(
            task_kind=kind.value,
            status=status.value,
            provider=provider_used or "none",
        ).inc()
        ENRICHMENT_DURATION.labels(task_kind=kind.value).observe(
            time.monotonic() - started
        )

        if status == TaskStatus.FAILED:
            logger.warning(
                "enrichment_task_failed",
                result_id=result.result_id,
                task_kind=kind.value,
                error=error,
                hops=len(hops),
            )
        return status, output

    async def _run_hops(
        self,
        kind: TaskKind,
        hop_configs: List[ScoringHop],
        result: CollectorResult,
        brand: BrandProfile,
        hops: List[HopOutcome],
    ) -> Tuple[BaseModel, str]:
        enricher = self.enrichers[kind]

        for hop in hop_configs:
            hop_started = time.monotonic()
            try:
                if hop.provider == RULES_PROVIDER:
                    output = enricher.enrich_with_rules(result, brand)
                else:
                    output = await self._run_llm_hop(enricher, hop, result, brand)
            except Exception as e:
                hops.append(
                    HopOutcome(
                        provider=hop.provider,
                        succeeded=False,
                        error=f"{type(e).__name__}: {e}",
                        duration_ms=(time.monotonic() - hop_started) * 1000,
                    )
                )
                if isinstance(e, HOP_ERRORS):
                    logger.info(
                        "enrichment_hop_failed",
                        task_kind=kind.value,
                        provider=hop.provider,
                        error_type=type(e).__name__,
                    )
                else:
                    logger.warning(
                        "enrichment_hop_crashed",
                        task_kind=kind.value,
                        provider=hop.provider,
                        error_type=type(e).__name__,
                        exc_info=True,
                    )
                continue

            hops.append(
                HopOutcome(
                    provider=hop.provider,
                    succeeded=True,
                    duration_ms=(time.monotonic() - hop_started) * 1000,
                )
            )
            return output, hop.provider

        raise EnrichmentError(
            f"All {len(hop_configs)} {kind.value} hops failed: "
            + "; ".join(h.error or "" for h in hops)
        )

    async def _run_llm_hop(
        self,
        enricher: Enricher,
        hop: ScoringHop,
        result: CollectorResult,
        brand: BrandProfile,
    ) -> BaseModel:
        client = self.llm_clients.get(hop.provider)
        if client is None:
            raise UnknownOperationError(f"No scoring client named '{hop.provider}'")
        operation = OperationKey(hop.provider, OperationKind(enricher.kind.value))

        async def call_once() -> BaseModel:
            slot = self.key_pool.acquire(operation)
            try:
                output = await asyncio.wait_for(
                    enricher.enrich_with_llm(
                        client, slot.secret.get_secret_value(), result, brand
                    ),
                    timeout=hop.timeout_seconds,
                )
            except RateLimitError as e:
                self.key_pool.record_rate_limit(slot, e.retry_after)
                raise
            self.key_pool.record_success(slot)
            return output

        return await self.retry_handler.execute(
            call_once,
            retryable_exceptions={
                RetryableProviderError,
                RateLimitError,
                asyncio.TimeoutError,
            },
            max_attempts=hop.max_retries + 1,
        )
