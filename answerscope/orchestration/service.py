"""Collection service: the inbound boundary of the system.

Owns the long-lived components (result store, key pool, adapters, scoring
clients) and the registry of running batches. The HTTP API, the CLI and
the reconciliation sweep all talk to this class.

Usage:
    service = CollectionService(load_config())
    batch_id = await service.submit_collection(
        "acme", "cust-1", ["best crm for startups"], ["chatgpt"]
    )
    progress = service.get_batch_progress(batch_id)
"""

import asyncio
import uuid
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Sequence, Set

import structlog

from answerscope.models.batch import BatchProgress, BatchState, CollectionOutcome
from answerscope.models.collection import CollectorResult, JobHandle
from answerscope.models.config import AppConfig
from answerscope.observability.context import correlation_id_context
from answerscope.observability.metrics import PENDING_HANDOFFS
from answerscope.orchestration.batch_tracker import BatchTracker
from answerscope.orchestration.collection_orchestrator import CollectionOrchestrator
from answerscope.services.fallback_executor import FallbackChainExecutor
from answerscope.services.key_pool import KeyPool
from answerscope.services.persistence import ResultStore, create_result_store
from answerscope.services.poll_engine import PollEngine, PollOutcome, PollState
from answerscope.services.providers import ProviderAdapter, build_adapters
from answerscope.services.scoring.coordinator import ScoringCoordinator
from answerscope.services.scoring.llm_client import LLMClient
from answerscope.utils.exceptions import BatchNotFoundError, CollectionError

logger = structlog.get_logger()


@dataclass
class _Runtime:
    """Components built from one AppConfig snapshot"""

    config: AppConfig
    key_pool: KeyPool
    adapters: Mapping[str, ProviderAdapter]
    llm_clients: Dict[str, LLMClient]
    poll_engine: PollEngine
    executor: FallbackChainExecutor
    scoring: ScoringCoordinator
    orchestrator: CollectionOrchestrator


@dataclass
class _BatchRun:
    tracker: BatchTracker
    cancel_event: asyncio.Event
    runtime: _Runtime
    task: Optional[asyncio.Task] = None
    outcomes: List[CollectionOutcome] = field(default_factory=list)


class CollectionService:
    """Submits, tracks, cancels and reconciles collection batches"""

    def __init__(
        self,
        config: AppConfig,
        adapters: Optional[Mapping[str, ProviderAdapter]] = None,
        store: Optional[ResultStore] = None,
        key_pool: Optional[KeyPool] = None,
        llm_clients: Optional[Dict[str, LLMClient]] = None,
    ):
        self.store = store or create_result_store(config.storage)
        self._runtime = self._build_runtime(config, adapters, key_pool, llm_clients)
        self._retired: List[_Runtime] = []
        self._batches: Dict[str, _BatchRun] = {}
        self._finished: "OrderedDict[str, None]" = OrderedDict()
        self._resuming: Set[str] = set()

        logger.info(
            "collection_service_initialized",
            config_version=config.version,
            collector_types=list(config.collector_types),
            providers=list(self._runtime.adapters),
        )

    @property
    def config(self) -> AppConfig:
        return self._runtime.config

    @property
    def key_pool(self) -> KeyPool:
        return self._runtime.key_pool

    def _build_runtime(
        self,
        config: AppConfig,
        adapters: Optional[Mapping[str, ProviderAdapter]] = None,
        key_pool: Optional[KeyPool] = None,
        llm_clients: Optional[Dict[str, LLMClient]] = None,
    ) -> _Runtime:
        key_pool = key_pool or KeyPool(config.key_pool, config.credentials)
        if adapters is None:
            adapters = build_adapters(config.providers)
        if llm_clients is None:
            llm_clients = {
                name: LLMClient(name, definition)
                for name, definition in config.llm_providers.items()
            }

        poll_engine = PollEngine(config.polling, key_pool, self.store)
        executor = FallbackChainExecutor(
            adapters, key_pool, self.store, poll_engine, config.retry
        )
        scoring = ScoringCoordinator(
            config.scoring,
            key_pool,
            llm_clients,
            self.store,
            brands=config.brands,
            retry_config=config.retry,
            width=config.concurrency.scoring_width,
        )
        orchestrator = CollectionOrchestrator(config, executor, self.store, scoring)
        return _Runtime(
            config=config,
            key_pool=key_pool,
            adapters=adapters,
            llm_clients=llm_clients,
            poll_engine=poll_engine,
            executor=executor,
            scoring=scoring,
            orchestrator=orchestrator,
        )

    def reload_config(
        self,
        config: AppConfig,
        adapters: Optional[Mapping[str, ProviderAdapter]] = None,
    ) -> None:
        """Swap in a new configuration for batches submitted from now on.

        Running batches keep the runtime they started with. The key pool,
        and with it every slot's backoff state, carries over when the
        credential setup is unchanged.
        """
        old = self._runtime
        key_pool = None
        if config.key_pool == old.config.key_pool and (
            config.credentials == old.config.credentials
        ):
            key_pool = old.key_pool

        self._runtime = self._build_runtime(config, adapters, key_pool)
        self._retired.append(old)
        logger.info(
            "config_reloaded",
            old_version=old.config.version,
            new_version=config.version,
            key_pool_kept=key_pool is not None,
        )

    async def submit_collection(
        self,
        brand_id: str,
        customer_id: str,
        queries: Sequence[str],
        collector_types: Sequence[str],
        locale: str = "en",
        country: str = "US",
    ) -> str:
        """Start a batch in the background.

        Returns:
            The new batch id

        Raises:
            ValueError: No queries, no collector types, or an unknown
                collector type
        """
        queries = [q for q in queries if q and q.strip()]
        if not queries:
            raise ValueError("At least one non-empty query is required")
        if not collector_types:
            raise ValueError("At least one collector type is required")

        runtime = self._runtime
        known = runtime.config.collector_types
        unknown = [t for t in collector_types if t not in known]
        if unknown:
            raise ValueError(f"Unknown collector types: {', '.join(unknown)}")

        batch_id = uuid.uuid4().hex
        tracker = BatchTracker(batch_id, brand_id, customer_id, runtime.config.version)
        plan = runtime.orchestrator.build_requests(
            batch_id, brand_id, customer_id, queries, collector_types, locale, country
        )
        for type_name, requests in plan.items():
            tracker.register(type_name, len(requests))

        run = _BatchRun(tracker=tracker, cancel_event=asyncio.Event(), runtime=runtime)
        self._batches[batch_id] = run
        run.task = asyncio.create_task(
            self._run_batch(
                run, brand_id, customer_id, queries, collector_types, locale, country
            )
        )

        logger.info(
            "batch_submitted",
            batch_id=batch_id,
            brand_id=brand_id,
            total=tracker.snapshot().total,
            config_version=runtime.config.version,
        )
        return batch_id

    async def _run_batch(
        self,
        run: _BatchRun,
        brand_id: str,
        customer_id: str,
        queries: Sequence[str],
        collector_types: Sequence[str],
        locale: str,
        country: str,
    ) -> None:
        try:
            async for outcome in run.runtime.orchestrator.collect(
                brand_id,
                customer_id,
                queries,
                collector_types,
                batch_id=run.tracker.batch_id,
                cancel_event=run.cancel_event,
                tracker=run.tracker,
                locale=locale,
                country=country,
            ):
                run.outcomes.append(outcome)
        except Exception as e:
            logger.error(
                "batch_failed",
                batch_id=run.tracker.batch_id,
                error=str(e),
                exc_info=True,
            )
            run.tracker.finish(BatchState.FAILED)
        finally:
            self._retire_batch(run.tracker.batch_id)
            await self._refresh_pending_gauge()

    def _retire_batch(self, batch_id: str) -> None:
        """Evict the oldest finished batches beyond the retention cap."""
        self._finished[batch_id] = None
        limit = self.config.concurrency.retained_batches
        while len(self._finished) > limit:
            evicted, _ = self._finished.popitem(last=False)
            self._batches.pop(evicted, None)
            logger.debug("batch_evicted", batch_id=evicted)

    def get_batch_progress(self, batch_id: str) -> BatchProgress:
        """Snapshot of a batch's counters.

        Raises:
            BatchNotFoundError: Unknown batch id, or a finished batch evicted
                beyond the retention cap
        """
        return self._get_run(batch_id).tracker.snapshot()

    def cancel_batch(self, batch_id: str) -> BatchProgress:
        """Stop a batch from starting new attempts.

        Attempts already in flight run to completion.

        Raises:
            BatchNotFoundError: Unknown batch id
        """
        run = self._get_run(batch_id)
        if run.tracker.state == BatchState.RUNNING:
            run.cancel_event.set()
            logger.info("batch_cancel_requested", batch_id=batch_id)
        return run.tracker.snapshot()

    async def wait_for_batch(self, batch_id: str) -> List[CollectionOutcome]:
        """Wait until a batch finishes and return its outcomes."""
        run = self._get_run(batch_id)
        if run.task is not None:
            await asyncio.shield(run.task)
        return list(run.outcomes)

    def _get_run(self, batch_id: str) -> _BatchRun:
        run = self._batches.get(batch_id)
        if run is None:
            raise BatchNotFoundError(f"Unknown batch '{batch_id}'")
        return run

    async def resume_polling(self, handle: JobHandle) -> Optional[CollectorResult]:
        """Finish a handed-off async job under the long deadline.

        The closing attempt is appended to the request's audit trail; a
        successful job is persisted and scored like any other result.

        Returns:
            The CollectorResult, or None when the job failed or timed out
        """
        runtime = self._runtime
        with correlation_id_context(handle.request.correlation_id):
            adapter = runtime.adapters.get(handle.provider_name)
            if adapter is None:
                outcome = PollOutcome(
                    state=PollState.FAILED,
                    error=f"No adapter registered for '{handle.provider_name}'",
                )
                await self.store.remove_handoff(handle.job_id)
            else:
                outcome = await runtime.poll_engine.resume(handle, adapter)

            result = await runtime.executor.complete_handoff(handle, outcome)
            if result is not None:
                saved = await self.store.save_collector_result(result)
                if saved and runtime.config.scoring.enabled:
                    await runtime.scoring.score(result)

            logger.info(
                "handoff_resumed",
                job_id=handle.job_id,
                provider=handle.provider_name,
                state=outcome.state.value,
            )
        await self._refresh_pending_gauge()
        return result

    async def reconcile_pending(self) -> Dict[str, int]:
        """Resume every stored handoff once.

        Handoffs already being resumed by an earlier sweep are skipped.

        Returns:
            Counts of handoffs seen, completed, failed and skipped
        """
        handles = await self.store.list_handoffs()
        summary = {"pending": len(handles), "completed": 0, "failed": 0, "skipped": 0}
        semaphore = asyncio.Semaphore(self.config.concurrency.batch_width)

        async def reconcile_one(handle: JobHandle) -> None:
            if handle.job_id in self._resuming:
                summary["skipped"] += 1
                return
            self._resuming.add(handle.job_id)
            try:
                async with semaphore:
                    result = await self.resume_polling(handle)
                summary["completed" if result is not None else "failed"] += 1
            except CollectionError as e:
                summary["failed"] += 1
                logger.error(
                    "handoff_reconcile_failed",
                    job_id=handle.job_id,
                    provider=handle.provider_name,
                    error=str(e),
                )
            except Exception as e:
                summary["failed"] += 1
                logger.error(
                    "handoff_reconcile_crashed",
                    job_id=handle.job_id,
                    provider=handle.provider_name,
                    error=f"{type(e).__name__}: {e}",
                    exc_info=True,
                )
            finally:
                self._resuming.discard(handle.job_id)

        await asyncio.gather(*(reconcile_one(h) for h in handles))
        logger.info("reconciliation_sweep_finished", **summary)
        return summary

    async def pending_handoff_count(self) -> int:
        return len(await self.store.list_handoffs())

    async def _refresh_pending_gauge(self) -> None:
        PENDING_HANDOFFS.set(await self.pending_handoff_count())

    async def close(self) -> None:
        """Cancel running batches and release HTTP sessions."""
        for run in self._batches.values():
            run.cancel_event.set()
        tasks = [r.task for r in self._batches.values() if r.task and not r.task.done()]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        closed: Set[int] = set()
        for runtime in [self._runtime, *self._retired]:
            for client in [*runtime.adapters.values(), *runtime.llm_clients.values()]:
                if id(client) not in closed:
                    closed.add(id(client))
                    await client.close()
        logger.info("collection_service_closed", batches=len(self._batches))
