"""Batch fan-out across collector types.

Implements the async producer-consumer pattern with:
- One request queue per collector type, drained by ``batch_width`` workers,
  so no collector type ever has more than ``batch_width`` requests in flight
- Failure isolation per (query, collector type) pair
- A shared results queue; outcomes are yielded as they complete (unordered)
- Scoring dispatched in the background once a result is persisted
"""

import asyncio
import time
import uuid
from typing import AsyncIterator, Dict, List, Optional, Sequence, Set

import structlog

from answerscope.models.batch import BatchState, CollectionOutcome, OutcomeStatus
from answerscope.models.collection import (
    CollectionRequest,
    CollectorResult,
    CollectorType,
)
from answerscope.models.config import AppConfig
from answerscope.observability.context import correlation_id_context
from answerscope.observability.metrics import (
    CHAIN_EXHAUSTED,
    COLLECTION_DURATION,
    COLLECTION_REQUESTS,
    INFLIGHT_REQUESTS,
)
from answerscope.orchestration.batch_tracker import BatchTracker
from answerscope.services.fallback_executor import FallbackChainExecutor
from answerscope.services.persistence import ResultStore
from answerscope.services.scoring.coordinator import ScoringCoordinator
from answerscope.utils.exceptions import (
    ChainExhaustedError,
    PollTimeoutHandoff,
    RequestCancelledError,
)

logger = structlog.get_logger()


class CollectionOrchestrator:
    """Runs every (query, collector type) pair of a batch

    Holds the AppConfig snapshot it was built with; a reconfiguration
    builds a new orchestrator and leaves running batches untouched.
    """

    def __init__(
        self,
        config: AppConfig,
        executor: FallbackChainExecutor,
        store: ResultStore,
        scoring: Optional[ScoringCoordinator] = None,
    ):
        self.config = config
        self.executor = executor
        self.store = store
        self.scoring = scoring

    def build_requests(
        self,
        batch_id: str,
        brand_id: str,
        customer_id: str,
        queries: Sequence[str],
        collector_types: Sequence[str],
        locale: str = "en",
        country: str = "US",
    ) -> Dict[str, List[CollectionRequest]]:
        """Expand a batch into requests per collector type.

        Queries that normalize to the same text collapse into one request.

        Raises:
            KeyError: A collector type is not configured
        """
        plan: Dict[str, List[CollectionRequest]] = {}
        for type_name in collector_types:
            if type_name not in self.config.collector_types:
                raise KeyError(f"Unknown collector type '{type_name}'")
            seen: Set[str] = set()
            requests = []
            for query in queries:
                request = CollectionRequest.for_query(
                    batch_id,
                    query,
                    type_name,
                    brand_id,
                    customer_id,
                    locale=locale,
                    country=country,
                )
                if request.correlation_id not in seen:
                    seen.add(request.correlation_id)
                    requests.append(request)
            plan[type_name] = requests
        return plan

    async def collect(
        self,
        brand_id: str,
        customer_id: str,
        queries: Sequence[str],
        collector_types: Sequence[str],
        batch_id: Optional[str] = None,
        cancel_event: Optional[asyncio.Event] = None,
        tracker: Optional[BatchTracker] = None,
        locale: str = "en",
        country: str = "US",
    ) -> AsyncIterator[CollectionOutcome]:
        """Collect answers for every query under every collector type.

        Args:
            brand_id: Brand the queries are about
            customer_id: Owning customer
            queries: Query texts
            collector_types: Names of configured collector types
            batch_id: Batch identifier; generated when omitted
            cancel_event: When set, queued requests are cancelled and running
                requests start no new attempts
            tracker: Progress tracker to update; created when omitted
            locale: Answer locale passed to providers
            country: Answer country passed to providers

        Yields:
            CollectionOutcome as each request finishes (unordered)
        """
        batch_id = batch_id or uuid.uuid4().hex
        cancel_event = cancel_event or asyncio.Event()
        tracker = tracker or BatchTracker(
            batch_id, brand_id, customer_id, self.config.version
        )
        plan = self.build_requests(
            batch_id,
            brand_id,
            customer_id,
            queries,
            collector_types,
            locale=locale,
            country=country,
        )

        log = logger.bind(batch_id=batch_id)
        log.info(
            "batch_started",
            brand_id=brand_id,
            collector_types=list(plan),
            requests=sum(len(r) for r in plan.values()),
            width=self.config.concurrency.batch_width,
        )

        results_queue: asyncio.Queue[Optional[CollectionOutcome]] = asyncio.Queue()
        scoring_tasks: Set[asyncio.Task] = set()
        workers: List[asyncio.Task] = []

        for type_name, requests in plan.items():
            tracker.register(type_name, len(requests))
            if not requests:
                continue
            queue: asyncio.Queue[Optional[CollectionRequest]] = asyncio.Queue()
            for request in requests:
                queue.put_nowait(request)
            num_workers = min(self.config.concurrency.batch_width, len(requests))
            for _ in range(num_workers):
                queue.put_nowait(None)

            collector = self.config.collector_types[type_name]
            workers.extend(
                asyncio.create_task(
                    self._worker(
                        collector,
                        queue,
                        results_queue,
                        cancel_event,
                        tracker,
                        scoring_tasks,
                    )
                )
                for _ in range(num_workers)
            )

        remaining = len(workers)
        try:
            while remaining:
                outcome = await results_queue.get()
                if outcome is None:
                    remaining -= 1
                    continue
                yield outcome

            if scoring_tasks:
                await asyncio.gather(*scoring_tasks, return_exceptions=True)
        finally:
            # Consumer stopped iterating early
            for task in [*workers, *scoring_tasks]:
                if not task.done():
                    task.cancel()

        tracker.finish(
            BatchState.CANCELLED if cancel_event.is_set() else BatchState.COMPLETED
        )
        progress = tracker.snapshot()
        log.info(
            "batch_finished",
            state=progress.state.value,
            completed=progress.completed,
            failed=progress.failed,
            handed_off=progress.handed_off,
            cancelled=progress.cancelled,
        )

    async def _worker(
        self,
        collector: CollectorType,
        queue: asyncio.Queue,
        results_queue: asyncio.Queue,
        cancel_event: asyncio.Event,
        tracker: BatchTracker,
        scoring_tasks: Set[asyncio.Task],
    ) -> None:
        try:
            while True:
                request = await queue.get()
                if request is None:
                    break
                outcome = await self._run_request(
                    collector, request, cancel_event, tracker
                )
                if outcome.status == OutcomeStatus.COMPLETED and outcome.result:
                    self._dispatch_scoring(outcome.result, scoring_tasks)
                await results_queue.put(outcome)
        finally:
            await results_queue.put(None)

    async def _run_request(
        self,
        collector: CollectorType,
        request: CollectionRequest,
        cancel_event: asyncio.Event,
        tracker: BatchTracker,
    ) -> CollectionOutcome:
        type_name = collector.name

        if cancel_event.is_set():
            tracker.finish_request(type_name, OutcomeStatus.CANCELLED, started=False)
            COLLECTION_REQUESTS.labels(
                collector_type=type_name, outcome=OutcomeStatus.CANCELLED.value
            ).inc()
            return CollectionOutcome(request=request, status=OutcomeStatus.CANCELLED)

        with correlation_id_context(request.correlation_id):
            tracker.start_request(type_name)
            INFLIGHT_REQUESTS.labels(collector_type=type_name).inc()
            started = time.monotonic()
            result: Optional[CollectorResult] = None
            error: Optional[str] = None

            try:
                result = await self.executor.execute(
                    request, collector.bindings, cancel_event
                )
                await self.store.save_collector_result(result)
                status = OutcomeStatus.COMPLETED
            except ChainExhaustedError as e:
                status = OutcomeStatus.FAILED
                error = str(e)
                CHAIN_EXHAUSTED.labels(collector_type=type_name).inc()
            except PollTimeoutHandoff as e:
                status = OutcomeStatus.HANDED_OFF
                error = str(e)
            except RequestCancelledError as e:
                status = OutcomeStatus.CANCELLED
                error = str(e)
            except Exception as e:
                logger.error(
                    "request_unexpected_error",
                    collector_type=type_name,
                    error=str(e),
                    exc_info=True,
                )
                status = OutcomeStatus.FAILED
                error = f"{type(e).__name__}: {e}"
            finally:
                INFLIGHT_REQUESTS.labels(collector_type=type_name).dec()
                COLLECTION_DURATION.labels(collector_type=type_name).observe(
                    time.monotonic() - started
                )

            tracker.finish_request(type_name, status)
            COLLECTION_REQUESTS.labels(
                collector_type=type_name, outcome=status.value
            ).inc()
            attempts = await self.store.list_attempts(request.correlation_id)

            logger.info(
                "request_finished",
                collector_type=type_name,
                status=status.value,
                attempts=len(attempts),
                provider_used=result.provider_used if result else None,
            )
            return CollectionOutcome(
                request=request,
                status=status,
                result=result,
                attempts=attempts,
                error=error,
            )

    def _dispatch_scoring(
        self, result: CollectorResult, scoring_tasks: Set[asyncio.Task]
    ) -> None:
        if self.scoring is None or not self.config.scoring.enabled:
            return
        task = asyncio.create_task(self._score(result))
        scoring_tasks.add(task)
        task.add_done_callback(scoring_tasks.discard)

    async def _score(self, result: CollectorResult) -> None:
        with correlation_id_context(result.request_id):
            try:
                await self.scoring.score(result)
            except Exception as e:
                logger.error(
                    "scoring_failed",
                    result_id=result.result_id,
                    error=str(e),
                    exc_info=True,
                )
