"""Fallback chain execution for one collection request.

Bindings are tried in ascending priority; disabled bindings are skipped.
Each attempt runs under the binding's timeout and is appended to the
attempt audit trail as soon as its outcome is known.

Outcome handling per attempt:
- success: stop and return the CollectorResult
- rate_limited: penalize the credential slot; continue only if the binding
  has fallback_on_failure, otherwise stop the chain
- retryable_failure: retry the same binding up to max_retries with jittered
  backoff; once retries run out, continue only if fallback_on_failure
- fatal_failure: always continue to the next binding, never retried
- accepted_async: poll the job interactively; success completes the
  request, a failed job is a fatal failure, a handoff raises
  PollTimeoutHandoff
"""

import asyncio
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

import structlog

from answerscope.models.collection import (
    AttemptStatus,
    CollectionRequest,
    CollectorResult,
    JobHandle,
    ProviderAttempt,
    ProviderBinding,
)
from answerscope.models.config import RetryConfig
from answerscope.models.credentials import CredentialSlot, OperationKey, OperationKind
from answerscope.models.provider import AdapterAccepted, AdapterRequest, AdapterSuccess
from answerscope.observability.metrics import PROVIDER_ATTEMPTS, PROVIDER_LATENCY
from answerscope.services.key_pool import KeyPool
from answerscope.services.persistence import ResultStore
from answerscope.services.poll_engine import PollEngine, PollOutcome, PollState
from answerscope.services.providers.base import ProviderAdapter
from answerscope.utils.exceptions import (
    ChainExhaustedError,
    CredentialsCoolingDown,
    FatalProviderError,
    PollTimeoutHandoff,
    RateLimitError,
    RequestCancelledError,
    RetryableProviderError,
    UnknownOperationError,
)
from answerscope.utils.retry import RetryHandler

logger = structlog.get_logger()

AttemptResult = Union[CollectorResult, AttemptStatus]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class FallbackChainExecutor:
    """Runs a request through its collector type's provider bindings"""

    def __init__(
        self,
        adapters: Mapping[str, ProviderAdapter],
        key_pool: KeyPool,
        store: ResultStore,
        poll_engine: PollEngine,
        retry_config: RetryConfig,
    ):
        self.adapters = adapters
        self.key_pool = key_pool
        self.store = store
        self.poll_engine = poll_engine
        self.retry_handler = RetryHandler(retry_config)

    async def execute(
        self,
        request: CollectionRequest,
        bindings: Sequence[ProviderBinding],
        cancel_event: Optional[asyncio.Event] = None,
    ) -> CollectorResult:
        """Try bindings until one produces an answer.

        Args:
            request: The query to collect
            bindings: Provider bindings of the request's collector type
            cancel_event: When set, no new attempt is started

        Returns:
            CollectorResult from the first successful binding

        Raises:
            ChainExhaustedError: Every binding failed, or the chain stopped
                on a binding without fallback_on_failure
            PollTimeoutHandoff: An async job outlived the interactive deadline
            RequestCancelledError: cancel_event was set between attempts
        """
        ordered = sorted((b for b in bindings if b.enabled), key=lambda b: b.priority)
        attempts: List[ProviderAttempt] = []
        chain: List[str] = []

        logger.info(
            "chain_started",
            request_id=request.correlation_id,
            collector_type=request.collector_type,
            providers=[b.provider_name for b in ordered],
        )

        for index, binding in enumerate(ordered):
            chain.append(binding.provider_name)
            retries = 0

            while True:
                if cancel_event is not None and cancel_event.is_set():
                    logger.info(
                        "chain_cancelled",
                        request_id=request.correlation_id,
                        attempts=len(attempts),
                    )
                    raise RequestCancelledError(
                        f"Request {request.correlation_id} cancelled"
                    )

                outcome = await self._attempt(request, binding, attempts, chain)
                if isinstance(outcome, CollectorResult):
                    return outcome

                if (
                    outcome == AttemptStatus.RETRYABLE_FAILURE
                    and retries < binding.max_retries
                ):
                    delay = self.retry_handler.calculate_delay(retries)
                    retries += 1
                    logger.info(
                        "provider_retry_scheduled",
                        provider=binding.provider_name,
                        retry=retries,
                        max_retries=binding.max_retries,
                        delay_seconds=round(delay, 3),
                    )
                    await asyncio.sleep(delay)
                    continue
                break

            if outcome == AttemptStatus.FATAL_FAILURE:
                continue

            if not binding.fallback_on_failure:
                stopped_early = index < len(ordered) - 1
                logger.warning(
                    "chain_stopped",
                    request_id=request.correlation_id,
                    provider=binding.provider_name,
                    status=outcome.value,
                    stopped_early=stopped_early,
                )
                raise ChainExhaustedError(
                    request.correlation_id, attempts, stopped_early=stopped_early
                )

        logger.warning(
            "chain_exhausted",
            request_id=request.correlation_id,
            collector_type=request.collector_type,
            attempts=len(attempts),
        )
        raise ChainExhaustedError(request.correlation_id, attempts)

    async def _attempt(
        self,
        request: CollectionRequest,
        binding: ProviderBinding,
        attempts: List[ProviderAttempt],
        chain: List[str],
    ) -> AttemptResult:
        """Make one provider call and record its outcome."""
        started_at = _utcnow()
        adapter = self.adapters.get(binding.provider_name)
        if adapter is None:
            return await self._record(
                attempts,
                request,
                binding,
                AttemptStatus.FATAL_FAILURE,
                started_at,
                error=f"No adapter registered for '{binding.provider_name}'",
            )

        operation = OperationKey(binding.provider_name, OperationKind.COLLECTION)
        try:
            slot = self.key_pool.acquire(operation)
        except CredentialsCoolingDown as e:
            # No call is made, so the slot is not penalized again
            return await self._record(
                attempts,
                request,
                binding,
                AttemptStatus.RATE_LIMITED,
                started_at,
                error=str(e),
            )
        except UnknownOperationError as e:
            return await self._record(
                attempts,
                request,
                binding,
                AttemptStatus.FATAL_FAILURE,
                started_at,
                error=str(e),
            )

        adapter_request = AdapterRequest(
            query_text=request.query_text,
            locale=request.locale,
            country=request.country,
            collector_type=request.collector_type,
        )
        call_started = time.monotonic()
        try:
            outcome = await asyncio.wait_for(
                adapter.invoke(adapter_request, slot), timeout=binding.timeout_seconds
            )
        except asyncio.TimeoutError:
            return await self._record(
                attempts,
                request,
                binding,
                AttemptStatus.RETRYABLE_FAILURE,
                started_at,
                slot=slot,
                error=f"Timed out after {binding.timeout_seconds}s",
            )
        except RateLimitError as e:
            self.key_pool.record_rate_limit(slot, e.retry_after)
            return await self._record(
                attempts,
                request,
                binding,
                AttemptStatus.RATE_LIMITED,
                started_at,
                slot=slot,
                error=str(e),
            )
        except RetryableProviderError as e:
            return await self._record(
                attempts,
                request,
                binding,
                AttemptStatus.RETRYABLE_FAILURE,
                started_at,
                slot=slot,
                error=str(e),
            )
        except FatalProviderError as e:
            return await self._record(
                attempts,
                request,
                binding,
                AttemptStatus.FATAL_FAILURE,
                started_at,
                slot=slot,
                error=str(e),
            )
        except Exception as e:
            logger.error(
                "provider_unexpected_error",
                provider=binding.provider_name,
                error=str(e),
                exc_info=True,
            )
            return await self._record(
                attempts,
                request,
                binding,
                AttemptStatus.FATAL_FAILURE,
                started_at,
                slot=slot,
                error=f"{type(e).__name__}: {e}",
            )
        finally:
            PROVIDER_LATENCY.labels(provider=binding.provider_name).observe(
                time.monotonic() - call_started
            )

        self.key_pool.record_success(slot)

        if isinstance(outcome, AdapterSuccess):
            await self._record(
                attempts,
                request,
                binding,
                AttemptStatus.SUCCESS,
                started_at,
                slot=slot,
                payload=self._payload_summary(outcome),
            )
            return self._build_result(request, binding.provider_name, outcome, chain)

        if isinstance(outcome, AdapterAccepted):
            return await self._await_async(
                request, binding, adapter, slot, outcome, attempts, chain, started_at
            )

        return await self._record(
            attempts,
            request,
            binding,
            AttemptStatus.FATAL_FAILURE,
            started_at,
            slot=slot,
            error=f"Adapter returned unsupported outcome {type(outcome).__name__}",
        )

    async def _await_async(
        self,
        request: CollectionRequest,
        binding: ProviderBinding,
        adapter: ProviderAdapter,
        slot: CredentialSlot,
        accepted: AdapterAccepted,
        attempts: List[ProviderAttempt],
        chain: List[str],
        started_at: datetime,
    ) -> AttemptResult:
        await self._record(
            attempts,
            request,
            binding,
            AttemptStatus.ACCEPTED_ASYNC,
            started_at,
            slot=slot,
            payload={"job_id": accepted.job_id, **accepted.metadata},
        )
        handle = JobHandle(
            job_id=accepted.job_id,
            provider_name=binding.provider_name,
            request=request,
            binding_priority=binding.priority,
            credential_id=slot.credential_id,
            fallback_chain=list(chain),
        )

        outcome = await self.poll_engine.await_job(handle, adapter, slot)
        if outcome.state == PollState.HANDED_OFF:
            raise PollTimeoutHandoff(handle)

        if outcome.state == PollState.SUCCEEDED and outcome.answer is not None:
            await self._record(
                attempts,
                request,
                binding,
                AttemptStatus.SUCCESS,
                _utcnow(),
                slot=slot,
                payload=self._payload_summary(outcome.answer, job_id=handle.job_id),
            )
            return self._build_result(
                request, binding.provider_name, outcome.answer, chain
            )

        return await self._record(
            attempts,
            request,
            binding,
            AttemptStatus.FATAL_FAILURE,
            _utcnow(),
            slot=slot,
            error=f"Async job {handle.job_id} {outcome.state.value}: {outcome.error}",
        )

    async def _next_attempt_number(self, request_id: str) -> int:
        existing = await self.store.list_attempts(request_id)
        return max((a.attempt_number for a in existing), default=0) + 1

    async def complete_handoff(
        self, handle: JobHandle, outcome: PollOutcome
    ) -> Optional[CollectorResult]:
        """Record the reconciliation outcome of a handed-off job.

        Appends the closing attempt to the request's existing trail.

        Returns:
            The CollectorResult when the job succeeded, otherwise None
        """
        next_number = await self._next_attempt_number(handle.request.correlation_id)
        succeeded = outcome.state == PollState.SUCCEEDED and outcome.answer is not None

        attempt = ProviderAttempt(
            request_id=handle.request.correlation_id,
            attempt_number=next_number,
            provider_name=handle.provider_name,
            priority=handle.binding_priority,
            status=(
                AttemptStatus.SUCCESS if succeeded else AttemptStatus.FATAL_FAILURE
            ),
            started_at=handle.accepted_at,
            finished_at=_utcnow(),
            credential_id=handle.credential_id,
            response_payload=(
                self._payload_summary(outcome.answer, job_id=handle.job_id)
                if succeeded and outcome.answer is not None
                else None
            ),
            error=None if succeeded else f"{outcome.state.value}: {outcome.error}",
        )
        await self.store.append_attempt(attempt)
        PROVIDER_ATTEMPTS.labels(
            provider=handle.provider_name, status=attempt.status.value
        ).inc()

        if not succeeded or outcome.answer is None:
            return None
        return self._build_result(
            handle.request,
            handle.provider_name,
            outcome.answer,
            handle.fallback_chain or [handle.provider_name],
        )

    async def _record(
        self,
        attempts: List[ProviderAttempt],
        request: CollectionRequest,
        binding: ProviderBinding,
        status: AttemptStatus,
        started_at: datetime,
        slot: Optional[CredentialSlot] = None,
        payload: Optional[Dict[str, Any]] = None,
        error: Optional[str] = None,
    ) -> AttemptStatus:
        attempt = ProviderAttempt(
            request_id=request.correlation_id,
            attempt_number=await self._next_attempt_number(request.correlation_id),
            provider_name=binding.provider_name,
            priority=binding.priority,
            status=status,
            started_at=started_at,
            finished_at=_utcnow(),
            credential_id=slot.credential_id if slot else None,
            response_payload=payload,
            error=error,
        )
        attempts.append(attempt)
        await self.store.append_attempt(attempt)
        PROVIDER_ATTEMPTS.labels(
            provider=binding.provider_name, status=status.value
        ).inc()

        log = (
            logger.info
            if status in (AttemptStatus.SUCCESS, AttemptStatus.ACCEPTED_ASYNC)
            else logger.warning
        )
        log(
            "provider_attempt_recorded",
            request_id=request.correlation_id,
            attempt=attempt.attempt_number,
            provider=binding.provider_name,
            priority=binding.priority,
            status=status.value,
            error=error,
        )
        return status

    @staticmethod
    def _payload_summary(
        answer: AdapterSuccess, job_id: Optional[str] = None
    ) -> Dict[str, Any]:
        summary: Dict[str, Any] = {
            "answer_chars": len(answer.raw_answer),
            "citations": len(answer.citations),
        }
        if job_id:
            summary["job_id"] = job_id
        return summary

    @staticmethod
    def _build_result(
        request: CollectionRequest,
        provider_name: str,
        answer: AdapterSuccess,
        chain: List[str],
    ) -> CollectorResult:
        return CollectorResult(
            request_id=request.correlation_id,
            collector_type=request.collector_type,
            query_text=request.query_text,
            brand_id=request.brand_id,
            customer_id=request.customer_id,
            raw_answer=answer.raw_answer,
            citations=list(answer.citations),
            metadata=dict(answer.metadata),
            provider_used=provider_name,
            fallback_used=len(chain) > 1,
            fallback_chain=list(chain),
        )
