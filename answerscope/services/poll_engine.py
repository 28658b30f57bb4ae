"""Async job polling with a two-tier deadline.

Some providers accept a request and answer later. PollStateMachine holds
the pure transition logic:

    accepted -> polling -> succeeded | failed | timed_out | handed_off

PollEngine drives a machine with a scheduled wake (``loop.call_later``
feeding an ``asyncio.Queue``), one poll per wake. Intervals grow by
``backoff_multiplier`` up to ``max_interval_seconds`` and are truncated so
the last poll lands exactly on the deadline.

Two tiers:
- Interactive (``await_job``): short deadline measured from now. Running out
  of time stores the job handle for reconciliation and returns HANDED_OFF.
- Reconciliation (``resume``): long deadline measured from the job's
  accepted_at. Running out of time is a real failure (TIMED_OUT).
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

import structlog

from answerscope.models.collection import JobHandle
from answerscope.models.config import PollConfig
from answerscope.models.credentials import CredentialSlot, OperationKey, OperationKind
from answerscope.models.provider import AdapterSuccess, JobState, PollStatus
from answerscope.observability.metrics import POLL_OUTCOMES
from answerscope.services.key_pool import KeyPool
from answerscope.services.persistence import ResultStore
from answerscope.services.providers.base import ProviderAdapter
from answerscope.utils.exceptions import (
    FatalProviderError,
    ProviderError,
    RateLimitError,
    UnknownOperationError,
)

logger = structlog.get_logger()


class PollState(str, Enum):
    ACCEPTED = "accepted"
    POLLING = "polling"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    HANDED_OFF = "handed_off"


class PollTier(str, Enum):
    INTERACTIVE = "interactive"
    RECONCILIATION = "reconciliation"


@dataclass
class PollOutcome:
    """Terminal result of driving one job"""

    state: PollState
    answer: Optional[AdapterSuccess] = None
    error: Optional[str] = None
    polls: int = 0
    elapsed_seconds: float = 0.0


class PollStateMachine:
    """Transition logic for one job under one deadline

    All times are readings of the same monotonic clock; the machine never
    reads a clock itself.
    """

    def __init__(self, config: PollConfig, deadline: float, tier: PollTier):
        self.config = config
        self.deadline = deadline
        self.tier = tier
        self.state = PollState.ACCEPTED
        self.polls = 0
        self.answer: Optional[AdapterSuccess] = None
        self.error: Optional[str] = None
        self._interval = config.initial_interval_seconds

    def start(self) -> float:
        """Enter POLLING. The first poll happens immediately."""
        if self.state != PollState.ACCEPTED:
            raise RuntimeError(f"Cannot start from state {self.state.value}")
        self.state = PollState.POLLING
        return 0.0

    def on_status(self, status: PollStatus, now: float) -> Optional[float]:
        """Apply one poll result.

        Returns:
            Seconds until the next poll, or None once terminal
        """
        self._require_polling()
        self.polls += 1
        if status.state == JobState.READY:
            self.answer = status.answer
            self.state = PollState.SUCCEEDED
            return None
        if status.state == JobState.FAILED:
            self.error = status.error or "job failed"
            self.state = PollState.FAILED
            return None
        return self._schedule_next(now)

    def on_error(self, error: Exception, now: float) -> Optional[float]:
        """Apply a poll request that raised.

        Fatal provider errors end the job; anything transient counts as
        "not ready yet".
        """
        self._require_polling()
        self.polls += 1
        if isinstance(error, FatalProviderError):
            self.error = str(error)
            self.state = PollState.FAILED
            return None
        return self._schedule_next(now)

    def _schedule_next(self, now: float) -> Optional[float]:
        remaining = self.deadline - now
        if remaining <= 0:
            self.state = (
                PollState.HANDED_OFF
                if self.tier == PollTier.INTERACTIVE
                else PollState.TIMED_OUT
            )
            self.error = f"deadline reached after {self.polls} polls"
            return None
        delay = min(self._interval, remaining)
        self._interval = min(
            self._interval * self.config.backoff_multiplier,
            self.config.max_interval_seconds,
        )
        return delay

    def _require_polling(self) -> None:
        if self.state != PollState.POLLING:
            raise RuntimeError(f"Poll result received in state {self.state.value}")


class PollEngine:
    """Drives PollStateMachines against provider adapters"""

    def __init__(self, config: PollConfig, key_pool: KeyPool, store: ResultStore):
        self.config = config
        self.key_pool = key_pool
        self.store = store

    async def await_job(
        self,
        handle: JobHandle,
        adapter: ProviderAdapter,
        credential: CredentialSlot,
    ) -> PollOutcome:
        """Poll under the short deadline; hand off if it runs out."""
        loop = asyncio.get_running_loop()
        machine = PollStateMachine(
            self.config,
            deadline=loop.time() + self.config.short_deadline_seconds,
            tier=PollTier.INTERACTIVE,
        )
        outcome = await self._drive(machine, handle, adapter, credential)

        if outcome.state == PollState.HANDED_OFF:
            await self.store.save_handoff(handle)
            logger.info(
                "poll_handed_off",
                provider=handle.provider_name,
                job_id=handle.job_id,
                polls=outcome.polls,
            )
        return outcome

    async def resume(self, handle: JobHandle, adapter: ProviderAdapter) -> PollOutcome:
        """Poll a handed-off job under the long deadline.

        The deadline is measured from when the provider accepted the job,
        not from now. A terminal outcome removes the stored handoff.
        A handle whose credential is no longer pooled fails without polling.
        """
        loop = asyncio.get_running_loop()
        age = (datetime.now(timezone.utc) - handle.accepted_at).total_seconds()
        machine = PollStateMachine(
            self.config,
            deadline=loop.time() + (self.config.long_deadline_seconds - age),
            tier=PollTier.RECONCILIATION,
        )
        try:
            credential = self.key_pool.get_slot(
                OperationKey(handle.provider_name, OperationKind.COLLECTION),
                handle.credential_id or "",
            )
        except UnknownOperationError as e:
            outcome = PollOutcome(state=PollState.FAILED, error=str(e))
            POLL_OUTCOMES.labels(
                provider=handle.provider_name,
                tier=PollTier.RECONCILIATION.value,
                outcome=outcome.state.value,
            ).inc()
        else:
            outcome = await self._drive(machine, handle, adapter, credential)

        await self.store.remove_handoff(handle.job_id)
        logger.info(
            "poll_reconciled",
            provider=handle.provider_name,
            job_id=handle.job_id,
            state=outcome.state.value,
            polls=outcome.polls,
        )
        return outcome

    async def _drive(
        self,
        machine: PollStateMachine,
        handle: JobHandle,
        adapter: ProviderAdapter,
        credential: CredentialSlot,
    ) -> PollOutcome:
        loop = asyncio.get_running_loop()
        started = loop.time()
        wakes: asyncio.Queue = asyncio.Queue()

        delay: Optional[float] = machine.start()
        while delay is not None:
            timer = loop.call_later(delay, wakes.put_nowait, None)
            try:
                await wakes.get()
            finally:
                timer.cancel()

            try:
                status = await asyncio.wait_for(
                    adapter.poll(handle.job_id, credential),
                    timeout=self.config.poll_request_timeout_seconds,
                )
            except (ProviderError, asyncio.TimeoutError) as e:
                if isinstance(e, RateLimitError):
                    self.key_pool.record_rate_limit(credential, e.retry_after)
                logger.debug(
                    "poll_request_failed",
                    provider=handle.provider_name,
                    job_id=handle.job_id,
                    error_type=type(e).__name__,
                )
                delay = machine.on_error(e, loop.time())
            else:
                delay = machine.on_status(status, loop.time())

        POLL_OUTCOMES.labels(
            provider=handle.provider_name,
            tier=machine.tier.value,
            outcome=machine.state.value,
        ).inc()
        return PollOutcome(
            state=machine.state,
            answer=machine.answer,
            error=machine.error,
            polls=machine.polls,
            elapsed_seconds=loop.time() - started,
        )
