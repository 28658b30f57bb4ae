"""Tests for the poll state machine and the two-tier poll engine."""

from datetime import datetime, timedelta, timezone

import pytest

from answerscope.models.collection import JobHandle
from answerscope.models.config import PollConfig
from answerscope.models.credentials import OperationKey, OperationKind
from answerscope.models.provider import AdapterSuccess, PollStatus
from answerscope.services.key_pool import KeyPool
from answerscope.services.poll_engine import (
    PollEngine,
    PollState,
    PollStateMachine,
    PollTier,
)
from answerscope.utils.exceptions import (
    FatalProviderError,
    RateLimitError,
    RetryableProviderError,
)

READY = PollStatus.ready(AdapterSuccess(raw_answer="done"))


@pytest.fixture
def poll_config() -> PollConfig:
    return PollConfig(
        initial_interval_seconds=1.0,
        max_interval_seconds=4.0,
        backoff_multiplier=2.0,
        short_deadline_seconds=10.0,
        long_deadline_seconds=100.0,
    )


def started(config, deadline=10.0, tier=PollTier.INTERACTIVE):
    machine = PollStateMachine(config, deadline=deadline, tier=tier)
    machine.start()
    return machine


class TestPollStateMachine:
    """Tests for pure transition logic."""

    def test_first_poll_is_immediate(self, poll_config):
        machine = PollStateMachine(
            poll_config, deadline=10.0, tier=PollTier.INTERACTIVE
        )

        assert machine.start() == 0.0
        assert machine.state == PollState.POLLING

    def test_cannot_start_twice(self, poll_config):
        machine = started(poll_config)

        with pytest.raises(RuntimeError):
            machine.start()

    def test_status_before_start_rejected(self, poll_config):
        machine = PollStateMachine(
            poll_config, deadline=10.0, tier=PollTier.INTERACTIVE
        )

        with pytest.raises(RuntimeError):
            machine.on_status(PollStatus.pending(), now=0.0)

    def test_interval_backs_off_to_cap(self, poll_config):
        machine = started(poll_config, deadline=1000.0)

        delays = [machine.on_status(PollStatus.pending(), now=0.0) for _ in range(5)]

        assert delays == [1.0, 2.0, 4.0, 4.0, 4.0]

    def test_last_delay_truncated_to_deadline(self, poll_config):
        machine = started(poll_config, deadline=10.0)

        assert machine.on_status(PollStatus.pending(), now=9.5) == pytest.approx(0.5)

    def test_ready_succeeds(self, poll_config):
        machine = started(poll_config)

        assert machine.on_status(READY, now=1.0) is None
        assert machine.state == PollState.SUCCEEDED
        assert machine.answer.raw_answer == "done"
        assert machine.polls == 1

    def test_failed_job(self, poll_config):
        machine = started(poll_config)

        assert machine.on_status(PollStatus.failed("quota"), now=1.0) is None
        assert machine.state == PollState.FAILED
        assert machine.error == "quota"

    def test_interactive_deadline_hands_off(self, poll_config):
        machine = started(poll_config, deadline=10.0, tier=PollTier.INTERACTIVE)

        assert machine.on_status(PollStatus.pending(), now=10.0) is None
        assert machine.state == PollState.HANDED_OFF

    def test_reconciliation_deadline_times_out(self, poll_config):
        machine = started(poll_config, deadline=10.0, tier=PollTier.RECONCILIATION)

        machine.on_status(PollStatus.pending(), now=11.0)

        assert machine.state == PollState.TIMED_OUT

    def test_fatal_poll_error_fails(self, poll_config):
        machine = started(poll_config)

        assert machine.on_error(FatalProviderError("HTTP 404"), now=1.0) is None
        assert machine.state == PollState.FAILED

    def test_transient_poll_error_keeps_polling(self, poll_config):
        machine = started(poll_config)

        assert machine.on_error(RetryableProviderError("502"), now=1.0) == 1.0
        assert machine.on_error(RateLimitError("429"), now=2.0) == 2.0
        assert machine.state == PollState.POLLING
        assert machine.polls == 2

    def test_terminal_state_rejects_further_results(self, poll_config):
        machine = started(poll_config)
        machine.on_status(READY, now=1.0)

        with pytest.raises(RuntimeError):
            machine.on_status(PollStatus.pending(), now=2.0)


@pytest.fixture
def key_pool(app_config):
    return KeyPool(app_config.key_pool, app_config.credentials)


@pytest.fixture
def engine(app_config, key_pool, store):
    return PollEngine(app_config.polling, key_pool, store)


def make_handle(request, accepted_at=None):
    kwargs = {}
    if accepted_at is not None:
        kwargs["accepted_at"] = accepted_at
    return JobHandle(
        job_id="job-1",
        provider_name="provider_x",
        request=request,
        binding_priority=0,
        credential_id="provider_x_key",
        **kwargs,
    )


class TestPollEngine:
    """Tests for driving jobs against adapters."""

    @pytest.mark.asyncio
    async def test_await_job_succeeds(
        self, engine, key_pool, scripted_adapter_cls, sample_request, store
    ):
        adapter = scripted_adapter_cls(
            "provider_x", poll_script=[PollStatus.pending(), READY]
        )
        slot = key_pool.get_slot(
            OperationKey("provider_x", OperationKind.COLLECTION), "provider_x_key"
        )

        outcome = await engine.await_job(make_handle(sample_request), adapter, slot)

        assert outcome.state == PollState.SUCCEEDED
        assert outcome.answer.raw_answer == "done"
        assert outcome.polls == 2
        assert store.handoffs == {}

    @pytest.mark.asyncio
    async def test_await_job_hands_off_and_stores_handle(
        self, engine, key_pool, scripted_adapter_cls, sample_request, store
    ):
        adapter = scripted_adapter_cls("provider_x")
        slot = key_pool.get_slot(
            OperationKey("provider_x", OperationKind.COLLECTION), "provider_x_key"
        )

        outcome = await engine.await_job(make_handle(sample_request), adapter, slot)

        assert outcome.state == PollState.HANDED_OFF
        assert outcome.polls >= 2
        assert "job-1" in store.handoffs

    @pytest.mark.asyncio
    async def test_rate_limited_poll_penalizes_credential(
        self, engine, key_pool, scripted_adapter_cls, sample_request
    ):
        adapter = scripted_adapter_cls(
            "provider_x", poll_script=[RateLimitError("429"), READY]
        )
        slot = key_pool.get_slot(
            OperationKey("provider_x", OperationKind.COLLECTION), "provider_x_key"
        )

        outcome = await engine.await_job(make_handle(sample_request), adapter, slot)

        assert outcome.state == PollState.SUCCEEDED
        assert slot.consecutive_rate_limit_hits == 1

    @pytest.mark.asyncio
    async def test_resume_succeeds_and_removes_handoff(
        self, engine, scripted_adapter_cls, sample_request, store
    ):
        handle = make_handle(sample_request)
        await store.save_handoff(handle)
        adapter = scripted_adapter_cls("provider_x", poll_script=[READY])

        outcome = await engine.resume(handle, adapter)

        assert outcome.state == PollState.SUCCEEDED
        assert store.handoffs == {}

    @pytest.mark.asyncio
    async def test_resume_deadline_measured_from_acceptance(
        self, engine, app_config, scripted_adapter_cls, sample_request, store
    ):
        """A job older than the long deadline gets one poll, then times out."""
        accepted_at = datetime.now(timezone.utc) - timedelta(
            seconds=app_config.polling.long_deadline_seconds + 5
        )
        handle = make_handle(sample_request, accepted_at=accepted_at)
        await store.save_handoff(handle)
        adapter = scripted_adapter_cls("provider_x")

        outcome = await engine.resume(handle, adapter)

        assert outcome.state == PollState.TIMED_OUT
        assert outcome.polls == 1
        assert store.handoffs == {}
