"""Tests for scheduled job wrappers."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from answerscope.models.collection import JobHandle
from answerscope.models.provider import AdapterSuccess, PollStatus
from answerscope.observability.context import get_correlation_id
from answerscope.orchestration.service import CollectionService
from answerscope.scheduling.jobs import BaseJob, ReconciliationSweepJob


class RecordingJob(BaseJob):
    def __init__(self, fail=False):
        super().__init__("recording")
        self.fail = fail
        self.seen_correlation_id = None

    async def run(self):
        self.seen_correlation_id = get_correlation_id()
        if self.fail:
            raise RuntimeError("sweep broke")
        return "done"


class TestBaseJob:
    """Tests for the run wrapper."""

    def test_initial_status(self):
        status = RecordingJob().get_status()

        assert status == {
            "name": "recording",
            "last_run": None,
            "last_success": None,
            "run_count": 0,
            "error_count": 0,
        }

    @pytest.mark.asyncio
    async def test_success_updates_counters(self):
        job = RecordingJob()

        assert await job() == "done"

        status = job.get_status()
        assert status["run_count"] == 1
        assert status["last_success"] == status["last_run"]
        assert job.seen_correlation_id.startswith("recording-")
        assert get_correlation_id() is None

    @pytest.mark.asyncio
    async def test_failure_is_counted_and_raised(self):
        job = RecordingJob(fail=True)

        with pytest.raises(RuntimeError, match="sweep broke"):
            await job()

        status = job.get_status()
        assert status["error_count"] == 1
        assert status["last_run"] is not None
        assert status["last_success"] is None
        assert get_correlation_id() is None


class TestReconciliationSweepJob:
    @pytest.mark.asyncio
    async def test_delegates_to_service(self):
        service = MagicMock()
        summary = {"pending": 2, "completed": 1, "failed": 1, "skipped": 0}
        service.reconcile_pending = AsyncMock(return_value=summary)
        job = ReconciliationSweepJob(service)

        assert await job() == summary
        service.reconcile_pending.assert_awaited_once()
        assert job.name == "reconciliation_sweep"

    @pytest.mark.asyncio
    async def test_end_to_end_with_service(
        self, app_config, scripted_adapter_cls, store, sample_request
    ):
        adapter = scripted_adapter_cls(
            "provider_x",
            poll_script=[PollStatus.ready(AdapterSuccess(raw_answer="late answer"))],
        )
        service = CollectionService(
            app_config, adapters={"provider_x": adapter}, store=store
        )
        await store.save_handoff(
            JobHandle(
                job_id="job-1",
                provider_name="provider_x",
                request=sample_request,
                binding_priority=0,
                credential_id="provider_x_key",
            )
        )

        summary = await ReconciliationSweepJob(service)()

        assert summary["completed"] == 1
        assert store.results[sample_request.correlation_id].raw_answer == "late answer"
        await service.close()
