"""Tests for service health checks."""

import pytest
import pytest_asyncio

from answerscope.api.checks import CheckStatus, HealthChecker, HealthStatus
from answerscope.models.collection import JobHandle
from answerscope.models.credentials import OperationKey, OperationKind
from answerscope.orchestration.service import CollectionService


@pytest_asyncio.fixture
async def service(app_config, scripted_adapter_cls, store):
    service = CollectionService(
        app_config,
        adapters={"provider_x": scripted_adapter_cls("provider_x")},
        store=store,
    )
    yield service
    await service.close()


class TestHealthChecker:
    """Tests for individual checks and the overall status."""

    @pytest.mark.asyncio
    async def test_all_pass(self, service):
        report = await HealthChecker(service).check_all()

        assert report.status == HealthStatus.HEALTHY
        assert [c.name for c in report.checks] == [
            "key_pool",
            "pending_handoffs",
            "storage",
        ]
        assert report.config_version == "test"
        assert report.to_dict()["checks"][0]["status"] == "pass"

    @pytest.mark.asyncio
    async def test_cooling_operation_degrades(self, service):
        operation = OperationKey("provider_x", OperationKind.COLLECTION)
        service.key_pool.record_rate_limit(
            service.key_pool.get_slot(operation, "provider_x_key")
        )

        report = await HealthChecker(service).check_all()

        assert report.status == HealthStatus.DEGRADED
        key_pool = report.checks[0]
        assert key_pool.status == CheckStatus.WARN
        assert key_pool.details["cooling_operations"] == ["provider_x/collection"]
        assert "provider_x/collection" in key_pool.message

    @pytest.mark.asyncio
    async def test_handoff_backlog_warns(self, service, store, sample_request):
        for i in range(2):
            await store.save_handoff(
                JobHandle(
                    job_id=f"job-{i}",
                    provider_name="provider_x",
                    request=sample_request,
                    binding_priority=0,
                )
            )

        result = await HealthChecker(
            service, handoff_warning_threshold=1
        ).check_pending_handoffs()

        assert result.status == CheckStatus.WARN
        assert result.details == {"pending": 2, "threshold": 1}

    @pytest.mark.asyncio
    async def test_json_storage_writable(
        self, config_factory, store, tmp_path
    ):
        config = config_factory(storage={"backend": "json", "path": str(tmp_path)})
        service = CollectionService(config, adapters={}, store=store)

        result = await HealthChecker(service).check_storage()

        assert result.status == CheckStatus.PASS
        await service.close()

    @pytest.mark.asyncio
    async def test_missing_storage_directory_fails(
        self, config_factory, store, tmp_path
    ):
        missing = tmp_path / "nope"
        config = config_factory(storage={"backend": "json", "path": str(missing)})
        service = CollectionService(config, adapters={}, store=store)

        report = await HealthChecker(service).check_all()

        assert report.status == HealthStatus.UNHEALTHY
        assert report.checks[2].status == CheckStatus.FAIL
        await service.close()
