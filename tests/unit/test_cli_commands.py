"""Tests for CLI commands."""

import json
from unittest.mock import AsyncMock, patch

import pytest
import yaml
from typer.testing import CliRunner

from answerscope.cli import app
from answerscope.models.collection import JobHandle
from answerscope.models.provider import AdapterSuccess, PollStatus
from answerscope.orchestration.service import CollectionService
from answerscope.services.persistence import InMemoryResultStore
from answerscope.utils.exceptions import FatalProviderError

runner = CliRunner()


@pytest.fixture
def config_file(tmp_path, config_data):
    path = tmp_path / "collection_config.yaml"
    path.write_text(yaml.safe_dump(config_data()))
    return path


@pytest.fixture
def service_factory(scripted_adapter_cls):
    """Builds services with scripted adapters instead of real HTTP clients."""
    adapters = {
        "provider_x": scripted_adapter_cls("provider_x"),
        "provider_y": scripted_adapter_cls("provider_y"),
    }
    store = InMemoryResultStore()

    def factory(config):
        return CollectionService(config, adapters=adapters, store=store)

    factory.adapters = adapters
    factory.store = store
    return factory


class TestValidateCommand:
    def test_valid_config(self, config_file):
        result = runner.invoke(app, ["validate", str(config_file)])

        assert result.exit_code == 0
        assert "Configuration is valid" in result.stdout
        assert "chatgpt: provider_x -> provider_y" in result.stdout

    def test_missing_file(self, tmp_path):
        result = runner.invoke(app, ["validate", str(tmp_path / "nope.yaml")])

        assert result.exit_code == 1
        assert "Validation failed" in result.stdout

    def test_invalid_reference(self, tmp_path, config_data):
        data = config_data()
        data["key_pool"] = data["key_pool"][:1]
        path = tmp_path / "bad.yaml"
        path.write_text(yaml.safe_dump(data))

        result = runner.invoke(app, ["validate", str(path)])

        assert result.exit_code == 1
        assert "no key_pool entry" in result.stdout


class TestCollectCommand:
    """Tests for the foreground collect command."""

    def test_collects_and_writes_output(self, config_file, service_factory, tmp_path):
        output = tmp_path / "outcomes.json"
        with patch("answerscope.cli.collect.CollectionService", service_factory):
            result = runner.invoke(
                app,
                [
                    "collect",
                    "--brand",
                    "acme",
                    "-t",
                    "chatgpt",
                    "-q",
                    "best crm",
                    "-q",
                    "cheap crm",
                    "--config",
                    str(config_file),
                    "--output",
                    str(output),
                ],
            )

        assert result.exit_code == 0, result.stdout
        assert "Collected 2 requests" in result.stdout
        assert "provider_x" in result.stdout
        outcomes = json.loads(output.read_text())
        assert [o["status"] for o in outcomes] == ["completed", "completed"]

    def test_queries_file(self, config_file, service_factory, tmp_path):
        queries = tmp_path / "queries.txt"
        queries.write_text("# header\nbest crm\n\ncheap crm\nbest crm\n")
        with patch("answerscope.cli.collect.CollectionService", service_factory):
            result = runner.invoke(
                app,
                [
                    "collect",
                    "-b",
                    "acme",
                    "-t",
                    "chatgpt",
                    "-f",
                    str(queries),
                    "-c",
                    str(config_file),
                ],
            )

        assert result.exit_code == 0, result.stdout
        assert len(service_factory.adapters["provider_x"].calls) == 2

    def test_reports_failures(self, config_file, service_factory):
        service_factory.adapters["provider_x"].script = [FatalProviderError("HTTP 400")]
        service_factory.adapters["provider_y"].script = [FatalProviderError("HTTP 400")]
        with patch("answerscope.cli.collect.CollectionService", service_factory):
            result = runner.invoke(
                app,
                ["collect", "-b", "acme", "-t", "chatgpt", "-q", "q1"]
                + ["-c", str(config_file)],
            )

        assert result.exit_code == 0
        assert "1 of 1 requests failed" in result.stdout

    def test_requires_queries(self, config_file):
        result = runner.invoke(
            app, ["collect", "-b", "acme", "-t", "chatgpt", "-c", str(config_file)]
        )

        assert result.exit_code == 1
        assert "Provide --query or --queries-file" in result.stdout

    def test_unknown_collector_type(self, config_file, service_factory):
        with patch("answerscope.cli.collect.CollectionService", service_factory):
            result = runner.invoke(
                app,
                ["collect", "-b", "acme", "-t", "gemini", "-q", "q1"]
                + ["-c", str(config_file)],
            )

        assert result.exit_code == 1
        assert "gemini" in result.stdout

    def test_bad_config_path(self, tmp_path):
        result = runner.invoke(
            app,
            ["collect", "-b", "acme", "-t", "chatgpt", "-q", "q"]
            + ["-c", str(tmp_path / "missing.yaml")],
        )

        assert result.exit_code == 1
        assert "Configuration Error" in result.stdout


class TestReconcileCommand:
    def test_nothing_pending(self, config_file, service_factory):
        with patch("answerscope.cli.reconcile.CollectionService", service_factory):
            result = runner.invoke(app, ["reconcile", "-c", str(config_file)])

        assert result.exit_code == 0
        assert "memory" in result.stdout
        assert "No pending handoffs." in result.stdout

    def test_reconciles_pending(self, config_file, service_factory, sample_request):
        store = service_factory.store
        store.handoffs["job-1"] = JobHandle(
            job_id="job-1",
            provider_name="provider_x",
            request=sample_request,
            binding_priority=0,
            credential_id="provider_x_key",
        )
        service_factory.adapters["provider_x"].poll_script = [
            PollStatus.ready(AdapterSuccess(raw_answer="late"))
        ]
        with patch("answerscope.cli.reconcile.CollectionService", service_factory):
            result = runner.invoke(app, ["reconcile", "-c", str(config_file)])

        assert result.exit_code == 0, result.stdout
        assert "Reconciled 1 handoffs: 1 completed" in result.stdout
        assert store.results[sample_request.correlation_id].raw_answer == "late"


class TestServeCommand:
    def test_passes_options(self, config_file):
        with patch(
            "answerscope.cli.serve._run_server", new=AsyncMock()
        ) as run_server:
            result = runner.invoke(
                app,
                ["serve", "-c", str(config_file), "--port", "9001", "--no-sweep"],
            )

        assert result.exit_code == 0
        config, host, port, sweep = run_server.call_args.args
        assert config.version == "test"
        assert (host, port, sweep) == ("0.0.0.0", 9001, False)
