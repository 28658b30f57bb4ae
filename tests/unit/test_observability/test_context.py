"""Tests for correlation id propagation."""

import asyncio

import pytest

from answerscope.observability.context import (
    clear_correlation_id,
    correlation_id_context,
    get_correlation_id,
    set_correlation_id,
)


@pytest.fixture(autouse=True)
def reset_correlation_id():
    clear_correlation_id()
    yield
    clear_correlation_id()


class TestSetCorrelationId:
    def test_explicit_id(self):
        assert set_correlation_id("req-1") == "req-1"
        assert get_correlation_id() == "req-1"

    def test_generates_uuid_when_omitted(self):
        corr_id = set_correlation_id()

        assert len(corr_id) == 36
        assert get_correlation_id() == corr_id

    def test_clear(self):
        set_correlation_id("req-1")

        clear_correlation_id()

        assert get_correlation_id() is None


class TestCorrelationIdContext:
    """Tests for the scoped context manager."""

    def test_restores_outer_id(self):
        set_correlation_id("outer")

        with correlation_id_context("inner") as corr_id:
            assert corr_id == "inner"
            assert get_correlation_id() == "inner"

        assert get_correlation_id() == "outer"

    def test_restores_after_exception(self):
        with pytest.raises(RuntimeError):
            with correlation_id_context("inner"):
                raise RuntimeError("boom")

        assert get_correlation_id() is None

    def test_generates_id(self):
        with correlation_id_context() as corr_id:
            assert get_correlation_id() == corr_id
            assert corr_id

    @pytest.mark.asyncio
    async def test_concurrent_tasks_are_isolated(self):
        """Each worker task sees only its own id."""
        seen = {}

        async def worker(name):
            with correlation_id_context(name):
                await asyncio.sleep(0.01)
                seen[name] = get_correlation_id()

        await asyncio.gather(*(worker(f"req-{i}") for i in range(5)))

        assert seen == {f"req-{i}": f"req-{i}" for i in range(5)}
        assert get_correlation_id() is None
