"""Scheduled job definitions.

- ReconciliationSweepJob: resume every pending async-job handoff

Usage:
    from answerscope.scheduling.jobs import ReconciliationSweepJob

    job = ReconciliationSweepJob(service)
    summary = await job()
"""

import time
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import structlog

from answerscope.observability.context import clear_correlation_id, set_correlation_id
from answerscope.orchestration.service import CollectionService

logger = structlog.get_logger()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class BaseJob(ABC):
    """Base class for scheduled jobs

    Provides correlation id scoping, timing, run/error counters and
    start/finish logging around ``run``.
    """

    def __init__(self, name: str):
        self.name = name
        self.last_run: Optional[datetime] = None
        self.last_success: Optional[datetime] = None
        self.run_count: int = 0
        self.error_count: int = 0

    async def __call__(self) -> Any:
        start = time.monotonic()
        corr_id = set_correlation_id(f"{self.name}-{_utcnow():%Y%m%d-%H%M%S}")
        logger.info("job_starting", job_name=self.name, correlation_id=corr_id)

        try:
            result = await self.run()
        except Exception as e:
            self.last_run = _utcnow()
            self.error_count += 1
            logger.error(
                "job_failed",
                job_name=self.name,
                error=str(e),
                correlation_id=corr_id,
                exc_info=True,
            )
            raise
        else:
            self.last_run = self.last_success = _utcnow()
            self.run_count += 1
            logger.info(
                "job_completed",
                job_name=self.name,
                duration_seconds=round(time.monotonic() - start, 2),
                correlation_id=corr_id,
            )
            return result
        finally:
            clear_correlation_id()

    @abstractmethod
    async def run(self) -> Any:
        """Execute the job logic."""

    def get_status(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "last_run": self.last_run.isoformat() if self.last_run else None,
            "last_success": (
                self.last_success.isoformat() if self.last_success else None
            ),
            "run_count": self.run_count,
            "error_count": self.error_count,
        }


class ReconciliationSweepJob(BaseJob):
    """Resumes async jobs that outlived their interactive poll deadline

    Each handoff is polled under the long deadline measured from when the
    provider accepted it; finished jobs are persisted and scored.
    """

    def __init__(self, service: CollectionService):
        super().__init__("reconciliation_sweep")
        self.service = service

    async def run(self) -> Dict[str, int]:
        summary = await self.service.reconcile_pending()
        if summary["pending"]:
            logger.info("reconciliation_summary", **summary)
        return summary
