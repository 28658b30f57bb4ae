"""APScheduler wrapper for background reconciliation.

Usage:
    scheduler = ReconciliationScheduler()
    scheduler.add_job(
        ReconciliationSweepJob(service),
        job_id="reconciliation_sweep",
        trigger="interval",
        seconds=60,
    )
    await scheduler.start()  # blocks until SIGINT/SIGTERM or shutdown()
"""

import asyncio
import signal
from typing import Any, Callable, Dict, List

import structlog
from apscheduler.events import (
    EVENT_JOB_ERROR,
    EVENT_JOB_EXECUTED,
    EVENT_JOB_MISSED,
    JobExecutionEvent,
)
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from answerscope.observability.metrics import SCHEDULER_JOBS

logger = structlog.get_logger()


class ReconciliationScheduler:
    """AsyncIOScheduler with logging listeners, metrics and signal handling

    Jobs default to a single instance with coalescing, so a slow sweep is
    never overlapped by the next one.
    """

    def __init__(
        self,
        timezone: str = "UTC",
        max_instances: int = 1,
        coalesce: bool = True,
        misfire_grace_time: int = 60,
    ):
        self.scheduler = AsyncIOScheduler(
            timezone=timezone,
            job_defaults={
                "max_instances": max_instances,
                "coalesce": coalesce,
                "misfire_grace_time": misfire_grace_time,
            },
        )
        self._running = False
        self._shutdown_event = asyncio.Event()
        self._jobs: Dict[str, Any] = {}

        self.scheduler.add_listener(self._on_job_executed, EVENT_JOB_EXECUTED)
        self.scheduler.add_listener(self._on_job_error, EVENT_JOB_ERROR)
        self.scheduler.add_listener(self._on_job_missed, EVENT_JOB_MISSED)

        logger.info("scheduler_initialized", timezone=timezone)

    def add_job(
        self,
        func: Callable,
        job_id: str,
        trigger: str = "interval",
        **trigger_args: Any,
    ) -> str:
        """Register ``func`` under ``job_id``, replacing any existing job.

        Args:
            func: Coroutine function or awaitable callable
            job_id: Unique job identifier
            trigger: 'interval' or 'cron'
            **trigger_args: Passed to the trigger, e.g. seconds=60

        Returns:
            Job ID
        """
        if trigger == "interval":
            trigger_obj = IntervalTrigger(**trigger_args)
        elif trigger == "cron":
            trigger_obj = CronTrigger(**trigger_args)
        else:
            raise ValueError(f"Unsupported trigger '{trigger}'")

        job = self.scheduler.add_job(
            func,
            trigger=trigger_obj,
            id=job_id,
            name=job_id,
            replace_existing=True,
        )
        self._jobs[job_id] = job

        next_run = getattr(job, "next_run_time", None)
        logger.info(
            "job_added",
            job_id=job_id,
            trigger=trigger,
            next_run=str(next_run) if next_run else "not scheduled",
        )
        self._update_metrics()
        return job_id

    def remove_job(self, job_id: str) -> bool:
        if job_id not in self._jobs:
            return False
        self.scheduler.remove_job(job_id)
        del self._jobs[job_id]
        logger.info("job_removed", job_id=job_id)
        self._update_metrics()
        return True

    def get_jobs(self) -> List[Dict[str, Any]]:
        jobs = []
        for job in self.scheduler.get_jobs():
            next_run = getattr(job, "next_run_time", None)
            jobs.append(
                {
                    "id": job.id,
                    "name": job.name,
                    "next_run_time": str(next_run) if next_run else None,
                    "pending": getattr(job, "pending", False),
                }
            )
        return jobs

    async def start(self) -> None:
        """Start executing jobs and block until shutdown."""
        if self._running:
            logger.warning("scheduler_already_running")
            return

        self._running = True
        self._shutdown_event.clear()

        loop = asyncio.get_running_loop()  # pragma: no cover
        for sig in (signal.SIGTERM, signal.SIGINT):  # pragma: no cover
            loop.add_signal_handler(sig, self._signal_handler)  # pragma: no cover

        self.scheduler.start()  # pragma: no cover
        logger.info("scheduler_started", jobs=len(self._jobs))  # pragma: no cover
        self._update_metrics()  # pragma: no cover

        await self._shutdown_event.wait()  # pragma: no cover

    async def shutdown(self, wait: bool = True) -> None:
        if not self._running:
            return

        logger.info("scheduler_shutting_down")
        if self.scheduler.running:
            self.scheduler.shutdown(wait=wait)
        self._running = False
        self._shutdown_event.set()
        logger.info("scheduler_stopped")

    def _signal_handler(self) -> None:
        logger.info("shutdown_signal_received")
        asyncio.create_task(self.shutdown())

    def _on_job_executed(self, event: JobExecutionEvent) -> None:
        logger.info(
            "job_executed",
            job_id=event.job_id,
            scheduled_run_time=str(event.scheduled_run_time),
        )
        self._update_metrics()

    def _on_job_error(self, event: JobExecutionEvent) -> None:
        logger.error(
            "job_failed",
            job_id=event.job_id,
            exception=str(event.exception),
            traceback=event.traceback,
        )
        self._update_metrics()

    def _on_job_missed(self, event: JobExecutionEvent) -> None:
        logger.warning(
            "job_missed",
            job_id=event.job_id,
            scheduled_run_time=str(event.scheduled_run_time),
        )
        self._update_metrics()

    def _update_metrics(self) -> None:
        pending = sum(1 for j in self.scheduler.get_jobs() if j.pending)
        SCHEDULER_JOBS.labels(status="pending").set(pending)
        SCHEDULER_JOBS.labels(status="running").set(len(self._jobs) - pending)

    @property
    def is_running(self) -> bool:
        return self._running
