"""Background reconciliation scheduling.

Usage:
    from answerscope.scheduling import ReconciliationScheduler, ReconciliationSweepJob

    scheduler = ReconciliationScheduler()
    scheduler.add_job(
        ReconciliationSweepJob(service),
        job_id="reconciliation_sweep",
        trigger="interval",
        seconds=config.polling.sweep_interval_seconds,
    )
    await scheduler.start()
"""

from answerscope.scheduling.jobs import BaseJob, ReconciliationSweepJob
from answerscope.scheduling.scheduler import ReconciliationScheduler

__all__ = ["BaseJob", "ReconciliationScheduler", "ReconciliationSweepJob"]
