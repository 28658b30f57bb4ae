"""Live progress counters for one batch."""

from datetime import datetime, timezone

from answerscope.models.batch import (
    BatchProgress,
    BatchState,
    CollectorTypeProgress,
    OutcomeStatus,
)


class BatchTracker:
    """Mutable progress for a running batch

    Only touched from the event loop, so no locking is needed. Callers get
    copies through ``snapshot``.
    """

    def __init__(
        self, batch_id: str, brand_id: str, customer_id: str, config_version: str
    ):
        self._progress = BatchProgress(
            batch_id=batch_id,
            brand_id=brand_id,
            customer_id=customer_id,
            config_version=config_version,
        )

    @property
    def batch_id(self) -> str:
        return self._progress.batch_id

    @property
    def state(self) -> BatchState:
        return self._progress.state

    def register(self, collector_type: str, total: int) -> None:
        """Set the number of requests planned for a collector type."""
        per_type = self._progress.per_collector_type_status.setdefault(
            collector_type, CollectorTypeProgress()
        )
        per_type.total = total
        self._progress.total = sum(
            p.total for p in self._progress.per_collector_type_status.values()
        )

    def start_request(self, collector_type: str) -> None:
        per_type = self._type(collector_type)
        per_type.in_flight += 1
        per_type.max_in_flight = max(per_type.max_in_flight, per_type.in_flight)
        self._progress.in_flight += 1

    def finish_request(
        self, collector_type: str, status: OutcomeStatus, started: bool = True
    ) -> None:
        """Count a finished request.

        Args:
            collector_type: Collector type of the request
            status: Final outcome
            started: False for requests cancelled before start_request
        """
        per_type = self._type(collector_type)
        if started:
            per_type.in_flight -= 1
            self._progress.in_flight -= 1
        field = status.value
        setattr(per_type, field, getattr(per_type, field) + 1)
        setattr(self._progress, field, getattr(self._progress, field) + 1)

    def finish(self, state: BatchState) -> None:
        self._progress.state = state
        self._progress.finished_at = datetime.now(timezone.utc)

    def snapshot(self) -> BatchProgress:
        return self._progress.model_copy(deep=True)

    def _type(self, collector_type: str) -> CollectorTypeProgress:
        return self._progress.per_collector_type_status.setdefault(
            collector_type, CollectorTypeProgress()
        )
