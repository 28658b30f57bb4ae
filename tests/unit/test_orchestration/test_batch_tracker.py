"""Tests for BatchTracker counters."""

from answerscope.models.batch import BatchState, OutcomeStatus
from answerscope.orchestration.batch_tracker import BatchTracker


def make_tracker():
    return BatchTracker("b1", "acme", "c1", "v3")


class TestBatchTracker:
    def test_register_sets_totals(self):
        tracker = make_tracker()

        tracker.register("chatgpt", 3)
        tracker.register("copilot", 2)
        tracker.register("chatgpt", 4)

        progress = tracker.snapshot()
        assert progress.total == 6
        assert progress.per_collector_type_status["chatgpt"].total == 4
        assert progress.config_version == "v3"

    def test_in_flight_and_max(self):
        tracker = make_tracker()
        tracker.register("chatgpt", 3)

        tracker.start_request("chatgpt")
        tracker.start_request("chatgpt")
        tracker.finish_request("chatgpt", OutcomeStatus.COMPLETED)
        tracker.start_request("chatgpt")

        per_type = tracker.snapshot().per_collector_type_status["chatgpt"]
        assert per_type.in_flight == 2
        assert per_type.max_in_flight == 2
        assert per_type.completed == 1

    def test_outcome_counters(self):
        tracker = make_tracker()
        for status in (
            OutcomeStatus.COMPLETED,
            OutcomeStatus.FAILED,
            OutcomeStatus.HANDED_OFF,
        ):
            tracker.start_request("chatgpt")
            tracker.finish_request("chatgpt", status)
        tracker.finish_request("chatgpt", OutcomeStatus.CANCELLED, started=False)

        progress = tracker.snapshot()
        assert (progress.completed, progress.failed, progress.handed_off) == (1, 1, 1)
        assert progress.cancelled == 1
        assert progress.in_flight == 0
        assert progress.per_collector_type_status["chatgpt"].finished == 4

    def test_snapshot_is_a_copy(self):
        tracker = make_tracker()
        tracker.register("chatgpt", 1)
        snapshot = tracker.snapshot()

        tracker.start_request("chatgpt")
        tracker.finish_request("chatgpt", OutcomeStatus.COMPLETED)

        assert snapshot.completed == 0
        assert snapshot.per_collector_type_status["chatgpt"].completed == 0

    def test_finish_sets_state(self):
        tracker = make_tracker()

        assert tracker.state == BatchState.RUNNING
        tracker.finish(BatchState.CANCELLED)

        assert tracker.state == BatchState.CANCELLED
        assert tracker.snapshot().finished_at is not None
