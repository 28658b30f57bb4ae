"""Batch orchestration and the collection service boundary."""

from answerscope.orchestration.batch_tracker import BatchTracker
from answerscope.orchestration.collection_orchestrator import CollectionOrchestrator
from answerscope.orchestration.service import CollectionService

__all__ = ["BatchTracker", "CollectionOrchestrator", "CollectionService"]
