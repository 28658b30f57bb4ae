"""Result persistence boundary.

Every write is an idempotent upsert keyed by the record's own identifier:

- CollectorResult: request_id (the request's correlation id); first write wins
- ProviderAttempt: attempt_id (request_id:attempt_number); first write wins
- EnrichmentTask: task_id (collector_result_id:task_kind); last write wins
- ScoredRecord: collector_result_id; last write wins
- JobHandle (pending handoff): job_id; last write wins

Two implementations: InMemoryResultStore for tests and single-process runs,
JsonFileResultStore for durable local storage using atomic file replacement.
"""

import asyncio
import json
import os
import re
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, List, Optional, Type, TypeVar

import structlog
from pydantic import BaseModel

from answerscope.models.collection import CollectorResult, JobHandle, ProviderAttempt
from answerscope.models.config import StorageConfig
from answerscope.models.enrichment import EnrichmentTask, ScoredRecord

logger = structlog.get_logger()

M = TypeVar("M", bound=BaseModel)


class ResultStore(ABC):
    """Idempotent persistence for collection and scoring output"""

    @abstractmethod
    async def save_collector_result(self, result: CollectorResult) -> bool:
        """Store a result. Returns False if one already existed for its id."""

    @abstractmethod
    async def get_collector_result(self, request_id: str) -> Optional[CollectorResult]:
        ...

    @abstractmethod
    async def append_attempt(self, attempt: ProviderAttempt) -> bool:
        """Append an attempt row. Returns False if the attempt_id exists."""

    @abstractmethod
    async def list_attempts(self, request_id: str) -> List[ProviderAttempt]:
        ...

    @abstractmethod
    async def save_enrichment_task(self, task: EnrichmentTask) -> None:
        ...

    @abstractmethod
    async def get_enrichment_task(self, task_id: str) -> Optional[EnrichmentTask]:
        ...

    @abstractmethod
    async def save_scored_record(self, record: ScoredRecord) -> None:
        ...

    @abstractmethod
    async def get_scored_record(
        self, collector_result_id: str
    ) -> Optional[ScoredRecord]:
        ...

    @abstractmethod
    async def save_handoff(self, handle: JobHandle) -> None:
        ...

    @abstractmethod
    async def list_handoffs(self) -> List[JobHandle]:
        ...

    @abstractmethod
    async def remove_handoff(self, job_id: str) -> None:
        ...


class InMemoryResultStore(ResultStore):
    """Dictionary-backed store"""

    def __init__(self) -> None:
        self.results: Dict[str, CollectorResult] = {}
        self.attempts: Dict[str, List[ProviderAttempt]] = {}
        self.tasks: Dict[str, EnrichmentTask] = {}
        self.scored: Dict[str, ScoredRecord] = {}
        self.handoffs: Dict[str, JobHandle] = {}

    async def save_collector_result(self, result: CollectorResult) -> bool:
        if result.request_id in self.results:
            logger.debug("collector_result_exists", request_id=result.request_id)
            return False
        self.results[result.request_id] = result
        return True

    async def get_collector_result(self, request_id: str) -> Optional[CollectorResult]:
        return self.results.get(request_id)

    async def append_attempt(self, attempt: ProviderAttempt) -> bool:
        trail = self.attempts.setdefault(attempt.request_id, [])
        if any(a.attempt_id == attempt.attempt_id for a in trail):
            return False
        trail.append(attempt)
        return True

    async def list_attempts(self, request_id: str) -> List[ProviderAttempt]:
        return list(self.attempts.get(request_id, []))

    async def save_enrichment_task(self, task: EnrichmentTask) -> None:
        self.tasks[task.task_id] = task

    async def get_enrichment_task(self, task_id: str) -> Optional[EnrichmentTask]:
        return self.tasks.get(task_id)

    async def save_scored_record(self, record: ScoredRecord) -> None:
        self.scored[record.collector_result_id] = record

    async def get_scored_record(
        self, collector_result_id: str
    ) -> Optional[ScoredRecord]:
        return self.scored.get(collector_result_id)

    async def save_handoff(self, handle: JobHandle) -> None:
        self.handoffs[handle.job_id] = handle

    async def list_handoffs(self) -> List[JobHandle]:
        return list(self.handoffs.values())

    async def remove_handoff(self, job_id: str) -> None:
        self.handoffs.pop(job_id, None)


_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]")


class JsonFileResultStore(ResultStore):
    """One JSON file per record under a base directory

    Files are written to a temporary file, fsynced, then renamed into place,
    so a crash never leaves a half-written record. Blocking file IO runs in
    a worker thread.
    """

    def __init__(self, base_dir: Path):
        self.base_dir = Path(base_dir)
        for sub in ("results", "attempts", "tasks", "scored", "handoffs"):
            (self.base_dir / sub).mkdir(parents=True, exist_ok=True)
        # Serializes read-modify-write of attempt trails
        self._attempt_lock = asyncio.Lock()

    def _path(self, kind: str, key: str) -> Path:
        return self.base_dir / kind / f"{_UNSAFE_CHARS.sub('_', key)}.json"

    def _write_atomic(self, path: Path, payload: object) -> None:
        fd, tmp_path = tempfile.mkstemp(dir=path.parent, prefix=".rec_", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(payload, f, indent=2, default=str)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, path)
        except Exception:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

    def _read(self, path: Path) -> Optional[object]:
        if not path.exists():
            return None
        with open(path, encoding="utf-8") as f:
            return json.load(f)

    async def _save_model(self, kind: str, key: str, model: BaseModel) -> None:
        await asyncio.to_thread(
            self._write_atomic, self._path(kind, key), model.model_dump(mode="json")
        )

    async def _load_model(self, kind: str, key: str, cls: Type[M]) -> Optional[M]:
        data = await asyncio.to_thread(self._read, self._path(kind, key))
        return cls.model_validate(data) if data is not None else None

    async def save_collector_result(self, result: CollectorResult) -> bool:
        if self._path("results", result.request_id).exists():
            logger.debug("collector_result_exists", request_id=result.request_id)
            return False
        await self._save_model("results", result.request_id, result)
        return True

    async def get_collector_result(self, request_id: str) -> Optional[CollectorResult]:
        return await self._load_model("results", request_id, CollectorResult)

    async def append_attempt(self, attempt: ProviderAttempt) -> bool:
        path = self._path("attempts", attempt.request_id)
        async with self._attempt_lock:
            rows = await asyncio.to_thread(self._read, path) or []
            if any(row.get("attempt_number") == attempt.attempt_number for row in rows):
                return False
            rows.append(attempt.model_dump(mode="json"))
            await asyncio.to_thread(self._write_atomic, path, rows)
        return True

    async def list_attempts(self, request_id: str) -> List[ProviderAttempt]:
        rows = await asyncio.to_thread(self._read, self._path("attempts", request_id))
        return [ProviderAttempt.model_validate(row) for row in rows or []]

    async def save_enrichment_task(self, task: EnrichmentTask) -> None:
        await self._save_model("tasks", task.task_id, task)

    async def get_enrichment_task(self, task_id: str) -> Optional[EnrichmentTask]:
        return await self._load_model("tasks", task_id, EnrichmentTask)

    async def save_scored_record(self, record: ScoredRecord) -> None:
        await self._save_model("scored", record.collector_result_id, record)

    async def get_scored_record(
        self, collector_result_id: str
    ) -> Optional[ScoredRecord]:
        return await self._load_model("scored", collector_result_id, ScoredRecord)

    async def save_handoff(self, handle: JobHandle) -> None:
        await self._save_model("handoffs", handle.job_id, handle)

    async def list_handoffs(self) -> List[JobHandle]:
        def _load_all() -> List[JobHandle]:
            handles = []
            for path in sorted((self.base_dir / "handoffs").glob("*.json")):
                with open(path, encoding="utf-8") as f:
                    handles.append(JobHandle.model_validate(json.load(f)))
            return handles

        return await asyncio.to_thread(_load_all)

    async def remove_handoff(self, job_id: str) -> None:
        path = self._path("handoffs", job_id)
        await asyncio.to_thread(path.unlink, missing_ok=True)


def create_result_store(config: StorageConfig) -> ResultStore:
    """Build the store selected by configuration."""
    if config.backend == "json":
        logger.info("result_store_created", backend="json", path=config.path)
        return JsonFileResultStore(Path(config.path))
    logger.info("result_store_created", backend="memory")
    return InMemoryResultStore()
