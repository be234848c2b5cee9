from __future__ import annotations

import json
import logging
from datetime import datetime, timedelta
from typing import List, Optional, Sequence

from pydantic import BaseModel, Field, ValidationError, model_validator

from studioflow.project.store import BATCH_QUEUE_KEY, KeyValueStore, StorageError
from studioflow.project.time_utils import is_within, utc_now

logger = logging.getLogger(__name__)


class BatchQueue(BaseModel):
    """Partition of the scene ids captured at batch start.

    ``pending``, ``completed`` and ``failed`` are pairwise disjoint and their
    union is always ``scene_ids``.
    """

    scene_ids: List[int]
    pending: List[int]
    completed: List[int] = Field(default_factory=list)
    failed: List[int] = Field(default_factory=list)
    total_scenes: int
    timestamp: datetime = Field(default_factory=utc_now)

    @model_validator(mode="after")
    def _check_partition(self) -> "BatchQueue":
        groups = (self.pending, self.completed, self.failed)
        seen: set[int] = set()
        for group in groups:
            overlap = seen.intersection(group)
            if overlap or len(set(group)) != len(group):
                raise ValueError(f"Batch queue partitions overlap on scenes {sorted(overlap) or group}")
            seen.update(group)
        if seen != set(self.scene_ids):
            raise ValueError("Batch queue partitions do not cover the captured scene ids")
        if self.total_scenes != len(self.scene_ids):
            raise ValueError("total_scenes does not match the captured scene ids")
        return self

    @classmethod
    def start(cls, scene_ids: Sequence[int], now: Optional[datetime] = None) -> "BatchQueue":
        ids = list(scene_ids)
        return cls(scene_ids=ids, pending=list(ids), total_scenes=len(ids), timestamp=now or utc_now())

    @property
    def has_pending(self) -> bool:
        return bool(self.pending)

    def is_fresh(self, window: timedelta, now: Optional[datetime] = None) -> bool:
        return is_within(self.timestamp, window, now)

    def mark_completed(self, scene_id: int, now: Optional[datetime] = None) -> "BatchQueue":
        return self._resolve(scene_id, failed=False, now=now)

    def mark_failed(self, scene_id: int, now: Optional[datetime] = None) -> "BatchQueue":
        return self._resolve(scene_id, failed=True, now=now)

    def _resolve(self, scene_id: int, failed: bool, now: Optional[datetime]) -> "BatchQueue":
        if scene_id not in self.pending:
            raise ValueError(f"Scene {scene_id} is not pending in this batch")
        completed = list(self.completed)
        failures = list(self.failed)
        (failures if failed else completed).append(scene_id)
        return BatchQueue(
            scene_ids=list(self.scene_ids),
            pending=[pending_id for pending_id in self.pending if pending_id != scene_id],
            completed=completed,
            failed=failures,
            total_scenes=self.total_scenes,
            timestamp=now or utc_now(),
        )


class BatchQueueStore:
    """Write-through persistence for the batch queue blob."""

    def __init__(self, store: KeyValueStore, resume_window: timedelta = timedelta(hours=24)) -> None:
        self._store = store
        self.resume_window = resume_window

    def load(self) -> Optional[BatchQueue]:
        try:
            raw = self._store.get(BATCH_QUEUE_KEY)
        except StorageError:
            logger.warning("Failed to read persisted batch queue; treating it as absent", exc_info=True)
            return None
        if raw is None:
            return None
        try:
            return BatchQueue.model_validate(json.loads(raw))
        except (ValueError, ValidationError):
            logger.warning("Discarding unreadable batch queue", exc_info=True)
            return None

    def load_resumable(self, now: Optional[datetime] = None) -> Optional[BatchQueue]:
        """Return a persisted queue worth resuming, discarding stale ones."""
        queue = self.load()
        if queue is None:
            return None
        if not queue.is_fresh(self.resume_window, now):
            logger.info("Discarding batch queue from %s (older than %s)", queue.timestamp, self.resume_window)
            self.clear()
            return None
        if not queue.has_pending:
            return None
        return queue

    def save(self, queue: BatchQueue) -> bool:
        try:
            self._store.put(BATCH_QUEUE_KEY, json.dumps(queue.model_dump(mode="json")))
        except StorageError:
            logger.warning("Failed to persist batch queue; progress is in memory only", exc_info=True)
            return False
        return True

    def clear(self) -> None:
        try:
            self._store.delete(BATCH_QUEUE_KEY)
        except StorageError:
            logger.warning("Failed to clear persisted batch queue", exc_info=True)
