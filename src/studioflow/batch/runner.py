from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, List, Optional

from pydantic import BaseModel, Field

from studioflow.batch.generation import SceneGenerationError, SceneGenerator
from studioflow.batch.queue import BatchQueue, BatchQueueStore
from studioflow.project.cell import ProjectCell
from studioflow.project.model import AssetStatus, LogType
from studioflow.project.time_utils import utc_now

logger = logging.getLogger(__name__)


class BatchSettings(BaseModel):
    """Retry and pacing policy for a batch run. Delays are in seconds."""

    max_retries: int = Field(default=2, ge=0)
    retry_base_delay: float = Field(default=3.0, ge=0)
    retry_backoff_multiplier: float = Field(default=2.0, ge=0)
    failure_cooldown: float = Field(default=30.0, ge=0)
    inter_scene_delay: float = Field(default=2.0, ge=0)
    resume_window_hours: float = Field(default=24, gt=0)

    @property
    def resume_window(self) -> timedelta:
        return timedelta(hours=self.resume_window_hours)

    def retry_delay(self, attempt: int) -> float:
        return self.retry_base_delay * self.retry_backoff_multiplier * attempt


class BatchOutcome(str, Enum):
    CANCELLED = "cancelled"
    COMPLETED_WITH_FAILURES = "completed_with_failures"
    SUCCEEDED = "succeeded"


@dataclass(frozen=True)
class BatchReport:
    outcome: BatchOutcome
    queue: BatchQueue

    @property
    def completed(self) -> List[int]:
        return list(self.queue.completed)

    @property
    def failed(self) -> List[int]:
        return list(self.queue.failed)

    @property
    def pending(self) -> List[int]:
        return list(self.queue.pending)


class BatchRunner:
    """Sequentially generates every pending scene of a batch queue.

    One scene is in flight at a time. The queue is written through to the
    store after every outcome so an interrupted run can be resumed. The
    ``cancel`` event is only checked at the top of each iteration and before
    each retry; a generation call or delay already in progress runs to its end.
    """

    def __init__(
        self,
        cell: ProjectCell,
        generator: SceneGenerator,
        queue_store: BatchQueueStore,
        settings: Optional[BatchSettings] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._cell = cell
        self._generator = generator
        self._queue_store = queue_store
        self.settings = settings or BatchSettings()
        self._sleep = sleep
        self._clock = clock

    def prepare(self, fresh: bool = False) -> BatchQueue:
        """Return the queue to run: a resumable one unless ``fresh``, else a new snapshot."""
        if fresh:
            self._queue_store.clear()
        else:
            queue = self._queue_store.load_resumable(self._clock())
            if queue is not None:
                logger.info(
                    "Resuming batch: %d pending, %d completed, %d failed",
                    len(queue.pending), len(queue.completed), len(queue.failed),
                )
                return queue
        queue = BatchQueue.start(self._cell.get().scene_ids, now=self._clock())
        self._queue_store.save(queue)
        return queue

    def run(self, cancel: Optional[threading.Event] = None, fresh: bool = False) -> BatchReport:
        cancel = cancel or threading.Event()
        queue = self.prepare(fresh=fresh)
        self._log(f"Batch manifest started for {len(queue.pending)} of {queue.total_scenes} scenes")

        for scene_id in list(queue.scene_ids):
            if cancel.is_set():
                return self._cancelled(queue)
            if scene_id not in queue.pending:
                continue

            project = self._cell.get()
            if project.scene(scene_id) is None:
                logger.warning("Scene %s was removed during the batch; marking failed", scene_id)
                queue = self._record(queue.mark_failed(scene_id, now=self._clock()))
                continue
            if project.asset(scene_id).status == AssetStatus.COMPLETE:
                logger.debug("Scene %s already complete; skipping generation", scene_id)
                queue = self._record(queue.mark_completed(scene_id, now=self._clock()))
                continue

            succeeded = self._generate_with_retries(scene_id, cancel)
            if succeeded is None:
                return self._cancelled(queue)
            if succeeded:
                queue = self._record(queue.mark_completed(scene_id, now=self._clock()))
            else:
                queue = self._record(queue.mark_failed(scene_id, now=self._clock()))
                if self._cell.get().scene(scene_id) is None:
                    logger.warning("Scene %s was removed during generation; marking failed", scene_id)
                    continue
                logger.error("Scene %s failed after %d attempts", scene_id, self.settings.max_retries + 1)
                if queue.has_pending and not cancel.is_set():
                    logger.info("Cooling down for %.1fs before the next scene", self.settings.failure_cooldown)
                    self._sleep(self.settings.failure_cooldown)

            if queue.has_pending and not cancel.is_set():
                self._sleep(self.settings.inter_scene_delay)

        return self._finish(queue)

    # Internal helpers -------------------------------------------------

    def _generate_with_retries(self, scene_id: int, cancel: threading.Event) -> Optional[bool]:
        """Return True on success, False when retries are exhausted, None when cancelled."""
        attempts = self.settings.max_retries + 1
        for attempt in range(attempts):
            if attempt:
                if cancel.is_set():
                    logger.info("Cancellation requested before retry of scene %s", scene_id)
                    return None
                delay = self.settings.retry_delay(attempt)
                logger.warning("Retrying scene %s (%d/%d) in %.1fs", scene_id, attempt, self.settings.max_retries, delay)
                self._sleep(delay)
                if cancel.is_set():
                    logger.info("Cancellation requested before retry of scene %s", scene_id)
                    return None
            try:
                self._generator.generate(scene_id)
                return True
            except SceneGenerationError as exc:
                logger.warning("Scene %s attempt %d/%d failed: %s", scene_id, attempt + 1, attempts, exc.message)
                if exc.stage is None:
                    return False
        return False

    def _record(self, queue: BatchQueue) -> BatchQueue:
        self._queue_store.save(queue)
        return queue

    def _log(self, message: str, log_type: LogType = LogType.SYSTEM) -> None:
        self._cell.update(lambda p: p.with_log(message, log_type))

    def _cancelled(self, queue: BatchQueue) -> BatchReport:
        logger.info("Batch cancelled with %d scenes pending", len(queue.pending))
        self._log(f"Batch manifest paused: {len(queue.pending)} scenes remain queued for resume")
        return BatchReport(outcome=BatchOutcome.CANCELLED, queue=queue)

    def _finish(self, queue: BatchQueue) -> BatchReport:
        self._queue_store.clear()
        if queue.failed:
            logger.warning("Batch finished with %d failed scenes: %s", len(queue.failed), queue.failed)
            self._log(
                f"Batch manifest finished: {len(queue.completed)} complete, "
                f"{len(queue.failed)} failed. Retry failed scenes individually.",
                LogType.ERROR,
            )
            return BatchReport(outcome=BatchOutcome.COMPLETED_WITH_FAILURES, queue=queue)
        logger.info("Batch finished: %d scenes complete", len(queue.completed))
        self._log(f"Batch manifest complete: {len(queue.completed)} scenes generated", LogType.SUCCESS)
        return BatchReport(outcome=BatchOutcome.SUCCEEDED, queue=queue)
