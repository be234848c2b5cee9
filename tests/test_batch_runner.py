from __future__ import annotations

import json
import threading
from datetime import timedelta

from factories import image_payload, make_project
from studioflow.batch.generation import SceneGenerator
from studioflow.batch.queue import BatchQueue, BatchQueueStore
from studioflow.batch.runner import BatchOutcome, BatchRunner, BatchSettings
from studioflow.project.cell import ProjectCell
from studioflow.project.model import AssetStatus, LogType
from studioflow.project.store import BATCH_QUEUE_KEY, MemoryStore
from studioflow.project.time_utils import utc_now


class RecordingQueueStore(MemoryStore):
    def __init__(self) -> None:
        super().__init__()
        self.queue_writes: list[str] = []

    def put(self, key: str, value: str) -> None:
        if key == BATCH_QUEUE_KEY:
            self.queue_writes.append(value)
        super().put(key, value)


def test_exhausted_scene_is_failed_and_followed_by_cooldown(build_runner, service, sleep, store, timeline):
    service.image_failures = {3: -1}
    cell, runner, queue_store = build_runner(make_project(scene_count=5))

    report = runner.run()

    assert report.outcome == BatchOutcome.COMPLETED_WITH_FAILURES
    assert report.completed == [1, 2, 4, 5]
    assert report.failed == [3]
    assert report.pending == []
    assert service.image_calls() == [1, 2, 3, 3, 3, 4, 5]
    assert sleep.delays == [2.0, 2.0, 6.0, 12.0, 30.0, 2.0, 2.0]
    cooldown_at = timeline.index(("sleep", 30.0))
    assert timeline[cooldown_at - 1] == ("image", 3)
    assert timeline.index(("image", 4)) > cooldown_at
    assert cell.get().asset(3).status == AssetStatus.ERROR
    assert "quota exhausted" in cell.get().asset(3).error
    assert all(cell.get().asset(scene_id).status == AssetStatus.COMPLETE for scene_id in (1, 2, 4, 5))
    assert store.get(BATCH_QUEUE_KEY) is None


def test_cancel_during_retry_keeps_queue_for_resume(build_runner, service, sleep, store):
    cell, runner, queue_store = build_runner(make_project(scene_count=5))
    cancel = threading.Event()
    service.image_failures = {3: 1}
    service.on_image_failure = lambda scene: cancel.set()

    report = runner.run(cancel=cancel)

    assert report.outcome == BatchOutcome.CANCELLED
    assert report.completed == [1, 2]
    assert report.pending == [3, 4, 5]
    assert report.failed == []
    assert service.image_calls() == [1, 2, 3]
    assert sleep.delays == [2.0, 2.0]
    persisted = queue_store.load()
    assert persisted is not None
    assert persisted.pending == [3, 4, 5]
    assert persisted.completed == [1, 2]


def test_partition_invariant_holds_at_every_write(service, sleep):
    store = RecordingQueueStore()
    service.image_failures = {2: -1}
    cell = ProjectCell(make_project(scene_count=4))
    runner = BatchRunner(cell, SceneGenerator(cell, service), BatchQueueStore(store), sleep=sleep)

    runner.run()

    assert len(store.queue_writes) == 5
    for raw in store.queue_writes:
        payload = json.loads(raw)
        groups = [payload["pending"], payload["completed"], payload["failed"]]
        flat = [scene_id for group in groups for scene_id in group]
        assert sorted(flat) == [1, 2, 3, 4]
        assert len(flat) == len(set(flat))


def test_resume_skips_resolved_and_already_complete_scenes(build_runner, service, store):
    project = make_project(scene_count=3).update_asset(2, status=AssetStatus.COMPLETE)
    cell, runner, queue_store = build_runner(project)
    queue_store.save(BatchQueue.start([1, 2, 3]).mark_completed(1))

    report = runner.run()

    assert report.outcome == BatchOutcome.SUCCEEDED
    assert report.completed == [1, 2, 3]
    assert service.image_calls() == [3]
    assert cell.get().asset(1).status == AssetStatus.PENDING


def test_stale_queue_starts_a_fresh_run(build_runner, service):
    cell, runner, queue_store = build_runner(make_project(scene_count=2))
    stale = utc_now() - timedelta(hours=25)
    queue_store.save(BatchQueue.start([1, 2], now=stale).mark_completed(1, now=stale))

    report = runner.run()

    assert report.completed == [1, 2]
    assert service.image_calls() == [1, 2]


def test_fresh_run_ignores_resumable_queue(build_runner, service):
    cell, runner, queue_store = build_runner(make_project(scene_count=2))
    queue_store.save(BatchQueue.start([1, 2]).mark_completed(1))

    runner.run(fresh=True)

    assert service.image_calls() == [1, 2]


def test_scene_order_is_captured_at_start(build_runner, service):
    project = make_project(scene_count=3)
    cell, runner, _ = build_runner(project)
    service.on_image = lambda scene: cell.update(lambda p: p.add_scene(p.scenes[0])) if scene.id == 1 else None

    report = runner.run()

    assert report.queue.scene_ids == [1, 2, 3]
    assert service.image_calls() == [1, 2, 3]
    assert len(cell.get().scenes) == 4


def test_scene_removed_mid_batch_is_failed_without_retry(build_runner, service, sleep):
    cell, runner, _ = build_runner(make_project(scene_count=3))
    service.on_image = lambda scene: cell.update(lambda p: p.remove_scene(2)) if scene.id == 1 else None

    report = runner.run()

    assert report.completed == [1, 3]
    assert report.failed == [2]
    assert service.image_calls() == [1, 3]
    assert sleep.delays == [2.0]


def test_scene_removed_during_its_own_generation_leaves_no_orphan_asset(build_runner, service, sleep):
    cell, runner, _ = build_runner(make_project(scene_count=3))
    service.on_image = lambda scene: cell.update(lambda p: p.remove_scene(2)) if scene.id == 2 else None

    report = runner.run()

    assert report.completed == [1, 3]
    assert report.failed == [2]
    assert service.image_calls() == [1, 2, 3]
    assert sleep.delays == [2.0]
    project = cell.get()
    assert sorted(project.assets) == project.scene_ids == [1, 3]
    assert not any("Scene #2" in entry.message for entry in project.production_log)


def test_status_path_for_a_generated_scene(build_runner):
    cell, runner, _ = build_runner(make_project(scene_count=1))
    statuses = []
    cell.subscribe(lambda current, previous: statuses.append(current.asset(1).status))

    runner.run()

    path = [status for index, status in enumerate(statuses) if index == 0 or statuses[index - 1] != status]
    assert path == [
        AssetStatus.PENDING,
        AssetStatus.GENERATING_IMAGE,
        AssetStatus.GENERATING_VIDEO,
        AssetStatus.GENERATING_AUDIO,
        AssetStatus.COMPLETE,
    ]


def test_invalid_payload_counts_as_failed_attempt(build_runner, service, sleep):
    attempts = iter(["data:image/png;base64,abc", image_payload()])
    service.image_result = lambda scene: next(attempts)
    cell, runner, _ = build_runner(make_project(scene_count=1))

    report = runner.run()

    assert report.outcome == BatchOutcome.SUCCEEDED
    assert service.image_calls() == [1, 1]
    assert sleep.delays == [6.0]


def test_audio_failure_does_not_fail_the_scene(build_runner, service):
    service.audio_error = RuntimeError("voice quota")
    cell, runner, _ = build_runner(make_project(scene_count=1))

    report = runner.run()

    asset = cell.get().asset(1)
    assert report.outcome == BatchOutcome.SUCCEEDED
    assert asset.status == AssetStatus.COMPLETE
    assert asset.audio_url is None
    assert "voice quota" in asset.error
    assert service.image_calls() == [1]


def test_retry_policy_comes_from_settings(build_runner, service, sleep):
    service.image_failures = {1: -1}
    settings = BatchSettings(
        max_retries=3, retry_base_delay=1.0, retry_backoff_multiplier=1.5, failure_cooldown=5.0, inter_scene_delay=0.5
    )
    cell, runner, _ = build_runner(make_project(scene_count=2), settings)

    runner.run()

    assert service.image_calls() == [1, 1, 1, 1, 2]
    assert sleep.delays == [1.5, 3.0, 4.5, 5.0, 0.5]


def test_successful_batch_logs_completion(build_runner):
    cell, runner, queue_store = build_runner(make_project(scene_count=2))

    report = runner.run()

    assert report.outcome == BatchOutcome.SUCCEEDED
    entry = cell.get().production_log[0]
    assert entry.type == LogType.SUCCESS
    assert "2 scenes generated" in entry.message
    assert queue_store.load() is None


def test_empty_project_succeeds_immediately(build_runner, service, sleep):
    cell, runner, _ = build_runner(make_project(scene_count=0))

    report = runner.run()

    assert report.outcome == BatchOutcome.SUCCEEDED
    assert service.calls == []
    assert sleep.delays == []
