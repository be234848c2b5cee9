from __future__ import annotations

from typing import List, Optional

import pytest

from factories import FakeGenerationService, RecordingSleep
from studioflow.batch.generation import SceneGenerator
from studioflow.batch.queue import BatchQueueStore
from studioflow.batch.runner import BatchRunner, BatchSettings
from studioflow.project.cell import ProjectCell
from studioflow.project.model import Project
from studioflow.project.store import MemoryStore


@pytest.fixture
def timeline() -> List[tuple]:
    return []


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def service(timeline) -> FakeGenerationService:
    return FakeGenerationService(timeline=timeline)


@pytest.fixture
def sleep(timeline) -> RecordingSleep:
    return RecordingSleep(timeline=timeline)


@pytest.fixture
def build_runner(store, service, sleep):
    """Wire a runner around ``project`` with the shared fakes."""

    def _build(project: Project, settings: Optional[BatchSettings] = None):
        cell = ProjectCell(project)
        queue_store = BatchQueueStore(store)
        runner = BatchRunner(cell, SceneGenerator(cell, service), queue_store, settings, sleep=sleep)
        return cell, runner, queue_store

    return _build
