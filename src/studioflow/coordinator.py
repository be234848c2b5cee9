from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, List, Optional

from studioflow.batch.generation import GenerationStage, SceneGenerator
from studioflow.batch.queue import BatchQueue, BatchQueueStore
from studioflow.batch.runner import BatchReport, BatchRunner, BatchSettings
from studioflow.config import StudioConfig
from studioflow.interventions import (
    Intervention,
    TriggerEngine,
    UnknownActionError,
    idle_intervention,
    phase_entry_intervention,
)
from studioflow.media.service import GenerationService
from studioflow.project.cell import ProjectCell
from studioflow.project.model import Asset, AssetStatus, DirectorMode, LogType, Phase, Project
from studioflow.project.store import ProjectRepository, SaveResult, StorageError
from studioflow.project.time_utils import utc_now
from studioflow.workflow import (
    PhaseChecklist,
    QualityGate,
    TransitionDecision,
    WorkflowStep,
    build_checklist,
    can_transition,
    classify,
    evaluate_gates,
    mark_step_completed,
    mark_step_skipped,
    next_suggested_step,
)

logger = logging.getLogger(__name__)

ActionHandler = Callable[["ProductionCoordinator"], None]


@dataclass(frozen=True)
class NavigationResult:
    phase: Phase
    moved: bool
    decision: TransitionDecision
    bypassed: bool = False


class ProductionCoordinator:
    """Sole owner of the project state.

    Every change goes through the project cell; after each one the snapshot is
    persisted and the trigger engine observes the ``(current, previous)`` pair.
    """

    def __init__(
        self,
        project: Project,
        repository: ProjectRepository,
        queue_store: BatchQueueStore,
        service: GenerationService,
        settings: Optional[BatchSettings] = None,
        engine: Optional[TriggerEngine] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.repository = repository
        self.queue_store = queue_store
        self.engine = engine or TriggerEngine()
        self.cell = ProjectCell(project)
        self.generator = SceneGenerator(self.cell, service)
        self.runner = BatchRunner(self.cell, self.generator, queue_store, settings, sleep=sleep, clock=clock)
        self._clock = clock
        self._actions: Dict[str, ActionHandler] = {}
        self._storage_warned = False
        self.cell.subscribe(self._on_change)
        self.register_action("generate_remaining_scenes", lambda coordinator: coordinator.run_batch())
        self.register_action("set_key_art", lambda coordinator: coordinator.set_key_art())

    @classmethod
    def from_config(cls, config: StudioConfig, **overrides) -> "ProductionCoordinator":
        store = config.build_store()
        repository = ProjectRepository(store)
        try:
            project = repository.load()
        except StorageError:
            logger.warning("Could not read the saved project; starting from an empty one", exc_info=True)
            project = None
        project = project or Project(director_mode=config.director_mode)
        return cls(
            project=project,
            repository=repository,
            queue_store=BatchQueueStore(store, resume_window=config.batch.resume_window),
            service=overrides.pop("service", None) or config.build_generation_service(),
            settings=config.batch,
            **overrides,
        )

    @classmethod
    def default(cls, config: StudioConfig | None = None) -> "ProductionCoordinator":
        return cls.from_config(config or StudioConfig())

    # State --------------------------------------------------------------

    @property
    def project(self) -> Project:
        return self.cell.get()

    def update(self, change: Callable[[Project], Project]) -> Project:
        return self.cell.update(change)

    def add_log(self, message: str, log_type: LogType = LogType.SYSTEM) -> None:
        self.cell.update(lambda p: p.with_log(message, log_type))

    def record_tool_usage(self, tool_id: str) -> None:
        self.cell.update(lambda p: p.record_tool_usage(tool_id).touch(self._clock()))

    def set_key_art(self, scene_id: Optional[int] = None) -> None:
        project = self.project
        if scene_id is None:
            scene_id = next(
                (s.id for s in project.scenes if project.asset(s.id).status == AssetStatus.COMPLETE),
                None,
            )
            if scene_id is None:
                raise ValueError("No generated scene is available as Key Art")
        elif project.scene(scene_id) is None:
            raise KeyError(f"Unknown scene {scene_id}")
        self.cell.update(
            lambda p: p.model_copy(update={"key_art_scene_id": scene_id})
            .with_log(f"Scene #{scene_id} set as Key Art reference", LogType.SUCCESS)
            .touch(self._clock())
        )

    def _on_change(self, current: Project, previous: Project) -> None:
        result = self.repository.save(current)
        if result.persisted:
            self._storage_warned = False
        elif not self._storage_warned:
            self._storage_warned = True
            self.cell.update(
                lambda p: p.with_log("Storage is unavailable; changes are kept in memory only", LogType.ERROR)
            )

        phase = classify(current)
        if phase != classify(previous):
            logger.info("Project reached %s phase", phase.value)
            entry = phase_entry_intervention(phase, current)
            if entry is not None and current.director_mode == DirectorMode.GUIDED:
                self.engine.surface([entry])
        self.engine.observe(current, previous, current.director_mode)

    # Workflow ----------------------------------------------------------

    @property
    def phase(self) -> Phase:
        """Phase the project has reached."""
        return classify(self.project)

    @property
    def active_phase(self) -> Phase:
        """Phase the user is working in: the last one navigated to, else the one reached."""
        project = self.project
        return project.active_phase or classify(project)

    def checklist(self, phase: Optional[Phase] = None) -> PhaseChecklist:
        return build_checklist(phase or self.active_phase, self.project)

    def gates(self, phase: Optional[Phase] = None) -> List[QualityGate]:
        return evaluate_gates(phase or self.active_phase, self.project)

    def next_step(self, phase: Optional[Phase] = None) -> Optional[WorkflowStep]:
        return next_suggested_step(phase or self.active_phase, self.project)

    def navigate(self, target: Phase) -> NavigationResult:
        decision = can_transition(self.active_phase, target, self.project)
        expert = self.project.director_mode == DirectorMode.EXPERT
        if not decision.allowed and not expert:
            self.add_log(
                f"Cannot enter {target.value}: " + "; ".join(gate.message for gate in decision.blockers),
                LogType.ERROR,
            )
            return NavigationResult(phase=self.active_phase, moved=False, decision=decision)
        bypassed = not decision.allowed
        if bypassed:
            logger.info("Expert mode bypassing %d blockers to enter %s", len(decision.blockers), target.value)
        self.cell.update(lambda p: p.model_copy(update={"active_phase": target}).touch(self._clock()))
        return NavigationResult(phase=target, moved=True, decision=decision, bypassed=bypassed)

    def mark_step(self, phase: Phase, step_id: str, completed: bool = True) -> Project:
        mark = mark_step_completed if completed else mark_step_skipped
        return self.cell.update(lambda p: mark(phase, step_id, p).touch(self._clock()))

    def override_gate(self, gate_id: str) -> Project:
        def _override(project: Project) -> Project:
            if gate_id in project.quality_gate_overrides:
                return project
            overrides = [*project.quality_gate_overrides, gate_id]
            return project.model_copy(update={"quality_gate_overrides": overrides}).with_log(
                f"Quality gate '{gate_id}' overridden", LogType.SYSTEM
            )

        return self.cell.update(_override)

    # Batch -------------------------------------------------------------

    def resumable_batch(self) -> Optional[BatchQueue]:
        return self.queue_store.load_resumable(self._clock())

    def run_batch(self, cancel: Optional[threading.Event] = None, fresh: bool = False) -> BatchReport:
        return self.runner.run(cancel=cancel, fresh=fresh)

    def retry_scene(self, scene_id: int, stage: GenerationStage = GenerationStage.FULL) -> Asset:
        """Regenerate one scene outside of a batch; failures propagate to the caller."""
        asset = self.generator.generate(scene_id, GenerationStage(stage))
        self.add_log(f"Scene #{scene_id} regenerated ({GenerationStage(stage).value})", LogType.SUCCESS)
        return asset

    # Interventions -----------------------------------------------------

    @property
    def interventions(self) -> List[Intervention]:
        return self.engine.active

    def refresh_interventions(self, now: Optional[datetime] = None) -> List[Intervention]:
        """Evaluate the library against the current snapshot as if freshly loaded."""
        project = self.project
        if project.director_mode == DirectorMode.GUIDED:
            entry = phase_entry_intervention(self.active_phase, project)
            if entry is not None:
                self.engine.surface([entry])
        self.engine.observe(project, None, project.director_mode)
        self.check_idle(now)
        return self.engine.active

    def check_idle(self, now: Optional[datetime] = None) -> Optional[Intervention]:
        project = self.project
        if project.director_mode != DirectorMode.GUIDED:
            return None
        intervention = idle_intervention(self.active_phase, project, now or self._clock())
        if intervention is not None:
            self.engine.surface([intervention])
        return intervention

    def dismiss(self, intervention_id: str) -> Project:
        return self.cell.update(lambda p: self.engine.dismiss(intervention_id, p).touch(self._clock()))

    def register_action(self, action_id: str, handler: ActionHandler) -> None:
        self._actions[action_id] = handler

    def execute_action(self, intervention_id: str, action_id: str) -> None:
        handler = self._actions.get(action_id)
        if handler is None:
            raise UnknownActionError(f"No handler registered for action '{action_id}'")
        self.cell.update(lambda p: self.engine.execute(intervention_id, action_id, p).touch(self._clock()))
        handler(self)

    # Archive -----------------------------------------------------------

    def archive(self) -> SaveResult:
        result = self.repository.archive(self.project)
        if result.persisted:
            self.add_log("Project archived", LogType.SUCCESS)
        else:
            self.add_log("Project could not be archived; storage is unavailable", LogType.ERROR)
        return result
