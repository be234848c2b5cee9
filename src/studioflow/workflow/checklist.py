from __future__ import annotations

import math
from dataclasses import dataclass, replace
from enum import Enum
from typing import Callable, Dict, List, Optional, Tuple

from studioflow.project.model import Phase, PhaseProgress, Project
from studioflow.project.time_utils import utc_now


class StepStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    SKIPPED = "skipped"


class StepPriority(str, Enum):
    CRITICAL = "critical"
    RECOMMENDED = "recommended"
    OPTIONAL = "optional"


class UnknownStepError(KeyError):
    """Raised when a step id is not part of the phase's checklist."""


Signal = Callable[[Project], bool]


@dataclass(frozen=True)
class WorkflowStep:
    id: str
    label: str
    description: str
    priority: StepPriority
    auto_executable: bool = False
    tool_id: Optional[str] = None
    status: StepStatus = StepStatus.PENDING


@dataclass(frozen=True)
class _StepDefinition:
    step: WorkflowStep
    # None means only a user override can complete the step.
    signal: Optional[Signal] = None


@dataclass(frozen=True)
class PhaseChecklist:
    phase: Phase
    required_steps: List[WorkflowStep]
    optional_steps: List[WorkflowStep]

    @property
    def steps(self) -> List[WorkflowStep]:
        return [*self.required_steps, *self.optional_steps]

    @property
    def completion_percentage(self) -> int:
        steps = self.steps
        if not steps:
            return 100
        completed = sum(1 for step in steps if step.status == StepStatus.COMPLETED)
        return int(math.floor(completed / len(steps) * 100 + 0.5))


def _has_script(project: Project) -> bool:
    return len(project.script.strip()) > 50


def _all_voiced(project: Project) -> bool:
    return all(character.voice_id for character in project.characters)


def _step(
    step_id: str,
    label: str,
    description: str,
    priority: StepPriority,
    *,
    auto: bool = False,
    tool_id: str | None = None,
    signal: Signal | None = None,
) -> _StepDefinition:
    return _StepDefinition(
        step=WorkflowStep(
            id=step_id,
            label=label,
            description=description,
            priority=priority,
            auto_executable=auto,
            tool_id=tool_id,
        ),
        signal=signal,
    )


_CATALOG: Dict[Phase, Tuple[List[_StepDefinition], List[_StepDefinition]]] = {
    Phase.GENESIS: (
        [
            _step("write_script", "Write Script", "Create your script with scenes in [Scene: ...] format",
                  StepPriority.CRITICAL, signal=_has_script),
            _step("analyze_script", "Analyze Script", "Extract scenes and characters from script",
                  StepPriority.CRITICAL, auto=True, signal=lambda p: len(p.scenes) > 0),
        ],
        [
            _step("set_style", "Set Global Style", "Define the visual style for your production",
                  StepPriority.RECOMMENDED, signal=lambda p: bool(p.global_style)),
            _step("set_aspect_ratio", "Set Aspect Ratio", "Choose aspect ratio (16:9, 9:16, etc.)",
                  StepPriority.RECOMMENDED, signal=lambda p: bool(p.aspect_ratio)),
            _step("add_moodboard", "Add Moodboard Reference", "Upload reference images for visual inspiration",
                  StepPriority.OPTIONAL, tool_id="moodboard", signal=lambda p: bool(p.modules.get("outline"))),
            _step("run_script_doctor", "Run Script Doctor", "Analyze script for narrative issues and improvements",
                  StepPriority.OPTIONAL, auto=True, tool_id="script-doctor",
                  signal=lambda p: p.has_used_tool("script-doctor")),
        ],
    ),
    Phase.MANIFEST: (
        [
            _step("assign_voices", "Assign Voices to Characters", "All characters need voice assignments",
                  StepPriority.CRITICAL, auto=True, signal=_all_voiced),
        ],
        [
            _step("run_continuity_audit", "Run Continuity Auditor", "Check character consistency across scenes",
                  StepPriority.RECOMMENDED, auto=True, tool_id="continuity-auditor",
                  signal=lambda p: p.has_used_tool("continuity-auditor")),
            _step("review_timeline", "Review Scene Pacing", "Check scene timing and transitions in timeline",
                  StepPriority.RECOMMENDED),
            _step("add_character_references", "Add Character Reference Images",
                  "Upload reference images for characters", StepPriority.OPTIONAL),
            _step("adjust_scene_descriptions", "Adjust Scene Descriptions",
                  "Fine-tune scene descriptions and prompts", StepPriority.OPTIONAL),
        ],
    ),
    Phase.SYNTHESIS: (
        [
            _step("generate_assets", "Generate All Scene Assets",
                  "Generate images, video, and audio for all scenes",
                  StepPriority.CRITICAL, auto=True, signal=lambda p: p.all_assets_complete),
        ],
        [
            _step("set_key_art", "Set Key Art Reference",
                  "Choose a scene as the visual reference for consistency",
                  StepPriority.RECOMMENDED, signal=lambda p: p.key_art_scene_id is not None),
            _step("review_failed_assets", "Review and Retry Failed Assets", "Fix any failed asset generations",
                  StepPriority.RECOMMENDED),
            _step("add_broll", "Add B-Roll Scenes", "Add supplementary B-Roll for visual variety",
                  StepPriority.OPTIONAL, tool_id="broll-suggester"),
            _step("adjust_audio_mixing", "Adjust Audio Mixing", "Fine-tune audio levels per scene",
                  StepPriority.OPTIONAL, tool_id="audio-mixer"),
        ],
    ),
    Phase.POST: (
        [],
        [
            _step("run_viral_analysis", "Analyze Viral Potential", "Check hook strength and retention potential",
                  StepPriority.RECOMMENDED, auto=True, tool_id="youtube-optimizer",
                  signal=lambda p: p.viral_data is not None),
            _step("generate_seo_metadata", "Generate YouTube SEO Metadata",
                  "Create optimized title, description, and tags",
                  StepPriority.RECOMMENDED, auto=True, tool_id="youtube-optimizer"),
            _step("apply_vfx_mastering", "Apply VFX Mastering", "Add film grain, bloom, color grading, etc.",
                  StepPriority.RECOMMENDED, tool_id="vfx-master", signal=lambda p: p.mastering is not None),
            _step("generate_thumbnail", "Generate Thumbnail", "Create a compelling thumbnail",
                  StepPriority.OPTIONAL),
            _step("generate_social_posts", "Generate Social Media Posts",
                  "Create promotional content for social platforms", StepPriority.OPTIONAL),
        ],
    ),
}


def _derive(definition: _StepDefinition, progress: Optional[PhaseProgress], project: Project) -> WorkflowStep:
    step = definition.step
    if progress is not None:
        if step.id in progress.completed_steps:
            return replace(step, status=StepStatus.COMPLETED)
        if step.id in progress.skipped_steps:
            return replace(step, status=StepStatus.SKIPPED)
    if definition.signal is not None and definition.signal(project):
        return replace(step, status=StepStatus.COMPLETED)
    return step


def build_checklist(phase: Phase, project: Project) -> PhaseChecklist:
    required, optional = _CATALOG[phase]
    progress = project.workflow_progress.get(phase)
    return PhaseChecklist(
        phase=phase,
        required_steps=[_derive(d, progress, project) for d in required],
        optional_steps=[_derive(d, progress, project) for d in optional],
    )


def next_suggested_step(phase: Phase, project: Project) -> Optional[WorkflowStep]:
    checklist = build_checklist(phase, project)
    pending_required = [s for s in checklist.required_steps if s.status == StepStatus.PENDING]
    pending_optional = [s for s in checklist.optional_steps if s.status == StepStatus.PENDING]
    for candidates, priority in (
        (pending_required, StepPriority.CRITICAL),
        (pending_required, StepPriority.RECOMMENDED),
        (pending_optional, StepPriority.RECOMMENDED),
    ):
        for step in candidates:
            if step.priority == priority:
                return step
    return pending_optional[0] if pending_optional else None


def _step_ids(phase: Phase) -> List[str]:
    required, optional = _CATALOG[phase]
    return [d.step.id for d in (*required, *optional)]


def _set_override(phase: Phase, step_id: str, project: Project, completed: bool) -> Project:
    if step_id not in _step_ids(phase):
        raise UnknownStepError(f"Step '{step_id}' is not part of the {phase.value} checklist")
    current = project.workflow_progress.get(phase) or PhaseProgress()
    completed_steps = [s for s in current.completed_steps if s != step_id]
    skipped_steps = [s for s in current.skipped_steps if s != step_id]
    if completed:
        completed_steps.append(step_id)
    else:
        skipped_steps.append(step_id)
    progress = dict(project.workflow_progress)
    progress[phase] = PhaseProgress(
        completed_steps=completed_steps,
        skipped_steps=skipped_steps,
        last_updated=utc_now(),
    )
    return project.model_copy(update={"workflow_progress": progress})


def mark_step_completed(phase: Phase, step_id: str, project: Project) -> Project:
    return _set_override(phase, step_id, project, completed=True)


def mark_step_skipped(phase: Phase, step_id: str, project: Project) -> Project:
    return _set_override(phase, step_id, project, completed=False)
