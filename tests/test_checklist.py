from __future__ import annotations

import pytest

from factories import make_project
from studioflow.project.model import Character, MasteringSettings, Phase, Project
from studioflow.workflow import (
    PhaseChecklist,
    StepStatus,
    UnknownStepError,
    build_checklist,
    mark_step_completed,
    mark_step_skipped,
    next_suggested_step,
)


def _status(checklist: PhaseChecklist, step_id: str) -> StepStatus:
    return next(step.status for step in checklist.steps if step.id == step_id)


def test_genesis_steps_derive_from_project_signals():
    empty = build_checklist(Phase.GENESIS, Project(script="too short"))
    assert _status(empty, "write_script") == StepStatus.PENDING
    assert _status(empty, "analyze_script") == StepStatus.PENDING

    analyzed = build_checklist(Phase.GENESIS, make_project(global_style="noir"))
    assert _status(analyzed, "write_script") == StepStatus.COMPLETED
    assert _status(analyzed, "analyze_script") == StepStatus.COMPLETED
    assert _status(analyzed, "set_style") == StepStatus.COMPLETED
    assert _status(analyzed, "set_aspect_ratio") == StepStatus.PENDING


def test_required_and_optional_steps_are_separated():
    checklist = build_checklist(Phase.GENESIS, Project())
    assert [step.id for step in checklist.required_steps] == ["write_script", "analyze_script"]
    assert "add_moodboard" in [step.id for step in checklist.optional_steps]


def test_completion_percentage_rounds_over_all_steps():
    checklist = build_checklist(Phase.GENESIS, make_project())
    # write_script and analyze_script out of six steps.
    assert checklist.completion_percentage == 33


def test_completion_percentage_of_empty_checklist_is_full():
    assert PhaseChecklist(phase=Phase.POST, required_steps=[], optional_steps=[]).completion_percentage == 100


def test_voice_step_requires_every_character_voiced():
    project = make_project(voiced=False)
    assert _status(build_checklist(Phase.MANIFEST, project), "assign_voices") == StepStatus.PENDING

    voiced = project.model_copy(
        update={"characters": [Character(id="c1", name="Keeper", voice_id="v")]}
    )
    assert _status(build_checklist(Phase.MANIFEST, voiced), "assign_voices") == StepStatus.COMPLETED


def test_post_checklist_reads_viral_and_mastering_signals():
    project = make_project(mastering=MasteringSettings())
    checklist = build_checklist(Phase.POST, project)
    assert checklist.required_steps == []
    assert _status(checklist, "apply_vfx_mastering") == StepStatus.COMPLETED
    assert _status(checklist, "run_viral_analysis") == StepStatus.PENDING


def test_user_override_takes_precedence_over_signal():
    project = make_project()
    skipped = mark_step_skipped(Phase.GENESIS, "analyze_script", project)
    assert _status(build_checklist(Phase.GENESIS, skipped), "analyze_script") == StepStatus.SKIPPED

    completed = mark_step_completed(Phase.GENESIS, "analyze_script", skipped)
    progress = completed.workflow_progress[Phase.GENESIS]
    assert progress.completed_steps == ["analyze_script"]
    assert progress.skipped_steps == []


def test_marking_steps_returns_new_snapshot():
    project = make_project()
    updated = mark_step_completed(Phase.MANIFEST, "review_timeline", project)
    assert Phase.MANIFEST not in project.workflow_progress
    assert _status(build_checklist(Phase.MANIFEST, updated), "review_timeline") == StepStatus.COMPLETED


def test_unknown_step_is_rejected():
    with pytest.raises(UnknownStepError):
        mark_step_completed(Phase.GENESIS, "assign_voices", Project())


def test_next_suggested_step_prefers_critical_then_recommended():
    assert next_suggested_step(Phase.GENESIS, Project()).id == "write_script"
    assert next_suggested_step(Phase.GENESIS, make_project()).id == "set_style"
    assert next_suggested_step(Phase.POST, make_project()).id == "run_viral_analysis"


def test_next_suggested_step_falls_back_to_optional_then_none():
    project = make_project(global_style="noir", aspect_ratio="16:9")
    assert next_suggested_step(Phase.GENESIS, project).id == "add_moodboard"

    for step_id in ("add_moodboard", "run_script_doctor"):
        project = mark_step_skipped(Phase.GENESIS, step_id, project)
    assert next_suggested_step(Phase.GENESIS, project) is None
