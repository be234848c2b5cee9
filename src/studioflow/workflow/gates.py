from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import List

from studioflow.project.model import Phase, Project
from studioflow.workflow.checklist import StepPriority, StepStatus, WorkflowStep, build_checklist


class GateSeverity(str, Enum):
    BLOCKER = "blocker"
    WARNING = "warning"


@dataclass(frozen=True)
class QualityGate:
    id: str
    severity: GateSeverity
    message: str
    auto_fixable: bool = False


@dataclass(frozen=True)
class TransitionDecision:
    allowed: bool
    blockers: List[QualityGate] = field(default_factory=list)
    warnings: List[QualityGate] = field(default_factory=list)


_GATE_MESSAGES = {
    "write_script": "Script is required to proceed",
    "analyze_script": "Script must be analyzed to extract scenes",
    "set_style": "Consider setting a global visual style for consistency",
    "set_aspect_ratio": "No aspect ratio selected - the default framing will be used",
    "assign_voices": "All characters must have voice assignments",
    "run_continuity_audit": "Character continuity has not been audited",
    "review_timeline": "Scene pacing has not been reviewed",
    "generate_assets": "Ungenerated scenes detected - run batch manifest",
    "set_key_art": "No Key Art reference scene selected",
    "review_failed_assets": "Failed assets have not been reviewed and retried",
    "run_viral_analysis": "Viral potential has not been analyzed",
    "generate_seo_metadata": "SEO metadata has not been generated",
    "apply_vfx_mastering": "VFX mastering has not been applied",
}


def _gate_for(step: WorkflowStep) -> QualityGate | None:
    if step.priority == StepPriority.CRITICAL:
        # Skipping a critical step does not satisfy it.
        if step.status == StepStatus.COMPLETED:
            return None
        severity = GateSeverity.BLOCKER
    elif step.priority == StepPriority.RECOMMENDED:
        if step.status != StepStatus.PENDING:
            return None
        severity = GateSeverity.WARNING
    else:
        return None
    return QualityGate(
        id=step.id,
        severity=severity,
        message=_GATE_MESSAGES.get(step.id, f"{step.label} is not complete"),
        auto_fixable=step.auto_executable,
    )


def evaluate_gates(phase: Phase, project: Project) -> List[QualityGate]:
    """Return the failing gates guarding the exit of ``phase``."""
    overrides = set(project.quality_gate_overrides)
    gates: List[QualityGate] = []
    for step in build_checklist(phase, project).steps:
        gate = _gate_for(step)
        if gate is None or gate.id in overrides:
            continue
        gates.append(gate)
    return gates


def can_transition(active: Phase, target: Phase, project: Project) -> TransitionDecision:
    """Decide whether navigation from ``active`` to ``target`` is permitted.

    Moving to the same or an earlier phase never blocks. Moving forward is
    refused while any blocker gate of ``active`` is failing.
    """
    gates = evaluate_gates(active, project)
    blockers = [gate for gate in gates if gate.severity == GateSeverity.BLOCKER]
    warnings = [gate for gate in gates if gate.severity == GateSeverity.WARNING]
    if target.position <= active.position:
        return TransitionDecision(allowed=True, blockers=[], warnings=warnings)
    return TransitionDecision(allowed=not blockers, blockers=blockers, warnings=warnings)
