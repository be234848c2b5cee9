"""Phase classification, checklists and quality gates."""

from studioflow.workflow.checklist import (
    PhaseChecklist,
    StepPriority,
    StepStatus,
    UnknownStepError,
    WorkflowStep,
    build_checklist,
    mark_step_completed,
    mark_step_skipped,
    next_suggested_step,
)
from studioflow.workflow.gates import (
    GateSeverity,
    QualityGate,
    TransitionDecision,
    can_transition,
    evaluate_gates,
)
from studioflow.workflow.phases import classify

__all__ = [
    "GateSeverity",
    "PhaseChecklist",
    "QualityGate",
    "StepPriority",
    "StepStatus",
    "TransitionDecision",
    "UnknownStepError",
    "WorkflowStep",
    "build_checklist",
    "can_transition",
    "classify",
    "evaluate_gates",
    "mark_step_completed",
    "mark_step_skipped",
    "next_suggested_step",
]
