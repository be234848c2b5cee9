"""Rule-based guidance surfaced in response to project state changes."""

from studioflow.interventions.engine import TriggerEngine
from studioflow.interventions.model import (
    Intervention,
    InterventionAction,
    InterventionNotDismissibleError,
    InterventionTrigger,
    InterventionType,
    UnknownActionError,
    UnknownInterventionError,
)
from studioflow.interventions.triggers import TRIGGER_LIBRARY, idle_intervention, phase_entry_intervention

__all__ = [
    "Intervention",
    "InterventionAction",
    "InterventionNotDismissibleError",
    "InterventionTrigger",
    "InterventionType",
    "TRIGGER_LIBRARY",
    "TriggerEngine",
    "UnknownActionError",
    "UnknownInterventionError",
    "idle_intervention",
    "phase_entry_intervention",
]
