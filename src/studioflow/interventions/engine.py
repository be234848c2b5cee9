from __future__ import annotations

import logging
import time
from typing import Callable, Dict, Iterable, List, Optional, Sequence

from studioflow.interventions.model import (
    CRITICAL_PRIORITY,
    Intervention,
    InterventionNotDismissibleError,
    InterventionTrigger,
    UnknownActionError,
    UnknownInterventionError,
)
from studioflow.interventions.triggers import TRIGGER_LIBRARY, known_interventions
from studioflow.project.model import DirectorMode, InterventionOutcome, Project

logger = logging.getLogger(__name__)


class TriggerEngine:
    """Evaluates the trigger library against project state changes.

    The engine owns its cooldown map and the list of currently active
    interventions. Neither is persisted: cooldowns throttle how often a rule
    notifies within one session. Dismissals live on the project itself.
    """

    def __init__(
        self,
        triggers: Optional[Sequence[InterventionTrigger]] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._triggers = list(TRIGGER_LIBRARY if triggers is None else triggers)
        self._clock = clock
        self._last_fired: Dict[str, float] = {}
        self._active: List[Intervention] = []

    @property
    def active(self) -> List[Intervention]:
        return list(self._active)

    def evaluate(
        self,
        current: Project,
        previous: Optional[Project],
        mode: DirectorMode = DirectorMode.GUIDED,
    ) -> List[Intervention]:
        """Return the interventions whose triggers fire, highest priority first."""
        emitted: List[Intervention] = []
        for trigger in self._triggers:
            if mode == DirectorMode.EXPERT and trigger.priority < CRITICAL_PRIORITY:
                continue
            if self._on_cooldown(trigger):
                continue
            if trigger.intervention.dismissible and current.was_dismissed(trigger.intervention.id):
                continue
            try:
                fired = trigger.condition(current, previous)
            except Exception:
                logger.exception("Error evaluating trigger %s", trigger.id)
                continue
            if fired:
                self._last_fired[trigger.id] = self._clock()
                emitted.append(trigger.intervention)
        return sorted(emitted, key=lambda intervention: intervention.priority, reverse=True)

    def observe(
        self,
        current: Project,
        previous: Optional[Project],
        mode: DirectorMode = DirectorMode.GUIDED,
    ) -> List[Intervention]:
        """Evaluate and merge the result into the active list."""
        self.surface(self.evaluate(current, previous, mode))
        return self.active

    def surface(self, interventions: Iterable[Intervention]) -> None:
        """Prepend new interventions, keeping already-active ones with the same id."""
        active_ids = {intervention.id for intervention in self._active}
        fresh: List[Intervention] = []
        for intervention in interventions:
            if intervention.id in active_ids:
                continue
            active_ids.add(intervention.id)
            fresh.append(intervention)
        merged = [*fresh, *self._active]
        self._active = sorted(merged, key=lambda intervention: intervention.priority, reverse=True)

    def dismiss(self, intervention_id: str, project: Project) -> Project:
        intervention = self._lookup(intervention_id)
        if not intervention.dismissible:
            raise InterventionNotDismissibleError(f"Intervention '{intervention_id}' cannot be dismissed")
        self._remove(intervention_id)
        logger.info("Intervention %s dismissed", intervention_id)
        return project.record_intervention(intervention_id, InterventionOutcome.DISMISSED)

    def execute(self, intervention_id: str, action_id: str, project: Project) -> Project:
        intervention = self._lookup(intervention_id)
        if intervention.action(action_id) is None:
            raise UnknownActionError(f"Intervention '{intervention_id}' offers no action '{action_id}'")
        self._remove(intervention_id)
        logger.info("Intervention %s executed via %s", intervention_id, action_id)
        return project.record_intervention(intervention_id, InterventionOutcome.EXECUTED)

    def reset_cooldowns(self) -> None:
        self._last_fired.clear()

    # Internal helpers -------------------------------------------------

    def _on_cooldown(self, trigger: InterventionTrigger) -> bool:
        if trigger.cooldown_seconds <= 0:
            return False
        last = self._last_fired.get(trigger.id)
        if last is None:
            return False
        return self._clock() - last < trigger.cooldown_seconds

    def _lookup(self, intervention_id: str) -> Intervention:
        for intervention in self._active:
            if intervention.id == intervention_id:
                return intervention
        for trigger in self._triggers:
            if trigger.intervention.id == intervention_id:
                return trigger.intervention
        known = known_interventions().get(intervention_id)
        if known is None:
            raise UnknownInterventionError(f"Unknown intervention '{intervention_id}'")
        return known

    def _remove(self, intervention_id: str) -> None:
        self._active = [intervention for intervention in self._active if intervention.id != intervention_id]
