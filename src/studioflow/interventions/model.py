from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from studioflow.project.model import Project

# Interventions at or above this priority are never silently skippable.
CRITICAL_PRIORITY = 9


class InterventionType(str, Enum):
    SUGGESTION = "suggestion"
    WARNING = "warning"
    OPPORTUNITY = "opportunity"
    CELEBRATION = "celebration"


class InterventionNotDismissibleError(ValueError):
    """Raised when dismissing an intervention that must stay visible."""


class UnknownInterventionError(KeyError):
    """Raised when an intervention id is neither active nor in the library."""


class UnknownActionError(KeyError):
    """Raised when an action id has no handler or is not offered by the intervention."""


class InterventionAction(BaseModel):
    model_config = ConfigDict(frozen=True)

    label: str
    action_id: str
    one_click: bool = False
    icon: Optional[str] = None


class Intervention(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    title: str
    message: str
    type: InterventionType
    actions: List[InterventionAction] = Field(default_factory=list)
    dismissible: bool = True
    priority: int = Field(ge=1, le=10)

    def action(self, action_id: str) -> Optional[InterventionAction]:
        for action in self.actions:
            if action.action_id == action_id:
                return action
        return None


Condition = Callable[[Project, Optional[Project]], bool]


@dataclass(frozen=True)
class InterventionTrigger:
    id: str
    priority: int
    condition: Condition
    intervention: Intervention
    # Seconds between firings; 0 never throttles.
    cooldown_seconds: float = 0.0
