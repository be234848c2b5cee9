from __future__ import annotations

from typing import Callable, List

from studioflow.project.model import Project

Listener = Callable[[Project, Project], None]
Change = Callable[[Project], Project]


class ProjectCell:
    """Single mutable reference to the latest project snapshot.

    Readers always see the most recent snapshot; ``update`` derives the next
    snapshot from the current one, never from a copy captured earlier, and
    notifies listeners with ``(current, previous)``.

    A listener may itself call ``update``. Such a change is queued and applied
    once every listener has seen the change being delivered, so all listeners
    observe transitions in the same order.
    """

    def __init__(self, project: Project) -> None:
        self._project = project
        self._listeners: List[Listener] = []
        self._notifying = False
        self._deferred: List[Change] = []

    def get(self) -> Project:
        return self._project

    def subscribe(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def update(self, change: Change) -> Project:
        if self._notifying:
            self._deferred.append(change)
            return self._project
        self._apply(change)
        while self._deferred:
            self._apply(self._deferred.pop(0))
        return self._project

    def replace(self, project: Project) -> Project:
        return self.update(lambda _previous: project)

    def _apply(self, change: Change) -> None:
        previous = self._project
        current = change(previous)
        if current is previous:
            return
        self._project = current
        self._notifying = True
        try:
            for listener in self._listeners:
                listener(current, previous)
        finally:
            self._notifying = False
