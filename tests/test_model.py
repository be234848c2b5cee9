from __future__ import annotations

import json

from factories import make_project
from studioflow.project.cell import ProjectCell
from studioflow.project.model import LogType, Project, Scene


def test_removed_scene_ids_are_never_reused():
    project = Project(scenes=[Scene(id=1, description="a"), Scene(id=2, description="b")])

    project = project.remove_scene(2).add_scene(Scene(id=0, description="c"))

    assert project.scene_ids == [1, 3]


def test_loaded_project_keeps_id_counter_ahead_of_scenes():
    payload = json.loads(make_project(scene_count=2).model_dump_json())
    payload["next_scene_id"] = 1

    project = Project.model_validate(payload)

    assert project.next_scene_id == 3
    assert project.duplicate_scene(1).scene_ids == [1, 3, 2]


def test_listeners_see_nested_updates_in_order():
    cell = ProjectCell(Project())
    seen = []

    def _annotate(current, previous):
        if not current.production_log:
            cell.update(lambda p: p.with_log("annotated", LogType.SYSTEM))

    cell.subscribe(_annotate)
    cell.subscribe(lambda current, previous: seen.append((previous, current)))

    first = Project(script="draft")
    result = cell.update(lambda p: first)

    assert result is cell.get()
    assert result.production_log[0].message == "annotated"
    assert seen[0] == (Project(), first)
    assert seen[1] == (first, result)
    assert len(seen) == 2
