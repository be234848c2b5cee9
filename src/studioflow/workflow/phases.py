from __future__ import annotations

from studioflow.project.model import AssetStatus, Phase, Project


def classify(project: Project) -> Phase:
    """Derive the furthest phase the project has reached.

    Pure and total: the same snapshot always yields the same phase.
    """
    if not project.script.strip():
        return Phase.GENESIS
    if not project.scenes:
        return Phase.GENESIS
    statuses = [project.asset(scene.id).status for scene in project.scenes]
    if not any(status == AssetStatus.COMPLETE for status in statuses):
        return Phase.MANIFEST
    if all(status == AssetStatus.COMPLETE for status in statuses):
        return Phase.POST
    return Phase.SYNTHESIS
