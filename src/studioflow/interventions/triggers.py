"""The trigger library and the phase-entry and idle interventions.

Conditions are pure functions of ``(current, previous)``; ``previous`` is
``None`` for the first evaluation of a session.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Dict, List, Optional

from studioflow.interventions.model import (
    Intervention,
    InterventionAction,
    InterventionTrigger,
    InterventionType,
)
from studioflow.project.model import AssetStatus, Phase, Project
from studioflow.project.time_utils import ensure_utc, utc_now

IDLE_THRESHOLD = timedelta(minutes=5)
IDLE_INTERVENTION_ID = "idle_suggestion"

_MINUTE = 60.0


def _action(label: str, action_id: str, one_click: bool = True, icon: str | None = None) -> InterventionAction:
    return InterventionAction(label=label, action_id=action_id, one_click=one_click, icon=icon)


def _all_complete(project: Optional[Project]) -> bool:
    return project is not None and project.all_assets_complete


def _script_analyzed(current: Project, previous: Optional[Project]) -> bool:
    return (previous is None or not previous.scenes) and bool(current.scenes)


def _first_scene_generated(current: Project, previous: Optional[Project]) -> bool:
    before = previous.count_assets(AssetStatus.COMPLETE) if previous is not None else 0
    return before == 0 and current.count_assets(AssetStatus.COMPLETE) == 1


def _multiple_scenes_generated(current: Project, previous: Optional[Project]) -> bool:
    return current.count_assets(AssetStatus.COMPLETE) >= 3 and current.count_assets(AssetStatus.PENDING) > 0


def _all_assets_complete(current: Project, previous: Optional[Project]) -> bool:
    return not _all_complete(previous) and _all_complete(current)


def _character_added(current: Project, previous: Optional[Project]) -> bool:
    before = len(previous.characters) if previous is not None else 0
    return len(current.characters) > before


def _repeated_failures(current: Project, previous: Optional[Project]) -> bool:
    return current.count_assets(AssetStatus.ERROR) >= 2


def _missing_viral_analysis(current: Project, previous: Optional[Project]) -> bool:
    return current.viral_data is None and bool(current.scenes)


def _high_viral_score(current: Project, previous: Optional[Project]) -> bool:
    had_data = previous is not None and previous.viral_data is not None
    return not had_data and current.viral_data is not None and current.viral_data.hook_score >= 80


def _missing_voices(current: Project, previous: Optional[Project]) -> bool:
    return any(not character.voice_id for character in current.characters)


def _export_ready(current: Project, previous: Optional[Project]) -> bool:
    was_ready = previous is not None and bool(previous.render_url)
    return not was_ready and bool(current.render_url)


def _trigger(
    trigger_id: str,
    condition,
    intervention: Intervention,
    cooldown_minutes: float = 0,
) -> InterventionTrigger:
    return InterventionTrigger(
        id=trigger_id,
        priority=intervention.priority,
        condition=condition,
        intervention=intervention,
        cooldown_seconds=cooldown_minutes * _MINUTE,
    )


TRIGGER_LIBRARY: List[InterventionTrigger] = [
    _trigger(
        "script_analysis_complete",
        _script_analyzed,
        Intervention(
            id="script_analyzed",
            title="Script Analysis Complete",
            message=(
                "Your script has been broken down into scenes and characters. Next critical steps: "
                "assign voices to all characters and review scene continuity."
            ),
            type=InterventionType.CELEBRATION,
            actions=[
                _action("Assign Voices Now", "assign_voices", icon="fa-microphone"),
                _action("Run Continuity Audit", "run_continuity_audit", icon="fa-shield-check"),
            ],
            priority=8,
        ),
    ),
    _trigger(
        "first_scene_generated",
        _first_scene_generated,
        Intervention(
            id="first_scene_complete",
            title="First Scene Generated",
            message=(
                "Your production is taking shape. Consider setting this scene as your Key Art reference "
                "to maintain visual consistency across all scenes."
            ),
            type=InterventionType.CELEBRATION,
            actions=[
                _action("Set as Key Art", "set_key_art", icon="fa-image"),
                _action("Generate Remaining Scenes", "generate_remaining_scenes", icon="fa-play"),
            ],
            priority=7,
        ),
    ),
    _trigger(
        "multiple_scenes_generated",
        _multiple_scenes_generated,
        Intervention(
            id="batch_generation_suggestion",
            title="Ready for Batch Generation",
            message="You have multiple scenes remaining. Batch generation can process them all at once.",
            type=InterventionType.OPPORTUNITY,
            actions=[_action("Generate All Remaining", "generate_remaining_scenes", icon="fa-bolt")],
            priority=6,
        ),
        cooldown_minutes=30,
    ),
    _trigger(
        "all_assets_complete",
        _all_assets_complete,
        Intervention(
            id="synthesis_complete",
            title="All Scenes Generated",
            message=(
                "Synthesis phase complete. Master your final cut with VFX effects and run a viral "
                "analysis to optimize for viewer retention."
            ),
            type=InterventionType.CELEBRATION,
            actions=[
                _action("Apply VFX Mastering", "apply_vfx_mastering", one_click=False, icon="fa-wand-magic-sparkles"),
                _action("Analyze Viral Potential", "analyze_viral_potential", icon="fa-chart-line"),
            ],
            priority=9,
        ),
    ),
    _trigger(
        "character_added",
        _character_added,
        Intervention(
            id="new_character_continuity",
            title="New Character Added",
            message=(
                "A new character has been added to your production. Run the Continuity Auditor to ensure "
                "consistent appearance across all scenes."
            ),
            type=InterventionType.SUGGESTION,
            actions=[_action("Run Continuity Check", "run_continuity_audit", icon="fa-shield-check")],
            priority=5,
        ),
        cooldown_minutes=10,
    ),
    _trigger(
        "repeated_failures",
        _repeated_failures,
        Intervention(
            id="generation_failures",
            title="Generation Issues Detected",
            message=(
                "Multiple scenes failed to generate. This usually indicates prompt issues or API limits. "
                "Review failed scenes and try improving their visual descriptions."
            ),
            type=InterventionType.WARNING,
            actions=[
                _action("Review Failed Scenes", "review_failed_scenes", one_click=False, icon="fa-search"),
                _action("Get Help from Director", "open_director_chat", one_click=False, icon="fa-comments"),
            ],
            priority=8,
        ),
        cooldown_minutes=15,
    ),
    _trigger(
        "post_no_viral",
        _missing_viral_analysis,
        Intervention(
            id="missing_viral_analysis",
            title="Optimize for Virality",
            message=(
                "Your content hasn't been analyzed for viral potential. Run a retention analysis to "
                "identify hook strength and engagement friction points."
            ),
            type=InterventionType.OPPORTUNITY,
            actions=[_action("Analyze Viral Potential", "analyze_viral_potential", icon="fa-chart-line")],
            priority=6,
        ),
        cooldown_minutes=20,
    ),
    _trigger(
        "high_viral_score",
        _high_viral_score,
        Intervention(
            id="viral_success",
            title="High Viral Potential Detected",
            message="Your content scored high on viral potential, with a strong hook and retention curve.",
            type=InterventionType.CELEBRATION,
            actions=[_action("Generate SEO Metadata", "generate_seo_metadata", icon="fa-tags")],
            priority=7,
        ),
    ),
    _trigger(
        "missing_voices_warning",
        _missing_voices,
        Intervention(
            id="voices_required",
            title="Voice Assignments Required",
            message=(
                "Some characters are missing voice assignments. This will block asset generation in the "
                "Synthesis phase."
            ),
            type=InterventionType.WARNING,
            actions=[_action("Assign Voices Now", "assign_voices", icon="fa-microphone")],
            dismissible=False,
            priority=9,
        ),
        cooldown_minutes=5,
    ),
    _trigger(
        "export_ready",
        _export_ready,
        Intervention(
            id="video_exported",
            title="Video Exported Successfully",
            message=(
                "Your production is complete and ready to share. Consider generating YouTube metadata "
                "and social media posts."
            ),
            type=InterventionType.CELEBRATION,
            actions=[
                _action("Download Video", "download_video", one_click=False, icon="fa-download"),
                _action("Generate Social Posts", "generate_social_posts", icon="fa-share-nodes"),
            ],
            priority=8,
        ),
    ),
]


_PHASE_ENTRY: Dict[Phase, Intervention] = {
    Phase.GENESIS: Intervention(
        id="entered_genesis",
        title="Genesis Phase",
        message=(
            "This is where your story begins. Focus on crafting a compelling script with a strong hook "
            "in the first 5 seconds."
        ),
        type=InterventionType.SUGGESTION,
        actions=[_action("Get Script Writing Tips", "open_director_chat", one_click=False, icon="fa-lightbulb")],
        priority=5,
    ),
    Phase.MANIFEST: Intervention(
        id="entered_manifest",
        title="Manifest Phase",
        message=(
            "Assign voices to all characters and review scene pacing. Run the Continuity Auditor to "
            "ensure character consistency."
        ),
        type=InterventionType.SUGGESTION,
        actions=[
            _action("Assign Voices", "assign_voices", icon="fa-microphone"),
            _action("Check Continuity", "run_continuity_audit", icon="fa-shield-check"),
        ],
        priority=6,
    ),
    Phase.SYNTHESIS: Intervention(
        id="entered_synthesis",
        title="Synthesis Phase",
        message=(
            "Ready to generate your scenes. Set a Key Art reference scene to maintain visual consistency."
        ),
        type=InterventionType.SUGGESTION,
        actions=[_action("Generate All Scenes", "generate_remaining_scenes", icon="fa-bolt")],
        priority=6,
    ),
    Phase.POST: Intervention(
        id="entered_post",
        title="Post-Production Phase",
        message=(
            "Final stretch. Apply VFX mastering, analyze viral potential and generate YouTube SEO "
            "metadata to maximize your reach."
        ),
        type=InterventionType.SUGGESTION,
        actions=[
            _action("Apply VFX Mastering", "apply_vfx_mastering", one_click=False, icon="fa-wand-magic-sparkles"),
            _action("Analyze Viral Potential", "analyze_viral_potential", icon="fa-chart-line"),
        ],
        priority=6,
    ),
}

_IDLE_SUGGESTIONS = {
    Phase.GENESIS: (
        "Still Working on Your Script?",
        "Take your time crafting the script. When ready, analyze it to extract scenes and characters.",
        _action("Analyze Script", "analyze_script", one_click=False, icon="fa-magnifying-glass"),
    ),
    Phase.MANIFEST: (
        "Ready to Continue?",
        "Complete voice assignments and review scene pacing to prepare for asset generation.",
        _action("Assign Voices", "assign_voices", one_click=False, icon="fa-microphone"),
    ),
    Phase.SYNTHESIS: (
        "Generate Your Scenes?",
        "Preparations are complete. Start generating your scene assets to bring the production to life.",
        _action("Generate Scenes", "generate_remaining_scenes", one_click=False, icon="fa-play"),
    ),
    Phase.POST: (
        "Finalize Your Production?",
        "Add the finishing touches with VFX mastering and viral optimization before exporting.",
        _action("Apply VFX", "apply_vfx_mastering", one_click=False, icon="fa-wand-magic-sparkles"),
    ),
}


def phase_entry_intervention(phase: Phase, project: Project) -> Optional[Intervention]:
    intervention = _PHASE_ENTRY[phase]
    if project.was_dismissed(intervention.id):
        return None
    return intervention


def idle_intervention(phase: Phase, project: Project, now: Optional[datetime] = None) -> Optional[Intervention]:
    """Nudge toward the phase's next action once the project has been idle for five minutes."""
    if project.was_dismissed(IDLE_INTERVENTION_ID):
        return None
    if project.last_activity is None:
        return None
    idle_for = ensure_utc(now or utc_now()) - ensure_utc(project.last_activity)
    if idle_for < IDLE_THRESHOLD:
        return None
    title, message, action = _IDLE_SUGGESTIONS[phase]
    return Intervention(
        id=IDLE_INTERVENTION_ID,
        title=title,
        message=message,
        type=InterventionType.SUGGESTION,
        actions=[action],
        priority=4,
    )


def known_interventions() -> Dict[str, Intervention]:
    """Every intervention template the library can emit, keyed by id."""
    known = {trigger.intervention.id: trigger.intervention for trigger in TRIGGER_LIBRARY}
    known.update({intervention.id: intervention for intervention in _PHASE_ENTRY.values()})
    title, message, action = _IDLE_SUGGESTIONS[Phase.GENESIS]
    known[IDLE_INTERVENTION_ID] = Intervention(
        id=IDLE_INTERVENTION_ID,
        title=title,
        message=message,
        type=InterventionType.SUGGESTION,
        actions=[action],
        priority=4,
    )
    return known
