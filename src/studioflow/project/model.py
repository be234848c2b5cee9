from __future__ import annotations

import uuid
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional, Sequence

from pydantic import BaseModel, ConfigDict, Field, model_validator

from studioflow.project.time_utils import utc_now

MAX_LOG_ENTRIES = 50
MAX_ASSET_VARIANTS = 5


class Phase(str, Enum):
    GENESIS = "genesis"
    MANIFEST = "manifest"
    SYNTHESIS = "synthesis"
    POST = "post"

    @property
    def position(self) -> int:
        return PHASE_ORDER.index(self)


PHASE_ORDER: List[Phase] = [Phase.GENESIS, Phase.MANIFEST, Phase.SYNTHESIS, Phase.POST]


class AssetStatus(str, Enum):
    PENDING = "pending"
    GENERATING_IMAGE = "generating_image"
    GENERATING_VIDEO = "generating_video"
    GENERATING_AUDIO = "generating_audio"
    COMPLETE = "complete"
    ERROR = "error"


class DirectorMode(str, Enum):
    GUIDED = "guided"
    EXPERT = "expert"


class LogType(str, Enum):
    SYSTEM = "system"
    AI_SUGGESTION = "ai_suggestion"
    ERROR = "error"
    SUCCESS = "success"


class InterventionOutcome(str, Enum):
    EXECUTED = "executed"
    DISMISSED = "dismissed"


class DialogueLine(BaseModel):
    speaker: str
    text: str
    emotion: Optional[str] = None


class Character(BaseModel):
    id: str
    name: str
    description: str = ""
    visual_prompt: str = ""
    voice_id: Optional[str] = None
    reference_image: Optional[str] = Field(default=None, description="Inline data URI or URL")


class Scene(BaseModel):
    """Single shot of the production, in timeline order within the project."""

    id: int
    description: str
    visual_prompt: str = ""
    characters_in_scene: List[str] = Field(default_factory=list)
    narrator_lines: List[DialogueLine] = Field(default_factory=list)
    estimated_duration: float = 5.0
    actual_audio_duration: Optional[float] = Field(default=None, description="Locked after audio synthesis")
    style_override: Optional[str] = None


class AssetVariant(BaseModel):
    image_url: Optional[str] = None
    video_url: Optional[str] = None
    timestamp: datetime = Field(default_factory=utc_now)


class Asset(BaseModel):
    status: AssetStatus = AssetStatus.PENDING
    image_url: Optional[str] = None
    video_url: Optional[str] = None
    audio_url: Optional[str] = None
    error: Optional[str] = None
    variants: List[AssetVariant] = Field(default_factory=list)

    def with_variant(self, variant: AssetVariant) -> "Asset":
        variants = [variant, *self.variants][:MAX_ASSET_VARIANTS]
        return self.model_copy(update={"variants": variants})


class LogEntry(BaseModel):
    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    timestamp: datetime = Field(default_factory=utc_now)
    type: LogType = LogType.SYSTEM
    message: str


class ToolUsageRecord(BaseModel):
    tool_id: str
    timestamp: datetime = Field(default_factory=utc_now)


class InterventionRecord(BaseModel):
    intervention_id: str
    action: InterventionOutcome
    timestamp: datetime = Field(default_factory=utc_now)


class PhaseProgress(BaseModel):
    completed_steps: List[str] = Field(default_factory=list)
    skipped_steps: List[str] = Field(default_factory=list)
    last_updated: datetime = Field(default_factory=utc_now)


class ViralPotential(BaseModel):
    hook_score: int = Field(ge=0, le=100)
    prediction_summary: str = ""
    retention_catalysts: List[str] = Field(default_factory=list)
    engagement_friction: List[str] = Field(default_factory=list)


class MasteringSettings(BaseModel):
    music_volume: int = 15
    voice_volume: int = 100
    ambient_volume: int = 30
    film_grain: int = 5
    bloom_intensity: int = 10
    vignette_intensity: int = 30
    lut_preset: str = "none"


class Project(BaseModel):
    """Immutable snapshot of a production.

    Every mutation returns a new snapshot; consumers never observe a partially
    updated project.
    """

    model_config = ConfigDict(frozen=True)

    script: str = ""
    characters: List[Character] = Field(default_factory=list)
    scenes: List[Scene] = Field(default_factory=list)
    assets: Dict[int, Asset] = Field(default_factory=dict)
    modules: Dict[str, str] = Field(default_factory=dict)
    production_log: List[LogEntry] = Field(default_factory=list)
    global_style: Optional[str] = None
    aspect_ratio: Optional[str] = None
    resolution: Optional[str] = None
    production_seed: int = 0
    key_art_scene_id: Optional[int] = None
    viral_data: Optional[ViralPotential] = None
    mastering: Optional[MasteringSettings] = None
    render_url: Optional[str] = None
    workflow_progress: Dict[Phase, PhaseProgress] = Field(default_factory=dict)
    tool_usage_history: List[ToolUsageRecord] = Field(default_factory=list)
    intervention_history: List[InterventionRecord] = Field(default_factory=list)
    quality_gate_overrides: List[str] = Field(default_factory=list)
    director_mode: DirectorMode = DirectorMode.GUIDED
    active_phase: Optional[Phase] = Field(default=None, description="Last phase navigated to")
    last_activity: Optional[datetime] = None
    next_scene_id: int = 1

    @model_validator(mode="after")
    def _check_scene_ids(self) -> "Project":
        ids = [scene.id for scene in self.scenes]
        if len(ids) != len(set(ids)):
            raise ValueError("Scene ids must be unique within a project")
        if ids and self.next_scene_id <= max(ids):
            # Ids handed out later must never collide with existing ones.
            object.__setattr__(self, "next_scene_id", max(ids) + 1)
        return self

    # Queries ----------------------------------------------------------

    @property
    def scene_ids(self) -> List[int]:
        return [scene.id for scene in self.scenes]

    def scene(self, scene_id: int) -> Optional[Scene]:
        for scene in self.scenes:
            if scene.id == scene_id:
                return scene
        return None

    def asset(self, scene_id: int) -> Asset:
        return self.assets.get(scene_id) or Asset()

    def count_assets(self, status: AssetStatus) -> int:
        return sum(1 for asset in self.assets.values() if asset.status == status)

    @property
    def all_assets_complete(self) -> bool:
        return bool(self.scenes) and all(
            self.asset(scene.id).status == AssetStatus.COMPLETE for scene in self.scenes
        )

    def has_used_tool(self, tool_id: str) -> bool:
        return any(record.tool_id == tool_id for record in self.tool_usage_history)

    def was_dismissed(self, intervention_id: str) -> bool:
        return any(
            record.intervention_id == intervention_id and record.action == InterventionOutcome.DISMISSED
            for record in self.intervention_history
        )

    # Snapshot transitions ---------------------------------------------

    def with_scenes(self, scenes: Sequence[Scene]) -> "Project":
        """Replace the scene list (script analysis) and reset every asset to pending."""
        ids = [scene.id for scene in scenes]
        if len(ids) != len(set(ids)):
            raise ValueError("Scene ids must be unique within a project")
        next_id = max([self.next_scene_id, *(scene_id + 1 for scene_id in ids)])
        return self.model_copy(
            update={
                "scenes": list(scenes),
                "assets": {scene.id: Asset() for scene in scenes},
                "next_scene_id": next_id,
                "key_art_scene_id": None,
            }
        )

    def add_scene(self, scene: Scene) -> "Project":
        new_scene = scene.model_copy(update={"id": self._next_id()})
        assets = dict(self.assets)
        assets[new_scene.id] = Asset()
        return self.model_copy(
            update={
                "scenes": [*self.scenes, new_scene],
                "assets": assets,
                "next_scene_id": new_scene.id + 1,
            }
        )

    def duplicate_scene(self, scene_id: int) -> "Project":
        source = self.scene(scene_id)
        if source is None:
            raise KeyError(f"Unknown scene {scene_id}")
        copy = source.model_copy(deep=True, update={"id": self._next_id()})
        position = self.scenes.index(source) + 1
        scenes = [*self.scenes[:position], copy, *self.scenes[position:]]
        assets = dict(self.assets)
        assets[copy.id] = Asset()
        return self.model_copy(
            update={"scenes": scenes, "assets": assets, "next_scene_id": copy.id + 1}
        )

    def remove_scene(self, scene_id: int) -> "Project":
        if self.scene(scene_id) is None:
            raise KeyError(f"Unknown scene {scene_id}")
        assets = {key: value for key, value in self.assets.items() if key != scene_id}
        update: dict = {
            "scenes": [scene for scene in self.scenes if scene.id != scene_id],
            "assets": assets,
        }
        if self.key_art_scene_id == scene_id:
            update["key_art_scene_id"] = None
        return self.model_copy(update=update)

    def with_asset(self, scene_id: int, asset: Asset) -> "Project":
        assets = dict(self.assets)
        assets[scene_id] = asset
        return self.model_copy(update={"assets": assets})

    def update_asset(self, scene_id: int, **changes) -> "Project":
        return self.with_asset(scene_id, self.asset(scene_id).model_copy(update=changes))

    def with_log(self, message: str, log_type: LogType = LogType.SYSTEM) -> "Project":
        entry = LogEntry(type=log_type, message=message)
        log = [entry, *self.production_log][:MAX_LOG_ENTRIES]
        return self.model_copy(update={"production_log": log})

    def record_tool_usage(self, tool_id: str) -> "Project":
        history = [*self.tool_usage_history, ToolUsageRecord(tool_id=tool_id)]
        return self.model_copy(update={"tool_usage_history": history})

    def record_intervention(self, intervention_id: str, action: InterventionOutcome) -> "Project":
        record = InterventionRecord(intervention_id=intervention_id, action=action)
        return self.model_copy(update={"intervention_history": [*self.intervention_history, record]})

    def touch(self, when: Optional[datetime] = None) -> "Project":
        return self.model_copy(update={"last_activity": when or utc_now()})

    def _next_id(self) -> int:
        return max([self.next_scene_id, *(scene_id + 1 for scene_id in self.scene_ids)])
