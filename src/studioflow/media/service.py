from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional, Protocol, Sequence

from studioflow.project.model import Character, DialogueLine, Project, Scene


class GenerationServiceError(RuntimeError):
    """Raised when the external generation service fails a request."""


class InvalidAssetError(GenerationServiceError):
    """Raised when a returned payload does not pass validation."""


@dataclass(frozen=True)
class StyleParams:
    global_style: Optional[str] = None
    aspect_ratio: Optional[str] = None
    resolution: Optional[str] = None
    seed: int = 0
    style_reference: Optional[str] = None

    @classmethod
    def from_project(cls, project: Project) -> "StyleParams":
        # Moodboard wins over key art as the visual reference.
        reference = project.modules.get("outline")
        if not reference and project.key_art_scene_id is not None:
            reference = project.asset(project.key_art_scene_id).image_url
        return cls(
            global_style=project.global_style,
            aspect_ratio=project.aspect_ratio,
            resolution=project.resolution,
            seed=project.production_seed,
            style_reference=reference,
        )


@dataclass
class AudioResult:
    media: Optional[str]
    partial_failures: List[str] = field(default_factory=list)


class GenerationService(Protocol):
    def generate_image(self, scene: Scene, characters: Sequence[Character], style: StyleParams) -> str: ...

    def generate_video(self, image: str, prompt: str, style: StyleParams) -> str: ...

    def generate_audio(self, lines: Sequence[DialogueLine], characters: Sequence[Character]) -> AudioResult: ...
