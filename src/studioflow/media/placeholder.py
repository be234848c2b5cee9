from __future__ import annotations

import base64
import hashlib
from typing import Sequence

from studioflow.media.service import AudioResult, StyleParams
from studioflow.project.model import Character, DialogueLine, Scene


def _filler(seed: str, size: int) -> bytes:
    digest = hashlib.sha256(seed.encode("utf-8")).digest()
    return (digest * (size // len(digest) + 1))[:size]


class PlaceholderGenerationService:
    """Development stub that returns deterministic, valid media payloads.

    Used for dry runs when no remote generation service is configured.
    """

    def generate_image(self, scene: Scene, characters: Sequence[Character], style: StyleParams) -> str:
        data = _filler(f"image:{scene.id}:{style.seed}", 2048)
        return "data:image/png;base64," + base64.b64encode(data).decode("ascii")

    def generate_video(self, image: str, prompt: str, style: StyleParams) -> str:
        token = hashlib.sha256(f"{image[-64:]}:{prompt}".encode("utf-8")).hexdigest()[:16]
        return f"https://placeholder.invalid/videos/{token}.mp4"

    def generate_audio(self, lines: Sequence[DialogueLine], characters: Sequence[Character]) -> AudioResult:
        text = "|".join(line.text for line in lines)
        data = _filler(f"audio:{text}", 12_000)
        return AudioResult(media="data:audio/mpeg;base64," + base64.b64encode(data).decode("ascii"))
