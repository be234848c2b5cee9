from __future__ import annotations

import logging
from enum import Enum
from typing import Callable, Optional

from studioflow.media.service import GenerationService, InvalidAssetError, StyleParams
from studioflow.media.validators import ValidationResult, validate_audio, validate_image, validate_video
from studioflow.project.cell import ProjectCell
from studioflow.project.model import Asset, AssetStatus, AssetVariant, LogType, Project, Scene

logger = logging.getLogger(__name__)

Validator = Callable[[Optional[str]], ValidationResult]


class GenerationStage(str, Enum):
    FULL = "full"
    VIDEO = "video"
    AUDIO = "audio"


class SceneGenerationError(RuntimeError):
    """Raised when one generation attempt for a scene fails."""

    def __init__(self, scene_id: int, stage: AssetStatus | None, message: str) -> None:
        super().__init__(f"Scene {scene_id} failed at {stage.value if stage else 'setup'}: {message}")
        self.scene_id = scene_id
        self.stage = stage
        self.message = message


class SceneGenerator:
    """Runs the image -> video -> audio pipeline for one scene.

    Every status change is written through the project cell so observers see
    ``generating_image``, ``generating_video`` and ``generating_audio`` in
    order before ``complete``. Audio problems never fail the scene.
    """

    def __init__(
        self,
        cell: ProjectCell,
        service: GenerationService,
        image_validator: Validator = validate_image,
        video_validator: Validator = validate_video,
        audio_validator: Validator = validate_audio,
    ) -> None:
        self._cell = cell
        self._service = service
        self._validate_image = image_validator
        self._validate_video = video_validator
        self._validate_audio = audio_validator

    def generate(self, scene_id: int, stage: GenerationStage = GenerationStage.FULL) -> Asset:
        scene = self._require_scene(scene_id)
        current = self._cell.get().asset(scene_id)

        if stage == GenerationStage.AUDIO:
            if not current.video_url:
                raise SceneGenerationError(scene_id, AssetStatus.GENERATING_AUDIO, "No video to attach audio to")
            self._set_status(scene_id, AssetStatus.GENERATING_AUDIO)
            audio_url, audio_error = self._audio(scene_id)
            self._write(
                scene_id,
                lambda p: p.update_asset(
                    scene_id,
                    status=AssetStatus.COMPLETE,
                    audio_url=audio_url or p.asset(scene_id).audio_url,
                    error=audio_error,
                ),
            )
            return self._cell.get().asset(scene_id)

        if stage == GenerationStage.VIDEO:
            if not current.image_url:
                raise SceneGenerationError(scene_id, AssetStatus.GENERATING_VIDEO, "No accepted image to animate")
            image = current.image_url
        else:
            self._set_status(scene_id, AssetStatus.GENERATING_IMAGE)
            image = self._stage(
                scene_id,
                AssetStatus.GENERATING_IMAGE,
                lambda project: self._service.generate_image(
                    scene, project.characters, StyleParams.from_project(project)
                ),
                self._validate_image,
            )
            self._write(scene_id, lambda p: p.update_asset(scene_id, image_url=image))

        self._set_status(scene_id, AssetStatus.GENERATING_VIDEO)
        video = self._stage(
            scene_id,
            AssetStatus.GENERATING_VIDEO,
            lambda project: self._service.generate_video(
                image, self._scene(project, scene_id).visual_prompt or scene.description,
                StyleParams.from_project(project),
            ),
            self._validate_video,
        )
        self._write(scene_id, lambda p: p.update_asset(scene_id, video_url=video))

        self._set_status(scene_id, AssetStatus.GENERATING_AUDIO)
        audio_url, audio_error = self._audio(scene_id)

        variant = AssetVariant(image_url=image, video_url=video)

        def _complete(project: Project) -> Project:
            asset = project.asset(scene_id).with_variant(variant)
            return project.with_asset(
                scene_id,
                asset.model_copy(
                    update={
                        "status": AssetStatus.COMPLETE,
                        "audio_url": audio_url,
                        "error": audio_error,
                    }
                ),
            )

        self._write(scene_id, _complete)
        logger.info("Scene %s complete", scene_id)
        return self._cell.get().asset(scene_id)

    # Internal helpers -------------------------------------------------

    @staticmethod
    def _scene(project: Project, scene_id: int) -> Scene:
        scene = project.scene(scene_id)
        if scene is None:
            raise SceneGenerationError(scene_id, None, "Scene no longer exists")
        return scene

    def _require_scene(self, scene_id: int) -> Scene:
        return self._scene(self._cell.get(), scene_id)

    def _set_status(self, scene_id: int, status: AssetStatus) -> None:
        update = {"status": status}
        if status == AssetStatus.GENERATING_IMAGE:
            update["error"] = None
        self._write(scene_id, lambda p: p.update_asset(scene_id, **update))

    def _write(self, scene_id: int, change: Callable[[Project], Project]) -> None:
        """Apply an asset change unless the scene was deleted in the meantime."""
        self._cell.update(lambda p: change(p) if p.scene(scene_id) is not None else p)

    def _fail(self, scene_id: int, stage: AssetStatus, message: str) -> SceneGenerationError:
        self._write(
            scene_id,
            lambda p: p.update_asset(scene_id, status=AssetStatus.ERROR, error=message).with_log(
                f"Sequence generation failed for Scene #{scene_id}: {message}", LogType.ERROR
            ),
        )
        return SceneGenerationError(scene_id, stage, message)

    def _stage(
        self,
        scene_id: int,
        stage: AssetStatus,
        call: Callable[[Project], str],
        validator: Validator,
    ) -> str:
        try:
            payload = call(self._cell.get())
            result = validator(payload)
            if not result.valid:
                raise InvalidAssetError(result.error or "invalid payload")
        except SceneGenerationError as exc:
            if exc.stage is None:
                raise
            raise self._fail(scene_id, stage, exc.message) from exc
        except Exception as exc:
            logger.warning("Scene %s %s failed: %s", scene_id, stage.value, exc)
            raise self._fail(scene_id, stage, str(exc)) from exc
        return payload

    def _audio(self, scene_id: int) -> tuple[Optional[str], Optional[str]]:
        project = self._cell.get()
        scene = self._scene(project, scene_id)
        if not scene.narrator_lines:
            return None, None
        try:
            result = self._service.generate_audio(scene.narrator_lines, project.characters)
        except Exception as exc:
            logger.warning("Audio generation failed for scene %s; continuing without audio: %s", scene_id, exc)
            return None, f"Audio unavailable: {exc}"
        if result.partial_failures:
            logger.warning("Scene %s audio partially failed: %s", scene_id, "; ".join(result.partial_failures))
        check = self._validate_audio(result.media)
        if not check.valid:
            logger.warning("Discarding invalid audio for scene %s: %s", scene_id, check.error)
            return None, f"Audio unavailable: {check.error}"
        if result.partial_failures:
            return result.media, f"Partial audio: {'; '.join(result.partial_failures)}"
        return result.media, None
