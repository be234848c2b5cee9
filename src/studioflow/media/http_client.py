from __future__ import annotations

import logging
import re
import time
from typing import Any, Dict, Mapping, Optional, Sequence

import requests

from studioflow.media.service import AudioResult, GenerationServiceError, StyleParams
from studioflow.project.model import Character, DialogueLine, Scene

logger = logging.getLogger(__name__)

# Video job states reported by GET /v1/videos/{id}.
VIDEO_DONE = frozenset({"completed", "succeeded"})
VIDEO_FAILED = frozenset({"failed", "cancelled", "expired"})
# Poll responses that mean "ask again later" rather than "the job is broken".
_TRANSIENT_STATUS_CODES = frozenset({429, 502, 503, 504})

_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(ms|h|m|s)")
_UNIT_SECONDS = {"h": 3600.0, "m": 60.0, "s": 1.0, "ms": 0.001}


class HttpGenerationService:
    """Blocking client for a remote image/video/audio generation API.

    Images and audio are synchronous requests; video is submitted as a job and
    polled until it reaches a terminal state or ``max_wait`` elapses.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str | None = None,
        request_timeout: float = 60.0,
        poll_interval: float = 10.0,
        max_wait: float = 600.0,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.request_timeout = request_timeout
        self.poll_interval = poll_interval
        self.max_wait = max_wait

    # GenerationService ------------------------------------------------

    def generate_image(self, scene: Scene, characters: Sequence[Character], style: StyleParams) -> str:
        cast = {c.id for c in characters if c.id in scene.characters_in_scene or c.name in scene.characters_in_scene}
        payload = {
            "prompt": scene.visual_prompt or scene.description,
            "characters": [
                {"name": c.name, "description": c.visual_prompt or c.description, "reference": c.reference_image}
                for c in characters
                if c.id in cast
            ],
            "style": scene.style_override or style.global_style,
            "aspect_ratio": style.aspect_ratio,
            "resolution": style.resolution,
            "seed": style.seed,
            "style_reference": style.style_reference,
        }
        data = self._post("/v1/images", payload)
        image = data.get("image")
        if not image:
            raise GenerationServiceError(f"Image response missing payload for scene {scene.id}")
        return image

    def generate_video(self, image: str, prompt: str, style: StyleParams) -> str:
        job = self._post(
            "/v1/videos",
            {
                "image": image,
                "prompt": prompt,
                "style": style.global_style,
                "aspect_ratio": style.aspect_ratio,
                "resolution": style.resolution,
            },
        )
        job_id = job.get("id")
        if not job_id:
            raise GenerationServiceError(f"Video create response missing job id: {job}")
        result = self._wait_for_video(job_id)
        video = result.get("video_url") or result.get("video")
        if not video:
            raise GenerationServiceError(f"Video job {job_id} finished without a video")
        return video

    def generate_audio(self, lines: Sequence[DialogueLine], characters: Sequence[Character]) -> AudioResult:
        voices = {c.name: c.voice_id for c in characters if c.voice_id}
        payload = {
            "lines": [{"speaker": line.speaker, "text": line.text, "emotion": line.emotion} for line in lines],
            "voices": voices,
        }
        data = self._post("/v1/audio", payload)
        return AudioResult(media=data.get("audio"), partial_failures=list(data.get("failures") or []))

    # Internal helpers -------------------------------------------------

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def _post(self, path: str, payload: Mapping[str, Any]) -> Dict[str, Any]:
        try:
            response = requests.post(
                f"{self.base_url}{path}",
                headers=self._headers(),
                json=payload,
                timeout=self.request_timeout,
            )
        except requests.RequestException as exc:
            raise GenerationServiceError(f"POST {path} failed: {exc}") from exc
        if response.status_code >= 400:
            logger.error("Generation request %s failed (%s): %s", path, response.status_code, response.text)
            raise GenerationServiceError(f"POST {path} returned {response.status_code}")
        self._pause_for_rate_limit(response.headers)
        return response.json()

    def _wait_for_video(self, job_id: str) -> Dict[str, Any]:
        deadline = time.monotonic() + self.max_wait
        url = f"{self.base_url}/v1/videos/{job_id}"
        last_state: Optional[str] = None
        while time.monotonic() <= deadline:
            try:
                response = requests.get(url, headers=self._headers(), timeout=self.request_timeout)
            except (requests.exceptions.Timeout, requests.exceptions.ConnectionError) as exc:
                logger.warning("Video job %s poll did not reach the service (%s); polling again", job_id, exc)
                time.sleep(self.poll_interval)
                continue
            if response.status_code in _TRANSIENT_STATUS_CODES:
                wait = self._retry_after(response.headers) or self.poll_interval
                logger.warning("Video job %s poll throttled (%s); waiting %.1fs", job_id, response.status_code, wait)
                time.sleep(wait)
                continue
            if response.status_code >= 400:
                raise GenerationServiceError(f"Video job {job_id} poll returned {response.status_code}")

            job = response.json()
            state = str(job.get("status", "")).lower()
            if state != last_state:
                logger.info("Video job %s is %s (progress %s)", job_id, state or "unknown", job.get("progress", "n/a"))
                last_state = state
            if state in VIDEO_DONE:
                return job
            if state in VIDEO_FAILED:
                raise GenerationServiceError(f"Video job {job_id} {state}: {job.get('error') or 'no reason given'}")
            if not self._pause_for_rate_limit(response.headers):
                time.sleep(self.poll_interval)
        raise GenerationServiceError(f"Video job {job_id} did not finish within {self.max_wait} seconds")

    def _pause_for_rate_limit(self, headers: Optional[Mapping[str, str]]) -> float:
        """Sleep until the request budget resets when it is exhausted; return the time slept."""
        if not headers:
            return 0.0
        lower = {key.lower(): value for key, value in headers.items()}
        try:
            remaining = float(lower.get("x-ratelimit-remaining-requests", "1"))
        except ValueError:
            return 0.0
        if remaining > 0:
            return 0.0
        wait = self._parse_duration(lower.get("x-ratelimit-reset-requests", ""))
        if wait > 0:
            logger.debug("Request budget exhausted; sleeping %.2fs", wait)
            time.sleep(wait)
        return wait

    def _retry_after(self, headers: Optional[Mapping[str, str]]) -> float:
        if not headers:
            return 0.0
        lower = {key.lower(): value for key, value in headers.items()}
        return self._parse_duration(lower.get("retry-after", ""))

    @staticmethod
    def _parse_duration(value: str) -> float:
        """Parse ``1m30s``/``250ms``/``2h`` style durations, or bare seconds."""
        parts = _DURATION_PART.findall(value or "")
        if parts:
            return sum(float(amount) * _UNIT_SECONDS[unit] for amount, unit in parts)
        try:
            return max(float(value), 0.0)
        except ValueError:
            return 0.0
