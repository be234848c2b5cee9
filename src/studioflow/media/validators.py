from __future__ import annotations

import base64
import binascii
from dataclasses import dataclass
from typing import Optional

MIN_IMAGE_BYTES = 1024
MAX_IMAGE_BYTES = 20 * 1024 * 1024
MIN_VIDEO_BASE64_CHARS = 1000
MIN_AUDIO_BYTES = 10_000
MAX_AUDIO_BYTES = 5 * 1024 * 1024


@dataclass(frozen=True)
class ValidationResult:
    valid: bool
    error: Optional[str] = None


_OK = ValidationResult(valid=True)


def _base64_payload(data_uri: str) -> Optional[str]:
    _, _, payload = data_uri.partition(",")
    return payload or None


def _decoded_size(payload: str) -> Optional[int]:
    try:
        return len(base64.b64decode(payload, validate=True))
    except (binascii.Error, ValueError):
        return None


def validate_image(payload: Optional[str]) -> ValidationResult:
    if not payload or not payload.startswith("data:image"):
        return ValidationResult(False, "Invalid image format: must be data URI")
    data = _base64_payload(payload)
    if not data or len(data) < 100:
        return ValidationResult(False, "Image data too small or missing")
    size = _decoded_size(data)
    if size is None:
        return ValidationResult(False, "Invalid base64 encoding")
    if size < MIN_IMAGE_BYTES:
        return ValidationResult(False, "Image size too small (< 1KB)")
    if size > MAX_IMAGE_BYTES:
        return ValidationResult(False, "Image size too large (> 20MB)")
    return _OK


def validate_video(payload: Optional[str]) -> ValidationResult:
    if not payload:
        return ValidationResult(False, "Video URL is empty")
    if payload.startswith("data:video"):
        data = _base64_payload(payload)
        if not data or len(data) < MIN_VIDEO_BASE64_CHARS:
            return ValidationResult(False, "Video data too small")
        return _OK
    if payload.startswith(("blob:", "https://", "http://")):
        return _OK
    return ValidationResult(False, "Invalid video format: must be blob URL, data URI or http(s) URL")


def validate_audio(payload: Optional[str]) -> ValidationResult:
    if not payload or not payload.startswith("data:audio"):
        return ValidationResult(False, "Invalid audio format: must be data URI")
    data = _base64_payload(payload)
    if not data or len(data) < 100:
        return ValidationResult(False, "Audio data too small or missing")
    size = _decoded_size(data)
    if size is None:
        return ValidationResult(False, "Invalid base64 encoding")
    if size < MIN_AUDIO_BYTES:
        return ValidationResult(False, "Audio duration too short")
    if size > MAX_AUDIO_BYTES:
        return ValidationResult(False, "Audio duration too long")
    return _OK
