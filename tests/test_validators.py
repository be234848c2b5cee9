from __future__ import annotations

import base64

import pytest

from factories import audio_payload, image_payload
from studioflow.media.validators import validate_audio, validate_image, validate_video


def test_valid_image_passes():
    assert validate_image(image_payload()).valid


@pytest.mark.parametrize(
    "payload, error",
    [
        (None, "Invalid image format: must be data URI"),
        ("https://cdn.example.com/a.png", "Invalid image format: must be data URI"),
        ("data:image/png;base64,abc", "Image data too small or missing"),
        (image_payload(size=512), "Image size too small (< 1KB)"),
        ("data:image/png;base64," + "!" * 200, "Invalid base64 encoding"),
    ],
)
def test_invalid_images_are_rejected(payload, error):
    result = validate_image(payload)
    assert result.valid is False
    assert result.error == error


@pytest.mark.parametrize(
    "payload",
    [
        "blob:https://app/1234",
        "https://cdn.example.com/v.mp4",
        "data:video/mp4;base64," + "A" * 1000,
    ],
)
def test_video_sources_accepted(payload):
    assert validate_video(payload).valid


def test_short_inline_video_rejected():
    assert validate_video("data:video/mp4;base64," + "A" * 10).valid is False
    assert validate_video("ftp://example.com/v.mp4").valid is False


def test_audio_size_bounds():
    assert validate_audio(audio_payload()).valid
    short = "data:audio/mpeg;base64," + base64.b64encode(b"\x00" * 500).decode("ascii")
    assert validate_audio(short).error == "Audio duration too short"
    assert validate_audio(image_payload()).valid is False
