from __future__ import annotations

import json
import os

import pytest
from botocore.exceptions import ClientError

from studioflow import ssm
from studioflow.config import StorageBackend, StudioConfig
from studioflow.media.http_client import HttpGenerationService
from studioflow.media.placeholder import PlaceholderGenerationService
from studioflow.media.service import StyleParams
from studioflow.media.validators import validate_audio, validate_image, validate_video
from studioflow.project.model import DialogueLine, DirectorMode, Scene
from studioflow.project.store import LocalFileStore, MemoryStore, S3Store


class StubSSMClient:
    def __init__(self, values: dict[str, str]) -> None:
        self.values = values
        self.requests: list[str] = []

    def get_parameter(self, Name, WithDecryption):
        self.requests.append(Name)
        if Name not in self.values:
            raise ClientError({"Error": {"Code": "ParameterNotFound", "Message": "missing"}}, "GetParameter")
        return {"Parameter": {"Value": self.values[Name]}}


def test_defaults_match_batch_policy():
    config = StudioConfig()
    assert config.batch.max_retries == 2
    assert config.batch.retry_delay(1) == 6.0
    assert config.batch.retry_delay(2) == 12.0
    assert config.batch.failure_cooldown == 30.0
    assert config.batch.inter_scene_delay == 2.0
    assert config.batch.resume_window.total_seconds() == 24 * 3600


def test_from_file_reads_json(tmp_path):
    path = tmp_path / "studio.json"
    path.write_text(json.dumps({"storage_backend": "memory", "batch": {"max_retries": 4}}), encoding="utf-8")

    config = StudioConfig.from_file(path)

    assert config.storage_backend == StorageBackend.MEMORY
    assert config.batch.max_retries == 4
    assert config.batch.failure_cooldown == 30.0


def test_from_file_falls_back_to_yaml(tmp_path):
    path = tmp_path / "studio.yaml"
    path.write_text(
        "director_mode: expert\nbatch:\n  inter_scene_delay: 0.5\n  resume_window_hours: 6\n",
        encoding="utf-8",
    )

    config = StudioConfig.from_file(path)

    assert config.director_mode == DirectorMode.EXPERT
    assert config.batch.inter_scene_delay == 0.5
    assert config.batch.resume_window.total_seconds() == 6 * 3600


def test_build_store_by_backend(tmp_path):
    assert isinstance(StudioConfig(data_root=tmp_path).build_store(), LocalFileStore)
    assert isinstance(StudioConfig(storage_backend="memory").build_store(), MemoryStore)
    s3 = StudioConfig(storage_backend="s3", s3_bucket="bucket").build_store(s3_client=object())
    assert isinstance(s3, S3Store)
    assert s3.bucket == "bucket"
    with pytest.raises(ValueError):
        StudioConfig(storage_backend="s3").build_store()


def test_generation_service_reads_api_key_from_env(monkeypatch):
    monkeypatch.setenv("STUDIOFLOW_API_KEY", "from-env")
    config = StudioConfig(generation_base_url="https://gen.example.com", generation_poll_interval=3.0)

    service = config.build_generation_service()

    assert isinstance(service, HttpGenerationService)
    assert service.api_key == "from-env"
    assert service.poll_interval == 3.0


def test_without_base_url_uses_placeholder_media():
    service = StudioConfig().build_generation_service()
    assert isinstance(service, PlaceholderGenerationService)

    scene = Scene(id=1, description="Harbor", narrator_lines=[DialogueLine(speaker="A", text="Hi")])
    image = service.generate_image(scene, [], StyleParams())
    assert validate_image(image).valid
    assert validate_video(service.generate_video(image, "pan", StyleParams())).valid
    assert validate_audio(service.generate_audio(scene.narrator_lines, []).media).valid


def test_hydrate_env_reads_ssm_parameter_once(monkeypatch):
    monkeypatch.setenv("STUDIOFLOW_TEST_KEY", "")
    client = StubSSMClient({"/studioflow/test-key": "from-ssm"})

    ssm.hydrate_env("STUDIOFLOW_TEST_KEY", "/studioflow/test-key", client=client)
    ssm.hydrate_env("STUDIOFLOW_TEST_KEY", "/studioflow/test-key", client=client)

    assert os.environ["STUDIOFLOW_TEST_KEY"] == "from-ssm"
    assert client.requests == ["/studioflow/test-key"]


def test_explicit_env_var_wins_over_ssm(monkeypatch):
    monkeypatch.setenv("STUDIOFLOW_TEST_KEY", "explicit")
    client = StubSSMClient({"/studioflow/other-key": "from-ssm"})

    assert ssm.hydrate_env("STUDIOFLOW_TEST_KEY", "/studioflow/other-key", client=client) is False
    assert os.environ["STUDIOFLOW_TEST_KEY"] == "explicit"
    assert client.requests == []


def test_missing_ssm_parameter_raises_lookup_error():
    with pytest.raises(ssm.SecretLookupError, match="ParameterNotFound"):
        ssm.read_secret("/studioflow/absent", client=StubSSMClient({}))
