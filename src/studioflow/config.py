from __future__ import annotations

import json
import logging
import os
from enum import Enum
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field

from studioflow.batch.runner import BatchSettings
from studioflow.media.http_client import HttpGenerationService
from studioflow.media.placeholder import PlaceholderGenerationService
from studioflow.media.service import GenerationService
from studioflow.project.model import DirectorMode
from studioflow.project.store import KeyValueStore, LocalFileStore, MemoryStore, S3Store
from studioflow.ssm import SecretLookupError, hydrate_env

logger = logging.getLogger(__name__)


class StorageBackend(str, Enum):
    LOCAL = "local"
    S3 = "s3"
    MEMORY = "memory"


class StudioConfig(BaseModel):
    data_root: Path = Path("data")
    storage_backend: StorageBackend = StorageBackend.LOCAL
    s3_bucket: Optional[str] = None
    s3_prefix: str = "studioflow"
    storage_quota_bytes: Optional[int] = Field(default=None, gt=0)
    # Generation service
    generation_base_url: Optional[str] = None
    generation_api_key_env: str = "STUDIOFLOW_API_KEY"
    generation_api_key_ssm_parameter: Optional[str] = None
    generation_request_timeout: float = 60.0
    generation_poll_interval: float = 10.0
    generation_max_wait: float = 600.0
    director_mode: DirectorMode = DirectorMode.GUIDED
    batch: BatchSettings = Field(default_factory=BatchSettings)

    @classmethod
    def from_file(cls, path: Path) -> "StudioConfig":
        text = Path(path).read_text(encoding="utf-8")
        try:
            payload = json.loads(text)
        except json.JSONDecodeError:
            import yaml

            payload = yaml.safe_load(text)
        return cls.model_validate(payload or {})

    def build_store(self, s3_client=None) -> KeyValueStore:
        if self.storage_backend == StorageBackend.S3:
            if not self.s3_bucket:
                raise ValueError("s3_bucket is required when storage_backend is 's3'")
            return S3Store(bucket=self.s3_bucket, prefix=self.s3_prefix, client=s3_client)
        if self.storage_backend == StorageBackend.MEMORY:
            return MemoryStore(quota_bytes=self.storage_quota_bytes)
        return LocalFileStore(self.data_root, quota_bytes=self.storage_quota_bytes)

    def build_generation_service(self) -> GenerationService:
        if not self.generation_base_url:
            logger.warning("No generation_base_url configured; using placeholder media")
            return PlaceholderGenerationService()
        try:
            hydrate_env(self.generation_api_key_env, self.generation_api_key_ssm_parameter)
        except SecretLookupError:
            logger.warning("Could not load %s from SSM", self.generation_api_key_env, exc_info=True)
        api_key = os.getenv(self.generation_api_key_env)
        if not api_key:
            logger.warning("%s is not set; calling %s without credentials", self.generation_api_key_env,
                           self.generation_base_url)
        return HttpGenerationService(
            base_url=self.generation_base_url,
            api_key=api_key,
            request_timeout=self.generation_request_timeout,
            poll_interval=self.generation_poll_interval,
            max_wait=self.generation_max_wait,
        )
