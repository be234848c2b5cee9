from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol

import boto3
from botocore.exceptions import ClientError

from studioflow.project.model import Asset, AssetVariant, Project

logger = logging.getLogger(__name__)

ACTIVE_PROJECT_KEY = "studioflow.active_project.v1"
ARCHIVES_KEY = "studioflow.archives.v1"
BATCH_QUEUE_KEY = "studioflow.batch_queue.v1"


class StorageError(RuntimeError):
    """Raised when a key-value write cannot be completed."""


class StorageQuotaError(StorageError):
    """Raised when a write is rejected because the store is out of space."""


class KeyValueStore(Protocol):
    def get(self, key: str) -> Optional[str]: ...

    def put(self, key: str, value: str) -> None: ...

    def delete(self, key: str) -> None: ...


class MemoryStore:
    """In-process store; also the fallback when nothing can be persisted."""

    def __init__(self, quota_bytes: int | None = None) -> None:
        self._items: Dict[str, str] = {}
        self.quota_bytes = quota_bytes

    def get(self, key: str) -> Optional[str]:
        return self._items.get(key)

    def put(self, key: str, value: str) -> None:
        if self.quota_bytes is not None and len(value.encode("utf-8")) > self.quota_bytes:
            raise StorageQuotaError(f"Value for {key} exceeds quota of {self.quota_bytes} bytes")
        self._items[key] = value

    def delete(self, key: str) -> None:
        self._items.pop(key, None)


class LocalFileStore:
    """One JSON document per key beneath ``root``."""

    def __init__(self, root: Path, quota_bytes: int | None = None) -> None:
        self._root = Path(root)
        self.quota_bytes = quota_bytes

    def _path(self, key: str) -> Path:
        return self._root / f"{key}.json"

    def get(self, key: str) -> Optional[str]:
        path = self._path(key)
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise StorageError(f"Failed to read {path}") from exc

    def put(self, key: str, value: str) -> None:
        encoded = value.encode("utf-8")
        if self.quota_bytes is not None and len(encoded) > self.quota_bytes:
            raise StorageQuotaError(f"Value for {key} exceeds quota of {self.quota_bytes} bytes")
        path = self._path(key)
        tmp_path = path.with_suffix(".json.tmp")
        try:
            self._root.mkdir(parents=True, exist_ok=True)
            tmp_path.write_bytes(encoded)
            tmp_path.replace(path)
        except OSError as exc:
            raise StorageError(f"Failed to write {path}") from exc

    def delete(self, key: str) -> None:
        path = self._path(key)
        try:
            path.unlink(missing_ok=True)
        except OSError as exc:
            raise StorageError(f"Failed to delete {path}") from exc


@dataclass
class S3Store:
    bucket: str
    prefix: str = "studioflow"
    client: Any = None

    def __post_init__(self) -> None:
        self._client = self.client or boto3.client("s3")

    def _key(self, key: str) -> str:
        return f"{self.prefix.rstrip('/')}/{key}.json" if self.prefix else f"{key}.json"

    def get(self, key: str) -> Optional[str]:
        try:
            response = self._client.get_object(Bucket=self.bucket, Key=self._key(key))
        except ClientError as exc:
            code = exc.response.get("Error", {}).get("Code")
            if code in {"NoSuchKey", "404"}:
                return None
            raise StorageError(f"Failed to read {key} from s3://{self.bucket}") from exc
        return response["Body"].read().decode("utf-8")

    def put(self, key: str, value: str) -> None:
        try:
            self._client.put_object(
                Bucket=self.bucket,
                Key=self._key(key),
                Body=value.encode("utf-8"),
                ContentType="application/json",
            )
        except ClientError as exc:
            code = exc.response.get("Error", {}).get("Code")
            if code in {"EntityTooLarge", "QuotaExceeded"}:
                raise StorageQuotaError(f"s3://{self.bucket} rejected {key}: {code}") from exc
            raise StorageError(f"Failed to write {key} to s3://{self.bucket}") from exc

    def delete(self, key: str) -> None:
        try:
            self._client.delete_object(Bucket=self.bucket, Key=self._key(key))
        except ClientError as exc:
            raise StorageError(f"Failed to delete {key} from s3://{self.bucket}") from exc


def _is_inline(value: Optional[str]) -> bool:
    return bool(value) and value.startswith("data:")


def strip_inline_media(project: Project) -> Project:
    """Drop inline binary payloads so the snapshot fits a constrained store."""

    def _strip_asset(asset: Asset) -> Asset:
        return asset.model_copy(
            update={
                "image_url": None if _is_inline(asset.image_url) else asset.image_url,
                "video_url": None if _is_inline(asset.video_url) else asset.video_url,
                "audio_url": None if _is_inline(asset.audio_url) else asset.audio_url,
                "variants": [
                    AssetVariant(
                        image_url=None if _is_inline(v.image_url) else v.image_url,
                        video_url=None if _is_inline(v.video_url) else v.video_url,
                        timestamp=v.timestamp,
                    )
                    for v in asset.variants
                ],
            }
        )

    characters = [
        c.model_copy(update={"reference_image": None}) if _is_inline(c.reference_image) else c
        for c in project.characters
    ]
    return project.model_copy(
        update={
            "assets": {scene_id: _strip_asset(asset) for scene_id, asset in project.assets.items()},
            "characters": characters,
            "modules": {key: value for key, value in project.modules.items() if not _is_inline(value)},
        }
    )


@dataclass(frozen=True)
class SaveResult:
    persisted: bool
    stripped: bool = False


class ProjectRepository:
    """Reads and writes the current project and the archive list."""

    def __init__(self, store: KeyValueStore) -> None:
        self._store = store

    def load(self) -> Optional[Project]:
        raw = self._store.get(ACTIVE_PROJECT_KEY)
        if raw is None:
            return None
        return Project.model_validate(json.loads(raw))

    def save(self, project: Project) -> SaveResult:
        try:
            self._store.put(ACTIVE_PROJECT_KEY, self._encode(project))
            return SaveResult(persisted=True)
        except StorageQuotaError as exc:
            logger.warning("Project snapshot exceeds storage quota (%s); stripping inline media", exc)
        except StorageError:
            logger.warning("Failed to persist project snapshot; keeping in-memory state", exc_info=True)
            return SaveResult(persisted=False)

        try:
            self._store.put(ACTIVE_PROJECT_KEY, self._encode(strip_inline_media(project)))
        except StorageError:
            logger.warning("Stripped project snapshot still could not be persisted; keeping in-memory state", exc_info=True)
            return SaveResult(persisted=False, stripped=True)
        return SaveResult(persisted=True, stripped=True)

    def load_archives(self) -> List[Project]:
        raw = self._store.get(ARCHIVES_KEY)
        if raw is None:
            return []
        return [Project.model_validate(item) for item in json.loads(raw)]

    def archive(self, project: Project) -> SaveResult:
        try:
            existing = self.load_archives()
        except StorageError:
            logger.warning("Failed to read project archive; not appending", exc_info=True)
            return SaveResult(persisted=False)
        archives = [*existing, project]
        payload = json.dumps([item.model_dump(mode="json") for item in archives])
        try:
            self._store.put(ARCHIVES_KEY, payload)
        except StorageError:
            logger.warning("Failed to persist project archive", exc_info=True)
            return SaveResult(persisted=False)
        return SaveResult(persisted=True)

    @staticmethod
    def _encode(project: Project) -> str:
        return json.dumps(project.model_dump(mode="json"))
