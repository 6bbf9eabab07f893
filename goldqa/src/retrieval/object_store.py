"""Write-only durable stores for the serialized retrieval index."""
from __future__ import annotations

import json
import re
from pathlib import Path
from typing import Any, Dict, Protocol

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from goldqa.src.utils.config import CONFIG, StorageConfig
from goldqa.src.utils.errors import StorageError


def _safe_key(key: str) -> str:
    return re.sub(r"[^a-zA-Z0-9_./-]+", "_", key.strip()).lstrip("/")


class ObjectStore(Protocol):
    def put_json(self, key: str, payload: Dict[str, Any]) -> str:
        ...


class LocalObjectStore:
    """JSON files under a root directory."""

    def __init__(self, root: Path | str | None = None) -> None:
        self.root = Path(root) if root is not None else CONFIG.storage.local_root

    def put_json(self, key: str, payload: Dict[str, Any]) -> str:
        path = self.root / _safe_key(key)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(json.dumps(payload, ensure_ascii=False, indent=2, default=str), encoding="utf-8")
        except OSError as exc:
            raise StorageError(f"could not write {path}: {exc}") from exc
        return str(path)


class S3ObjectStore:
    """JSON objects in an S3 bucket."""

    def __init__(self, bucket: str, *, region: str | None = None, client: Any = None) -> None:
        self.bucket = bucket
        self.client = client or boto3.client("s3", region_name=region)

    def put_json(self, key: str, payload: Dict[str, Any]) -> str:
        safe = _safe_key(key)
        body = json.dumps(payload, ensure_ascii=False, default=str).encode("utf-8")
        try:
            self.client.put_object(Bucket=self.bucket, Key=safe, Body=body, ContentType="application/json")
        except (BotoCoreError, ClientError) as exc:
            raise StorageError(f"could not upload s3://{self.bucket}/{safe}: {exc}") from exc
        return f"s3://{self.bucket}/{safe}"


def build_object_store(config: StorageConfig | None = None) -> ObjectStore:
    settings = config or CONFIG.storage
    if settings.backend == "s3":
        if not settings.bucket:
            raise StorageError("S3 backend selected but S3_BUCKET_NAME is not set")
        return S3ObjectStore(settings.bucket, region=settings.region)
    return LocalObjectStore(settings.local_root)
