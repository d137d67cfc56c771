"""
Object storage holding inspection and deficiency uploads: Firebase Storage,
Tencent COS (S3-compatible) and an in-memory double.

Records reference uploads by download URL; `delete_file` accepts either a
bucket key or such a URL.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol
from urllib.parse import unquote, urlparse

import boto3
from botocore.config import Config
from firebase_admin import storage


class StorageClient(Protocol):
    """Defines the operations the engine needs from object storage."""

    def delete_file(self, path_or_url: str) -> None:
        ...


def storage_path(path_or_url: str) -> str:
    """
    Resolves a bucket key from a download URL.

    Handles Firebase Storage URLs (".../o/<encoded key>?alt=media") and plain
    virtual-hosted URLs ("https://bucket.host/<key>").
    """
    if "://" not in path_or_url:
        return path_or_url.lstrip("/")
    parsed = urlparse(path_or_url)
    path = parsed.path
    if "/o/" in path:
        path = path.split("/o/", 1)[1]
    return unquote(path).lstrip("/")


@dataclass
class InMemoryStorageClient:
    """Test double for storage interactions."""

    stored_objects: dict = field(default_factory=dict)
    deleted: list = field(default_factory=list)

    def delete_file(self, path_or_url: str) -> None:
        key = storage_path(path_or_url)
        if key not in self.stored_objects:
            raise FileNotFoundError(key)
        del self.stored_objects[key]
        self.deleted.append(key)


class FirebaseStorageClient:
    """Default bucket of the Firebase project, or `bucket_name` when given."""

    def __init__(self, bucket_name: str | None = None):
        self._bucket = storage.bucket(bucket_name)

    def delete_file(self, path_or_url: str) -> None:
        self._bucket.blob(storage_path(path_or_url)).delete()


@dataclass
class CosStorageClient:
    """
    S3-compatible storage client for Tencent COS.
    """

    bucket: str
    region: str
    endpoint: str
    access_key_id: str
    secret_access_key: str

    def __post_init__(self):
        # Use virtual-hosted style addressing to satisfy COS requirements.
        config = Config(
            s3={"addressing_style": "virtual"},
            signature_version="s3v4",
        )
        self._client = boto3.client(
            "s3",
            endpoint_url=self.endpoint,
            region_name=self.region,
            aws_access_key_id=self.access_key_id,
            aws_secret_access_key=self.secret_access_key,
            config=config,
        )

    def delete_file(self, path_or_url: str) -> None:
        self._client.delete_object(Bucket=self.bucket, Key=storage_path(path_or_url))
