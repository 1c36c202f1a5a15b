"""
Storage abstraction for Supabase Storage (S3-compatible) and in-memory testing.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, Protocol

import boto3
from botocore.config import Config


class StorageClient(Protocol):
    """Defines the operations the API needs from object storage."""

    def upload_bytes(self, path: str, data: bytes, content_type: str) -> str:
        """Store ``data`` under ``path`` and return its public URL."""
        ...

    def delete(self, path: str) -> None:
        ...

    def public_url(self, path: str) -> str:
        ...

    def path_from_url(self, url: str) -> Optional[str]:
        """Return the object path for URLs served from this bucket, else None."""
        ...


class _PublicUrlMixin:
    base_url: str

    def public_url(self, path: str) -> str:
        return f"{self.base_url.rstrip('/')}/{path.lstrip('/')}"

    def path_from_url(self, url: str) -> Optional[str]:
        if not url:
            return None
        prefix = self.base_url.rstrip("/") + "/"
        if not url.startswith(prefix):
            return None
        path = url[len(prefix):].split("?", 1)[0]
        return path or None


@dataclass
class InMemoryStorageClient(_PublicUrlMixin):
    """Test double for storage interactions."""

    base_url: str = "https://example.test/storage"
    stored_objects: dict = field(default_factory=dict)
    deleted_paths: list = field(default_factory=list)

    def upload_bytes(self, path: str, data: bytes, content_type: str) -> str:
        self.stored_objects[path] = (bytes(data), content_type)
        return self.public_url(path)

    def delete(self, path: str) -> None:
        self.deleted_paths.append(path)
        self.stored_objects.pop(path, None)

    def reset(self) -> None:
        self.stored_objects.clear()
        self.deleted_paths.clear()


@dataclass
class S3StorageClient(_PublicUrlMixin):
    """
    S3-compatible storage client for Supabase Storage.

    ``base_url`` is the public URL prefix of the bucket, e.g.
    ``https://<project>.supabase.co/storage/v1/object/public/<bucket>``.
    """

    bucket: str
    endpoint: str
    region: str
    access_key_id: str
    secret_access_key: str
    base_url: str

    def __post_init__(self):
        # Supabase's S3 gateway only understands path-style addressing.
        config = Config(
            s3={"addressing_style": "path"},
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

    def upload_bytes(self, path: str, data: bytes, content_type: str) -> str:
        self._client.put_object(
            Bucket=self.bucket,
            Key=path,
            Body=data,
            ContentType=content_type,
        )
        return self.public_url(path)

    def delete(self, path: str) -> None:
        self._client.delete_object(Bucket=self.bucket, Key=path)
