"""
Blob storage for uploaded images: local uploads directory, S3-compatible
buckets, and an in-memory double for tests.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Optional, Protocol
from urllib.parse import urlparse

import boto3
from botocore.config import Config


class BlobStore(Protocol):
    """Defines the operations the feed needs from image storage."""

    def put(self, key: str, data: bytes, content_type: str) -> str:
        """Store ``data`` and return the reference saved on the post."""
        ...

    def delete(self, reference: str) -> None:
        ...


def _basename(reference: str) -> str:
    path = urlparse(reference).path if "://" in reference else reference
    return path.rstrip("/").split("/")[-1]


@dataclass
class InMemoryBlobStore:
    """Test double for storage interactions."""

    base_url: str = "https://example.test/storage"
    stored_objects: dict = field(default_factory=dict)
    content_types: dict = field(default_factory=dict)

    def put(self, key: str, data: bytes, content_type: str) -> str:
        self.stored_objects[key] = bytes(data)
        self.content_types[key] = content_type
        return f"{self.base_url}/{key}"

    def delete(self, reference: str) -> None:
        prefix = f"{self.base_url}/"
        key = reference[len(prefix):] if reference.startswith(prefix) else reference
        if key not in self.stored_objects:
            raise FileNotFoundError(reference)
        del self.stored_objects[key]
        self.content_types.pop(key, None)


@dataclass
class LocalBlobStore:
    """
    Writes images into a flat uploads directory.

    References are site-relative (``/uploads/<name>``); the app serves the
    directory at ``url_prefix``.
    """

    directory: str
    url_prefix: str = "/uploads"

    def __post_init__(self):
        os.makedirs(self.directory, exist_ok=True)

    def path_for(self, reference: str) -> Optional[str]:
        name = _basename(reference)
        if not name or name in (".", ".."):
            return None
        return os.path.join(self.directory, name)

    def put(self, key: str, data: bytes, content_type: str) -> str:
        name = _basename(key)
        with open(os.path.join(self.directory, name), "wb") as f:
            f.write(data)
        return f"{self.url_prefix.rstrip('/')}/{name}"

    def delete(self, reference: str) -> None:
        path = self.path_for(reference)
        if path is None:
            raise FileNotFoundError(reference)
        os.unlink(path)


@dataclass
class S3BlobStore:
    """
    S3-compatible storage client with publicly readable objects.
    """

    bucket: str
    region: str = ""
    endpoint: str = ""
    access_key_id: str = ""
    secret_access_key: str = ""
    public_base_url: str = ""

    def __post_init__(self):
        config = Config(
            s3={"addressing_style": "virtual"},
            signature_version="s3v4",
        )
        self._client = boto3.client(
            "s3",
            endpoint_url=self.endpoint or None,
            region_name=self.region or None,
            aws_access_key_id=self.access_key_id or None,
            aws_secret_access_key=self.secret_access_key or None,
            config=config,
        )

    def url_for(self, key: str) -> str:
        if self.public_base_url:
            return f"{self.public_base_url.rstrip('/')}/{key}"
        if self.endpoint:
            parsed = urlparse(self.endpoint)
            return f"{parsed.scheme}://{self.bucket}.{parsed.netloc}/{key}"
        region = self.region or "us-east-1"
        return f"https://{self.bucket}.s3.{region}.amazonaws.com/{key}"

    def key_for(self, reference: str) -> str:
        if self.public_base_url and reference.startswith(self.public_base_url):
            return reference[len(self.public_base_url):].lstrip("/")
        return urlparse(reference).path.lstrip("/")

    def put(self, key: str, data: bytes, content_type: str) -> str:
        self._client.put_object(
            Bucket=self.bucket,
            Key=key,
            Body=data,
            ContentType=content_type,
            CacheControl="public, max-age=2592000",
        )
        return self.url_for(key)

    def delete(self, reference: str) -> None:
        self._client.delete_object(Bucket=self.bucket, Key=self.key_for(reference))
