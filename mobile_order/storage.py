"""
Storage abstraction for S3-compatible object storage and in-memory testing.

Shop and product images are stored under keys built by `build_image_path`;
the key doubles as the `imagePath` kept on the record.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Protocol

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from mobile_order.types import ImageFolder

logger = logging.getLogger(__name__)


def build_image_path(
    folder: ImageFolder | str, owner_id: str, filename: str, now_ms: int
) -> str:
    """Object key for an uploaded image; the original filename is hex-encoded."""
    folder_name = folder.value if isinstance(folder, ImageFolder) else folder
    encoded = filename.encode("utf-8").hex()
    return f"{folder_name}/{owner_id}/{now_ms}_{encoded}"


class StorageClient(Protocol):
    """Defines the operations the API needs from object storage."""

    def upload_bytes(self, path: str, data: bytes, content_type: str) -> str:
        ...

    def delete(self, path: str) -> None:
        ...

    def public_url(self, path: str) -> str:
        ...

    def presign_get(self, path: str, expires_in: int = 3600) -> str:
        ...

    def exists(self, path: str) -> bool:
        ...


@dataclass
class InMemoryStorageClient:
    """Test double for storage interactions."""

    base_url: str = "https://example.test/storage"
    stored_objects: dict = None
    content_types: dict = None

    def __post_init__(self):
        if self.stored_objects is None:
            self.stored_objects = {}
        if self.content_types is None:
            self.content_types = {}

    def upload_bytes(self, path: str, data: bytes, content_type: str) -> str:
        self.stored_objects[path] = bytes(data)
        self.content_types[path] = content_type
        return self.public_url(path)

    def delete(self, path: str) -> None:
        self.stored_objects.pop(path, None)
        self.content_types.pop(path, None)

    def public_url(self, path: str) -> str:
        return f"{self.base_url}/{path}"

    def presign_get(self, path: str, expires_in: int = 3600) -> str:
        return f"{self.base_url}/{path}?op=get&expires={expires_in}"

    def exists(self, path: str) -> bool:
        return path in self.stored_objects


@dataclass
class S3StorageClient:
    """
    Storage client for AWS S3 or any S3-compatible endpoint.
    """

    bucket: str
    region: str
    endpoint: Optional[str] = None
    access_key_id: Optional[str] = None
    secret_access_key: Optional[str] = None
    public_base_url: Optional[str] = None

    def __post_init__(self):
        if not self.bucket:
            raise ValueError("S3_BUCKET is required for S3StorageClient")
        config = Config(signature_version="s3v4")
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
        logger.info("Uploaded %s (%d bytes)", path, len(data))
        return self.public_url(path)

    def delete(self, path: str) -> None:
        try:
            self._client.delete_object(Bucket=self.bucket, Key=path)
        except (BotoCoreError, ClientError):
            logger.exception("Failed to delete %s from bucket %s", path, self.bucket)

    def public_url(self, path: str) -> str:
        if self.public_base_url:
            return f"{self.public_base_url.rstrip('/')}/{path}"
        return f"https://{self.bucket}.s3.{self.region}.amazonaws.com/{path}"

    def presign_get(self, path: str, expires_in: int = 3600) -> str:
        return self._client.generate_presigned_url(
            ClientMethod="get_object",
            Params={"Bucket": self.bucket, "Key": path},
            ExpiresIn=expires_in,
        )

    def exists(self, path: str) -> bool:
        try:
            self._client.head_object(Bucket=self.bucket, Key=path)
        except ClientError as exc:
            code = exc.response.get("Error", {}).get("Code")
            if code in ("404", "NoSuchKey", "NotFound"):
                return False
            raise
        return True
