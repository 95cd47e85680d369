"""
Object storage boundary: bucket/path addressed blobs with public URLs.

LocalObjectStorage keeps buckets as directories under UPLOAD_ROOT, which cms_api
serves at /uploads, so a stored object's public URL is
    {PUBLIC_BASE_URL}/uploads/{bucket}/{path}
"""

import os
import re
import logging
from dataclasses import dataclass
from typing import Optional

log = logging.getLogger(__name__)

UPLOAD_ROOT = os.getenv(
    "UPLOAD_ROOT",
    os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "uploads"),
)
PUBLIC_BASE_URL = os.getenv("PUBLIC_BASE_URL", "http://localhost:8000")

_BUCKET_NAME = re.compile(r"^[a-z0-9][a-z0-9_-]{1,62}$")


class StorageError(Exception):
    """Raised by storage backends; the message is translated for users in services.uploads"""


@dataclass
class StoredObject:
    bucket: str
    path: str
    public_url: str

    def as_dict(self) -> dict:
        return {"bucket": self.bucket, "path": self.path, "url": self.public_url}


class LocalObjectStorage:
    def __init__(self, root: str = UPLOAD_ROOT, public_base_url: str = PUBLIC_BASE_URL):
        self.root = os.path.abspath(root)
        self.public_base_url = public_base_url.rstrip("/")

    def _bucket_dir(self, bucket: str) -> str:
        if not _BUCKET_NAME.match(bucket):
            raise StorageError(f"Invalid bucket name '{bucket}'")
        return os.path.join(self.root, bucket)

    def _object_path(self, bucket: str, path: str) -> str:
        bucket_dir = self._bucket_dir(bucket)
        full_path = os.path.abspath(os.path.join(bucket_dir, path))
        if not full_path.startswith(bucket_dir + os.sep):
            raise StorageError(f"Invalid object path '{path}'")
        return full_path

    def public_url(self, bucket: str, path: str) -> str:
        return f"{self.public_base_url}/uploads/{bucket}/{path}"

    def bucket_exists(self, bucket: str) -> bool:
        return os.path.isdir(self._bucket_dir(bucket))

    def create_bucket(self, bucket: str) -> None:
        os.makedirs(self._bucket_dir(bucket), exist_ok=True)
        log.info("Created storage bucket %s", bucket)

    def upload(self, content: bytes, bucket: str, path: str, content_type: Optional[str] = None) -> StoredObject:
        """Write a new object. Existing objects are never overwritten."""
        if not self.bucket_exists(bucket):
            raise StorageError(f"Bucket not found: {bucket} does not exist")

        full_path = self._object_path(bucket, path)
        if os.path.exists(full_path):
            raise StorageError(f"The resource already exists: {bucket}/{path}")

        try:
            os.makedirs(os.path.dirname(full_path), exist_ok=True)
            with open(full_path, "wb") as f:
                f.write(content)
        except OSError as e:
            raise StorageError(str(e)) from e

        log.debug("Stored %s/%s (%d bytes, %s)", bucket, path, len(content), content_type or "unknown type")
        return StoredObject(bucket=bucket, path=path, public_url=self.public_url(bucket, path))

    def delete(self, bucket: str, path: str) -> None:
        full_path = self._object_path(bucket, path)
        try:
            os.remove(full_path)
        except FileNotFoundError:
            return
        except OSError as e:
            raise StorageError(str(e)) from e


_storage: Optional[LocalObjectStorage] = None


def get_storage() -> LocalObjectStorage:
    """FastAPI dependency: process-wide storage backend"""
    global _storage
    if _storage is None:
        _storage = LocalObjectStorage()
    return _storage
