"""
Upload glue shared by the workflows.

Files are always stored in object storage first; the Drive copy is best-effort.
Stored records are plain dicts so they can sit in JSON columns:
    {"name", "bucket", "path", "url", "drive_id", "drive_url"}
"""

import re
import time
import random
import string
import logging
from dataclasses import dataclass
from typing import List, Optional, Callable

import httpx

from services.storage import StorageError
from services.google_drive import DriveError
from services.errors import UploadFailedError, PartialWriteError

log = logging.getLogger(__name__)


@dataclass
class UploadPayload:
    """File content read from a request, detached from the web framework"""
    filename: str
    content: bytes
    content_type: Optional[str] = None

    @property
    def size(self) -> int:
        return len(self.content)


# (substrings that must all appear, user-facing message)
_UPLOAD_ERROR_MESSAGES = [
    (("already exists",), "File dengan nama yang sama sudah ada"),
    (("File size exceeds",), "Ukuran file melebihi batas maksimum"),
    (("Invalid JWT",), "Session expired, silakan login kembali"),
    (("JWT expired",), "Session expired, silakan login kembali"),
    (("Unauthorized",), "Tidak memiliki akses untuk upload. Hubungi administrator"),
    (("Network",), "Masalah koneksi internet. Silakan coba lagi"),
    (("Bucket", "does not exist"), "Storage bucket tidak ditemukan. Hubungi administrator"),
]


def translate_upload_error(message: str) -> str:
    """Map known storage error texts to Indonesian guidance; unknown errors pass through"""
    for needles, translated in _UPLOAD_ERROR_MESSAGES:
        if all(needle in message for needle in needles):
            return translated
    return message


def sanitize_file_name(name: str) -> str:
    name = name.replace("\\", "/").rsplit("/", 1)[-1]
    name = re.sub(r"[^A-Za-z0-9._-]+", "_", name).strip("._")
    return name or "file"


def generate_unique_file_name(original_name: str, prefix: str = "") -> str:
    """<prefix><stem>_<epoch ms>_<6 random chars>.<ext>"""
    safe = sanitize_file_name(original_name)
    stem, dot, ext = safe.rpartition(".")
    if not dot:
        stem, ext = safe, ""
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=6))
    name = f"{prefix}{stem}_{int(time.time() * 1000)}_{suffix}"
    return f"{name}.{ext}" if ext else name


def ensure_bucket(storage, bucket: str) -> None:
    try:
        if not storage.bucket_exists(bucket):
            storage.create_bucket(bucket)
    except StorageError as e:
        raise UploadFailedError(translate_upload_error(str(e))) from e


def mirror_to_drive(drive, payload: UploadPayload, name: str) -> dict:
    """Best-effort Drive copy; returns {} when disabled or failing"""
    if drive is None or not drive.enabled:
        return {}
    try:
        drive_file = drive.upload(payload.content, name, payload.content_type)
    except (DriveError, httpx.HTTPError) as e:
        log.warning("Google Drive mirror of %s failed: %s", name, e)
        return {}
    return {"drive_id": drive_file.file_id, "drive_url": drive_file.file_url}


def store_file(storage, drive, payload: UploadPayload, bucket: str, path: str) -> dict:
    """Store one file (creating the bucket if needed), then mirror it"""
    ensure_bucket(storage, bucket)
    try:
        stored = storage.upload(payload.content, bucket, path, payload.content_type)
    except StorageError as e:
        log.error("Upload of %s to %s failed: %s", path, bucket, e)
        raise UploadFailedError(translate_upload_error(str(e))) from e

    record = {"name": payload.filename, **stored.as_dict()}
    record.update(mirror_to_drive(drive, payload, path.rsplit("/", 1)[-1]))
    log.info("Uploaded %s to %s", path, bucket)
    return record


def store_files(storage, drive, payloads: List[UploadPayload], bucket: str,
                path_for: Callable[[UploadPayload], str]) -> List[dict]:
    """
    Store several files. If one fails the ones already stored are removed again,
    so a failed batch leaves nothing behind.
    """
    records = []
    for payload in payloads:
        try:
            records.append(store_file(storage, drive, payload, bucket, path_for(payload)))
        except UploadFailedError:
            discard_files(storage, records)
            raise
    return records


def discard_files(storage, records: List[dict]) -> None:
    """Compensating delete of stored objects. Raises PartialWriteError if any survive."""
    leftovers = []
    for record in records:
        try:
            storage.delete(record["bucket"], record["path"])
        except StorageError:
            log.exception("Could not remove %s/%s", record["bucket"], record["path"])
            leftovers.append(f"{record['bucket']}/{record['path']}")
    if leftovers:
        raise PartialWriteError(
            f"Uploaded files could not be removed: {', '.join(leftovers)}",
            completed=["upload"],
            failed="cleanup",
        )


def payload_from_upload(upload) -> UploadPayload:
    """Read a framework upload object (filename, content_type, file) into memory"""
    return UploadPayload(
        filename=upload.filename or "",
        content=upload.file.read(),
        content_type=upload.content_type,
    )
