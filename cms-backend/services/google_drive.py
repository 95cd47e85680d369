"""
Google Drive boundary: secondary copy of uploaded documents and evidence.

Uses a stored OAuth refresh token (the consent handshake done once by an operator,
separate from user login) and the Drive v3 multipart upload endpoint.
Mirroring is best-effort; callers never roll back the primary upload on failure.
"""

import os
import json
import uuid
import logging
from dataclasses import dataclass
from typing import Optional

import httpx

log = logging.getLogger(__name__)

# ─── Config ───────────────────────────────────────────────────────────────────

DRIVE_CLIENT_ID = os.getenv("GOOGLE_DRIVE_CLIENT_ID", "")
DRIVE_CLIENT_SECRET = os.getenv("GOOGLE_DRIVE_CLIENT_SECRET", "")
DRIVE_REFRESH_TOKEN = os.getenv("GOOGLE_DRIVE_REFRESH_TOKEN", "")
DRIVE_FOLDER_ID = os.getenv("GOOGLE_DRIVE_FOLDER_ID", "")

TOKEN_URL = "https://oauth2.googleapis.com/token"
UPLOAD_URL = "https://www.googleapis.com/upload/drive/v3/files"


class DriveError(Exception):
    pass


def _field(response: httpx.Response, key: str) -> str:
    """Read one field of a JSON reply; any malformed reply is a DriveError"""
    try:
        data = response.json()
        value = data[key]
    except (ValueError, KeyError, TypeError) as e:
        raise DriveError(f"Unexpected Google reply ({response.status_code}): {response.text[:200]}") from e
    if not value:
        raise DriveError(f"Google reply has an empty {key}")
    return value


@dataclass
class DriveFile:
    file_id: str
    file_url: str


class GoogleDriveClient:
    def __init__(
        self,
        client_id: str = DRIVE_CLIENT_ID,
        client_secret: str = DRIVE_CLIENT_SECRET,
        refresh_token: str = DRIVE_REFRESH_TOKEN,
        folder_id: str = DRIVE_FOLDER_ID,
        transport: Optional[httpx.BaseTransport] = None,
        timeout: float = 30.0,
    ):
        self.client_id = client_id
        self.client_secret = client_secret
        self.refresh_token = refresh_token
        self.folder_id = folder_id
        self._transport = transport
        self._timeout = timeout

    @property
    def enabled(self) -> bool:
        return bool(self.client_id and self.client_secret and self.refresh_token)

    def _client(self) -> httpx.Client:
        return httpx.Client(transport=self._transport, timeout=self._timeout)

    def _access_token(self, client: httpx.Client) -> str:
        response = client.post(TOKEN_URL, data={
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "refresh_token": self.refresh_token,
            "grant_type": "refresh_token",
        })
        if response.status_code != 200:
            raise DriveError(f"Token refresh failed ({response.status_code}): {response.text}")
        return _field(response, "access_token")

    def upload(self, content: bytes, name: str, content_type: Optional[str] = None,
               folder_id: Optional[str] = None) -> DriveFile:
        """Upload one file into the configured folder; returns its id and view link"""
        if not self.enabled:
            raise DriveError("Google Drive is not configured")

        metadata = {"name": name}
        parent = folder_id or self.folder_id
        if parent:
            metadata["parents"] = [parent]

        boundary = uuid.uuid4().hex
        body = b"".join([
            f"--{boundary}\r\nContent-Type: application/json; charset=UTF-8\r\n\r\n".encode(),
            json.dumps(metadata).encode(),
            f"\r\n--{boundary}\r\nContent-Type: {content_type or 'application/octet-stream'}\r\n\r\n".encode(),
            content,
            f"\r\n--{boundary}--".encode(),
        ])

        with self._client() as client:
            token = self._access_token(client)
            response = client.post(
                UPLOAD_URL,
                params={"uploadType": "multipart", "fields": "id,webViewLink"},
                headers={
                    "Authorization": f"Bearer {token}",
                    "Content-Type": f"multipart/related; boundary={boundary}",
                },
                content=body,
            )
        if response.status_code not in (200, 201):
            raise DriveError(f"Drive upload failed ({response.status_code}): {response.text}")

        file_id = _field(response, "id")
        file_url = response.json().get("webViewLink") or f"https://drive.google.com/file/d/{file_id}/view"
        log.info("Mirrored %s to Google Drive (%s)", name, file_id)
        return DriveFile(file_id=file_id, file_url=file_url)


_drive: Optional[GoogleDriveClient] = None


def get_drive() -> GoogleDriveClient:
    """FastAPI dependency: process-wide Drive client"""
    global _drive
    if _drive is None:
        _drive = GoogleDriveClient()
    return _drive
