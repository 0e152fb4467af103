"""
DealerDocs Public Share Access — the recipient side of a share link.

``GET /files/shared/:token`` answers either with JSON metadata (possibly
wrapped in ``data`` / ``shareable`` / ``file``) or with the file itself.
Both are normalized to SharedFileInfo. Password-gated links are downloaded
by passing the password as a query parameter; the server's 401/403 is the
verdict on a wrong password.
"""

from __future__ import annotations

import json
import logging
import re
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from dealerdocs.engine.errors import DealerDocsAuthError, DealerDocsError, DealerDocsIntegrationError
from dealerdocs.engine.http import Blob, FileServiceClient
from dealerdocs.engine.notifier import Notifier
from dealerdocs.files.downloads import DownloadSaver
from dealerdocs.files.models import DEFAULT_FILE_NAME, FileRecord, parse_timestamp
from dealerdocs.files.naming import resolve_file_name

logger = logging.getLogger("dealerdocs.files.public")

INVALID_LINK = "This sharing link is invalid or has expired."
_FILENAME_RE = re.compile(r'filename="?([^"]+)"?')


class SharedFileInfo(BaseModel):
    """What a recipient can see about a shared file before downloading it."""

    model_config = ConfigDict(extra="allow")

    id: Optional[str] = None
    name: str = DEFAULT_FILE_NAME
    size: int = 0
    type: str = ""
    is_folder: bool = False
    is_direct_file: bool = False
    files: List[Dict[str, Any]] = Field(default_factory=list)
    expires_at: Optional[datetime] = None
    password_protected: bool = False
    otp_required: bool = False
    max_access_count: Optional[int] = None
    access_count: Optional[int] = None

    @field_validator("expires_at", mode="before")
    @classmethod
    def _times(cls, v: Any) -> Optional[datetime]:
        return parse_timestamp(v)

    def as_record(self) -> FileRecord:
        return FileRecord(id=self.id, name=self.name, type=self.type or None, size=self.size)


def _first(source: Dict[str, Any], *keys: str) -> Any:
    for key in keys:
        value = source.get(key)
        if value:
            return value
    return None


def normalize_shared_info(payload: Dict[str, Any]) -> SharedFileInfo:
    """Flatten the metadata envelope into SharedFileInfo."""
    raw = payload.get("data") if isinstance(payload.get("data"), dict) else payload
    shareable = _first(raw, "shareable", "file")
    if not isinstance(shareable, dict):
        shareable = raw

    return SharedFileInfo.model_validate({
        **{k: v for k, v in raw.items() if k not in ("password", "shareable", "file")},
        "id": str(_first(shareable, "id") or _first(raw, "file_id", "id") or "") or None,
        "name": _first(shareable, "name", "display_name", "filename", "file_name", "original_name", "title")
        or raw.get("name") or DEFAULT_FILE_NAME,
        "size": _first(shareable, "size", "file_size", "length", "file_size_bytes") or raw.get("size") or 0,
        "type": _first(shareable, "type", "mime_type", "content_type") or raw.get("type") or "",
        "is_folder": bool(raw.get("is_folder") or shareable.get("is_folder") or (raw.get("files") and not raw.get("type"))),
        "files": raw.get("files") or shareable.get("files") or [],
        "expires_at": raw.get("expires_at") or shareable.get("expires_at"),
        "password_protected": bool(
            raw.get("password_protected") or raw.get("has_password") or raw.get("password") or shareable.get("password")
        ),
        "otp_required": bool(raw.get("otp_required") or raw.get("requires_otp") or raw.get("has_otp")),
    })


def direct_file_info(token: str, blob: Blob) -> SharedFileInfo:
    """Metadata for a link that served the file itself."""
    headers = {k.lower(): v for k, v in blob.headers.items()}
    match = _FILENAME_RE.search(headers.get("content-disposition", ""))
    length = headers.get("content-length")
    return SharedFileInfo(
        id=token,
        name=match.group(1) if match else "shared_file",
        size=int(length) if length and length.isdigit() else blob.size,
        type=blob.content_type,
        is_direct_file=True,
    )


class PublicShareAccess:
    """One recipient session for one share token."""

    def __init__(self, client: FileServiceClient, notifier: Notifier, saver: Optional[DownloadSaver] = None):
        self._client = client
        self._notifier = notifier
        self._saver = saver or DownloadSaver()

        self.token: Optional[str] = None
        self.info: Optional[SharedFileInfo] = None
        self.error: Optional[str] = None
        self.password = ""
        self.otp_verified = False
        self._direct_blob: Optional[Blob] = None

    @property
    def password_required(self) -> bool:
        return bool(self.info and self.info.password_protected)

    @property
    def otp_pending(self) -> bool:
        return bool(self.info and self.info.otp_required and not self.otp_verified)

    async def load(self, token: str) -> Optional[SharedFileInfo]:
        self.token = token
        self.info = None
        self.error = None
        self.otp_verified = False
        self._direct_blob = None
        try:
            blob = await self._client.get_shared(token)
        except DealerDocsIntegrationError as e:
            logger.warning(f"Shared link {token[:6]}... could not be loaded: {e.message}")
            self.error = e.server_message or INVALID_LINK
            return None
        except DealerDocsError as e:
            self.error = INVALID_LINK
            logger.warning(f"Shared link could not be loaded: {e.message}")
            return None

        if not blob.is_json:
            self._direct_blob = blob
            self.info = direct_file_info(token, blob)
            return self.info

        try:
            payload = json.loads(blob.content)
        except ValueError:
            self.error = INVALID_LINK
            return None
        if not isinstance(payload, dict) or not payload:
            self.error = INVALID_LINK
            return None
        self.info = normalize_shared_info(payload)
        return self.info

    async def verify_otp(self, code: str) -> bool:
        if not code or self.info is None:
            return False
        try:
            await self._client.verify_shared_otp(self.info.id or self.token, code)
        except DealerDocsError as e:
            logger.info(f"OTP verification rejected: {e.message}")
            await self._notifier.error("Invalid OTP", "The code you entered is incorrect or has expired.")
            return False
        self.otp_verified = True
        await self._notifier.success("OTP Verified", toast=True)
        return True

    async def download(self, password: Optional[str] = None) -> Optional[Path]:
        if self.info is None or self.token is None:
            return None
        if password is not None:
            self.password = password

        if self.password_required and not self.password:
            await self._notifier.warning("Password Required", "Please enter the password to download.")
            return None
        if self.otp_pending:
            await self._notifier.warning("Verification Required", "Please verify the code sent to your email first.")
            return None

        if self._direct_blob is not None and not self.password_required:
            blob = self._direct_blob
        else:
            try:
                blob = await self._client.get_shared(self.token, {"password": self.password})
            except DealerDocsAuthError:
                self.password = ""
                await self._notifier.error("Incorrect Password", "The password you entered is incorrect.")
                return None
            except DealerDocsError as e:
                detail = e.server_message if isinstance(e, DealerDocsIntegrationError) else None
                message = "Could not download the file." + (f" {detail}" if detail else "")
                await self._notifier.error("Download Failed", message)
                return None
            if blob.is_json:
                await self._notifier.error("Download Failed", "Could not download the file.")
                return None

        try:
            path = self._saver.save(blob.content, resolve_file_name(self.info.as_record()))
        except OSError as e:
            logger.error(f"Saving shared file {self.info.name} failed: {e}")
            await self._notifier.error("Download Failed", "Failed to save file")
            return None
        await self._notifier.success("Download Started", toast=True)
        return path
