"""
DealerDocs Version Ledger — revision history of one file.

Version history is supplementary information: a failed listing degrades to
an empty history instead of an error. Downloading a version fetches that
version's own blob (its id, not the parent's) and saves it under a
``_v<N>`` name so it never lands on top of the current file's download.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Awaitable, Callable, List, Optional

from dealerdocs.engine.errors import DealerDocsError
from dealerdocs.engine.http import FileServiceClient
from dealerdocs.engine.logging import ActivityLog, log_version_event
from dealerdocs.engine.notifier import Notifier
from dealerdocs.files.downloads import DownloadSaver
from dealerdocs.files.models import FileRecord, FileVersion, UploadPayload
from dealerdocs.files.naming import resolve_file_name
from dealerdocs.files.normalize import extract_list, parse_models

logger = logging.getLogger("dealerdocs.files.versions")

VERSION_LIST_KEYS = ("versions", "data")

VersionUploadCallback = Callable[[FileRecord], Awaitable[None]]


class VersionLedger:
    """Panel bound to one FileRecord."""

    def __init__(
        self,
        file: FileRecord,
        client: FileServiceClient,
        notifier: Notifier,
        saver: Optional[DownloadSaver] = None,
        on_version_upload: Optional[VersionUploadCallback] = None,
        activity_log: Optional[ActivityLog] = None,
    ):
        if file.is_pending:
            raise ValueError("A pending upload has no version history")
        self.file = file
        self._client = client
        self._notifier = notifier
        self._saver = saver or DownloadSaver()
        self._on_version_upload = on_version_upload
        self._activity_log = activity_log

        self.versions: List[FileVersion] = []
        self.loading = False
        self.upload_progress: Optional[int] = None

    async def list_versions(self) -> List[FileVersion]:
        """Fetch the history, most recent first as the backend returns it."""
        self.loading = True
        try:
            payload = await self._client.list_versions(self.file.id)
            self.versions = parse_models(extract_list(payload, VERSION_LIST_KEYS), FileVersion)
        except DealerDocsError as e:
            logger.warning(f"Failed to load versions for {self.file.id}: {e.message}")
            self.versions = []
        finally:
            self.loading = False
        return self.versions

    def display_number(self, version: FileVersion, index: Optional[int] = None) -> int:
        """Stored number when present, else ``total - index``."""
        if version.explicit_number is not None:
            return version.explicit_number
        if index is None:
            index = self.versions.index(version)
        return len(self.versions) - index

    async def upload_new_version(self, payload: UploadPayload) -> bool:
        self.upload_progress = 0
        try:
            await self._client.upload_version(
                self.file.id,
                payload.to_multipart("file"),
                on_progress=self._set_progress,
            )
        except DealerDocsError as e:
            logger.error(f"Version upload for {self.file.id} failed: {e.message}")
            self._log("upload_failed", error=e.message)
            await self._notifier.error("Error", "Failed to upload new version")
            return False
        finally:
            self.upload_progress = None

        self._log("uploaded")
        await self._notifier.success("Success", "New version uploaded")
        await self.list_versions()
        if self._on_version_upload:
            await self._on_version_upload(self.file)
        return True

    async def download_version(self, version: FileVersion, index: Optional[int] = None) -> Optional[Path]:
        number = self.display_number(version, index) if version in self.versions or index is not None else None
        try:
            blob = await self._client.download_file(version.id)
        except DealerDocsError as e:
            logger.error(f"Download of version {version.id} failed: {e.message}")
            self._log("download_failed", version.id, error=e.message)
            await self._notifier.error("Error", "Failed to download this version")
            return None

        try:
            path = self._saver.save(blob.content, resolve_file_name(self.file, version, number))
        except OSError as e:
            logger.error(f"Saving version {version.id} to {self._saver.directory} failed: {e}")
            self._log("download_failed", version.id, error=str(e))
            await self._notifier.error("Error", "Failed to save file")
            return None
        self._log("downloaded", version.id)
        return path

    def _set_progress(self, pct: int) -> None:
        self.upload_progress = max(self.upload_progress or 0, min(100, int(pct)))

    def _log(self, event: str, version_id: Optional[str] = None, error: Optional[str] = None) -> None:
        if self._activity_log:
            self._activity_log.write(log_version_event(event, self.file.id, version_id, error))
