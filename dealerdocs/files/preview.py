"""
DealerDocs Preview Resource Manager — object URLs for fetched blobs.

ObjectURLStore is the registry of live references: every ``create`` must
be matched by exactly one ``revoke``; revoking a reference that is not live
raises DealerDocsResourceError so double-release bugs surface in tests.

PreviewResourceManager owns the single reference of one detail view:
    - fetches only for image records with an id, and only while visible
    - close() releases unconditionally and is idempotent
    - every open()/close() bumps a generation counter; a fetch that
      resolves under an older generation is discarded before any reference
      is created
"""

from __future__ import annotations

import logging
import uuid
from contextlib import asynccontextmanager, contextmanager
from typing import AsyncIterator, Dict, Iterator, Optional

from dealerdocs.engine.errors import DealerDocsError, DealerDocsResourceError
from dealerdocs.engine.http import Blob, FileServiceClient
from dealerdocs.engine.logging import ActivityLog, log_preview_event
from dealerdocs.engine.notifier import Notifier
from dealerdocs.engine.timers import DeferredActions
from dealerdocs.files.models import FileRecord, PreviewResource

logger = logging.getLogger("dealerdocs.files.preview")

URL_PREFIX = "blob:dealerdocs/"


class ObjectURLStore:
    """In-memory ``blob:`` references."""

    def __init__(self) -> None:
        self._live: Dict[str, Blob] = {}
        self.created = 0
        self.released = 0

    def create(self, blob: Blob, content_type: Optional[str] = None) -> str:
        url = f"{URL_PREFIX}{uuid.uuid4()}"
        if content_type and content_type != blob.content_type:
            blob = Blob(content=blob.content, content_type=content_type, headers=blob.headers)
        self._live[url] = blob
        self.created += 1
        return url

    def revoke(self, url: str) -> None:
        if url not in self._live:
            raise DealerDocsResourceError(f"Object URL is not live: {url}", object_ref=url)
        del self._live[url]
        self.released += 1

    def get(self, url: str) -> Optional[Blob]:
        return self._live.get(url)

    def is_live(self, url: str) -> bool:
        return url in self._live

    @property
    def live_count(self) -> int:
        return len(self._live)

    @contextmanager
    def scoped(self, blob: Blob, content_type: Optional[str] = None) -> Iterator[str]:
        """A reference released on every exit path of the ``with`` block."""
        url = self.create(blob, content_type)
        try:
            yield url
        finally:
            self.revoke(url)


class PreviewResourceManager:
    """Preview lifecycle for one detail view."""

    def __init__(
        self,
        client: FileServiceClient,
        store: Optional[ObjectURLStore] = None,
        activity_log: Optional[ActivityLog] = None,
        notifier: Optional[Notifier] = None,
    ):
        self._client = client
        self._store = store or ObjectURLStore()
        self._notifier = notifier
        self._activity_log = activity_log

        self._file: Optional[FileRecord] = None
        self._visible = False
        self._generation = 0
        self._resource: Optional[PreviewResource] = None

    @property
    def store(self) -> ObjectURLStore:
        return self._store

    @property
    def file(self) -> Optional[FileRecord]:
        return self._file

    @property
    def visible(self) -> bool:
        return self._visible

    @property
    def resource(self) -> Optional[PreviewResource]:
        return self._resource

    async def open(self, file: FileRecord) -> Optional[PreviewResource]:
        """
        Bind the view to ``file``; replaces (and releases) any previous
        preview. Returns the new resource, or None when nothing is previewed.
        """
        self._release()
        self._generation += 1
        generation = self._generation
        self._file = file
        self._visible = True

        if not (file.is_image and file.id):
            return None

        try:
            blob = await self._client.download_file(file.id)
        except DealerDocsError as e:
            logger.warning(f"Preview fetch for {file.id} failed: {e.message}")
            self._log("fetch_failed", file.id, error=e.message)
            if self._notifier and generation == self._generation and self._visible:
                await self._notifier.error("Error", "Failed to load preview", toast=True)
            return None

        if generation != self._generation or not self._visible:
            logger.debug(f"Discarding stale preview fetch for {file.id}")
            self._log("discarded", file.id, blob.content_type, blob.size)
            return None

        content_type = blob.content_type if blob.content_type.startswith("image/") else file.mime
        url = self._store.create(blob, content_type)
        self._resource = PreviewResource(file_id=file.id, url=url, content_type=content_type, size=blob.size)
        self._log("opened", file.id, content_type, blob.size)
        return self._resource

    def close(self) -> None:
        """Release the reference if one exists. Safe to call repeatedly."""
        self._visible = False
        self._generation += 1
        self._release()
        self._file = None

    @asynccontextmanager
    async def session(self, file: FileRecord) -> AsyncIterator[Optional[PreviewResource]]:
        try:
            yield await self.open(file)
        finally:
            self.close()

    async def launch_pdf(
        self,
        file: FileRecord,
        notifier: Notifier,
        timers: DeferredActions,
        grace_ms: int = 1000,
    ) -> str:
        """
        Open a PDF in an external context. The reference is released after
        ``grace_ms`` so the viewer has time to load it. Fetch errors propagate.
        """
        blob = await self._client.download_file(file.id)
        url = self._store.create(blob, "application/pdf")
        timers.call_later(grace_ms, f"preview:release:{url}", lambda: self._store.revoke(url))
        self._log("launched", file.id, "application/pdf", blob.size)
        await notifier.open_external(url)
        return url

    async def show_inline(self, file: FileRecord, notifier: Notifier) -> None:
        """Fetch an image and hand it to the notifier; released when the view returns."""
        blob = await self._client.download_file(file.id)
        content_type = blob.content_type if blob.content_type.startswith("image/") else file.mime
        with self._store.scoped(blob, content_type) as url:
            self._log("shown", file.id, content_type, blob.size)
            await notifier.show_image(file.resolved_name, url)

    def _release(self) -> None:
        if self._resource is None:
            return
        resource, self._resource = self._resource, None
        self._store.revoke(resource.url)
        self._log("released", resource.file_id)

    def _log(self, event: str, file_id: Optional[str], content_type: Optional[str] = None,
             size: Optional[int] = None, error: Optional[str] = None) -> None:
        if self._activity_log:
            self._activity_log.write(log_preview_event(event, file_id, content_type, size, error))
