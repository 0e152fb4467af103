"""
DealerDocs File Catalog Controller — the file list for one ownership context.

The controller is the only owner of the in-memory FileRecord list. Every
user action is dispatched here and fanned out to the subsystem that handles
it; subsystems report back through callbacks and the controller reconciles.

Reconciliation rules:
    delete   removed only after the server acknowledged
    rename   applied locally first, rolled back if the update fails
    upload   each created record is prepended as it is reported
    404      the record is stale: dropped locally, user notified

Every failure becomes a notification; the list is never cleared or
half-updated by an error.
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Union

from dealerdocs.engine.config import DealerDocsConfig
from dealerdocs.engine.errors import DealerDocsDispatchError, DealerDocsError, DealerDocsNotFoundError
from dealerdocs.engine.http import FileServiceClient
from dealerdocs.engine.logging import ActivityLog, log_file_action
from dealerdocs.engine.notifier import Notifier
from dealerdocs.engine.timers import Clock, DeferredActions, utcnow
from dealerdocs.files.downloads import DownloadSaver
from dealerdocs.files.models import FileRecord
from dealerdocs.files.naming import resolve_file_name
from dealerdocs.files.normalize import extract_list, extract_record, parse_models
from dealerdocs.files.optimistic import OptimisticCollection
from dealerdocs.files.preview import ObjectURLStore, PreviewResourceManager
from dealerdocs.files.shares import ShareLinkManager
from dealerdocs.files.uploads import UploadOrchestrator
from dealerdocs.files.versions import VersionLedger

logger = logging.getLogger("dealerdocs.files.catalog")


class FileAction(str, Enum):
    DELETE = "delete"
    DOWNLOAD = "download"
    RENAME = "rename"
    DETAILS = "details"
    SHARE = "share"
    PREVIEW = "preview"
    VERSIONS = "versions"


class TypeFilter(str, Enum):
    ALL = "all"
    IMAGES = "images"
    DOCUMENTS = "documents"


def _require_name(value: str) -> Optional[str]:
    if not value or not value.strip():
        return "You need to write something!"
    return None


class FileCatalogController:
    """
    Entry point of the file subsystem for one ``(context, context_id)``.

    Usage:
        catalog = FileCatalogController(client, notifier, config, context="quote", context_id="42")
        await catalog.fetch_files()
        await catalog.dispatch("rename", catalog.files[0])
    """

    def __init__(
        self,
        client: FileServiceClient,
        notifier: Notifier,
        config: Optional[DealerDocsConfig] = None,
        context: Optional[str] = "global",
        context_id: Optional[str] = None,
        saver: Optional[DownloadSaver] = None,
        url_store: Optional[ObjectURLStore] = None,
        timers: Optional[DeferredActions] = None,
        activity_log: Optional[ActivityLog] = None,
        clock: Clock = utcnow,
    ):
        self._client = client
        self._notifier = notifier
        self._config = config or DealerDocsConfig()
        self.context = context
        self.context_id = context_id
        self._saver = saver or DownloadSaver(self._config.downloads.directory)
        self._timers = timers or DeferredActions()
        self._activity_log = activity_log
        self._clock = clock

        self._files: OptimisticCollection[FileRecord] = OptimisticCollection(key=lambda f: f.id)
        self.loading = False
        self.loaded = False
        self.load_error: Optional[str] = None

        self.uploads = UploadOrchestrator(
            client,
            notifier,
            config=self._config.uploads,
            context=context,
            context_id=context_id,
            on_upload_complete=self.handle_upload_complete,
            timers=self._timers,
            activity_log=activity_log,
        )
        self.preview = PreviewResourceManager(client, url_store, activity_log=activity_log, notifier=notifier)
        self.detail_file: Optional[FileRecord] = None
        self._detail_generation = 0

        self._handlers: Dict[FileAction, Callable[[FileRecord], Awaitable[Any]]] = {
            FileAction.DELETE: self.delete,
            FileAction.DOWNLOAD: self.download,
            FileAction.RENAME: self.rename,
            FileAction.DETAILS: self.open_detail,
            FileAction.SHARE: self.open_share,
            FileAction.PREVIEW: self.preview_file,
            FileAction.VERSIONS: self.open_versions,
        }

    @property
    def files(self) -> List[FileRecord]:
        return self._files.items

    def get(self, file_id: str) -> Optional[FileRecord]:
        return self._files.get(str(file_id))

    # -----------------------------------------------------------------------
    # Listing
    # -----------------------------------------------------------------------

    async def fetch_files(self) -> List[FileRecord]:
        """
        Reload the list. On failure the last good list stays in place and
        ``load_error`` is set.
        """
        self.loading = True
        try:
            payload = await self._client.list_files(self.context, self.context_id)
        except DealerDocsError as e:
            logger.error(f"Failed to load files for {self.context}/{self.context_id}: {e.message}")
            self.load_error = "Failed to load files"
            await self._notifier.error("Error", self.load_error, toast=True)
            return self.files
        finally:
            self.loading = False

        self._files.reset(parse_models(extract_list(payload), FileRecord))
        self.loaded = True
        self.load_error = None
        return self.files

    def filtered_files(self, search: str = "", type_filter: Union[TypeFilter, str] = TypeFilter.ALL) -> List[FileRecord]:
        """Substring search on the display name plus the all/images/documents filter."""
        type_filter = TypeFilter(type_filter)
        needle = search.lower()
        result = []
        for f in self._files:
            if needle and needle not in f.resolved_name.lower():
                continue
            if type_filter is TypeFilter.IMAGES and not f.is_image:
                continue
            if type_filter is TypeFilter.DOCUMENTS and f.is_image:
                continue
            result.append(f)
        return result

    async def storage_usage(self) -> Dict[str, int]:
        try:
            usage = await self._client.storage_usage()
        except DealerDocsError as e:
            logger.warning(f"Storage usage unavailable: {e.message}")
            return {"used": 0, "total": 0}
        usage = extract_record(usage) or {}
        return {"used": int(usage.get("used") or 0), "total": int(usage.get("total") or 0)}

    # -----------------------------------------------------------------------
    # Dispatch
    # -----------------------------------------------------------------------

    async def dispatch(self, action: Union[FileAction, str], file: FileRecord) -> Any:
        try:
            action = FileAction(action)
        except ValueError:
            raise DealerDocsDispatchError(
                f"Unknown file action '{action}'",
                object_ref="catalog.dispatch",
                file_id=file.id,
            )
        if file.is_pending:
            raise DealerDocsDispatchError(
                f"Cannot {action.value} a pending upload",
                object_ref="catalog.dispatch",
            )
        return await self._handlers[action](file)

    async def delete(self, file: FileRecord) -> bool:
        confirmed = await self._notifier.confirm(
            "Delete File?", f"Are you sure you want to delete {file.resolved_name}?"
        )
        if not confirmed:
            return False
        try:
            await self._client.delete_file(file.id)
        except DealerDocsNotFoundError:
            await self._drop_stale(file)
            return False
        except DealerDocsError as e:
            self._log("delete", file, success=False, error=e.message)
            await self._notifier.error("Error", "Failed to delete file")
            return False

        self._files.discard(file.id)
        self._log("delete", file, success=True)
        await self._notifier.success("Deleted!", "File has been deleted.")
        return True

    async def delete_many(self, files: Sequence[FileRecord]) -> Dict[str, List[str]]:
        """
        One confirmation, concurrent deletes. Only acknowledged records are
        removed; the summary always says how many of how many went through.
        """
        targets = [f for f in files if not f.is_pending]
        if not targets:
            return {"deleted": [], "failed": []}
        confirmed = await self._notifier.confirm(
            "Delete Files?", f"Are you sure you want to delete {len(targets)} files?"
        )
        if not confirmed:
            return {"deleted": [], "failed": []}

        results = await asyncio.gather(
            *(self._client.delete_file(f.id) for f in targets),
            return_exceptions=True,
        )

        deleted: List[str] = []
        failed: List[str] = []
        for file, result in zip(targets, results):
            if isinstance(result, DealerDocsNotFoundError) or not isinstance(result, BaseException):
                self._files.discard(file.id)
                deleted.append(file.id)
                self._log("delete", file, success=True)
            elif isinstance(result, DealerDocsError):
                failed.append(file.id)
                self._log("delete", file, success=False, error=result.message)
            else:
                raise result

        summary = f"Deleted {len(deleted)} of {len(targets)} files."
        if not failed:
            await self._notifier.success("Deleted!", summary)
        elif deleted:
            names = ", ".join(f.resolved_name for f in targets if f.id in failed)
            await self._notifier.warning("Partially deleted", f"{summary} Failed: {names}")
        else:
            await self._notifier.error("Error", summary)
        return {"deleted": deleted, "failed": failed}

    async def download(self, file: FileRecord) -> Optional[Path]:
        try:
            blob = await self._client.download_file(file.id)
        except DealerDocsNotFoundError:
            await self._drop_stale(file)
            return None
        except DealerDocsError as e:
            logger.error(f"Download of {file.id} failed: {e.message}")
            self._log("download", file, success=False, error=e.message)
            await self._notifier.error("Error", "Failed to download file")
            return None

        try:
            path = self._saver.save(blob.content, resolve_file_name(file))
        except OSError as e:
            logger.error(f"Saving {file.id} to {self._saver.directory} failed: {e}")
            self._log("download", file, success=False, error=str(e))
            await self._notifier.error("Error", "Failed to save file")
            return None
        self._log("download", file, success=True)
        return path

    async def rename(self, file: FileRecord) -> bool:
        current = file.name or file.filename or file.resolved_name
        new_name = await self._notifier.prompt("Rename File", current, _require_name)
        if not new_name or _require_name(new_name) or new_name.strip() == current:
            return False
        new_name = new_name.strip()

        payload = {"filename": new_name, "accessLevel": file.access_level or "private"}
        try:
            await self._files.patch(
                file.id,
                lambda f: f.with_name(new_name),
                lambda: self._client.update_file(file.id, payload),
            )
        except DealerDocsNotFoundError:
            await self._drop_stale(file)
            return False
        except DealerDocsError as e:
            self._log("rename", file, success=False, error=e.message)
            await self._notifier.error("Error", "Failed to rename file")
            return False

        self._log("rename", file, success=True)
        await self._notifier.success("Renamed!", "File has been renamed.")
        return True

    async def preview_file(self, file: FileRecord) -> Optional[str]:
        """
        Images are shown inline, PDFs open externally with a delayed release,
        anything else is not previewable and is never fetched.
        """
        if file.is_image:
            try:
                await self.preview.show_inline(file, self._notifier)
            except DealerDocsNotFoundError:
                await self._drop_stale(file)
            except DealerDocsError as e:
                logger.error(f"Image preview of {file.id} failed: {e.message}")
                await self._notifier.error("Error", "Failed to load image preview")
            return None

        if file.is_pdf:
            try:
                return await self.preview.launch_pdf(
                    file, self._notifier, self._timers, self._config.preview.pdf_release_grace_ms
                )
            except DealerDocsNotFoundError:
                await self._drop_stale(file)
            except DealerDocsError as e:
                logger.error(f"PDF preview of {file.id} failed: {e.message}")
                await self._notifier.error("Error", "Failed to load PDF preview")
            return None

        await self._notifier.info("Info", "Preview not available for this file type. Please download to view.")
        return None

    # -----------------------------------------------------------------------
    # Panels
    # -----------------------------------------------------------------------

    async def open_detail(self, file: FileRecord) -> Optional[FileRecord]:
        """
        Re-fetch the full record and bind the detail view to it. A failed
        re-fetch falls back to the partial record; a 404 drops the record.
        A re-fetch that resolves after close_detail() or a newer open_detail()
        is discarded without touching the view.
        """
        self._detail_generation += 1
        generation = self._detail_generation
        try:
            payload = await self._client.get_file(file.id)
            detailed = parse_models([extract_record(payload) or {}], FileRecord, id=file.id)
            enriched = detailed[0] if detailed else file
        except DealerDocsNotFoundError:
            await self._drop_stale(file)
            return None
        except DealerDocsError as e:
            logger.warning(f"Detail fetch for {file.id} failed, using list record: {e.message}")
            enriched = file

        if generation != self._detail_generation:
            logger.debug(f"Discarding superseded detail fetch for {file.id}")
            return None

        self.detail_file = enriched
        await self.preview.open(enriched)
        return enriched

    def close_detail(self) -> None:
        self._detail_generation += 1
        self.preview.close()
        self.detail_file = None

    async def open_share(self, file: FileRecord) -> ShareLinkManager:
        manager = ShareLinkManager(
            file,
            self._client,
            self._notifier,
            config=self._config.sharing,
            clock=self._clock,
            activity_log=self._activity_log,
        )
        await manager.list_grants()
        return manager

    async def open_versions(self, file: FileRecord) -> VersionLedger:
        ledger = VersionLedger(
            file,
            self._client,
            self._notifier,
            saver=self._saver,
            on_version_upload=self.handle_version_upload,
            activity_log=self._activity_log,
        )
        await ledger.list_versions()
        return ledger

    # -----------------------------------------------------------------------
    # Callbacks from subsystems
    # -----------------------------------------------------------------------

    async def handle_upload_complete(self, record: FileRecord) -> None:
        if record.context is None and record.context_id is None:
            record = record.model_copy(update={"context": self.context, "context_id": self.context_id})
        self._files.prepend(record)
        self._log("upload", record, success=True)
        await self._notifier.success("File Uploaded", f"{record.resolved_name} added successfully", toast=True)

    async def handle_version_upload(self, file: FileRecord) -> None:
        """Refresh size/version metadata after a new version landed."""
        try:
            payload = await self._client.get_file(file.id)
        except DealerDocsNotFoundError:
            await self._drop_stale(file)
            return
        except DealerDocsError as e:
            logger.warning(f"Could not refresh {file.id} after version upload: {e.message}")
            return
        refreshed = parse_models([extract_record(payload) or {}], FileRecord, id=file.id)
        if refreshed:
            self._files.replace(refreshed[0])
            if self.detail_file is not None and self.detail_file.id == file.id:
                self.detail_file = refreshed[0]

    # -----------------------------------------------------------------------
    # Internals
    # -----------------------------------------------------------------------

    async def _drop_stale(self, file: FileRecord) -> None:
        self._files.discard(file.id)
        if self.detail_file is not None and self.detail_file.id == file.id:
            self.close_detail()
        self._log("stale", file, success=False, error="not found")
        logger.info(f"Dropped stale file {file.id}")
        await self._notifier.warning(
            "File not found", f"{file.resolved_name} no longer exists and was removed from the list.", toast=True
        )

    def _log(self, action: str, file: FileRecord, success: bool, error: Optional[str] = None) -> None:
        if self._activity_log:
            self._activity_log.write(
                log_file_action(action, file.id, success, self.context, self.context_id, error)
            )
