"""
DealerDocs Upload Orchestrator — turns a file selection into upload tasks.

Flow (per selection — drop and picker share it):
    1. validate(): drop oversized files (transient message), reject the whole
       selection when the remaining count exceeds the limit
    2. submit(): one batch task for N > 1 files, one single task for N == 1
    3. upload(): multipart POST with the ownership context, progress wired to
       the task, results handed to ``on_upload_complete`` once per record

Tasks resolve independently and concurrently. Dismissing a task only removes
it from the visible list; the transfer itself is never aborted.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Dict, List, Optional, Sequence, Set

from dealerdocs.engine.config import UploadsConfig
from dealerdocs.engine.errors import DealerDocsError, DealerDocsValidationError
from dealerdocs.engine.http import FileServiceClient
from dealerdocs.engine.logging import ActivityLog, log_upload_event
from dealerdocs.engine.notifier import Notifier
from dealerdocs.engine.timers import DeferredActions
from dealerdocs.files.models import FileRecord, UploadPayload, UploadStatus, UploadTask
from dealerdocs.files.normalize import extract_upload_results, parse_models

logger = logging.getLogger("dealerdocs.files.uploads")

UploadCompleteCallback = Callable[[FileRecord], Awaitable[None]]

ERROR_KEY = "uploads:error"
UPLOAD_FAILED = "Upload failed"


class UploadOrchestrator:
    """
    Owns the list of visible upload tasks for one ownership context.
    """

    def __init__(
        self,
        client: FileServiceClient,
        notifier: Notifier,
        config: Optional[UploadsConfig] = None,
        context: Optional[str] = None,
        context_id: Optional[str] = None,
        on_upload_complete: Optional[UploadCompleteCallback] = None,
        timers: Optional[DeferredActions] = None,
        activity_log: Optional[ActivityLog] = None,
    ):
        self._client = client
        self._notifier = notifier
        self._config = config or UploadsConfig()
        self._context = context
        self._context_id = context_id
        self._on_upload_complete = on_upload_complete
        self._timers = timers or DeferredActions()
        self._activity_log = activity_log

        self._tasks: List[UploadTask] = []
        self._inflight: Set[asyncio.Task] = set()
        self.error: Optional[str] = None

    @property
    def tasks(self) -> List[UploadTask]:
        return list(self._tasks)

    def get_task(self, task_id: str) -> Optional[UploadTask]:
        for task in self._tasks:
            if task.id == task_id:
                return task
        return None

    # -----------------------------------------------------------------------
    # Validation & submission
    # -----------------------------------------------------------------------

    def validate(
        self,
        files: Sequence[UploadPayload],
        max_size: Optional[int] = None,
        max_count: Optional[int] = None,
    ) -> List[UploadPayload]:
        """
        Return the files that may be uploaded.

        Oversized files are dropped with a transient message. If more than
        ``max_count`` files remain, the whole selection is rejected with
        DealerDocsValidationError; it is never truncated.
        """
        max_size = max_size if max_size is not None else self._config.max_size_bytes
        max_count = max_count if max_count is not None else self._config.max_files

        valid: List[UploadPayload] = []
        for payload in files:
            if payload.size > max_size:
                self._flash_error(
                    f"File {payload.name} is too large. Max size is {max_size / 1024 / 1024:g}MB"
                )
                continue
            valid.append(payload)

        if len(valid) > max_count:
            message = f"You can only upload up to {max_count} files at once"
            raise DealerDocsValidationError(
                message,
                object_ref="uploads.validate",
                validation_errors={"files": message},
            )
        return valid

    def handle_selection(self, files: Sequence[UploadPayload]) -> Optional[UploadTask]:
        """
        Entry point for both drag-and-drop and the file picker. Nothing is
        remembered about the selection, so the same file can be picked again.
        """
        try:
            valid = self.validate(files)
        except DealerDocsValidationError as e:
            self._flash_error(e.message)
            return None
        return self.submit(valid)

    def submit(self, valid_files: Sequence[UploadPayload], start: bool = True) -> Optional[UploadTask]:
        """Create one task for the selection and (by default) start uploading it."""
        if not valid_files:
            return None
        if len(valid_files) > 1:
            task = UploadTask.batch(list(valid_files))
        else:
            task = UploadTask.single(valid_files[0])
        self._tasks.append(task)
        self._log(log_upload_event("submitted", task.id, len(task.payloads), task.total_bytes))
        if start:
            self._start(task)
        return task

    def retry(self, task_id: str) -> bool:
        """Re-run a failed task; supersedes its pending auto-removal."""
        task = self.get_task(task_id)
        if task is None or task.status is not UploadStatus.ERROR:
            return False
        self._timers.cancel(self._dismiss_key(task.id))
        task.status = UploadStatus.PENDING
        task.progress = 0
        task.error = None
        self._start(task)
        return True

    def dismiss(self, task_id: str) -> bool:
        """Hide a task. Does not abort its transfer."""
        self._timers.cancel(self._dismiss_key(task_id))
        return self._remove(task_id)

    async def wait_idle(self) -> None:
        """Wait for every in-flight upload to settle."""
        while self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)

    # -----------------------------------------------------------------------
    # Upload
    # -----------------------------------------------------------------------

    async def upload(self, task: UploadTask) -> List[FileRecord]:
        """
        Send one task. Never raises for I/O failures: the task is put in
        ``error`` state and removed after ``error_dismiss_ms``.
        """
        task.status = UploadStatus.UPLOADING
        form_field = "files[]" if task.is_batch else "file"
        files = [p.to_multipart(form_field) for p in task.payloads]

        try:
            result = await self._client.upload_files(
                files,
                context=self._context,
                context_id=self._context_id,
                on_progress=lambda pct: self._set_progress(task, pct),
            )
        except DealerDocsError as e:
            logger.error(f"Upload {task.id} ({task.label}) failed: {e.message}")
            self._fail(task, UPLOAD_FAILED, str(e.message))
            return []

        raw_records, failures = extract_upload_results(result)
        records = parse_models(raw_records, FileRecord)

        for failure in failures:
            name = failure.get("name") or failure.get("filename") or "File"
            reason = failure.get("error") or failure.get("message") or UPLOAD_FAILED
            await self._notifier.error(f"{name} was not uploaded", str(reason), toast=True)

        if not records:
            # Nothing we can attribute to a created record: the batch failed
            self._fail(task, UPLOAD_FAILED, "no records in response")
            return []

        self._timers.cancel(self._dismiss_key(task.id))
        self._remove(task.id)
        self._log(log_upload_event("completed", task.id, len(records), task.total_bytes))
        logger.info(f"Upload {task.id} completed: {len(records)} record(s)")

        if self._on_upload_complete:
            for record in records:
                await self._on_upload_complete(record)
        return records

    # -----------------------------------------------------------------------
    # Internals
    # -----------------------------------------------------------------------

    def _start(self, task: UploadTask) -> None:
        handle = asyncio.create_task(self.upload(task), name=f"upload-{task.id}")
        self._inflight.add(handle)
        handle.add_done_callback(self._inflight.discard)

    @staticmethod
    def _set_progress(task: UploadTask, pct: int) -> None:
        task.progress = max(task.progress, min(100, int(pct)))

    def _fail(self, task: UploadTask, message: str, detail: str) -> None:
        task.status = UploadStatus.ERROR
        task.error = message
        self._log(log_upload_event("failed", task.id, len(task.payloads), task.total_bytes, error=detail))
        self._timers.call_later(
            self._config.error_dismiss_ms,
            self._dismiss_key(task.id),
            lambda: self._remove_if_failed(task.id),
        )

    def _remove_if_failed(self, task_id: str) -> None:
        task = self.get_task(task_id)
        if task is not None and task.status is UploadStatus.ERROR:
            self._remove(task_id)

    def _remove(self, task_id: str) -> bool:
        before = len(self._tasks)
        self._tasks = [t for t in self._tasks if t.id != task_id]
        return len(self._tasks) != before

    def _flash_error(self, message: str) -> None:
        self.error = message
        self._timers.call_later(self._config.error_dismiss_ms, ERROR_KEY, self._clear_error)

    def _clear_error(self) -> None:
        self.error = None

    @staticmethod
    def _dismiss_key(task_id: str) -> str:
        return f"uploads:dismiss:{task_id}"

    def _log(self, entry) -> None:
        if self._activity_log:
            self._activity_log.write(entry)
