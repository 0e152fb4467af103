"""
DealerDocs Download Saver — writes fetched blobs to the local downloads folder.

Local stand-in for the browser's "save as": sanitized name, never
overwrites an existing file (``report (1).pdf``), chunked write with a
sha256 logged for traceability.
"""

from __future__ import annotations

import hashlib
import logging
from pathlib import Path

from dealerdocs.files.naming import safe_filename

logger = logging.getLogger("dealerdocs.files.downloads")

CHUNK_SIZE = 8192


class DownloadSaver:
    """Saves blobs under one directory."""

    def __init__(self, directory: str = "downloads"):
        self._directory = Path(directory)

    @property
    def directory(self) -> Path:
        return self._directory

    def save(self, content: bytes, filename: str) -> Path:
        """
        Write ``content`` as ``filename`` and return the path actually used.
        OSError propagates; callers turn it into a notification.
        """
        self._directory.mkdir(parents=True, exist_ok=True)
        target = self._unique_path(safe_filename(filename))

        file_hash = hashlib.sha256()
        created = False
        try:
            with open(target, "xb") as f:
                created = True
                for start in range(0, len(content), CHUNK_SIZE):
                    chunk = content[start:start + CHUNK_SIZE]
                    f.write(chunk)
                    file_hash.update(chunk)
        except OSError:
            # Never leave a partial file behind
            if created:
                target.unlink(missing_ok=True)
            raise

        logger.info(f"Saved {target} ({len(content)} bytes, sha256={file_hash.hexdigest()[:12]})")
        return target

    def _unique_path(self, name: str) -> Path:
        candidate = self._directory / name
        if not candidate.exists():
            return candidate
        stem, suffix = Path(name).stem, Path(name).suffix
        n = 1
        while True:
            candidate = self._directory / f"{stem} ({n}){suffix}"
            if not candidate.exists():
                return candidate
            n += 1
