"""File name resolution for downloads and display."""

from __future__ import annotations

import os
import re
from typing import Optional

from dealerdocs.files.models import FileRecord, FileVersion

# (MIME substring, extension), first match wins
MIME_EXTENSIONS = (
    ("pdf", ".pdf"),
    ("image/jpeg", ".jpg"),
    ("image/png", ".png"),
    ("image/gif", ".gif"),
    ("spreadsheet", ".xlsx"),
    ("excel", ".xlsx"),
    ("word", ".docx"),
    ("document", ".docx"),
)

_EXTENSION_RE = re.compile(r"(\.[^.]+)$")


def resolve_file_name(
    file: FileRecord,
    version: Optional[FileVersion] = None,
    version_number: Optional[int] = None,
) -> str:
    """
    Name to save a download under.

    Falls back through the record's name fields, appends an extension derived
    from the MIME type when the name has none, and for version downloads adds
    ``_v<N>`` before the extension so a historical version never lands on
    top of the current file's download.
    """
    file_name = file.resolved_name

    if "." not in file_name:
        mime = file.mime
        if not mime and version is not None:
            mime = (version.type or version.mime_type or "").lower()
        for needle, ext in MIME_EXTENSIONS:
            if needle in mime:
                file_name += ext
                break

    if version is not None:
        number = version.explicit_number if version.explicit_number is not None else version_number
        suffix = f"_v{number}" if number is not None else "_v"
        if _EXTENSION_RE.search(file_name):
            file_name = _EXTENSION_RE.sub(lambda m: f"{suffix}{m.group(1)}", file_name)
        else:
            file_name = f"{file_name}{suffix}"

    return file_name


def safe_filename(filename: str) -> str:
    """
    Sanitize a filename for local storage.

    Removes path separators, control characters and leading dots.
    Preserves the extension.
    """
    name = os.path.basename(filename.replace("\\", "/"))
    name = "".join(c for c in name if c.isprintable() and c not in '<>:"/\\|?*')
    name = name.lstrip(".")
    if not name:
        name = "unnamed_document"
    if len(name) > 200:
        base, ext = os.path.splitext(name)
        name = base[:200 - len(ext)] + ext
    return name


def format_size(num_bytes: Optional[int]) -> str:
    if not num_bytes:
        return "0 Bytes"
    units = ("Bytes", "KB", "MB", "GB")
    size = float(num_bytes)
    for unit in units:
        if size < 1024 or unit == units[-1]:
            return f"{size:.2f}".rstrip("0").rstrip(".") + f" {unit}"
        size /= 1024
    return f"{num_bytes} Bytes"
