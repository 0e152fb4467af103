"""DealerDocs Files — the file catalog and the subsystems it dispatches to."""

from dealerdocs.files.catalog import FileAction, FileCatalogController, TypeFilter  # noqa: F401
from dealerdocs.files.models import (  # noqa: F401
    FileRecord,
    FileVersion,
    GrantKind,
    GrantStatus,
    ShareGrant,
    UploadPayload,
    UploadStatus,
    UploadTask,
)
from dealerdocs.files.preview import ObjectURLStore, PreviewResourceManager  # noqa: F401
from dealerdocs.files.public import PublicShareAccess  # noqa: F401
from dealerdocs.files.shares import ShareLinkManager  # noqa: F401
from dealerdocs.files.uploads import UploadOrchestrator  # noqa: F401
from dealerdocs.files.versions import VersionLedger  # noqa: F401

__all__ = [
    "FileAction",
    "FileCatalogController",
    "TypeFilter",
    "FileRecord",
    "FileVersion",
    "GrantKind",
    "GrantStatus",
    "ShareGrant",
    "UploadPayload",
    "UploadStatus",
    "UploadTask",
    "ObjectURLStore",
    "PreviewResourceManager",
    "PublicShareAccess",
    "ShareLinkManager",
    "UploadOrchestrator",
    "VersionLedger",
]
