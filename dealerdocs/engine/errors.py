"""
DealerDocs Error Hierarchy — Structured exceptions for the file subsystem.

Every error carries free-form context that serializes to JSON so it can be
written to the activity log next to the operation that produced it.

Hierarchy:
    DealerDocsError
    ├── DealerDocsValidationError   — Client-side validation failed (never sent)
    ├── DealerDocsIntegrationError  — File Service call failed (HTTP / transport)
    │   ├── DealerDocsNotFoundError — Target no longer exists server-side (404)
    │   └── DealerDocsAuthError     — Credential rejected (401 / 403)
    ├── DealerDocsDispatchError     — Unknown catalog action
    ├── DealerDocsResourceError     — Object URL released twice / never created
    └── DealerDocsConfigError       — Invalid dealerdocs.yaml
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Dict, Optional


class DealerDocsError(Exception):
    """
    Base error for all DealerDocs failures.
    All context is serializable to JSON.
    """

    def __init__(self, message: str, **context: Any):
        self.message = message
        self.object_ref: Optional[str] = context.get("object_ref")
        self.file_id: Optional[str] = context.get("file_id")
        self.error_type: str = self.__class__.__name__
        self.context: Dict[str, Any] = context
        self.timestamp: str = datetime.now(timezone.utc).isoformat()
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize error to a JSON-compatible dict for the activity log."""
        return {
            "error_type": self.error_type,
            "message": self.message,
            "object_ref": self.object_ref,
            "file_id": self.file_id,
            "timestamp": self.timestamp,
            "context": {
                k: str(v) for k, v in self.context.items()
                if k not in ("object_ref", "file_id")
            },
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), default=str)

    def __repr__(self) -> str:
        parts = [f"{self.error_type}: {self.message}"]
        if self.object_ref:
            parts.append(f"object_ref={self.object_ref}")
        if self.file_id:
            parts.append(f"file_id={self.file_id}")
        return " | ".join(parts)


class DealerDocsValidationError(DealerDocsError):
    """
    Input validation failed before any request was made.
    ``validation_errors`` maps field name to a user-facing message.
    """

    def __init__(self, message: str, **context: Any):
        self.validation_errors: Dict[str, str] = context.get("validation_errors") or {}
        super().__init__(message, **context)

    def to_dict(self) -> Dict[str, Any]:
        d = super().to_dict()
        d["validation_errors"] = self.validation_errors
        return d


class DealerDocsIntegrationError(DealerDocsError):
    """A File Service call failed (non-2xx response or transport error)."""

    def __init__(self, message: str, **context: Any):
        self.status_code: Optional[int] = context.get("status_code")
        self.response_body: Optional[str] = context.get("response_body")
        self.method: Optional[str] = context.get("method")
        self.path: Optional[str] = context.get("path")
        super().__init__(message, **context)

    def to_dict(self) -> Dict[str, Any]:
        d = super().to_dict()
        d["status_code"] = self.status_code
        d["method"] = self.method
        d["path"] = self.path
        return d

    @property
    def server_message(self) -> Optional[str]:
        """The ``message`` field of a JSON error body, if the backend sent one."""
        if not self.response_body:
            return None
        try:
            body = json.loads(self.response_body)
        except (TypeError, ValueError):
            return None
        if isinstance(body, dict):
            return body.get("message") or body.get("detail")
        return None


class DealerDocsNotFoundError(DealerDocsIntegrationError):
    """The backend no longer knows the file or grant (stale reference)."""
    pass


class DealerDocsAuthError(DealerDocsIntegrationError):
    """The backend rejected the credential (401/403)."""
    pass


class DealerDocsDispatchError(DealerDocsError):
    """Catalog action is not one of the known actions."""
    pass


class DealerDocsResourceError(DealerDocsError):
    """Object URL misuse: releasing a reference that is not live."""
    pass


class DealerDocsConfigError(DealerDocsError):
    """Configuration error — invalid dealerdocs.yaml."""
    pass
