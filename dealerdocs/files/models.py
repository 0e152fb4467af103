"""
DealerDocs File Models — Pydantic records and dataclasses for the file subsystem.

FileRecord: one stored object as the File Service describes it.
FileVersion: one historical revision of a FileRecord.
ShareGrant: a password link or an OTP email grant.
UploadPayload / UploadTask: client-side upload bookkeeping (never sent as-is).
PasswordLinkRequest / OtpGrantRequest: share-creation schemas with
    field-level messages.
PreviewResource: a live object URL bound to a fetched blob.

Backend payloads vary in naming (``size`` vs ``file_size``, ``expiresAt`` vs
``expires_at``), so records accept the known aliases and keep unknown fields.
"""

from __future__ import annotations

import mimetypes
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    ValidationInfo,
    field_validator,
)
from pydantic.networks import validate_email

from dealerdocs.engine.errors import DealerDocsValidationError
from dealerdocs.engine.timers import utcnow

# Order in which a record's display name is resolved
NAME_FIELDS = ("name", "display_name", "file_name", "filename", "original_name")
DEFAULT_FILE_NAME = "document"


def _to_str(v: Any) -> Any:
    if v is None or isinstance(v, str):
        return v
    return str(v)


def parse_timestamp(v: Any) -> Optional[datetime]:
    """Parse a backend timestamp leniently; naive values are taken as UTC."""
    if v is None or v == "":
        return None
    if isinstance(v, str):
        try:
            v = datetime.fromisoformat(v)
        except ValueError:
            return None
    if not isinstance(v, datetime):
        return None
    if v.tzinfo is None:
        v = v.replace(tzinfo=timezone.utc)
    return v


# ---------------------------------------------------------------------------
# FileRecord
# ---------------------------------------------------------------------------

class FileRecord(BaseModel):
    """
    One stored object. ``id`` is assigned by the backend and never changes;
    a record without an id is only a pending upload.
    """

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    id: Optional[str] = None
    name: Optional[str] = None
    display_name: Optional[str] = None
    file_name: Optional[str] = None
    filename: Optional[str] = None
    original_name: Optional[str] = None
    type: Optional[str] = None
    mime_type: Optional[str] = Field(default=None, validation_alias=AliasChoices("mime_type", "content_type"))
    size: int = Field(default=0, validation_alias=AliasChoices("size", "file_size", "size_bytes"))
    owner_id: Optional[str] = Field(default=None, validation_alias=AliasChoices("owner_id", "user_id", "uploaded_by"))
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    context: Optional[str] = None
    context_id: Optional[str] = None
    version_count: Optional[int] = Field(default=None, validation_alias=AliasChoices("version_count", "versions_count"))
    access_level: Optional[str] = Field(default=None, validation_alias=AliasChoices("access_level", "accessLevel"))

    @field_validator("id", "owner_id", "context_id", mode="before")
    @classmethod
    def _ids(cls, v: Any) -> Any:
        return _to_str(v)

    @field_validator("created_at", "updated_at", mode="before")
    @classmethod
    def _times(cls, v: Any) -> Optional[datetime]:
        return parse_timestamp(v)

    @field_validator("size", mode="before")
    @classmethod
    def _size(cls, v: Any) -> int:
        return v or 0

    @field_validator("metadata", mode="before")
    @classmethod
    def _metadata(cls, v: Any) -> Dict[str, Any]:
        return v if isinstance(v, dict) else {}

    @property
    def resolved_name(self) -> str:
        for name_field in NAME_FIELDS:
            value = getattr(self, name_field)
            if value:
                return value
        return DEFAULT_FILE_NAME

    @property
    def mime(self) -> str:
        return (self.type or self.mime_type or "").lower()

    @property
    def is_image(self) -> bool:
        return self.mime.startswith("image/")

    @property
    def is_pdf(self) -> bool:
        return "pdf" in self.mime

    @property
    def is_pending(self) -> bool:
        return not self.id

    def with_name(self, new_name: str) -> "FileRecord":
        """Copy with every name field the catalog displays set to ``new_name``."""
        return self.model_copy(update={"name": new_name, "filename": new_name})


# ---------------------------------------------------------------------------
# FileVersion
# ---------------------------------------------------------------------------

class FileVersion(BaseModel):
    """
    One revision. Its ``id`` differs from the parent file id: downloading a
    version fetches that specific blob.
    """

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    id: str
    version_number: Optional[int] = None
    version: Optional[int] = None
    size: int = Field(default=0, validation_alias=AliasChoices("size", "file_size", "size_bytes"))
    type: Optional[str] = None
    mime_type: Optional[str] = None
    created_at: Optional[datetime] = Field(default=None, validation_alias=AliasChoices("created_at", "uploaded_at"))
    created_by: Optional[str] = Field(default=None, validation_alias=AliasChoices("created_by", "uploaded_by"))

    @field_validator("id", "created_by", mode="before")
    @classmethod
    def _ids(cls, v: Any) -> Any:
        return _to_str(v)

    @field_validator("created_at", mode="before")
    @classmethod
    def _times(cls, v: Any) -> Optional[datetime]:
        return parse_timestamp(v)

    @field_validator("size", mode="before")
    @classmethod
    def _size(cls, v: Any) -> int:
        return v or 0

    @property
    def explicit_number(self) -> Optional[int]:
        """The stored version number, when the backend stamped one."""
        if self.version_number is not None:
            return self.version_number
        return self.version


# ---------------------------------------------------------------------------
# ShareGrant
# ---------------------------------------------------------------------------

class GrantKind(str, Enum):
    PASSWORD = "password"
    OTP = "otp"


class GrantStatus(str, Enum):
    ACTIVE = "active"
    EXPIRED = "expired"
    REVOKED = "revoked"


class ShareGrant(BaseModel):
    """
    Access credential for a file. Status is mostly derived: a grant is
    active only while its stored status is not expired/revoked AND its
    expiry lies strictly in the future.
    """

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    id: str
    kind: GrantKind = GrantKind.PASSWORD
    status: Optional[str] = None
    created_at: Optional[datetime] = Field(default=None, validation_alias=AliasChoices("created_at", "createdAt"))
    expires_at: Optional[datetime] = Field(default=None, validation_alias=AliasChoices("expires_at", "expiresAt"))
    token: Optional[str] = Field(default=None, validation_alias=AliasChoices("token", "share_token"))
    url: Optional[str] = Field(default=None, validation_alias=AliasChoices("url", "share_url", "link"))
    email: Optional[str] = Field(default=None, validation_alias=AliasChoices("email", "recipient", "recipient_email"))
    max_access_count: Optional[int] = Field(
        default=None, validation_alias=AliasChoices("max_access_count", "maxAccessCount")
    )
    access_count: Optional[int] = Field(default=None, validation_alias=AliasChoices("access_count", "accessCount"))

    @field_validator("id", mode="before")
    @classmethod
    def _ids(cls, v: Any) -> Any:
        return _to_str(v)

    @field_validator("created_at", "expires_at", mode="before")
    @classmethod
    def _times(cls, v: Any) -> Optional[datetime]:
        return parse_timestamp(v)

    def derived_status(self, now: datetime) -> GrantStatus:
        stored = (self.status or "").lower()
        if stored == GrantStatus.REVOKED.value:
            return GrantStatus.REVOKED
        if stored == GrantStatus.EXPIRED.value:
            return GrantStatus.EXPIRED
        if self.expires_at is None or self.expires_at <= now:
            return GrantStatus.EXPIRED
        return GrantStatus.ACTIVE

    def is_active(self, now: datetime) -> bool:
        return self.derived_status(now) is GrantStatus.ACTIVE


# ---------------------------------------------------------------------------
# Uploads
# ---------------------------------------------------------------------------

class UploadStatus(str, Enum):
    PENDING = "pending"
    UPLOADING = "uploading"
    ERROR = "error"


@dataclass
class UploadPayload:
    """One local file selected or dropped by the user."""
    name: str
    content: bytes
    content_type: str = ""

    def __post_init__(self) -> None:
        if not self.content_type:
            guessed, _ = mimetypes.guess_type(self.name)
            self.content_type = guessed or "application/octet-stream"

    @property
    def size(self) -> int:
        return len(self.content)

    @classmethod
    def from_path(cls, path: str | Path) -> "UploadPayload":
        p = Path(path)
        return cls(name=p.name, content=p.read_bytes())

    def to_multipart(self, form_field: str) -> Tuple[str, Tuple[str, bytes, str]]:
        return form_field, (self.name, self.content, self.content_type)


def new_task_id() -> str:
    """Client-side id for local tracking only; never sent to the server."""
    return uuid.uuid4().hex[:8]


@dataclass
class UploadTask:
    """
    One in-flight upload. A batch task carries two or more payloads,
    a single task exactly one.
    """
    payloads: List[UploadPayload]
    id: str = field(default_factory=new_task_id)
    label: str = ""
    progress: int = 0
    status: UploadStatus = UploadStatus.PENDING
    error: Optional[str] = None

    def __post_init__(self) -> None:
        if not self.payloads:
            raise ValueError("UploadTask needs at least one payload")
        if not self.label:
            self.label = f"{len(self.payloads)} files" if self.is_batch else self.payloads[0].name

    @classmethod
    def single(cls, payload: UploadPayload) -> "UploadTask":
        return cls(payloads=[payload])

    @classmethod
    def batch(cls, payloads: List[UploadPayload]) -> "UploadTask":
        if len(payloads) < 2:
            raise ValueError("A batch upload carries at least two files")
        return cls(payloads=list(payloads))

    @property
    def is_batch(self) -> bool:
        return len(self.payloads) > 1

    @property
    def total_bytes(self) -> int:
        return sum(p.size for p in self.payloads)


# ---------------------------------------------------------------------------
# Share creation schemas
# ---------------------------------------------------------------------------

def field_errors(exc: ValidationError) -> Dict[str, str]:
    """Flatten a pydantic ValidationError to {field: first message}."""
    errors: Dict[str, str] = {}
    for err in exc.errors():
        loc = str(err["loc"][0]) if err.get("loc") else "__root__"
        ctx_error = (err.get("ctx") or {}).get("error")
        errors.setdefault(loc, str(ctx_error) if ctx_error is not None else err["msg"])
    return errors


def _now_from(info: ValidationInfo) -> datetime:
    ctx = info.context or {}
    return ctx.get("now") or utcnow()


def _number(v: Any) -> float:
    if isinstance(v, bool):
        raise ValueError("Must be a number")
    if isinstance(v, (int, float)):
        return v
    if isinstance(v, str):
        try:
            return float(v.strip())
        except ValueError:
            pass
    raise ValueError("Must be a number")


class _ShareRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, loc_by_alias=False)

    @classmethod
    def parse(cls, data: Dict[str, Any], now: Optional[datetime] = None, **context: Any):
        """Validate ``data``; raises DealerDocsValidationError with field messages."""
        try:
            return cls.model_validate(data, context={"now": now or utcnow(), **context})
        except ValidationError as e:
            errors = field_errors(e)
            raise DealerDocsValidationError(
                "; ".join(errors.values()),
                object_ref=cls.__name__,
                validation_errors=errors,
            )


class PasswordLinkRequest(_ShareRequest):
    """
    Password-protected public link. All three fields are mandatory: every
    public link must be credential-gated, time-bounded and count-bounded.
    """

    password: Optional[str] = Field(default=None, validate_default=True)
    max_access_count: Optional[int] = Field(default=None, alias="maxAccessCount", validate_default=True)
    expires_at: Optional[datetime] = Field(default=None, alias="expiresAt", validate_default=True)

    @field_validator("password", mode="before")
    @classmethod
    def _password(cls, v: Any) -> str:
        if v is None or (isinstance(v, str) and not v.strip()):
            raise ValueError("Password is required")
        if not isinstance(v, str):
            raise ValueError("Password must be text")
        v = v.strip()
        if len(v) < 4:
            raise ValueError("Password must be at least 4 characters")
        if len(v) > 50:
            raise ValueError("Password is too long")
        return v

    @field_validator("max_access_count", mode="before")
    @classmethod
    def _max_access_count(cls, v: Any) -> int:
        if v is None or v == "":
            raise ValueError("Max access count is required")
        n = _number(v)
        if n <= 0:
            raise ValueError("Must be positive")
        if n != int(n):
            raise ValueError("Must be an integer")
        return int(n)

    @field_validator("expires_at", mode="before")
    @classmethod
    def _expires_at(cls, v: Any, info: ValidationInfo) -> datetime:
        if v is None or v == "":
            raise ValueError("Expiration date is required")
        if isinstance(v, str):
            try:
                v = datetime.fromisoformat(v)
            except ValueError:
                raise ValueError("Invalid date")
        if not isinstance(v, datetime):
            raise ValueError("Invalid date")
        # Naive input is wall-clock local time, as typed into a picker
        v = v.astimezone(timezone.utc)
        if v <= _now_from(info):
            raise ValueError("Expiration must be in the future")
        return v

    def to_payload(self) -> Dict[str, Any]:
        return {
            "password": self.password,
            "maxAccessCount": self.max_access_count,
            "expiresAt": self.expires_at.isoformat(),
        }


class OtpGrantRequest(_ShareRequest):
    """Email-gated grant; expiry is an hour offset resolved client-side."""

    email: Optional[str] = Field(default=None, validate_default=True)
    expires_in_hours: Optional[float] = Field(default=None, alias="expiresInHours", validate_default=True)

    @field_validator("email", mode="before")
    @classmethod
    def _email(cls, v: Any) -> str:
        if v is None or (isinstance(v, str) and not v.strip()):
            raise ValueError("Email is required")
        if not isinstance(v, str):
            raise ValueError("Invalid email format")
        try:
            _, normalized = validate_email(v.strip())
        except ValueError:
            raise ValueError("Invalid email format")
        return normalized

    @field_validator("expires_in_hours", mode="before")
    @classmethod
    def _hours(cls, v: Any, info: ValidationInfo) -> float:
        if v is None or v == "":
            raise ValueError("Expiry hours are required")
        hours = _number(v)
        if hours < 1:
            raise ValueError("Must be at least 1 hour")
        max_hours = (info.context or {}).get("max_hours", 168)
        if hours > max_hours:
            raise ValueError(f"Must be at most {max_hours} hours")
        return hours

    def expires_at(self, now: datetime) -> datetime:
        return now + timedelta(hours=self.expires_in_hours)

    def to_payload(self, now: datetime) -> Dict[str, Any]:
        return {"email": self.email, "expiresAt": self.expires_at(now).isoformat()}


# ---------------------------------------------------------------------------
# Preview
# ---------------------------------------------------------------------------

@dataclass
class PreviewResource:
    """A live object URL for a fetched blob."""
    file_id: str
    url: str
    content_type: str
    size: int = 0
