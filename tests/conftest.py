"""
DealerDocs Test Suite — Shared fixtures and configuration.

The File Service is replaced by FakeFileService, an in-memory backend
served through ``httpx.MockTransport``; nothing touches the network.

Run:  pytest tests/ -v
"""

from __future__ import annotations

import asyncio
import json
import re
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple

import httpx
import pytest

from dealerdocs.engine.config import DealerDocsConfig
from dealerdocs.engine.http import FileServiceClient
from dealerdocs.engine.logging import ActivityLog
from dealerdocs.engine.notifier import Notification, NotificationLevel, Notifier
from dealerdocs.engine.timers import DeferredActions
from dealerdocs.files.models import FileRecord

BASE_URL = "http://testserver/api"
API_PREFIX = "/api"


# ---------------------------------------------------------------------------
# Config isolation
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True)
def _isolate_config(monkeypatch):
    """Reset the config singleton and the token env var between tests."""
    import dealerdocs.engine.config as cfg_mod

    cfg_mod._config = None
    monkeypatch.delenv(cfg_mod.TOKEN_ENV_VAR, raising=False)


@pytest.fixture
def config(tmp_path):
    """Config with short timers and every path under tmp_path."""
    return DealerDocsConfig.model_validate({
        "api": {"base_url": BASE_URL, "token": "test-token"},
        "uploads": {"max_size_bytes": 1024, "max_files": 10, "error_dismiss_ms": 50, "chunk_size": 64},
        "preview": {"pdf_release_grace_ms": 50},
        "sharing": {"public_base_url": "https://docs.example.com"},
        "downloads": {"directory": str(tmp_path / "downloads")},
        "logging": {"directory": str(tmp_path / "logs")},
    })


# ---------------------------------------------------------------------------
# Clock
# ---------------------------------------------------------------------------

class FrozenClock:
    """Injectable clock; ``advance`` simulates the passage of time."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: Any) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def clock():
    return FrozenClock(datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc))


# ---------------------------------------------------------------------------
# Notifier
# ---------------------------------------------------------------------------

class RecordingNotifier(Notifier):
    """Records every interaction; confirms and prompts are scripted."""

    def __init__(self, confirm_answer: bool = True, prompt_answers: Optional[List[Optional[str]]] = None):
        self.notifications: List[Notification] = []
        self.confirms: List[Tuple[str, str]] = []
        self.prompts: List[Tuple[str, str]] = []
        self.copied: List[str] = []
        self.images: List[Tuple[str, str]] = []
        self.opened: List[str] = []
        self.confirm_answer = confirm_answer
        self.prompt_answers = list(prompt_answers or [])
        self.on_show_image = None

    async def notify(self, level, title, message="", toast=False) -> None:
        self.notifications.append(Notification(NotificationLevel(level), title, message, toast))

    async def confirm(self, title: str, message: str = "") -> bool:
        self.confirms.append((title, message))
        return self.confirm_answer

    async def prompt(self, title, value="", validator=None) -> Optional[str]:
        self.prompts.append((title, value))
        return self.prompt_answers.pop(0) if self.prompt_answers else None

    async def offer_copy(self, title: str, text: str) -> bool:
        self.copied.append(text)
        await self.notify(NotificationLevel.SUCCESS, title, text)
        return True

    async def show_image(self, title: str, url: str) -> None:
        self.images.append((title, url))
        if self.on_show_image:
            self.on_show_image(url)

    async def open_external(self, url: str) -> None:
        self.opened.append(url)

    def titles(self, level: Optional[NotificationLevel] = None) -> List[str]:
        return [n.title for n in self.notifications if level is None or n.level is level]


@pytest.fixture
def notifier():
    return RecordingNotifier()


# ---------------------------------------------------------------------------
# Fake File Service
# ---------------------------------------------------------------------------

_PART_RE = re.compile(rb'name="([^"]+)"(?:; filename="([^"]*)")?\r\n(?:Content-Type: ([^\r]*)\r\n)?\r\n(.*?)\r\n--', re.S)


class FakeFileService:
    """
    In-memory File Service. Routes mirror the real API under ``/api``.

    ``fail(method, path, status)`` makes a route answer with an error until
    ``clear_failures()``; ``hold(method, path)`` returns an Event the route
    waits on before answering.
    """

    def __init__(self):
        self.files: Dict[str, Dict[str, Any]] = {}
        self.blobs: Dict[str, Tuple[bytes, str]] = {}
        self.versions: Dict[str, List[Dict[str, Any]]] = {}
        self.links: Dict[str, List[Dict[str, Any]]] = {}
        self.otp: Dict[str, List[Dict[str, Any]]] = {}
        self.shared: Dict[str, Any] = {}
        self.shared_passwords: Dict[str, str] = {}
        self.otp_codes: Dict[str, str] = {}
        self.usage: Optional[Dict[str, int]] = {"used": 2048, "total": 1048576}
        self.list_shape = "files"
        self.upload_failures: List[Dict[str, Any]] = []
        self.requests: List[httpx.Request] = []
        self._failures: Dict[Tuple[str, str], Tuple[int, Any]] = {}
        self._gates: Dict[Tuple[str, str], asyncio.Event] = {}
        self._next_id = 100

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    # -- programming ------------------------------------------------------

    def add_file(self, file_id: str, name: str, type: str = "application/pdf",
                 content: bytes = b"%PDF-1.4 test", **extra: Any) -> Dict[str, Any]:
        record = {"id": file_id, "name": name, "type": type, "size": len(content), **extra}
        self.files[file_id] = record
        self.blobs[file_id] = (content, type)
        return record

    def add_version(self, file_id: str, version_id: str, content: bytes = b"old", **extra: Any) -> Dict[str, Any]:
        version = {"id": version_id, "size": len(content), **extra}
        self.versions.setdefault(file_id, []).append(version)
        self.blobs[version_id] = (content, self.files.get(file_id, {}).get("type", "application/octet-stream"))
        return version

    def add_link(self, file_id: str, grant_id: str, expires_at: datetime, status: str = "active",
                 **extra: Any) -> Dict[str, Any]:
        grant = {"id": grant_id, "status": status, "expiresAt": expires_at.isoformat(), **extra}
        self.links.setdefault(file_id, []).append(grant)
        return grant

    def add_otp(self, file_id: str, grant_id: str, email: str, expires_at: datetime, **extra: Any) -> Dict[str, Any]:
        grant = {"id": grant_id, "email": email, "expires_at": expires_at.isoformat(), **extra}
        self.otp.setdefault(file_id, []).append(grant)
        return grant

    def fail(self, method: str, path: str, status: int = 500, body: Any = None) -> None:
        self._failures[(method, path)] = (status, body or {"message": "backend exploded"})

    def clear_failures(self) -> None:
        self._failures.clear()

    def hold(self, method: str, path: str) -> asyncio.Event:
        event = asyncio.Event()
        self._gates[(method, path)] = event
        return event

    def calls(self, method: Optional[str] = None, path: Optional[str] = None) -> List[httpx.Request]:
        return [
            r for r in self.requests
            if (method is None or r.method == method) and (path is None or self._path(r) == path)
        ]

    # -- routing ----------------------------------------------------------

    @staticmethod
    def _path(request: httpx.Request) -> str:
        path = request.url.path
        return path[len(API_PREFIX):] if path.startswith(API_PREFIX) else path

    def _new_id(self) -> str:
        self._next_id += 1
        return str(self._next_id)

    async def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        method, path = request.method, self._path(request)

        gate = self._gates.get((method, path))
        if gate is not None:
            await gate.wait()

        failure = self._failures.get((method, path))
        if failure is not None:
            status, body = failure
            return httpx.Response(status, json=body)

        parts = [p for p in path.split("/") if p]
        return self._route(request, method, parts)

    def _route(self, request: httpx.Request, method: str, parts: List[str]) -> httpx.Response:
        if parts == ["files"]:
            if method == "GET":
                files = list(self.files.values())
                if self.list_shape == "bare":
                    return httpx.Response(200, json=files)
                return httpx.Response(200, json={self.list_shape: files})
            if method == "POST":
                return self._upload(request)

        if parts == ["files", "usage"]:
            if self.usage is None:
                return httpx.Response(500, json={"message": "no usage"})
            return httpx.Response(200, json=self.usage)

        if len(parts) == 3 and parts[:2] == ["files", "shared"]:
            return self._shared(request, parts[2])

        if len(parts) == 5 and parts[:3] == ["files", "shared", "otp"] and parts[4] == "verify":
            code = json.loads(request.content).get("otp")
            if self.otp_codes.get(parts[3]) == code:
                return httpx.Response(200, json={"verified": True})
            return httpx.Response(400, json={"message": "Invalid code"})

        if len(parts) < 2 or parts[0] != "files":
            return httpx.Response(404, json={"message": "no route"})

        file_id = parts[1]
        if parts[2:] == ["download"] and file_id in self.blobs:
            content, content_type = self.blobs[file_id]
            return httpx.Response(200, content=content, headers={"Content-Type": content_type})
        if file_id not in self.files:
            return httpx.Response(404, json={"message": "File not found"})
        rest = parts[2:]

        if not rest:
            if method == "GET":
                return httpx.Response(200, json={"data": self.files[file_id]})
            if method == "PUT":
                body = json.loads(request.content)
                self.files[file_id]["name"] = body.get("filename", self.files[file_id]["name"])
                return httpx.Response(200, json={"data": self.files[file_id]})
            if method == "DELETE":
                del self.files[file_id]
                return httpx.Response(204)

        if rest == ["versions"]:
            if method == "GET":
                return httpx.Response(200, json={"data": list(self.versions.get(file_id, []))})
            version = {"id": f"v{self._new_id()}", "size": len(request.content)}
            self.versions.setdefault(file_id, []).insert(0, version)
            self.files[file_id]["version_count"] = len(self.versions[file_id])
            return httpx.Response(201, json=version)

        if rest == ["shares"] and method == "GET":
            return httpx.Response(200, json=list(self.links.get(file_id, [])))
        if rest == ["otp-shares"] and method == "GET":
            return httpx.Response(200, json={"data": list(self.otp.get(file_id, []))})

        if rest == ["share"] and method == "POST":
            body = json.loads(request.content)
            grant_id = self._new_id()
            grant = {
                "id": grant_id,
                "share_token": f"tok{grant_id}",
                "expiresAt": body["expiresAt"],
                "maxAccessCount": body["maxAccessCount"],
                "status": "active",
            }
            self.links.setdefault(file_id, []).append(grant)
            return httpx.Response(201, json=grant)

        if rest == ["share-otp"] and method == "POST":
            body = json.loads(request.content)
            grant = {"id": self._new_id(), "email": body["email"], "expires_at": body["expiresAt"]}
            self.otp.setdefault(file_id, []).append(grant)
            return httpx.Response(201, json={"message": "sent"})

        if len(rest) == 2 and rest[0] == "shares" and method == "DELETE":
            for grants in (self.links.get(file_id, []), self.otp.get(file_id, [])):
                for g in list(grants):
                    if str(g["id"]) == rest[1]:
                        grants.remove(g)
                        return httpx.Response(204)
            return httpx.Response(404, json={"message": "Share not found"})

        return httpx.Response(405, json={"message": "method not allowed"})

    def _upload(self, request: httpx.Request) -> httpx.Response:
        fields: Dict[str, str] = {}
        uploaded: List[Tuple[str, str, bytes]] = []
        for name, filename, content_type, value in _PART_RE.findall(request.content):
            if filename:
                uploaded.append((filename.decode(), (content_type or b"").decode(), value))
            else:
                fields[name.decode()] = value.decode()

        failed_names = {f["name"] for f in self.upload_failures}
        created = []
        for filename, content_type, content in uploaded:
            if filename in failed_names:
                continue
            file_id = self._new_id()
            record = self.add_file(
                file_id, filename, type=content_type, content=content,
                context=fields.get("context"), context_id=fields.get("context_id"),
            )
            created.append(record)

        if len(uploaded) == 1 and not self.upload_failures:
            return httpx.Response(201, json={"data": created[0]})
        body: Dict[str, Any] = {"files": created}
        if self.upload_failures:
            body["failed"] = list(self.upload_failures)
        return httpx.Response(201, json=body)

    def _shared(self, request: httpx.Request, token: str) -> httpx.Response:
        entry = self.shared.get(token)
        if entry is None:
            return httpx.Response(404, json={"message": "Link expired"})
        if isinstance(entry, tuple):
            content, content_type, headers = entry
            return httpx.Response(200, content=content, headers={"Content-Type": content_type, **headers})

        given = request.url.params.get("password")
        if given is None:
            return httpx.Response(200, json=entry)
        expected = self.shared_passwords.get(token)
        if expected is not None and given != expected:
            return httpx.Response(401, json={"message": "Wrong password"})
        return httpx.Response(200, content=b"shared-bytes", headers={"Content-Type": "application/pdf"})


@pytest.fixture
def backend():
    return FakeFileService()


@pytest.fixture
def client(config, backend):
    return FileServiceClient(config, transport=backend.transport)


@pytest.fixture
def activity_log(tmp_path):
    return ActivityLog(str(tmp_path / "logs"))


@pytest.fixture
def timers():
    return DeferredActions()


@pytest.fixture
def make_record():
    def _make(file_id: str, name: str, type: str = "application/pdf", **extra: Any) -> FileRecord:
        return FileRecord.model_validate({"id": file_id, "name": name, "type": type, **extra})
    return _make
