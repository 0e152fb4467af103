"""
DealerDocs File Service Client — async HTTP access to the backend file API.

Pipeline (per call):
    1. Build the request against ``api.base_url`` (bearer auth + extra headers)
    2. Execute via one pooled httpx.AsyncClient (timeout from config)
    3. Map non-2xx responses and transport failures to DealerDocs errors
    4. Log method, path, status and duration (never bodies)

Uploads are sent as multipart bodies streamed in chunks so that a progress
callback can follow the bytes as they leave. There is no retry: uploads
and share creation are not idempotent, and no cancellation is offered for
in-flight transfers.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Callable, Dict, List, Optional, Sequence, Tuple
from urllib.parse import quote

import httpx

from dealerdocs.engine.config import DealerDocsConfig
from dealerdocs.engine.errors import (
    DealerDocsAuthError,
    DealerDocsIntegrationError,
    DealerDocsNotFoundError,
)
from dealerdocs.engine.logging import ActivityLog, log_http_call

logger = logging.getLogger("dealerdocs.engine.http")

ENDPOINT = "/files"

ProgressCallback = Callable[[int], None]

# (form field, (filename, content, content type))
MultipartFile = Tuple[str, Tuple[str, bytes, str]]


@dataclass
class Blob:
    """Binary response body plus the headers needed to interpret it."""
    content: bytes
    content_type: str = "application/octet-stream"
    headers: Dict[str, str] = field(default_factory=dict)

    @property
    def size(self) -> int:
        return len(self.content)

    @property
    def is_json(self) -> bool:
        return "application/json" in self.content_type


def _seg(value: Any) -> str:
    """Quote an id for use as a single path segment."""
    return quote(str(value), safe="")


class FileServiceClient:
    """
    Thin async client for the File Service.

    One httpx.AsyncClient per instance, closed via ``aclose()`` or
    ``async with``. Pass ``transport`` to route requests elsewhere
    (tests use ``httpx.MockTransport``).
    """

    def __init__(
        self,
        config: DealerDocsConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        activity_log: Optional[ActivityLog] = None,
    ):
        self._config = config
        self._activity_log = activity_log

        headers = dict(config.api.headers)
        headers.setdefault("Accept", "application/json")
        token = config.api_token
        if token:
            headers["Authorization"] = f"Bearer {token}"

        self._client = httpx.AsyncClient(
            base_url=config.api.base_url,
            headers=headers,
            timeout=httpx.Timeout(config.api.timeout, connect=10.0),
            transport=transport,
            follow_redirects=True,
        )

    async def __aenter__(self) -> "FileServiceClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    # -----------------------------------------------------------------------
    # Files
    # -----------------------------------------------------------------------

    async def list_files(self, context: Optional[str] = None, context_id: Optional[str] = None) -> Any:
        params = {k: v for k, v in (("context", context), ("context_id", context_id)) if v is not None}
        return await self._json("GET", ENDPOINT, params=params)

    async def get_file(self, file_id: str) -> Any:
        return await self._json("GET", f"{ENDPOINT}/{_seg(file_id)}")

    async def upload_files(
        self,
        files: Sequence[MultipartFile],
        context: Optional[str] = None,
        context_id: Optional[str] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> Any:
        """POST /files — ``file`` for a single payload, ``files[]`` for a batch."""
        data = {k: str(v) for k, v in (("context", context), ("context_id", context_id)) if v is not None}
        return await self._multipart(ENDPOINT, list(files), data, on_progress)

    async def update_file(self, file_id: str, data: Dict[str, Any]) -> Any:
        return await self._json("PUT", f"{ENDPOINT}/{_seg(file_id)}", json=data)

    async def delete_file(self, file_id: str) -> None:
        await self._send("DELETE", f"{ENDPOINT}/{_seg(file_id)}")

    async def download_file(self, file_id: str, params: Optional[Dict[str, Any]] = None) -> Blob:
        response = await self._send("GET", f"{ENDPOINT}/{_seg(file_id)}/download", params=params)
        return self._blob(response)

    async def storage_usage(self) -> Any:
        return await self._json("GET", f"{ENDPOINT}/usage")

    # -----------------------------------------------------------------------
    # Versions
    # -----------------------------------------------------------------------

    async def list_versions(self, file_id: str) -> Any:
        return await self._json("GET", f"{ENDPOINT}/{_seg(file_id)}/versions")

    async def upload_version(
        self,
        file_id: str,
        file: MultipartFile,
        on_progress: Optional[ProgressCallback] = None,
    ) -> Any:
        return await self._multipart(f"{ENDPOINT}/{_seg(file_id)}/versions", [file], {}, on_progress)

    # -----------------------------------------------------------------------
    # Shares
    # -----------------------------------------------------------------------

    async def list_share_links(self, file_id: str) -> Any:
        return await self._json("GET", f"{ENDPOINT}/{_seg(file_id)}/shares")

    async def list_otp_shares(self, file_id: str) -> Any:
        return await self._json("GET", f"{ENDPOINT}/{_seg(file_id)}/otp-shares")

    async def create_password_share(self, file_id: str, payload: Dict[str, Any]) -> Any:
        return await self._json("POST", f"{ENDPOINT}/{_seg(file_id)}/share", json=payload)

    async def create_otp_share(self, file_id: str, payload: Dict[str, Any]) -> Any:
        return await self._json("POST", f"{ENDPOINT}/{_seg(file_id)}/share-otp", json=payload)

    async def revoke_share(self, file_id: str, share_id: str) -> None:
        """Generic revocation for both grant kinds; the id alone disambiguates."""
        await self._send("DELETE", f"{ENDPOINT}/{_seg(file_id)}/shares/{_seg(share_id)}")

    # -----------------------------------------------------------------------
    # Public (recipient side)
    # -----------------------------------------------------------------------

    async def get_shared(self, token: str, params: Optional[Dict[str, Any]] = None) -> Blob:
        """GET /files/shared/:token — JSON metadata or the file itself."""
        response = await self._send("GET", f"{ENDPOINT}/shared/{_seg(token)}", params=params)
        return self._blob(response)

    async def verify_shared_otp(self, file_id: str, otp: str) -> Any:
        return await self._json("POST", f"{ENDPOINT}/shared/otp/{_seg(file_id)}/verify", json={"otp": otp})

    # -----------------------------------------------------------------------
    # Transport
    # -----------------------------------------------------------------------

    async def _json(self, method: str, path: str, **kwargs: Any) -> Any:
        response = await self._send(method, path, **kwargs)
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            return response.text

    @staticmethod
    def _blob(response: httpx.Response) -> Blob:
        return Blob(
            content=response.content,
            content_type=response.headers.get("content-type", "application/octet-stream"),
            headers=dict(response.headers),
        )

    async def _send(
        self,
        method: str,
        path: str,
        request: Optional[httpx.Request] = None,
        **kwargs: Any,
    ) -> httpx.Response:
        start = time.monotonic()
        try:
            if request is None:
                request = self._client.build_request(method, path, **kwargs)
            response = await self._client.send(request)
        except httpx.HTTPError as e:
            duration_ms = (time.monotonic() - start) * 1000
            self._log(method, path, 0, duration_ms, error=type(e).__name__)
            raise DealerDocsIntegrationError(
                f"{method} {path} failed: {e}",
                method=method,
                path=path,
            ) from e

        duration_ms = (time.monotonic() - start) * 1000
        if response.is_success:
            self._log(method, path, response.status_code, duration_ms)
            return response

        self._log(method, path, response.status_code, duration_ms, error=f"HTTP {response.status_code}")
        raise self._error_for(method, path, response)

    @staticmethod
    def _error_for(method: str, path: str, response: httpx.Response) -> DealerDocsIntegrationError:
        status = response.status_code
        if status == 404:
            error_cls = DealerDocsNotFoundError
        elif status in (401, 403):
            error_cls = DealerDocsAuthError
        else:
            error_cls = DealerDocsIntegrationError
        return error_cls(
            f"{method} {path} failed with HTTP {status}",
            method=method,
            path=path,
            status_code=status,
            response_body=response.text[:2000],
        )

    async def _multipart(
        self,
        path: str,
        files: List[MultipartFile],
        data: Dict[str, str],
        on_progress: Optional[ProgressCallback],
    ) -> Any:
        """
        Encode the multipart body once, then stream it in chunks so progress
        can be reported as bytes are handed to the transport.
        """
        encoded = self._client.build_request("POST", path, files=files, data=data or None)
        body = encoded.read()
        headers = {
            "Content-Type": encoded.headers["Content-Type"],
            "Content-Length": str(len(body)),
        }
        chunk_size = self._config.uploads.chunk_size
        request = self._client.build_request(
            "POST", path, content=_progress_stream(body, chunk_size, on_progress), headers=headers
        )
        response = await self._send("POST", path, request=request)
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            return response.text

    def _log(self, method: str, path: str, status: int, duration_ms: float, error: Optional[str] = None) -> None:
        if error:
            logger.warning(f"{method} {path} -> {status or 'no response'} ({duration_ms:.0f}ms): {error}")
        else:
            logger.debug(f"{method} {path} -> {status} ({duration_ms:.0f}ms)")
        if self._activity_log:
            self._activity_log.write(log_http_call(method, path, status, duration_ms, error))


async def _progress_stream(
    body: bytes,
    chunk_size: int,
    on_progress: Optional[ProgressCallback],
) -> AsyncIterator[bytes]:
    total = len(body)
    sent = 0
    for start in range(0, total, chunk_size):
        chunk = body[start:start + chunk_size]
        sent += len(chunk)
        yield chunk
        if on_progress and total:
            on_progress(round(sent * 100 / total))
