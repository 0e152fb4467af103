"""
DealerDocs Share-Link Manager — password links and OTP email grants for one file.

Grant state is derived, never pushed:
    active   stored status is not expired/revoked AND expires_at > now
    expired  time passed expires_at (discovered when the lists are read)
    revoked  terminal, only via revoke(); hidden locally for good

Design:
    - Creation validates first; a schema failure fills ``errors`` and makes
      no request.
    - A created password link is inserted locally from the response, so
      creation costs exactly one request.
    - Both lists are fetched in parallel; a list that fails keeps its
      previous contents.
    - Revocation goes through OptimisticCollection: hidden at once,
      restored with an error notification if the server refuses.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional, Set, Tuple

from dealerdocs.engine.config import SharingConfig
from dealerdocs.engine.errors import DealerDocsError, DealerDocsNotFoundError, DealerDocsValidationError
from dealerdocs.engine.http import FileServiceClient
from dealerdocs.engine.logging import ActivityLog, log_share_event
from dealerdocs.engine.notifier import Notifier
from dealerdocs.engine.timers import Clock, utcnow
from dealerdocs.files.models import (
    FileRecord,
    GrantKind,
    GrantStatus,
    OtpGrantRequest,
    PasswordLinkRequest,
    ShareGrant,
)
from dealerdocs.files.normalize import extract_list, extract_record, extract_share_token, parse_models
from dealerdocs.files.optimistic import OptimisticCollection

logger = logging.getLogger("dealerdocs.files.shares")

GRANT_LIST_KEYS = ("data", "shares")
SHARED_PATH = "/files/shared"

_REVOKE_PROMPTS = {
    GrantKind.PASSWORD: (
        "Revoke Access?",
        "This link will stop working immediately.",
        "Access has been revoked.",
        "Failed to revoke link",
    ),
    GrantKind.OTP: (
        "Revoke Email Access?",
        "The recipient will no longer be able to use the OTP.",
        "Email access has been revoked.",
        "Failed to revoke email access",
    ),
}


class ShareLinkManager:
    """Share panel bound to one FileRecord."""

    def __init__(
        self,
        file: FileRecord,
        client: FileServiceClient,
        notifier: Notifier,
        config: Optional[SharingConfig] = None,
        clock: Clock = utcnow,
        activity_log: Optional[ActivityLog] = None,
    ):
        if file.is_pending:
            raise ValueError("A pending upload cannot be shared")
        self.file = file
        self._client = client
        self._notifier = notifier
        self._config = config or SharingConfig()
        self._clock = clock
        self._activity_log = activity_log

        self._links: OptimisticCollection[ShareGrant] = OptimisticCollection(key=lambda g: g.id)
        self._otp: OptimisticCollection[ShareGrant] = OptimisticCollection(key=lambda g: g.id)
        self._revoked: Set[str] = set()

        self.errors: Dict[str, str] = {}
        self.loading = False
        self.generating = False

    # -----------------------------------------------------------------------
    # Views
    # -----------------------------------------------------------------------

    @property
    def links(self) -> List[ShareGrant]:
        """Every known password link that was not revoked here."""
        return self._visible(self._links)

    @property
    def otp_grants(self) -> List[ShareGrant]:
        return self._visible(self._otp)

    @property
    def active_links(self) -> List[ShareGrant]:
        now = self._clock()
        return [g for g in self.links if g.is_active(now)]

    @property
    def active_otp_grants(self) -> List[ShareGrant]:
        now = self._clock()
        return [g for g in self.otp_grants if g.is_active(now)]

    @property
    def revoked_ids(self) -> Set[str]:
        return set(self._revoked)

    def status_of(self, grant: ShareGrant) -> GrantStatus:
        if grant.id in self._revoked:
            return GrantStatus.REVOKED
        return grant.derived_status(self._clock())

    def _visible(self, collection: OptimisticCollection[ShareGrant]) -> List[ShareGrant]:
        hidden = self._revoked | collection.pending
        return [g for g in collection.items if g.id not in hidden]

    # -----------------------------------------------------------------------
    # Listing
    # -----------------------------------------------------------------------

    async def list_grants(self) -> Tuple[List[ShareGrant], List[ShareGrant]]:
        """Refresh both lists in parallel; returns the active views."""
        self.loading = True
        try:
            links_payload, otp_payload = await asyncio.gather(
                self._client.list_share_links(self.file.id),
                self._client.list_otp_shares(self.file.id),
                return_exceptions=True,
            )
        finally:
            self.loading = False

        self._apply_listing(self._links, links_payload, GrantKind.PASSWORD)
        self._apply_listing(self._otp, otp_payload, GrantKind.OTP)
        return self.active_links, self.active_otp_grants

    def _apply_listing(self, collection: OptimisticCollection[ShareGrant], payload: Any, kind: GrantKind) -> None:
        if isinstance(payload, DealerDocsError):
            logger.warning(f"Failed to load {kind.value} grants for {self.file.id}: {payload.message}")
            return
        if isinstance(payload, BaseException):
            raise payload
        items = [{**item, "kind": kind.value} for item in extract_list(payload, GRANT_LIST_KEYS)
                 if isinstance(item, dict)]
        collection.reset(parse_models(items, ShareGrant))

    # -----------------------------------------------------------------------
    # Password links
    # -----------------------------------------------------------------------

    async def create_password_link(self, data: Dict[str, Any]) -> Optional[str]:
        """
        Validate, create, and offer the link for copying.
        Returns the full share URL, or None on validation or request failure.
        """
        self.errors = {}
        now = self._clock()
        try:
            request = PasswordLinkRequest.parse(data, now=now)
        except DealerDocsValidationError as e:
            self.errors = dict(e.validation_errors)
            return None

        self.generating = True
        try:
            result = await self._client.create_password_share(self.file.id, request.to_payload())
        except DealerDocsError as e:
            logger.error(f"Password link for {self.file.id} failed: {e.message}")
            self._log("create_failed", kind=GrantKind.PASSWORD, error=e.message)
            await self._notifier.error("Error", "Failed to generate share link")
            return None
        finally:
            self.generating = False

        record = extract_record(result, ("data", "share")) or {}
        url = self.resolve_share_url(record)
        grant = self._grant_from_response(record, request, url, now)
        if grant is not None:
            self._links.prepend(grant)
        else:
            # Nothing to key a local entry on
            await self.list_grants()

        self._log(
            "created",
            grant_id=grant.id if grant else None,
            kind=GrantKind.PASSWORD,
            expires_at=request.expires_at.isoformat(),
        )
        await self._notifier.offer_copy("Share Link Generated", url)
        return url

    def resolve_share_url(self, result: Dict[str, Any]) -> str:
        """
        Public URL for a creation response. A distinct token wins; otherwise
        whichever URL field the backend filled, else the file's own path.
        """
        token = extract_share_token(result)
        if token and token != self.file.id:
            raw = f"{SHARED_PATH}/{token}"
        else:
            raw = result.get("share_url") or result.get("url") or result.get("link") or f"{SHARED_PATH}/{self.file.id}"
        if raw.startswith("http"):
            return raw
        return f"{self._config.public_base_url}{raw}"

    def _grant_from_response(
        self,
        record: Dict[str, Any],
        request: PasswordLinkRequest,
        url: str,
        now,
    ) -> Optional[ShareGrant]:
        grant_id = record.get("id") or record.get("share_id") or extract_share_token(record)
        if grant_id is None:
            return None
        data = {k: v for k, v in record.items() if k != "password"}
        data.update(id=grant_id, kind=GrantKind.PASSWORD.value, url=url)
        data.setdefault("status", GrantStatus.ACTIVE.value)
        data.setdefault("created_at", now)
        if "expiresAt" not in data:
            data.setdefault("expires_at", request.expires_at)
        if "maxAccessCount" not in data:
            data.setdefault("max_access_count", request.max_access_count)
        parsed = parse_models([data], ShareGrant)
        return parsed[0] if parsed else None

    # -----------------------------------------------------------------------
    # OTP grants
    # -----------------------------------------------------------------------

    async def create_otp_grant(self, data: Dict[str, Any]) -> bool:
        """Send an OTP-gated grant by email; expiry is resolved from the hour offset now."""
        self.errors = {}
        data = dict(data)
        if "expiresInHours" not in data and "expires_in_hours" not in data:
            data["expiresInHours"] = self._config.otp_default_hours

        now = self._clock()
        try:
            request = OtpGrantRequest.parse(data, now=now, max_hours=self._config.otp_max_hours)
        except DealerDocsValidationError as e:
            self.errors = dict(e.validation_errors)
            return False

        self.generating = True
        try:
            await self._client.create_otp_share(self.file.id, request.to_payload(now))
        except DealerDocsError as e:
            logger.error(f"OTP grant for {self.file.id} failed: {e.message}")
            self._log("create_failed", kind=GrantKind.OTP, recipient=request.email, error=e.message)
            await self._notifier.error("Error", "Failed to send OTP share")
            return False
        finally:
            self.generating = False

        self._log("created", kind=GrantKind.OTP, recipient=request.email,
                  expires_at=request.expires_at(now).isoformat())
        await self._notifier.success("Success", f"OTP share sent to {request.email}")
        await self.list_grants()
        return True

    # -----------------------------------------------------------------------
    # Revocation
    # -----------------------------------------------------------------------

    async def revoke(self, grant_id: str) -> bool:
        grant_id = str(grant_id)
        if self._links.get(grant_id) is not None:
            collection, kind = self._links, GrantKind.PASSWORD
        elif self._otp.get(grant_id) is not None:
            collection, kind = self._otp, GrantKind.OTP
        else:
            logger.warning(f"Revoke requested for unknown grant {grant_id}")
            return False
        if grant_id in self._revoked:
            return False

        title, question, done, failed = _REVOKE_PROMPTS[kind]
        if not await self._notifier.confirm(title, question):
            return False

        try:
            await collection.remove(grant_id, lambda: self._client.revoke_share(self.file.id, grant_id))
        except DealerDocsNotFoundError:
            # Already gone server-side: drop it locally as well
            collection.discard(grant_id)
            self._revoked.add(grant_id)
            self._log("revoked", grant_id=grant_id, kind=kind, error="not found")
            await self._notifier.warning("Share not found", "This share no longer exists.", toast=True)
            return False
        except DealerDocsError as e:
            logger.error(f"Revoking grant {grant_id} failed: {e.message}")
            self._log("revoke_failed", grant_id=grant_id, kind=kind, error=e.message)
            await self._notifier.error("Error", failed)
            return False

        self._revoked.add(grant_id)
        self._log("revoked", grant_id=grant_id, kind=kind)
        await self._notifier.success("Revoked!", done)
        return True

    def _log(
        self,
        event: str,
        grant_id: Optional[str] = None,
        kind: Optional[GrantKind] = None,
        recipient: Optional[str] = None,
        expires_at: Optional[str] = None,
        error: Optional[str] = None,
    ) -> None:
        if self._activity_log:
            self._activity_log.write(log_share_event(
                event, self.file.id, grant_id, kind.value if kind else None, recipient, expires_at, error,
            ))
