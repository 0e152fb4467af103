"""
DealerDocs CLI — file catalog commands against the File Service.

Commands:
- dealerdocs list            — List files of a context (search / type filter)
- dealerdocs upload          — Upload one or more files (batch when > 1)
- dealerdocs download        — Download a file into the downloads directory
- dealerdocs rename          — Rename a file
- dealerdocs delete          — Delete one or more files
- dealerdocs versions        — Show version history (optionally download one)
- dealerdocs upload-version  — Upload a new version of a file
- dealerdocs share-link      — Create a password-protected share link
- dealerdocs share-otp       — Send an OTP-gated share by email
- dealerdocs shares          — List share grants of a file
- dealerdocs revoke          — Revoke a share grant
- dealerdocs public          — Open a share link as its recipient
- dealerdocs activity        — Read the structured activity log
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from dealerdocs.engine.config import load_config
from dealerdocs.engine.errors import DealerDocsError
from dealerdocs.engine.http import FileServiceClient
from dealerdocs.engine.logging import OBJECT_TYPE_CATEGORIES, ActivityLog, configure_logging
from dealerdocs.engine.notifier import ConsoleNotifier
from dealerdocs.engine.timers import DeferredActions
from dealerdocs.files.catalog import FileCatalogController, TypeFilter
from dealerdocs.files.downloads import DownloadSaver
from dealerdocs.files.models import FileRecord, UploadPayload
from dealerdocs.files.naming import format_size
from dealerdocs.files.public import PublicShareAccess

logger = logging.getLogger("dealerdocs.cli")


def main(argv: Optional[list] = None) -> int:
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="dealerdocs",
        description="DealerDocs — file management and secure sharing",
    )
    parser.add_argument("--config", help="Path to dealerdocs.yaml (default: auto-discover)")
    parser.add_argument("--context", default="global", help="Owning entity type (default: global)")
    parser.add_argument("--context-id", help="Owning entity id")
    parser.add_argument("--yes", "-y", action="store_true", help="Answer yes to confirmations")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    list_parser = subparsers.add_parser("list", help="List files")
    list_parser.add_argument("--search", default="", help="Substring of the file name")
    list_parser.add_argument("--type", choices=[t.value for t in TypeFilter], default="all")

    upload_parser = subparsers.add_parser("upload", help="Upload files")
    upload_parser.add_argument("paths", nargs="+", help="Local files to upload")

    download_parser = subparsers.add_parser("download", help="Download a file")
    download_parser.add_argument("file_id")

    rename_parser = subparsers.add_parser("rename", help="Rename a file")
    rename_parser.add_argument("file_id")
    rename_parser.add_argument("name", nargs="?", help="New name (prompted if omitted)")

    delete_parser = subparsers.add_parser("delete", help="Delete files")
    delete_parser.add_argument("file_ids", nargs="+")

    versions_parser = subparsers.add_parser("versions", help="Show version history")
    versions_parser.add_argument("file_id")
    versions_parser.add_argument("--download", metavar="VERSION_ID", help="Download this version")

    upload_version_parser = subparsers.add_parser("upload-version", help="Upload a new version")
    upload_version_parser.add_argument("file_id")
    upload_version_parser.add_argument("path")

    link_parser = subparsers.add_parser("share-link", help="Create a password-protected link")
    link_parser.add_argument("file_id")
    link_parser.add_argument("--password", required=True)
    link_parser.add_argument("--max-access", required=True, help="Maximum number of accesses")
    link_parser.add_argument("--expires", required=True, help="Expiry (ISO date/time, local time if naive)")

    otp_parser = subparsers.add_parser("share-otp", help="Send an OTP-gated share by email")
    otp_parser.add_argument("file_id")
    otp_parser.add_argument("--email", required=True)
    otp_parser.add_argument("--hours", help="Hours until expiry (default from config)")

    shares_parser = subparsers.add_parser("shares", help="List share grants")
    shares_parser.add_argument("file_id")
    shares_parser.add_argument("--all", action="store_true", help="Include expired grants")

    revoke_parser = subparsers.add_parser("revoke", help="Revoke a share grant")
    revoke_parser.add_argument("file_id")
    revoke_parser.add_argument("grant_id")

    public_parser = subparsers.add_parser("public", help="Open a share link as recipient")
    public_parser.add_argument("token")
    public_parser.add_argument("--password")
    public_parser.add_argument("--otp", help="Verification code received by email")

    activity_parser = subparsers.add_parser("activity", help="Read the activity log")
    activity_parser.add_argument("object_type", choices=sorted(OBJECT_TYPE_CATEGORIES))
    activity_parser.add_argument("--category", default="execution")
    activity_parser.add_argument("--days", type=int, default=7)
    activity_parser.add_argument("--limit", type=int, default=50)

    args = parser.parse_args(argv)

    commands = {
        "list": cmd_list,
        "upload": cmd_upload,
        "download": cmd_download,
        "rename": cmd_rename,
        "delete": cmd_delete,
        "versions": cmd_versions,
        "upload-version": cmd_upload_version,
        "share-link": cmd_share_link,
        "share-otp": cmd_share_otp,
        "shares": cmd_shares,
        "revoke": cmd_revoke,
        "public": cmd_public,
        "activity": cmd_activity,
    }
    handler = commands.get(args.command)
    if handler is None:
        parser.print_help()
        return 0

    try:
        if args.command == "activity":
            return handler(args)
        return asyncio.run(handler(args))
    except DealerDocsError as e:
        print(f"[ERROR] {e.message}")
        return 1


# ---------------------------------------------------------------------------
# Session
# ---------------------------------------------------------------------------

@asynccontextmanager
async def _session(args: argparse.Namespace, notifier: Optional[ConsoleNotifier] = None) -> AsyncIterator[FileCatalogController]:
    config = load_config(args.config)
    configure_logging("DEBUG" if args.verbose else config.logging.level)
    activity_log = ActivityLog(config.logging.directory) if config.logging.activity_log else None
    notifier = notifier or ConsoleNotifier(assume_yes=args.yes)
    timers = DeferredActions()

    async with FileServiceClient(config, activity_log=activity_log) as client:
        catalog = FileCatalogController(
            client,
            notifier,
            config,
            context=args.context,
            context_id=args.context_id,
            timers=timers,
            activity_log=activity_log,
        )
        try:
            yield catalog
        finally:
            # Release anything still waiting on a timer before the loop ends
            timers.flush()


async def _resolve(catalog: FileCatalogController, file_id: str) -> Optional[FileRecord]:
    await catalog.fetch_files()
    record = catalog.get(file_id)
    if record is None:
        print(f"[ERROR] File not found in {catalog.context}: {file_id}")
    return record


def _print_file(f: FileRecord) -> None:
    print(f"  {f.id:<12} {f.resolved_name:<40} {format_size(f.size):>10}  {f.mime or '-'}")


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

async def cmd_list(args: argparse.Namespace) -> int:
    async with _session(args) as catalog:
        await catalog.fetch_files()
        if catalog.load_error:
            return 1
        files = catalog.filtered_files(args.search, args.type)
        for f in files:
            _print_file(f)
        print(f"{len(files)} file(s)")
        usage = await catalog.storage_usage()
        if usage["total"]:
            print(f"Storage: {format_size(usage['used'])} of {format_size(usage['total'])}")
    return 0


async def cmd_upload(args: argparse.Namespace) -> int:
    try:
        payloads = [UploadPayload.from_path(p) for p in args.paths]
    except OSError as e:
        print(f"[ERROR] {e}")
        return 1

    async with _session(args) as catalog:
        task = catalog.uploads.handle_selection(payloads)
        if catalog.uploads.error:
            print(f"[ERROR] {catalog.uploads.error}")
        if task is None:
            return 1
        print(f"Uploading {task.label}...")
        await catalog.uploads.wait_idle()
        failed = catalog.uploads.get_task(task.id)
        if failed is not None:
            print(f"[ERROR] {failed.label}: {failed.error}")
            return 1
        for f in catalog.files:
            _print_file(f)
    return 0


async def cmd_download(args: argparse.Namespace) -> int:
    async with _session(args) as catalog:
        record = await _resolve(catalog, args.file_id)
        if record is None:
            return 1
        path = await catalog.dispatch("download", record)
        if path is None:
            return 1
        print(f"[OK] Saved {path}")
    return 0


async def cmd_rename(args: argparse.Namespace) -> int:
    answers = {"Rename File": args.name} if args.name else None
    notifier = ConsoleNotifier(assume_yes=args.yes, answers=answers)
    async with _session(args, notifier) as catalog:
        record = await _resolve(catalog, args.file_id)
        if record is None:
            return 1
        return 0 if await catalog.dispatch("rename", record) else 1


async def cmd_delete(args: argparse.Namespace) -> int:
    async with _session(args) as catalog:
        await catalog.fetch_files()
        records = [catalog.get(file_id) for file_id in args.file_ids]
        missing = [fid for fid, r in zip(args.file_ids, records) if r is None]
        if missing:
            print(f"[ERROR] Not found: {', '.join(missing)}")
            return 1
        if len(records) == 1:
            return 0 if await catalog.dispatch("delete", records[0]) else 1
        result = await catalog.delete_many(records)
        return 0 if not result["failed"] and result["deleted"] else 1


async def cmd_versions(args: argparse.Namespace) -> int:
    async with _session(args) as catalog:
        record = await _resolve(catalog, args.file_id)
        if record is None:
            return 1
        ledger = await catalog.dispatch("versions", record)
        if not ledger.versions:
            print("No history found for this file.")
        for i, v in enumerate(ledger.versions):
            created = v.created_at.isoformat() if v.created_at else "-"
            print(f"  v{ledger.display_number(v, i):<4} {v.id:<12} {created:<32} {format_size(v.size):>10}")

        if args.download:
            matches = [(i, v) for i, v in enumerate(ledger.versions) if v.id == args.download]
            if not matches:
                print(f"[ERROR] Version not found: {args.download}")
                return 1
            index, version = matches[0]
            path = await ledger.download_version(version, index)
            if path is None:
                return 1
            print(f"[OK] Saved {path}")
    return 0


async def cmd_upload_version(args: argparse.Namespace) -> int:
    try:
        payload = UploadPayload.from_path(args.path)
    except OSError as e:
        print(f"[ERROR] {e}")
        return 1
    async with _session(args) as catalog:
        record = await _resolve(catalog, args.file_id)
        if record is None:
            return 1
        ledger = await catalog.dispatch("versions", record)
        return 0 if await ledger.upload_new_version(payload) else 1


async def cmd_share_link(args: argparse.Namespace) -> int:
    async with _session(args) as catalog:
        record = await _resolve(catalog, args.file_id)
        if record is None:
            return 1
        manager = await catalog.dispatch("share", record)
        url = await manager.create_password_link({
            "password": args.password,
            "maxAccessCount": args.max_access,
            "expiresAt": args.expires,
        })
        for field_name, message in manager.errors.items():
            print(f"[ERROR] {field_name}: {message}")
        return 0 if url else 1


async def cmd_share_otp(args: argparse.Namespace) -> int:
    async with _session(args) as catalog:
        record = await _resolve(catalog, args.file_id)
        if record is None:
            return 1
        manager = await catalog.dispatch("share", record)
        data = {"email": args.email}
        if args.hours is not None:
            data["expiresInHours"] = args.hours
        ok = await manager.create_otp_grant(data)
        for field_name, message in manager.errors.items():
            print(f"[ERROR] {field_name}: {message}")
        return 0 if ok else 1


async def cmd_shares(args: argparse.Namespace) -> int:
    async with _session(args) as catalog:
        record = await _resolve(catalog, args.file_id)
        if record is None:
            return 1
        manager = await catalog.dispatch("share", record)
        links = manager.links if args.all else manager.active_links
        otp = manager.otp_grants if args.all else manager.active_otp_grants

        print("Password links:")
        for g in links:
            expires = g.expires_at.isoformat() if g.expires_at else "-"
            count = f"{g.access_count or 0}/{g.max_access_count}" if g.max_access_count else "-"
            print(f"  {g.id:<12} {manager.status_of(g).value:<8} expires {expires}  access {count}")
        print("Email (OTP) grants:")
        for g in otp:
            expires = g.expires_at.isoformat() if g.expires_at else "-"
            print(f"  {g.id:<12} {manager.status_of(g).value:<8} {g.email or '-'}  expires {expires}")
    return 0


async def cmd_revoke(args: argparse.Namespace) -> int:
    async with _session(args) as catalog:
        record = await _resolve(catalog, args.file_id)
        if record is None:
            return 1
        manager = await catalog.dispatch("share", record)
        return 0 if await manager.revoke(args.grant_id) else 1


async def cmd_public(args: argparse.Namespace) -> int:
    config = load_config(args.config)
    configure_logging("DEBUG" if args.verbose else config.logging.level)
    notifier = ConsoleNotifier(assume_yes=args.yes)

    async with FileServiceClient(config) as client:
        access = PublicShareAccess(client, notifier, DownloadSaver(config.downloads.directory))
        info = await access.load(args.token)
        if info is None:
            print(f"[ERROR] {access.error}")
            return 1
        print(f"Shared: {info.name} ({format_size(info.size)}, {info.type or 'unknown type'})")
        if info.expires_at:
            print(f"Expires: {info.expires_at.isoformat()}")
        if info.is_folder:
            print(f"Folder with {len(info.files)} file(s)")
            return 0

        if access.otp_pending:
            if not args.otp:
                print("[ERROR] This share requires the code sent by email (--otp)")
                return 1
            if not await access.verify_otp(args.otp):
                return 1

        path = await access.download(args.password)
        if path is None:
            return 1
        print(f"[OK] Saved {path}")
    return 0


def cmd_activity(args: argparse.Namespace) -> int:
    """Print activity log entries, newest first, one JSON object per line."""
    config = load_config(args.config)
    if args.category not in OBJECT_TYPE_CATEGORIES[args.object_type]:
        print(f"[ERROR] {args.object_type} has no '{args.category}' category")
        return 1
    entries = ActivityLog(config.logging.directory).query(
        args.object_type, args.category, days=args.days, limit=args.limit
    )
    for entry in entries:
        print(json.dumps(entry, default=str))
    print(f"{len(entries)} entr{'y' if len(entries) == 1 else 'ies'}")
    return 0
