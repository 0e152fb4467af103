"""Unit tests for dealerdocs.files.public — recipient-side share access."""

import pytest

from dealerdocs.engine.http import Blob
from dealerdocs.engine.notifier import NotificationLevel
from dealerdocs.files.downloads import DownloadSaver
from dealerdocs.files.public import (
    INVALID_LINK,
    PublicShareAccess,
    direct_file_info,
    normalize_shared_info,
)


@pytest.fixture
def saver(tmp_path):
    return DownloadSaver(str(tmp_path / "received"))


@pytest.fixture
def access(client, notifier, saver):
    return PublicShareAccess(client, notifier, saver)


class TestNormalizeSharedInfo:

    def test_wrapped_shareable(self):
        info = normalize_shared_info({
            "data": {
                "shareable": {"id": 12, "file_name": "bill.pdf", "file_size": 99, "mime_type": "application/pdf"},
                "expires_at": "2030-01-01T00:00:00Z",
                "has_password": True,
            },
        })
        assert (info.id, info.name, info.size, info.type) == ("12", "bill.pdf", 99, "application/pdf")
        assert info.password_protected
        assert not info.otp_required
        assert info.expires_at.year == 2030

    def test_flat_payload(self):
        info = normalize_shared_info({"file_id": 3, "name": "x.png", "type": "image/png", "requires_otp": True})
        assert info.id == "3"
        assert info.otp_required

    def test_folder(self):
        info = normalize_shared_info({"name": "Deal 42", "files": [{"name": "a.pdf"}, {"name": "b.pdf"}]})
        assert info.is_folder
        assert len(info.files) == 2

    def test_defaults(self):
        info = normalize_shared_info({"unrelated": True})
        assert info.name == "document"
        assert info.size == 0
        assert not info.password_protected

    def test_password_value_never_kept(self):
        info = normalize_shared_info({"name": "a.pdf", "password": "hunter2"})
        assert info.password_protected
        assert "hunter2" not in info.model_dump_json()

    def test_direct_file_info(self):
        blob = Blob(b"1234", "application/pdf", {"Content-Disposition": 'attachment; filename="r.pdf"',
                                                 "Content-Length": "4"})
        info = direct_file_info("tok", blob)
        assert (info.id, info.name, info.size, info.is_direct_file) == ("tok", "r.pdf", 4, True)

    def test_as_record(self):
        record = normalize_shared_info({"id": "5", "name": "scan", "type": "application/pdf"}).as_record()
        assert record.resolved_name == "scan"
        assert record.is_pdf


class TestLoad:

    @pytest.mark.asyncio
    async def test_metadata(self, access, backend):
        backend.shared["tok1"] = {"data": {"shareable": {"id": 1, "name": "a.pdf", "size": 10}, "password": True}}
        info = await access.load("tok1")
        assert info.name == "a.pdf"
        assert access.password_required
        assert access.error is None

    @pytest.mark.asyncio
    async def test_expired_link_uses_server_message(self, access):
        assert await access.load("unknown") is None
        assert access.error == "Link expired"

    @pytest.mark.asyncio
    async def test_generic_message(self, access, backend):
        backend.fail("GET", "/files/shared/tok1", 500, {"error": "x"})
        assert await access.load("tok1") is None
        assert access.error == INVALID_LINK

    @pytest.mark.asyncio
    async def test_empty_payload_is_invalid(self, access, backend):
        backend.shared["tok1"] = {}
        assert await access.load("tok1") is None
        assert access.error == INVALID_LINK

    @pytest.mark.asyncio
    async def test_direct_file(self, access, backend):
        backend.shared["tokd"] = (b"PDFDATA", "application/pdf", {"Content-Disposition": 'attachment; filename="report.pdf"'})
        info = await access.load("tokd")
        assert info.is_direct_file
        assert info.name == "report.pdf"
        assert info.size == 7


class TestDownload:

    @pytest.mark.asyncio
    async def test_password_required_locally(self, access, backend, notifier):
        backend.shared["tok1"] = {"name": "a.pdf", "password_protected": True}
        await access.load("tok1")
        assert await access.download() is None
        assert notifier.titles(NotificationLevel.WARNING) == ["Password Required"]
        assert len(backend.requests) == 1

    @pytest.mark.asyncio
    async def test_wrong_password(self, access, backend, notifier):
        backend.shared["tok1"] = {"name": "a.pdf", "password_protected": True}
        backend.shared_passwords["tok1"] = "right"
        await access.load("tok1")
        assert await access.download("wrong") is None
        assert access.password == ""
        assert notifier.titles(NotificationLevel.ERROR) == ["Incorrect Password"]

    @pytest.mark.asyncio
    async def test_right_password(self, access, backend, notifier):
        backend.shared["tok1"] = {"name": "a.pdf", "password_protected": True}
        backend.shared_passwords["tok1"] = "right"
        await access.load("tok1")
        path = await access.download("right")

        assert path.name == "a.pdf"
        assert path.read_bytes() == b"shared-bytes"
        assert backend.requests[-1].url.params["password"] == "right"
        assert notifier.titles(NotificationLevel.SUCCESS) == ["Download Started"]

    @pytest.mark.asyncio
    async def test_unprotected(self, access, backend):
        backend.shared["tok1"] = {"name": "open.pdf"}
        await access.load("tok1")
        path = await access.download()
        assert path.read_bytes() == b"shared-bytes"

    @pytest.mark.asyncio
    async def test_direct_file_saved_without_refetch(self, access, backend):
        backend.shared["tokd"] = (b"PDFDATA", "application/pdf", {"Content-Disposition": 'attachment; filename="report.pdf"'})
        await access.load("tokd")
        path = await access.download()
        assert path.name == "report.pdf"
        assert path.read_bytes() == b"PDFDATA"
        assert len(backend.requests) == 1

    @pytest.mark.asyncio
    async def test_server_failure(self, access, backend, notifier):
        backend.shared["tok1"] = {"name": "a.pdf"}
        await access.load("tok1")
        backend.fail("GET", "/files/shared/tok1", 500, {"message": "Access limit reached"})
        assert await access.download() is None
        failure = notifier.notifications[-1]
        assert failure.title == "Download Failed"
        assert failure.message == "Could not download the file. Access limit reached"

    @pytest.mark.asyncio
    async def test_save_failure_notifies(self, client, backend, notifier, tmp_path):
        blocker = tmp_path / "received"
        blocker.write_text("")
        access = PublicShareAccess(client, notifier, DownloadSaver(str(blocker)))
        backend.shared["tok1"] = {"name": "open.pdf"}
        await access.load("tok1")

        assert await access.download() is None
        failure = notifier.notifications[-1]
        assert (failure.title, failure.message) == ("Download Failed", "Failed to save file")
        assert notifier.titles(NotificationLevel.SUCCESS) == []

    @pytest.mark.asyncio
    async def test_nothing_loaded(self, access):
        assert await access.download() is None


class TestOtp:

    @pytest.fixture
    def otp_share(self, backend):
        backend.shared["toko"] = {"id": "55", "name": "a.pdf", "otp_required": True}
        backend.otp_codes["55"] = "123456"

    @pytest.mark.asyncio
    async def test_download_blocked_until_verified(self, access, otp_share, notifier):
        await access.load("toko")
        assert access.otp_pending
        assert await access.download() is None
        assert notifier.titles(NotificationLevel.WARNING) == ["Verification Required"]

    @pytest.mark.asyncio
    async def test_wrong_code(self, access, otp_share, notifier):
        await access.load("toko")
        assert await access.verify_otp("000000") is False
        assert notifier.titles(NotificationLevel.ERROR) == ["Invalid OTP"]
        assert access.otp_pending

    @pytest.mark.asyncio
    async def test_right_code_unlocks(self, access, otp_share, notifier, backend):
        await access.load("toko")
        assert await access.verify_otp("123456") is True
        assert not access.otp_pending
        assert backend.calls("POST", "/files/shared/otp/55/verify")
        path = await access.download()
        assert path.read_bytes() == b"shared-bytes"

    @pytest.mark.asyncio
    async def test_empty_code(self, access, otp_share, backend):
        await access.load("toko")
        assert await access.verify_otp("") is False
        assert backend.calls("POST") == []
