"""Unit tests for dealerdocs.cli — argument parsing and command output."""

from datetime import datetime, timedelta, timezone

import pytest

import dealerdocs.cli as cli_mod
from dealerdocs.cli import main
from dealerdocs.engine.http import FileServiceClient


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "dealerdocs.yaml"
    path.write_text(
        "api:\n"
        "  base_url: http://testserver/api\n"
        "  token: cli-token\n"
        "sharing:\n"
        "  public_base_url: https://docs.example.com\n"
        f"downloads:\n  directory: {tmp_path / 'downloads'}\n"
        f"logging:\n  directory: {tmp_path / 'logs'}\n  level: WARNING\n",
        encoding="utf-8",
    )
    return str(path)


@pytest.fixture
def run(config_file, backend, monkeypatch):
    """Invoke the CLI against the fake backend."""
    def factory(config, transport=None, activity_log=None):
        return FileServiceClient(config, transport=backend.transport, activity_log=activity_log)

    monkeypatch.setattr(cli_mod, "FileServiceClient", factory)

    def _run(*argv):
        return main(["--config", config_file, *argv])
    return _run


@pytest.fixture
def seeded(backend):
    backend.add_file("1", "invoice.pdf", content=b"%PDF-inv")
    backend.add_file("2", "car.png", type="image/png", content=b"png")


class TestMain:

    def test_no_command_prints_help(self, capsys):
        assert main([]) == 0
        assert "usage" in capsys.readouterr().out.lower()

    def test_invalid_config(self, tmp_path, capsys):
        bad = tmp_path / "bad.yaml"
        bad.write_text("environment: qa\n", encoding="utf-8")
        assert main(["--config", str(bad), "list"]) == 1
        assert "[ERROR]" in capsys.readouterr().out


class TestListAndTransfer:

    def test_list(self, run, seeded, capsys):
        assert run("list") == 0
        out = capsys.readouterr().out
        assert "invoice.pdf" in out
        assert "2 file(s)" in out
        assert "Storage: 2 KB of 1 MB" in out

    def test_list_filtered(self, run, seeded, capsys):
        assert run("list", "--type", "images") == 0
        out = capsys.readouterr().out
        assert "car.png" in out
        assert "invoice.pdf" not in out

    def test_list_failure(self, run, backend):
        backend.fail("GET", "/files", 500)
        assert run("list") == 1

    def test_upload(self, run, backend, tmp_path, capsys):
        a, b = tmp_path / "a.pdf", tmp_path / "b.pdf"
        a.write_bytes(b"%PDF-a")
        b.write_bytes(b"%PDF-b")
        assert run("--context", "vehicle", "--context-id", "42", "upload", str(a), str(b)) == 0
        assert sorted(f["name"] for f in backend.files.values()) == ["a.pdf", "b.pdf"]
        assert all(f["context_id"] == "42" for f in backend.files.values())
        assert "Uploading 2 files..." in capsys.readouterr().out

    def test_upload_missing_path(self, run, tmp_path, capsys):
        assert run("upload", str(tmp_path / "nope.pdf")) == 1
        assert "[ERROR]" in capsys.readouterr().out

    def test_upload_failure(self, run, backend, tmp_path, capsys):
        path = tmp_path / "a.pdf"
        path.write_bytes(b"%PDF")
        backend.fail("POST", "/files", 500)
        assert run("upload", str(path)) == 1
        assert "[ERROR] a.pdf: Upload failed" in capsys.readouterr().out

    def test_download(self, run, seeded, tmp_path, capsys):
        assert run("download", "1") == 0
        assert (tmp_path / "downloads" / "invoice.pdf").read_bytes() == b"%PDF-inv"
        assert "[OK] Saved" in capsys.readouterr().out

    def test_download_unknown(self, run, seeded, capsys):
        assert run("download", "99") == 1
        assert "File not found in global: 99" in capsys.readouterr().out


class TestCatalogActions:

    def test_rename(self, run, backend, seeded, capsys):
        assert run("rename", "1", "final.pdf") == 0
        assert backend.files["1"]["name"] == "final.pdf"
        assert "[success] Renamed!" in capsys.readouterr().out

    def test_delete_one(self, run, backend, seeded):
        assert run("--yes", "delete", "1") == 0
        assert "1" not in backend.files

    def test_delete_many(self, run, backend, seeded, capsys):
        assert run("-y", "delete", "1", "2") == 0
        assert backend.files == {}
        assert "Deleted 2 of 2 files." in capsys.readouterr().out

    def test_delete_unknown(self, run, seeded, capsys):
        assert run("-y", "delete", "1", "42") == 1
        assert "Not found: 42" in capsys.readouterr().out

    def test_versions(self, run, backend, seeded, tmp_path, capsys):
        backend.add_version("1", "v2", b"two", version_number=2)
        backend.add_version("1", "v1", b"one", version_number=1)
        assert run("versions", "1", "--download", "v1") == 0
        out = capsys.readouterr().out
        assert "v2" in out and "v1" in out
        assert (tmp_path / "downloads" / "invoice_v1.pdf").read_bytes() == b"one"

    def test_versions_empty(self, run, seeded, capsys):
        assert run("versions", "1") == 0
        assert "No history found for this file." in capsys.readouterr().out

    def test_upload_version(self, run, backend, seeded, tmp_path):
        path = tmp_path / "invoice.pdf"
        path.write_bytes(b"%PDF-new")
        assert run("upload-version", "1", str(path)) == 0
        assert len(backend.versions["1"]) == 1


class TestSharing:

    def test_share_link(self, run, backend, seeded, capsys):
        expires = (datetime.now(timezone.utc) + timedelta(days=2)).isoformat()
        assert run("share-link", "1", "--password", "s3cret", "--max-access", "5", "--expires", expires) == 0
        assert "Share Link Generated: https://docs.example.com/files/shared/tok101" in capsys.readouterr().out

    def test_share_link_invalid(self, run, backend, seeded, capsys):
        expires = (datetime.now(timezone.utc) + timedelta(days=2)).isoformat()
        assert run("share-link", "1", "--password", "ab", "--max-access", "5", "--expires", expires) == 1
        assert "[ERROR] password: Password must be at least 4 characters" in capsys.readouterr().out
        assert backend.calls("POST") == []

    def test_share_otp(self, run, backend, seeded, capsys):
        assert run("share-otp", "1", "--email", "buyer@example.com", "--hours", "12") == 0
        assert backend.otp["1"][0]["email"] == "buyer@example.com"
        assert "OTP share sent to buyer@example.com" in capsys.readouterr().out

    def test_shares_and_revoke(self, run, backend, seeded, capsys):
        now = datetime.now(timezone.utc)
        backend.add_link("1", "L1", now + timedelta(days=1), maxAccessCount=5)
        backend.add_link("1", "L2", now - timedelta(days=1))

        assert run("shares", "1") == 0
        out = capsys.readouterr().out
        assert "L1" in out and "L2" not in out

        assert run("shares", "1", "--all") == 0
        assert "expired" in capsys.readouterr().out

        assert run("-y", "revoke", "1", "L1") == 0
        assert [g["id"] for g in backend.links["1"]] == ["L2"]

    def test_revoke_unknown(self, run, seeded):
        assert run("-y", "revoke", "1", "nope") == 1


class TestPublic:

    def test_public_download(self, run, backend, tmp_path, capsys):
        backend.shared["tok9"] = {"name": "deal.pdf", "size": 12, "type": "application/pdf", "password_protected": True}
        backend.shared_passwords["tok9"] = "pw12"
        assert run("public", "tok9", "--password", "pw12") == 0
        assert "Shared: deal.pdf" in capsys.readouterr().out
        assert (tmp_path / "downloads" / "deal.pdf").read_bytes() == b"shared-bytes"

    def test_public_invalid(self, run, capsys):
        assert run("public", "missing") == 1
        assert "[ERROR] Link expired" in capsys.readouterr().out

    def test_public_otp_required(self, run, backend, capsys):
        backend.shared["toko"] = {"id": "5", "name": "a.pdf", "otp_required": True}
        assert run("public", "toko") == 1
        assert "--otp" in capsys.readouterr().out

    def test_public_otp(self, run, backend):
        backend.shared["toko"] = {"id": "5", "name": "a.pdf", "otp_required": True}
        backend.otp_codes["5"] = "999111"
        assert run("public", "toko", "--otp", "999111") == 0


class TestActivity:

    def test_activity(self, run, seeded, capsys):
        run("download", "1")
        capsys.readouterr()
        assert run("activity", "files") == 0
        out = capsys.readouterr().out
        assert '"event": "file_download"' in out
        assert "1 entry" in out

    def test_activity_bad_category(self, run, capsys):
        assert run("activity", "uploads", "--category", "security") == 1
