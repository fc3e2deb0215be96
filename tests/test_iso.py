"""Tests for storage/iso.py - ISO writing and verification."""

import pytest

from usb_toolkit.domain.models import ConfirmationToken
from usb_toolkit.storage import iso
from usb_toolkit.storage.exceptions import InsufficientSpaceError, ValidationError

from conftest import completed


@pytest.fixture
def iso_file(tmp_path):
    path = tmp_path / "debian-12.iso"
    path.write_bytes(b"ISO9660" * 1000)
    return path


@pytest.fixture
def device_file(tmp_path, mocker):
    """Stand-in for /dev/sdb: hashing reads this file instead."""
    path = tmp_path / "sdb"
    original = iso.sha256_device_prefix
    mocker.patch(
        "usb_toolkit.storage.iso.sha256_device_prefix",
        side_effect=lambda device_path, length: original(str(path), length),
    )
    return path


class TestCheckIso:
    def test_returns_size(self, mocker, iso_file):
        mocker.patch("usb_toolkit.storage.iso.get_size_bytes", return_value=1024**3)
        assert iso.check_iso(str(iso_file), "sdb") == 7000

    def test_missing(self, tmp_path):
        with pytest.raises(ValidationError, match="not found"):
            iso.check_iso(str(tmp_path / "missing.iso"), "sdb")

    def test_too_large(self, mocker, iso_file):
        mocker.patch("usb_toolkit.storage.iso.get_size_bytes", return_value=4096)
        with pytest.raises(InsufficientSpaceError):
            iso.check_iso(str(iso_file), "sdb")


class TestWriteIso:
    def test_dd_command(self, mocker, iso_file):
        mocker.patch("usb_toolkit.storage.iso.get_size_bytes", return_value=1024**3)
        mocker.patch("usb_toolkit.storage.iso.run_command", return_value=completed())
        stream = mocker.patch("usb_toolkit.storage.iso.run_streaming", return_value=completed())
        token = ConfirmationToken("sdb", "write_iso")

        written = iso.write_iso(str(iso_file), "sdb", token)

        assert written == 7000
        assert token.consumed
        command = stream.call_args.args[0]
        assert command[:3] == ["dd", f"if={iso_file}", "of=/dev/sdb"]
        assert "conv=fdatasync" in command
        assert stream.call_args.kwargs["total_bytes"] == 7000

    def test_token_not_consumed_when_too_large(self, mocker, iso_file):
        mocker.patch("usb_toolkit.storage.iso.get_size_bytes", return_value=10)
        token = ConfirmationToken("sdb", "write_iso")
        with pytest.raises(InsufficientSpaceError):
            iso.write_iso(str(iso_file), "sdb", token)
        assert not token.consumed


class TestVerifyIso:
    def test_match_only_hashes_iso_length(self, iso_file, device_file):
        device_file.write_bytes(iso_file.read_bytes() + b"\x00" * 4096)
        result = iso.verify_iso(str(iso_file), "sdb")
        assert result.matches

    def test_mismatch(self, iso_file, device_file):
        device_file.write_bytes(b"X" + iso_file.read_bytes()[1:])
        result = iso.verify_iso(str(iso_file), "sdb")
        assert not result.matches
        assert result.iso_sha256 != result.device_sha256

    def test_empty_iso(self, tmp_path):
        empty = tmp_path / "empty.iso"
        empty.write_bytes(b"")
        with pytest.raises(ValidationError):
            iso.verify_iso(str(empty), "sdb")
