"""Writing ISO images to USB devices, with optional SHA-256 verification."""

from __future__ import annotations

import hashlib
import os
from dataclasses import dataclass

from usb_toolkit.config import settings
from usb_toolkit.domain.models import ConfirmationToken
from usb_toolkit.logging import LoggerFactory, operation_context, recorder
from usb_toolkit.storage.commands import ProgressCallback, run_command, run_streaming
from usb_toolkit.storage.devices import get_size_bytes
from usb_toolkit.storage.exceptions import InsufficientSpaceError, ValidationError
from usb_toolkit.storage.image import HASH_CHUNK_SIZE, sha256_file
from usb_toolkit.storage.validation import validate_file_path


log = LoggerFactory.for_storage(job_id="iso")


@dataclass(frozen=True)
class VerifyResult:
    iso_sha256: str
    device_sha256: str

    @property
    def matches(self) -> bool:
        return self.iso_sha256 == self.device_sha256


def check_iso(iso_path: str, device_name: str) -> int:
    """Return the ISO size after checking that it exists and fits."""
    validate_file_path(iso_path, "ISO path")
    if not os.path.isfile(iso_path):
        raise ValidationError("ISO path", iso_path, "file not found")
    iso_size = os.path.getsize(iso_path)
    device_size = get_size_bytes(device_name)
    if iso_size > device_size:
        raise InsufficientSpaceError(iso_path, iso_size, device_name, device_size)
    return iso_size


def sha256_device_prefix(device_path: str, length: int) -> str:
    """SHA-256 of the first ``length`` bytes of a device."""
    digest = hashlib.sha256()
    remaining = length
    with open(device_path, "rb") as handle:
        while remaining > 0:
            chunk = handle.read(min(HASH_CHUNK_SIZE, remaining))
            if not chunk:
                break
            digest.update(chunk)
            remaining -= len(chunk)
    return digest.hexdigest()


def write_iso(
    iso_path: str,
    device_name: str,
    token: ConfirmationToken,
    *,
    progress_callback: ProgressCallback | None = None,
) -> int:
    iso_size = check_iso(iso_path, device_name)
    token.consume(device_name)
    block_size = settings.get_setting("block_size", settings.DEFAULT_BLOCK_SIZE)
    with operation_context("write_iso", device=device_name, iso=iso_path):
        run_streaming(
            [
                "dd",
                f"if={iso_path}",
                f"of=/dev/{device_name}",
                f"bs={block_size}",
                "conv=fdatasync",
                "status=progress",
            ],
            total_bytes=iso_size,
            progress_callback=progress_callback,
        )
        run_command(["sync"], check=False, log_output=False)
    recorder.record("write_iso", device=device_name, iso=iso_path, bytes=iso_size)
    return iso_size


def verify_iso(iso_path: str, device_name: str) -> VerifyResult:
    iso_size = os.path.getsize(iso_path)
    if iso_size == 0:
        raise ValidationError("ISO path", iso_path, "empty file, nothing to verify")
    result = VerifyResult(
        iso_sha256=sha256_file(iso_path),
        device_sha256=sha256_device_prefix(f"/dev/{device_name}", iso_size),
    )
    if result.matches:
        log.info(f"ISO write to /dev/{device_name} verified")
    else:
        log.error(f"SHA-256 mismatch after writing {iso_path} to /dev/{device_name}")
    recorder.record("verify_iso", device=device_name, iso=iso_path, matches=result.matches)
    return result
