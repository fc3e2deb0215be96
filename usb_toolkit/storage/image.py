"""Disk images: backup to file, restore from file, and USB-to-USB clone.

Backups are raw ``dd`` images, optionally piped through gzip or zstd. A
``<image>.sha256`` file in ``sha256sum`` format is written next to every
backup. Partial output files are removed when a backup fails or is
interrupted.
"""

from __future__ import annotations

import hashlib
import os
import shutil
from contextlib import nullcontext
from dataclasses import dataclass
from enum import Enum

from usb_toolkit.config import settings
from usb_toolkit.domain.models import ConfirmationToken
from usb_toolkit.logging import LoggerFactory, operation_context, recorder
from usb_toolkit.storage.commands import (
    ProgressCallback,
    run_command,
    run_pipeline,
    run_streaming,
    tool_available,
)
from usb_toolkit.storage.devices import get_size_bytes
from usb_toolkit.storage.exceptions import (
    InsufficientSpaceError,
    MissingToolError,
    ValidationError,
)
from usb_toolkit.storage.users import hand_over
from usb_toolkit.storage.validation import validate_devices_different, validate_file_path


log = LoggerFactory.for_storage(job_id="image")

HASH_CHUNK_SIZE = 4 * 1024 * 1024


class Compression(Enum):
    NONE = ("none", ".img", None, None)
    GZIP = ("gzip", ".img.gz", ("gzip", "-c"), ("gzip", "-dc"))
    ZSTD = ("zstd", ".img.zst", ("zstd", "-c", "-q"), ("zstd", "-dc", "-q"))

    def __init__(self, label, suffix, compress_cmd, decompress_cmd):
        self.label = label
        self.suffix = suffix
        self.compress_cmd = compress_cmd
        self.decompress_cmd = decompress_cmd

    @property
    def tool(self) -> str | None:
        return self.compress_cmd[0] if self.compress_cmd else None

    @classmethod
    def from_path(cls, path: str) -> Compression:
        if path.endswith(".gz"):
            return cls.GZIP
        if path.endswith(".zst"):
            return cls.ZSTD
        return cls.NONE


@dataclass(frozen=True)
class ImageResult:
    path: str
    sha256: str
    checksum_path: str
    bytes_read: int


def sha256_file(path: str) -> str:
    digest = hashlib.sha256()
    with open(path, "rb") as handle:
        for chunk in iter(lambda: handle.read(HASH_CHUNK_SIZE), b""):
            digest.update(chunk)
    return digest.hexdigest()


def write_checksum_file(image_path: str, checksum: str) -> str:
    checksum_path = f"{image_path}.sha256"
    with open(checksum_path, "w", encoding="utf-8") as handle:
        handle.write(f"{checksum}  {image_path}\n")
    return checksum_path


def _block_size() -> str:
    return settings.get_setting("block_size", settings.DEFAULT_BLOCK_SIZE)


def _require_compression_tool(compression: Compression) -> None:
    if compression.tool and not tool_available(compression.tool):
        raise MissingToolError([compression.tool])


def check_free_space(device_name: str, directory: str) -> int:
    """Raise InsufficientSpaceError when ``directory`` cannot hold the raw image."""
    needed = get_size_bytes(device_name)
    free = shutil.disk_usage(directory).free
    if free < needed:
        raise InsufficientSpaceError(device_name, needed, directory, free)
    return needed


def backup_to_image(
    device_name: str,
    image_path: str,
    compression: Compression = Compression.NONE,
    *,
    cleanup=None,
    progress_callback: ProgressCallback | None = None,
) -> ImageResult:
    validate_file_path(image_path, "image path")
    directory = os.path.dirname(os.path.abspath(image_path))
    if not os.path.isdir(directory):
        raise ValidationError("image path", image_path, f"directory {directory} does not exist")
    _require_compression_tool(compression)
    size = check_free_space(device_name, directory)

    source = f"if=/dev/{device_name}"
    tracking = cleanup.tracking_file(image_path) if cleanup is not None else nullcontext()
    with operation_context(
        "backup", device=device_name, image=image_path, compression=compression.label
    ):
        with tracking:
            try:
                if compression is Compression.NONE:
                    run_streaming(
                        ["dd", source, f"of={image_path}", f"bs={_block_size()}", "status=progress"],
                        total_bytes=size,
                        progress_callback=progress_callback,
                    )
                else:
                    with open(image_path, "wb") as output:
                        run_pipeline(
                            ["dd", source, f"bs={_block_size()}", "status=progress"],
                            list(compression.compress_cmd),
                            stdout_target=output,
                            total_bytes=size,
                            progress_callback=progress_callback,
                        )
            except BaseException:
                if cleanup is None and os.path.exists(image_path):
                    os.remove(image_path)
                raise
            run_command(["sync"], check=False, log_output=False)
            checksum = sha256_file(image_path)
            checksum_path = write_checksum_file(image_path, checksum)

    hand_over(image_path)
    hand_over(checksum_path)
    recorder.record(
        "backup",
        device=device_name,
        image=image_path,
        compression=compression.label,
        sha256=checksum,
    )
    return ImageResult(image_path, checksum, checksum_path, size)


def restore_from_image(
    image_path: str,
    device_name: str,
    token: ConfirmationToken,
    *,
    progress_callback: ProgressCallback | None = None,
) -> None:
    if not os.path.isfile(image_path):
        raise ValidationError("image path", image_path, "file not found")
    compression = Compression.from_path(image_path)
    _require_compression_tool(compression)
    device_size = get_size_bytes(device_name)
    if compression is Compression.NONE:
        image_size = os.path.getsize(image_path)
        if image_size > device_size:
            raise InsufficientSpaceError(image_path, image_size, device_name, device_size)

    token.consume(device_name)
    target = [f"of=/dev/{device_name}", f"bs={_block_size()}", "conv=fdatasync", "status=progress"]
    with operation_context("restore", device=device_name, image=image_path):
        if compression is Compression.NONE:
            run_streaming(
                ["dd", f"if={image_path}"] + target,
                total_bytes=os.path.getsize(image_path),
                progress_callback=progress_callback,
            )
        else:
            run_pipeline(
                list(compression.decompress_cmd) + [image_path],
                ["dd"] + target,
                progress_callback=progress_callback,
                progress_from="consumer",
            )
        run_command(["sync"], check=False, log_output=False)
    recorder.record("restore", device=device_name, image=image_path)


def clone_device(
    source_name: str,
    target_name: str,
    token: ConfirmationToken,
    *,
    progress_callback: ProgressCallback | None = None,
) -> None:
    """Copy ``source_name`` block for block onto ``target_name``."""
    validate_devices_different(source_name, target_name)
    source_size = get_size_bytes(source_name)
    target_size = get_size_bytes(target_name)
    if source_size > target_size:
        raise InsufficientSpaceError(source_name, source_size, target_name, target_size)

    token.consume(target_name)
    with operation_context("clone", source=source_name, target=target_name):
        run_streaming(
            [
                "dd",
                f"if=/dev/{source_name}",
                f"of=/dev/{target_name}",
                f"bs={_block_size()}",
                "conv=fdatasync",
                "status=progress",
            ],
            total_bytes=source_size,
            progress_callback=progress_callback,
        )
        run_command(["sync"], check=False, log_output=False)
    recorder.record("clone", source=source_name, target=target_name)
