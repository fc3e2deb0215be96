"""USB drive formatting.

Supported Filesystems:
    fat32:  universal compatibility, labels up to 11 characters
    exfat:  large files on Windows/macOS/Linux
    ntfs:   Windows
    ext4:   Linux native
    btrfs:  copy-on-write, checksums
    f2fs:   flash-friendly
    xfs:    large files

Sequence:
    1. optional full mode zeroes the whole device first
    2. ``wipefs -a`` removes old signatures
    3. ``parted mklabel`` (msdos or gpt)
    4. ``parted mkpart primary [fs] 1MiB 100%``
    5. ``partprobe`` and ``udevadm settle`` so the partition node appears
    6. ``mkfs.*`` on ``<dev>1`` (``<dev>p1`` for nvme)

The caller must hold a confirmation token from the destructive gate.
"""

from __future__ import annotations

import contextlib
import os
import time
from dataclasses import dataclass
from typing import Optional

from usb_toolkit.config import settings
from usb_toolkit.domain.models import ConfirmationToken
from usb_toolkit.logging import LoggerFactory, operation_context, recorder
from usb_toolkit.storage.commands import (
    ProgressCallback,
    run_checked_command,
    run_command,
    run_streaming,
    tool_available,
)
from usb_toolkit.storage.devices import get_size_bytes, partition_node
from usb_toolkit.storage.exceptions import MissingToolError, ToolInvocationError, ValidationError
from usb_toolkit.storage.validation import validate_label


log = LoggerFactory.for_storage(job_id="format")

PARTITION_TABLES = ("msdos", "gpt")


@dataclass(frozen=True)
class FilesystemSpec:
    name: str
    mkfs: tuple[str, ...]
    label_flag: str
    parted_hint: Optional[str] = None
    package: str = ""

    @property
    def tool(self) -> str:
        return self.mkfs[0]

    def command(self, partition_path: str, label: str = "") -> list[str]:
        command = list(self.mkfs)
        if label:
            command += [self.label_flag, label]
        command.append(partition_path)
        return command


FILESYSTEMS: dict[str, FilesystemSpec] = {
    "fat32": FilesystemSpec("fat32", ("mkfs.vfat", "-F", "32"), "-n", "fat32", "dosfstools"),
    "exfat": FilesystemSpec("exfat", ("mkfs.exfat",), "-L", None, "exfatprogs"),
    "ntfs": FilesystemSpec("ntfs", ("mkfs.ntfs", "-f"), "-L", "ntfs", "ntfs-3g"),
    "ext4": FilesystemSpec("ext4", ("mkfs.ext4", "-F"), "-L", "ext4", "e2fsprogs"),
    "btrfs": FilesystemSpec("btrfs", ("mkfs.btrfs", "-f"), "-L", "btrfs", "btrfs-progs"),
    "f2fs": FilesystemSpec("f2fs", ("mkfs.f2fs", "-f"), "-l", None, "f2fs-tools"),
    "xfs": FilesystemSpec("xfs", ("mkfs.xfs", "-f"), "-L", "xfs", "xfsprogs"),
}


def _settle(device_path: str) -> None:
    for cmd in (
        ["sync"],
        ["partprobe", device_path],
        ["udevadm", "settle", "--timeout=10"],
    ):
        if tool_available(cmd[0]):
            with contextlib.suppress(ToolInvocationError):
                run_command(cmd, check=False, log_command=False)


def _wait_for_node(path: str, attempts: int = 10, delay: float = 0.5) -> bool:
    for _ in range(attempts):
        if os.path.exists(path):
            return True
        time.sleep(delay)
    return False


def zero_device(
    device_name: str,
    progress_callback: ProgressCallback | None = None,
) -> None:
    """Write zeros over the whole device.

    dd stops with "No space left on device" at the end; that exit is
    expected and only logged.
    """
    block_size = settings.get_setting("block_size", settings.DEFAULT_BLOCK_SIZE)
    result = run_streaming(
        [
            "dd",
            "if=/dev/zero",
            f"of=/dev/{device_name}",
            f"bs={block_size}",
            "conv=fdatasync",
            "status=progress",
        ],
        total_bytes=get_size_bytes(device_name),
        progress_callback=progress_callback,
        check=False,
    )
    if result.returncode != 0:
        log.debug(f"dd zero pass on {device_name} ended with {result.returncode}")


def format_device(
    device_name: str,
    token: ConfirmationToken,
    filesystem: str,
    *,
    partition_table: str = "msdos",
    label: str = "",
    full: bool = False,
    progress_callback: ProgressCallback | None = None,
) -> str:
    """Partition and format ``device_name``; returns the new partition node.

    Raises:
        ValidationError: unknown filesystem, partition table or bad label
        MissingToolError: the mkfs tool for ``filesystem`` is not installed
        ToolInvocationError: parted or mkfs failed
    """
    spec = FILESYSTEMS.get(filesystem)
    if spec is None:
        raise ValidationError("filesystem", filesystem, "unsupported")
    if partition_table not in PARTITION_TABLES:
        raise ValidationError("partition table", partition_table, "use msdos or gpt")
    label = validate_label(label, filesystem)
    if not tool_available(spec.tool):
        raise MissingToolError([f"{spec.tool} (install {spec.package})"])

    token.consume(device_name)
    device_path = f"/dev/{device_name}"

    with operation_context(
        "format", device=device_name, filesystem=filesystem, table=partition_table
    ) as op_log:
        if full:
            op_log.info(f"Zeroing {device_path} before formatting")
            zero_device(device_name, progress_callback)

        run_command(["wipefs", "-a", device_path], check=False)
        run_checked_command(["parted", "-s", device_path, "mklabel", partition_table])

        mkpart = ["parted", "-s", device_path, "mkpart", "primary"]
        if spec.parted_hint:
            mkpart.append(spec.parted_hint)
        run_checked_command(mkpart + ["1MiB", "100%"])

        _settle(device_path)
        partition_path = partition_node(device_name)
        if not _wait_for_node(partition_path):
            op_log.warning(f"{partition_path} did not appear; trying mkfs anyway")

        run_checked_command(spec.command(partition_path, label))
        run_command(["sync"], check=False, log_output=False)

    recorder.record(
        "format",
        device=device_name,
        filesystem=filesystem,
        partition_table=partition_table,
        label=label,
        full=full,
    )
    return partition_path
