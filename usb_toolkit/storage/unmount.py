"""Unmount every partition of a device before it is written to.

Sequence:
    1. ``udevadm control --stop-exec-queue`` so automounters cannot react
       while partitions disappear.
    2. For each mounted partition (and the whole disk if it is mounted):
       ``sync``, then ``umount <mount point>``. With ``force`` a failed
       umount is retried lazily (``umount -l``). The empty mount point
       directory is removed afterwards.
    3. ``udevadm control --start-exec-queue``, always.
    4. The mount table is read again. A partition that was unmounted in
       step 2 and is mounted again lost a race with an automounter; this is
       reported separately from a plain unmount failure.
"""

from __future__ import annotations

import os

from usb_toolkit.domain.models import UnmountResult
from usb_toolkit.logging import LoggerFactory
from usb_toolkit.storage.commands import run_command, tool_available
from usb_toolkit.storage.mounts import MountTable, mounted_partitions
from usb_toolkit.storage.sysfs import SysfsReader


log = LoggerFactory.for_storage(job_id="unmount")


def _udev_queue(action: str) -> None:
    if not tool_available("udevadm"):
        return
    result = run_command(
        ["udevadm", "control", f"--{action}-exec-queue"], check=False, log_output=False
    )
    if result.returncode != 0:
        log.warning(f"udevadm {action}-exec-queue failed: {result.stderr.strip()}")


def remove_mount_dir(mount_point: str) -> None:
    """Remove an emptied mount point directory; leaves non-empty ones alone."""
    try:
        os.rmdir(mount_point)
        log.debug(f"Removed mount point directory {mount_point}")
    except OSError as error:
        log.debug(f"Keeping {mount_point}: {error.strerror}")


def unmount_all(
    device_name: str,
    *,
    force: bool = False,
    sysfs: SysfsReader | None = None,
    mountinfo_path: str | None = None,
) -> UnmountResult:
    sysfs = sysfs or SysfsReader()
    result = UnmountResult(device_name)

    _udev_queue("stop")
    try:
        table = MountTable.load(mountinfo_path)
        for partition in mounted_partitions(device_name, sysfs, table):
            partition_ok = True
            # Nested mounts must go before their parents.
            for mount_point in sorted(partition.mount_points, key=len, reverse=True):
                run_command(["sync"], check=False, log_output=False)
                umount = run_command(["umount", mount_point], check=False)
                if umount.returncode == 0:
                    log.info(f"Unmounted {partition.device_path} from {mount_point}")
                    remove_mount_dir(mount_point)
                    continue
                if force:
                    lazy = run_command(["umount", "-l", mount_point], check=False)
                    if lazy.returncode == 0:
                        log.warning(
                            f"Lazily unmounted {partition.device_path} from {mount_point}"
                        )
                        result.lazy.append(mount_point)
                        continue
                log.error(
                    f"Failed to unmount {partition.device_path} from {mount_point}: "
                    f"{umount.stderr.strip()}"
                )
                result.failed.append(mount_point)
                partition_ok = False
            if partition_ok:
                result.unmounted.append(partition.name)
    finally:
        _udev_queue("start")

    for partition in mounted_partitions(device_name, sysfs, MountTable.load(mountinfo_path)):
        if partition.name in result.unmounted:
            log.error(
                f"{partition.device_path} was mounted again at "
                f"{', '.join(partition.mount_points)}"
            )
            result.remounted.append(partition.name)
        else:
            for mount_point in partition.mount_points:
                if mount_point not in result.failed:
                    result.failed.append(mount_point)
    return result
