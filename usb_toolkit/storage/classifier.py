"""System-disk classification.

A device is a system disk when it backs the root filesystem or one of the
other critical mount points, directly or through any stack of
device-mapper (LVM, dm-crypt) and md layers. The answer is recomputed on
every call.

Resolution of a mount's backing disks:

1. By kernel device number: ``/sys/dev/block/<major:minor>`` names the
   block device, or the resolved mount source does (``/dev/mapper/vg0-root``
   -> ``dm-1``).
2. The parent chain is walked through sysfs. A partition's parent is its
   containing disk; a dm/md device's parents are its ``slaves/`` entries;
   a loop device leads to the mount holding its ``loop/backing_file``.
   Only physical disks (with a ``device`` link) count as backing disks;
   any other leaf leaves the chain unresolved.
3. When sysfs cannot resolve anything, partition-suffix stripping on the
   source path (``/dev/nvme0n1p2`` -> ``nvme0n1``) is the last resort.

The classifier fails closed: if any part of the chain under ``/`` cannot be
traced to a physical disk, every device is treated as a system disk.
"""

from __future__ import annotations

import os
import re

from usb_toolkit.config import settings
from usb_toolkit.domain.models import SystemDiskVerdict
from usb_toolkit.logging import LoggerFactory
from usb_toolkit.storage.mounts import MountEntry, MountTable
from usb_toolkit.storage.sysfs import SysfsReader


log = LoggerFactory.for_gate()

REASON_ROOT = "backs the root filesystem"
REASON_CRITICAL = "holds a critical mount point"
REASON_UNRESOLVED = "unresolved"

_NUMBERED_DISK_RE = re.compile(r"^(nvme\d+n\d+|mmcblk\d+)(?:p\d+)?$")
_LETTERED_DISK_RE = re.compile(r"^((?:sd|vd|hd|xvd)[a-z]+)\d*$")


def strip_partition_suffix(source: str) -> str | None:
    """``/dev/sda2 -> sda``, ``/dev/nvme0n1p2 -> nvme0n1``; ``None`` if unrecognised.

    Only real disk naming schemes are accepted, so ``/dev/root`` or a
    ``/dev/mapper`` path never produces a guess.
    """
    if not source.startswith("/dev/"):
        return None
    name = source[len("/dev/"):]
    for pattern in (_NUMBERED_DISK_RE, _LETTERED_DISK_RE):
        match = pattern.match(name)
        if match:
            return match.group(1)
    return None


def _resolve_entry_device(entry: MountEntry, sysfs: SysfsReader) -> str | None:
    name = sysfs.name_for_dev_number(entry.major_minor) if entry.major_minor else None
    if name and sysfs.exists(name):
        return name
    if entry.source.startswith("/dev/"):
        candidate = os.path.basename(os.path.realpath(entry.source))
        if candidate and sysfs.exists(candidate):
            return candidate
    return None


def _loop_backing_path(name: str, sysfs: SysfsReader) -> str:
    path = sysfs.loop_backing_file(name)
    if path.endswith(" (deleted)"):
        path = path[: -len(" (deleted)")]
    return path


def resolve_backing(
    name: str, sysfs: SysfsReader, table: MountTable | None = None
) -> tuple[set[str], set[str]]:
    """Physical disks under ``name`` and the leaves that could not be traced.

    A leaf counts as resolved only when it is a physical disk. A loop device
    is followed through its backing file to the mount holding that file
    (only when ``table`` is given); anything else without parents, such as a
    dm or md device with no visible ``slaves/``, is unresolved.
    """
    disks: set[str] = set()
    unresolved: set[str] = set()
    visited: set[str] = set()
    pending = [name]
    while pending:
        current = pending.pop()
        if current in visited:
            continue
        visited.add(current)
        parent = sysfs.parent_disk(current)
        if parent:
            pending.append(parent)
            continue
        slaves = sysfs.slaves(current)
        if slaves:
            pending.extend(slaves)
            continue
        if sysfs.is_physical_disk(current):
            disks.add(current)
            continue
        backing = _loop_backing_path(current, sysfs)
        entry = table.mount_containing(backing) if backing and table else None
        if entry is not None:
            device = _resolve_entry_device(entry, sysfs)
            if device and device not in visited:
                log.debug(f"{current} is backed by {backing} on {device}")
                pending.append(device)
                continue
            stripped = strip_partition_suffix(entry.source)
            if stripped:
                disks.add(stripped)
                continue
        unresolved.add(current)
    return disks, unresolved


def backing_disks(name: str, sysfs: SysfsReader, table: MountTable | None = None) -> set[str]:
    """Physical disks at the bottom of ``name``'s dm/md/partition/loop chain."""
    return resolve_backing(name, sysfs, table)[0]


def disks_for_entry(
    entry: MountEntry, sysfs: SysfsReader, table: MountTable | None = None
) -> tuple[set[str], set[str]]:
    device = _resolve_entry_device(entry, sysfs)
    if device:
        return resolve_backing(device, sysfs, table)
    stripped = strip_partition_suffix(entry.source)
    return ({stripped} if stripped else set()), set()


class SystemDiskClassifier:
    def __init__(
        self,
        sysfs: SysfsReader | None = None,
        mountinfo_path: str | None = None,
        critical_mount_points: list[str] | None = None,
    ):
        self.sysfs = sysfs or SysfsReader()
        self.mountinfo_path = mountinfo_path
        self.critical_mount_points = critical_mount_points or list(
            settings.get_setting(
                "critical_mount_points", settings.DEFAULT_CRITICAL_MOUNT_POINTS
            )
        )

    def classify(self, device_name: str) -> SystemDiskVerdict:
        table = MountTable.load(self.mountinfo_path)
        root_entry = table.find_mount_point("/")
        root_disks, root_unresolved = (
            disks_for_entry(root_entry, self.sysfs, table) if root_entry else (set(), set())
        )

        if not root_disks or root_unresolved:
            log.warning(
                f"Cannot determine the disk backing / "
                f"(source={root_entry.source if root_entry else None!r}, "
                f"unresolved={sorted(root_unresolved)}); "
                f"treating {device_name} as a system disk"
            )
            return SystemDiskVerdict(
                device_name, True, REASON_UNRESOLVED, frozenset(root_disks)
            )

        if device_name in root_disks:
            return self._positive(device_name, REASON_ROOT, root_disks)

        all_disks = set(root_disks)
        device_token = f"/dev/{device_name}"
        for mount_point in self.critical_mount_points:
            entry = table.find_mount_point(mount_point)
            if entry is None:
                continue
            disks, unresolved = disks_for_entry(entry, self.sysfs, table)
            if unresolved:
                log.warning(f"{mount_point}: cannot trace {sorted(unresolved)} to a disk")
            all_disks |= disks
            if device_name in disks or _contains_device(entry.source, device_token):
                return self._positive(
                    device_name, f"{REASON_CRITICAL} ({mount_point})", all_disks
                )

        log.debug(f"{device_name} is not a system disk (system disks: {sorted(all_disks)})")
        return SystemDiskVerdict(device_name, False, "", frozenset(all_disks))

    def is_system_disk(self, device_name: str) -> bool:
        return self.classify(device_name).is_system_disk

    def _positive(self, device_name, reason, disks) -> SystemDiskVerdict:
        log.info(f"{device_name} is a system disk: {reason}")
        return SystemDiskVerdict(device_name, True, reason, frozenset(disks))


def _contains_device(source: str, device_token: str) -> bool:
    """Textual match of ``/dev/sdb`` in ``source`` without matching ``/dev/sdbc``."""
    index = source.find(device_token)
    while index != -1:
        tail = source[index + len(device_token):]
        if not tail or not tail[0].isalpha():
            return True
        if tail[0] == "p" and tail[1:2].isdigit():
            return True
        index = source.find(device_token, index + 1)
    return False


def classify(device_name: str, sysfs: SysfsReader | None = None) -> SystemDiskVerdict:
    return SystemDiskClassifier(sysfs).classify(device_name)


def is_system_disk(device_name: str, sysfs: SysfsReader | None = None) -> bool:
    return classify(device_name, sysfs).is_system_disk
