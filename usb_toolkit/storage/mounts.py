"""Live mount state of USB partitions.

The kernel mount table (``/proc/self/mountinfo``) is the only source of
truth; ``/etc/fstab`` describes intent, not state, and is never consulted.
A partition matches a mount entry by kernel ``major:minor`` or, failing
that, by its resolved ``/dev/<name>`` source path.

Results describe the moment of the call. Callers about to write to a device
must query again rather than reuse an earlier answer.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable

from usb_toolkit.config import settings
from usb_toolkit.domain.models import Partition
from usb_toolkit.logging import LoggerFactory
from usb_toolkit.storage.devices import list_partition_names
from usb_toolkit.storage.sysfs import SysfsReader


log = LoggerFactory.for_storage(job_id="mounts")

_OCTAL_ESCAPE_RE = re.compile(r"\\([0-7]{3})")


def decode_mount_field(value: str) -> str:
    """Decode the octal escapes mountinfo uses for space, tab and newline."""
    return _OCTAL_ESCAPE_RE.sub(lambda m: chr(int(m.group(1), 8)), value)


@dataclass(frozen=True)
class MountEntry:
    major_minor: str
    root: str
    mount_point: str
    fstype: str
    source: str
    options: str

    @classmethod
    def parse(cls, line: str) -> MountEntry | None:
        """Parse one mountinfo line.

        Format: ``id parent maj:min root mountpoint opts [optional...] - fstype source superopts``
        """
        fields = line.split()
        try:
            separator = fields.index("-")
        except ValueError:
            return None
        if separator < 6 or len(fields) < separator + 3:
            return None
        return cls(
            major_minor=fields[2],
            root=decode_mount_field(fields[3]),
            mount_point=decode_mount_field(fields[4]),
            fstype=fields[separator + 1],
            source=decode_mount_field(fields[separator + 2]),
            options=fields[5],
        )


class MountTable:
    def __init__(self, entries: Iterable[MountEntry]):
        self.entries = list(entries)

    @classmethod
    def load(cls, path: os.PathLike | str | None = None) -> MountTable:
        path = Path(path or settings.get_setting("mountinfo_path", "/proc/self/mountinfo"))
        try:
            text = path.read_text(encoding="utf-8", errors="replace")
        except OSError as error:
            log.warning(f"Cannot read mount table {path}: {error}")
            return cls([])
        entries = [entry for entry in map(MountEntry.parse, text.splitlines()) if entry]
        return cls(entries)

    def find_mount_point(self, mount_point: str) -> MountEntry | None:
        """Topmost entry mounted at ``mount_point``."""
        found = None
        for entry in self.entries:
            if entry.mount_point == mount_point:
                found = entry
        return found

    def mount_containing(self, path: str) -> MountEntry | None:
        """Topmost entry of the deepest mount point holding ``path``."""
        found = None
        for entry in self.entries:
            point = entry.mount_point
            inside = path == point or path.startswith(point.rstrip("/") + "/")
            if inside and (found is None or len(point) >= len(found.mount_point)):
                found = entry
        return found

    def mount_points_for(
        self, partition_name: str, sysfs: SysfsReader | None = None
    ) -> list[str]:
        sysfs = sysfs or SysfsReader()
        major_minor = sysfs.dev_number(partition_name)
        device_path = f"/dev/{partition_name}"
        points = []
        for entry in self.entries:
            if major_minor and entry.major_minor == major_minor:
                points.append(entry.mount_point)
            elif entry.source.startswith("/dev/") and (
                entry.source == device_path
                or os.path.realpath(entry.source) == device_path
            ):
                points.append(entry.mount_point)
        return points


def partition_mount_states(
    device_name: str,
    sysfs: SysfsReader | None = None,
    table: MountTable | None = None,
) -> list[Partition]:
    sysfs = sysfs or SysfsReader()
    table = table or MountTable.load()
    partitions = []
    names = list_partition_names(device_name, sysfs)
    if device_name not in names:
        # A filesystem written straight onto the disk still counts.
        names = names + [device_name]
    for name in names:
        points = tuple(table.mount_points_for(name, sysfs))
        if name == device_name and len(names) > 1 and not points:
            continue
        partitions.append(Partition(name=name, parent=device_name, mount_points=points))
    return partitions


def mounted_partitions(
    device_name: str,
    sysfs: SysfsReader | None = None,
    table: MountTable | None = None,
) -> list[Partition]:
    return [
        p for p in partition_mount_states(device_name, sysfs, table) if p.is_mounted
    ]


def split_by_mount_state(
    device_names: Iterable[str],
    sysfs: SysfsReader | None = None,
    table: MountTable | None = None,
) -> tuple[list[Partition], list[Partition]]:
    """Partition every device's partitions into (mounted, unmounted)."""
    sysfs = sysfs or SysfsReader()
    table = table or MountTable.load()
    mounted: list[Partition] = []
    unmounted: list[Partition] = []
    for name in device_names:
        for partition in partition_mount_states(name, sysfs, table):
            (mounted if partition.is_mounted else unmounted).append(partition)
    return mounted, unmounted
