"""Sysfs attribute reading for block and USB devices.

Every lookup goes through a :class:`SysfsReader` bound to a root directory
(``/sys`` in production). A missing, unreadable or empty attribute yields the
caller's default; nothing here raises for absent files, so enumeration keeps
working on devices that expose only part of the usual attributes.

USB attributes (``idVendor``, ``idProduct``, ``serial``, ``manufacturer``,
``speed``) live on the USB device node, which sits several directories above
the SCSI or NVMe device for UAS bridges. :meth:`SysfsReader.find_usb_attribute`
walks up the resolved device path until it finds them.
"""

from __future__ import annotations

import os
from pathlib import Path

from usb_toolkit.config import settings
from usb_toolkit.logging import LoggerFactory


log = LoggerFactory.for_sysfs()

USB_SPEED_LABELS = {
    "1.5": "USB 1.0 (1.5 Mbps)",
    "12": "USB 1.1 (12 Mbps)",
    "480": "USB 2.0 (480 Mbps)",
    "5000": "USB 3.0 (5 Gbps)",
    "10000": "USB 3.1 (10 Gbps)",
    "20000": "USB 3.2 (20 Gbps)",
}


def read_attribute(path: os.PathLike | str, default: str = "") -> str:
    """Read a sysfs attribute, stripped, or ``default`` if unavailable."""
    try:
        value = Path(path).read_text(encoding="utf-8", errors="replace").strip()
    except OSError:
        return default
    return value or default


class SysfsReader:
    def __init__(self, root: os.PathLike | str | None = None):
        self.root = Path(root if root is not None else settings.get_setting("sysfs_root", "/sys"))

    def __repr__(self) -> str:
        return f"SysfsReader({str(self.root)!r})"

    # -- paths ---------------------------------------------------------------

    def block_dir(self, name: str) -> Path:
        return self.root / "block" / name

    def class_block_dir(self, name: str) -> Path:
        return self.root / "class" / "block" / name

    def realpath(self, path: Path) -> Path:
        return Path(os.path.realpath(path))

    # -- attributes ----------------------------------------------------------

    def read(self, path: os.PathLike | str, default: str = "") -> str:
        value = read_attribute(path, default)
        log.trace(f"{path} = {value!r}")
        return value

    def block_attribute(self, name: str, attribute: str, default: str = "") -> str:
        """Read ``/sys/block/<name>/<attribute>``."""
        return self.read(self.block_dir(name) / attribute, default)

    def device_attribute(self, name: str, attribute: str, default: str = "") -> str:
        """Read ``/sys/block/<name>/device/<attribute>``."""
        return self.read(self.block_dir(name) / "device" / attribute, default)

    def device_real_path(self, name: str) -> str:
        """Resolved target of ``/sys/block/<name>/device``, or ``""``."""
        link = self.block_dir(name) / "device"
        if not link.exists():
            return ""
        return str(self.realpath(link))

    def find_usb_attribute(self, name: str, attribute: str, default: str = "") -> str:
        start = self.device_real_path(name)
        if not start:
            return default
        root = self.realpath(self.root)
        current = Path(start)
        while current != root and root in current.parents:
            candidate = current / attribute
            if candidate.is_file():
                return self.read(candidate, default)
            current = current.parent
        return default

    def usb_device_dir(self, name: str) -> Path | None:
        """The USB device directory (the one carrying ``idVendor``) above ``name``."""
        start = self.device_real_path(name)
        if not start:
            return None
        root = self.realpath(self.root)
        current = Path(start)
        while current != root and root in current.parents:
            if (current / "idVendor").is_file():
                return current
            current = current.parent
        return None

    def usb_speed_label(self, name: str) -> str:
        speed = self.find_usb_attribute(name, "speed")
        if not speed:
            return "Unknown"
        return USB_SPEED_LABELS.get(speed, f"USB ({speed} Mbps)")

    # -- topology ------------------------------------------------------------

    def list_block_names(self) -> list[str]:
        try:
            return sorted(entry.name for entry in (self.root / "block").iterdir())
        except OSError:
            return []

    def dev_number(self, name: str) -> str:
        """Kernel ``major:minor`` of a block device or partition."""
        return self.read(self.class_block_dir(name) / "dev")

    def name_for_dev_number(self, major_minor: str) -> str | None:
        """Kernel name behind ``/sys/dev/block/<major:minor>``."""
        link = self.root / "dev" / "block" / major_minor
        if not link.exists():
            return None
        return self.realpath(link).name

    def is_partition(self, name: str) -> bool:
        return (self.class_block_dir(name) / "partition").exists()

    def parent_disk(self, name: str) -> str | None:
        """Containing disk of a partition; ``None`` for whole disks."""
        if not self.is_partition(name):
            return None
        return self.realpath(self.class_block_dir(name)).parent.name

    def slaves(self, name: str) -> list[str]:
        """Underlying devices of a device-mapper or md device."""
        slaves_dir = self.class_block_dir(name) / "slaves"
        try:
            return sorted(entry.name for entry in slaves_dir.iterdir())
        except OSError:
            return []

    def exists(self, name: str) -> bool:
        return self.class_block_dir(name).exists() or self.block_dir(name).exists()

    def is_physical_disk(self, name: str) -> bool:
        """Whole disk with a hardware ``device`` link (not dm, md or loop)."""
        return (self.block_dir(name) / "device").exists()

    def loop_backing_file(self, name: str) -> str:
        """File behind a loop device, or ``""``."""
        return self.block_attribute(name, "loop/backing_file")
