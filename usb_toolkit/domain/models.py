"""Domain model for USB storage operations.

Typed records for devices, partitions and the safety decisions taken before a
destructive operation runs.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import FrozenSet, Tuple

from usb_toolkit.storage.exceptions import (
    ConfirmationMismatchError,
    RemountRaceError,
    UnmountFailedError,
)


# ==============================================================================
# Device Domain
# ==============================================================================


def human_size(size_bytes: int) -> str:
    """Format bytes with binary units, e.g. ``29.8G``."""
    if size_bytes is None:
        return "?"
    value = float(size_bytes)
    for unit in ("B", "K", "M", "G", "T"):
        if value < 1024 or unit == "T":
            if unit == "B":
                return f"{int(value)}B"
            return f"{value:.1f}{unit}"
        value /= 1024
    return f"{value:.1f}P"


@dataclass(frozen=True)
class BlockDevice:
    """A USB block device as seen through sysfs.

    Built fresh for every operation; never cached.
    """

    name: str  # e.g., "sdb"
    bus_path: str = ""  # resolved /sys/block/<name>/device
    is_removable: bool = False
    size_bytes: int = 0
    model: str = "Unknown"
    vendor: str = "Unknown"
    serial: str = "N/A"
    vendor_id: str = "????"
    product_id: str = "????"
    manufacturer: str = "Unknown"
    speed_label: str = "Unknown"
    read_only: bool = False

    @property
    def device_path(self) -> str:
        """Device node path (e.g., /dev/sdb)."""
        return f"/dev/{self.name}"

    @property
    def is_usb(self) -> bool:
        return "/usb" in self.bus_path

    @property
    def size_label(self) -> str:
        return human_size(self.size_bytes)

    @property
    def usb_id(self) -> str:
        return f"{self.vendor_id}:{self.product_id}"

    def format_label(self) -> str:
        """Format a human-readable label for display.

        Returns: e.g., "sdb Generic Flash Disk (29.8G)"
        """
        parts = [
            p.strip()
            for p in (self.vendor, self.model)
            if p and p.strip() and p.strip() != "Unknown"
        ]
        if parts:
            return f"{self.name} {' '.join(parts)} ({self.size_label})"
        return f"{self.name} ({self.size_label})"


class MountState(Enum):
    MOUNTED = "mounted"
    UNMOUNTED = "unmounted"


@dataclass(frozen=True)
class Partition:
    """A partition of a USB device, or the whole disk when it has none."""

    name: str  # e.g., "sdb1"
    parent: str  # e.g., "sdb"
    mount_points: Tuple[str, ...] = ()

    @property
    def device_path(self) -> str:
        return f"/dev/{self.name}"

    @property
    def is_mounted(self) -> bool:
        return bool(self.mount_points)

    @property
    def state(self) -> MountState:
        return MountState.MOUNTED if self.mount_points else MountState.UNMOUNTED

    @property
    def is_whole_disk(self) -> bool:
        return self.name == self.parent


# ==============================================================================
# Safety Domain
# ==============================================================================


@dataclass(frozen=True)
class SystemDiskVerdict:
    device_name: str
    is_system_disk: bool
    reason: str = ""
    backing_disks: FrozenSet[str] = frozenset()


@dataclass
class ConfirmationToken:
    """Proof that the operator typed the device name for one operation.

    Single-use and bound to one device; never persisted.
    """

    device_name: str
    operation: str
    issued_at: float = field(default_factory=time.monotonic)
    consumed: bool = False

    def consume(self, device_name: str) -> None:
        if self.consumed:
            raise ConfirmationMismatchError(device_name, "<token already used>")
        if device_name != self.device_name:
            raise ConfirmationMismatchError(device_name, self.device_name)
        self.consumed = True


@dataclass
class UnmountResult:
    device_name: str
    unmounted: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    lazy: list[str] = field(default_factory=list)
    remounted: list[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.failed and not self.remounted

    def raise_for_status(self) -> None:
        if self.remounted:
            raise RemountRaceError(self.device_name, self.remounted)
        if self.failed:
            raise UnmountFailedError(self.device_name, self.failed)
