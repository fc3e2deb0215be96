"""
Pytest configuration and shared fixtures for usb-toolkit tests.

Sysfs trees and mountinfo files are built under ``tmp_path`` so that no test
reads the host's devices or mount table.
"""

import io
import itertools
import subprocess
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple
from unittest.mock import Mock

import pytest
from rich.console import Console

from usb_toolkit.domain.models import BlockDevice
from usb_toolkit.storage.devices import partition_prefix
from usb_toolkit.storage.sysfs import SysfsReader
from usb_toolkit.ui.console import UI, Theme


SECTOR = 512


# ==============================================================================
# Fake sysfs
# ==============================================================================


class FakeSysfs:
    """Builds a miniature /sys with the same symlink layout as the kernel.

    ``block/<name>``, ``class/block/<name>`` and ``dev/block/<maj:min>`` are
    symlinks into ``devices/...``; partitions are subdirectories of their
    disk; dm devices list their parents under ``slaves/``.
    """

    def __init__(self, root: Path):
        self.root = root
        for sub in ("block", "class/block", "dev/block", "bus/usb/devices", "devices"):
            (root / sub).mkdir(parents=True, exist_ok=True)
        self.reader = SysfsReader(root)
        self._hosts = itertools.count(1)
        self.disk_dirs: Dict[str, Path] = {}

    @staticmethod
    def _write(directory: Path, **attributes: str) -> None:
        directory.mkdir(parents=True, exist_ok=True)
        for key, value in attributes.items():
            (directory / key).write_text(f"{value}\n")

    def _register(self, name: str, target: Path, dev: str, *, block: bool) -> None:
        if block:
            (self.root / "block" / name).symlink_to(target)
        (self.root / "class" / "block" / name).symlink_to(target)
        (self.root / "dev" / "block" / dev).symlink_to(target)

    def add_disk(
        self,
        name: str,
        *,
        usb: bool = True,
        removable: str = "1",
        size_bytes: int = 32_000_000_000,
        major: int = 8,
        minor: int = 16,
        partitions: int = 1,
        model: str = "Flash Disk",
        vendor: str = "Generic",
        serial: str = "0123456789AB",
        id_vendor: str = "0781",
        id_product: str = "5581",
        manufacturer: str = "SanDisk",
        speed: Optional[str] = "480",
        read_only: str = "0",
    ) -> Path:
        host = next(self._hosts)
        if usb:
            usb_dev = self.root / f"devices/pci0000:00/0000:00:14.0/usb{host}/{host}-1"
            attributes = dict(
                idVendor=id_vendor,
                idProduct=id_product,
                serial=serial,
                manufacturer=manufacturer,
            )
            if speed is not None:
                attributes["speed"] = speed
            self._write(usb_dev, **attributes)
            scsi = usb_dev / f"{host}-1:1.0/host{host}/target{host}:0:0/{host}:0:0:0"
        else:
            scsi = self.root / f"devices/pci0000:00/0000:00:17.0/ata{host}/host{host}/target{host}:0:0/{host}:0:0:0"
        self._write(scsi, model=model, vendor=vendor)

        disk_dir = scsi / "block" / name
        self._write(
            disk_dir,
            removable=removable,
            size=str(size_bytes // SECTOR),
            ro=read_only,
            dev=f"{major}:{minor}",
        )
        (disk_dir / "device").symlink_to(scsi)
        self._register(name, disk_dir, f"{major}:{minor}", block=True)
        self.disk_dirs[name] = disk_dir

        part_size = (size_bytes - 1024 * 1024) // max(partitions, 1)
        for number in range(1, partitions + 1):
            self.add_partition(name, number, major=major, minor=minor + number, size_bytes=part_size)
        return disk_dir

    def add_partition(
        self, disk: str, number: int, *, major: int, minor: int, size_bytes: int
    ) -> str:
        part = f"{partition_prefix(disk)}{number}"
        part_dir = self.disk_dirs[disk] / part
        self._write(
            part_dir,
            partition=str(number),
            size=str(size_bytes // SECTOR),
            dev=f"{major}:{minor}",
        )
        self._register(part, part_dir, f"{major}:{minor}", block=False)
        return part

    def add_holder(self, name: str, slaves: Sequence[str], *, major: int = 253, minor: int = 0) -> Path:
        """A device-mapper or md device stacked on ``slaves``."""
        holder_dir = self.root / "devices/virtual/block" / name
        self._write(holder_dir, dev=f"{major}:{minor}", size="0", removable="0")
        (holder_dir / "slaves").mkdir()
        for slave in slaves:
            target = (self.root / "class" / "block" / slave).resolve()
            (holder_dir / "slaves" / slave).symlink_to(target)
        self._register(name, holder_dir, f"{major}:{minor}", block=True)
        return holder_dir

    def add_loop(self, name: str, backing_file: str, *, minor: int = 0) -> Path:
        """A loop device whose ``loop/backing_file`` is ``backing_file``."""
        loop_dir = self.root / "devices/virtual/block" / name
        self._write(loop_dir, dev=f"7:{minor}", size="0", removable="0")
        self._write(loop_dir / "loop", backing_file=backing_file)
        self._register(name, loop_dir, f"7:{minor}", block=True)
        return loop_dir

    def add_usb_bus(self, bus: str, authorized_default: str = "1") -> Path:
        bus_dir = self.root / "devices/pci0000:00/0000:00:14.0" / bus
        self._write(bus_dir, authorized_default=authorized_default)
        (self.root / "bus/usb/devices" / bus).symlink_to(bus_dir)
        return bus_dir

    def add_usb_device(self, name: str, authorized: str = "1", **attributes: str) -> Path:
        """A USB device such as ``1-7.3`` listed under ``bus/usb/devices``."""
        values = dict(
            idVendor="046d",
            idProduct="c52b",
            manufacturer="Logitech",
            product="USB Receiver",
            busnum="1",
            devnum="4",
            bDeviceClass="00",
            authorized=authorized,
        )
        values.update(attributes)
        device_dir = self.root / "devices/pci0000:00/0000:00:14.0/usb-devices" / name
        self._write(device_dir, **values)
        (self.root / "bus/usb/devices" / name).symlink_to(device_dir)
        return device_dir


# ==============================================================================
# Fake mountinfo
# ==============================================================================


MountSpec = Tuple[str, str, str, str]  # (major:minor, mount point, fstype, source)


def mountinfo_line(index: int, spec: MountSpec) -> str:
    major_minor, mount_point, fstype, source = spec
    encoded = mount_point.replace(" ", "\\040")
    return f"{20 + index} 1 {major_minor} / {encoded} rw,relatime shared:{index} - {fstype} {source} rw"


class FakeMountinfo:
    def __init__(self, path: Path):
        self.path = path
        self.entries: List[MountSpec] = []
        self.write()

    def write(self) -> None:
        lines = [mountinfo_line(i, spec) for i, spec in enumerate(self.entries)]
        self.path.write_text("\n".join(lines) + ("\n" if lines else ""))

    def mount(self, major_minor: str, mount_point: str, source: str, fstype: str = "vfat") -> None:
        self.entries.append((major_minor, str(mount_point), fstype, source))
        self.write()

    def unmount(self, mount_point: str) -> None:
        self.entries = [e for e in self.entries if e[1] != str(mount_point)]
        self.write()

    def set_lines(self, text: str) -> None:
        self.entries = []
        self.path.write_text(text)

    def __str__(self) -> str:
        return str(self.path)


@pytest.fixture
def fake_sysfs(tmp_path) -> FakeSysfs:
    """Empty fake sysfs tree rooted in tmp_path."""
    return FakeSysfs(tmp_path / "sys")


@pytest.fixture
def mountinfo(tmp_path) -> FakeMountinfo:
    """Empty fake /proc/self/mountinfo."""
    return FakeMountinfo(tmp_path / "mountinfo")


@pytest.fixture(autouse=True)
def isolated_settings(tmp_path, mountinfo, fake_sysfs):
    """Point every settings-derived path at tmp_path."""
    from usb_toolkit.config import settings

    saved = dict(settings.settings_store.values)
    settings.settings_store.values.update(
        {
            "sysfs_root": str(fake_sysfs.root),
            "mountinfo_path": str(mountinfo.path),
            "lock_path": str(tmp_path / "usb-toolkit.lock"),
            "log_dir": str(tmp_path / "logs"),
            "modprobe_dir": str(tmp_path / "modprobe.d"),
            "udisks2_override_dir": str(tmp_path / "udisks2.service.d"),
        }
    )
    yield settings
    settings.settings_store.values = saved


@pytest.fixture
def usb_stick(fake_sysfs) -> FakeSysfs:
    """One USB stick ``sdb`` with a single partition ``sdb1``."""
    fake_sysfs.add_disk("sdb", model="Generic Flash Disk 32GB", major=8, minor=16)
    return fake_sysfs


@pytest.fixture
def system_and_usb(fake_sysfs, mountinfo) -> FakeSysfs:
    """SATA ``sda`` (root on LVM over dm-crypt over sda2) plus USB ``sdb``."""
    fake_sysfs.add_disk("sda", usb=False, removable="0", major=8, minor=0, partitions=2)
    fake_sysfs.add_holder("dm-0", ["sda2"], minor=0)
    fake_sysfs.add_holder("dm-1", ["dm-0"], minor=1)
    fake_sysfs.add_disk("sdb", major=8, minor=16)
    mountinfo.mount("253:1", "/", "/dev/mapper/vg0-root", fstype="ext4")
    mountinfo.mount("8:1", "/boot/efi", "/dev/sda1", fstype="vfat")
    return fake_sysfs


# ==============================================================================
# Subprocess Mock Fixtures
# ==============================================================================


def completed(
    returncode: int = 0, stdout: str = "", stderr: str = "", args=None
) -> subprocess.CompletedProcess:
    return subprocess.CompletedProcess(args or [], returncode, stdout, stderr)


@pytest.fixture
def mock_subprocess_success(mocker) -> Mock:
    """subprocess.run that always succeeds with empty output."""
    return mocker.patch("subprocess.run", return_value=completed())


# ==============================================================================
# UI Fixtures
# ==============================================================================


@pytest.fixture
def plain_ui() -> UI:
    """Colourless UI recording into a string buffer."""
    console = Console(file=io.StringIO(), record=True, width=120, no_color=True)
    return UI(Theme(color=False), console)


@pytest.fixture
def sample_device() -> BlockDevice:
    return BlockDevice(
        name="sdb",
        bus_path="/sys/devices/pci0000:00/0000:00:14.0/usb2/2-1/2-1:1.0/host6/target6:0:0/6:0:0:0",
        is_removable=True,
        size_bytes=32_000_000_000,
        model="Generic Flash Disk 32GB",
        vendor="Generic",
        serial="0123456789AB",
        vendor_id="0781",
        product_id="5581",
        manufacturer="SanDisk",
        speed_label="USB 2.0 (480 Mbps)",
    )
