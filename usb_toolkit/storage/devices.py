"""USB device enumeration from sysfs.

A block device counts as USB storage when its name starts with ``sd`` or
``nvme`` and either its ``removable`` flag reads ``1`` or its resolved
``device`` path runs through the USB bus. The second rule catches USB SSDs
and UAS enclosures that report themselves as fixed disks.

Devices are re-enumerated for every operation; nothing is cached.

Example:
    >>> from usb_toolkit.storage.devices import list_usb_device_names
    >>> list_usb_device_names()
    ['sdb', 'sdc']
"""

from __future__ import annotations

import re

from usb_toolkit.domain.models import BlockDevice, human_size
from usb_toolkit.logging import LoggerFactory
from usb_toolkit.storage.exceptions import DeviceNotFoundError
from usb_toolkit.storage.sysfs import SysfsReader


log = LoggerFactory.for_usb()

DEVICE_PREFIXES = ("sd", "nvme")
_USB_SEGMENT_RE = re.compile(r"/usb\d*(/|$)")


def is_usb_bus_path(path: str) -> bool:
    return bool(path) and _USB_SEGMENT_RE.search(path) is not None


def partition_prefix(name: str) -> str:
    """Partition name prefix: ``nvme0n1 -> nvme0n1p``, ``sdb -> sdb``."""
    if name.startswith(("nvme", "mmcblk", "loop")) or name[-1:].isdigit():
        return f"{name}p"
    return name


def partition_node(name: str, number: int = 1) -> str:
    return f"/dev/{partition_prefix(name)}{number}"


def list_usb_device_names(sysfs: SysfsReader | None = None) -> list[str]:
    sysfs = sysfs or SysfsReader()
    names = []
    for name in sysfs.list_block_names():
        if not name.startswith(DEVICE_PREFIXES):
            continue
        if not sysfs.block_dir(name).exists():
            # Vanished mid-scan.
            continue
        removable = sysfs.block_attribute(name, "removable")
        bus_path = sysfs.device_real_path(name)
        if removable == "1" or is_usb_bus_path(bus_path):
            names.append(name)
        else:
            log.trace(f"Skipping {name}: removable={removable!r} path={bus_path!r}")
    log.debug(f"USB devices: {names}")
    return names


def list_partition_names(name: str, sysfs: SysfsReader | None = None) -> list[str]:
    """Partitions of ``name`` ordered by number, or ``[name]`` when none."""
    sysfs = sysfs or SysfsReader()
    pattern = re.compile(rf"^{re.escape(partition_prefix(name))}(\d+)$")
    found = []
    try:
        children = list(sysfs.block_dir(name).iterdir())
    except OSError:
        children = []
    for child in children:
        match = pattern.match(child.name)
        if match:
            found.append((int(match.group(1)), child.name))
    if not found:
        return [name]
    return [child for _, child in sorted(found)]


def get_size_bytes(name: str, sysfs: SysfsReader | None = None) -> int:
    sysfs = sysfs or SysfsReader()
    sectors = sysfs.read(sysfs.class_block_dir(name) / "size", "0")
    try:
        return int(sectors) * 512
    except ValueError:
        return 0


def get_block_device(name: str, sysfs: SysfsReader | None = None) -> BlockDevice:
    sysfs = sysfs or SysfsReader()
    if not sysfs.block_dir(name).exists():
        raise DeviceNotFoundError(name)
    return BlockDevice(
        name=name,
        bus_path=sysfs.device_real_path(name),
        is_removable=sysfs.block_attribute(name, "removable") == "1",
        size_bytes=get_size_bytes(name, sysfs),
        model=sysfs.device_attribute(name, "model", "Unknown"),
        vendor=sysfs.device_attribute(name, "vendor", "Unknown"),
        serial=sysfs.find_usb_attribute(name, "serial", "N/A"),
        vendor_id=sysfs.find_usb_attribute(name, "idVendor", "????"),
        product_id=sysfs.find_usb_attribute(name, "idProduct", "????"),
        manufacturer=sysfs.find_usb_attribute(name, "manufacturer", "Unknown"),
        speed_label=sysfs.usb_speed_label(name),
        read_only=sysfs.block_attribute(name, "ro") == "1",
    )


def list_usb_devices(sysfs: SysfsReader | None = None) -> list[BlockDevice]:
    sysfs = sysfs or SysfsReader()
    devices = []
    for name in list_usb_device_names(sysfs):
        try:
            devices.append(get_block_device(name, sysfs))
        except DeviceNotFoundError:
            log.debug(f"{name} disappeared during enumeration")
    return devices


def format_device_label(device: BlockDevice) -> str:
    return f"/dev/{device.name}  {human_size(device.size_bytes)}  {device.model}"
