"""Safe eject: sync, unmount everything, power the device off."""

from __future__ import annotations

from dataclasses import dataclass, field

from usb_toolkit.domain.models import UnmountResult
from usb_toolkit.logging import LoggerFactory, recorder
from usb_toolkit.storage.commands import run_command, tool_available
from usb_toolkit.storage.sysfs import SysfsReader
from usb_toolkit.storage.unmount import unmount_all


log = LoggerFactory.for_usb()


@dataclass
class EjectResult:
    device_name: str
    unmount: UnmountResult
    power_off_method: str | None = None
    notes: list[str] = field(default_factory=list)

    @property
    def powered_off(self) -> bool:
        return self.power_off_method is not None

    @property
    def safe_to_remove(self) -> bool:
        return self.unmount.success


def _write_one(path) -> bool:
    try:
        path.write_text("1\n", encoding="ascii")
    except OSError as error:
        log.debug(f"Writing 1 to {path} failed: {error}")
        return False
    return True


def power_off(device_name: str, sysfs: SysfsReader | None = None) -> str | None:
    """Power off a USB device; returns the method used or ``None``.

    Tries ``udisksctl power-off``, then the SCSI ``delete`` attribute, then
    the ``remove`` attribute of the USB device.
    """
    sysfs = sysfs or SysfsReader()
    if tool_available("udisksctl"):
        result = run_command(
            ["udisksctl", "power-off", "-b", f"/dev/{device_name}"], check=False
        )
        if result.returncode == 0:
            return "udisksctl"
        log.info(f"udisksctl power-off failed for {device_name}; trying sysfs")

    device_dir = sysfs.block_dir(device_name) / "device"
    delete = device_dir / "delete"
    if delete.is_file() and _write_one(delete):
        return "sysfs delete"
    usb_dir = sysfs.usb_device_dir(device_name)
    if usb_dir is not None:
        remove = usb_dir / "remove"
        if remove.is_file() and _write_one(remove):
            return "usb port remove"
    return None


def safe_eject(
    device_name: str,
    sysfs: SysfsReader | None = None,
    mountinfo_path: str | None = None,
) -> EjectResult:
    """The device is powered off only when every partition unmounted."""
    sysfs = sysfs or SysfsReader()
    run_command(["sync"], check=False, log_output=False)
    unmount = unmount_all(device_name, sysfs=sysfs, mountinfo_path=mountinfo_path)
    result = EjectResult(device_name, unmount)
    if not unmount.success:
        result.notes.append("partitions still mounted; not powering off")
        log.warning(f"Eject of {device_name} stopped: {unmount.failed + unmount.remounted}")
    else:
        result.power_off_method = power_off(device_name, sysfs)
        if not result.powered_off:
            result.notes.append("could not power off; safe to remove after sync")
    recorder.record(
        "eject",
        device=device_name,
        unmounted=unmount.success,
        power_off=result.power_off_method,
    )
    return result
