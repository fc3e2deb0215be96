"""Kernel-level USB policy.

Independent switches:

* the ``usb-storage`` and ``uas`` modules, blocked through modprobe
  blacklist files and unloaded/loaded with ``modprobe``;
* ``authorized_default`` on each USB bus, which decides whether newly
  plugged devices are enabled automatically, and ``authorized`` on a
  single device to let one blocked device in;
* a systemd drop-in for ``udisks2.service`` that sandboxes the automount
  daemon.

Blacklist files take effect on the next module load; unloading may fail while
a device is in use, in which case the block applies after reboot.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from pathlib import Path

from usb_toolkit.config import settings
from usb_toolkit.logging import LoggerFactory, recorder
from usb_toolkit.storage.commands import run_command, tool_available
from usb_toolkit.storage.exceptions import DeviceNotFoundError, ValidationError
from usb_toolkit.storage.mount import MEDIA_ROOT
from usb_toolkit.storage.mounts import MountTable
from usb_toolkit.storage.sysfs import SysfsReader, read_attribute
from usb_toolkit.storage.users import invoking_user


log = LoggerFactory.for_policy()

STORAGE_BLACKLIST = "usb-storage-blacklist.conf"
UAS_BLACKLIST = "usb-uas-blacklist.conf"
BLACKLIST_CONTENT = {
    STORAGE_BLACKLIST: "blacklist usb-storage\n",
    UAS_BLACKLIST: "blacklist uas\n",
}
PROC_MODULES = "/proc/modules"

AUDIT_MODULES = (
    "usb_storage",
    "uas",
    "usbhid",
    "usbcore",
    "ehci_hcd",
    "xhci_hcd",
    "ohci_hcd",
    "uhci_hcd",
)

UDISKS2_SERVICE = "udisks2"
UDISKS2_OVERRIDE = "hardening.conf"
UDISKS2_OVERRIDE_CONTENT = """\
[Service]
ProtectHome=yes
ProtectKernelTunables=yes
ProtectKernelModules=yes
ProtectControlGroups=yes
PrivateTmp=yes
NoNewPrivileges=yes
"""

# Kernel USB device names: root hubs (usb1) and ports (1-7, 1-7.3, 1-7:1.0).
USB_DEVICE_NAME_RE = re.compile(r"^(usb\d+|\d+-[\d.]+(:\d+\.\d+)?)$")


@dataclass(frozen=True)
class BusPolicy:
    bus: str
    authorized_default: str
    speed: str = "?"

    @property
    def blocked(self) -> bool:
        return self.authorized_default == "0"


@dataclass(frozen=True)
class UsbDevice:
    """One entry of ``/sys/bus/usb/devices`` that carries ``idVendor``."""

    name: str
    vendor_id: str
    product_id: str
    manufacturer: str = "N/A"
    product: str = "N/A"
    serial: str = "N/A"
    busnum: str = "?"
    devnum: str = "?"
    device_class: str = "??"
    authorized: str = "?"

    @property
    def blocked(self) -> bool:
        return self.authorized == "0"

    @property
    def vid_pid(self) -> str:
        return f"{self.vendor_id}:{self.product_id}"


@dataclass
class PolicyStatus:
    storage_blacklisted: bool
    uas_blacklisted: bool
    storage_module_loaded: bool
    buses: list[BusPolicy] = field(default_factory=list)
    automount_hardened: bool = False
    udisks2_active: bool = False

    @property
    def storage_blocked(self) -> bool:
        return self.storage_blacklisted


@dataclass
class PolicyAudit:
    devices: list[UsbDevice] = field(default_factory=list)
    buses: list[BusPolicy] = field(default_factory=list)
    modules: dict[str, bool] = field(default_factory=dict)
    blacklist_files: dict[str, str] = field(default_factory=dict)
    other_files: list[str] = field(default_factory=list)


@dataclass
class PolicyChange:
    """Outcome of a policy request; ``pending_reboot`` when not yet live."""

    changed: list[str] = field(default_factory=list)
    unchanged: list[str] = field(default_factory=list)
    pending_reboot: bool = False

    def merge(self, other: PolicyChange) -> PolicyChange:
        self.changed.extend(other.changed)
        self.unchanged.extend(other.unchanged)
        self.pending_reboot = self.pending_reboot or other.pending_reboot
        return self


class UsbPolicy:
    def __init__(
        self,
        modprobe_dir: os.PathLike | str | None = None,
        sysfs: SysfsReader | None = None,
        proc_modules: os.PathLike | str = PROC_MODULES,
        udisks2_override_dir: os.PathLike | str | None = None,
        media_root: os.PathLike | str = MEDIA_ROOT,
        mountinfo_path: str | None = None,
    ):
        self.modprobe_dir = Path(
            modprobe_dir or settings.get_setting("modprobe_dir", "/etc/modprobe.d")
        )
        self.sysfs = sysfs or SysfsReader()
        self.proc_modules = Path(proc_modules)
        self.udisks2_override_dir = Path(
            udisks2_override_dir
            or settings.get_setting(
                "udisks2_override_dir", "/etc/systemd/system/udisks2.service.d"
            )
        )
        self.media_root = Path(media_root)
        self.mountinfo_path = mountinfo_path

    @property
    def udisks2_override(self) -> Path:
        return self.udisks2_override_dir / UDISKS2_OVERRIDE

    # -- status --------------------------------------------------------------

    def module_loaded(self, module: str = "usb_storage") -> bool:
        try:
            lines = self.proc_modules.read_text(encoding="utf-8").splitlines()
        except OSError:
            return False
        return any(line.split(" ", 1)[0] == module for line in lines)

    def usb_device_entries(self) -> list[Path]:
        devices = self.sysfs.root / "bus" / "usb" / "devices"
        try:
            return sorted(devices.iterdir())
        except OSError:
            return []

    def bus_dirs(self) -> list[Path]:
        return [
            entry
            for entry in self.usb_device_entries()
            if entry.name.startswith("usb") and (entry / "authorized_default").exists()
        ]

    def bus_policies(self) -> list[BusPolicy]:
        return [
            BusPolicy(
                bus.name,
                read_attribute(bus / "authorized_default", "?"),
                read_attribute(bus / "speed", "?"),
            )
            for bus in self.bus_dirs()
        ]

    def udisks2_active(self) -> bool:
        if not tool_available("systemctl"):
            return False
        result = run_command(
            ["systemctl", "is-active", "--quiet", UDISKS2_SERVICE],
            check=False,
            log_output=False,
        )
        return result.returncode == 0

    def status(self) -> PolicyStatus:
        return PolicyStatus(
            storage_blacklisted=(self.modprobe_dir / STORAGE_BLACKLIST).is_file(),
            uas_blacklisted=(self.modprobe_dir / UAS_BLACKLIST).is_file(),
            storage_module_loaded=self.module_loaded(),
            buses=self.bus_policies(),
            automount_hardened=self.udisks2_override.is_file(),
            udisks2_active=self.udisks2_active(),
        )

    # -- audit ---------------------------------------------------------------

    def usb_devices(self) -> list[UsbDevice]:
        devices = []
        for entry in self.usb_device_entries():
            if not (entry / "idVendor").is_file():
                continue
            devices.append(
                UsbDevice(
                    name=entry.name,
                    vendor_id=read_attribute(entry / "idVendor", "????"),
                    product_id=read_attribute(entry / "idProduct", "????"),
                    manufacturer=read_attribute(entry / "manufacturer", "N/A"),
                    product=read_attribute(entry / "product", "N/A"),
                    serial=read_attribute(entry / "serial", "N/A"),
                    busnum=read_attribute(entry / "busnum", "?"),
                    devnum=read_attribute(entry / "devnum", "?"),
                    device_class=read_attribute(entry / "bDeviceClass", "??"),
                    authorized=read_attribute(entry / "authorized", "?"),
                )
            )
        return devices

    def other_usb_modprobe_files(self) -> list[str]:
        """Files in the modprobe directory mentioning ``usb``, other than ours."""
        found = []
        try:
            entries = sorted(self.modprobe_dir.iterdir())
        except OSError:
            return found
        for path in entries:
            if path.name in BLACKLIST_CONTENT or not path.is_file():
                continue
            try:
                text = path.read_text(encoding="utf-8", errors="replace")
            except OSError as error:
                log.debug(f"Cannot read {path}: {error}")
                continue
            if "usb" in text:
                found.append(str(path))
        return found

    def audit(self) -> PolicyAudit:
        blacklists = {}
        for name in BLACKLIST_CONTENT:
            path = self.modprobe_dir / name
            if path.is_file():
                blacklists[str(path)] = read_attribute(path)
        return PolicyAudit(
            devices=self.usb_devices(),
            buses=self.bus_policies(),
            modules={module: self.module_loaded(module) for module in AUDIT_MODULES},
            blacklist_files=blacklists,
            other_files=self.other_usb_modprobe_files(),
        )

    # -- storage modules -----------------------------------------------------

    def block_storage(self) -> PolicyChange:
        change = PolicyChange()
        self.modprobe_dir.mkdir(parents=True, exist_ok=True)
        for name, content in BLACKLIST_CONTENT.items():
            path = self.modprobe_dir / name
            if path.is_file():
                change.unchanged.append(str(path))
                continue
            path.write_text(content, encoding="utf-8")
            log.info(f"Wrote {path}")
            change.changed.append(str(path))
        if self.module_loaded():
            result = run_command(["modprobe", "-r", "usb_storage"], check=False)
            if result.returncode != 0:
                log.warning("usb_storage is in use; the block applies after reboot")
                change.pending_reboot = True
            else:
                change.changed.append("usb_storage unloaded")
        recorder.record("policy_block_storage", changed=change.changed)
        return change

    def allow_storage(self) -> PolicyChange:
        change = PolicyChange()
        for name in BLACKLIST_CONTENT:
            path = self.modprobe_dir / name
            if path.is_file():
                path.unlink()
                log.info(f"Removed {path}")
                change.changed.append(str(path))
            else:
                change.unchanged.append(str(path))
        if not self.module_loaded():
            result = run_command(["modprobe", "usb_storage"], check=False)
            if result.returncode != 0:
                change.pending_reboot = True
            else:
                change.changed.append("usb_storage loaded")
        recorder.record("policy_allow_storage", changed=change.changed)
        return change

    # -- authorized_default --------------------------------------------------

    def set_authorized_default(self, allow: bool) -> PolicyChange:
        value = "1" if allow else "0"
        change = PolicyChange()
        for bus in self.bus_dirs():
            path = bus / "authorized_default"
            try:
                path.write_text(f"{value}\n", encoding="ascii")
            except OSError as error:
                log.error(f"Cannot write {path}: {error}")
                change.unchanged.append(bus.name)
                continue
            change.changed.append(bus.name)
        log.info(f"authorized_default={value} on {change.changed}")
        recorder.record(
            "policy_authorized_default", value=value, buses=change.changed
        )
        return change

    def authorize_device(self, name: str) -> PolicyChange:
        """Enable one USB device that ``authorized_default=0`` left blocked."""
        if not USB_DEVICE_NAME_RE.match(name):
            raise ValidationError("USB device", name, "expected a name such as 1-7.3")
        path = self.sysfs.root / "bus" / "usb" / "devices" / name / "authorized"
        if not path.is_file():
            raise DeviceNotFoundError(name)
        change = PolicyChange()
        if read_attribute(path) == "1":
            change.unchanged.append(name)
            return change
        path.write_text("1\n", encoding="ascii")
        log.info(f"Authorized USB device {name}")
        change.changed.append(f"{name} authorized")
        recorder.record("policy_authorize_device", device=name)
        return change

    # -- automount (udisks2) -------------------------------------------------

    def _reload_udisks2(self, change: PolicyChange) -> None:
        if not tool_available("systemctl"):
            log.warning("systemctl not available; udisks2 not reloaded")
            change.pending_reboot = True
            return
        result = run_command(["systemctl", "daemon-reload"], check=False)
        if result.returncode != 0:
            change.pending_reboot = True
            return
        if self.udisks2_active():
            result = run_command(["systemctl", "restart", UDISKS2_SERVICE], check=False)
            if result.returncode != 0:
                log.warning(f"udisks2 restart failed: {result.stderr.strip()}")
                change.pending_reboot = True
            else:
                change.changed.append("udisks2 restarted")

    def harden_automount(self) -> PolicyChange:
        change = PolicyChange()
        path = self.udisks2_override
        if path.is_file():
            change.unchanged.append(str(path))
        else:
            self.udisks2_override_dir.mkdir(parents=True, exist_ok=True)
            path.write_text(UDISKS2_OVERRIDE_CONTENT, encoding="utf-8")
            log.info(f"Wrote {path}")
            change.changed.append(str(path))
        self._reload_udisks2(change)
        recorder.record("policy_harden_automount", changed=change.changed)
        return change

    def restore_automount(self) -> PolicyChange:
        change = PolicyChange()
        path = self.udisks2_override
        if path.is_file():
            path.unlink()
            log.info(f"Removed {path}")
            change.changed.append(str(path))
            if not any(self.udisks2_override_dir.iterdir()):
                self.udisks2_override_dir.rmdir()
        else:
            change.unchanged.append(str(path))
        change.changed.extend(self.clean_stale_mount_points())
        self._reload_udisks2(change)
        recorder.record("policy_restore_automount", changed=change.changed)
        return change

    def clean_stale_mount_points(self) -> list[str]:
        """Remove empty, unmounted directories under ``/media/<user>``."""
        user_dir = self.media_root / invoking_user().name
        if not user_dir.is_dir():
            return []
        mounted = {entry.mount_point for entry in MountTable.load(self.mountinfo_path).entries}
        removed = []
        for entry in sorted(user_dir.iterdir()):
            if not entry.is_dir() or entry.is_symlink() or str(entry) in mounted:
                continue
            try:
                entry.rmdir()
            except OSError as error:
                log.debug(f"Keeping {entry}: {error.strerror}")
                continue
            removed.append(f"removed stale mount point {entry}")
        return removed

    # -- combined ------------------------------------------------------------

    def lockdown(self) -> PolicyChange:
        """Block USB storage and sandbox the automount daemon."""
        change = self.block_storage().merge(self.harden_automount())
        recorder.record("policy_lockdown", changed=change.changed)
        return change

    def unlock(self) -> PolicyChange:
        """Undo every switch: storage, automount and ``authorized_default``."""
        change = (
            self.allow_storage()
            .merge(self.restore_automount())
            .merge(self.set_authorized_default(True))
        )
        recorder.record("policy_unlock", changed=change.changed)
        return change
