from __future__ import annotations

from usb_toolkit.actions.common import menu_action
from usb_toolkit.app.context import AppContext
from usb_toolkit.storage.devices import get_size_bytes, list_usb_devices
from usb_toolkit.storage.mount import probe_filesystem
from usb_toolkit.storage.mounts import MountTable, partition_mount_states
from usb_toolkit.ui import render


def partition_rows(context: AppContext, device_name: str, table: MountTable | None = None):
    table = table or MountTable.load()
    rows = []
    for partition in partition_mount_states(device_name, context.sysfs, table):
        fstype, label = probe_filesystem(partition.name)
        rows.append((partition, get_size_bytes(partition.name, context.sysfs), fstype, label))
    return rows


@menu_action
def detect_devices(context: AppContext) -> None:
    ui = context.ui
    ui.heading("USB Storage Devices")
    devices = list_usb_devices(context.sysfs)
    if not devices:
        ui.warning("No USB storage devices found.")
        return
    table = MountTable.load()
    for device in devices:
        ui.print()
        render.device_details(device, ui=ui)
        render.partition_table(partition_rows(context, device.name, table), ui=ui)
    ui.print()
    ui.info(f"{len(devices)} USB storage device(s) found.")
