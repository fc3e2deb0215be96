from __future__ import annotations

from usb_toolkit.actions.common import choose_device, menu_action
from usb_toolkit.app.context import AppContext
from usb_toolkit.storage.commands import run_command
from usb_toolkit.storage.eject import safe_eject
from usb_toolkit.ui import render

BLOCK_ATTRIBUTES = [
    ("Read-only", "ro"),
    ("Scheduler", "queue/scheduler"),
    ("Logical BS", "queue/logical_block_size"),
    ("Physical BS", "queue/physical_block_size"),
]


@menu_action
def eject_usb(context: AppContext) -> None:
    ui = context.ui
    device = choose_device(context, "Eject which device?")
    if device is None:
        return
    ui.info(f"Ejecting {device.device_path}...")
    result = safe_eject(device.name, context.sysfs)
    for note in result.notes:
        ui.warning(note)
    if not result.safe_to_remove:
        ui.error(f"Some partitions are still mounted; do NOT remove {device.device_path}!")
    elif result.powered_off:
        ui.success(f"Powered off ({result.power_off_method}); safe to remove {device.device_path}.")


def block_attributes(context: AppContext, device_name: str) -> list[tuple[str, str]]:
    return [
        (title, context.sysfs.block_attribute(device_name, attribute, "?"))
        for title, attribute in BLOCK_ATTRIBUTES
    ]


@menu_action
def device_info(context: AppContext) -> None:
    ui = context.ui
    device = choose_device(context, "Details for which device?")
    if device is None:
        return
    ui.heading(f"Device Summary: {device.device_path}")
    render.device_details(device, ui=ui)

    ui.heading("Partitions")
    listing = run_command(
        ["lsblk", "-o", "NAME,SIZE,FSTYPE,LABEL,MOUNTPOINT,UUID", device.device_path],
        check=False,
        log_output=False,
    )
    render.output_block(listing.stdout or listing.stderr, ui=ui)

    ui.heading("Block Device Info")
    render.key_values(block_attributes(context, device.name), ui=ui)
