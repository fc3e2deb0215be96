from __future__ import annotations

from usb_toolkit.actions.common import choose_device, menu_action
from usb_toolkit.app.context import AppContext
from usb_toolkit.storage.erase import WipeMode, wipe_device
from usb_toolkit.ui import prompts
from usb_toolkit.ui.progress import transfer_progress

WIPE_MODES = [
    ("Quick wipe: zero first/last MiB + wipe signatures", WipeMode.QUICK),
    ("Full zero: zeros over the whole disk", WipeMode.ZERO),
    ("Random: random data over the whole disk", WipeMode.RANDOM),
    ("Multi-pass: random, zeros, random (slowest)", WipeMode.MULTIPASS),
]


@menu_action
def secure_wipe(context: AppContext) -> None:
    ui = context.ui
    device = choose_device(context, "Wipe which device?")
    if device is None:
        return
    context.gate.check_not_system_disk(device.name)
    index = prompts.select_item("Wipe method", [label for label, _ in WIPE_MODES], ui=ui)
    if index is None:
        return
    mode = WIPE_MODES[index][1]

    token = context.gate.authorize(device.name, f"{mode.value} wipe")

    def announce(number: int, total: int, source: str) -> None:
        ui.info(f"Pass {number}/{total}: {source}")

    with transfer_progress(f"Wiping {device.device_path}", device.size_bytes, ui=ui) as update:
        result = wipe_device(
            device.name, token, mode, progress_callback=update, pass_callback=announce
        )
    if result.clean:
        ui.success(f"{mode.value.capitalize()} wipe complete on {device.device_path}")
    else:
        for warning in result.warnings:
            ui.warning(warning)
        ui.warning(f"Wipe finished with warnings on {device.device_path}")
