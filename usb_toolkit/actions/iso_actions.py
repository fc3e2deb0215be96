from __future__ import annotations

import os

from usb_toolkit.actions.common import choose_device, menu_action
from usb_toolkit.app.context import AppContext
from usb_toolkit.domain.models import human_size
from usb_toolkit.storage.iso import check_iso, verify_iso, write_iso
from usb_toolkit.ui import prompts
from usb_toolkit.ui.progress import transfer_progress


@menu_action
def write_iso_usb(context: AppContext) -> None:
    ui = context.ui
    iso_path = os.path.expanduser(prompts.ask_text("ISO file", ui=ui))
    device = choose_device(context, "Write ISO to which device?")
    if device is None:
        return
    iso_size = check_iso(iso_path, device.name)
    ui.info(f"ISO: {iso_path} ({human_size(iso_size)})")
    ui.info(f"Target: {device.device_path} ({device.size_label})")

    token = context.gate.authorize(device.name, f"write {os.path.basename(iso_path)}")
    with transfer_progress(f"Writing {os.path.basename(iso_path)}", iso_size, ui=ui) as update:
        write_iso(iso_path, device.name, token, progress_callback=update)
    ui.success(f"ISO written to {device.device_path}")

    if prompts.confirm_action("Verify the write (compare SHA-256)?", ui=ui):
        result = verify_iso(iso_path, device.name)
        ui.plain(f"    ISO: {result.iso_sha256}")
        ui.plain(f"    USB: {result.device_sha256}")
        if result.matches:
            ui.success("SHA-256 checksums match; write verified.")
        else:
            ui.error("SHA-256 checksums DO NOT match; the write may be corrupted.")
