from __future__ import annotations

import os
import time

from usb_toolkit.actions.common import choose_device, menu_action
from usb_toolkit.app.context import AppContext
from usb_toolkit.storage.commands import tool_available
from usb_toolkit.storage.devices import list_usb_devices
from usb_toolkit.storage.image import (
    Compression,
    backup_to_image,
    clone_device,
    restore_from_image,
)
from usb_toolkit.storage.users import invoking_user
from usb_toolkit.storage.validation import validate_devices_different
from usb_toolkit.ui import prompts
from usb_toolkit.ui.progress import transfer_progress


def default_image_path(device_name: str, compression: Compression) -> str:
    stamp = time.strftime("%Y%m%d-%H%M%S")
    return os.path.join(
        invoking_user().home, f"usb-backup-{device_name}-{stamp}{compression.suffix}"
    )


@menu_action
def backup_usb(context: AppContext) -> None:
    ui = context.ui
    device = choose_device(context, "Back up which device?")
    if device is None:
        return
    choices = [c for c in Compression if c.tool is None or tool_available(c.tool)]
    index = prompts.select_item(
        "Compression", [f"{c.label} ({c.suffix})" for c in choices], ui=ui
    )
    if index is None:
        return
    compression = choices[index]
    path = os.path.expanduser(
        prompts.ask_text(
            "Output file", default=default_image_path(device.name, compression), ui=ui
        )
    )
    if not prompts.confirm_action(f"Back up {device.device_path} to {path}?", ui=ui):
        return
    with transfer_progress(f"Backing up {device.device_path}", device.size_bytes, ui=ui) as update:
        result = backup_to_image(
            device.name,
            path,
            compression,
            cleanup=context.cleanup,
            progress_callback=update,
        )
    ui.success(f"Backup complete: {result.path}")
    ui.info(f"SHA-256: {result.sha256} ({result.checksum_path})")


@menu_action
def restore_usb(context: AppContext) -> None:
    ui = context.ui
    path = os.path.expanduser(prompts.ask_text("Image file (.img, .img.gz, .img.zst)", ui=ui))
    device = choose_device(context, "Restore to which device?")
    if device is None:
        return
    token = context.gate.authorize(device.name, f"restore {os.path.basename(path)}")
    with transfer_progress(f"Restoring to {device.device_path}", None, ui=ui) as update:
        restore_from_image(path, device.name, token, progress_callback=update)
    ui.success(f"Restored {path} to {device.device_path}")


@menu_action
def clone_usb(context: AppContext) -> None:
    ui = context.ui
    if len(list_usb_devices(context.sysfs)) < 2:
        ui.warning("Cloning needs two USB devices.")
        return
    source = choose_device(context, "Clone from (source)")
    if source is None:
        return
    target = choose_device(context, "Clone to (target)", exclude=(source.name,))
    if target is None:
        return
    validate_devices_different(source.name, target.name)
    ui.info(f"Clone: {source.device_path} ({source.size_label}) -> "
            f"{target.device_path} ({target.size_label})")
    token = context.gate.authorize(target.name, f"clone from {source.device_path}")
    with transfer_progress(f"Cloning to {target.device_path}", source.size_bytes, ui=ui) as update:
        clone_device(source.name, target.name, token, progress_callback=update)
    ui.success(f"Clone complete: {source.device_path} -> {target.device_path}")
