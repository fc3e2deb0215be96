from __future__ import annotations

from usb_toolkit.actions.common import choose_device, menu_action
from usb_toolkit.app.context import AppContext
from usb_toolkit.storage.commands import tool_available
from usb_toolkit.storage.format import FILESYSTEMS, PARTITION_TABLES, format_device
from usb_toolkit.storage.validation import validate_label
from usb_toolkit.ui import prompts
from usb_toolkit.ui.progress import transfer_progress


@menu_action
def format_usb(context: AppContext) -> None:
    ui = context.ui
    device = choose_device(context, "Format which device?")
    if device is None:
        return
    context.gate.check_not_system_disk(device.name)

    table_index = prompts.select_item(
        "Partition table", ["msdos (MBR, widest compatibility)", "gpt"], ui=ui
    )
    if table_index is None:
        return
    partition_table = PARTITION_TABLES[table_index]

    names = list(FILESYSTEMS)
    labels = [
        name if tool_available(FILESYSTEMS[name].tool) else f"{name} (not installed)"
        for name in names
    ]
    fs_index = prompts.select_item("Filesystem", labels, ui=ui)
    if fs_index is None:
        return
    filesystem = names[fs_index]

    label = validate_label(prompts.ask_text("Volume label (empty for none)", default="", ui=ui), filesystem)
    full = prompts.confirm_action("Full format (zero the whole device first, slow)?", ui=ui)

    token = context.gate.authorize(device.name, f"format as {filesystem}")
    if full:
        with transfer_progress(f"Zeroing {device.device_path}", device.size_bytes, ui=ui) as update:
            partition_path = format_device(
                device.name,
                token,
                filesystem,
                partition_table=partition_table,
                label=label,
                full=True,
                progress_callback=update,
            )
    else:
        ui.info(f"Formatting {device.device_path} as {filesystem}...")
        partition_path = format_device(
            device.name, token, filesystem, partition_table=partition_table, label=label
        )
    ui.success(f"Formatted {partition_path} as {filesystem}")
