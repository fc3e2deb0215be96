from __future__ import annotations

from usb_toolkit.actions.common import choose_partition, menu_action
from usb_toolkit.app.context import AppContext
from usb_toolkit.storage.mount import (
    MountMode,
    UnmountMode,
    default_mount_point,
    mount_partition,
    probe_filesystem,
    processes_using,
    unmount_partition,
)
from usb_toolkit.storage.users import invoking_user
from usb_toolkit.ui import prompts, render

MOUNT_MODES = [
    ("Read-write (default)", MountMode.READ_WRITE),
    ("Read-only", MountMode.READ_ONLY),
    ("Read-write + noexec + sync", MountMode.NOEXEC_SYNC),
    ("Custom options", MountMode.CUSTOM),
]

UNMOUNT_MODES = [
    ("Safe unmount (sync first)", UnmountMode.SAFE),
    ("Force unmount (-f)", UnmountMode.FORCE),
    ("Lazy unmount (-l)", UnmountMode.LAZY),
]


@menu_action
def mount_usb(context: AppContext) -> None:
    ui = context.ui
    partition = choose_partition(context, "Unmounted USB partitions", mounted=False)
    if partition is None:
        return
    fstype, label = probe_filesystem(partition.name)
    render.key_values(
        [
            ("Device", partition.device_path),
            ("Filesystem", fstype or "unknown"),
            ("Label", label or partition.name),
        ],
        ui=ui,
    )

    index = prompts.select_item("Mount mode", [name for name, _ in MOUNT_MODES], ui=ui)
    if index is None:
        return
    mode = MOUNT_MODES[index][1]
    custom_options = ""
    if mode is MountMode.CUSTOM:
        custom_options = prompts.ask_text("Mount options (e.g. ro,noexec,sync)", ui=ui)

    default = default_mount_point(partition.name, label, invoking_user())
    requested = prompts.ask_text("Mount point", default=default, ui=ui)
    mount_point = mount_partition(
        partition.name,
        mode,
        custom_options=custom_options,
        mount_point=None if requested == default else requested,
        cleanup=context.cleanup,
    )
    # Mounts made from the menu are meant to outlive the session.
    context.cleanup.discard_mount(mount_point)
    ui.success(f"Mounted {partition.device_path} at {mount_point}")


@menu_action
def unmount_usb(context: AppContext) -> None:
    ui = context.ui
    partition = choose_partition(context, "Mounted USB partitions", mounted=True)
    if partition is None:
        return
    mount_point = partition.mount_points[0]

    while True:
        labels = [name for name, _ in UNMOUNT_MODES] + ["Show processes using the mount"]
        index = prompts.select_item(f"Unmount {partition.device_path}", labels, ui=ui)
        if index is None:
            return
        if index < len(UNMOUNT_MODES):
            break
        holders = processes_using(mount_point)
        if holders:
            render.output_block("\n".join(holders), ui=ui)
        else:
            ui.info("No processes found using this mount.")

    mode = UNMOUNT_MODES[index][1]
    for point in partition.mount_points:
        unmount_partition(partition.name, point, mode, cleanup=context.cleanup)
    ui.success(f"Unmounted {partition.device_path}")
