from __future__ import annotations

from usb_toolkit.actions.common import choose_device, choose_partition, menu_action
from usb_toolkit.app.context import AppContext
from usb_toolkit.storage import health
from usb_toolkit.storage.mount import probe_filesystem
from usb_toolkit.storage.mounts import mounted_partitions
from usb_toolkit.ui import prompts, render


@menu_action
def check_bad_blocks(context: AppContext) -> None:
    ui = context.ui
    device = choose_device(context, "Scan which device for bad blocks?")
    if device is None:
        return
    busy = mounted_partitions(device.name, context.sysfs)
    if busy:
        ui.warning("Device has mounted partitions; results may be unreliable.")
        if not prompts.confirm_action("Continue anyway?", ui=ui):
            return
    ui.info(f"Running read-only bad blocks test on {device.device_path}...")
    report = health.run_badblocks(device.name)
    if report.bad_blocks == 0:
        ui.success(f"No bad blocks found on {device.device_path}")
    else:
        ui.warning(f"{report.bad_blocks} bad blocks found on {device.device_path}")


@menu_action
def show_smart(context: AppContext) -> None:
    ui = context.ui
    device = choose_device(context, "SMART data for which device?")
    if device is None:
        return
    report = health.query_smart(device.name)
    if report.status is health.SmartStatus.UNSUPPORTED:
        ui.warning("SMART not supported on this device.")
        render.output_block(report.output, ui=ui, limit=10)
        return
    if report.status is health.SmartStatus.VIA_SAT:
        ui.warning("Unknown USB bridge; queried with -d sat.")
    render.output_block(report.output, ui=ui)


@menu_action
def check_filesystem(context: AppContext) -> None:
    ui = context.ui
    partition = choose_partition(context, "Check which partition?", mounted=False)
    if partition is None:
        return
    fstype, _ = probe_filesystem(partition.name)
    ui.info(f"Running fsck on {partition.device_path} ({fstype or 'unknown'})...")
    report = health.run_fsck(partition.name, fstype)
    render.output_block(report.output, ui=ui)
    outcome = report.outcome
    if outcome is health.FsckOutcome.CLEAN:
        ui.success("Filesystem is clean.")
    elif outcome is health.FsckOutcome.CORRECTED:
        ui.warning("Filesystem errors were corrected.")
    else:
        ui.error(f"Filesystem check failed (exit code: {report.exit_code})")


def _show_speed(context: AppContext, result: health.SpeedResult) -> None:
    if result.throughput:
        context.ui.success(f"{result.direction.capitalize()} speed: {result.throughput}")
    else:
        render.output_block(result.output, ui=context.ui)


@menu_action
def read_speed(context: AppContext) -> None:
    device = choose_device(context, "Read speed test on which device?")
    if device is None:
        return
    context.ui.info(f"Reading from {device.device_path}...")
    _show_speed(context, health.read_speed_test(device.name))


@menu_action
def write_speed(context: AppContext) -> None:
    ui = context.ui
    device = choose_device(context, "Write speed test on which device?")
    if device is None:
        return
    ui.warning(f"This test WRITES to {device.device_path} and DESTROYS its data.")
    token = context.gate.authorize(device.name, "write speed test")
    _show_speed(context, health.write_speed_test(device.name, token))
    ui.warning(f"Data on {device.device_path} has been destroyed. Format it to use it again.")
