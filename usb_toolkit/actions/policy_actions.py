from __future__ import annotations

from usb_toolkit.actions.common import menu_action
from usb_toolkit.app.context import AppContext
from usb_toolkit.policy import PolicyChange, UsbPolicy
from usb_toolkit.ui import prompts


def _policy(context: AppContext) -> UsbPolicy:
    return UsbPolicy(sysfs=context.sysfs)


def _report_change(context: AppContext, change: PolicyChange) -> None:
    for item in change.changed:
        context.ui.success(item)
    for item in change.unchanged:
        context.ui.info(f"{item} (unchanged)")
    if change.pending_reboot:
        context.ui.warning("Some changes could not be applied now; they take effect after reboot.")


@menu_action
def policy_status(context: AppContext) -> None:
    ui = context.ui
    status = _policy(context).status()
    ui.heading("USB Storage Policy")
    if status.storage_blacklisted or status.uas_blacklisted:
        ui.warning("USB storage: BLOCKED (modprobe blacklist)")
    else:
        ui.success("USB storage: allowed")
    ui.plain(f"    usb-storage blacklist: {'present' if status.storage_blacklisted else 'absent'}")
    ui.plain(f"    uas blacklist:         {'present' if status.uas_blacklisted else 'absent'}")
    ui.plain(
        f"    usb_storage module:    {'loaded' if status.storage_module_loaded else 'not loaded'}"
    )
    ui.heading("USB Automount (udisks2)")
    ui.plain(f"    sandbox override:      {'hardened' if status.automount_hardened else 'normal'}")
    ui.plain(f"    udisks2 service:       {'active' if status.udisks2_active else 'inactive'}")
    ui.heading("USB Buses")
    if not status.buses:
        ui.info("No USB buses found.")
    for bus in status.buses:
        state = "BLOCKED (new devices)" if bus.blocked else "OPEN"
        ui.plain(f"    {bus.bus}: authorized_default={bus.authorized_default} {state}")


@menu_action
def policy_audit(context: AppContext) -> None:
    ui = context.ui
    audit = _policy(context).audit()

    ui.heading("Connected USB Devices")
    if not audit.devices:
        ui.info("No USB devices found.")
    for device in audit.devices:
        ui.plain(f"    {device.vid_pid}  {device.manufacturer} - {device.product}")
        ui.plain(
            f"      Device: {device.name} | Bus: {device.busnum} | Dev: {device.devnum}"
            f" | Class: {device.device_class}"
        )
        ui.plain(f"      Serial: {device.serial}")
        ui.plain(f"      Status: {'BLOCKED' if device.blocked else 'ALLOWED'}")

    ui.heading("USB Bus Authorization Policy")
    for bus in audit.buses:
        state = "BLOCKED" if bus.blocked else "OPEN"
        ui.plain(
            f"    {bus.bus}: authorized_default={bus.authorized_default} ({state})"
            f" | Speed: {bus.speed} Mbps"
        )

    ui.heading("USB Kernel Modules")
    for module, loaded in audit.modules.items():
        ui.plain(f"    {'[LOADED]    ' if loaded else '[NOT LOADED]'} {module}")

    ui.heading("USB-related Blacklist Files")
    for path, content in audit.blacklist_files.items():
        ui.plain(f"    [EXISTS]  {path}: {content}")
    for path in audit.other_files:
        ui.plain(f"    [OTHER]   {path}")
    if not audit.blacklist_files and not audit.other_files:
        ui.info("No USB blacklist files found.")


@menu_action
def block_storage(context: AppContext) -> None:
    if prompts.confirm_action("Block USB flash drives and disks?", ui=context.ui):
        _report_change(context, _policy(context).block_storage())


@menu_action
def allow_storage(context: AppContext) -> None:
    if prompts.confirm_action("Allow USB flash drives and disks?", ui=context.ui):
        _report_change(context, _policy(context).allow_storage())


@menu_action
def block_new_devices(context: AppContext) -> None:
    ui = context.ui
    ui.warning("New USB devices (including keyboards) will not be enabled automatically.")
    if prompts.confirm_action("Set authorized_default=0 on every bus?", ui=ui):
        _report_change(context, _policy(context).set_authorized_default(False))


@menu_action
def allow_new_devices(context: AppContext) -> None:
    if prompts.confirm_action("Set authorized_default=1 on every bus?", ui=context.ui):
        _report_change(context, _policy(context).set_authorized_default(True))


@menu_action
def authorize_device(context: AppContext) -> None:
    ui = context.ui
    policy = _policy(context)
    blocked = [device for device in policy.usb_devices() if device.blocked]
    if not blocked:
        ui.info("No blocked USB devices found.")
        return
    labels = [
        f"{device.name}  {device.vid_pid}  {device.manufacturer} - {device.product}"
        for device in blocked
    ]
    index = prompts.select_item("Authorize which device?", labels, ui=ui)
    if index is None:
        return
    _report_change(context, policy.authorize_device(blocked[index].name))


@menu_action
def harden_automount(context: AppContext) -> None:
    ui = context.ui
    ui.warning("Automounted USB drives will show up but cannot be opened (permission denied).")
    if prompts.confirm_action("Sandbox the udisks2 service?", ui=ui):
        _report_change(context, _policy(context).harden_automount())


@menu_action
def restore_automount(context: AppContext) -> None:
    if prompts.confirm_action("Restore normal udisks2 automount?", ui=context.ui):
        _report_change(context, _policy(context).restore_automount())
        context.ui.info("Remove and reinsert the flash drive.")


@menu_action
def lockdown(context: AppContext) -> None:
    ui = context.ui
    ui.warning("Lockdown blocks USB storage and sandboxes the udisks2 service.")
    if prompts.confirm_action("Proceed with full lockdown?", ui=ui):
        _report_change(context, _policy(context).lockdown())


@menu_action
def unlock(context: AppContext) -> None:
    ui = context.ui
    if prompts.confirm_action(
        "Allow USB storage, restore automount and open every USB bus?", ui=ui
    ):
        _report_change(context, _policy(context).unlock())
        ui.info("Remove and reinsert the flash drive.")
