"""Menu hierarchy definitions.

Edit this module to adjust menu labels or structure.
"""

from __future__ import annotations

from usb_toolkit.actions import (
    detect_actions,
    erase_actions,
    format_actions,
    health_actions,
    image_actions,
    iso_actions,
    mount_actions,
    policy_actions,
    quick_actions,
)
from usb_toolkit.menu.model import MenuItem, MenuScreen


def menu_entry(
    label: str,
    *,
    submenu: MenuScreen | None = None,
    action=None,
) -> MenuItem:
    if (submenu is None) == (action is None):
        raise ValueError("Menu entries must define exactly one of submenu or action.")
    return MenuItem(label=label, submenu=submenu, action=action)


def _collect_screens(root: MenuScreen) -> dict[str, MenuScreen]:
    screens: dict[str, MenuScreen] = {}

    def walk(screen: MenuScreen) -> None:
        if screen.screen_id in screens:
            return
        screens[screen.screen_id] = screen
        for item in screen.items:
            if item.submenu:
                walk(item.submenu)

    walk(root)
    return screens


HEALTH_MENU = MenuScreen(
    screen_id="health",
    title="Health Check",
    items=[
        menu_entry("Bad blocks scan (read-only)", action=health_actions.check_bad_blocks),
        menu_entry("SMART data", action=health_actions.show_smart),
        menu_entry("Filesystem check (fsck)", action=health_actions.check_filesystem),
        menu_entry("Read speed test", action=health_actions.read_speed),
        menu_entry("Write speed test (DESTRUCTIVE)", action=health_actions.write_speed),
    ],
)

IMAGES_MENU = MenuScreen(
    screen_id="images",
    title="Images & Cloning",
    items=[
        menu_entry("Backup USB to image", action=image_actions.backup_usb),
        menu_entry("Restore image to USB", action=image_actions.restore_usb),
        menu_entry("Clone USB to USB", action=image_actions.clone_usb),
        menu_entry("Write ISO to USB", action=iso_actions.write_iso_usb),
    ],
)

POLICY_MENU = MenuScreen(
    screen_id="policy",
    title="USB Policy",
    items=[
        menu_entry("Show status", action=policy_actions.policy_status),
        menu_entry("Block USB storage", action=policy_actions.block_storage),
        menu_entry("Allow USB storage", action=policy_actions.allow_storage),
        menu_entry("Block new USB devices", action=policy_actions.block_new_devices),
        menu_entry("Allow new USB devices", action=policy_actions.allow_new_devices),
        menu_entry("Authorize a blocked device", action=policy_actions.authorize_device),
        menu_entry("Harden automount (udisks2)", action=policy_actions.harden_automount),
        menu_entry("Restore automount (udisks2)", action=policy_actions.restore_automount),
        menu_entry("Audit USB devices", action=policy_actions.policy_audit),
        menu_entry("Lockdown (storage + automount)", action=policy_actions.lockdown),
        menu_entry("Unlock all", action=policy_actions.unlock),
    ],
)

MAIN_MENU = MenuScreen(
    screen_id="main",
    title="USB Toolkit",
    items=[
        menu_entry("Detect USB devices", action=detect_actions.detect_devices),
        menu_entry("Mount USB partition", action=mount_actions.mount_usb),
        menu_entry("Unmount USB partition", action=mount_actions.unmount_usb),
        menu_entry("Format USB device", action=format_actions.format_usb),
        menu_entry("Health check", submenu=HEALTH_MENU),
        menu_entry("Images & cloning", submenu=IMAGES_MENU),
        menu_entry("Secure wipe", action=erase_actions.secure_wipe),
        menu_entry("Safe eject", action=quick_actions.eject_usb),
        menu_entry("Device info", action=quick_actions.device_info),
        menu_entry("USB policy", submenu=POLICY_MENU),
    ],
)

SCREENS = _collect_screens(MAIN_MENU)
