import argparse
import os
import sys
from pathlib import Path

from usb_toolkit.__version__ import __version__
from usb_toolkit.app.cleanup import CleanupRegistry
from usb_toolkit.app.context import AppContext
from usb_toolkit.config import settings
from usb_toolkit.logging import LoggerFactory, setup_logging
from usb_toolkit.menu import MenuNavigator
from usb_toolkit.menu import definitions
from usb_toolkit.storage.commands import OPTIONAL_TOOLS, REQUIRED_TOOLS, missing_tools, require_tools
from usb_toolkit.storage.device_lock import InstanceLock
from usb_toolkit.storage.devices import list_usb_devices
from usb_toolkit.storage.exceptions import LockHeldError, MissingToolError, PrivilegeError
from usb_toolkit.storage.sysfs import SysfsReader
from usb_toolkit.ui import prompts, render
from usb_toolkit.ui.console import Theme, configure_ui


log = LoggerFactory.for_system()


def build_parser():
    parser = argparse.ArgumentParser(
        prog="usb-toolkit",
        description="USB storage toolkit: device operations and USB storage policy",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "-l", "--list", action="store_true", help="List USB storage devices and exit"
    )
    parser.add_argument("-d", "--debug", action="store_true", help="Enable verbose debug output")
    parser.add_argument("--trace", action="store_true", help="Also log raw sysfs reads")
    return parser


def require_root():
    if os.geteuid() != 0:
        raise PrivilegeError("This tool must be run as root (try: sudo usb-toolkit)")


def run_menu(context, navigator=None):
    """Numbered-menu loop; returns when the operator leaves the main menu."""
    navigator = navigator or MenuNavigator(definitions.SCREENS, definitions.MAIN_MENU.screen_id)
    ui = context.ui
    while True:
        screen = navigator.current_screen()
        items = navigator.current_items()
        index = prompts.select_item(
            screen.title,
            [item.label for item in items],
            ui=ui,
            back_label="Exit" if navigator.at_root() else "Back",
        )
        if index is None:
            if not navigator.back():
                return
            continue
        action = navigator.activate(index)
        if action is None:
            continue
        log.debug(f"Menu {screen.screen_id}: {items[index].label}")
        action(context)
        prompts.pause(ui)


def main(argv=None):
    args = build_parser().parse_args(argv)
    ui = configure_ui(Theme.detect())

    try:
        require_root()
    except PrivilegeError as error:
        ui.error(str(error))
        return 1

    setup_logging(
        debug=args.debug,
        trace=args.trace,
        log_dir=Path(settings.get_setting("log_dir", settings.DEFAULT_LOG_DIR)),
    )
    sysfs = SysfsReader(settings.get_setting("sysfs_root", "/sys"))

    if args.list:
        for line in render.format_device_list(list_usb_devices(sysfs)):
            ui.plain(line)
        return 0

    try:
        require_tools(REQUIRED_TOOLS)
    except MissingToolError as error:
        ui.error(str(error))
        return 1
    optional = missing_tools(OPTIONAL_TOOLS)
    if optional:
        ui.info(f"Optional tools not installed (some features disabled): {' '.join(optional)}")

    lock = InstanceLock()
    try:
        lock.acquire()
    except LockHeldError as error:
        ui.error(str(error))
        return 1

    log.info(f"usb-toolkit {__version__} started (pid {os.getpid()})")
    # The registry releases the lock on exit and on SIGINT/SIGTERM.
    with CleanupRegistry(lock) as cleanup:
        context = AppContext(ui=ui, sysfs=sysfs, cleanup=cleanup, debug=args.debug)
        run_menu(context)
    log.info("usb-toolkit exited")
    return 0


if __name__ == "__main__":
    sys.exit(main())
