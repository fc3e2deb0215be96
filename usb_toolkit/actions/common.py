"""Shared plumbing for menu actions."""

from __future__ import annotations

import functools
from typing import Callable

from usb_toolkit.app.context import AppContext
from usb_toolkit.domain.models import BlockDevice, Partition
from usb_toolkit.logging import LoggerFactory
from usb_toolkit.storage.devices import list_usb_devices
from usb_toolkit.storage.exceptions import ConfirmationMismatchError, StorageError
from usb_toolkit.storage.mounts import split_by_mount_state
from usb_toolkit.ui import prompts


log = LoggerFactory.for_menu()

Action = Callable[[AppContext], None]


def menu_action(func: Action) -> Action:
    """Report StorageError and return to the menu instead of exiting."""

    @functools.wraps(func)
    def wrapper(context: AppContext) -> None:
        log.debug(f"Action {func.__name__}")
        try:
            func(context)
        except ConfirmationMismatchError:
            context.ui.warning("Cancelled.")
        except StorageError as error:
            log.error(f"{func.__name__}: {error}")
            context.ui.error(str(error))

    return wrapper


def choose_device(
    context: AppContext, title: str, exclude: tuple[str, ...] = ()
) -> BlockDevice | None:
    devices = [d for d in list_usb_devices(context.sysfs) if d.name not in exclude]
    if not devices:
        context.ui.warning("No USB storage devices found.")
        return None
    return prompts.select_device(devices, title, ui=context.ui)


def choose_partition(
    context: AppContext, title: str, mounted: bool
) -> Partition | None:
    names = [d.name for d in list_usb_devices(context.sysfs)]
    mounted_parts, unmounted_parts = split_by_mount_state(names, context.sysfs)
    candidates = mounted_parts if mounted else unmounted_parts
    if not candidates:
        kind = "mounted" if mounted else "unmounted"
        context.ui.warning(f"No {kind} USB partitions found.")
        return None
    labels = [
        f"{p.device_path}  {', '.join(p.mount_points)}" if p.mount_points else p.device_path
        for p in candidates
    ]
    index = prompts.select_item(title, labels, ui=context.ui)
    return None if index is None else candidates[index]
