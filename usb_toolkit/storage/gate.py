"""Authorization of destructive operations.

Every operation that writes to a raw device (format, wipe, ISO write, image
restore, clone target, write speed test) asks the gate first:

1. the device is resolved again and classified; a system disk is refused;
2. every partition is unmounted and the mount table re-read;
3. the device is read again and the operator types its name, matched exactly.

Only then is a single-use :class:`ConfirmationToken` issued, bound to that
device. Storage functions consume the token before invoking any write tool.
"""

from __future__ import annotations

from typing import Callable

from usb_toolkit.domain.models import BlockDevice, ConfirmationToken, UnmountResult
from usb_toolkit.logging import EventRecorder, LoggerFactory, recorder as default_recorder
from usb_toolkit.storage.classifier import SystemDiskClassifier
from usb_toolkit.storage.devices import get_block_device
from usb_toolkit.storage.exceptions import ConfirmationMismatchError, SystemDiskError
from usb_toolkit.storage.sysfs import SysfsReader
from usb_toolkit.storage.unmount import unmount_all


log = LoggerFactory.for_gate()

PromptFn = Callable[[BlockDevice, str], str]
Unmounter = Callable[..., UnmountResult]


def _default_prompt(device: BlockDevice, operation: str) -> str:
    from usb_toolkit.ui.prompts import ask_device_name

    return ask_device_name(device, operation)


def _default_notify(message: str) -> None:
    from usb_toolkit.ui.console import get_ui

    get_ui().warning(message)


class DestructiveGate:
    def __init__(
        self,
        sysfs: SysfsReader | None = None,
        classifier: SystemDiskClassifier | None = None,
        unmounter: Unmounter | None = None,
        prompt: PromptFn | None = None,
        notify: Callable[[str], None] | None = None,
        recorder: EventRecorder | None = None,
    ):
        self.sysfs = sysfs or SysfsReader()
        self.classifier = classifier or SystemDiskClassifier(self.sysfs)
        self.unmounter = unmounter or unmount_all
        self.prompt = prompt or _default_prompt
        self.notify = notify or _default_notify
        self.recorder = recorder or default_recorder

    def check_not_system_disk(self, device_name: str) -> BlockDevice:
        """Resolve ``device_name`` and refuse system disks."""
        device = get_block_device(device_name, self.sysfs)
        verdict = self.classifier.classify(device_name)
        if verdict.is_system_disk:
            self.recorder.record(
                "gate_refused",
                device=device_name,
                reason=verdict.reason,
                backing_disks=sorted(verdict.backing_disks),
            )
            raise SystemDiskError(device_name, verdict.reason)
        return device

    def authorize(
        self, device_name: str, operation: str, *, force_unmount: bool = False
    ) -> ConfirmationToken:
        log.info(f"Authorizing {operation} on /dev/{device_name}")
        self.check_not_system_disk(device_name)

        result = self.unmounter(device_name, force=force_unmount, sysfs=self.sysfs)
        if not result.success:
            if not force_unmount:
                self.recorder.record(
                    "gate_unmount_failed",
                    device=device_name,
                    operation=operation,
                    failed=result.failed,
                    remounted=result.remounted,
                )
                result.raise_for_status()
            message = (
                f"/dev/{device_name} still has active mounts "
                f"({', '.join(result.failed + result.remounted)}); continuing as forced"
            )
            log.warning(message)
            self.notify(message)

        device = get_block_device(device_name, self.sysfs)
        typed = self.prompt(device, operation)
        if typed != device_name:
            log.info(f"Confirmation mismatch for /dev/{device_name}: {typed!r}")
            self.recorder.record(
                "gate_cancelled", device=device_name, operation=operation
            )
            raise ConfirmationMismatchError(device_name, typed)

        self.recorder.record("gate_authorized", device=device_name, operation=operation)
        return ConfirmationToken(device_name=device_name, operation=operation)
