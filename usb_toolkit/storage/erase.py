"""Secure erase of USB devices.

Modes:
    quick:      zero the first and last MiB, then ``wipefs -a``
    zero:       zeros over the whole device
    random:     random data over the whole device
    multipass:  random, zeros, random

dd exits nonzero when it reaches the end of the device ("No space left on
device"). While the device node still exists that exit is reported as a
warning; if the node disappeared the device was removed and the wipe failed.
"""

from __future__ import annotations

import os
import stat
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional

from usb_toolkit.config import settings
from usb_toolkit.domain.models import ConfirmationToken
from usb_toolkit.logging import LoggerFactory, operation_context, recorder
from usb_toolkit.storage.commands import ProgressCallback, run_command, run_streaming
from usb_toolkit.storage.devices import get_size_bytes
from usb_toolkit.storage.exceptions import DeviceNotFoundError, ValidationError


log = LoggerFactory.for_storage(job_id="erase")

MIB = 1024 * 1024

PassCallback = Callable[[int, int, str], None]


class WipeMode(Enum):
    QUICK = "quick"
    ZERO = "zero"
    RANDOM = "random"
    MULTIPASS = "multipass"


PASSES = {
    WipeMode.ZERO: ("/dev/zero",),
    WipeMode.RANDOM: ("/dev/urandom",),
    WipeMode.MULTIPASS: ("/dev/urandom", "/dev/zero", "/dev/urandom"),
}


@dataclass
class WipeResult:
    device_name: str
    mode: WipeMode
    warnings: list[str] = field(default_factory=list)

    @property
    def clean(self) -> bool:
        return not self.warnings


def device_node_exists(device_path: str) -> bool:
    try:
        return stat.S_ISBLK(os.stat(device_path).st_mode)
    except OSError:
        return False


def _quick_wipe(device_name: str, result: WipeResult) -> None:
    device_path = f"/dev/{device_name}"
    run_command(
        ["dd", "if=/dev/zero", f"of={device_path}", "bs=1M", "count=1", "conv=notrunc"]
    )
    size = get_size_bytes(device_name)
    if size > 2 * MIB:
        seek = size // MIB - 1
        tail = run_command(
            [
                "dd",
                "if=/dev/zero",
                f"of={device_path}",
                "bs=1M",
                f"seek={seek}",
                "count=1",
                "conv=notrunc",
            ],
            check=False,
        )
        if tail.returncode != 0:
            result.warnings.append(f"zeroing the last MiB failed: {tail.stderr.strip()}")
    run_command(["wipefs", "-a", device_path], check=False)


def _fill(
    device_name: str,
    source: str,
    result: WipeResult,
    progress_callback: ProgressCallback | None,
) -> None:
    device_path = f"/dev/{device_name}"
    block_size = settings.get_setting("block_size", settings.DEFAULT_BLOCK_SIZE)
    completed = run_streaming(
        ["dd", f"if={source}", f"of={device_path}", f"bs={block_size}", "status=progress"],
        total_bytes=get_size_bytes(device_name),
        progress_callback=progress_callback,
        check=False,
    )
    run_command(["sync"], check=False, log_output=False)
    if completed.returncode == 0:
        return
    if not device_node_exists(device_path):
        raise DeviceNotFoundError(device_name)
    message = f"dd from {source} exited with {completed.returncode} (end of device is normal)"
    log.warning(message)
    result.warnings.append(message)


def wipe_device(
    device_name: str,
    token: ConfirmationToken,
    mode: WipeMode = WipeMode.QUICK,
    *,
    progress_callback: ProgressCallback | None = None,
    pass_callback: Optional[PassCallback] = None,
) -> WipeResult:
    """Erase ``device_name``.

    Raises:
        DeviceNotFoundError: the device disappeared during a pass
        ToolInvocationError: the quick wipe could not zero the first MiB
    """
    if not isinstance(mode, WipeMode):
        raise ValidationError("wipe mode", str(mode), "unknown")
    token.consume(device_name)
    result = WipeResult(device_name, mode)
    with operation_context("wipe", device=device_name, mode=mode.value):
        if mode is WipeMode.QUICK:
            _quick_wipe(device_name, result)
        else:
            sources = PASSES[mode]
            for number, source in enumerate(sources, start=1):
                if pass_callback:
                    pass_callback(number, len(sources), source)
                _fill(device_name, source, result, progress_callback)
        run_command(["sync"], check=False, log_output=False)
    recorder.record(
        "wipe", device=device_name, mode=mode.value, warnings=len(result.warnings)
    )
    return result
