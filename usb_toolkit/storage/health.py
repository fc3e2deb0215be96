"""Device health checks: bad blocks, SMART, fsck and speed tests.

Everything here is read-only except :func:`write_speed_test`, which writes
zeros to the start of the device and therefore needs a confirmation token.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from usb_toolkit.config import settings
from usb_toolkit.domain.models import ConfirmationToken
from usb_toolkit.logging import LoggerFactory, operation_context, recorder
from usb_toolkit.storage.commands import (
    parse_block_size,
    parse_throughput,
    run_command,
    tool_available,
)
from usb_toolkit.storage.devices import get_size_bytes
from usb_toolkit.storage.exceptions import MissingToolError, ValidationError


log = LoggerFactory.for_storage(job_id="health")

DROP_CACHES_PATH = "/proc/sys/vm/drop_caches"

LineCallback = Callable[[str], None]


# ==============================================================================
# Bad blocks
# ==============================================================================


@dataclass(frozen=True)
class BadBlocksReport:
    device_name: str
    bad_blocks: int
    output: str


def count_bad_blocks(output: str) -> int:
    """badblocks lists one bad block number per line."""
    return sum(1 for line in output.splitlines() if re.match(r"^\d+", line))


def run_badblocks(device_name: str) -> BadBlocksReport:
    """Read-only (non-destructive) bad block scan."""
    if not tool_available("badblocks"):
        raise MissingToolError(["badblocks (install e2fsprogs)"])
    with operation_context("badblocks", device=device_name):
        result = run_command(["badblocks", "-sv", f"/dev/{device_name}"], check=False)
    # -v reports the found blocks on stdout and the summary on stderr
    output = (result.stdout or "") + (result.stderr or "")
    report = BadBlocksReport(device_name, count_bad_blocks(result.stdout or ""), output)
    recorder.record("badblocks", device=device_name, bad_blocks=report.bad_blocks)
    return report


# ==============================================================================
# SMART
# ==============================================================================


class SmartStatus(Enum):
    AVAILABLE = "available"
    VIA_SAT = "available via -d sat"
    UNSUPPORTED = "unsupported"


@dataclass(frozen=True)
class SmartReport:
    device_name: str
    status: SmartStatus
    output: str


def query_smart(device_name: str) -> SmartReport:
    """``smartctl -a``; retries with ``-d sat`` behind unknown USB bridges."""
    if not tool_available("smartctl"):
        raise MissingToolError(["smartctl (install smartmontools)"])
    device_path = f"/dev/{device_name}"
    result = run_command(["smartctl", "-a", device_path], check=False, log_output=False)
    output = (result.stdout or "") + (result.stderr or "")
    if "SMART support is: Available" in output:
        return SmartReport(device_name, SmartStatus.AVAILABLE, output)
    if "Unknown USB bridge" in output:
        log.info(f"Retrying SMART query on {device_path} with -d sat")
        retry = run_command(
            ["smartctl", "-a", "-d", "sat", device_path], check=False, log_output=False
        )
        return SmartReport(
            device_name, SmartStatus.VIA_SAT, (retry.stdout or "") + (retry.stderr or "")
        )
    return SmartReport(device_name, SmartStatus.UNSUPPORTED, output)


# ==============================================================================
# fsck
# ==============================================================================


FSCK_COMMANDS: dict[str, list[str]] = {
    "ext2": ["e2fsck", "-fvy"],
    "ext3": ["e2fsck", "-fvy"],
    "ext4": ["e2fsck", "-fvy"],
    "vfat": ["fsck.vfat", "-vy"],
    "ntfs": ["ntfsfix"],
    "exfat": ["fsck.exfat"],
    "btrfs": ["btrfs", "check"],
    "f2fs": ["fsck.f2fs"],
    "xfs": ["xfs_repair"],
}


class FsckOutcome(Enum):
    CLEAN = "clean"
    CORRECTED = "errors corrected"
    FAILED = "failed"


@dataclass(frozen=True)
class FsckReport:
    partition: str
    fstype: str
    exit_code: int
    output: str

    @property
    def outcome(self) -> FsckOutcome:
        return classify_fsck_exit(self.exit_code)


def classify_fsck_exit(exit_code: int) -> FsckOutcome:
    if exit_code == 0:
        return FsckOutcome.CLEAN
    if exit_code == 1:
        return FsckOutcome.CORRECTED
    return FsckOutcome.FAILED


def fsck_command(fstype: str, partition: str) -> list[str]:
    base = FSCK_COMMANDS.get(fstype)
    if base is None:
        raise ValidationError("filesystem", fstype or "unknown", "no fsck tool known")
    if not tool_available(base[0]):
        raise MissingToolError([base[0]])
    return base + [f"/dev/{partition}"]


def run_fsck(partition: str, fstype: str) -> FsckReport:
    """Check (and repair) an unmounted partition."""
    command = fsck_command(fstype, partition)
    with operation_context("fsck", partition=partition, fstype=fstype):
        result = run_command(command, check=False)
    report = FsckReport(
        partition, fstype, result.returncode, (result.stdout or "") + (result.stderr or "")
    )
    recorder.record(
        "fsck", partition=partition, fstype=fstype, exit_code=report.exit_code
    )
    return report


# ==============================================================================
# Speed tests
# ==============================================================================


@dataclass(frozen=True)
class SpeedResult:
    device_name: str
    direction: str
    blocks: int
    block_size: int
    throughput: Optional[str]
    output: str

    @property
    def bytes_tested(self) -> int:
        return self.blocks * self.block_size


def speed_test_blocks(size_bytes: int, block_size: int, wanted: int) -> int:
    """``wanted`` blocks, fewer for small devices, never less than one."""
    if size_bytes < wanted * block_size:
        return max(1, size_bytes // block_size)
    return wanted


def drop_page_cache() -> None:
    run_command(["sync"], check=False, log_output=False)
    try:
        with open(DROP_CACHES_PATH, "w", encoding="ascii") as handle:
            handle.write("3\n")
    except OSError as error:
        log.debug(f"Could not drop page cache: {error}")


def _speed_parameters(device_name: str) -> tuple[str, int, int]:
    block_size_text = settings.get_setting("block_size", settings.DEFAULT_BLOCK_SIZE)
    block_size = parse_block_size(block_size_text)
    blocks = speed_test_blocks(
        get_size_bytes(device_name),
        block_size,
        settings.get_int("speed_test_blocks", settings.DEFAULT_SPEED_TEST_BLOCKS),
    )
    return block_size_text, block_size, blocks


def read_speed_test(device_name: str) -> SpeedResult:
    block_size_text, block_size, blocks = _speed_parameters(device_name)
    drop_page_cache()
    result = run_command(
        [
            "dd",
            f"if=/dev/{device_name}",
            "of=/dev/null",
            f"bs={block_size_text}",
            f"count={blocks}",
        ],
        check=False,
    )
    output = result.stderr or ""
    speed = SpeedResult(device_name, "read", blocks, block_size, parse_throughput(output), output)
    recorder.record("read_speed_test", device=device_name, throughput=speed.throughput)
    return speed


def write_speed_test(device_name: str, token: ConfirmationToken) -> SpeedResult:
    """Destroys the data on ``device_name``."""
    token.consume(device_name)
    block_size_text, block_size, blocks = _speed_parameters(device_name)
    drop_page_cache()
    with operation_context("write_speed_test", device=device_name):
        result = run_command(
            [
                "dd",
                "if=/dev/zero",
                f"of=/dev/{device_name}",
                f"bs={block_size_text}",
                f"count={blocks}",
                "conv=fdatasync",
            ],
            check=False,
        )
    output = result.stderr or ""
    speed = SpeedResult(device_name, "write", blocks, block_size, parse_throughput(output), output)
    recorder.record("write_speed_test", device=device_name, throughput=speed.throughput)
    return speed
