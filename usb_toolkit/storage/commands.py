"""Command execution utilities with progress tracking.

All external tools are run with argument vectors; nothing goes through a
shell. The exit code is the success signal and stderr is kept for the
operator.
"""

from __future__ import annotations

import re
import shutil
import subprocess
from typing import IO, Callable, Iterable, Optional, Sequence

from usb_toolkit.logging import LoggerFactory
from usb_toolkit.storage.exceptions import MissingToolError, ToolInvocationError


log = LoggerFactory.for_storage(job_id="commands")

ProgressCallback = Callable[[int, Optional[int]], None]

REQUIRED_TOOLS = ("lsblk", "blkid", "mount", "umount", "dd", "parted", "wipefs")
OPTIONAL_TOOLS = (
    "pv",
    "smartctl",
    "badblocks",
    "ntfs-3g",
    "mkfs.exfat",
    "mkfs.btrfs",
    "mkfs.f2fs",
    "mkfs.xfs",
    "zstd",
)

_BYTES_RE = re.compile(r"^(\d+)\s+bytes")
THROUGHPUT_RE = re.compile(r"[0-9.,]+ [MGKT]?B/s")


def tool_available(name: str) -> bool:
    return shutil.which(name) is not None


def missing_tools(names: Iterable[str]) -> list[str]:
    return [name for name in names if not tool_available(name)]


def require_tools(names: Iterable[str]) -> None:
    missing = missing_tools(names)
    if missing:
        raise MissingToolError(missing)


def run_command(command, check=True, log_output=True, log_command=True, input_text=None):
    if log_command:
        log.debug(f"Running command: {' '.join(command)}")
    try:
        result = subprocess.run(
            command, check=check, text=True, capture_output=True, input=input_text
        )
    except subprocess.CalledProcessError as error:
        log.debug(f"Command failed: {' '.join(command)}")
        if error.stdout:
            log.debug(f"stdout: {error.stdout.strip()}")
        if error.stderr:
            log.debug(f"stderr: {error.stderr.strip()}")
        raise ToolInvocationError(command, error.returncode, error.stderr) from error
    except FileNotFoundError as error:
        raise MissingToolError([command[0]]) from error
    if result.stdout and (log_output or result.returncode != 0):
        log.debug(f"stdout: {result.stdout.strip()}")
    if result.stderr and (log_output or result.returncode != 0):
        log.debug(f"stderr: {result.stderr.strip()}")
    if log_command:
        log.debug(f"Command completed with return code {result.returncode}")
    return result


def run_checked_command(command, input_text=None) -> str:
    """Run a command and raise ToolInvocationError if it fails."""
    result = run_command(command, check=False, input_text=input_text)
    if result.returncode != 0:
        stderr = result.stderr.strip()
        stdout = result.stdout.strip()
        raise ToolInvocationError(command, result.returncode, stderr or stdout)
    return result.stdout


def parse_bytes_copied(line: str) -> int | None:
    """Extract the byte count from a ``dd status=progress`` line."""
    match = _BYTES_RE.match(line.strip())
    if match:
        return int(match.group(1))
    return None


def parse_throughput(output: str) -> str | None:
    """Return the last throughput figure (e.g. ``34.5 MB/s``) in dd output."""
    matches = THROUGHPUT_RE.findall(output or "")
    return matches[-1] if matches else None


def _drain_progress(
    stream: IO[str],
    total_bytes: int | None,
    progress_callback: ProgressCallback | None,
) -> str:
    collected: list[str] = []
    for line in stream:
        collected.append(line)
        copied = parse_bytes_copied(line)
        if copied is not None and progress_callback:
            progress_callback(copied, total_bytes)
    return "".join(collected)


def run_streaming(
    command: Sequence[str],
    *,
    total_bytes: int | None = None,
    progress_callback: ProgressCallback | None = None,
    stdout_target: IO | None = None,
    check: bool = True,
) -> subprocess.CompletedProcess:
    """Run a dd-style command, feeding byte counts from stderr to a callback.

    Text mode turns the carriage returns of ``status=progress`` into line
    breaks, so each refresh arrives as a separate line.
    """
    log.debug(f"Starting command: {' '.join(command)}")
    try:
        process = subprocess.Popen(
            list(command),
            stdout=stdout_target or subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            errors="replace",
        )
    except FileNotFoundError as error:
        raise MissingToolError([command[0]]) from error
    stderr = _drain_progress(process.stderr, total_bytes, progress_callback)
    stdout = ""
    if process.stdout is not None:
        stdout = process.stdout.read()
    returncode = process.wait()
    log.debug(f"Command completed with return code {returncode}")
    if check and returncode != 0:
        raise ToolInvocationError(command, returncode, _last_line(stderr))
    return subprocess.CompletedProcess(list(command), returncode, stdout, stderr)


def run_pipeline(
    producer: Sequence[str],
    consumer: Sequence[str],
    *,
    stdout_target: IO | None = None,
    stdin_source: IO | None = None,
    total_bytes: int | None = None,
    progress_callback: ProgressCallback | None = None,
    progress_from: str = "producer",
) -> str:
    """Run ``producer | consumer`` without a shell.

    Progress is read from the stderr of whichever side runs dd
    (``progress_from`` is "producer" or "consumer"). Returns that stderr.
    """
    log.debug(f"Running pipeline: {' '.join(producer)} | {' '.join(consumer)}")
    first = subprocess.Popen(
        list(producer),
        stdin=stdin_source,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        text=True,
        errors="replace",
    )
    second = subprocess.Popen(
        list(consumer),
        stdin=first.stdout,
        stdout=stdout_target or subprocess.DEVNULL,
        stderr=subprocess.PIPE,
        text=True,
        errors="replace",
    )
    # Let the producer see SIGPIPE if the consumer exits early.
    first.stdout.close()
    if progress_from == "producer":
        progress_output = _drain_progress(first.stderr, total_bytes, progress_callback)
        producer_stderr = progress_output
        consumer_stderr = second.stderr.read()
    else:
        progress_output = _drain_progress(second.stderr, total_bytes, progress_callback)
        producer_stderr = first.stderr.read()
        consumer_stderr = progress_output
    first_rc = first.wait()
    second_rc = second.wait()
    if first_rc != 0:
        raise ToolInvocationError(producer, first_rc, _last_line(producer_stderr))
    if second_rc != 0:
        raise ToolInvocationError(consumer, second_rc, _last_line(consumer_stderr))
    return progress_output


def _last_line(output: str) -> str:
    lines = [line for line in (output or "").strip().splitlines() if line.strip()]
    return lines[-1] if lines else ""


_SIZE_SUFFIXES = {"": 1, "K": 1024, "M": 1024**2, "G": 1024**3}


def parse_block_size(value: str) -> int:
    """``"4M"`` -> 4194304; the dd ``bs=`` syntax without the B suffixes."""
    match = re.match(r"^(\d+)([KMG]?)$", str(value).strip().upper())
    if not match:
        raise ValueError(f"Invalid block size: {value!r}")
    return int(match.group(1)) * _SIZE_SUFFIXES[match.group(2)]
