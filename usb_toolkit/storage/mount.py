"""Mounting and unmounting of single USB partitions.

Only argument vectors are passed to ``mount``/``umount``. Mount options and
mount points are validated before use, and a mount directory created for a
failed mount is removed again.
"""

from __future__ import annotations

import os
from enum import Enum
from pathlib import Path

from usb_toolkit.logging import LoggerFactory, recorder
from usb_toolkit.storage.commands import run_command, tool_available
from usb_toolkit.storage.exceptions import MountOperationError
from usb_toolkit.storage.unmount import remove_mount_dir
from usb_toolkit.storage.users import InvokingUser, invoking_user
from usb_toolkit.storage.validation import validate_mount_options, validate_path


log = LoggerFactory.for_storage(job_id="mount")

OWNERLESS_FILESYSTEMS = {"vfat", "exfat"}


class MountMode(Enum):
    READ_WRITE = ""
    READ_ONLY = "ro"
    NOEXEC_SYNC = "noexec,sync"
    CUSTOM = "custom"


class UnmountMode(Enum):
    SAFE = "safe"
    FORCE = "force"
    LAZY = "lazy"


def probe_filesystem(partition: str) -> tuple[str, str]:
    """Return ``(fstype, label)`` from blkid; empty strings when unknown."""
    values = []
    for tag in ("TYPE", "LABEL"):
        result = run_command(
            ["blkid", "-o", "value", "-s", tag, f"/dev/{partition}"],
            check=False,
            log_output=False,
        )
        values.append(result.stdout.strip() if result.returncode == 0 else "")
    return values[0], values[1]


MEDIA_ROOT = "/media"


def safe_label(label: str) -> str:
    """``label`` when it is usable as a single path component, else ``""``."""
    if label in (".", "..") or "/" in label:
        return ""
    if any(ord(char) < 32 or ord(char) == 127 for char in label):
        return ""
    return label


def default_mount_point(partition: str, label: str, user: InvokingUser) -> str:
    """``/media/<user>/<label>``, falling back to the partition name.

    The label comes from the stick itself, so one that is not a plain
    directory name never reaches the path.
    """
    base = os.path.join(MEDIA_ROOT, user.name)
    name = safe_label(label)
    if label and not name:
        log.warning(f"Ignoring unsafe filesystem label {label!r} on /dev/{partition}")
    target = os.path.normpath(os.path.join(base, name or partition))
    if os.path.dirname(target) != base:
        target = os.path.join(base, partition)
    return target


def resolve_mount_point(requested: str, user: InvokingUser) -> str:
    """Validate a custom mount point and expand a leading ``~``."""
    validate_path(requested, "mount point")
    if requested == "~" or requested.startswith("~/"):
        requested = user.home + requested[1:]
    return requested


def build_mount_command(
    partition: str,
    mount_point: str,
    fstype: str,
    options: str,
    user: InvokingUser,
) -> list[str]:
    option_parts = [options] if options else []
    if fstype in OWNERLESS_FILESYSTEMS:
        option_parts.append(f"uid={user.uid},gid={user.gid}")
    command = ["mount"]
    if option_parts:
        command += ["-o", ",".join(option_parts)]
    if fstype:
        command += ["-t", fstype]
    command += [f"/dev/{partition}", mount_point]
    return command


def mount_partition(
    partition: str,
    mode: MountMode = MountMode.READ_WRITE,
    *,
    custom_options: str = "",
    mount_point: str | None = None,
    cleanup=None,
) -> str:
    """Mount ``partition`` and return the mount point.

    Raises:
        ValidationError: invalid custom options or mount point
        MountOperationError: mount failed
    """
    user = invoking_user()
    fstype, label = probe_filesystem(partition)

    if mode is MountMode.CUSTOM:
        options = validate_mount_options(custom_options)
    else:
        options = mode.value

    if mount_point:
        target = resolve_mount_point(mount_point, user)
    else:
        target = default_mount_point(partition, label, user)

    created = not os.path.isdir(target)
    Path(target).mkdir(parents=True, exist_ok=True)

    command = build_mount_command(partition, target, fstype, options, user)
    result = run_command(command, check=False)
    if result.returncode != 0:
        if created:
            remove_mount_dir(target)
        raise MountOperationError(
            f"/dev/{partition}", result.stderr.strip() or "mount failed"
        )

    if fstype not in OWNERLESS_FILESYSTEMS | {"ntfs"}:
        try:
            os.chown(target, user.uid, user.gid)
        except OSError as error:
            log.debug(f"chown {target} failed: {error}")
    if cleanup is not None:
        cleanup.add_mount(target)
    log.info(f"Mounted /dev/{partition} at {target} [{' '.join(command[1:-2])}]")
    recorder.record("mount", partition=partition, mount_point=target, options=options)
    return target


def unmount_partition(
    partition: str,
    mount_point: str,
    mode: UnmountMode = UnmountMode.SAFE,
    cleanup=None,
) -> None:
    """Unmount one partition.

    Safe mode syncs first and falls back from the mount point to the
    device path; force uses ``umount -f`` and lazy ``umount -l``.
    """
    if mode is UnmountMode.SAFE:
        run_command(["sync"], check=False, log_output=False)
        attempts = [["umount", mount_point], ["umount", f"/dev/{partition}"]]
    elif mode is UnmountMode.FORCE:
        attempts = [["umount", "-f", mount_point]]
    else:
        attempts = [["umount", "-l", mount_point]]

    stderr = ""
    for command in attempts:
        result = run_command(command, check=False)
        if result.returncode == 0:
            log.info(f"Unmounted /dev/{partition} from {mount_point} ({mode.value})")
            remove_mount_dir(mount_point)
            if cleanup is not None:
                cleanup.discard_mount(mount_point)
            recorder.record(
                "unmount", partition=partition, mount_point=mount_point, mode=mode.value
            )
            return
        stderr = result.stderr.strip()
    raise MountOperationError(f"/dev/{partition}", stderr or "umount failed")


def processes_using(mount_point: str) -> list[str]:
    """Lines describing processes holding ``mount_point`` (lsof, else fuser)."""
    if tool_available("lsof"):
        result = run_command(["lsof", mount_point], check=False, log_output=False)
        return result.stdout.strip().splitlines()[1:]
    if tool_available("fuser"):
        result = run_command(["fuser", "-v", mount_point], check=False, log_output=False)
        # fuser -v writes its table to stderr
        return (result.stderr or result.stdout).strip().splitlines()
    raise MountOperationError(mount_point, "neither lsof nor fuser is available")
