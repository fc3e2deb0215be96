"""Custom exceptions for storage operations.

This module defines a hierarchy of exceptions for block-device operations so
that the action layer can report a precise reason and return to the menu.

Exception Hierarchy:
    StorageError (base)
        ├── DeviceError
        │   ├── DeviceNotFoundError
        │   ├── SystemDiskError
        │   ├── DeviceValidationError
        │   └── SourceDestinationSameError
        ├── MountError
        │   ├── UnmountFailedError
        │   ├── RemountRaceError
        │   └── MountOperationError
        ├── ConfirmationMismatchError
        ├── InsufficientSpaceError
        ├── ToolInvocationError
        ├── MissingToolError
        ├── LockHeldError
        ├── ValidationError
        └── PrivilegeError

Usage:
    from usb_toolkit.storage.exceptions import SystemDiskError

    if verdict.is_system_disk:
        raise SystemDiskError(verdict.device_name, verdict.reason)
"""

from __future__ import annotations

from typing import Sequence


class StorageError(Exception):
    """Base exception for all storage operations."""


class DeviceError(StorageError):
    """Base exception for device-related errors."""


class DeviceNotFoundError(DeviceError):
    """Device was not found or does not exist."""

    def __init__(self, device_name: str):
        self.device_name = device_name
        super().__init__(f"Device not found: {device_name}")


class SystemDiskError(DeviceError):
    """Device backs a system mount and must not be modified."""

    def __init__(self, device_name: str, reason: str = ""):
        self.device_name = device_name
        self.reason = reason
        msg = f"/dev/{device_name} is a system disk"
        if reason:
            msg += f" ({reason})"
        super().__init__(msg)


class DeviceValidationError(DeviceError):
    """Device failed validation checks."""

    def __init__(self, device_name: str, reason: str):
        self.device_name = device_name
        self.reason = reason
        super().__init__(f"Device validation failed for {device_name}: {reason}")


class SourceDestinationSameError(DeviceError):
    """Source and destination devices are the same."""

    def __init__(self, source_name: str, destination_name: str):
        self.source_name = source_name
        self.destination_name = destination_name
        super().__init__(
            f"Source and destination cannot be the same device: "
            f"{source_name} == {destination_name}"
        )


class MountError(StorageError):
    """Base exception for mount-related errors."""


class UnmountFailedError(MountError):
    """Failed to unmount device or partition."""

    def __init__(self, device_name: str, mountpoints: Sequence[str]):
        self.device_name = device_name
        self.mountpoints = list(mountpoints)
        mounts_str = ", ".join(self.mountpoints)
        super().__init__(
            f"Failed to unmount {device_name}. " f"Active mountpoints: {mounts_str}"
        )


class RemountRaceError(MountError):
    """A partition was mounted again right after it was unmounted."""

    def __init__(self, device_name: str, partitions: Sequence[str]):
        self.device_name = device_name
        self.partitions = list(partitions)
        super().__init__(
            f"{', '.join(self.partitions)} of {device_name} mounted again "
            f"after unmount (automounter race)"
        )


class MountOperationError(MountError):
    """mount/umount of a single partition failed."""

    def __init__(self, partition: str, message: str):
        self.partition = partition
        super().__init__(f"{partition}: {message}")


class ConfirmationMismatchError(StorageError):
    """Operator did not type the exact device name."""

    def __init__(self, expected: str, received: str | None):
        self.expected = expected
        self.received = received
        super().__init__(f"Confirmation did not match {expected!r}; cancelled")


class InsufficientSpaceError(StorageError):
    """Destination is too small for the source data."""

    def __init__(
        self,
        source_name: str,
        source_size: int,
        destination_name: str,
        destination_size: int,
    ):
        self.source_name = source_name
        self.source_size = source_size
        self.destination_name = destination_name
        self.destination_size = destination_size
        super().__init__(
            f"Destination {destination_name} ({destination_size} bytes) "
            f"is too small for source {source_name} ({source_size} bytes)"
        )


class ToolInvocationError(StorageError):
    """External tool exited with a nonzero status."""

    def __init__(self, command: Sequence[str], returncode: int, stderr: str = ""):
        self.command = list(command)
        self.returncode = returncode
        self.stderr = (stderr or "").strip()
        msg = f"{self.command[0] if self.command else '?'} failed with exit code {returncode}"
        if self.stderr:
            msg += f": {self.stderr}"
        super().__init__(msg)


class MissingToolError(StorageError):
    """A required external tool is not installed."""

    def __init__(self, tools: Sequence[str]):
        self.tools = list(tools)
        super().__init__(f"Missing required tools: {' '.join(self.tools)}")


class LockHeldError(StorageError):
    """Another toolkit instance holds the instance lock."""

    def __init__(self, pid: int, lock_path: str = ""):
        self.pid = pid
        self.lock_path = lock_path
        super().__init__(f"Another instance is already running (PID {pid})")


class ValidationError(StorageError):
    """Operator input (label, mount option, path) was rejected."""

    def __init__(self, field: str, value: str, reason: str):
        self.field = field
        self.value = value
        self.reason = reason
        super().__init__(f"Invalid {field} {value!r}: {reason}")


class PrivilegeError(StorageError):
    """The toolkit was started without root privileges."""

    def __init__(self, message: str = "This tool must be run as root"):
        super().__init__(message)
