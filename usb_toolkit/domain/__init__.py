"""Domain objects shared across the toolkit."""

from usb_toolkit.domain.models import (
    BlockDevice,
    ConfirmationToken,
    MountState,
    Partition,
    SystemDiskVerdict,
    UnmountResult,
    human_size,
)

__all__ = [
    "BlockDevice",
    "ConfirmationToken",
    "MountState",
    "Partition",
    "SystemDiskVerdict",
    "UnmountResult",
    "human_size",
]
