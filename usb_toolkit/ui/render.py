"""Tables and detail views for devices, partitions and policy."""

from __future__ import annotations

from typing import Iterable, Sequence

from rich.table import Table

from usb_toolkit.domain.models import BlockDevice, Partition, human_size
from usb_toolkit.ui.console import UI, get_ui

LIST_FORMAT = "%-12s  %-8s  %-20s  %-16s  %s"
LIST_HEADER = ("DEVICE", "SIZE", "MODEL", "SERIAL", "USB SPEED")


def format_device_list(devices: Iterable[BlockDevice]) -> list[str]:
    """Fixed-column lines for ``--list``; stable for scripts to parse."""
    lines = [LIST_FORMAT % LIST_HEADER]
    for device in devices:
        lines.append(
            LIST_FORMAT
            % (
                device.device_path,
                device.size_label,
                device.model[:20],
                device.serial[:16],
                device.speed_label,
            )
        )
    return lines


def device_details(device: BlockDevice, ui: UI | None = None) -> None:
    ui = ui or get_ui()
    table = Table(show_header=False, box=None, pad_edge=False)
    table.add_column(style=ui.theme.heading if ui.theme.color else "")
    table.add_column()
    for key, value in (
        ("Device", device.device_path),
        ("Size", device.size_label),
        ("Model", device.model),
        ("Vendor", device.vendor),
        ("Manufacturer", device.manufacturer),
        ("Serial", device.serial),
        ("USB ID", device.usb_id),
        ("Removable", "yes" if device.is_removable else "no"),
        ("Read-only", "yes" if device.read_only else "no"),
        ("USB speed", device.speed_label),
    ):
        table.add_row(f"  {key}:", value)
    ui.print(table)


def partition_table(
    rows: Sequence[tuple[Partition, int, str, str]], ui: UI | None = None
) -> None:
    """``rows`` are ``(partition, size_bytes, fstype, label)``."""
    ui = ui or get_ui()
    table = Table(title=None, show_lines=False)
    for heading in ("PARTITION", "SIZE", "FSTYPE", "LABEL", "MOUNTPOINT"):
        table.add_column(heading)
    for partition, size, fstype, label in rows:
        table.add_row(
            partition.device_path,
            human_size(size),
            fstype or "-",
            label or "-",
            ", ".join(partition.mount_points) or "not mounted",
        )
    ui.print(table)


def key_values(pairs: Iterable[tuple[str, str]], ui: UI | None = None) -> None:
    ui = ui or get_ui()
    for key, value in pairs:
        ui.plain(f"    {key + ':':<16} {value}")


def output_block(text: str, ui: UI | None = None, limit: int | None = None) -> None:
    ui = ui or get_ui()
    lines = text.rstrip().splitlines()
    if limit is not None:
        lines = lines[:limit]
    for line in lines:
        ui.print(f"    {line}", style=ui.theme.dim if ui.theme.color else None, markup=False)
