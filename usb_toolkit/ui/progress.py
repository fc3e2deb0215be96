"""Progress bars for dd-style transfers."""

from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator, Optional

from rich.progress import (
    BarColumn,
    Progress,
    TextColumn,
    TimeElapsedColumn,
    TimeRemainingColumn,
    TransferSpeedColumn,
)

from usb_toolkit.storage.commands import ProgressCallback
from usb_toolkit.ui.console import UI, get_ui


@contextmanager
def transfer_progress(
    description: str, total: Optional[int] = None, ui: UI | None = None
) -> Iterator[ProgressCallback]:
    """Yield a ``(copied, total)`` callback that drives a rich progress bar."""
    ui = ui or get_ui()
    progress = Progress(
        TextColumn("[bold]{task.description}" if ui.theme.color else "{task.description}"),
        BarColumn(),
        TransferSpeedColumn(),
        TimeElapsedColumn(),
        TimeRemainingColumn(),
        console=ui.console,
        transient=True,
    )
    task = progress.add_task(description, total=total or None)

    def update(copied: int, total_bytes: Optional[int]) -> None:
        if total_bytes and progress.tasks[0].total is None:
            progress.update(task, total=total_bytes)
        progress.update(task, completed=copied)

    with progress:
        yield update
