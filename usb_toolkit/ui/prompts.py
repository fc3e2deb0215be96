"""Interactive prompts for device selection and confirmation."""

from __future__ import annotations

from typing import Sequence

from rich.panel import Panel
from rich.prompt import Confirm, IntPrompt, Prompt
from rich.text import Text

from usb_toolkit.domain.models import BlockDevice
from usb_toolkit.ui.console import UI, get_ui


def select_item(
    title: str, items: Sequence[str], ui: UI | None = None, back_label: str = "Back"
) -> int | None:
    """Numbered list; returns the chosen index or ``None`` for back."""
    ui = ui or get_ui()
    ui.heading(title)
    if not items:
        ui.warning("Nothing to choose from.")
        return None
    for number, item in enumerate(items, start=1):
        ui.plain(f"  {number}) {item}")
    ui.plain(f"  0) {back_label}")
    choice = IntPrompt.ask(
        "Select",
        choices=[str(n) for n in range(len(items) + 1)],
        show_choices=False,
        console=ui.console,
    )
    if choice == 0:
        return None
    return choice - 1


def select_device(
    devices: Sequence[BlockDevice], title: str = "Select device", ui: UI | None = None
) -> BlockDevice | None:
    labels = [
        f"/dev/{d.name}  {d.size_label:>8}  {d.model}  [{d.speed_label}]" for d in devices
    ]
    index = select_item(title, labels, ui)
    return None if index is None else devices[index]


def ask_text(message: str, default: str | None = None, ui: UI | None = None) -> str:
    ui = ui or get_ui()
    if default is None:
        return Prompt.ask(message, console=ui.console)
    return Prompt.ask(message, default=default, console=ui.console)


def ask_choice(
    message: str, choices: Sequence[str], default: str | None = None, ui: UI | None = None
) -> str:
    ui = ui or get_ui()
    return Prompt.ask(
        message, choices=list(choices), default=default, console=ui.console
    )


def confirm_action(message: str, ui: UI | None = None) -> bool:
    ui = ui or get_ui()
    return Confirm.ask(message, default=False, console=ui.console)


def ask_device_name(device: BlockDevice, operation: str, ui: UI | None = None) -> str:
    """Show the destination and return exactly what the operator typed.

    Uses ``console.input`` rather than ``Prompt`` so the answer is not
    stripped; ``"sdb "`` must not pass as ``"sdb"``.
    """
    ui = ui or get_ui()
    body = (
        f"Operation: {operation}\n"
        f"Device:    /dev/{device.name}\n"
        f"Model:     {device.model}\n"
        f"Size:      {device.size_label}\n"
        f"\nALL DATA ON THIS DEVICE WILL BE DESTROYED"
    )
    ui.print(
        Panel(
            Text(body),
            title="DESTRUCTIVE OPERATION",
            border_style=ui.theme.error if ui.theme.color else "none",
            expand=False,
        )
    )
    try:
        return ui.console.input(f"Type '{device.name}' to confirm: ", markup=False)
    except EOFError:
        return ""


def pause(ui: UI | None = None) -> None:
    ui = ui or get_ui()
    try:
        ui.console.input("Press Enter to continue...", markup=False)
    except EOFError:
        pass
