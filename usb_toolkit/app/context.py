from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

from usb_toolkit.app.cleanup import CleanupRegistry
from usb_toolkit.logging import EventRecorder, recorder
from usb_toolkit.storage.gate import DestructiveGate
from usb_toolkit.storage.sysfs import SysfsReader
from usb_toolkit.ui.console import UI


@dataclass
class AppContext:
    ui: UI
    sysfs: SysfsReader = field(default_factory=SysfsReader)
    cleanup: CleanupRegistry = field(default_factory=CleanupRegistry)
    recorder: EventRecorder = recorder
    gate: Optional[DestructiveGate] = None
    debug: bool = False

    def __post_init__(self) -> None:
        if self.gate is None:
            self.gate = DestructiveGate(
                sysfs=self.sysfs,
                notify=self.ui.warning,
                recorder=self.recorder,
                prompt=self._prompt_device_name,
            )

    def _prompt_device_name(self, device, operation: str) -> str:
        from usb_toolkit.ui.prompts import ask_device_name

        return ask_device_name(device, operation, ui=self.ui)
