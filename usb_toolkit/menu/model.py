from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Callable, List, Optional

if TYPE_CHECKING:
    from usb_toolkit.app.context import AppContext


@dataclass
class MenuItem:
    label: str
    action: Optional[Callable[[AppContext], None]] = None
    submenu: Optional[MenuScreen] = None


@dataclass
class MenuScreen:
    screen_id: str
    title: str
    items: List[MenuItem] = field(default_factory=list)
    status_line: Optional[str] = None
