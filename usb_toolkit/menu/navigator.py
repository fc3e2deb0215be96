from __future__ import annotations

from dataclasses import dataclass

from usb_toolkit.menu.model import MenuItem, MenuScreen


@dataclass
class ScreenState:
    screen_id: str
    selected_index: int = 0


class MenuNavigator:
    def __init__(self, screens: dict[str, MenuScreen], root_screen_id: str) -> None:
        self._screens = screens
        if root_screen_id not in screens:
            raise ValueError(f"Unknown root screen: {root_screen_id}")
        self._stack: list[ScreenState] = [ScreenState(screen_id=root_screen_id)]

    def current_state(self) -> ScreenState:
        return self._stack[-1]

    def current_screen(self) -> MenuScreen:
        return self._screens[self.current_state().screen_id]

    def current_items(self) -> list[MenuItem]:
        return list(self.current_screen().items)

    def at_root(self) -> bool:
        return len(self._stack) == 1

    def activate(self, index: int):
        """Select ``index``; enter a submenu or return the item's action."""
        items = self.current_items()
        if not 0 <= index < len(items):
            raise IndexError(f"No menu item {index + 1} on {self.current_screen().title}")
        state = self.current_state()
        state.selected_index = index
        selected_item = items[index]
        if selected_item.submenu:
            submenu_id = selected_item.submenu.screen_id
            if submenu_id not in self._screens:
                raise ValueError(f"Unknown screen: {submenu_id}")
            self._stack.append(ScreenState(screen_id=submenu_id))
            return None
        return selected_item.action

    def back(self) -> bool:
        if len(self._stack) <= 1:
            return False
        self._stack.pop()
        return True
