from usb_toolkit.menu.model import MenuItem, MenuScreen
from usb_toolkit.menu.navigator import MenuNavigator

__all__ = [
    "MenuItem",
    "MenuNavigator",
    "MenuScreen",
]
