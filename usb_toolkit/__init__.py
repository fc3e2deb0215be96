"""Menu-driven USB storage toolkit for Linux."""

from .__version__ import __version__


__all__ = ["__version__"]
