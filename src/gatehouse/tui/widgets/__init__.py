"""TUI widgets."""

from gatehouse.tui.widgets.status_bar import StatusBar
from gatehouse.tui.widgets.toast import Toast

__all__ = ["StatusBar", "Toast"]
