"""Status bar widget for the bottom of the TUI."""

from __future__ import annotations

from textual.reactive import reactive
from textual.widgets import Static

from gatehouse.tui.theme import DEMO_AMBER, SUCCESS


class StatusBar(Static):
    """Structured status line showing backend mode, namespace, and user."""

    DEFAULT_CSS = """
    StatusBar {
        height: 1;
        dock: bottom;
        background: $surface;
        color: $text-muted;
        padding: 0 1;
    }
    """

    service_available: reactive[bool] = reactive(False)
    state: reactive[str] = reactive("Loading")
    namespace: reactive[str] = reactive("")
    user_label: reactive[str] = reactive("")

    def render(self) -> str:
        if self.service_available:
            badge = f"[bold {SUCCESS}]CLOUD SYNC ACTIVE[/]"
        else:
            badge = f"[bold {DEMO_AMBER}]DEMO MODE (NO BACKEND)[/]"
        parts: list[str] = [self.state]
        if self.namespace:
            parts.append(self.namespace)
        if self.user_label:
            parts.append(self.user_label)
        return badge + "  [dim]" + " | ".join(parts) + "[/dim]"
