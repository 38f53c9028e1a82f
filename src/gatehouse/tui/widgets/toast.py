"""One-line toast for transient success/error messages."""

from __future__ import annotations

from rich.markup import escape
from textual.widgets import Static

from gatehouse.messages import TransientMessage


class Toast(Static):
    DEFAULT_CSS = """
    Toast {
        dock: top;
        height: auto;
        padding: 0 2;
        display: none;
    }
    Toast.-success {
        background: $panel;
        color: $text;
    }
    Toast.-error {
        background: $error;
        color: $text;
    }
    """

    def show_message(self, message: TransientMessage | None) -> None:
        self.remove_class("-success", "-error")
        if message is None:
            self.display = False
            self.update("")
            return
        self.add_class(f"-{message.kind}")
        self.update(escape(message.text))
        self.display = True
