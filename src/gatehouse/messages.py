"""Transient user-facing messages."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Literal

logger = logging.getLogger(__name__)

MessageKind = Literal["success", "error"]


@dataclass(frozen=True)
class TransientMessage:
    kind: MessageKind
    text: str


class MessageBoard:
    """Holds the current message and clears it after ``ttl`` seconds.

    A newer message replaces the older one and restarts the timer. Without
    a running event loop the message stays until replaced or cleared.
    """

    def __init__(self, ttl: float = 3.0) -> None:
        self._ttl = ttl
        self._current: TransientMessage | None = None
        self._timer: asyncio.TimerHandle | None = None
        self._listeners: list[Callable[[], None]] = []

    @property
    def current(self) -> TransientMessage | None:
        return self._current

    def add_listener(self, listener: Callable[[], None]) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: Callable[[], None]) -> None:
        try:
            self._listeners.remove(listener)
        except ValueError:
            pass

    def show(self, kind: MessageKind, text: str) -> None:
        self._cancel_timer()
        self._current = TransientMessage(kind=kind, text=text)
        if kind == "error":
            logger.info("User message (error): %s", text)
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None
        if loop is not None:
            self._timer = loop.call_later(self._ttl, self.clear)
        self._notify()

    def success(self, text: str) -> None:
        self.show("success", text)

    def error(self, text: str) -> None:
        self.show("error", text)

    def clear(self) -> None:
        self._cancel_timer()
        if self._current is None:
            return
        self._current = None
        self._notify()

    def close(self) -> None:
        self._cancel_timer()
        self._listeners.clear()

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener()
            except Exception as e:
                logger.warning("Message listener %s failed: %s",
                               getattr(listener, "__name__", listener), e)
