"""Owned listener subscriptions.

Providers hand back a bare disposer callable when a listener is attached.
``Subscription`` wraps it so it runs exactly once, and ``SubscriptionSlot``
enforces that a component never holds more than one live subscription of
a kind: the old one is always released before the new one is attached.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

logger = logging.getLogger(__name__)

Unsubscribe = Callable[[], Any]


class Subscription:
    """A listener registration with exactly-once release."""

    def __init__(self, dispose: Unsubscribe | None = None, *, label: str = "") -> None:
        self._dispose = dispose
        self._active = True
        self.label = label

    @property
    def active(self) -> bool:
        return self._active

    def bind(self, dispose: Unsubscribe) -> None:
        """Attach the provider disposer after the listener was registered.

        If the subscription was already released in the meantime, the
        disposer runs immediately.
        """
        if not self._active:
            self._run(dispose)
            return
        self._dispose = dispose

    def dispose(self) -> None:
        if not self._active:
            return
        self._active = False
        dispose, self._dispose = self._dispose, None
        if dispose is not None:
            self._run(dispose)

    def guard(self, callback: Callable[..., Any]) -> Callable[..., Any]:
        """Wrap a callback so it does nothing once this subscription is released."""

        def _guarded(*args: Any, **kwargs: Any) -> Any:
            if not self._active:
                logger.debug("Dropped late callback for released %s", self.label)
                return None
            return callback(*args, **kwargs)

        return _guarded

    def _run(self, dispose: Unsubscribe) -> None:
        try:
            dispose()
        except Exception as e:
            logger.warning("Disposing %s failed: %s", self.label or "subscription", e)


class SubscriptionSlot:
    """Holds at most one live subscription."""

    def __init__(self, label: str) -> None:
        self.label = label
        self._current: Subscription | None = None

    @property
    def active(self) -> bool:
        return self._current is not None and self._current.active

    @property
    def current(self) -> Subscription | None:
        return self._current

    def attach(
        self,
        register: Callable[[Subscription], Unsubscribe],
    ) -> Subscription:
        """Release the held subscription, then register a new one.

        ``register`` receives the new Subscription (so it can guard its
        callbacks) and returns the provider's disposer.
        """
        self.release()
        subscription = Subscription(label=self.label)
        self._current = subscription
        try:
            dispose = register(subscription)
        except Exception:
            subscription.dispose()
            self._current = None
            raise
        subscription.bind(dispose)
        return subscription

    def release(self) -> None:
        current, self._current = self._current, None
        if current is not None:
            current.dispose()
