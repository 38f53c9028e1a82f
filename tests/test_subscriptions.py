"""Tests for owned listener subscriptions."""

from __future__ import annotations

import pytest

from gatehouse.subscriptions import Subscription, SubscriptionSlot


class TestSubscription:
    def test_dispose_runs_once(self):
        calls = []
        sub = Subscription(lambda: calls.append("x"), label="t")
        sub.dispose()
        sub.dispose()
        assert calls == ["x"]
        assert sub.active is False

    def test_guard_drops_callbacks_after_dispose(self):
        seen = []
        sub = Subscription(label="t")
        guarded = sub.guard(seen.append)
        guarded(1)
        sub.dispose()
        guarded(2)
        assert seen == [1]

    def test_bind_after_release_disposes_immediately(self):
        calls = []
        sub = Subscription(label="t")
        sub.dispose()
        sub.bind(lambda: calls.append("late"))
        assert calls == ["late"]

    def test_failing_disposer_is_logged(self, caplog):
        def boom():
            raise RuntimeError("nope")

        sub = Subscription(boom, label="flaky")
        sub.dispose()
        assert "Disposing flaky failed" in caplog.text
        assert sub.active is False


class TestSubscriptionSlot:
    def test_release_before_attach(self):
        order = []
        slot = SubscriptionSlot("doc")

        def register(name):
            def _register(sub):
                order.append(f"attach:{name}")
                return lambda: order.append(f"detach:{name}")
            return _register

        slot.attach(register("a"))
        slot.attach(register("b"))
        assert order == ["attach:a", "detach:a", "attach:b"]
        assert slot.active is True

    def test_release_is_idempotent(self):
        calls = []
        slot = SubscriptionSlot("doc")
        slot.attach(lambda sub: lambda: calls.append("detach"))
        slot.release()
        slot.release()
        assert calls == ["detach"]
        assert slot.active is False
        assert slot.current is None

    def test_failed_registration_leaves_slot_empty(self):
        slot = SubscriptionSlot("doc")

        def register(sub):
            raise ValueError("refused")

        with pytest.raises(ValueError):
            slot.attach(register)
        assert slot.active is False

    def test_callback_released_during_registration_is_guarded(self):
        seen = []
        slot = SubscriptionSlot("doc")
        holder = {}

        def register(sub):
            holder["cb"] = sub.guard(seen.append)
            return lambda: None

        slot.attach(register)
        holder["cb"]("first")
        slot.release()
        holder["cb"]("stale")
        assert seen == ["first"]
