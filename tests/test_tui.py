"""Tests for the TUI app and its components."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest
from textual.widgets import ContentSwitcher, Input

from gatehouse.config import Config, SessionConfig
from gatehouse.controller import AccessController
from gatehouse.messages import TransientMessage
from gatehouse.models import AuthMode, Identity
from gatehouse.service import ServiceContext
from gatehouse.tui.app import GatehouseApp
from gatehouse.tui.widgets import StatusBar, Toast


@pytest.fixture
def config() -> Config:
    """Keep messages on screen long enough to assert on them."""
    return Config(session=SessionConfig(load_fallback_seconds=0.05, message_ttl_seconds=5.0))


class TestStatusBar:
    def test_demo_badge(self):
        bar = StatusBar()
        bar.state = "Demo"
        bar.namespace = "default-app"
        text = bar.render()
        assert "DEMO MODE (NO BACKEND)" in text
        assert "default-app" in text

    def test_live_badge(self):
        bar = StatusBar()
        bar.service_available = True
        bar.user_label = "a@x.com"
        text = bar.render()
        assert "CLOUD SYNC ACTIVE" in text
        assert "a@x.com" in text


class TestGatehouseApp:
    async def test_demo_login_flow(self, demo_handle, config):
        controller = AccessController(demo_handle, config=config)
        app = GatehouseApp(controller)

        async with app.run_test(size=(100, 50)) as pilot:
            await pilot.pause()
            switcher = app.query_one("#views", ContentSwitcher)
            assert switcher.current == "login-view"
            assert app.query_one("#name-input", Input).display is False

            app.query_one("#email-input", Input).value = "a@x.com"
            app.on_submit()
            await app.workers.wait_for_complete()
            await pilot.pause()

            assert controller.view().identity == Identity(uid="demo-user", email="a@x.com")
            assert switcher.current == "profile-view"
            assert controller.view().profile.display_name == "Demo user"

            app.action_logout()
            await pilot.pause()
            assert switcher.current == "login-view"
            assert app.query_one("#email-input", Input).value == ""

    async def test_missing_email_shows_error(self, demo_handle, config):
        controller = AccessController(demo_handle, config=config)
        app = GatehouseApp(controller)

        async with app.run_test(size=(100, 50)) as pilot:
            await pilot.pause()
            app.on_submit()
            await app.workers.wait_for_complete()
            await pilot.pause()
            assert controller.view().identity is None
            assert controller.view().message == TransientMessage(
                "error", "Email is required.",
            )
            assert app.query_one("#toast", Toast).display is True

    async def test_register_requires_name(self, demo_handle, config):
        controller = AccessController(demo_handle, config=config)
        app = GatehouseApp(controller)

        async with app.run_test(size=(100, 50)) as pilot:
            await pilot.pause()
            app.action_toggle_mode()
            await pilot.pause()
            assert controller.view().auth_mode is AuthMode.REGISTER
            assert app.query_one("#name-input", Input).display is True

            app.query_one("#email-input", Input).value = "a@x.com"
            app.on_submit()
            await app.workers.wait_for_complete()
            assert controller.view().message.text == "Name is required."

            app.query_one("#name-input", Input).value = "Ann"
            app.on_submit()
            await app.workers.wait_for_complete()
            await pilot.pause()
            assert controller.view().profile.display_name == "Ann"

    async def test_edit_profile_in_demo_mode(self, demo_handle, config):
        controller = AccessController(demo_handle, config=config)
        app = GatehouseApp(controller)

        async with app.run_test(size=(100, 50)) as pilot:
            await pilot.pause()
            await controller.submit_login("a@x.com", "", "Ann")
            await pilot.pause()

            app.on_edit()
            assert app.query_one("#display-name-input", Input).value == "Ann"
            app.query_one("#bio-input", Input).value = "Hello there"
            app.on_save()
            await app.workers.wait_for_complete()
            await pilot.pause()

            assert controller.view().profile.bio == "Hello there"
            assert app.query_one("#profile-editor").display is False

    async def test_live_mode_status(self, live_handle, config, identity_provider):
        controller = AccessController(live_handle, config=config)
        app = GatehouseApp(controller)

        async with app.run_test(size=(100, 50)) as pilot:
            await pilot.pause()
            identity_provider.emit(Identity(uid="u1", email="u1@x.com"))
            await pilot.pause()
            status = app.query_one("#status-bar", StatusBar)
            assert status.service_available is True
            assert status.user_label == "u1@x.com"
            assert status.namespace == "test-app"
            assert app.query_one("#views", ContentSwitcher).current == "profile-view"

    async def test_app_with_service_context_starts_and_closes_it(self, demo_handle, config):
        context = ServiceContext(config)
        context.aclose = AsyncMock()
        controller = AccessController(demo_handle, config=config)
        app = GatehouseApp(controller, context=context)

        async with app.run_test(size=(100, 50)) as pilot:
            await pilot.pause()
            assert app.query_one("#views", ContentSwitcher).current == "login-view"

        context.aclose.assert_awaited_once()
