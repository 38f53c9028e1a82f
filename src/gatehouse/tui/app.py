"""Gatehouse TUI: sign-in form and profile view.

Renders the controller's view and dispatches user intents back into it.
All session and sync rules live in the controller; this module only
decides which view is visible and what the widgets show.

Layout:
  +----------------------------------------------+
  | toast (success / error, auto-clears)         |
  |                                              |
  |   loading  |  login/register  |  profile     |
  |                                              |
  +----------------------------------------------+
  | CLOUD SYNC ACTIVE  Signed in | ns | uid      |
  +----------------------------------------------+
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from rich.markup import escape
from textual import on, work
from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.containers import Horizontal, Vertical
from textual.css.query import NoMatches
from textual.widgets import Button, ContentSwitcher, Footer, Header, Input, Static

from gatehouse.models import AuthMode, SessionState
from gatehouse.tui.theme import DIM, GATEHOUSE_DARK
from gatehouse.tui.widgets import StatusBar, Toast

if TYPE_CHECKING:
    from gatehouse.controller import AccessController, AccessView
    from gatehouse.service import ServiceContext

_STATE_LABELS = {
    SessionState.BOOTING: "Starting",
    SessionState.DEMO: "Demo",
    SessionState.CONNECTING: "Connecting",
    SessionState.SIGNED_OUT: "Signed out",
    SessionState.SIGNED_IN: "Signed in",
}


class GatehouseApp(App):
    """Sign in and manage a profile."""

    TITLE = "Gatehouse"

    CSS = """
    #views {
        height: 1fr;
        align: center middle;
    }
    #loading-view, #login-view, #profile-view {
        width: 64;
        height: auto;
        padding: 1 2;
        border: round $primary;
        background: $surface;
    }
    #login-title, #profile-greeting {
        text-style: bold;
        content-align: center middle;
        width: 100%;
        margin-bottom: 1;
    }
    #login-subtitle, #profile-details {
        color: $text-muted;
        margin-bottom: 1;
    }
    #profile-avatar {
        width: 100%;
        content-align: center middle;
        text-style: bold;
        color: $accent;
    }
    #login-view Button, #profile-view Button {
        width: 100%;
        margin-top: 1;
    }
    #profile-actions {
        height: auto;
    }
    #profile-actions Button {
        width: 1fr;
    }
    #profile-editor {
        height: auto;
    }
    """

    BINDINGS = [
        Binding("ctrl+c", "quit", "Quit", show=True, priority=True),
        Binding("ctrl+t", "toggle_mode", "Login/Register", show=True),
        Binding("ctrl+o", "logout", "Sign out", show=True),
    ]

    def __init__(
        self,
        controller: AccessController,
        *,
        context: ServiceContext | None = None,
        **kwargs,
    ) -> None:
        super().__init__(**kwargs)
        self._controller = controller
        self._service_context = context
        self._editing = False
        self._was_signed_in = False

    def compose(self) -> ComposeResult:
        yield Header()
        yield Toast(id="toast")
        with ContentSwitcher(initial="loading-view", id="views"):
            with Vertical(id="loading-view"):
                yield Static("Loading system...", id="loading-text")
            with Vertical(id="login-view"):
                yield Static("", id="login-title")
                yield Static("Secure access to the system", id="login-subtitle")
                yield Input(placeholder="Your name", id="name-input")
                yield Input(placeholder="Email", id="email-input")
                yield Input(placeholder="Password", password=True, id="password-input")
                yield Button("Sign in", id="submit-button", variant="primary")
                yield Button("", id="toggle-button")
            with Vertical(id="profile-view"):
                yield Static("", id="profile-avatar")
                yield Static("", id="profile-greeting")
                yield Static("", id="profile-details")
                with Vertical(id="profile-editor"):
                    yield Input(placeholder="Display name", id="display-name-input")
                    yield Input(placeholder="Bio", id="bio-input")
                    yield Button("Save", id="save-button", variant="primary")
                    yield Button("Back", id="cancel-edit-button")
                with Horizontal(id="profile-actions"):
                    yield Button("Edit profile", id="edit-button")
                    yield Button("Sign out", id="logout-button", variant="error")
        yield StatusBar(id="status-bar")
        yield Footer()

    async def on_mount(self) -> None:
        self.register_theme(GATEHOUSE_DARK)
        self.theme = "gatehouse-dark"
        self._controller.add_listener(self._refresh_view)
        self._refresh_view()
        await self._controller.start()

    async def on_unmount(self) -> None:
        self._controller.remove_listener(self._refresh_view)
        await self._controller.shutdown()
        if self._service_context is not None:
            await self._service_context.aclose()

    # ------------------------------------------------------------------
    # Rendering
    # ------------------------------------------------------------------

    def _refresh_view(self) -> None:
        try:
            self._render_view(self._controller.view())
        except NoMatches:
            # Not composed yet, or already torn down.
            return

    def _render_view(self, view: AccessView) -> None:
        signed_in = view.identity is not None
        if self._was_signed_in and not signed_in:
            self._editing = False
            self._clear_login_inputs()
        self._was_signed_in = signed_in

        switcher = self.query_one("#views", ContentSwitcher)
        if view.loading:
            switcher.current = "loading-view"
        elif signed_in:
            switcher.current = "profile-view"
        else:
            switcher.current = "login-view"

        registering = view.auth_mode is AuthMode.REGISTER
        self.query_one("#login-title", Static).update(
            "Create account" if registering else "Welcome"
        )
        self.query_one("#name-input", Input).display = registering
        self.query_one("#submit-button", Button).label = (
            "Register" if registering else "Sign in now"
        )
        self.query_one("#toggle-button", Button).label = (
            "Already have an account? Sign in"
            if registering else "No account? Register"
        )

        name = view.profile.display_name
        self.query_one("#profile-avatar", Static).update(
            escape((name[:1] or "?").upper())
        )
        self.query_one("#profile-greeting", Static).update(
            f"Signed in as {escape(name)}"
        )
        self.query_one("#profile-details", Static).update(self._details(view))
        self.query_one("#profile-editor", Vertical).display = self._editing
        self.query_one("#profile-actions", Horizontal).display = not self._editing
        self.query_one("#save-button", Button).disabled = view.saving

        self.query_one("#toast", Toast).show_message(view.message)

        status = self.query_one("#status-bar", StatusBar)
        status.service_available = view.service_available
        status.state = _STATE_LABELS.get(view.state, view.state.value)
        status.namespace = view.namespace
        status.user_label = (
            (view.identity.email or view.identity.uid) if signed_in else ""
        )

    @staticmethod
    def _details(view: AccessView) -> str:
        profile = view.profile
        lines = [f"Role: {escape(profile.role or '-')}"]
        if view.identity is not None and view.identity.email:
            lines.append(f"Email: {escape(view.identity.email)}")
        if profile.bio:
            lines.append(f"Bio: {escape(profile.bio)}")
        if profile.created_at is not None:
            lines.append(f"[{DIM}]Member since {profile.created_at:%Y-%m-%d}[/]")
        return "\n".join(lines)

    def _clear_login_inputs(self) -> None:
        for input_id in ("#name-input", "#email-input", "#password-input"):
            self.query_one(input_id, Input).value = ""

    # ------------------------------------------------------------------
    # Intents
    # ------------------------------------------------------------------

    @on(Button.Pressed, "#submit-button")
    @on(Input.Submitted, "#password-input")
    def on_submit(self) -> None:
        self._submit_auth()

    @work(exclusive=True, group="auth")
    async def _submit_auth(self) -> None:
        email = self.query_one("#email-input", Input).value.strip()
        password = self.query_one("#password-input", Input).value
        name = self.query_one("#name-input", Input).value.strip()
        registering = self._controller.view().auth_mode is AuthMode.REGISTER

        if not email:
            self._controller.messages.error("Email is required.")
            return
        if registering and not name:
            self._controller.messages.error("Name is required.")
            return

        if registering:
            outcome = await self._controller.submit_register(email, password, name)
        else:
            outcome = await self._controller.submit_login(email, password, name)
        if outcome.ok:
            self.query_one("#password-input", Input).value = ""

    @on(Button.Pressed, "#toggle-button")
    def action_toggle_mode(self) -> None:
        self._controller.toggle_auth_mode()

    @on(Button.Pressed, "#edit-button")
    def on_edit(self) -> None:
        profile = self._controller.view().profile
        self.query_one("#display-name-input", Input).value = profile.display_name
        self.query_one("#bio-input", Input).value = profile.bio
        self._editing = True
        self._refresh_view()

    @on(Button.Pressed, "#cancel-edit-button")
    def on_cancel_edit(self) -> None:
        self._editing = False
        self._refresh_view()

    @on(Button.Pressed, "#save-button")
    def on_save(self) -> None:
        self._save_profile()

    @work(exclusive=True, group="profile")
    async def _save_profile(self) -> None:
        display_name = self.query_one("#display-name-input", Input).value.strip()
        bio = self.query_one("#bio-input", Input).value.strip()
        fields = {"bio": bio}
        if display_name:
            fields["display_name"] = display_name
        if await self._controller.save_profile(**fields):
            self._editing = False
            self._refresh_view()

    @on(Button.Pressed, "#logout-button")
    def action_logout(self) -> None:
        if self._controller.view().identity is None:
            return
        self._controller.logout()
