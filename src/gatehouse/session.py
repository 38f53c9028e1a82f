"""Authentication session.

``SessionManager`` owns the current identity. With a live backend it keeps
one auth-state subscription open and mirrors every notification into
``identity``/``state``; without one it runs in demo mode and synthesizes a
local identity on login. Intents (``login``, ``logout``) never raise:
failures become transient messages and the loading flag always settles.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Any

from gatehouse.exceptions import AuthError, WriteError
from gatehouse.messages import MessageBoard
from gatehouse.models import (
    DEFAULT_ROLE,
    AuthMode,
    Identity,
    LoginForm,
    LoginOutcome,
    Profile,
    SessionState,
)
from gatehouse.providers.base import SERVER_TIMESTAMP
from gatehouse.service import ServiceHandle
from gatehouse.subscriptions import SubscriptionSlot

logger = logging.getLogger(__name__)

DEMO_UID = "demo-user"
DEMO_DISPLAY_NAME = "Demo user"
DEMO_ROLE = "preview"
NEW_USER_DISPLAY_NAME = "New user"


class SessionManager:
    """Drives sign-in/sign-out and tracks the signed-in identity."""

    def __init__(
        self,
        handle: ServiceHandle,
        messages: MessageBoard,
        *,
        load_fallback_seconds: float = 1.5,
        initial_auth_token: str | None = None,
    ) -> None:
        self._handle = handle
        self._messages = messages
        self._load_fallback_seconds = load_fallback_seconds
        self._initial_auth_token = initial_auth_token

        self.state = SessionState.BOOTING
        self.identity: Identity | None = None
        self.loading = True
        self.auth_mode = AuthMode.LOGIN
        self.form = LoginForm()

        self._auth_slot = SubscriptionSlot("auth-state")
        self._fallback_timer: asyncio.TimerHandle | None = None
        self._awaiting_first_state = False
        self._pending: set[asyncio.Task[Any]] = set()
        self._sign_out_task: asyncio.Task[None] | None = None
        self._signed_out_uid: str | None = None
        self._listeners: list[Callable[[], None]] = []
        self._closed = False

    @property
    def demo(self) -> bool:
        return not self._handle.available

    @property
    def subscribed(self) -> bool:
        return self._auth_slot.active

    def add_listener(self, listener: Callable[[], None]) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: Callable[[], None]) -> None:
        try:
            self._listeners.remove(listener)
        except ValueError:
            pass

    # --- Lifecycle ---

    async def initialize(self) -> None:
        """Enter demo mode, or start following the provider's auth state."""
        if self._closed or self.state is not SessionState.BOOTING:
            return

        if self.demo:
            self.state = SessionState.DEMO
            self.loading = False
            logger.info("Session running in demo mode")
            self._notify()
            return

        auth = self._handle.auth_client
        self.state = SessionState.CONNECTING
        self.loading = True
        self._awaiting_first_state = True
        self._notify()

        if self._initial_auth_token:
            self._spawn(self._sign_in_with_initial_token(self._initial_auth_token))

        self._auth_slot.attach(
            lambda sub: auth.subscribe_auth_state(sub.guard(self._on_auth_state))
        )
        if self._awaiting_first_state:
            loop = asyncio.get_running_loop()
            self._fallback_timer = loop.call_later(
                self._load_fallback_seconds, self._on_load_timeout,
            )

    async def _sign_in_with_initial_token(self, token: str) -> None:
        try:
            await self._handle.auth_client.sign_in_with_token(token)
        except Exception as e:
            logger.warning("Initial token sign-in failed: %s", e)

    def _on_auth_state(self, identity: Identity | None) -> None:
        if self._closed:
            return
        self._apply_identity(identity)
        if self._awaiting_first_state:
            self._settle_initial_load()
        self._notify()

    def _on_load_timeout(self) -> None:
        self._fallback_timer = None
        if self._closed or not self._awaiting_first_state:
            return
        logger.warning(
            "No auth state after %.1fs; showing signed-out view",
            self._load_fallback_seconds,
        )
        if self.state is SessionState.CONNECTING:
            self.state = SessionState.SIGNED_OUT
        self._settle_initial_load()
        self._notify()

    def _settle_initial_load(self) -> None:
        self._awaiting_first_state = False
        self.loading = False
        if self._fallback_timer is not None:
            self._fallback_timer.cancel()
            self._fallback_timer = None

    def _apply_identity(self, identity: Identity | None) -> None:
        self.identity = identity
        if self.demo:
            return
        if identity is None:
            self.state = SessionState.SIGNED_OUT
            self.form.clear()
        else:
            self.state = SessionState.SIGNED_IN

    # --- Intents ---

    def toggle_auth_mode(self) -> AuthMode:
        self.auth_mode = (
            AuthMode.REGISTER if self.auth_mode is AuthMode.LOGIN else AuthMode.LOGIN
        )
        self._notify()
        return self.auth_mode

    def update_form(self, **fields: str) -> None:
        for name, value in fields.items():
            if hasattr(self.form, name):
                setattr(self.form, name, value)

    async def login(
        self,
        data: LoginForm | None = None,
        mode: AuthMode | None = None,
    ) -> LoginOutcome:
        """Sign in (and optionally register) with the given form data."""
        form = data or self.form
        mode = mode or self.auth_mode

        if self.demo:
            return self._demo_login(form)

        self.loading = True
        self._notify()
        auth = self._handle.auth_client
        identity: Identity | None = None
        try:
            await self._wait_for_sign_out()
            identity = auth.current_identity
            if identity is not None and identity.uid == self._signed_out_uid:
                # The earlier remote sign-out failed; never resume that account.
                await auth.sign_out()
                identity = auth.current_identity
            if identity is None:
                identity = await auth.sign_in_anonymously()
            self._apply_identity(identity)

            if mode is AuthMode.REGISTER:
                await self._create_profile(identity, form)
        except WriteError as e:
            # The anonymous sign-in above stays in place.
            logger.warning("Initial profile write failed for %s: %s", identity, e)
            self._messages.error(f"Error: {e}")
            return LoginOutcome(ok=False, identity=identity, error=str(e))
        except AuthError as e:
            logger.warning("Sign-in failed: %s", e)
            self._messages.error(f"Error: {e}")
            return LoginOutcome(ok=False, identity=identity, error=str(e))
        except Exception as e:
            logger.exception("Unexpected sign-in failure")
            self._messages.error(f"Error: {e}")
            return LoginOutcome(ok=False, identity=identity, error=str(e))
        finally:
            self.loading = False
            self._notify()

        self._signed_out_uid = None
        self._messages.success("Connected successfully!")
        return LoginOutcome(ok=True, identity=identity)

    def _demo_login(self, form: LoginForm) -> LoginOutcome:
        identity = Identity(uid=DEMO_UID, email=form.email)
        profile = Profile(
            display_name=form.name or DEMO_DISPLAY_NAME,
            role=DEMO_ROLE,
        )
        self.identity = identity
        self.loading = False
        self._notify()
        self._messages.success("Signed in (demo mode, no backend)")
        return LoginOutcome(ok=True, identity=identity, profile=profile)

    async def _create_profile(self, identity: Identity, form: LoginForm) -> None:
        docs = self._handle.doc_client
        ref = self._handle.profile_ref(identity.uid)
        await docs.set_document(ref, {
            "displayName": form.name or NEW_USER_DISPLAY_NAME,
            "role": DEFAULT_ROLE,
            "createdAt": SERVER_TIMESTAMP,
        })
        logger.info("Created profile document for %s", identity.uid)

    def logout(self) -> None:
        """Clear the local identity now; sign out remotely in the background."""
        if self.identity is not None and not self.demo:
            self._signed_out_uid = self.identity.uid
        self._apply_identity(None)
        self._notify()
        if self.demo:
            return
        try:
            self._sign_out_task = self._spawn(self._remote_sign_out())
        except RuntimeError:
            logger.warning("No running event loop; skipped remote sign-out")

    async def _remote_sign_out(self) -> None:
        try:
            await self._handle.auth_client.sign_out()
        except Exception as e:
            logger.warning("Remote sign-out failed: %s", e)

    async def _wait_for_sign_out(self) -> None:
        """Let a pending remote sign-out finish before the next sign-in."""
        task, self._sign_out_task = self._sign_out_task, None
        if task is not None and not task.done():
            await asyncio.wait({task})

    # --- Teardown ---

    def close(self) -> None:
        """Release the auth subscription and fallback timer."""
        if self._closed:
            return
        self._closed = True
        if self._fallback_timer is not None:
            self._fallback_timer.cancel()
            self._fallback_timer = None
        self._auth_slot.release()
        self._listeners.clear()

    async def drain(self, timeout: float | None = None) -> None:
        """Wait for background sign-in/sign-out tasks to finish."""
        pending = list(self._pending)
        if not pending:
            return
        try:
            await asyncio.wait_for(
                asyncio.gather(*pending, return_exceptions=True), timeout=timeout,
            )
        except TimeoutError:
            logger.warning("Timed out draining %d session task(s)", len(self._pending))

    def _spawn(self, coro: Any) -> asyncio.Task[Any]:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            coro.close()
            raise
        task = loop.create_task(coro)
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener()
            except Exception as e:
                logger.warning(
                    "Session listener %s failed: %s",
                    getattr(listener, "__name__", listener), e,
                )
