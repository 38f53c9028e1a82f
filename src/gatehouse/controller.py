"""Access controller: the state and intents a UI binds to.

Wires the session, profile store and message board together. Whenever the
signed-in uid changes, the profile subscription is moved to the new user
(the old listener is released before the new one is attached).
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass

from gatehouse.config import Config, RuntimeInjection, resolve
from gatehouse.messages import MessageBoard, TransientMessage
from gatehouse.models import AuthMode, Identity, LoginOutcome, Profile, SessionState
from gatehouse.profile import ProfileStore
from gatehouse.service import ServiceContext, ServiceHandle
from gatehouse.session import SessionManager

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AccessView:
    """Snapshot of everything the UI renders."""

    loading: bool
    identity: Identity | None
    profile: Profile
    service_available: bool
    message: TransientMessage | None
    auth_mode: AuthMode
    saving: bool
    state: SessionState
    namespace: str


class AccessController:
    def __init__(
        self,
        handle: ServiceHandle,
        *,
        config: Config | None = None,
        injection: RuntimeInjection | None = None,
    ) -> None:
        config = config or Config()
        injection = injection or RuntimeInjection()
        self._handle = handle
        self.messages = MessageBoard(ttl=config.session.message_ttl_seconds)
        self.session = SessionManager(
            handle,
            self.messages,
            load_fallback_seconds=config.session.load_fallback_seconds,
            initial_auth_token=injection.initial_auth_token,
        )
        self.profiles = ProfileStore(handle, self.messages)
        self._tracked_uid: str | None = None
        self._listeners: list[Callable[[], None]] = []

        self.session.add_listener(self._on_session_change)
        self.profiles.add_listener(self._changed)
        self.messages.add_listener(self._changed)

    @property
    def handle(self) -> ServiceHandle:
        return self._handle

    def add_listener(self, listener: Callable[[], None]) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: Callable[[], None]) -> None:
        try:
            self._listeners.remove(listener)
        except ValueError:
            pass

    def view(self) -> AccessView:
        return AccessView(
            loading=self.session.loading,
            identity=self.session.identity,
            profile=self.profiles.profile,
            service_available=self._handle.available,
            message=self.messages.current,
            auth_mode=self.session.auth_mode,
            saving=self.profiles.saving,
            state=self.session.state,
            namespace=self._handle.namespace,
        )

    # --- Intents ---

    async def start(self) -> None:
        await self.session.initialize()

    async def submit_login(
        self, email: str, password: str = "", name: str = "",
    ) -> LoginOutcome:
        return await self._submit(AuthMode.LOGIN, email, password, name)

    async def submit_register(
        self, email: str, password: str = "", name: str = "",
    ) -> LoginOutcome:
        return await self._submit(AuthMode.REGISTER, email, password, name)

    async def _submit(
        self, mode: AuthMode, email: str, password: str, name: str,
    ) -> LoginOutcome:
        self.session.update_form(email=email, password=password, name=name)
        outcome = await self.session.login(mode=mode)
        if outcome.ok and outcome.profile is not None:
            self.profiles.seed(outcome.profile)
        return outcome

    async def save_profile(self, **fields: str) -> bool:
        return await self.profiles.save(self.session.identity, fields)

    def logout(self) -> None:
        self.session.logout()

    def toggle_auth_mode(self) -> AuthMode:
        return self.session.toggle_auth_mode()

    async def shutdown(self) -> None:
        self.session.close()
        self.profiles.close()
        await self.session.drain(timeout=2.0)
        self.messages.close()
        self._listeners.clear()

    # --- Change propagation ---

    def _on_session_change(self) -> None:
        identity = self.session.identity
        uid = identity.uid if identity else None
        if uid != self._tracked_uid:
            self._tracked_uid = uid
            self.profiles.subscribe(identity)
        self._changed()

    def _changed(self) -> None:
        for listener in list(self._listeners):
            try:
                listener()
            except Exception as e:
                logger.warning(
                    "View listener %s failed: %s",
                    getattr(listener, "__name__", listener), e,
                )


def build_controller(
    config: Config,
    context: ServiceContext,
    env: Mapping[str, str],
    injection: RuntimeInjection | None = None,
) -> AccessController:
    """Resolve configuration and build a controller on the context's handle."""
    injection = injection or RuntimeInjection()
    resolved = resolve(
        env,
        injection.config_json,
        injection.namespace,
        prefix=config.session.env_prefix,
    )
    handle = context.handle(resolved)
    return AccessController(handle, config=config, injection=injection)
