"""Shared test fixtures for Gatehouse."""

from __future__ import annotations

import asyncio
from typing import Any

import pytest

from gatehouse.config import Config, SessionConfig, SyncConfig
from gatehouse.messages import MessageBoard
from gatehouse.models import Identity
from gatehouse.providers.base import (
    AuthStateHandler,
    DocRef,
    DocumentSnapshot,
    DocumentStore,
    ErrorHandler,
    IdentityProvider,
    SnapshotHandler,
)
from gatehouse.service import ServiceHandle


class FakeIdentityProvider(IdentityProvider):
    """In-memory identity provider that records every call.

    Auth-state notifications are delivered synchronously.
    """

    def __init__(self, *, notify_on_subscribe: bool = True) -> None:
        self.notify_on_subscribe = notify_on_subscribe
        self.identity: Identity | None = None
        self.handlers: list[AuthStateHandler] = []
        self.calls: list[str] = []
        self.anonymous_count = 0
        self.fail_sign_in: Exception | None = None
        self.fail_token: Exception | None = None
        self.fail_sign_out: Exception | None = None
        self.sign_out_gate: asyncio.Event | None = None

    @property
    def current_identity(self) -> Identity | None:
        return self.identity

    async def sign_in_anonymously(self) -> Identity:
        self.calls.append("sign_in_anonymously")
        if self.fail_sign_in is not None:
            raise self.fail_sign_in
        if self.identity is None:
            self.anonymous_count += 1
            self.emit(Identity(uid=f"anon-{self.anonymous_count}"))
        return self.identity

    async def sign_in_with_token(self, token: str) -> Identity:
        self.calls.append(f"sign_in_with_token:{token}")
        if self.fail_token is not None:
            raise self.fail_token
        self.emit(Identity(uid=f"token-{token}", email="token@example.com"))
        return self.identity

    def subscribe_auth_state(self, handler: AuthStateHandler):
        self.calls.append("subscribe_auth_state")
        self.handlers.append(handler)
        if self.notify_on_subscribe:
            handler(self.identity)

        def _unsubscribe() -> None:
            self.calls.append("unsubscribe_auth_state")
            self.handlers.remove(handler)

        return _unsubscribe

    async def sign_out(self) -> None:
        self.calls.append("sign_out")
        if self.sign_out_gate is not None:
            await self.sign_out_gate.wait()
        if self.fail_sign_out is not None:
            raise self.fail_sign_out
        self.emit(None)

    def emit(self, identity: Identity | None) -> None:
        self.identity = identity
        for handler in list(self.handlers):
            handler(identity)


class FakeDocumentStore(DocumentStore):
    """In-memory document store that records writes and listeners."""

    def __init__(self) -> None:
        self.documents: dict[str, dict[str, Any]] = {}
        self.writes: list[tuple[str, dict[str, Any], bool]] = []
        self.listeners: dict[int, tuple[DocRef, SnapshotHandler, ErrorHandler]] = {}
        self.events: list[tuple[str, str]] = []
        self.fail_writes: Exception | None = None
        self._next_id = 0

    async def set_document(self, ref: DocRef, data: dict[str, Any], *, merge: bool = False):
        self.writes.append((ref.path, dict(data), merge))
        if self.fail_writes is not None:
            raise self.fail_writes
        if merge:
            self.documents.setdefault(ref.path, {}).update(data)
        else:
            self.documents[ref.path] = dict(data)

    def subscribe_document(self, ref: DocRef, on_next, on_error):
        listener_id = self._next_id
        self._next_id += 1
        self.listeners[listener_id] = (ref, on_next, on_error)
        self.events.append(("attach", ref.path))

        def _unsubscribe() -> None:
            self.listeners.pop(listener_id, None)
            self.events.append(("detach", ref.path))

        return _unsubscribe

    @property
    def active_listeners(self) -> int:
        return len(self.listeners)

    def push(self, path: str) -> None:
        """Deliver the stored state of ``path`` to its listeners."""
        for ref, on_next, _ in list(self.listeners.values()):
            if ref.path != path:
                continue
            data = self.documents.get(path)
            on_next(DocumentSnapshot(ref=ref, exists=data is not None, data=dict(data or {})))

    def fail(self, error: Exception) -> None:
        for _, _, on_error in list(self.listeners.values()):
            on_error(error)


@pytest.fixture
def config() -> Config:
    """Settings with short timers so tests stay fast."""
    return Config(
        session=SessionConfig(load_fallback_seconds=0.05, message_ttl_seconds=0.05),
        sync=SyncConfig(poll_interval_seconds=0.01, request_timeout_seconds=1.0),
    )


@pytest.fixture
def identity_provider() -> FakeIdentityProvider:
    return FakeIdentityProvider()


@pytest.fixture
def doc_store() -> FakeDocumentStore:
    return FakeDocumentStore()


@pytest.fixture
def live_handle(identity_provider, doc_store) -> ServiceHandle:
    return ServiceHandle(
        auth_client=identity_provider,
        doc_client=doc_store,
        available=True,
        namespace="test-app",
    )


@pytest.fixture
def demo_handle() -> ServiceHandle:
    return ServiceHandle(
        auth_client=None, doc_client=None, available=False, namespace="default-app",
    )


@pytest.fixture
def messages() -> MessageBoard:
    return MessageBoard(ttl=0.05)

