"""Tests for the init-once service context."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from gatehouse.config import ResolvedConfig
from gatehouse.models import Credentials
from gatehouse.service import ServiceContext


def _live(namespace: str = "ns") -> ResolvedConfig:
    return ResolvedConfig(
        credentials=Credentials(api_key="k", project_id="p"), namespace=namespace,
    )


class CountingFactory:
    def __init__(self, auth, docs):
        self.calls = 0
        self.auth = auth
        self.docs = docs

    def __call__(self, credentials, config):
        self.calls += 1
        return self.auth, self.docs


class TestServiceContext:
    def test_builds_clients_once(self, identity_provider, doc_store):
        factory = CountingFactory(identity_provider, doc_store)
        context = ServiceContext(client_factory=factory)
        first = context.handle(_live())
        second = context.handle(_live())
        assert first is second
        assert factory.calls == 1
        assert first.available is True
        assert first.auth_client is factory.auth
        assert context.initialized is True

    def test_later_resolution_is_ignored(self, caplog, identity_provider, doc_store):
        factory = CountingFactory(identity_provider, doc_store)
        context = ServiceContext(client_factory=factory)
        first = context.handle(_live("one"))
        second = context.handle(_live("two"))
        assert second is first
        assert second.namespace == "one"
        assert "already initialized" in caplog.text

    def test_unavailable_handle_has_no_clients(self, identity_provider, doc_store):
        factory = CountingFactory(identity_provider, doc_store)
        context = ServiceContext(client_factory=factory)
        handle = context.handle(ResolvedConfig(credentials=None, namespace="default-app"))
        assert handle.available is False
        assert handle.auth_client is None
        assert handle.doc_client is None
        assert factory.calls == 0

    def test_profile_ref_path(self, live_handle):
        ref = live_handle.profile_ref("u1")
        assert ref.path == "artifacts/test-app/users/u1/profile/data"

    async def test_aclose_closes_clients_once(self, identity_provider, doc_store):
        factory = CountingFactory(identity_provider, doc_store)
        factory.auth.close = AsyncMock()
        factory.docs.close = AsyncMock()
        context = ServiceContext(client_factory=factory)
        context.handle(_live())
        await context.aclose()
        await context.aclose()
        factory.auth.close.assert_awaited_once()
        factory.docs.close.assert_awaited_once()

    async def test_aclose_before_init_is_noop(self):
        await ServiceContext().aclose()

    def test_document_ref_needs_even_segments(self, doc_store):
        with pytest.raises(ValueError):
            doc_store.ref("artifacts", "ns", "users")
        with pytest.raises(ValueError):
            doc_store.ref()
