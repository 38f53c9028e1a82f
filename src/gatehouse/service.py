"""Backend service handle and its init-once context.

A ``ServiceContext`` is created once at startup and passed down. The first
call to ``handle()`` builds the provider clients; every later call returns
the same ``ServiceHandle``.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass

from gatehouse.config import Config, ResolvedConfig
from gatehouse.models import Credentials
from gatehouse.providers.base import DocRef, DocumentStore, IdentityProvider

logger = logging.getLogger(__name__)

PROFILE_ROOT = "artifacts"

ClientFactory = Callable[[Credentials, Config], tuple[IdentityProvider, DocumentStore]]


@dataclass(frozen=True)
class ServiceHandle:
    """Resolved reference to the configured backend."""

    auth_client: IdentityProvider | None
    doc_client: DocumentStore | None
    available: bool
    namespace: str

    def profile_ref(self, uid: str) -> DocRef:
        if self.doc_client is None:
            raise RuntimeError("No document store configured.")
        return self.doc_client.ref(
            PROFILE_ROOT, self.namespace, "users", uid, "profile", "data",
        )


def build_rest_clients(
    credentials: Credentials, config: Config,
) -> tuple[IdentityProvider, DocumentStore]:
    """Build the Identity Toolkit + Firestore REST clients."""
    from gatehouse.providers.firestore_rest import FirestoreRestClient, ReadRetryPolicy
    from gatehouse.providers.identity_toolkit import IdentityToolkitClient

    auth = IdentityToolkitClient(
        credentials.api_key,
        timeout=config.sync.request_timeout_seconds,
        session_path=config.session_file(credentials.project_id),
    )
    docs = FirestoreRestClient(
        credentials.project_id,
        credentials.api_key,
        token_source=auth.id_token,
        poll_interval=config.sync.poll_interval_seconds,
        timeout=config.sync.request_timeout_seconds,
        retry_policy=ReadRetryPolicy(max_attempts=config.sync.read_retry_attempts),
    )
    return auth, docs


class ServiceContext:
    """Owns the process-wide ServiceHandle."""

    def __init__(
        self,
        config: Config | None = None,
        *,
        client_factory: ClientFactory | None = None,
    ) -> None:
        self._config = config or Config()
        self._client_factory = client_factory or build_rest_clients
        self._handle: ServiceHandle | None = None
        self._source: ResolvedConfig | None = None
        self._closed = False

    @property
    def initialized(self) -> bool:
        return self._handle is not None

    def handle(self, resolved: ResolvedConfig) -> ServiceHandle:
        """Return the handle, building it on first use."""
        if self._handle is not None:
            if resolved != self._source:
                logger.warning(
                    "Service already initialized for namespace %r; "
                    "ignoring new configuration.",
                    self._handle.namespace,
                )
            return self._handle

        self._source = resolved
        if not resolved.available or resolved.credentials is None:
            logger.warning(
                "No backend credentials configured; running in demo mode.",
            )
            self._handle = ServiceHandle(
                auth_client=None,
                doc_client=None,
                available=False,
                namespace=resolved.namespace,
            )
            return self._handle

        auth, docs = self._client_factory(resolved.credentials, self._config)
        logger.info(
            "Backend initialized for project %r (namespace %r)",
            resolved.credentials.project_id, resolved.namespace,
        )
        self._handle = ServiceHandle(
            auth_client=auth,
            doc_client=docs,
            available=True,
            namespace=resolved.namespace,
        )
        return self._handle

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        handle = self._handle
        if handle is None or not handle.available:
            return
        for client in (handle.doc_client, handle.auth_client):
            if client is None:
                continue
            try:
                await client.close()
            except Exception as e:
                logger.warning("Closing %s failed: %s", type(client).__name__, e)
