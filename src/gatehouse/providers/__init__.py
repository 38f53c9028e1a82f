"""Backend providers: abstract interfaces and REST clients."""

from gatehouse.providers.base import (
    SERVER_TIMESTAMP,
    DocRef,
    DocumentSnapshot,
    DocumentStore,
    IdentityProvider,
)
from gatehouse.providers.firestore_rest import FirestoreRestClient
from gatehouse.providers.identity_toolkit import IdentityToolkitClient

__all__ = [
    "SERVER_TIMESTAMP",
    "DocRef",
    "DocumentSnapshot",
    "DocumentStore",
    "FirestoreRestClient",
    "IdentityProvider",
    "IdentityToolkitClient",
]
