"""Abstract backend interfaces.

The session and profile layers talk to an identity provider and a
document store only through these classes, so the REST clients and test
doubles are interchangeable.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from gatehouse.models import Identity
from gatehouse.subscriptions import Unsubscribe


class _ServerTimestamp:
    """Sentinel asking the store to fill in its own write time."""

    _instance: _ServerTimestamp | None = None

    def __new__(cls) -> _ServerTimestamp:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "SERVER_TIMESTAMP"


SERVER_TIMESTAMP = _ServerTimestamp()


@dataclass(frozen=True)
class DocRef:
    """Slash-joined document path relative to the database root."""

    segments: tuple[str, ...]

    @property
    def path(self) -> str:
        return "/".join(self.segments)

    def __str__(self) -> str:
        return self.path


@dataclass(frozen=True)
class DocumentSnapshot:
    ref: DocRef
    exists: bool
    data: dict[str, Any] = field(default_factory=dict)
    update_time: str = ""


AuthStateHandler = Callable[[Identity | None], None]
SnapshotHandler = Callable[[DocumentSnapshot], None]
ErrorHandler = Callable[[Exception], None]


class IdentityProvider(ABC):
    """Remote identity service."""

    @property
    @abstractmethod
    def current_identity(self) -> Identity | None:
        """The identity currently signed in, if any."""
        ...

    @abstractmethod
    async def sign_in_anonymously(self) -> Identity:
        ...

    @abstractmethod
    async def sign_in_with_token(self, token: str) -> Identity:
        ...

    @abstractmethod
    def subscribe_auth_state(self, handler: AuthStateHandler) -> Unsubscribe:
        """Register for identity changes.

        The handler is called once with the current state, then on every
        change. Returns a disposer.
        """
        ...

    @abstractmethod
    async def sign_out(self) -> None:
        ...

    async def close(self) -> None:
        """Release transport resources."""


class DocumentStore(ABC):
    """Remote document database."""

    def ref(self, *segments: str) -> DocRef:
        if not segments or len(segments) % 2:
            raise ValueError(
                f"Document path needs an even number of segments, got {segments!r}"
            )
        return DocRef(tuple(str(s) for s in segments))

    @abstractmethod
    async def set_document(
        self, ref: DocRef, data: dict[str, Any], *, merge: bool = False,
    ) -> None:
        """Write ``data``; with ``merge`` only the given fields change."""
        ...

    @abstractmethod
    def subscribe_document(
        self,
        ref: DocRef,
        on_next: SnapshotHandler,
        on_error: ErrorHandler,
    ) -> Unsubscribe:
        ...

    async def close(self) -> None:
        """Release transport resources."""
