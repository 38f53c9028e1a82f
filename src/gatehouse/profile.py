"""Per-user profile synchronization.

With a live backend the store follows one document,
``artifacts/{namespace}/users/{uid}/profile/data``, and replaces the local
profile with every snapshot of it. Saves are merge-writes; the local copy
only changes when the next snapshot arrives. Without a backend the profile
is purely local and saves apply immediately.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from gatehouse.exceptions import WriteError
from gatehouse.messages import MessageBoard
from gatehouse.models import Identity, Profile, document_fields
from gatehouse.providers.base import DocumentSnapshot
from gatehouse.service import ServiceHandle
from gatehouse.subscriptions import SubscriptionSlot

logger = logging.getLogger(__name__)


class ProfileStore:
    """Owns the local Profile and its document subscription."""

    def __init__(self, handle: ServiceHandle, messages: MessageBoard) -> None:
        self._handle = handle
        self._messages = messages
        self.profile = Profile()
        self.saving = False
        self._slot = SubscriptionSlot("profile-document")
        self._uid: str | None = None
        self._owner: str | None = None
        self._listeners: list[Callable[[], None]] = []

    @property
    def subscribed(self) -> bool:
        return self._slot.active

    @property
    def subscribed_uid(self) -> str | None:
        return self._uid if self._slot.active else None

    def add_listener(self, listener: Callable[[], None]) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: Callable[[], None]) -> None:
        try:
            self._listeners.remove(listener)
        except ValueError:
            pass

    # --- Subscription ---

    def subscribe(self, identity: Identity | None) -> None:
        """Follow the profile document of ``identity``.

        Any previous subscription is released first, so switching users
        never leaves two listeners alive. When the identity changes, the
        previous user's profile is dropped before the new one loads.
        """
        self.unsubscribe()
        uid = identity.uid if identity is not None else None
        if self._owner is not None and uid != self._owner:
            self.profile = Profile()
            self._notify()
        self._owner = uid
        if identity is None or not self._handle.available:
            return

        docs = self._handle.doc_client
        ref = self._handle.profile_ref(identity.uid)
        self._slot.attach(
            lambda sub: docs.subscribe_document(
                ref, sub.guard(self._on_snapshot), sub.guard(self._on_error),
            )
        )
        self._uid = identity.uid
        logger.debug("Subscribed to %s", ref)

    def unsubscribe(self) -> None:
        self._slot.release()
        self._uid = None

    def _on_snapshot(self, snapshot: DocumentSnapshot) -> None:
        if not snapshot.exists:
            # Not created yet; keep whatever we have.
            logger.debug("Profile document %s does not exist yet", snapshot.ref)
            return
        self.profile = Profile.from_document(snapshot.data)
        self._notify()

    def _on_error(self, error: Exception) -> None:
        logger.warning("Profile listener failed, keeping last profile: %s", error)

    # --- Local state ---

    def seed(self, profile: Profile) -> None:
        """Replace the local profile outright."""
        self.profile = profile
        self._notify()

    # --- Writes ---

    async def save(self, identity: Identity | None, partial: dict[str, Any]) -> bool:
        """Save profile fields. Returns True on success; never raises."""
        if not self._handle.available:
            self.profile = self.profile.merged(partial)
            self._notify()
            self._messages.success("Profile updated")
            return True

        if identity is None:
            self._messages.error("Sign in before saving your profile.")
            return False

        fields = document_fields(partial)
        if not fields:
            return True

        ref = self._handle.profile_ref(identity.uid)
        self.saving = True
        self._notify()
        try:
            await self._handle.doc_client.set_document(ref, fields, merge=True)
        except WriteError as e:
            logger.warning("Profile save failed for %s: %s", identity.uid, e)
            self._messages.error(f"Could not save profile: {e}")
            return False
        except Exception as e:
            logger.exception("Unexpected profile save failure")
            self._messages.error(f"Could not save profile: {e}")
            return False
        finally:
            self.saving = False
            self._notify()

        self._messages.success("Profile saved")
        return True

    def close(self) -> None:
        self.unsubscribe()
        self._listeners.clear()

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener()
            except Exception as e:
                logger.warning(
                    "Profile listener %s failed: %s",
                    getattr(listener, "__name__", listener), e,
                )
