"""Core data types shared by the session and profile layers."""

from __future__ import annotations

from dataclasses import dataclass, fields, replace
from datetime import datetime
from enum import Enum
from typing import Any

DEFAULT_DISPLAY_NAME = "User"
DEFAULT_ROLE = "member"

# Remote document field names, keyed by Profile attribute.
_PROFILE_FIELDS = {
    "display_name": "displayName",
    "bio": "bio",
    "role": "role",
    "created_at": "createdAt",
}

_CREDENTIAL_KEYS = {
    "apiKey": "api_key",
    "authDomain": "auth_domain",
    "projectId": "project_id",
    "storageBucket": "storage_bucket",
    "messagingSenderId": "messaging_sender_id",
    "appId": "app_id",
}


@dataclass(frozen=True)
class Credentials:
    """Backend credentials. Only ``api_key`` is required."""

    api_key: str = ""
    auth_domain: str = ""
    project_id: str = ""
    storage_bucket: str = ""
    messaging_sender_id: str = ""
    app_id: str = ""

    @property
    def valid(self) -> bool:
        return bool(self.api_key)

    @classmethod
    def from_mapping(cls, data: dict[str, Any]) -> Credentials:
        """Build from a web-style config object (``apiKey``, ``projectId``, ...)."""
        values: dict[str, str] = {}
        for key, attr in _CREDENTIAL_KEYS.items():
            value = data.get(key)
            if isinstance(value, str):
                values[attr] = value.strip()
        return cls(**values)

    def __repr__(self) -> str:
        key_display = f"***{self.api_key[-4:]}" if self.api_key else ""
        return (
            f"Credentials(api_key={key_display!r}, "
            f"project_id={self.project_id!r}, "
            f"auth_domain={self.auth_domain!r})"
        )


@dataclass(frozen=True)
class Identity:
    """Authenticated user handle."""

    uid: str
    email: str = ""


@dataclass
class Profile:
    """Per-user display record."""

    display_name: str = DEFAULT_DISPLAY_NAME
    bio: str = ""
    role: str = DEFAULT_ROLE
    created_at: datetime | None = None

    def merged(self, partial: dict[str, Any]) -> Profile:
        """Return a copy with the fields in ``partial`` replaced."""
        known = {f.name for f in fields(self)}
        updates = {k: v for k, v in partial.items() if k in known}
        return replace(self, **updates)

    @classmethod
    def from_document(cls, data: dict[str, Any]) -> Profile:
        """Build a profile from a remote document.

        Missing fields take the empty value, not the local default.
        """
        created_at = data.get("createdAt")
        if isinstance(created_at, str):
            try:
                created_at = datetime.fromisoformat(created_at.replace("Z", "+00:00"))
            except ValueError:
                created_at = None
        elif not isinstance(created_at, datetime):
            created_at = None
        return cls(
            display_name=str(data.get("displayName") or ""),
            bio=str(data.get("bio") or ""),
            role=str(data.get("role") or ""),
            created_at=created_at,
        )


def document_fields(partial: dict[str, Any]) -> dict[str, Any]:
    """Map Profile attribute names in ``partial`` to remote field names.

    Unknown keys are dropped.
    """
    return {
        _PROFILE_FIELDS[key]: value
        for key, value in partial.items()
        if key in _PROFILE_FIELDS
    }


class SessionState(str, Enum):
    BOOTING = "booting"
    DEMO = "demo"
    CONNECTING = "connecting"
    SIGNED_OUT = "signed_out"
    SIGNED_IN = "signed_in"


class AuthMode(str, Enum):
    LOGIN = "login"
    REGISTER = "register"


@dataclass
class LoginForm:
    """In-progress login/registration input."""

    email: str = ""
    password: str = ""
    name: str = ""

    def clear(self) -> None:
        self.email = ""
        self.password = ""
        self.name = ""


@dataclass
class LoginOutcome:
    """Result of a login intent."""

    ok: bool
    identity: Identity | None = None
    profile: Profile | None = None
    error: str = ""
