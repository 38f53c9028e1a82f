"""Gatehouse exception hierarchy.

Every failure the core can recover from has its own type so callers can
tell a broken configuration apart from a failed sign-in, a dropped
document listener, or a rejected write.
"""

from __future__ import annotations


class GatehouseError(Exception):
    """Base for all Gatehouse exceptions."""

    def __init__(self, message: str, original: BaseException | None = None):
        super().__init__(message)
        self.original = original


class ConfigError(GatehouseError):
    """Malformed settings file or injected backend configuration."""


class AuthError(GatehouseError):
    """Sign-in, token refresh, or sign-out failures."""


class SyncError(GatehouseError):
    """Document listener failures.

    ``retryable`` marks failures worth another read: server errors, rate
    limiting, and transport problems.
    """

    def __init__(
        self,
        message: str,
        original: BaseException | None = None,
        *,
        retryable: bool = False,
    ):
        super().__init__(message, original)
        self.retryable = retryable



class WriteError(GatehouseError):
    """Document write failures."""
