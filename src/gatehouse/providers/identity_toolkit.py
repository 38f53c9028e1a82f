"""Identity Toolkit REST client.

Implements the browser-side sign-in flows over plain HTTPS with an api
key: anonymous sign-up, custom-token sign-in, and id-token refresh.
Sign-out is local: tokens are dropped and listeners are told.

With a ``session_path`` the refresh token is kept on disk, so the next
run resumes the same account instead of creating a new anonymous one.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import httpx

from gatehouse.exceptions import AuthError
from gatehouse.models import Identity
from gatehouse.providers.base import AuthStateHandler, IdentityProvider
from gatehouse.subscriptions import Unsubscribe

logger = logging.getLogger(__name__)

IDENTITY_TOOLKIT_URL = "https://identitytoolkit.googleapis.com/v1"
SECURE_TOKEN_URL = "https://securetoken.googleapis.com/v1"

# Refresh the id token when it has less than this many seconds left.
TOKEN_REFRESH_MARGIN = 60.0


@dataclass
class _TokenSet:
    id_token: str
    refresh_token: str
    expires_at: float

    def near_expiry(self, now: float) -> bool:
        return now >= self.expires_at - TOKEN_REFRESH_MARGIN


def _expiry(raw: Any) -> float:
    try:
        seconds = float(raw)
    except (TypeError, ValueError):
        seconds = 3600.0
    return time.monotonic() + seconds


def _write_private(path: Path, content: str) -> None:
    """Atomically replace ``path`` with an owner-only file."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_name(f".{path.name}.tmp-{os.getpid()}")
    fd = os.open(tmp_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
        os.replace(tmp_path, path)
    finally:
        tmp_path.unlink(missing_ok=True)


class IdentityToolkitClient(IdentityProvider):
    """Thin async client for the Identity Toolkit and Secure Token APIs."""

    def __init__(
        self,
        api_key: str,
        *,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
        session_path: Path | None = None,
    ) -> None:
        self._api_key = api_key
        self._timeout = timeout
        self._transport = transport
        self._session_path = session_path
        self._client: httpx.AsyncClient | None = None
        self._identity: Identity | None = None
        self._tokens: _TokenSet | None = None
        self._handlers: list[AuthStateHandler] = []
        self._sign_in_lock = asyncio.Lock()
        self._restored = session_path is None
        self._restore_task: asyncio.Task[Identity | None] | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self._timeout, transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        if self._restore_task is not None and not self._restore_task.done():
            self._restore_task.cancel()
        if self._client:
            await self._client.aclose()
            self._client = None

    @property
    def current_identity(self) -> Identity | None:
        return self._identity

    # --- Sign-in flows ---

    async def sign_in_anonymously(self) -> Identity:
        """Create an anonymous account, or return the one already signed in."""
        async with self._sign_in_lock:
            await self._restore_locked()
            if self._identity is not None:
                return self._identity
            data = await self._post(
                f"{IDENTITY_TOOLKIT_URL}/accounts:signUp",
                json={"returnSecureToken": True},
            )
            uid = str(data.get("localId") or "")
            if not uid:
                raise AuthError("Anonymous sign-up response is missing localId.")
            self._tokens = _TokenSet(
                id_token=str(data.get("idToken", "")),
                refresh_token=str(data.get("refreshToken", "")),
                expires_at=_expiry(data.get("expiresIn")),
            )
            identity = Identity(uid=uid, email=str(data.get("email") or ""))
            logger.info("Signed in anonymously as %s", uid)
            self._set_identity(identity)
            self._save_session()
            return identity

    async def sign_in_with_token(self, token: str) -> Identity:
        async with self._sign_in_lock:
            data = await self._post(
                f"{IDENTITY_TOOLKIT_URL}/accounts:signInWithCustomToken",
                json={"token": token, "returnSecureToken": True},
            )
            tokens = _TokenSet(
                id_token=str(data.get("idToken", "")),
                refresh_token=str(data.get("refreshToken", "")),
                expires_at=_expiry(data.get("expiresIn")),
            )
            identity = await self._lookup(tokens.id_token)
            self._tokens = tokens
            self._restored = True
            logger.info("Signed in with custom token as %s", identity.uid)
            self._set_identity(identity)
            self._save_session()
            return identity

    async def sign_out(self) -> None:
        async with self._sign_in_lock:
            first_state_pending = not self._restored
            self._tokens = None
            self._restored = True
            self._forget_session()
            if self._identity is None:
                if first_state_pending:
                    self._set_identity(None)
                return
            logger.info("Signed out %s", self._identity.uid)
            self._set_identity(None)

    async def id_token(self) -> str | None:
        """Return a valid id token, refreshing it when close to expiry."""
        tokens = self._tokens
        if tokens is None:
            return None
        if tokens.near_expiry(time.monotonic()) and tokens.refresh_token:
            await self._refresh(tokens)
        return self._tokens.id_token if self._tokens else None

    async def _refresh(self, tokens: _TokenSet) -> None:
        fresh = await self._exchange_refresh_token(tokens.refresh_token)
        if self._tokens is not tokens:
            # Signed out or replaced while the refresh was in flight.
            return
        self._tokens = fresh
        self._save_session()
        logger.debug("Refreshed id token")

    async def _exchange_refresh_token(self, refresh_token: str) -> _TokenSet:
        data = await self._post(
            f"{SECURE_TOKEN_URL}/token",
            data={"grant_type": "refresh_token", "refresh_token": refresh_token},
        )
        return _TokenSet(
            id_token=str(data.get("id_token", "")),
            refresh_token=str(data.get("refresh_token", refresh_token)),
            expires_at=_expiry(data.get("expires_in")),
        )

    async def _lookup(self, id_token: str) -> Identity:
        data = await self._post(
            f"{IDENTITY_TOOLKIT_URL}/accounts:lookup", json={"idToken": id_token},
        )
        users = data.get("users")
        if not isinstance(users, list) or not users or not isinstance(users[0], dict):
            raise AuthError("Account lookup returned no user.")
        user = users[0]
        uid = str(user.get("localId") or "")
        if not uid:
            raise AuthError("Account lookup response is missing localId.")
        return Identity(uid=uid, email=str(user.get("email") or ""))

    # --- Saved session ---

    async def restore(self) -> Identity | None:
        """Resume the account saved by an earlier run, at most once.

        A saved session that cannot be refreshed is deleted. Either way every
        auth-state subscriber then receives its first notification.
        """
        async with self._sign_in_lock:
            return await self._restore_locked()

    async def _restore_locked(self) -> Identity | None:
        if self._restored:
            return self._identity
        self._restored = True
        identity: Identity | None = None
        refresh_token = self._load_refresh_token()
        if refresh_token:
            try:
                tokens = await self._exchange_refresh_token(refresh_token)
                identity = await self._lookup(tokens.id_token)
            except AuthError as e:
                logger.warning("Saved session could not be restored: %s", e)
                self._forget_session()
            else:
                self._tokens = tokens
                logger.info("Restored saved session for %s", identity.uid)
        self._set_identity(identity)
        if identity is not None:
            self._save_session()
        return identity

    def _load_refresh_token(self) -> str | None:
        path = self._session_path
        if path is None or not path.exists():
            return None
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.warning("Ignoring unreadable session file %s: %s", path, e)
            self._forget_session()
            return None
        token = data.get("refresh_token") if isinstance(data, dict) else None
        if not isinstance(token, str) or not token:
            logger.warning("Ignoring session file %s without a refresh token", path)
            self._forget_session()
            return None
        return token

    def _save_session(self) -> None:
        path = self._session_path
        if path is None or self._tokens is None or self._identity is None:
            return
        payload = {
            "uid": self._identity.uid,
            "email": self._identity.email,
            "refresh_token": self._tokens.refresh_token,
        }
        try:
            _write_private(path, json.dumps(payload))
        except OSError as e:
            logger.warning("Cannot save session to %s: %s", path, e)

    def _forget_session(self) -> None:
        if self._session_path is None:
            return
        try:
            self._session_path.unlink(missing_ok=True)
        except OSError as e:
            logger.warning("Cannot delete session file %s: %s", self._session_path, e)

    # --- Auth state listeners ---

    def subscribe_auth_state(self, handler: AuthStateHandler) -> Unsubscribe:
        self._handlers.append(handler)
        if self._restored or not self._start_restore():
            self._deliver(handler, self._identity)

        def _unsubscribe() -> None:
            try:
                self._handlers.remove(handler)
            except ValueError:
                pass

        return _unsubscribe

    def _start_restore(self) -> bool:
        """Begin restoring in the background; the restore notifies subscribers."""
        if self._restore_task is not None and not self._restore_task.done():
            return True
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return False
        self._restore_task = loop.create_task(self.restore())
        return True

    def _set_identity(self, identity: Identity | None) -> None:
        self._identity = identity
        for handler in list(self._handlers):
            self._deliver(handler, identity)

    @staticmethod
    def _deliver(handler: AuthStateHandler, identity: Identity | None) -> None:
        """Call ``handler`` on the next loop turn, in emission order."""
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None
        if loop is not None:
            loop.call_soon(handler, identity)
            return
        try:
            handler(identity)
        except Exception as e:
            logger.warning("Auth state handler failed: %s", e)

    # --- HTTP ---

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            return response.text[:200]
        error = body.get("error") if isinstance(body, dict) else None
        if isinstance(error, dict):
            return str(error.get("message") or error)
        if isinstance(error, str):
            return error
        return str(body)[:200]

    async def _post(self, url: str, **kwargs: Any) -> dict[str, Any]:
        client = await self._get_client()
        try:
            response = await client.post(url, params={"key": self._api_key}, **kwargs)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise AuthError(
                f"Identity service returned HTTP {e.response.status_code}: "
                f"{self._error_message(e.response)}",
                original=e,
            ) from e
        except httpx.TimeoutException as e:
            raise AuthError(f"Identity service request timed out: {e}", original=e) from e
        except httpx.HTTPError as e:
            raise AuthError(f"Cannot reach identity service: {e}", original=e) from e
        try:
            data = response.json()
        except ValueError as e:
            raise AuthError("Identity service returned malformed JSON.", original=e) from e
        if not isinstance(data, dict):
            raise AuthError("Identity service returned an unexpected payload.")
        return data
