"""Cloud Firestore REST client.

Documents are read with ``GET`` and written through ``documents:commit`` so
merge writes (update masks) and server timestamps (field transforms) go
out as one atomic write. Document listeners are backed by a polling watch
task that reports a snapshot on first read and then only when the
document's update time or existence changes.
"""

from __future__ import annotations

import asyncio
import base64
import logging
import random
import re
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

import httpx

from gatehouse.exceptions import SyncError, WriteError
from gatehouse.providers.base import (
    SERVER_TIMESTAMP,
    DocRef,
    DocumentSnapshot,
    DocumentStore,
    ErrorHandler,
    SnapshotHandler,
)
from gatehouse.subscriptions import Unsubscribe

logger = logging.getLogger(__name__)

FIRESTORE_URL = "https://firestore.googleapis.com/v1"

_SIMPLE_FIELD_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

TokenSource = Callable[[], Awaitable[str | None]]


@dataclass(frozen=True)
class ReadRetryPolicy:
    """How a document listener retries transient read failures."""

    max_attempts: int = 3
    base_delay_seconds: float = 0.5
    max_delay_seconds: float = 8.0
    jitter_seconds: float = 0.25

    def delay(self, attempt: int) -> float:
        """Backoff before retry number ``attempt`` (1-based)."""
        delay = min(
            self.max_delay_seconds,
            self.base_delay_seconds * (2 ** (attempt - 1)),
        )
        if self.jitter_seconds > 0:
            delay += random.uniform(0.0, self.jitter_seconds)
        return delay


# --- Value codec ---


def _format_timestamp(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).isoformat().replace("+00:00", "Z")


def encode_value(value: Any) -> dict[str, Any]:
    """Encode a Python value as a Firestore typed value."""
    if value is None:
        return {"nullValue": None}
    if isinstance(value, bool):
        return {"booleanValue": value}
    if isinstance(value, int):
        return {"integerValue": str(value)}
    if isinstance(value, float):
        return {"doubleValue": value}
    if isinstance(value, str):
        return {"stringValue": value}
    if isinstance(value, datetime):
        return {"timestampValue": _format_timestamp(value)}
    if isinstance(value, bytes):
        return {"bytesValue": base64.b64encode(value).decode("ascii")}
    if isinstance(value, dict):
        return {"mapValue": {"fields": encode_fields(value)}}
    if isinstance(value, list | tuple):
        return {"arrayValue": {"values": [encode_value(v) for v in value]}}
    raise TypeError(f"Cannot encode {type(value).__name__} as a document value")


def encode_fields(data: dict[str, Any]) -> dict[str, Any]:
    return {str(k): encode_value(v) for k, v in data.items()}


def decode_value(raw: dict[str, Any]) -> Any:
    """Decode a Firestore typed value into a Python value."""
    if "nullValue" in raw:
        return None
    if "booleanValue" in raw:
        return bool(raw["booleanValue"])
    if "integerValue" in raw:
        return int(raw["integerValue"])
    if "doubleValue" in raw:
        return float(raw["doubleValue"])
    if "stringValue" in raw:
        return raw["stringValue"]
    if "timestampValue" in raw:
        text = str(raw["timestampValue"])
        try:
            return datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            return text
    if "bytesValue" in raw:
        return base64.b64decode(raw["bytesValue"])
    if "mapValue" in raw:
        return decode_fields(raw["mapValue"].get("fields", {}))
    if "arrayValue" in raw:
        return [decode_value(v) for v in raw["arrayValue"].get("values", [])]
    if "referenceValue" in raw:
        return raw["referenceValue"]
    if "geoPointValue" in raw:
        return dict(raw["geoPointValue"])
    return None


def decode_fields(fields: dict[str, Any]) -> dict[str, Any]:
    return {k: decode_value(v) for k, v in fields.items() if isinstance(v, dict)}


def field_path(name: str) -> str:
    """Quote a top-level field name for use in an update mask."""
    if _SIMPLE_FIELD_RE.fullmatch(name):
        return name
    escaped = name.replace("\\", "\\\\").replace("`", "\\`")
    return f"`{escaped}`"


# --- Client ---


class FirestoreRestClient(DocumentStore):
    """Async document store over the Firestore REST API."""

    def __init__(
        self,
        project_id: str,
        api_key: str = "",
        *,
        token_source: TokenSource | None = None,
        poll_interval: float = 2.0,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
        retry_policy: ReadRetryPolicy | None = None,
    ) -> None:
        self._project_id = project_id
        self._api_key = api_key
        self._token_source = token_source
        self._poll_interval = poll_interval
        self._retry_policy = retry_policy or ReadRetryPolicy()
        self._timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._watches: set[asyncio.Task[None]] = set()

    @property
    def database_path(self) -> str:
        return f"projects/{self._project_id}/databases/(default)"

    def document_name(self, ref: DocRef) -> str:
        return f"{self.database_path}/documents/{ref.path}"

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=FIRESTORE_URL,
                timeout=self._timeout,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        for task in list(self._watches):
            task.cancel()
        self._watches.clear()
        if self._client:
            await self._client.aclose()
            self._client = None

    async def _request_options(self) -> dict[str, Any]:
        headers: dict[str, str] = {}
        if self._token_source is not None:
            token = await self._token_source()
            if token:
                headers["Authorization"] = f"Bearer {token}"
        params = {"key": self._api_key} if self._api_key else {}
        return {"headers": headers, "params": params}

    # --- Reads ---

    async def get_document(self, ref: DocRef) -> DocumentSnapshot:
        client = await self._get_client()
        try:
            options = await self._request_options()
            response = await client.get(f"/{self.document_name(ref)}", **options)
            if response.status_code == 404:
                return DocumentSnapshot(ref=ref, exists=False)
            response.raise_for_status()
            body = response.json()
            if not isinstance(body, dict):
                raise SyncError(f"Unexpected document payload for {ref}")
            return DocumentSnapshot(
                ref=ref,
                exists=True,
                data=decode_fields(body.get("fields", {})),
                update_time=str(body.get("updateTime", "")),
            )
        except SyncError:
            raise
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            raise SyncError(
                f"Document read for {ref} returned HTTP {status}: "
                f"{e.response.text[:200]}",
                original=e,
                retryable=status == 429 or status >= 500,
            ) from e
        except httpx.HTTPError as e:
            raise SyncError(
                f"Document read for {ref} failed: {e}", original=e, retryable=True,
            ) from e
        except (AttributeError, TypeError, ValueError) as e:
            raise SyncError(f"Malformed document payload for {ref}", original=e) from e
        except Exception as e:
            # Token refresh failures surface here as auth errors.
            raise SyncError(f"Document read for {ref} failed: {e}", original=e) from e

    # --- Writes ---

    def build_write(
        self, ref: DocRef, data: dict[str, Any], *, merge: bool = False,
    ) -> dict[str, Any]:
        """Build one commit ``Write`` for ``data``.

        ``SERVER_TIMESTAMP`` values become ``REQUEST_TIME`` transforms.
        With ``merge`` the write carries an update mask of the given fields.
        """
        plain = {k: v for k, v in data.items() if v is not SERVER_TIMESTAMP}
        transforms = [
            {"fieldPath": field_path(k), "setToServerValue": "REQUEST_TIME"}
            for k, v in data.items()
            if v is SERVER_TIMESTAMP
        ]
        write: dict[str, Any] = {
            "update": {
                "name": self.document_name(ref),
                "fields": encode_fields(plain),
            },
        }
        if merge:
            write["updateMask"] = {"fieldPaths": [field_path(k) for k in plain]}
        if transforms:
            write["updateTransforms"] = transforms
        return write

    async def set_document(
        self, ref: DocRef, data: dict[str, Any], *, merge: bool = False,
    ) -> None:
        try:
            payload = {"writes": [self.build_write(ref, data, merge=merge)]}
        except TypeError as e:
            raise WriteError(f"Cannot encode document for {ref}: {e}", original=e) from e

        client = await self._get_client()
        try:
            options = await self._request_options()
            response = await client.post(
                f"/{self.database_path}/documents:commit", json=payload, **options,
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise WriteError(
                f"Document write for {ref} returned HTTP {e.response.status_code}: "
                f"{e.response.text[:200]}",
                original=e,
            ) from e
        except httpx.HTTPError as e:
            raise WriteError(f"Document write for {ref} failed: {e}", original=e) from e
        except Exception as e:
            raise WriteError(f"Document write for {ref} failed: {e}", original=e) from e
        logger.debug("Committed %s (merge=%s)", ref, merge)

    # --- Listeners ---

    def subscribe_document(
        self,
        ref: DocRef,
        on_next: SnapshotHandler,
        on_error: ErrorHandler,
    ) -> Unsubscribe:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError as e:
            raise SyncError(
                "Document listeners need a running event loop.", original=e,
            ) from e
        task = loop.create_task(self._watch(ref, on_next, on_error))
        self._watches.add(task)
        task.add_done_callback(self._watches.discard)

        def _unsubscribe() -> None:
            task.cancel()

        return _unsubscribe

    async def _watch(
        self, ref: DocRef, on_next: SnapshotHandler, on_error: ErrorHandler,
    ) -> None:
        policy = self._retry_policy
        last_seen: tuple[bool, str] | None = None
        failures = 0
        while True:
            try:
                snapshot = await self.get_document(ref)
            except SyncError as e:
                failures += 1
                if not e.retryable or failures >= policy.max_attempts:
                    logger.warning("Listener for %s stopped: %s", ref, e)
                    self._call(on_error, e)
                    return
                delay = policy.delay(failures)
                logger.info(
                    "Read of %s failed (attempt %d/%d), retrying in %.1fs: %s",
                    ref, failures, policy.max_attempts, delay, e,
                )
                await asyncio.sleep(delay)
                continue
            failures = 0
            key = (snapshot.exists, snapshot.update_time)
            if key != last_seen:
                last_seen = key
                self._call(on_next, snapshot)
            await asyncio.sleep(self._poll_interval)

    @staticmethod
    def _call(callback: Callable[[Any], Any], arg: Any) -> None:
        try:
            callback(arg)
        except Exception as e:
            logger.warning(
                "Document listener %s failed: %s",
                getattr(callback, "__name__", callback), e,
            )
