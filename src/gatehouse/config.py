"""Configuration for Gatehouse.

Two layers:

- ``resolve()`` turns an environment mapping plus optional injected runtime
  values into backend credentials and a namespace id. It is pure and never
  raises; a broken injected config just means "no backend".
- ``load_config()`` reads ``gatehouse.toml`` settings (timeouts, logging)
  with sensible defaults when the file is absent.

Both are evaluated once at startup and passed down explicitly.
"""

from __future__ import annotations

import json
import logging
import tomllib
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

from gatehouse.exceptions import ConfigError
from gatehouse.models import Credentials

logger = logging.getLogger(__name__)

DEFAULT_NAMESPACE = "default-app"
DEFAULT_ENV_PREFIX = "GATEHOUSE_"

# Credential attribute -> environment variable suffix.
_ENV_FIELDS = {
    "api_key": "FIREBASE_API_KEY",
    "auth_domain": "FIREBASE_AUTH_DOMAIN",
    "project_id": "FIREBASE_PROJECT_ID",
    "storage_bucket": "FIREBASE_STORAGE_BUCKET",
    "messaging_sender_id": "FIREBASE_MESSAGING_SENDER_ID",
    "app_id": "FIREBASE_APP_ID",
}
_NAMESPACE_ENV = "CUSTOM_APP_ID"


@dataclass(frozen=True)
class RuntimeInjection:
    """Optional values handed to the process by its launcher."""

    config_json: str | None = None
    namespace: str | None = None
    initial_auth_token: str | None = None


@dataclass(frozen=True)
class ResolvedConfig:
    """Outcome of credential resolution."""

    credentials: Credentials | None
    namespace: str = DEFAULT_NAMESPACE

    @property
    def available(self) -> bool:
        return self.credentials is not None and self.credentials.valid


def _env_value(env: Mapping[str, str], name: str, prefix: str) -> str:
    """Prefixed variable first, then the bare name. Blank counts as unset."""
    for key in (f"{prefix}{name}", name):
        value = env.get(key)
        if value is not None and str(value).strip():
            return str(value).strip()
    return ""


def parse_injected_config(raw: str) -> Credentials:
    """Parse an injected JSON web config.

    Raises ConfigError when the string is not a JSON object.
    """
    try:
        data = json.loads(raw)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Injected config is not valid JSON: {e}", original=e) from e
    if not isinstance(data, dict):
        raise ConfigError(
            f"Injected config must be a JSON object, got {type(data).__name__}."
        )
    return Credentials.from_mapping(data)


def resolve(
    env: Mapping[str, str],
    injected_config: str | None = None,
    injected_namespace: str | None = None,
    *,
    prefix: str = DEFAULT_ENV_PREFIX,
) -> ResolvedConfig:
    """Resolve backend credentials and namespace id.

    Precedence for credentials: environment variables, then the injected
    JSON config (only consulted when the env gives no api key). Namespace:
    environment, then injected value, then ``DEFAULT_NAMESPACE``.
    """
    credentials = Credentials(**{
        attr: _env_value(env, name, prefix) for attr, name in _ENV_FIELDS.items()
    })

    if not credentials.api_key and injected_config:
        try:
            credentials = parse_injected_config(injected_config)
        except ConfigError as e:
            logger.warning("Ignoring injected backend config: %s", e)

    namespace = (
        _env_value(env, _NAMESPACE_ENV, prefix)
        or (injected_namespace or "").strip()
        or DEFAULT_NAMESPACE
    )

    if not credentials.valid:
        return ResolvedConfig(credentials=None, namespace=namespace)
    return ResolvedConfig(credentials=credentials, namespace=namespace)


@dataclass(frozen=True)
class SessionConfig:
    load_fallback_seconds: float = 1.5
    message_ttl_seconds: float = 3.0
    env_prefix: str = DEFAULT_ENV_PREFIX
    session_dir: str = "~/.gatehouse/sessions"


@dataclass(frozen=True)
class SyncConfig:
    poll_interval_seconds: float = 2.0
    request_timeout_seconds: float = 10.0
    read_retry_attempts: int = 3


@dataclass(frozen=True)
class LoggingConfig:
    level: str = "INFO"
    log_dir: str = "~/.gatehouse/logs"


@dataclass(frozen=True)
class Config:
    """Top-level Gatehouse settings."""

    session: SessionConfig = field(default_factory=SessionConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @property
    def log_path(self) -> Path:
        return Path(self.logging.log_dir).expanduser()

    def session_file(self, project_id: str) -> Path:
        """Where the signed-in session for ``project_id`` is kept."""
        name = project_id or "default"
        return Path(self.session.session_dir).expanduser() / f"{name}.json"


def _positive_float(raw: object, default: float) -> float:
    try:
        value = float(raw)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return default
    if value <= 0:
        return default
    return value


def _positive_int(raw: object, default: int) -> int:
    if isinstance(raw, bool) or not isinstance(raw, int) or raw <= 0:
        return default
    return raw


def default_config_candidates() -> list[Path]:
    return [
        Path.cwd() / "gatehouse.toml",
        Path.home() / ".gatehouse" / "gatehouse.toml",
    ]


def load_config(path: Path | None = None) -> Config:
    """Load settings from a TOML file.

    If path is None, searches for gatehouse.toml in the current directory
    then ~/.gatehouse/. Returns default config if no file is found.
    """
    if path is None:
        for candidate in default_config_candidates():
            if candidate.exists():
                path = candidate
                break

    if path is None or not path.exists():
        return Config()

    try:
        with open(path, "rb") as f:
            raw = tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"Invalid TOML in {path}: {e}", original=e) from e
    except OSError as e:
        raise ConfigError(f"Cannot read config {path}: {e}", original=e) from e

    defaults = SessionConfig()
    session_data = raw.get("session", {})
    if not isinstance(session_data, dict):
        session_data = {}
    prefix = session_data.get("env_prefix", defaults.env_prefix)
    session = SessionConfig(
        load_fallback_seconds=_positive_float(
            session_data.get("load_fallback_seconds"), defaults.load_fallback_seconds,
        ),
        message_ttl_seconds=_positive_float(
            session_data.get("message_ttl_seconds"), defaults.message_ttl_seconds,
        ),
        env_prefix=prefix if isinstance(prefix, str) else defaults.env_prefix,
        session_dir=str(session_data.get("session_dir", defaults.session_dir)),
    )

    sync_defaults = SyncConfig()
    sync_data = raw.get("sync", {})
    if not isinstance(sync_data, dict):
        sync_data = {}
    sync = SyncConfig(
        poll_interval_seconds=_positive_float(
            sync_data.get("poll_interval_seconds"), sync_defaults.poll_interval_seconds,
        ),
        request_timeout_seconds=_positive_float(
            sync_data.get("request_timeout_seconds"),
            sync_defaults.request_timeout_seconds,
        ),
        read_retry_attempts=_positive_int(
            sync_data.get("read_retry_attempts"), sync_defaults.read_retry_attempts,
        ),
    )

    log_data = raw.get("logging", {})
    if not isinstance(log_data, dict):
        log_data = {}
    logging_cfg = LoggingConfig(
        level=str(log_data.get("level", "INFO")).upper(),
        log_dir=str(log_data.get("log_dir", "~/.gatehouse/logs")),
    )

    return Config(session=session, sync=sync, logging=logging_cfg)
