"""Environment-driven settings for a Covenant deployment."""

from __future__ import annotations

import os
from dataclasses import dataclass

DEFAULT_API_ENDPOINT = "json-api"
DEFAULT_HTTP_PORT = 8070
DEFAULT_SESSION_TTL_SECONDS = 86_400

_TRUTHY = {"1", "true", "yes", "on"}


def _get_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in _TRUTHY


def _get_int(name: str, default: int, *, minimum: int = 0) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    return max(minimum, value)


def _get_api_endpoint() -> str:
    endpoint = os.getenv("COVENANT_API_ENDPOINT", DEFAULT_API_ENDPOINT).strip("/ ")
    return endpoint or DEFAULT_API_ENDPOINT


def _get_redis_url() -> str:
    return os.getenv("COVENANT_REDIS_URL", "redis://localhost:6379/0")


def _get_db_path() -> str:
    return os.getenv("COVENANT_DB_PATH", "covenant.db")


def _get_log_level() -> str:
    return os.getenv("COVENANT_LOG_LEVEL", "INFO")


@dataclass(frozen=True)
class Settings:
    """Runtime configuration shared by the app factory, CLI and client."""

    api_endpoint: str = DEFAULT_API_ENDPOINT
    debug: bool = False
    redis_url: str = "redis://localhost:6379/0"
    db_path: str = "covenant.db"
    log_level: str = "INFO"
    session_ttl_seconds: int = DEFAULT_SESSION_TTL_SECONDS
    http_port: int = DEFAULT_HTTP_PORT
    enable_auth_service: bool = True

    @classmethod
    def from_env(cls) -> Settings:
        """Build settings from ``COVENANT_*`` environment variables."""
        return cls(
            api_endpoint=_get_api_endpoint(),
            debug=_get_bool("COVENANT_DEBUG", False),
            redis_url=_get_redis_url(),
            db_path=_get_db_path(),
            log_level=_get_log_level(),
            session_ttl_seconds=_get_int(
                "COVENANT_SESSION_TTL", DEFAULT_SESSION_TTL_SECONDS
            ),
            http_port=_get_int("COVENANT_HTTP_PORT", DEFAULT_HTTP_PORT, minimum=1),
            enable_auth_service=_get_bool("COVENANT_AUTH_SERVICE", True),
        )

    @property
    def rpc_path(self) -> str:
        return f"/{self.api_endpoint}"
