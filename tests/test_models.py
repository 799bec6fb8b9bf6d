"""Model and settings tests."""

from __future__ import annotations

from datetime import UTC, datetime

from covenant.config import DEFAULT_SESSION_TTL_SECONDS, Settings
from covenant.models import Envelope, Session


def _session(**extra: object) -> Session:
    return Session(
        user_id=7,
        session_token="tok",
        session_start=datetime(2024, 5, 1, tzinfo=UTC),
        **extra,
    )


def test_session_extensions_and_core() -> None:
    session = _session(theme="dark")
    assert session.extensions() == {"theme": "dark"}
    assert session.core().extensions() == {}
    assert session.core().user_id == 7


def test_session_merge_never_overwrites_core_fields() -> None:
    merged = _session().merged({"session_token": "forged", "theme": "dark"})
    assert merged.session_token == "tok"
    assert merged.extensions() == {"theme": "dark"}


def test_session_json_roundtrip_keeps_extensions() -> None:
    session = _session(locale="en")
    restored = Session.model_validate_json(session.model_dump_json())
    assert restored == session


def test_envelope_defaults() -> None:
    envelope = Envelope(requested="a.b", success=True)
    assert envelope.model_dump() == {
        "requested": "a.b",
        "success": True,
        "error": None,
        "data": None,
    }


def test_settings_from_env(monkeypatch) -> None:
    monkeypatch.setenv("COVENANT_API_ENDPOINT", "/rpc/")
    monkeypatch.setenv("COVENANT_DEBUG", "yes")
    monkeypatch.setenv("COVENANT_SESSION_TTL", "not-a-number")
    monkeypatch.setenv("COVENANT_AUTH_SERVICE", "false")

    settings = Settings.from_env()

    assert settings.api_endpoint == "rpc"
    assert settings.rpc_path == "/rpc"
    assert settings.debug is True
    assert settings.session_ttl_seconds == DEFAULT_SESSION_TTL_SECONDS
    assert settings.enable_auth_service is False


def test_settings_defaults(monkeypatch) -> None:
    for name in ("COVENANT_API_ENDPOINT", "COVENANT_DEBUG", "COVENANT_HTTP_PORT"):
        monkeypatch.delenv(name, raising=False)
    settings = Settings.from_env()
    assert settings.api_endpoint == "json-api"
    assert settings.debug is False
    assert settings.http_port == 8070
