"""pytest fixtures for Covenant."""

from __future__ import annotations

import os
import sys
from collections.abc import AsyncIterator, Callable, Iterator
from pathlib import Path
from typing import Any

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from httpx import ASGITransport, AsyncClient

ROOT_DIR = Path(__file__).resolve().parents[1]
SRC_DIR = ROOT_DIR / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

# Importing covenant.main builds a module-level app; keep its database in memory.
os.environ.setdefault("COVENANT_DB_PATH", ":memory:")

from covenant.cache import Cache
from covenant.config import Settings
from covenant.credentials import CredentialStore
from covenant.errors import make_standard_error
from covenant.main import create_app
from covenant.models import APIKeyPair
from covenant.registry import ServiceDefinition
from covenant.store import SQLiteCredentialRepository


class FakeRedis:
    """Minimal async Redis stub for tests."""

    def __init__(self) -> None:
        self._data: dict[str, str] = {}
        self.ttls: dict[str, int | None] = {}
        self.fail = False
        self.calls: list[str] = []

    def _check(self, name: str) -> None:
        self.calls.append(name)
        if self.fail:
            raise ConnectionError("redis unavailable")

    async def get(self, key: str) -> str | None:
        self._check("get")
        return self._data.get(key)

    async def set(self, key: str, value: str, ex: int | None = None) -> bool:
        self._check("set")
        self._data[key] = value
        self.ttls[key] = ex
        return True

    async def delete(self, *keys: str) -> int:
        self._check("delete")
        removed = 0
        for key in keys:
            if self._data.pop(key, None) is not None:
                removed += 1
        return removed

    async def flushall(self) -> bool:
        self._check("flushall")
        self._data.clear()
        return True

    async def ping(self) -> bool:
        self._check("ping")
        return True

    async def aclose(self) -> None:
        return None


DEMO_ENDPOINTS: list[dict[str, Any]] = [
    {
        "name": "demo.echo",
        "description": "Echo a short message back.",
        "handler": "echo",
        "params": [
            {
                "param": "message",
                "required": True,
                "validation": {"is_type": "string", "max_length": 20},
            }
        ],
        "returns": [{"echo": "string"}],
    },
    {
        "name": "demo.secure",
        "method": "post",
        "rest_path": "/demo/secure",
        "handler": "secure",
        "authentication": {"api_key": True},
    },
    {
        "name": "demo.profile",
        "rest_path": "demo/profile",
        "handler": "profile",
        "authentication": {"session_token": True},
    },
    {
        "name": "demo.items",
        "method": "put",
        "rest_path": "/demo/items",
        "handler": "items",
        "params": [
            {"param": "tags", "required": True, "validation": {"is_array": True}},
            {"param": "kind", "validation": {"in_set": ["book", "film"]}},
        ],
    },
    {"name": "demo.crash", "handler": "crash"},
    {"name": "demo.reject", "handler": "reject"},
    {"name": "demo.unbound", "handler": "not_registered"},
]


def build_demo_service(credentials: CredentialStore) -> ServiceDefinition:
    def echo(request: dict[str, Any]) -> dict[str, Any]:
        return {"echo": request["message"]}

    async def secure(request: dict[str, Any]) -> dict[str, Any]:
        return {"args": {k: v for k, v in request.items() if k != "session"}}

    async def profile(request: dict[str, Any]) -> dict[str, Any]:
        session = request["session"]
        await credentials.extend_session(session.session_token, {"visits": 1})
        return {"user_id": session.user_id}

    async def items(request: dict[str, Any]) -> dict[str, Any]:
        return {"count": len(request["tags"])}

    async def crash(request: dict[str, Any]) -> dict[str, Any]:
        raise RuntimeError("boom")

    async def reject(request: dict[str, Any]) -> dict[str, Any]:
        raise make_standard_error(detail="rejected by handler")

    return ServiceDefinition(
        name="demo",
        endpoints=DEMO_ENDPOINTS,
        handlers={
            "echo": echo,
            "secure": secure,
            "profile": profile,
            "items": items,
            "crash": crash,
            "reject": reject,
        },
    )


@pytest.fixture()
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture()
def cache(fake_redis: FakeRedis) -> Cache:
    return Cache(fake_redis)


@pytest.fixture()
def repository(tmp_path: Path) -> Iterator[SQLiteCredentialRepository]:
    repo = SQLiteCredentialRepository(str(tmp_path / "credentials.db"))
    yield repo
    repo.close()


@pytest.fixture()
def credentials(cache: Cache, repository: SQLiteCredentialRepository) -> CredentialStore:
    return CredentialStore(cache, repository, session_ttl=3600)


@pytest.fixture()
def make_app(
    tmp_path: Path, cache: Cache, repository: SQLiteCredentialRepository
) -> Callable[..., FastAPI]:
    def factory(**overrides: Any) -> FastAPI:
        settings = Settings(
            debug=overrides.pop("debug", True),
            db_path=str(tmp_path / "credentials.db"),
            log_level="WARNING",
            **overrides,
        )
        return create_app(
            settings=settings,
            cache=cache,
            repository=repository,
            services=[build_demo_service],
        )

    return factory


@pytest.fixture()
def app(make_app: Callable[..., FastAPI]) -> FastAPI:
    return make_app()


@pytest.fixture()
def client(app: FastAPI) -> TestClient:
    return TestClient(app)


@pytest.fixture()
async def async_client(app: FastAPI) -> AsyncIterator[AsyncClient]:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as http_client:
        yield http_client


@pytest.fixture()
def api_key_pair(app: FastAPI) -> APIKeyPair:
    return app.state.credentials.create_api_key_pair()
