"""Built-in account service: sign-up, login, logout and session lookup."""

from __future__ import annotations

from typing import Any

from covenant.credentials import CredentialStore
from covenant.registry import ServiceDefinition

USERNAME_RULE = {
    "param": "username",
    "required": True,
    "validation": {"is_type": "string", "valid_email": True, "max_length": 254},
}

ENDPOINTS: list[dict[str, Any]] = [
    {
        "name": "user.create",
        "method": "post",
        "rest_path": "/users",
        "description": "Create a user account from an email address and password.",
        "handler": "create_user",
        "params": [
            USERNAME_RULE,
            {
                "param": "password",
                "required": True,
                "validation": {"is_type": "string", "min_length": 6, "max_length": 128},
            },
        ],
        "returns": [{"user_id": "integer"}],
    },
    {
        "name": "auth.login",
        "method": "post",
        "rest_path": "/auth/login",
        "description": "Exchange a username and password for a session token.",
        "handler": "login",
        "params": [
            USERNAME_RULE,
            {"param": "password", "required": True, "validation": {"is_type": "string"}},
        ],
        "returns": [
            {"user_id": "integer", "session_token": "string", "session_start": "date"}
        ],
    },
    {
        "name": "auth.logout",
        "method": "post",
        "rest_path": "/auth/logout",
        "description": "Destroy the session carried by the request.",
        "handler": "logout",
        "authentication": {"session_token": True},
        "returns": [{"logged_out": "boolean"}],
    },
    {
        "name": "auth.whoami",
        "method": "post",
        "rest_path": "/auth/whoami",
        "description": "Return the session carried by the request.",
        "handler": "whoami",
        "authentication": {"session_token": True},
        "returns": [{"user_id": "integer", "session_token": "string"}],
    },
]


def build_auth_service(credentials: CredentialStore) -> ServiceDefinition:
    """Bind the account endpoints to ``credentials``."""

    async def create_user(request: dict[str, Any]) -> dict[str, Any]:
        user_id = credentials.create_user(request["username"], request["password"])
        return {"user_id": user_id}

    async def login(request: dict[str, Any]) -> dict[str, Any]:
        user_id = credentials.check_credentials(request["username"], request["password"])
        session = await credentials.create_session(user_id)
        return session.model_dump(mode="json")

    async def logout(request: dict[str, Any]) -> dict[str, Any]:
        await credentials.destroy_session(request["session"].session_token)
        return {"logged_out": True}

    async def whoami(request: dict[str, Any]) -> dict[str, Any]:
        return request["session"].model_dump(mode="json")

    return ServiceDefinition(
        name="auth",
        endpoints=ENDPOINTS,
        handlers={
            "create_user": create_user,
            "login": login,
            "logout": logout,
            "whoami": whoami,
        },
    )
