"""Pydantic models for Covenant.

This module defines the records owned by the credential store and the wire
shape of every response:

- API key pairs and user credentials
- Sessions, including free-form extension fields
- The success/failure response envelope
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

SESSION_CORE_FIELDS = ("user_id", "session_token", "session_start")


class APIKeyPair(BaseModel):
    """An API key and the secret used to sign requests made with it."""

    key: str = Field(..., description="Opaque public key sent with requests")
    secret: str = Field(..., description="Signing secret, never sent over the wire")
    enabled: bool = Field(default=True, description="Disabled keys fail the API key gate")


class UserCredentials(BaseModel):
    """Stored password material for one user."""

    user_id: int
    username: str
    password_hash: str


class Session(BaseModel):
    """An authenticated user session.

    Attributes beyond the core identity fields are extension fields attached
    after creation with :meth:`CredentialStore.extend_session`.

    Example:
        ```python
        session = Session(user_id=7, session_token="ab12...", session_start=now)
        session.extensions()  # {}
        ```
    """

    model_config = ConfigDict(extra="allow")

    user_id: int = Field(..., description="Owner of the session")
    session_token: str = Field(..., description="Opaque unguessable token")
    session_start: datetime = Field(..., description="When the session was created")

    def core(self) -> Session:
        """Return a copy carrying only the core identity fields."""
        return Session(
            user_id=self.user_id,
            session_token=self.session_token,
            session_start=self.session_start,
        )

    def extensions(self) -> dict[str, Any]:
        return dict(self.model_extra or {})

    def merged(self, fields: dict[str, Any]) -> Session:
        """Return a copy with ``fields`` merged into the extension fields."""
        data = self.model_dump()
        data.update({k: v for k, v in fields.items() if k not in SESSION_CORE_FIELDS})
        return Session.model_validate(data)


class ErrorBody(BaseModel):
    code: int
    type: str
    message: str
    detail: Any = None


class Envelope(BaseModel):
    """Uniform response wrapper. Always delivered with HTTP 200."""

    requested: str | None = Field(..., description="REST path or RPC method name")
    success: bool
    error: ErrorBody | None = None
    data: Any = None
