"""Credential store: API keys, users and sessions.

All reads follow the same path: check the cache, on a miss read the
database, on a database hit write the value back to the cache. The database
is authoritative and the cache only ever holds values the database has
confirmed. No other component writes credential rows or cache entries.
"""

from __future__ import annotations

import asyncio
import secrets
import sqlite3
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any, Generic, TypeVar

from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError, VerifyMismatchError
from pydantic import ValidationError

from covenant.cache import Cache
from covenant.errors import (
    API_KEY,
    DB_ERROR,
    INVALID_CREDENTIALS,
    SESSION,
    USERNAME_TAKEN,
    ErrorTemplate,
    make_standard_error,
)
from covenant.logging import get_logger
from covenant.metrics import get_metrics
from covenant.models import APIKeyPair, Session
from covenant.store import CredentialRepository

logger = get_logger(__name__)

API_KEY_PREFIX = "APIKey:"
SESSION_PREFIX = "sessionToken:"
TOKEN_BYTES = 20

T = TypeVar("T")


def random_token(suffix: str = "") -> str:
    """Return 40 hex characters from a cryptographic source plus ``suffix``."""
    return secrets.token_hex(TOKEN_BYTES) + suffix


_hasher = PasswordHasher()


def hash_password(password: str) -> str:
    """Return an argon2id hash; the encoded string carries its own salt."""
    return _hasher.hash(password)


def verify_password(password_hash: str, password: str) -> bool:
    try:
        return _hasher.verify(password_hash, password)
    except (VerifyMismatchError, InvalidHashError, VerificationError):
        return False


class CachedLookup(Generic[T]):
    """Cache-first lookup with database fallback and write-through.

    Args:
        cache: Cache facade.
        prefix: Namespace prepended to every cache key.
        fetch: Database read returning the value or ``None``.
        serialize: Converts a database value into its cached form.
        deserialize: Rebuilds a value from its cached form.
        ttl: Optional expiry for cached entries, in seconds.
    """

    def __init__(
        self,
        cache: Cache,
        *,
        prefix: str,
        fetch: Callable[[str], T | None],
        serialize: Callable[[T], str],
        deserialize: Callable[[str], T],
        ttl: int | None = None,
    ) -> None:
        self.cache = cache
        self.prefix = prefix
        self.fetch = fetch
        self.serialize = serialize
        self.deserialize = deserialize
        self.ttl = ttl

    def cache_key(self, key: str) -> str:
        return f"{self.prefix}{key}"

    async def get(self, key: str) -> T | None:
        """Return the value for ``key`` or ``None`` when neither store has it.

        Raises:
            StandardError: ``db_error`` when the database read fails.
        """
        counter = get_metrics().cache_lookups_total
        cached = await self.cache.get(self.cache_key(key))
        if cached is not None:
            try:
                value = self.deserialize(cached)
            except (ValidationError, ValueError, TypeError) as exc:
                counter.inc(self.prefix, "error")
                logger.warning("cache_entry_unreadable", prefix=self.prefix, error=str(exc))
            else:
                counter.inc(self.prefix, "hit")
                return value
        else:
            counter.inc(self.prefix, "miss")

        try:
            found = self.fetch(key)
        except Exception as exc:
            logger.error("credential_fetch_failed", prefix=self.prefix, error=str(exc))
            raise make_standard_error(DB_ERROR, str(exc)) from exc
        if found is None:
            return None
        await self.cache.set(self.cache_key(key), self.serialize(found), ttl=self.ttl)
        return found

    async def put(self, key: str, value: T) -> bool:
        return await self.cache.set(self.cache_key(key), self.serialize(value), ttl=self.ttl)

    async def put_serialized(self, key: str, payload: str) -> bool:
        return await self.cache.set(self.cache_key(key), payload, ttl=self.ttl)

    async def invalidate(self, key: str) -> bool:
        return await self.cache.delete(self.cache_key(key))


def _fetch_secret(repository: CredentialRepository) -> Callable[[str], str | None]:
    def fetch(key: str) -> str | None:
        pair = repository.find_api_key(key)
        return pair.secret if pair is not None else None

    return fetch


def _session_core_json(session: Session) -> str:
    return session.core().model_dump_json()


class CredentialStore:
    """Single source of truth for API key and session validity."""

    def __init__(
        self,
        cache: Cache,
        repository: CredentialRepository,
        *,
        session_ttl: int | None = None,
    ) -> None:
        self.cache = cache
        self.repository = repository
        self.api_keys: CachedLookup[str] = CachedLookup(
            cache,
            prefix=API_KEY_PREFIX,
            fetch=_fetch_secret(repository),
            serialize=str,
            deserialize=str,
        )
        self.sessions: CachedLookup[Session] = CachedLookup(
            cache,
            prefix=SESSION_PREFIX,
            fetch=repository.find_session,
            serialize=_session_core_json,
            deserialize=Session.model_validate_json,
            ttl=session_ttl or None,
        )

    def _write(self, template: ErrorTemplate, operation: Callable[..., T], *args: Any) -> T:
        try:
            return operation(*args)
        except Exception as exc:
            logger.error(
                "credential_write_failed",
                operation=getattr(operation, "__name__", "unknown"),
                error=str(exc),
            )
            raise make_standard_error(template, str(exc)) from exc

    # -- API keys -------------------------------------------------------

    async def resolve_api_key(self, key: str | None) -> bool:
        """Assert that ``key`` exists and is enabled.

        Raises:
            StandardError: ``invalidApiKey`` when neither store knows the key.
        """
        if not key or not isinstance(key, str):
            raise make_standard_error(API_KEY.INVALID)
        if await self.api_keys.get(key) is None:
            raise make_standard_error(API_KEY.INVALID)
        return True

    async def resolve_secret_for_signing(self, key: str) -> str | None:
        """Return the signing secret for ``key``, or ``None`` if it is unknown."""
        if not key:
            return None
        return await self.api_keys.get(key)

    def create_api_key_pair(self) -> APIKeyPair:
        pair = APIKeyPair(key=random_token(".key"), secret=random_token(".secret"))
        self._write(DB_ERROR, self.repository.insert_api_key, pair)
        logger.info("api_key_created", key=pair.key)
        return pair

    async def disable_api_key(self, key: str) -> bool:
        """Disable ``key`` in the database, then drop its cached secret.

        Raises:
            StandardError: ``db_error`` when the cached entry could not be removed.
        """
        changed = self._write(DB_ERROR, self.repository.set_api_key_enabled, key, False)
        if not await self.api_keys.invalidate(key):
            logger.error("api_key_cache_invalidation_failed", key=key)
            raise make_standard_error(
                DB_ERROR, "API key disabled but its cache entry could not be removed"
            )
        logger.info("api_key_disabled", key=key, found=changed)
        return changed

    async def enable_api_key(self, key: str) -> bool:
        changed = self._write(DB_ERROR, self.repository.set_api_key_enabled, key, True)
        logger.info("api_key_enabled", key=key, found=changed)
        return changed

    async def delete_api_key(self, key: str) -> bool:
        """Hard-delete ``key`` from both stores."""
        await self.api_keys.invalidate(key)
        return self._write(DB_ERROR, self.repository.delete_api_key, key)

    # -- users ----------------------------------------------------------

    def create_user(self, username: str, password: str) -> int:
        try:
            user_id = self.repository.insert_user(username, hash_password(password))
        except sqlite3.IntegrityError as exc:
            raise make_standard_error(USERNAME_TAKEN, username) from exc
        except Exception as exc:
            logger.error("user_create_failed", error=str(exc))
            raise make_standard_error(DB_ERROR, str(exc)) from exc
        logger.info("user_created", user_id=user_id)
        return user_id

    def check_credentials(self, username: str, password: str) -> int:
        """Return the user id when ``password`` matches.

        Raises:
            StandardError: ``invalidCredentials`` for an unknown user or a
                wrong password.
        """
        try:
            record = self.repository.find_user_credentials(username)
        except Exception as exc:
            raise make_standard_error(DB_ERROR, str(exc)) from exc
        if record is None:
            raise make_standard_error(INVALID_CREDENTIALS)
        if not verify_password(record.password_hash, password):
            raise make_standard_error(INVALID_CREDENTIALS)
        return record.user_id

    # -- sessions -------------------------------------------------------

    async def create_session(self, user_id: int) -> Session:
        """Persist a new session, then cache it.

        Raises:
            StandardError: ``sessionCreationError`` if the database write fails;
                nothing is cached in that case.
        """
        session = Session(
            user_id=user_id,
            session_token=random_token(),
            session_start=datetime.now(UTC),
        )
        self._write(SESSION.CREATION_ERROR, self.repository.insert_session, session)
        await self.sessions.put(session.session_token, session)
        logger.info("session_created", user_id=user_id)
        return session

    async def resolve_session(self, token: str | None) -> Session:
        """Return the live session for ``token``.

        A session read from the database is cached with its core identity
        fields only; the returned value still carries its extension fields.

        Raises:
            StandardError: ``invalidSession`` when neither store knows the token.
        """
        if not token or not isinstance(token, str):
            raise make_standard_error(SESSION.INVALID)
        session = await self.sessions.get(token)
        if session is None:
            raise make_standard_error(SESSION.INVALID)
        return session

    async def extend_session(self, token: str, fields: dict[str, Any]) -> Session:
        """Merge free-form ``fields`` into the stored and cached session."""
        try:
            stored = self.repository.find_session(token)
        except Exception as exc:
            raise make_standard_error(DB_ERROR, str(exc)) from exc
        if stored is None:
            raise make_standard_error(SESSION.INVALID)
        extended = stored.merged(fields)
        self._write(
            SESSION.DB_WRITE_ERROR,
            self.repository.update_session_options,
            token,
            extended.extensions(),
        )
        await self.sessions.put_serialized(token, extended.model_dump_json())
        return extended

    async def destroy_session(self, token: str) -> None:
        """Delete the session row and its cache entry concurrently.

        The two deletions are independent. Both are awaited before this
        returns, and a failure of either is raised rather than hidden:

        - database failure: ``db_error`` (the cache entry may already be gone)
        - cache failure: ``sessionFlushError`` (the row is already gone, so the
          stale entry stops working once it expires)
        """
        db_result, cache_result = await asyncio.gather(
            asyncio.to_thread(self.repository.delete_session, token),
            self.sessions.invalidate(token),
            return_exceptions=True,
        )
        if isinstance(db_result, BaseException):
            logger.error("session_destroy_db_failed", error=str(db_result))
            raise make_standard_error(DB_ERROR, str(db_result)) from db_result
        if cache_result is not True:
            logger.error("session_destroy_cache_failed", cache_result=str(cache_result))
            raise make_standard_error(SESSION.FLUSH_CACHE_ERROR)
        logger.info("session_destroyed", found=db_result)
