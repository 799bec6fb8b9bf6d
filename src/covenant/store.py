"""Authoritative credential storage backed by SQLite.

The repository owns four tables: ``api_keys``, ``users``, ``user_auth`` and
``user_sessions``. The schema is created and upgraded by ordered, versioned
migrations when the repository is opened, never on the request path.
"""

from __future__ import annotations

import json
import sqlite3
from collections.abc import Callable
from contextlib import suppress
from datetime import UTC, datetime
from threading import Lock
from types import TracebackType
from typing import Any, Protocol

from covenant.models import APIKeyPair, Session, UserCredentials

MigrationStep = tuple[int, str, Callable[[], None]]


class CredentialRepository(Protocol):
    """Point lookups and writes used by :class:`~covenant.credentials.CredentialStore`."""

    def find_api_key(self, key: str) -> APIKeyPair | None: ...

    def insert_api_key(self, pair: APIKeyPair) -> None: ...

    def set_api_key_enabled(self, key: str, enabled: bool) -> bool: ...

    def delete_api_key(self, key: str) -> bool: ...

    def insert_user(self, username: str, password_hash: str) -> int: ...

    def find_user_credentials(self, username: str) -> UserCredentials | None: ...

    def insert_session(self, session: Session) -> None: ...

    def find_session(self, token: str) -> Session | None: ...

    def update_session_options(self, token: str, options: dict[str, Any]) -> bool: ...

    def delete_session(self, token: str) -> bool: ...

    def health(self) -> bool: ...

    def close(self) -> None: ...


class SQLiteCredentialRepository:
    """Credential repository on a single SQLite connection guarded by a lock."""

    def __init__(self, db_path: str) -> None:
        conn = sqlite3.connect(db_path, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        self.conn = conn
        self._lock = Lock()
        self._closed = False
        self._init_schema()

    def close(self) -> None:
        """Close the underlying SQLite connection."""
        with self._lock:
            if self._closed:
                return
            self.conn.close()
            self._closed = True

    def __enter__(self) -> SQLiteCredentialRepository:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

    def __del__(self) -> None:  # pragma: no cover - best-effort cleanup
        with suppress(Exception):
            self.close()

    # -- schema ---------------------------------------------------------

    def _init_schema(self) -> None:
        with self._lock:
            self.conn.execute(
                """
                CREATE TABLE IF NOT EXISTS schema_migrations (
                    version INTEGER PRIMARY KEY,
                    name TEXT NOT NULL,
                    applied_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
                )
                """
            )
            self.conn.commit()
            rows = self.conn.execute("SELECT version FROM schema_migrations").fetchall()
        applied = {int(row["version"]) for row in rows}
        for version, name, step in self._build_migrations():
            if version not in applied:
                self._apply_migration(version, name, step)

    def _build_migrations(self) -> list[MigrationStep]:
        return [
            (1, "credential_tables", self._migration_credential_tables),
            (2, "session_options", self._migration_session_options),
        ]

    def _apply_migration(self, version: int, name: str, step: Callable[[], None]) -> None:
        try:
            step()
            with self._lock:
                self.conn.execute(
                    "INSERT INTO schema_migrations (version, name) VALUES (?, ?)",
                    (version, name),
                )
                self.conn.commit()
        except Exception as exc:
            with self._lock, suppress(Exception):
                self.conn.rollback()
            raise RuntimeError(
                f"Failed credential schema migration v{version} ({name})."
            ) from exc

    def _migration_credential_tables(self) -> None:
        with self._lock:
            self.conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS api_keys (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    key TEXT NOT NULL UNIQUE,
                    secret TEXT NOT NULL,
                    enabled INTEGER NOT NULL DEFAULT 1,
                    created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
                );
                CREATE TABLE IF NOT EXISTS users (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    username TEXT NOT NULL UNIQUE,
                    created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
                );
                CREATE TABLE IF NOT EXISTS user_auth (
                    user_id INTEGER PRIMARY KEY REFERENCES users(id) ON DELETE CASCADE,
                    password_hash TEXT NOT NULL
                );
                CREATE TABLE IF NOT EXISTS user_sessions (
                    session_token TEXT PRIMARY KEY,
                    user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
                    session_start TEXT NOT NULL
                );
                CREATE INDEX IF NOT EXISTS idx_user_sessions_user
                ON user_sessions(user_id);
                """
            )

    def _migration_session_options(self) -> None:
        with self._lock:
            columns = {
                row["name"]
                for row in self.conn.execute("PRAGMA table_info(user_sessions)").fetchall()
            }
            if "options" not in columns:
                self.conn.execute(
                    "ALTER TABLE user_sessions ADD COLUMN options TEXT NOT NULL DEFAULT '{}'"
                )
            self.conn.commit()

    # -- api keys -------------------------------------------------------

    def find_api_key(self, key: str) -> APIKeyPair | None:
        """Return the enabled key pair for ``key``, if any."""
        with self._lock:
            row = self.conn.execute(
                "SELECT key, secret, enabled FROM api_keys WHERE key = ? AND enabled = 1",
                (key,),
            ).fetchone()
        if row is None:
            return None
        return APIKeyPair(key=row["key"], secret=row["secret"], enabled=bool(row["enabled"]))

    def insert_api_key(self, pair: APIKeyPair) -> None:
        with self._lock:
            self.conn.execute(
                "INSERT INTO api_keys (key, secret, enabled) VALUES (?, ?, ?)",
                (pair.key, pair.secret, 1 if pair.enabled else 0),
            )
            self.conn.commit()

    def set_api_key_enabled(self, key: str, enabled: bool) -> bool:
        with self._lock:
            cursor = self.conn.execute(
                "UPDATE api_keys SET enabled = ? WHERE key = ?",
                (1 if enabled else 0, key),
            )
            self.conn.commit()
        return cursor.rowcount > 0

    def delete_api_key(self, key: str) -> bool:
        with self._lock:
            cursor = self.conn.execute("DELETE FROM api_keys WHERE key = ?", (key,))
            self.conn.commit()
        return cursor.rowcount > 0

    # -- users ----------------------------------------------------------

    def insert_user(self, username: str, password_hash: str) -> int:
        """Create a user and its password row atomically."""
        with self._lock:
            try:
                cursor = self.conn.execute(
                    "INSERT INTO users (username) VALUES (?)", (username,)
                )
                user_id = int(cursor.lastrowid or 0)
                self.conn.execute(
                    "INSERT INTO user_auth (user_id, password_hash) VALUES (?, ?)",
                    (user_id, password_hash),
                )
                self.conn.commit()
            except sqlite3.Error:
                self.conn.rollback()
                raise
        return user_id

    def find_user_credentials(self, username: str) -> UserCredentials | None:
        with self._lock:
            row = self.conn.execute(
                """
                SELECT u.id AS user_id, u.username, a.password_hash
                FROM users u
                JOIN user_auth a ON a.user_id = u.id
                WHERE u.username = ?
                """,
                (username,),
            ).fetchone()
        if row is None:
            return None
        return UserCredentials(
            user_id=row["user_id"],
            username=row["username"],
            password_hash=row["password_hash"],
        )

    # -- sessions -------------------------------------------------------

    def insert_session(self, session: Session) -> None:
        with self._lock:
            self.conn.execute(
                """
                INSERT INTO user_sessions (session_token, user_id, session_start, options)
                VALUES (?, ?, ?, ?)
                """,
                (
                    session.session_token,
                    session.user_id,
                    session.session_start.isoformat(),
                    json.dumps(session.extensions()),
                ),
            )
            self.conn.commit()

    def find_session(self, token: str) -> Session | None:
        """Return the session for ``token`` with its stored extension fields."""
        with self._lock:
            row = self.conn.execute(
                """
                SELECT s.session_token, s.user_id, s.session_start, s.options
                FROM user_sessions s
                JOIN users u ON u.id = s.user_id
                WHERE s.session_token = ?
                """,
                (token,),
            ).fetchone()
        if row is None:
            return None
        options = json.loads(row["options"] or "{}")
        session_start = datetime.fromisoformat(row["session_start"])
        if session_start.tzinfo is None:
            session_start = session_start.replace(tzinfo=UTC)
        return Session(
            user_id=row["user_id"],
            session_token=row["session_token"],
            session_start=session_start,
            **options,
        )

    def update_session_options(self, token: str, options: dict[str, Any]) -> bool:
        with self._lock:
            cursor = self.conn.execute(
                "UPDATE user_sessions SET options = ? WHERE session_token = ?",
                (json.dumps(options), token),
            )
            self.conn.commit()
        return cursor.rowcount > 0

    def delete_session(self, token: str) -> bool:
        with self._lock:
            cursor = self.conn.execute(
                "DELETE FROM user_sessions WHERE session_token = ?", (token,)
            )
            self.conn.commit()
        return cursor.rowcount > 0

    def health(self) -> bool:
        try:
            with self._lock:
                self.conn.execute("SELECT 1").fetchone()
        except sqlite3.Error:
            return False
        return True
