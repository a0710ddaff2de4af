# Copyright (C) 2026 Bernardo Gómez Bey
# SPDX-License-Identifier: AGPL-3.0-or-later

from __future__ import annotations

import itertools
import logging
import threading
from contextlib import AbstractContextManager
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Protocol

import psycopg
from psycopg import errors as pg_errors

from secretshare.auth.errors import DuplicateEmailError, PersistenceError

logger = logging.getLogger(__name__)

ConnectionFactory = Callable[[], AbstractContextManager]

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS users (
    id SERIAL PRIMARY KEY,
    email VARCHAR(100) UNIQUE NOT NULL,
    password VARCHAR(255),
    google_id TEXT UNIQUE,
    CHECK (password IS NOT NULL OR google_id IS NOT NULL)
);

CREATE TABLE IF NOT EXISTS secrets (
    id SERIAL PRIMARY KEY,
    user_id INTEGER REFERENCES users(id) ON DELETE CASCADE,
    content TEXT NOT NULL,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS sessions (
    token TEXT PRIMARY KEY,
    user_id INTEGER,
    data JSONB NOT NULL DEFAULT '{}'::jsonb,
    expires_at TIMESTAMPTZ NOT NULL
);
"""


@dataclass(frozen=True)
class User:
    id: int
    email: str
    password_hash: Optional[str] = None
    oauth_subject: Optional[str] = None

    @property
    def has_password(self) -> bool:
        return bool(self.password_hash)


class UserRepository(Protocol):
    def find_user_by_email(self, email: str) -> Optional[User]: ...

    def find_user_by_oauth_subject(self, subject: str) -> Optional[User]: ...

    def find_user_by_id(self, user_id: int) -> Optional[User]: ...

    def insert_password_user(self, email: str, password_hash: str) -> User: ...

    def insert_oauth_user(self, email: str, subject: str) -> User: ...


def ensure_schema(connect: ConnectionFactory) -> None:
    """Create the tables used by secretshare when they do not exist yet."""
    try:
        with connect() as conn:
            conn.execute(SCHEMA_SQL)
    except psycopg.Error as exc:
        raise PersistenceError("Could not create database schema") from exc


class InMemoryUserRepository:
    """Process-local user table with the same uniqueness rules as Postgres."""

    def __init__(self):
        self._lock = threading.Lock()
        self._ids = itertools.count(1)
        self._by_id: Dict[int, User] = {}

    def __len__(self) -> int:
        return len(self._by_id)

    def find_user_by_email(self, email: str) -> Optional[User]:
        with self._lock:
            return next((u for u in self._by_id.values() if u.email == email), None)

    def find_user_by_oauth_subject(self, subject: str) -> Optional[User]:
        if not subject:
            return None
        with self._lock:
            return next((u for u in self._by_id.values() if u.oauth_subject == subject), None)

    def find_user_by_id(self, user_id: int) -> Optional[User]:
        with self._lock:
            return self._by_id.get(user_id)

    def insert_password_user(self, email: str, password_hash: str) -> User:
        return self._insert(email=email, password_hash=password_hash)

    def insert_oauth_user(self, email: str, subject: str) -> User:
        return self._insert(email=email, oauth_subject=subject)

    def delete_user(self, user_id: int) -> None:
        """Remove a user (used to simulate deletions made outside the app)."""
        with self._lock:
            self._by_id.pop(user_id, None)

    def _insert(self, *, email: str, password_hash: Optional[str] = None, oauth_subject: Optional[str] = None) -> User:
        if not email:
            raise PersistenceError("email is required")
        if not password_hash and not oauth_subject:
            raise PersistenceError("a user needs a password hash or an OAuth subject")
        with self._lock:
            for u in self._by_id.values():
                if u.email == email:
                    raise DuplicateEmailError(email)
                if oauth_subject and u.oauth_subject == oauth_subject:
                    raise PersistenceError("OAuth subject already linked")
            user = User(id=next(self._ids), email=email, password_hash=password_hash, oauth_subject=oauth_subject)
            self._by_id[user.id] = user
            return user


class PostgresUserRepository:
    """User store backed by the ``users`` table.

    ``connect`` returns a context-managed connection (``psycopg.connect`` bound
    to a DSN, or ``ConnectionPool.connection``); the caller owns pooling.
    """

    _COLUMNS = "id, email, password, google_id"

    def __init__(self, connect: ConnectionFactory):
        self._connect = connect

    def find_user_by_email(self, email: str) -> Optional[User]:
        return self._fetch_one(f"SELECT {self._COLUMNS} FROM users WHERE email = %s", (email,))

    def find_user_by_oauth_subject(self, subject: str) -> Optional[User]:
        return self._fetch_one(f"SELECT {self._COLUMNS} FROM users WHERE google_id = %s", (subject,))

    def find_user_by_id(self, user_id: int) -> Optional[User]:
        return self._fetch_one(f"SELECT {self._COLUMNS} FROM users WHERE id = %s", (user_id,))

    def insert_password_user(self, email: str, password_hash: str) -> User:
        return self._insert(
            f"INSERT INTO users (email, password) VALUES (%s, %s) RETURNING {self._COLUMNS}",
            (email, password_hash),
            email,
        )

    def insert_oauth_user(self, email: str, subject: str) -> User:
        return self._insert(
            f"INSERT INTO users (email, google_id) VALUES (%s, %s) RETURNING {self._COLUMNS}",
            (email, subject),
            email,
        )

    def _fetch_one(self, sql: str, params: tuple) -> Optional[User]:
        try:
            with self._connect() as conn:
                with conn.cursor() as cur:
                    cur.execute(sql, params)
                    row = cur.fetchone()
        except psycopg.Error as exc:
            raise PersistenceError("User lookup failed") from exc
        return _row_to_user(row) if row else None

    def _insert(self, sql: str, params: tuple, email: str) -> User:
        try:
            with self._connect() as conn:
                with conn.cursor() as cur:
                    cur.execute(sql, params)
                    row = cur.fetchone()
        except pg_errors.UniqueViolation as exc:
            constraint = getattr(exc.diag, "constraint_name", "") or ""
            if "email" in constraint:
                raise DuplicateEmailError(email) from exc
            raise PersistenceError(f"Unique constraint violated ({constraint or 'unknown'})") from exc
        except psycopg.Error as exc:
            raise PersistenceError("User insert failed") from exc
        if not row:
            raise PersistenceError("Insert returned no row")
        return _row_to_user(row)


def _row_to_user(row) -> User:
    user_id, email, password_hash, google_id = row
    return User(
        id=int(user_id),
        email=str(email),
        password_hash=password_hash or None,
        oauth_subject=google_id or None,
    )
