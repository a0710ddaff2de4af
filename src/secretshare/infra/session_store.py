# Copyright (C) 2026 Bernardo Gómez Bey
# SPDX-License-Identifier: AGPL-3.0-or-later

from __future__ import annotations

import logging
import secrets
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Protocol, Tuple

import psycopg
from psycopg.types.json import Jsonb

from secretshare.infra.users_repo import ConnectionFactory

logger = logging.getLogger(__name__)

TOKEN_BYTES = 32
DEFAULT_TTL_SECONDS = 28800  # 8 hours
PURGE_INTERVAL_SECONDS = 60


class SessionStoreError(Exception):
    """The session store is unavailable or refused the operation."""


class UnknownSessionError(SessionStoreError):
    pass


def new_token() -> str:
    return secrets.token_urlsafe(TOKEN_BYTES)


class SessionStore(Protocol):
    def create(self) -> str: ...

    def exists(self, token: str) -> bool: ...

    def lookup(self, token: str) -> Tuple[bool, Optional[int]]: ...

    def regenerate(self, old_token: str) -> str: ...

    def bind_principal(self, token: str, user_id: int) -> None: ...

    def get_principal(self, token: str) -> Optional[int]: ...

    def destroy(self, token: str) -> None: ...

    def set_flash(self, token: str, severity: str, message: str) -> None: ...

    def take_flash(self, token: str) -> List[Tuple[str, str]]: ...

    def set_value(self, token: str, key: str, value: Any) -> None: ...

    def pop_value(self, token: str, key: str) -> Any: ...


@dataclass
class _Record:
    expires_at: float
    user_id: Optional[int] = None
    flashes: List[Tuple[str, str]] = field(default_factory=list)
    values: Dict[str, Any] = field(default_factory=dict)


class InMemorySessionStore:
    """Thread-safe in-process store; sessions are lost on restart.

    Expired records are swept at most once per ``PURGE_INTERVAL_SECONDS``
    whenever a new session is issued.
    """

    def __init__(self, ttl_seconds: int = DEFAULT_TTL_SECONDS, clock=time.monotonic):
        self._ttl = int(ttl_seconds)
        self._clock = clock
        self._lock = threading.Lock()
        self._records: Dict[str, _Record] = {}
        self._next_purge = 0.0

    def __len__(self) -> int:
        with self._lock:
            self._purge_expired()
            return len(self._records)

    def create(self) -> str:
        with self._lock:
            return self._issue()

    def exists(self, token: str) -> bool:
        with self._lock:
            return self._live(token) is not None

    def lookup(self, token: str) -> Tuple[bool, Optional[int]]:
        with self._lock:
            rec = self._live(token)
            if rec is None:
                return False, None
            return True, rec.user_id

    def regenerate(self, old_token: str) -> str:
        with self._lock:
            self._records.pop(old_token, None)
            return self._issue()

    def bind_principal(self, token: str, user_id: int) -> None:
        with self._lock:
            self._require(token).user_id = int(user_id)

    def get_principal(self, token: str) -> Optional[int]:
        with self._lock:
            rec = self._live(token)
            return rec.user_id if rec else None

    def destroy(self, token: str) -> None:
        with self._lock:
            self._records.pop(token, None)

    def set_flash(self, token: str, severity: str, message: str) -> None:
        with self._lock:
            self._require(token).flashes.append((severity, message))

    def take_flash(self, token: str) -> List[Tuple[str, str]]:
        with self._lock:
            rec = self._live(token)
            if rec is None:
                return []
            out, rec.flashes = rec.flashes, []
            return out

    def set_value(self, token: str, key: str, value: Any) -> None:
        with self._lock:
            self._require(token).values[key] = value

    def pop_value(self, token: str, key: str) -> Any:
        with self._lock:
            rec = self._live(token)
            return rec.values.pop(key, None) if rec else None

    # Callers must hold self._lock.

    def _issue(self) -> str:
        now = self._clock()
        if now >= self._next_purge:
            self._purge_expired()
            self._next_purge = now + PURGE_INTERVAL_SECONDS
        token = new_token()
        while token in self._records:
            token = new_token()
        self._records[token] = _Record(expires_at=now + self._ttl)
        return token

    def _live(self, token: str) -> Optional[_Record]:
        rec = self._records.get(token)
        if rec is None:
            return None
        if rec.expires_at <= self._clock():
            del self._records[token]
            return None
        return rec

    def _require(self, token: str) -> _Record:
        rec = self._live(token)
        if rec is None:
            raise UnknownSessionError("Session does not exist or has expired")
        return rec

    def _purge_expired(self) -> None:
        now = self._clock()
        for token in [t for t, r in self._records.items() if r.expires_at <= now]:
            del self._records[token]


class PostgresSessionStore:
    """Session store backed by the ``sessions`` table.

    Flash messages and transient values live in the ``data`` JSONB column as
    ``{"flash": [[severity, message], ...], "values": {...}}``.
    """

    def __init__(self, connect: ConnectionFactory, ttl_seconds: int = DEFAULT_TTL_SECONDS, clock=time.monotonic):
        self._connect = connect
        self._ttl = timedelta(seconds=int(ttl_seconds))
        self._clock = clock
        self._next_purge = 0.0

    def _expiry(self) -> datetime:
        return datetime.now(timezone.utc) + self._ttl

    def create(self) -> str:
        now = self._clock()
        if now >= self._next_purge:
            self._next_purge = now + PURGE_INTERVAL_SECONDS
            purged = purge_expired_sessions(self._connect)
            if purged:
                logger.info("Purged %s expired sessions", purged)
        token = new_token()
        self._run(
            "INSERT INTO sessions (token, user_id, data, expires_at) VALUES (%s, NULL, %s, %s)",
            (token, Jsonb({}), self._expiry()),
        )
        return token

    def exists(self, token: str) -> bool:
        row = self._run(
            "SELECT 1 FROM sessions WHERE token = %s AND expires_at > now()",
            (token,),
            fetch=True,
        )
        return row is not None

    def lookup(self, token: str) -> Tuple[bool, Optional[int]]:
        row = self._run(
            "SELECT user_id FROM sessions WHERE token = %s AND expires_at > now()",
            (token,),
            fetch=True,
        )
        if row is None:
            return False, None
        return True, (int(row[0]) if row[0] is not None else None)

    def regenerate(self, old_token: str) -> str:
        token = new_token()
        try:
            with self._connect() as conn:
                with conn.transaction():
                    conn.execute("DELETE FROM sessions WHERE token = %s", (old_token,))
                    conn.execute(
                        "INSERT INTO sessions (token, user_id, data, expires_at) VALUES (%s, NULL, %s, %s)",
                        (token, Jsonb({}), self._expiry()),
                    )
        except psycopg.Error as exc:
            raise SessionStoreError("Session regeneration failed") from exc
        return token

    def bind_principal(self, token: str, user_id: int) -> None:
        self._update_existing(
            "UPDATE sessions SET user_id = %s WHERE token = %s AND expires_at > now()",
            (int(user_id), token),
        )

    def get_principal(self, token: str) -> Optional[int]:
        row = self._run(
            "SELECT user_id FROM sessions WHERE token = %s AND expires_at > now()",
            (token,),
            fetch=True,
        )
        if not row or row[0] is None:
            return None
        return int(row[0])

    def destroy(self, token: str) -> None:
        self._run("DELETE FROM sessions WHERE token = %s", (token,))

    def set_flash(self, token: str, severity: str, message: str) -> None:
        def _mutate(data: dict) -> None:
            data.setdefault("flash", []).append([severity, message])

        self._mutate_data(token, _mutate, missing_ok=False)

    def take_flash(self, token: str) -> List[Tuple[str, str]]:
        taken: List[Tuple[str, str]] = []

        def _mutate(data: dict) -> None:
            taken.extend((str(s), str(m)) for s, m in data.pop("flash", []))

        self._mutate_data(token, _mutate, missing_ok=True)
        return taken

    def set_value(self, token: str, key: str, value: Any) -> None:
        def _mutate(data: dict) -> None:
            data.setdefault("values", {})[key] = value

        self._mutate_data(token, _mutate, missing_ok=False)

    def pop_value(self, token: str, key: str) -> Any:
        box: List[Any] = [None]

        def _mutate(data: dict) -> None:
            box[0] = data.setdefault("values", {}).pop(key, None)

        self._mutate_data(token, _mutate, missing_ok=True)
        return box[0]

    def _run(self, sql: str, params: tuple, *, fetch: bool = False):
        try:
            with self._connect() as conn:
                with conn.cursor() as cur:
                    cur.execute(sql, params)
                    return cur.fetchone() if fetch else None
        except psycopg.Error as exc:
            raise SessionStoreError("Session store query failed") from exc

    def _update_existing(self, sql: str, params: tuple) -> None:
        try:
            with self._connect() as conn:
                with conn.cursor() as cur:
                    cur.execute(sql, params)
                    updated = cur.rowcount
        except psycopg.Error as exc:
            raise SessionStoreError("Session store update failed") from exc
        if not updated:
            raise UnknownSessionError("Session does not exist or has expired")

    def _mutate_data(self, token: str, mutate, *, missing_ok: bool) -> None:
        try:
            with self._connect() as conn:
                with conn.transaction():
                    with conn.cursor() as cur:
                        cur.execute(
                            "SELECT data FROM sessions WHERE token = %s AND expires_at > now() FOR UPDATE",
                            (token,),
                        )
                        row = cur.fetchone()
                        if row is None:
                            if missing_ok:
                                return
                            raise UnknownSessionError("Session does not exist or has expired")
                        data = dict(row[0] or {})
                        mutate(data)
                        cur.execute("UPDATE sessions SET data = %s WHERE token = %s", (Jsonb(data), token))
        except psycopg.Error as exc:
            raise SessionStoreError("Session store update failed") from exc


def purge_expired_sessions(connect: ConnectionFactory) -> int:
    """Delete expired rows from the ``sessions`` table; returns the count."""
    try:
        with connect() as conn:
            with conn.cursor() as cur:
                cur.execute("DELETE FROM sessions WHERE expires_at <= now()")
                return cur.rowcount
    except psycopg.Error as exc:
        raise SessionStoreError("Could not purge expired sessions") from exc
