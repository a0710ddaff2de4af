# Copyright (C) 2026 Bernardo Gómez Bey
# SPDX-License-Identifier: AGPL-3.0-or-later

from __future__ import annotations

import threading
from datetime import datetime
from typing import List, Protocol, Tuple

import psycopg

from secretshare.auth.errors import PersistenceError
from secretshare.infra.users_repo import ConnectionFactory


class SecretRepository(Protocol):
    def list_other_secrets(self, user_id: int) -> List[str]: ...

    def list_user_secrets(self, user_id: int) -> List[str]: ...

    def add_secret(self, user_id: int, content: str) -> None: ...


class InMemorySecretRepository:
    def __init__(self):
        self._lock = threading.Lock()
        self._rows: List[Tuple[int, str, datetime]] = []

    def list_other_secrets(self, user_id: int) -> List[str]:
        with self._lock:
            return [c for uid, c, _ in self._rows if uid != user_id]

    def list_user_secrets(self, user_id: int) -> List[str]:
        with self._lock:
            return [c for uid, c, _ in self._rows if uid == user_id]

    def add_secret(self, user_id: int, content: str) -> None:
        with self._lock:
            self._rows.append((int(user_id), content, datetime.now()))


class PostgresSecretRepository:
    def __init__(self, connect: ConnectionFactory):
        self._connect = connect

    def list_other_secrets(self, user_id: int) -> List[str]:
        return self._contents("SELECT content FROM secrets WHERE user_id != %s ORDER BY created_at", user_id)

    def list_user_secrets(self, user_id: int) -> List[str]:
        return self._contents("SELECT content FROM secrets WHERE user_id = %s ORDER BY created_at", user_id)

    def add_secret(self, user_id: int, content: str) -> None:
        try:
            with self._connect() as conn:
                conn.execute("INSERT INTO secrets (user_id, content) VALUES (%s, %s)", (user_id, content))
        except psycopg.Error as exc:
            raise PersistenceError("Secret insert failed") from exc

    def _contents(self, sql: str, user_id: int) -> List[str]:
        try:
            with self._connect() as conn:
                with conn.cursor() as cur:
                    cur.execute(sql, (user_id,))
                    return [row[0] for row in cur.fetchall()]
        except psycopg.Error as exc:
            raise PersistenceError("Secret lookup failed") from exc
