from types import SimpleNamespace
from unittest.mock import MagicMock

import psycopg
import pytest
from psycopg import errors as pg_errors

from secretshare.auth.errors import DuplicateEmailError, PersistenceError
from secretshare.infra.secrets_repo import PostgresSecretRepository
from secretshare.infra.session_store import (
    PURGE_INTERVAL_SECONDS,
    PostgresSessionStore,
    SessionStoreError,
    UnknownSessionError,
)
from secretshare.infra.users_repo import PostgresUserRepository, User


class _EmailTaken(pg_errors.UniqueViolation):
    @property
    def diag(self):
        return SimpleNamespace(constraint_name="users_email_key")


def _fake_db(fetchone=None, execute_side_effect=None, rowcount=1):
    """Return (connect, conn, cur) mocks shaped like psycopg 3 context managers."""
    cur = MagicMock()
    cur.fetchone.return_value = fetchone
    cur.rowcount = rowcount
    if execute_side_effect is not None:
        cur.execute.side_effect = execute_side_effect
    conn = MagicMock()
    conn.__enter__.return_value = conn
    conn.cursor.return_value.__enter__.return_value = cur
    connect = MagicMock(return_value=conn)
    return connect, conn, cur


def test_find_user_by_email_maps_row():
    connect, _, cur = _fake_db(fetchone=(5, "ada@example.com", "$argon2id$...", None))
    u = PostgresUserRepository(connect).find_user_by_email("ada@example.com")
    assert u == User(id=5, email="ada@example.com", password_hash="$argon2id$...", oauth_subject=None)
    sql, params = cur.execute.call_args.args
    assert "WHERE email = %s" in sql
    assert params == ("ada@example.com",)


def test_missing_user_is_none():
    connect, _, _ = _fake_db(fetchone=None)
    assert PostgresUserRepository(connect).find_user_by_id(99) is None


def test_insert_duplicate_email_is_typed():
    connect, _, _ = _fake_db(execute_side_effect=_EmailTaken("duplicate key"))
    with pytest.raises(DuplicateEmailError):
        PostgresUserRepository(connect).insert_password_user("ada@example.com", "h")


def test_other_driver_errors_become_persistence_errors():
    connect, _, _ = _fake_db(execute_side_effect=psycopg.OperationalError("connection lost"))
    with pytest.raises(PersistenceError) as exc:
        PostgresUserRepository(connect).insert_oauth_user("a@b.com", "g123")
    assert "connection lost" not in str(exc.value)


def test_insert_oauth_user_returns_row():
    connect, _, cur = _fake_db(fetchone=(3, "a@b.com", None, "g123"))
    u = PostgresUserRepository(connect).insert_oauth_user("a@b.com", "g123")
    assert u.oauth_subject == "g123" and u.password_hash is None
    assert "google_id" in cur.execute.call_args.args[0]


def test_session_regenerate_runs_in_one_transaction():
    connect, conn, _ = _fake_db()
    store = PostgresSessionStore(connect)
    new = store.regenerate("old-token")
    assert new and new != "old-token"
    conn.transaction.assert_called_once()
    statements = [c.args[0] for c in conn.execute.call_args_list]
    assert statements[0].startswith("DELETE FROM sessions")
    assert statements[1].startswith("INSERT INTO sessions")


def test_session_regenerate_failure_is_store_error():
    connect, conn, _ = _fake_db()
    conn.execute.side_effect = psycopg.OperationalError("down")
    with pytest.raises(SessionStoreError):
        PostgresSessionStore(connect).regenerate("old-token")


def test_bind_principal_on_unknown_session():
    connect, _, _ = _fake_db(rowcount=0)
    with pytest.raises(UnknownSessionError):
        PostgresSessionStore(connect).bind_principal("gone", 1)


def test_take_flash_reads_and_clears():
    data = {"flash": [["error", "Login failed!"]], "values": {}}
    connect, _, cur = _fake_db(fetchone=(data,))
    taken = PostgresSessionStore(connect).take_flash("tok")
    assert taken == [("error", "Login failed!")]
    update_sql, (jsonb, token) = cur.execute.call_args.args
    assert update_sql.startswith("UPDATE sessions SET data")
    assert jsonb.obj == {"values": {}}
    assert token == "tok"


def test_secret_listing_queries_by_user():
    connect, _, cur = _fake_db()
    cur.fetchall.return_value = [("a",), ("b",)]
    assert PostgresSecretRepository(connect).list_other_secrets(1) == ["a", "b"]
    assert "user_id != %s" in cur.execute.call_args.args[0]


def test_session_create_sweeps_expired_rows_once_per_interval():
    connect, _, cur = _fake_db()
    now = [1000.0]
    store = PostgresSessionStore(connect, clock=lambda: now[0])

    store.create()
    first = [c.args[0] for c in cur.execute.call_args_list]
    cur.execute.reset_mock()
    store.create()
    second = [c.args[0] for c in cur.execute.call_args_list]
    cur.execute.reset_mock()
    now[0] += PURGE_INTERVAL_SECONDS
    store.create()
    third = [c.args[0] for c in cur.execute.call_args_list]

    assert first[0] == "DELETE FROM sessions WHERE expires_at <= now()"
    assert first[1].startswith("INSERT INTO sessions")
    assert len(second) == 1 and second[0].startswith("INSERT INTO sessions")
    assert third[0] == "DELETE FROM sessions WHERE expires_at <= now()"


def test_session_lookup_reports_liveness_and_principal():
    connect, _, cur = _fake_db(fetchone=(9,))
    assert PostgresSessionStore(connect).lookup("tok") == (True, 9)
    assert "expires_at > now()" in cur.execute.call_args.args[0]
    cur.fetchone.return_value = (None,)
    assert PostgresSessionStore(connect).lookup("tok") == (True, None)
    cur.fetchone.return_value = None
    assert PostgresSessionStore(connect).lookup("tok") == (False, None)
