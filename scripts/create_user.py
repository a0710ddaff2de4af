#!/usr/bin/env python3
from __future__ import annotations

import functools
from getpass import getpass

import psycopg

from secretshare.auth.errors import DuplicateEmailError
from secretshare.auth.identity import register_with_password
from secretshare.config import load_config
from secretshare.infra.users_repo import PostgresUserRepository, ensure_schema


def main() -> None:
    cfg = load_config()
    if not cfg.database_url:
        raise SystemExit("DATABASE_URL is not set")

    connect = functools.partial(psycopg.connect, cfg.database_url)
    ensure_schema(connect)

    email = input("Email: ").strip()
    if not email:
        raise SystemExit("Email is required")

    pw1 = getpass("Password: ")
    pw2 = getpass("Repeat password: ")
    if pw1 != pw2:
        raise SystemExit("Passwords do not match")

    try:
        user = register_with_password(PostgresUserRepository(connect), email, pw1, secret=cfg.secret_key)
    except DuplicateEmailError:
        raise SystemExit(f"{email} is already registered")
    print(f"OK -> user id {user.id}")


if __name__ == "__main__":
    main()
