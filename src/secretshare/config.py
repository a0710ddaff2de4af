# Copyright (C) 2026 Bernardo Gómez Bey
# SPDX-License-Identifier: AGPL-3.0-or-later

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

from dotenv import find_dotenv, load_dotenv

DEFAULT_RANDOM_SECRET_URL = "https://secrets-api.appbrewery.com/random"


@dataclass(frozen=True)
class AppConfig:
    # Signs session cookies and peppers password hashes.
    secret_key: str

    # Storage
    database_url: Optional[str] = None
    session_backend: str = "memory"  # memory|postgres

    # Session cookie
    session_ttl_seconds: int = 28800  # 8 hours
    cookie_name: str = "secretshare_session"
    cookie_secure: bool = False

    # Google OAuth (optional)
    google_client_id: Optional[str] = None
    google_client_secret: Optional[str] = None
    google_callback_url: Optional[str] = None

    # External random secret API
    random_secret_url: str = DEFAULT_RANDOM_SECRET_URL
    http_timeout_seconds: float = 5.0

    # Server
    host: str = "0.0.0.0"
    port: int = 3000
    reload: bool = False
    log_level: str = "INFO"

    @property
    def google_enabled(self) -> bool:
        return bool(self.google_client_id and self.google_client_secret and self.google_callback_url)

    @property
    def uses_postgres(self) -> bool:
        return bool(self.database_url)


def _env(name: str, default: str = "") -> str:
    return (os.getenv(name, "") or "").strip() or default


def _flag(name: str, default: bool = False) -> bool:
    raw = _env(name).lower()
    if raw in ("1", "true", "yes", "y", "on"):
        return True
    if raw in ("0", "false", "no", "n", "off"):
        return False
    return default


@lru_cache(maxsize=1)
def load_config() -> AppConfig:
    """Load configuration from the environment (and ``.env`` when present)."""
    load_dotenv(find_dotenv(usecwd=True))

    secret = _env("SECRET_KEY")
    if not secret:
        raise RuntimeError("Missing SECRET_KEY in environment")

    database_url = _env("DATABASE_URL") or None
    backend = _env("SECRETSHARE_SESSION_BACKEND", "postgres" if database_url else "memory").lower()
    if backend not in ("memory", "postgres"):
        raise RuntimeError(f"Unsupported SECRETSHARE_SESSION_BACKEND: {backend}")
    if backend == "postgres" and not database_url:
        raise RuntimeError("SECRETSHARE_SESSION_BACKEND=postgres requires DATABASE_URL")

    ttl = int(float(_env("SECRETSHARE_SESSION_TTL", "28800")))
    if ttl < 60:
        ttl = 60

    return AppConfig(
        secret_key=secret,
        database_url=database_url,
        session_backend=backend,
        session_ttl_seconds=ttl,
        cookie_name=_env("SECRETSHARE_COOKIE_NAME", "secretshare_session"),
        cookie_secure=_flag("SECRETSHARE_COOKIE_SECURE"),
        google_client_id=_env("GOOGLE_CLIENT_ID") or None,
        google_client_secret=_env("GOOGLE_CLIENT_SECRET") or None,
        google_callback_url=_env("GOOGLE_CALLBACK_URL") or None,
        random_secret_url=_env("SECRETSHARE_RANDOM_SECRET_URL", DEFAULT_RANDOM_SECRET_URL),
        http_timeout_seconds=float(_env("SECRETSHARE_HTTP_TIMEOUT", "5")),
        host=_env("SECRETSHARE_HOST", "0.0.0.0"),
        port=int(_env("SECRETSHARE_PORT", "3000")),
        reload=_flag("SECRETSHARE_RELOAD"),
        log_level=_env("SECRETSHARE_LOG_LEVEL", "INFO").upper(),
    )
