# Copyright (C) 2026 Bernardo Gómez Bey
# SPDX-License-Identifier: AGPL-3.0-or-later

from __future__ import annotations

from typing import Optional

from fastapi import HTTPException, Request

from secretshare.auth.session import Session
from secretshare.config import AppConfig
from secretshare.infra.users_repo import User, UserRepository

LOGIN_PATH = "/login"


def is_authenticated(session: Session, users: UserRepository) -> bool:
    """Bound to a principal that still exists; a vanished user counts as anonymous."""
    if not session.is_authenticated:
        return False
    return users.find_user_by_id(session.user_id) is not None


def current_session(request: Request) -> Session:
    session = getattr(request.state, "session", None)
    if session is None:
        raise RuntimeError("Session middleware is not installed")
    return session


def current_user_optional(request: Request) -> Optional[User]:
    u = getattr(request.state, "user", None)
    if u is not None:
        return u
    u = request.app.state.auth.current_user(current_session(request))
    request.state.user = u
    return u


def require_user(request: Request) -> User:
    u = current_user_optional(request)
    if u:
        return u
    raise HTTPException(status_code=303, headers={"Location": LOGIN_PATH})


def cookie_settings(cfg: AppConfig) -> dict:
    return {"httponly": True, "samesite": "lax", "secure": cfg.cookie_secure, "path": "/"}
