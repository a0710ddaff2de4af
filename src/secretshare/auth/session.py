# Copyright (C) 2026 Bernardo Gómez Bey
# SPDX-License-Identifier: AGPL-3.0-or-later

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, List, Optional, Tuple

from itsdangerous import BadSignature, BadTimeSignature, URLSafeTimedSerializer

from secretshare.auth.errors import SessionRegenerationError, SessionStateError
from secretshare.infra.session_store import SessionStore, SessionStoreError

logger = logging.getLogger(__name__)

COOKIE_SALT = "secretshare.session.v1"


class SessionState(str, Enum):
    ANONYMOUS = "anonymous"
    AUTHENTICATED = "authenticated"
    DESTROYED = "destroyed"


@dataclass
class Session:
    """Per-request view of the server-side session bound to a cookie."""

    token: str
    user_id: Optional[int] = None
    state: SessionState = SessionState.ANONYMOUS
    # The client does not hold ``token`` yet; the response must set the cookie.
    issued: bool = False
    # Server-side entry is gone; the response must delete the cookie.
    discard_cookie: bool = False

    @property
    def is_authenticated(self) -> bool:
        return self.state is SessionState.AUTHENTICATED and self.user_id is not None


def _serializer(secret: str) -> URLSafeTimedSerializer:
    if not secret:
        raise RuntimeError("Missing SECRET_KEY in environment")
    return URLSafeTimedSerializer(secret_key=secret, salt=COOKIE_SALT)


def sign_token(secret: str, token: str) -> str:
    return _serializer(secret).dumps(token)


def unsign_token(secret: str, value: Optional[str], *, max_age: Optional[int] = None) -> Optional[str]:
    if not value:
        return None
    try:
        token = _serializer(secret).loads(value, max_age=max_age)
    except (BadSignature, BadTimeSignature):
        return None
    token = str(token or "").strip()
    return token or None


class SessionManager:
    """Sole owner of session state: resolve, authenticate, destroy, flash."""

    def __init__(self, store: SessionStore):
        self.store = store

    def resolve(self, token: Optional[str]) -> Session:
        """Load the session named by ``token`` or start a new anonymous one.

        A token the store does not know (expired, destroyed, forged) is never
        adopted; the client always gets a server-issued token instead.
        """
        if token:
            live, user_id = self.store.lookup(token)
            if live:
                state = SessionState.AUTHENTICATED if user_id is not None else SessionState.ANONYMOUS
                return Session(token=token, user_id=user_id, state=state)
        return Session(token=self.store.create(), issued=True)

    def authenticate(self, session: Session, user_id: int) -> None:
        """Regenerate the session token, then bind ``user_id`` to the new one.

        Regeneration drops everything stored under the anonymous session,
        pending flash messages included.
        """
        if session.state is not SessionState.ANONYMOUS:
            raise SessionStateError(f"Cannot authenticate a session in state {session.state.value}")

        try:
            new_token = self.store.regenerate(session.token)
        except SessionStoreError as exc:
            raise SessionRegenerationError("Session regeneration failed") from exc

        # The old token is dead from here on, whatever happens next.
        session.token = new_token
        session.issued = True

        try:
            self.store.bind_principal(new_token, user_id)
        except SessionStoreError as exc:
            raise SessionRegenerationError("Binding the principal to the new session failed") from exc

        session.user_id = user_id
        session.state = SessionState.AUTHENTICATED
        logger.info("Session authenticated for user_id=%s", user_id)

    def destroy(self, session: Session) -> None:
        """Invalidate the store entry; raises SessionStoreError if that fails."""
        if session.state is SessionState.DESTROYED:
            return
        self.store.destroy(session.token)
        user_id = session.user_id
        session.user_id = None
        session.state = SessionState.DESTROYED
        session.issued = False
        session.discard_cookie = True
        logger.info("Session destroyed for user_id=%s", user_id)

    def add_flash(self, session: Session, severity: str, message: str) -> None:
        self._require_live(session)
        self.store.set_flash(session.token, severity, message)

    def take_flash(self, session: Session) -> List[Tuple[str, str]]:
        if session.state is SessionState.DESTROYED:
            return []
        return self.store.take_flash(session.token)

    def stash(self, session: Session, key: str, value: Any) -> None:
        self._require_live(session)
        self.store.set_value(session.token, key, value)

    def pop(self, session: Session, key: str) -> Any:
        if session.state is SessionState.DESTROYED:
            return None
        return self.store.pop_value(session.token, key)

    @staticmethod
    def _require_live(session: Session) -> None:
        if session.state is SessionState.DESTROYED:
            raise SessionStateError("Session has been destroyed")
