# Copyright (C) 2026 Bernardo Gómez Bey
# SPDX-License-Identifier: AGPL-3.0-or-later

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from secretshare.auth.errors import (
    AuthError,
    DuplicateEmailError,
    InvalidCredentialsError,
    SessionRegenerationError,
)
from secretshare.auth.flash import flash
from secretshare.auth.identity import authenticate_password, register_with_password, resolve_oauth_identity
from secretshare.auth.session import Session, SessionManager
from secretshare.infra.session_store import SessionStoreError
from secretshare.infra.users_repo import User, UserRepository
from secretshare.permissions import LOGIN_PATH, is_authenticated

logger = logging.getLogger(__name__)

MSG_EMAIL_TAKEN = "Email already registered."
MSG_INVALID_CREDENTIALS = "Invalid email or password."
MSG_MISSING_FIELDS = "Email and password are required."
MSG_REGISTER_SESSION = "Session error during registration."
MSG_REGISTER_FAILED = "Registration failed."
MSG_LOGIN_SESSION = "Login session setup failed!"
MSG_LOGIN_FAILED = "Login failed!"
MSG_LOGOUT_FAILED = "Logout failed!"


@dataclass(frozen=True)
class AuthResult:
    success: bool
    error: Optional[str] = None
    user: Optional[User] = None


class AuthService:
    """What the routes call: every core failure becomes a flash or a log line."""

    def __init__(self, users: UserRepository, sessions: SessionManager, *, secret: str):
        self.users = users
        self.sessions = sessions
        self._secret = secret

    def register(self, session: Session, email: str, password: str) -> AuthResult:
        email = (email or "").strip()
        if not email or not password:
            return self._fail(session, MSG_MISSING_FIELDS)
        try:
            user = register_with_password(self.users, email, password, secret=self._secret)
        except DuplicateEmailError:
            return self._fail(session, MSG_EMAIL_TAKEN)
        except AuthError:
            logger.exception("Error during registration")
            return self._fail(session, MSG_REGISTER_FAILED)
        return self._establish(session, user, MSG_REGISTER_SESSION)

    def login(self, session: Session, email: str, password: str) -> AuthResult:
        email = (email or "").strip()
        if not email or not password:
            return self._fail(session, MSG_MISSING_FIELDS)
        try:
            user = authenticate_password(self.users, email, password, secret=self._secret)
        except InvalidCredentialsError:
            logger.info("Rejected login attempt")
            return self._fail(session, MSG_INVALID_CREDENTIALS)
        except AuthError:
            logger.exception("Error during login")
            return self._fail(session, MSG_LOGIN_FAILED)
        return self._establish(session, user, MSG_LOGIN_SESSION)

    def complete_oauth_callback(self, session: Session, subject: str, email: str) -> User:
        """Resolve the Google identity and bind it to a regenerated session.

        Collaborator failures propagate (``PersistenceError``,
        ``DuplicateEmailError``, ``SessionRegenerationError``); the caller
        decides what the user sees.
        """
        user = resolve_oauth_identity(self.users, subject, email)
        self.sessions.authenticate(session, user.id)
        return user

    def logout(self, session: Session) -> None:
        """Best-effort: the caller redirects home whatever happens here."""
        try:
            self.sessions.destroy(session)
        except SessionStoreError:
            logger.exception("Logout failed to invalidate the session")
            self._flash_quietly(session, "error", MSG_LOGOUT_FAILED)

    def current_user(self, session: Session) -> Optional[User]:
        if not session.is_authenticated:
            return None
        return self.users.find_user_by_id(session.user_id)

    def require_authenticated(self, session: Session) -> Optional[str]:
        """None when the request may pass, else where to redirect."""
        return None if is_authenticated(session, self.users) else LOGIN_PATH

    def notify(self, session: Session, severity: str, message: str) -> None:
        self._flash_quietly(session, severity, message)

    def _establish(self, session: Session, user: User, session_error: str) -> AuthResult:
        try:
            self.sessions.authenticate(session, user.id)
        except SessionRegenerationError:
            logger.exception("Session regeneration failed for user_id=%s", user.id)
            return self._fail(session, session_error)
        return AuthResult(success=True, user=user)

    def _fail(self, session: Session, message: str) -> AuthResult:
        self._flash_quietly(session, "error", message)
        return AuthResult(success=False, error=message)

    def _flash_quietly(self, session: Session, severity: str, message: str) -> None:
        try:
            flash(self.sessions, session, severity, message)
        except (SessionStoreError, AuthError):
            logger.warning("Could not queue flash message %r", message, exc_info=True)
