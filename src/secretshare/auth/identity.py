# Copyright (C) 2026 Bernardo Gómez Bey
# SPDX-License-Identifier: AGPL-3.0-or-later

from __future__ import annotations

import logging
from typing import Optional

from secretshare.auth.errors import DuplicateEmailError, InvalidCredentialsError, PersistenceError
from secretshare.auth.passwords import hash_password, verify_password
from secretshare.infra.users_repo import User, UserRepository

logger = logging.getLogger(__name__)

# Verified against when the email is unknown so both failure paths cost one argon2 run.
_DUMMY_PASSWORD = "secretshare-timing-equaliser"
_dummy_hash_cache: dict = {}


def _dummy_hash(secret: str) -> str:
    h = _dummy_hash_cache.get(secret)
    if h is None:
        h = hash_password(_DUMMY_PASSWORD, secret)
        _dummy_hash_cache[secret] = h
    return h


def register_with_password(users: UserRepository, email: str, plain: str, *, secret: str) -> User:
    """Hash ``plain`` and create a password account.

    Raises:
        DuplicateEmailError: the email is already taken (including a lost race).
        PersistenceError: any other store failure; nothing is created.
    """
    password_hash = hash_password(plain, secret)
    user = users.insert_password_user(email, password_hash)
    logger.info("Registered password user id=%s", user.id)
    return user


def authenticate_password(users: UserRepository, email: str, plain: str, *, secret: str) -> User:
    u: Optional[User] = users.find_user_by_email(email)
    if u is None or not u.has_password:
        # Same cost as a real check; the result is irrelevant.
        verify_password(_dummy_hash(secret), plain or _DUMMY_PASSWORD, secret)
        raise InvalidCredentialsError()
    if not verify_password(u.password_hash or "", plain, secret):
        raise InvalidCredentialsError()
    return u


def resolve_oauth_identity(users: UserRepository, subject: str, email: str) -> User:
    """Return the user linked to ``subject``, creating it on first sight.

    An existing user is returned unchanged (email is never refreshed). No
    linking with a password account that shares ``email`` is attempted.
    """
    u = users.find_user_by_oauth_subject(subject)
    if u is not None:
        return u
    try:
        u = users.insert_oauth_user(email, subject)
    except (DuplicateEmailError, PersistenceError):
        # A concurrent callback for the same subject may have won the insert.
        winner = users.find_user_by_oauth_subject(subject)
        if winner is not None:
            return winner
        raise
    logger.info("Created OAuth user id=%s", u.id)
    return u
