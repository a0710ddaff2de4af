# Copyright (C) 2026 Bernardo Gómez Bey
# SPDX-License-Identifier: AGPL-3.0-or-later

from __future__ import annotations


class AuthError(Exception):
    """Base class for every failure raised by the auth core."""


class DuplicateEmailError(AuthError):
    def __init__(self, email: str = ""):
        super().__init__("Email already registered")
        self.email = email


class InvalidCredentialsError(AuthError):
    """Unknown email or wrong password (never distinguished)."""

    def __init__(self):
        super().__init__("Invalid email or password")


class HashingError(AuthError):
    pass


class VerificationError(AuthError):
    """The stored hash is malformed; not a password mismatch."""


class SessionRegenerationError(AuthError):
    pass


class SessionStateError(AuthError):
    pass


class PersistenceError(AuthError):
    pass
