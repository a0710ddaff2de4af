# Copyright (C) 2026 Bernardo Gómez Bey
# SPDX-License-Identifier: AGPL-3.0-or-later

from __future__ import annotations

import hashlib
import hmac

from argon2 import PasswordHasher, Type
from argon2 import exceptions as argon2_exc

from secretshare.auth.errors import HashingError, VerificationError

MEMORY_COST_KIB = 2 ** 16  # 64 MiB
TIME_COST = 3
PARALLELISM = 1

_PH = PasswordHasher(
    time_cost=TIME_COST,
    memory_cost=MEMORY_COST_KIB,
    parallelism=PARALLELISM,
    hash_len=32,
    salt_len=16,
    type=Type.ID,
)


def _peppered(plain: str, secret: str) -> bytes:
    """Key the password with the application secret before it reaches argon2.

    A dump of the users table is useless for offline guessing unless the
    attacker also holds ``secret``.
    """
    if not secret:
        raise ValueError("Missing application secret")
    return hmac.new(secret.encode("utf-8"), plain.encode("utf-8"), hashlib.sha256).digest()


def hash_password(plain: str, secret: str) -> str:
    if not plain:
        raise ValueError("Empty password")
    try:
        return _PH.hash(_peppered(plain, secret))
    except argon2_exc.HashingError as exc:
        raise HashingError("argon2 could not hash the password") from exc


def verify_password(hash_value: str, plain: str, secret: str) -> bool:
    if not hash_value or not plain:
        return False
    try:
        return _PH.verify(hash_value, _peppered(plain, secret))
    except argon2_exc.VerifyMismatchError:
        return False
    except argon2_exc.InvalidHashError as exc:
        raise VerificationError("Stored password hash is malformed") from exc
    except argon2_exc.VerificationError as exc:
        raise VerificationError("Stored password hash could not be verified") from exc


def needs_rehash(hash_value: str) -> bool:
    try:
        return _PH.check_needs_rehash(hash_value)
    except argon2_exc.InvalidHashError as exc:
        raise VerificationError("Stored password hash is malformed") from exc
