# Copyright (C) 2026 Bernardo Gómez Bey
# SPDX-License-Identifier: AGPL-3.0-or-later

"""Authentication and session core.

This package provides:
- Password hashing/verification (argon2, keyed with the app secret)
- Identity resolution for password and Google accounts
- Server-side sessions behind signed cookies (itsdangerous)
- One-shot flash messages
"""
