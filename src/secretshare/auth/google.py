# Copyright (C) 2026 Bernardo Gómez Bey
# SPDX-License-Identifier: AGPL-3.0-or-later

"""Google OAuth 2.0 authorization-code flow (with ``state`` and PKCE)."""

from __future__ import annotations

import base64
import hashlib
import logging
import secrets
from dataclasses import dataclass
from typing import Any, Dict
from urllib.parse import urlencode

import requests

from secretshare.config import AppConfig

logger = logging.getLogger(__name__)

AUTHORIZATION_ENDPOINT = "https://accounts.google.com/o/oauth2/v2/auth"
TOKEN_ENDPOINT = "https://oauth2.googleapis.com/token"
USERINFO_ENDPOINT = "https://www.googleapis.com/oauth2/v3/userinfo"
SCOPES = "openid profile email"
TIMEOUT_SECONDS = 10


class OAuthError(Exception):
    pass


@dataclass(frozen=True)
class GoogleIdentity:
    subject: str
    email: str


def new_state() -> str:
    return secrets.token_urlsafe(32)


def new_code_verifier() -> str:
    return secrets.token_urlsafe(48)


def pkce_challenge(verifier: str) -> str:
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


def build_authorize_url(cfg: AppConfig, *, state: str, code_challenge: str) -> str:
    if not cfg.google_enabled:
        raise OAuthError("Google OAuth is not configured")
    params = {
        "client_id": cfg.google_client_id,
        "redirect_uri": cfg.google_callback_url,
        "response_type": "code",
        "scope": SCOPES,
        "state": state,
        "code_challenge": code_challenge,
        "code_challenge_method": "S256",
    }
    return f"{AUTHORIZATION_ENDPOINT}?{urlencode(params)}"


def exchange_code(cfg: AppConfig, *, code: str, code_verifier: str) -> Dict[str, Any]:
    if not cfg.google_enabled:
        raise OAuthError("Google OAuth is not configured")
    payload = {
        "client_id": cfg.google_client_id,
        "client_secret": cfg.google_client_secret,
        "grant_type": "authorization_code",
        "code": code,
        "redirect_uri": cfg.google_callback_url,
        "code_verifier": code_verifier,
    }
    try:
        r = requests.post(TOKEN_ENDPOINT, data=payload, timeout=TIMEOUT_SECONDS)
    except requests.RequestException as exc:
        raise OAuthError("Token endpoint unreachable") from exc
    if r.status_code >= 400:
        # Response body may echo the code; keep only the status.
        raise OAuthError(f"Token exchange failed (status={r.status_code})")
    try:
        data = r.json()
    except ValueError as exc:
        raise OAuthError("Invalid token response") from exc
    if not isinstance(data, dict) or not data.get("access_token"):
        raise OAuthError("Token response missing access_token")
    return data


def fetch_userinfo(access_token: str) -> GoogleIdentity:
    try:
        r = requests.get(
            USERINFO_ENDPOINT,
            headers={"Authorization": f"Bearer {access_token}"},
            timeout=TIMEOUT_SECONDS,
        )
        r.raise_for_status()
        data = r.json()
    except (requests.RequestException, ValueError) as exc:
        raise OAuthError("Could not fetch Google profile") from exc
    if not isinstance(data, dict):
        raise OAuthError("Invalid userinfo response")

    subject = str(data.get("sub") or "").strip()
    email = str(data.get("email") or "").strip()
    if not subject or not email:
        raise OAuthError("Google profile lacks sub or email")
    if data.get("email_verified") is False:
        raise OAuthError("Email not verified")
    return GoogleIdentity(subject=subject, email=email)
