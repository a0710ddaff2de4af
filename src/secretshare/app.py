# Copyright (C) 2026 Bernardo Gómez Bey
# SPDX-License-Identifier: AGPL-3.0-or-later

from __future__ import annotations

import functools
import logging
from pathlib import Path
from typing import Optional

import psycopg
from fastapi import Depends, FastAPI, Form, Request
from fastapi.responses import HTMLResponse, PlainTextResponse, RedirectResponse
from fastapi.templating import Jinja2Templates
from starlette.concurrency import run_in_threadpool

from secretshare.auth import google
from secretshare.auth.errors import AuthError, DuplicateEmailError, PersistenceError, SessionRegenerationError
from secretshare.auth.flash import take_flashes
from secretshare.auth.service import MSG_LOGIN_SESSION, AuthService
from secretshare.auth.session import SessionManager, sign_token, unsign_token
from secretshare.config import AppConfig, load_config
from secretshare.infra.secrets_repo import InMemorySecretRepository, PostgresSecretRepository, SecretRepository
from secretshare.infra.session_store import (
    InMemorySessionStore,
    PostgresSessionStore,
    SessionStore,
    SessionStoreError,
    purge_expired_sessions,
)
from secretshare.infra.users_repo import InMemoryUserRepository, PostgresUserRepository, UserRepository, ensure_schema
from secretshare.permissions import LOGIN_PATH, cookie_settings, current_session, current_user_optional, require_user
from secretshare.services.random_secret import fetch_random_secret

logger = logging.getLogger(__name__)

BASE_DIR = Path(__file__).resolve().parent
templates = Jinja2Templates(directory=str(BASE_DIR / "templates"))

OAUTH_STATE_KEY = "oauth_state"
OAUTH_VERIFIER_KEY = "oauth_verifier"

MSG_GOOGLE_DISABLED = "Google sign-in is not configured."
MSG_GOOGLE_FAILED = "Google sign-in failed."
MSG_GOOGLE_EMAIL_TAKEN = "An account with this email already exists. Log in with your password."
MSG_SECRETS_FAILED = "Failed to load secrets!"
MSG_SECRET_EMPTY = "Your secret cannot be empty."
MSG_SECRET_SAVED = "Your secret has been submitted successfully!"
MSG_SECRET_FAILED = "Failed to submit secret!"

# Served without a session or cookie.
SESSIONLESS_PATHS = frozenset({"/healthz"})


def build_stores(cfg: AppConfig):
    """Return (users, session_store, secrets) for the configured backend."""
    if not cfg.uses_postgres:
        return InMemoryUserRepository(), InMemorySessionStore(cfg.session_ttl_seconds), InMemorySecretRepository()

    connect = functools.partial(psycopg.connect, cfg.database_url)
    ensure_schema(connect)
    users = PostgresUserRepository(connect)
    secrets = PostgresSecretRepository(connect)
    if cfg.session_backend == "postgres":
        purged = purge_expired_sessions(connect)
        logger.info("Purged %s expired sessions", purged)
        store = PostgresSessionStore(connect, cfg.session_ttl_seconds)
    else:
        store = InMemorySessionStore(cfg.session_ttl_seconds)
    return users, store, secrets


def _redirect(url: str) -> RedirectResponse:
    return RedirectResponse(url=url, status_code=303)


def _render(request: Request, template_name: str, ctx: Optional[dict] = None):
    """TemplateResponse wrapper draining flash messages into the page."""
    auth: AuthService = request.app.state.auth
    flashes = take_flashes(auth.sessions, current_session(request))
    base_ctx = {
        "current_user": current_user_optional(request),
        "error": flashes.get("error", []),
        "success": flashes.get("success", []),
        "google_enabled": request.app.state.config.google_enabled,
    }
    merged = {**base_ctx, **(ctx or {})}
    return templates.TemplateResponse(request, template_name, merged)


def create_app(
    cfg: Optional[AppConfig] = None,
    *,
    users: Optional[UserRepository] = None,
    session_store: Optional[SessionStore] = None,
    secret_repo: Optional[SecretRepository] = None,
) -> FastAPI:
    cfg = cfg or load_config()
    if users is None or session_store is None or secret_repo is None:
        default_users, default_store, default_secrets = build_stores(cfg)
        users = users or default_users
        session_store = session_store or default_store
        secret_repo = secret_repo or default_secrets

    manager = SessionManager(session_store)
    auth = AuthService(users, manager, secret=cfg.secret_key)

    app = FastAPI()
    app.state.config = cfg
    app.state.auth = auth
    app.state.secrets = secret_repo

    @app.middleware("http")
    async def _session_middleware(request: Request, call_next):
        if request.url.path in SESSIONLESS_PATHS:
            return await call_next(request)
        token = unsign_token(cfg.secret_key, request.cookies.get(cfg.cookie_name), max_age=cfg.session_ttl_seconds)
        try:
            session = await run_in_threadpool(manager.resolve, token)
        except SessionStoreError:
            logger.exception("Session store unavailable while resolving request")
            return PlainTextResponse("Service temporarily unavailable", status_code=503)
        request.state.session = session
        request.state.user = None

        response = await call_next(request)

        # A handler may have swapped in a fresh session.
        session = request.state.session
        if session.discard_cookie:
            response.delete_cookie(cfg.cookie_name, path="/", httponly=True, samesite="lax", secure=cfg.cookie_secure)
        elif session.issued:
            response.set_cookie(
                cfg.cookie_name,
                sign_token(cfg.secret_key, session.token),
                max_age=cfg.session_ttl_seconds,
                **cookie_settings(cfg),
            )
        return response

    @app.exception_handler(SessionStoreError)
    async def _session_store_error(request: Request, exc: SessionStoreError):
        logger.error("Session store failure: %s", exc, exc_info=exc)
        return PlainTextResponse("Service temporarily unavailable", status_code=503)

    @app.exception_handler(PersistenceError)
    async def _persistence_error(request: Request, exc: PersistenceError):
        logger.error("User store failure: %s", exc, exc_info=exc)
        return PlainTextResponse("Service temporarily unavailable", status_code=503)

    def _anonymous_session(request: Request):
        session = current_session(request)
        if session.is_authenticated and current_user_optional(request) is None:
            # Bound user no longer exists; drop the stale session before a new login.
            auth.logout(session)
            session = manager.resolve(None)
            request.state.session = session
        return session

    # ------------------ Routes ------------------

    @app.get("/healthz")
    def healthz():
        return {"ok": True}

    @app.get("/", response_class=HTMLResponse)
    def home(request: Request):
        return _render(request, "home.html")

    @app.get("/register", response_class=HTMLResponse)
    def register_get(request: Request):
        if current_user_optional(request):
            return _redirect("/secrets")
        return _render(request, "register.html")

    @app.post("/register")
    def register_post(request: Request, email: str = Form(""), password: str = Form("")):
        session = _anonymous_session(request)
        if session.is_authenticated:
            return _redirect("/secrets")
        result = auth.register(session, email, password)
        return _redirect("/secrets" if result.success else "/register")

    @app.get("/login", response_class=HTMLResponse)
    def login_get(request: Request):
        if current_user_optional(request):
            return _redirect("/secrets")
        return _render(request, "login.html")

    @app.post("/login")
    def login_post(request: Request, email: str = Form(""), password: str = Form("")):
        session = _anonymous_session(request)
        if session.is_authenticated:
            return _redirect("/secrets")
        result = auth.login(session, email, password)
        return _redirect("/secrets" if result.success else LOGIN_PATH)

    @app.get("/auth/google")
    def google_start(request: Request):
        session = _anonymous_session(request)
        if not cfg.google_enabled:
            auth.notify(session, "error", MSG_GOOGLE_DISABLED)
            return _redirect(LOGIN_PATH)
        state = google.new_state()
        verifier = google.new_code_verifier()
        manager.stash(session, OAUTH_STATE_KEY, state)
        manager.stash(session, OAUTH_VERIFIER_KEY, verifier)
        url = google.build_authorize_url(cfg, state=state, code_challenge=google.pkce_challenge(verifier))
        return _redirect(url)

    @app.get("/auth/google/secrets")
    def google_callback(request: Request, code: str = "", state: str = "", error: str = ""):
        session = _anonymous_session(request)
        if session.is_authenticated:
            return _redirect("/secrets")

        expected_state = manager.pop(session, OAUTH_STATE_KEY)
        verifier = manager.pop(session, OAUTH_VERIFIER_KEY)
        if error or not code or not expected_state or state != expected_state or not verifier:
            logger.warning("Rejected Google callback (error=%r, state_ok=%s)", error, state == expected_state)
            auth.notify(session, "error", MSG_GOOGLE_FAILED)
            return _redirect(LOGIN_PATH)

        try:
            tokens = google.exchange_code(cfg, code=code, code_verifier=verifier)
            identity = google.fetch_userinfo(str(tokens["access_token"]))
        except google.OAuthError:
            logger.exception("Google handshake failed")
            auth.notify(session, "error", MSG_GOOGLE_FAILED)
            return _redirect(LOGIN_PATH)

        try:
            auth.complete_oauth_callback(session, identity.subject, identity.email)
        except DuplicateEmailError:
            auth.notify(session, "error", MSG_GOOGLE_EMAIL_TAKEN)
            return _redirect(LOGIN_PATH)
        except SessionRegenerationError:
            logger.exception("Session regeneration failed after Google login")
            auth.notify(session, "error", MSG_LOGIN_SESSION)
            return _redirect(LOGIN_PATH)
        except AuthError:
            logger.exception("Google login could not be completed")
            auth.notify(session, "error", MSG_GOOGLE_FAILED)
            return _redirect(LOGIN_PATH)
        return _redirect("/secrets")

    @app.get("/secrets", response_class=HTMLResponse)
    def secrets_page(request: Request, user=Depends(require_user)):
        try:
            others = secret_repo.list_other_secrets(user.id)
            mine = secret_repo.list_user_secrets(user.id)
        except PersistenceError:
            logger.exception("Error fetching secrets")
            auth.notify(current_session(request), "error", MSG_SECRETS_FAILED)
            return _redirect("/")
        random_secret = fetch_random_secret(cfg.random_secret_url, timeout=cfg.http_timeout_seconds)
        return _render(
            request,
            "secrets.html",
            {"secret": others, "user_secret": mine, "random_secret": random_secret},
        )

    @app.get("/submit", response_class=HTMLResponse)
    def submit_get(request: Request, user=Depends(require_user)):
        return _render(request, "submit.html")

    @app.post("/submit")
    def submit_post(request: Request, secret: str = Form(""), user=Depends(require_user)):
        session = current_session(request)
        content = (secret or "").strip()
        if not content:
            auth.notify(session, "error", MSG_SECRET_EMPTY)
            return _redirect("/submit")
        try:
            secret_repo.add_secret(user.id, content)
        except PersistenceError:
            logger.exception("Error submitting secret")
            auth.notify(session, "error", MSG_SECRET_FAILED)
            return _redirect("/secrets")
        auth.notify(session, "success", MSG_SECRET_SAVED)
        return _redirect("/secrets")

    @app.api_route("/logout", methods=["GET", "POST"])
    def logout(request: Request):
        auth.logout(current_session(request))
        return _redirect("/")

    return app
