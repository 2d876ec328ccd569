"""
Login gateway HTTP server.

Drives the OAuth2 authorization-code flow for each registered provider:
login redirect -> callback (code exchange -> profile fetch -> reconcile -> session) -> home.
Each request's identity comes from its own cookies and the identity store only.
"""

from __future__ import annotations

import logging
import os
import time
from typing import Any, Dict, Optional, Tuple

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.responses import HTMLResponse, RedirectResponse

from gateway.api.users import router as users_router
from gateway.auth.config import AuthConfig, ProviderCredentials, load_auth_config
from gateway.auth.errors import GatewayError, UnknownProviderError
from gateway.auth.models import Session
from gateway.auth.oauth import build_authorize_url, check_state, exchange_code_for_tokens, new_state
from gateway.auth.providers import ProviderSpec, fetch_profile, get_provider
from gateway.auth.reconcile import reconcile_login
from gateway.auth.session import clear_session_cookie_kwargs, maybe_read_session, session_cookie_kwargs
from gateway.store import close_identity_store, get_identity_store
from gateway.views import render_home, render_sign_in

logger = logging.getLogger(__name__)

app = FastAPI(title="OAuth login gateway")
app.include_router(users_router)


# ---- OAuth state cookie (login -> callback) ----
OAUTH_STATE_COOKIE = "oauth_state"
_OAUTH_COOKIE_PATH = "/oauth2"
_OAUTH_TTL_SECONDS = 10 * 60


def _oauth_cookie_kwargs(cfg: AuthConfig, *, key: str, value: str, max_age: int) -> dict:
    return {
        "key": key,
        "value": value,
        "max_age": max_age,
        "httponly": True,
        "secure": cfg.cookie_secure,
        "samesite": "lax",
        "path": _OAUTH_COOKIE_PATH,
    }


def _oauth_cookie_clear_kwargs(cfg: AuthConfig, *, key: str) -> dict:
    return _oauth_cookie_kwargs(cfg, key=key, value="", max_age=0)


def _resolve_provider(cfg: AuthConfig, provider: str) -> Tuple[ProviderSpec, ProviderCredentials]:
    """Registered AND configured, else 400 (nothing else happens for an unknown provider)."""
    try:
        spec = get_provider(provider)
        if not cfg.is_enabled(spec.name):
            raise UnknownProviderError(provider)
    except UnknownProviderError as e:
        raise HTTPException(status_code=e.status_code, detail="Unknown provider")
    return spec, cfg.providers[spec.name]


@app.on_event("startup")
def _startup_maybe_migrate_db() -> None:
    """
    Optional dev behavior: auto-apply DB migrations when DB_AUTO_MIGRATE=1.

    This should never prevent the server from starting; failures are logged.
    """
    try:
        from gateway.store.migrate import maybe_auto_migrate

        did_attempt, msg = maybe_auto_migrate()
        if did_attempt:
            logger.info("DB migrations: %s", msg)
    except Exception as e:
        logger.warning("DB migrations: startup auto-migrate failed: %s", str(e))

    # Avoid logging secrets; provider names and flags are fine.
    cfg = load_auth_config()
    logger.info(
        "Auth config: providers=%s public_base_url=%s session_signing=%s cookie_secure=%s",
        ",".join(cfg.enabled_providers()) or "(none)",
        cfg.public_base_url,
        bool(cfg.session_secret),
        cfg.cookie_secure,
    )


@app.on_event("shutdown")
def _shutdown_close_store() -> None:
    close_identity_store()


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log method, path, status and duration of every request (never the query string)."""
    start_time = time.time()
    logger.debug("%s %s", request.method, request.url.path)
    try:
        response = await call_next(request)
        process_time = time.time() - start_time
        logger.info("%s %s - %d (%.3fs)", request.method, request.url.path, response.status_code, process_time)
        return response
    except Exception as e:
        process_time = time.time() - start_time
        logger.error(
            "%s %s - ERROR after %.3fs: %s", request.method, request.url.path, process_time, type(e).__name__
        )
        raise


@app.get("/healthz")
def healthz() -> Dict[str, Any]:
    return {"ok": True}


@app.get("/", response_class=HTMLResponse)
def root(request: Request) -> HTMLResponse:
    """Home view for the session's user, or the sign-in view."""
    cfg = load_auth_config()
    session = maybe_read_session(cfg, request.cookies)
    if session is not None:
        store = get_identity_store()
        user = store.get_user(session.user_id)
        if user is not None:
            return HTMLResponse(render_home(user, store.list_identities(user.id)))
        logger.info("Session user_id=%s no longer exists", session.user_id)
    return HTMLResponse(render_sign_in(cfg.enabled_providers()))


@app.get("/login/{provider}")
def login(provider: str) -> RedirectResponse:
    """Redirect (307) to the provider's consent page with a provider-scoped state."""
    cfg = load_auth_config()
    spec, creds = _resolve_provider(cfg, provider)

    state = new_state(spec.name)
    url = build_authorize_url(spec, creds, state=state)

    resp = RedirectResponse(url=url, status_code=307)
    resp.headers["Cache-Control"] = "no-store"
    resp.set_cookie(**_oauth_cookie_kwargs(cfg, key=OAUTH_STATE_COOKIE, value=state, max_age=_OAUTH_TTL_SECONDS))
    return resp


@app.get("/oauth2/callback/{provider}")
def oauth_callback(
    request: Request,
    provider: str,
    code: Optional[str] = Query(None),
    state: Optional[str] = Query(None),
    error: Optional[str] = Query(None),
) -> RedirectResponse:
    """
    Complete the login: exchange the code, fetch and normalize the profile, reconcile it
    with the identity store, then set the session cookies and redirect (307) home.

    Any failure aborts with its status; tokens obtained before the failure are dropped
    and the user has to restart the login.
    """
    cfg = load_auth_config()
    spec, creds = _resolve_provider(cfg, provider)

    if error:
        logger.info("%s authorization was not granted (error=%s)", spec.name, error[:64])
        raise HTTPException(status_code=400, detail="Authorization was not granted")
    if not code:
        raise HTTPException(status_code=400, detail="Missing authorization code")
    if not cfg.session_secret:
        raise HTTPException(status_code=500, detail="Session signing is not configured (AUTH_SESSION_SECRET)")

    try:
        check_state(spec.name, received=state, expected=request.cookies.get(OAUTH_STATE_COOKIE))
        tokens = exchange_code_for_tokens(spec, creds, code=code, timeout=cfg.http_timeout_seconds)
        profile = fetch_profile(spec.name, tokens.access_token, timeout=cfg.http_timeout_seconds)
        user_id = reconcile_login(get_identity_store(), spec.name, profile, tokens)
    except GatewayError as e:
        logger.warning("OAuth callback for %s failed: %s: %s", spec.name, type(e).__name__, str(e))
        raise HTTPException(status_code=e.status_code, detail=str(e))

    session = Session(access_token=tokens.access_token, user_id=user_id)
    resp = RedirectResponse(url="/", status_code=307)
    resp.headers["Cache-Control"] = "no-store"
    for kwargs in session_cookie_kwargs(cfg, session):
        resp.set_cookie(**kwargs)
    resp.set_cookie(**_oauth_cookie_clear_kwargs(cfg, key=OAUTH_STATE_COOKIE))
    logger.info("Session established for user_id=%s via %s", user_id, spec.name)
    return resp


@app.get("/logout")
def logout() -> RedirectResponse:
    """Clear both session cookies and go home (303). Safe without a session."""
    cfg = load_auth_config()
    resp = RedirectResponse(url="/", status_code=303)
    resp.headers["Cache-Control"] = "no-store"
    for kwargs in clear_session_cookie_kwargs(cfg):
        resp.set_cookie(**kwargs)
    return resp


def run(host: str = "0.0.0.0", port: int = 3000) -> None:
    import uvicorn

    # Logging itself is configured by the entry point; only map LOG_LEVEL to uvicorn's levels.
    log_level = os.getenv("LOG_LEVEL", "info").lower()
    uvicorn_log_level = log_level if log_level in ["critical", "error", "warning", "info", "debug", "trace"] else "info"

    logger.info("Starting login gateway on %s:%d (log_level=%s)", host, port, log_level)
    # Access log off: it would print callback query strings (authorization codes); log_requests covers it.
    uvicorn.run(app, host=host, port=port, log_level=uvicorn_log_level, access_log=False)
