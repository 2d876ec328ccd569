from __future__ import annotations

from typing import Optional

from fastapi import HTTPException, Request

from gateway.auth.config import load_auth_config
from gateway.auth.models import Session
from gateway.auth.session import maybe_read_session
from gateway.store import get_identity_store


def authenticate_request(request: Request) -> Optional[Session]:
    """
    Return the Session carried by the request's cookies, or None if absent/invalid.

    A validly signed session whose user no longer exists counts as absent. Identity
    derives only from this request's cookies and the store; nothing is cached on the app.
    """
    cfg = load_auth_config()
    session = maybe_read_session(cfg, request.cookies)
    if session is None:
        return None
    if get_identity_store().get_user(session.user_id) is None:
        return None
    return session


def require_session(request: Request) -> Session:
    """FastAPI dependency: 401 unless the request carries a valid session."""
    session = authenticate_request(request)
    if session is None:
        # IMPORTANT: no `WWW-Authenticate` header; browsers would show a basic-auth modal.
        raise HTTPException(status_code=401, detail="Unauthorized")
    request.state.session = session
    return session
