from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import List, Mapping, Optional

from itsdangerous import BadSignature, BadTimeSignature, URLSafeTimedSerializer

from gateway.auth.config import AuthConfig
from gateway.auth.errors import SessionAbsentError
from gateway.auth.models import Session
from gateway.auth.util import token_digest

ACCESS_TOKEN_COOKIE = "access_token"
USER_ID_COOKIE = "user_id"

SESSION_SALT = "oauth-gateway-session-v1"

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def _serializer(cfg: AuthConfig) -> Optional[URLSafeTimedSerializer]:
    if not cfg.session_secret:
        return None
    return URLSafeTimedSerializer(secret_key=cfg.session_secret, salt=SESSION_SALT)


def encode_user_id(cfg: AuthConfig, session: Session) -> Optional[str]:
    """
    Sign the user id, bound to a digest of the access token.

    A user_id cookie only verifies next to the access_token cookie it was issued with.
    """
    s = _serializer(cfg)
    if s is None:
        return None
    raw = json.dumps({"uid": int(session.user_id), "at": token_digest(session.access_token)}, separators=(",", ":"))
    return s.dumps(raw)


def read_session(cfg: AuthConfig, cookies: Mapping[str, str]) -> Session:
    """
    Decode the session carried by a request's cookies.

    Raises:
        SessionAbsentError: a cookie is missing, the signature is bad or expired,
            or the pair was not issued together
    """
    access_token = (cookies.get(ACCESS_TOKEN_COOKIE) or "").strip()
    signed = (cookies.get(USER_ID_COOKIE) or "").strip()
    if not access_token or not signed:
        raise SessionAbsentError("No session")
    s = _serializer(cfg)
    if s is None:
        raise SessionAbsentError("Session signing is not configured")
    try:
        data = json.loads(s.loads(signed, max_age=cfg.session_ttl_seconds))
    except (BadSignature, BadTimeSignature, ValueError) as e:
        raise SessionAbsentError("Invalid session") from e
    if not isinstance(data, dict):
        raise SessionAbsentError("Invalid session")
    if data.get("at") != token_digest(access_token):
        raise SessionAbsentError("Session cookies do not match")
    try:
        user_id = int(data.get("uid"))
    except (TypeError, ValueError) as e:
        raise SessionAbsentError("Invalid session") from e
    return Session(access_token=access_token, user_id=user_id)


def maybe_read_session(cfg: AuthConfig, cookies: Mapping[str, str]) -> Optional[Session]:
    try:
        return read_session(cfg, cookies)
    except SessionAbsentError:
        return None


def _cookie_kwargs(cfg: AuthConfig, *, key: str, value: str, max_age: int, expires, httponly: bool) -> dict:
    return {
        "key": key,
        "value": value,
        "max_age": max_age,
        "expires": expires,
        "httponly": httponly,
        "secure": cfg.cookie_secure,
        "samesite": "lax",
        "path": "/",
    }


def session_cookie_kwargs(cfg: AuthConfig, session: Session) -> List[dict]:
    """Set-Cookie kwargs for both session cookies (24h absolute expiry by default)."""
    signed = encode_user_id(cfg, session)
    if signed is None:
        raise ValueError("Session signing is not configured (AUTH_SESSION_SECRET)")
    ttl = cfg.session_ttl_seconds
    return [
        _cookie_kwargs(
            cfg, key=ACCESS_TOKEN_COOKIE, value=session.access_token, max_age=ttl, expires=ttl, httponly=True
        ),
        _cookie_kwargs(cfg, key=USER_ID_COOKIE, value=signed, max_age=ttl, expires=ttl, httponly=False),
    ]


def clear_session_cookie_kwargs(cfg: AuthConfig) -> List[dict]:
    return [
        _cookie_kwargs(cfg, key=ACCESS_TOKEN_COOKIE, value="", max_age=0, expires=_EPOCH, httponly=True),
        _cookie_kwargs(cfg, key=USER_ID_COOKIE, value="", max_age=0, expires=_EPOCH, httponly=False),
    ]
