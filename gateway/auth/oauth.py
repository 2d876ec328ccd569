from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional
from urllib.parse import urlencode

import requests

from gateway.auth.config import ProviderCredentials
from gateway.auth.errors import InvalidStateError, TokenExchangeError
from gateway.auth.models import OAuthTokens
from gateway.auth.providers import ProviderSpec
from gateway.auth.util import random_token

logger = logging.getLogger(__name__)


def new_state(provider: str) -> str:
    """State parameter scoped to the provider name: `<provider>.<random>`."""
    return f"{provider}.{random_token(24)}"


def check_state(provider: str, *, received: Optional[str], expected: Optional[str]) -> None:
    """
    Verify the callback's state against the value stored at login.

    Raises:
        InvalidStateError: missing, mismatched, or issued for another provider
    """
    got = (received or "").strip()
    want = (expected or "").strip()
    if not got or not want or got != want:
        raise InvalidStateError("Invalid OAuth state")
    if not got.startswith(f"{provider}."):
        raise InvalidStateError("OAuth state was issued for another provider")


def build_authorize_url(spec: ProviderSpec, creds: ProviderCredentials, *, state: str) -> str:
    """Build the provider consent URL for the authorization-code flow."""
    if not creds.client_id:
        raise ValueError(f"{spec.name} client ID not configured")

    params = {
        "client_id": creds.client_id,
        "redirect_uri": creds.redirect_url,
        "response_type": "code",
        "scope": spec.scope_separator.join(spec.scopes),
        "state": state,
    }
    return f"{spec.authorize_url}?{urlencode(params)}"


def _parse_expiry(data: Dict[str, Any]) -> Optional[datetime]:
    raw = data.get("expires_in")
    if raw is None or raw == "":
        return None
    try:
        seconds = int(float(raw))
    except (TypeError, ValueError):
        return None
    if seconds <= 0:
        return None
    return datetime.now(timezone.utc) + timedelta(seconds=seconds)


def exchange_code_for_tokens(
    spec: ProviderSpec,
    creds: ProviderCredentials,
    *,
    code: str,
    timeout: float = 10.0,
) -> OAuthTokens:
    """
    Exchange an authorization code for tokens at the provider's token endpoint.

    Single attempt; codes are single-use, so a replayed code fails here.

    Raises:
        TokenExchangeError: network failure, error status, error payload, or no access token
    """
    if not creds.client_id or not creds.client_secret:
        raise TokenExchangeError(f"{spec.name} client ID/secret not configured")
    if not code:
        raise TokenExchangeError("Missing authorization code")

    payload = {
        "client_id": creds.client_id,
        "client_secret": creds.client_secret,
        "grant_type": "authorization_code",
        "code": code,
        "redirect_uri": creds.redirect_url,
    }
    try:
        # GitHub answers form-encoded unless JSON is requested explicitly.
        r = requests.post(spec.token_url, data=payload, headers={"Accept": "application/json"}, timeout=timeout)
    except requests.RequestException as e:
        raise TokenExchangeError(f"Token exchange failed ({type(e).__name__})") from e
    if r.status_code >= 400:
        # Avoid leaking sensitive info; include minimal context.
        raise TokenExchangeError(f"Token exchange failed (status={r.status_code})")
    try:
        data = r.json()
    except ValueError as e:
        raise TokenExchangeError("Invalid token response") from e
    if not isinstance(data, dict):
        raise TokenExchangeError("Invalid token response")
    if data.get("error"):
        # e.g. GitHub's 200 + {"error": "bad_verification_code"}
        raise TokenExchangeError(f"Token exchange failed (error={str(data.get('error'))[:64]})")

    access_token = str(data.get("access_token") or "").strip()
    if not access_token:
        raise TokenExchangeError("Token response missing access_token")

    tokens = OAuthTokens(
        access_token=access_token,
        refresh_token=str(data.get("refresh_token") or "").strip(),
        token_type=str(data.get("token_type") or "bearer").strip(),
        expiry=_parse_expiry(data),
    )
    logger.info(
        "Completed %s token exchange (token_type=%s expiry=%s)",
        spec.name,
        tokens.token_type,
        tokens.expiry.isoformat() if tokens.expiry else "none",
    )
    return tokens
