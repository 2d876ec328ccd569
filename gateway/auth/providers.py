"""
Provider registry and profile normalizers.

Each provider exposes the same capability: given an access token, fetch the user's
profile and map the provider-specific JSON into a CanonicalProfile. Calls are
single-attempt and bounded by a timeout; any failure surfaces as ProviderFetchError.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Tuple

import requests

from gateway.auth.errors import ProviderFetchError, UnknownProviderError
from gateway.auth.models import CanonicalProfile

logger = logging.getLogger(__name__)

USER_AGENT = "oauth-login-gateway"

GITHUB_API = "https://api.github.com"
FACEBOOK_ME_URL = "https://graph.facebook.com/me"
GOOGLE_USERINFO_URL = "https://www.googleapis.com/oauth2/v2/userinfo"
INSTAGRAM_ME_URL = "https://graph.instagram.com/me"

ProfileFetcher = Callable[[str, float], CanonicalProfile]


@dataclass(frozen=True)
class ProviderSpec:
    name: str
    display_name: str
    authorize_url: str
    token_url: str
    scopes: Tuple[str, ...]
    fetch_profile: ProfileFetcher
    scope_separator: str = " "


def _get_json(
    provider: str,
    url: str,
    *,
    timeout: float,
    headers: Optional[Dict[str, str]] = None,
    params: Optional[Dict[str, str]] = None,
) -> Any:
    # Exception text may carry the request URL (and a token in its query); report the type only.
    try:
        r = requests.get(url, headers=headers, params=params, timeout=timeout)
    except requests.RequestException as e:
        raise ProviderFetchError(f"{provider} profile request failed ({type(e).__name__})") from e
    if r.status_code >= 400:
        raise ProviderFetchError(f"{provider} profile request failed (status={r.status_code})")
    try:
        return r.json()
    except ValueError as e:
        raise ProviderFetchError(f"{provider} returned invalid JSON") from e


def _require_dict(provider: str, data: Any) -> Dict[str, Any]:
    if not isinstance(data, dict):
        raise ProviderFetchError(f"{provider} returned an unexpected profile payload")
    return data


def _str(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def _profile(provider: str, *, external_id: Any, display_name: Any, email: Any = "", avatar_url: Any = "") -> CanonicalProfile:
    ext = _str(external_id)
    if not ext:
        raise ProviderFetchError(f"{provider} profile is missing the account id")
    return CanonicalProfile(
        external_id=ext,
        display_name=_str(display_name) or ext,
        email=_str(email).lower(),
        avatar_url=_str(avatar_url),
    )


def _github_headers(access_token: str) -> Dict[str, str]:
    return {
        "Authorization": f"Bearer {access_token}",
        "Accept": "application/vnd.github+json",
        "User-Agent": USER_AGENT,
    }


def select_github_email(emails: Any) -> str:
    """Return the first primary+verified address from GitHub's /user/emails list, else ""."""
    if not isinstance(emails, list):
        return ""
    for e in emails:
        if isinstance(e, dict) and e.get("primary") is True and e.get("verified") is True:
            return _str(e.get("email"))
    return ""


def fetch_github_profile(access_token: str, timeout: float) -> CanonicalProfile:
    headers = _github_headers(access_token)
    user = _require_dict("github", _get_json("github", f"{GITHUB_API}/user", timeout=timeout, headers=headers))
    emails = _get_json("github", f"{GITHUB_API}/user/emails", timeout=timeout, headers=headers)
    if not isinstance(emails, list):
        raise ProviderFetchError("github returned an unexpected emails payload")
    return _profile(
        "github",
        external_id=user.get("id"),
        display_name=user.get("name") or user.get("login"),
        email=select_github_email(emails),
        avatar_url=user.get("avatar_url"),
    )


def fetch_facebook_profile(access_token: str, timeout: float) -> CanonicalProfile:
    data = _require_dict(
        "facebook",
        _get_json(
            "facebook",
            FACEBOOK_ME_URL,
            timeout=timeout,
            params={"fields": "id,name,email,picture", "access_token": access_token},
        ),
    )
    picture = data.get("picture")
    avatar = ""
    # picture arrives nested: {"picture": {"data": {"url": ...}}}
    if isinstance(picture, dict) and isinstance(picture.get("data"), dict):
        avatar = _str(picture["data"].get("url"))
    return _profile(
        "facebook",
        external_id=data.get("id"),
        display_name=data.get("name"),
        email=data.get("email"),
        avatar_url=avatar,
    )


def fetch_google_profile(access_token: str, timeout: float) -> CanonicalProfile:
    data = _require_dict(
        "google",
        _get_json(
            "google",
            GOOGLE_USERINFO_URL,
            timeout=timeout,
            headers={"Authorization": f"Bearer {access_token}", "Accept": "application/json"},
        ),
    )
    return _profile(
        "google",
        external_id=data.get("id"),
        display_name=data.get("name"),
        email=data.get("email"),
        avatar_url=data.get("picture"),
    )


def fetch_instagram_profile(access_token: str, timeout: float) -> CanonicalProfile:
    # Instagram exposes neither email nor avatar.
    data = _require_dict(
        "instagram",
        _get_json(
            "instagram",
            INSTAGRAM_ME_URL,
            timeout=timeout,
            params={"fields": "id,username,account_type", "access_token": access_token},
        ),
    )
    return _profile("instagram", external_id=data.get("id"), display_name=data.get("username"))


PROVIDERS: Dict[str, ProviderSpec] = {
    "github": ProviderSpec(
        name="github",
        display_name="GitHub",
        authorize_url="https://github.com/login/oauth/authorize",
        token_url="https://github.com/login/oauth/access_token",
        scopes=("read:user", "user:email"),
        fetch_profile=fetch_github_profile,
    ),
    "facebook": ProviderSpec(
        name="facebook",
        display_name="Facebook",
        authorize_url="https://www.facebook.com/v10.0/dialog/oauth",
        token_url="https://graph.facebook.com/v10.0/oauth/access_token",
        scopes=("email", "public_profile"),
        fetch_profile=fetch_facebook_profile,
        scope_separator=",",
    ),
    "google": ProviderSpec(
        name="google",
        display_name="Google",
        authorize_url="https://accounts.google.com/o/oauth2/auth",
        token_url="https://oauth2.googleapis.com/token",
        scopes=("openid", "email", "profile"),
        fetch_profile=fetch_google_profile,
    ),
    "instagram": ProviderSpec(
        name="instagram",
        display_name="Instagram",
        authorize_url="https://api.instagram.com/oauth/authorize",
        token_url="https://api.instagram.com/oauth/access_token",
        scopes=("user_profile", "user_media"),
        fetch_profile=fetch_instagram_profile,
        scope_separator=",",
    ),
}


def get_provider(name: str) -> ProviderSpec:
    spec = PROVIDERS.get((name or "").strip().lower())
    if spec is None:
        raise UnknownProviderError(name)
    return spec


def fetch_profile(provider: str, access_token: str, *, timeout: float = 10.0) -> CanonicalProfile:
    """
    Fetch and normalize the profile of the account behind `access_token`.

    Raises:
        UnknownProviderError: provider is not registered
        ProviderFetchError: network/HTTP/JSON failure or a payload without an account id
    """
    spec = get_provider(provider)
    profile = spec.fetch_profile(access_token, timeout)
    logger.info("Fetched %s profile (has_email=%s)", spec.name, bool(profile.email))
    return profile
