from __future__ import annotations

import os
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Dict, List, Optional

KNOWN_PROVIDERS = ("github", "facebook", "google", "instagram")

DEFAULT_PUBLIC_BASE_URL = "http://localhost:3000"


@dataclass(frozen=True)
class ProviderCredentials:
    client_id: Optional[str]
    client_secret: Optional[str]
    redirect_url: str

    @property
    def configured(self) -> bool:
        return bool(self.client_id and self.client_secret)


@dataclass(frozen=True)
class AuthConfig:
    # Per-provider OAuth client registration, keyed by provider name.
    providers: Dict[str, ProviderCredentials] = field(default_factory=dict)

    # Session configuration
    public_base_url: str = DEFAULT_PUBLIC_BASE_URL
    session_secret: Optional[str] = None  # Required for signing the user id cookie
    session_ttl_seconds: int = 24 * 60 * 60
    cookie_secure: bool = False

    # Outbound calls to provider token/profile endpoints.
    http_timeout_seconds: float = 10.0

    def enabled_providers(self) -> List[str]:
        """Providers with a complete client registration, in display order."""
        return [name for name in KNOWN_PROVIDERS if name in self.providers and self.providers[name].configured]

    def is_enabled(self, provider: str) -> bool:
        creds = self.providers.get(provider)
        return bool(creds and creds.configured)


def _env(name: str) -> Optional[str]:
    return (os.getenv(name, "") or "").strip() or None


def _load_provider(name: str, public_base_url: str) -> ProviderCredentials:
    prefix = name.upper()
    redirect = _env(f"{prefix}_REDIRECT_URL") or f"{public_base_url}/oauth2/callback/{name}"
    return ProviderCredentials(
        client_id=_env(f"{prefix}_CLIENT_ID"),
        client_secret=_env(f"{prefix}_CLIENT_SECRET"),
        redirect_url=redirect,
    )


@lru_cache(maxsize=1)
def load_auth_config() -> AuthConfig:
    """
    Load gateway configuration from environment variables.

    A provider is enabled when both <PROVIDER>_CLIENT_ID and <PROVIDER>_CLIENT_SECRET are set.
    The redirect URL defaults to <AUTH_PUBLIC_BASE_URL>/oauth2/callback/<provider>.
    """
    public_base_url = (_env("AUTH_PUBLIC_BASE_URL") or DEFAULT_PUBLIC_BASE_URL).rstrip("/")
    cookie_secure_env = (os.getenv("AUTH_COOKIE_SECURE", "") or "").strip().lower()
    if cookie_secure_env in ("1", "true", "yes", "on"):
        cookie_secure = True
    elif cookie_secure_env in ("0", "false", "no", "off"):
        cookie_secure = False
    else:
        # Default: secure cookies when base URL is https; otherwise allow local dev.
        cookie_secure = public_base_url.startswith("https://")

    try:
        ttl = int(float((os.getenv("AUTH_SESSION_TTL_SECONDS", "") or "86400").strip() or "86400"))  # 24h default
    except ValueError:
        ttl = 24 * 60 * 60
    if ttl <= 60:
        ttl = 60

    try:
        timeout = float((os.getenv("PROVIDER_HTTP_TIMEOUT_SECONDS", "") or "10").strip() or "10")
    except ValueError:
        timeout = 10.0
    if timeout <= 0:
        timeout = 10.0

    return AuthConfig(
        providers={name: _load_provider(name, public_base_url) for name in KNOWN_PROVIDERS},
        public_base_url=public_base_url,
        session_secret=_env("AUTH_SESSION_SECRET"),
        session_ttl_seconds=ttl,
        cookie_secure=cookie_secure,
        http_timeout_seconds=timeout,
    )
