from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional


@dataclass(frozen=True)
class CanonicalProfile:
    """Provider profile normalized into one shape. Produced per callback, never stored as-is."""

    external_id: str
    display_name: str
    email: str = ""  # Empty when the provider has no (verified) email
    avatar_url: str = ""


@dataclass(frozen=True)
class OAuthTokens:
    """Result of an authorization-code exchange. Never logged."""

    access_token: str
    refresh_token: str = ""
    token_type: str = ""
    expiry: Optional[datetime] = None


@dataclass
class LocalUser:
    """Local user row owned by the identity store."""

    id: int
    name: str
    email: Optional[str]
    avatar_url: str
    created_at: datetime
    updated_at: datetime

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "avatar_url": self.avatar_url,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


@dataclass
class ProviderIdentity:
    """Link between a local user and one provider account, unique on (provider, provider_id)."""

    user_id: int
    provider: str  # github|facebook|google|instagram
    provider_id: str
    access_token: str
    refresh_token: str = ""
    token_expiry: Optional[datetime] = None


@dataclass(frozen=True)
class Session:
    """First-party session carried in the request's cookies."""

    access_token: str
    user_id: int
