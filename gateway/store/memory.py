"""In-process identity store for development and tests (fallback when Postgres is not configured)."""

from __future__ import annotations

import threading
from dataclasses import replace
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

from gateway.auth.errors import DuplicateEmailError, ProfileIncompleteError
from gateway.auth.models import CanonicalProfile, LocalUser, OAuthTokens, ProviderIdentity


def _now() -> datetime:
    return datetime.now(timezone.utc)


class InMemoryIdentityStore:
    """IdentityStore over dicts, guarded by one lock so reconcile is atomic."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._users: Dict[int, LocalUser] = {}
        self._identities: Dict[Tuple[str, str], ProviderIdentity] = {}
        self._next_id = 1

    def _user_id_by_email(self, email: str) -> Optional[int]:
        for u in self._users.values():
            if u.email == email:
                return u.id
        return None

    def _insert_user(self, name: str, email: Optional[str], avatar_url: str) -> LocalUser:
        now = _now()
        user = LocalUser(
            id=self._next_id,
            name=name,
            email=email,
            avatar_url=avatar_url,
            created_at=now,
            updated_at=now,
        )
        self._users[user.id] = user
        self._next_id += 1
        return user

    def _refresh_user(self, user_id: int, profile: CanonicalProfile) -> int:
        u = self._users[user_id]
        u.name = profile.display_name or u.name
        u.avatar_url = profile.avatar_url or u.avatar_url
        u.updated_at = _now()
        return u.id

    def upsert_user(self, profile: CanonicalProfile) -> int:
        if not profile.email:
            raise ProfileIncompleteError("Cannot upsert a user without email")
        with self._lock:
            existing = self._user_id_by_email(profile.email)
            if existing is not None:
                return self._refresh_user(existing, profile)
            return self._insert_user(profile.display_name, profile.email, profile.avatar_url).id

    def upsert_provider_identity(self, user_id: int, provider: str, provider_id: str, tokens: OAuthTokens) -> None:
        with self._lock:
            key = (provider, provider_id)
            prev = self._identities.get(key)
            self._identities[key] = ProviderIdentity(
                user_id=user_id,
                provider=provider,
                provider_id=provider_id,
                access_token=tokens.access_token,
                refresh_token=tokens.refresh_token or (prev.refresh_token if prev else ""),
                token_expiry=tokens.expiry,
            )

    def find_user_by_identity(self, provider: str, provider_id: str) -> Optional[int]:
        with self._lock:
            ident = self._identities.get((provider, provider_id))
            return ident.user_id if ident else None

    def reconcile(self, provider: str, profile: CanonicalProfile, tokens: OAuthTokens) -> int:
        with self._lock:
            if profile.email:
                user_id = self.upsert_user(profile)
            else:
                linked = self.find_user_by_identity(provider, profile.external_id)
                if linked is not None and linked in self._users:
                    user_id = self._refresh_user(linked, profile)
                else:
                    user_id = self._insert_user(profile.display_name, None, profile.avatar_url).id
            self.upsert_provider_identity(user_id, provider, profile.external_id, tokens)
            return user_id

    def list_identities(self, user_id: int) -> List[ProviderIdentity]:
        with self._lock:
            out = [replace(i) for i in self._identities.values() if i.user_id == user_id]
        return sorted(out, key=lambda i: i.provider)

    def list_users(self) -> List[LocalUser]:
        with self._lock:
            return [replace(self._users[k]) for k in sorted(self._users)]

    def get_user(self, user_id: int) -> Optional[LocalUser]:
        with self._lock:
            u = self._users.get(user_id)
            return replace(u) if u else None

    def create_user(self, *, name: str, email: Optional[str], avatar_url: str = "") -> LocalUser:
        with self._lock:
            if email and self._user_id_by_email(email) is not None:
                raise DuplicateEmailError("Email already registered")
            return replace(self._insert_user(name, email or None, avatar_url))

    def update_user(
        self,
        user_id: int,
        *,
        name: Optional[str] = None,
        email: Optional[str] = None,
        avatar_url: Optional[str] = None,
    ) -> Optional[LocalUser]:
        with self._lock:
            u = self._users.get(user_id)
            if u is None:
                return None
            if email is not None:
                other = self._user_id_by_email(email)
                if other is not None and other != user_id:
                    raise DuplicateEmailError("Email already registered")
                u.email = email or None
            if name is not None:
                u.name = name
            if avatar_url is not None:
                u.avatar_url = avatar_url
            u.updated_at = _now()
            return replace(u)

    def delete_user(self, user_id: int) -> bool:
        with self._lock:
            if self._users.pop(user_id, None) is None:
                return False
            for key in [k for k, i in self._identities.items() if i.user_id == user_id]:
                del self._identities[key]
            return True

    def close(self) -> None:
        return None
