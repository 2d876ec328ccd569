from __future__ import annotations

from typing import List, Optional, Protocol

from gateway.auth.models import CanonicalProfile, LocalUser, OAuthTokens, ProviderIdentity


class IdentityStore(Protocol):
    """Persistent owner of LocalUser rows and their ProviderIdentity links."""

    def upsert_user(self, profile: CanonicalProfile) -> int:
        """
        Insert or refresh the user keyed by the profile's email.

        Returns the same id for the same email; name/avatar are refreshed on every call.
        Requires a non-empty email.
        """
        ...

    def upsert_provider_identity(self, user_id: int, provider: str, provider_id: str, tokens: OAuthTokens) -> None:
        """
        Insert-or-update the (provider, provider_id) link in one statement.

        On conflict the tokens are replaced and ownership moves to `user_id`.
        """
        ...

    def find_user_by_identity(self, provider: str, provider_id: str) -> Optional[int]:
        ...

    def reconcile(self, provider: str, profile: CanonicalProfile, tokens: OAuthTokens) -> int:
        """
        Resolve the profile to a local user and link the provider identity atomically.

        Profiles with an email reconcile by email. Profiles without one reconcile by
        (provider, external_id): the linked user is refreshed, or a new user without
        email is created.
        """
        ...

    def list_identities(self, user_id: int) -> List[ProviderIdentity]:
        ...

    # ---- Users CRUD ----

    def list_users(self) -> List[LocalUser]:
        ...

    def get_user(self, user_id: int) -> Optional[LocalUser]:
        ...

    def create_user(self, *, name: str, email: Optional[str], avatar_url: str = "") -> LocalUser:
        ...

    def update_user(
        self,
        user_id: int,
        *,
        name: Optional[str] = None,
        email: Optional[str] = None,
        avatar_url: Optional[str] = None,
    ) -> Optional[LocalUser]:
        ...

    def delete_user(self, user_id: int) -> bool:
        ...

    def close(self) -> None:
        ...
