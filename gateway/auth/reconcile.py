from __future__ import annotations

import logging

from gateway.auth.errors import GatewayError, ProfileIncompleteError, ReconciliationError
from gateway.auth.models import CanonicalProfile, OAuthTokens
from gateway.store.base import IdentityStore

logger = logging.getLogger(__name__)


def reconcile_login(store: IdentityStore, provider: str, profile: CanonicalProfile, tokens: OAuthTokens) -> int:
    """
    Map a freshly fetched profile to a stable local user id and link the provider identity.

    Profiles with an email reconcile by email, so the same verified address from two
    providers lands on one local user. Without an email the (provider, external_id)
    pair is the key.

    Raises:
        ProfileIncompleteError: neither email nor external id is present
        ReconciliationError: the store failed; nothing from this login is kept
    """
    if not profile.external_id:
        raise ProfileIncompleteError(f"{provider} profile has no account id")
    try:
        user_id = store.reconcile(provider, profile, tokens)
    except GatewayError:
        raise
    except Exception as e:
        raise ReconciliationError(f"Identity store failure ({type(e).__name__})") from e
    logger.info(
        "Reconciled %s identity to user_id=%s (keyed_by=%s)",
        provider,
        user_id,
        "email" if profile.email else "provider_identity",
    )
    return user_id
