"""
Login gateway error taxonomy.

Every error carries the HTTP status the handlers answer with. Messages are safe to
surface and log: they never contain tokens, codes or client secrets.
"""

from __future__ import annotations


class GatewayError(Exception):
    status_code = 500


class UnknownProviderError(GatewayError):
    """Provider name is not registered or has no client configured."""

    status_code = 400

    def __init__(self, provider: str) -> None:
        super().__init__(f"Unknown provider: {provider}")
        self.provider = provider


class InvalidStateError(GatewayError):
    """OAuth state parameter missing or not matching the login that started the flow."""

    status_code = 400


class TokenExchangeError(GatewayError):
    """Authorization code could not be exchanged for tokens (not retried)."""

    status_code = 500


class ProviderFetchError(GatewayError):
    """Provider user-info endpoint failed or returned an unusable payload (not retried)."""

    status_code = 500


class ReconciliationError(GatewayError):
    """Identity store failed to upsert the user or its provider identity."""

    status_code = 500


class ProfileIncompleteError(GatewayError):
    """Profile lacks every key usable for reconciliation."""

    status_code = 400


class SessionAbsentError(GatewayError):
    status_code = 401


class DuplicateEmailError(GatewayError):
    status_code = 409
