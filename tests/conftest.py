"""
Pytest config.

Pins the repo root on sys.path so `import gateway` works when a global `pytest`
entrypoint is used without installing the package.
"""

from __future__ import annotations

import sys
from pathlib import Path

import pytest


def _ensure_repo_root_on_syspath() -> None:
    repo_root = Path(__file__).resolve().parents[1]
    repo_root_str = str(repo_root)
    if repo_root_str not in sys.path:
        sys.path.insert(0, repo_root_str)


_ensure_repo_root_on_syspath()

TEST_SESSION_SECRET = "test-secret-key-for-testing-purposes-only"


@pytest.fixture(autouse=True)
def _gateway_env(monkeypatch: pytest.MonkeyPatch):
    """
    Every test gets the same baseline: GitHub + Google configured, Facebook + Instagram not,
    a session secret, no Postgres, and a fresh in-memory identity store.
    """
    from gateway.auth.config import load_auth_config
    from gateway.store import InMemoryIdentityStore, set_identity_store

    for name in (
        "POSTGRES_DSN",
        "POSTGRES_HOST",
        "POSTGRES_DB",
        "POSTGRES_USER",
        "POSTGRES_PASSWORD",
        "POSTGRES_PORT",
        "POSTGRES_POOL_MIN_SIZE",
        "POSTGRES_POOL_MAX_SIZE",
        "DB_AUTO_MIGRATE",
        "AUTH_PUBLIC_BASE_URL",
        "AUTH_COOKIE_SECURE",
        "AUTH_SESSION_TTL_SECONDS",
        "PROVIDER_HTTP_TIMEOUT_SECONDS",
        "FACEBOOK_CLIENT_ID",
        "FACEBOOK_CLIENT_SECRET",
        "INSTAGRAM_CLIENT_ID",
        "INSTAGRAM_CLIENT_SECRET",
        "GITHUB_REDIRECT_URL",
        "FACEBOOK_REDIRECT_URL",
        "GOOGLE_REDIRECT_URL",
        "INSTAGRAM_REDIRECT_URL",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("AUTH_SESSION_SECRET", TEST_SESSION_SECRET)
    monkeypatch.setenv("GITHUB_CLIENT_ID", "gh-client-id")
    monkeypatch.setenv("GITHUB_CLIENT_SECRET", "gh-client-secret")
    monkeypatch.setenv("GOOGLE_CLIENT_ID", "google-client-id")
    monkeypatch.setenv("GOOGLE_CLIENT_SECRET", "google-client-secret")
    load_auth_config.cache_clear()

    store = InMemoryIdentityStore()
    set_identity_store(store)
    yield store
    set_identity_store(None)
    load_auth_config.cache_clear()


class FakeResponse:
    """Minimal stand-in for requests.Response."""

    def __init__(self, payload=None, status_code: int = 200, *, invalid_json: bool = False) -> None:
        self._payload = payload
        self.status_code = status_code
        self._invalid_json = invalid_json

    def json(self):  # type: ignore[no-untyped-def]
        if self._invalid_json:
            raise ValueError("Expecting value: line 1 column 1 (char 0)")
        return self._payload


@pytest.fixture
def fake_response():
    return FakeResponse
