from __future__ import annotations

import threading

import pytest

from gateway.auth.errors import DuplicateEmailError, ProfileIncompleteError, ReconciliationError
from gateway.auth.models import CanonicalProfile, OAuthTokens
from gateway.auth.reconcile import reconcile_login
from gateway.store import InMemoryIdentityStore


def _profile(**kw) -> CanonicalProfile:
    base = dict(external_id="1234", display_name="Octo", email="a@x.com", avatar_url="https://a/1.png")
    base.update(kw)
    return CanonicalProfile(**base)


def test_upsert_user_same_email_returns_same_id_and_refreshes_profile() -> None:
    store = InMemoryIdentityStore()
    uid1 = store.upsert_user(_profile())
    uid2 = store.upsert_user(_profile(display_name="Octo Renamed", avatar_url="https://a/2.png"))

    assert uid1 == uid2
    user = store.get_user(uid1)
    assert user is not None
    assert user.name == "Octo Renamed"
    assert user.avatar_url == "https://a/2.png"
    assert user.email == "a@x.com"
    assert len(store.list_users()) == 1


def test_upsert_user_keeps_avatar_when_new_profile_has_none() -> None:
    store = InMemoryIdentityStore()
    uid = store.upsert_user(_profile())
    store.upsert_user(_profile(avatar_url=""))
    assert store.get_user(uid).avatar_url == "https://a/1.png"


def test_upsert_user_requires_email() -> None:
    with pytest.raises(ProfileIncompleteError):
        InMemoryIdentityStore().upsert_user(_profile(email=""))


def test_upsert_provider_identity_keeps_one_row_with_latest_tokens() -> None:
    store = InMemoryIdentityStore()
    uid = store.upsert_user(_profile())
    store.upsert_provider_identity(uid, "github", "1234", OAuthTokens(access_token="old", refresh_token="r-old"))
    store.upsert_provider_identity(uid, "github", "1234", OAuthTokens(access_token="new", refresh_token="r-new"))

    identities = store.list_identities(uid)
    assert len(identities) == 1
    assert identities[0].access_token == "new"
    assert identities[0].refresh_token == "r-new"


def test_upsert_provider_identity_reassigns_owner() -> None:
    store = InMemoryIdentityStore()
    a = store.upsert_user(_profile(email="a@x.com"))
    b = store.upsert_user(_profile(email="b@x.com"))
    store.upsert_provider_identity(a, "google", "g-1", OAuthTokens(access_token="t1"))
    store.upsert_provider_identity(b, "google", "g-1", OAuthTokens(access_token="t2"))

    assert store.find_user_by_identity("google", "g-1") == b
    assert store.list_identities(a) == []


def test_reconcile_links_several_providers_to_one_user_by_email() -> None:
    store = InMemoryIdentityStore()
    uid_gh = reconcile_login(store, "github", _profile(external_id="1234"), OAuthTokens(access_token="gh"))
    uid_g = reconcile_login(store, "google", _profile(external_id="g-55"), OAuthTokens(access_token="g"))

    assert uid_gh == uid_g
    assert [i.provider for i in store.list_identities(uid_gh)] == ["github", "google"]


def test_reconcile_without_email_keys_on_provider_identity() -> None:
    store = InMemoryIdentityStore()
    profile = CanonicalProfile(external_id="ig-9", display_name="insta_user")
    uid1 = reconcile_login(store, "instagram", profile, OAuthTokens(access_token="t1"))
    uid2 = reconcile_login(
        store, "instagram", CanonicalProfile(external_id="ig-9", display_name="insta_renamed"), OAuthTokens("t2")
    )

    assert uid1 == uid2
    user = store.get_user(uid1)
    assert user.email is None
    assert user.name == "insta_renamed"
    assert store.list_identities(uid1)[0].access_token == "t2"

    # A different email-less account gets its own user.
    other = reconcile_login(
        store, "instagram", CanonicalProfile(external_id="ig-10", display_name="x"), OAuthTokens("t3")
    )
    assert other != uid1


def test_reconcile_rejects_profile_without_any_key() -> None:
    with pytest.raises(ProfileIncompleteError):
        reconcile_login(InMemoryIdentityStore(), "github", _profile(external_id="", email=""), OAuthTokens("t"))


def test_reconcile_wraps_unexpected_store_failures() -> None:
    class _Broken(InMemoryIdentityStore):
        def reconcile(self, provider, profile, tokens):  # type: ignore[no-untyped-def]
            raise RuntimeError("connection reset")

    with pytest.raises(ReconciliationError, match="RuntimeError"):
        reconcile_login(_Broken(), "github", _profile(), OAuthTokens("t"))


def test_concurrent_reconcile_of_same_email_creates_one_user() -> None:
    store = InMemoryIdentityStore()
    ids = []

    def _login(n: int) -> None:
        ids.append(store.reconcile("github", _profile(), OAuthTokens(access_token=f"t{n}")))

    threads = [threading.Thread(target=_login, args=(n,)) for n in range(16)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(set(ids)) == 1
    assert len(store.list_users()) == 1
    assert len(store.list_identities(ids[0])) == 1


def test_users_crud() -> None:
    store = InMemoryIdentityStore()
    u = store.create_user(name="Ann", email="ann@x.com")
    assert store.get_user(u.id).name == "Ann"

    with pytest.raises(DuplicateEmailError):
        store.create_user(name="Other Ann", email="ann@x.com")

    updated = store.update_user(u.id, name="Ann B")
    assert updated.name == "Ann B"
    assert updated.email == "ann@x.com"
    assert store.update_user(999, name="nobody") is None

    store.upsert_provider_identity(u.id, "github", "55", OAuthTokens("t"))
    assert store.delete_user(u.id) is True
    assert store.get_user(u.id) is None
    assert store.find_user_by_identity("github", "55") is None
    assert store.delete_user(u.id) is False


def test_returned_users_are_copies() -> None:
    store = InMemoryIdentityStore()
    u = store.create_user(name="Ann", email=None)
    u.name = "mutated"
    assert store.get_user(u.id).name == "Ann"
