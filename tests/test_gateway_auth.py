from __future__ import annotations

from unittest.mock import patch
from urllib.parse import parse_qs, urlparse

from fastapi.testclient import TestClient

import gateway.api.server as srv
from gateway.auth.session import ACCESS_TOKEN_COOKIE, USER_ID_COOKIE
from gateway.store import InMemoryIdentityStore, set_identity_store

GITHUB_USER = {"id": 1234, "login": "octocat", "name": "The Octocat", "avatar_url": "https://avatars/octo.png"}
GITHUB_EMAILS = [{"email": "Octo@Example.com", "primary": True, "verified": True}]


def _client() -> TestClient:
    return TestClient(srv.app, follow_redirects=False)


def _github_api(fake_response):
    routes = {"https://api.github.com/user": GITHUB_USER, "https://api.github.com/user/emails": GITHUB_EMAILS}

    def _get(url, headers=None, params=None, timeout=None):  # type: ignore[no-untyped-def]
        return fake_response(routes[url])

    return _get


def _set_cookie_names(r) -> set:  # type: ignore[no-untyped-def]
    return {h.split("=", 1)[0] for h in r.headers.get_list("set-cookie")}


def _start_login(c: TestClient) -> str:
    r = c.get("/login/github")
    assert r.status_code == 307
    return parse_qs(urlparse(r.headers["location"]).query)["state"][0]


def test_healthz() -> None:
    r = _client().get("/healthz")
    assert r.status_code == 200
    assert r.json() == {"ok": True}


def test_home_without_session_shows_sign_in() -> None:
    r = _client().get("/")
    assert r.status_code == 200
    assert "Sign in" in r.text
    assert 'href="/login/github"' in r.text
    assert 'href="/login/google"' in r.text
    # Not configured in the test env.
    assert "/login/facebook" not in r.text


def test_login_redirects_to_consent_page_with_state_cookie() -> None:
    r = _client().get("/login/github")
    assert r.status_code == 307
    loc = urlparse(r.headers["location"])
    assert f"{loc.scheme}://{loc.netloc}{loc.path}" == "https://github.com/login/oauth/authorize"
    q = parse_qs(loc.query)
    assert q["client_id"] == ["gh-client-id"]
    assert q["redirect_uri"] == ["http://localhost:3000/oauth2/callback/github"]
    assert q["state"][0].startswith("github.")

    cookie = next(h for h in r.headers.get_list("set-cookie") if h.startswith(f"{srv.OAUTH_STATE_COOKIE}="))
    assert q["state"][0] in cookie
    assert "HttpOnly" in cookie
    assert "Path=/oauth2" in cookie


def test_unknown_provider_is_rejected_without_side_effects(_gateway_env) -> None:
    c = _client()
    with patch("gateway.auth.oauth.requests.post") as post, patch("gateway.auth.providers.requests.get") as get:
        for path in ("/login/myspace", "/login/facebook", "/oauth2/callback/myspace?code=c&state=myspace.x"):
            r = c.get(path)
            assert r.status_code == 400, path
            assert r.json()["detail"] == "Unknown provider"
            assert not r.headers.get_list("set-cookie")
    post.assert_not_called()
    get.assert_not_called()
    assert _gateway_env.list_users() == []


def test_full_github_login_creates_user_and_session(_gateway_env, fake_response) -> None:
    c = _client()
    state = _start_login(c)

    token = fake_response({"access_token": "gho_live", "token_type": "bearer", "scope": "read:user,user:email"})
    with patch("gateway.auth.oauth.requests.post", return_value=token) as post, patch(
        "gateway.auth.providers.requests.get", side_effect=_github_api(fake_response)
    ):
        r = c.get(f"/oauth2/callback/github?code=the-code&state={state}")

    assert r.status_code == 307
    assert r.headers["location"] == "/"
    assert {ACCESS_TOKEN_COOKIE, USER_ID_COOKIE, srv.OAUTH_STATE_COOKIE} <= _set_cookie_names(r)
    assert post.call_args.kwargs["data"]["code"] == "the-code"

    users = _gateway_env.list_users()
    assert len(users) == 1
    assert users[0].email == "octo@example.com"
    assert users[0].name == "The Octocat"
    identities = _gateway_env.list_identities(users[0].id)
    assert [(i.provider, i.provider_id, i.access_token) for i in identities] == [("github", "1234", "gho_live")]

    home = c.get("/")
    assert home.status_code == 200
    assert "Welcome, The Octocat" in home.text
    assert "octo@example.com" in home.text
    assert 'href="/logout"' in home.text


def test_repeat_login_reuses_user(_gateway_env, fake_response) -> None:
    c = _client()
    for n in range(2):
        state = _start_login(c)
        token = fake_response({"access_token": f"gho_{n}"})
        with patch("gateway.auth.oauth.requests.post", return_value=token), patch(
            "gateway.auth.providers.requests.get", side_effect=_github_api(fake_response)
        ):
            assert c.get(f"/oauth2/callback/github?code=c{n}&state={state}").status_code == 307

    users = _gateway_env.list_users()
    assert len(users) == 1
    assert _gateway_env.list_identities(users[0].id)[0].access_token == "gho_1"


def test_callback_with_mismatched_state_is_rejected(_gateway_env) -> None:
    c = _client()
    _start_login(c)
    with patch("gateway.auth.oauth.requests.post") as post:
        r = c.get("/oauth2/callback/github?code=c&state=github.forged")
    assert r.status_code == 400
    post.assert_not_called()
    assert _gateway_env.list_users() == []


def test_callback_error_param_and_missing_code() -> None:
    c = _client()
    state = _start_login(c)
    r = c.get(f"/oauth2/callback/github?error=access_denied&state={state}")
    assert r.status_code == 400
    r = c.get(f"/oauth2/callback/github?state={state}")
    assert r.status_code == 400


def test_failed_exchange_persists_nothing(_gateway_env, fake_response) -> None:
    c = _client()
    state = _start_login(c)
    bad = fake_response({"error": "bad_verification_code"})
    with patch("gateway.auth.oauth.requests.post", return_value=bad), patch(
        "gateway.auth.providers.requests.get"
    ) as get:
        r = c.get(f"/oauth2/callback/github?code=used&state={state}")

    assert r.status_code == 500
    get.assert_not_called()
    assert ACCESS_TOKEN_COOKIE not in _set_cookie_names(r)
    assert _gateway_env.list_users() == []


def test_failed_profile_fetch_persists_nothing(_gateway_env, fake_response) -> None:
    c = _client()
    state = _start_login(c)
    with patch("gateway.auth.oauth.requests.post", return_value=fake_response({"access_token": "t"})), patch(
        "gateway.auth.providers.requests.get", return_value=fake_response({"message": "Bad credentials"}, 401)
    ):
        r = c.get(f"/oauth2/callback/github?code=c&state={state}")
    assert r.status_code == 500
    assert r.json()["detail"] == "github profile request failed (status=401)"
    assert _gateway_env.list_users() == []


def test_store_failure_sets_no_session(fake_response) -> None:
    class _Broken(InMemoryIdentityStore):
        def reconcile(self, provider, profile, tokens):  # type: ignore[no-untyped-def]
            raise RuntimeError("db down")

    set_identity_store(_Broken())
    c = _client()
    state = _start_login(c)
    with patch("gateway.auth.oauth.requests.post", return_value=fake_response({"access_token": "t"})), patch(
        "gateway.auth.providers.requests.get", side_effect=_github_api(fake_response)
    ):
        r = c.get(f"/oauth2/callback/github?code=c&state={state}")
    assert r.status_code == 500
    assert not {ACCESS_TOKEN_COOKIE, USER_ID_COOKIE} & _set_cookie_names(r)


def test_callback_without_session_secret_fails(monkeypatch) -> None:
    from gateway.auth.config import load_auth_config

    monkeypatch.delenv("AUTH_SESSION_SECRET", raising=False)
    load_auth_config.cache_clear()
    with patch("gateway.auth.oauth.requests.post") as post:
        r = _client().get("/oauth2/callback/github?code=c&state=github.x")
    assert r.status_code == 500
    post.assert_not_called()


def test_logout_clears_session(fake_response) -> None:
    c = _client()
    state = _start_login(c)
    with patch("gateway.auth.oauth.requests.post", return_value=fake_response({"access_token": "t"})), patch(
        "gateway.auth.providers.requests.get", side_effect=_github_api(fake_response)
    ):
        c.get(f"/oauth2/callback/github?code=c&state={state}")
    assert "Welcome" in c.get("/").text

    r = c.get("/logout")
    assert r.status_code == 303
    assert r.headers["location"] == "/"
    cleared = [h for h in r.headers.get_list("set-cookie") if h.split("=", 1)[0] in (ACCESS_TOKEN_COOKIE, USER_ID_COOKIE)]
    assert len(cleared) == 2
    assert all("Max-Age=0" in h for h in cleared)

    assert "Sign in" in c.get("/").text


def test_logout_without_session_is_harmless() -> None:
    r = _client().get("/logout")
    assert r.status_code == 303


def test_session_for_deleted_user_shows_sign_in(_gateway_env, fake_response) -> None:
    c = _client()
    state = _start_login(c)
    with patch("gateway.auth.oauth.requests.post", return_value=fake_response({"access_token": "t"})), patch(
        "gateway.auth.providers.requests.get", side_effect=_github_api(fake_response)
    ):
        c.get(f"/oauth2/callback/github?code=c&state={state}")

    _gateway_env.delete_user(_gateway_env.list_users()[0].id)
    assert "Sign in" in c.get("/").text


def test_run_maps_log_level_and_leaves_logging_to_entry_point(monkeypatch) -> None:
    monkeypatch.setenv("LOG_LEVEL", "WARNING")
    with patch("uvicorn.run") as uv_run, patch("logging.basicConfig") as basic_config:
        srv.run(host="127.0.0.1", port=8080)

    basic_config.assert_not_called()
    uv_run.assert_called_once_with(srv.app, host="127.0.0.1", port=8080, log_level="warning", access_log=False)
