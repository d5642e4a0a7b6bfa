from __future__ import annotations

from urllib.parse import parse_qs, urlparse

import httpx
from fastapi.testclient import TestClient
from sqlalchemy import select
from sqlalchemy.orm import Session

from vets_api.core.http import get_http_client
from vets_api.main import create_app
from vets_api.models.audit import AuditLogEntry
from vets_api.models.auth import AuthSession
from vets_api.models.identity import User
from vets_api.services.github.oauth import GITHUB_TOKEN_URL, GITHUB_USER_URL

GITHUB_PROFILE = {
    "id": 583231,
    "login": "octocat",
    "avatar_url": "https://avatars.githubusercontent.com/u/583231",
    "name": "The Octocat",
    "bio": "USMC 2010-2016",
    "blog": "",
    "public_repos": 8,
}


def _github_handler(calls: list[str]):
    def handler(request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        calls.append(url)
        if url == GITHUB_TOKEN_URL:
            return httpx.Response(200, json={"access_token": "gho_test", "token_type": "bearer"})
        if url == GITHUB_USER_URL:
            return httpx.Response(200, json=GITHUB_PROFILE)
        return httpx.Response(404)

    return handler


def _app_with_github(calls: list[str]):
    app = create_app()

    def _client():
        with httpx.Client(transport=httpx.MockTransport(_github_handler(calls))) as client:
            yield client

    app.dependency_overrides[get_http_client] = _client
    return app


def _set_cookies(res: httpx.Response) -> list[str]:
    return res.headers.get_list("set-cookie")


def _clears(cookie: str, name: str) -> bool:
    return cookie.split(";")[0] in (f"{name}=", f'{name}=""') and "Max-Age=0" in cookie


def _begin_login(client: TestClient) -> str:
    res = client.get("/auth/github", follow_redirects=False)
    assert res.status_code == 302
    return parse_qs(urlparse(res.headers["location"]).query)["state"][0]


def test_login_redirects_to_github_with_state_cookie() -> None:
    client = TestClient(create_app())

    res = client.get("/auth/github", follow_redirects=False)
    assert res.status_code == 302
    location = urlparse(res.headers["location"])
    assert location.netloc == "github.com"
    state = parse_qs(location.query)["state"][0]

    cookies = _set_cookies(res)
    assert len(cookies) == 1
    assert cookies[0].startswith(f"github_oauth_state={state};")
    assert "Max-Age=300" in cookies[0]
    assert "HttpOnly" in cookies[0]
    assert res.headers["cache-control"] == "no-store"


def test_login_unavailable_without_github_credentials(monkeypatch) -> None:
    from vets_api.core.config import get_settings

    monkeypatch.setenv("GITHUB_CLIENT_ID", "")
    get_settings.cache_clear()
    try:
        client = TestClient(create_app())
        res = client.get("/auth/github", follow_redirects=False)
    finally:
        get_settings.cache_clear()
    assert res.status_code == 503


def test_callback_creates_user_session_and_audit(db_session: Session) -> None:
    calls: list[str] = []
    client = TestClient(_app_with_github(calls))
    state = _begin_login(client)

    res = client.get(
        "/auth/github/callback",
        params={"code": "c0de", "state": state},
        follow_redirects=False,
    )
    assert res.status_code == 302
    assert res.headers["location"] == "/dashboard"
    assert calls == [GITHUB_TOKEN_URL, GITHUB_USER_URL]

    cookies = _set_cookies(res)
    session_cookie = next(c for c in cookies if c.startswith("vets_session="))
    assert "HttpOnly" in session_cookie
    assert "samesite=lax" in session_cookie.lower()
    assert "Max-Age=604800" in session_cookie
    assert any(_clears(c, "github_oauth_state") for c in cookies)

    user = db_session.execute(select(User)).scalar_one()
    assert user.github_username == "octocat"
    assert user.verified_veteran is False
    assert db_session.execute(select(AuthSession)).scalars().all()[0].user_id == user.id

    entry = db_session.execute(select(AuditLogEntry)).scalar_one()
    assert entry.action == "login"
    assert entry.metadata_["is_new_user"] is True
    db_session.rollback()

    dash = client.get("/dashboard", follow_redirects=False)
    assert dash.status_code == 200
    assert dash.json()["user"]["github_username"] == "octocat"
    assert dash.json()["state"] == "Authenticated"


def test_callback_rejects_mismatched_state_before_contacting_github() -> None:
    calls: list[str] = []
    client = TestClient(_app_with_github(calls))
    _begin_login(client)

    res = client.get(
        "/auth/github/callback",
        params={"code": "c0de", "state": "forged"},
        follow_redirects=False,
    )
    assert res.status_code == 400
    assert res.json()["detail"] == "Invalid authentication state. Please try again."
    assert calls == []


def test_callback_rejects_missing_state_cookie() -> None:
    calls: list[str] = []
    client = TestClient(_app_with_github(calls))

    res = client.get(
        "/auth/github/callback",
        params={"code": "c0de", "state": "a" * 64},
        follow_redirects=False,
    )
    assert res.status_code == 400
    assert calls == []


def test_callback_reports_github_error_param() -> None:
    client = TestClient(create_app())
    res = client.get(
        "/auth/github/callback", params={"error": "access_denied"}, follow_redirects=False
    )
    assert res.status_code == 400
    assert "access_denied" in res.json()["detail"]


def test_callback_without_code_is_rejected() -> None:
    calls: list[str] = []
    client = TestClient(_app_with_github(calls))
    state = _begin_login(client)

    res = client.get("/auth/github/callback", params={"state": state}, follow_redirects=False)
    assert res.status_code == 400
    assert calls == []


def test_callback_maps_token_exchange_failure_to_bad_gateway(db_session: Session) -> None:
    app = create_app()

    def _client():
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"error": "bad_verification_code"})

        with httpx.Client(transport=httpx.MockTransport(handler)) as client:
            yield client

    app.dependency_overrides[get_http_client] = _client
    client = TestClient(app)
    state = _begin_login(client)

    res = client.get(
        "/auth/github/callback",
        params={"code": "stale", "state": state},
        follow_redirects=False,
    )
    assert res.status_code == 502
    assert db_session.execute(select(User)).scalars().all() == []


def test_logout_deletes_session_and_clears_cookie(db_session: Session, make_user, login) -> None:
    user = make_user()
    token = login(user)
    client = TestClient(create_app(), cookies={"vets_session": token})

    res = client.post("/logout", follow_redirects=False)
    assert res.status_code == 302
    assert res.headers["location"] == "/"
    cookies = _set_cookies(res)
    assert any(_clears(c, "vets_session") for c in cookies)

    assert db_session.execute(select(AuthSession)).scalars().all() == []
    actions = db_session.execute(select(AuditLogEntry.action)).scalars().all()
    assert actions == ["logout"]
    db_session.rollback()

    # The old token no longer authenticates.
    again = TestClient(create_app(), cookies={"vets_session": token})
    assert again.get("/api/me/state").json()["state"] == "Unauthenticated"


def test_logout_without_session_still_clears_cookie() -> None:
    client = TestClient(create_app())
    res = client.post("/logout", follow_redirects=False)
    assert res.status_code == 302
    assert any(_clears(c, "vets_session") for c in _set_cookies(res))
