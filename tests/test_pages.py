from __future__ import annotations

from datetime import UTC, datetime

from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from vets_api.main import create_app
from vets_api.services.github.oauth import GitHubUser
from vets_api.services.users import upsert_from_github


def test_home_for_anonymous_visitor() -> None:
    client = TestClient(create_app())
    res = client.get("/")
    assert res.status_code == 200
    assert res.json() == {"service": "vets.dev", "login_url": "/auth/github"}


def test_home_redirects_signed_in_user_to_dashboard(make_user, login) -> None:
    client = TestClient(create_app(), cookies={"vets_session": login(make_user())})
    res = client.get("/", follow_redirects=False)
    assert res.status_code == 302
    assert res.headers["location"] == "/dashboard"


def test_dashboard_and_verify_redirect_to_login_without_session() -> None:
    client = TestClient(create_app())
    for path in ("/dashboard", "/verify"):
        res = client.get(path, follow_redirects=False)
        assert res.status_code == 302
        assert res.headers["location"] == "/auth/github"


def test_invalid_session_cookie_is_treated_as_logged_out() -> None:
    client = TestClient(create_app(), cookies={"vets_session": "not-a-real-token"})
    assert client.get("/dashboard", follow_redirects=False).status_code == 302
    state = client.get("/api/me/state").json()
    assert state == {
        "state": "Unauthenticated",
        "authenticated": False,
        "verified": False,
        "user_id": None,
        "request_id": None,
        "verified_at": None,
    }


def test_dashboard_shows_user_and_profile(make_user, login) -> None:
    user = make_user(login="octo-dash")
    client = TestClient(create_app(), cookies={"vets_session": login(user)})

    res = client.get("/dashboard")
    assert res.status_code == 200
    body = res.json()
    assert body["state"] == "Authenticated"
    assert body["user"]["github_username"] == "octo-dash"
    assert body["user"]["profile"]["github_repos_count"] == 3

    assert client.get("/verify").json()["state"] == "Authenticated"


def test_public_profile_only_for_verified_users(make_user) -> None:
    make_user(login="unverified-vet")
    make_user(login="verified-vet", verified=True)
    client = TestClient(create_app())

    assert client.get("/unverified-vet").status_code == 404
    assert client.get("/nobody-here").status_code == 404

    res = client.get("/verified-vet")
    assert res.status_code == 200
    body = res.json()
    assert body["github_username"] == "verified-vet"
    assert body["verified_veteran"] is True
    assert body["profile"]["bio"] == "Former Army signals, now backend."
    assert "github_id" not in body


def test_reserved_and_malformed_usernames_are_not_profiles(make_user) -> None:
    make_user(login="badge", verified=True)
    client = TestClient(create_app())
    assert client.get("/badge").status_code == 404
    assert client.get("/-leading-hyphen").status_code == 404


def test_dashboard_shows_the_signed_in_row_when_a_username_is_reused(
    db_session: Session, make_user, login
) -> None:
    # A verified account that later gave up the "alice" login on GitHub.
    previous = make_user(login="alice", verified=True, now=datetime(2026, 1, 1, tzinfo=UTC))
    current, is_new = upsert_from_github(
        session=db_session,
        github_user=GitHubUser(id=999999, login="alice", avatar_url=None),
    )
    db_session.commit()
    assert is_new
    client = TestClient(create_app(), cookies={"vets_session": login(current)})

    for path in ("/dashboard", "/verify"):
        body = client.get(path).json()
        assert body["user"]["id"] == str(current.id)
        assert body["user"]["github_id"] == 999999
        assert body["user"]["verified_veteran"] is False
        assert body["state"] == "Authenticated"

    # The newest holder of the login owns the public URL.
    assert client.get("/alice").status_code == 404
    assert previous.id != current.id
