from __future__ import annotations

from datetime import UTC, datetime

import pytest
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from vets_api.models.identity import Profile, User
from vets_api.services.github.oauth import GitHubUser
from vets_api.services.users import (
    UserNotFoundError,
    find_user_by_id,
    find_user_by_username,
    find_user_by_username_optional,
    upsert_from_github,
)


def _gh(**overrides) -> GitHubUser:
    data = {
        "id": 583231,
        "login": "octocat",
        "avatar_url": "https://avatars.githubusercontent.com/u/583231",
        "bio": "Navy, 2008-2014",
        "blog": "https://octo.example",
        "public_repos": 8,
    }
    data.update(overrides)
    return GitHubUser(**data)


def test_first_login_creates_user_and_profile(db_session: Session) -> None:
    now = datetime(2026, 3, 1, tzinfo=UTC)
    user, is_new = upsert_from_github(session=db_session, github_user=_gh(), now=now)
    db_session.commit()

    assert is_new is True
    assert user.github_id == 583231
    assert user.verified_veteran is False
    assert user.verified_at is None
    assert user.created_at == now

    profile = db_session.execute(select(Profile).where(Profile.user_id == user.id)).scalar_one()
    assert profile.bio == "Navy, 2008-2014"
    assert profile.website == "https://octo.example"
    assert profile.github_repos_count == 8


def test_repeat_login_updates_username_and_avatar(db_session: Session) -> None:
    user, _ = upsert_from_github(session=db_session, github_user=_gh())
    db_session.commit()

    later = datetime(2026, 4, 1, tzinfo=UTC)
    again, is_new = upsert_from_github(
        session=db_session,
        github_user=_gh(login="octocat-renamed", avatar_url="https://new.example/a.png"),
        now=later,
    )
    db_session.commit()

    assert is_new is False
    assert again.id == user.id
    assert again.github_username == "octocat-renamed"
    assert again.avatar_url == "https://new.example/a.png"
    assert again.updated_at == later
    assert db_session.execute(select(func.count()).select_from(User)).scalar_one() == 1
    assert db_session.execute(select(func.count()).select_from(Profile)).scalar_one() == 1


def test_repeat_login_keeps_verification(db_session: Session) -> None:
    user, _ = upsert_from_github(session=db_session, github_user=_gh())
    user.verified_veteran = True
    user.verified_at = datetime(2026, 2, 1, tzinfo=UTC)
    db_session.commit()

    again, _ = upsert_from_github(session=db_session, github_user=_gh())
    db_session.commit()
    assert again.verified_veteran is True


def test_long_blog_url_is_truncated(db_session: Session) -> None:
    user, _ = upsert_from_github(
        session=db_session, github_user=_gh(blog="https://x.example/" + "a" * 400)
    )
    db_session.commit()
    assert len(user.profile.website) == 255


def test_find_user_lookups(db_session: Session, make_user) -> None:
    user = make_user(login="finder")

    assert find_user_by_id(session=db_session, user_id=user.id).id == user.id
    assert find_user_by_username(session=db_session, username="finder").id == user.id
    assert find_user_by_username_optional(session=db_session, username="nobody") is None
    with pytest.raises(UserNotFoundError):
        find_user_by_username(session=db_session, username="nobody")
