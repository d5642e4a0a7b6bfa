from __future__ import annotations

import os
import tempfile
from contextlib import suppress
from datetime import UTC, datetime
from pathlib import Path

import httpx
import pytest
from sqlalchemy.orm import Session

# Settings are read at import time by `vets_api.main`; pin the test environment first.
_TEST_DIR = Path(tempfile.mkdtemp(prefix="vets_test_"))
os.environ["DATABASE_URL"] = f"sqlite:///{_TEST_DIR / 'test.db'}"
os.environ["APP_ENV"] = "test"
os.environ["COOKIE_SECURE"] = "false"
os.environ["GITHUB_CLIENT_ID"] = "test-client-id"
os.environ["GITHUB_CLIENT_SECRET"] = "test-client-secret"
os.environ["GITHUB_CALLBACK_URL"] = "http://testserver/auth/github/callback"
os.environ["RATE_LIMIT_REQUESTS_PER_MINUTE"] = "0"
os.environ.pop("GOVX_VERIFY_URL", None)


@pytest.fixture(scope="session", autouse=True)
def _test_database() -> None:
    from vets_api.core.config import get_settings
    from vets_api.db.session import get_engine, get_sessionmaker

    # Clear cached settings/engines so everything below uses the test DB.
    get_settings.cache_clear()
    get_engine.cache_clear()
    get_sessionmaker.cache_clear()

    yield

    with suppress(Exception):
        get_engine().dispose()
    get_engine.cache_clear()
    get_sessionmaker.cache_clear()
    get_settings.cache_clear()


@pytest.fixture(autouse=True)
def _clean_tables() -> None:
    from vets_api.db.session import get_engine
    from vets_api.models import Base

    engine = get_engine()
    Base.metadata.drop_all(engine)
    Base.metadata.create_all(engine)
    yield


@pytest.fixture(autouse=True)
def _offline_github(monkeypatch) -> None:
    # Background profile refreshes must never reach the network.
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(404, json={"message": "Not Found"})

    monkeypatch.setattr(
        "vets_api.services.github.profile.new_http_client",
        lambda: httpx.Client(transport=httpx.MockTransport(handler)),
    )


@pytest.fixture()
def settings_env(monkeypatch):
    """Apply environment overrides and rebuild cached settings for one test."""
    from vets_api.core.config import get_settings

    def _apply(**values: str) -> None:
        for key, value in values.items():
            monkeypatch.setenv(key, value)
        get_settings.cache_clear()

    yield _apply
    get_settings.cache_clear()


@pytest.fixture()
def db_session() -> Session:
    from vets_api.db.session import get_sessionmaker

    SessionLocal = get_sessionmaker()
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def make_user(db_session: Session):
    from vets_api.services.github.oauth import GitHubUser
    from vets_api.services.users import upsert_from_github

    counter = {"n": 0}

    def _make(
        *,
        login: str | None = None,
        verified: bool = False,
        now: datetime | None = None,
    ):
        counter["n"] += 1
        n = counter["n"]
        user, _ = upsert_from_github(
            session=db_session,
            github_user=GitHubUser(
                id=1000 + n,
                login=login or f"octo{n}",
                avatar_url=f"https://avatars.githubusercontent.com/u/{1000 + n}",
                bio="Former Army signals, now backend.",
                blog="https://example.com",
                public_repos=3,
            ),
            now=now,
        )
        if verified:
            user.verified_veteran = True
            user.verified_at = now or datetime.now(UTC)
        db_session.commit()
        return user

    return _make


@pytest.fixture()
def login(db_session: Session):
    """Create a session row for ``user`` and return the raw cookie token."""
    from vets_api.services.auth.sessions import create_session

    def _login(user, *, now: datetime | None = None) -> str:
        token = create_session(session=db_session, user_id=user.id, now=now)
        db_session.commit()
        return token

    return _login
