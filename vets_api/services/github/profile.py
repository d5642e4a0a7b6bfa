from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from uuid import UUID

import httpx
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from vets_api.core.config import get_settings
from vets_api.core.errors import NotFoundError, UpstreamError
from vets_api.core.http import new_http_client
from vets_api.db.session import get_sessionmaker
from vets_api.models.identity import Profile

PER_PAGE = 100
MAX_PAGES = 10
TOP_LANGUAGES = 5

logger = logging.getLogger("vets.api")


class GitHubProfileError(UpstreamError):
    pass


class ProfileNotFoundError(NotFoundError):
    def __init__(self, username: str) -> None:
        super().__init__(f"GitHub profile not found: {username}")
        self.username = username


@dataclass(frozen=True)
class ProfileStats:
    repos_count: int
    stars_count: int
    languages: list[str] = field(default_factory=list)
    last_activity: datetime | None = None


def _parse_timestamp(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


def fetch_stats(
    client: httpx.Client, *, username: str, access_token: str | None = None
) -> ProfileStats:
    settings = get_settings()
    headers = {"Accept": "application/vnd.github.v3+json"}
    if access_token:
        headers["Authorization"] = f"Bearer {access_token}"

    repos: list[dict] = []
    for page in range(1, MAX_PAGES + 1):
        try:
            res = client.get(
                f"{settings.GITHUB_API_BASE_URL}/users/{username}/repos",
                params={"per_page": PER_PAGE, "page": page, "type": "owner"},
                headers=headers,
            )
        except httpx.RequestError as e:
            raise GitHubProfileError("Network error fetching repos") from e

        if res.status_code == 404:
            raise ProfileNotFoundError(username)
        if res.status_code >= 400:
            raise GitHubProfileError(
                f"GitHub API error: {res.status_code}", status_code=res.status_code
            )

        try:
            page_repos = res.json()
        except ValueError as e:
            raise GitHubProfileError("Failed to parse repos") from e
        if not isinstance(page_repos, list):
            raise GitHubProfileError("Unexpected repos payload")

        repos.extend(page_repos)
        if len(page_repos) < PER_PAGE:
            break

    own_repos = [r for r in repos if not r.get("fork")]
    stars = sum(int(r.get("stargazers_count") or 0) for r in own_repos)
    language_counts = Counter(r["language"] for r in own_repos if r.get("language"))
    pushed = [ts for ts in (_parse_timestamp(r.get("pushed_at")) for r in repos) if ts]

    return ProfileStats(
        repos_count=len(own_repos),
        stars_count=stars,
        languages=[lang for lang, _ in language_counts.most_common(TOP_LANGUAGES)],
        last_activity=max(pushed) if pushed else None,
    )


def update_cached_stats(
    *, session: Session, user_id: UUID, stats: ProfileStats, now: datetime | None = None
) -> None:
    now = now or datetime.now(UTC)
    try:
        profile = (
            session.execute(select(Profile).where(Profile.user_id == user_id)).scalars().first()
        )
        if profile is None:
            return
        profile.github_repos_count = stats.repos_count
        profile.github_stars_count = stats.stars_count
        profile.github_languages = list(stats.languages)
        profile.github_last_activity = stats.last_activity
        profile.profile_cached_at = now
        profile.updated_at = now
        session.add(profile)
        session.flush()
    except SQLAlchemyError as e:
        raise GitHubProfileError("Failed to update profile stats") from e


def refresh_if_stale(
    *,
    session: Session,
    client: httpx.Client,
    user_id: UUID,
    username: str,
    access_token: str | None = None,
    now: datetime | None = None,
) -> bool:
    """Refetch stats when the cache is older than the TTL. Returns True if refreshed."""
    settings = get_settings()
    now = now or datetime.now(UTC)
    try:
        profile = (
            session.execute(select(Profile).where(Profile.user_id == user_id)).scalars().first()
        )
    except SQLAlchemyError as e:
        raise GitHubProfileError("Failed to fetch profile") from e

    if profile is None:
        return False

    cached_at = profile.profile_cached_at
    ttl = timedelta(seconds=settings.PROFILE_CACHE_TTL_SECONDS)
    if cached_at is not None and now - cached_at <= ttl:
        return False

    try:
        stats = fetch_stats(client, username=username, access_token=access_token)
    except ProfileNotFoundError:
        return False

    update_cached_stats(session=session, user_id=user_id, stats=stats, now=now)
    logger.info("Refreshed profile stats for %s", username)
    return True


def refresh_profile_in_background(
    *, user_id: UUID, username: str, access_token: str | None = None
) -> None:
    # Runs after the response is sent; nothing here may reach the user.
    SessionLocal = get_sessionmaker()
    try:
        with SessionLocal() as session, new_http_client() as client:
            if refresh_if_stale(
                session=session,
                client=client,
                user_id=user_id,
                username=username,
                access_token=access_token,
            ):
                session.commit()
    except Exception:  # noqa: BLE001
        logger.exception("Failed to refresh profile for %s", username)
