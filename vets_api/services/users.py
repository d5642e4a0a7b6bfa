from __future__ import annotations

from datetime import UTC, datetime
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from vets_api.core.errors import NotFoundError, StorageError
from vets_api.models.identity import Profile, User
from vets_api.services.github.oauth import GitHubUser


class UserRepositoryError(StorageError):
    pass


class UserNotFoundError(NotFoundError):
    def __init__(self, identifier: str) -> None:
        super().__init__(f"User not found: {identifier}")
        self.identifier = identifier


def upsert_from_github(
    *, session: Session, github_user: GitHubUser, now: datetime | None = None
) -> tuple[User, bool]:
    """Create or refresh the local user for a GitHub identity.

    Safe to call on every login. Returns ``(user, is_new_user)``.
    """
    now = now or datetime.now(UTC)
    try:
        existing = (
            session.execute(select(User).where(User.github_id == github_user.id))
            .scalars()
            .first()
        )
    except SQLAlchemyError as e:
        raise UserRepositoryError("Failed to check existing user") from e

    if existing is not None:
        # Usernames and avatars can change upstream; github_id never does.
        existing.github_username = github_user.login
        existing.avatar_url = github_user.avatar_url
        existing.updated_at = now
        try:
            session.add(existing)
            session.flush()
        except SQLAlchemyError as e:
            raise UserRepositoryError("Failed to update user") from e
        return existing, False

    user = User(
        github_id=github_user.id,
        github_username=github_user.login,
        avatar_url=github_user.avatar_url,
        created_at=now,
        updated_at=now,
    )
    try:
        session.add(user)
        session.flush()
    except SQLAlchemyError as e:
        raise UserRepositoryError("Failed to create user") from e

    profile = Profile(
        user_id=user.id,
        bio=github_user.bio,
        website=github_user.blog[:255] if github_user.blog else None,
        github_repos_count=github_user.public_repos,
        created_at=now,
        updated_at=now,
    )
    try:
        session.add(profile)
        session.flush()
    except SQLAlchemyError as e:
        raise UserRepositoryError("Failed to create profile") from e

    user.profile = profile
    return user, True


def find_user_by_id(*, session: Session, user_id: UUID) -> User:
    try:
        user = session.get(User, user_id)
    except SQLAlchemyError as e:
        raise UserRepositoryError("Failed to find user") from e
    if user is None:
        raise UserNotFoundError(str(user_id))
    return user


def find_user_by_username_optional(*, session: Session, username: str) -> User | None:
    try:
        return (
            session.execute(
                select(User)
                .where(User.github_username == username)
                .order_by(User.updated_at.desc())
                .limit(1)
            )
            .scalars()
            .first()
        )
    except SQLAlchemyError as e:
        raise UserRepositoryError("Failed to find user") from e


def find_user_by_username(*, session: Session, username: str) -> User:
    user = find_user_by_username_optional(session=session, username=username)
    if user is None:
        raise UserNotFoundError(username)
    return user
