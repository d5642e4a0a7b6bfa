from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from uuid import UUID

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from vets_api.core.config import get_settings
from vets_api.core.errors import NotFoundError, StorageError
from vets_api.core.security import generate_token, hash_token
from vets_api.models.auth import AuthSession
from vets_api.models.identity import User


class SessionStoreError(StorageError):
    pass


class SessionNotFoundError(NotFoundError):
    # One message for "never issued" and "expired" so callers can't tell them apart.
    def __init__(self) -> None:
        super().__init__("Session not found or expired")


@dataclass(frozen=True)
class SessionUser:
    id: UUID
    github_id: int
    github_username: str
    avatar_url: str | None
    verified_veteran: bool
    verified_at: datetime | None


def create_session(*, session: Session, user_id: UUID, now: datetime | None = None) -> str:
    """Persist a new session for ``user_id`` and return the raw token.

    Only the token hash is stored; the raw value exists solely in the return
    value and the cookie the caller sets from it.
    """
    settings = get_settings()
    now = now or datetime.now(UTC)
    token = generate_token()

    auth_session = AuthSession(
        user_id=user_id,
        token_hash=hash_token(token),
        expires_at=now + timedelta(seconds=settings.SESSION_TTL_SECONDS),
        created_at=now,
    )
    try:
        session.add(auth_session)
        session.flush()
    except SQLAlchemyError as e:
        raise SessionStoreError("Failed to create session") from e

    return token


def validate_session(
    *, session: Session, token: str, now: datetime | None = None
) -> SessionUser:
    now = now or datetime.now(UTC)
    try:
        row = session.execute(
            select(AuthSession, User)
            .join(User, User.id == AuthSession.user_id)
            .where(
                AuthSession.token_hash == hash_token(token),
                AuthSession.expires_at > now,
            )
            .limit(1)
        ).first()
    except SQLAlchemyError as e:
        raise SessionStoreError("Failed to validate session") from e

    if row is None:
        raise SessionNotFoundError()

    _, user = row
    return SessionUser(
        id=user.id,
        github_id=user.github_id,
        github_username=user.github_username,
        avatar_url=user.avatar_url,
        verified_veteran=bool(user.verified_veteran),
        verified_at=user.verified_at,
    )


def delete_session(*, session: Session, token: str) -> None:
    try:
        session.execute(delete(AuthSession).where(AuthSession.token_hash == hash_token(token)))
    except SQLAlchemyError as e:
        raise SessionStoreError("Failed to delete session") from e


def delete_all_sessions_for_user(*, session: Session, user_id: UUID) -> None:
    try:
        session.execute(delete(AuthSession).where(AuthSession.user_id == user_id))
    except SQLAlchemyError as e:
        raise SessionStoreError("Failed to delete user sessions") from e
