from __future__ import annotations

from datetime import datetime
from uuid import UUID, uuid4

from sqlalchemy import BigInteger, Boolean, ForeignKey, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from vets_api.models.base import Base, JSONType, UTCDateTime, utcnow


class User(Base):
    __tablename__ = "users"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    github_id: Mapped[int] = mapped_column(BigInteger, nullable=False, unique=True)
    github_username: Mapped[str] = mapped_column(String(39), nullable=False, index=True)
    avatar_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    verified_veteran: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, index=True
    )
    verified_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)

    profile: Mapped[Profile | None] = relationship(
        back_populates="user", uselist=False, lazy="selectin"
    )


class Profile(Base):
    __tablename__ = "profiles"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    bio: Mapped[str | None] = mapped_column(Text, nullable=True)
    website: Mapped[str | None] = mapped_column(String(255), nullable=True)
    github_repos_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    github_stars_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    github_languages: Mapped[list[str]] = mapped_column(JSONType, nullable=False, default=list)
    github_last_activity: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    profile_cached_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)

    user: Mapped[User] = relationship(back_populates="profile")
