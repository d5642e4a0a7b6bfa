from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict


class ProfileOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    bio: str | None
    website: str | None
    github_repos_count: int
    github_stars_count: int
    github_languages: list[str]
    github_last_activity: datetime | None


class UserOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    github_id: int
    github_username: str
    avatar_url: str | None
    verified_veteran: bool
    verified_at: datetime | None
    created_at: datetime
    profile: ProfileOut | None


class PublicProfileOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    github_username: str
    avatar_url: str | None
    verified_veteran: bool
    verified_at: datetime | None
    profile: ProfileOut | None


class DashboardResponse(BaseModel):
    user: UserOut
    state: str


class HomeResponse(BaseModel):
    service: str
    login_url: str


class UserStateResponse(BaseModel):
    state: str
    authenticated: bool
    verified: bool
    user_id: UUID | None = None
    request_id: str | None = None
    verified_at: datetime | None = None
