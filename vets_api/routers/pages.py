from __future__ import annotations

import re

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import RedirectResponse
from sqlalchemy.orm import Session

from vets_api.core.deps import LOGIN_PATH, get_optional_user, require_page_user
from vets_api.core.security import get_session_cookie
from vets_api.db.session import get_session
from vets_api.schemas.auth import (
    DashboardResponse,
    HomeResponse,
    PublicProfileOut,
    UserOut,
    UserStateResponse,
)
from vets_api.services.auth.sessions import SessionUser
from vets_api.services.user_state import (
    VerificationPending,
    Verified,
    derive_user_state,
    get_user_id,
    is_authenticated,
    is_verified,
)
from vets_api.services.users import (
    UserNotFoundError,
    find_user_by_id,
    find_user_by_username_optional,
)

# GitHub username rules: alphanumerics and inner hyphens, 1-39 chars.
USERNAME_RE = re.compile(r"^[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,37}[a-zA-Z0-9])?$")
RESERVED_USERNAMES = frozenset(
    {"health", "auth", "logout", "dashboard", "verify", "badge", "api"}
)

router = APIRouter(tags=["pages"])


def is_profile_username(username: str) -> bool:
    return bool(USERNAME_RE.match(username)) and username.lower() not in RESERVED_USERNAMES


@router.get("/", response_model=HomeResponse)
def home(user: SessionUser | None = Depends(get_optional_user)):
    if user is not None:
        return RedirectResponse(url="/dashboard", status_code=status.HTTP_302_FOUND)
    return HomeResponse(service="vets.dev", login_url=LOGIN_PATH)


def _user_view(session: Session, request: Request, user: SessionUser) -> DashboardResponse:
    # Usernames can be recycled on GitHub; only the id pins the signed-in row.
    try:
        full_user = find_user_by_id(session=session, user_id=user.id)
    except UserNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found.") from e
    state = derive_user_state(session=session, token=get_session_cookie(request))
    return DashboardResponse(user=UserOut.model_validate(full_user), state=state.tag)


@router.get("/dashboard", response_model=DashboardResponse)
def dashboard(
    request: Request,
    user: SessionUser = Depends(require_page_user),
    session: Session = Depends(get_session),
) -> DashboardResponse:
    return _user_view(session, request, user)


@router.get("/verify", response_model=DashboardResponse)
def verify_page(
    request: Request,
    user: SessionUser = Depends(require_page_user),
    session: Session = Depends(get_session),
) -> DashboardResponse:
    return _user_view(session, request, user)


@router.get("/api/me/state", response_model=UserStateResponse)
def my_state(request: Request, session: Session = Depends(get_session)) -> UserStateResponse:
    state = derive_user_state(session=session, token=get_session_cookie(request))
    return UserStateResponse(
        state=state.tag,
        authenticated=is_authenticated(state),
        verified=is_verified(state),
        user_id=get_user_id(state),
        request_id=state.request_id if isinstance(state, VerificationPending) else None,
        verified_at=state.verified_at if isinstance(state, Verified) else None,
    )


@router.get("/{username}", response_model=PublicProfileOut)
def public_profile(username: str, session: Session = Depends(get_session)) -> PublicProfileOut:
    if not is_profile_username(username):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Not found")

    user = find_user_by_username_optional(session=session, username=username)
    # Unverified users have no public profile.
    if user is None or not user.verified_veteran:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Not found")
    return PublicProfileOut.model_validate(user)
