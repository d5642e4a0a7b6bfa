from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session

from vets_api.core.deps import require_user
from vets_api.db.session import get_session
from vets_api.routers.pages import is_profile_username
from vets_api.services.auth.sessions import SessionUser
from vets_api.services.sse import SSE_HEADERS, profile_signals, stream_signals, user_signals
from vets_api.services.users import UserNotFoundError, find_user_by_id, find_user_by_username

router = APIRouter(prefix="/api/sse", tags=["sse"])


@router.get("/user")
def sse_user(
    user: SessionUser = Depends(require_user),
    session: Session = Depends(get_session),
) -> StreamingResponse:
    try:
        full_user = find_user_by_id(session=session, user_id=user.id)
    except UserNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found") from e

    # Build signals before streaming; the DB session closes with the dependency.
    return StreamingResponse(
        stream_signals(user_signals(full_user)),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )


@router.get("/profile/{username}")
def sse_profile(username: str, session: Session = Depends(get_session)) -> StreamingResponse:
    if not is_profile_username(username):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Not found")

    try:
        user = find_user_by_username(session=session, username=username)
    except UserNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Not found") from e
    # Same visibility as the public profile page.
    if not user.verified_veteran:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Not found")

    return StreamingResponse(
        stream_signals(profile_signals(user)),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )
