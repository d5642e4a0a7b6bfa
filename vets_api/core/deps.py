from __future__ import annotations

import logging

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from vets_api.core.security import get_session_cookie
from vets_api.db.session import get_session
from vets_api.services.auth.sessions import (
    SessionNotFoundError,
    SessionStoreError,
    SessionUser,
    validate_session,
)

LOGIN_PATH = "/auth/github"

logger = logging.getLogger("vets.api")


def get_optional_user(
    request: Request,
    session: Session = Depends(get_session),
) -> SessionUser | None:
    token = get_session_cookie(request)
    if not token:
        return None

    try:
        return validate_session(session=session, token=token)
    except SessionNotFoundError:
        return None
    except SessionStoreError:
        # Treat as logged out rather than surfacing a storage error to the visitor.
        logger.exception("session validation failed")
        return None


def require_user(user: SessionUser | None = Depends(get_optional_user)) -> SessionUser:
    if user is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
    return user


def require_page_user(user: SessionUser | None = Depends(get_optional_user)) -> SessionUser:
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_302_FOUND,
            detail="Login required",
            headers={"Location": LOGIN_PATH},
        )
    return user
