from __future__ import annotations

import logging

import httpx
from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request, status
from fastapi.responses import RedirectResponse
from sqlalchemy.orm import Session

from vets_api.core.config import get_settings
from vets_api.core.http import get_http_client
from vets_api.core.metrics import observe_login
from vets_api.core.security import (
    clear_session_cookie,
    get_session_cookie,
    set_session_cookie,
)
from vets_api.db.session import get_session
from vets_api.models.enums import AuditAction
from vets_api.services.audit import get_client_info, record_audit
from vets_api.services.auth.sessions import (
    SessionNotFoundError,
    create_session,
    delete_session,
    validate_session,
)
from vets_api.services.github.oauth import (
    GitHubTokenError,
    GitHubUserFetchError,
    OAuthStateError,
    build_authorization_url,
    delete_state_cookie,
    exchange_code_for_token,
    fetch_user,
    generate_state,
    get_state_cookie,
    set_state_cookie,
    verify_state,
)
from vets_api.services.github.profile import refresh_profile_in_background
from vets_api.services.users import upsert_from_github

router = APIRouter(tags=["auth"])
logger = logging.getLogger("vets.api")


@router.get("/auth/github")
def github_login() -> RedirectResponse:
    settings = get_settings()
    if not settings.github_configured:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="GitHub OAuth is not configured",
        )

    state = generate_state()
    response = RedirectResponse(
        url=build_authorization_url(state=state), status_code=status.HTTP_302_FOUND
    )
    set_state_cookie(response, state)
    response.headers["Cache-Control"] = "no-store"
    return response


@router.get("/auth/github/callback")
def github_callback(
    request: Request,
    background_tasks: BackgroundTasks,
    code: str | None = None,
    state: str | None = None,
    error: str | None = None,
    session: Session = Depends(get_session),
    http_client: httpx.Client = Depends(get_http_client),
) -> RedirectResponse:
    if error:
        logger.warning("GitHub OAuth error: %s", error)
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"GitHub authentication failed: {error}",
        )

    try:
        verify_state(state, get_state_cookie(request))
    except OAuthStateError as e:
        logger.warning(
            "OAuth state mismatch: query=%s cookie=%s",
            "present" if e.query_present else "missing",
            "present" if e.cookie_present else "missing",
        )
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid authentication state. Please try again.",
        ) from e

    if not code:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="No authorization code received."
        )

    try:
        access_token = exchange_code_for_token(http_client, code=code)
        github_user = fetch_user(http_client, access_token=access_token)
    except (GitHubTokenError, GitHubUserFetchError) as e:
        logger.warning("GitHub login failed: %s", e.message)
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="GitHub authentication failed. Please try again.",
        ) from e

    user, is_new_user = upsert_from_github(session=session, github_user=github_user)
    token = create_session(session=session, user_id=user.id)
    record_audit(
        session=session,
        user_id=user.id,
        action=AuditAction.login,
        client=get_client_info(request),
        metadata={"is_new_user": is_new_user, "github_username": github_user.login},
    )
    session.commit()
    observe_login(is_new_user=is_new_user)

    background_tasks.add_task(
        refresh_profile_in_background,
        user_id=user.id,
        username=user.github_username,
        access_token=access_token,
    )

    response = RedirectResponse(url="/dashboard", status_code=status.HTTP_302_FOUND)
    set_session_cookie(response, token)
    delete_state_cookie(response)
    response.headers["Cache-Control"] = "no-store"
    return response


@router.post("/logout")
def logout(request: Request, session: Session = Depends(get_session)) -> RedirectResponse:
    token = get_session_cookie(request)
    if token:
        try:
            current = validate_session(session=session, token=token)
        except SessionNotFoundError:
            current = None

        delete_session(session=session, token=token)
        if current is not None:
            record_audit(
                session=session,
                user_id=current.id,
                action=AuditAction.logout,
                client=get_client_info(request),
            )
        session.commit()

    response = RedirectResponse(url="/", status_code=status.HTTP_302_FOUND)
    clear_session_cookie(response)
    response.headers["Cache-Control"] = "no-store"
    return response
