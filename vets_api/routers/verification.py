from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from pydantic import ValidationError
from sqlalchemy.orm import Session

from vets_api.core.deps import require_user
from vets_api.core.security import verify_signature
from vets_api.db.session import get_session
from vets_api.models.enums import VerificationProvider
from vets_api.schemas.verification import (
    CompleteVerificationRequest,
    CompletionResponse,
    PendingVerificationResponse,
    StartVerificationRequest,
    StartVerificationResponse,
)
from vets_api.services.audit import get_client_info
from vets_api.services.auth.sessions import SessionUser
from vets_api.services.verification import (
    HANDOFF_PROVIDERS,
    DuplicateVerificationError,
    PendingVerification,
    VerificationExpiredError,
    VerificationNotFoundError,
    complete_verification,
    get_pending_verification,
    provider_callback_secret,
    start_verification,
)

SIGNATURE_HEADER = "x-signature"

router = APIRouter(prefix="/api/verify", tags=["verification"])
# Self-service completion for the mock provider; only mounted outside prod.
mock_router = APIRouter(prefix="/api/verify", tags=["verification"])


def _expired(e: VerificationExpiredError) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_410_GONE,
        detail={"error": "verification_expired", "expired_at": e.expired_at.isoformat()},
    )


def _not_found() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_404_NOT_FOUND, detail={"error": "verification_not_found"}
    )


def _pending(*, session: Session, request_id: str) -> PendingVerification | None:
    try:
        return get_pending_verification(session=session, request_id=request_id)
    except VerificationExpiredError as e:
        raise _expired(e) from e


def _own_pending(
    *, session: Session, request_id: str, user: SessionUser
) -> PendingVerification:
    pending = _pending(session=session, request_id=request_id)
    # Someone else's request id is indistinguishable from an unknown one.
    if pending is None or pending.user_id != user.id:
        raise _not_found()
    return pending


def _complete(
    *, session: Session, payload: CompleteVerificationRequest, request: Request
) -> CompletionResponse:
    try:
        result = complete_verification(
            session=session,
            request_id=payload.request_id,
            success=payload.success,
            provider_ref=payload.provider_ref,
            metadata=payload.metadata,
            client=get_client_info(request),
        )
    except VerificationNotFoundError as e:
        raise _not_found() from e
    except VerificationExpiredError as e:
        raise _expired(e) from e
    except DuplicateVerificationError as e:
        session.rollback()
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"error": "verification_duplicate"},
        ) from e

    session.commit()
    return CompletionResponse(user_id=result.user_id, verified=result.verified)


async def read_raw_body(request: Request) -> bytes:
    return await request.body()


@router.post(
    "/start", response_model=StartVerificationResponse, status_code=status.HTTP_201_CREATED
)
def verify_start(
    payload: StartVerificationRequest,
    request: Request,
    response: Response,
    user: SessionUser = Depends(require_user),
    session: Session = Depends(get_session),
) -> StartVerificationResponse:
    result = start_verification(
        session=session,
        user_id=user.id,
        provider=payload.provider,
        client=get_client_info(request),
    )
    session.commit()
    response.headers["Cache-Control"] = "no-store"
    return StartVerificationResponse(request_id=result.request_id, redirect_url=result.redirect_url)


@router.post("/callback/{provider}", response_model=CompletionResponse)
def verify_callback(
    provider: VerificationProvider,
    request: Request,
    body: bytes = Depends(read_raw_body),
    session: Session = Depends(get_session),
) -> CompletionResponse:
    """Completion reported by a hand-off provider, authenticated by an HMAC of the body."""
    if provider not in HANDOFF_PROVIDERS:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Not Found")

    secret = provider_callback_secret(provider)
    if not secret:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"{provider.value} callback is not configured",
        )
    if not verify_signature(body, request.headers.get(SIGNATURE_HEADER), secret=secret):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid signature")

    try:
        payload = CompleteVerificationRequest.model_validate_json(body)
    except ValidationError as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_CONTENT, detail="Invalid callback payload"
        ) from e

    pending = _pending(session=session, request_id=payload.request_id)
    # A provider may only settle attempts that were handed off to it.
    if pending is None or pending.provider != provider.value:
        raise _not_found()

    return _complete(session=session, payload=payload, request=request)


@router.get("/{request_id}", response_model=PendingVerificationResponse)
def verify_status(
    request_id: str,
    user: SessionUser = Depends(require_user),
    session: Session = Depends(get_session),
) -> PendingVerificationResponse:
    pending = _own_pending(session=session, request_id=request_id, user=user)
    return PendingVerificationResponse(
        request_id=pending.request_id,
        provider=pending.provider,
        created_at=pending.created_at,
        expires_at=pending.expires_at,
    )


@mock_router.post("/complete", response_model=CompletionResponse)
def verify_complete(
    payload: CompleteVerificationRequest,
    request: Request,
    user: SessionUser = Depends(require_user),
    session: Session = Depends(get_session),
) -> CompletionResponse:
    pending = _own_pending(session=session, request_id=payload.request_id, user=user)
    if pending.provider != VerificationProvider.mock.value:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={"error": "provider_callback_required"},
        )

    return _complete(session=session, payload=payload, request=request)
