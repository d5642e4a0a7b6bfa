"""Veteran verification request/complete flow.

Every attempt is an append-only pair of ``verification_events`` rows: a
``pending`` row keyed by the request id, and an outcome row keyed by a hash of
``(request_id, success)``. Nothing is ever updated in place; the user's
``verified_veteran`` flag is the only mutable projection.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any
from urllib.parse import urlencode
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from vets_api.core.config import get_settings
from vets_api.core.errors import NotFoundError, StorageError, VetsError
from vets_api.core.metrics import observe_verification
from vets_api.core.security import generate_token
from vets_api.models.enums import AuditAction, VerificationProvider, VerificationStatus
from vets_api.models.identity import User
from vets_api.models.verification import VerificationEvent
from vets_api.services.audit import ClientInfo, record_audit

# Providers that hand the user off to an external site before calling back.
HANDOFF_PROVIDERS = frozenset({VerificationProvider.govx})


class VerificationStoreError(StorageError):
    pass


class VerificationNotFoundError(NotFoundError):
    def __init__(self, request_id: str) -> None:
        super().__init__("Verification request not found")
        self.request_id = request_id


class VerificationExpiredError(VetsError):
    def __init__(self, request_id: str, expired_at: datetime) -> None:
        super().__init__(f"Verification request expired at {expired_at.isoformat()}")
        self.request_id = request_id
        self.expired_at = expired_at


class DuplicateVerificationError(VetsError):
    def __init__(self, request_id: str) -> None:
        super().__init__("Verification already completed")
        self.request_id = request_id


@dataclass(frozen=True)
class VerificationResult:
    request_id: str
    redirect_url: str | None


@dataclass(frozen=True)
class CompletionResult:
    user_id: UUID
    verified: bool


@dataclass(frozen=True)
class PendingVerification:
    request_id: str
    user_id: UUID
    provider: str
    created_at: datetime
    expires_at: datetime


def idempotency_key(request_id: str, success: bool) -> str:
    return hashlib.sha256(f"{request_id}:{'true' if success else 'false'}".encode()).hexdigest()


def _timeout() -> timedelta:
    return timedelta(seconds=get_settings().VERIFICATION_TIMEOUT_SECONDS)


def provider_callback_secret(provider: VerificationProvider) -> str:
    """Shared secret a hand-off provider signs its completion callback with."""
    if provider is VerificationProvider.govx:
        return get_settings().GOVX_CALLBACK_SECRET
    return ""


def _handoff_url(provider: VerificationProvider, request_id: str) -> str | None:
    if provider not in HANDOFF_PROVIDERS:
        return None
    base = get_settings().GOVX_VERIFY_URL
    if not base:
        return None
    return f"{base}?{urlencode({'request_id': request_id})}"


def _find_pending(session: Session, request_id: str) -> VerificationEvent | None:
    try:
        return (
            session.execute(
                select(VerificationEvent)
                .where(
                    VerificationEvent.idempotency_key == request_id,
                    VerificationEvent.status == VerificationStatus.pending.value,
                )
                .limit(1)
            )
            .scalars()
            .first()
        )
    except SQLAlchemyError as e:
        raise VerificationStoreError("Failed to query verification event") from e


def _check_not_expired(event: VerificationEvent, request_id: str, now: datetime) -> datetime:
    expires_at = event.created_at + _timeout()
    if now > expires_at:
        raise VerificationExpiredError(request_id, expires_at)
    return expires_at


def start_verification(
    *,
    session: Session,
    user_id: UUID,
    provider: VerificationProvider,
    client: ClientInfo | None = None,
    now: datetime | None = None,
) -> VerificationResult:
    now = now or datetime.now(UTC)
    request_id = generate_token()

    event = VerificationEvent(
        user_id=user_id,
        provider=provider.value,
        status=VerificationStatus.pending.value,
        idempotency_key=request_id,
        metadata_={"started_at": now.isoformat()},
        created_at=now,
    )
    try:
        session.add(event)
        session.flush()
    except SQLAlchemyError as e:
        raise VerificationStoreError("Failed to create verification event") from e

    record_audit(
        session=session,
        user_id=user_id,
        action=AuditAction.verify_start,
        client=client,
        metadata={"provider": provider.value, "request_id": request_id},
    )
    observe_verification(provider=provider.value, outcome="started")

    return VerificationResult(request_id=request_id, redirect_url=_handoff_url(provider, request_id))


def complete_verification(
    *,
    session: Session,
    request_id: str,
    success: bool,
    provider_ref: str | None = None,
    metadata: dict[str, Any] | None = None,
    client: ClientInfo | None = None,
    now: datetime | None = None,
) -> CompletionResult:
    now = now or datetime.now(UTC)
    metadata = dict(metadata or {})

    pending = _find_pending(session, request_id)
    if pending is None:
        raise VerificationNotFoundError(request_id)

    try:
        _check_not_expired(pending, request_id, now)
    except VerificationExpiredError:
        observe_verification(provider=pending.provider, outcome="expired")
        raise

    key = idempotency_key(request_id, success)
    try:
        existing = (
            session.execute(
                select(VerificationEvent.id)
                .where(VerificationEvent.idempotency_key == key)
                .limit(1)
            )
            .scalars()
            .first()
        )
    except SQLAlchemyError as e:
        raise VerificationStoreError("Failed to check for duplicate verification") from e
    if existing is not None:
        observe_verification(provider=pending.provider, outcome="duplicate")
        raise DuplicateVerificationError(request_id)

    status = VerificationStatus.success if success else VerificationStatus.failed
    outcome = VerificationEvent(
        user_id=pending.user_id,
        provider=pending.provider,
        provider_ref=provider_ref,
        status=status.value,
        idempotency_key=key,
        metadata_={**metadata, "completed_at": now.isoformat()},
        created_at=now,
    )
    try:
        # A concurrent completion can pass the check above; the unique key decides the winner.
        with session.begin_nested():
            session.add(outcome)
    except IntegrityError as e:
        observe_verification(provider=pending.provider, outcome="duplicate")
        raise DuplicateVerificationError(request_id) from e
    except SQLAlchemyError as e:
        raise VerificationStoreError("Failed to record verification completion") from e

    if success:
        try:
            session.execute(
                update(User)
                .where(User.id == pending.user_id)
                .values(verified_veteran=True, verified_at=now, updated_at=now)
            )
        except SQLAlchemyError as e:
            raise VerificationStoreError("Failed to update user verification status") from e

        record_audit(
            session=session,
            user_id=pending.user_id,
            action=AuditAction.verify_success,
            client=client,
            metadata={
                "provider": pending.provider,
                "request_id": request_id,
                "provider_ref": provider_ref,
            },
        )
    else:
        record_audit(
            session=session,
            user_id=pending.user_id,
            action=AuditAction.verify_fail,
            client=client,
            metadata={
                "provider": pending.provider,
                "request_id": request_id,
                "reason": metadata.get("reason") or "unknown",
            },
        )

    observe_verification(provider=pending.provider, outcome=status.value)
    return CompletionResult(user_id=pending.user_id, verified=success)


def get_pending_verification(
    *, session: Session, request_id: str, now: datetime | None = None
) -> PendingVerification | None:
    """Read-only view of a pending attempt.

    Absent rows return ``None``; present-but-expired rows raise
    ``VerificationExpiredError`` so the two cases stay distinguishable.
    """
    now = now or datetime.now(UTC)
    pending = _find_pending(session, request_id)
    if pending is None:
        return None

    expires_at = _check_not_expired(pending, request_id, now)
    return PendingVerification(
        request_id=request_id,
        user_id=pending.user_id,
        provider=pending.provider,
        created_at=pending.created_at,
        expires_at=expires_at,
    )


def find_open_verification(
    *, session: Session, user_id: UUID, now: datetime | None = None
) -> PendingVerification | None:
    """Most recent pending attempt for the user that is unexpired and has no outcome."""
    now = now or datetime.now(UTC)
    cutoff = now - _timeout()
    try:
        candidates = (
            session.execute(
                select(VerificationEvent)
                .where(
                    VerificationEvent.user_id == user_id,
                    VerificationEvent.status == VerificationStatus.pending.value,
                    VerificationEvent.created_at >= cutoff,
                )
                .order_by(VerificationEvent.created_at.desc())
            )
            .scalars()
            .all()
        )
        for event in candidates:
            keys = [idempotency_key(event.idempotency_key, flag) for flag in (True, False)]
            resolved = (
                session.execute(
                    select(VerificationEvent.id)
                    .where(VerificationEvent.idempotency_key.in_(keys))
                    .limit(1)
                )
                .scalars()
                .first()
            )
            if resolved is None:
                return PendingVerification(
                    request_id=event.idempotency_key,
                    user_id=event.user_id,
                    provider=event.provider,
                    created_at=event.created_at,
                    expires_at=event.created_at + _timeout(),
                )
    except SQLAlchemyError as e:
        raise VerificationStoreError("Failed to query open verification") from e
    return None
