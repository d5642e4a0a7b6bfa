"""User lifecycle: Unauthenticated -> Authenticated -> VerificationPending -> Verified.

``transition`` is the model the session store and verification engine must
agree with. ``derive_user_state`` reads the stored tables and lands on exactly
one of the four states.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from uuid import UUID

from sqlalchemy.orm import Session

from vets_api.core.errors import VetsError
from vets_api.services.auth.sessions import SessionNotFoundError, validate_session
from vets_api.services.verification import find_open_verification


@dataclass(frozen=True)
class Unauthenticated:
    tag = "Unauthenticated"


@dataclass(frozen=True)
class Authenticated:
    user_id: UUID
    tag = "Authenticated"


@dataclass(frozen=True)
class VerificationPending:
    user_id: UUID
    request_id: str
    tag = "VerificationPending"


@dataclass(frozen=True)
class Verified:
    user_id: UUID
    verified_at: datetime
    tag = "Verified"


UserState = Unauthenticated | Authenticated | VerificationPending | Verified


@dataclass(frozen=True)
class GithubLogin:
    user_id: UUID
    tag = "GithubLogin"


@dataclass(frozen=True)
class StartVerify:
    request_id: str
    tag = "StartVerify"


@dataclass(frozen=True)
class VerifySuccess:
    verified_at: datetime
    tag = "VerifySuccess"


@dataclass(frozen=True)
class VerifyFail:
    reason: str
    tag = "VerifyFail"


@dataclass(frozen=True)
class Logout:
    tag = "Logout"


StateEvent = GithubLogin | StartVerify | VerifySuccess | VerifyFail | Logout


class InvalidTransitionError(VetsError):
    def __init__(self, from_state: str, event: str) -> None:
        super().__init__(f"Invalid transition: {event} from {from_state}")
        self.from_state = from_state
        self.event = event


def transition(state: UserState, event: StateEvent) -> UserState:
    if isinstance(event, GithubLogin) and isinstance(state, Unauthenticated):
        return Authenticated(user_id=event.user_id)

    if isinstance(event, StartVerify) and isinstance(state, Authenticated):
        return VerificationPending(user_id=state.user_id, request_id=event.request_id)

    if isinstance(state, VerificationPending):
        if isinstance(event, VerifySuccess):
            return Verified(user_id=state.user_id, verified_at=event.verified_at)
        if isinstance(event, VerifyFail):
            return Authenticated(user_id=state.user_id)

    if isinstance(event, Logout) and isinstance(state, (Authenticated, Verified)):
        return Unauthenticated()

    raise InvalidTransitionError(state.tag, event.tag)


def is_authenticated(state: UserState) -> bool:
    return not isinstance(state, Unauthenticated)


def is_verified(state: UserState) -> bool:
    return isinstance(state, Verified)


def get_user_id(state: UserState) -> UUID | None:
    if isinstance(state, Unauthenticated):
        return None
    return state.user_id


def derive_user_state(
    *, session: Session, token: str | None, now: datetime | None = None
) -> UserState:
    now = now or datetime.now(UTC)
    if not token:
        return Unauthenticated()

    try:
        user = validate_session(session=session, token=token, now=now)
    except SessionNotFoundError:
        return Unauthenticated()

    # Verified is terminal in the machine; a later pending attempt doesn't demote it.
    if user.verified_veteran and user.verified_at is not None:
        return Verified(user_id=user.id, verified_at=user.verified_at)

    pending = find_open_verification(session=session, user_id=user.id, now=now)
    if pending is not None:
        return VerificationPending(user_id=user.id, request_id=pending.request_id)

    return Authenticated(user_id=user.id)
