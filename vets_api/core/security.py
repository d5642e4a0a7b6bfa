from __future__ import annotations

import hashlib
import hmac
import secrets

from starlette.requests import HTTPConnection
from starlette.responses import Response

from vets_api.core.config import get_settings

TOKEN_BYTES = 32
SIGNATURE_PREFIX = "sha256="


def generate_token() -> str:
    # 32 random bytes -> 64 hex chars; used for sessions, OAuth state and request ids.
    return secrets.token_hex(TOKEN_BYTES)


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def sign_payload(payload: bytes, *, secret: str) -> str:
    digest = hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()
    return f"{SIGNATURE_PREFIX}{digest}"


def verify_signature(payload: bytes, signature: str | None, *, secret: str) -> bool:
    if not secret or not signature:
        return False
    expected = sign_payload(payload, secret=secret).encode("ascii")
    return hmac.compare_digest(expected, signature.strip().encode("utf-8"))


def get_cookie(conn: HTTPConnection, name: str) -> str | None:
    return conn.cookies.get(name)


def set_token_cookie(
    response: Response,
    *,
    key: str,
    value: str,
    max_age: int,
    secure: bool,
) -> None:
    response.set_cookie(
        key=key,
        value=value,
        httponly=True,
        secure=secure,
        samesite="lax",
        path="/",
        max_age=max_age,
    )


def clear_token_cookie(response: Response, *, key: str) -> None:
    response.delete_cookie(key=key, path="/", httponly=True, samesite="lax")


def rendered_cookie(response: Response) -> str:
    """Return the single ``Set-Cookie`` value written onto ``response``."""
    return response.headers["set-cookie"]


def set_session_cookie(response: Response, token: str, *, secure: bool | None = None) -> None:
    settings = get_settings()
    set_token_cookie(
        response,
        key=settings.SESSION_COOKIE_NAME,
        value=token,
        max_age=settings.SESSION_TTL_SECONDS,
        secure=settings.secure_cookies if secure is None else secure,
    )


def clear_session_cookie(response: Response) -> None:
    clear_token_cookie(response, key=get_settings().SESSION_COOKIE_NAME)


def create_session_cookie(token: str, secure: bool = True) -> str:
    response = Response()
    set_session_cookie(response, token, secure=secure)
    return rendered_cookie(response)


def create_logout_cookie() -> str:
    response = Response()
    clear_session_cookie(response)
    return rendered_cookie(response)


def get_session_cookie(conn: HTTPConnection) -> str | None:
    return get_cookie(conn, get_settings().SESSION_COOKIE_NAME)
