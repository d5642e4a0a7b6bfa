from __future__ import annotations

from dataclasses import dataclass
from urllib.parse import urlencode

import httpx
from starlette.requests import HTTPConnection
from starlette.responses import Response

from vets_api.core.config import get_settings
from vets_api.core.errors import UpstreamError, VetsError
from vets_api.core.security import (
    clear_token_cookie,
    generate_token,
    get_cookie,
    rendered_cookie,
    set_token_cookie,
)

GITHUB_AUTHORIZE_URL = "https://github.com/login/oauth/authorize"
GITHUB_TOKEN_URL = "https://github.com/login/oauth/access_token"
GITHUB_USER_URL = "https://api.github.com/user"
GITHUB_SCOPE = "read:user"


class GitHubTokenError(UpstreamError):
    def __init__(
        self, message: str, *, error_code: str | None = None, status_code: int | None = None
    ) -> None:
        super().__init__(message, status_code=status_code)
        self.error_code = error_code


class GitHubUserFetchError(UpstreamError):
    pass


class OAuthStateError(VetsError):
    def __init__(self, *, query_present: bool, cookie_present: bool) -> None:
        super().__init__("Invalid OAuth state")
        self.query_present = query_present
        self.cookie_present = cookie_present


@dataclass(frozen=True)
class GitHubUser:
    id: int
    login: str
    avatar_url: str | None
    name: str | None = None
    bio: str | None = None
    blog: str | None = None
    public_repos: int = 0


def generate_state() -> str:
    return generate_token()


def build_authorization_url(*, state: str) -> str:
    settings = get_settings()
    params = {
        "client_id": settings.GITHUB_CLIENT_ID,
        "redirect_uri": settings.GITHUB_CALLBACK_URL,
        "scope": GITHUB_SCOPE,
        "state": state,
    }
    return f"{GITHUB_AUTHORIZE_URL}?{urlencode(params)}"


def set_state_cookie(response: Response, state: str, *, secure: bool | None = None) -> None:
    settings = get_settings()
    set_token_cookie(
        response,
        key=settings.OAUTH_STATE_COOKIE_NAME,
        value=state,
        max_age=settings.OAUTH_STATE_TTL_SECONDS,
        secure=settings.secure_cookies if secure is None else secure,
    )


def delete_state_cookie(response: Response) -> None:
    clear_token_cookie(response, key=get_settings().OAUTH_STATE_COOKIE_NAME)


def create_state_cookie(state: str, secure: bool = True) -> str:
    response = Response()
    set_state_cookie(response, state, secure=secure)
    return rendered_cookie(response)


def get_state_cookie(conn: HTTPConnection) -> str | None:
    return get_cookie(conn, get_settings().OAUTH_STATE_COOKIE_NAME)


def clear_state_cookie() -> str:
    response = Response()
    delete_state_cookie(response)
    return rendered_cookie(response)


def verify_state(query_state: str | None, cookie_state: str | None) -> None:
    """Reject the callback unless both state values are present and identical."""
    if not query_state or not cookie_state or query_state != cookie_state:
        raise OAuthStateError(
            query_present=bool(query_state), cookie_present=bool(cookie_state)
        )


def exchange_code_for_token(client: httpx.Client, *, code: str) -> str:
    settings = get_settings()
    try:
        res = client.post(
            GITHUB_TOKEN_URL,
            json={
                "client_id": settings.GITHUB_CLIENT_ID,
                "client_secret": settings.GITHUB_CLIENT_SECRET,
                "code": code,
                "redirect_uri": settings.GITHUB_CALLBACK_URL,
            },
            headers={"Accept": "application/json"},
        )
    except httpx.RequestError as e:
        raise GitHubTokenError("Network error during token exchange") from e

    if res.status_code >= 400:
        raise GitHubTokenError(
            f"GitHub token exchange failed: {res.status_code}", status_code=res.status_code
        )

    try:
        payload = res.json()
    except ValueError as e:
        raise GitHubTokenError("Failed to parse token response") from e

    # GitHub reports bad/expired codes with a 200 and an `error` field.
    if payload.get("error"):
        raise GitHubTokenError(
            payload.get("error_description") or payload["error"],
            error_code=payload["error"],
        )

    access_token = payload.get("access_token")
    if not access_token:
        raise GitHubTokenError("No access token in response")
    return access_token


def fetch_user(client: httpx.Client, *, access_token: str) -> GitHubUser:
    try:
        res = client.get(
            GITHUB_USER_URL,
            headers={
                "Authorization": f"Bearer {access_token}",
                "Accept": "application/vnd.github.v3+json",
            },
        )
    except httpx.RequestError as e:
        raise GitHubUserFetchError("Network error fetching GitHub user") from e

    if res.status_code >= 400:
        raise GitHubUserFetchError("GitHub user fetch failed", status_code=res.status_code)

    try:
        payload = res.json()
        return GitHubUser(
            id=int(payload["id"]),
            login=str(payload["login"]),
            avatar_url=payload.get("avatar_url"),
            name=payload.get("name"),
            bio=payload.get("bio"),
            blog=payload.get("blog"),
            public_repos=int(payload.get("public_repos") or 0),
        )
    except (ValueError, KeyError, TypeError) as e:
        raise GitHubUserFetchError("Failed to parse user response") from e
