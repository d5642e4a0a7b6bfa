from __future__ import annotations

import re

from starlette.requests import Request
from starlette.responses import Response

from vets_api.core.security import (
    clear_session_cookie,
    create_logout_cookie,
    create_session_cookie,
    generate_token,
    get_cookie,
    get_session_cookie,
    hash_token,
    set_session_cookie,
    sign_payload,
    verify_signature,
)
from vets_api.services.github.oauth import get_state_cookie

HEX64 = re.compile(r"^[0-9a-f]{64}$")


def test_generate_token_is_64_lowercase_hex() -> None:
    token = generate_token()
    assert HEX64.match(token)


def test_generate_token_is_unique_across_many_calls() -> None:
    tokens = {generate_token() for _ in range(1000)}
    assert len(tokens) == 1000


def test_hash_token_is_deterministic_sha256_hex() -> None:
    assert hash_token("abc") == hash_token("abc")
    assert hash_token("abc") != hash_token("abd")
    # sha256("abc")
    assert hash_token("abc") == (
        "ba7816bf8f01cfea414140de5dae2223b00361a396177a9cb410ff61f20015ad"
    )
    assert HEX64.match(hash_token(generate_token()))


def _request(cookie_header: str | None) -> Request:
    headers = [(b"cookie", cookie_header.encode("latin-1"))] if cookie_header is not None else []
    return Request({"type": "http", "method": "GET", "path": "/", "headers": headers})


def _flags(cookie: str) -> set[str]:
    return {part.strip().lower() for part in cookie.split(";")[1:]}


def test_get_session_cookie_handles_missing_and_multiple_cookies() -> None:
    assert get_session_cookie(_request(None)) is None
    assert get_session_cookie(_request("")) is None
    assert get_session_cookie(_request("a=1; vets_session=tok; b=2")) == "tok"


def test_get_session_cookie_keeps_equals_inside_value() -> None:
    request = _request("vets_session=token=with=equals; other=x")
    assert get_session_cookie(request) == "token=with=equals"
    assert get_cookie(request, "other") == "x"


def test_get_state_cookie_is_distinct_from_session_cookie() -> None:
    request = _request("vets_session=sess; github_oauth_state=st8")
    assert get_state_cookie(request) == "st8"
    assert get_session_cookie(request) == "sess"
    assert get_state_cookie(_request("vets_session=sess")) is None


def test_session_cookie_flags() -> None:
    cookie = create_session_cookie("tok", secure=True)
    assert cookie.split(";")[0] == "vets_session=tok"
    flags = _flags(cookie)
    assert {"httponly", "path=/", "samesite=lax", "max-age=604800", "secure"} <= flags


def test_session_cookie_without_secure_flag() -> None:
    cookie = create_session_cookie("tok", secure=False)
    assert "secure" not in _flags(cookie)


def test_logout_cookie_expires_immediately() -> None:
    cookie = create_logout_cookie()
    assert cookie.startswith("vets_session=")
    flags = _flags(cookie)
    assert "max-age=0" in flags
    assert "httponly" in flags
    assert "secure" not in flags


def test_session_cookie_helpers_write_onto_response() -> None:
    response = Response()
    set_session_cookie(response, "tok")
    clear_session_cookie(response)

    cookies = response.headers.getlist("set-cookie")
    assert len(cookies) == 2
    assert cookies[0].startswith("vets_session=tok;")
    # conftest sets COOKIE_SECURE=false
    assert "secure" not in _flags(cookies[0])
    assert "max-age=0" in _flags(cookies[1])


def test_signature_matches_only_the_signed_payload() -> None:
    signature = sign_payload(b'{"a":1}', secret="s3cret")
    assert signature.startswith("sha256=")
    assert verify_signature(b'{"a":1}', signature, secret="s3cret")
    assert not verify_signature(b'{"a":2}', signature, secret="s3cret")
    assert not verify_signature(b'{"a":1}', signature, secret="other")
    assert not verify_signature(b'{"a":1}', None, secret="s3cret")
    assert not verify_signature(b'{"a":1}', signature, secret="")
