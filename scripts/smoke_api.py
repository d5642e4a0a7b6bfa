from __future__ import annotations

import os
import sys
from urllib.parse import urlparse

import httpx


def _assert_ok(response: httpx.Response, *, label: str) -> None:
    if response.status_code >= 400:
        raise RuntimeError(f"{label} failed: HTTP {response.status_code} body={response.text}")


def main() -> None:
    base_url = os.environ.get("API_BASE_URL", "http://localhost:3000")
    # Copy a `vets_session` cookie from a browser login to exercise the signed-in endpoints.
    session_token = os.environ.get("SMOKE_SESSION_TOKEN", "")

    with httpx.Client(base_url=base_url, timeout=20.0) as client:
        health = client.get("/health")
        _assert_ok(health, label="GET /health")
        print("ok: GET /health")

        ready = client.get("/readyz")
        _assert_ok(ready, label="GET /readyz")
        print("ok: GET /readyz")

        login = client.get("/auth/github", follow_redirects=False)
        if login.status_code != 302:
            raise RuntimeError(f"GET /auth/github failed: HTTP {login.status_code}")
        if urlparse(login.headers["location"]).netloc != "github.com":
            raise RuntimeError(f"GET /auth/github redirected to {login.headers['location']}")
        print("ok: GET /auth/github")

        if not session_token:
            print("smoke complete (anonymous only; set SMOKE_SESSION_TOKEN for more)")
            return

        client.cookies.set("vets_session", session_token)

        state = client.get("/api/me/state")
        _assert_ok(state, label="GET /api/me/state")
        if not state.json()["authenticated"]:
            raise RuntimeError("SMOKE_SESSION_TOKEN is not a live session")
        print(f"ok: GET /api/me/state ({state.json()['state']})")

        dashboard = client.get("/dashboard", follow_redirects=False)
        _assert_ok(dashboard, label="GET /dashboard")
        username = dashboard.json()["user"]["github_username"]
        print("ok: GET /dashboard")

        stream = client.get("/api/sse/user")
        _assert_ok(stream, label="GET /api/sse/user")
        print("ok: GET /api/sse/user")

        print(f"smoke complete: user={username} state={state.json()['state']}")


if __name__ == "__main__":
    try:
        main()
    except Exception as exc:  # noqa: BLE001
        print(f"smoke failed: {exc}", file=sys.stderr)
        raise SystemExit(1) from exc
