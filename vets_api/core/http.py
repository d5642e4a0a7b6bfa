from __future__ import annotations

from collections.abc import Generator

import httpx

USER_AGENT = "vets.dev"


def new_http_client() -> httpx.Client:
    # GitHub rejects API calls without a User-Agent.
    return httpx.Client(timeout=10.0, headers={"User-Agent": USER_AGENT})


def get_http_client() -> Generator[httpx.Client, None, None]:
    # Centralize HTTP client configuration (timeouts, etc) so we can override in tests.
    with new_http_client() as client:
        yield client
