from __future__ import annotations

import json
from collections.abc import Iterator
from datetime import datetime
from typing import Any

from vets_api.models.identity import User

PATCH_SIGNALS_EVENT = "datastar-patch-signals"

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def _json_default(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    raise TypeError(f"Cannot encode {type(value).__name__}")


def patch_signals_event(signals: dict[str, Any]) -> str:
    """Encode a Datastar ``patch-signals`` Server-Sent Event."""
    payload = json.dumps(signals, default=_json_default, separators=(",", ":"))
    return f"event: {PATCH_SIGNALS_EVENT}\ndata: signals {payload}\n\n"


def user_signals(user: User) -> dict[str, Any]:
    profile = user.profile
    return {
        "verified": bool(user.verified_veteran),
        "repoCount": profile.github_repos_count if profile else 0,
        "starCount": profile.github_stars_count if profile else 0,
        "languages": list(profile.github_languages or []) if profile else [],
    }


def profile_signals(user: User) -> dict[str, Any]:
    profile = user.profile
    return {
        "username": user.github_username,
        "avatarUrl": user.avatar_url,
        "verified": bool(user.verified_veteran),
        "bio": profile.bio if profile else None,
        "website": profile.website if profile else None,
        "repoCount": profile.github_repos_count if profile else 0,
        "starCount": profile.github_stars_count if profile else 0,
        "languages": list(profile.github_languages or []) if profile else [],
        "lastActivity": profile.github_last_activity if profile else None,
    }


def stream_signals(signals: dict[str, Any]) -> Iterator[str]:
    # Initial state only; clients reconnect for fresh data.
    yield patch_signals_event(signals)
