from __future__ import annotations

import json
import logging
import re
import threading
import time
from collections import deque
from contextvars import ContextVar
from dataclasses import dataclass, field

from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import HTTPConnection, Request
from starlette.responses import Response
from starlette.types import ASGIApp

from vets_api.core.config import Settings, get_settings
from vets_api.core.metrics import observe_http_request
from vets_api.core.security import generate_token

request_id_ctx: ContextVar[str | None] = ContextVar("request_id", default=None)
logger = logging.getLogger("vets.api")

# Incoming ids are echoed into headers and logs, so only plain tokens are accepted.
REQUEST_ID_RE = re.compile(r"^[A-Za-z0-9._:-]{1,128}$")


@dataclass
class RateLimiter:
    """Sliding-window request counter per client key.

    Keys whose window has fully elapsed are dropped on a periodic sweep so
    one-off clients do not accumulate for the life of the process.
    """

    max_requests: int
    window_seconds: float = 60.0
    sweep_every: int = 1024
    _lock: threading.Lock = field(default_factory=threading.Lock)
    _hits: dict[str, deque[float]] = field(default_factory=dict)
    _calls: int = 0

    def allow(self, key: str, *, now_ts: float) -> bool:
        cutoff = now_ts - self.window_seconds
        with self._lock:
            self._calls += 1
            if self._calls % self.sweep_every == 0:
                self._sweep(cutoff)

            hits = self._hits.get(key)
            if hits is None:
                hits = self._hits[key] = deque()
            while hits and hits[0] <= cutoff:
                hits.popleft()

            if len(hits) >= self.max_requests:
                return False
            hits.append(now_ts)
            return True

    def _sweep(self, cutoff: float) -> None:
        stale = [key for key, hits in self._hits.items() if not hits or hits[-1] <= cutoff]
        for key in stale:
            del self._hits[key]

    @property
    def tracked_keys(self) -> int:
        with self._lock:
            return len(self._hits)


def client_ip(conn: HTTPConnection, *, trust_proxy_headers: bool | None = None) -> str | None:
    if trust_proxy_headers is None:
        trust_proxy_headers = get_settings().TRUST_PROXY_HEADERS

    if trust_proxy_headers:
        forwarded_for = (conn.headers.get("x-forwarded-for") or "").split(",", 1)[0].strip()
        if forwarded_for:
            return forwarded_for
        real_ip = (conn.headers.get("x-real-ip") or "").strip()
        if real_ip:
            return real_ip
    return conn.client.host if conn.client else None


def build_request_id(incoming: str | None) -> str:
    incoming = (incoming or "").strip()
    if REQUEST_ID_RE.match(incoming):
        return incoming
    return generate_token()[:32]


def apply_security_headers(response: Response, *, settings: Settings) -> None:
    headers = {
        "X-Content-Type-Options": "nosniff",
        "X-Frame-Options": "DENY",
        "Referrer-Policy": "same-origin",
        "Content-Security-Policy": settings.CONTENT_SECURITY_POLICY,
    }
    if settings.is_prod:
        headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
    for name, value in headers.items():
        response.headers.setdefault(name, value)


def route_path(request: Request) -> str:
    # Route template keeps per-username paths out of log and metric labels.
    route = request.scope.get("route")
    return getattr(route, "path", None) or request.url.path


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Request id, rate limiting, security headers and the completion log/metrics."""

    def __init__(self, app: ASGIApp, *, settings: Settings) -> None:
        super().__init__(app)
        self.settings = settings
        limit = settings.RATE_LIMIT_REQUESTS_PER_MINUTE
        self.rate_limiter = RateLimiter(max_requests=limit) if limit > 0 else None

    def _allowed(self, request: Request) -> bool:
        if self.rate_limiter is None:
            return True
        key = client_ip(request, trust_proxy_headers=self.settings.TRUST_PROXY_HEADERS)
        return self.rate_limiter.allow(key or "unknown", now_ts=time.time())

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = build_request_id(request.headers.get(self.settings.REQUEST_ID_HEADER))
        ctx_token = request_id_ctx.set(request_id)
        started = time.perf_counter()
        rate_limited = False
        status_code = 500

        try:
            rate_limited = not self._allowed(request)
            if rate_limited:
                response: Response = JSONResponse(
                    status_code=429, content={"detail": "Rate limit exceeded"}
                )
            else:
                response = await call_next(request)
            status_code = response.status_code
            response.headers[self.settings.REQUEST_ID_HEADER] = request_id
            apply_security_headers(response, settings=self.settings)
            return response
        finally:
            self._record(
                request,
                request_id=request_id,
                status_code=status_code,
                duration_ms=int((time.perf_counter() - started) * 1000),
                rate_limited=rate_limited,
            )
            request_id_ctx.reset(ctx_token)

    def _record(
        self,
        request: Request,
        *,
        request_id: str,
        status_code: int,
        duration_ms: int,
        rate_limited: bool,
    ) -> None:
        path = route_path(request)
        logger.info(
            json.dumps(
                {
                    "event": "http.request.completed",
                    "request_id": request_id,
                    "method": request.method,
                    "path": path,
                    "status_code": status_code,
                    "duration_ms": duration_ms,
                    "rate_limited": rate_limited,
                },
                separators=(",", ":"),
                sort_keys=True,
            )
        )
        observe_http_request(
            method=request.method,
            path=path,
            status_code=status_code,
            duration_ms=duration_ms,
            rate_limited=rate_limited,
        )
