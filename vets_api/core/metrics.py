from __future__ import annotations

from prometheus_client import Counter, Histogram

_HTTP_REQUESTS_TOTAL = Counter(
    "vets_http_requests_total",
    "Total HTTP requests handled by the API.",
    labelnames=("method", "path", "status_code"),
)
_HTTP_REQUEST_DURATION_SECONDS = Histogram(
    "vets_http_request_duration_seconds",
    "HTTP request duration in seconds.",
    labelnames=("method", "path"),
)
_HTTP_RATE_LIMITED_TOTAL = Counter(
    "vets_http_rate_limited_total",
    "Total HTTP requests blocked by rate limiting.",
    labelnames=("method", "path"),
)
_LOGINS_TOTAL = Counter(
    "vets_logins_total",
    "Successful GitHub logins.",
    labelnames=("new_user",),
)
_VERIFICATIONS_TOTAL = Counter(
    "vets_verifications_total",
    "Verification lifecycle events by provider and outcome.",
    labelnames=("provider", "outcome"),
)


def observe_http_request(
    *,
    method: str,
    path: str,
    status_code: int,
    duration_ms: int,
    rate_limited: bool,
) -> None:
    safe_path = path or "unknown"
    safe_method = method or "UNKNOWN"

    _HTTP_REQUESTS_TOTAL.labels(
        method=safe_method,
        path=safe_path,
        status_code=str(status_code),
    ).inc()
    _HTTP_REQUEST_DURATION_SECONDS.labels(method=safe_method, path=safe_path).observe(
        max(0.0, duration_ms / 1000.0)
    )
    if rate_limited:
        _HTTP_RATE_LIMITED_TOTAL.labels(method=safe_method, path=safe_path).inc()


def observe_login(*, is_new_user: bool) -> None:
    _LOGINS_TOTAL.labels(new_user="true" if is_new_user else "false").inc()


def observe_verification(*, provider: str, outcome: str) -> None:
    # outcome: started|success|failed|expired|duplicate
    _VERIFICATIONS_TOTAL.labels(provider=provider or "unknown", outcome=outcome).inc()
